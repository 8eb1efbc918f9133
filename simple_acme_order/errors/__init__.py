# Copyright 2023 Jared Hendrickson
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#    http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
"""Custom exception classes for simple_acme_order."""


class SimpleAcmeOrderError(Exception):
    """Base class for every error raised by simple_acme_order."""
    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ConfigurationError(SimpleAcmeOrderError):
    """Error occurs when an order or configuration value is rejected before any network activity"""


class OrderNotFound(SimpleAcmeOrderError):
    """Error occurs when an order is resumed without a valid persisted order reference"""


class OrderExpired(SimpleAcmeOrderError):
    """Error occurs when a persisted order has passed, or is about to pass, its expiry"""


class OrderCancelled(SimpleAcmeOrderError):
    """Error occurs when the cancellation token is signaled while an order is in flight"""


class AuthorizationFailed(SimpleAcmeOrderError):
    """Error occurs when an authorization does not reach the valid status"""


class DnsResolutionError(SimpleAcmeOrderError):
    """Error occurs when no authoritative nameservers could be resolved for a validation record"""


class FinalizeError(SimpleAcmeOrderError):
    """Error occurs when the ACME server rejects the CSR submitted to finalize an order"""
    def __init__(self, message: str, detail: str = None) -> None:
        super().__init__(message)
        self.detail = detail


class UnexpectedOrderStatus(SimpleAcmeOrderError):
    """Error occurs when an order ends in a status other than valid after finalization"""


class DownloadError(SimpleAcmeOrderError):
    """Error occurs when the certificate could not be downloaded for a valid order"""


class ChallengeUnavailable(SimpleAcmeOrderError):
    """Error occurs when the requested ACME server does not offer the DNS-01 challenge"""


class InvalidAccount(SimpleAcmeOrderError):
    """Error occurs when requests are made to the ACME server without registration"""


class InvalidEmail(SimpleAcmeOrderError):
    """Error occurs when an account registration was requested with an invalid email value"""


class InvalidKeyType(SimpleAcmeOrderError):
    """Error occurs when the requested private key type is unsupported"""


class InvalidPath(SimpleAcmeOrderError):
    """Error occurs when a requested file path does not exist"""


class StoreNotInitialized(SimpleAcmeOrderError):
    """Error occurs when a common name scoped value is used before the store is initialized for a common name"""
