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
"""Configuration values shared by the order, authorization and DNS components."""
import dataclasses
import os

from .. import errors

LETS_ENCRYPT_DIRECTORY = "https://acme-v02.api.letsencrypt.org/directory"
LETS_ENCRYPT_STAGING_DIRECTORY = "https://acme-staging-v02.api.letsencrypt.org/directory"
KEY_TYPES = ('ec256', 'ec384', 'rsa2048', 'rsa4096')


@dataclasses.dataclass(frozen=True)
class OrderConfig:
    """
    An immutable set of tunables for issuing a certificate.

    Attributes:
        directory (str): The ACME directory URL to interact with.
        validation_record_prefix (str): The left-most part of each DNS validation record name.
        dns_check_retry_limit (int): How many times to re-check DNS for a validation value before giving up.
        dns_check_retry_interval (float): The amount of time (in seconds) between DNS checks.
        validation_retry_limit (int): How many times to re-poll the ACME server for a challenge result.
        validation_retry_interval (float): The amount of time (in seconds) between challenge polls.
        distinguished_name (str): The subject template placed in front of the `CN=` component of each CSR.
        key_type (str): The certificate private key type. Options are: [`ec256`, `ec384`, `rsa2048`, `rsa4096`]
        nameservers (tuple): DNS servers used to look up authoritative nameservers. Defaults to the system resolver.
        dns_timeout (float): The amount of time (in seconds) to wait for a single DNS response.
        order_expiry_margin (float): Persisted orders expiring within this many seconds are treated as expired.
    """
    # pylint: disable=too-many-instance-attributes
    directory: str = LETS_ENCRYPT_DIRECTORY
    validation_record_prefix: str = "_acme-challenge."
    dns_check_retry_limit: int = 100
    dns_check_retry_interval: float = 30
    validation_retry_limit: int = 100
    validation_retry_interval: float = 30
    distinguished_name: str = "C=CA, ST=State, L=City, O=Dept"
    key_type: str = 'ec256'
    nameservers: tuple = None
    dns_timeout: float = 5
    order_expiry_margin: float = 60

    def __post_init__(self):
        # Ensure retry budgets and delays can never run backwards
        for name in ('dns_check_retry_limit', 'validation_retry_limit'):
            if not isinstance(getattr(self, name), int) or getattr(self, name) < 0:
                raise errors.ConfigurationError(f"'{name}' must be a non-negative integer.")
        for name in ('dns_check_retry_interval', 'validation_retry_interval', 'dns_timeout', 'order_expiry_margin'):
            if getattr(self, name) < 0:
                raise errors.ConfigurationError(f"'{name}' must not be negative.")

        if self.key_type not in KEY_TYPES:
            raise errors.ConfigurationError(f"Invalid private key type '{self.key_type}'. Options {list(KEY_TYPES)}")
        if not self.directory.startswith(("https://", "http://")):
            raise errors.ConfigurationError(f"Invalid ACME directory URL '{self.directory}'.")

        # Lists are accepted for convenience but stored as a tuple to keep the object hashable
        if self.nameservers is not None:
            object.__setattr__(self, 'nameservers', tuple(self.nameservers))

    def replace(self, **changes) -> 'OrderConfig':
        """Returns a copy of this configuration with the given fields changed."""
        return dataclasses.replace(self, **changes)

    @classmethod
    def from_env(cls, prefix: str = "SIMPLE_ACME_ORDER_", environ: dict = None) -> 'OrderConfig':
        """
        Builds a configuration from environment variables. Each field may be overridden by an upper-cased variable
        name carrying the `prefix`, e.g. `SIMPLE_ACME_ORDER_DNS_CHECK_RETRY_LIMIT=10`. Nameservers are comma separated.

        Args:
            prefix (str): The prefix shared by every variable name.
            environ (dict): The mapping to read. Defaults to `os.environ`.

        Returns:
            simple_acme_order.config.OrderConfig: The resulting configuration.

        Raises:
            simple_acme_order.errors.ConfigurationError: When a value cannot be converted to the field's type.
        """
        environ = os.environ if environ is None else environ
        overrides = {}

        for field in dataclasses.fields(cls):
            raw = environ.get(f"{prefix}{field.name.upper()}")
            if raw is None:
                continue
            try:
                if field.name == 'nameservers':
                    overrides[field.name] = tuple(filter(None, (ns.strip() for ns in raw.split(","))))
                elif isinstance(field.default, int) and not isinstance(field.default, bool):
                    overrides[field.name] = int(raw) if field.type is int else float(raw)
                else:
                    overrides[field.name] = raw
            except ValueError as exc:
                raise errors.ConfigurationError(f"Invalid value '{raw}' for '{field.name}'.") from exc

        return cls(**overrides)
