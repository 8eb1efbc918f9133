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
"""Drives a single authorization from its current state to valid using the DNS-01 challenge."""
import logging

from ..config import OrderConfig
from ..crypto import strip_wildcard
from ..models import Authorization, AuthorizationStatus, ChallengeStatus
from ..retry import CancellationToken, retry_until
from ..tools import AuthoritativeDnsResolver, DnsPropagationVerifier

log = logging.getLogger(__name__)

# Challenge statuses that mean the ACME server has not reached a verdict yet
IN_PROGRESS = (ChallengeStatus.PENDING, ChallengeStatus.PROCESSING)


class AuthorizationProcessor:
    """
    Waits for the DNS-01 validation record of an authorization to propagate, then has the ACME server validate the
    challenge, polling until it reaches a final status.
    """

    def __init__(self, acme_client, config: OrderConfig = None, cancel_token: CancellationToken = None,
                 verifier: DnsPropagationVerifier = None) -> None:
        """
        Args:
            acme_client (simple_acme_order.client.AcmeClient): The ACME server operations to use.
            config (simple_acme_order.config.OrderConfig): Retry limits, intervals and the record prefix.
            cancel_token (simple_acme_order.retry.CancellationToken): Aborts DNS checks and validation polling.
            verifier (simple_acme_order.tools.DnsPropagationVerifier): Overrides the default authoritative verifier.
        """
        self.acme_client = acme_client
        self.config = config or OrderConfig()
        self.cancel_token = cancel_token or CancellationToken()
        self.verifier = verifier or DnsPropagationVerifier(
            AuthoritativeDnsResolver(nameservers=self.config.nameservers, timeout=self.config.dns_timeout),
            retry_limit=self.config.dns_check_retry_limit,
            retry_interval=self.config.dns_check_retry_interval,
            cancel_token=self.cancel_token
        )

    def validation_record(self, authorization: Authorization) -> str:
        """Returns the DNS name that must hold the validation TXT value for an authorization."""
        return f"{self.config.validation_record_prefix}{strip_wildcard(authorization.identifier)}"

    def process(self, authorization: Authorization) -> AuthorizationStatus:
        """
        Drives an authorization to the valid status.

        Args:
            authorization (simple_acme_order.models.Authorization): The authorization as last reported by the server.

        Returns:
            simple_acme_order.models.AuthorizationStatus: `VALID` on success, `INVALID` when the DNS record never
                appeared, validation failed, or the process was cancelled.
        """
        if authorization.status == AuthorizationStatus.VALID:
            log.info("Authorization already passed for %s", authorization.display_name)
            return AuthorizationStatus.VALID

        if self.cancel_token.cancelled:
            return AuthorizationStatus.INVALID

        log.info("Authorizing %s", authorization.display_name)
        challenge = self.acme_client.get_dns_challenge(authorization)
        txt_value = self.acme_client.derive_txt_value(challenge)

        if self.cancel_token.cancelled:
            return AuthorizationStatus.INVALID

        # Never ask the server to validate before the record is visible, a failed challenge cannot be retried
        if not self.verifier.verify(self.validation_record(authorization), txt_value):
            log.warning("DNS validation failed for %s", authorization.display_name)
            return AuthorizationStatus.INVALID

        def validate():
            log.info("Validating challenge...")
            try:
                return self.acme_client.validate_challenge(challenge)
            except Exception as exc:  # pylint: disable=broad-except
                log.warning("Challenge validation attempt for %s failed: %s", authorization.display_name, exc)
                return None

        def on_retry(status, attempt, delay):
            if status is None:
                log.info("Retrying challenge validation in %ss (%d/%d)",
                         delay, attempt, self.config.validation_retry_limit)
            else:
                log.info("Challenge validation returned status %s, retrying in %ss (%d/%d)",
                         status, delay, attempt, self.config.validation_retry_limit)

        status = retry_until(
            validate,
            lambda s: s is None or s in IN_PROGRESS,
            attempts=self.config.validation_retry_limit,
            delay=self.config.validation_retry_interval,
            cancel_token=self.cancel_token,
            on_retry=on_retry
        )

        if status != ChallengeStatus.VALID:
            log.warning("ACME validation failed for %s (status %s)", authorization.display_name, status)
            return AuthorizationStatus.INVALID

        log.info("%s ok", authorization.display_name)
        return AuthorizationStatus.VALID
