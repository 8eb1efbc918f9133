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
"""
simple_acme_order drives ACME certificate orders to completion using the DNS-01 challenge. An order is started with
`begin_order()`, which returns the DNS TXT records to publish, and completed with `resume_order()`, which waits for the
records to appear on the domain's authoritative nameservers before validating, finalizing and downloading the
certificate. Orders are persisted through a `CertificateStore` so they can be resumed by a later process.
"""
import dataclasses
import logging
from typing import List

import validators

from . import errors
from .authorization import AuthorizationProcessor
from .client import AcmeClient, ACMEv2Client
from .config import OrderConfig
from .crypto import build_csr, select_common_name, strip_wildcard
from .models import AuthorizationStatus, Order, OrderStatus
from .retry import CancellationToken, retry_until
from .store import CertificateStore, FileSystemCertificateStore, MemoryCertificateStore

# Constants and Variables
__pdoc__ = {"tests": False}    # Excludes 'tests' submodule from documentation
__all__ = [
    "ACMEv2Client",
    "AcmeClient",
    "CancellationToken",
    "CertificateStore",
    "DnsValidationRecord",
    "FileSystemCertificateStore",
    "MemoryCertificateStore",
    "OrderConfig",
    "OrderOrchestrator",
    "errors",
]
log = logging.getLogger(__name__)


@dataclasses.dataclass
class DnsValidationRecord:
    """A DNS TXT record that must be published, and every value it must contain, before an order can proceed."""
    domain: str
    values: List[str] = dataclasses.field(default_factory=list)

    def to_dict(self) -> dict:
        """Returns the record as a `{"domain": ..., "values": [...]}` dictionary."""
        return {"domain": self.domain, "values": list(self.values)}


class OrderOrchestrator:
    """
    Creates or resumes an ACME order, drives each of its authorizations to valid, then finalizes the order and
    stores the issued certificate.
    """

    def __init__(
            self,
            acme_client: AcmeClient,
            store: CertificateStore,
            config: OrderConfig = None,
            cancel_token: CancellationToken = None,
            processor: AuthorizationProcessor = None
    ):
        """
        Args:
            acme_client (simple_acme_order.client.AcmeClient): The ACME server operations to use.
            store (simple_acme_order.store.CertificateStore): Persists the account key, order and certificate.
            config (simple_acme_order.config.OrderConfig): Tunables for DNS checks, validation and CSR generation.
            cancel_token (simple_acme_order.retry.CancellationToken): Aborts the order at the next network call or
                retry delay.
            processor (simple_acme_order.authorization.AuthorizationProcessor): Overrides the default processor.

        Examples:
            >>> import simple_acme_order
            >>> orchestrator = simple_acme_order.OrderOrchestrator(
            ...     simple_acme_order.ACMEv2Client(directory=simple_acme_order.config.LETS_ENCRYPT_STAGING_DIRECTORY),
            ...     simple_acme_order.FileSystemCertificateStore("/etc/simple_acme_order"),
            ...     config=simple_acme_order.OrderConfig(dns_check_retry_interval=10)
            ... )
        """
        if acme_client is None:
            raise errors.ConfigurationError("An ACME client is required.")
        if store is None:
            raise errors.ConfigurationError("A certificate store is required.")

        self.acme_client = acme_client
        self.store = store
        self.config = config or OrderConfig()
        self.cancel_token = cancel_token or CancellationToken()
        self.processor = processor or AuthorizationProcessor(acme_client, self.config, self.cancel_token)
        self.account = None
        self.current_order = None

    def authenticate(self, email: str = None):
        """
        Loads the account bound to the stored account key, or registers a new account with `email` and stores its
        key. By registering a new account, you are agreeing to the ACME server's terms of use.

        Args:
            email (str): An email address to register a new ACME account with.

        Returns:
            simple_acme_order.models.Account: The loaded or registered account.

        Raises:
            simple_acme_order.errors.InvalidEmail: When `email` is not a valid email address.
            simple_acme_order.errors.InvalidAccount: When there is no stored account key and no email to register with.
        """
        if email is not None and not validators.email(email):
            raise errors.InvalidEmail(f"Value '{email}' is not a valid email address.")

        account_key = self.store.account_key
        if account_key.strip():
            log.info("Loading account")
            self._checkpoint()
            self.account = self.acme_client.load_account(account_key)
        elif email:
            log.info("Creating new account")
            self._checkpoint()
            self.account, account_key = self.acme_client.register_account(email)
            self._checkpoint()
            log.info("Saving account key")
            self.store.account_key = account_key
        else:
            msg = 'No stored account key found. You must provide an email address to register a new account.'
            raise errors.InvalidAccount(msg)

        return self.account

    def order(self, domains: List[str], allow_wildcard_without_base: bool = False) -> None:
        """
        Runs the full order process, only waiting while the DNS validation records are published. The store holds the
        certificate, its issuer chain and private key when this returns.

        Args:
            domains (list): The domains for the certificate. The first is used as the common name and should not
                be a wildcard. All domains are included in the subject alternative names.
            allow_wildcard_without_base (bool): Allow a wildcard as the first domain.

        Examples:
            >>> orchestrator.order(["example.com", "*.example.com"])
        """
        self._validate_domains(domains, allow_wildcard_without_base)
        self.begin_order(domains, allow_wildcard_without_base)
        self._checkpoint()
        self.resume_order()

    def begin_order(self, domains: List[str], allow_wildcard_without_base: bool = False) -> List[DnsValidationRecord]:
        """
        Loads the stored order for the common name, or places a new one, and collects the DNS TXT records needed to
        validate each pending authorization.

        Args:
            domains (list): The domains for the certificate. The first is used as the common name and should not
                be a wildcard. All domains are included in the subject alternative names.
            allow_wildcard_without_base (bool): Allow a wildcard as the first domain.

        Returns:
            list: A `DnsValidationRecord` for each distinct validation name. A base domain and its wildcard share a
                single record holding both values.

        Raises:
            simple_acme_order.errors.ConfigurationError: When the domains are rejected.
            simple_acme_order.errors.OrderNotFound: When no order could be loaded or created.

        Examples:
            >>> orchestrator.begin_order(["example.com", "*.example.com"])
            [DnsValidationRecord(domain='_acme-challenge.example.com', values=['moY32lk...', 'asldfkj...'])]
        """
        self._validate_domains(domains, allow_wildcard_without_base)

        log.info("Ordering certificate for: %s", ", ".join(domains))
        self._checkpoint()

        # Make sure the store is ready to handle the order
        self.store.init_for_common_name(domains[0])
        self._load_or_create_order(domains)

        if self.current_order is None:
            raise errors.OrderNotFound("Unable to create an order.")

        records = {}
        self._checkpoint()
        for authorization in self.acme_client.list_authorizations(self.current_order):
            self._checkpoint()
            if authorization.status == AuthorizationStatus.VALID:
                continue

            challenge = self.acme_client.get_dns_challenge(authorization)
            txt_value = self.acme_client.derive_txt_value(challenge)
            self._checkpoint()

            record_name = self.processor.validation_record(authorization)
            records.setdefault(record_name, DnsValidationRecord(domain=record_name)).values.append(txt_value)

        log.info("Retrieved %d required DNS validation record(s)", len(records))
        return list(records.values())

    def resume_order(self, common_name: str = None) -> None:
        """
        Completes the stored order. The DNS validation records returned by `begin_order()` must be published.

        Args:
            common_name (str): The common name of the order to resume. Only needed when `begin_order()` was not run
                by this object.

        Raises:
            simple_acme_order.errors.OrderNotFound: When there is no stored order, or it no longer exists or expired.
            simple_acme_order.errors.AuthorizationFailed: When a domain could not be authorized.
            simple_acme_order.errors.UnexpectedOrderStatus: When the order did not become valid.
            simple_acme_order.errors.DownloadError: When the issued certificate could not be downloaded.
        """
        if common_name:
            self.store.init_for_common_name(common_name)
        if not self.store.common_name or not self.store.order_reference.strip():
            raise errors.OrderNotFound("Invalid order reference. Check the certificate store has been initialized.")

        self._checkpoint()
        try:
            self._load_order(self.store.order_reference.strip())
        except errors.OrderExpired as exc:
            self.store.order_reference = ""
            raise errors.OrderNotFound(f"{exc.message} Please begin a new order.") from exc
        self._checkpoint()

        # Process each of the authorizations
        for authorization in self.acme_client.list_authorizations(self.current_order):
            self._checkpoint()
            status = self.processor.process(authorization)
            self._checkpoint()
            if status != AuthorizationStatus.VALID:
                msg = f"Unable to authorize domain {authorization.display_name}"
                log.error(msg)
                raise errors.AuthorizationFailed(msg)

        # Update our order, it should be ready once every authorization is valid
        self._refresh_order()

        if self.current_order.status in (OrderStatus.READY, OrderStatus.PENDING):
            self._finalize_order()
        if self.current_order.status == OrderStatus.PROCESSING:
            self._wait_for_issuance()

        if self.current_order.status != OrderStatus.VALID:
            msg = f"Unexpected order status '{self.current_order.status}'"
            log.error(msg)
            raise errors.UnexpectedOrderStatus(msg)

        self._download_certificate()
        log.info("Order complete")

    def _load_or_create_order(self, domains: List[str]) -> None:
        """Loads the stored order if it can still be used, otherwise creates a new order and stores its reference."""
        self.current_order = None
        reference = self.store.order_reference.strip()

        if reference:
            try:
                self._load_order(reference)
            except (errors.OrderExpired, errors.OrderNotFound) as exc:
                log.info("%s", exc.message)
                self.current_order = None
        self._checkpoint()

        if self.current_order is None:
            log.info("Creating new order")
            self.current_order = self.acme_client.create_order(domains)
            self._checkpoint()
            if self.current_order is not None and self.current_order.reference:
                self.store.order_reference = self.current_order.reference
            else:
                self.current_order = None

    def _load_order(self, reference: str) -> Order:
        log.info("Loading order")
        order = self.acme_client.load_order(reference)

        if order is None:
            raise errors.OrderNotFound(f"Order {reference} not found.")

        # If the order has or is about to expire, it cannot be used anymore
        if order.is_expired(margin=self.config.order_expiry_margin):
            self.current_order = None
            raise errors.OrderExpired(f"Previous order has expired at {order.expires}.")

        self.current_order = order
        return order

    def _refresh_order(self) -> Order:
        self._checkpoint()
        order = self.acme_client.load_order(self.current_order.reference)
        self._checkpoint()
        if order is None:
            raise errors.OrderNotFound(f"Order {self.current_order.reference} not found.")
        self.current_order = order
        return order

    def _finalize_order(self) -> None:
        log.info("Constructing private key and CSR")
        config = self.config
        csr, private_key = build_csr(self.current_order.identifiers, config.distinguished_name, config.key_type)
        self.store.certificate_private_key = private_key.decode()
        log.debug("Certificate common name: %s", select_common_name(self.current_order.identifiers))
        self._checkpoint()

        log.info("Finalizing order")
        try:
            self.current_order = self.acme_client.finalize_order(self.current_order, csr)
            self._checkpoint()
            return
        except errors.FinalizeError as exc:
            log.warning("%s", exc.message)
            if exc.detail:
                log.warning("%s", exc.detail)

        # The server may have advanced the order regardless
        self._refresh_order()

    def _wait_for_issuance(self) -> None:
        """Polls an order in the processing state until the server reaches a verdict."""
        def on_retry(order, attempt, delay):
            log.info("Order status is %s, checking again in %ss (%d/%d)",
                     order.status, delay, attempt, self.config.validation_retry_limit)

        order = retry_until(
            self._refresh_order,
            lambda o: o.status == OrderStatus.PROCESSING,
            attempts=self.config.validation_retry_limit,
            delay=self.config.validation_retry_interval,
            cancel_token=self.cancel_token,
            on_retry=on_retry
        )
        if order is None:
            self._checkpoint()

    def _download_certificate(self) -> None:
        log.info("Downloading certificate")
        self._checkpoint()
        try:
            certificate, issuers = self.acme_client.download_certificate(self.current_order)
        except Exception as exc:
            log.error("Unable to download certificate: %s", exc)
            if isinstance(exc, errors.DownloadError):
                raise
            raise errors.DownloadError(f"Unable to download certificate: {exc}") from exc
        self._checkpoint()

        self.store.certificate = certificate
        self.store.issuer_chain = "".join(issuer if issuer.endswith("\n") else issuer + "\n" for issuer in issuers)
        log.info("Certificate stored ok. This order expires at %s.", self.current_order.expires)

    def _checkpoint(self) -> None:
        """Raises `OrderCancelled` if cancellation has been signaled."""
        if self.cancel_token.cancelled:
            raise errors.OrderCancelled("The order was cancelled.")

    @staticmethod
    def _validate_domains(domains: List[str], allow_wildcard_without_base: bool = False) -> None:
        """
        Checks the domains of an order before any network activity.

        Raises:
            simple_acme_order.errors.ConfigurationError: When no domains are given, a domain is not a valid FQDN,
                or the first domain is a wildcard without `allow_wildcard_without_base`.
        """
        if not domains or isinstance(domains, str):
            raise errors.ConfigurationError("No domains specified.")

        # Ensure each domain within the list is an RFC2181 compliant hostname
        for domain in domains:
            if not isinstance(domain, str) or not validators.domain(strip_wildcard(domain)):
                msg = f"Invalid domain name '{domain}'. Domain name must adhere to RFC2181."
                raise errors.ConfigurationError(msg)

        if domains[0].startswith("*") and not allow_wildcard_without_base:
            msg = ("Do not place an order for a wildcard certificate without using the base domain as the first "
                   "domain, e.g. ['example.com', '*.example.com']")
            raise errors.ConfigurationError(msg)

    @property
    def certificate(self) -> str:
        """The PEM encoded certificate stored for the current common name."""
        return self.store.certificate

    @property
    def issuer_chain(self) -> str:
        """The PEM encoded issuer chain stored for the current common name."""
        return self.store.issuer_chain

    @property
    def private_key(self) -> str:
        """The PEM encoded certificate private key stored for the current common name."""
        return self.store.certificate_private_key
