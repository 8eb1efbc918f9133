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
The ACME protocol operations needed to drive a DNS-01 order. `AcmeClient` describes the capability consumed by the
order orchestrator; `ACMEv2Client` implements it on top of the `acme` library.
"""
import abc
import logging
import re
from typing import List, Optional, Tuple

import josepy as jose
from acme import challenges
from acme import client
from acme import errors as acme_errors
from acme import messages
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.serialization import Encoding, PrivateFormat, NoEncryption

from .. import errors
from ..config import LETS_ENCRYPT_DIRECTORY, OrderConfig
from ..models import (
    Account, Authorization, AuthorizationStatus, Challenge, ChallengeStatus, Order, OrderStatus
)

log = logging.getLogger(__name__)

USER_AGENT = 'simple_acme_order/1.0.0'
PEM_CERTIFICATE = re.compile(r"-----BEGIN CERTIFICATE-----.+?-----END CERTIFICATE-----\s*", re.DOTALL)


def split_pem_chain(fullchain_pem: str) -> Tuple[str, List[str]]:
    """
    Splits a PEM encoded chain into the leaf certificate and its issuers.

    Args:
        fullchain_pem (str): The concatenated PEM certificates, leaf first.

    Returns:
        tuple: The leaf certificate and a list of issuer certificates, each with a trailing newline.

    Raises:
        simple_acme_order.errors.DownloadError: When the chain holds no certificate.
    """
    certs = [match.group(0).strip() + "\n" for match in PEM_CERTIFICATE.finditer(fullchain_pem or "")]
    if not certs:
        raise errors.DownloadError("No PEM certificate found in the downloaded chain.")
    return certs[0], certs[1:]


class AcmeClient(abc.ABC):
    """The ACME server operations consumed by `simple_acme_order.OrderOrchestrator`."""

    @abc.abstractmethod
    def load_account(self, key: str) -> Account:
        """Looks up the existing account for a PEM encoded account key."""

    @abc.abstractmethod
    def register_account(self, email: str = None) -> Tuple[Account, str]:
        """Registers a new account, returning it with its PEM encoded account key."""

    @abc.abstractmethod
    def create_order(self, domains: List[str]) -> Order:
        """Places a new order for the given domain identifiers."""

    @abc.abstractmethod
    def load_order(self, reference: str) -> Optional[Order]:
        """Fetches the current state of an order, or None if the server does not know it."""

    @abc.abstractmethod
    def list_authorizations(self, order: Order) -> List[Authorization]:
        """Fetches the current state of every authorization of an order."""

    @abc.abstractmethod
    def get_dns_challenge(self, authorization: Authorization) -> Challenge:
        """Returns the DNS-01 challenge of an authorization."""

    @abc.abstractmethod
    def derive_txt_value(self, challenge: Challenge) -> str:
        """Returns the TXT value that proves control of the domain for a DNS-01 challenge."""

    @abc.abstractmethod
    def validate_challenge(self, challenge: Challenge) -> ChallengeStatus:
        """Asks the server to validate a challenge once and returns the reported status."""

    @abc.abstractmethod
    def finalize_order(self, order: Order, csr: bytes) -> Order:
        """Submits the CSR for a ready order without waiting for issuance and returns the resulting order state."""

    @abc.abstractmethod
    def download_certificate(self, order: Order) -> Tuple[str, List[str]]:
        """Downloads the certificate of a valid order as the PEM certificate and a list of PEM issuers."""


class ACMEv2Client(AcmeClient):
    """
    An `AcmeClient` for ACME v2 servers such as Let's Encrypt, backed by `acme.client.ClientV2`.
    """

    def __init__(
            self,
            directory: str = LETS_ENCRYPT_DIRECTORY,
            verify_ssl: bool = True,
            user_agent: str = USER_AGENT
    ):
        """
        Args:
            directory (str): The ACME directory URL to interact with.
            verify_ssl (bool): Verify the SSL certificate of the ACME server when making requests.
            user_agent (str): The user agent sent with each request.

        Examples:
            >>> acme_client = ACMEv2Client(directory="https://acme-staging-v02.api.letsencrypt.org/directory")
        """
        self.directory = directory
        self.verify_ssl = verify_ssl
        self.user_agent = user_agent
        self.account_key = None
        self.account = None
        self.net = None
        self.directory_obj = None
        self._acme_client = None

    @classmethod
    def from_config(cls, config: OrderConfig, **kwargs) -> 'ACMEv2Client':
        """
        Creates a client for the ACME directory of an order configuration.

        Examples:
            >>> acme_client = ACMEv2Client.from_config(OrderConfig.from_env(), verify_ssl=False)
        """
        return cls(directory=config.directory, **kwargs)

    def _connect(self, account_key: jose.JWKRSA) -> None:
        """Initializes the network and ACME client objects for an account key."""
        self.account_key = account_key
        self.net = client.ClientNetwork(account_key, user_agent=self.user_agent, verify_ssl=self.verify_ssl)
        self.directory_obj = messages.Directory.from_json(self.net.get(self.directory).json())
        self._acme_client = client.ClientV2(self.directory_obj, net=self.net)

    @property
    def acme_client(self) -> client.ClientV2:
        """
        Getter for the `acme_client` property. This checks that the ACME client is set up whenever it's referenced.

        Raises:
            simple_acme_order.errors.InvalidAccount: When no account registration is configured for this object.
        """
        if not isinstance(self._acme_client, client.ClientV2):
            msg = 'No account registration found. You must register a new account or load an existing account first.'
            raise errors.InvalidAccount(msg)

        return self._acme_client

    def load_account(self, key: str) -> Account:
        account_key = jose.JWKRSA.load(key.encode())
        self._connect(account_key)

        # Ask the server for the registration bound to this key without creating a new one
        try:
            registration = messages.NewRegistration(key=account_key.public_key(), only_return_existing=True)
            regr = self.acme_client.new_account(registration)
        except acme_errors.ConflictError as exc:
            regr = self.acme_client.query_registration(
                messages.RegistrationResource(uri=exc.location, body=messages.Registration())
            )
        except messages.Error as exc:
            raise errors.InvalidAccount(f"No account found for the stored account key: {exc}") from exc

        self.account = regr
        contact = next((c for c in (regr.body.contact or ()) if c.startswith('mailto:')), None)
        return Account(reference=regr.uri, email=contact.replace('mailto:', '') if contact else None, handle=regr)

    def register_account(self, email: str = None) -> Tuple[Account, str]:
        # Generate a new RSA2048 account key
        rsa_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
        self._connect(jose.JWKRSA(key=rsa_key))

        # Complete registration
        registration = messages.NewRegistration.from_data(email=email, terms_of_service_agreed=True)
        self.account = self.acme_client.new_account(registration)

        key_pem = rsa_key.private_bytes(
            encoding=Encoding.PEM,
            format=PrivateFormat.TraditionalOpenSSL,
            encryption_algorithm=NoEncryption()
        ).decode()
        return Account(reference=self.account.uri, email=email, handle=self.account), key_pem

    def _post(self, url: str, obj: jose.JSONDeSerializable = None):
        """Sends a signed request. A missing `obj` makes this a POST-as-GET request."""
        return self.acme_client.net.post(url, obj, new_nonce_url=self.directory_obj['newNonce'])

    def create_order(self, domains: List[str]) -> Order:
        identifiers = [messages.Identifier(typ=messages.IDENTIFIER_FQDN, value=domain) for domain in domains]
        response = self._post(self.directory_obj['newOrder'], messages.NewOrder(identifiers=identifiers))
        body = messages.Order.from_json(response.json())
        return self._to_order(messages.OrderResource(body=body, uri=response.headers.get('Location')))

    def load_order(self, reference: str) -> Optional[Order]:
        try:
            response = self._post(reference)
        except messages.Error as exc:
            log.warning("Unable to load order %s: %s", reference, exc)
            return None

        body = messages.Order.from_json(response.json())
        return self._to_order(messages.OrderResource(body=body, uri=reference))

    def list_authorizations(self, order: Order) -> List[Authorization]:
        authorizations = []
        for url in order.handle.body.authorizations:
            body = messages.Authorization.from_json(self._post(url).json())
            authzr = messages.AuthorizationResource(body=body, uri=url)
            authorizations.append(Authorization(
                identifier=body.identifier.value,
                status=AuthorizationStatus.from_acme(body.status),
                wildcard=bool(body.wildcard),
                handle=authzr
            ))
        return authorizations

    def get_dns_challenge(self, authorization: Authorization) -> Challenge:
        # Only the DNS-01 challenge is supported
        for challb in authorization.handle.body.challenges:
            if isinstance(challb.chall, challenges.DNS01):
                return Challenge(
                    token=challb.chall.encode('token'),
                    status=ChallengeStatus.from_acme(challb.status),
                    handle=challb
                )

        msg = f"ACME server at '{self.directory}' does not offer a DNS-01 challenge for '{authorization.identifier}'."
        raise errors.ChallengeUnavailable(msg)

    def derive_txt_value(self, challenge: Challenge) -> str:
        if self.account_key is None:
            raise errors.InvalidAccount('An account key is required to derive DNS-01 validation values.')
        return challenge.handle.chall.validation(self.account_key)

    def validate_challenge(self, challenge: Challenge) -> ChallengeStatus:
        challb = challenge.handle
        challr = self.acme_client.answer_challenge(challb, challb.chall.response(self.account_key))
        return ChallengeStatus.from_acme(challr.body.status)

    def finalize_order(self, order: Order, csr: bytes) -> Order:
        orderr = order.handle.update(csr_pem=csr)

        # Only submit the CSR, an order left processing is polled by the caller so it can be cancelled
        try:
            orderr = self.acme_client.begin_finalization(orderr)
        except messages.Error as exc:
            raise errors.FinalizeError(f"Unable to finalize order {order.reference}", detail=exc.detail) from exc
        except acme_errors.Error as exc:
            detail = exc.error.detail if isinstance(exc, acme_errors.IssuanceError) and exc.error else None
            raise errors.FinalizeError(f"Unable to finalize order {order.reference}: {exc}", detail) from exc

        return self._to_order(orderr)

    def download_certificate(self, order: Order) -> Tuple[str, List[str]]:
        orderr = order.handle
        fullchain_pem = orderr.fullchain_pem

        # Orders finalized by an earlier process only carry the certificate URL
        if not fullchain_pem:
            if orderr.body.certificate is None:
                raise errors.DownloadError(f"Order {order.reference} has no certificate to download.")
            fullchain_pem = self._post(orderr.body.certificate).text

        return split_pem_chain(fullchain_pem)

    @staticmethod
    def _to_order(orderr: messages.OrderResource) -> Order:
        body = orderr.body
        return Order(
            reference=orderr.uri,
            identifiers=[identifier.value for identifier in body.identifiers],
            status=OrderStatus.from_acme(body.status),
            expires=body.expires,
            handle=orderr
        )
