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
"""DNS tools to assist ACME verification."""
import dataclasses
import logging
from typing import List, Optional

import dns.exception
import dns.message
import dns.rdatatype
import dns.resolver

from .. import errors
from ..retry import CancellationToken, retry_until

log = logging.getLogger(__name__)


@dataclasses.dataclass
class TxtQueryResult:
    """The outcome of a single TXT lookup against a set of nameservers."""
    values: List[str] = dataclasses.field(default_factory=list)
    error: Optional[str] = None
    nameservers: List[str] = dataclasses.field(default_factory=list)

    @property
    def has_error(self) -> bool:
        """Whether the lookup failed at the transport or protocol level."""
        return self.error is not None

    def contains(self, value: str) -> bool:
        """Whether `value` is one of the TXT strings returned."""
        return not self.has_error and value in self.values


class AuthoritativeDnsResolver:
    """
    Locates the authoritative nameservers of a record and queries them directly, so that no recursive resolver cache
    can hide a freshly published TXT value.
    """

    def __init__(self, nameservers: list = None, timeout: float = 5) -> None:
        """
        Args:
            nameservers (list): DNS server hosts used to look up the authoritative nameservers. Defaults to the
                system's configured resolvers.
            timeout (float): The amount of time (in seconds) to wait for each DNS request.
        """
        self.nameservers = list(nameservers) if nameservers else None
        self.timeout = timeout
        self._cache = dns.resolver.Cache()

    def find_nameservers(self, record: str) -> List[str]:
        """
        Looks up the addresses of the authoritative nameservers for a record.

        Args:
            record (str): The DNS name being verified (e.g. `_acme-challenge.example.com`). Leading wildcard labels
                are ignored.

        Returns:
            list: The IPv4 addresses of each resolvable authoritative nameserver. Empty if none could be found.

        Raises:
            simple_acme_order.errors.DnsResolutionError: When the NS lookup itself fails.
        """
        resolver = self._caching_resolver()
        domain = record.lstrip("*.")

        try:
            response = self._lookup(resolver, domain, "NS")

            # Names without their own zone reply with the SOA of the enclosing zone in the authority section
            if response is not None and not self._ns_names(response) and response.authority:
                referral = response.authority[0].name.to_text()
                log.debug("No NS records at %s, following referral to %s", domain, referral)
                response = self._lookup(resolver, referral, "NS")
        except dns.exception.DNSException as exc:
            raise errors.DnsResolutionError(f"Unable to look up nameservers for '{domain}': {exc}") from exc

        addresses = []
        for name in self._ns_names(response):
            try:
                answer = resolver.resolve(name, "A")
            except dns.exception.DNSException as exc:
                log.debug("Unable to resolve nameserver %s: %s", name, exc)
                continue
            address = next(iter(answer), None)
            if address is not None and address.address not in addresses:
                addresses.append(address.address)

        log.debug("Authoritative nameservers for %s: %s", domain, addresses)
        return addresses

    def query_txt(self, record: str, nameservers: list) -> TxtQueryResult:
        """
        Queries the TXT values of a record directly against the given nameservers with caching disabled.

        Args:
            record (str): The DNS name to query.
            nameservers (list): The nameserver addresses to send the query to.

        Returns:
            simple_acme_order.tools.TxtQueryResult: Every TXT string found, or the error that prevented the lookup.
        """
        resolver = dns.resolver.Resolver(configure=False)
        resolver.nameservers = list(nameservers)
        resolver.cache = None
        resolver.lifetime = self.timeout
        result = TxtQueryResult(nameservers=list(nameservers))

        try:
            answer = resolver.resolve(record, "TXT")
        except (dns.resolver.NXDOMAIN, dns.resolver.NoAnswer):
            return result
        except dns.exception.DNSException as exc:
            result.error = str(exc) or exc.__class__.__name__
            return result

        # A name may hold several TXT records, e.g. when a base domain and its wildcard are validated together
        for rdata in answer:
            result.values.extend(string.decode("utf-8", errors="replace") for string in rdata.strings)

        return result

    def _caching_resolver(self) -> dns.resolver.Resolver:
        resolver = dns.resolver.Resolver()
        if self.nameservers:
            resolver.nameservers = self.nameservers
        resolver.cache = self._cache
        resolver.lifetime = self.timeout
        return resolver

    @staticmethod
    def _lookup(resolver: dns.resolver.Resolver, name: str, rtype: str) -> Optional[dns.message.Message]:
        """Resolves a query and returns the full response message, including its authority section."""
        try:
            return resolver.resolve(name, rtype, raise_on_no_answer=False).response
        except dns.resolver.NXDOMAIN as exc:
            # The negative response still carries the SOA of the closest enclosing zone
            return next(iter(exc.responses().values()), None)

    @staticmethod
    def _ns_names(response: Optional[dns.message.Message]) -> List[str]:
        if response is None:
            return []
        return [
            rdata.target.to_text()
            for rrset in response.answer if rrset.rdtype == dns.rdatatype.NS
            for rdata in rrset
        ]


class DnsPropagationVerifier:
    """Waits for a TXT value to become visible on the authoritative nameservers of a record."""

    def __init__(
            self,
            resolver: AuthoritativeDnsResolver,
            retry_limit: int = 100,
            retry_interval: float = 30,
            cancel_token: CancellationToken = None
    ) -> None:
        self.resolver = resolver
        self.retry_limit = retry_limit
        self.retry_interval = retry_interval
        self.cancel_token = cancel_token

    def verify(self, record: str, expected_value: str) -> bool:
        """
        Checks the record's TXT values until `expected_value` is found or the retry budget is exhausted.

        Args:
            record (str): The DNS name to check (e.g. `_acme-challenge.example.com`).
            expected_value (str): The TXT value that must be present.

        Returns:
            bool: True only if the value was observed on the authoritative nameservers within the retry budget.

        Examples:
            >>> verifier.verify("_acme-challenge.example.com", "moY32lkdsZ3VWHM1mdM...")
            True
        """
        try:
            nameservers = self.resolver.find_nameservers(record)
        except errors.DnsResolutionError as exc:
            log.warning("%s", exc.message)
            return False

        if not nameservers:
            log.warning("No authoritative nameservers could be resolved for %s", record)
            return False

        def check():
            log.info("Checking for TXT record and value at %s", record)
            return self.resolver.query_txt(record, nameservers)

        def on_retry(result, attempt, delay):
            log.info("Add a DNS TXT record %s which includes a value of %s", record, expected_value)
            if result.has_error:
                log.info("Retrying due to DNS query error: %s (%d/%d, next check in %ss)",
                         result.error, attempt, self.retry_limit, delay)
            else:
                log.info("Retrying due to value not found in TXT record %s (%d/%d, next check in %ss)",
                         result.values, attempt, self.retry_limit, delay)

        result = retry_until(
            check,
            lambda r: not r.contains(expected_value),
            attempts=self.retry_limit,
            delay=self.retry_interval,
            cancel_token=self.cancel_token,
            on_retry=on_retry
        )

        if result is None:
            log.info("DNS check for %s cancelled", record)
            return False

        return result.contains(expected_value)
