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
Read-only views of the ACME resources observed by simple_acme_order. Statuses are owned by the ACME server; these
objects only ever hold the most recently observed value and are re-fetched rather than updated locally.
"""
import dataclasses
import datetime
import enum
from typing import Any, List, Optional


class _AcmeStatus(enum.Enum):
    """Base class for the status enumerations, which use the ACME wire names as their values."""

    @classmethod
    def from_acme(cls, value):
        """
        Converts an ACME status into a member of this enumeration.

        Args:
            value: A status string (e.g. `pending`) or any object with a `name` attribute holding one, such as
                `acme.messages.Status`.

        Raises:
            ValueError: When the status is not part of this enumeration.
        """
        if isinstance(value, cls):
            return value
        return cls(getattr(value, 'name', value))

    def __str__(self):
        return self.value


class OrderStatus(_AcmeStatus):
    """The status of an ACME order."""
    PENDING = 'pending'
    READY = 'ready'
    PROCESSING = 'processing'
    VALID = 'valid'
    INVALID = 'invalid'


class AuthorizationStatus(_AcmeStatus):
    """The status of an ACME authorization."""
    PENDING = 'pending'
    VALID = 'valid'
    INVALID = 'invalid'
    EXPIRED = 'expired'
    DEACTIVATED = 'deactivated'
    REVOKED = 'revoked'


class ChallengeStatus(_AcmeStatus):
    """The status of an ACME challenge."""
    PENDING = 'pending'
    PROCESSING = 'processing'
    VALID = 'valid'
    INVALID = 'invalid'


@dataclasses.dataclass
class Account:
    """An ACME account registration."""
    reference: str
    email: Optional[str] = None
    handle: Any = dataclasses.field(default=None, repr=False, compare=False)


@dataclasses.dataclass
class Order:
    """An ACME order as last reported by the server."""
    reference: str
    identifiers: List[str]
    status: OrderStatus
    expires: Optional[datetime.datetime] = None
    handle: Any = dataclasses.field(default=None, repr=False, compare=False)

    def is_expired(self, margin: float = 0, now: datetime.datetime = None) -> bool:
        """
        Checks whether this order has expired or will expire within `margin` seconds.

        Args:
            margin (float): How many seconds before the real expiry the order is already considered expired.
            now (datetime.datetime): The current time. Defaults to the current UTC time.

        Returns:
            bool: True when the order can no longer be resumed.
        """
        if self.expires is None:
            return False

        now = now or datetime.datetime.now(datetime.timezone.utc)
        expires = self.expires
        # Naive timestamps are assumed to be UTC
        if expires.tzinfo is None:
            expires = expires.replace(tzinfo=datetime.timezone.utc)
        return expires <= now + datetime.timedelta(seconds=margin)


@dataclasses.dataclass
class Authorization:
    """An ACME authorization for a single identifier."""
    identifier: str
    status: AuthorizationStatus
    wildcard: bool = False
    handle: Any = dataclasses.field(default=None, repr=False, compare=False)

    @property
    def display_name(self) -> str:
        """The identifier as it was ordered, including the wildcard label if applicable."""
        return f"*.{self.identifier}" if self.wildcard else self.identifier


@dataclasses.dataclass
class Challenge:
    """The DNS-01 challenge of an authorization."""
    token: str
    status: ChallengeStatus
    handle: Any = dataclasses.field(default=None, repr=False, compare=False)
