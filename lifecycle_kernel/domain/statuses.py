"""
Status and action enumerations (``lifecycle_kernel.domain.statuses``).

Responsibility
--------------
The closed sets of values the lifecycle engine works with: the customer
statuses a customer can occupy, the customer types that classify them, and
the kinds of records the audit trail holds.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports from
``db/``, ``services/``, or outer layers.

States are data, not a type hierarchy: no status carries behaviour of its
own.  Which moves are legal lives entirely in ``StateGraph``.
"""

from __future__ import annotations

from enum import Enum, unique

from lifecycle_kernel.exceptions import UnknownStatusError


@unique
class CustomerStatus(str, Enum):
    """Statuses a customer moves through during certification.

    NEW is the initial status.  The default graph lets every status reach
    every other non-NEW status and never lets a customer return to NEW.
    CERTIFIED_ELSEWHERE is recognised but not routed by the default graph.
    """

    NEW = "NEW"
    NOTIFIED = "NOTIFIED"
    ABORTED = "ABORTED"
    SUBMITTED = "SUBMITTED"
    CERTIFIED = "CERTIFIED"
    CERTIFIED_ELSEWHERE = "CERTIFIED_ELSEWHERE"

    @property
    def display_name(self) -> str:
        return _DISPLAY_NAMES[self]

    @classmethod
    def parse(cls, value: "str | CustomerStatus") -> "CustomerStatus":
        """Resolve a member from its value, its name, or its display name.

        Raises:
            UnknownStatusError: if nothing matches.
        """
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            text = value.strip()
            for status in cls:
                if text in (status.value, status.display_name):
                    return status
            upper = text.upper().replace(" ", "_")
            if upper in cls.__members__:
                return cls[upper]
        raise UnknownStatusError(str(value))

    def __str__(self) -> str:
        return self.display_name


_DISPLAY_NAMES: dict[CustomerStatus, str] = {
    CustomerStatus.NEW: "New",
    CustomerStatus.NOTIFIED: "Notified",
    CustomerStatus.ABORTED: "Aborted",
    CustomerStatus.SUBMITTED: "Submitted",
    CustomerStatus.CERTIFIED: "Certified",
    CustomerStatus.CERTIFIED_ELSEWHERE: "Certified Elsewhere",
}


@unique
class CustomerType(str, Enum):
    """New registrations versus renewing customers under review."""

    NEW_CUSTOMER = "NEW_CUSTOMER"
    RENEW_CUSTOMER = "RENEW_CUSTOMER"


@unique
class TransitionAction(str, Enum):
    """Kinds of records in a customer's history.

    Only TRANSITIONED records move a customer between statuses and feed the
    aggregate counters.  The others are lifecycle markers whose from_status
    and to_status are equal (or from_status is None for CREATED), so the
    history stays contiguous.
    """

    CREATED = "created"
    TRANSITIONED = "transitioned"
    SOFT_DELETED = "soft_deleted"
    RESTORED = "restored"


# Category used when a customer has no certificate type on record
DEFAULT_CATEGORY = "OTHERS"
