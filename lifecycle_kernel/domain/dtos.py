"""
Data transfer objects returned by the lifecycle services.

Responsibility:
    Immutable, session-independent snapshots of customers and history
    records, plus the result of a transition.  Services convert ORM rows
    into these before their session closes, so callers never touch a
    detached ORM instance.

Architecture position:
    Kernel > Domain -- pure value objects, zero I/O.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from uuid import UUID

from lifecycle_kernel.domain.counters import CounterKey
from lifecycle_kernel.domain.statuses import CustomerStatus, CustomerType, TransitionAction
from lifecycle_kernel.exceptions import CounterDegradedError


@dataclass(frozen=True)
class CustomerInfo:
    """Snapshot of a customer's current-state record."""

    id: UUID
    name: str
    certificate_type: str
    customer_type: CustomerType
    current_status: CustomerStatus
    version: int
    status_changed_at: datetime
    certified_at: date | None = None
    deleted_at: datetime | None = None

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None


@dataclass(frozen=True)
class TransitionRecordInfo:
    """Snapshot of one history record."""

    id: UUID
    customer_id: UUID
    seq: int
    action: TransitionAction
    from_status: CustomerStatus | None
    to_status: CustomerStatus
    reason: str
    occurred_at: datetime
    effective_at: datetime
    category: str | None = None
    actor_id: UUID | None = None

    @property
    def is_transition(self) -> bool:
        return self.action == TransitionAction.TRANSITIONED


class TransitionStatus(str, Enum):
    """Outcome of a transition call that did not raise."""

    TRANSITIONED = "transitioned"
    NO_OP = "no_op"
    COUNTER_DEGRADED = "counter_degraded"


@dataclass(frozen=True)
class TransitionResult:
    """Result of ``LifecycleService.transition``.

    ``record`` is None only for NO_OP.  ``counter_keys`` lists the buckets
    that were incremented (TRANSITIONED) or should have been
    (COUNTER_DEGRADED).
    """

    status: TransitionStatus
    customer: CustomerInfo
    record: TransitionRecordInfo | None = None
    counter_keys: tuple[CounterKey, ...] = ()
    counter_error: CounterDegradedError | None = None

    @property
    def changed(self) -> bool:
        return self.status != TransitionStatus.NO_OP

    @property
    def is_degraded(self) -> bool:
        return self.status == TransitionStatus.COUNTER_DEGRADED
