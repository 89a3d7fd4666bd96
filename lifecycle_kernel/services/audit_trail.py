"""
AuditTrail -- append-only, per-customer ordered history of status changes.

Responsibility:
    Writes one TransitionRecord per accepted state-affecting write and
    reads a customer's history back in order.  Also verifies that a
    history is contiguous and scans the counted records that counter
    reconciliation recomputes aggregates from.

Architecture position:
    Kernel > Services.  Called by LifecycleService inside the same
    transaction as the customer row update; by CounterReconciliationService
    for read-only scans.

Invariants enforced:
    - Append-only: records are never updated or deleted (ORM listeners).
    - Ordering: records are ordered by ``seq``, which the caller sets to
      the customer's version after the write.  (customer_id, seq) is
      unique, so two writers can never both claim the same position.
    - Contiguity: ``record[n].from_status == record[n-1].to_status``.
      append() does NOT check it; verify_contiguity() does.

Failure modes:
    - IntegrityError on flush if ``seq`` is already taken for the customer.
    - AuditTrailBrokenError from verify_contiguity() on a broken chain.

Audit relevance:
    This IS the customer's audit trail.  History reads are restartable:
    every call issues a fresh query and returns an immutable tuple.
"""

from collections.abc import Iterable
from datetime import datetime
from uuid import UUID

from sqlalchemy import select

from lifecycle_kernel.domain.dtos import TransitionRecordInfo
from lifecycle_kernel.domain.statuses import CustomerStatus, TransitionAction
from lifecycle_kernel.exceptions import AuditTrailBrokenError
from lifecycle_kernel.logging_config import get_logger
from lifecycle_kernel.models.transition_record import TransitionRecord
from lifecycle_kernel.services.base import BaseService

logger = get_logger("services.audit_trail")


def record_to_info(record: TransitionRecord) -> TransitionRecordInfo:
    return TransitionRecordInfo(
        id=record.id,
        customer_id=record.customer_id,
        seq=record.seq,
        action=record.action,
        from_status=record.from_status,
        to_status=record.to_status,
        reason=record.reason,
        occurred_at=record.occurred_at,
        effective_at=record.effective_at,
        category=record.category,
        actor_id=record.actor_id,
    )


class AuditTrail(BaseService[TransitionRecord]):
    """
    Per-customer history log.

    Contract:
        ``append`` flushes within the caller's transaction and never
        commits, so the record becomes visible exactly when the customer
        row change it describes does.

    Non-goals:
        - Does NOT validate transitions; StateGraph did that already.
        - Does NOT allocate ``seq``; the caller passes the customer's
          post-write version.
    """

    def append(
        self,
        customer_id: UUID,
        from_status: CustomerStatus | None,
        to_status: CustomerStatus,
        reason: str,
        occurred_at: datetime,
        *,
        seq: int,
        action: TransitionAction = TransitionAction.TRANSITIONED,
        effective_at: datetime | None = None,
        category: str | None = None,
        actor_id: UUID | None = None,
    ) -> TransitionRecord:
        """
        Append one record to a customer's history.

        Args:
            customer_id: Customer the record belongs to.
            from_status: Status before the write (None only for CREATED).
            to_status: Status after the write.
            reason: Free text, may be empty.
            occurred_at: Wall-clock time of the write.
            seq: Position in the customer's history.
            action: Kind of record.
            effective_at: Domain time; defaults to ``occurred_at``.
            category: Customer category at write time.
            actor_id: Who requested the write, if known.

        Returns:
            The flushed TransitionRecord.
        """
        record = TransitionRecord(
            customer_id=customer_id,
            seq=seq,
            action=action,
            from_status=from_status,
            to_status=to_status,
            reason=reason or "",
            occurred_at=occurred_at,
            effective_at=effective_at or occurred_at,
            category=category,
            actor_id=actor_id,
        )
        self.session.add(record)
        self.session.flush()

        logger.debug(
            "history_record_appended",
            extra={
                "customer_id": str(customer_id),
                "seq": seq,
                "action": action.value,
                "from_status": from_status.value if from_status else None,
                "to_status": to_status.value,
            },
        )
        return record

    def history_oldest_first(self, customer_id: UUID) -> tuple[TransitionRecordInfo, ...]:
        rows = self.session.execute(
            select(TransitionRecord)
            .where(TransitionRecord.customer_id == customer_id)
            .order_by(TransitionRecord.seq.asc())
        ).scalars()
        return tuple(record_to_info(r) for r in rows)

    def history(self, customer_id: UUID) -> tuple[TransitionRecordInfo, ...]:
        """A customer's records, most recent first."""
        return tuple(reversed(self.history_oldest_first(customer_id)))

    def latest(self, customer_id: UUID) -> TransitionRecordInfo | None:
        record = self.session.execute(
            select(TransitionRecord)
            .where(TransitionRecord.customer_id == customer_id)
            .order_by(TransitionRecord.seq.desc())
            .limit(1)
        ).scalar_one_or_none()
        return record_to_info(record) if record is not None else None

    def verify_contiguity(self, customer_id: UUID) -> int:
        """
        Walk a customer's history oldest-first and check every link.

        Returns:
            Number of records checked.

        Raises:
            AuditTrailBrokenError: at the first record whose from_status
                does not match its predecessor's to_status, or when the
                first record does not start from nothing.
        """
        records = self.history_oldest_first(customer_id)
        expected: CustomerStatus | None = None
        for record in records:
            if record.from_status != expected:
                logger.error(
                    "history_contiguity_broken",
                    extra={"customer_id": str(customer_id), "seq": record.seq},
                )
                raise AuditTrailBrokenError(
                    str(customer_id),
                    record.seq,
                    expected.value if expected else None,
                    record.from_status.value if record.from_status else None,
                )
            expected = record.to_status
        return len(records)

    def scan_counted(
        self,
        states: Iterable[CustomerStatus],
        effective_from: datetime,
        effective_to: datetime,
    ) -> Iterable[TransitionRecordInfo]:
        """
        TRANSITIONED records into ``states`` with
        ``effective_from <= effective_at < effective_to``.

        Includes the history of soft-deleted customers: a later soft delete
        does not undo an arrival that was counted.
        """
        state_list = list(states)
        if not state_list:
            return ()
        rows = self.session.execute(
            select(TransitionRecord)
            .where(TransitionRecord.action == TransitionAction.TRANSITIONED)
            .where(TransitionRecord.to_status.in_(state_list))
            .where(TransitionRecord.effective_at >= effective_from)
            .where(TransitionRecord.effective_at < effective_to)
            .order_by(TransitionRecord.effective_at, TransitionRecord.id)
        ).scalars()
        return tuple(record_to_info(r) for r in rows)
