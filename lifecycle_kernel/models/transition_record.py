"""
Module: lifecycle_kernel.models.transition_record
Responsibility: ORM persistence for the per-customer transition history.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain/statuses.py only.

Invariants enforced:
    - Append-only: no UPDATE or DELETE (ORM listeners in db/immutability.py).
    - (customer_id, seq) is unique; seq equals the customer's version
      after the write that produced the record, so records order by seq.
    - from_status is NULL only for the CREATED record.

Audit relevance:
    This table IS the customer's audit trail.  Counter reconciliation
    recomputes every aggregate from the TRANSITIONED rows here.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import BigInteger, Enum, ForeignKey, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from lifecycle_kernel.db.base import Base, UUIDString
from lifecycle_kernel.domain.statuses import CustomerStatus, TransitionAction


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


def _status_type():
    return Enum(
        CustomerStatus,
        native_enum=False,
        length=30,
        values_callable=_enum_values,
        validate_strings=True,
    )


class TransitionRecord(Base):
    """
    One immutable entry in a customer's history.

    Contract:
        Written once by AuditTrail.append inside the same transaction as
        the customer row update it describes.

    Non-goals:
        - The record does NOT validate the edge; StateGraph did that
          before the write.
    """

    __tablename__ = "customer_transition_records"

    __table_args__ = (
        UniqueConstraint("customer_id", "seq", name="uq_transition_customer_seq"),
        Index("idx_transition_customer", "customer_id"),
        Index("idx_transition_counted", "action", "to_status", "effective_at"),
    )

    customer_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("customers.id"),
        nullable=False,
    )

    # Position within the customer's history (1 = CREATED)
    seq: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
    )

    action: Mapped[TransitionAction] = mapped_column(
        Enum(
            TransitionAction,
            native_enum=False,
            length=30,
            values_callable=_enum_values,
            validate_strings=True,
        ),
        nullable=False,
    )

    from_status: Mapped[CustomerStatus | None] = mapped_column(
        _status_type(),
        nullable=True,
    )

    to_status: Mapped[CustomerStatus] = mapped_column(
        _status_type(),
        nullable=False,
    )

    reason: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        default="",
    )

    # Wall-clock time of the write, non-decreasing per customer
    occurred_at: Mapped[datetime] = mapped_column(
        nullable=False,
    )

    # Domain time; derives the counter period
    effective_at: Mapped[datetime] = mapped_column(
        nullable=False,
    )

    # Customer category at write time
    category: Mapped[str | None] = mapped_column(
        String(100),
        nullable=True,
    )

    actor_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        nullable=True,
    )

    def __repr__(self) -> str:
        source = self.from_status.value if self.from_status else "-"
        return (
            f"<TransitionRecord {self.customer_id}#{self.seq} "
            f"{self.action.value} {source}->{self.to_status.value}>"
        )
