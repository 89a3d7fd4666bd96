"""
Module: lifecycle_kernel.models.customer
Responsibility: ORM persistence for the customer current-state record.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain/statuses.py only.

Invariants enforced:
    - current_status is written only by LifecycleService; every accepted
      write also appends exactly one TransitionRecord.
    - version is the optimistic concurrency counter (``version_id_col``):
      SQLAlchemy adds ``WHERE version = :old`` to every UPDATE and raises
      StaleDataError when another transaction got there first.
    - Soft delete: deleted_at marks the row; the row and its history are
      never physically removed.

Failure modes:
    - StaleDataError on flush when the version check fails (translated to
      OptimisticLockError by CustomerStore).
"""

from datetime import date, datetime

from sqlalchemy import Date, Enum, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from lifecycle_kernel.db.base import TrackedBase
from lifecycle_kernel.domain.statuses import DEFAULT_CATEGORY, CustomerStatus, CustomerType


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


class Customer(TrackedBase):
    """
    A customer tracked through the certification lifecycle.

    Contract:
        The row holds current state only.  Everything that happened to it
        lives in ``customer_transition_records``.

    Guarantees:
        - version starts at 1 on INSERT and grows by exactly 1 per UPDATE.
        - certificate_type is never empty (defaults to OTHERS).
    """

    __tablename__ = "customers"

    __table_args__ = (
        Index("idx_customer_status", "current_status"),
        Index("idx_customer_deleted", "deleted_at"),
    )

    name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )

    # Category tag; feeds the category-scoped counters
    certificate_type: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        default=DEFAULT_CATEGORY,
    )

    customer_type: Mapped[CustomerType] = mapped_column(
        Enum(
            CustomerType,
            native_enum=False,
            length=30,
            values_callable=_enum_values,
            validate_strings=True,
        ),
        nullable=False,
        default=CustomerType.NEW_CUSTOMER,
    )

    current_status: Mapped[CustomerStatus] = mapped_column(
        Enum(
            CustomerStatus,
            native_enum=False,
            length=30,
            values_callable=_enum_values,
            validate_strings=True,
        ),
        nullable=False,
    )

    # occurred_at of the latest history record; clamps the next one
    status_changed_at: Mapped[datetime] = mapped_column(
        nullable=False,
    )

    # Effective date of the latest arrival in CERTIFIED
    certified_at: Mapped[date | None] = mapped_column(
        Date,
        nullable=True,
    )

    deleted_at: Mapped[datetime | None] = mapped_column(
        nullable=True,
    )

    version: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
    )

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return f"<Customer {self.name} [{self.current_status.value}] v{self.version}>"

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None
