"""
Module: lifecycle_kernel.models.counter_bucket
Responsibility: ORM persistence for period-bucketed aggregate counters.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain/ only.

Invariants enforced:
    - (state, period, category) is unique.  The unscoped bucket stores
      ALL_CATEGORIES instead of NULL so the constraint covers it.
    - count only grows; rows are never deleted (db/immutability.py).
    - Increments go through one atomic SQL statement in
      AggregateCounterStore, never through read-modify-write on this
      mapped object.
"""

from datetime import datetime

from sqlalchemy import BigInteger, Enum, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from lifecycle_kernel.db.base import Base
from lifecycle_kernel.domain.counters import ALL_CATEGORIES, CounterKey
from lifecycle_kernel.domain.statuses import CustomerStatus


class CounterBucket(Base):
    """One aggregate counter: arrivals in ``state`` during ``period``."""

    __tablename__ = "lifecycle_counter_buckets"

    __table_args__ = (
        UniqueConstraint("state", "period", "category", name="uq_counter_bucket_key"),
    )

    state: Mapped[CustomerStatus] = mapped_column(
        Enum(
            CustomerStatus,
            native_enum=False,
            length=30,
            values_callable=lambda enum_cls: [member.value for member in enum_cls],
            validate_strings=True,
        ),
        nullable=False,
    )

    # YYYY, YYYY-MM or YYYY-MM-DD
    period: Mapped[str] = mapped_column(
        String(10),
        nullable=False,
    )

    category: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        default=ALL_CATEGORIES,
    )

    count: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        default=0,
    )

    created_at: Mapped[datetime] = mapped_column(
        server_default=func.now(),
        nullable=False,
    )

    updated_at: Mapped[datetime] = mapped_column(
        server_default=func.now(),
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<CounterBucket {self.key.label}={self.count}>"

    @property
    def key(self) -> CounterKey:
        return CounterKey.from_stored(self.state, self.period, self.category)
