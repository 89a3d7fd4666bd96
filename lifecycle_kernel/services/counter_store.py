"""
AggregateCounterStore -- period-bucketed counters with one mutator.

Responsibility:
    Atomic increment-or-create of a counter bucket, point reads, and
    ordered range reads.  There is no set, reset or decrement API:
    counters only ever grow, and corrections happen by recomputing from
    the audit trail (CounterReconciliationService).

Architecture position:
    Kernel > Services -- imperative shell infrastructure.  Called by
    LifecycleService in a short transaction of its own, after the
    customer's state and history have committed.

Invariants enforced:
    - Exactness under concurrency: an increment is ONE SQL statement that
      inserts the bucket at ``amount`` or adds ``amount`` to the stored
      value, evaluated by the database under its own row lock.  No
      read-modify-write happens in Python, so N concurrent increments of
      the same key always leave ``count == N``.

          PostgreSQL, SQLite  INSERT ... ON CONFLICT DO UPDATE
                              SET count = count + excluded.count
                              RETURNING count
          MySQL / MariaDB     INSERT ... ON DUPLICATE KEY UPDATE, then read
          anything else       locked counter row (SELECT ... FOR UPDATE)
                              with a savepoint-guarded first insert

    - The unscoped bucket is stored with ALL_CATEGORIES so the unique
      constraint on (state, period, category) covers it.

Failure modes:
    - InvalidCounterIncrementError for amount < 1.
    - OperationalError / IntegrityError propagate to the caller, which
      owns the transaction.
"""

from uuid import uuid4

from sqlalchemy import func, select
from sqlalchemy.dialects import mysql, postgresql, sqlite
from sqlalchemy.exc import IntegrityError

from lifecycle_kernel.domain.counters import CounterKey, period_in_range, validate_period
from lifecycle_kernel.domain.statuses import CustomerStatus
from lifecycle_kernel.exceptions import InvalidCounterIncrementError
from lifecycle_kernel.logging_config import get_logger
from lifecycle_kernel.models.counter_bucket import CounterBucket
from lifecycle_kernel.services.base import BaseService

logger = get_logger("services.counter_store")

_ON_CONFLICT_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


class AggregateCounterStore(BaseService[CounterBucket]):
    """
    Keyed counter table.

    Contract:
        ``increment`` executes within the caller's transaction and never
        commits.  Concurrent increments of one key serialize on that key's
        row only; different keys never block each other.

    Usage:
        with session_factory() as session:
            count = AggregateCounterStore(session).increment(key)
            session.commit()
    """

    @property
    def _dialect(self) -> str:
        return self.session.get_bind().dialect.name

    def increment(self, key: CounterKey, amount: int = 1) -> int:
        """
        Atomically add ``amount`` to a bucket, creating it on first use.

        Returns:
            The bucket's count after this increment.
        """
        if isinstance(amount, bool) or not isinstance(amount, int) or amount < 1:
            raise InvalidCounterIncrementError(key.label, amount)

        dialect = self._dialect
        if dialect in _ON_CONFLICT_INSERTS:
            count = self._increment_on_conflict(_ON_CONFLICT_INSERTS[dialect], key, amount)
        elif dialect in ("mysql", "mariadb"):
            count = self._increment_on_duplicate_key(key, amount)
        else:
            count = self._increment_locked_row(key, amount)

        logger.debug(
            "counter_incremented",
            extra={"counter_key": key.label, "amount": amount, "count": count},
        )
        return count

    def _values(self, key: CounterKey, amount: int) -> dict:
        return {
            "id": uuid4(),
            "state": key.state,
            "period": key.period,
            "category": key.stored_category,
            "count": amount,
        }

    def _increment_on_conflict(self, insert, key: CounterKey, amount: int) -> int:
        table = CounterBucket.__table__
        stmt = insert(table).values(**self._values(key, amount))
        stmt = stmt.on_conflict_do_update(
            index_elements=[table.c.state, table.c.period, table.c.category],
            set_={
                "count": table.c.count + stmt.excluded.count,
                "updated_at": func.now(),
            },
        ).returning(table.c.count)
        return self.session.execute(stmt).scalar_one()

    def _increment_on_duplicate_key(self, key: CounterKey, amount: int) -> int:
        table = CounterBucket.__table__
        stmt = mysql.insert(table).values(**self._values(key, amount))
        stmt = stmt.on_duplicate_key_update(
            count=table.c.count + stmt.inserted.count,
            updated_at=func.now(),
        )
        self.session.execute(stmt)
        # Same transaction: the row is still locked by our write
        return self.session.execute(
            select(table.c.count).where(*self._key_filter(key))
        ).scalar_one()

    def _increment_locked_row(self, key: CounterKey, amount: int) -> int:
        bucket = self._lock_bucket(key)

        if bucket is None:
            # First use of the key; another writer may create it at the same
            # time, so guard the insert with a savepoint
            savepoint = self.session.begin_nested()
            try:
                bucket = CounterBucket(
                    state=key.state,
                    period=key.period,
                    category=key.stored_category,
                    count=amount,
                )
                self.session.add(bucket)
                self.session.flush()
                savepoint.commit()
                return amount
            except IntegrityError:
                logger.debug(
                    "counter_create_race_retry",
                    extra={"counter_key": key.label},
                )
                savepoint.rollback()
                bucket = self._lock_bucket(key)
                if bucket is None:
                    raise

        bucket.count = bucket.count + amount
        self.session.flush()
        return bucket.count

    def _lock_bucket(self, key: CounterKey) -> CounterBucket | None:
        return self.session.execute(
            select(CounterBucket)
            .where(*self._key_filter(key))
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    @staticmethod
    def _key_filter(key: CounterKey):
        return (
            CounterBucket.state == key.state,
            CounterBucket.period == key.period,
            CounterBucket.category == key.stored_category,
        )

    def get(self, key: CounterKey) -> int:
        """Current count of a bucket; 0 when it was never incremented."""
        count = self.session.execute(
            select(CounterBucket.count).where(*self._key_filter(key))
        ).scalar_one_or_none()
        return count or 0

    def list_by_period_range(
        self,
        start_period: str,
        end_period: str,
        state: CustomerStatus | None = None,
    ) -> tuple[tuple[CounterKey, int], ...]:
        """
        Every bucket whose period lies wholly inside ``[start_period, end_period]``.

        The range is a span of time, so it may mix granularities: a month
        range returns the day buckets inside it, and a year bucket is
        returned only by a range covering the whole year.  Ordered by
        state, period, then category with the unscoped bucket first.
        """
        validate_period(start_period)
        validate_period(end_period)
        # Every period string starts with its year; narrow by year in SQL
        stmt = select(CounterBucket).where(
            CounterBucket.period >= start_period[:4],
            CounterBucket.period < f"{end_period[:4]}~",
        )
        if state is not None:
            stmt = stmt.where(CounterBucket.state == state)
        buckets = self.session.execute(stmt).scalars().all()
        rows = [
            (bucket.key, bucket.count)
            for bucket in buckets
            if period_in_range(bucket.period, start_period, end_period)
        ]
        rows.sort(
            key=lambda row: (
                row[0].state.value,
                row[0].period,
                not row[0].is_unscoped,
                row[0].category or "",
            )
        )
        return tuple(rows)
