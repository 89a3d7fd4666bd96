"""
Counter keys and counting rules (``lifecycle_kernel.domain.counters``).

Responsibility
--------------
Value objects that describe WHICH aggregate counters a transition feeds:

* ``CounterKey`` -- (state, period, category) identity of one bucket.
  ``category=None`` is the unscoped "all categories" bucket.
* ``CounterRule`` -- for one counted state: the period granularity, the
  customer attribute that supplies the category, and the customer date
  field that is stamped when the state is reached.
* ``derive_period`` -- timestamp -> period string.

Architecture position
---------------------
**Kernel domain layer** -- pure, zero I/O.  The counter store persists
keys; the lifecycle service applies rules.

Period strings sort lexicographically in time order within one granularity
(``2024-01`` < ``2024-02`` < ``2024-10``), which is what range queries rely
on.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from enum import Enum, unique

from lifecycle_kernel.domain.statuses import CustomerStatus
from lifecycle_kernel.exceptions import InvalidCounterKeyError

# Stored in place of None so the unique constraint covers unscoped buckets
ALL_CATEGORIES = "*"

_PERIOD_PATTERN = re.compile(r"^\d{4}(-(0[1-9]|1[0-2])(-(0[1-9]|[12]\d|3[01]))?)?$")


@unique
class PeriodGranularity(str, Enum):
    """Width of a counter bucket."""

    DAY = "day"
    MONTH = "month"
    YEAR = "year"

    def period_of(self, day: date) -> str:
        """Zero-padded period string; strftime does not pad years below 1000."""
        if self is PeriodGranularity.YEAR:
            return f"{day.year:04d}"
        if self is PeriodGranularity.MONTH:
            return f"{day.year:04d}-{day.month:02d}"
        return f"{day.year:04d}-{day.month:02d}-{day.day:02d}"


def derive_period(
    moment: datetime | date,
    granularity: PeriodGranularity = PeriodGranularity.MONTH,
) -> str:
    """Format a timestamp as a period string.

    Aware datetimes are normalised to UTC first so the same instant always
    lands in the same bucket regardless of the caller's zone.
    """
    if isinstance(moment, datetime):
        if moment.tzinfo is not None:
            moment = moment.astimezone(timezone.utc)
        moment = moment.date()
    return granularity.period_of(moment)


@dataclass(frozen=True)
class CounterKey:
    """Identity of one counter bucket."""

    state: CustomerStatus
    period: str
    category: str | None = None

    def __post_init__(self) -> None:
        if not _PERIOD_PATTERN.match(self.period):
            raise InvalidCounterKeyError(
                self.label, "period must look like YYYY, YYYY-MM or YYYY-MM-DD"
            )
        if self.category is not None and (
            not self.category.strip() or self.category == ALL_CATEGORIES
        ):
            raise InvalidCounterKeyError(self.label, "category must be a non-empty tag")

    @property
    def is_unscoped(self) -> bool:
        return self.category is None

    @property
    def stored_category(self) -> str:
        return ALL_CATEGORIES if self.category is None else self.category

    @property
    def label(self) -> str:
        return f"{self.state.value}/{self.period}/{self.category or ALL_CATEGORIES}"

    @classmethod
    def from_stored(cls, state: CustomerStatus, period: str, category: str) -> "CounterKey":
        return cls(state, period, None if category == ALL_CATEGORIES else category)


@dataclass(frozen=True)
class CounterRule:
    """How arrivals in one counted state are bucketed.

    Attributes:
        state: the counted status.
        granularity: bucket width.
        category_field: customer attribute used as category, or None for
            unscoped-only counting.
        stamp_field: customer date attribute set to the effective date when
            the state is reached (e.g. ``certified_at``), or None.
    """

    state: CustomerStatus
    granularity: PeriodGranularity = PeriodGranularity.MONTH
    category_field: str | None = None
    stamp_field: str | None = None

    def period_for(self, moment: datetime | date) -> str:
        return derive_period(moment, self.granularity)

    def keys_for(self, period: str, category: str | None) -> tuple[CounterKey, ...]:
        """Unscoped key first, then the category key when the rule has one."""
        keys = [CounterKey(self.state, period)]
        if self.category_field is not None and category:
            keys.append(CounterKey(self.state, period, category))
        return tuple(keys)


def validate_period(period: str) -> str:
    """Return ``period`` unchanged, or raise InvalidCounterKeyError."""
    if not isinstance(period, str) or not _PERIOD_PATTERN.match(period):
        raise InvalidCounterKeyError(
            str(period), "period must look like YYYY, YYYY-MM or YYYY-MM-DD"
        )
    return period


def period_bounds(period: str) -> tuple[datetime, datetime]:
    """Half-open UTC interval ``[start, end)`` covered by a period string."""
    validate_period(period)
    parts = [int(p) for p in period.split("-")]
    if len(parts) == 1:
        start = datetime(parts[0], 1, 1, tzinfo=timezone.utc)
        end = datetime(parts[0] + 1, 1, 1, tzinfo=timezone.utc)
    elif len(parts) == 2:
        year, month = parts
        start = datetime(year, month, 1, tzinfo=timezone.utc)
        if month == 12:
            end = datetime(year + 1, 1, 1, tzinfo=timezone.utc)
        else:
            end = datetime(year, month + 1, 1, tzinfo=timezone.utc)
    else:
        start = datetime(parts[0], parts[1], parts[2], tzinfo=timezone.utc)
        end = start + timedelta(days=1)
    return start, end


def period_in_range(period: str, start_period: str, end_period: str) -> bool:
    """True when ``period`` lies wholly inside ``[start_period, end_period]``.

    The bounds and the period may have different granularities: day
    buckets fall inside a month range, while a year bucket that only
    overlaps the range does not.
    """
    window_start, _ = period_bounds(start_period)
    _, window_end = period_bounds(end_period)
    bucket_start, bucket_end = period_bounds(period)
    return window_start <= bucket_start and bucket_end <= window_end


# Certifications per month, overall and per certificate type
DEFAULT_COUNTER_RULES: tuple[CounterRule, ...] = (
    CounterRule(
        state=CustomerStatus.CERTIFIED,
        granularity=PeriodGranularity.MONTH,
        category_field="certificate_type",
        stamp_field="certified_at",
    ),
)
