"""
CounterReconciliationService -- recompute aggregate counters from history.

Responsibility:
    The aggregate counters are a cache of a fact the audit trail already
    holds: how many TRANSITIONED records reached a counted status in each
    period.  This service recomputes that fact offline, compares it with
    the stored buckets, and (optionally) repairs under-counts left behind
    by COUNTER_DEGRADED transitions.

Architecture position:
    Kernel > Services.  Flush-only: the caller commits a repair.

Invariants enforced:
    - Counters never decrease.  Under-counts are repaired by incrementing
      the bucket by the missing amount; over-counts are reported and left
      alone.
    - Soft-deleted customers' history counts: deleting a customer later
      does not un-happen the arrival.

Audit relevance:
    Every drift found is logged as ``counter_drift_detected`` with the
    bucket label, stored count and expected count.
"""

from collections import Counter
from collections.abc import Iterable
from dataclasses import dataclass

from sqlalchemy.orm import Session

from lifecycle_kernel.domain.counters import (
    CounterKey,
    CounterRule,
    PeriodGranularity,
    derive_period,
    period_bounds,
    period_in_range,
    validate_period,
)
from lifecycle_kernel.logging_config import get_logger
from lifecycle_kernel.services.audit_trail import AuditTrail
from lifecycle_kernel.services.counter_store import AggregateCounterStore

logger = get_logger("services.reconciliation")


@dataclass(frozen=True)
class CounterDrift:
    """One bucket whose stored count disagrees with history."""

    key: CounterKey
    stored: int
    expected: int

    @property
    def delta(self) -> int:
        """Positive when the bucket is missing increments."""
        return self.expected - self.stored

    @property
    def is_undercount(self) -> bool:
        return self.delta > 0


@dataclass(frozen=True)
class ReconciliationReport:
    """Outcome of one reconciliation pass."""

    start_period: str
    end_period: str
    checked: int
    drift: tuple[CounterDrift, ...]
    repaired: tuple[CounterKey, ...] = ()

    @property
    def is_clean(self) -> bool:
        return not self.drift

    @property
    def unrepaired(self) -> tuple[CounterDrift, ...]:
        repaired = set(self.repaired)
        return tuple(d for d in self.drift if d.key not in repaired)


class CounterReconciliationService:
    """
    Compares counters with the audit trail.

    Periods are compared as strings; a rule only contributes buckets whose
    period uses its own granularity.
    """

    def __init__(self, session: Session, counter_rules: Iterable[CounterRule]):
        self._session = session
        self._rules = tuple(counter_rules)
        self._audit = AuditTrail(session)
        self._counters = AggregateCounterStore(session)

    def recompute(self, start_period: str, end_period: str) -> dict[CounterKey, int]:
        """Expected count of every non-empty bucket in the period range."""
        validate_period(start_period)
        validate_period(end_period)
        window_start, _ = period_bounds(start_period)
        _, window_end = period_bounds(end_period)

        expected: Counter[CounterKey] = Counter()
        for rule in self._rules:
            for record in self._audit.scan_counted(
                [rule.state], window_start, window_end
            ):
                period = derive_period(record.effective_at, rule.granularity)
                if not period_in_range(period, start_period, end_period):
                    continue
                for key in rule.keys_for(period, record.category):
                    expected[key] += 1
        return dict(expected)

    def reconcile(
        self,
        start_period: str,
        end_period: str,
        repair: bool = False,
    ) -> ReconciliationReport:
        """
        Find buckets that disagree with history; optionally fix under-counts.

        Args:
            start_period: First period, inclusive.
            end_period: Last period, inclusive.
            repair: When True, increment under-counted buckets by the
                missing amount (within the caller's transaction).
        """
        expected = self.recompute(start_period, end_period)
        counted_states = {rule.state for rule in self._rules}
        granularities = {rule.state: rule.granularity for rule in self._rules}

        stored: dict[CounterKey, int] = {}
        for key, count in self._counters.list_by_period_range(start_period, end_period):
            if key.state in counted_states and _matches_granularity(
                key.period, granularities[key.state]
            ):
                stored[key] = count

        drift: list[CounterDrift] = []
        for key in sorted(set(expected) | set(stored), key=lambda k: k.label):
            have = stored.get(key, 0)
            want = expected.get(key, 0)
            if have != want:
                drift.append(CounterDrift(key, have, want))
                logger.warning(
                    "counter_drift_detected",
                    extra={"counter_key": key.label, "stored": have, "expected": want},
                )

        repaired: list[CounterKey] = []
        if repair:
            for item in drift:
                if item.is_undercount:
                    self._counters.increment(item.key, item.delta)
                    repaired.append(item.key)
            if repaired:
                logger.info(
                    "counter_drift_repaired",
                    extra={"counter_keys": [k.label for k in repaired]},
                )

        report = ReconciliationReport(
            start_period=start_period,
            end_period=end_period,
            checked=len(set(expected) | set(stored)),
            drift=tuple(drift),
            repaired=tuple(repaired),
        )
        logger.info(
            "counter_reconciliation_completed",
            extra={
                "start_period": start_period,
                "end_period": end_period,
                "checked": report.checked,
                "drift": len(report.drift),
                "repaired": len(report.repaired),
            },
        )
        return report


def _matches_granularity(period: str, granularity: PeriodGranularity) -> bool:
    return len(period) == {
        PeriodGranularity.YEAR: 4,
        PeriodGranularity.MONTH: 7,
        PeriodGranularity.DAY: 10,
    }[granularity]
