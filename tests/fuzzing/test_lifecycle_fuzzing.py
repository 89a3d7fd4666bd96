"""
Hypothesis-based fuzzing of the lifecycle rules.

Property-based tests that generate status walks, timestamps and counter
keys and check that the invariants hold for every generated input.

Boundaries fuzzed here:
- Status walks: arbitrary request sequences against the default graph.
- Period derivation: arbitrary aware datetimes in arbitrary offsets.
- End to end: random request sequences through LifecycleService keep
  history contiguous and counters equal to CERTIFIED arrivals.
"""

from datetime import datetime, timedelta, timezone

import pytest
from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from lifecycle_kernel.domain.counters import (
    CounterKey,
    PeriodGranularity,
    derive_period,
    period_bounds,
)
from lifecycle_kernel.domain.dtos import TransitionStatus
from lifecycle_kernel.domain.state_graph import DEFAULT_CUSTOMER_GRAPH
from lifecycle_kernel.domain.statuses import CustomerStatus, TransitionAction
from lifecycle_kernel.exceptions import InvalidTransitionError
from lifecycle_kernel.services.audit_trail import AuditTrail
from lifecycle_kernel.services.counter_store import AggregateCounterStore

S = CustomerStatus

statuses = st.sampled_from(list(CustomerStatus))

aware_datetimes = st.builds(
    lambda naive, minutes: naive.replace(tzinfo=timezone(timedelta(minutes=minutes))),
    st.datetimes(min_value=datetime(2, 1, 1), max_value=datetime(9997, 12, 31)),
    st.integers(min_value=-14 * 60, max_value=14 * 60),
)


class TestGraphWalks:
    @given(requests=st.lists(statuses, max_size=40))
    def test_walk_never_returns_to_new(self, requests):
        graph = DEFAULT_CUSTOMER_GRAPH
        current = graph.initial_state
        path = [current]
        for target in requests:
            if graph.is_valid_transition(current, target):
                current = target
                path.append(current)

        assert S.NEW not in path[1:]
        assert all(a != b for a, b in zip(path, path[1:]))
        assert all(graph.is_valid_transition(a, b) for a, b in zip(path, path[1:]))

    @given(source=statuses, target=statuses)
    def test_explain_agrees_with_validity(self, source, target):
        graph = DEFAULT_CUSTOMER_GRAPH
        explanation = graph.explain(source, target)
        assert explanation
        assert explanation.endswith("is allowed") == graph.is_valid_transition(source, target)


class TestPeriodFuzzing:
    @given(moment=aware_datetimes, granularity=st.sampled_from(list(PeriodGranularity)))
    def test_period_contains_its_moment(self, moment, granularity):
        period = derive_period(moment, granularity)
        start, end = period_bounds(period)
        assert start <= moment < end

    @given(moment=aware_datetimes)
    def test_month_period_is_utc_month(self, moment):
        utc = moment.astimezone(timezone.utc)
        assert derive_period(moment) == f"{utc.year:04d}-{utc.month:02d}"


@pytest.mark.slow_locks
class TestServiceFuzzing:
    @settings(
        max_examples=25,
        deadline=None,
        suppress_health_check=[HealthCheck.function_scoped_fixture, HealthCheck.too_slow],
    )
    @given(requests=st.lists(statuses, min_size=1, max_size=12))
    def test_history_and_counters_track_requests(
        self, lifecycle_service, session_factory, requests
    ):
        key = CounterKey(S.CERTIFIED, "2024-03")
        with session_factory() as s:
            before = AggregateCounterStore(s).get(key)

        customer = lifecycle_service.create_customer("Fuzzed Ltd", certificate_type="ISO9001")
        arrivals = 0
        accepted = 0
        for target in requests:
            try:
                result = lifecycle_service.transition(customer.id, target)
            except InvalidTransitionError:
                continue
            assert result.status in (TransitionStatus.TRANSITIONED, TransitionStatus.NO_OP)
            if result.changed:
                accepted += 1
                arrivals += target == S.CERTIFIED

        history = lifecycle_service.history(customer.id)
        assert sum(1 for r in history if r.action == TransitionAction.TRANSITIONED) == accepted
        with session_factory() as s:
            assert AuditTrail(s).verify_contiguity(customer.id) == accepted + 1
            assert AggregateCounterStore(s).get(key) - before == arrivals
