"""
Tests for status enums and counter value objects.

Covers:
- CustomerStatus parsing from value, name and display name.
- Period derivation (UTC normalisation, granularities) and period bounds.
- CounterKey validation and CounterRule key expansion.
"""

from datetime import date, datetime, timedelta, timezone

import pytest

from lifecycle_kernel.domain.clock import DeterministicClock, SequentialClock
from lifecycle_kernel.domain.counters import (
    ALL_CATEGORIES,
    DEFAULT_COUNTER_RULES,
    CounterKey,
    CounterRule,
    PeriodGranularity,
    derive_period,
    period_bounds,
)
from lifecycle_kernel.domain.statuses import CustomerStatus
from lifecycle_kernel.exceptions import InvalidCounterKeyError, UnknownStatusError


class TestCustomerStatus:
    @pytest.mark.parametrize(
        "text",
        ["CERTIFIED_ELSEWHERE", "Certified Elsewhere", "certified elsewhere", " CERTIFIED_ELSEWHERE "],
    )
    def test_parse_variants(self, text):
        assert CustomerStatus.parse(text) == CustomerStatus.CERTIFIED_ELSEWHERE

    def test_parse_member_is_identity(self):
        assert CustomerStatus.parse(CustomerStatus.NEW) is CustomerStatus.NEW

    def test_parse_unknown(self):
        with pytest.raises(UnknownStatusError) as exc_info:
            CustomerStatus.parse("PENDING")
        assert exc_info.value.code == "UNKNOWN_STATUS"

    def test_str_is_display_name(self):
        assert str(CustomerStatus.CERTIFIED) == "Certified"


class TestDerivePeriod:
    def test_month_default(self):
        assert derive_period(datetime(2024, 3, 31, 23, 0, tzinfo=timezone.utc)) == "2024-03"

    def test_aware_datetime_normalised_to_utc(self):
        # 00:30 on April 1st at +02:00 is still March 31st in UTC
        moment = datetime(2024, 4, 1, 0, 30, tzinfo=timezone(timedelta(hours=2)))
        assert derive_period(moment) == "2024-03"

    def test_granularities(self):
        d = date(2024, 7, 4)
        assert derive_period(d, PeriodGranularity.DAY) == "2024-07-04"
        assert derive_period(d, PeriodGranularity.MONTH) == "2024-07"
        assert derive_period(d, PeriodGranularity.YEAR) == "2024"

    def test_early_years_zero_padded(self):
        d = date(999, 6, 1)
        assert derive_period(d, PeriodGranularity.DAY) == "0999-06-01"
        assert derive_period(d) == "0999-06"
        assert derive_period(datetime(45, 1, 2, tzinfo=timezone.utc), PeriodGranularity.YEAR) == "0045"
        assert CounterKey(CustomerStatus.CERTIFIED, derive_period(d)).period == "0999-06"

    def test_period_bounds(self):
        start, end = period_bounds("2024-12")
        assert start == datetime(2024, 12, 1, tzinfo=timezone.utc)
        assert end == datetime(2025, 1, 1, tzinfo=timezone.utc)
        assert period_bounds("2024")[1] == datetime(2025, 1, 1, tzinfo=timezone.utc)
        assert period_bounds("2024-02-29")[1] == datetime(2024, 3, 1, tzinfo=timezone.utc)


class TestCounterKey:
    def test_unscoped_key(self):
        key = CounterKey(CustomerStatus.CERTIFIED, "2024-03")
        assert key.is_unscoped
        assert key.stored_category == ALL_CATEGORIES
        assert key.label == "CERTIFIED/2024-03/*"

    def test_round_trip_from_stored(self):
        assert CounterKey.from_stored(CustomerStatus.CERTIFIED, "2024-03", ALL_CATEGORIES) == (
            CounterKey(CustomerStatus.CERTIFIED, "2024-03")
        )

    @pytest.mark.parametrize("period", ["2024-13", "24-01", "2024/01", ""])
    def test_bad_period(self, period):
        with pytest.raises(InvalidCounterKeyError):
            CounterKey(CustomerStatus.CERTIFIED, period)

    @pytest.mark.parametrize("category", ["", "   ", ALL_CATEGORIES])
    def test_bad_category(self, category):
        with pytest.raises(InvalidCounterKeyError):
            CounterKey(CustomerStatus.CERTIFIED, "2024-03", category)


class TestCounterRule:
    def test_default_rule(self):
        (rule,) = DEFAULT_COUNTER_RULES
        assert rule.state == CustomerStatus.CERTIFIED
        assert rule.granularity == PeriodGranularity.MONTH
        assert rule.category_field == "certificate_type"
        assert rule.stamp_field == "certified_at"

    def test_keys_unscoped_first(self):
        (rule,) = DEFAULT_COUNTER_RULES
        assert rule.keys_for("2024-03", "ISO9001") == (
            CounterKey(CustomerStatus.CERTIFIED, "2024-03"),
            CounterKey(CustomerStatus.CERTIFIED, "2024-03", "ISO9001"),
        )

    def test_rule_without_category_field(self):
        rule = CounterRule(CustomerStatus.ABORTED, PeriodGranularity.YEAR)
        assert rule.keys_for(rule.period_for(date(2024, 5, 1)), "ISO9001") == (
            CounterKey(CustomerStatus.ABORTED, "2024"),
        )


class TestClocks:
    def test_deterministic_clock_advances(self):
        clock = DeterministicClock(datetime(2024, 1, 1, tzinfo=timezone.utc))
        assert clock.tick() == datetime(2024, 1, 1, 0, 0, 1, tzinfo=timezone.utc)
        assert clock.today() == date(2024, 1, 1)

    def test_sequential_clock_repeats_last(self):
        times = [
            datetime(2024, 1, 2, tzinfo=timezone.utc),
            datetime(2024, 1, 1, tzinfo=timezone.utc),
        ]
        clock = SequentialClock(times)
        assert [clock.now(), clock.now(), clock.now()] == [times[0], times[1], times[1]]

    def test_sequential_clock_requires_times(self):
        with pytest.raises(ValueError):
            SequentialClock([])
