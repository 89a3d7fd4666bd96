"""Pure domain layer: statuses, the state graph, counter rules, clocks, DTOs."""

from lifecycle_kernel.domain.clock import Clock, DeterministicClock, SequentialClock, SystemClock
from lifecycle_kernel.domain.counters import (
    ALL_CATEGORIES,
    DEFAULT_COUNTER_RULES,
    CounterKey,
    CounterRule,
    PeriodGranularity,
    derive_period,
    period_bounds,
    period_in_range,
    validate_period,
)
from lifecycle_kernel.domain.dtos import (
    CustomerInfo,
    TransitionRecordInfo,
    TransitionResult,
    TransitionStatus,
)
from lifecycle_kernel.domain.state_graph import DEFAULT_CUSTOMER_GRAPH, StateGraph
from lifecycle_kernel.domain.statuses import (
    DEFAULT_CATEGORY,
    CustomerStatus,
    CustomerType,
    TransitionAction,
)

__all__ = [
    "ALL_CATEGORIES",
    "Clock",
    "CounterKey",
    "CounterRule",
    "CustomerInfo",
    "CustomerStatus",
    "CustomerType",
    "DEFAULT_CATEGORY",
    "DEFAULT_COUNTER_RULES",
    "DEFAULT_CUSTOMER_GRAPH",
    "DeterministicClock",
    "PeriodGranularity",
    "SequentialClock",
    "StateGraph",
    "SystemClock",
    "TransitionAction",
    "TransitionRecordInfo",
    "TransitionResult",
    "TransitionStatus",
    "derive_period",
    "period_bounds",
    "period_in_range",
    "validate_period",
]
