"""
Configuration Validator (``lifecycle_config.validator``).

Responsibility
--------------
Checks a ``LifecycleConfigurationSet`` for structural integrity before it
is turned into kernel objects, so a bad file fails at load time with every
problem listed rather than at the first transition.

Checks
------
* Every declared status is a ``CustomerStatus`` member; no duplicates.
* The initial status is declared.
* Transition sources and targets are declared statuses; no self-loops.
* Counted statuses are declared, not the initial status, counted once,
  with a known granularity.
* Category and stamp fields name customer attributes that exist.
* ``max_conflict_retries`` is not negative.

Failure modes
-------------
Validation errors (``ConfigValidationResult.errors``)  -> the set MUST NOT
be used.  Warnings are informational.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from lifecycle_config.schema import LifecycleConfigurationSet
from lifecycle_kernel.domain.counters import PeriodGranularity
from lifecycle_kernel.domain.statuses import CustomerStatus

# Customer attributes usable as a counter category
CATEGORY_FIELDS = frozenset({"certificate_type", "customer_type"})

# Customer date attributes a counter rule may stamp
STAMP_FIELDS = frozenset({"certified_at"})


@dataclass
class ConfigValidationResult:
    """
    Result of configuration validation.

    ``is_valid`` is True only when ``errors`` is empty.
    """

    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return len(self.errors) == 0

    def add_error(self, msg: str) -> None:
        self.errors.append(msg)

    def add_warning(self, msg: str) -> None:
        self.warnings.append(msg)


def validate_configuration(config: LifecycleConfigurationSet) -> ConfigValidationResult:
    """Run every structural check and collect the findings."""
    result = ConfigValidationResult()
    _validate_states(config, result)
    _validate_transitions(config, result)
    _validate_counter_rules(config, result)
    if config.max_conflict_retries < 0:
        result.add_error(
            f"max_conflict_retries must be >= 0, got {config.max_conflict_retries}"
        )
    return result


def _validate_states(config: LifecycleConfigurationSet, result: ConfigValidationResult) -> None:
    known = set(CustomerStatus.__members__)
    seen: set[str] = set()
    for state in config.states:
        if state not in known:
            result.add_error(f"Unknown status '{state}'")
        if state in seen:
            result.add_error(f"Status '{state}' declared more than once")
        seen.add(state)
    if config.initial_state not in seen:
        result.add_error(f"Initial status '{config.initial_state}' is not declared")


def _validate_transitions(
    config: LifecycleConfigurationSet,
    result: ConfigValidationResult,
) -> None:
    declared = set(config.states)
    for source, targets in config.transitions:
        if source not in declared:
            result.add_error(f"Transitions declared for undeclared status '{source}'")
            continue
        for target in targets:
            if target not in declared:
                result.add_error(f"Transition {source} -> {target} targets an undeclared status")
            elif target == source:
                result.add_error(f"Self-loop on '{source}' is not allowed")
    reachable = {t for _, targets in config.transitions for t in targets}
    for state in config.states:
        if state != config.initial_state and state not in reachable:
            result.add_warning(f"Status '{state}' can never be reached")


def _validate_counter_rules(
    config: LifecycleConfigurationSet,
    result: ConfigValidationResult,
) -> None:
    declared = set(config.states)
    granularities = {g.value for g in PeriodGranularity}
    counted: set[str] = set()
    for rule in config.counter_rules:
        if rule.state not in declared:
            result.add_error(f"Counted status '{rule.state}' is not declared")
        elif rule.state == config.initial_state:
            # Customers are created there without a counted transition
            result.add_error(
                f"Initial status '{rule.state}' cannot carry a counter rule"
            )
        if rule.state in counted:
            result.add_error(f"Status '{rule.state}' has more than one counter rule")
        counted.add(rule.state)
        if rule.granularity not in granularities:
            result.add_error(
                f"Counter rule for '{rule.state}' has unknown granularity "
                f"'{rule.granularity}' (expected one of {sorted(granularities)})"
            )
        if rule.category_field is not None and rule.category_field not in CATEGORY_FIELDS:
            result.add_error(
                f"Counter rule for '{rule.state}' uses unknown category field "
                f"'{rule.category_field}'"
            )
        if rule.stamp_field is not None and rule.stamp_field not in STAMP_FIELDS:
            result.add_error(
                f"Counter rule for '{rule.state}' uses unknown stamp field "
                f"'{rule.stamp_field}'"
            )
