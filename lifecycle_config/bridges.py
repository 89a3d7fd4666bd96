"""
Config-to-kernel bridges (``lifecycle_config.bridges``).

Responsibility
--------------
Translates a validated ``LifecycleConfigurationSet`` into the kernel's
runtime objects: a ``StateGraph``, a tuple of ``CounterRule``s, and the
``LifecyclePolicy`` that bundles them with the set's identity.  The kernel
never imports this package; the dependency only points inward.
"""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy.orm import Session, sessionmaker

from lifecycle_config.schema import LifecycleConfigurationSet
from lifecycle_kernel.domain.clock import Clock
from lifecycle_kernel.domain.counters import CounterRule, PeriodGranularity
from lifecycle_kernel.domain.state_graph import StateGraph
from lifecycle_kernel.domain.statuses import CustomerStatus
from lifecycle_kernel.services.lifecycle_service import LifecycleService


@dataclass(frozen=True)
class LifecyclePolicy:
    """The runtime artifact returned by ``get_active_config()``."""

    config_id: str
    version: int
    checksum: str
    graph: StateGraph
    counter_rules: tuple[CounterRule, ...]
    max_conflict_retries: int = 3

    def counted_states(self) -> frozenset[CustomerStatus]:
        return frozenset(rule.state for rule in self.counter_rules)


def build_state_graph(config: LifecycleConfigurationSet) -> StateGraph:
    edges = {
        CustomerStatus[source]: tuple(CustomerStatus[t] for t in targets)
        for source, targets in config.transitions
    }
    return StateGraph(CustomerStatus[config.initial_state], edges)


def build_counter_rules(config: LifecycleConfigurationSet) -> tuple[CounterRule, ...]:
    return tuple(
        CounterRule(
            state=CustomerStatus[rule.state],
            granularity=PeriodGranularity(rule.granularity),
            category_field=rule.category_field,
            stamp_field=rule.stamp_field,
        )
        for rule in config.counter_rules
    )


def build_policy(config: LifecycleConfigurationSet) -> LifecyclePolicy:
    return LifecyclePolicy(
        config_id=config.config_id,
        version=config.version,
        checksum=config.checksum,
        graph=build_state_graph(config),
        counter_rules=build_counter_rules(config),
        max_conflict_retries=config.max_conflict_retries,
    )


def build_lifecycle_service(
    policy: LifecyclePolicy,
    session_factory: sessionmaker[Session],
    clock: Clock | None = None,
) -> LifecycleService:
    """Wire a LifecycleService from a loaded policy."""
    return LifecycleService(
        session_factory,
        graph=policy.graph,
        counter_rules=policy.counter_rules,
        clock=clock,
        max_conflict_retries=policy.max_conflict_retries,
    )
