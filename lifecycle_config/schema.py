"""
Configuration schema (``lifecycle_config.schema``).

Responsibility
--------------
Frozen dataclasses describing a lifecycle configuration set exactly as it
is written in YAML: plain strings and tuples, no kernel types.  The
bridges translate these into the kernel's ``StateGraph`` and
``CounterRule`` objects.

Architecture position
---------------------
**Config layer** -- pure data.  No I/O, no kernel imports.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class CounterRuleDef:
    """One counted status as declared in YAML."""

    state: str
    granularity: str = "month"
    category_field: str | None = None
    stamp_field: str | None = None


@dataclass(frozen=True)
class LifecycleConfigurationSet:
    """
    A complete, versioned lifecycle configuration.

    ``transitions`` maps each status to its successors in declaration
    order.  ``checksum`` is the SHA-256 of the canonical source document.
    """

    config_id: str
    version: int
    initial_state: str
    states: tuple[str, ...]
    transitions: tuple[tuple[str, tuple[str, ...]], ...]
    counter_rules: tuple[CounterRuleDef, ...] = ()
    max_conflict_retries: int = 3
    description: str = ""
    checksum: str = field(default="", compare=False)

    def successors(self, state: str) -> tuple[str, ...]:
        for source, targets in self.transitions:
            if source == state:
                return targets
        return ()
