"""
StateGraph -- the static table of permitted status transitions.

Responsibility:
    Answers "may a customer move from A to B?" and explains why not.
    Holds an explicit adjacency set per status, so the rule set can be
    swapped (via configuration) without touching calling code.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.  Has no notion of
    who requested a transition; authorization is an outer concern.

Invariants enforced:
    - No self-loops: ``is_valid_transition(s, s)`` is always False.
    - Closed world: a status absent from the graph is unknown; any query
      involving it is invalid and yields no targets.
    - Immutable after construction.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from types import MappingProxyType

from lifecycle_kernel.domain.statuses import CustomerStatus


class StateGraph:
    """
    Directed graph of customer statuses.

    Contract:
        Constructed once from an adjacency mapping and never mutated.
        ``explain()`` is for error surfaces only; control flow must use
        ``is_valid_transition()``.

    Guarantees:
        - Successor sets preserve declaration order for stable messages.
        - ``valid_targets()`` returns a fresh frozenset (callers cannot
          mutate the graph through it).
    """

    def __init__(
        self,
        initial_state: CustomerStatus,
        edges: Mapping[CustomerStatus, Iterable[CustomerStatus]],
    ):
        if initial_state not in edges:
            raise ValueError(
                f"Initial state {initial_state.value} must be a node of the graph"
            )
        ordered: dict[CustomerStatus, tuple[CustomerStatus, ...]] = {}
        for source, targets in edges.items():
            unique_targets = tuple(dict.fromkeys(targets))
            for target in unique_targets:
                if target not in edges:
                    raise ValueError(
                        f"Edge {source.value} -> {target.value} points outside the graph"
                    )
                if target == source:
                    raise ValueError(f"Self-loop on {source.value} is not allowed")
            ordered[source] = unique_targets

        self._initial_state = initial_state
        self._edges = MappingProxyType(ordered)

    @classmethod
    def no_return_to_initial(
        cls,
        states: Iterable[CustomerStatus],
        initial_state: CustomerStatus,
    ) -> "StateGraph":
        """Every status may reach every other non-initial status.

        Nothing may return to the initial status once it has been left.
        """
        nodes = tuple(dict.fromkeys(states))
        edges = {
            source: tuple(t for t in nodes if t != source and t != initial_state)
            for source in nodes
        }
        return cls(initial_state, edges)

    @property
    def initial_state(self) -> CustomerStatus:
        return self._initial_state

    @property
    def states(self) -> tuple[CustomerStatus, ...]:
        return tuple(self._edges)

    def knows(self, state: CustomerStatus | None) -> bool:
        return state is not None and state in self._edges

    def is_terminal(self, state: CustomerStatus) -> bool:
        """A known status with no outgoing edges."""
        return self.knows(state) and not self._edges[state]

    def is_valid_transition(
        self,
        from_state: CustomerStatus | None,
        to_state: CustomerStatus | None,
    ) -> bool:
        if not self.knows(from_state) or not self.knows(to_state):
            return False
        if from_state == to_state:
            return False
        return to_state in self._edges[from_state]

    def valid_targets(self, from_state: CustomerStatus | None) -> frozenset[CustomerStatus]:
        if not self.knows(from_state):
            return frozenset()
        return frozenset(self._edges[from_state])

    def ordered_targets(self, from_state: CustomerStatus | None) -> tuple[CustomerStatus, ...]:
        """Successors in declaration order (empty for unknown statuses)."""
        if not self.knows(from_state):
            return ()
        return self._edges[from_state]

    def explain(
        self,
        from_state: CustomerStatus | None,
        to_state: CustomerStatus | None,
    ) -> str:
        """Human-readable reason a transition is rejected.

        Returns an acknowledgement string for valid transitions so callers
        never receive an empty message.
        """
        if from_state is None or to_state is None:
            return "Both current and target status must be specified"
        if not self.knows(from_state):
            return f"Status {from_state.display_name} is not part of the configured lifecycle"
        if not self.knows(to_state):
            return f"Status {to_state.display_name} is not part of the configured lifecycle"
        if from_state == to_state:
            return f"Customer is already in status: {to_state.display_name}"
        targets = self._edges[from_state]
        if to_state in targets:
            return (
                f"Transition from {from_state.display_name} to "
                f"{to_state.display_name} is allowed"
            )
        if to_state == self._initial_state:
            return (
                f"Cannot transition from {from_state.display_name} to "
                f"{to_state.value}. Once a customer leaves {to_state.value} "
                f"status, they cannot return to it."
            )
        if not targets:
            return f"No status transitions are allowed from {from_state.display_name}"
        return (
            f"Cannot transition from {from_state.display_name} to "
            f"{to_state.display_name}. Valid transitions are: "
            f"{', '.join(t.display_name for t in targets)}"
        )

    def __repr__(self) -> str:
        return (
            f"<StateGraph initial={self._initial_state.value} "
            f"states={len(self._edges)}>"
        )


# Five routed statuses; NEW is one-way.
DEFAULT_CUSTOMER_GRAPH = StateGraph.no_return_to_initial(
    (
        CustomerStatus.NEW,
        CustomerStatus.NOTIFIED,
        CustomerStatus.ABORTED,
        CustomerStatus.SUBMITTED,
        CustomerStatus.CERTIFIED,
    ),
    CustomerStatus.NEW,
)
