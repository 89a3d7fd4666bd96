"""
Configuration Loader (``lifecycle_config.loader``).

Responsibility
--------------
Loads a YAML lifecycle definition and parses it into the frozen
``lifecycle_config.schema`` dataclasses.  This is internal tooling: the
single public entry point for runtime config is
``lifecycle_config.get_active_config()``.

Two ways to declare edges are accepted:

* ``transitions:`` -- an explicit ``{state: [successor, ...]}`` map.
* ``edge_rule: no_return_to_initial`` -- every status may reach every
  other non-initial status and nothing returns to the initial one.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys  -> ``KeyError`` propagates.
* Unknown ``edge_rule`` or both edge styles at once  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any

import yaml

from lifecycle_config.schema import CounterRuleDef, LifecycleConfigurationSet

NO_RETURN_TO_INITIAL = "no_return_to_initial"


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def parse_counter_rule(data: dict[str, Any]) -> CounterRuleDef:
    """Parse a ``CounterRuleDef`` from a dict."""
    return CounterRuleDef(
        state=str(data["state"]),
        granularity=str(data.get("granularity", "month")),
        category_field=data.get("category_field"),
        stamp_field=data.get("stamp_field"),
    )


def _parse_transitions(
    data: dict[str, Any],
    states: tuple[str, ...],
    initial_state: str,
) -> tuple[tuple[str, tuple[str, ...]], ...]:
    explicit = data.get("transitions")
    edge_rule = data.get("edge_rule")

    if explicit is not None and edge_rule is not None:
        raise ValueError("Declare either 'transitions' or 'edge_rule', not both")

    if edge_rule is not None:
        if edge_rule != NO_RETURN_TO_INITIAL:
            raise ValueError(f"Unknown edge_rule: {edge_rule!r}")
        return tuple(
            (source, tuple(t for t in states if t != source and t != initial_state))
            for source in states
        )

    explicit = explicit or {}
    # States without an entry are terminal
    return tuple(
        (source, tuple(str(t) for t in (explicit.get(source) or ())))
        for source in states
    ) + tuple(
        (str(source), tuple(str(t) for t in (targets or ())))
        for source, targets in explicit.items()
        if source not in states
    )


def parse_configuration_set(data: dict[str, Any]) -> LifecycleConfigurationSet:
    """
    Parse a full configuration document.

    Postconditions:
        - ``checksum`` is the SHA-256 of ``data``'s canonical JSON form.
    """
    states = tuple(str(s) for s in data["states"])
    initial_state = str(data["initial_state"])
    concurrency = data.get("concurrency") or {}

    return LifecycleConfigurationSet(
        config_id=str(data["config_id"]),
        version=int(data.get("version", 1)),
        description=str(data.get("description", "")),
        initial_state=initial_state,
        states=states,
        transitions=_parse_transitions(data, states, initial_state),
        counter_rules=tuple(
            parse_counter_rule(item) for item in (data.get("counters") or ())
        ),
        max_conflict_retries=int(concurrency.get("max_conflict_retries", 3)),
        checksum=compute_checksum(data),
    )


def load_configuration_set(path: Path) -> LifecycleConfigurationSet:
    return parse_configuration_set(load_yaml_file(path))


def compute_checksum(data: dict[str, Any]) -> str:
    """
    Compute SHA-256 checksum of canonical JSON serialization.

    Identical ``data`` always produces identical checksums, independent of
    key order in the source file.
    """
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
