"""
lifecycle_config -- single public entrypoint for lifecycle configuration.

Responsibility:
    Provides the ONLY way to obtain the status graph and counter rules at
    runtime through ``get_active_config()``.  Returns a ``LifecyclePolicy``,
    built from a validated YAML configuration set.

Architecture position:
    Configuration -- sits above ``lifecycle_kernel``.  The kernel MUST
    NEVER import from ``lifecycle_config``; bridges in this package
    translate configuration into kernel objects.

Failure modes:
    - ``FileNotFoundError`` -- the configuration file does not exist.
    - ``ValueError`` -- structural validation failed.

Audit relevance:
    Every successful ``get_active_config()`` call emits a
    ``LIFECYCLE_CONFIG_TRACE`` log entry with the config_id, version,
    checksum, status count and counter-rule count, tying transitions back
    to the exact rule set that governed them.
"""

from __future__ import annotations

from pathlib import Path

from lifecycle_config.bridges import LifecyclePolicy, build_lifecycle_service, build_policy
from lifecycle_config.loader import load_configuration_set
from lifecycle_config.validator import validate_configuration
from lifecycle_kernel.logging_config import get_logger

_logger = get_logger("config")

# Default configuration set
DEFAULT_CONFIG_PATH = Path(__file__).parent / "sets" / "customer_lifecycle.yaml"

__all__ = [
    "DEFAULT_CONFIG_PATH",
    "LifecyclePolicy",
    "build_lifecycle_service",
    "get_active_config",
]


def get_active_config(config_path: Path | str | None = None) -> LifecyclePolicy:
    """The ONLY public configuration entrypoint.

    Args:
        config_path: Override path to a configuration YAML file.
            Defaults to lifecycle_config/sets/customer_lifecycle.yaml.

    Returns:
        LifecyclePolicy with an immutable StateGraph and counter rules.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If configuration validation fails.
    """
    path = Path(config_path) if config_path is not None else DEFAULT_CONFIG_PATH
    config_set = load_configuration_set(path)

    validation = validate_configuration(config_set)
    if not validation.is_valid:
        raise ValueError(
            "Configuration validation failed:\n"
            + "\n".join(f"  - {e}" for e in validation.errors)
        )
    for warning in validation.warnings:
        _logger.warning("config_validation_warning", extra={"warning": warning})

    policy = build_policy(config_set)

    _logger.info(
        "LIFECYCLE_CONFIG_TRACE",
        extra={
            "trace_type": "LIFECYCLE_CONFIG_TRACE",
            "config_set_id": policy.config_id,
            "config_set_version": policy.version,
            "checksum": policy.checksum,
            "state_count": len(policy.graph.states),
            "counter_rule_count": len(policy.counter_rules),
            "source": str(path),
        },
    )
    return policy
