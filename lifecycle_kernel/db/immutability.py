"""
ORM-level append-only enforcement.

===============================================================================
WHY THIS EXISTS
===============================================================================

A customer's history must be tamper-proof: a record, once written, is the
account of what happened and is never edited or removed.  Aggregate
counters must only ever grow.

SQLAlchemy fires events before UPDATE/DELETE operations reach the database.
We register listeners that intercept these events and check the rules:

    session.flush()
         |
         v
    [before_update event] --> _check_*_update() --> ImmutabilityViolationError
         |                                                    ^
         v                                                    |
    [before_delete event] --> _check_*_delete() -------------+
         |
         v
    SQL sent to database (only if checks pass)

If a check fails, ImmutabilityViolationError aborts the flush and the
caller's transaction is rolled back.  The database is never modified.

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity            | Rule
------------------|-------------------------------------------------------
TransitionRecord  | ALWAYS immutable: no UPDATE, no DELETE
CounterBucket     | No DELETE; key fields frozen; count never decreases

Counter increments are issued as single SQL statements by
AggregateCounterStore and never pass through these mapper events.

===============================================================================
USAGE
===============================================================================

LifecycleService registers the listeners on construction (idempotent):

    from lifecycle_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()

To temporarily disable (TESTS ONLY):

    unregister_immutability_listeners()
    # ... do forbidden operation ...
    register_immutability_listeners()
"""

from sqlalchemy import event
from sqlalchemy.orm.attributes import get_history

from lifecycle_kernel.exceptions import ImmutabilityViolationError
from lifecycle_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

# Key columns of a counter bucket
COUNTER_KEY_FIELDS = frozenset({"state", "period", "category"})


def _blocked(entity_type: str, entity_id: str, operation: str, reason: str):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": entity_id,
            "operation": operation,
        },
    )
    return ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=entity_id,
        reason=reason,
    )


def _check_transition_record_update(mapper, connection, target):
    """Prevent any updates to TransitionRecord rows."""
    raise _blocked(
        "TransitionRecord",
        str(target.id),
        "UPDATE",
        "History records are immutable and cannot be modified",
    )


def _check_transition_record_delete(mapper, connection, target):
    """Prevent deletion of TransitionRecord rows."""
    raise _blocked(
        "TransitionRecord",
        str(target.id),
        "DELETE",
        "History records cannot be deleted",
    )


def _check_counter_bucket_update(mapper, connection, target):
    """
    Freeze the bucket key and forbid decreasing the count.

    get_history() reports ``deleted`` = value in the database before the
    change and ``added`` = the value being written.
    """
    for field in COUNTER_KEY_FIELDS:
        if get_history(target, field).has_changes():
            raise _blocked(
                "CounterBucket",
                str(target.id),
                "UPDATE",
                f"Counter key field '{field}' cannot be changed",
            )

    count_history = get_history(target, "count")
    if count_history.deleted and count_history.added:
        old, new = count_history.deleted[0], count_history.added[0]
        if new < old:
            raise _blocked(
                "CounterBucket",
                str(target.id),
                "UPDATE",
                f"Counters never decrease ({old} -> {new})",
            )


def _check_counter_bucket_delete(mapper, connection, target):
    """Prevent deletion of CounterBucket rows."""
    raise _blocked(
        "CounterBucket",
        str(target.id),
        "DELETE",
        "Counter buckets cannot be deleted",
    )


_LISTENERS = (
    ("TransitionRecord", "before_update", _check_transition_record_update),
    ("TransitionRecord", "before_delete", _check_transition_record_delete),
    ("CounterBucket", "before_update", _check_counter_bucket_update),
    ("CounterBucket", "before_delete", _check_counter_bucket_delete),
)


def _targets():
    from lifecycle_kernel.models.counter_bucket import CounterBucket
    from lifecycle_kernel.models.transition_record import TransitionRecord

    return {"TransitionRecord": TransitionRecord, "CounterBucket": CounterBucket}


def register_immutability_listeners():
    """
    Register all append-only enforcement event listeners.

    Safe to call repeatedly; a listener already in place is not added twice.
    """
    targets = _targets()
    for model_name, event_name, listener_fn in _LISTENERS:
        target = targets[model_name]
        if not event.contains(target, event_name, listener_fn):
            event.listen(target, event_name, listener_fn)


def _safe_remove_listener(target, event_name, listener_fn):
    """Remove an event listener, ignoring it if not registered."""
    if event.contains(target, event_name, listener_fn):
        event.remove(target, event_name, listener_fn)


def unregister_immutability_listeners():
    """
    Remove the append-only enforcement event listeners.

    WARNING: Only use this in tests that need to corrupt history on purpose.
    """
    targets = _targets()
    for model_name, event_name, listener_fn in _LISTENERS:
        _safe_remove_listener(targets[model_name], event_name, listener_fn)


def immutability_listeners_registered() -> bool:
    targets = _targets()
    return all(
        event.contains(targets[model_name], event_name, listener_fn)
        for model_name, event_name, listener_fn in _LISTENERS
    )
