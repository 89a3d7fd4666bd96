"""
Typed Exception Hierarchy for the Lifecycle Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers of the lifecycle engine (API layers, admin tooling, reconciliation
jobs) must react to failures precisely.  Parsing message strings is fragile,
so every failure mode has:

  1. A TYPED exception class (catch by type, not message)
  2. A CODE attribute (machine-readable, API-safe)
  3. Structured DATA attributes (not just a message string)

Example - WRONG way to handle errors:
    try:
        service.transition(customer_id, CustomerStatus.NEW, "mistake")
    except Exception as e:
        if "cannot return" in str(e):  # FRAGILE - message might change
            ...

Example - RIGHT way (what this module enables):
    try:
        service.transition(customer_id, CustomerStatus.NEW, "mistake")
    except InvalidTransitionError as e:
        api_response(
            code=e.code,
            message=e.explanation,
            alternatives=sorted(s.value for s in e.valid_targets),
        )

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from LifecycleKernelError:

    LifecycleKernelError (base)
    |
    +-- CustomerError
    |   +-- CustomerNotFoundError
    |   +-- CustomerNotDeletedError
    |   +-- CustomerAlreadyDeletedError
    |
    +-- TransitionError
    |   +-- InvalidTransitionError
    |   +-- UnknownStatusError
    |
    +-- ConcurrencyError
    |   +-- OptimisticLockError
    |   +-- TransitionConflictError
    |
    +-- CounterError
    |   +-- InvalidCounterKeyError
    |   +-- InvalidCounterIncrementError
    |   +-- CounterDegradedError
    |
    +-- AuditError
    |   +-- AuditTrailBrokenError
    |
    +-- ImmutabilityError
    |   +-- ImmutabilityViolationError
    |
    +-- StorageUnavailableError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
Customer        | CUSTOMER_NOT_FOUND          | ID unknown, or soft-deleted and excluded
                | CUSTOMER_NOT_DELETED        | Restore requested on a live customer
                | CUSTOMER_ALREADY_DELETED    | Soft delete requested twice
----------------|-----------------------------|-----------------------------------------
Transition      | INVALID_TRANSITION          | Edge not in the state graph
                | UNKNOWN_STATUS              | Status name is not a CustomerStatus
----------------|-----------------------------|-----------------------------------------
Concurrency     | OPTIMISTIC_LOCK_CONFLICT    | Version check failed on save (internal)
                | TRANSITION_CONFLICT         | Conflict retries exhausted
----------------|-----------------------------|-----------------------------------------
Counter         | INVALID_COUNTER_KEY         | Malformed period or empty category
                | INVALID_COUNTER_INCREMENT   | Increment amount below 1
                | COUNTER_DEGRADED            | Transition committed, counter bump failed
----------------|-----------------------------|-----------------------------------------
Audit           | AUDIT_TRAIL_BROKEN          | History contiguity check failed
----------------|-----------------------------|-----------------------------------------
Immutability    | IMMUTABILITY_VIOLATION      | UPDATE/DELETE of an append-only row
----------------|-----------------------------|-----------------------------------------
Storage         | STORAGE_UNAVAILABLE         | Database unreachable; safe to retry

===============================================================================
HANDLING PATTERNS
===============================================================================

1. CONFLICTS ARE RETRYABLE BY THE CALLER:

    except TransitionConflictError as e:
        # The engine already retried e.attempts times
        schedule_retry(e.customer_id)

2. COUNTER DEGRADATION IS A SUCCESS:

    result = service.transition(customer_id, CustomerStatus.CERTIFIED, "docs ok")
    if result.status is TransitionStatus.COUNTER_DEGRADED:
        # The customer IS certified.  Period counts lag until reconciliation.
        warn(result.counter_error.code)

3. STORAGE FAILURES ARE SAFE TO RETRY FROM SCRATCH:

    except StorageUnavailableError:
        retry_later()  # nothing was committed
"""


class LifecycleKernelError(Exception):
    """
    Base exception for all lifecycle kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "LIFECYCLE_KERNEL_ERROR"


# Customer-related exceptions


class CustomerError(LifecycleKernelError):
    """Base exception for customer record errors."""

    code: str = "CUSTOMER_ERROR"


class CustomerNotFoundError(CustomerError):
    """Customer with given ID was not found (or is soft-deleted and excluded)."""

    code: str = "CUSTOMER_NOT_FOUND"

    def __init__(self, customer_id: str, include_deleted: bool = False):
        self.customer_id = customer_id
        self.include_deleted = include_deleted
        super().__init__(f"Customer not found with id: {customer_id}")


class CustomerNotDeletedError(CustomerError):
    """Restore requested for a customer that is not soft-deleted."""

    code: str = "CUSTOMER_NOT_DELETED"

    def __init__(self, customer_id: str):
        self.customer_id = customer_id
        super().__init__(f"Customer is not deleted: {customer_id}")


class CustomerAlreadyDeletedError(CustomerError):
    """Soft delete requested for a customer that is already soft-deleted."""

    code: str = "CUSTOMER_ALREADY_DELETED"

    def __init__(self, customer_id: str):
        self.customer_id = customer_id
        super().__init__(f"Customer is already deleted: {customer_id}")


# Transition-related exceptions


class TransitionError(LifecycleKernelError):
    """Base exception for state transition errors."""

    code: str = "TRANSITION_ERROR"


class InvalidTransitionError(TransitionError):
    """
    Requested edge does not exist in the state graph.

    Carries the graph's explanation and the statuses that ARE reachable from
    the current status so callers can present alternatives.
    """

    code: str = "INVALID_TRANSITION"

    def __init__(
        self,
        customer_id: str,
        from_status: str | None,
        to_status: str | None,
        explanation: str,
        valid_targets: frozenset = frozenset(),
    ):
        self.customer_id = customer_id
        self.from_status = from_status
        self.to_status = to_status
        self.explanation = explanation
        self.valid_targets = valid_targets
        super().__init__(explanation)


class UnknownStatusError(TransitionError):
    """Status name or value is not a member of CustomerStatus."""

    code: str = "UNKNOWN_STATUS"

    def __init__(self, value: str):
        self.value = value
        super().__init__(f"Unknown customer status: {value!r}")


# Concurrency-related exceptions


class ConcurrencyError(LifecycleKernelError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class OptimisticLockError(ConcurrencyError):
    """Optimistic locking conflict detected on save."""

    code: str = "OPTIMISTIC_LOCK_CONFLICT"

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(
            f"Optimistic lock conflict on {entity_type} {entity_id}: "
            "entity was modified by another transaction"
        )


class TransitionConflictError(ConcurrencyError):
    """
    Concurrent transitions on the same customer kept invalidating this
    call's view of the prior status, and the internal retries ran out.
    """

    code: str = "TRANSITION_CONFLICT"

    def __init__(self, customer_id: str, target_status: str, attempts: int):
        self.customer_id = customer_id
        self.target_status = target_status
        self.attempts = attempts
        super().__init__(
            f"Transition of customer {customer_id} to {target_status} "
            f"conflicted with concurrent writers after {attempts} attempt(s)"
        )


# Counter-related exceptions


class CounterError(LifecycleKernelError):
    """Base exception for aggregate counter errors."""

    code: str = "COUNTER_ERROR"


class InvalidCounterKeyError(CounterError):
    """Counter key has a malformed period or an empty category."""

    code: str = "INVALID_COUNTER_KEY"

    def __init__(self, key: str, reason: str):
        self.key = key
        self.reason = reason
        super().__init__(f"Invalid counter key {key}: {reason}")


class InvalidCounterIncrementError(CounterError):
    """Increment amount below 1.  Counters never decrease."""

    code: str = "INVALID_COUNTER_INCREMENT"

    def __init__(self, key: str, amount: int):
        self.key = key
        self.amount = amount
        super().__init__(
            f"Counter {key} can only be incremented by a positive amount, got {amount}"
        )


class CounterDegradedError(CounterError):
    """
    The state and history change committed, but the aggregate counter
    increment that follows it failed.

    This is a partial success.  It is attached to the TransitionResult
    rather than raised, so the caller sees both the committed transition
    and the counter failure.
    """

    code: str = "COUNTER_DEGRADED"

    def __init__(self, customer_id: str, keys: tuple[str, ...], cause: str):
        self.customer_id = customer_id
        self.keys = keys
        self.cause = cause
        super().__init__(
            f"Transition of customer {customer_id} committed but counters "
            f"{', '.join(keys)} were not incremented: {cause}"
        )


# Audit-related exceptions


class AuditError(LifecycleKernelError):
    """Base exception for audit trail errors."""

    code: str = "AUDIT_ERROR"


class AuditTrailBrokenError(AuditError):
    """
    A customer's history is not contiguous: some record's from_status does
    not equal its predecessor's to_status.
    """

    code: str = "AUDIT_TRAIL_BROKEN"

    def __init__(
        self,
        customer_id: str,
        seq: int,
        expected_from: str | None,
        actual_from: str | None,
    ):
        self.customer_id = customer_id
        self.seq = seq
        self.expected_from = expected_from
        self.actual_from = actual_from
        super().__init__(
            f"History of customer {customer_id} broken at seq {seq}: "
            f"expected from_status {expected_from}, found {actual_from}"
        )


# Immutability-related exceptions


class ImmutabilityError(LifecycleKernelError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """
    Attempted to modify or delete an append-only record.

    TransitionRecord rows are immutable from creation; CounterBucket rows
    can never be deleted.
    """

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Cannot modify immutable {entity_type} {entity_id}: {reason}"
        )


# Storage


class StorageUnavailableError(LifecycleKernelError):
    """
    The backing store could not be reached.  Nothing was committed, so the
    whole operation is safe to retry from scratch.
    """

    code: str = "STORAGE_UNAVAILABLE"

    def __init__(self, operation: str, cause: str):
        self.operation = operation
        self.cause = cause
        super().__init__(f"Storage unavailable during {operation}: {cause}")
