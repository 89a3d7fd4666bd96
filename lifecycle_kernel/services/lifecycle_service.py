"""
LifecycleService -- the one entry point that moves customers between statuses.

Responsibility:
    Orchestrates a status change end to end:

        load (row lock) -> validate against StateGraph -> write status and
        version -> append history record -> COMMIT -> increment counters
        -> COMMIT

    Also creates customers, soft-deletes and restores them (each with a
    history marker), and answers read-only questions about them.

Architecture position:
    Kernel > Services -- orchestrator.  Owns transaction boundaries: it
    takes a session factory and opens one short session per unit of work,
    so it is safe to share one instance between threads.

Invariants enforced:
    - Status and history move together: the customer row update and its
      TransitionRecord are flushed and committed in ONE transaction.
      Either both are visible or neither is.
    - Per-customer serializability: the customer row is loaded with
      ``SELECT ... FOR UPDATE`` and written with an optimistic version
      check.  A lost race is retried from the read up to
      ``max_conflict_retries`` times.
    - History ordering: ``occurred_at`` never goes backwards for one
      customer even if the clock does.
    - Counters are incremented in a SECOND transaction after the state
      change committed.  A counter failure never undoes the transition;
      the result reports COUNTER_DEGRADED instead.
    - Same-status requests are a no-op: nothing is written.

Failure modes:
    - CustomerNotFoundError: no such customer (or soft-deleted).
    - InvalidTransitionError: the edge is not in the graph; carries the
      explanation and the valid targets.
    - TransitionConflictError: retries against concurrent writers ran out.
    - StorageUnavailableError: the database was unreachable during the
      atomic step; nothing was committed.

Audit relevance:
    Every accepted write appends exactly one history record.  Lifecycle
    events are logged with structured fields (customer_id, from_status,
    to_status, seq, counter keys).
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Generator, TypeVar
from uuid import UUID

from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from lifecycle_kernel.db.engine import mark_read_only
from lifecycle_kernel.db.immutability import register_immutability_listeners
from lifecycle_kernel.domain.clock import Clock, SystemClock
from lifecycle_kernel.domain.counters import (
    ALL_CATEGORIES,
    DEFAULT_COUNTER_RULES,
    CounterKey,
    CounterRule,
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
from lifecycle_kernel.exceptions import (
    CounterDegradedError,
    CounterError,
    CustomerAlreadyDeletedError,
    CustomerNotDeletedError,
    CustomerNotFoundError,
    InvalidTransitionError,
    OptimisticLockError,
    StorageUnavailableError,
    TransitionConflictError,
)
from lifecycle_kernel.logging_config import LogContext, get_logger
from lifecycle_kernel.models.customer import Customer
from lifecycle_kernel.services.audit_trail import AuditTrail, record_to_info
from lifecycle_kernel.services.counter_store import AggregateCounterStore
from lifecycle_kernel.services.customer_store import CustomerStore, customer_to_info

logger = get_logger("services.lifecycle")

# Recorded as creator when no actor is supplied
SYSTEM_ACTOR_ID = UUID("00000000-0000-0000-0000-000000000000")

CREATION_REASON = "Initial customer creation"

T = TypeVar("T")


@dataclass(frozen=True)
class _AppliedChange:
    """Outcome of the atomic state+history step."""

    customer: CustomerInfo
    record: TransitionRecordInfo | None
    counter_keys: tuple[CounterKey, ...] = ()


class LifecycleService:
    """
    Orchestrator for customer status changes.

    Contract:
        Every public method opens its own session(s) from
        ``session_factory`` and closes them before returning.  Results are
        frozen DTOs, never ORM instances.

    Usage:
        service = LifecycleService(get_session_factory())
        customer = service.create_customer("Acme Ltd", certificate_type="ISO9001")
        result = service.transition(customer.id, CustomerStatus.CERTIFIED, "audit passed")
        if result.is_degraded:
            alert(result.counter_error)
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        graph: StateGraph = DEFAULT_CUSTOMER_GRAPH,
        counter_rules: Iterable[CounterRule] = DEFAULT_COUNTER_RULES,
        clock: Clock | None = None,
        max_conflict_retries: int = 3,
    ):
        if max_conflict_retries < 0:
            raise ValueError("max_conflict_retries must be >= 0")
        self._session_factory = session_factory
        self._graph = graph
        self._counter_rules: dict[CustomerStatus, CounterRule] = {
            rule.state: rule for rule in counter_rules
        }
        if graph.initial_state in self._counter_rules:
            raise ValueError(
                f"Initial status {graph.initial_state.value} cannot carry a counter rule"
            )
        self._clock = clock or SystemClock()
        self._max_conflict_retries = max_conflict_retries
        register_immutability_listeners()

    @property
    def graph(self) -> StateGraph:
        return self._graph

    @property
    def counter_rules(self) -> tuple[CounterRule, ...]:
        return tuple(self._counter_rules.values())

    # =========================================================================
    # Unit-of-work plumbing
    # =========================================================================

    @contextmanager
    def _unit_of_work(
        self, operation: str, read_only: bool = False
    ) -> Generator[Session, None, None]:
        """
        One session, one transaction.

        The body commits explicitly.  Anything that escapes rolls the
        transaction back; connectivity failures are re-raised as
        StorageUnavailableError.  ``read_only`` units take no SQLite write
        lock.
        """
        session = self._session_factory()
        try:
            if read_only:
                mark_read_only(session)
            yield session
        except (OperationalError, InterfaceError) as exc:
            session.rollback()
            logger.error(
                "storage_unavailable",
                extra={"operation": operation, "error": str(exc.orig or exc)},
            )
            raise StorageUnavailableError(operation, str(exc.orig or exc)) from exc
        except BaseException:
            session.rollback()
            raise
        finally:
            session.close()

    def _retry_on_conflict(
        self,
        customer_id: UUID,
        target_label: str,
        step: Callable[[], T],
    ) -> T:
        attempt = 0
        while True:
            attempt += 1
            try:
                return step()
            except OptimisticLockError:
                if attempt > self._max_conflict_retries:
                    logger.warning(
                        "transition_conflict_exhausted",
                        extra={"target_status": target_label, "attempts": attempt},
                    )
                    raise TransitionConflictError(str(customer_id), target_label, attempt)
                logger.info(
                    "transition_conflict_retry",
                    extra={"target_status": target_label, "attempt": attempt},
                )

    def _flush_write(self, store: CustomerStore, customer: Customer) -> None:
        """Save the customer row, mapping a seq collision to a version conflict."""
        try:
            store.save_state(customer)
        except IntegrityError as exc:
            raise OptimisticLockError("Customer", str(customer.id)) from exc

    def _append(self, session: Session, customer: Customer, **kwargs) -> TransitionRecordInfo:
        try:
            record = AuditTrail(session).append(customer.id, seq=customer.version, **kwargs)
        except IntegrityError as exc:
            # Another writer already holds this position in the history
            raise OptimisticLockError("Customer", str(customer.id)) from exc
        return record_to_info(record)

    @staticmethod
    def _category_of(customer: Customer, rule: CounterRule | None) -> str:
        """The counting category: the rule's field, else the certificate type."""
        field = rule.category_field if rule is not None and rule.category_field else None
        value = getattr(customer, field) if field else customer.certificate_type
        if isinstance(value, Enum):
            value = value.value
        return str(value) if value is not None else DEFAULT_CATEGORY

    def _next_occurred_at(self, customer: Customer) -> datetime:
        now = self._clock.now()
        if customer.status_changed_at is not None and now < customer.status_changed_at:
            return customer.status_changed_at
        return now

    # =========================================================================
    # Transitions
    # =========================================================================

    def transition(
        self,
        customer_id: UUID,
        target: CustomerStatus | str,
        reason: str = "",
        *,
        effective_at: datetime | None = None,
        actor_id: UUID | None = None,
        include_deleted: bool = False,
    ) -> TransitionResult:
        """
        Move a customer to ``target``.

        Args:
            customer_id: Customer to move.
            target: Target status (member, value or display name).
            reason: Free text stored on the history record.
            effective_at: Domain timestamp that decides the counter period
                (backdating).  Defaults to the time of the write.
            actor_id: Who requested the change.
            include_deleted: Administrative variant that may move a
                soft-deleted customer.

        Returns:
            TransitionResult with status TRANSITIONED, NO_OP or
            COUNTER_DEGRADED.
        """
        target_status = CustomerStatus.parse(target)
        if effective_at is not None and effective_at.tzinfo is None:
            raise ValueError("effective_at must be timezone-aware")

        with LogContext.bind(
            customer_id=str(customer_id),
            actor_id=str(actor_id) if actor_id else None,
        ):
            logger.info(
                "transition_started",
                extra={"target_status": target_status.value},
            )
            applied = self._retry_on_conflict(
                customer_id,
                target_status.value,
                lambda: self._apply_transition(
                    customer_id,
                    target_status,
                    reason,
                    effective_at,
                    actor_id,
                    include_deleted,
                ),
            )

            if applied.record is None:
                return TransitionResult(
                    status=TransitionStatus.NO_OP,
                    customer=applied.customer,
                )

            if not applied.counter_keys:
                return TransitionResult(
                    status=TransitionStatus.TRANSITIONED,
                    customer=applied.customer,
                    record=applied.record,
                )

            counter_error = self._increment_counters(customer_id, applied.counter_keys)
            return TransitionResult(
                status=(
                    TransitionStatus.COUNTER_DEGRADED
                    if counter_error
                    else TransitionStatus.TRANSITIONED
                ),
                customer=applied.customer,
                record=applied.record,
                counter_keys=applied.counter_keys,
                counter_error=counter_error,
            )

    def _apply_transition(
        self,
        customer_id: UUID,
        target: CustomerStatus,
        reason: str,
        effective_at: datetime | None,
        actor_id: UUID | None,
        include_deleted: bool,
    ) -> _AppliedChange:
        with self._unit_of_work("transition") as session:
            store = CustomerStore(session)
            customer = store.load_for_update(customer_id, include_deleted)
            current = customer.current_status

            if current == target:
                logger.info(
                    "transition_noop",
                    extra={"status": current.value},
                )
                info = customer_to_info(customer)
                session.rollback()
                return _AppliedChange(customer=info, record=None)

            if not self._graph.is_valid_transition(current, target):
                explanation = self._graph.explain(current, target)
                logger.info(
                    "transition_rejected",
                    extra={
                        "from_status": current.value,
                        "to_status": target.value,
                        "explanation": explanation,
                    },
                )
                raise InvalidTransitionError(
                    str(customer_id),
                    current.value,
                    target.value,
                    explanation,
                    self._graph.valid_targets(current),
                )

            occurred_at = self._next_occurred_at(customer)
            effective = effective_at or occurred_at
            rule = self._counter_rules.get(target)
            # Category as of this write; a later edit must not move the count
            category = self._category_of(customer, rule)

            customer.current_status = target
            customer.status_changed_at = occurred_at
            if actor_id is not None:
                customer.updated_by_id = actor_id

            counter_keys: tuple[CounterKey, ...] = ()
            if rule is not None:
                moment = effective
                if rule.stamp_field is not None:
                    stamped = effective.astimezone(timezone.utc).date()
                    setattr(customer, rule.stamp_field, stamped)
                    moment = stamped
                counter_keys = rule.keys_for(
                    rule.period_for(moment),
                    category if rule.category_field is not None else None,
                )

            self._flush_write(store, customer)
            record = self._append(
                session,
                customer,
                from_status=current,
                to_status=target,
                reason=reason,
                occurred_at=occurred_at,
                action=TransitionAction.TRANSITIONED,
                effective_at=effective,
                category=category,
                actor_id=actor_id,
            )
            info = customer_to_info(customer)
            session.commit()

        logger.info(
            "transition_committed",
            extra={
                "from_status": current.value,
                "to_status": target.value,
                "seq": record.seq,
                "version": info.version,
            },
        )
        return _AppliedChange(customer=info, record=record, counter_keys=counter_keys)

    def _increment_counters(
        self,
        customer_id: UUID,
        keys: tuple[CounterKey, ...],
    ) -> CounterDegradedError | None:
        """
        Bump every key in one short transaction.

        Returns the degradation to report, or None on success.  The state
        change is already committed, so a failure here is reported on the
        result instead of raised.
        """
        labels = tuple(key.label for key in keys)
        session = self._session_factory()
        try:
            counter_store = AggregateCounterStore(session)
            counts = {key.label: counter_store.increment(key) for key in keys}
            session.commit()
        except (SQLAlchemyError, CounterError) as exc:
            session.rollback()
            logger.error(
                "counter_increment_failed",
                extra={"counter_keys": labels, "error": str(exc)},
            )
            return CounterDegradedError(str(customer_id), labels, str(exc))
        finally:
            session.close()

        logger.info("counter_incremented", extra={"counts": counts})
        return None

    # =========================================================================
    # Customer lifecycle (create / soft delete / restore)
    # =========================================================================

    def create_customer(
        self,
        name: str,
        certificate_type: str | None = None,
        customer_type: CustomerType = CustomerType.NEW_CUSTOMER,
        *,
        actor_id: UUID | None = None,
    ) -> CustomerInfo:
        """
        Create a customer in the graph's initial status.

        Writes the CREATED history record (``None -> initial``) in the same
        transaction as the customer row.  A blank ``certificate_type``
        falls back to OTHERS.

        Raises:
            ValueError: empty name, or a certificate type equal to the
                reserved all-categories marker ``*``.
        """
        if not name or not name.strip():
            raise ValueError("Customer name is required")
        category = (certificate_type or "").strip() or DEFAULT_CATEGORY
        if category == ALL_CATEGORIES:
            raise ValueError(
                f"Certificate type {ALL_CATEGORIES!r} is reserved for the "
                "all-categories counter"
            )
        initial = self._graph.initial_state

        with self._unit_of_work("create_customer") as session:
            now = self._clock.now()
            customer = Customer(
                name=name.strip(),
                certificate_type=category,
                customer_type=customer_type,
                current_status=initial,
                status_changed_at=now,
                created_by_id=actor_id or SYSTEM_ACTOR_ID,
            )
            CustomerStore(session).add(customer)
            self._append(
                session,
                customer,
                from_status=None,
                to_status=initial,
                reason=CREATION_REASON,
                occurred_at=now,
                action=TransitionAction.CREATED,
                category=category,
                actor_id=actor_id,
            )
            info = customer_to_info(customer)
            session.commit()

        logger.info(
            "customer_created",
            extra={
                "customer_id": str(info.id),
                "status": initial.value,
                "certificate_type": category,
            },
        )
        return info

    def soft_delete_customer(
        self,
        customer_id: UUID,
        reason: str = "",
        *,
        actor_id: UUID | None = None,
    ) -> CustomerInfo:
        """
        Mark a customer deleted.  The row and its history stay in place.

        Raises:
            CustomerAlreadyDeletedError: the customer is already deleted.
        """
        with LogContext.bind(customer_id=str(customer_id)):
            info = self._retry_on_conflict(
                customer_id,
                TransitionAction.SOFT_DELETED.value,
                lambda: self._apply_marker(
                    customer_id, TransitionAction.SOFT_DELETED, reason, actor_id
                ),
            )
            logger.info("customer_soft_deleted", extra={"status": info.current_status.value})
            return info

    def restore_customer(
        self,
        customer_id: UUID,
        reason: str = "",
        *,
        actor_id: UUID | None = None,
    ) -> CustomerInfo:
        """
        Undo a soft delete.

        Raises:
            CustomerNotDeletedError: the customer is not deleted.
        """
        with LogContext.bind(customer_id=str(customer_id)):
            info = self._retry_on_conflict(
                customer_id,
                TransitionAction.RESTORED.value,
                lambda: self._apply_marker(
                    customer_id, TransitionAction.RESTORED, reason, actor_id
                ),
            )
            logger.info("customer_restored", extra={"status": info.current_status.value})
            return info

    def _apply_marker(
        self,
        customer_id: UUID,
        action: TransitionAction,
        reason: str,
        actor_id: UUID | None,
    ) -> CustomerInfo:
        with self._unit_of_work(action.value) as session:
            store = CustomerStore(session)
            customer = store.load_for_update(customer_id, include_deleted=True)

            if action == TransitionAction.SOFT_DELETED and customer.is_deleted:
                raise CustomerAlreadyDeletedError(str(customer_id))
            if action == TransitionAction.RESTORED and not customer.is_deleted:
                raise CustomerNotDeletedError(str(customer_id))

            occurred_at = self._next_occurred_at(customer)
            customer.deleted_at = (
                occurred_at if action == TransitionAction.SOFT_DELETED else None
            )
            customer.status_changed_at = occurred_at
            if actor_id is not None:
                customer.updated_by_id = actor_id

            self._flush_write(store, customer)
            self._append(
                session,
                customer,
                from_status=customer.current_status,
                to_status=customer.current_status,
                reason=reason,
                occurred_at=occurred_at,
                action=action,
                category=customer.certificate_type,
                actor_id=actor_id,
            )
            info = customer_to_info(customer)
            session.commit()
        return info

    # =========================================================================
    # Read-only queries
    # =========================================================================

    def get_customer(self, customer_id: UUID, include_deleted: bool = False) -> CustomerInfo:
        with self._unit_of_work("get_customer", read_only=True) as session:
            return customer_to_info(CustomerStore(session).load(customer_id, include_deleted))

    def valid_targets(self, customer_id: UUID) -> frozenset[CustomerStatus]:
        """Statuses the customer may move to from where it is now."""
        return self._graph.valid_targets(self.get_customer(customer_id).current_status)

    def can_transition(self, customer_id: UUID, target: CustomerStatus | str) -> bool:
        current = self.get_customer(customer_id).current_status
        return self._graph.is_valid_transition(current, CustomerStatus.parse(target))

    def history(self, customer_id: UUID) -> tuple[TransitionRecordInfo, ...]:
        """
        A customer's records, most recent first.

        Soft-deleted customers keep their history and it stays readable.

        Raises:
            CustomerNotFoundError: no customer row with this id exists.
        """
        with self._unit_of_work("history", read_only=True) as session:
            if not CustomerStore(session).exists(customer_id):
                raise CustomerNotFoundError(str(customer_id), include_deleted=True)
            return AuditTrail(session).history(customer_id)

    def status_counts(self, include_deleted: bool = False) -> dict[CustomerStatus, int]:
        """
        How many customers sit in each status right now.

        Every status of the graph is present, with zero where empty.
        """
        with self._unit_of_work("status_counts", read_only=True) as session:
            counts = CustomerStore(session).status_counts(include_deleted)
        result = {status: 0 for status in self._graph.states}
        result.update(counts)
        return result
