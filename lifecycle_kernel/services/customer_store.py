"""
CustomerStore -- read and write access to the customer current-state row.

Responsibility:
    Loads customers (plain or row-locked), persists status changes with the
    optimistic version check, and answers the current-status distribution.
    Translates SQLAlchemy's ``StaleDataError`` into the kernel's
    ``OptimisticLockError`` so callers never depend on ORM internals.

Architecture position:
    Kernel > Services.  Used only by LifecycleService; flush-only.

Failure modes:
    - CustomerNotFoundError when the row is absent, or soft-deleted and
      ``include_deleted`` is False.
    - OptimisticLockError when the version check on UPDATE fails.
"""

from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm.exc import StaleDataError

from lifecycle_kernel.domain.dtos import CustomerInfo
from lifecycle_kernel.domain.statuses import CustomerStatus
from lifecycle_kernel.exceptions import CustomerNotFoundError, OptimisticLockError
from lifecycle_kernel.logging_config import get_logger
from lifecycle_kernel.models.customer import Customer
from lifecycle_kernel.services.base import BaseService

logger = get_logger("services.customer_store")


def customer_to_info(customer: Customer) -> CustomerInfo:
    """Snapshot an ORM customer while its session is still open."""
    return CustomerInfo(
        id=customer.id,
        name=customer.name,
        certificate_type=customer.certificate_type,
        customer_type=customer.customer_type,
        current_status=customer.current_status,
        version=customer.version,
        status_changed_at=customer.status_changed_at,
        certified_at=customer.certified_at,
        deleted_at=customer.deleted_at,
    )


class CustomerStore(BaseService[Customer]):
    """
    Entity store for customers.

    Contract:
        ``load_for_update`` takes a row lock (``SELECT ... FOR UPDATE``)
        that is held until the caller's transaction ends.  On SQLite the
        database write lock taken by ``BEGIN IMMEDIATE`` plays that role.
    """

    def _select(self, customer_id: UUID, include_deleted: bool):
        stmt = select(Customer).where(Customer.id == customer_id)
        if not include_deleted:
            stmt = stmt.where(Customer.deleted_at.is_(None))
        return stmt

    def load(self, customer_id: UUID, include_deleted: bool = False) -> Customer:
        customer = self.session.execute(
            self._select(customer_id, include_deleted)
        ).scalar_one_or_none()
        if customer is None:
            raise CustomerNotFoundError(str(customer_id), include_deleted)
        return customer

    def load_for_update(self, customer_id: UUID, include_deleted: bool = False) -> Customer:
        """
        Load and lock a customer row.

        ``populate_existing`` refreshes an instance already in the identity
        map so the caller validates against the committed status, not a
        stale cached one.
        """
        customer = self.session.execute(
            self._select(customer_id, include_deleted)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if customer is None:
            raise CustomerNotFoundError(str(customer_id), include_deleted)
        return customer

    def exists(self, customer_id: UUID) -> bool:
        """True when the row exists at all, soft-deleted or not."""
        return (
            self.session.execute(
                select(Customer.id).where(Customer.id == customer_id)
            ).first()
            is not None
        )

    def add(self, customer: Customer) -> Customer:
        """Insert a new customer.  The version column starts at 1."""
        self.session.add(customer)
        self.session.flush()
        return customer

    def save_state(self, customer: Customer) -> Customer:
        """
        Flush pending changes to a loaded customer.

        Raises:
            OptimisticLockError: another transaction bumped the version
                since this one loaded the row.
        """
        try:
            self.session.flush()
        except StaleDataError as exc:
            logger.warning(
                "customer_version_conflict",
                extra={"customer_id": str(customer.id)},
            )
            raise OptimisticLockError("Customer", str(customer.id)) from exc
        return customer

    def status_counts(self, include_deleted: bool = False) -> dict[CustomerStatus, int]:
        """Number of customers currently in each status."""
        stmt = select(Customer.current_status, func.count()).group_by(
            Customer.current_status
        )
        if not include_deleted:
            stmt = stmt.where(Customer.deleted_at.is_(None))
        return {status: count for status, count in self.session.execute(stmt).all()}
