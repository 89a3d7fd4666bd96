"""
Tests for the customer row and the db plumbing underneath it.

Covers:
- session_scope commit and rollback.
- Audit columns and the optimistic version column.
- A stale write surfaces as OptimisticLockError.
- SQLite engines refuse in-memory databases; read-only sessions take no
  write lock.
"""

from datetime import datetime, timezone

import pytest
from sqlalchemy import select

from lifecycle_kernel.db.engine import init_engine_from_url, mark_read_only, session_scope
from lifecycle_kernel.domain.statuses import CustomerStatus, CustomerType
from lifecycle_kernel.exceptions import OptimisticLockError
from lifecycle_kernel.models.customer import Customer
from lifecycle_kernel.services.customer_store import CustomerStore

NOW = datetime(2024, 3, 15, 12, 0, tzinfo=timezone.utc)


def _customer(actor_id, name="Row Ltd") -> Customer:
    return Customer(
        name=name,
        current_status=CustomerStatus.NEW,
        status_changed_at=NOW,
        created_by_id=actor_id,
    )


class TestSessionScope:
    def test_commits_on_exit(self, session_factory, test_actor_id):
        with session_scope() as s:
            s.add(_customer(test_actor_id))

        with session_factory() as s:
            stored = s.execute(select(Customer)).scalar_one()
            assert stored.name == "Row Ltd"
            assert stored.certificate_type == "OTHERS"
            assert stored.customer_type == CustomerType.NEW_CUSTOMER
            assert stored.version == 1
            assert stored.created_at is not None
            assert stored.status_changed_at == NOW

    def test_rolls_back_on_error(self, session_factory, test_actor_id):
        with pytest.raises(RuntimeError):
            with session_scope() as s:
                s.add(_customer(test_actor_id))
                s.flush()
                raise RuntimeError("abort")

        with session_factory() as s:
            assert s.execute(select(Customer)).first() is None


class TestOptimisticVersion:
    def test_update_bumps_version(self, session_factory, test_actor_id):
        with session_factory() as s:
            customer = CustomerStore(s).add(_customer(test_actor_id))
            customer.current_status = CustomerStatus.SUBMITTED
            CustomerStore(s).save_state(customer)
            s.commit()
            assert customer.version == 2

    def test_stale_write_raises(self, session_factory, test_actor_id):
        with session_factory() as s:
            customer_id = CustomerStore(s).add(_customer(test_actor_id)).id
            s.commit()

        stale_session = session_factory()
        stale = CustomerStore(stale_session).load(customer_id)
        # End the read transaction; the instance keeps version 1
        stale_session.commit()

        with session_factory() as s:
            fresh = CustomerStore(s).load_for_update(customer_id)
            fresh.current_status = CustomerStatus.NOTIFIED
            CustomerStore(s).save_state(fresh)
            s.commit()

        stale.current_status = CustomerStatus.ABORTED
        with pytest.raises(OptimisticLockError) as exc_info:
            CustomerStore(stale_session).save_state(stale)
        assert exc_info.value.entity_id == str(customer_id)
        stale_session.rollback()
        stale_session.close()

        with session_factory() as s:
            assert CustomerStore(s).load(customer_id).current_status == CustomerStatus.NOTIFIED


class TestEngineSetup:
    @pytest.mark.parametrize("url", ["sqlite://", "sqlite:///:memory:"])
    def test_in_memory_sqlite_rejected(self, url):
        with pytest.raises(ValueError, match="file database"):
            init_engine_from_url(url)

    @pytest.mark.slow_locks
    def test_read_only_session_does_not_block_writer(self, session_factory, test_actor_id):
        reader = session_factory()
        mark_read_only(reader)
        assert reader.execute(select(Customer)).first() is None

        with session_factory() as writer:
            writer.add(_customer(test_actor_id))
            writer.commit()

        reader.rollback()
        reader.close()
        with session_factory() as s:
            assert s.execute(select(Customer)).scalar_one().name == "Row Ltd"
