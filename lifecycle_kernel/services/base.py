"""
BaseService -- abstract base for the session-bound kernel services.

Responsibility:
    Common constructor and session-handling contract for CustomerStore,
    AuditTrail and AggregateCounterStore.  Each receives a SQLAlchemy
    ``Session`` and persists through ``session.flush()`` -- never
    ``session.commit()``.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.

Invariants enforced:
    - Transaction boundaries: these services flush within the caller's
      transaction and never commit or roll back.  LifecycleService owns
      every commit, which is what keeps a status change and its history
      record in one atomic unit.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from lifecycle_kernel.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseService(ABC, Generic[ModelType]):
    """
    Abstract base class for the session-bound kernel services.

    Guarantees:
        - The service never calls ``session.commit()`` or
          ``session.rollback()``.

    Non-goals:
        - Does NOT manage transaction lifecycle (commit/rollback).
    """

    def __init__(self, session: Session):
        """
        Args:
            session: SQLAlchemy session for database operations.
        """
        self.session = session
