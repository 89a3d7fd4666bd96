"""Kernel services: stores, audit trail, counters, and the lifecycle orchestrator."""

from lifecycle_kernel.services.audit_trail import AuditTrail
from lifecycle_kernel.services.counter_store import AggregateCounterStore
from lifecycle_kernel.services.customer_store import CustomerStore
from lifecycle_kernel.services.lifecycle_service import LifecycleService
from lifecycle_kernel.services.reconciliation_service import (
    CounterDrift,
    CounterReconciliationService,
    ReconciliationReport,
)

__all__ = [
    "AggregateCounterStore",
    "AuditTrail",
    "CounterDrift",
    "CounterReconciliationService",
    "CustomerStore",
    "LifecycleService",
    "ReconciliationReport",
]
