"""ORM models for the lifecycle kernel."""

from lifecycle_kernel.models.counter_bucket import CounterBucket
from lifecycle_kernel.models.customer import Customer
from lifecycle_kernel.models.transition_record import TransitionRecord

__all__ = [
    "CounterBucket",
    "Customer",
    "TransitionRecord",
]
