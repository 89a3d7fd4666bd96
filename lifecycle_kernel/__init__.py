"""
Lifecycle Kernel

A customer lifecycle engine with:
- A closed status set and an explicit, configurable transition graph
- Append-only per-customer history written atomically with each change
- Period-bucketed aggregate counters that stay exact under concurrency
- Offline counter reconciliation against the history
"""

__version__ = "0.1.0"
