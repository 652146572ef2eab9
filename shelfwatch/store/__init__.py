"""SQLite tracking store for item snapshots and transitions.

This module provides persistent storage for:
- Append-only item snapshots, one row per item per scrape cycle
- Append-only classified transitions
- One marker per processed scrape cycle, empty cycles included
- Schema migrations and explicit retention pruning
"""

from shelfwatch.store.errors import (
    DuplicateCycleError,
    MigrationError,
    StorageError,
    StoreConnectionError,
    TrackingStoreError,
)
from shelfwatch.store.metrics import (
    MetricsRecorder,
    NullMetricsRecorder,
    StoreMetrics,
)
from shelfwatch.store.migrations import CURRENT_VERSION, MigrationManager
from shelfwatch.store.store import TrackingStore


__all__ = [
    # Errors
    "DuplicateCycleError",
    "MigrationError",
    "StorageError",
    "StoreConnectionError",
    "TrackingStoreError",
    # Metrics
    "MetricsRecorder",
    "NullMetricsRecorder",
    "StoreMetrics",
    # Migrations
    "CURRENT_VERSION",
    "MigrationManager",
    # Store
    "TrackingStore",
]
