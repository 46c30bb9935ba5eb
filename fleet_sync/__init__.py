"""
Client-side data synchronization for the fleet dashboard.

Keeps cached views of vehicles, locations, team members and tasks in step
with the hosted PostgreSQL database:

- framework: revalidation store, invalidation map, config, metrics
- realtime: change-notification bridge and polling fallback
- sync: fetcher, deduplication, optimistic updates, application context
- storage: PostgreSQL backend and LISTEN/NOTIFY channel
- schemas: shared data models
- utils: logging and errors
"""

from .framework import SyncConfig, RevalidationStore, DependencyMap, SyncMetrics
from .realtime import RealtimeBridge, RevalidationScheduler
from .schemas import ResourceDefinition, ChangeEvent, ChangeType, Snapshot, WriteOperation
from .sync.context import SyncContext, ResourceHandle
from .sync.optimistic import OptimisticUpdater

__version__ = "0.1.0"

__all__ = [
    "SyncConfig",
    "RevalidationStore",
    "DependencyMap",
    "SyncMetrics",
    "RealtimeBridge",
    "RevalidationScheduler",
    "ResourceDefinition",
    "ChangeEvent",
    "ChangeType",
    "Snapshot",
    "WriteOperation",
    "SyncContext",
    "ResourceHandle",
    "OptimisticUpdater",
]
