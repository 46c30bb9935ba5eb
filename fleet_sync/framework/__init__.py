"""
Core framework components for the synchronization layer.

Provides the revalidation store, cross-table invalidation rules,
configuration and metrics.
"""

from .config import SyncConfig, BackendConfig, RealtimeConfig, CacheConfig, ObservabilityConfig
from .cache import RevalidationStore
from .cache_invalidation import DependencyMap
from .metrics import SyncMetrics

__all__ = [
    "SyncConfig",
    "BackendConfig",
    "RealtimeConfig",
    "CacheConfig",
    "ObservabilityConfig",
    "RevalidationStore",
    "DependencyMap",
    "SyncMetrics",
]
