"""
Schema definitions for the synchronization layer.
"""

from .models import (
    Row,
    ChangeType,
    WriteOperation,
    ResourceDefinition,
    ChangeEvent,
    CacheEntry,
    Snapshot,
)

__all__ = [
    "Row",
    "ChangeType",
    "WriteOperation",
    "ResourceDefinition",
    "ChangeEvent",
    "CacheEntry",
    "Snapshot",
]
