"""
Data models for the synchronization layer.

Defines resource definitions, change events and cache snapshots
shared by the store, the realtime bridge and consumers.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Dict, Any, Optional, List, Tuple
from datetime import datetime, timezone
from enum import Enum


Row = Dict[str, Any]


class ChangeType(str, Enum):
    """Row change types delivered by the notification channel."""
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class WriteOperation(str, Enum):
    """Backend write operations."""
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


@dataclass(frozen=True)
class ResourceDefinition:
    """A logical dataset tracked under one resource key."""
    key: str
    table: str
    columns: Tuple[str, ...] = ("*",)
    order_by: Optional[str] = None
    descending: bool = False
    id_field: str = "id"
    distinct: bool = False

    def __post_init__(self):
        if not self.key:
            raise ValueError("key is required")
        if not self.table:
            raise ValueError("table is required")
        if isinstance(self.columns, (list, str)):
            columns = (self.columns,) if isinstance(self.columns, str) else tuple(self.columns)
            object.__setattr__(self, "columns", columns)

    @classmethod
    def from_dict(cls, data: Dict[str, Any], default_id_field: str = "id") -> "ResourceDefinition":
        """Create from dictionary; ``id_field`` falls back to ``default_id_field``."""
        return cls(
            key=data["key"],
            table=data.get("table", data["key"]),
            columns=tuple(data.get("columns", ("*",))),
            order_by=data.get("order_by"),
            descending=data.get("descending", False),
            id_field=data.get("id_field", default_id_field),
            distinct=data.get("distinct", False),
        )


@dataclass
class ChangeEvent:
    """A row-level change pushed by the backend."""
    event_type: ChangeType
    table: str
    row: Row = field(default_factory=dict)
    old_row: Optional[Row] = None
    received_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "type": self.event_type.value,
            "table": self.table,
            "record": self.row,
            "old_record": self.old_row,
            "received_at": self.received_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ChangeEvent":
        """Create from a notification payload."""
        return cls(
            event_type=ChangeType(str(data["type"]).upper()),
            table=data["table"],
            row=data.get("record") or {},
            old_row=data.get("old_record"),
        )


@dataclass
class CacheEntry:
    """Cache state for one resource key."""
    key: str
    value: Optional[List[Row]] = None
    updated_at: Optional[datetime] = None
    error: Optional[Exception] = None
    in_flight: Optional[asyncio.Task] = None
    debounce_handle: Optional[asyncio.TimerHandle] = None
    optimistic: bool = False

    @property
    def is_validating(self) -> bool:
        return self.in_flight is not None and not self.in_flight.done()


@dataclass(frozen=True)
class Snapshot:
    """Consumer-visible view of a cache entry."""
    key: str
    data: Optional[List[Row]]
    is_stale: bool
    error: Optional[Exception] = None
    updated_at: Optional[datetime] = None
    is_validating: bool = False
