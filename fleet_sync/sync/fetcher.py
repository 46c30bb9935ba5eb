"""Stateless reads against backend tables and views."""

from typing import Any, Dict, List, Optional, Protocol, Sequence

import structlog

from ..schemas.models import ResourceDefinition, Row


class QueryBackend(Protocol):
    """Read/write interface of the hosted database."""

    async def select(
        self,
        table: str,
        columns: Sequence[str] = ("*",),
        order_by: Optional[str] = None,
        descending: bool = False,
    ) -> List[Row]: ...

    async def insert(self, table: str, payload: Row) -> Row: ...

    async def update(self, table: str, payload: Row, id_field: str = "id") -> Row: ...

    async def delete(self, table: str, payload: Row, id_field: str = "id") -> Row: ...


class Fetcher:
    """Issues one backend read per call. No caching and no retries."""

    def __init__(self, backend: QueryBackend):
        self.backend = backend
        self.logger = structlog.get_logger("fetcher")
        self.fetch_count = 0

    async def fetch(self, resource: ResourceDefinition) -> List[Row]:
        """Fetch rows for a resource; backend errors propagate to the caller."""
        self.fetch_count += 1
        rows = await self.backend.select(
            resource.table,
            columns=resource.columns,
            order_by=resource.order_by,
            descending=resource.descending,
        )
        self.logger.debug(
            "Fetched rows",
            resource_key=resource.key,
            table=resource.table,
            row_count=len(rows),
        )
        return list(rows)

    def get_stats(self) -> Dict[str, Any]:
        return {"fetch_count": self.fetch_count}
