"""Optimistic local updates reconciled by the next real refresh."""

from typing import Any, List, Optional, Union

import structlog

from ..framework.cache import RevalidationStore
from ..framework.metrics import SyncMetrics
from ..schemas.models import Row, WriteOperation
from ..utils.errors import BackendError
from ..utils.logging import add_resource_key
from .fetcher import QueryBackend


def _replace_or_append(rows: Optional[List[Row]], row: Row, id_field: str) -> List[Row]:
    rows = list(rows or [])
    if id_field in row:
        for index, existing in enumerate(rows):
            if existing.get(id_field) == row[id_field]:
                rows[index] = row
                return rows
    rows.append(row)
    return rows


def _merge(rows: Optional[List[Row]], changes: Row, id_field: str) -> List[Row]:
    rows = list(rows or [])
    if id_field not in changes:
        return rows
    for index, existing in enumerate(rows):
        if existing.get(id_field) == changes.get(id_field):
            rows[index] = {**existing, **changes}
            return rows
    rows.append(dict(changes))
    return rows


def _without(rows: Optional[List[Row]], row_id: Any, id_field: str) -> List[Row]:
    return [row for row in (rows or []) if row.get(id_field) != row_id]


class OptimisticUpdater:
    """
    Pushes locally-known values into the cache ahead of backend confirmation.

    Local values stay marked stale until a refresh replaces them. ``write``
    performs that refresh itself once the backend acknowledges; callers using
    the bare ``upsert``/``append``/``remove`` must refresh after their own
    write completes.
    """

    def __init__(
        self,
        store: RevalidationStore,
        backend: QueryBackend,
        metrics: Optional[SyncMetrics] = None,
    ):
        self.store = store
        self.backend = backend
        self.metrics = metrics
        self.logger = structlog.get_logger("optimistic-updater")

    def upsert(self, key: str, row: Row) -> List[Row]:
        """Replace the row with the same identifier, or append it."""
        id_field = self.store.resource(key).id_field
        return self.store.mutate_local(key, lambda rows: _replace_or_append(rows, row, id_field))

    def append(self, key: str, row: Row) -> List[Row]:
        return self.store.mutate_local(key, lambda rows: list(rows or []) + [row])

    def remove(self, key: str, row_id: Any) -> List[Row]:
        id_field = self.store.resource(key).id_field
        return self.store.mutate_local(key, lambda rows: _without(rows, row_id, id_field))

    async def write(
        self,
        key: str,
        operation: Union[WriteOperation, str],
        payload: Row,
        optimistic_row: Optional[Row] = None,
    ) -> Row:
        """
        Apply a write optimistically, send it, then reconcile.

        Raises:
            BackendError: If the backend rejects the write. The optimistic
                change is rolled back. Any other exception raised by the
                backend call rolls back the same way and propagates as is.
        """
        operation = WriteOperation(operation)
        resource = self.store.resource(key)
        id_field = resource.id_field
        entry = self.store.entries[key]
        previous_value = list(entry.value) if entry.value is not None else None
        previous_optimistic = entry.optimistic
        previous_updated_at = entry.updated_at
        log = add_resource_key(self.logger, key)

        if operation == WriteOperation.INSERT:
            self.upsert(key, optimistic_row or payload)
        elif operation == WriteOperation.UPDATE:
            if optimistic_row is not None:
                self.upsert(key, optimistic_row)
            else:
                self.store.mutate_local(key, lambda rows: _merge(rows, payload, id_field))
        else:
            self.remove(key, payload.get(id_field))

        try:
            if operation == WriteOperation.INSERT:
                row = await self.backend.insert(resource.table, payload)
            elif operation == WriteOperation.UPDATE:
                row = await self.backend.update(resource.table, payload, id_field=id_field)
            else:
                row = await self.backend.delete(resource.table, payload, id_field=id_field)
        except Exception as e:
            if entry.updated_at == previous_updated_at:
                self.store.set_local(key, previous_value, optimistic=previous_optimistic)
            elif entry.optimistic:
                # A refresh landed during the round trip; refetch instead of
                # restoring the older snapshot over it
                self.store.revalidate(key)
            if self.metrics:
                self.metrics.record_write(key, operation.value, success=False)
            log.warning("Write rejected, optimistic value rolled back",
                        operation=operation.value,
                        error_code=getattr(e, "error_code", type(e).__name__),
                        error=str(e))
            raise

        if self.metrics:
            self.metrics.record_write(key, operation.value, success=True)
        log.info("Write acknowledged", operation=operation.value)

        try:
            await self.store.refresh(key, fresh=True)
        except BackendError as e:
            log.warning("Refresh after write failed", error=str(e))

        return row
