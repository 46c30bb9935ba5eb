"""Stale-while-revalidate cache for backend resources."""

import asyncio
import time
from datetime import datetime, timezone
from typing import Dict, Any, Optional, List, Callable, Set

import structlog

from ..schemas.models import CacheEntry, ResourceDefinition, Row, Snapshot
from ..sync.dedup import deduplicate
from ..sync.fetcher import Fetcher
from .config import CacheConfig
from .metrics import SyncMetrics

logger = structlog.get_logger()

Listener = Callable[[Snapshot], None]


class RevalidationStore:
    """
    Keyed cache of resource rows with background revalidation.

    Every key has at most one in-flight refresh. A failed refresh keeps the
    last good value and records the error (stale-while-error). Listeners are
    called synchronously, in registration order, whenever a key's value or
    error state changes.
    """

    def __init__(
        self,
        fetcher: Fetcher,
        config: Optional[CacheConfig] = None,
        metrics: Optional[SyncMetrics] = None,
    ):
        self.fetcher = fetcher
        self.config = config or CacheConfig()
        self.metrics = metrics
        self.logger = structlog.get_logger("revalidation-store")
        self.resources: Dict[str, ResourceDefinition] = {}
        self.entries: Dict[str, CacheEntry] = {}
        self.listeners: Dict[str, List[Listener]] = {}
        self._background: Set[asyncio.Task] = set()
        self._closed = False
        self.cache_stats = {
            "hits": 0,
            "misses": 0,
            "refreshes": 0,
            "coalesced": 0,
            "failures": 0,
            "local_mutations": 0,
            "debounce_resets": 0,
        }

    def register(self, resource: ResourceDefinition) -> None:
        """Register a resource definition under its key."""
        existing = self.resources.get(resource.key)
        if existing is not None and existing != resource:
            raise ValueError(f"Resource key already registered with a different definition: {resource.key}")
        self.resources[resource.key] = resource
        self.entries.setdefault(resource.key, CacheEntry(key=resource.key))
        self.listeners.setdefault(resource.key, [])

    def resource(self, key: str) -> ResourceDefinition:
        try:
            return self.resources[key]
        except KeyError:
            raise KeyError(f"Unknown resource key: {key}") from None

    def keys_for_table(self, table: str) -> List[str]:
        """Registered keys that read directly from ``table``."""
        return [key for key, resource in self.resources.items() if resource.table == table]

    def _entry(self, key: str) -> CacheEntry:
        self.resource(key)
        return self.entries[key]

    def _is_stale(self, entry: CacheEntry) -> bool:
        if entry.value is None or entry.error is not None or entry.optimistic:
            return True
        if entry.updated_at is None:
            return True
        age = (datetime.now(timezone.utc) - entry.updated_at).total_seconds()
        return age >= self.config.revalidation_interval_seconds

    def _snapshot(self, entry: CacheEntry) -> Snapshot:
        return Snapshot(
            key=entry.key,
            data=list(entry.value) if entry.value is not None else None,
            is_stale=self._is_stale(entry),
            error=entry.error,
            updated_at=entry.updated_at,
            is_validating=entry.is_validating,
        )

    def get(self, key: str) -> Snapshot:
        """Current value for a key, possibly stale or absent."""
        entry = self._entry(key)
        if entry.value is None:
            self.cache_stats["misses"] += 1
        else:
            self.cache_stats["hits"] += 1
        return self._snapshot(entry)

    async def refresh(self, key: str, fresh: bool = False) -> List[Row]:
        """
        Fetch, deduplicate and store the rows for ``key``.

        Joins the outstanding refresh when one is in flight. With ``fresh``
        the outstanding refresh is awaited first and a new one is started
        afterwards, so the returned rows were read after this call began.

        Raises:
            BackendError: If the fetch fails. The previous value is kept.
        """
        entry = self._entry(key)

        if entry.is_validating:
            current = entry.in_flight
            if not fresh:
                self.cache_stats["coalesced"] += 1
                if self.metrics:
                    self.metrics.record_coalesced(key)
                self.logger.debug("Joining in-flight refresh", resource_key=key)
                return await asyncio.shield(current)
            await asyncio.wait([current])
            if entry.is_validating:
                # Another caller already started a newer refresh
                self.cache_stats["coalesced"] += 1
                return await asyncio.shield(entry.in_flight)

        task = asyncio.create_task(self._run_refresh(self.resources[key], entry))
        entry.in_flight = task
        return await asyncio.shield(task)

    async def _run_refresh(self, resource: ResourceDefinition, entry: CacheEntry) -> List[Row]:
        key = resource.key
        start = time.monotonic()
        self.cache_stats["refreshes"] += 1
        try:
            fetched = await self.fetcher.fetch(resource)
        except Exception as e:
            self.cache_stats["failures"] += 1
            if self.metrics:
                self.metrics.record_refresh(key, time.monotonic() - start, success=False)
            self.logger.warning("Refresh failed, keeping cached value",
                                resource_key=key,
                                has_value=entry.value is not None,
                                error=str(e))
            entry.error = e
            self._notify(key)
            raise
        finally:
            entry.in_flight = None

        rows = deduplicate(fetched, resource.id_field, assume_distinct=resource.distinct)
        dropped = len(fetched) - len(rows)
        if dropped:
            self.logger.info("Dropped duplicate rows", resource_key=key, duplicates=dropped)
            if self.metrics:
                self.metrics.record_duplicates(key, dropped)

        changed = entry.value != rows or entry.error is not None or entry.optimistic
        entry.value = rows
        entry.error = None
        entry.optimistic = False
        entry.updated_at = datetime.now(timezone.utc)

        if self.metrics:
            self.metrics.record_refresh(key, time.monotonic() - start, success=True)
        self.logger.debug("Refresh completed", resource_key=key, row_count=len(rows), changed=changed)

        if changed:
            self._notify(key)
        return rows

    def revalidate(self, key: str) -> asyncio.Task:
        """Refresh in the background; failures are logged, not raised."""
        async def run():
            try:
                await self.refresh(key)
            except Exception as e:
                self.logger.debug("Background revalidation failed", resource_key=key, error=str(e))

        task = asyncio.create_task(run())
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    def mutate_local(self, key: str, update_fn: Callable[[Optional[List[Row]]], Optional[List[Row]]]) -> Optional[List[Row]]:
        """Apply ``update_fn`` to the cached value without a backend round trip."""
        entry = self._entry(key)
        current = list(entry.value) if entry.value is not None else None
        entry.value = update_fn(current)
        entry.optimistic = True
        self.cache_stats["local_mutations"] += 1
        self.logger.debug("Local mutation applied", resource_key=key)
        self._notify(key)
        return entry.value

    def set_local(self, key: str, value: Optional[List[Row]], optimistic: bool = False) -> None:
        """Replace the cached value, e.g. to roll back a failed optimistic write."""
        entry = self._entry(key)
        entry.value = list(value) if value is not None else None
        entry.optimistic = optimistic
        self._notify(key)

    def schedule_refresh(self, key: str, delay: float) -> None:
        """(Re)arm the debounce timer for ``key``; only the last call counts."""
        entry = self._entry(key)
        if self._closed:
            return
        if entry.debounce_handle is not None:
            entry.debounce_handle.cancel()
            self.cache_stats["debounce_resets"] += 1
            if self.metrics:
                self.metrics.record_debounce_reset(key)
        loop = asyncio.get_running_loop()
        entry.debounce_handle = loop.call_later(delay, self._fire_scheduled, key)

    def _fire_scheduled(self, key: str) -> None:
        entry = self.entries.get(key)
        if entry is None:
            return
        entry.debounce_handle = None
        self.logger.debug("Debounced refresh firing", resource_key=key)
        self.revalidate(key)

    def cancel_scheduled(self, key: str) -> bool:
        """Cancel a pending debounced refresh."""
        entry = self._entry(key)
        if entry.debounce_handle is None:
            return False
        entry.debounce_handle.cancel()
        entry.debounce_handle = None
        return True

    def has_pending(self, key: str) -> bool:
        return self._entry(key).debounce_handle is not None

    def subscribe(self, key: str, listener: Listener) -> Callable[[], None]:
        """Register a listener; returns a callable that removes it."""
        self._entry(key)
        self.listeners[key].append(listener)

        def unsubscribe() -> None:
            listeners = self.listeners.get(key, [])
            if listener in listeners:
                listeners.remove(listener)

        return unsubscribe

    def _notify(self, key: str) -> None:
        listeners = list(self.listeners.get(key, ()))
        if not listeners:
            return
        snapshot = self._snapshot(self.entries[key])
        for listener in listeners:
            try:
                listener(snapshot)
            except Exception as e:
                self.logger.error("Listener failed", resource_key=key, error=str(e))

    def get_stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        total_requests = self.cache_stats["hits"] + self.cache_stats["misses"]
        hit_rate = (self.cache_stats["hits"] / total_requests * 100) if total_requests > 0 else 0

        return {
            **self.cache_stats,
            "hit_rate": hit_rate,
            "entries": len(self.entries),
            "pending_timers": sum(1 for e in self.entries.values() if e.debounce_handle is not None),
            "in_flight": sum(1 for e in self.entries.values() if e.is_validating),
        }

    async def close(self) -> None:
        """Cancel timers and outstanding refreshes."""
        self._closed = True
        tasks = list(self._background)
        for entry in self.entries.values():
            if entry.debounce_handle is not None:
                entry.debounce_handle.cancel()
                entry.debounce_handle = None
            if entry.in_flight is not None and not entry.in_flight.done():
                tasks.append(entry.in_flight)

        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        self.listeners.clear()
        self.logger.info("Revalidation store closed", entries=len(self.entries))
