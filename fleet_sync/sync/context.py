"""Application-root owner of the synchronization layer."""

from typing import Any, Callable, Dict, List, Optional, Set, Union

import structlog

from ..framework.cache import Listener, RevalidationStore
from ..framework.cache_invalidation import DependencyMap
from ..framework.config import SyncConfig
from ..framework.metrics import SyncMetrics
from ..realtime.bridge import ChangeChannel, RealtimeBridge
from ..realtime.scheduler import RevalidationScheduler
from ..schemas.models import ResourceDefinition, Row, Snapshot, WriteOperation
from .fetcher import Fetcher, QueryBackend
from .optimistic import OptimisticUpdater


logger = structlog.get_logger()


class ResourceHandle:
    """A consumer's view of one resource key."""

    def __init__(self, context: "SyncContext", key: str, realtime: bool):
        self.context = context
        self.key = key
        self.table = context.store.resource(key).table
        self.realtime = realtime
        self.polling = False
        self.closed = False
        self._unsubscribers: List[Callable[[], None]] = []

    @property
    def snapshot(self) -> Snapshot:
        return self.context.store.get(self.key)

    @property
    def data(self) -> Optional[List[Row]]:
        return self.snapshot.data

    @property
    def is_stale(self) -> bool:
        return self.snapshot.is_stale

    @property
    def error(self) -> Optional[Exception]:
        return self.snapshot.error

    @property
    def realtime_degraded(self) -> bool:
        bridge = self.context.bridge
        return self.realtime and bridge is not None and bridge.is_degraded(self.table)

    async def refresh(self) -> List[Row]:
        return await self.context.store.refresh(self.key)

    def optimistic_update(self, row: Row) -> List[Row]:
        return self.context.updater.upsert(self.key, row)

    def remove(self, row_id: Any) -> List[Row]:
        return self.context.updater.remove(self.key, row_id)

    async def write(
        self,
        operation: Union[WriteOperation, str],
        payload: Row,
        optimistic_row: Optional[Row] = None,
    ) -> Row:
        return await self.context.updater.write(self.key, operation, payload, optimistic_row)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        unsubscribe = self.context.store.subscribe(self.key, listener)
        self._unsubscribers.append(unsubscribe)
        return unsubscribe

    async def set_realtime(self, enabled: bool) -> None:
        """Switch between realtime updates and periodic revalidation."""
        if enabled == self.realtime or self.closed:
            return
        await self.context._detach(self)
        self.realtime = enabled
        await self.context._attach(self)

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()
        await self.context._release(self)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()


class SyncContext:
    """
    Owns the store, realtime bridge, scheduler and updater for one application.

    Created at the application root and passed to consumers; ``close`` tears
    every subscription, timer and connection down.
    """

    def __init__(
        self,
        backend: QueryBackend,
        channel: Optional[ChangeChannel] = None,
        config: Optional[SyncConfig] = None,
        dependency_map: Optional[DependencyMap] = None,
        metrics: Optional[SyncMetrics] = None,
    ):
        self.config = config or SyncConfig.from_env()
        self.logger = structlog.get_logger("sync-context").bind(service=self.config.service_name)
        self.backend = backend

        if metrics is None and self.config.observability.metrics_enabled:
            metrics = SyncMetrics()
        self.metrics = metrics

        if dependency_map is None:
            if self.config.dependency_file:
                dependency_map = DependencyMap.from_yaml(self.config.dependency_file)
            else:
                dependency_map = DependencyMap.from_mapping(self.config.table_dependencies)
        self.dependency_map = dependency_map

        self.fetcher = Fetcher(backend)
        self.store = RevalidationStore(self.fetcher, self.config.cache, self.metrics)
        self.scheduler = RevalidationScheduler(self.store)
        self.updater = OptimisticUpdater(self.store, backend, self.metrics)

        self.bridge: Optional[RealtimeBridge] = None
        if channel is not None:
            self.bridge = RealtimeBridge(
                self.store, channel, self.dependency_map, self.config.realtime, self.metrics
            )
            self.bridge.add_degraded_listener(self._on_degraded)

        self.handles: Set[ResourceHandle] = set()
        self.closed = False

    @classmethod
    def from_config(cls, config: Optional[SyncConfig] = None) -> "SyncContext":
        """Build a context backed by PostgreSQL and LISTEN/NOTIFY."""
        from ..storage.notifications import PostgresChangeChannel
        from ..storage.postgres import PostgresBackend, PostgresConfig

        config = config or SyncConfig.from_env()
        backend = PostgresBackend(PostgresConfig.from_backend_config(config.backend))
        channel = None
        if config.realtime.enabled:
            channel = PostgresChangeChannel(config.backend.postgres_dsn, config.realtime.channel_prefix)
        return cls(backend, channel, config)

    def register(self, resource: Union[ResourceDefinition, Dict[str, Any]]) -> ResourceDefinition:
        if isinstance(resource, dict):
            resource = ResourceDefinition.from_dict(resource, self.config.cache.default_id_field)
        self.store.register(resource)
        return resource

    async def use_resource(self, key: str, realtime: Optional[bool] = None) -> ResourceHandle:
        """
        Start tracking ``key`` for a consumer.

        Returns immediately with whatever is cached; a stale or missing value
        is revalidated in the background.
        """
        if self.closed:
            raise RuntimeError("SyncContext is closed")

        if realtime is None:
            realtime = self.config.realtime.enabled
        handle = ResourceHandle(self, key, realtime=realtime and self.bridge is not None)
        await self._attach(handle)
        self.handles.add(handle)

        if self.store.get(key).is_stale:
            self.store.revalidate(key)
        return handle

    async def _attach(self, handle: ResourceHandle) -> None:
        if handle.realtime:
            await self.bridge.subscribe(handle.table, [handle.key])
            if self.bridge.is_degraded(handle.table):
                self._start_polling(handle)
        else:
            self._start_polling(handle)

    async def _detach(self, handle: ResourceHandle) -> None:
        self._stop_polling(handle)
        if handle.realtime:
            await self.bridge.unsubscribe(handle.table)

    async def _release(self, handle: ResourceHandle) -> None:
        self.handles.discard(handle)
        await self._detach(handle)

    def _start_polling(self, handle: ResourceHandle) -> None:
        if not handle.polling:
            self.scheduler.schedule(handle.key, self.config.cache.revalidation_interval_seconds)
            handle.polling = True

    def _stop_polling(self, handle: ResourceHandle) -> None:
        if handle.polling:
            self.scheduler.cancel(handle.key)
            handle.polling = False

    def _on_degraded(self, table: str, degraded: bool) -> None:
        self.logger.warning("Realtime degraded state changed", table=table, degraded=degraded)
        for handle in list(self.handles):
            if not handle.realtime or handle.table != table:
                continue
            if degraded:
                self._start_polling(handle)
            else:
                self._stop_polling(handle)

    async def start(self) -> None:
        connect = getattr(self.backend, "connect", None)
        if callable(connect):
            await connect()
        self.logger.info("Sync context started", config=self.config.to_dict())

    async def close(self) -> None:
        """Tear down handles, subscriptions, timers and connections."""
        if self.closed:
            return
        self.closed = True

        for handle in list(self.handles):
            await handle.close()
        if self.bridge is not None:
            await self.bridge.close()
        await self.scheduler.stop()
        await self.store.close()

        close = getattr(self.backend, "close", None)
        if callable(close):
            await close()
        self.logger.info("Sync context closed", stats=self.store.get_stats())

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
