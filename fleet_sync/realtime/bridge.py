"""Bridge from backend change notifications to debounced cache refreshes."""

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional, Protocol, Set

import structlog

from ..framework.cache import RevalidationStore
from ..framework.cache_invalidation import DependencyMap
from ..framework.config import RealtimeConfig
from ..framework.metrics import SyncMetrics
from ..schemas.models import ChangeEvent
from ..utils.errors import SubscriptionError
from ..utils.logging import add_table


logger = structlog.get_logger()

DegradedListener = Callable[[str, bool], None]


class ChangeChannel(Protocol):
    """Backend change-notification channel keyed by table name."""

    async def subscribe(
        self,
        table: str,
        callback: Callable[[ChangeEvent], None],
        on_error: Optional[Callable[[str, SubscriptionError], None]] = None,
    ) -> str: ...

    async def unsubscribe(self, table: str) -> None: ...

    async def close(self) -> None: ...


class SubscriptionState(str, Enum):
    """Realtime subscription states."""
    UNSUBSCRIBED = "unsubscribed"
    SUBSCRIBED = "subscribed"
    DEBOUNCING = "debouncing"
    RESUBSCRIBING = "resubscribing"
    DEGRADED = "degraded"


@dataclass
class SubscriptionHandle:
    """One open (or reopening) channel shared by every consumer of a table."""
    table: str
    channel: Optional[str] = None
    resource_keys: Set[str] = field(default_factory=set)
    ref_count: int = 0
    failures: int = 0
    degraded: bool = False
    resubscribe_task: Optional[asyncio.Task] = None

    @property
    def is_open(self) -> bool:
        return self.channel is not None


class RealtimeBridge:
    """
    Turns row-change events into debounced refreshes.

    Each event re-arms the debounce timer of every key reading the changed
    table and of every key the dependency map ties to it, so a burst of
    events produces one refresh per key once the quiet period has elapsed.
    """

    def __init__(
        self,
        store: RevalidationStore,
        channel: ChangeChannel,
        dependency_map: Optional[DependencyMap] = None,
        config: Optional[RealtimeConfig] = None,
        metrics: Optional[SyncMetrics] = None,
    ):
        self.store = store
        self.channel = channel
        self.dependency_map = dependency_map or DependencyMap()
        self.config = config or RealtimeConfig()
        self.metrics = metrics
        self.logger = structlog.get_logger("realtime-bridge")
        self.subscriptions: Dict[str, SubscriptionHandle] = {}
        self._degraded_listeners: List[DegradedListener] = []

    async def subscribe(self, table: str, resource_keys: Iterable[str] = ()) -> SubscriptionHandle:
        """
        Attach a consumer to ``table``.

        The first consumer opens the backend channel. If that fails the error
        is logged and resubscription continues in the background.
        """
        handle = self.subscriptions.get(table)
        if handle is not None:
            handle.ref_count += 1
            handle.resource_keys.update(resource_keys)
            self.logger.debug("Joined existing subscription", table=table, ref_count=handle.ref_count)
            return handle

        handle = SubscriptionHandle(table=table, resource_keys=set(resource_keys), ref_count=1)
        self.subscriptions[table] = handle

        try:
            await self._open(handle)
        except SubscriptionError as e:
            self._handle_failure(handle, e)

        self._update_gauges()
        return handle

    async def _open(self, handle: SubscriptionHandle) -> None:
        handle.channel = await self.channel.subscribe(
            handle.table,
            lambda event, table=handle.table: self._on_event(table, event),
            self._on_channel_error,
        )
        self.logger.info("Realtime subscription opened", table=handle.table, channel=handle.channel)

    def keys_for(self, table: str) -> List[str]:
        """Keys refreshed when ``table`` changes: direct readers first, then dependents."""
        handle = self.subscriptions.get(table)
        keys: List[str] = list(self.store.keys_for_table(table))
        if handle is not None:
            keys.extend(sorted(handle.resource_keys))
        keys.extend(self.dependency_map.keys_for(table))

        result: List[str] = []
        for key in keys:
            if key in result:
                continue
            if key not in self.store.resources:
                self.logger.debug("Skipping unregistered dependent key", table=table, resource_key=key)
                continue
            result.append(key)
        return result

    def _on_event(self, table: str, event: ChangeEvent) -> None:
        handle = self.subscriptions.get(table)
        if handle is None:
            return

        if self.metrics:
            self.metrics.record_event(table, event.event_type.value)

        keys = self.keys_for(table)
        self.logger.debug("Change event received",
                          table=table,
                          event_type=event.event_type.value,
                          resource_keys=keys)

        for key in keys:
            self.store.schedule_refresh(key, self.config.debounce_seconds)

    def _on_channel_error(self, table: str, error: SubscriptionError) -> None:
        handle = self.subscriptions.get(table)
        if handle is None:
            return
        handle.channel = None
        self._handle_failure(handle, error)

    def _handle_failure(self, handle: SubscriptionHandle, error: SubscriptionError) -> None:
        handle.failures += 1
        if self.metrics:
            self.metrics.record_subscription_failure(handle.table)
        self.logger.warning("Realtime subscription failed",
                            table=handle.table,
                            failures=handle.failures,
                            error=str(error))

        if handle.resubscribe_task is None or handle.resubscribe_task.done():
            handle.resubscribe_task = asyncio.create_task(self._resubscribe(handle))

    async def _resubscribe(self, handle: SubscriptionHandle) -> None:
        """Retry with exponential backoff, then mark the table degraded."""
        log = add_table(self.logger, handle.table)
        attempts = self.config.max_resubscribe_attempts
        for attempt in range(1, attempts + 1):
            await asyncio.sleep(self.config.resubscribe_backoff_seconds * (2 ** (attempt - 1)))
            if self.subscriptions.get(handle.table) is not handle:
                return
            try:
                await self._open(handle)
            except SubscriptionError as e:
                handle.failures += 1
                if self.metrics:
                    self.metrics.record_subscription_failure(handle.table)
                log.warning("Resubscribe attempt failed",
                            attempt=attempt,
                            error=str(e))
                continue

            handle.failures = 0
            was_degraded = handle.degraded
            handle.degraded = False
            log.info("Realtime subscription restored", attempt=attempt)
            # Changes may have been missed while the channel was down
            for key in self.keys_for(handle.table):
                self.store.schedule_refresh(key, self.config.debounce_seconds)
            if was_degraded:
                self._set_degraded(handle, False)
            return

        log.error("Realtime subscription degraded", attempts=attempts)
        self._set_degraded(handle, True)

    def _set_degraded(self, handle: SubscriptionHandle, degraded: bool) -> None:
        handle.degraded = degraded
        self._update_gauges()
        for listener in list(self._degraded_listeners):
            try:
                listener(handle.table, degraded)
            except Exception as e:
                self.logger.error("Degraded listener failed", table=handle.table, error=str(e))

    def retry(self, table: str) -> None:
        """Start another resubscribe round for a degraded table."""
        handle = self.subscriptions.get(table)
        if handle is None or handle.is_open:
            return
        if handle.resubscribe_task is None or handle.resubscribe_task.done():
            handle.resubscribe_task = asyncio.create_task(self._resubscribe(handle))

    async def unsubscribe(self, table: str) -> None:
        """Detach one consumer; the last one closes the channel and cancels timers."""
        handle = self.subscriptions.get(table)
        if handle is None:
            return

        handle.ref_count -= 1
        if handle.ref_count > 0:
            self.logger.debug("Consumer detached", table=table, ref_count=handle.ref_count)
            return

        await self._teardown(handle)
        self._update_gauges()

    async def _teardown(self, handle: SubscriptionHandle) -> None:
        keys = self.keys_for(handle.table)
        self.subscriptions.pop(handle.table, None)

        if handle.resubscribe_task is not None and not handle.resubscribe_task.done():
            handle.resubscribe_task.cancel()
            try:
                await handle.resubscribe_task
            except asyncio.CancelledError:
                pass

        # Timers for keys another live subscription also refreshes stay armed
        shared: Set[str] = set()
        for table in self.subscriptions:
            shared.update(self.keys_for(table))
        for key in keys:
            if key not in shared:
                self.store.cancel_scheduled(key)

        if handle.is_open:
            try:
                await self.channel.unsubscribe(handle.table)
            except SubscriptionError as e:
                self.logger.warning("Failed to close realtime channel", table=handle.table, error=str(e))
            handle.channel = None

        self.logger.info("Realtime subscription closed", table=handle.table)

    def state(self, table: str) -> SubscriptionState:
        handle = self.subscriptions.get(table)
        if handle is None:
            return SubscriptionState.UNSUBSCRIBED
        if handle.degraded:
            return SubscriptionState.DEGRADED
        if not handle.is_open:
            return SubscriptionState.RESUBSCRIBING
        if any(self.store.has_pending(key) for key in self.keys_for(table)):
            return SubscriptionState.DEBOUNCING
        return SubscriptionState.SUBSCRIBED

    def is_degraded(self, table: str) -> bool:
        handle = self.subscriptions.get(table)
        return handle is not None and handle.degraded

    def add_degraded_listener(self, listener: DegradedListener) -> Callable[[], None]:
        """Be told when a table's realtime channel gives up or recovers."""
        self._degraded_listeners.append(listener)

        def remove() -> None:
            if listener in self._degraded_listeners:
                self._degraded_listeners.remove(listener)

        return remove

    def _update_gauges(self) -> None:
        if not self.metrics:
            return
        handles = self.subscriptions.values()
        self.metrics.active_subscriptions.set(sum(1 for h in handles if h.is_open))
        self.metrics.degraded_tables.set(sum(1 for h in handles if h.degraded))

    async def close(self) -> None:
        """Close every subscription and the channel."""
        for handle in list(self.subscriptions.values()):
            await self._teardown(handle)
        await self.channel.close()
        self._degraded_listeners.clear()
        self._update_gauges()
        self.logger.info("Realtime bridge closed")
