"""Prometheus metrics for cache revalidation and realtime sync."""

from typing import Optional

from prometheus_client import Counter, Histogram, Gauge, CollectorRegistry, generate_latest
import structlog

logger = structlog.get_logger()


class SyncMetrics:
    """Sync layer metrics for monitoring."""

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry or CollectorRegistry()
        self.logger = structlog.get_logger("sync-metrics")

        # Refresh metrics
        self.refreshes_total = Counter(
            'sync_refreshes_total',
            'Total resource refreshes',
            ['resource_key', 'result'],
            registry=self.registry
        )

        self.coalesced_refreshes_total = Counter(
            'sync_coalesced_refreshes_total',
            'Refresh requests joined to an in-flight refresh',
            ['resource_key'],
            registry=self.registry
        )

        self.refresh_duration = Histogram(
            'sync_refresh_duration_seconds',
            'Refresh duration',
            ['resource_key'],
            buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
            registry=self.registry
        )

        self.duplicate_rows_total = Counter(
            'sync_duplicate_rows_total',
            'Rows dropped by deduplication',
            ['resource_key'],
            registry=self.registry
        )

        # Realtime metrics
        self.realtime_events_total = Counter(
            'sync_realtime_events_total',
            'Change events received',
            ['table', 'event_type'],
            registry=self.registry
        )

        self.debounce_resets_total = Counter(
            'sync_debounce_resets_total',
            'Debounce timers reset by a newer event',
            ['resource_key'],
            registry=self.registry
        )

        self.active_subscriptions = Gauge(
            'sync_active_subscriptions',
            'Open realtime channels',
            registry=self.registry
        )

        self.degraded_tables = Gauge(
            'sync_degraded_tables',
            'Tables whose realtime channel gave up resubscribing',
            registry=self.registry
        )

        self.subscription_failures_total = Counter(
            'sync_subscription_failures_total',
            'Realtime subscription failures',
            ['table'],
            registry=self.registry
        )

        # Optimistic writes
        self.optimistic_writes_total = Counter(
            'sync_optimistic_writes_total',
            'Optimistic writes',
            ['resource_key', 'operation', 'result'],
            registry=self.registry
        )

    def record_refresh(self, resource_key: str, duration: float, success: bool) -> None:
        result = "success" if success else "error"
        self.refreshes_total.labels(resource_key=resource_key, result=result).inc()
        self.refresh_duration.labels(resource_key=resource_key).observe(duration)

    def record_coalesced(self, resource_key: str) -> None:
        self.coalesced_refreshes_total.labels(resource_key=resource_key).inc()

    def record_duplicates(self, resource_key: str, count: int) -> None:
        if count > 0:
            self.duplicate_rows_total.labels(resource_key=resource_key).inc(count)

    def record_event(self, table: str, event_type: str) -> None:
        self.realtime_events_total.labels(table=table, event_type=event_type).inc()

    def record_debounce_reset(self, resource_key: str) -> None:
        self.debounce_resets_total.labels(resource_key=resource_key).inc()

    def record_subscription_failure(self, table: str) -> None:
        self.subscription_failures_total.labels(table=table).inc()

    def record_write(self, resource_key: str, operation: str, success: bool) -> None:
        result = "success" if success else "error"
        self.optimistic_writes_total.labels(
            resource_key=resource_key, operation=operation, result=result
        ).inc()

    def export(self) -> bytes:
        """Render metrics in Prometheus text format."""
        return generate_latest(self.registry)
