"""Pytest configuration and fixtures."""

import pytest
import pytest_asyncio

from fleet_sync.framework.cache import RevalidationStore
from fleet_sync.framework.cache_invalidation import DependencyMap
from fleet_sync.framework.config import (
    CacheConfig,
    ObservabilityConfig,
    RealtimeConfig,
    SyncConfig,
)
from fleet_sync.framework.metrics import SyncMetrics
from fleet_sync.realtime.bridge import RealtimeBridge
from fleet_sync.sync.fetcher import Fetcher
from tests.fixtures.mock_services import MockBackend, MockChangeChannel
from tests.fixtures.sample_events import (
    dashboard_resources,
    sample_locations,
    sample_tasks,
    sample_team_members,
    sample_vehicles,
)


@pytest.fixture
def mock_backend():
    """In-memory backend seeded with dashboard tables."""
    return MockBackend(
        tables={
            "vehicles": sample_vehicles(),
            "locations": sample_locations(),
            "team_members": sample_team_members(),
            "tasks": sample_tasks(),
        },
        foreign_keys={
            ("vehicles", "location_id"): "locations",
            ("tasks", "vehicle_id"): "vehicles",
            ("tasks", "assignee_id"): "team_members",
        },
    )


@pytest.fixture
def mock_channel():
    """In-memory change-notification channel."""
    return MockChangeChannel()


@pytest.fixture
def cache_config():
    return CacheConfig(revalidation_interval_seconds=30, default_id_field="id")


@pytest.fixture
def realtime_config():
    return RealtimeConfig(
        enabled=True,
        debounce_ms=50,
        channel_prefix="table_changes_",
        max_resubscribe_attempts=2,
        resubscribe_backoff_seconds=0.01,
    )


@pytest.fixture
def sync_config(cache_config, realtime_config):
    return SyncConfig(
        service_name="test-dashboard",
        environment="local",
        cache=cache_config,
        realtime=realtime_config,
        observability=ObservabilityConfig(log_level="debug", log_format="console", metrics_enabled=True),
        dependency_file=None,
        table_dependencies={"tasks": ["team_members", "vehicles"]},
    )


@pytest.fixture
def metrics():
    return SyncMetrics()


@pytest_asyncio.fixture
async def store(mock_backend, cache_config, metrics):
    """Revalidation store with the dashboard resources registered."""
    store = RevalidationStore(Fetcher(mock_backend), cache_config, metrics)
    for resource in dashboard_resources():
        store.register(resource)
    yield store
    await store.close()


@pytest_asyncio.fixture
async def bridge(store, mock_channel, realtime_config, metrics):
    """Realtime bridge with tasks -> team_members, vehicles edges."""
    dependency_map = DependencyMap({"tasks": ["team_members", "vehicles"]})
    bridge = RealtimeBridge(store, mock_channel, dependency_map, realtime_config, metrics)
    yield bridge
    await bridge.close()
