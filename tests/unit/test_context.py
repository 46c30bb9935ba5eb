"""Unit tests for the sync context and resource handles."""

import asyncio

import pytest
import pytest_asyncio

from fleet_sync.framework.config import CacheConfig, RealtimeConfig, SyncConfig
from fleet_sync.schemas.models import ResourceDefinition
from fleet_sync.sync.context import SyncContext
from tests.fixtures.sample_events import dashboard_resources


@pytest_asyncio.fixture
async def context(mock_backend, mock_channel, sync_config, metrics):
    context = SyncContext(mock_backend, mock_channel, sync_config, metrics=metrics)
    for resource in dashboard_resources():
        context.register(resource)
    yield context
    await context.close()


@pytest.fixture
def polling_config():
    return SyncConfig(
        service_name="test-dashboard",
        environment="local",
        cache=CacheConfig(revalidation_interval_seconds=0.05, default_id_field="id"),
        realtime=RealtimeConfig(
            enabled=False,
            debounce_ms=20,
            channel_prefix="table_changes_",
            max_resubscribe_attempts=1,
            resubscribe_backoff_seconds=0.01,
        ),
        dependency_file=None,
        table_dependencies={},
    )


class TestUseResource:
    """Consumer attachment."""

    @pytest.mark.asyncio
    async def test_returns_before_first_fetch(self, context, mock_backend):
        handle = await context.use_resource("vehicles")

        assert handle.data is None
        assert handle.is_stale

        await asyncio.sleep(0.01)

        assert [row["id"] for row in handle.data] == [1, 2, 3]
        assert not handle.is_stale
        assert mock_backend.calls_for("vehicles") == 1

    @pytest.mark.asyncio
    async def test_register_accepts_dict(self, context):
        resource = context.register({"key": "open_tasks", "table": "tasks", "order_by": "id"})

        assert isinstance(resource, ResourceDefinition)
        assert context.store.keys_for_table("tasks") == ["tasks", "open_tasks"]

    @pytest.mark.asyncio
    async def test_register_dict_uses_configured_id_field(self, mock_backend, mock_channel, polling_config):
        polling_config.cache.default_id_field = "vehicle_id"
        context = SyncContext(mock_backend, mock_channel, polling_config)

        implicit = context.register({"key": "fleet", "table": "vehicles"})
        explicit = context.register({"key": "jobs", "table": "tasks", "id_field": "id"})

        assert implicit.id_field == "vehicle_id"
        assert explicit.id_field == "id"

        await context.close()

    @pytest.mark.asyncio
    async def test_handles_share_subscription(self, context, mock_channel):
        first = await context.use_resource("vehicles")
        second = await context.use_resource("vehicles")

        assert mock_channel.subscribe_calls == ["vehicles"]

        await first.close()
        assert mock_channel.is_listening("vehicles")

        await second.close()
        assert not mock_channel.is_listening("vehicles")

    @pytest.mark.asyncio
    async def test_listener_receives_updates(self, context):
        handle = await context.use_resource("vehicles")
        received = []
        handle.subscribe(received.append)

        await asyncio.sleep(0.01)

        assert len(received) == 1
        assert received[0].key == "vehicles"


class TestRealtimeFlow:
    """Change events reach consumers through debounced refreshes."""

    @pytest.mark.asyncio
    async def test_change_event_refreshes_readers(self, context, mock_backend, mock_channel):
        handle = await context.use_resource("vehicles")
        await asyncio.sleep(0.01)

        mock_backend.tables["vehicles"][0]["status"] = "retired"
        mock_channel.emit("vehicles", mock_backend.tables["vehicles"][0])
        await asyncio.sleep(0.1)

        assert handle.data[0]["status"] == "retired"
        assert mock_backend.calls_for("vehicles") == 2

    @pytest.mark.asyncio
    async def test_dependent_resources_refresh(self, context, mock_backend, mock_channel):
        await context.use_resource("tasks")
        members = await context.use_resource("team_members", realtime=False)
        await asyncio.sleep(0.01)

        mock_backend.tables["team_members"][0]["open_tasks"] = 1
        mock_channel.emit("tasks", {"id": 1, "done": True})
        await asyncio.sleep(0.1)

        assert members.data[0]["open_tasks"] == 1
        assert mock_backend.calls_for("team_members") == 2

    @pytest.mark.asyncio
    async def test_write_through_handle(self, context, mock_backend):
        handle = await context.use_resource("tasks")
        await asyncio.sleep(0.01)

        await handle.write("update", {"id": 2, "done": True})

        assert handle.data[1]["done"] is True
        assert mock_backend.tables["tasks"][1]["done"] is True


class TestPollingFallback:
    """Periodic revalidation when realtime is off or unavailable."""

    @pytest.mark.asyncio
    async def test_polls_without_realtime(self, mock_backend, mock_channel, polling_config, metrics):
        context = SyncContext(mock_backend, mock_channel, polling_config, metrics=metrics)
        context.register(ResourceDefinition(key="vehicles", table="vehicles"))

        handle = await context.use_resource("vehicles")
        await asyncio.sleep(0.13)

        assert not handle.realtime
        assert context.scheduler.is_scheduled("vehicles")
        assert mock_backend.calls_for("vehicles") >= 2
        assert mock_channel.subscribe_calls == []

        await context.close()

    @pytest.mark.asyncio
    async def test_degraded_realtime_falls_back_to_polling(self, context, mock_channel):
        mock_channel.fail_next(3)

        handle = await context.use_resource("vehicles")
        await asyncio.sleep(0.1)

        assert handle.realtime_degraded
        assert handle.polling
        assert context.scheduler.is_scheduled("vehicles")

    @pytest.mark.asyncio
    async def test_recovery_stops_polling(self, context, mock_channel):
        mock_channel.fail_next(3)
        handle = await context.use_resource("vehicles")
        await asyncio.sleep(0.1)

        context.bridge.retry("vehicles")
        await asyncio.sleep(0.05)

        assert not handle.realtime_degraded
        assert not handle.polling
        assert not context.scheduler.is_scheduled("vehicles")

    @pytest.mark.asyncio
    async def test_set_realtime_switches_mode(self, context, mock_channel):
        handle = await context.use_resource("vehicles")
        assert mock_channel.is_listening("vehicles")

        await handle.set_realtime(False)

        assert not mock_channel.is_listening("vehicles")
        assert context.scheduler.is_scheduled("vehicles")

        await handle.set_realtime(True)

        assert mock_channel.is_listening("vehicles")
        assert not context.scheduler.is_scheduled("vehicles")


class TestClose:
    """Teardown."""

    @pytest.mark.asyncio
    async def test_close_releases_everything(self, mock_backend, mock_channel, sync_config, metrics):
        context = SyncContext(mock_backend, mock_channel, sync_config, metrics=metrics)
        for resource in dashboard_resources():
            context.register(resource)
        await context.start()
        await context.use_resource("vehicles")
        await context.use_resource("locations", realtime=False)
        mock_channel.emit("vehicles", {"id": 1})

        await context.close()
        await asyncio.sleep(0.1)

        assert mock_channel.is_closed
        assert not context.handles
        assert context.scheduler.get_scheduled_keys() == []
        assert not mock_backend.is_connected
        # the debounced refresh from the event never fires
        assert mock_backend.calls_for("vehicles") <= 1

        with pytest.raises(RuntimeError):
            await context.use_resource("vehicles")

    @pytest.mark.asyncio
    async def test_handle_context_manager(self, context, mock_channel):
        async with await context.use_resource("vehicles") as handle:
            assert mock_channel.is_listening("vehicles")

        assert handle.closed
        assert not mock_channel.is_listening("vehicles")
