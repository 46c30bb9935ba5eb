"""Unit tests for configuration, dependency maps and errors."""

import pytest

from fleet_sync.framework.cache_invalidation import DependencyMap
from fleet_sync.framework.config import RealtimeConfig, SyncConfig, parse_dependencies
from fleet_sync.utils.errors import (
    ConfigurationError,
    ConstraintError,
    create_error_context,
    describe_missing_reference,
)


class TestSyncConfig:
    """Environment-driven configuration."""

    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("FLEET_SYNC_TABLE_DEPENDENCIES", raising=False)
        monkeypatch.delenv("FLEET_SYNC_DEBOUNCE_MS", raising=False)

        config = SyncConfig()

        assert config.realtime.debounce_ms == 150
        assert config.realtime.debounce_seconds == 0.15
        assert config.table_dependencies == {"tasks": ["team_members", "vehicles"]}

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("FLEET_SYNC_ENV", "staging")
        monkeypatch.setenv("FLEET_SYNC_DEBOUNCE_MS", "300")
        monkeypatch.setenv("FLEET_SYNC_REALTIME_ENABLED", "false")
        monkeypatch.setenv("FLEET_SYNC_TABLE_DEPENDENCIES", "tasks=team_members;locations=vehicles")

        config = SyncConfig.from_env("ops-dashboard")

        assert config.service_name == "ops-dashboard"
        assert config.environment == "staging"
        assert config.realtime.debounce_ms == 300
        assert not config.realtime.enabled
        assert config.table_dependencies == {"tasks": ["team_members"], "locations": ["vehicles"]}

    def test_invalid_environment(self):
        with pytest.raises(ConfigurationError) as exc_info:
            SyncConfig(environment="qa")

        assert exc_info.value.config_key == "environment"

    def test_negative_debounce(self):
        with pytest.raises(ConfigurationError):
            SyncConfig(environment="local", realtime=RealtimeConfig(debounce_ms=-1))

    def test_to_dict_omits_dsn(self):
        config = SyncConfig(environment="local")

        assert "postgres_dsn" not in config.to_dict()["backend"]


class TestParseDependencies:

    def test_parse(self):
        assert parse_dependencies("tasks=team_members, vehicles; ;locations=vehicles") == {
            "tasks": ["team_members", "vehicles"],
            "locations": ["vehicles"],
        }

    def test_empty(self):
        assert parse_dependencies("") == {}

    def test_malformed(self):
        with pytest.raises(ConfigurationError):
            parse_dependencies("tasks")


class TestDependencyMap:
    """Cross-table invalidation edges."""

    def test_keys_for(self):
        dependency_map = DependencyMap({"tasks": ["vehicles", "team_members"]})

        assert dependency_map.keys_for("tasks") == ["team_members", "vehicles"]
        assert dependency_map.keys_for("locations") == []

    def test_add_and_remove(self):
        dependency_map = DependencyMap()
        dependency_map.add("tasks", "vehicles")
        dependency_map.remove("tasks", "vehicles")

        assert len(dependency_map) == 0

    def test_from_yaml(self, tmp_path):
        path = tmp_path / "dependencies.yaml"
        path.write_text("dependencies:\n  tasks: [team_members, vehicles]\n  locations: [vehicles]\n")

        dependency_map = DependencyMap.from_yaml(str(path))

        assert dependency_map.to_dict() == {
            "locations": ["vehicles"],
            "tasks": ["team_members", "vehicles"],
        }

    def test_from_yaml_bare_mapping(self, tmp_path):
        path = tmp_path / "dependencies.yaml"
        path.write_text("tasks:\n  - vehicles\n")

        assert DependencyMap.from_yaml(str(path)).keys_for("tasks") == ["vehicles"]

    def test_from_yaml_invalid(self, tmp_path):
        path = tmp_path / "dependencies.yaml"
        path.write_text("dependencies:\n  tasks: vehicles\n")

        with pytest.raises(ConfigurationError):
            DependencyMap.from_yaml(str(path))

    def test_from_yaml_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError):
            DependencyMap.from_yaml(str(tmp_path / "missing.yaml"))


class TestErrors:
    """Error taxonomy."""

    def test_describe_missing_reference(self):
        assert describe_missing_reference(
            'Key (location_id)=(7) is not present in table "locations".'
        ) == "location does not exist - create it first"
        assert describe_missing_reference(
            'Key (assignee_id)=(3) is not present in table "public.team_members".'
        ) == "team member does not exist - create it first"
        assert describe_missing_reference("something else") is None
        assert describe_missing_reference(None) is None

    def test_to_dict(self):
        context = create_error_context("fleet-dashboard", "insert", table="vehicles", resource_key="vehicles")
        error = ConstraintError(
            "fk violation",
            constraint="vehicles_location_id_fkey",
            operation="insert",
            table="vehicles",
            context=context,
        )

        result = error.to_dict()

        assert result["error_code"] == "CONSTRAINT_ERROR"
        assert result["details"] == {
            "operation": "insert",
            "table": "vehicles",
            "constraint": "vehicles_location_id_fkey",
        }
        assert result["context"]["resource_key"] == "vehicles"
        assert error.user_message == "fk violation"
