"""Cross-table cache invalidation rules."""

from typing import Dict, Iterable, List, Mapping, Optional, Set

import structlog
import yaml

from ..utils.errors import ConfigurationError

logger = structlog.get_logger()


class DependencyMap:
    """
    Maps a table to the resource keys that must be refreshed when it changes.

    Edges are configuration. A change to ``tasks`` can invalidate the
    ``team_members`` and ``vehicles`` aggregate views without those views
    reading from ``tasks`` directly.
    """

    def __init__(self, edges: Optional[Mapping[str, Iterable[str]]] = None):
        self.logger = structlog.get_logger("dependency-map")
        self.dependency_graph: Dict[str, Set[str]] = {}
        for table, keys in (edges or {}).items():
            for key in keys:
                self.add(table, key)

    def add(self, table: str, resource_key: str) -> None:
        """Declare that ``resource_key`` depends on ``table``."""
        if table not in self.dependency_graph:
            self.dependency_graph[table] = set()
        self.dependency_graph[table].add(resource_key)
        self.logger.debug("Dependency added", table=table, resource_key=resource_key)

    def remove(self, table: str, resource_key: str) -> None:
        """Remove a dependency edge."""
        if table in self.dependency_graph:
            self.dependency_graph[table].discard(resource_key)
            if not self.dependency_graph[table]:
                del self.dependency_graph[table]

    def keys_for(self, table: str) -> List[str]:
        """Dependent keys for a table, in stable order."""
        return sorted(self.dependency_graph.get(table, ()))

    def tables(self) -> List[str]:
        return sorted(self.dependency_graph)

    def to_dict(self) -> Dict[str, List[str]]:
        return {table: self.keys_for(table) for table in self.tables()}

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Iterable[str]]) -> "DependencyMap":
        return cls(mapping)

    @classmethod
    def from_yaml(cls, path: str) -> "DependencyMap":
        """
        Load edges from a YAML document of the form::

            dependencies:
              tasks: [team_members, vehicles]
        """
        try:
            with open(path) as f:
                document = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationError(
                f"Failed to load dependency map: {e}",
                config_key="dependency_file",
                config_value=path,
            ) from e

        edges = document.get("dependencies", document) if isinstance(document, dict) else None
        if not isinstance(edges, dict):
            raise ConfigurationError(
                "Dependency map must be a mapping of table to resource keys",
                config_key="dependency_file",
                config_value=path,
            )

        for table, keys in edges.items():
            if not isinstance(keys, list):
                raise ConfigurationError(
                    f"Dependencies for {table} must be a list",
                    config_key="dependency_file",
                    config_value=path,
                )

        dependency_map = cls(edges)
        logger.info("Dependency map loaded", path=path, tables=len(edges))
        return dependency_map

    def __len__(self) -> int:
        return len(self.dependency_graph)
