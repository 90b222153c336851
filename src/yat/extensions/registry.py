"""
Extension registry for the YAT host.

This module keeps the installed packages, the App id index and the
dependency graph between packages. Only the host runtime mutates it.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from yat.extensions.errors import DuplicateExtensionError, ExtensionNotFoundError
from yat.extensions.interfaces import ExtensionStatus
from yat.extensions.models import AppDefinition, AppExtensionPackage, ExtensionMetadata

logger = logging.getLogger(__name__)


@dataclass
class RegisteredApp:
    """Information about an installed extension package."""
    package: AppExtensionPackage
    installed_at: datetime = field(default_factory=datetime.now)
    enabled: bool = False
    activated_at: datetime | None = None
    error_count: int = 0
    last_error: str | None = None

    @property
    def extension_id(self) -> str:
        return self.package.metadata.id

    @property
    def app_id(self) -> str:
        return self.package.app_definition.id

    @property
    def metadata(self) -> ExtensionMetadata:
        return self.package.metadata

    @property
    def app(self) -> AppDefinition:
        return self.package.app_definition

    @property
    def status(self) -> ExtensionStatus:
        return ExtensionStatus.ACTIVE if self.enabled else ExtensionStatus.INACTIVE

    def record_error(self, message: str) -> None:
        self.error_count += 1
        self.last_error = message

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.extension_id,
            "app_id": self.app_id,
            "name": self.metadata.name,
            "version": self.metadata.version,
            "status": self.status.value,
            "source": self.package.source.value,
            "installed_at": self.installed_at.isoformat(),
            "error_count": self.error_count,
            "last_error": self.last_error,
        }


class ExtensionRegistry:
    """Registry of installed extension packages."""

    def __init__(self):
        self._extensions: dict[str, RegisteredApp] = {}
        self._apps: dict[str, str] = {}  # app_id -> extension_id
        self._dependency_graph: dict[str, set[str]] = {}  # extension -> dependencies
        self._reverse_deps: dict[str, set[str]] = {}  # extension -> dependents

    def add(self, record: RegisteredApp) -> None:
        """Insert a prepared record.

        Raises:
            DuplicateExtensionError: If the extension or App id is taken
        """
        extension_id = record.extension_id
        if extension_id in self._extensions:
            raise DuplicateExtensionError(f"Extension {extension_id} is already installed", extension_id)
        if record.app_id in self._apps:
            raise DuplicateExtensionError(
                f"App {record.app_id} is already provided by {self._apps[record.app_id]}",
                extension_id,
            )

        self._extensions[extension_id] = record
        self._apps[record.app_id] = extension_id
        self._update_dependency_graph(extension_id, list(record.metadata.dependencies))

        logger.info(f"Registered extension: {extension_id} v{record.metadata.version} (app {record.app_id})")

    def remove(self, extension_id: str) -> RegisteredApp:
        """Remove a record and return it.

        Raises:
            ExtensionNotFoundError: If the extension is not registered
        """
        record = self._extensions.pop(extension_id, None)
        if record is None:
            raise ExtensionNotFoundError(f"Extension {extension_id} is not installed", extension_id)

        self._apps.pop(record.app_id, None)
        self._remove_from_dependency_graph(extension_id)

        logger.info(f"Unregistered extension: {extension_id}")
        return record

    def contains(self, extension_id: str) -> bool:
        return extension_id in self._extensions

    def has_app(self, app_id: str) -> bool:
        return app_id in self._apps

    def get(self, extension_id: str) -> RegisteredApp | None:
        return self._extensions.get(extension_id)

    def require(self, extension_id: str) -> RegisteredApp:
        """Get a record or raise ``ExtensionNotFoundError``."""
        record = self._extensions.get(extension_id)
        if record is None:
            raise ExtensionNotFoundError(f"Extension {extension_id} is not installed", extension_id)
        return record

    def get_by_app_id(self, app_id: str | None) -> RegisteredApp | None:
        """Find the record providing an App id."""
        if not app_id:
            return None
        extension_id = self._apps.get(app_id)
        return self._extensions.get(extension_id) if extension_id else None

    def list_extensions(self) -> list[str]:
        return list(self._extensions.keys())

    def list_apps(self) -> list[str]:
        return list(self._apps.keys())

    def records(self) -> list[RegisteredApp]:
        return list(self._extensions.values())

    def enabled_records(self) -> list[RegisteredApp]:
        """Enabled records in installation order."""
        return [record for record in self._extensions.values() if record.enabled]

    def installed_versions(self) -> dict[str, str]:
        return {ext_id: record.metadata.version for ext_id, record in self._extensions.items()}

    def get_dependents(self, extension_id: str) -> list[str]:
        """Installed extensions that declare a dependency on ``extension_id``."""
        return sorted(self._reverse_deps.get(extension_id, set()))

    def get_dependency_order(self) -> list[str]:
        """Get extensions in dependency order (dependencies first)."""
        return self._topological_sort()

    def get_shutdown_order(self) -> list[str]:
        """Get extensions in shutdown order (dependents first)."""
        return list(reversed(self._topological_sort()))

    def snapshot(self) -> dict[str, Any]:
        """Comparable view of the registry contents."""
        return {
            "extensions": sorted(self._extensions),
            "apps": dict(sorted(self._apps.items())),
            "dependencies": {k: sorted(v) for k, v in sorted(self._dependency_graph.items())},
            "dependents": {k: sorted(v) for k, v in sorted(self._reverse_deps.items())},
        }

    def get_registry_stats(self) -> dict[str, Any]:
        """Get registry statistics."""
        return {
            "total_extensions": len(self._extensions),
            "enabled_extensions": len(self.enabled_records()),
            "error_extensions": [r.extension_id for r in self._extensions.values() if r.error_count],
            "dependency_graph_size": len(self._dependency_graph),
        }

    def _update_dependency_graph(self, extension_id: str, dependencies: list[str]) -> None:
        self._dependency_graph[extension_id] = set(dependencies)
        for dep in dependencies:
            self._reverse_deps.setdefault(dep, set()).add(extension_id)

    def _remove_from_dependency_graph(self, extension_id: str) -> None:
        dependencies = self._dependency_graph.pop(extension_id, set())
        for dep in dependencies:
            if dep in self._reverse_deps:
                self._reverse_deps[dep].discard(extension_id)
                if not self._reverse_deps[dep]:
                    del self._reverse_deps[dep]

        # Dependents keep their edge so reinstalling restores the graph
        if not self._reverse_deps.get(extension_id):
            self._reverse_deps.pop(extension_id, None)

    def _topological_sort(self) -> list[str]:
        """Kahn's algorithm over installed extensions, dependencies first."""
        in_degree = dict.fromkeys(self._extensions.keys(), 0)
        for extension, deps in self._dependency_graph.items():
            if extension in in_degree:
                in_degree[extension] = sum(1 for dep in deps if dep in in_degree)

        queue = [ext for ext, degree in in_degree.items() if degree == 0]
        result = []

        while queue:
            current = queue.pop(0)
            result.append(current)
            for dependent in sorted(self._reverse_deps.get(current, set())):
                if dependent in in_degree:
                    in_degree[dependent] -= 1
                    if in_degree[dependent] == 0:
                        queue.append(dependent)

        if len(result) != len(self._extensions):
            logger.warning("Circular dependencies detected in extension graph")
            result.extend(ext for ext in self._extensions if ext not in result)

        return result
