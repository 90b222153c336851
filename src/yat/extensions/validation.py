"""
Extension package validation for the YAT host.

This module checks package metadata, App definitions and declared
dependencies before a package is accepted into the registry.
"""

import logging
import re
from typing import Any

import jsonschema
from jsonschema import ValidationError as JsonSchemaValidationError

from yat.extensions.errors import MissingDependencyError, VersionMismatchError
from yat.extensions.models import AppDefinition, AppExtensionPackage, ExtensionMetadata
from yat.utils.config import ValidationResult, YatSettings

logger = logging.getLogger(__name__)

_ID_RE = re.compile(r'^[a-zA-Z][a-zA-Z0-9._-]*$')
_VERSION_RE = re.compile(r'^v?(\d+)(?:\.(\d+|[xX*]))?(?:\.(\d+|[xX*]))?(?:[-+].*)?$')
_COMPARATOR_RE = re.compile(r'^(\^|~|>=|<=|>|<|=)?\s*(.+)$')

# JSON schema for extension.json manifests on disk
METADATA_SCHEMA: dict[str, Any] = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "type": "object",
    "required": ["id", "name", "version"],
    "properties": {
        "id": {"type": "string", "minLength": 1},
        "name": {"type": "string", "minLength": 1},
        "version": {"type": "string", "minLength": 1},
        "description": {"type": "string"},
        "author": {"type": "string"},
        "homepage": {"type": "string"},
        "icon": {"type": "string"},
        "minHostVersion": {"type": "string"},
        "dependencies": {
            "type": "object",
            "additionalProperties": {"type": "string"}
        }
    }
}


def parse_version(version: str) -> tuple[int, int, int]:
    """Parse a semantic version string into (major, minor, patch).

    Missing or wildcard components count as 0. Pre-release and build suffixes
    are ignored.

    Raises:
        ValueError: If the string is not a version
    """
    match = _VERSION_RE.match(version.strip()) if version else None
    if not match:
        raise ValueError(f"Invalid version: {version!r}")
    parts = []
    for group in match.groups():
        parts.append(int(group) if group and group.isdigit() else 0)
    return parts[0], parts[1], parts[2]


def _partial_length(version: str) -> int:
    """Number of concrete components in a possibly partial version (``1.2`` -> 2)."""
    match = _VERSION_RE.match(version.strip())
    if not match:
        raise ValueError(f"Invalid version: {version!r}")
    return sum(1 for group in match.groups() if group and group.isdigit())


def _satisfies_comparator(version: tuple[int, int, int], comparator: str) -> bool:
    if comparator in ("", "*", "x", "X"):
        return True

    match = _COMPARATOR_RE.match(comparator)
    if not match:
        raise ValueError(f"Invalid version range: {comparator!r}")
    operator, target_str = match.group(1) or "", match.group(2)
    target = parse_version(target_str)
    precision = _partial_length(target_str)

    if operator == ">=":
        return version >= target
    if operator == "<=":
        return version <= target
    if operator == ">":
        return version > target
    if operator == "<":
        return version < target

    # ~1.2.3 := >=1.2.3 <1.3.0 ; ~1 := >=1.0.0 <2.0.0
    if operator == "~":
        if precision <= 1:
            return version[0] == target[0] and version >= target
        return version[:2] == target[:2] and version >= target

    # ^1.2.3 := >=1.2.3 <2.0.0 ; ^0.2.3 := >=0.2.3 <0.3.0 ; ^0.0.3 := =0.0.3
    if operator == "^":
        if version < target:
            return False
        if target[0] != 0 or precision == 1:
            return version[0] == target[0]
        if target[1] != 0 or precision == 2:
            return version[:2] == target[:2]
        return version == target

    # Exact or x-range (1.2.x, 1.x, 1)
    return version[:precision] == target[:precision]


def version_satisfies(version: str, constraint: str | None) -> bool:
    """Check if a version satisfies an npm-style range.

    Supports exact versions, x-ranges (``1.x``), ``^``, ``~``, comparison
    operators, space-separated conjunctions and ``||`` alternatives.

    Raises:
        ValueError: If the version or range cannot be parsed
    """
    if constraint is None or constraint.strip() in ("", "*", "latest"):
        return True

    parsed = parse_version(version)
    for alternative in constraint.split("||"):
        # ">= 1.2.3" style gaps are folded before splitting on whitespace
        comparators = re.sub(r'(\^|~|>=|<=|>|<|=)\s+', r'\1', alternative.strip()).split()
        if all(_satisfies_comparator(parsed, comparator) for comparator in comparators):
            return True
    return False


class ExtensionValidator:
    """Validator for extension packages and their requirements."""

    def __init__(self, settings: YatSettings):
        """Initialize the extension validator.

        Args:
            settings: Host settings
        """
        self.settings = settings

    def validate_metadata(self, metadata: ExtensionMetadata) -> ValidationResult:
        """Validate extension metadata.

        Args:
            metadata: Extension metadata to validate

        Returns:
            ValidationResult with validation status
        """
        result = ValidationResult()

        if not metadata.id:
            result.errors.append("Extension id is required")
            result.valid = False
        elif not self._is_valid_id(metadata.id):
            result.errors.append(f"Invalid extension id: {metadata.id}")
            result.valid = False

        if not metadata.name:
            result.errors.append("Extension name is required")
            result.valid = False

        if not self._is_valid_version(metadata.version):
            result.errors.append(f"Extension version is not a semantic version: {metadata.version}")
            result.valid = False

        if metadata.min_host_version and not self._is_valid_version(metadata.min_host_version):
            result.errors.append(f"Invalid minimum host version: {metadata.min_host_version}")
            result.valid = False

        for dep_id, dep_range in metadata.dependencies.items():
            if not self._is_valid_id(dep_id):
                result.errors.append(f"Invalid dependency id: {dep_id}")
                result.valid = False
            elif dep_id == metadata.id:
                result.errors.append(f"Extension {metadata.id} cannot depend on itself")
                result.valid = False
            if not self._is_valid_range(dep_range):
                result.errors.append(f"Invalid version range for {dep_id}: {dep_range}")
                result.valid = False

        if not metadata.description:
            result.warnings.append(f"Extension {metadata.id} has no description")

        return result

    def validate_app_definition(self, app: AppDefinition) -> ValidationResult:
        """Validate an App definition.

        Key uniqueness is enforced by the model as well; it is re-checked here
        for definitions built with ``model_construct``.
        """
        result = ValidationResult()

        if not app.id or not self._is_valid_id(app.id):
            result.errors.append(f"Invalid App id: {app.id!r}")
            result.valid = False

        for kind, entries in (("tab", app.tabs), ("action", app.actions)):
            keys = [entry.key for entry in entries]
            duplicates = sorted({key for key in keys if keys.count(key) > 1})
            for key in duplicates:
                result.errors.append(f"Duplicate {kind} key in App {app.id}: {key}")
                result.valid = False

        if not app.tabs and not app.actions and app.hooks is None:
            result.warnings.append(f"App {app.id} declares no tabs, actions or hooks")

        return result

    def validate_package(self, package: AppExtensionPackage) -> ValidationResult:
        """Validate metadata, App definition and host compatibility of a package."""
        result = self.validate_metadata(package.metadata)
        result.merge(self.validate_app_definition(package.app_definition))
        return result

    def validate_manifest(self, manifest: dict[str, Any]) -> ValidationResult:
        """Validate a raw ``extension.json`` document against the manifest schema."""
        result = ValidationResult()
        try:
            jsonschema.validate(manifest, METADATA_SCHEMA)
        except JsonSchemaValidationError as e:
            result.errors.append(f"Manifest validation failed: {e.message}")
            result.valid = False
        return result

    def check_host_version(self, metadata: ExtensionMetadata) -> None:
        """Raise if the host is older than the package's minimum host version.

        Raises:
            VersionMismatchError: If the host version is too old
        """
        if not metadata.min_host_version:
            return
        host = parse_version(self.settings.host_version)
        required = parse_version(metadata.min_host_version)
        if host < required:
            raise VersionMismatchError(
                f"Extension {metadata.id} requires host >= {metadata.min_host_version}, "
                f"running {self.settings.host_version}",
                required=f">={metadata.min_host_version}",
                found=self.settings.host_version,
                extension_id=metadata.id,
            )

    def check_dependencies(self, metadata: ExtensionMetadata, installed: dict[str, str]) -> None:
        """Check declared dependencies against installed extension versions.

        Args:
            metadata: Metadata of the package being installed
            installed: Mapping of registered extension id to version

        Raises:
            MissingDependencyError: If a dependency is not registered
            VersionMismatchError: If a registered dependency is out of range
        """
        for dep_id, dep_range in metadata.dependencies.items():
            if dep_id not in installed:
                raise MissingDependencyError(
                    f"Extension {metadata.id} requires {dep_id} ({dep_range}), which is not installed",
                    dependency_id=dep_id,
                    extension_id=metadata.id,
                )
            found = installed[dep_id]
            if not version_satisfies(found, dep_range):
                raise VersionMismatchError(
                    f"Extension {metadata.id} requires {dep_id} {dep_range}, found {found}",
                    required=dep_range,
                    found=found,
                    extension_id=metadata.id,
                )
            logger.debug(f"Dependency {dep_id} {found} satisfies {dep_range} for {metadata.id}")

    def _is_valid_id(self, value: str) -> bool:
        return bool(value) and isinstance(value, str) and bool(_ID_RE.match(value))

    def _is_valid_version(self, version: str) -> bool:
        if not version or not isinstance(version, str):
            return False
        return bool(re.match(r'^\d+\.\d+\.\d+.*$', version))

    def _is_valid_range(self, constraint: str) -> bool:
        try:
            version_satisfies("0.0.0", constraint)
        except ValueError:
            return False
        return True
