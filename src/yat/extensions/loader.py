"""
Extension package loader for the YAT host.

This module validates extension packages, runs their lifecycle scripts and
imports packages from Python modules or local extension directories. It
never touches the registry itself: it prepares records that the host
runtime commits.
"""

import importlib
import importlib.util
import json
import sys
from datetime import datetime
from pathlib import Path
from types import ModuleType
from typing import Any

from pydantic import ValidationError

from yat.extensions.errors import (
    DuplicateExtensionError,
    ExtensionConfigurationError,
    ExtensionLoadError,
    HookFailureError,
)
from yat.extensions.models import AppExtensionPackage, ExtensionMetadata
from yat.extensions.registry import ExtensionRegistry, RegisteredApp
from yat.extensions.validation import ExtensionValidator
from yat.utils.config import YatSettings
from yat.utils.helpers import call_maybe_async
from yat.utils.logging import setup_logging

logger = setup_logging(__name__)

MANIFEST_FILE = "extension.json"
DEFAULT_ATTRIBUTE = "extension"
_MODULE_PREFIX = "yat_extensions"


class ExtensionLoader:
    """Validates packages and runs install/activate/deactivate/uninstall scripts."""

    def __init__(self, settings: YatSettings, validator: ExtensionValidator | None = None):
        """Initialize the extension loader.

        Args:
            settings: Host settings
            validator: Package validator (built from settings when omitted)
        """
        self.settings = settings
        self.validator = validator or ExtensionValidator(settings)

    def prepare(self, package: AppExtensionPackage, registry: ExtensionRegistry) -> RegisteredApp:
        """Validate a package against the registry and build its record.

        The record is not inserted into the registry.

        Raises:
            ExtensionConfigurationError: If the package is malformed
            DuplicateExtensionError: If the extension or App id is taken
            MissingDependencyError: If a dependency is not installed
            VersionMismatchError: If a dependency or the host is out of range
        """
        metadata = package.metadata
        result = self.validator.validate_package(package)
        for warning in result.warnings:
            logger.warning(f"Extension {metadata.id}: {warning}")
        if not result.valid:
            raise ExtensionConfigurationError(
                f"Extension {metadata.id} is invalid: {'; '.join(result.errors)}",
                metadata.id,
            )

        if registry.contains(metadata.id):
            raise DuplicateExtensionError(f"Extension {metadata.id} is already installed", metadata.id)

        owner = registry.get_by_app_id(package.app_id)
        if owner is not None:
            raise DuplicateExtensionError(
                f"App {package.app_id} is already provided by {owner.extension_id}",
                metadata.id,
            )

        self.validator.check_host_version(metadata)
        self.validator.check_dependencies(metadata, registry.installed_versions())

        return RegisteredApp(package=package)

    async def install(self, package: AppExtensionPackage, registry: ExtensionRegistry) -> RegisteredApp:
        """Validate a package and run its install script.

        Returns:
            A record ready to be committed to the registry

        Raises:
            HookFailureError: If ``on_install`` fails; nothing is registered
        """
        record = self.prepare(package, registry)
        extension_id = record.extension_id
        logger.info(f"Installing extension: {extension_id} v{record.metadata.version}")

        if package.on_install is not None:
            try:
                await call_maybe_async(package.on_install)
            except Exception as e:
                logger.error(f"Install script failed for {extension_id}: {e}")
                raise HookFailureError.wrap("install", record.app_id, e) from e

        return record

    async def activate(self, record: RegisteredApp) -> bool:
        """Run the activate script and enable the App.

        Returns:
            False if the App was already enabled (no script run)

        Raises:
            HookFailureError: If ``on_activate`` fails; the App stays disabled
        """
        if record.enabled:
            logger.debug(f"Extension {record.extension_id} is already active")
            return False

        script = record.package.on_activate
        if script is not None:
            try:
                await call_maybe_async(script)
            except Exception as e:
                record.record_error(str(e))
                logger.error(f"Activate script failed for {record.extension_id}: {e}")
                raise HookFailureError.wrap("activate", record.app_id, e) from e

        record.enabled = True
        record.activated_at = datetime.now()
        logger.info(f"Activated extension: {record.extension_id}")
        return True

    async def deactivate(self, record: RegisteredApp) -> HookFailureError | None:
        """Run the deactivate script and disable the App.

        The App is disabled even if the script fails.

        Returns:
            The wrapped script failure, if any
        """
        if not record.enabled:
            logger.debug(f"Extension {record.extension_id} is already inactive")
            return None

        failure = None
        script = record.package.on_deactivate
        if script is not None:
            try:
                await call_maybe_async(script)
            except Exception as e:
                failure = HookFailureError.wrap("deactivate", record.app_id, e)
                record.record_error(str(e))
                logger.error(f"Deactivate script failed for {record.extension_id}: {e}")

        record.enabled = False
        logger.info(f"Deactivated extension: {record.extension_id}")
        return failure

    async def uninstall(self, record: RegisteredApp) -> HookFailureError | None:
        """Run the uninstall script, best effort.

        Returns:
            The wrapped script failure, if any
        """
        script = record.package.on_uninstall
        if script is None:
            return None

        try:
            await call_maybe_async(script)
        except Exception as e:
            logger.error(f"Uninstall script failed for {record.extension_id}: {e}")
            return HookFailureError.wrap("uninstall", record.app_id, e)
        return None

    def discover(self, directory: Path | None = None) -> list[str]:
        """Discover extension directories.

        Args:
            directory: Directory to scan (defaults to the configured one)

        Returns:
            Names of subdirectories holding a ``main.py`` or ``__init__.py``
        """
        extensions_dir = directory or self.settings.get_extensions_directory()
        if not extensions_dir.exists():
            logger.warning(f"Extensions directory does not exist: {extensions_dir}")
            return []

        discovered = []
        for item in sorted(extensions_dir.iterdir()):
            if item.is_dir() and not item.name.startswith(('_', '.')):
                if (item / "main.py").exists() or (item / "__init__.py").exists():
                    discovered.append(item.name)
                    logger.debug(f"Discovered extension: {item.name}")

        logger.info(f"Discovered {len(discovered)} extensions in {extensions_dir}")
        return discovered

    def load_package(self, ref: str, attribute: str = DEFAULT_ATTRIBUTE) -> AppExtensionPackage:
        """Load an extension package value.

        Args:
            ref: ``"module.path:attribute"``, a path to an extension directory
                or ``.py`` file, or the name of a directory in the configured
                extensions directory
            attribute: Attribute holding the package when ``ref`` names none

        Raises:
            ExtensionLoadError: If the module cannot be found or imported
            ExtensionConfigurationError: If the value is not a valid package
        """
        path = self._resolve_path(ref)
        if path is not None:
            module = self._load_module_from_path(path)
            manifest = path / MANIFEST_FILE if path.is_dir() else None
        else:
            module_name, _, attr = ref.partition(":")
            attribute = attr or attribute
            try:
                module = importlib.import_module(module_name)
            except ImportError as e:
                raise ExtensionLoadError(f"Cannot import extension module {module_name}: {e}", ref, e)
            manifest = None

        if not hasattr(module, attribute):
            raise ExtensionLoadError(f"Module {module.__name__} has no attribute {attribute}", ref)

        package = self.coerce_package(getattr(module, attribute), ref)

        if manifest is not None and manifest.exists():
            declared = self.load_manifest(manifest)
            if declared.id != package.metadata.id or declared.version != package.metadata.version:
                raise ExtensionConfigurationError(
                    f"{MANIFEST_FILE} declares {declared.id} v{declared.version} but the package "
                    f"exports {package.metadata.id} v{package.metadata.version}",
                    package.metadata.id,
                )

        logger.info(f"Loaded extension package {package.metadata.id} from {ref}")
        return package

    def load_manifest(self, path: Path) -> ExtensionMetadata:
        """Read and validate an ``extension.json`` metadata file.

        Raises:
            ExtensionConfigurationError: If the file is not a valid manifest
        """
        try:
            document = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise ExtensionConfigurationError(f"Cannot read manifest {path}: {e}", cause=e)

        result = self.validator.validate_manifest(document)
        if not result.valid:
            raise ExtensionConfigurationError(f"Invalid manifest {path}: {'; '.join(result.errors)}")
        return ExtensionMetadata.model_validate(document)

    def coerce_package(self, value: Any, ref: str | None = None) -> AppExtensionPackage:
        """Turn an exported value (package or mapping) into a package model."""
        if isinstance(value, AppExtensionPackage):
            return value
        try:
            return AppExtensionPackage.model_validate(value)
        except ValidationError as e:
            raise ExtensionConfigurationError(f"Invalid extension package {ref or ''}: {e}", ref, e)

    def _resolve_path(self, ref: str) -> Path | None:
        candidate = Path(ref).expanduser()
        if candidate.exists():
            return candidate.resolve()
        if ":" in ref or "/" in ref:
            return None
        in_extensions_dir = self.settings.get_extensions_directory() / ref
        if in_extensions_dir.is_dir():
            return in_extensions_dir
        return None

    def _load_module_from_path(self, path: Path) -> ModuleType:
        """Load an extension module from disk."""
        if path.is_dir():
            main_file = path / "main.py"
            init_file = path / "__init__.py"
            module_file = main_file if main_file.exists() else init_file
            name = path.name
        else:
            module_file = path
            name = path.stem

        if not module_file.exists():
            raise ExtensionLoadError(f"No main.py or __init__.py found in {path}", name)

        module_name = f"{_MODULE_PREFIX}.{name.replace('-', '_')}"
        spec = importlib.util.spec_from_file_location(module_name, module_file)
        if spec is None or spec.loader is None:
            raise ExtensionLoadError(f"Could not create module spec for {name}", name)

        module = importlib.util.module_from_spec(spec)
        sys.modules[module_name] = module
        try:
            spec.loader.exec_module(module)
        except Exception as e:
            sys.modules.pop(module_name, None)
            raise ExtensionLoadError(f"Failed to import extension {name}: {e}", name, e)

        return module
