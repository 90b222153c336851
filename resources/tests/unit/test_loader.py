"""
Unit tests for the extension loader.
"""

import json
import textwrap

import pytest

from resources.tests.helpers.extensions import make_package
from yat.extensions.errors import (
    DuplicateExtensionError,
    ExtensionConfigurationError,
    ExtensionLoadError,
    HookFailureError,
    MissingDependencyError,
)
from yat.extensions.loader import ExtensionLoader
from yat.extensions.registry import ExtensionRegistry

EXTENSION_SOURCE = textwrap.dedent('''
    from yat.extensions.models import AppExtensionPackage

    extension = AppExtensionPackage(
        metadata={"id": "acme.disk", "name": "Disk", "version": "1.2.0", "description": "From disk"},
        app_definition={"id": "disk", "name": "Disk", "tabs": [{"key": "logs", "label": "Logs"}]},
    )
''')


def _write_extension(directory, name="disk", manifest=None, source=EXTENSION_SOURCE):
    ext_dir = directory / name
    ext_dir.mkdir(parents=True)
    (ext_dir / "main.py").write_text(source)
    if manifest is not None:
        (ext_dir / "extension.json").write_text(json.dumps(manifest))
    return ext_dir


class TestExtensionLoader:
    """Test ExtensionLoader."""

    @pytest.fixture
    def loader(self, settings):
        return ExtensionLoader(settings)

    @pytest.fixture
    def registry(self):
        return ExtensionRegistry()

    def test_prepare_does_not_register(self, loader, registry):
        record = loader.prepare(make_package(), registry)

        assert record.extension_id == "acme.web"
        assert not record.enabled
        assert not registry.contains("acme.web")

    def test_prepare_rejects_duplicates(self, loader, registry):
        registry.add(loader.prepare(make_package("acme.web", app_id="web"), registry))

        with pytest.raises(DuplicateExtensionError):
            loader.prepare(make_package("acme.web", app_id="other"), registry)
        with pytest.raises(DuplicateExtensionError):
            loader.prepare(make_package("acme.other", app_id="web"), registry)

    def test_prepare_rejects_invalid_package(self, loader, registry):
        with pytest.raises(ExtensionConfigurationError, match="is invalid"):
            loader.prepare(make_package("acme.web", version="latest"), registry)

    def test_prepare_checks_dependencies(self, loader, registry):
        with pytest.raises(MissingDependencyError):
            loader.prepare(make_package("acme.web", dependencies={"acme.core": "^1.0.0"}), registry)

    @pytest.mark.asyncio
    async def test_install_script_failure(self, loader, registry):
        def on_install():
            raise RuntimeError("no space left")

        with pytest.raises(HookFailureError) as exc_info:
            await loader.install(make_package(on_install=on_install), registry)

        assert exc_info.value.phase == "install"
        assert exc_info.value.message == "no space left"
        assert not registry.contains("acme.web")

    @pytest.mark.asyncio
    async def test_activate_failure_keeps_app_disabled(self, loader, registry):
        async def on_activate():
            raise RuntimeError("license expired")

        record = await loader.install(make_package(on_activate=on_activate), registry)

        with pytest.raises(HookFailureError):
            await loader.activate(record)

        assert not record.enabled
        assert record.error_count == 1

    @pytest.mark.asyncio
    async def test_activate_and_deactivate(self, loader, registry):
        calls = []
        package = make_package(
            on_activate=lambda: calls.append("activate"),
            on_deactivate=lambda: calls.append("deactivate"),
        )
        record = await loader.install(package, registry)

        assert await loader.activate(record) is True
        assert await loader.activate(record) is False
        assert record.activated_at is not None
        assert await loader.deactivate(record) is None
        assert not record.enabled
        assert calls == ["activate", "deactivate"]

    @pytest.mark.asyncio
    async def test_deactivate_failure_still_disables(self, loader, registry):
        def on_deactivate():
            raise RuntimeError("busy")

        record = await loader.install(make_package(on_deactivate=on_deactivate), registry)
        await loader.activate(record)

        failure = await loader.deactivate(record)

        assert failure.phase == "deactivate"
        assert not record.enabled

    def test_discover(self, loader, settings):
        extensions_dir = settings.get_extensions_directory()
        _write_extension(extensions_dir, "disk")
        (extensions_dir / "_private").mkdir()
        (extensions_dir / "empty").mkdir()

        assert loader.discover() == ["disk"]

    def test_discover_missing_directory(self, loader, tmp_path):
        assert loader.discover(tmp_path / "nowhere") == []

    def test_load_by_name_from_extensions_directory(self, loader, settings):
        _write_extension(
            settings.get_extensions_directory(),
            manifest={"id": "acme.disk", "name": "Disk", "version": "1.2.0"},
        )

        package = loader.load_package("disk")

        assert package.id == "acme.disk"
        assert package.app_definition.get_tab("logs") is not None

    def test_manifest_mismatch(self, loader, tmp_path):
        ext_dir = _write_extension(tmp_path, manifest={"id": "acme.disk", "name": "Disk", "version": "2.0.0"})

        with pytest.raises(ExtensionConfigurationError, match="declares acme.disk v2.0.0"):
            loader.load_package(str(ext_dir))

    def test_invalid_manifest(self, loader, tmp_path):
        ext_dir = _write_extension(tmp_path, manifest={"name": "Disk"})

        with pytest.raises(ExtensionConfigurationError, match="Invalid manifest"):
            loader.load_package(str(ext_dir))

    def test_missing_attribute(self, loader, tmp_path):
        ext_dir = _write_extension(tmp_path, source="value = 1\n")

        with pytest.raises(ExtensionLoadError, match="has no attribute extension"):
            loader.load_package(str(ext_dir))

    def test_import_error(self, loader, tmp_path):
        ext_dir = _write_extension(tmp_path, source="raise RuntimeError('broken')\n")

        with pytest.raises(ExtensionLoadError, match="broken"):
            loader.load_package(str(ext_dir))

    def test_unknown_module(self, loader):
        with pytest.raises(ExtensionLoadError):
            loader.load_package("yat_no_such_module:extension")

    def test_coerce_mapping(self, loader):
        package = loader.coerce_package({
            "metadata": {"id": "acme.map", "name": "Map", "version": "0.1.0"},
            "appDefinition": {"id": "map", "name": "Map"},
        })

        assert package.app_id == "map"

        with pytest.raises(ExtensionConfigurationError):
            loader.coerce_package({"metadata": {}})
