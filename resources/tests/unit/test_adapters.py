"""
Unit tests for the adapter lifecycle controller.
"""

import asyncio

import pytest

from resources.tests.helpers.extensions import AsyncRecordingAdapter, RecordingAdapter
from yat.extensions.adapters import AdapterController, AdapterOwner, AdapterState, validate_props
from yat.extensions.diagnostics import DiagnosticsLog
from yat.extensions.errors import HookFailureError, InvalidAdapterStateError
from yat.utils.errors import ValidationError


class Container:
    """Stand-in for a host UI container handle."""

    def __init__(self, name: str):
        self.name = name


class SlowAdapter(AsyncRecordingAdapter):
    """Adapter whose mount yields to the event loop before completing."""

    async def mount(self, container, props):
        await asyncio.sleep(0.01)
        await super().mount(container, props)


@pytest.fixture
def controller():
    return AdapterController(DiagnosticsLog())


class TestValidateProps:
    """Test prop bag validation."""

    def test_copies_mapping(self):
        props = {"tunnel": None}
        assert validate_props(props) == props
        assert validate_props(props) is not props
        assert validate_props(None) == {}

    def test_rejects_bad_props(self):
        with pytest.raises(ValidationError):
            validate_props(["not", "a", "mapping"])
        with pytest.raises(ValidationError):
            validate_props({1: "x"})


class TestAdapterController:
    """Test AdapterController."""

    @pytest.mark.asyncio
    async def test_lifecycle(self, controller):
        adapter = AsyncRecordingAdapter()
        container = Container("tab")

        record = await controller.mount(container, adapter, {"a": 1}, AdapterOwner("web", "t1", "tab:logs"))
        assert controller.state_of(adapter) == AdapterState.MOUNTED
        assert adapter.container is container

        await controller.update(container, {"a": 2})
        assert record.update_count == 1
        assert controller.get(container).props == {"a": 2}

        assert await controller.unmount(container) is True
        assert controller.state_of(adapter) == AdapterState.UNMOUNTED
        assert adapter.methods == ["mount", "update", "unmount"]

    @pytest.mark.asyncio
    async def test_double_mount_rejected(self, controller):
        adapter = RecordingAdapter()
        await controller.mount(Container("a"), adapter)

        with pytest.raises(InvalidAdapterStateError):
            await controller.mount(Container("b"), adapter)

    @pytest.mark.asyncio
    async def test_concurrent_mounts_of_one_instance(self, controller):
        adapter = SlowAdapter()
        first, second = Container("a"), Container("b")

        results = await asyncio.gather(
            controller.mount(first, adapter),
            controller.mount(second, adapter),
            return_exceptions=True,
        )

        assert isinstance(results[1], InvalidAdapterStateError)
        assert adapter.methods == ["mount"]
        assert controller.get(first).adapter is adapter
        assert controller.get(second) is None

    @pytest.mark.asyncio
    async def test_failed_mount_releases_instance(self, controller):
        adapter = RecordingAdapter(fail_on={"mount"})

        with pytest.raises(HookFailureError):
            await controller.mount(Container("a"), adapter)

        adapter.fail_on.clear()
        await controller.mount(Container("b"), adapter)
        assert controller.state_of(adapter) == AdapterState.MOUNTED

    @pytest.mark.asyncio
    async def test_container_locks_are_dropped(self, controller):
        for _ in range(50):
            container = Container("tmp")
            await controller.mount(container, RecordingAdapter())
            await controller.update(container, {"n": 1})
            await controller.unmount(container)

        assert controller._locks == {}
        assert controller._lock_users == {}

    @pytest.mark.asyncio
    async def test_update_without_mount(self, controller):
        with pytest.raises(InvalidAdapterStateError):
            await controller.update(Container("a"), {})

    @pytest.mark.asyncio
    async def test_unmount_is_idempotent(self, controller):
        adapter = RecordingAdapter()
        container = Container("a")
        await controller.mount(container, adapter)

        assert await controller.unmount(container) is True
        assert await controller.unmount(container) is False
        assert adapter.methods.count("unmount") == 1

    @pytest.mark.asyncio
    async def test_mount_replaces_occupant(self, controller):
        log = []
        first, second = RecordingAdapter("first", log=log), RecordingAdapter("second", log=log)
        container = Container("a")

        await controller.mount(container, first)
        await controller.mount(container, second)

        assert log == [("first", "mount"), ("first", "unmount"), ("second", "mount")]
        assert controller.get(container).adapter is second
        assert controller.state_of(first) == AdapterState.UNMOUNTED

    @pytest.mark.asyncio
    async def test_mount_failure_leaves_container_empty(self, controller):
        adapter = RecordingAdapter(fail_on={"mount"})
        container = Container("a")

        with pytest.raises(HookFailureError) as exc_info:
            await controller.mount(container, adapter, owner=AdapterOwner(app_id="web"))

        assert exc_info.value.phase == "mount"
        assert exc_info.value.app_id == "web"
        assert controller.get(container) is None
        assert controller.state_of(adapter) == AdapterState.UNMOUNTED

    @pytest.mark.asyncio
    async def test_failed_update_keeps_mount_and_allows_unmount(self, controller):
        adapter = RecordingAdapter(fail_on={"update"})
        container = Container("a")
        await controller.mount(container, adapter, {"v": 1})

        with pytest.raises(HookFailureError):
            await controller.update(container, {"v": 2})

        assert controller.state_of(adapter) == AdapterState.MOUNTED
        assert controller.get(container).props == {"v": 1}
        assert await controller.unmount(container) is True

    @pytest.mark.asyncio
    async def test_unmount_failure_still_frees_container(self, controller):
        adapter = RecordingAdapter(fail_on={"unmount"})
        container = Container("a")
        await controller.mount(container, adapter, owner=AdapterOwner(app_id="web", tunnel_id="t1"))

        assert await controller.unmount(container) is True

        assert controller.get(container) is None
        assert controller.diagnostics.entries("web")[0].source == "unmount"

    @pytest.mark.asyncio
    async def test_unmount_where(self, controller):
        web, other = RecordingAdapter(), RecordingAdapter()
        await controller.mount(Container("a"), web, owner=AdapterOwner(app_id="web"))
        await controller.mount(Container("b"), other, owner=AdapterOwner(app_id="other"))

        assert await controller.unmount_where(lambda owner: owner.app_id == "web") == 1
        assert [r.adapter for r in controller.mounts()] == [other]
        assert await controller.unmount_all() == 1

    @pytest.mark.asyncio
    async def test_mounted_context_manager(self, controller):
        adapter = RecordingAdapter()
        container = Container("a")

        with pytest.raises(RuntimeError):
            async with controller.mounted(container, adapter):
                assert controller.state_of(adapter) == AdapterState.MOUNTED
                raise RuntimeError("render error")

        assert controller.state_of(adapter) == AdapterState.UNMOUNTED

    @pytest.mark.asyncio
    async def test_rejects_non_adapter(self, controller):
        with pytest.raises(ValidationError):
            await controller.mount(Container("a"), object())
