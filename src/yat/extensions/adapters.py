"""
Adapter lifecycle controller.

Drives mount/update/unmount of framework-agnostic UI adapters. Each adapter
instance is either Unmounted or Mounted into exactly one container, and each
container holds at most one adapter. Calls for the same container are
serialized.
"""

import asyncio
import time
from collections.abc import AsyncIterator, Callable, Mapping
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from yat.extensions.diagnostics import DiagnosticsLog
from yat.extensions.errors import HookFailureError, InvalidAdapterStateError
from yat.extensions.interfaces import is_adapter
from yat.utils.errors import ValidationError
from yat.utils.helpers import call_maybe_async
from yat.utils.logging import setup_logging

logger = setup_logging(__name__)


class AdapterState(str, Enum):
    UNMOUNTED = "unmounted"
    MOUNTED = "mounted"


@dataclass(frozen=True)
class AdapterOwner:
    """What a mounted adapter renders: an App surface for a tunnel."""
    app_id: str | None = None
    tunnel_id: str | None = None
    surface: str | None = None


@dataclass
class MountRecord:
    """A mounted adapter and the container it occupies."""
    container: Any
    adapter: Any
    props: dict[str, Any]
    owner: AdapterOwner = field(default_factory=AdapterOwner)
    mounted_at: float = field(default_factory=time.time)
    update_count: int = 0


def validate_props(props: Mapping[str, Any] | None) -> dict[str, Any]:
    """Check a property bag at the boundary and copy it into a plain dict.

    Values are not inspected.

    Raises:
        ValidationError: If props is not a mapping with string keys
    """
    if props is None:
        return {}
    if not isinstance(props, Mapping):
        raise ValidationError(f"Adapter props must be a mapping, got {type(props).__name__}")
    bad_keys = [key for key in props if not isinstance(key, str)]
    if bad_keys:
        raise ValidationError(f"Adapter prop keys must be strings: {bad_keys!r}")
    return dict(props)


class AdapterController:
    """Owns the mounted/unmounted state of every adapter instance."""

    def __init__(self, diagnostics: DiagnosticsLog | None = None):
        self.diagnostics = diagnostics or DiagnosticsLog()
        self._slots: dict[int, MountRecord] = {}  # id(container) -> record
        self._adapters: dict[int, int] = {}  # id(adapter) -> id(container)
        self._locks: dict[int, asyncio.Lock] = {}
        self._lock_users: dict[int, int] = {}

    def state_of(self, adapter: Any) -> AdapterState:
        return AdapterState.MOUNTED if id(adapter) in self._adapters else AdapterState.UNMOUNTED

    def get(self, container: Any) -> MountRecord | None:
        return self._slots.get(id(container))

    def mounts(self) -> list[MountRecord]:
        return list(self._slots.values())

    async def mount(
        self,
        container: Any,
        adapter: Any,
        props: Mapping[str, Any] | None = None,
        owner: AdapterOwner | None = None
    ) -> MountRecord:
        """Mount an adapter into a container.

        Any other adapter occupying the container is unmounted first.

        Raises:
            InvalidAdapterStateError: If the adapter is already mounted
            HookFailureError: If the adapter's mount raises; the container is
                left empty
        """
        if not is_adapter(adapter):
            raise ValidationError(f"{type(adapter).__name__} is not a component adapter")
        props = validate_props(props)
        owner = owner or AdapterOwner()
        key = id(container)

        async with self._locked(key):
            if id(adapter) in self._adapters:
                raise InvalidAdapterStateError(
                    f"Adapter {type(adapter).__name__} is already mounted", owner.app_id
                )
            # Claimed before awaiting mount
            self._adapters[id(adapter)] = key

            existing = self._slots.get(key)
            if existing is not None:
                logger.debug(f"Container already holds {type(existing.adapter).__name__}, unmounting it")
                await self._release(key, existing)

            try:
                await call_maybe_async(adapter.mount, container, props)
            except Exception as e:
                self._adapters.pop(id(adapter), None)
                logger.error(f"Adapter mount failed for {owner}: {e}")
                raise HookFailureError.wrap("mount", owner.app_id, e) from e

            record = MountRecord(container=container, adapter=adapter, props=props, owner=owner)
            self._slots[key] = record
            logger.debug(f"Mounted {type(adapter).__name__} for {owner}")
            return record

    async def update(self, container: Any, props: Mapping[str, Any] | None) -> MountRecord:
        """Push new props to the adapter mounted in a container.

        A failing update leaves the adapter mounted.

        Raises:
            InvalidAdapterStateError: If nothing is mounted in the container
            HookFailureError: If the adapter's update raises
        """
        props = validate_props(props)
        key = id(container)

        async with self._locked(key):
            record = self._slots.get(key)
            if record is None:
                raise InvalidAdapterStateError("Cannot update: no adapter mounted in container")

            try:
                await call_maybe_async(record.adapter.update, props)
            except Exception as e:
                logger.error(f"Adapter update failed for {record.owner}: {e}")
                raise HookFailureError.wrap("update", record.owner.app_id, e) from e

            record.props = props
            record.update_count += 1
            return record

    async def unmount(self, container: Any) -> bool:
        """Unmount whatever the container holds.

        Returns:
            False if the container was empty
        """
        key = id(container)
        async with self._locked(key):
            record = self._slots.get(key)
            if record is None:
                return False
            await self._release(key, record)
        return True

    async def unmount_where(self, predicate: Callable[[AdapterOwner], bool]) -> int:
        """Unmount every adapter whose owner matches.

        Returns:
            Number of adapters unmounted
        """
        count = 0
        for record in [r for r in self._slots.values() if predicate(r.owner)]:
            if await self.unmount(record.container):
                count += 1
        return count

    async def unmount_all(self) -> int:
        return await self.unmount_where(lambda owner: True)

    @asynccontextmanager
    async def mounted(
        self,
        container: Any,
        adapter: Any,
        props: Mapping[str, Any] | None = None,
        owner: AdapterOwner | None = None
    ) -> AsyncIterator[MountRecord]:
        """Mount for the duration of a block, unmounting on every exit path."""
        record = await self.mount(container, adapter, props, owner)
        try:
            yield record
        finally:
            await self.unmount(container)

    async def _release(self, key: int, record: MountRecord) -> None:
        # The slot is freed even when the adapter's unmount raises
        try:
            await call_maybe_async(record.adapter.unmount)
        except Exception as e:
            self.diagnostics.record(
                "unmount", str(e) or e.__class__.__name__, record.owner.app_id, record.owner.tunnel_id
            )
        finally:
            self._slots.pop(key, None)
            self._adapters.pop(id(record.adapter), None)
            logger.debug(f"Unmounted {type(record.adapter).__name__} for {record.owner}")

    @asynccontextmanager
    async def _locked(self, key: int) -> AsyncIterator[None]:
        # Locks live only while some call holds or waits on them
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._lock_users[key] = self._lock_users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[key] -= 1
            if not self._lock_users[key]:
                del self._lock_users[key]
                del self._locks[key]
