"""
Hook invocation pipeline.

Runs an App's lifecycle hooks for tunnel actions:

- start/stop: before -> primary -> after. A failing before-hook aborts the
  action, the primary hook's return value is the action result, after-hook
  failures are only logged.
- restart: a single primary hook.
- delete: the before-delete hook gates the deletion.
- locale/theme: notifications broadcast to every enabled App, isolated per
  App.

Actions for one tunnel are serialized; different tunnels run concurrently.
"""

import asyncio
from collections.abc import Iterable, Iterator, Mapping
from typing import Any

from pydantic import ValidationError

from yat.core.events import EventBus
from yat.extensions.diagnostics import DiagnosticsLog
from yat.extensions.errors import ExtensionNotFoundError, HookFailureError
from yat.extensions.interfaces import IHostEnvironment
from yat.extensions.models import (
    AppActionResult,
    AppHookContext,
    HookCallable,
    HookPhase,
    Tunnel,
    TunnelAction,
)
from yat.extensions.registry import ExtensionRegistry, RegisteredApp
from yat.utils.helpers import call_maybe_async
from yat.utils.logging import setup_logging

logger = setup_logging(__name__)

_COMPOSITE_PHASES = {
    TunnelAction.START: (HookPhase.BEFORE_START, HookPhase.START, HookPhase.AFTER_START),
    TunnelAction.STOP: (HookPhase.BEFORE_STOP, HookPhase.STOP, HookPhase.AFTER_STOP),
}


def coerce_action_result(value: Any) -> AppActionResult:
    """Normalize a primary hook's return value.

    ``None`` is success, a bool is the success flag and a mapping is parsed
    as an ``AppActionResult``.

    Raises:
        TypeError: If the value cannot be interpreted as a result
    """
    if isinstance(value, AppActionResult):
        return value
    if value is None:
        return AppActionResult.ok()
    if isinstance(value, bool):
        return AppActionResult(success=value)
    if isinstance(value, Mapping):
        try:
            return AppActionResult.model_validate(dict(value))
        except ValidationError as e:
            raise TypeError(f"invalid action result: {e.errors()[0]['msg']}") from e
    raise TypeError(f"unsupported action result type: {type(value).__name__}")


class HookPipeline:
    """Executes App hooks for tunnel actions."""

    def __init__(
        self,
        registry: ExtensionRegistry,
        environment: IHostEnvironment,
        event_bus: EventBus | None = None,
        diagnostics: DiagnosticsLog | None = None
    ):
        """Initialize the pipeline.

        Args:
            registry: Registry to resolve Apps from (read only)
            environment: Live i18n/theme state for hook contexts
            event_bus: Channel behind ``AppHookContext.emit``
            diagnostics: Sink for isolated failures
        """
        self.registry = registry
        self.environment = environment
        self.event_bus = event_bus
        self.diagnostics = diagnostics or DiagnosticsLog()
        self._tunnel_locks: dict[str, asyncio.Lock] = {}

    async def dispatch(
        self,
        action: TunnelAction | str,
        tunnel: Tunnel | None = None,
        **extra: Any
    ) -> AppActionResult | bool | None:
        """Run the hooks for one action.

        Args:
            action: start, stop, restart, delete, locale or theme
            tunnel: Target tunnel (required except for locale/theme)
            extra: ``locale`` for locale, ``is_dark``/``theme_mode`` for
                theme, and ``tunnels`` (tracked tunnels) for both

        Returns:
            ``AppActionResult`` for start/stop/restart, ``bool`` for delete,
            ``None`` for locale/theme
        """
        action = TunnelAction(action)

        if action == TunnelAction.LOCALE:
            await self.broadcast_locale(extra["locale"], extra.get("tunnels", ()))
            return None
        if action == TunnelAction.THEME:
            await self.broadcast_theme(extra["is_dark"], extra["theme_mode"], extra.get("tunnels", ()))
            return None

        if tunnel is None:
            raise ValueError(f"Action {action.value} requires a tunnel")

        if action in _COMPOSITE_PHASES:
            return await self.run_composite(action, tunnel)
        if action == TunnelAction.RESTART:
            return await self.run_restart(tunnel)
        return await self.run_before_delete(tunnel)

    async def run_composite(self, action: TunnelAction, tunnel: Tunnel) -> AppActionResult:
        """Run before -> primary -> after for start or stop."""
        before, primary, after = _COMPOSITE_PHASES[TunnelAction(action)]

        async with self._lock_for(tunnel.id):
            record = self.resolve(tunnel)
            if record is None:
                return AppActionResult.ok()

            before_hook = self._hook(record, before)
            if before_hook is not None:
                try:
                    await call_maybe_async(before_hook, self.build_context(record, tunnel))
                except Exception as e:
                    failure = self._failure(before, record, tunnel, e)
                    logger.info(f"{before.value} aborted {action.value} of tunnel {tunnel.id}: {failure.message}")
                    return AppActionResult.failed(failure.message)

            result = await self._run_primary(record, primary, tunnel)

            after_hook = self._hook(record, after)
            if after_hook is not None:
                try:
                    await call_maybe_async(after_hook, self.build_context(record, tunnel), result)
                except Exception as e:
                    self.diagnostics.record_failure(
                        HookFailureError.wrap(after.value, record.app_id, e), tunnel.id, record
                    )

            return result

    async def run_restart(self, tunnel: Tunnel) -> AppActionResult:
        async with self._lock_for(tunnel.id):
            record = self.resolve(tunnel)
            if record is None:
                return AppActionResult.ok()
            return await self._run_primary(record, HookPhase.RESTART, tunnel)

    async def run_before_delete(self, tunnel: Tunnel) -> bool:
        """Ask the tunnel's App whether it may be deleted.

        Returns:
            False if the hook returned False or raised
        """
        async with self._lock_for(tunnel.id):
            record = self.resolve(tunnel)
            if record is None:
                return True

            hook = self._hook(record, HookPhase.BEFORE_DELETE)
            if hook is None:
                return True

            try:
                verdict = await call_maybe_async(hook, self.build_context(record, tunnel))
            except Exception as e:
                self._failure(HookPhase.BEFORE_DELETE, record, tunnel, e)
                return False

            return True if verdict is None else bool(verdict)

    async def broadcast_locale(self, locale: str, tunnels: Iterable[Tunnel] = ()) -> int:
        """Notify every enabled App of a locale change.

        Returns:
            Number of hook calls that completed
        """
        delivered = 0
        for record, tunnel in self._broadcast_targets(tunnels):
            hook = self._hook(record, HookPhase.LOCALE_CHANGE)
            if hook is None:
                continue
            if await self._notify(record, HookPhase.LOCALE_CHANGE, tunnel, hook, locale):
                delivered += 1
        return delivered

    async def broadcast_theme(self, is_dark: bool, theme_mode: str, tunnels: Iterable[Tunnel] = ()) -> int:
        """Notify every enabled App of a theme change.

        Returns:
            Number of hook calls that completed
        """
        delivered = 0
        for record, tunnel in self._broadcast_targets(tunnels):
            hook = self._hook(record, HookPhase.THEME_CHANGE)
            if hook is None:
                continue
            if await self._notify(record, HookPhase.THEME_CHANGE, tunnel, hook, is_dark, theme_mode):
                delivered += 1
        return delivered

    async def invoke_custom(self, record: RegisteredApp, name: str, *args: Any, tunnel: Tunnel | None = None) -> Any:
        """Call a custom hook the host asked for by name.

        The context is passed as the last argument.

        Raises:
            ExtensionNotFoundError: If the App has no such hook
            HookFailureError: If the hook raises
        """
        hooks = record.app.hooks
        hook = hooks.get_custom(name) if hooks else None
        if hook is None:
            raise ExtensionNotFoundError(f"App {record.app_id} has no custom hook {name}", record.extension_id)

        try:
            return await call_maybe_async(hook, *args, self.build_context(record, tunnel))
        except Exception as e:
            raise HookFailureError.wrap(name, record.app_id, e) from e

    def resolve(self, tunnel: Tunnel) -> RegisteredApp | None:
        """The enabled App bound to a tunnel, or None for default handling."""
        if not tunnel.app_id:
            return None
        record = self.registry.get_by_app_id(tunnel.app_id)
        if record is None:
            logger.debug(f"Tunnel {tunnel.id} references unknown app {tunnel.app_id}")
            return None
        if not record.enabled:
            return None
        return record

    def build_context(self, record: RegisteredApp | None, tunnel: Tunnel | None) -> AppHookContext:
        """Fresh context for a single hook invocation."""
        emit = None
        if self.event_bus is not None:
            source = record.app_id if record else None
            emit = self.event_bus.emitter_for(source, tunnel.id if tunnel else None)
        return AppHookContext(
            tunnel=tunnel,
            emit=emit,
            t=self.environment.translate,
            locale=self.environment.locale,
            is_dark=self.environment.is_dark,
            theme_mode=self.environment.theme_mode,
        )

    def release_tunnel(self, tunnel_id: str) -> None:
        """Drop the serialization lock of a tunnel the host no longer tracks."""
        lock = self._tunnel_locks.get(tunnel_id)
        if lock is not None and not lock.locked():
            del self._tunnel_locks[tunnel_id]

    def is_busy(self, tunnel_id: str) -> bool:
        lock = self._tunnel_locks.get(tunnel_id)
        return lock is not None and lock.locked()

    async def _run_primary(self, record: RegisteredApp, phase: HookPhase, tunnel: Tunnel) -> AppActionResult:
        hook = self._hook(record, phase)
        if hook is None:
            return AppActionResult.ok()
        try:
            value = await call_maybe_async(hook, self.build_context(record, tunnel))
            return coerce_action_result(value)
        except Exception as e:
            failure = self._failure(phase, record, tunnel, e)
            return AppActionResult.failed(failure.message)

    async def _notify(
        self,
        record: RegisteredApp,
        phase: HookPhase,
        tunnel: Tunnel | None,
        hook: HookCallable,
        *args: Any
    ) -> bool:
        try:
            await call_maybe_async(hook, *args, self.build_context(record, tunnel))
            return True
        except Exception as e:
            self.diagnostics.record_failure(
                HookFailureError.wrap(phase.value, record.app_id, e),
                tunnel.id if tunnel else None,
                record,
            )
            return False

    def _broadcast_targets(self, tunnels: Iterable[Tunnel]) -> Iterator[tuple[RegisteredApp, Tunnel | None]]:
        tunnels = list(tunnels)
        for record in self.registry.enabled_records():
            bound = [tunnel for tunnel in tunnels if tunnel.app_id == record.app_id]
            if not bound:
                yield record, None
            for tunnel in bound:
                yield record, tunnel

    def _hook(self, record: RegisteredApp, phase: HookPhase) -> HookCallable | None:
        hooks = record.app.hooks
        return hooks.get(phase) if hooks is not None else None

    def _failure(self, phase: HookPhase, record: RegisteredApp, tunnel: Tunnel, error: Exception) -> HookFailureError:
        failure = HookFailureError.wrap(phase.value, record.app_id, error)
        record.record_error(failure.message)
        logger.error(f"Hook {phase.value} of app {record.app_id} failed for tunnel {tunnel.id}: {failure.message}")
        return failure

    def _lock_for(self, tunnel_id: str) -> asyncio.Lock:
        lock = self._tunnel_locks.get(tunnel_id)
        if lock is None:
            lock = asyncio.Lock()
            self._tunnel_locks[tunnel_id] = lock
        return lock
