"""
Extension host runtime for the YAT host application.

This module coordinates the loader, hook pipeline, visibility evaluator and
adapter controller. It owns the registry, the tracked tunnels and the
per-tunnel UI bindings; nothing else mutates them.
"""

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any

from yat.core.events import EventBus
from yat.extensions.adapters import AdapterController, AdapterOwner
from yat.extensions.diagnostics import DiagnosticsLog
from yat.extensions.errors import (
    ExtensionError,
    ExtensionInUseError,
    ExtensionNotFoundError,
    HookFailureError,
    VetoedDeletionError,
)
from yat.extensions.interfaces import IHostEnvironment
from yat.extensions.environment import StaticHostEnvironment
from yat.extensions.loader import ExtensionLoader
from yat.extensions.models import (
    AdapterComponent,
    AppActionResult,
    AppDefinition,
    AppExtensionPackage,
    Diagnostic,
    NativeComponent,
    Tunnel,
    TunnelAction,
    TunnelView,
)
from yat.extensions.pipeline import HookPipeline
from yat.extensions.registry import ExtensionRegistry, RegisteredApp
from yat.extensions.validation import ExtensionValidator
from yat.extensions.visibility import VisibilityEvaluator
from yat.utils.config import YatSettings, get_settings
from yat.utils.logging import setup_logging

logger = setup_logging(__name__)

TAB_AREA = "tab"
DETAIL_AREA = "detail_info"


@dataclass
class SurfaceBinding:
    """A tunnel UI area currently rendered by an App."""
    tunnel_id: str
    app_id: str
    area: str
    key: str
    container: Any
    props: dict[str, Any]
    adapter: Any = None
    native: NativeComponent | None = None

    @property
    def owner(self) -> AdapterOwner:
        return AdapterOwner(app_id=self.app_id, tunnel_id=self.tunnel_id, surface=f"{self.area}:{self.key}")


class ExtensionHost:
    """Top-level coordinator for App extensions."""

    def __init__(
        self,
        settings: YatSettings | None = None,
        environment: IHostEnvironment | None = None,
        event_bus: EventBus | None = None
    ):
        """Initialize the extension host.

        Args:
            settings: Host settings (global settings when omitted)
            environment: Live i18n/theme state (static defaults when omitted)
            event_bus: Channel receiving ``emit`` calls from hooks
        """
        self.settings = settings or get_settings()
        self.environment = environment or StaticHostEnvironment.from_settings(self.settings)
        self.event_bus = event_bus or EventBus()
        self.diagnostics = DiagnosticsLog(self.settings.diagnostics_buffer_size)

        self.registry = ExtensionRegistry()
        self.validator = ExtensionValidator(self.settings)
        self.loader = ExtensionLoader(self.settings, self.validator)
        self.pipeline = HookPipeline(self.registry, self.environment, self.event_bus, self.diagnostics)
        self.evaluator = VisibilityEvaluator(self.diagnostics)
        self.adapters = AdapterController(self.diagnostics)

        self._tunnels: dict[str, Tunnel] = {}
        self._views: dict[str, TunnelView] = {}
        self._bindings: dict[tuple[str, str], SurfaceBinding] = {}
        self._registry_lock = asyncio.Lock()

        self._initialized = False
        self._shutting_down = False

        logger.info("Extension host initialized")

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        """Install the configured auto-load packages."""
        if self._initialized:
            logger.warning("Extension host already initialized")
            return

        if not self.settings.extensions_enabled:
            logger.info("Extensions disabled, skipping initialization")
            return

        for ref in self.settings.extensions_auto_load:
            try:
                await self.install_from(ref)
                logger.info(f"Auto-loaded extension: {ref}")
            except ExtensionError as e:
                logger.error(f"Failed to auto-load extension {ref}: {e}")

        self._initialized = True
        logger.info(f"Extension host ready with {len(self.registry.list_extensions())} extensions")

    async def shutdown(self) -> None:
        """Unmount every adapter and deactivate Apps, dependents first.

        Installed packages stay registered; uninstall scripts do not run.
        """
        if self._shutting_down:
            logger.warning("Extension host already shutting down")
            return

        self._shutting_down = True
        logger.info("Shutting down extension host")

        await self.adapters.unmount_all()
        self._bindings.clear()

        shutdown_order = self.registry.get_shutdown_order()
        logger.info(f"Deactivating extensions in order: {shutdown_order}")
        for extension_id in shutdown_order:
            try:
                await self.deactivate(extension_id)
            except ExtensionError as e:
                logger.error(f"Error deactivating extension {extension_id}: {e}")

        await self.event_bus.drain()
        self._initialized = False
        self._shutting_down = False
        logger.info("Extension host shutdown complete")

    @asynccontextmanager
    async def managed_lifecycle(self):
        """Context manager for the host lifecycle.

        Usage:
            async with host.managed_lifecycle():
                # Extensions are installed and active
                pass
            # Apps are deactivated and their UI unmounted
        """
        try:
            await self.initialize()
            yield self
        finally:
            await self.shutdown()

    # ------------------------------------------------------------------
    # Packages
    # ------------------------------------------------------------------

    async def install(self, package: AppExtensionPackage, activate: bool | None = None) -> RegisteredApp:
        """Install a package and, by default, activate it.

        An activation failure leaves the package installed but inactive and
        is recorded as a diagnostic.

        Raises:
            ExtensionError: If validation or the install script fails
        """
        if not self.settings.extensions_enabled:
            raise ExtensionError("Extensions are disabled", package.metadata.id)

        async with self._registry_lock:
            record = await self.loader.install(package, self.registry)
            self.registry.add(record)

        if activate is None:
            activate = self.settings.extensions_activate_on_install
        if activate:
            try:
                await self.activate(record.extension_id)
            except HookFailureError as e:
                self.diagnostics.record_failure(e)

        return record

    async def install_from(self, ref: str, activate: bool | None = None) -> RegisteredApp:
        """Load a package by reference (module path or directory) and install it."""
        package = self.loader.load_package(ref)
        return await self.install(package, activate)

    async def uninstall(self, extension_id: str, force: bool = False) -> RegisteredApp:
        """Deactivate, run the uninstall script and remove a package.

        Uninstall script failures are recorded but do not block removal.

        Raises:
            ExtensionNotFoundError: If the package is not installed
            ExtensionInUseError: If installed packages depend on it and
                ``force`` is False
        """
        async with self._registry_lock:
            record = self.registry.require(extension_id)
            dependents = self.registry.get_dependents(extension_id)
            if dependents and not force:
                raise ExtensionInUseError(
                    f"Extension {extension_id} is required by {', '.join(dependents)}",
                    dependents=dependents,
                    extension_id=extension_id,
                )

            if record.enabled:
                failure = await self.loader.deactivate(record)
                if failure is not None:
                    self.diagnostics.record_failure(failure)

            failure = await self.loader.uninstall(record)
            if failure is not None:
                self.diagnostics.record_failure(failure, record=record)

            self.registry.remove(extension_id)

        await self._detach_app(record.app_id)
        logger.info(f"Uninstalled extension: {extension_id}")
        return record

    async def activate(self, extension_id: str) -> bool:
        """Enable an installed App.

        Returns:
            False if it was already active

        Raises:
            ExtensionNotFoundError: If the package is not installed
            HookFailureError: If the activate script fails
        """
        async with self._registry_lock:
            record = self.registry.require(extension_id)
            changed = await self.loader.activate(record)

        if changed:
            self._refresh_app_views(record.app_id)
        return changed

    async def deactivate(self, extension_id: str) -> bool:
        """Disable an App and unmount its UI.

        Returns:
            False if it was already inactive
        """
        async with self._registry_lock:
            record = self.registry.require(extension_id)
            if not record.enabled:
                return False
            failure = await self.loader.deactivate(record)
            if failure is not None:
                self.diagnostics.record_failure(failure)

        await self._detach_app(record.app_id)
        return True

    def get_extension(self, extension_id: str) -> RegisteredApp | None:
        return self.registry.get(extension_id)

    def get_extension_config(self, extension_id: str) -> dict[str, Any]:
        """Host-side configuration for a package from ``extensions_config``."""
        return dict(self.settings.extensions_config.get(extension_id, {}))

    def get_app(self, app_id: str) -> AppDefinition | None:
        """App definition for an App id, active or not."""
        record = self.registry.get_by_app_id(app_id)
        return record.app if record else None

    def resolve_app(self, tunnel: Tunnel) -> AppDefinition | None:
        """Enabled App bound to a tunnel, or None for default rendering."""
        record = self.pipeline.resolve(tunnel)
        return record.app if record else None

    def list_extensions(self) -> list[dict[str, Any]]:
        return [record.to_dict() for record in self.registry.records()]

    # ------------------------------------------------------------------
    # Tunnel actions
    # ------------------------------------------------------------------

    async def dispatch(self, action: TunnelAction | str, tunnel: Tunnel | None = None, **extra: Any):
        """Route an action; locale/theme also update the host environment."""
        action = TunnelAction(action)
        if action == TunnelAction.LOCALE:
            await self.set_locale(extra["locale"])
            return None
        if action == TunnelAction.THEME:
            await self.set_theme(extra["is_dark"], extra["theme_mode"])
            return None
        if action == TunnelAction.DELETE:
            return await self.pipeline.run_before_delete(tunnel)
        return await self.pipeline.dispatch(action, tunnel, **extra)

    async def start_tunnel(self, tunnel: Tunnel) -> AppActionResult:
        return await self.pipeline.run_composite(TunnelAction.START, tunnel)

    async def stop_tunnel(self, tunnel: Tunnel) -> AppActionResult:
        return await self.pipeline.run_composite(TunnelAction.STOP, tunnel)

    async def restart_tunnel(self, tunnel: Tunnel) -> AppActionResult:
        return await self.pipeline.run_restart(tunnel)

    async def delete_tunnel(self, tunnel: Tunnel) -> None:
        """Ask the tunnel's App for permission, then drop all its host state.

        Raises:
            VetoedDeletionError: If the App refused the deletion
        """
        if not await self.pipeline.run_before_delete(tunnel):
            raise VetoedDeletionError(
                f"Deletion of tunnel {tunnel.id} was vetoed by app {tunnel.app_id}",
                tunnel_id=tunnel.id,
                app_id=tunnel.app_id,
            )

        await self.untrack_tunnel(tunnel.id)
        logger.info(f"Tunnel {tunnel.id} deleted")

    async def call_custom_hook(self, app_id: str, name: str, *args: Any, tunnel: Tunnel | None = None) -> Any:
        """Invoke a custom (non-lifecycle) hook on an enabled App by name."""
        record = self.registry.get_by_app_id(app_id)
        if record is None or not record.enabled:
            raise ExtensionNotFoundError(f"App {app_id} is not installed or not active")
        return await self.pipeline.invoke_custom(record, name, *args, tunnel=tunnel)

    # ------------------------------------------------------------------
    # Host environment
    # ------------------------------------------------------------------

    async def set_locale(self, locale: str) -> int:
        """Switch locale, notify every enabled App and recompute views.

        Returns:
            Number of locale hooks that completed
        """
        self.environment.set_locale(locale)
        delivered = await self.pipeline.broadcast_locale(locale, self._tunnels.values())
        await self._refresh_all()
        return delivered

    async def set_theme(self, is_dark: bool, theme_mode: str) -> int:
        """Switch theme, notify every enabled App and recompute views.

        Returns:
            Number of theme hooks that completed
        """
        self.environment.set_theme(is_dark, theme_mode)
        delivered = await self.pipeline.broadcast_theme(is_dark, theme_mode, self._tunnels.values())
        await self._refresh_all()
        return delivered

    # ------------------------------------------------------------------
    # Tunnel views and UI
    # ------------------------------------------------------------------

    def track_tunnel(self, tunnel: Tunnel) -> TunnelView | None:
        """Record a tunnel snapshot and compute its view without touching the UI."""
        self._tunnels[tunnel.id] = tunnel
        return self._compute_view(tunnel)

    async def untrack_tunnel(self, tunnel_id: str) -> bool:
        """Forget a tunnel and close its surfaces.

        Returns:
            False if the tunnel was not tracked
        """
        for area in (TAB_AREA, DETAIL_AREA):
            await self._close_surface(tunnel_id, area)
        self._views.pop(tunnel_id, None)
        self.pipeline.release_tunnel(tunnel_id)
        return self._tunnels.pop(tunnel_id, None) is not None

    async def update_tunnel(self, tunnel: Tunnel) -> TunnelView | None:
        """Record a new tunnel snapshot, recompute its view and update its UI.

        If the tab on screen is no longer visible it is unmounted and the
        next visible tab is shown in the same container.
        """
        view = self.track_tunnel(tunnel)
        await self._reconcile(tunnel.id)
        return view

    def get_tunnel(self, tunnel_id: str) -> Tunnel | None:
        return self._tunnels.get(tunnel_id)

    def get_view(self, tunnel_id: str) -> TunnelView | None:
        return self._views.get(tunnel_id)

    def get_binding(self, tunnel_id: str, area: str = TAB_AREA) -> SurfaceBinding | None:
        return self._bindings.get((tunnel_id, area))

    def get_config_form(self, app_id: str) -> AdapterComponent | NativeComponent | None:
        """Config form slot of an App, for the tunnel creation dialog."""
        app = self.get_app(app_id)
        return app.config_form if app else None

    async def show_tab(
        self,
        tunnel_id: str,
        tab_key: str,
        container: Any,
        props: dict[str, Any] | None = None
    ) -> SurfaceBinding:
        """Render one of the tunnel App's tabs into a container.

        Adapter tabs are mounted through the adapter controller; native
        components are only recorded for the rendering collaborator.

        Raises:
            ExtensionNotFoundError: If the tunnel, App or visible tab is unknown
        """
        tunnel, record = self._require_bound_tunnel(tunnel_id)
        view = self.evaluator.evaluate(record.app, tunnel, tab_key)
        tab = record.app.get_tab(tab_key)
        if tab is None or tab_key not in view.visible_tabs:
            raise ExtensionNotFoundError(f"Tab {tab_key} is not available for tunnel {tunnel_id}", record.extension_id)

        self._views[tunnel_id] = view
        return await self._open_surface(tunnel, record, TAB_AREA, tab_key, tab.view, container, props)

    async def show_detail_info(
        self,
        tunnel_id: str,
        container: Any,
        props: dict[str, Any] | None = None
    ) -> SurfaceBinding | None:
        """Render the App's detail info component, if it declares one."""
        tunnel, record = self._require_bound_tunnel(tunnel_id)
        if record.app.detail_info is None:
            return None
        return await self._open_surface(
            tunnel, record, DETAIL_AREA, DETAIL_AREA, record.app.detail_info, container, props
        )

    async def update_tab_props(self, tunnel_id: str, props: dict[str, Any], area: str = TAB_AREA) -> None:
        """Push new props to a mounted surface.

        Raises:
            ExtensionNotFoundError: If nothing is shown for the tunnel
        """
        binding = self._bindings.get((tunnel_id, area))
        if binding is None:
            raise ExtensionNotFoundError(f"Nothing is shown for tunnel {tunnel_id}")
        binding.props = dict(props)
        if binding.adapter is not None:
            await self.adapters.update(binding.container, self._surface_props(tunnel_id, binding.props))

    async def close_tab(self, tunnel_id: str, area: str = TAB_AREA) -> bool:
        """Unmount a tunnel surface. Returns False if nothing was shown."""
        return await self._close_surface(tunnel_id, area)

    def get_diagnostics(self, app_id: str | None = None) -> list[Diagnostic]:
        return self.diagnostics.entries(app_id)

    def check_health(self) -> dict[str, Any]:
        """Summary of the extension system state."""
        return {
            "enabled": self.settings.extensions_enabled,
            "initialized": self._initialized,
            "host_version": self.settings.host_version,
            "extensions": self.list_extensions(),
            "registry_stats": self.registry.get_registry_stats(),
            "tracked_tunnels": len(self._tunnels),
            "mounted_adapters": len(self.adapters.mounts()),
            "diagnostics": len(self.diagnostics),
            "event_bus": self.event_bus.get_stats(),
        }

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _require_bound_tunnel(self, tunnel_id: str) -> tuple[Tunnel, RegisteredApp]:
        tunnel = self._tunnels.get(tunnel_id)
        if tunnel is None:
            raise ExtensionNotFoundError(f"Tunnel {tunnel_id} is not tracked")
        record = self.pipeline.resolve(tunnel)
        if record is None:
            raise ExtensionNotFoundError(f"Tunnel {tunnel_id} has no active App")
        return tunnel, record

    def _compute_view(self, tunnel: Tunnel) -> TunnelView | None:
        record = self.pipeline.resolve(tunnel)
        if record is None:
            self._views.pop(tunnel.id, None)
            return None
        previous = self._views.get(tunnel.id)
        active = previous.active_tab if previous and previous.app_id == record.app_id else None
        view = self.evaluator.evaluate(record.app, tunnel, active)
        self._views[tunnel.id] = view
        return view

    def _surface_props(self, tunnel_id: str, props: dict[str, Any]) -> dict[str, Any]:
        merged: dict[str, Any] = {"tunnel": self._tunnels.get(tunnel_id)}
        merged.update(props)
        return merged

    async def _open_surface(
        self,
        tunnel: Tunnel,
        record: RegisteredApp,
        area: str,
        key: str,
        slot: AdapterComponent | NativeComponent | None,
        container: Any,
        props: dict[str, Any] | None
    ) -> SurfaceBinding:
        current = self._bindings.get((tunnel.id, area))
        if current is not None:
            await self._close_surface(tunnel.id, area)

        # A container renders one surface at a time; evict whoever holds it
        for other_key in [k for k, b in self._bindings.items() if b.container is container]:
            await self._close_surface(*other_key)

        binding = SurfaceBinding(
            tunnel_id=tunnel.id,
            app_id=record.app_id,
            area=area,
            key=key,
            container=container,
            props=dict(props or {}),
        )

        if isinstance(slot, AdapterComponent):
            adapter = slot.create()
            await self.adapters.mount(container, adapter, self._surface_props(tunnel.id, binding.props), binding.owner)
            binding.adapter = adapter
        elif isinstance(slot, NativeComponent):
            binding.native = slot

        self._bindings[(tunnel.id, area)] = binding
        return binding

    async def _close_surface(self, tunnel_id: str, area: str) -> bool:
        binding = self._bindings.pop((tunnel_id, area), None)
        if binding is None:
            return False
        if binding.adapter is not None:
            mounted = self.adapters.get(binding.container)
            if mounted is not None and mounted.adapter is binding.adapter:
                await self.adapters.unmount(binding.container)
        return True

    async def _reconcile(self, tunnel_id: str) -> None:
        view = self._views.get(tunnel_id)

        detail = self._bindings.get((tunnel_id, DETAIL_AREA))
        if detail is not None:
            if view is None or view.app_id != detail.app_id:
                await self._close_surface(tunnel_id, DETAIL_AREA)
            elif detail.adapter is not None:
                await self._push_update(detail)

        binding = self._bindings.get((tunnel_id, TAB_AREA))
        if binding is None:
            return

        if view is not None and view.app_id == binding.app_id and binding.key in view.visible_tabs:
            if binding.adapter is not None:
                await self._push_update(binding)
            return

        await self._close_surface(tunnel_id, TAB_AREA)
        if view is not None and view.active_tab:
            try:
                await self.show_tab(tunnel_id, view.active_tab, binding.container, binding.props)
            except ExtensionError as e:
                self.diagnostics.record("mount", str(e), view.app_id, tunnel_id)

    async def _push_update(self, binding: SurfaceBinding) -> None:
        try:
            await self.adapters.update(binding.container, self._surface_props(binding.tunnel_id, binding.props))
        except HookFailureError as e:
            self.diagnostics.record_failure(e, binding.tunnel_id)

    async def _detach_app(self, app_id: str) -> None:
        """Unmount an App's UI and recompute views of its tunnels."""
        for key in [k for k, b in self._bindings.items() if b.app_id == app_id]:
            self._bindings.pop(key, None)
        await self.adapters.unmount_where(lambda owner: owner.app_id == app_id)
        self._refresh_app_views(app_id)

    def _refresh_app_views(self, app_id: str) -> None:
        for tunnel in self._tunnels.values():
            if tunnel.app_id == app_id:
                self._compute_view(tunnel)

    async def _refresh_all(self) -> None:
        for tunnel_id, tunnel in list(self._tunnels.items()):
            self._compute_view(tunnel)
            await self._reconcile(tunnel_id)
