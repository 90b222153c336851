"""
YAT App Extension System.

This package lets extension packages contribute an App (tabs, actions,
lifecycle hooks and UI adapters) that the host binds to tunnels through
``Tunnel.app_id``.

Key Components:
- ExtensionHost: High-level coordinator the host application talks to
- ExtensionLoader: Validation, lifecycle scripts and package import
- ExtensionRegistry: Installed packages and their dependency graph
- HookPipeline: Ordered hook execution for tunnel actions
- VisibilityEvaluator: Tab/action state for a tunnel snapshot
- AdapterController: Mount/update/unmount of UI adapters

Usage:
    from yat.extensions import ExtensionHost, Tunnel
    from yat.utils.config import get_settings

    host = ExtensionHost(get_settings())

    async with host.managed_lifecycle():
        await host.install(package)
        result = await host.start_tunnel(Tunnel(id="t1", name="web", app_id="my-app"))
    # Apps are deactivated and their UI unmounted
"""

from yat.extensions.adapters import AdapterController, AdapterOwner, AdapterState
from yat.extensions.diagnostics import DiagnosticsLog
from yat.extensions.environment import StaticHostEnvironment
from yat.extensions.errors import (
    DuplicateExtensionError,
    ExtensionConfigurationError,
    ExtensionDependencyError,
    ExtensionError,
    ExtensionInUseError,
    ExtensionLoadError,
    ExtensionNotFoundError,
    HookFailureError,
    InvalidAdapterStateError,
    MissingDependencyError,
    VersionMismatchError,
    VetoedDeletionError,
)
from yat.extensions.host import ExtensionHost, SurfaceBinding
from yat.extensions.interfaces import ExtensionComponentAdapter, ExtensionStatus, IHostEnvironment
from yat.extensions.loader import ExtensionLoader
from yat.extensions.models import (
    AdapterComponent,
    AppAction,
    AppActionResult,
    AppDefinition,
    AppExtensionPackage,
    AppHookContext,
    AppHooks,
    AppTab,
    ExtensionMetadata,
    HookPhase,
    NativeComponent,
    Tunnel,
    TunnelAction,
    TunnelView,
)
from yat.extensions.pipeline import HookPipeline
from yat.extensions.registry import ExtensionRegistry, RegisteredApp
from yat.extensions.validation import ExtensionValidator, version_satisfies
from yat.extensions.visibility import VisibilityEvaluator

__all__ = [
    # Data model
    "Tunnel",
    "AppDefinition",
    "AppTab",
    "AppAction",
    "AppHooks",
    "AppHookContext",
    "AppActionResult",
    "AppExtensionPackage",
    "ExtensionMetadata",
    "AdapterComponent",
    "NativeComponent",
    "HookPhase",
    "TunnelAction",
    "TunnelView",

    # Interfaces
    "ExtensionComponentAdapter",
    "ExtensionStatus",
    "IHostEnvironment",
    "StaticHostEnvironment",

    # Main components
    "ExtensionHost",
    "SurfaceBinding",
    "ExtensionLoader",
    "ExtensionRegistry",
    "RegisteredApp",
    "ExtensionValidator",
    "HookPipeline",
    "VisibilityEvaluator",
    "AdapterController",
    "AdapterOwner",
    "AdapterState",
    "DiagnosticsLog",
    "version_satisfies",

    # Exceptions
    "ExtensionError",
    "ExtensionLoadError",
    "ExtensionConfigurationError",
    "ExtensionNotFoundError",
    "DuplicateExtensionError",
    "ExtensionDependencyError",
    "MissingDependencyError",
    "VersionMismatchError",
    "ExtensionInUseError",
    "InvalidAdapterStateError",
    "HookFailureError",
    "VetoedDeletionError",
]
