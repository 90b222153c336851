"""
Data models shared by the YAT host and its extensions.

Models accept both snake_case and the camelCase keys used by the host's
JSON payloads (``appId``, ``localPort``, ``onBeforeStart``...).
"""

import time
from collections.abc import Callable
from enum import Enum, IntEnum
from typing import Annotated, Any, Literal

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from yat.extensions.interfaces import is_adapter

HookCallable = Callable[..., Any]
Predicate = Callable[..., bool]


class TunnelType(IntEnum):
    """Known tunnel types. Hosts may report other integers."""
    HTTP = 1
    HTTPS = 2
    TCP = 3
    UDP = 4
    WIREGUARD = 5


class TunnelStatus(str, Enum):
    """Well-known tunnel statuses. Any other string is also a valid status."""
    ACTIVE = "active"
    STOPPED = "stopped"
    INACTIVE = "inactive"


class ThemeMode(str, Enum):
    LIGHT = "light"
    DARK = "dark"
    SYSTEM = "system"


class ActionVariant(str, Enum):
    PRIMARY = "primary"
    SUCCESS = "success"
    WARNING = "warning"
    DANGER = "danger"
    SECONDARY = "secondary"


class ExtensionSource(str, Enum):
    """Where an installed package came from."""
    LOCAL = "local"
    REMOTE = "remote"
    MARKETPLACE = "marketplace"


class HookPhase(str, Enum):
    """Lifecycle phases the runtime invokes. Nothing else is auto-invoked."""
    BEFORE_START = "before_start"
    START = "start"
    AFTER_START = "after_start"
    BEFORE_STOP = "before_stop"
    STOP = "stop"
    AFTER_STOP = "after_stop"
    RESTART = "restart"
    BEFORE_DELETE = "before_delete"
    LOCALE_CHANGE = "locale_change"
    THEME_CHANGE = "theme_change"


class TunnelAction(str, Enum):
    START = "start"
    STOP = "stop"
    RESTART = "restart"
    DELETE = "delete"
    LOCALE = "locale"
    THEME = "theme"


class Tunnel(BaseModel):
    """Read-only snapshot of a tunnel owned by the networking subsystem."""
    id: str
    name: str
    type: int = TunnelType.HTTP
    status: str = TunnelStatus.INACTIVE.value
    local_port: int | None = None
    remote_port: int | None = None
    remote_url: str | None = None
    app_id: str | None = None
    created_at: str | None = None

    model_config = ConfigDict(
        extra="allow",
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )

    @property
    def tunnel_type(self) -> TunnelType | None:
        """The type as a ``TunnelType``, or None for host-defined types."""
        try:
            return TunnelType(self.type)
        except ValueError:
            return None

    @property
    def attributes(self) -> dict[str, Any]:
        """Extension-defined attributes beyond the declared fields."""
        return dict(self.model_extra or {})


class AppActionResult(BaseModel):
    """Outcome of a start/stop/restart hook."""
    success: bool
    message: str | None = None
    data: Any = None

    model_config = ConfigDict(frozen=True)

    @classmethod
    def ok(cls, message: str | None = None, data: Any = None) -> "AppActionResult":
        return cls(success=True, message=message, data=data)

    @classmethod
    def failed(cls, message: str | None = None, data: Any = None) -> "AppActionResult":
        return cls(success=False, message=message, data=data)


class AppHookContext(BaseModel):
    """Snapshot handed to exactly one hook invocation."""
    tunnel: Tunnel | None = None
    emit: HookCallable | None = None
    t: HookCallable | None = None
    locale: str | None = None
    is_dark: bool | None = None
    theme_mode: ThemeMode | None = None

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    def translate(self, key: str, fallback: str | None = None) -> str:
        if self.t is None:
            return fallback if fallback is not None else key
        return self.t(key, fallback)


def _check_adapter(value: Any) -> Any:
    if isinstance(value, type):
        raise ValueError("adapter classes must be given as a factory")
    if not is_adapter(value):
        raise ValueError("adapter must provide callable mount, update and unmount")
    return value


class NativeComponent(BaseModel):
    """Framework-native component descriptor passed through untouched."""
    kind: Literal["native"] = "native"
    framework: str = "unknown"
    descriptor: Any = None

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)


class AdapterComponent(BaseModel):
    """UI surface driven through the adapter controller.

    Either a ready adapter instance, shared by every mount, or a factory
    called once per mount so each mounted view gets its own instance.
    """
    kind: Literal["adapter"] = "adapter"
    adapter: Any = None
    factory: HookCallable | None = None

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    @field_validator("adapter")
    @classmethod
    def _validate_adapter(cls, value: Any) -> Any:
        return value if value is None else _check_adapter(value)

    @model_validator(mode="after")
    def _require_source(self) -> "AdapterComponent":
        if (self.adapter is None) == (self.factory is None):
            raise ValueError("exactly one of adapter or factory is required")
        return self

    def create(self) -> Any:
        """Adapter instance for a new mount."""
        if self.factory is None:
            return self.adapter
        return _check_adapter(self.factory())


ComponentSlot = Annotated[NativeComponent | AdapterComponent, Field(discriminator="kind")]


def coerce_component_slot(value: Any) -> Any:
    """Wrap a bare adapter or component descriptor into a component slot."""
    if value is None or isinstance(value, (NativeComponent, AdapterComponent)):
        return value
    if isinstance(value, dict) and value.get("kind") in ("native", "adapter"):
        return value
    if isinstance(value, type) and is_adapter(value):
        return AdapterComponent(factory=value)
    if is_adapter(value):
        return AdapterComponent(adapter=value)
    return NativeComponent(descriptor=value)


class AppTab(BaseModel):
    """Tab shown in a tunnel's detail view."""
    key: str
    label: str
    icon: str = ""
    view: ComponentSlot | None = None
    visible: Predicate | None = None

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    @model_validator(mode="before")
    @classmethod
    def _fold_view_shorthands(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        adapter = data.pop("adapter", None)
        component = data.pop("component", None)
        view = data.get("view")
        if view is None:
            view = adapter if adapter is not None else component
        data["view"] = coerce_component_slot(view)
        return data

    @property
    def uses_adapter(self) -> bool:
        return isinstance(self.view, AdapterComponent)


class AppAction(BaseModel):
    """Action button shown for a tunnel."""
    key: str
    label: str
    icon: str = ""
    variant: ActionVariant | None = None
    visible: Predicate | None = None
    disabled: Predicate | None = None

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)


_PHASE_FIELDS: dict[HookPhase, str] = {
    HookPhase.BEFORE_START: "on_before_start",
    HookPhase.START: "on_start",
    HookPhase.AFTER_START: "on_after_start",
    HookPhase.BEFORE_STOP: "on_before_stop",
    HookPhase.STOP: "on_stop",
    HookPhase.AFTER_STOP: "on_after_stop",
    HookPhase.RESTART: "on_restart",
    HookPhase.BEFORE_DELETE: "on_before_delete",
    HookPhase.LOCALE_CHANGE: "on_locale_change",
    HookPhase.THEME_CHANGE: "on_theme_change",
}


class AppHooks(BaseModel):
    """Lifecycle hooks of an App.

    Keys outside the recognized phases are kept in ``custom``; the runtime
    only calls those when the host asks for them by name.
    """
    on_before_start: HookCallable | None = None
    on_start: HookCallable | None = None
    on_after_start: HookCallable | None = None
    on_before_stop: HookCallable | None = None
    on_stop: HookCallable | None = None
    on_after_stop: HookCallable | None = None
    on_restart: HookCallable | None = None
    on_before_delete: HookCallable | None = None
    on_locale_change: HookCallable | None = None
    on_theme_change: HookCallable | None = None
    custom: dict[str, HookCallable] = Field(default_factory=dict)

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        alias_generator=to_camel,
        populate_by_name=True,
    )

    @model_validator(mode="before")
    @classmethod
    def _collect_custom_hooks(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        known = set()
        for name in cls.model_fields:
            known.update((name, to_camel(name)))
        known.discard("custom")

        custom = dict(data.get("custom") or {})
        cleaned = {}
        for key, value in data.items():
            if key == "custom":
                continue
            if key in known:
                cleaned[key] = value
            elif value is not None:
                custom[key] = value
        cleaned["custom"] = custom
        return cleaned

    def get(self, phase: HookPhase | str) -> HookCallable | None:
        """Resolve a recognized phase to its callable."""
        return getattr(self, _PHASE_FIELDS[HookPhase(phase)])

    def get_custom(self, name: str) -> HookCallable | None:
        return self.custom.get(name)


class AppDefinition(BaseModel):
    """An App: tabs, actions and hooks bound to tunnels through ``Tunnel.app_id``."""
    id: str
    name: str
    config_form: ComponentSlot | None = None
    detail_info: ComponentSlot | None = None
    tabs: list[AppTab] = Field(default_factory=list)
    actions: list[AppAction] = Field(default_factory=list)
    hooks: AppHooks | None = None

    model_config = ConfigDict(
        frozen=True,
        arbitrary_types_allowed=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )

    @field_validator("config_form", "detail_info", mode="before")
    @classmethod
    def _coerce_slots(cls, value: Any) -> Any:
        return coerce_component_slot(value)

    @field_validator("tabs", "actions")
    @classmethod
    def _unique_keys(cls, entries: list[Any]) -> list[Any]:
        seen: set[str] = set()
        for entry in entries:
            if entry.key in seen:
                raise ValueError(f"duplicate key: {entry.key}")
            seen.add(entry.key)
        return entries

    def get_tab(self, key: str) -> AppTab | None:
        return next((tab for tab in self.tabs if tab.key == key), None)

    def get_action(self, key: str) -> AppAction | None:
        return next((action for action in self.actions if action.key == key), None)


class ExtensionMetadata(BaseModel):
    """Extension metadata model."""
    id: str
    name: str
    version: str
    description: str = ""
    author: str = ""
    homepage: str | None = None
    icon: str | None = None
    min_host_version: str | None = None
    dependencies: dict[str, str] = Field(default_factory=dict)

    model_config = ConfigDict(
        extra="allow",
        alias_generator=to_camel,
        populate_by_name=True,
    )


class AppExtensionPackage(BaseModel):
    """The distributable unit: metadata, one App and optional lifecycle scripts."""
    metadata: ExtensionMetadata
    app_definition: AppDefinition
    on_install: HookCallable | None = None
    on_uninstall: HookCallable | None = None
    on_activate: HookCallable | None = None
    on_deactivate: HookCallable | None = None
    source: ExtensionSource = ExtensionSource.LOCAL

    model_config = ConfigDict(
        arbitrary_types_allowed=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )

    @property
    def id(self) -> str:
        return self.metadata.id

    @property
    def app_id(self) -> str:
        return self.app_definition.id


class TabState(BaseModel):
    tab: AppTab
    visible: bool

    model_config = ConfigDict(frozen=True)


class ActionState(BaseModel):
    action: AppAction
    visible: bool
    disabled: bool

    model_config = ConfigDict(frozen=True)


class TunnelView(BaseModel):
    """Evaluated tab and action state for one tunnel."""
    tunnel_id: str
    app_id: str | None = None
    tabs: list[TabState] = Field(default_factory=list)
    actions: list[ActionState] = Field(default_factory=list)
    active_tab: str | None = None

    model_config = ConfigDict(frozen=True)

    @property
    def visible_tabs(self) -> list[str]:
        return [state.tab.key for state in self.tabs if state.visible]

    @property
    def enabled_actions(self) -> list[str]:
        return [state.action.key for state in self.actions if state.visible and not state.disabled]


class Diagnostic(BaseModel):
    """An isolated failure that was logged instead of raised."""
    source: str
    message: str
    app_id: str | None = None
    tunnel_id: str | None = None
    timestamp: float = Field(default_factory=time.time)
