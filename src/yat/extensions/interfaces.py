"""
Extension interfaces for the YAT host.

This module defines the abstract base classes extensions implement to
contribute UI, and the host-side interface the runtime reads the live
i18n/theme state from.
"""

from abc import ABC, abstractmethod
from collections.abc import Mapping
from enum import Enum
from typing import Any

ADAPTER_METHODS = ("mount", "update", "unmount")


class ExtensionStatus(str, Enum):
    """Extension status enumeration."""
    INACTIVE = "inactive"
    ACTIVE = "active"


class ExtensionComponentAdapter(ABC):
    """Framework-agnostic UI surface contributed by an extension.

    The host's adapter controller is the only caller of these methods. Any
    method may be a coroutine function. Objects that merely provide the three
    methods are accepted as adapters too; subclassing is optional.
    """

    @abstractmethod
    def mount(self, container: Any, props: Mapping[str, Any]) -> Any:
        """Render into ``container`` with the initial props.

        Args:
            container: Host-provided container handle
            props: Plain key/value property bag
        """
        pass

    @abstractmethod
    def update(self, props: Mapping[str, Any]) -> Any:
        """Re-render with new props."""
        pass

    @abstractmethod
    def unmount(self) -> Any:
        """Tear down everything rendered and drop the container reference."""
        pass


def is_adapter(value: Any) -> bool:
    """Return True if ``value`` exposes callable mount/update/unmount."""
    if isinstance(value, ExtensionComponentAdapter):
        return True
    return all(callable(getattr(value, name, None)) for name in ADAPTER_METHODS)


class IHostEnvironment(ABC):
    """Live i18n and theme state supplied by the host application.

    The runtime reads these values each time it builds a hook context and
    never keeps them past that invocation.
    """

    @property
    @abstractmethod
    def locale(self) -> str:
        pass

    @property
    @abstractmethod
    def is_dark(self) -> bool:
        pass

    @property
    @abstractmethod
    def theme_mode(self) -> str:
        pass

    @abstractmethod
    def translate(self, key: str, fallback: str | None = None) -> str:
        """Translate ``key``, returning ``fallback`` (or the key) when unknown."""
        pass

    def set_locale(self, locale: str) -> None:
        """Record a locale change. Read-only environments may ignore it."""
        pass

    def set_theme(self, is_dark: bool, theme_mode: str) -> None:
        """Record a theme change. Read-only environments may ignore it."""
        pass
