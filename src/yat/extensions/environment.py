"""
Default host environment.

Hosts with a real i18n/theme subsystem implement ``IHostEnvironment``
themselves; this implementation keeps the values in memory and translates
from a flat message catalog.
"""

from collections.abc import Mapping

from yat.extensions.interfaces import IHostEnvironment
from yat.extensions.models import ThemeMode
from yat.utils.config import YatSettings


class StaticHostEnvironment(IHostEnvironment):
    """In-memory locale/theme state with an optional message catalog."""

    def __init__(
        self,
        locale: str = "en-US",
        is_dark: bool = False,
        theme_mode: str = ThemeMode.SYSTEM.value,
        messages: Mapping[str, Mapping[str, str]] | None = None
    ):
        self._locale = locale
        self._is_dark = is_dark
        self._theme_mode = ThemeMode(theme_mode).value
        self._messages = {loc: dict(catalog) for loc, catalog in (messages or {}).items()}

    @classmethod
    def from_settings(cls, settings: YatSettings) -> "StaticHostEnvironment":
        return cls(
            locale=settings.default_locale,
            is_dark=settings.default_is_dark,
            theme_mode=settings.default_theme_mode,
        )

    @property
    def locale(self) -> str:
        return self._locale

    @property
    def is_dark(self) -> bool:
        return self._is_dark

    @property
    def theme_mode(self) -> str:
        return self._theme_mode

    def translate(self, key: str, fallback: str | None = None) -> str:
        catalog = self._messages.get(self._locale, {})
        if key in catalog:
            return catalog[key]
        return fallback if fallback is not None else key

    def add_messages(self, locale: str, messages: Mapping[str, str]) -> None:
        self._messages.setdefault(locale, {}).update(messages)

    def set_locale(self, locale: str) -> None:
        self._locale = locale

    def set_theme(self, is_dark: bool, theme_mode: str) -> None:
        self._is_dark = is_dark
        self._theme_mode = ThemeMode(theme_mode).value
