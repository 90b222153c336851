"""
Configuration management for the YAT extension host.

This module provides centralized configuration using Pydantic settings
with support for environment variables and .env files.
"""

import re
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

_SEMVER_RE = re.compile(r"^\d+\.\d+\.\d+")
_THEME_MODES = ("light", "dark", "system")
_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class ValidationResult(BaseModel):
    valid: bool = True
    errors: list[str] = []
    warnings: list[str] = []

    def merge(self, other: "ValidationResult") -> None:
        """Fold another result into this one."""
        self.errors.extend(other.errors)
        self.warnings.extend(other.warnings)
        if not other.valid:
            self.valid = False


class YatSettings(BaseSettings):
    """YAT extension host configuration settings."""

    # Application
    app_name: str = "yat-extension-host"
    host_version: str = Field(default="1.0.0", description="Version reported to extensions for min_host_version checks")
    debug: bool = Field(default=False)

    # Extension system settings
    extensions_enabled: bool = Field(default=True, description="Enable the extension system")
    extensions_directory: str = Field(default="~/.yat/extensions", description="Directory containing local extensions")
    extensions_auto_load: list[str] = Field(default=[], description="Extension references installed on startup")
    extensions_activate_on_install: bool = Field(default=True, description="Activate packages right after install")
    extensions_config: dict[str, Any] = Field(default={}, description="Extension-specific configuration")

    # Host environment defaults handed to hooks
    default_locale: str = Field(default="en-US", description="Locale used until the host reports one")
    default_theme_mode: str = Field(default="system", description="Theme mode: light, dark or system")
    default_is_dark: bool = Field(default=False, description="Initial dark mode flag")

    # Diagnostics
    diagnostics_buffer_size: int = Field(default=200, description="Number of isolated failures kept for inspection")

    # Logging settings
    log_level: str = Field(default="INFO", description="Logging level")
    log_structured: bool = Field(default=False, description="Emit JSON log records")
    log_file: str | None = Field(default=None, description="Optional log file path")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        env_prefix="YAT_",
        extra="ignore",
    )

    def get_extensions_directory(self) -> Path:
        """Get extensions directory path as Path object."""
        return Path(self.extensions_directory).expanduser().resolve()

    def get_log_file_path(self) -> Path | None:
        """Get log file path as Path object, creating its parent directory."""
        if not self.log_file:
            return None
        path = Path(self.log_file).expanduser().resolve()
        path.parent.mkdir(parents=True, exist_ok=True)
        return path

    def validate_settings(self) -> ValidationResult:
        """Validate settings and return status information."""
        status = ValidationResult()

        if not _SEMVER_RE.match(self.host_version):
            status.errors.append(f"Host version is not a semantic version: {self.host_version}")
            status.valid = False

        if self.default_theme_mode not in _THEME_MODES:
            status.errors.append(f"Invalid default theme mode: {self.default_theme_mode}")
            status.valid = False

        if self.log_level.upper() not in _LOG_LEVELS:
            status.errors.append(f"Invalid log level: {self.log_level}")
            status.valid = False

        if self.diagnostics_buffer_size < 1:
            status.errors.append("Diagnostics buffer size must be at least 1")
            status.valid = False

        if self.extensions_enabled:
            extensions_dir = self.get_extensions_directory()
            if not extensions_dir.exists():
                status.warnings.append(f"Extensions directory does not exist: {extensions_dir}")
        elif self.extensions_auto_load:
            status.warnings.append("Auto-load extensions configured but extensions are disabled")

        return status


# Global settings instance
settings = YatSettings()


def get_settings() -> YatSettings:
    """Get the global settings instance."""
    return settings


def reload_settings() -> YatSettings:
    """Reload settings from environment and return new instance."""
    global settings
    settings = YatSettings()
    return settings
