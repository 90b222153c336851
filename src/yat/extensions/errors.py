"""
Extension-specific error classes for the YAT host.

This module defines custom exceptions for extension system operations.
"""

from yat.utils.errors import YatError


class ExtensionError(YatError):
    """Base exception for extension-related errors."""

    def __init__(self, message: str, extension_id: str | None = None, cause: Exception | None = None):
        super().__init__(message, context={"extension_id": extension_id} if extension_id else None)
        self.extension_id = extension_id
        self.cause = cause


class ExtensionLoadError(ExtensionError):
    """Exception raised when an extension package cannot be imported or located."""
    pass


class ExtensionConfigurationError(ExtensionError):
    """Exception raised when an extension package is structurally invalid."""
    pass


class ExtensionNotFoundError(ExtensionError):
    """Exception raised when a requested extension is not registered."""
    pass


class DuplicateExtensionError(ExtensionError):
    """Exception raised when an extension or App id is already registered."""
    pass


class ExtensionDependencyError(ExtensionError):
    """Exception raised when an extension's dependencies are not met."""
    pass


class MissingDependencyError(ExtensionDependencyError):
    """Exception raised when a declared dependency is not registered."""

    def __init__(self, message: str, dependency_id: str, extension_id: str | None = None):
        super().__init__(message, extension_id)
        self.dependency_id = dependency_id


class VersionMismatchError(ExtensionDependencyError):
    """Exception raised when a dependency or the host version is out of range."""

    def __init__(self, message: str, required: str, found: str, extension_id: str | None = None):
        super().__init__(message, extension_id)
        self.required = required
        self.found = found


class ExtensionInUseError(ExtensionDependencyError):
    """Exception raised when removing an extension other packages depend on."""

    def __init__(self, message: str, dependents: list[str], extension_id: str | None = None):
        super().__init__(message, extension_id)
        self.dependents = dependents


class InvalidAdapterStateError(ExtensionError):
    """Exception raised when an adapter transition is not allowed from its state."""
    pass


class HookFailureError(ExtensionError):
    """Exception wrapping a failure raised inside a hook, script or adapter call."""

    def __init__(self, message: str, phase: str, app_id: str | None = None, cause: Exception | None = None):
        super().__init__(message, app_id, cause)
        self.phase = phase
        self.app_id = app_id

    @classmethod
    def wrap(cls, phase: str, app_id: str | None, cause: Exception) -> "HookFailureError":
        """Wrap an arbitrary exception raised during ``phase``."""
        return cls(str(cause) or cause.__class__.__name__, phase, app_id, cause)


class VetoedDeletionError(ExtensionError):
    """Exception raised when an App's before-delete hook refuses a deletion."""

    def __init__(self, message: str, tunnel_id: str, app_id: str | None = None):
        super().__init__(message, app_id)
        self.tunnel_id = tunnel_id
        self.app_id = app_id
