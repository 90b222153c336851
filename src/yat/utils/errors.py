"""
Custom exception classes for the YAT extension host.
"""

from typing import Any


class YatError(Exception):
    """Base exception for all YAT host errors."""

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        suggestions: list[str] | None = None,
        context: dict[str, Any] | None = None
    ):
        """Initialize YAT error with enhanced information.

        Args:
            message: Human-readable error message
            error_code: Machine-readable error code
            suggestions: List of suggested remediation steps
            context: Additional context information for debugging
        """
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.__class__.__name__.upper()
        self.suggestions = suggestions or []
        self.context = context or {}


class ConfigurationError(YatError):
    """Raised when there is an issue with the host configuration."""
    pass


class ValidationError(YatError):
    """Raised when input data fails validation."""
    pass
