"""
Diagnostics for isolated extension failures.

Failures that must not abort an action (after-hooks, broadcast hooks,
visibility predicates, uninstall scripts) are logged and kept here so the
host can show them.
"""

from collections import deque

from yat.extensions.errors import HookFailureError
from yat.extensions.models import Diagnostic
from yat.extensions.registry import RegisteredApp
from yat.utils.logging import setup_logging

logger = setup_logging(__name__)


class DiagnosticsLog:
    """Bounded log of recent isolated failures."""

    def __init__(self, max_entries: int = 200):
        self._entries: deque[Diagnostic] = deque(maxlen=max_entries)

    def record(
        self,
        source: str,
        message: str,
        app_id: str | None = None,
        tunnel_id: str | None = None,
        record: RegisteredApp | None = None
    ) -> Diagnostic:
        """Log a failure and keep it."""
        diagnostic = Diagnostic(source=source, message=message, app_id=app_id, tunnel_id=tunnel_id)
        self._entries.append(diagnostic)
        if record is not None:
            record.record_error(message)
        logger.warning(f"[{source}] app={app_id} tunnel={tunnel_id}: {message}")
        return diagnostic

    def record_failure(
        self,
        failure: HookFailureError,
        tunnel_id: str | None = None,
        record: RegisteredApp | None = None
    ) -> Diagnostic:
        return self.record(failure.phase, failure.message, failure.app_id, tunnel_id, record)

    def entries(self, app_id: str | None = None) -> list[Diagnostic]:
        if app_id is None:
            return list(self._entries)
        return [entry for entry in self._entries if entry.app_id == app_id]

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
