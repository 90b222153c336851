"""Pytest configuration for resources/tests.

Ensures the repository root is on sys.path so tests can import
helpers via absolute package path like `resources.tests.helpers`.
"""

import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from yat.core.events import EventBus  # noqa: E402
from yat.extensions.environment import StaticHostEnvironment  # noqa: E402
from yat.extensions.host import ExtensionHost  # noqa: E402
from yat.utils.config import YatSettings  # noqa: E402


@pytest.fixture
def settings(tmp_path):
    """Settings isolated from the user's environment."""
    return YatSettings(
        extensions_directory=str(tmp_path / "extensions"),
        extensions_auto_load=[],
        host_version="1.4.0",
        diagnostics_buffer_size=50,
    )


@pytest.fixture
def environment():
    return StaticHostEnvironment(
        locale="en-US",
        messages={"en-US": {"tab.logs": "Logs"}, "de-DE": {"tab.logs": "Protokolle"}},
    )


@pytest.fixture
def event_bus():
    return EventBus()


@pytest.fixture
def host(settings, environment, event_bus):
    return ExtensionHost(settings, environment, event_bus)
