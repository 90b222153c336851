"""
Core host services shared by the extension system.
"""

from .events import Event, EventBus, EventSubscription

__all__ = [
    "Event",
    "EventBus",
    "EventSubscription",
]
