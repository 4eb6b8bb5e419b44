"""
Event system for Pelangi.

Services publish `student.*` events after commit; listeners subscribe on an
EventBus instance created at startup and injected into the services.
"""

from .bus import EventBus
from .types import (
    ACHIEVEMENT_EARNED,
    LEVEL_CHANGED,
    XP_AWARDED,
    CallbackType,
    EventListener,
    EventPayload,
    ListenerPriority,
)

__all__ = [
    "EventBus",
    "EventPayload",
    "ListenerPriority",
    "EventListener",
    "CallbackType",
    "XP_AWARDED",
    "LEVEL_CHANGED",
    "ACHIEVEMENT_EARNED",
]
