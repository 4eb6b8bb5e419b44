"""
Event names, payload type and listener record for the Pelangi EventBus.

Tiers, in the order `publish` runs them:

    CRITICAL, HIGH   one at a time, each under a timeout
    NORMAL           all together, awaited
    LOW              scheduled in the background, results discarded
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Union

EventPayload = dict[str, Any]

CallbackType = Union[
    Callable[[EventPayload], Any],
    Callable[[EventPayload], Awaitable[Any]],
]

# Published by the XP service once the grant has committed
XP_AWARDED = "student.xp_awarded"
LEVEL_CHANGED = "student.level_changed"
ACHIEVEMENT_EARNED = "student.achievement_earned"
CHALLENGE_COMPLETED = "challenge.completed"


class ListenerPriority(Enum):
    CRITICAL = 0
    HIGH = 10
    NORMAL = 50
    LOW = 100


def default_identifier(callback: CallbackType, event_name: str) -> str:
    """`module.qualname@event`, e.g. `feed.on_level_up@student.level_changed`."""
    name = getattr(callback, "__qualname__", None) or getattr(
        callback, "__name__", type(callback).__name__
    )
    return f"{getattr(callback, '__module__', 'unknown')}.{name}@{event_name}"


@dataclass(slots=True, frozen=True)
class EventListener:
    """One subscription. `once` listeners are dropped before they first run."""

    callback: CallbackType
    priority: ListenerPriority
    identifier: str
    once: bool = False

    @classmethod
    def from_callback(
        cls,
        event_name: str,
        callback: CallbackType,
        priority: ListenerPriority,
        identifier: Optional[str],
        once: bool,
    ) -> EventListener:
        return cls(
            callback=callback,
            priority=priority,
            identifier=identifier or default_identifier(callback, event_name),
            once=once,
        )
