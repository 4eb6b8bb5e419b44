"""
In-process async publish/subscribe.

The XP service publishes `student.*` events after its transaction commits;
notifications, activity feeds and analytics subscribe here instead of being
called by the service directly. A listener that raises or times out is
logged and contributes None to the result list. It never fails the publish
and never touches the grant.

Subscriptions are keyed by event name or by a glob pattern such as
"student.*". Sync callbacks run in the default executor.

Per-tier timeouts come from `core.event.listener_timeout.critical_seconds`
and `.high_seconds` in ConfigManager (5 seconds when unset).
"""

from __future__ import annotations

import asyncio
import fnmatch
import inspect
from typing import TYPE_CHECKING, Any, Optional

from pelangi.core.event.types import (
    CallbackType,
    EventListener,
    EventPayload,
    ListenerPriority,
)
from pelangi.core.exceptions import EventBusError
from pelangi.core.logging.logger import get_logger

if TYPE_CHECKING:
    from pelangi.core.config.manager import ConfigManager

logger = get_logger(__name__)

_DEFAULT_TIMEOUT = 5.0


def _is_pattern(event_name: str) -> bool:
    return any(ch in event_name for ch in "*?[")


def _matches(key: str, event_name: str) -> bool:
    if _is_pattern(key):
        return fnmatch.fnmatchcase(event_name, key)
    return key == event_name


class EventBus:
    """
    Priority-tiered event bus, one per process.

        bus = EventBus(ConfigManager)
        bus.subscribe("student.level_changed", notify_parent)
        await bus.publish("student.level_changed", {"student_id": 7, "new_level": 3})
    """

    def __init__(
        self,
        config_manager: Optional[type[ConfigManager]] = None,
        *,
        critical_timeout_seconds: Optional[float] = None,
        high_timeout_seconds: Optional[float] = None,
    ) -> None:
        self._config_manager = config_manager
        # subscription key (name or pattern) -> listeners in subscription order
        self._subscriptions: dict[str, list[EventListener]] = {}
        self._background_tasks: set[asyncio.Task[Any]] = set()

        self._critical_timeout = self._timeout_setting("critical", critical_timeout_seconds)
        self._high_timeout = self._timeout_setting("high", high_timeout_seconds)

    def _timeout_setting(self, tier: str, explicit: Optional[float]) -> float:
        if explicit is not None:
            return float(explicit)
        if self._config_manager is None:
            return _DEFAULT_TIMEOUT

        key = f"core.event.listener_timeout.{tier}_seconds"
        raw = self._config_manager.get(key, _DEFAULT_TIMEOUT)
        try:
            return float(raw)
        except (TypeError, ValueError):
            logger.warning(
                "Ignoring non-numeric listener timeout",
                extra={"config_key": key, "value": raw},
            )
            return _DEFAULT_TIMEOUT

    # ------------------------------------------------------------------ #
    # Subscriptions
    # ------------------------------------------------------------------ #

    def subscribe(
        self,
        event_name: str,
        callback: CallbackType,
        *,
        priority: ListenerPriority = ListenerPriority.NORMAL,
        identifier: Optional[str] = None,
        once: bool = False,
    ) -> str:
        """
        Register `callback` and return its identifier.

        The callback takes the payload dict as its only argument; anything
        else raises ValueError here rather than at publish time. A second
        subscription with an identifier already registered for the same
        key is ignored.
        """
        try:
            arity = len(inspect.signature(callback).parameters)
        except (TypeError, ValueError):
            arity = 1  # builtins without an introspectable signature
        if arity != 1:
            raise ValueError(
                f"listener {getattr(callback, '__qualname__', callback)!r} must take "
                f"exactly one payload argument, takes {arity}"
            )

        listener = EventListener.from_callback(event_name, callback, priority, identifier, once)
        registered = self._subscriptions.setdefault(event_name, [])
        if any(existing.identifier == listener.identifier for existing in registered):
            logger.warning(
                "Listener already subscribed",
                extra={"event_name": event_name, "listener_id": listener.identifier},
            )
            return listener.identifier

        registered.append(listener)
        logger.debug(
            "Listener subscribed",
            extra={
                "event_name": event_name,
                "listener_id": listener.identifier,
                "priority": priority.name,
            },
        )
        return listener.identifier

    def unsubscribe(self, event_name: str, identifier: str) -> bool:
        registered = self._subscriptions.get(event_name, [])
        remaining = [lst for lst in registered if lst.identifier != identifier]
        if len(remaining) == len(registered):
            return False
        self._store(event_name, remaining)
        return True

    def clear(self) -> None:
        dropped = self.get_listener_count()
        self._subscriptions.clear()
        logger.info("All listeners removed", extra={"listener_count": dropped})

    def _store(self, key: str, listeners: list[EventListener]) -> None:
        if listeners:
            self._subscriptions[key] = listeners
        else:
            self._subscriptions.pop(key, None)

    def _take_matching(self, event_name: str) -> list[EventListener]:
        """Listeners for `event_name` by priority; once-listeners are consumed."""
        matched: list[EventListener] = []
        for key in list(self._subscriptions):
            if not _matches(key, event_name):
                continue
            listeners = self._subscriptions[key]
            matched.extend(listeners)
            self._store(key, [lst for lst in listeners if not lst.once])
        # sort is stable, so subscription order holds within a tier
        matched.sort(key=lambda lst: lst.priority.value)
        return matched

    # ------------------------------------------------------------------ #
    # Publishing
    # ------------------------------------------------------------------ #

    async def publish(self, event_name: str, data: EventPayload) -> list[Any]:
        """
        Deliver `data` to every matching listener.

        Returns the CRITICAL, HIGH and NORMAL results in run order; LOW
        listeners are still running when this returns. Raises EventBusError
        when `data` is not a dict.
        """
        if not isinstance(data, dict):
            raise EventBusError(
                "publish",
                event_name,
                TypeError(f"payload must be a dict, got {type(data).__name__}"),
            )

        listeners = self._take_matching(event_name)
        logger.debug(
            "Publishing event",
            extra={"event_name": event_name, "listener_count": len(listeners)},
        )

        tiers: dict[ListenerPriority, list[EventListener]] = {p: [] for p in ListenerPriority}
        for listener in listeners:
            tiers[listener.priority].append(listener)

        results: list[Any] = []
        for listener in tiers[ListenerPriority.CRITICAL]:
            results.append(await self._invoke(listener, event_name, data, self._critical_timeout))
        for listener in tiers[ListenerPriority.HIGH]:
            results.append(await self._invoke(listener, event_name, data, self._high_timeout))
        if tiers[ListenerPriority.NORMAL]:
            results.extend(
                await asyncio.gather(
                    *(self._invoke(lst, event_name, data) for lst in tiers[ListenerPriority.NORMAL])
                )
            )
        for listener in tiers[ListenerPriority.LOW]:
            task = asyncio.create_task(
                self._invoke(listener, event_name, data),
                name=f"event-{event_name}-{listener.identifier}",
            )
            self._background_tasks.add(task)
            task.add_done_callback(self._background_tasks.discard)

        return results

    async def _invoke(
        self,
        listener: EventListener,
        event_name: str,
        payload: EventPayload,
        timeout: Optional[float] = None,
    ) -> Any:
        if inspect.iscoroutinefunction(listener.callback):
            call = listener.callback(payload)
        else:
            call = asyncio.get_running_loop().run_in_executor(None, listener.callback, payload)

        failure = {"event_name": event_name, "listener_id": listener.identifier}
        try:
            if timeout is not None and timeout > 0:
                return await asyncio.wait_for(call, timeout)
            return await call
        except asyncio.TimeoutError:
            logger.error("Listener timed out", extra={**failure, "timeout_seconds": timeout})
        except Exception as exc:
            logger.error(
                "Listener raised",
                extra={**failure, "error_type": type(exc).__name__},
                exc_info=True,
            )
        return None

    # ------------------------------------------------------------------ #
    # Introspection
    # ------------------------------------------------------------------ #

    def get_listener_count(self, event_name: Optional[str] = None) -> int:
        """Listeners in total, or those that a publish of `event_name` would reach."""
        return sum(
            len(listeners)
            for key, listeners in self._subscriptions.items()
            if event_name is None or _matches(key, event_name)
        )

    def get_background_task_count(self) -> int:
        return len(self._background_tasks)

    async def drain(self) -> None:
        """Wait for LOW-tier listeners still in flight."""
        while self._background_tasks:
            await asyncio.gather(*self._background_tasks)
