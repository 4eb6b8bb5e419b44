"""
Parent class of the gamification services.

A service owns its business rules and its transactions. It gets three
collaborators at construction and keeps them on the instance:

    config_manager   ConfigManager class; read through `get_config`
    event_bus        EventBus; written through `emit_event`, after commit only
    logger           module logger from `get_logger(__name__)`

Rule violations are raised as domain exceptions. Database failures are
caught by the concrete service and re-raised as `DatabaseError`.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Dict, Optional

from pelangi.core.exceptions import ConfigurationError, ErrorSeverity, get_error_severity

if TYPE_CHECKING:
    from logging import Logger

    from pelangi.core.config.manager import ConfigManager
    from pelangi.core.event.bus import EventBus


_LOG_LEVELS = {
    ErrorSeverity.DEBUG: logging.DEBUG,
    ErrorSeverity.INFO: logging.INFO,
    ErrorSeverity.WARNING: logging.WARNING,
    ErrorSeverity.ERROR: logging.ERROR,
    ErrorSeverity.CRITICAL: logging.CRITICAL,
}


class BaseService:
    def __init__(
        self,
        config_manager: type[ConfigManager],
        event_bus: EventBus,
        logger: Logger,
    ) -> None:
        self._config = config_manager
        self._events = event_bus
        self.log = logger

    def get_config(self, key: str, default: Optional[Any] = None, required: bool = False) -> Any:
        """Tunable at `key`; a missing `required` key is a ConfigurationError."""
        value = self._config.get(key, default)
        if value is None and required:
            raise ConfigurationError(key, "missing required setting")
        return value

    async def emit_event(
        self,
        event_type: str,
        data: Dict[str, Any],
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Publish `data`, with caller-supplied `context` keys merged on top."""
        payload = dict(data)
        if context:
            payload.update(context)
        await self._events.publish(event_type, payload)

    def log_operation(self, operation: str, **fields: Any) -> None:
        self.log.info("%s started", operation, extra={"operation": operation, **fields})

    def log_error(self, operation: str, error: Exception, **fields: Any) -> None:
        """Log at the level matching the error's severity; foreign errors log at ERROR."""
        severity = get_error_severity(error)
        self.log.log(
            _LOG_LEVELS[severity],
            "%s failed: %s",
            operation,
            error,
            extra={
                "operation": operation,
                "error_type": type(error).__name__,
                "severity": severity.value,
                **fields,
            },
        )
