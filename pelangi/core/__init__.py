"""
Core infrastructure layer for Pelangi.

Purpose
-------
Single import surface for the infrastructure subsystems:

- Configuration (Config, ConfigManager)
- Database engine and transactions (DatabaseService)
- In-process events (EventBus)
- Infrastructure exceptions

Logging lives in `pelangi.core.logging.logger` and input validation in
`pelangi.core.validation`; import those modules directly.
"""

from .config import Config, ConfigManager
from .database import DatabaseService
from .event import EventBus
from .exceptions import (
    ConfigurationError,
    DatabaseError,
    ErrorSeverity,
    EventBusError,
    PelangiInfrastructureException,
)

__all__ = [
    "Config",
    "ConfigManager",
    "DatabaseService",
    "EventBus",
    "ConfigurationError",
    "DatabaseError",
    "ErrorSeverity",
    "EventBusError",
    "PelangiInfrastructureException",
]
