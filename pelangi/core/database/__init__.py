"""
Database subsystem: declarative base, mixins and DatabaseService.
"""

from .base import Base, IdMixin, TimestampMixin, utc_now
from .service import (
    DatabaseInitializationError,
    DatabaseNotInitializedError,
    DatabaseService,
)

__all__ = [
    "Base",
    "IdMixin",
    "TimestampMixin",
    "utc_now",
    "DatabaseService",
    "DatabaseInitializationError",
    "DatabaseNotInitializedError",
]
