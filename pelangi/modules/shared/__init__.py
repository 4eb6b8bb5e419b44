"""
Pelangi Shared Module

Domain-level foundations for the gamification modules:
- BaseService: logging, config access and event emission
- BaseRepository: typed async data access
- Domain exceptions
"""

from __future__ import annotations

from .base_repository import BaseRepository
from .base_service import BaseService
from .exceptions import (
    InvalidOperationError,
    NotFoundError,
    PelangiDomainException,
    ValidationError,
)

__all__ = [
    "BaseRepository",
    "BaseService",
    "PelangiDomainException",
    "NotFoundError",
    "ValidationError",
    "InvalidOperationError",
]
