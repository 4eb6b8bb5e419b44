from .service import StudentXpService

__all__ = ["StudentXpService"]
