from .input_validator import InputValidator

__all__ = ["InputValidator"]
