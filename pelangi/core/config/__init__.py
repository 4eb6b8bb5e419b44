"""
Configuration subsystem.

- Config: static, environment-driven settings (.env via python-dotenv)
- ConfigManager: dot-notation access to YAML tunables with overrides
"""

from .config import Config, Environment
from .manager import ConfigManager

__all__ = ["Config", "ConfigManager", "Environment"]
