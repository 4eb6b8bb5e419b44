"""
Gamification tunables: level table, XP amounts, leaderboard limits.

Values come from every `*.yaml` / `*.yml` under the config directory
(`Config.CONFIG_DIR` unless told otherwise), merged in path order so a later
file can refine nested keys of an earlier one. On top of that sits a layer
of in-memory overrides for tests and admin tools; an override may be
checked by a validator registered for its exact key.

Keys are dot paths:

    ConfigManager.get("gamification.xp.attendance_bonus", 10)

The class itself (not an instance) is what services receive as
`config_manager`. Reads return deep copies, so callers may mutate them.
"""

from __future__ import annotations

import copy
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional

import yaml

from pelangi.core.exceptions import ConfigurationError
from pelangi.core.logging.logger import get_logger

logger = get_logger(__name__)

__all__ = ["ConfigManager"]

_MISSING = object()


def _merge_into(target: Dict[str, Any], incoming: Dict[str, Any]) -> None:
    for key, value in incoming.items():
        current = target.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            _merge_into(current, value)
        else:
            target[key] = copy.deepcopy(value)


def _lookup(tree: Any, path: List[str]) -> Any:
    node = tree
    for part in path:
        if not isinstance(node, dict) or part not in node:
            return _MISSING
        node = node[part]
    return node


def _yaml_files(directory: Path) -> Iterator[Path]:
    yield from sorted(
        p for p in directory.rglob("*") if p.is_file() and p.suffix in (".yaml", ".yml")
    )


class ConfigManager:
    _defaults: Dict[str, Any] = {}
    _overrides: Dict[str, Any] = {}
    _validators: Dict[str, Callable[[Any], Any]] = {}
    _initialized: bool = False
    _config_dir: Optional[Path] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @classmethod
    def initialize(cls, config_dir: Optional[Path] = None) -> None:
        """
        Read the YAML files once. Later calls do nothing until `reset()`.

        Raises ConfigurationError when a file cannot be read or parsed; a
        missing directory only logs a warning.
        """
        if cls._initialized:
            return
        if config_dir is None:
            from pelangi.core.config.config import Config

            config_dir = Config.CONFIG_DIR

        cls._config_dir = Path(config_dir)
        cls._defaults = cls._read_directory(cls._config_dir)
        cls._initialized = True

    @classmethod
    def _read_directory(cls, directory: Path) -> Dict[str, Any]:
        merged: Dict[str, Any] = {}
        if not directory.is_dir():
            logger.warning("Config directory missing", extra={"config_dir": str(directory)})
            return merged

        for path in _yaml_files(directory):
            name = str(path.relative_to(directory))
            try:
                document = yaml.safe_load(path.read_text(encoding="utf-8"))
            except (OSError, yaml.YAMLError) as exc:
                logger.error("Cannot load config file", extra={"file": name}, exc_info=True)
                raise ConfigurationError(name, f"unreadable YAML: {exc}") from exc

            if isinstance(document, dict):
                _merge_into(merged, document)
            elif document is not None:
                logger.warning(
                    "Skipping config file without a mapping at its root",
                    extra={"file": name, "root_type": type(document).__name__},
                )

        logger.info(
            "Config files loaded",
            extra={"config_dir": str(directory), "sections": sorted(merged)},
        )
        return merged

    @classmethod
    def reset(cls) -> None:
        cls._defaults = {}
        cls._overrides = {}
        cls._validators = {}
        cls._initialized = False
        cls._config_dir = None

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @classmethod
    def get(cls, key: str, default: Any = None) -> Any:
        """
        Value at `key`, or `default`.

        Lookup order: an override on `key` itself, then an override on the
        nearest ancestor key that contains the rest of the path, then YAML.
        """
        if not cls._initialized:
            logger.warning("ConfigManager read before initialize(); loading now")
            cls.initialize()

        path = key.split(".")
        for depth in range(len(path), 0, -1):
            prefix = ".".join(path[:depth])
            if prefix in cls._overrides:
                found = _lookup(cls._overrides[prefix], path[depth:])
                if found is not _MISSING:
                    return copy.deepcopy(found)

        found = _lookup(cls._defaults, path)
        return default if found is _MISSING or found is None else copy.deepcopy(found)

    @classmethod
    def get_all_keys(cls) -> List[str]:
        """Top-level sections present in YAML or overrides."""
        return sorted(set(cls._defaults) | {key.split(".", 1)[0] for key in cls._overrides})

    @classmethod
    def health_snapshot(cls) -> Dict[str, Any]:
        return {
            "initialized": cls._initialized,
            "config_dir": str(cls._config_dir) if cls._config_dir else None,
            "top_level_keys": cls.get_all_keys(),
            "override_count": len(cls._overrides),
            "validator_count": len(cls._validators),
        }

    # ------------------------------------------------------------------
    # Overrides
    # ------------------------------------------------------------------

    @classmethod
    def register_validator(cls, key: str, validator: Callable[[Any], Any]) -> None:
        """
        Check overrides of exactly `key` with `validator`.

        The validator returns the value to store, or raises to refuse it.
        """
        cls._validators[key] = validator

    @classmethod
    def set_override(cls, key: str, value: Any) -> None:
        """Store `value` at `key` in memory. Raises ConfigurationError if refused."""
        validator = cls._validators.get(key)
        if validator is not None:
            try:
                value = validator(value)
            except (TypeError, ValueError, KeyError) as exc:
                raise ConfigurationError(key, f"rejected override: {exc}") from exc
        cls._overrides[key] = copy.deepcopy(value)
        logger.info("Config override set", extra={"config_key": key})

    @classmethod
    def clear_override(cls, key: Optional[str] = None) -> None:
        """Drop the override at `key`, or all overrides."""
        if key is None:
            cls._overrides = {}
        else:
            cls._overrides.pop(key, None)
