"""
Level threshold table.

Purpose
-------
Hold the ordered list of XP thresholds that map accumulated XP to a level
number and a display name, and load it from configuration.

Design Notes
------------
- `LevelTable` is immutable and validated once, at construction. A malformed
  table raises `ConfigurationError` so the problem surfaces at startup rather
  than on the first XP grant.
- Validation rules: non-empty, first threshold at 0 XP, `min_xp` strictly
  increasing, `level` strictly increasing, names non-empty.
- The engine never reads a global table; callers pass one explicitly.
- Services hold a `LevelTableSource` and take `current()` per operation,
  so a changed `gamification.levels` applies without rebuilding them.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Iterable, Iterator, Mapping, Optional, Sequence

from pelangi.core.exceptions import ConfigurationError
from pelangi.core.logging.logger import get_logger

if TYPE_CHECKING:
    from pelangi.core.config.manager import ConfigManager

logger = get_logger(__name__)

LEVELS_CONFIG_KEY = "gamification.levels"

# Keys under which stored thresholds have carried their XP requirement
_XP_KEYS = ("min_xp", "minXp", "xp_required", "xpRequired", "xp")


@dataclass(frozen=True)
class LevelThreshold:
    """
    One row of the level table.

    Attributes
    ----------
    level : int
        1-based level number
    name : str
        Display name, e.g. "Berkembang"
    min_xp : int
        Minimum total XP at which this level is reached
    benefits : str
        Free-text perks shown to the student
    """

    level: int
    name: str
    min_xp: int
    benefits: str = ""

    def __post_init__(self) -> None:
        if isinstance(self.level, bool) or not isinstance(self.level, int) or self.level < 1:
            raise ConfigurationError(
                LEVELS_CONFIG_KEY, f"level must be a positive integer, got {self.level!r}"
            )
        if not isinstance(self.name, str) or not self.name.strip():
            raise ConfigurationError(
                LEVELS_CONFIG_KEY, f"level {self.level} has an empty name"
            )
        if isinstance(self.min_xp, bool) or not isinstance(self.min_xp, int) or self.min_xp < 0:
            raise ConfigurationError(
                LEVELS_CONFIG_KEY,
                f"level {self.level} min_xp must be a non-negative integer, got {self.min_xp!r}",
            )

    def to_dict(self) -> dict[str, Any]:
        return {
            "level": self.level,
            "name": self.name,
            "min_xp": self.min_xp,
            "benefits": self.benefits,
        }


class LevelTable(Sequence[LevelThreshold]):
    """
    Validated, ordered, immutable sequence of `LevelThreshold`.

    Example
    -------
    >>> table = LevelTable([
    ...     LevelThreshold(1, "Pemula", 0),
    ...     LevelThreshold(2, "Berkembang", 100),
    ... ])
    >>> table.last.name
    'Berkembang'
    """

    __slots__ = ("_thresholds", "_min_xps")

    def __init__(self, thresholds: Iterable[LevelThreshold]) -> None:
        items = tuple(thresholds)
        self._validate(items)
        self._thresholds: tuple[LevelThreshold, ...] = items
        self._min_xps: tuple[int, ...] = tuple(t.min_xp for t in items)

    @staticmethod
    def _validate(items: tuple[LevelThreshold, ...]) -> None:
        if not items:
            raise ConfigurationError(LEVELS_CONFIG_KEY, "level table is empty")

        for item in items:
            if not isinstance(item, LevelThreshold):
                raise ConfigurationError(
                    LEVELS_CONFIG_KEY,
                    f"expected LevelThreshold, got {type(item).__name__}",
                )

        if items[0].min_xp != 0:
            raise ConfigurationError(
                LEVELS_CONFIG_KEY,
                f"first threshold must start at 0 XP, got {items[0].min_xp}",
            )

        for previous, current in zip(items, items[1:]):
            if current.min_xp <= previous.min_xp:
                raise ConfigurationError(
                    LEVELS_CONFIG_KEY,
                    f"min_xp must strictly increase: level {current.level} "
                    f"({current.min_xp}) after level {previous.level} ({previous.min_xp})",
                )
            if current.level <= previous.level:
                raise ConfigurationError(
                    LEVELS_CONFIG_KEY,
                    f"level numbers must strictly increase: {current.level} "
                    f"after {previous.level}",
                )

    # ------------------------------------------------------------------ #
    # Sequence protocol
    # ------------------------------------------------------------------ #

    def __getitem__(self, index):  # type: ignore[override]
        return self._thresholds[index]

    def __len__(self) -> int:
        return len(self._thresholds)

    def __iter__(self) -> Iterator[LevelThreshold]:
        return iter(self._thresholds)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, LevelTable):
            return self._thresholds == other._thresholds
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self._thresholds)

    def __repr__(self) -> str:
        return f"LevelTable({list(self._thresholds)!r})"

    # ------------------------------------------------------------------ #
    # Accessors
    # ------------------------------------------------------------------ #

    @property
    def min_xps(self) -> tuple[int, ...]:
        """Ascending `min_xp` values, aligned with the thresholds."""
        return self._min_xps

    @property
    def first(self) -> LevelThreshold:
        return self._thresholds[0]

    @property
    def last(self) -> LevelThreshold:
        return self._thresholds[-1]

    def by_level(self, level: int) -> Optional[LevelThreshold]:
        for threshold in self._thresholds:
            if threshold.level == level:
                return threshold
        return None

    def to_config(self) -> list[dict[str, Any]]:
        return [t.to_dict() for t in self._thresholds]

    # ------------------------------------------------------------------ #
    # Construction from loosely typed data
    # ------------------------------------------------------------------ #

    @classmethod
    def from_config(cls, raw: Any) -> LevelTable:
        """
        Build a table from a list of mappings (YAML / JSON records).

        Accepts `min_xp`, `minXp`, `xp_required`, `xpRequired` or `xp` as the
        XP key. Records are sorted by level before validation, so the file
        order does not matter; duplicate levels still fail.

        Raises
        ------
        ConfigurationError
            If the data is not a list of well-formed records.
        """
        if not isinstance(raw, (list, tuple)):
            raise ConfigurationError(
                LEVELS_CONFIG_KEY,
                f"expected a list of level records, got {type(raw).__name__}",
            )

        thresholds: list[LevelThreshold] = []
        for position, record in enumerate(raw):
            if not isinstance(record, Mapping):
                raise ConfigurationError(
                    LEVELS_CONFIG_KEY,
                    f"record #{position} is not a mapping: {record!r}",
                )

            xp_value = None
            for key in _XP_KEYS:
                if key in record:
                    xp_value = record[key]
                    break
            if xp_value is None:
                raise ConfigurationError(
                    LEVELS_CONFIG_KEY,
                    f"record #{position} has no XP requirement (one of {', '.join(_XP_KEYS)})",
                )

            if "level" not in record or "name" not in record:
                raise ConfigurationError(
                    LEVELS_CONFIG_KEY,
                    f"record #{position} must define 'level' and 'name'",
                )

            thresholds.append(
                LevelThreshold(
                    level=record["level"],
                    name=record["name"],
                    min_xp=xp_value,
                    benefits=str(record.get("benefits") or ""),
                )
            )

        levels = [t.level for t in thresholds]
        if len(set(levels)) != len(levels):
            raise ConfigurationError(LEVELS_CONFIG_KEY, f"duplicate level numbers in {levels}")

        thresholds.sort(key=lambda t: t.level)
        return cls(thresholds)


DEFAULT_LEVELS = LevelTable(
    [
        LevelThreshold(1, "Pemula", 0, "Akses dasar ke semua fitur"),
        LevelThreshold(2, "Berkembang", 100, "Akses ke quiz tambahan"),
        LevelThreshold(3, "Mahir", 300, "Akses ke materi advanced"),
        LevelThreshold(4, "Ahli", 600, "Akses ke proyek khusus"),
        LevelThreshold(5, "Master", 1000, "Akses ke semua fitur premium"),
        LevelThreshold(6, "Grandmaster", 1500, "Akses mentor untuk siswa lain"),
        LevelThreshold(7, "Legend", 2000, "Akses ke kompetisi eksklusif"),
        LevelThreshold(8, "Mythic", 2500, "Akses ke program beasiswa"),
        LevelThreshold(9, "Immortal", 3000, "Akses ke universitas partner"),
        LevelThreshold(10, "Divine", 4000, "Status legend sekolah"),
    ]
)


def _validate_levels_override(raw: Any) -> Any:
    LevelTable.from_config(raw)
    return raw


def _table_from(raw: Any) -> LevelTable:
    if raw is None:
        logger.info(
            "No level table configured; using default levels",
            extra={"level_count": len(DEFAULT_LEVELS)},
        )
        return DEFAULT_LEVELS

    table = LevelTable.from_config(raw)
    logger.info(
        "Level table loaded",
        extra={
            "level_count": len(table),
            "max_level": table.last.level,
            "max_level_min_xp": table.last.min_xp,
        },
    )
    return table


def load_level_table(config_manager: type[ConfigManager]) -> LevelTable:
    """
    Read `gamification.levels` from configuration, falling back to the seed
    levels when the key is absent.

    Raises
    ------
    ConfigurationError
        If the configured table is malformed.
    """
    # Reject malformed overrides at set_override time as well
    config_manager.register_validator(LEVELS_CONFIG_KEY, _validate_levels_override)
    return _table_from(config_manager.get(LEVELS_CONFIG_KEY))


class LevelTableSource:
    """
    The level table in force right now.

    Services ask for `current()` once per operation. The configured value is
    read on every call and parsed again only when it differs from the value
    behind the cached table, so an admin override of `gamification.levels`
    takes effect on the next grant or recalculation without a restart.

    A `pinned` table is returned as is and configuration is never read.
    """

    def __init__(
        self,
        config_manager: type[ConfigManager],
        pinned: Optional[LevelTable] = None,
    ) -> None:
        self._config = config_manager
        self._pinned = pinned
        self._raw: Any = None
        self._table: Optional[LevelTable] = None

    def current(self) -> LevelTable:
        """
        Raises
        ------
        ConfigurationError
            If the configured table is malformed.
        """
        if self._pinned is not None:
            return self._pinned

        # ConfigManager.reset() drops validators, so register on every read
        self._config.register_validator(LEVELS_CONFIG_KEY, _validate_levels_override)
        raw = self._config.get(LEVELS_CONFIG_KEY)
        if self._table is None or raw != self._raw:
            self._table = _table_from(raw)
            self._raw = raw
        return self._table
