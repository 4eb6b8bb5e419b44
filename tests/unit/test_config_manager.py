"""
Unit Tests for ConfigManager
============================

Test Coverage
-------------
- YAML loading and deep merge across files
- Dot-notation reads, defaults and override precedence
- Validators on overrides
- Level table loading through the config layer
"""

import pytest

from pelangi.core.exceptions import ConfigurationError
from pelangi.modules.leveling.thresholds import LEVELS_CONFIG_KEY, load_level_table


@pytest.fixture
def config_dir(tmp_path):
    (tmp_path / "a_gamification.yaml").write_text(
        "gamification:\n"
        "  xp:\n"
        "    per_grade: 1\n"
        "    attendance_bonus: 10\n"
        "  leaderboard:\n"
        "    ranking_mode: sequential\n",
        encoding="utf-8",
    )
    (tmp_path / "b_overrides.yaml").write_text(
        "gamification:\n"
        "  xp:\n"
        "    attendance_bonus: 15\n",
        encoding="utf-8",
    )
    return tmp_path


@pytest.fixture
def manager(clean_config_manager, config_dir):
    clean_config_manager.initialize(config_dir)
    return clean_config_manager


@pytest.mark.unit
class TestLoading:
    def test_files_are_deep_merged(self, manager):
        assert manager.get("gamification.xp.attendance_bonus") == 15
        assert manager.get("gamification.xp.per_grade") == 1
        assert manager.get("gamification.leaderboard.ranking_mode") == "sequential"

    def test_missing_key_returns_default(self, manager):
        assert manager.get("gamification.xp.absent_penalty", 5) == 5
        assert manager.get("gamification.nothing.here") is None

    def test_non_dict_root_is_ignored(self, clean_config_manager, tmp_path):
        (tmp_path / "list.yaml").write_text("- 1\n- 2\n", encoding="utf-8")

        clean_config_manager.initialize(tmp_path)

        assert clean_config_manager.get_all_keys() == []

    def test_invalid_yaml_raises(self, clean_config_manager, tmp_path):
        (tmp_path / "broken.yaml").write_text("gamification: [unclosed\n", encoding="utf-8")

        with pytest.raises(ConfigurationError):
            clean_config_manager.initialize(tmp_path)

    def test_missing_directory_uses_no_defaults(self, clean_config_manager, tmp_path):
        clean_config_manager.initialize(tmp_path / "absent")

        assert clean_config_manager.get("gamification.xp.per_grade", 1) == 1

    def test_reads_return_copies(self, manager):
        xp = manager.get("gamification.xp")
        xp["per_grade"] = 99

        assert manager.get("gamification.xp.per_grade") == 1


@pytest.mark.unit
class TestOverrides:
    def test_override_wins(self, manager):
        manager.set_override("gamification.xp.per_grade", 2)

        assert manager.get("gamification.xp.per_grade") == 2

    def test_parent_override_answers_children(self, manager):
        manager.set_override("gamification.xp", {"per_grade": 3})

        assert manager.get("gamification.xp.per_grade") == 3
        assert manager.get("gamification.xp.attendance_bonus") == 15

    def test_clear_override(self, manager):
        manager.set_override("gamification.xp.per_grade", 2)
        manager.clear_override("gamification.xp.per_grade")

        assert manager.get("gamification.xp.per_grade") == 1

    def test_validator_rejects_value(self, manager):
        def positive(value):
            if value <= 0:
                raise ValueError("must be positive")
            return value

        manager.register_validator("gamification.xp.per_grade", positive)

        with pytest.raises(ConfigurationError):
            manager.set_override("gamification.xp.per_grade", 0)
        assert manager.get("gamification.xp.per_grade") == 1

    def test_health_snapshot(self, manager):
        manager.set_override("gamification.xp.per_grade", 2)

        snapshot = manager.health_snapshot()

        assert snapshot["initialized"] is True
        assert snapshot["override_count"] == 1
        assert "gamification" in snapshot["top_level_keys"]


@pytest.mark.unit
class TestLevelTableConfig:
    def test_levels_loaded_from_yaml(self, clean_config_manager, tmp_path):
        (tmp_path / "levels.yaml").write_text(
            "gamification:\n"
            "  levels:\n"
            "    - {level: 1, name: Pemula, xp_required: 0}\n"
            "    - {level: 2, name: Berkembang, xp_required: 50}\n",
            encoding="utf-8",
        )
        clean_config_manager.initialize(tmp_path)

        table = load_level_table(clean_config_manager)

        assert [t.name for t in table] == ["Pemula", "Berkembang"]
        assert table.last.min_xp == 50

    def test_malformed_level_override_rejected(self, manager):
        load_level_table(manager)

        with pytest.raises(ConfigurationError):
            manager.set_override(
                LEVELS_CONFIG_KEY,
                [
                    {"level": 1, "name": "Pemula", "xp_required": 0},
                    {"level": 2, "name": "Berkembang", "xp_required": 0},
                ],
            )
