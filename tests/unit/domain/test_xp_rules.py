"""
Unit Tests for grade and attendance XP rules
=============================================

Test Coverage
-------------
- Grade XP formula and score validation
- Attendance XP and streak effects per status
- Achievement candidates for grades and streaks
- XpSettings validation and loading
"""

import pytest

from pelangi.core.exceptions import ConfigurationError
from pelangi.modules.leveling.xp_rules import (
    AchievementGrant,
    AttendanceStatus,
    XpSettings,
    attendance_achievements,
    attendance_outcome,
    filter_new,
    grade_achievements,
    grade_outcome,
    is_once_only,
    total_reward,
    xp_for_grade,
)
from pelangi.modules.shared.exceptions import ValidationError


@pytest.mark.unit
@pytest.mark.domain
class TestGradeXp:
    @pytest.mark.parametrize(
        "score,max_score,expected",
        [
            (85, 100, 85),
            (17, 20, 85),
            (1, 3, 33),
            (0, 100, 0),
            (100, 100, 100),
        ],
    )
    def test_grade_xp_formula(self, xp_settings, score, max_score, expected):
        assert xp_for_grade(score, max_score, xp_settings) == expected

    def test_multiplier_applies(self):
        assert xp_for_grade(45, 50, XpSettings(xp_per_grade=2)) == 180

    def test_outcome_reports_percentage(self, xp_settings):
        outcome = grade_outcome(18, 20, xp_settings)

        assert outcome.percentage == pytest.approx(90.0)
        assert outcome.xp == 90

    @pytest.mark.parametrize(
        "score,max_score,field",
        [
            (10, 0, "max_score"),
            (10, -5, "max_score"),
            (-1, 100, "score"),
            (101, 100, "score"),
            ("abc", 100, "score"),
        ],
    )
    def test_invalid_scores_rejected(self, xp_settings, score, max_score, field):
        with pytest.raises(ValidationError) as exc_info:
            xp_for_grade(score, max_score, xp_settings)

        assert exc_info.value.field == field


@pytest.mark.unit
@pytest.mark.domain
class TestAttendanceOutcome:
    def test_present(self, xp_settings):
        outcome = attendance_outcome(AttendanceStatus.PRESENT, xp_settings)

        assert outcome.xp == 10
        assert outcome.apply_streak(4) == 5
        assert outcome.stamp_attendance is True

    def test_late_earns_half_bonus_rounded_down(self):
        outcome = attendance_outcome("LATE", XpSettings(xp_attendance_bonus=7))

        assert outcome.xp == 3
        assert outcome.apply_streak(4) == 5
        assert outcome.stamp_attendance is True

    def test_absent_penalises_and_resets_streak(self, xp_settings):
        outcome = attendance_outcome("ABSENT", xp_settings)

        assert outcome.xp == -5
        assert outcome.apply_streak(12) == 0
        assert outcome.stamp_attendance is False

    def test_excused_changes_nothing(self, xp_settings):
        outcome = attendance_outcome("EXCUSED", xp_settings)

        assert outcome.xp == 0
        assert outcome.apply_streak(12) == 12
        assert outcome.stamp_attendance is False

    def test_status_is_case_insensitive(self, xp_settings):
        assert attendance_outcome("present", xp_settings).status is AttendanceStatus.PRESENT

    def test_unknown_status_rejected(self, xp_settings):
        with pytest.raises(ValidationError):
            attendance_outcome("HOLIDAY", xp_settings)


@pytest.mark.unit
@pytest.mark.domain
class TestGradeAchievements:
    def test_perfect_score(self):
        # Act
        grants = grade_achievements(100, 100)

        # Assert
        assert len(grants) == 1
        assert grants[0].type == "PERFECT_SCORE"
        assert grants[0].title == "Nilai Sempurna!"
        assert grants[0].xp_reward == 50

    def test_high_achiever_needs_five_recent_high_scores(self):
        assert grade_achievements(95, 100, recent_high_scores=4) == []

        grants = grade_achievements(95, 100, recent_high_scores=5)

        assert [g.type for g in grants] == ["HIGH_ACHIEVER"]
        assert grants[0].xp_reward == 100
        assert grants[0].meta == {"count": 5}

    def test_high_achiever_requires_current_grade_at_ninety(self):
        assert grade_achievements(89, 100, recent_high_scores=8) == []

    def test_perfect_score_and_high_achiever_together(self):
        grants = grade_achievements(20, 20, recent_high_scores=6)

        assert [g.type for g in grants] == ["PERFECT_SCORE", "HIGH_ACHIEVER"]


@pytest.mark.unit
@pytest.mark.domain
class TestAttendanceAchievements:
    @pytest.mark.parametrize("streak", [0, 1, 6, 8, 29])
    def test_no_achievement(self, streak):
        assert attendance_achievements(streak) == []

    def test_first_full_week(self):
        grants = attendance_achievements(7)

        assert len(grants) == 1
        assert grants[0].type == "WEEKLY_PERFECT_1"
        assert grants[0].title == "Kehadiran Mingguan 1!"
        assert grants[0].xp_reward == 50

    def test_second_week_doubles_reward(self):
        grants = attendance_achievements(14)

        assert grants[0].type == "WEEKLY_PERFECT_2"
        assert grants[0].xp_reward == 100
        assert grants[0].meta == {"weeks": 2, "streak": 14}

    def test_thirty_day_streak(self):
        grants = attendance_achievements(30)

        assert [g.type for g in grants] == ["PERFECT_ATTENDANCE_30"]
        assert grants[0].xp_reward == 200

    def test_thirty_five_day_streak_earns_both(self):
        grants = attendance_achievements(35)

        assert [g.type for g in grants] == ["PERFECT_ATTENDANCE_30", "WEEKLY_PERFECT_5"]
        assert total_reward(grants) == 450


@pytest.mark.unit
@pytest.mark.domain
class TestAchievementHelpers:
    def test_filter_new_drops_held_types(self):
        grants = [
            AchievementGrant("PERFECT_SCORE", "a", "", 50),
            AchievementGrant("HIGH_ACHIEVER", "b", "", 100),
        ]

        assert [g.type for g in filter_new(grants, {"PERFECT_SCORE"})] == ["HIGH_ACHIEVER"]

    def test_total_reward_includes_base(self):
        grants = [AchievementGrant("PERFECT_SCORE", "a", "", 50)]

        assert total_reward(grants, 100) == 150
        assert total_reward([], 7) == 7

    @pytest.mark.parametrize(
        "achievement_type,expected",
        [
            ("PERFECT_SCORE", True),
            ("HIGH_ACHIEVER", True),
            ("PERFECT_ATTENDANCE_30", True),
            ("WEEKLY_PERFECT_3", True),
            ("TEACHER_REWARD", False),
            ("WEEKLY_PERFECTIONIST", False),
        ],
    )
    def test_once_only_types(self, achievement_type, expected):
        assert is_once_only(achievement_type) is expected


@pytest.mark.unit
class TestXpSettings:
    def test_defaults(self):
        settings = XpSettings()

        assert (settings.xp_per_grade, settings.xp_attendance_bonus, settings.xp_absent_penalty) == (1, 10, 5)

    def test_negative_value_rejected(self):
        with pytest.raises(ConfigurationError):
            XpSettings(xp_absent_penalty=-5)

    def test_from_config(self, mock_config_manager, config_values):
        config_values["gamification.xp.attendance_bonus"] = 20

        settings = XpSettings.from_config(mock_config_manager)

        assert settings.xp_attendance_bonus == 20
        assert settings.xp_per_grade == 1

