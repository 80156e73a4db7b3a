"""
Tests for DEA schedule rules and the schedule enum.
"""

import pytest

from pharmflow.compliance.rules import CS_RULES, get_rules
from pharmflow.core.exceptions import ValidationError
from pharmflow.types import CONTROLLED_SCHEDULES, DeaSchedule


class TestCsRules:
    """Tests for the CS_RULES table."""

    def test_every_schedule_has_rules(self):
        assert set(CS_RULES) == set(DeaSchedule)

    def test_schedule_ii(self):
        rules = CS_RULES[DeaSchedule.II]

        assert rules.refills_allowed == 0
        assert rules.prescription_valid_days == 90
        assert rules.partial_fill_time_limit_hours == 72
        assert rules.requires_dea_222 is True

    @pytest.mark.parametrize("schedule", [DeaSchedule.III, DeaSchedule.IV, DeaSchedule.V])
    def test_schedules_iii_to_v(self, schedule):
        rules = CS_RULES[schedule]

        assert rules.refills_allowed == 5
        assert rules.prescription_valid_days == 180

    def test_controlled_schedules_keep_perpetual_inventory(self):
        for schedule in DeaSchedule:
            assert CS_RULES[schedule].perpetual_inventory is (schedule in CONTROLLED_SCHEDULES)

    def test_table_is_read_only(self):
        with pytest.raises(TypeError):
            CS_RULES[DeaSchedule.II] = CS_RULES[DeaSchedule.III]  # type: ignore[index]

    def test_get_rules_parses_tags(self):
        assert get_rules("iv") is CS_RULES[DeaSchedule.IV]


class TestDeaSchedule:
    """Tests for DeaSchedule helpers."""

    def test_labels(self):
        assert DeaSchedule.II.label == "Schedule II"
        assert DeaSchedule.LEGEND.label == "LEGEND"

    def test_parse(self):
        assert DeaSchedule.parse(" ii ") is DeaSchedule.II
        assert DeaSchedule.parse(DeaSchedule.OTC) is DeaSchedule.OTC

    def test_parse_unknown(self):
        with pytest.raises(ValidationError) as exc:
            DeaSchedule.parse("VI")
        assert exc.value.field == "schedule"
