"""
Tests for the pharmflow command line.
"""

import pytest
from click.testing import CliRunner

from pharmflow.cli import cli
from pharmflow.compliance.dea import is_valid_dea_number


@pytest.fixture
def runner():
    return CliRunner()


class TestDeaCommands:
    """Tests for 'pharmflow dea'."""

    def test_check_valid(self, runner):
        result = runner.invoke(cli, ["dea", "check", "ab1234563"])

        assert result.exit_code == 0
        assert "VALID AB1234563" in result.output

    def test_check_invalid(self, runner):
        result = runner.invoke(cli, ["dea", "check", "AB1234564"])

        assert result.exit_code == 1
        assert "INVALID" in result.output

    def test_generate(self, runner):
        result = runner.invoke(cli, ["dea", "generate", "--count", "3", "--last-name", "Jones"])

        assert result.exit_code == 0
        numbers = result.output.split()
        assert len(numbers) == 3
        assert all(n.startswith("AJ") and is_valid_dea_number(n) for n in numbers)

    def test_generate_blank_last_name(self, runner):
        result = runner.invoke(cli, ["dea", "generate", "--last-name", " "])

        assert result.exit_code == 1


class TestComplianceCommands:
    def test_cs_check_expired(self, runner):
        result = runner.invoke(cli, ["cs-check", "IV", "2020-01-01"])

        # Schedule IV expires after 6 months
        assert result.exit_code == 1
        assert "BLOCKED" in result.output

    def test_cs_check_unknown_schedule(self, runner):
        result = runner.invoke(cli, ["cs-check", "VII", "2020-01-01"])

        assert result.exit_code == 1
        assert "Error" in result.output

    def test_variance_critical_loss(self, runner):
        result = runner.invoke(cli, ["variance", "90", "100"])

        assert result.exit_code == 0
        assert "Variance: -10 (-10.00%) critical" in result.output
        assert "DEA Form 106 report required" in result.output

    def test_variance_exact(self, runner):
        result = runner.invoke(cli, ["variance", "100", "100"])

        assert "none" in result.output
        assert "Investigation required" not in result.output

    def test_variance_negative_count(self, runner):
        result = runner.invoke(cli, ["variance", "--", "-1", "100"])

        assert result.exit_code == 1

    def test_biennial_overdue(self, runner):
        result = runner.invoke(cli, ["biennial", "2020-01-01"])

        assert result.exit_code == 0
        assert "overdue" in result.output.lower()


class TestClaimsCommands:
    """Tests for reject-code, refill-date and price."""

    def test_reject_code_with_overrides(self, runner):
        result = runner.invoke(cli, ["reject-code", "79"])

        assert result.exit_code == 0
        assert "Refill Too Soon" in result.output
        assert "Override codes: VS, LTC, EM, LS, HM, DS" in result.output

    def test_reject_code_pharmacist_only(self, runner):
        result = runner.invoke(cli, ["reject-code", "88"])

        assert result.exit_code == 0
        assert "Requires pharmacist" in result.output

    def test_unknown_reject_code(self, runner):
        result = runner.invoke(cli, ["reject-code", "ZZ"])

        assert result.exit_code == 1
        assert "escalate" in result.output

    def test_refill_date_eligible(self, runner):
        result = runner.invoke(cli, ["refill-date", "2020-01-01", "30"])

        assert result.exit_code == 0
        assert "Eligible now" in result.output

    def test_price_with_insurance(self, runner):
        result = runner.invoke(cli, ["price", "10", "5", "--insurance-pay", "25"])

        assert result.exit_code == 0
        assert "Cash price: $17.00" in result.output
        assert "Cash price is $8.00 cheaper than insurance" in result.output

    def test_price_minimum(self, runner):
        result = runner.invoke(cli, ["price", "1", "1", "--minimum", "4"])

        assert "Cash price: $4.00" in result.output
        assert "minimum price applied" in result.output


class TestWorkflowCommands:
    def test_terminal_state(self, runner):
        result = runner.invoke(cli, ["transitions", "sold"])

        assert result.exit_code == 0
        assert "Sold is terminal" in result.output

    def test_pharmacist_targets_marked(self, runner):
        result = runner.invoke(cli, ["transitions", "DATA_ENTRY_COMPLETE"])

        assert "DUR_REVIEW (pharmacist)" in result.output
        assert "FILLING\n" in result.output

    def test_unknown_state(self, runner):
        result = runner.invoke(cli, ["transitions", "SHIPPED"])

        assert result.exit_code == 1


def test_version(runner):
    result = runner.invoke(cli, ["--version"])

    assert result.exit_code == 0
    assert "0.1.0" in result.output
