"""
Tests for DEA registration number validation and test-number generation.
"""

import random

import pytest

from pharmflow.compliance.dea import dea_check_digit, generate_test_dea_number, is_valid_dea_number


class TestDeaCheckDigit:
    """Tests for the checksum formula."""

    def test_known_check_digit(self):
        """(1 + 3 + 5) + 2 * (2 + 4 + 6) = 33, check digit 3."""
        assert dea_check_digit([1, 2, 3, 4, 5, 6]) == 3

    def test_all_zero_digits(self):
        assert dea_check_digit([0, 0, 0, 0, 0, 0]) == 0


class TestIsValidDeaNumber:
    """Tests for is_valid_dea_number."""

    def test_valid_number(self):
        assert is_valid_dea_number("AB1234563") is True

    def test_lowercase_letters_accepted(self):
        """Letters are matched case-insensitively."""
        assert is_valid_dea_number("ab1234563") is True

    def test_wrong_check_digit(self):
        assert is_valid_dea_number("AB1234564") is False

    @pytest.mark.parametrize(
        "value",
        [
            "",
            "AB123456",  # too short
            "AB12345633",  # too long
            "A11234563",  # second character must be a letter
            "ABC234563",  # digit expected
            " AB1234563",
            "AB1234563\n",  # trailing newline
            "AB\u0661\u0662\u0663\u0664\u0665\u0666\u0663",  # Arabic-Indic digits
        ],
    )
    def test_malformed_numbers(self, value):
        """Anything that is not two letters and seven digits is invalid."""
        assert is_valid_dea_number(value) is False

    def test_unregistered_first_letter(self):
        """I, N, O, Q and friends are not registrant type letters."""
        assert is_valid_dea_number("IB1234563") is False
        assert is_valid_dea_number("QB1234563") is False

    @pytest.mark.parametrize("value", [None, 1234563, ["AB1234563"]])
    def test_non_string_never_raises(self, value):
        assert is_valid_dea_number(value) is False


class TestGenerateTestDeaNumber:
    """Tests for generate_test_dea_number."""

    def test_generated_numbers_validate(self):
        """Every generated number passes the checksum."""
        rng = random.Random(42)
        for _ in range(50):
            assert is_valid_dea_number(generate_test_dea_number(rng=rng))

    def test_letters_from_type_and_last_name(self):
        number = generate_test_dea_number("m", "garcia", rng=random.Random(1))

        assert number[:2] == "MG"
        assert len(number) == 9

    def test_reproducible_with_seeded_rng(self):
        first = generate_test_dea_number(rng=random.Random(7))
        second = generate_test_dea_number(rng=random.Random(7))

        assert first == second

    def test_changing_check_digit_invalidates(self):
        """A corrupted check digit is always caught."""
        number = generate_test_dea_number(rng=random.Random(3))
        corrupted = number[:-1] + str((int(number[-1]) + 1) % 10)

        assert is_valid_dea_number(corrupted) is False

    def test_single_digit_changes_mostly_caught(self):
        """
        Changing one of d1..d6 is caught at least 9 times in 10.

        Odd positions always change the checksum; an even position misses
        only a change of exactly 5, since 2 * 5 is 0 mod 10.
        """
        rng = random.Random(11)
        rejected = total = 0
        for _ in range(25):
            number = generate_test_dea_number(rng=rng)
            for position in range(2, 8):
                for digit in "0123456789":
                    if digit == number[position]:
                        continue
                    mutant = number[:position] + digit + number[position + 1 :]
                    total += 1
                    rejected += not is_valid_dea_number(mutant)

        assert total == 25 * 6 * 9
        assert rejected / total >= 0.9
