"""
DEA registration number validation.

Format: two letters + six digits + one check digit. The check digit is the
last digit of ``(d1 + d3 + d5) + 2 * (d2 + d4 + d6)``.
"""

import random
import re
from typing import Any

DEA_PATTERN = re.compile(r"[A-Za-z]{2}[0-9]{7}")

VALID_FIRST_LETTERS = frozenset("ABCDEFGHJKLMPRSTUX")


def dea_check_digit(digits: list[int]) -> int:
    """Check digit for the first six digits of a DEA number."""
    odd_sum = digits[0] + digits[2] + digits[4]
    even_sum = (digits[1] + digits[3] + digits[5]) * 2
    return (odd_sum + even_sum) % 10


def is_valid_dea_number(value: Any) -> bool:
    """
    Validate a DEA number. Never raises; returns False on any violation.

    Letters are matched case-insensitively.
    """
    if not isinstance(value, str) or not DEA_PATTERN.fullmatch(value):
        return False

    if value[0].upper() not in VALID_FIRST_LETTERS:
        return False

    digits = [int(ch) for ch in value[2:]]
    return dea_check_digit(digits) == digits[6]


def generate_test_dea_number(
    practitioner_type: str = "A",
    last_name: str = "Smith",
    rng: random.Random | None = None,
) -> str:
    """
    Generate a checksum-valid DEA number for test fixtures.

    Args:
        practitioner_type: First letter (registrant type), e.g. A, B, F, M
        last_name: Registrant last name; its initial is the second letter
        rng: Optional random source for reproducible output
    """
    source = rng or random.Random()
    digits = [source.randint(0, 9) for _ in range(6)]
    check = dea_check_digit(digits)
    return f"{practitioner_type.upper()}{last_name[0].upper()}{''.join(map(str, digits))}{check}"
