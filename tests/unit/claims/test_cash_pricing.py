"""
Tests for cash pricing and cash-vs-insurance comparison.
"""

import pytest

from pharmflow.claims.pricing import CashConversion, calculate_cash_price, compare_pricing_options
from pharmflow.core.exceptions import ValidationError


class TestCalculateCashPrice:
    """Tests for calculate_cash_price."""

    def test_default_markup(self):
        calc = calculate_cash_price(10, 5)

        assert calc.markup == 2.0
        assert calc.calculated_price == 17.0
        assert calc.final_price == 17.0
        assert calc.minimum_applied is False

    def test_minimum_price_applied(self):
        calc = calculate_cash_price(10, 5, minimum_price=25)

        assert calc.calculated_price == 17.0
        assert calc.final_price == 25.0
        assert calc.minimum_applied is True

    def test_minimum_below_calculated_is_ignored(self):
        assert calculate_cash_price(10, 5, minimum_price=4).final_price == 17.0

    def test_rounds_half_up(self):
        """0.125 rounds to 0.13, not to the even 0.12."""
        assert calculate_cash_price(0, 0.125).final_price == 0.13

    def test_zero_markup(self):
        assert calculate_cash_price(8.5, 1.5, markup_percent=0).final_price == 10.0

    @pytest.mark.parametrize(
        ("args", "field"),
        [
            ((-1, 5), "acquisition_cost"),
            ((10, -5), "dispensing_fee"),
            ((10, 5, -1), "markup_percent"),
            ((10, 5, 20, -3), "minimum_price"),
        ],
    )
    def test_negative_inputs_rejected(self, args, field):
        with pytest.raises(ValidationError) as exc:
            calculate_cash_price(*args)
        assert exc.value.field == field


class TestComparePricingOptions:
    """Tests for compare_pricing_options."""

    def test_cash_cheaper(self):
        comparison = compare_pricing_options(25, 17)

        assert comparison.recommend_cash is True
        assert comparison.savings == 8.0
        assert comparison.recommendation == "Cash price is $8.00 cheaper than insurance"

    def test_insurance_cheaper(self):
        comparison = compare_pricing_options(10, 17)

        assert comparison.recommend_cash is False
        assert comparison.savings == 7.0
        assert comparison.recommendation == "Insurance saves patient $7.00"

    def test_tie_recommends_neither(self):
        comparison = compare_pricing_options(20, 20)

        assert comparison.recommend_cash is False
        assert comparison.savings == 0
        assert comparison.recommendation == "Prices are equal"

    def test_sub_cent_difference_decided_before_rounding(self):
        comparison = compare_pricing_options(20.004, 20.00)

        assert comparison.recommend_cash is True
        assert comparison.savings == 0.0
        assert comparison.recommendation == "Cash price is $0.00 cheaper than insurance"

    def test_no_insurance(self):
        comparison = compare_pricing_options(None, 12.5)

        assert comparison.recommend_cash is True
        assert comparison.insurance_patient_pay is None
        assert comparison.recommendation == "Insurance not available - cash price applies"

    def test_to_dict(self):
        assert compare_pricing_options(25, 17).to_dict()["savings"] == 8.0


class TestCashConversion:
    """Tests for the cash conversion request model."""

    def test_price(self):
        request = CashConversion(
            prescription_id="RX-1",
            acquisition_cost=10,
            dispensing_fee=5,
            markup_percentage=50,
            patient_consent=True,
        )

        assert request.price().final_price == 20.0
