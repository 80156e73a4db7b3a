"""
Cash pricing and cash-vs-insurance comparison.

Prices are rounded half-up to cents. A tie between cash and insurance
recommends neither side.
"""

import math
from dataclasses import dataclass

from pydantic import BaseModel, Field

from pharmflow.core.exceptions import ValidationError

DEFAULT_MARKUP_PERCENT = 20


def round_cents(amount: float) -> float:
    return math.floor(amount * 100 + 0.5) / 100


@dataclass(frozen=True)
class CashPriceCalculation:
    acquisition_cost: float
    markup: float
    dispensing_fee: float
    calculated_price: float
    final_price: float
    minimum_price: float | None = None

    @property
    def minimum_applied(self) -> bool:
        return self.final_price > self.calculated_price


@dataclass(frozen=True)
class PricingComparison:
    recommend_cash: bool
    insurance_patient_pay: float | None
    cash_price: float
    savings: float
    recommendation: str

    def to_dict(self) -> dict:
        return {
            "recommend_cash": self.recommend_cash,
            "insurance_patient_pay": self.insurance_patient_pay,
            "cash_price": self.cash_price,
            "savings": self.savings,
            "recommendation": self.recommendation,
        }


def calculate_cash_price(
    acquisition_cost: float,
    dispensing_fee: float,
    markup_percent: float = DEFAULT_MARKUP_PERCENT,
    minimum_price: float | None = None,
) -> CashPriceCalculation:
    """
    Usual-and-customary cash price.

    ``calculated = cost + cost * markup% + fee``, rounded to cents; the final
    price is raised to ``minimum_price`` when one is given.

    Raises:
        ValidationError: On negative costs, fees, markup or minimum
    """
    for name, value in (
        ("acquisition_cost", acquisition_cost),
        ("dispensing_fee", dispensing_fee),
        ("markup_percent", markup_percent),
    ):
        if value < 0:
            msg = f"{name} must not be negative, got {value}"
            raise ValidationError(msg, field=name)
    if minimum_price is not None and minimum_price < 0:
        msg = f"minimum_price must not be negative, got {minimum_price}"
        raise ValidationError(msg, field="minimum_price")

    markup = acquisition_cost * markup_percent / 100
    calculated = round_cents(acquisition_cost + markup + dispensing_fee)
    floor = calculated if minimum_price is None else minimum_price
    final = round_cents(max(calculated, floor))

    return CashPriceCalculation(
        acquisition_cost=acquisition_cost,
        markup=round_cents(markup),
        dispensing_fee=dispensing_fee,
        calculated_price=calculated,
        final_price=final,
        minimum_price=minimum_price,
    )


def compare_pricing_options(insurance_patient_pay: float | None, cash_price: float) -> PricingComparison:
    """Recommend cash or insurance, whichever is strictly cheaper for the patient."""
    if insurance_patient_pay is None:
        return PricingComparison(
            recommend_cash=True,
            insurance_patient_pay=None,
            cash_price=cash_price,
            savings=0,
            recommendation="Insurance not available - cash price applies",
        )

    # decide on the raw amounts; only the reported savings are rounded
    difference = insurance_patient_pay - cash_price
    savings = round_cents(abs(difference))
    if difference > 0:
        recommendation = f"Cash price is ${savings:.2f} cheaper than insurance"
    elif difference < 0:
        recommendation = f"Insurance saves patient ${savings:.2f}"
    else:
        recommendation = "Prices are equal"

    return PricingComparison(
        recommend_cash=difference > 0,
        insurance_patient_pay=insurance_patient_pay,
        cash_price=cash_price,
        savings=savings,
        recommendation=recommendation,
    )


class CashConversion(BaseModel):
    """Operator request to bill a prescription as cash."""

    prescription_id: str
    acquisition_cost: float = Field(ge=0)
    dispensing_fee: float = Field(ge=0)
    markup_percentage: float = Field(default=DEFAULT_MARKUP_PERCENT, ge=0, le=100)
    patient_consent: bool

    def price(self, minimum_price: float | None = None) -> CashPriceCalculation:
        return calculate_cash_price(
            self.acquisition_cost, self.dispensing_fee, self.markup_percentage, minimum_price
        )
