"""
Bonification Calculator

Derives the bonus value from the negotiated ("real") media value.
"""

from decimal import Decimal

from ..models import BonusCalculation


class BonificationCalculator:
    """Calculates the bonus value against the media budget."""

    def calculate(self, has_bonus: bool, negotiated_value: Decimal, media_budget: Decimal) -> BonusCalculation:
        """
        - Bonus inactive: bonus and negotiated value are both cleared.
        - Active, negotiated value 0: pending user input, bonus 0.
        - Active, negotiated value below the media budget: validation failure,
          reported but not fatal, bonus 0.
        - Otherwise: bonus = negotiated value - media budget.
        """
        if not has_bonus:
            return BonusCalculation(bonus_value=Decimal("0"), negotiated_value=Decimal("0"))

        if negotiated_value == 0:
            return BonusCalculation(
                bonus_value=Decimal("0"),
                negotiated_value=negotiated_value,
                is_pending=True,
            )

        if negotiated_value < media_budget:
            return BonusCalculation(
                bonus_value=Decimal("0"),
                negotiated_value=negotiated_value,
                validation_error=(
                    f"Negotiated value ({negotiated_value:.2f}) cannot be less than "
                    f"the media budget ({media_budget:.2f})"
                ),
            )

        return BonusCalculation(
            bonus_value=negotiated_value - media_budget,
            negotiated_value=negotiated_value,
        )
