"""
Unit Volume Calculator

Derives the purchased unit quantity from the effective budget.
"""

from decimal import Decimal

from ..models import VolumeCalculation


class UnitVolumeCalculator:
    """Calculates unit volume from effective budget and unit price."""

    PER_MILLE_FACTOR = Decimal("1000")

    def calculate(self, effective_budget: Decimal, unit_price: Decimal, per_mille: bool) -> VolumeCalculation:
        """
        volume = effective_budget / unit_price        (per-unit pricing)
        volume = effective_budget / unit_price × 1000 (CPM pricing)

        A zero unit price leaves the volume undetermined (0, is_determined=False)
        rather than failing.
        """
        if unit_price <= 0:
            return VolumeCalculation(
                unit_volume=Decimal("0"),
                effective_budget=effective_budget,
                is_determined=False,
                per_mille=per_mille,
            )

        volume = effective_budget / unit_price
        if per_mille:
            volume *= self.PER_MILLE_FACTOR

        return VolumeCalculation(
            unit_volume=max(Decimal("0"), volume),
            effective_budget=effective_budget,
            is_determined=True,
            per_mille=per_mille,
        )
