"""
Fee Cascade Calculator

Evaluates the configured client fees in order, threading a cumulative base
through the slots. All arithmetic keeps full Decimal precision; rounding to
cents happens once, when the result is assembled.
"""

from decimal import ROUND_HALF_UP, Decimal

from ..models import (
    CalculationContext,
    CalculationMode,
    CalculationType,
    ClientFee,
    FeeCalculationDetail,
    FeeCascadeResult,
    FeeOption,
    FeeSlot,
    sort_fees,
)


def quantize_money(value: Decimal) -> Decimal:
    """Round to 2 decimal places using ROUND_HALF_UP."""
    return value.quantize(Decimal('0.01'), rounding=ROUND_HALF_UP)


def quantize_units(value: Decimal) -> Decimal:
    """Round a unit volume to whole units."""
    return value.quantize(Decimal('1'), rounding=ROUND_HALF_UP)


def apply_buffer(value: Decimal, buffer_percent: Decimal) -> Decimal:
    """value × (1 + buffer/100); a buffer of 5 adds 5%."""
    return value * (1 + buffer_percent / 100)


class FeeCascadeCalculator:
    """Calculates the fee amounts of all five fee slots."""

    def calculate(self, ctx: CalculationContext, media_budget: Decimal, unit_volume: Decimal) -> FeeCascadeResult:
        """
        Evaluate every configured fee in ascending order.

        The cumulative base starts at the media budget and grows by the amount
        of each evaluated fee, so a fee applied "on previous fees" sees the
        media budget plus every fee with a smaller order.
        """
        result = FeeCascadeResult(cumulative_base=media_budget)
        cumulative_base = media_budget

        slots = ctx.snapshot.fee_slots
        for number, fee in enumerate(sort_fees(ctx.fees), start=1):
            slot = slots[number - 1] if number <= len(slots) else FeeSlot()
            detail = self._calculate_slot(number, fee, slot, media_budget, cumulative_base, unit_volume, result, ctx)
            result.details.append(detail)
            result.total_fees += detail.amount
            cumulative_base += detail.amount

        result.cumulative_base = cumulative_base
        return result

    def _calculate_slot(
        self,
        number: int,
        fee: ClientFee,
        slot: FeeSlot,
        media_budget: Decimal,
        cumulative_base: Decimal,
        unit_volume: Decimal,
        result: FeeCascadeResult,
        ctx: CalculationContext,
    ) -> FeeCalculationDetail:
        detail = FeeCalculationDetail(
            slot_number=number,
            fee_id=fee.id,
            fee_name=fee.name,
            calculation_type=fee.calculation_type,
            selection=slot.selection,
        )

        if not slot.selection.is_active:
            detail.description = "Fee not applied"
            return detail

        if not slot.selection.has_option:
            detail.is_pending = True
            detail.description = "Fee active, waiting for an option"
            return detail

        # Presence of the option is checked by the validator
        option = fee.find_option(slot.selection.option_id)
        adjusted = apply_buffer(self._base_value(fee, option, slot), option.buffer)
        detail.adjusted_value = adjusted

        calc_type = fee.calculation_type

        if calc_type == CalculationType.PERCENT_OF_BUDGET:
            if fee.calculation_mode == CalculationMode.DIRECT_ON_MEDIA_BUDGET:
                detail.applied_on = media_budget
                detail.description = f"{adjusted * 100:.2f}% × media budget ({_fmt(media_budget)})"
            else:
                detail.applied_on = cumulative_base
                detail.description = f"{adjusted * 100:.2f}% × cumulative base ({_fmt(cumulative_base)})"
            detail.amount = adjusted * detail.applied_on

        elif calc_type == CalculationType.PER_UNIT_VOLUME:
            volume = self._effective_volume(option, slot, unit_volume)
            detail.applied_on = volume
            detail.amount = adjusted * volume
            detail.is_pending = volume == 0
            detail.description = f"{_fmt(adjusted, 4)} × {volume:,.0f} volume units"

        elif calc_type == CalculationType.PER_UNIT_COUNT:
            units = self._unit_count(slot)
            detail.applied_on = units
            detail.amount = adjusted * units
            detail.description = f"{_fmt(adjusted)} × {units:,.0f} units"

        elif calc_type == CalculationType.FIXED_AMOUNT:
            detail.amount = adjusted
            detail.description = f"Fixed amount of {_fmt(adjusted)}"

        else:
            ctx.logger.error(f"Unrecognized fee calculation type '{calc_type}' on fee {fee.name or fee.id}")
            result.unrecognized_types.append(str(calc_type))
            detail.description = f"Unsupported calculation type: {calc_type}"

        return detail

    def _base_value(self, fee: ClientFee, option: FeeOption, slot: FeeSlot) -> Decimal:
        """
        The option's value, replaced by the slot override when the option is
        editable. Only value-based types take the override as a value; for
        volume and unit types the override is a quantity.
        """
        override = slot.custom_override
        if not option.editable or override is None:
            return option.value
        if fee.calculation_type == CalculationType.PERCENT_OF_BUDGET:
            return override
        if fee.calculation_type == CalculationType.FIXED_AMOUNT and override >= 0:
            return override
        return option.value

    def _effective_volume(self, option: FeeOption, slot: FeeSlot, unit_volume: Decimal) -> Decimal:
        if option.editable and slot.custom_override is not None and slot.custom_override > 0:
            return slot.custom_override
        return unit_volume

    def _unit_count(self, slot: FeeSlot) -> Decimal:
        if slot.custom_override is not None and slot.custom_override > 0:
            return slot.custom_override
        return Decimal("1")


def _fmt(value: Decimal, places: int = 2) -> str:
    """Format a number as a currency string for descriptions."""
    return f"${value:,.{places}f}"
