"""
Result Assembler

Constructs the updated snapshot, the calculation report and the API
breakdown from the calculation context. This is the single rounding point of
the engine: money to cents, volumes to whole units.
"""

from dataclasses import replace
from decimal import Decimal

from .calculators.fees import quantize_money, quantize_units
from .models import (
    BonusCalculation,
    BudgetMode,
    BudgetResult,
    BudgetSnapshot,
    CalculationContext,
    CalculationReport,
    FeeSlot,
)


def to_money(value: Decimal) -> float:
    """Convert Decimal to float with 2 decimal places."""
    return round(float(value), 2)


def _fmt(value) -> str:
    """Format a number as currency string for descriptions."""
    return f"${value:,.2f}"


class ResultAssembler:
    """Builds the updated snapshot and the report."""

    def build(self, ctx: CalculationContext) -> BudgetResult:
        """Construct the complete calculation result from the context."""
        snapshot = self._build_snapshot(ctx)
        report = CalculationReport(
            success=True,
            convergence=ctx.convergence,
            advisories=list(ctx.advisories),
        )
        return BudgetResult(
            snapshot=snapshot,
            report=report,
            calculations=self._build_calculations(ctx, snapshot),
        )

    def _build_snapshot(self, ctx: CalculationContext) -> BudgetSnapshot:
        source = ctx.snapshot
        evaluation = ctx.evaluation
        rate = ctx.currency.rate

        fee_slots = self._build_fee_slots(ctx)
        total_fees = sum((slot.computed_value for slot in fee_slots), Decimal("0"))
        media_budget = quantize_money(evaluation.media_budget)

        if source.budget_mode == BudgetMode.CLIENT:
            client_budget = quantize_money(source.budget_input)
            if ctx.convergence.has_converged and client_budget - total_fees >= 0:
                # Media absorbs the cents lost when rounding the fees
                media_budget = client_budget - total_fees
            delta = abs(client_budget - media_budget - total_fees)
        else:
            client_budget = media_budget + total_fees
            delta = Decimal("0.00")

        media_budget_ref = quantize_money(media_budget * rate)
        client_budget_ref = media_budget_ref + sum((slot.reference_value for slot in fee_slots), Decimal("0"))

        return replace(
            source,
            negotiated_value=evaluation.bonus.negotiated_value,
            reference_currency=ctx.reference_currency,
            fee_slots=fee_slots,
            unit_volume=quantize_units(evaluation.volume.unit_volume),
            bonus_value=self._bonus_value(evaluation.bonus, media_budget),
            media_budget=media_budget,
            client_budget=client_budget,
            currency_rate=rate,
            media_budget_ref=media_budget_ref,
            client_budget_ref=client_budget_ref,
            delta=delta,
        )

    @staticmethod
    def _bonus_value(bonus: BonusCalculation, media_budget: Decimal) -> Decimal:
        """Bonus against the stored media budget, so negotiated = media + bonus to the cent."""
        if bonus.bonus_value <= 0:
            return quantize_money(bonus.bonus_value)
        return max(Decimal("0.00"), quantize_money(bonus.negotiated_value) - media_budget)

    def _build_fee_slots(self, ctx: CalculationContext) -> list[FeeSlot]:
        """Fresh slots carrying the inputs over and the rounded fee amounts."""
        cascade = ctx.evaluation.fees
        rate = ctx.currency.rate
        configured = len(ctx.fees)

        slots = []
        for number, slot in enumerate(ctx.snapshot.fee_slots, start=1):
            if number > configured:
                slots.append(FeeSlot())
                continue
            amount = quantize_money(cascade.amount_for_slot(number))
            slots.append(
                FeeSlot(
                    selection=slot.selection,
                    custom_override=slot.custom_override if slot.selection.is_active else None,
                    computed_value=amount,
                    reference_value=quantize_money(amount * rate),
                )
            )
        return slots

    def _build_calculations(self, ctx: CalculationContext, snapshot: BudgetSnapshot) -> dict:
        """Build calculations section with value and dynamic description for each field."""
        evaluation = ctx.evaluation
        convergence = ctx.convergence
        currency = snapshot.buy_currency
        reference = snapshot.reference_currency
        rate = snapshot.currency_rate
        total_fees = snapshot.total_fees

        if snapshot.budget_mode == BudgetMode.CLIENT:
            if convergence.has_converged:
                mode_desc = (
                    f"Client budget of {_fmt(snapshot.client_budget)} entered; media budget solved in "
                    f"{convergence.iterations} iterations"
                )
            else:
                mode_desc = (
                    f"Client budget of {_fmt(snapshot.client_budget)} entered; closest media budget found "
                    f"leaves a gap of {_fmt(snapshot.delta)}"
                )
        else:
            mode_desc = f"Media budget of {_fmt(snapshot.media_budget)} entered"

        if evaluation.volume.is_determined:
            pricing = "per thousand units (CPM)" if evaluation.volume.per_mille else "per unit"
            volume_desc = (
                f"{_fmt(evaluation.volume.effective_budget)} / {_fmt(snapshot.unit_price)} {pricing} "
                f"= {snapshot.unit_volume:,.0f} units"
            )
        else:
            volume_desc = "Unit price not set - volume pending"

        if not snapshot.has_bonus:
            bonus_desc = "No bonification for this tactic"
        elif evaluation.bonus.is_pending:
            bonus_desc = "Bonification active, waiting for the negotiated value"
        elif evaluation.bonus.validation_error:
            bonus_desc = evaluation.bonus.validation_error
        else:
            bonus_desc = (
                f"negotiated value ({_fmt(snapshot.negotiated_value)}) - media budget "
                f"({_fmt(snapshot.media_budget)}) = {_fmt(snapshot.bonus_value)}"
            )

        fee_lines = []
        for detail in evaluation.fees.details:
            amount = snapshot.fee_slots[detail.slot_number - 1].computed_value
            fee_lines.append({
                "slot": detail.slot_number,
                "fee_id": detail.fee_id,
                "fee_name": detail.fee_name,
                "state": detail.selection.state.value,
                "pending": detail.is_pending,
                "value": to_money(amount),
                "description": detail.description,
            })

        calculations = {
            "budget_mode": {
                "value": snapshot.budget_mode.value,
                "description": mode_desc,
            },
            "media_budget": {
                "value": to_money(snapshot.media_budget),
                "description": f"Net amount spent on media in {currency}, excluding fees",
            },
            "bonus_value": {
                "value": to_money(snapshot.bonus_value),
                "description": bonus_desc,
            },
            "unit_volume": {
                "value": float(snapshot.unit_volume),
                "description": volume_desc,
            },
            "fees": fee_lines,
            "total_fees": {
                "value": to_money(total_fees),
                "description": " + ".join(_fmt(line["value"]) for line in fee_lines) or "No fees configured",
            },
            "client_budget": {
                "value": to_money(snapshot.client_budget),
                "description": (
                    f"media budget ({_fmt(snapshot.media_budget)}) + fees ({_fmt(total_fees)}) "
                    f"= {_fmt(snapshot.media_budget + total_fees)}"
                ),
            },
        }

        if rate != 1:
            calculations["reference_currency"] = {
                "value": float(rate),
                "description": (
                    f"1 {currency} = {rate} {reference}: media {_fmt(snapshot.media_budget_ref)}, "
                    f"client {_fmt(snapshot.client_budget_ref)} in {reference}"
                ),
            }

        return calculations
