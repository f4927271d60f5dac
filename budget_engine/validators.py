"""
Input Validation for the Budget Calculation Engine

Validates the snapshot and the fee configuration before calculating.
Raises ValueError subclasses with clear messages for any blocking problem.
Recoverable conditions (missing rate, zero unit price, ...) are not checked
here; the calculators report them as advisories.
"""

from .models import (
    MAX_FEE_SLOTS,
    BudgetSnapshot,
    CalculationMode,
    ClientFee,
    sort_fees,
)


class BudgetInputError(ValueError):
    """The snapshot holds values the engine cannot work with."""


class FeeConfigurationError(ValueError):
    """The fee configuration is malformed; no partial result may be applied."""


class InputValidator:
    """Validates a calculation request according to business rules."""

    def validate(self, snapshot: BudgetSnapshot, fees: list[ClientFee]) -> None:
        """
        Run all validations. Raises BudgetInputError or FeeConfigurationError.
        """
        self._validate_snapshot(snapshot)
        self._validate_fees(fees)
        self._validate_selections(snapshot, fees)

    def _validate_snapshot(self, snapshot: BudgetSnapshot) -> None:
        if snapshot.budget_input < 0:
            raise BudgetInputError(f"budget_input cannot be negative, got: {snapshot.budget_input}")

        if snapshot.unit_price < 0:
            raise BudgetInputError(f"unit_price cannot be negative, got: {snapshot.unit_price}")

        if snapshot.negotiated_value < 0:
            raise BudgetInputError(f"negotiated_value cannot be negative, got: {snapshot.negotiated_value}")

        for number, slot in enumerate(snapshot.fee_slots, start=1):
            if slot.custom_override is not None and slot.custom_override < 0:
                raise BudgetInputError(
                    f"Fee slot {number} custom_override cannot be negative, got: {slot.custom_override}"
                )

    def _validate_fees(self, fees: list[ClientFee]) -> None:
        if len(fees) > MAX_FEE_SLOTS:
            raise FeeConfigurationError(
                f"At most {MAX_FEE_SLOTS} fees can be configured, got: {len(fees)}"
            )

        orders = [fee.order for fee in fees]
        if len(orders) != len(set(orders)):
            raise FeeConfigurationError(f"Fee orders must be unique, got: {sorted(orders)}")

        for fee in fees:
            # Unknown calculation types are left to the fee cascade, which
            # escalates them once it meets them.
            if not isinstance(fee.calculation_mode, CalculationMode):
                raise FeeConfigurationError(
                    f"Fee '{fee.name or fee.id}' has an unknown calculation_mode: {fee.calculation_mode}"
                )

            option_ids = [option.id for option in fee.options]
            if len(option_ids) != len(set(option_ids)):
                raise FeeConfigurationError(f"Fee '{fee.name or fee.id}' has duplicate option ids")

    def _validate_selections(self, snapshot: BudgetSnapshot, fees: list[ClientFee]) -> None:
        ordered = sort_fees(fees)
        for number, slot in enumerate(snapshot.fee_slots, start=1):
            if not slot.selection.has_option or number > len(ordered):
                continue
            fee = ordered[number - 1]
            if fee.find_option(slot.selection.option_id) is None:
                raise FeeConfigurationError(
                    f"Fee slot {number} selects option '{slot.selection.option_id}' "
                    f"which does not exist on fee '{fee.name or fee.id}'"
                )
