"""
Budget Session

Controller-level state for one tactic being edited: the current snapshot,
what the user intends to have switched on, and automatic recalculation after
every edit. The processor stays a pure function; this class owns the
mutable bits around it.
"""

import copy
import logging
from dataclasses import replace
from decimal import Decimal

from .models import (
    Advisory,
    BudgetMode,
    BudgetSnapshot,
    CalculationReport,
    ClientFee,
    FeeSelection,
    FeeSlot,
    UnitType,
    default_fee_slots,
    optional_decimal,
    sort_fees,
    to_decimal,
)
from .processor import BudgetProcessor
from .records import reconcile_selections, snapshot_to_record


class IntentTracker:
    """
    Remembers which fees and whether the bonification the user wants active.

    A fee whose amount is 0 while it waits for a volume or an option is still
    wanted; the tracker keeps that apart from a fee the user switched off.
    """

    def __init__(self, fee_intents: dict[str, bool] | None = None, bonus_intent: bool = False):
        self.fee_intents = dict(fee_intents or {})
        self.bonus_intent = bonus_intent

    @classmethod
    def from_snapshot(cls, snapshot: BudgetSnapshot, fees: list[ClientFee]) -> "IntentTracker":
        intents = {}
        for number, fee in enumerate(sort_fees(fees), start=1):
            slot = snapshot.fee_slots[number - 1] if number <= len(snapshot.fee_slots) else FeeSlot()
            intents[fee.id] = slot.selection.is_active
        bonus = snapshot.has_bonus or snapshot.negotiated_value > 0
        return cls(intents, bonus)

    def set_fee(self, fee_id: str, active: bool) -> None:
        self.fee_intents[fee_id] = active

    def set_bonus(self, active: bool) -> None:
        self.bonus_intent = active

    def is_fee_intended(self, fee_id: str) -> bool:
        return self.fee_intents.get(fee_id, False)

    @staticmethod
    def is_pending(slot: FeeSlot) -> bool:
        """Wanted, but currently worth nothing."""
        return slot.selection.is_active and slot.computed_value == 0

    def reconcile(self, snapshot: BudgetSnapshot, fees: list[ClientFee]) -> BudgetSnapshot:
        """Bring slot states and the bonus flag back in line with the intents."""
        slots = list(snapshot.fee_slots)
        for number, fee in enumerate(sort_fees(fees), start=1):
            if number > len(slots):
                break
            slot = slots[number - 1]
            intended = self.is_fee_intended(fee.id)
            if intended and not slot.selection.is_active:
                slots[number - 1] = replace(slot, selection=FeeSelection.unselected())
            elif not intended and slot.selection.is_active:
                slots[number - 1] = FeeSlot()

        if self.bonus_intent:
            return replace(snapshot, fee_slots=slots, has_bonus=True)
        return replace(
            snapshot,
            fee_slots=slots,
            has_bonus=False,
            negotiated_value=Decimal("0"),
            bonus_value=Decimal("0"),
        )


class BudgetSession:
    """
    Edits one tactic's budget and keeps its derived figures current.

    Every edit goes through the processor when auto_calculate is on and the
    snapshot holds enough data; a failed calculation leaves the last good
    snapshot in place and records the error.
    """

    EDITABLE_FIELDS = (
        "budget_mode",
        "budget_input",
        "unit_price",
        "unit_type",
        "negotiated_value",
        "buy_currency",
    )

    def __init__(
        self,
        fees: list[ClientFee],
        rates: dict[str, Decimal] | None = None,
        reference_currency: str = "CAD",
        unit_types: list[UnitType] | None = None,
        snapshot: BudgetSnapshot | None = None,
        processor: BudgetProcessor | None = None,
        auto_calculate: bool = True,
        logger: logging.Logger | None = None,
    ):
        self.fees = sort_fees(fees)
        self.rates = dict(rates or {})
        self.reference_currency = reference_currency
        self.unit_types = list(unit_types or [])
        self.processor = processor or BudgetProcessor()
        self.auto_calculate = auto_calculate
        self.logger = logger or logging.getLogger(__name__)

        self.load_advisories: list[Advisory] = []
        self.last_report: CalculationReport | None = None
        self.errors: list[str] = []

        if snapshot is None:
            self._snapshot = self._default_snapshot()
        else:
            self._snapshot, self.load_advisories = reconcile_selections(copy.deepcopy(snapshot), self.fees)
            for advisory in self.load_advisories:
                self.logger.warning(f"{advisory.code}: {advisory.message}")

        self.tracker = IntentTracker.from_snapshot(self._snapshot, self.fees)

    @property
    def snapshot(self) -> BudgetSnapshot:
        return self._snapshot

    @property
    def has_valid_data(self) -> bool:
        return self._snapshot.budget_input > 0

    def _default_snapshot(self) -> BudgetSnapshot:
        return BudgetSnapshot(reference_currency=self.reference_currency, fee_slots=default_fee_slots())

    def _fee_slot_index(self, fee_id: str) -> int:
        for index, fee in enumerate(self.fees):
            if fee.id == fee_id:
                return index
        raise KeyError(f"Unknown fee: {fee_id}")

    def _set_slot(self, index: int, slot: FeeSlot) -> None:
        slots = list(self._snapshot.fee_slots)
        slots[index] = slot
        self._snapshot = replace(self._snapshot, fee_slots=slots)

    def _after_change(self) -> None:
        if self.auto_calculate and self.has_valid_data:
            self.calculate()

    # -------------------------------------------------------------------------
    # Edits
    # -------------------------------------------------------------------------

    def update_field(self, name: str, value) -> None:
        self.update_fields(**{name: value})

    def update_fields(self, **updates) -> None:
        """Apply user edits to the input fields, then recalculate once."""
        changes = {}
        for name, value in updates.items():
            if name not in self.EDITABLE_FIELDS:
                raise ValueError(f"Field '{name}' cannot be edited, it is either unknown or derived")
            if name == "budget_mode":
                changes[name] = BudgetMode.parse(value)
            elif name in ("unit_type", "buy_currency"):
                changes[name] = value or ""
            else:
                changes[name] = to_decimal(value)

        self._snapshot = replace(self._snapshot, **changes)
        self._after_change()

    def toggle_fee(self, fee_id: str, active: bool) -> None:
        """
        Switch a fee on or off.

        A fee with a single option gets it selected right away; otherwise it
        waits for the user to pick one. Switching off clears the slot.
        """
        index = self._fee_slot_index(fee_id)
        fee = self.fees[index]
        self.tracker.set_fee(fee_id, active)

        if active:
            if len(fee.options) == 1:
                selection = FeeSelection.option(fee.options[0].id)
            else:
                selection = FeeSelection.unselected()
            self._set_slot(index, FeeSlot(selection=selection))
        else:
            self._set_slot(index, FeeSlot())

        self._after_change()

    def select_fee_option(self, fee_id: str, option_id: str | None) -> None:
        index = self._fee_slot_index(fee_id)
        fee = self.fees[index]

        if option_id is None:
            selection = FeeSelection.unselected()
        elif fee.find_option(option_id) is None:
            raise ValueError(f"Fee '{fee.name or fee.id}' has no option '{option_id}'")
        else:
            selection = FeeSelection.option(option_id)

        self.tracker.set_fee(fee_id, True)
        # A new option starts without the previous option's override
        self._set_slot(index, FeeSlot(selection=selection))
        self._after_change()

    def set_fee_override(self, fee_id: str, value) -> None:
        index = self._fee_slot_index(fee_id)
        slot = self._snapshot.fee_slots[index]
        if not slot.selection.is_active:
            raise ValueError(f"Fee '{fee_id}' is not active, activate it before entering a value")
        self._set_slot(index, replace(slot, custom_override=optional_decimal(value)))
        self._after_change()

    def toggle_bonus(self, active: bool) -> None:
        self.tracker.set_bonus(active)
        if active:
            self._snapshot = replace(self._snapshot, has_bonus=True)
        else:
            self._snapshot = replace(
                self._snapshot,
                has_bonus=False,
                negotiated_value=Decimal("0"),
                bonus_value=Decimal("0"),
            )
        self._after_change()

    def set_rates(self, rates: dict[str, Decimal], reference_currency: str | None = None) -> None:
        self.rates = {code: to_decimal(rate) for code, rate in rates.items()}
        if reference_currency:
            self.reference_currency = reference_currency
        self._after_change()

    # -------------------------------------------------------------------------
    # Calculation
    # -------------------------------------------------------------------------

    def calculate(self) -> CalculationReport:
        """Recalculate the snapshot and reconcile it with the user's intents."""
        snapshot, report = self.processor.calculate(
            self._snapshot,
            self.fees,
            self.rates,
            self.reference_currency,
            self.unit_types,
            logger=self.logger,
        )
        self.last_report = report

        if report.success:
            self._snapshot = self.tracker.reconcile(snapshot, self.fees)
            self.errors = []
        else:
            self.errors = [report.error]

        return report

    def fee_states(self) -> list[dict]:
        """Per configured fee: what the user wants, and where the slot stands."""
        states = []
        for index, fee in enumerate(self.fees):
            slot = self._snapshot.fee_slots[index] if index < len(self._snapshot.fee_slots) else FeeSlot()
            states.append({
                "fee_id": fee.id,
                "name": fee.name,
                "intended": self.tracker.is_fee_intended(fee.id),
                "state": slot.selection.state.value,
                "option_id": slot.selection.option_id,
                "pending": IntentTracker.is_pending(slot),
                "value": slot.computed_value,
            })
        return states

    def reset(self) -> None:
        self._snapshot = self._default_snapshot()
        self.tracker = IntentTracker.from_snapshot(self._snapshot, self.fees)
        self.last_report = None
        self.errors = []

    def to_record(self) -> dict:
        return snapshot_to_record(self._snapshot)
