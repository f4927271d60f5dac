"""
Stored Record Codec

Maps a BudgetSnapshot to and from the flat record stored for each tactic.
Older records used different field names; those are read as fallbacks so a
stored tactic always reloads.
"""

from dataclasses import replace
from decimal import Decimal

from .models import (
    MAX_FEE_SLOTS,
    Advisory,
    BudgetMode,
    BudgetSnapshot,
    ClientFee,
    FeeSelection,
    FeeSlot,
    optional_decimal,
    sort_fees,
    to_bool,
    to_decimal,
)

# Stored value of a fee that is switched on while no option is chosen yet
ACTIVE_NO_SELECTION = "ACTIVE_NO_SELECTION"


def _number(value: Decimal | None) -> float | None:
    return float(value) if value is not None else None


def _first(record: dict, *keys, default=None):
    """First truthy value among the keys, like the stored data's own fallbacks."""
    for key in keys:
        value = record.get(key)
        if value:
            return value
    return default


def selection_to_record(selection: FeeSelection) -> str:
    if selection.has_option:
        return selection.option_id
    if selection.is_active:
        return ACTIVE_NO_SELECTION
    return ""


def selection_from_record(value) -> FeeSelection:
    if not value:
        return FeeSelection.inactive()
    if value == ACTIVE_NO_SELECTION:
        return FeeSelection.unselected()
    return FeeSelection.option(str(value))


def snapshot_to_record(snapshot: BudgetSnapshot) -> dict:
    """Flatten a snapshot into the stored record layout."""
    record = {
        "TC_BudgetChoice": snapshot.budget_mode.value,
        "TC_BudgetInput": float(snapshot.budget_input),
        "TC_Unit_Price": float(snapshot.unit_price),
        "TC_Unit_Volume": float(snapshot.unit_volume),
        "TC_Unit_Type": snapshot.unit_type,
        "TC_Has_Bonus": snapshot.has_bonus,
        "TC_Media_Value": float(snapshot.negotiated_value),
        "TC_Bonification": float(snapshot.bonus_value),
        "TC_Media_Budget": float(snapshot.media_budget),
        "TC_Client_Budget": float(snapshot.client_budget),
        "TC_Currency_Rate": float(snapshot.currency_rate),
        "TC_BuyCurrency": snapshot.buy_currency,
        "TC_Delta": float(snapshot.delta),
        "TC_Media_Budget_RefCurrency": float(snapshot.media_budget_ref),
        "TC_Client_Budget_RefCurrency": float(snapshot.client_budget_ref),
    }

    for number in range(1, MAX_FEE_SLOTS + 1):
        slot = snapshot.fee_slots[number - 1] if number <= len(snapshot.fee_slots) else FeeSlot()
        if slot.selection.is_active:
            record[f"TC_Fee_{number}_Option"] = selection_to_record(slot.selection)
            record[f"TC_Fee_{number}_Volume"] = _number(slot.custom_override)
            record[f"TC_Fee_{number}_Value"] = float(slot.computed_value)
            record[f"TC_Fee_{number}_RefCurrency"] = float(slot.reference_value)
        else:
            # Clear values of inactive fees
            record[f"TC_Fee_{number}_Option"] = ""
            record[f"TC_Fee_{number}_Volume"] = 0
            record[f"TC_Fee_{number}_Value"] = 0
            record[f"TC_Fee_{number}_RefCurrency"] = 0

    return record


def snapshot_from_record(record: dict, reference_currency: str = "CAD") -> BudgetSnapshot:
    """Rebuild a snapshot from a stored record."""
    negotiated = to_decimal(_first(record, "TC_Media_Value", "TC_Real_Value", default=0))
    has_bonus = to_bool(record.get("TC_Has_Bonus"))

    slots = []
    for number in range(1, MAX_FEE_SLOTS + 1):
        selection = selection_from_record(record.get(f"TC_Fee_{number}_Option"))
        if not selection.is_active:
            slots.append(FeeSlot())
            continue
        slots.append(
            FeeSlot(
                selection=selection,
                custom_override=optional_decimal(record.get(f"TC_Fee_{number}_Volume")),
                computed_value=to_decimal(record.get(f"TC_Fee_{number}_Value")),
                reference_value=to_decimal(record.get(f"TC_Fee_{number}_RefCurrency")),
            )
        )

    return BudgetSnapshot(
        budget_mode=BudgetMode.parse(_first(record, "TC_BudgetChoice", "TC_Budget_Mode", default="media")),
        budget_input=to_decimal(_first(record, "TC_BudgetInput", "TC_Budget", default=0)),
        unit_price=to_decimal(_first(record, "TC_Unit_Price", "TC_Cost_Per_Unit", default=0)),
        unit_type=record.get("TC_Unit_Type") or "",
        has_bonus=has_bonus or negotiated > 0,
        negotiated_value=negotiated,
        buy_currency=_first(record, "TC_BuyCurrency", "TC_Currency", default="CAD"),
        reference_currency=reference_currency,
        fee_slots=slots,
        unit_volume=to_decimal(record.get("TC_Unit_Volume")),
        bonus_value=to_decimal(_first(record, "TC_Bonification", "TC_Bonus_Value", default=0)),
        media_budget=to_decimal(record.get("TC_Media_Budget")),
        client_budget=to_decimal(record.get("TC_Client_Budget")),
        currency_rate=to_decimal(record.get("TC_Currency_Rate") or 1),
        media_budget_ref=to_decimal(record.get("TC_Media_Budget_RefCurrency")),
        client_budget_ref=to_decimal(record.get("TC_Client_Budget_RefCurrency")),
        delta=to_decimal(record.get("TC_Delta")),
    )


def reconcile_selections(snapshot: BudgetSnapshot, fees: list[ClientFee]) -> tuple[BudgetSnapshot, list[Advisory]]:
    """
    Switch off selections the current fee configuration can no longer honour.

    A stored tactic may point at an option (or a fee) that has since been
    removed. Such slots are made inactive so the snapshot can be recalculated
    instead of failing validation.
    """
    ordered = sort_fees(fees)
    advisories = []
    slots = []

    for number, slot in enumerate(snapshot.fee_slots, start=1):
        fee = ordered[number - 1] if number <= len(ordered) else None

        if slot.selection.is_active and fee is None:
            advisories.append(Advisory(
                code="stale_fee_selection",
                message=f"Fee {number} no longer exists, it has been deactivated",
            ))
            slots.append(FeeSlot())
        elif slot.selection.has_option and fee.find_option(slot.selection.option_id) is None:
            advisories.append(Advisory(
                code="stale_fee_selection",
                message=(
                    f"Option {slot.selection.option_id} of fee '{fee.name or fee.id}' no longer exists, "
                    f"the fee has been deactivated"
                ),
            ))
            slots.append(FeeSlot())
        else:
            slots.append(slot)

    return replace(snapshot, fee_slots=slots), advisories
