"""
Domain Models for the Budget Calculation Engine

These dataclasses provide type-safe representations of all budget entities.
All monetary values use Decimal for precision.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from enum import Enum


def to_decimal(value, default: str = "0") -> Decimal:
    """Parse a JSON number (or string) into a Decimal, None becomes the default."""
    if value is None or value == "":
        return Decimal(default)
    return _parse_decimal(value)


def optional_decimal(value) -> Decimal | None:
    if value is None or value == "":
        return None
    return _parse_decimal(value)


def _parse_decimal(value) -> Decimal:
    if isinstance(value, bool):
        raise ValueError(f"Invalid number: {value}")
    try:
        result = Decimal(str(value))
    except InvalidOperation:
        raise ValueError(f"Invalid number: {value!r}")
    if not result.is_finite():
        raise ValueError(f"Invalid number: {value!r}")
    return result


def to_bool(value) -> bool:
    """JSON flag; of the strings only "true", "1" and "yes" count as set."""
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes")
    return bool(value)


def as_mapping(value, name: str) -> dict:
    if not isinstance(value, dict):
        raise ValueError(f"{name} must be an object, got: {type(value).__name__}")
    return value


def as_list(value, name: str) -> list:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValueError(f"{name} must be a list, got: {type(value).__name__}")
    return value


# =============================================================================
# ENUMERATIONS
# =============================================================================


class BudgetMode(str, Enum):
    """Which figure the user typed in."""

    CLIENT = "client"
    MEDIA = "media"

    @classmethod
    def parse(cls, value) -> "BudgetMode":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            raise ValueError(f"Invalid budget_mode: {value}. Must be 'client' or 'media'")


class CalculationType(str, Enum):
    PERCENT_OF_BUDGET = "percent_of_budget"
    PER_UNIT_VOLUME = "per_unit_volume"
    PER_UNIT_COUNT = "per_unit_count"
    FIXED_AMOUNT = "fixed_amount"

    @classmethod
    def coerce(cls, value):
        """
        Map a configured calculation type to its enum member.

        Labels from the fee configuration screens are accepted as aliases.
        Unrecognized values are returned untouched so the fee cascade can
        report them as a configuration error instead of failing on load.
        """
        if isinstance(value, cls):
            return value
        key = str(value).strip()
        if key in _CALCULATION_TYPE_ALIASES:
            return _CALCULATION_TYPE_ALIASES[key]
        try:
            return cls(key.lower())
        except ValueError:
            return key


class CalculationMode(str, Enum):
    DIRECT_ON_MEDIA_BUDGET = "direct_on_media_budget"
    ON_CASCADED_BASE = "on_cascaded_base"

    @classmethod
    def coerce(cls, value):
        if isinstance(value, cls):
            return value
        key = str(value).strip()
        if key in _CALCULATION_MODE_ALIASES:
            return _CALCULATION_MODE_ALIASES[key]
        try:
            return cls(key.lower())
        except ValueError:
            return key


_CALCULATION_TYPE_ALIASES = {
    "Pourcentage budget": CalculationType.PERCENT_OF_BUDGET,
    "Volume d'unité": CalculationType.PER_UNIT_VOLUME,
    "Unités": CalculationType.PER_UNIT_COUNT,
    "Frais fixe": CalculationType.FIXED_AMOUNT,
}

_CALCULATION_MODE_ALIASES = {
    "Directement sur le budget média": CalculationMode.DIRECT_ON_MEDIA_BUDGET,
    "Applicable sur les frais précédents": CalculationMode.ON_CASCADED_BASE,
}


class SelectionState(str, Enum):
    INACTIVE = "inactive"
    ACTIVE_UNSELECTED = "active_unselected"
    SELECTED = "selected"


# =============================================================================
# FEE CONFIGURATION (read-only input)
# =============================================================================


@dataclass
class FeeOption:
    """A selectable option of a client fee."""

    id: str
    value: Decimal
    buffer: Decimal = Decimal("0")  # percent, 5 means +5%
    editable: bool = False
    name: str = ""

    @classmethod
    def from_dict(cls, data: dict) -> "FeeOption":
        data = as_mapping(data, "fee option")
        return cls(
            id=str(data["id"]),
            value=to_decimal(data.get("value")),
            buffer=to_decimal(data.get("buffer")),
            editable=to_bool(data.get("editable", False)),
            name=data.get("name", ""),
        )


@dataclass
class ClientFee:
    """A fee definition from the client's fee configuration."""

    id: str
    order: int
    calculation_type: CalculationType | str
    calculation_mode: CalculationMode | str
    options: list[FeeOption] = field(default_factory=list)
    name: str = ""

    def find_option(self, option_id: str) -> FeeOption | None:
        for option in self.options:
            if option.id == option_id:
                return option
        return None

    @classmethod
    def from_dict(cls, data: dict) -> "ClientFee":
        data = as_mapping(data, "fee")
        return cls(
            id=str(data["id"]),
            order=int(data["order"]),
            calculation_type=CalculationType.coerce(data["calculation_type"]),
            calculation_mode=CalculationMode.coerce(
                data.get("calculation_mode", CalculationMode.DIRECT_ON_MEDIA_BUDGET)
            ),
            options=[FeeOption.from_dict(o) for o in as_list(data.get("options"), "options")],
            name=data.get("name", ""),
        )


def sort_fees(fees: list[ClientFee]) -> list[ClientFee]:
    """Fees in cascade order. Slot N belongs to the N-th fee of this list."""
    return sorted(fees, key=lambda fee: fee.order)


@dataclass
class UnitType:
    """An entry of the unit type catalog."""

    id: str
    display_name: str = ""
    per_mille: bool | None = None  # None = decide from the name

    @property
    def is_per_mille(self) -> bool:
        if self.per_mille is not None:
            return self.per_mille
        label = f"{self.id} {self.display_name}".lower()
        return "impression" in label or "cpm" in label

    @classmethod
    def from_dict(cls, data: dict) -> "UnitType":
        data = as_mapping(data, "unit type")
        per_mille = data.get("per_mille")
        return cls(
            id=str(data["id"]),
            display_name=data.get("display_name", ""),
            per_mille=to_bool(per_mille) if per_mille is not None else None,
        )


# =============================================================================
# BUDGET SNAPSHOT
# =============================================================================


@dataclass(frozen=True)
class FeeSelection:
    """Selection state of a fee slot: inactive, active without option, or an option."""

    state: SelectionState = SelectionState.INACTIVE
    option_id: str | None = None

    @classmethod
    def inactive(cls) -> "FeeSelection":
        return cls(SelectionState.INACTIVE)

    @classmethod
    def unselected(cls) -> "FeeSelection":
        return cls(SelectionState.ACTIVE_UNSELECTED)

    @classmethod
    def option(cls, option_id: str) -> "FeeSelection":
        return cls(SelectionState.SELECTED, option_id)

    @property
    def is_active(self) -> bool:
        return self.state != SelectionState.INACTIVE

    @property
    def has_option(self) -> bool:
        return self.state == SelectionState.SELECTED

    def to_dict(self) -> dict:
        data = {"state": self.state.value}
        if self.option_id is not None:
            data["option_id"] = self.option_id
        return data

    @classmethod
    def from_dict(cls, data) -> "FeeSelection":
        if not data:
            return cls.inactive()
        data = as_mapping(data, "selection")
        state = SelectionState(data.get("state", SelectionState.INACTIVE.value))
        if state == SelectionState.SELECTED:
            option_id = data.get("option_id")
            if not option_id:
                raise ValueError("option_id is required when a fee selection state is 'selected'")
            return cls.option(str(option_id))
        return cls(state)


@dataclass
class FeeSlot:
    """One of the five fee slots of a snapshot."""

    selection: FeeSelection = field(default_factory=FeeSelection.inactive)
    custom_override: Decimal | None = None
    computed_value: Decimal = Decimal("0")
    reference_value: Decimal = Decimal("0")

    def to_dict(self) -> dict:
        return {
            "selection": self.selection.to_dict(),
            "custom_override": str(self.custom_override) if self.custom_override is not None else None,
            "computed_value": str(self.computed_value),
            "reference_value": str(self.reference_value),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "FeeSlot":
        data = as_mapping(data, "fee slot")
        return cls(
            selection=FeeSelection.from_dict(data.get("selection")),
            custom_override=optional_decimal(data.get("custom_override")),
            computed_value=to_decimal(data.get("computed_value")),
            reference_value=to_decimal(data.get("reference_value")),
        )


MAX_FEE_SLOTS = 5


def default_fee_slots() -> list[FeeSlot]:
    return [FeeSlot() for _ in range(MAX_FEE_SLOTS)]


@dataclass
class BudgetSnapshot:
    """
    Computation state of one tactic's budget.

    budget_input is interpreted through budget_mode; every field from
    unit_volume down is derived by the engine.
    """

    budget_mode: BudgetMode = BudgetMode.MEDIA
    budget_input: Decimal = Decimal("0")
    unit_price: Decimal = Decimal("0")
    unit_type: str = ""
    has_bonus: bool = False
    negotiated_value: Decimal = Decimal("0")
    buy_currency: str = "CAD"
    reference_currency: str = "CAD"
    fee_slots: list[FeeSlot] = field(default_factory=default_fee_slots)

    # Derived
    unit_volume: Decimal = Decimal("0")
    bonus_value: Decimal = Decimal("0")
    media_budget: Decimal = Decimal("0")
    client_budget: Decimal = Decimal("0")
    currency_rate: Decimal = Decimal("1")
    media_budget_ref: Decimal = Decimal("0")
    client_budget_ref: Decimal = Decimal("0")
    delta: Decimal = Decimal("0")

    @property
    def total_fees(self) -> Decimal:
        return sum((slot.computed_value for slot in self.fee_slots), Decimal("0"))

    def to_dict(self) -> dict:
        return {
            "budget_mode": self.budget_mode.value,
            "budget_input": str(self.budget_input),
            "unit_price": str(self.unit_price),
            "unit_type": self.unit_type,
            "has_bonus": self.has_bonus,
            "negotiated_value": str(self.negotiated_value),
            "buy_currency": self.buy_currency,
            "reference_currency": self.reference_currency,
            "fee_slots": [slot.to_dict() for slot in self.fee_slots],
            "unit_volume": str(self.unit_volume),
            "bonus_value": str(self.bonus_value),
            "media_budget": str(self.media_budget),
            "client_budget": str(self.client_budget),
            "currency_rate": str(self.currency_rate),
            "media_budget_ref": str(self.media_budget_ref),
            "client_budget_ref": str(self.client_budget_ref),
            "delta": str(self.delta),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "BudgetSnapshot":
        data = as_mapping(data, "snapshot")
        slots = [FeeSlot.from_dict(s) for s in as_list(data.get("fee_slots"), "fee_slots")]
        if len(slots) > MAX_FEE_SLOTS:
            raise ValueError(f"A snapshot holds at most {MAX_FEE_SLOTS} fee slots, got: {len(slots)}")
        slots.extend(FeeSlot() for _ in range(MAX_FEE_SLOTS - len(slots)))
        return cls(
            budget_mode=BudgetMode.parse(data.get("budget_mode", BudgetMode.MEDIA)),
            budget_input=to_decimal(data.get("budget_input")),
            unit_price=to_decimal(data.get("unit_price")),
            unit_type=data.get("unit_type") or "",
            has_bonus=to_bool(data.get("has_bonus", False)),
            negotiated_value=to_decimal(data.get("negotiated_value")),
            buy_currency=data.get("buy_currency") or "CAD",
            reference_currency=data.get("reference_currency") or "CAD",
            fee_slots=slots,
            unit_volume=to_decimal(data.get("unit_volume")),
            bonus_value=to_decimal(data.get("bonus_value")),
            media_budget=to_decimal(data.get("media_budget")),
            client_budget=to_decimal(data.get("client_budget")),
            currency_rate=to_decimal(data.get("currency_rate"), default="1"),
            media_budget_ref=to_decimal(data.get("media_budget_ref")),
            client_budget_ref=to_decimal(data.get("client_budget_ref")),
            delta=to_decimal(data.get("delta")),
        )


@dataclass
class BudgetRequest:
    """Complete input for one calculation."""

    snapshot: BudgetSnapshot
    fees: list[ClientFee] = field(default_factory=list)
    rates: dict[str, Decimal] = field(default_factory=dict)
    reference_currency: str = "CAD"
    unit_types: list[UnitType] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict) -> "BudgetRequest":
        data = as_mapping(data, "request")
        rates = data.get("rates") or {}
        snapshot = BudgetSnapshot.from_dict(data["snapshot"])
        return cls(
            snapshot=snapshot,
            fees=[ClientFee.from_dict(f) for f in as_list(data.get("fees"), "fees")],
            rates={code: to_decimal(rate) for code, rate in as_mapping(rates, "rates").items()},
            reference_currency=data.get("reference_currency") or snapshot.reference_currency,
            unit_types=[UnitType.from_dict(u) for u in as_list(data.get("unit_types"), "unit_types")],
        )


# =============================================================================
# OUTPUT / RESULT MODELS
# =============================================================================


@dataclass
class Advisory:
    """A recoverable condition reported alongside a usable result."""

    code: str
    message: str

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message}


@dataclass
class CurrencyResolution:
    rate: Decimal = Decimal("1")
    conversion_available: bool = True


@dataclass
class VolumeCalculation:
    unit_volume: Decimal = Decimal("0")
    effective_budget: Decimal = Decimal("0")
    is_determined: bool = True
    per_mille: bool = False


@dataclass
class BonusCalculation:
    bonus_value: Decimal = Decimal("0")
    negotiated_value: Decimal = Decimal("0")
    is_pending: bool = False
    validation_error: str | None = None


@dataclass
class FeeCalculationDetail:
    """How one fee slot was evaluated."""

    slot_number: int
    fee_id: str
    fee_name: str
    calculation_type: CalculationType | str
    selection: FeeSelection
    adjusted_value: Decimal = Decimal("0")
    applied_on: Decimal = Decimal("0")
    amount: Decimal = Decimal("0")
    description: str = ""
    is_pending: bool = False


@dataclass
class FeeCascadeResult:
    details: list[FeeCalculationDetail] = field(default_factory=list)
    total_fees: Decimal = Decimal("0")
    cumulative_base: Decimal = Decimal("0")
    unrecognized_types: list[str] = field(default_factory=list)

    def amount_for_slot(self, slot_number: int) -> Decimal:
        for detail in self.details:
            if detail.slot_number == slot_number:
                return detail.amount
        return Decimal("0")


@dataclass
class BudgetEvaluation:
    """Bonus, volume and fees evaluated for one candidate media budget."""

    media_budget: Decimal
    bonus: BonusCalculation
    volume: VolumeCalculation
    fees: FeeCascadeResult

    @property
    def client_budget(self) -> Decimal:
        return self.media_budget + self.fees.total_fees


@dataclass
class ConvergenceInfo:
    has_converged: bool = True
    final_difference: Decimal = Decimal("0")
    iterations: int = 1
    tolerance: Decimal = Decimal("0")
    target_budget: Decimal = Decimal("0")
    actual_calculated_total: Decimal = Decimal("0")


@dataclass
class CalculationReport:
    success: bool
    error: str | None = None
    convergence: ConvergenceInfo | None = None
    advisories: list[Advisory] = field(default_factory=list)

    @property
    def has_converged(self) -> bool:
        return self.convergence.has_converged if self.convergence else self.success

    def advisory_codes(self) -> list[str]:
        return [a.code for a in self.advisories]


@dataclass
class CalculationContext:
    """
    Holds all intermediate state during one calculation.
    This is the "bag" that flows through the pipeline.
    """

    # Input (immutable during processing)
    snapshot: BudgetSnapshot
    fees: list[ClientFee]
    rates: dict[str, Decimal]
    reference_currency: str
    unit_type: UnitType | None
    logger: logging.Logger

    # Step results (populated as we go)
    currency: CurrencyResolution = field(default_factory=CurrencyResolution)
    evaluation: BudgetEvaluation | None = None
    convergence: ConvergenceInfo | None = None
    advisories: list[Advisory] = field(default_factory=list)

    @property
    def per_mille(self) -> bool:
        return self.unit_type is not None and self.unit_type.is_per_mille

    def advise(self, code: str, message: str) -> None:
        self.logger.warning(f"{code}: {message}")
        self.advisories.append(Advisory(code=code, message=message))


@dataclass
class BudgetResult:
    """Final output of a calculation."""

    snapshot: BudgetSnapshot
    report: CalculationReport
    calculations: dict = field(default_factory=dict)
