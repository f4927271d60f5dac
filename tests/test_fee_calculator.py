"""
Unit Tests for Fee Cascade Calculator

Tests verify calculations against known expected values.
"""

import logging
from decimal import Decimal

import pytest

from budget_engine.calculators.fees import FeeCascadeCalculator, apply_buffer, quantize_money, quantize_units
from budget_engine.models import (
    BudgetSnapshot,
    CalculationContext,
    CalculationMode,
    CalculationType,
    ClientFee,
    FeeOption,
    FeeSelection,
    FeeSlot,
    default_fee_slots,
)


def make_fee(fee_id, order, calc_type, mode=CalculationMode.DIRECT_ON_MEDIA_BUDGET, options=None):
    return ClientFee(
        id=fee_id,
        order=order,
        calculation_type=calc_type,
        calculation_mode=mode,
        options=options or [FeeOption(id=f"{fee_id}-opt", value=Decimal("0.10"))],
        name=fee_id.title(),
    )


def make_context(fees, slots):
    padded = list(slots) + default_fee_slots()[len(slots):]
    return CalculationContext(
        snapshot=BudgetSnapshot(fee_slots=padded),
        fees=fees,
        rates={},
        reference_currency="CAD",
        unit_type=None,
        logger=logging.getLogger("tests.fees"),
    )


def selected(option_id, override=None):
    return FeeSlot(selection=FeeSelection.option(option_id), custom_override=override)


class TestQuantize:
    """Test the rounding utilities."""

    def test_money_rounds_half_up(self):
        assert quantize_money(Decimal("0.005")) == Decimal("0.01")

    def test_money_rounds_down_below_half(self):
        assert quantize_money(Decimal("0.004")) == Decimal("0.00")

    def test_money_truncates_extra_precision(self):
        assert quantize_money(Decimal("123.456789")) == Decimal("123.46")

    def test_units_round_to_whole(self):
        assert quantize_units(Decimal("199999.5")) == Decimal("200000")
        assert quantize_units(Decimal("10.4")) == Decimal("10")


class TestBuffer:

    def test_no_buffer(self):
        assert apply_buffer(Decimal("0.10"), Decimal("0")) == Decimal("0.10")

    def test_five_percent_buffer(self):
        """0.10 with a 5% buffer = 0.105"""
        assert apply_buffer(Decimal("0.10"), Decimal("5")) == Decimal("0.105")

    def test_buffer_on_fixed_amount(self):
        assert apply_buffer(Decimal("200"), Decimal("10")) == Decimal("220")


class TestCascadeOrdering:
    """Fees are evaluated by order; cascaded fees see the earlier fees."""

    @pytest.fixture
    def calculator(self):
        return FeeCascadeCalculator()

    @pytest.fixture
    def fees(self):
        return [
            make_fee("agency", 2, CalculationType.PERCENT_OF_BUDGET, CalculationMode.ON_CASCADED_BASE),
            make_fee("platform", 1, CalculationType.PERCENT_OF_BUDGET, CalculationMode.DIRECT_ON_MEDIA_BUDGET),
        ]

    def test_direct_then_cascaded(self, calculator, fees):
        """fee1 = 1000 × 10% = 100, fee2 = (1000 + 100) × 10% = 110"""
        ctx = make_context(fees, [selected("platform-opt"), selected("agency-opt")])
        result = calculator.calculate(ctx, Decimal("1000"), Decimal("0"))

        assert result.amount_for_slot(1) == Decimal("100")
        assert result.amount_for_slot(2) == Decimal("110")
        assert result.total_fees == Decimal("210")
        assert result.cumulative_base == Decimal("1210")

    def test_slots_follow_fee_order_not_list_order(self, calculator, fees):
        ctx = make_context(fees, [selected("platform-opt"), selected("agency-opt")])
        result = calculator.calculate(ctx, Decimal("1000"), Decimal("0"))

        assert [d.fee_id for d in result.details] == ["platform", "agency"]

    def test_inactive_earlier_fee_adds_nothing_to_base(self, calculator, fees):
        ctx = make_context(fees, [FeeSlot(), selected("agency-opt")])
        result = calculator.calculate(ctx, Decimal("1000"), Decimal("0"))

        assert result.amount_for_slot(1) == Decimal("0")
        assert result.amount_for_slot(2) == Decimal("100")

    def test_direct_fee_ignores_earlier_fees(self, calculator):
        fees = [
            make_fee("fixed", 1, CalculationType.FIXED_AMOUNT, options=[FeeOption(id="f", value=Decimal("500"))]),
            make_fee("direct", 2, CalculationType.PERCENT_OF_BUDGET),
        ]
        ctx = make_context(fees, [selected("f"), selected("direct-opt")])
        result = calculator.calculate(ctx, Decimal("1000"), Decimal("0"))

        assert result.amount_for_slot(2) == Decimal("100")
        assert result.total_fees == Decimal("600")

    def test_percent_with_buffer(self, calculator):
        fees = [
            make_fee(
                "agency", 1, CalculationType.PERCENT_OF_BUDGET,
                options=[FeeOption(id="a", value=Decimal("0.10"), buffer=Decimal("5"))],
            )
        ]
        ctx = make_context(fees, [selected("a")])
        result = calculator.calculate(ctx, Decimal("1000"), Decimal("0"))

        assert result.amount_for_slot(1) == Decimal("105")


class TestSelectionStates:

    @pytest.fixture
    def calculator(self):
        return FeeCascadeCalculator()

    def test_inactive_slot_is_zero_and_not_pending(self, calculator):
        fees = [make_fee("agency", 1, CalculationType.PERCENT_OF_BUDGET)]
        result = calculator.calculate(make_context(fees, [FeeSlot()]), Decimal("1000"), Decimal("0"))

        detail = result.details[0]
        assert detail.amount == Decimal("0")
        assert detail.is_pending is False
        assert detail.selection.is_active is False

    def test_active_without_option_is_pending(self, calculator):
        fees = [make_fee("agency", 1, CalculationType.PERCENT_OF_BUDGET)]
        slots = [FeeSlot(selection=FeeSelection.unselected())]
        result = calculator.calculate(make_context(fees, slots), Decimal("1000"), Decimal("0"))

        detail = result.details[0]
        assert detail.amount == Decimal("0")
        assert detail.is_pending is True
        assert detail.selection.is_active is True

    def test_pending_per_unit_fee_stays_active(self, calculator):
        """A per-volume fee with no volume yet is 0 but still active."""
        fees = [
            make_fee("tracking", 1, CalculationType.PER_UNIT_VOLUME,
                     options=[FeeOption(id="t", value=Decimal("0.002"))]),
        ]
        result = calculator.calculate(make_context(fees, [selected("t")]), Decimal("1000"), Decimal("0"))

        detail = result.details[0]
        assert detail.amount == Decimal("0")
        assert detail.is_pending is True
        assert detail.selection.has_option is True


class TestCalculationTypes:

    @pytest.fixture
    def calculator(self):
        return FeeCascadeCalculator()

    def test_per_unit_volume(self, calculator):
        """0.002 × 200,000 units = 400"""
        fees = [
            make_fee("tracking", 1, CalculationType.PER_UNIT_VOLUME,
                     options=[FeeOption(id="t", value=Decimal("0.002"))]),
        ]
        result = calculator.calculate(make_context(fees, [selected("t")]), Decimal("1000"), Decimal("200000"))

        assert result.amount_for_slot(1) == Decimal("400")
        assert result.details[0].is_pending is False

    def test_per_unit_volume_override_when_editable(self, calculator):
        fees = [
            make_fee("tracking", 1, CalculationType.PER_UNIT_VOLUME,
                     options=[FeeOption(id="t", value=Decimal("0.5"), editable=True)]),
        ]
        ctx = make_context(fees, [selected("t", override=Decimal("100"))])
        result = calculator.calculate(ctx, Decimal("1000"), Decimal("200000"))

        assert result.amount_for_slot(1) == Decimal("50")

    def test_per_unit_volume_override_ignored_when_not_editable(self, calculator):
        fees = [
            make_fee("tracking", 1, CalculationType.PER_UNIT_VOLUME,
                     options=[FeeOption(id="t", value=Decimal("0.5"))]),
        ]
        ctx = make_context(fees, [selected("t", override=Decimal("100"))])
        result = calculator.calculate(ctx, Decimal("1000"), Decimal("10"))

        assert result.amount_for_slot(1) == Decimal("5")

    def test_per_unit_count_defaults_to_one(self, calculator):
        fees = [
            make_fee("report", 1, CalculationType.PER_UNIT_COUNT,
                     options=[FeeOption(id="r", value=Decimal("250"))]),
        ]
        result = calculator.calculate(make_context(fees, [selected("r")]), Decimal("1000"), Decimal("0"))

        assert result.amount_for_slot(1) == Decimal("250")

    def test_per_unit_count_uses_override(self, calculator):
        fees = [
            make_fee("report", 1, CalculationType.PER_UNIT_COUNT,
                     options=[FeeOption(id="r", value=Decimal("250"))]),
        ]
        ctx = make_context(fees, [selected("r", override=Decimal("3"))])
        result = calculator.calculate(ctx, Decimal("1000"), Decimal("0"))

        assert result.amount_for_slot(1) == Decimal("750")

    def test_fixed_amount_with_buffer(self, calculator):
        fees = [
            make_fee("setup", 1, CalculationType.FIXED_AMOUNT,
                     options=[FeeOption(id="s", value=Decimal("200"), buffer=Decimal("10"))]),
        ]
        result = calculator.calculate(make_context(fees, [selected("s")]), Decimal("1000"), Decimal("0"))

        assert result.amount_for_slot(1) == Decimal("220")

    def test_fixed_amount_override_when_editable(self, calculator):
        fees = [
            make_fee("setup", 1, CalculationType.FIXED_AMOUNT,
                     options=[FeeOption(id="s", value=Decimal("200"), editable=True)]),
        ]
        ctx = make_context(fees, [selected("s", override=Decimal("350"))])
        result = calculator.calculate(ctx, Decimal("1000"), Decimal("0"))

        assert result.amount_for_slot(1) == Decimal("350")

    def test_percent_override_when_editable(self, calculator):
        fees = [
            make_fee("agency", 1, CalculationType.PERCENT_OF_BUDGET,
                     options=[FeeOption(id="a", value=Decimal("0.10"), editable=True)]),
        ]
        ctx = make_context(fees, [selected("a", override=Decimal("0.15"))])
        result = calculator.calculate(ctx, Decimal("1000"), Decimal("0"))

        assert result.amount_for_slot(1) == Decimal("150")

    def test_unknown_type_is_reported(self, calculator):
        fees = [make_fee("mystery", 1, "per_click")]
        result = calculator.calculate(make_context(fees, [selected("mystery-opt")]), Decimal("1000"), Decimal("0"))

        assert result.unrecognized_types == ["per_click"]
        assert result.amount_for_slot(1) == Decimal("0")

    def test_more_slots_than_fees(self, calculator):
        fees = [make_fee("agency", 1, CalculationType.PERCENT_OF_BUDGET)]
        ctx = make_context(fees, [selected("agency-opt"), FeeSlot(selection=FeeSelection.unselected())])
        result = calculator.calculate(ctx, Decimal("1000"), Decimal("0"))

        assert len(result.details) == 1
        assert result.total_fees == Decimal("100")
