"""
Unit Tests for Convergence Solver

Client mode must find the media budget whose media + fees total matches the
entered client budget.
"""

import logging
from decimal import Decimal

import pytest

from budget_engine.calculators import ConvergenceSolver
from budget_engine.models import (
    BudgetMode,
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
from budget_engine.validators import FeeConfigurationError


@pytest.fixture
def cascade_fees():
    return [
        ClientFee(
            id="platform", order=1,
            calculation_type=CalculationType.PERCENT_OF_BUDGET,
            calculation_mode=CalculationMode.DIRECT_ON_MEDIA_BUDGET,
            options=[FeeOption(id="p", value=Decimal("0.10"))],
        ),
        ClientFee(
            id="agency", order=2,
            calculation_type=CalculationType.PERCENT_OF_BUDGET,
            calculation_mode=CalculationMode.ON_CASCADED_BASE,
            options=[FeeOption(id="a", value=Decimal("0.10"))],
        ),
    ]


def make_context(mode, budget_input, fees, selections, unit_price="0"):
    slots = default_fee_slots()
    for index, option_id in enumerate(selections):
        slots[index] = FeeSlot(selection=FeeSelection.option(option_id))
    return CalculationContext(
        snapshot=BudgetSnapshot(
            budget_mode=mode,
            budget_input=Decimal(budget_input),
            unit_price=Decimal(unit_price),
            fee_slots=slots,
        ),
        fees=fees,
        rates={},
        reference_currency="CAD",
        unit_type=None,
        logger=logging.getLogger("tests.convergence"),
    )


class TestMediaMode:

    def test_single_pass(self, cascade_fees):
        ctx = make_context(BudgetMode.MEDIA, "1000", cascade_fees, ["p", "a"])
        evaluation, info = ConvergenceSolver().solve(ctx)

        assert evaluation.media_budget == Decimal("1000")
        assert evaluation.client_budget == Decimal("1210")
        assert info.has_converged is True
        assert info.iterations == 1
        assert info.final_difference == Decimal("0")


class TestClientMode:

    def test_finds_media_budget(self, cascade_fees):
        """client = 1.21 × media, so 1210 client → 1000 media"""
        ctx = make_context(BudgetMode.CLIENT, "1210", cascade_fees, ["p", "a"])
        solver = ConvergenceSolver()
        evaluation, info = solver.solve(ctx)

        assert info.has_converged is True
        assert abs(info.final_difference) < solver.tolerance
        assert abs(evaluation.media_budget - Decimal("1000")) < Decimal("0.01")
        assert info.target_budget == Decimal("1210")
        assert ctx.advisories == []

    def test_no_fees_media_equals_client(self):
        ctx = make_context(BudgetMode.CLIENT, "5000", [], [])
        evaluation, info = ConvergenceSolver().solve(ctx)

        assert info.has_converged is True
        assert abs(evaluation.media_budget - Decimal("5000")) < Decimal("0.005")

    def test_fixed_fee(self):
        fees = [
            ClientFee(
                id="setup", order=1,
                calculation_type=CalculationType.FIXED_AMOUNT,
                calculation_mode=CalculationMode.DIRECT_ON_MEDIA_BUDGET,
                options=[FeeOption(id="s", value=Decimal("500"))],
            )
        ]
        ctx = make_context(BudgetMode.CLIENT, "10000", fees, ["s"])
        evaluation, info = ConvergenceSolver().solve(ctx)

        assert info.has_converged is True
        assert abs(evaluation.media_budget - Decimal("9500")) < Decimal("0.005")

    def test_zero_target(self):
        ctx = make_context(BudgetMode.CLIENT, "0", [], [])
        evaluation, info = ConvergenceSolver().solve(ctx)

        assert info.has_converged is True
        assert evaluation.media_budget == Decimal("0")

    def test_target_below_fee_floor(self):
        """A 500 fixed fee cannot fit in a 300 client budget."""
        fees = [
            ClientFee(
                id="setup", order=1,
                calculation_type=CalculationType.FIXED_AMOUNT,
                calculation_mode=CalculationMode.DIRECT_ON_MEDIA_BUDGET,
                options=[FeeOption(id="s", value=Decimal("500"))],
            )
        ]
        ctx = make_context(BudgetMode.CLIENT, "300", fees, ["s"])
        evaluation, info = ConvergenceSolver().solve(ctx)

        assert evaluation.media_budget == Decimal("0")
        assert info.has_converged is False
        assert info.final_difference == Decimal("200")
        assert "convergence_not_reached" in [a.code for a in ctx.advisories]

    def test_iteration_bound(self, cascade_fees):
        ctx = make_context(BudgetMode.CLIENT, "1210", cascade_fees, ["p", "a"])
        evaluation, info = ConvergenceSolver(max_iterations=3).solve(ctx)

        assert info.has_converged is False
        assert info.iterations == 3
        assert info.actual_calculated_total == evaluation.client_budget
        assert "convergence_not_reached" in [a.code for a in ctx.advisories]

    def test_steep_per_unit_volume_fee(self):
        """One media dollar buys 100M units at 1 per unit, so client ≈ media × 100,000,001."""
        fees = [
            ClientFee(
                id="adserving", order=1,
                calculation_type=CalculationType.PER_UNIT_VOLUME,
                calculation_mode=CalculationMode.DIRECT_ON_MEDIA_BUDGET,
                options=[FeeOption(id="v", value=Decimal("1"))],
            )
        ]
        ctx = make_context(BudgetMode.CLIENT, "1000000", fees, ["v"], unit_price="0.00000001")
        evaluation, info = ConvergenceSolver().solve(ctx)

        assert info.has_converged is True
        assert abs(evaluation.client_budget - Decimal("1000000")) < Decimal("0.005")
        assert info.iterations <= ConvergenceSolver.MAX_ITERATIONS

    def test_steep_fee_not_reached_with_few_iterations(self):
        fees = [
            ClientFee(
                id="adserving", order=1,
                calculation_type=CalculationType.PER_UNIT_VOLUME,
                calculation_mode=CalculationMode.DIRECT_ON_MEDIA_BUDGET,
                options=[FeeOption(id="v", value=Decimal("1"))],
            )
        ]
        ctx = make_context(BudgetMode.CLIENT, "1000000", fees, ["v"], unit_price="0.00000001")
        _, info = ConvergenceSolver(max_iterations=40).solve(ctx)

        assert info.has_converged is False

    def test_unknown_type_aborts(self):
        fees = [
            ClientFee(
                id="mystery", order=1,
                calculation_type="per_click",
                calculation_mode=CalculationMode.DIRECT_ON_MEDIA_BUDGET,
                options=[FeeOption(id="m", value=Decimal("1"))],
            )
        ]
        ctx = make_context(BudgetMode.CLIENT, "1000", fees, ["m"])

        with pytest.raises(FeeConfigurationError):
            ConvergenceSolver().solve(ctx)


class TestSolverSettings:

    def test_defaults(self):
        solver = ConvergenceSolver()
        assert solver.tolerance == Decimal("0.005")
        assert solver.max_iterations == 100

    def test_rejects_non_positive_tolerance(self):
        with pytest.raises(ValueError):
            ConvergenceSolver(tolerance=Decimal("0"))

    def test_rejects_zero_iterations(self):
        with pytest.raises(ValueError):
            ConvergenceSolver(max_iterations=0)

    def test_from_env(self):
        solver = ConvergenceSolver.from_env({
            "BUDGET_SOLVER_TOLERANCE": "0.01",
            "BUDGET_SOLVER_MAX_ITERATIONS": "20",
        })
        assert solver.tolerance == Decimal("0.01")
        assert solver.max_iterations == 20

    def test_from_env_without_settings(self):
        solver = ConvergenceSolver.from_env({})
        assert solver.tolerance == ConvergenceSolver.TOLERANCE
        assert solver.max_iterations == ConvergenceSolver.MAX_ITERATIONS
