"""
Convergence Solver

Resolves the circular dependency between client budget, fees and media budget.

Media mode is direct: the media budget is the input and the client budget
follows. Client mode searches the media budget whose client total
(media + fees) matches the input. Fees never decrease when the media budget
grows, so media + fees is strictly increasing and bisection always narrows
onto the answer.
"""

import os
from decimal import Decimal

from ..models import BudgetEvaluation, BudgetMode, CalculationContext, ConvergenceInfo, to_decimal
from ..validators import FeeConfigurationError
from .bonus import BonificationCalculator
from .fees import FeeCascadeCalculator
from .volume import UnitVolumeCalculator


class ConvergenceSolver:
    """Finds the media budget and fees for the snapshot's budget mode."""

    TOLERANCE = Decimal('0.005')
    MAX_ITERATIONS = 100

    def __init__(
        self,
        tolerance: Decimal | None = None,
        max_iterations: int | None = None,
        bonus_calculator: BonificationCalculator | None = None,
        volume_calculator: UnitVolumeCalculator | None = None,
        fee_calculator: FeeCascadeCalculator | None = None,
    ):
        self.tolerance = Decimal(str(tolerance)) if tolerance is not None else self.TOLERANCE
        self.max_iterations = max_iterations if max_iterations is not None else self.MAX_ITERATIONS
        if self.tolerance <= 0:
            raise ValueError(f"tolerance must be positive, got: {self.tolerance}")
        if self.max_iterations < 1:
            raise ValueError(f"max_iterations must be at least 1, got: {self.max_iterations}")
        self.bonus_calculator = bonus_calculator or BonificationCalculator()
        self.volume_calculator = volume_calculator or UnitVolumeCalculator()
        self.fee_calculator = fee_calculator or FeeCascadeCalculator()

    @classmethod
    def from_env(cls, environ=None) -> "ConvergenceSolver":
        """Solver honouring BUDGET_SOLVER_TOLERANCE / BUDGET_SOLVER_MAX_ITERATIONS when set."""
        environ = os.environ if environ is None else environ
        tolerance = environ.get("BUDGET_SOLVER_TOLERANCE")
        max_iterations = environ.get("BUDGET_SOLVER_MAX_ITERATIONS")
        return cls(
            tolerance=to_decimal(tolerance) if tolerance else None,
            max_iterations=int(max_iterations) if max_iterations else None,
        )

    def solve(self, ctx: CalculationContext) -> tuple[BudgetEvaluation, ConvergenceInfo]:
        if ctx.snapshot.budget_mode == BudgetMode.CLIENT:
            return self._solve_client_total(ctx)
        return self._solve_media_total(ctx)

    def evaluate(self, ctx: CalculationContext, media_budget: Decimal) -> BudgetEvaluation:
        """Run bonus → volume → fee cascade for one candidate media budget."""
        snapshot = ctx.snapshot
        bonus = self.bonus_calculator.calculate(snapshot.has_bonus, snapshot.negotiated_value, media_budget)
        volume = self.volume_calculator.calculate(
            media_budget + bonus.bonus_value,
            snapshot.unit_price,
            ctx.per_mille,
        )
        fees = self.fee_calculator.calculate(ctx, media_budget, volume.unit_volume)

        if fees.unrecognized_types:
            raise FeeConfigurationError(
                f"Unsupported fee calculation type: {', '.join(fees.unrecognized_types)}"
            )

        return BudgetEvaluation(media_budget=media_budget, bonus=bonus, volume=volume, fees=fees)

    def _solve_media_total(self, ctx: CalculationContext) -> tuple[BudgetEvaluation, ConvergenceInfo]:
        media_budget = ctx.snapshot.budget_input
        evaluation = self.evaluate(ctx, media_budget)
        return evaluation, ConvergenceInfo(
            has_converged=True,
            final_difference=Decimal("0"),
            iterations=1,
            tolerance=self.tolerance,
            target_budget=media_budget,
            actual_calculated_total=evaluation.client_budget,
        )

    def _solve_client_total(self, ctx: CalculationContext) -> tuple[BudgetEvaluation, ConvergenceInfo]:
        """
        Bisection on the media budget.

        1. Evaluate media = 0. If its fees alone already reach the target,
           there is nothing to search: 0 is the best possible candidate.
        2. Evaluate media = target (doubling it while it still falls short,
           which only happens with negative fee options).
        3. Halve the bracket until the client total is within tolerance or
           the iteration bound is hit; then return the best candidate seen.
        """
        target = ctx.snapshot.budget_input
        search = _Search(self, ctx, target)

        low = Decimal("0")
        low_eval = search.step(low)
        if search.converged or low_eval.client_budget >= target:
            return search.finish()

        high = target if target > 0 else Decimal("1")
        high_eval = search.step(high)
        while high_eval.client_budget < target and not search.exhausted:
            low = high
            high = high * 2
            high_eval = search.step(high)

        while not search.converged and not search.exhausted:
            middle = (low + high) / 2
            evaluation = search.step(middle)
            if evaluation.client_budget < target:
                low = middle
            else:
                high = middle

        return search.finish()


class _Search:
    """Iteration bookkeeping for the client-mode bisection."""

    def __init__(self, solver: ConvergenceSolver, ctx: CalculationContext, target: Decimal):
        self.solver = solver
        self.ctx = ctx
        self.target = target
        self.iterations = 0
        self.best: BudgetEvaluation | None = None
        self.best_difference: Decimal | None = None

    @property
    def converged(self) -> bool:
        return self.best_difference is not None and abs(self.best_difference) < self.solver.tolerance

    @property
    def exhausted(self) -> bool:
        return self.iterations >= self.solver.max_iterations

    def step(self, media_budget: Decimal) -> BudgetEvaluation:
        self.iterations += 1
        evaluation = self.solver.evaluate(self.ctx, media_budget)
        difference = evaluation.client_budget - self.target
        self.ctx.logger.debug(
            f"Iteration {self.iterations}: media {media_budget:.4f} → client "
            f"{evaluation.client_budget:.4f} (gap {difference:.4f})"
        )
        if self.best_difference is None or abs(difference) < abs(self.best_difference):
            self.best = evaluation
            self.best_difference = difference
        return evaluation

    def finish(self) -> tuple[BudgetEvaluation, ConvergenceInfo]:
        info = ConvergenceInfo(
            has_converged=self.converged,
            final_difference=self.best_difference,
            iterations=self.iterations,
            tolerance=self.solver.tolerance,
            target_budget=self.target,
            actual_calculated_total=self.best.client_budget,
        )
        if info.has_converged:
            self.ctx.logger.debug(f"Converged after {self.iterations} iterations")
        else:
            self.ctx.advise(
                "convergence_not_reached",
                f"Client budget {self.target:.2f} not reached after {self.iterations} iterations, "
                f"remaining gap {self.best_difference:.2f}",
            )
        return self.best, info
