"""
Budget Processor - Main Orchestrator

Coordinates the budget calculation pipeline through discrete, testable steps.
"""

import json
import logging
from decimal import Decimal
from typing import Any, Dict

from .calculators import ConvergenceSolver, CurrencyResolver
from .models import (
    BudgetRequest,
    BudgetResult,
    BudgetSnapshot,
    CalculationContext,
    CalculationReport,
    ClientFee,
    UnitType,
)
from .output import ResultAssembler
from .validators import BudgetInputError, FeeConfigurationError, InputValidator


class BudgetProcessor:
    """
    Main orchestrator for budget calculations.

    Implements a clear pipeline pattern:
    1. Validate Input
    2. Build Context
    3. Resolve Currency Rate
    4. Solve Media / Client Budgets (bonus, volume and fee cascade per candidate)
    5. Collect Advisories
    6. Assemble Result

    The processor keeps no state between calls; every call is a pure function
    of its arguments. Logging goes to the logger passed in, so callers choose
    the verbosity per call.
    """

    def __init__(self, solver: ConvergenceSolver | None = None, logger: logging.Logger | None = None):
        self.validator = InputValidator()
        self.currency_resolver = CurrencyResolver()
        self.solver = solver or ConvergenceSolver()
        self.assembler = ResultAssembler()
        self.logger = logger or logging.getLogger(__name__)

    def calculate(
        self,
        snapshot: BudgetSnapshot,
        fees: list[ClientFee],
        rates: dict[str, Decimal],
        reference_currency: str,
        unit_types: list[UnitType],
        logger: logging.Logger | None = None,
    ) -> tuple[BudgetSnapshot, CalculationReport]:
        """
        Recalculate a snapshot.

        Never raises for a blocking problem: the report says success=False,
        carries the error text, and the caller's snapshot is handed back
        untouched so no partial result can be applied.
        """
        request = BudgetRequest(
            snapshot=snapshot,
            fees=fees,
            rates=rates,
            reference_currency=reference_currency,
            unit_types=unit_types,
        )
        try:
            result = self.process(request, logger=logger)
        except (BudgetInputError, FeeConfigurationError) as e:
            return snapshot, CalculationReport(success=False, error=str(e))
        return result.snapshot, result.report

    def process(self, request: BudgetRequest, logger: logging.Logger | None = None) -> BudgetResult:
        """
        Run a request through the complete pipeline.

        Args:
            request: BudgetRequest with snapshot, fee configuration and rates
            logger: Logger for this call (defaults to the processor's)

        Returns:
            BudgetResult with the updated snapshot, report and breakdown

        Raises:
            BudgetInputError / FeeConfigurationError for blocking problems
        """
        log = logger or self.logger

        # Step 1: Validate
        try:
            self.validator.validate(request.snapshot, request.fees)
        except ValueError as e:
            log.error(f"Calculation rejected: {e}")
            raise

        # Step 2: Build context
        ctx = self._build_context(request, log)
        log.info(
            f"Calculating {ctx.snapshot.budget_mode.value} budget of {ctx.snapshot.budget_input} "
            f"{ctx.snapshot.buy_currency} with {len(ctx.fees)} configured fees"
        )
        self._check_unused_slots(ctx)

        # Step 3: Currency rate
        ctx.currency = self.currency_resolver.resolve(ctx)

        # Step 4: Media / client budgets
        try:
            ctx.evaluation, ctx.convergence = self.solver.solve(ctx)
        except FeeConfigurationError as e:
            log.error(f"Calculation aborted: {e}")
            raise

        # Step 5: Advisories from the final evaluation
        self._collect_advisories(ctx)

        # Step 6: Assemble
        result = self.assembler.build(ctx)
        log.info(
            f"Calculated media {result.snapshot.media_budget} / client {result.snapshot.client_budget} "
            f"(converged: {result.report.has_converged})"
        )
        return result

    def process_from_dict(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Run a calculation from raw dictionary input.

        Convenience method for API usage.
        """
        request = BudgetRequest.from_dict(data)
        result = self.process(request)
        return self._result_to_dict(result)

    def _build_context(self, request: BudgetRequest, log: logging.Logger) -> CalculationContext:
        """Build the initial calculation context."""
        return CalculationContext(
            snapshot=request.snapshot,
            fees=list(request.fees),
            rates=dict(request.rates),
            reference_currency=request.reference_currency,
            unit_type=self._resolve_unit_type(request.snapshot.unit_type, request.unit_types),
            logger=log,
        )

    @staticmethod
    def _resolve_unit_type(unit_type_id: str, catalog: list[UnitType]) -> UnitType | None:
        """Catalog entry for the snapshot's unit type; an id missing from the catalog is judged by itself."""
        if not unit_type_id:
            return None
        for unit_type in catalog:
            if unit_type.id == unit_type_id:
                return unit_type
        return UnitType(id=unit_type_id)

    def _check_unused_slots(self, ctx: CalculationContext) -> None:
        configured = len(ctx.fees)
        for number, slot in enumerate(ctx.snapshot.fee_slots, start=1):
            if number > configured and slot.selection.is_active:
                ctx.advise(
                    "unused_fee_slot",
                    f"Fee slot {number} is active but only {configured} fees are configured; it is cleared",
                )

    def _collect_advisories(self, ctx: CalculationContext) -> None:
        evaluation = ctx.evaluation

        if not evaluation.volume.is_determined:
            ctx.advise("unit_volume_pending", "Unit price is 0, unit volume cannot be determined yet")

        if evaluation.bonus.is_pending:
            ctx.advise("bonus_pending", "Bonification is active but no negotiated value was entered")
        elif evaluation.bonus.validation_error:
            ctx.advise("negotiated_below_media", evaluation.bonus.validation_error)

        for detail in evaluation.fees.details:
            label = detail.fee_name or detail.fee_id
            if not detail.is_pending:
                continue
            if detail.selection.has_option:
                ctx.advise("fee_pending_volume", f"Fee '{label}' is waiting for a unit volume")
            else:
                ctx.advise("fee_option_pending", f"Fee '{label}' is active but no option is selected")

    def _result_to_dict(self, result: BudgetResult) -> Dict[str, Any]:
        """Convert BudgetResult to dictionary for API response."""
        return {
            "success": result.report.success,
            "snapshot": result.snapshot.to_dict(),
            "report": report_to_dict(result.report),
            "calculations": result.calculations,
        }


def report_to_dict(report: CalculationReport) -> Dict[str, Any]:
    output: Dict[str, Any] = {"success": report.success}
    if report.error:
        output["error"] = report.error
    if report.convergence:
        convergence = report.convergence
        output["convergence"] = {
            "has_converged": convergence.has_converged,
            "final_difference": str(convergence.final_difference),
            "iterations": convergence.iterations,
            "tolerance": str(convergence.tolerance),
            "target_budget": str(convergence.target_budget),
            "actual_calculated_total": str(convergence.actual_calculated_total),
        }
    output["advisories"] = [advisory.to_dict() for advisory in report.advisories]
    return output


# =============================================================================
# CONVENIENCE FUNCTIONS
# =============================================================================

def calculate_budget_from_dict(input_data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Calculate a budget from a Python dict and return a Python dict.
    """
    processor = BudgetProcessor()
    return processor.process_from_dict(input_data)


def calculate_budget_from_json(json_input: str) -> str:
    """
    Calculate a budget from JSON string input and return JSON string output.
    """
    try:
        input_data = json.loads(json_input)
        processor = BudgetProcessor()
        result = processor.process_from_dict(input_data)
        return json.dumps(result, indent=2)

    except FeeConfigurationError as e:
        error_response = {"error": str(e), "status": "configuration_error"}
        return json.dumps(error_response, indent=2)

    except ValueError as e:
        error_response = {"error": str(e), "status": "validation_failed"}
        return json.dumps(error_response, indent=2)

    except Exception as e:
        error_response = {"error": str(e), "status": "failed"}
        return json.dumps(error_response, indent=2)
