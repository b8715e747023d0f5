from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, List, Sequence

from .core.logging import get_logger
from .engine import PayrollEngine
from .exceptions import CalculationIntegrityError, Issue
from .models import CalculationRequest, CalculationResult
from .money import ZERO, round_cents
from .net_pay import ensure_finalizable, validate_calculation

logger = get_logger(__name__)


@dataclass
class PreviewTotals:
    employees: Dict[str, CalculationResult]
    employer_taxes: Dict[str, Decimal]
    total_net_pay: Decimal
    gross_pay: Decimal
    taxes_withheld: Dict[str, Decimal]
    integrity_failures: Dict[str, List[Issue]] = field(default_factory=dict)

    @property
    def can_finalize(self) -> bool:
        return not self.integrity_failures


class PreviewWizard:
    def __init__(self, engine: PayrollEngine):
        self.engine = engine

    def preview(self, requests: Sequence[CalculationRequest]) -> PreviewTotals:
        employee_results: Dict[str, CalculationResult] = {}
        employer_taxes: Dict[str, Decimal] = {}
        withheld_totals: Dict[str, Decimal] = {}
        failures: Dict[str, List[Issue]] = {}
        total_net = ZERO
        total_gross = ZERO

        for request in requests:
            result = self.engine.calculate(request)
            employee_results[request.employee_id] = result
            total_net += result.net_pay
            total_gross += result.gross_pay
            for tax_name, value in result.employer_taxes.as_dict().items():
                employer_taxes[tax_name] = employer_taxes.get(tax_name, ZERO) + value
            for tax_name, value in result.taxes_withheld.as_dict().items():
                withheld_totals[tax_name] = withheld_totals.get(tax_name, ZERO) + value
            report = validate_calculation(result, self.engine.settings.integrity_tolerance)
            if not report.is_valid:
                failures[request.employee_id] = list(report.issues)

        logger.info("payroll_previewed", employees=len(employee_results), failures=len(failures),
                    gross=str(round_cents(total_gross)))
        return PreviewTotals(
            employees=employee_results,
            employer_taxes={k: round_cents(v) for k, v in employer_taxes.items()},
            total_net_pay=round_cents(total_net),
            gross_pay=round_cents(total_gross),
            taxes_withheld={k: round_cents(v) for k, v in withheld_totals.items()},
            integrity_failures=failures,
        )

    def finalize(self, totals: PreviewTotals) -> PreviewTotals:
        """Gate a previewed pay period; any integrity failure blocks the whole period."""
        try:
            ensure_finalizable(totals.employees.values(), self.engine.settings.integrity_tolerance)
        except CalculationIntegrityError:
            logger.error("payroll_finalization_blocked", failures=sorted(totals.integrity_failures))
            raise
        return totals
