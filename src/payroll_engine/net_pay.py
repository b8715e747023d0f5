"""
Net pay reconciliation, split deposits and corrections.

Corrections never touch the original :class:`CalculationResult`. A retroactive
adjustment or off-cycle correction yields a new result whose figures are the
original's plus the correction, with ``adjusts`` pointing back at the original.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

from .core.logging import get_logger
from .employer_taxes import calculate_employer_taxes
from .exceptions import CalculationIntegrityError, InvalidInputError, Issue, integrity_issue
from .models import (
    AuditStep,
    CalculationResult,
    DepositAllocation,
    DepositInstruction,
    EarningBreakdown,
    EmployeeTaxProfile,
    EmployerTaxes,
    PayTypeCategory,
    PayTypeDefinition,
    TaxCalculation,
    TaxesWithheld,
    YtdTotals,
    make_calculation_id,
)
from .money import HUNDRED, ONE, ZERO, floor_zero, quantize, round_cents, to_decimal
from .tax_tables import TaxTable
from .taxes import capped_taxable, excess_over_threshold

logger = get_logger(__name__)

INTEGRITY_TOLERANCE = Decimal("0.02")


@dataclass(frozen=True)
class NetPayResult:
    gross_pay: Decimal
    pre_tax_deductions: Decimal
    taxable_wages: Decimal
    total_taxes: Decimal
    post_tax_deductions: Decimal
    unclamped_net_pay: Decimal
    net_pay: Decimal
    was_clamped: bool


def calculate_net_pay(
    gross_pay: Decimal,
    pre_tax_deductions: Decimal,
    taxes: Union[TaxesWithheld, Decimal],
    post_tax_deductions: Decimal,
) -> NetPayResult:
    total_taxes = taxes.total() if isinstance(taxes, TaxesWithheld) else to_decimal(taxes)
    taxable_wages = gross_pay - pre_tax_deductions
    unclamped = quantize(taxable_wages - total_taxes - post_tax_deductions)
    if unclamped < ZERO:
        logger.warning("net_pay_negative", unclamped=str(unclamped))
    return NetPayResult(
        gross_pay=gross_pay,
        pre_tax_deductions=pre_tax_deductions,
        taxable_wages=quantize(taxable_wages),
        total_taxes=quantize(total_taxes),
        post_tax_deductions=post_tax_deductions,
        unclamped_net_pay=unclamped,
        net_pay=floor_zero(unclamped),
        was_clamped=unclamped < ZERO,
    )


def allocate_deposits(net_pay: Decimal, instructions: Sequence[DepositInstruction]) -> Tuple[DepositAllocation, ...]:
    """
    Split net pay across accounts: fixed amounts first, then percentages of net
    pay, then the single remainder account. Every allocation is capped to what
    is still unallocated when its turn comes. Allocations come back in
    instruction order.
    """
    if not instructions:
        return ()
    remainder = [instruction for instruction in instructions if instruction.is_remainder]
    if len(remainder) != 1:
        raise InvalidInputError(
            f"Deposit instructions need exactly one remainder account, got {len(remainder)}",
            field="deposit_instructions",
        )
    for instruction in instructions:
        if not instruction.is_remainder and instruction.amount is None and instruction.percentage is None:
            raise InvalidInputError(
                f"Deposit instruction for {instruction.account_id} has no amount or percentage",
                field="deposit_instructions",
            )

    net_pay = round_cents(net_pay)
    unallocated = net_pay
    allocated: Dict[int, DepositAllocation] = {}

    def _allocate(index: int, instruction: DepositInstruction, kind: str, requested: Decimal) -> None:
        nonlocal unallocated
        amount = min(round_cents(floor_zero(requested)), unallocated)
        unallocated -= amount
        allocated[index] = DepositAllocation(account_id=instruction.account_id, allocation_type=kind, amount=amount)

    for index, instruction in enumerate(instructions):
        if not instruction.is_remainder and instruction.amount is not None:
            _allocate(index, instruction, "fixed", instruction.amount)
    for index, instruction in enumerate(instructions):
        if not instruction.is_remainder and instruction.amount is None:
            _allocate(index, instruction, "percentage", net_pay * instruction.percentage / HUNDRED)
    for index, instruction in enumerate(instructions):
        if instruction.is_remainder:
            _allocate(index, instruction, "remainder", unallocated)

    return tuple(allocated[index] for index in range(len(instructions)))


@dataclass(frozen=True)
class SupplementalWithholding:
    taxes: TaxesWithheld
    employer_taxes: EmployerTaxes
    calculations: Tuple[TaxCalculation, ...]


def supplemental_withholding(
    amount: Decimal, table: TaxTable, profile: EmployeeTaxProfile, ytd: YtdTotals = YtdTotals()
) -> SupplementalWithholding:
    """
    Flat statutory withholding on supplemental wages (bonuses, retro pay).

    Negative amounts reverse withholding: the reversed wages are treated as the
    most recent slice of year-to-date wages, so capped taxes only come back for
    wages that were actually under the cap.
    """
    amount = to_decimal(amount)
    sign = ONE
    if amount < ZERO:
        sign = -ONE
        amount = -amount
        ytd = YtdTotals(
            gross=floor_zero(ytd.gross - amount),
            social_security_wages=floor_zero(ytd.social_security_wages - amount),
            medicare_wages=floor_zero(ytd.medicare_wages - amount),
            futa_wages=floor_zero(ytd.futa_wages - amount),
            suta_wages=floor_zero(ytd.suta_wages - amount),
            sdi_wages=floor_zero(ytd.sdi_wages - amount),
        )

    state = profile.primary_work_jurisdiction
    lines: List[TaxCalculation] = []
    if not profile.is_exempt_federal:
        rate = table.supplemental_rate("federal")
        lines.append(TaxCalculation("federal_supplemental", "US", amount, rate, quantize(amount * rate),
                                    "Flat federal supplemental rate"))
    if state and not profile.is_exempt_state and (not table.has_state(state) or table.has_state_income_tax(state)):
        rate = table.supplemental_rate("state", state)
        lines.append(TaxCalculation("state_supplemental", state, amount, rate, quantize(amount * rate),
                                    f"Flat {state} supplemental rate"))

    ss = table.social_security
    ss_taxable = capped_taxable(amount, ytd.social_security_wages, ss.wage_base)
    lines.append(TaxCalculation("social_security", "US", ss_taxable, ss.rate, quantize(ss_taxable * ss.rate),
                                "Social Security under the annual wage base"))
    lines.append(TaxCalculation("medicare", "US", amount, table.medicare_rate, quantize(amount * table.medicare_rate),
                                "Medicare on supplemental wages"))
    excess = excess_over_threshold(amount, ytd.medicare_wages, table.additional_medicare_threshold(profile.filing_status.value))
    if excess > ZERO:
        lines.append(TaxCalculation("additional_medicare", "US", excess, table.additional_medicare_rate,
                                    quantize(excess * table.additional_medicare_rate), "Additional Medicare"))
    sdi = table.sdi_for(state)
    if sdi is not None:
        sdi_taxable = capped_taxable(amount, ytd.sdi_wages, sdi.wage_base)
        lines.append(TaxCalculation("sdi", state, sdi_taxable, sdi.rate, quantize(sdi_taxable * sdi.rate),
                                    f"{state} disability insurance"))

    def _sum(*prefixes: str) -> Decimal:
        return sign * sum((line.amount for line in lines if line.tax_type.startswith(prefixes)), ZERO)

    taxes = TaxesWithheld(
        federal=_sum("federal"),
        state=_sum("state"),
        fica=_sum("social_security"),
        medicare=_sum("medicare", "additional_medicare"),
        sdi=_sum("sdi"),
    )
    wages = {key: amount for key in ("fica", "medicare", "futa", "suta")}
    employer = calculate_employer_taxes(wages, table, profile.unemployment_state, ytd)
    employer_taxes = EmployerTaxes(**{name: sign * value for name, value in employer.employer_taxes.as_dict().items()})

    if sign < ZERO:
        lines = [replace(line, amount=-line.amount, explanation=f"Reversal: {line.explanation}") for line in lines]
    employer_lines = [replace(line, amount=sign * line.amount) for line in employer.calculations]
    return SupplementalWithholding(taxes=taxes, employer_taxes=employer_taxes,
                                   calculations=tuple(lines) + tuple(employer_lines))


@dataclass(frozen=True)
class RetroactiveAdjustment:
    hours: Decimal = ZERO
    previous_rate: Decimal = ZERO
    new_rate: Decimal = ZERO
    multiplier: Decimal = ONE
    amount: Optional[Decimal] = None
    reason: str = ""
    pay_type: str = "RETRO"

    def gross_amount(self) -> Decimal:
        if self.amount is not None:
            return quantize(to_decimal(self.amount))
        return quantize(to_decimal(self.hours) * (to_decimal(self.new_rate) - to_decimal(self.previous_rate))
                        * to_decimal(self.multiplier))


@dataclass(frozen=True)
class OffCycleCorrection:
    amount: Decimal
    kind: str = "bonus"  # bonus, correction, missed_pay
    reason: str = ""
    pay_date: Optional[date] = None
    pay_type: str = "OFF_CYCLE"


def _compose(
    original: CalculationResult,
    delta_gross: Decimal,
    withholding: SupplementalWithholding,
    pay_type: PayTypeDefinition,
    step: AuditStep,
    calculation_date: date,
) -> CalculationResult:
    taxes = original.taxes_withheld.plus(withholding.taxes).rounded()
    employer = original.employer_taxes.plus(withholding.employer_taxes).rounded()
    gross = round_cents(original.gross_pay + delta_gross)
    # recomputed from the composed components so a clamped original's shortfall carries over
    net = calculate_net_pay(gross, original.pre_tax_deductions, taxes, original.post_tax_deductions)
    taxable = {key: round_cents(value + delta_gross) for key, value in original.taxable_wages.items()}
    line = EarningBreakdown(
        pay_type=pay_type, hours=ZERO, rate=ZERO, multiplier=ONE, amount=delta_gross, derived=True,
    )
    calculation_id = make_calculation_id({
        "adjusts": original.calculation_id,
        "step": step.step,
        "amount": str(delta_gross),
        "date": calculation_date.isoformat(),
    })
    return replace(
        original,
        calculation_id=calculation_id,
        calculation_date=calculation_date,
        gross_pay=gross,
        taxable_wages=taxable,
        taxes_withheld=taxes,
        employer_taxes=employer,
        net_pay=round_cents(net.net_pay),
        net_pay_was_clamped=net.was_clamped,
        earnings_breakdown=original.earnings_breakdown + (line,),
        tax_calculations=original.tax_calculations + withholding.calculations,
        deposit_allocations=(),
        audit_trail=original.audit_trail + (step,),
        adjusts=original.calculation_id,
    )


def process_retroactive_adjustment(
    original: CalculationResult,
    adjustment: RetroactiveAdjustment,
    table: TaxTable,
    profile: EmployeeTaxProfile,
    ytd: YtdTotals = YtdTotals(),
    calculation_date: Optional[date] = None,
) -> CalculationResult:
    """``ytd`` is the snapshot the original was computed with; the original's own wages are added to it."""
    delta = adjustment.gross_amount()
    snapshot = ytd.plus({**original.taxable_wages, "gross": original.gross_pay})
    withholding = supplemental_withholding(delta, table, profile, snapshot)
    step = AuditStep(
        step="retroactive_adjustment",
        inputs={
            "original": original.calculation_id,
            "hours": str(adjustment.hours),
            "previous_rate": str(adjustment.previous_rate),
            "new_rate": str(adjustment.new_rate),
            "reason": adjustment.reason,
        },
        outputs={"gross_delta": str(round_cents(delta)), "taxes_delta": str(round_cents(withholding.taxes.total()))},
        explanation="Retroactive pay added on top of the original result at flat supplemental withholding rates",
    )
    pay_type = PayTypeDefinition(adjustment.pay_type, "Retroactive pay", PayTypeCategory.SUPPLEMENTAL, is_supplemental=True)
    logger.info("retroactive_adjustment_processed", original=original.calculation_id, amount=str(delta))
    return _compose(original, delta, withholding, pay_type, step, calculation_date or original.calculation_date)


def process_off_cycle_correction(
    original: CalculationResult,
    correction: OffCycleCorrection,
    table: TaxTable,
    profile: EmployeeTaxProfile,
    ytd: YtdTotals = YtdTotals(),
) -> CalculationResult:
    delta = quantize(to_decimal(correction.amount))
    if delta == ZERO:
        raise InvalidInputError("Off-cycle correction amount must be non-zero", field="amount")
    snapshot = ytd.plus({**original.taxable_wages, "gross": original.gross_pay})
    withholding = supplemental_withholding(delta, table, profile, snapshot)
    step = AuditStep(
        step="off_cycle_correction",
        inputs={"original": original.calculation_id, "kind": correction.kind, "amount": str(delta),
                "reason": correction.reason},
        outputs={"gross_delta": str(round_cents(delta)), "taxes_delta": str(round_cents(withholding.taxes.total()))},
        explanation=f"Off-cycle {correction.kind} withheld at flat supplemental rates",
    )
    category = PayTypeCategory.BONUS if correction.kind == "bonus" else PayTypeCategory.SUPPLEMENTAL
    pay_type = PayTypeDefinition(correction.pay_type, f"Off-cycle {correction.kind}", category, is_supplemental=True)
    logger.info("off_cycle_correction_processed", original=original.calculation_id, kind=correction.kind, amount=str(delta))
    return _compose(original, delta, withholding, pay_type, step, correction.pay_date or original.calculation_date)


@dataclass(frozen=True)
class IntegrityReport:
    is_valid: bool
    expected_net_pay: Decimal
    issues: Tuple[Issue, ...]


def validate_calculation(result: CalculationResult, tolerance: Decimal = INTEGRITY_TOLERANCE) -> IntegrityReport:
    issues: List[Issue] = []
    total_deductions = result.pre_tax_deductions + result.post_tax_deductions
    expected = result.gross_pay - result.pre_tax_deductions - result.taxes_withheld.total() - result.post_tax_deductions

    if result.net_pay < ZERO:
        issues.append(integrity_issue("negative_net_pay", f"Net pay {result.net_pay} is negative", "net_pay"))
    if expected < ZERO or result.net_pay_was_clamped:
        issues.append(integrity_issue(
            "net_pay_clamped", f"Deductions and taxes exceed wages; net pay of {round_cents(expected)} was clamped to zero",
            "net_pay",
        ))
    if abs(floor_zero(expected) - result.net_pay) > tolerance:
        issues.append(integrity_issue(
            "net_pay_mismatch",
            f"Net pay {result.net_pay} differs from recomputed {round_cents(floor_zero(expected))} by more than {tolerance}",
            "net_pay",
        ))
    if total_deductions > result.gross_pay:
        issues.append(integrity_issue(
            "deductions_exceed_gross", f"Deductions {round_cents(total_deductions)} exceed gross pay {result.gross_pay}",
            "deductions",
        ))
    return IntegrityReport(is_valid=not issues, expected_net_pay=round_cents(expected), issues=tuple(issues))


def ensure_finalizable(results: Iterable[CalculationResult], tolerance: Decimal = INTEGRITY_TOLERANCE) -> None:
    failures: List[Issue] = []
    for result in results:
        report = validate_calculation(result, tolerance)
        failures.extend(
            replace(issue, message=f"{result.employee_id}: {issue.message}") for issue in report.issues
        )
    if failures:
        raise CalculationIntegrityError(
            f"{len(failures)} integrity failure(s) block pay-period finalization", issues=failures
        )
