"""
Single-jurisdiction withholding.

Each tax type gets its own taxable wage base, derived from the pay-type flags
and reduced by pre-tax deductions. Income taxes use annualized bracket
withholding; Social Security, SDI and the unemployment taxes stop at their
annual wage-base caps using the year-to-date figures the caller supplies.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from types import MappingProxyType
from typing import Dict, List, Optional, Sequence, Tuple

from .classifier import InclusionKind, should_include_in_calculation
from .core.logging import get_logger
from .exceptions import Issue, configuration_issue, validation_issue
from .models import (
    EarningBreakdown,
    EmployeeTaxProfile,
    PayFrequency,
    TaxCalculation,
    TaxesWithheld,
    YtdTotals,
)
from .money import ZERO, floor_zero, quantize
from .tax_tables import TaxTable, apply_brackets

logger = get_logger(__name__)

WAGE_BASE_KINDS = MappingProxyType({
    "federal": InclusionKind.FEDERAL_TAX,
    "state": InclusionKind.STATE_TAX,
    "local": InclusionKind.LOCAL_TAX,
    "fica": InclusionKind.FICA_SS,
    "medicare": InclusionKind.MEDICARE,
    "futa": InclusionKind.UNEMPLOYMENT,
    "suta": InclusionKind.UNEMPLOYMENT,
    "sdi": InclusionKind.SDI,
})


def derive_taxable_wages(breakdown: Sequence[EarningBreakdown], pre_tax_deductions: Decimal) -> Dict[str, Decimal]:
    wages: Dict[str, Decimal] = {}
    for key, kind in WAGE_BASE_KINDS.items():
        base = sum((item.amount for item in breakdown if should_include_in_calculation(item.pay_type, kind)), ZERO)
        wages[key] = quantize(floor_zero(base - pre_tax_deductions))
    return wages


def supplemental_wages(breakdown: Sequence[EarningBreakdown]) -> Decimal:
    return quantize(sum(
        (item.amount for item in breakdown
         if item.pay_type.is_supplemental and should_include_in_calculation(item.pay_type, InclusionKind.FEDERAL_TAX)),
        ZERO,
    ))


def capped_taxable(current: Decimal, ytd: Decimal, cap: Optional[Decimal]) -> Decimal:
    """Portion of this period's wages that still falls under an annual wage-base cap."""
    if cap is None:
        return floor_zero(current)
    return floor_zero(min(ytd + current, cap) - min(ytd, cap))


def excess_over_threshold(current: Decimal, ytd: Decimal, threshold: Decimal) -> Decimal:
    """Portion of this period's wages above an annual threshold, prorated when crossed mid-period."""
    return floor_zero(floor_zero(ytd + current - threshold) - floor_zero(ytd - threshold))


def annualized_withholding(period_wages: Decimal, periods: int, brackets, annual_reduction: Decimal) -> Decimal:
    annual_wages = floor_zero(period_wages * periods - annual_reduction)
    return quantize(apply_brackets(annual_wages, brackets) / periods)


@dataclass(frozen=True)
class TaxInput:
    breakdown: Sequence[EarningBreakdown]
    pre_tax_deductions: Decimal
    profile: EmployeeTaxProfile
    table: TaxTable
    pay_frequency: PayFrequency = PayFrequency.BIWEEKLY
    ytd: YtdTotals = field(default_factory=YtdTotals)


@dataclass(frozen=True)
class TaxResult:
    taxes_withheld: TaxesWithheld
    taxable_wages: Dict[str, Decimal]
    calculations: Tuple[TaxCalculation, ...]
    issues: Tuple[Issue, ...] = ()


def federal_withholding(
    wages: Decimal, supplemental: Decimal, profile: EmployeeTaxProfile, table: TaxTable, frequency: PayFrequency
) -> List[TaxCalculation]:
    if profile.is_exempt_federal:
        return [TaxCalculation("federal_income", "US", wages, ZERO, ZERO, "Exempt from federal withholding")]

    supplemental_part = min(supplemental, wages)
    regular_part = wages - supplemental_part
    status = profile.filing_status.value
    reduction = table.standard_deduction(status) + table.allowance_for("federal") * profile.allowances
    regular_tax = annualized_withholding(
        regular_part, frequency.periods_per_year, table.brackets_for("federal", status), reduction
    )
    lines = [TaxCalculation(
        "federal_income", "US", regular_part, ZERO, regular_tax,
        f"Annualized {frequency.value} wages over {status} brackets less {reduction} standard deduction and allowances",
    )]
    if supplemental_part > ZERO:
        rate = table.supplemental_rate("federal")
        lines.append(TaxCalculation(
            "federal_supplemental", "US", supplemental_part, rate, quantize(supplemental_part * rate),
            "Flat supplemental rate on bonus and commission wages",
        ))
    if profile.additional_federal_withholding > ZERO:
        lines.append(TaxCalculation(
            "federal_additional", "US", ZERO, ZERO, quantize(profile.additional_federal_withholding),
            "Additional withholding requested on Form W-4",
        ))
    return lines


def state_withholding(
    wages: Decimal, supplemental: Decimal, profile: EmployeeTaxProfile, table: TaxTable, frequency: PayFrequency
) -> Tuple[List[TaxCalculation], List[Issue]]:
    state = profile.primary_work_jurisdiction
    if not state:
        return [], [validation_issue(
            "work_state_missing", "Tax profile has no primary work jurisdiction; state tax not withheld",
            "tax_profile.primary_work_jurisdiction",
        )]
    if profile.is_exempt_state:
        return [TaxCalculation("state_income", state, wages, ZERO, ZERO, "Exempt from state withholding")], []
    if not table.has_state(state):
        rate = table.default_state_rate
        logger.warning("state_not_configured", state=state, fallback_rate=str(rate))
        return [TaxCalculation(
            "state_income", state, wages, rate, quantize(wages * rate),
            f"State {state} missing from table {table.version}; default flat rate applied",
        )], [configuration_issue(
            "unknown_state", f"State {state} is not configured in tax table {table.version}", "tax_profile.primary_work_jurisdiction"
        )]
    if not table.has_state_income_tax(state):
        return [TaxCalculation("state_income", state, wages, ZERO, ZERO, f"{state} levies no income tax")], []

    supplemental_part = min(supplemental, wages)
    regular_part = wages - supplemental_part
    status = profile.filing_status.value
    reduction = table.allowance_for("state", state) * profile.allowances
    lines = [TaxCalculation(
        "state_income", state, regular_part, ZERO,
        annualized_withholding(
            regular_part, frequency.periods_per_year, table.brackets_for("state", status, state=state), reduction
        ),
        f"Annualized {frequency.value} wages over {state} {status} brackets",
    )]
    if supplemental_part > ZERO:
        rate = table.supplemental_rate("state", state)
        lines.append(TaxCalculation(
            "state_supplemental", state, supplemental_part, rate, quantize(supplemental_part * rate),
            f"{state} flat supplemental rate",
        ))
    if profile.additional_state_withholding > ZERO:
        lines.append(TaxCalculation(
            "state_additional", state, ZERO, ZERO, quantize(profile.additional_state_withholding),
            "Additional state withholding requested",
        ))
    return lines, []


def social_security_tax(wages: Decimal, ytd_wages: Decimal, table: TaxTable) -> TaxCalculation:
    schedule = table.social_security
    taxable = capped_taxable(wages, ytd_wages, schedule.wage_base)
    return TaxCalculation(
        "social_security", "US", taxable, schedule.rate, quantize(taxable * schedule.rate),
        f"{schedule.rate} of wages up to the {schedule.wage_base} annual wage base (YTD {ytd_wages})",
    )


def medicare_taxes(wages: Decimal, ytd_wages: Decimal, profile: EmployeeTaxProfile, table: TaxTable) -> List[TaxCalculation]:
    lines = [TaxCalculation(
        "medicare", "US", wages, table.medicare_rate, quantize(wages * table.medicare_rate), "Medicare on all wages",
    )]
    threshold = table.additional_medicare_threshold(profile.filing_status.value)
    excess = excess_over_threshold(wages, ytd_wages, threshold)
    if excess > ZERO:
        rate = table.additional_medicare_rate
        lines.append(TaxCalculation(
            "additional_medicare", "US", excess, rate, quantize(excess * rate),
            f"Additional Medicare on YTD wages above {threshold}",
        ))
    return lines


def sdi_tax(wages: Decimal, ytd_wages: Decimal, state: str, table: TaxTable) -> Optional[TaxCalculation]:
    schedule = table.sdi_for(state)
    if schedule is None:
        return None
    taxable = capped_taxable(wages, ytd_wages, schedule.wage_base)
    return TaxCalculation(
        "sdi", state, taxable, schedule.rate, quantize(taxable * schedule.rate), f"{state} disability insurance",
    )


def local_tax(wages: Decimal, code: Optional[str], table: TaxTable) -> Tuple[Optional[TaxCalculation], List[Issue]]:
    if not code:
        return None, []
    rate = table.local_rate(code)
    if rate is None:
        return None, [configuration_issue(
            "unknown_local_jurisdiction", f"Local jurisdiction {code} is not configured; no local tax withheld",
            "tax_profile.local_jurisdiction",
        )]
    return TaxCalculation("local_income", code, wages, rate, quantize(wages * rate), f"{code} local income tax"), []


def sum_lines(lines: Sequence[TaxCalculation], *prefixes: str) -> Decimal:
    return quantize(sum((line.amount for line in lines if line.tax_type.startswith(prefixes)), ZERO))


def calculate_taxes(tax_input: TaxInput) -> TaxResult:
    profile = tax_input.profile
    table = tax_input.table
    ytd = tax_input.ytd
    wages = derive_taxable_wages(tax_input.breakdown, tax_input.pre_tax_deductions)
    supplemental = supplemental_wages(tax_input.breakdown)
    issues: List[Issue] = []

    lines = federal_withholding(wages["federal"], supplemental, profile, table, tax_input.pay_frequency)
    state_lines, state_issues = state_withholding(wages["state"], supplemental, profile, table, tax_input.pay_frequency)
    lines.extend(state_lines)
    issues.extend(state_issues)
    lines.append(social_security_tax(wages["fica"], ytd.social_security_wages, table))
    lines.extend(medicare_taxes(wages["medicare"], ytd.medicare_wages, profile, table))

    sdi_line = sdi_tax(wages["sdi"], ytd.sdi_wages, profile.primary_work_jurisdiction, table)
    if sdi_line is not None:
        lines.append(sdi_line)
    local_line, local_issues = local_tax(wages["local"], profile.local_jurisdiction, table)
    issues.extend(local_issues)
    if local_line is not None:
        lines.append(local_line)

    withheld = TaxesWithheld(
        federal=sum_lines(lines, "federal"),
        state=sum_lines(lines, "state"),
        fica=sum_lines(lines, "social_security"),
        medicare=sum_lines(lines, "medicare", "additional_medicare"),
        local=sum_lines(lines, "local"),
        sdi=sum_lines(lines, "sdi"),
    )
    logger.debug("taxes_calculated", table=table.version, total=str(withheld.total()))
    return TaxResult(taxes_withheld=withheld, taxable_wages=wages, calculations=tuple(lines), issues=tuple(issues))
