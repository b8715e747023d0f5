"""
Multi-jurisdiction withholding over a :class:`JurisdictionRegistry`.

Every rule effective on the calculation's as-of date is evaluated for each
jurisdiction the employee touches; results are merged by jurisdiction type and
then passed through a reciprocity resolver. The default resolver leaves the
merged taxes unchanged: cross-jurisdiction relief is an extension point that
callers supply, never something inferred here.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date
from decimal import Decimal
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from .core.logging import get_logger
from .exceptions import Issue, configuration_issue, validation_issue
from .jurisdictions import (
    JurisdictionRegistry,
    JurisdictionType,
    RateSchedule,
    RateType,
    RuleTaxType,
    TaxJurisdiction,
    TaxRule,
)
from .models import EmployeeTaxProfile, PayFrequency, TaxCalculation, TaxesWithheld, YtdTotals
from .money import HUNDRED, ZERO, quantize
from .taxes import capped_taxable

logger = get_logger(__name__)

ReciprocityResolver = Callable[[TaxesWithheld, Sequence[str], JurisdictionRegistry], TaxesWithheld]

# (jurisdiction type, rule tax type) -> TaxesWithheld field
MERGE_TARGETS: Dict[Tuple[JurisdictionType, RuleTaxType], str] = {
    (JurisdictionType.COUNTRY, RuleTaxType.INCOME): "federal",
    (JurisdictionType.COUNTRY, RuleTaxType.SOCIAL): "fica",
    (JurisdictionType.COUNTRY, RuleTaxType.MEDICARE): "medicare",
    (JurisdictionType.STATE, RuleTaxType.INCOME): "state",
    (JurisdictionType.STATE, RuleTaxType.SDI): "sdi",
    (JurisdictionType.STATE, RuleTaxType.SUI): "sdi",
    (JurisdictionType.PROVINCE, RuleTaxType.INCOME): "state",
    (JurisdictionType.PROVINCE, RuleTaxType.SDI): "sdi",
    (JurisdictionType.LOCAL, RuleTaxType.INCOME): "local",
    (JurisdictionType.LOCAL, RuleTaxType.LOCAL): "local",
}

# rule tax type -> (taxable-wage key, YtdTotals attribute)
WAGE_SOURCES: Dict[RuleTaxType, Tuple[str, str]] = {
    RuleTaxType.SOCIAL: ("fica", "social_security_wages"),
    RuleTaxType.MEDICARE: ("medicare", "medicare_wages"),
    RuleTaxType.SDI: ("sdi", "sdi_wages"),
    RuleTaxType.SUI: ("suta", "suta_wages"),
    RuleTaxType.LOCAL: ("local", "gross"),
}
INCOME_WAGE_SOURCES: Dict[JurisdictionType, Tuple[str, str]] = {
    JurisdictionType.COUNTRY: ("federal", "federal_wages"),
    JurisdictionType.STATE: ("state", "state_wages"),
    JurisdictionType.PROVINCE: ("state", "state_wages"),
    JurisdictionType.LOCAL: ("local", "gross"),
}


@dataclass(frozen=True)
class MultiRegionTaxContext:
    profile: EmployeeTaxProfile
    taxable_wages: Dict[str, Decimal]
    as_of: date
    pay_frequency: PayFrequency = PayFrequency.BIWEEKLY
    ytd: YtdTotals = field(default_factory=YtdTotals)


@dataclass(frozen=True)
class MultiJurisdictionTaxResult:
    taxes_withheld: TaxesWithheld
    jurisdictions: Tuple[str, ...]
    calculations: Tuple[TaxCalculation, ...]
    employer_calculations: Tuple[TaxCalculation, ...]
    issues: Tuple[Issue, ...] = ()


@dataclass(frozen=True)
class TaxSetupValidation:
    is_valid: bool
    warnings: Tuple[Issue, ...]
    errors: Tuple[Issue, ...]


def no_reciprocity(taxes: TaxesWithheld, jurisdictions: Sequence[str], registry: JurisdictionRegistry) -> TaxesWithheld:
    return taxes


def detect_tax_jurisdictions(profile: EmployeeTaxProfile) -> List[str]:
    jurisdictions: List[str] = []
    if profile.primary_work_jurisdiction:
        jurisdictions.append(profile.primary_work_jurisdiction)
    if profile.remote_work_jurisdiction and profile.remote_work_jurisdiction != profile.primary_work_jurisdiction:
        jurisdictions.append(profile.remote_work_jurisdiction)
    if profile.residency_jurisdiction and profile.residency_jurisdiction not in jurisdictions:
        jurisdictions.append(profile.residency_jurisdiction)
    return jurisdictions


def progressive_tax(rates: Sequence[RateSchedule], current: Decimal, ytd: Decimal) -> Decimal:
    """Tax the (ytd, ytd + current] slice of annual income bracket by bracket."""
    total = ZERO
    remaining = current
    upper = ytd + current
    for bracket in sorted(rates, key=lambda schedule: schedule.min_income):
        if remaining <= ZERO or upper <= bracket.min_income:
            break
        bracket_max = upper if bracket.max_income is None else bracket.max_income
        portion = min(upper, bracket_max) - max(ytd, bracket.min_income)
        if portion <= ZERO:
            continue
        total += portion * bracket.rate_percent / HUNDRED
        remaining -= portion
    return quantize(total)


def rule_amount(rule: TaxRule, current: Decimal, ytd: Decimal) -> Tuple[Decimal, Decimal]:
    """(taxable wages, tax) for one rule."""
    if not rule.rates:
        return ZERO, ZERO
    first = rule.rates[0]
    if rule.rate_type == RateType.FLAT:
        return current, quantize(first.flat_amount or ZERO)
    if rule.rate_type == RateType.PERCENTAGE:
        taxable = capped_taxable(current, ytd, first.max_income)
        return taxable, quantize(taxable * first.rate_percent / HUNDRED)
    return current, progressive_tax(rule.rates, current, ytd)


def _wage_source(jurisdiction: TaxJurisdiction, rule: TaxRule) -> Tuple[str, str]:
    if rule.tax_type == RuleTaxType.INCOME:
        return INCOME_WAGE_SOURCES[jurisdiction.type]
    return WAGE_SOURCES[rule.tax_type]


def rules_in_effect(jurisdiction: TaxJurisdiction, as_of: date) -> Tuple[List[TaxRule], bool]:
    """
    Rules effective on ``as_of``, and whether a fallback was needed.

    A jurisdiction with rules but none in effect uses its latest rule set that
    started on or before ``as_of``, or its earliest set when ``as_of`` predates them all.
    """
    effective = [rule for rule in jurisdiction.tax_rules if rule.is_effective(as_of)]
    if effective or not jurisdiction.tax_rules:
        return effective, False
    starts = sorted({rule.effective_date for rule in jurisdiction.tax_rules})
    earlier = [start for start in starts if start <= as_of]
    chosen = earlier[-1] if earlier else starts[0]
    return [rule for rule in jurisdiction.tax_rules if rule.effective_date == chosen], True


def evaluate_jurisdiction(
    jurisdiction: TaxJurisdiction, context: MultiRegionTaxContext
) -> Tuple[Dict[str, Decimal], List[TaxCalculation], List[TaxCalculation], List[Issue]]:
    withheld: Dict[str, Decimal] = {}
    employee_lines: List[TaxCalculation] = []
    employer_lines: List[TaxCalculation] = []
    issues: List[Issue] = []

    rules, fell_back = rules_in_effect(jurisdiction, context.as_of)
    if fell_back:
        logger.warning("jurisdiction_rules_not_effective", jurisdiction=jurisdiction.code, as_of=str(context.as_of))
        issues.append(configuration_issue(
            "no_rules_in_effect",
            f"No {jurisdiction.code} tax rule is effective on {context.as_of.isoformat()}; "
            f"nearest rule set ({rules[0].effective_date.isoformat()}) applied",
            f"jurisdictions.{jurisdiction.code}",
        ))
    for rule in rules:
        wage_key, ytd_attr = _wage_source(jurisdiction, rule)
        current = context.taxable_wages.get(wage_key, ZERO)
        taxable, amount = rule_amount(rule, current, getattr(context.ytd, ytd_attr))
        rate = rule.rates[0].rate_percent if rule.rate_type == RateType.PERCENTAGE and rule.rates else ZERO

        if rule.charges_employer:
            employer_lines.append(TaxCalculation(
                rule.tax_type.value, jurisdiction.code, taxable, rate, amount, f"Rule {rule.id}", payer="employer",
            ))
        if not rule.withholds_from_employee:
            continue
        target = MERGE_TARGETS.get((jurisdiction.type, rule.tax_type))
        if target is None:
            issues.append(configuration_issue(
                "unmergeable_rule",
                f"Rule {rule.id} ({rule.tax_type.value}) has no withholding bucket for a {jurisdiction.type.value}",
                f"jurisdictions.{jurisdiction.code}",
            ))
            continue
        withheld[target] = withheld.get(target, ZERO) + amount
        employee_lines.append(TaxCalculation(
            rule.tax_type.value, jurisdiction.code, taxable, rate, amount,
            f"Rule {rule.id} ({rule.rate_type.value}) merged into {target}",
        ))
    return withheld, employee_lines, employer_lines, issues


def calculate_multi_jurisdiction_tax(
    registry: JurisdictionRegistry,
    context: MultiRegionTaxContext,
    reciprocity: ReciprocityResolver = no_reciprocity,
) -> MultiJurisdictionTaxResult:
    codes = detect_tax_jurisdictions(context.profile)
    country = context.profile.country_jurisdiction
    if country and country not in codes:
        codes.insert(0, country)

    totals = TaxesWithheld()
    employee_lines: List[TaxCalculation] = []
    employer_lines: List[TaxCalculation] = []
    issues: List[Issue] = []
    evaluated: List[str] = []

    for code in codes:
        jurisdiction = registry.get(code)
        if jurisdiction is None:
            logger.warning("jurisdiction_not_configured", jurisdiction=code)
            issues.append(configuration_issue(
                "unknown_jurisdiction", f"Tax jurisdiction {code} is not configured; no tax withheld for it",
                f"jurisdictions.{code}",
            ))
            continue
        withheld, lines, employer, rule_issues = evaluate_jurisdiction(jurisdiction, context)
        totals = totals.plus(TaxesWithheld(**withheld))
        employee_lines.extend(lines)
        employer_lines.extend(employer)
        issues.extend(rule_issues)
        evaluated.append(code)

    resolved = reciprocity(totals, tuple(evaluated), registry)
    resolved = replace(resolved, **{name: quantize(value) for name, value in resolved.as_dict().items()})
    logger.debug("multi_jurisdiction_taxes_calculated", jurisdictions=evaluated, total=str(resolved.total()))
    return MultiJurisdictionTaxResult(
        taxes_withheld=resolved,
        jurisdictions=tuple(evaluated),
        calculations=tuple(employee_lines),
        employer_calculations=tuple(employer_lines),
        issues=tuple(issues),
    )


def validate_employee_tax_setup(registry: JurisdictionRegistry, profile: EmployeeTaxProfile) -> TaxSetupValidation:
    warnings: List[Issue] = []
    errors: List[Issue] = []

    if not profile.primary_work_jurisdiction:
        errors.append(validation_issue(
            "work_jurisdiction_missing", "Primary work jurisdiction is required", "tax_profile.primary_work_jurisdiction",
        ))
    elif profile.primary_work_jurisdiction not in registry:
        errors.append(validation_issue(
            "work_jurisdiction_unknown",
            f"Tax jurisdiction {profile.primary_work_jurisdiction} is not configured",
            "tax_profile.primary_work_jurisdiction",
        ))

    if profile.dual_tax_scenario and not profile.remote_work_jurisdiction:
        warnings.append(Issue(
            category="validation", code="dual_tax_without_remote", severity="warning",
            message="Dual tax scenario enabled but no remote work jurisdiction specified",
            field="tax_profile.remote_work_jurisdiction",
        ))

    has_international = False
    for code in detect_tax_jurisdictions(profile):
        jurisdiction: Optional[TaxJurisdiction] = registry.get(code)
        if jurisdiction is not None and jurisdiction.type == JurisdictionType.COUNTRY and code != "US":
            has_international = True
    if has_international and not profile.tax_treaty_benefits:
        warnings.append(Issue(
            category="validation", code="treaty_benefits_missing", severity="warning",
            message="International employee without tax treaty benefits specified",
            field="tax_profile.tax_treaty_benefits",
        ))

    return TaxSetupValidation(is_valid=not errors, warnings=tuple(warnings), errors=tuple(errors))
