"""
Payroll orchestrator.

``PayrollEngine.calculate`` runs the fixed pipeline for one employee and one
pay period: classify, earnings, deductions, taxes, net pay, employer taxes,
deposits, validation. Every stage appends an :class:`AuditStep`. Nothing in the
pipeline reads the clock, so the same request always yields the same result,
calculation id included.
"""

from __future__ import annotations

from dataclasses import asdict, replace
from datetime import date
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from .classifier import build_pay_type_map, resolve_pay_type, validate_pay_types
from .core.config import EngineSettings, get_settings
from .core.logging import bind_calculation_context, clear_calculation_context, get_logger
from .core.observability import get_meter, get_tracer
from .deductions import calculate_deductions
from .earnings import calculate_earnings, overtime_premium_line
from .employer_taxes import calculate_employer_taxes
from .exceptions import ConfigurationError, InvalidInputError, Issue, PayrollValidationError
from .jurisdictions import JurisdictionRegistry, default_registry
from .models import (
    AuditStep,
    CalculationRequest,
    CalculationResult,
    EmployeeTaxProfile,
    PayTypeDefinition,
    YtdTotals,
    make_calculation_id,
)
from .money import ZERO, floor_zero, round_cents
from .multi_region import (
    MultiRegionTaxContext,
    ReciprocityResolver,
    calculate_multi_jurisdiction_tax,
    no_reciprocity,
    validate_employee_tax_setup,
)
from .net_pay import (
    OffCycleCorrection,
    RetroactiveAdjustment,
    allocate_deposits,
    calculate_net_pay,
    process_off_cycle_correction,
    process_retroactive_adjustment,
    validate_calculation,
)
from .pay_types import EarningsCode, standard_pay_types
from .schemas import PayrollOutput, PayrollRequest
from .tax_tables import TaxTable, TaxTableRepository, select_table
from .taxes import TaxInput, calculate_taxes, derive_taxable_wages

logger = get_logger(__name__)

TaxTables = Union[TaxTableRepository, TaxTable, Mapping[str, TaxTable], None]


def _money(value) -> str:
    return str(round_cents(value))


class PayrollEngine:
    def __init__(
        self,
        tax_tables: TaxTables = None,
        registry: Optional[JurisdictionRegistry] = None,
        pay_types: Optional[Iterable[PayTypeDefinition]] = None,
        settings: Optional[EngineSettings] = None,
        reciprocity: ReciprocityResolver = no_reciprocity,
    ):
        self.settings = settings or get_settings()
        if tax_tables is None:
            tax_tables = TaxTableRepository(self.settings.tax_tables_path)
        if isinstance(tax_tables, TaxTableRepository):
            self.tax_tables: Dict[str, TaxTable] = tax_tables.load_all()
        elif isinstance(tax_tables, TaxTable):
            self.tax_tables = {tax_tables.version: tax_tables}
        else:
            self.tax_tables = dict(tax_tables)
        if not self.tax_tables:
            raise ConfigurationError("No tax tables available", code="tax_table_missing")
        self.registry = registry if registry is not None else default_registry()
        self.pay_types = build_pay_type_map(standard_pay_types() if pay_types is None else pay_types)
        self.reciprocity = reciprocity
        self._tracer = get_tracer()
        self._calculations = get_meter().create_counter(
            "payroll.calculations", unit="1", description="Payroll calculations performed"
        )

    def table_for(self, as_of: date) -> TaxTable:
        version = self.settings.tax_table_version
        if version:
            if version not in self.tax_tables:
                raise ConfigurationError(f"Tax table version {version} is not loaded", code="tax_table_missing",
                                         field=version)
            return self.tax_tables[version]
        return select_table(self.tax_tables.values(), as_of)

    def _pay_types_for(self, request: CalculationRequest):
        if not request.pay_types:
            return self.pay_types
        return build_pay_type_map(list(self.pay_types.values()) + list(request.pay_types))

    def calculate(self, request: CalculationRequest) -> CalculationResult:
        if request.pay_period_end < request.pay_period_start:
            raise InvalidInputError("pay_period_end is before pay_period_start", field="pay_period_end")

        as_of = request.effective_as_of
        table = self.table_for(as_of)
        calculation_id = make_calculation_id({
            "request": asdict(request),
            "engine_version": self.settings.engine_version,
            "tax_table": table.version,
        })
        bind_calculation_context(employee_id=request.employee_id, calculation_id=calculation_id)
        try:
            with self._tracer.start_as_current_span("payroll.calculate") as span:
                span.set_attribute("payroll.employee_id", request.employee_id)
                span.set_attribute("payroll.tax_table", table.version)
                span.set_attribute("payroll.multi_jurisdiction", request.multi_jurisdiction)
                result = self._run(request, table, calculation_id, as_of)
                span.set_attribute("payroll.issue_count", len(result.issues))
            self._calculations.add(1, {"multi_jurisdiction": request.multi_jurisdiction,
                                       "simulation": request.is_simulation})
            logger.info("payroll_calculated", gross=_money(result.gross_pay), net=_money(result.net_pay),
                        issues=len(result.issues))
        finally:
            clear_calculation_context()

        blocking = [issue for issue in result.issues if issue.category == "validation" and issue.severity == "error"]
        if blocking and self.settings.block_on_validation_errors:
            raise PayrollValidationError(
                f"{len(blocking)} validation error(s) for employee {request.employee_id}", issues=blocking
            )
        return result

    def _run(self, request: CalculationRequest, table: TaxTable, calculation_id: str, as_of: date) -> CalculationResult:
        profile = request.tax_profile
        audit: List[AuditStep] = []
        issues: List[Issue] = []

        # classify
        pay_types = self._pay_types_for(request)
        used_codes = sorted({line.pay_type for line in request.earnings})
        issues.extend(validate_pay_types(pay_types[code] for code in used_codes if code in pay_types))
        audit.append(AuditStep(
            step="classify",
            inputs={"pay_types": used_codes},
            outputs={"flag_errors": [issue.code for issue in issues]},
            explanation="Validated pay-type flag combinations for every pay type used this period",
        ))

        # earnings
        earnings = calculate_earnings(
            request.earnings, pay_types, self.settings.overtime_threshold_hours, self.settings.overtime_premium_factor
        )
        issues.extend(earnings.issues)
        breakdown = list(earnings.breakdown)
        gross = earnings.total_gross
        if request.apply_overtime_premium and earnings.overtime_premium > ZERO:
            premium_type, premium_issues = resolve_pay_type(EarningsCode.OVERTIME_PREMIUM.value, pay_types)
            issues.extend(premium_issues)
            breakdown.append(overtime_premium_line(earnings, premium_type))
            gross += earnings.overtime_premium
        audit.append(AuditStep(
            step="earnings",
            inputs={"lines": len(request.earnings), "overtime_threshold": str(self.settings.overtime_threshold_hours)},
            outputs={
                "gross_pay": _money(gross),
                "overtime_hours": str(earnings.overtime_hours),
                "regular_rate": str(earnings.regular_rate),
                "overtime_premium": _money(earnings.overtime_premium),
                "premium_applied": request.apply_overtime_premium,
            },
            explanation="Gross pay is the sum of earning lines; the regular rate blends every includable pay type",
        ))

        # deductions
        deductions = calculate_deductions(request.deductions, gross, breakdown)
        audit.append(AuditStep(
            step="deductions",
            inputs={"adjusted_gross_pay": _money(deductions.adjusted_gross_pay),
                    "deductions": [d.code for d in request.deductions]},
            outputs={"pre_tax": _money(deductions.pre_tax_total), "post_tax": _money(deductions.post_tax_total),
                     "order": [line.code for line in deductions.breakdown]},
            explanation="Pre-tax before post-tax, each by priority; percentages apply to the wages still remaining",
        ))

        # taxes
        if request.multi_jurisdiction:
            taxable_wages = derive_taxable_wages(breakdown, deductions.pre_tax_total)
            context = MultiRegionTaxContext(
                profile=profile, taxable_wages=taxable_wages, as_of=as_of,
                pay_frequency=request.pay_frequency, ytd=request.ytd,
            )
            multi = calculate_multi_jurisdiction_tax(self.registry, context, self.reciprocity)
            setup = validate_employee_tax_setup(self.registry, profile)
            issues.extend(setup.errors)
            issues.extend(setup.warnings)
            issues.extend(multi.issues)
            taxes_withheld = multi.taxes_withheld
            tax_lines = multi.calculations
            tax_outputs: Dict[str, Any] = {
                "jurisdictions": list(multi.jurisdictions),
                "employer_rules": [line.as_dict() for line in multi.employer_calculations],
            }
        else:
            tax_result = calculate_taxes(TaxInput(
                breakdown=breakdown, pre_tax_deductions=deductions.pre_tax_total, profile=profile, table=table,
                pay_frequency=request.pay_frequency, ytd=request.ytd,
            ))
            issues.extend(tax_result.issues)
            taxable_wages = tax_result.taxable_wages
            taxes_withheld = tax_result.taxes_withheld
            tax_lines = tax_result.calculations
            tax_outputs = {"jurisdictions": [profile.country_jurisdiction, profile.primary_work_jurisdiction]}
        tax_outputs.update({name: _money(value) for name, value in taxes_withheld.as_dict().items()})
        audit.append(AuditStep(
            step="taxes",
            inputs={"taxable_wages": {k: _money(v) for k, v in taxable_wages.items()},
                    "tax_table": table.version, "as_of": as_of.isoformat()},
            outputs=tax_outputs,
            explanation=(
                "Rules from every jurisdiction the employee touches, merged by jurisdiction type"
                if request.multi_jurisdiction else
                "Annualized bracket withholding plus FICA and Medicare under their wage-base caps"
            ),
        ))

        # net pay, from the cent-rounded components so the reported figures reconcile exactly
        taxes_rounded = taxes_withheld.rounded()
        gross_cents = round_cents(gross)
        pre_tax_cents = round_cents(deductions.pre_tax_total)
        post_tax_cents = round_cents(deductions.post_tax_total)
        net = calculate_net_pay(gross_cents, pre_tax_cents, taxes_rounded, post_tax_cents)
        net_pay = round_cents(net.net_pay)
        audit.append(AuditStep(
            step="net_pay",
            inputs={"gross_pay": _money(gross_cents), "pre_tax": _money(pre_tax_cents),
                    "taxes": _money(taxes_rounded.total()), "post_tax": _money(post_tax_cents)},
            outputs={"net_pay": _money(net_pay), "unclamped": _money(net.unclamped_net_pay),
                     "clamped": net.was_clamped},
            explanation="Net pay is gross less pre-tax deductions, taxes and post-tax deductions, floored at zero",
        ))

        # employer taxes
        employer = calculate_employer_taxes(
            taxable_wages, table, profile.unemployment_state, request.ytd, request.suta_rate_override
        )
        issues.extend(employer.issues)
        audit.append(AuditStep(
            step="employer_taxes",
            inputs={"suta_state": profile.unemployment_state, "suta_rate_override":
                    None if request.suta_rate_override is None else str(request.suta_rate_override)},
            outputs={name: _money(value) for name, value in employer.employer_taxes.as_dict().items()},
            explanation="Employer FICA and Medicare match, FUTA and SUTA, each against its own wage base",
        ))

        # deposits
        allocations = allocate_deposits(net_pay, request.deposit_instructions)
        if allocations:
            audit.append(AuditStep(
                step="deposits",
                inputs={"net_pay": _money(net_pay), "accounts": [i.account_id for i in request.deposit_instructions]},
                outputs={a.account_id: _money(a.amount) for a in allocations},
                explanation="Fixed amounts first, then percentages of net pay, then the remainder account",
            ))

        result = CalculationResult(
            calculation_id=calculation_id,
            employee_id=request.employee_id,
            pay_period_start=request.pay_period_start,
            pay_period_end=request.pay_period_end,
            calculation_date=as_of,
            gross_pay=gross_cents,
            taxable_wages={key: round_cents(value) for key, value in taxable_wages.items()},
            pre_tax_deductions=pre_tax_cents,
            post_tax_deductions=post_tax_cents,
            taxes_withheld=taxes_rounded,
            employer_taxes=employer.employer_taxes.rounded(),
            net_pay=net_pay,
            net_pay_was_clamped=net.was_clamped,
            overtime_hours=earnings.overtime_hours,
            regular_rate=earnings.regular_rate,
            earnings_breakdown=tuple(breakdown),
            deductions_breakdown=deductions.breakdown,
            tax_calculations=tuple(tax_lines) + employer.calculations,
            deposit_allocations=allocations,
            engine_version=self.settings.engine_version,
            engine_source=self.settings.engine_source,
            is_simulation=request.is_simulation,
        )

        # validation
        report = validate_calculation(result, self.settings.integrity_tolerance)
        issues.extend(report.issues)
        audit.append(AuditStep(
            step="validation",
            inputs={"tolerance": str(self.settings.integrity_tolerance)},
            outputs={"valid": report.is_valid, "expected_net_pay": _money(floor_zero(report.expected_net_pay)),
                     "issues": [issue.code for issue in issues]},
            explanation="Net pay recomputed from its components and compared within tolerance",
        ))
        for issue in issues:
            if issue.severity == "error":
                logger.warning("calculation_issue", category=issue.category, code=issue.code, field=issue.field)
        return replace(result, issues=tuple(issues), audit_trail=tuple(audit))

    def process_retroactive_adjustment(
        self,
        original: CalculationResult,
        adjustment: RetroactiveAdjustment,
        profile: EmployeeTaxProfile,
        ytd: YtdTotals = YtdTotals(),
        calculation_date: Optional[date] = None,
    ) -> CalculationResult:
        table = self.table_for(calculation_date or original.calculation_date)
        return process_retroactive_adjustment(original, adjustment, table, profile, ytd, calculation_date)

    def process_off_cycle_correction(
        self,
        original: CalculationResult,
        correction: OffCycleCorrection,
        profile: EmployeeTaxProfile,
        ytd: YtdTotals = YtdTotals(),
    ) -> CalculationResult:
        table = self.table_for(correction.pay_date or original.calculation_date)
        return process_off_cycle_correction(original, correction, table, profile, ytd)


def calculate_payroll(payload: Dict[str, Any], engine: Optional[PayrollEngine] = None) -> Dict[str, Any]:
    """Parse a raw request, run it and return the JSON-ready output document."""
    request = PayrollRequest.model_validate(payload)
    engine = engine or PayrollEngine()
    result = engine.calculate(request.to_domain())
    return PayrollOutput.from_result(result).model_dump(mode="json")
