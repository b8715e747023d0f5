from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field, fields, replace
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from .exceptions import Issue
from .money import ONE, ZERO, quantize, round_cents, to_decimal


def coerce_decimals(instance, *names: str) -> None:
    for name in names:
        value = getattr(instance, name)
        if value is not None and not isinstance(value, Decimal):
            object.__setattr__(instance, name, to_decimal(value))


def make_calculation_id(payload: Dict[str, Any]) -> str:
    canonical = json.dumps(payload, sort_keys=True, default=str, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:32]


class PayTypeCategory(str, Enum):
    REGULAR = "regular"
    OVERTIME = "overtime"
    DOUBLE_TIME = "double_time"
    PTO = "pto"
    HOLIDAY = "holiday"
    BONUS = "bonus"
    COMMISSION = "commission"
    SUPPLEMENTAL = "supplemental"
    PIECE_RATE = "piece_rate"
    TIPS = "tips"
    REIMBURSEMENT = "reimbursement"
    CONTRACTOR = "contractor"
    OTHER = "other"


class FilingStatus(str, Enum):
    SINGLE = "single"
    MARRIED_JOINT = "married_joint"
    MARRIED_SEPARATE = "married_separate"
    HEAD_OF_HOUSEHOLD = "head_of_household"


class PayFrequency(str, Enum):
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    SEMI_MONTHLY = "semi_monthly"
    MONTHLY = "monthly"
    ANNUALLY = "annually"

    @property
    def periods_per_year(self) -> int:
        return {"weekly": 52, "biweekly": 26, "semi_monthly": 24, "monthly": 12, "annually": 1}[self.value]


class DeductionType(str, Enum):
    RETIREMENT_401K = "401k"
    RETIREMENT_403B = "403b"
    HSA = "hsa"
    FSA = "fsa"
    HEALTH_INSURANCE = "health_insurance"
    DENTAL_INSURANCE = "dental_insurance"
    VISION_INSURANCE = "vision_insurance"
    COMMUTER = "commuter"
    GARNISHMENT = "garnishment"
    CHILD_SUPPORT = "child_support"
    UNION_DUES = "union_dues"
    ROTH_401K = "roth_401k"
    LOAN_REPAYMENT = "loan_repayment"
    CHARITY = "charity"
    OTHER = "other"


@dataclass(frozen=True)
class PayTypeDefinition:
    """Every flag has an explicit default, so "absent" and "false" never differ."""

    code: str
    name: str = ""
    category: PayTypeCategory = PayTypeCategory.REGULAR
    rate: Decimal = ZERO
    multiplier: Decimal = ONE
    # wage-base inclusion, default on
    is_taxable_federal: bool = True
    is_taxable_state: bool = True
    is_taxable_local: bool = True
    is_taxable_fica: bool = True
    is_taxable_medicare: bool = True
    is_taxable_sui: bool = True
    is_taxable_sdi: bool = True
    includable_in_true_gross: bool = True
    includable_in_401k_base: bool = True
    subject_to_workers_comp: bool = True
    reportable_on_w2: bool = True
    # behaviour, opt-in
    counts_toward_overtime_hours: bool = False
    include_in_overtime_rate: bool = False
    includable_in_regular_rate: bool = False
    counts_toward_hours_worked: bool = False
    increases_net_pay: bool = False
    is_contractor_1099: bool = False
    is_tipped_employee: bool = False
    is_reimbursable: bool = False
    is_supplemental: bool = False
    tip_status: Optional[str] = None

    def __post_init__(self):
        coerce_decimals(self, "rate", "multiplier")
        if isinstance(self.category, str) and not isinstance(self.category, PayTypeCategory):
            object.__setattr__(self, "category", PayTypeCategory(self.category))


@dataclass(frozen=True)
class EarningLine:
    pay_type: str
    hours: Decimal = ZERO
    rate: Optional[Decimal] = None
    flat_amount: Optional[Decimal] = None
    multiplier: Optional[Decimal] = None
    description: str = ""

    def __post_init__(self):
        coerce_decimals(self, "hours", "rate", "flat_amount", "multiplier")

    def effective_rate(self, pay_type: PayTypeDefinition) -> Decimal:
        return self.rate if self.rate is not None else pay_type.rate

    def effective_multiplier(self, pay_type: PayTypeDefinition) -> Decimal:
        return self.multiplier if self.multiplier is not None else pay_type.multiplier

    def amount_for(self, pay_type: PayTypeDefinition) -> Decimal:
        if self.flat_amount is not None:
            return quantize(self.flat_amount)
        return quantize(self.hours * self.effective_rate(pay_type) * self.effective_multiplier(pay_type))


@dataclass(frozen=True)
class EarningBreakdown:
    pay_type: PayTypeDefinition
    hours: Decimal
    rate: Decimal
    multiplier: Decimal
    amount: Decimal
    counted_for_overtime: bool = False
    in_regular_rate: bool = False
    in_gross: bool = True
    derived: bool = False

    def as_dict(self) -> Dict[str, Any]:
        return {
            "pay_type": self.pay_type.code,
            "category": self.pay_type.category.value,
            "hours": str(self.hours),
            "rate": str(self.rate),
            "multiplier": str(self.multiplier),
            "amount": str(round_cents(self.amount)),
            "counted_for_overtime": self.counted_for_overtime,
            "in_regular_rate": self.in_regular_rate,
            "in_gross": self.in_gross,
            "derived": self.derived,
        }


@dataclass(frozen=True)
class DeductionDefinition:
    code: str
    deduction_type: DeductionType = DeductionType.OTHER
    amount: Decimal = ZERO
    percentage: Optional[Decimal] = None  # percent of remaining wages, 10 == 10%
    is_pre_tax: bool = True
    annual_limit: Optional[Decimal] = None
    current_ytd: Decimal = ZERO
    catch_up_amount: Decimal = ZERO
    catch_up_limit: Optional[Decimal] = None
    catch_up_ytd: Decimal = ZERO
    arrears_balance: Decimal = ZERO

    def __post_init__(self):
        coerce_decimals(
            self, "amount", "percentage", "annual_limit", "current_ytd",
            "catch_up_amount", "catch_up_limit", "catch_up_ytd", "arrears_balance",
        )
        if isinstance(self.deduction_type, str) and not isinstance(self.deduction_type, DeductionType):
            object.__setattr__(self, "deduction_type", DeductionType(self.deduction_type))


@dataclass(frozen=True)
class DeductionLine:
    code: str
    deduction_type: DeductionType
    is_pre_tax: bool
    priority: int
    basis: Decimal
    requested_amount: Decimal
    base_amount: Decimal
    catch_up_amount: Decimal = ZERO
    arrears_recovered: Decimal = ZERO
    arrears_remaining: Decimal = ZERO
    remaining_annual_limit: Optional[Decimal] = None
    limit_reached: bool = False

    @property
    def amount(self) -> Decimal:
        return self.base_amount + self.catch_up_amount + self.arrears_recovered

    def as_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "deduction_type": self.deduction_type.value,
            "is_pre_tax": self.is_pre_tax,
            "priority": self.priority,
            "amount": str(round_cents(self.amount)),
            "requested_amount": str(round_cents(self.requested_amount)),
            "catch_up_amount": str(round_cents(self.catch_up_amount)),
            "arrears_recovered": str(round_cents(self.arrears_recovered)),
            "arrears_remaining": str(round_cents(self.arrears_remaining)),
            "remaining_annual_limit": (
                None if self.remaining_annual_limit is None else str(round_cents(self.remaining_annual_limit))
            ),
            "limit_reached": self.limit_reached,
        }


@dataclass(frozen=True)
class EmployeeTaxProfile:
    filing_status: FilingStatus = FilingStatus.SINGLE
    allowances: int = 0
    primary_work_jurisdiction: str = ""
    remote_work_jurisdiction: Optional[str] = None
    residency_jurisdiction: Optional[str] = None
    country_jurisdiction: str = "US"
    local_jurisdiction: Optional[str] = None
    suta_state: Optional[str] = None
    additional_federal_withholding: Decimal = ZERO
    additional_state_withholding: Decimal = ZERO
    is_exempt_federal: bool = False
    is_exempt_state: bool = False
    dual_tax_scenario: bool = False
    tax_treaty_benefits: Tuple[str, ...] = ()

    def __post_init__(self):
        coerce_decimals(self, "additional_federal_withholding", "additional_state_withholding")
        if isinstance(self.filing_status, str) and not isinstance(self.filing_status, FilingStatus):
            object.__setattr__(self, "filing_status", FilingStatus(self.filing_status))
        object.__setattr__(self, "tax_treaty_benefits", tuple(self.tax_treaty_benefits))

    @property
    def unemployment_state(self) -> str:
        return self.suta_state or self.primary_work_jurisdiction


@dataclass(frozen=True)
class YtdTotals:
    """Wage bases from January 1 through the prior period."""

    gross: Decimal = ZERO
    federal_wages: Decimal = ZERO
    state_wages: Decimal = ZERO
    social_security_wages: Decimal = ZERO
    medicare_wages: Decimal = ZERO
    futa_wages: Decimal = ZERO
    suta_wages: Decimal = ZERO
    sdi_wages: Decimal = ZERO

    def __post_init__(self):
        coerce_decimals(self, *(f.name for f in fields(self)))

    def plus(self, wages: Dict[str, Decimal]) -> "YtdTotals":
        return replace(
            self,
            gross=self.gross + wages.get("gross", ZERO),
            federal_wages=self.federal_wages + wages.get("federal", ZERO),
            state_wages=self.state_wages + wages.get("state", ZERO),
            social_security_wages=self.social_security_wages + wages.get("fica", ZERO),
            medicare_wages=self.medicare_wages + wages.get("medicare", ZERO),
            futa_wages=self.futa_wages + wages.get("futa", ZERO),
            suta_wages=self.suta_wages + wages.get("suta", ZERO),
            sdi_wages=self.sdi_wages + wages.get("sdi", ZERO),
        )


@dataclass(frozen=True)
class TaxesWithheld:
    federal: Decimal = ZERO
    state: Decimal = ZERO
    fica: Decimal = ZERO
    medicare: Decimal = ZERO
    local: Decimal = ZERO
    sdi: Decimal = ZERO

    def total(self) -> Decimal:
        return self.federal + self.state + self.fica + self.medicare + self.local + self.sdi

    def plus(self, other: "TaxesWithheld") -> "TaxesWithheld":
        return TaxesWithheld(**{f.name: getattr(self, f.name) + getattr(other, f.name) for f in fields(self)})

    def rounded(self) -> "TaxesWithheld":
        return TaxesWithheld(**{f.name: round_cents(getattr(self, f.name)) for f in fields(self)})

    def as_dict(self) -> Dict[str, Decimal]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


@dataclass(frozen=True)
class EmployerTaxes:
    fica: Decimal = ZERO
    medicare: Decimal = ZERO
    futa: Decimal = ZERO
    suta: Decimal = ZERO

    def total(self) -> Decimal:
        return self.fica + self.medicare + self.futa + self.suta

    def plus(self, other: "EmployerTaxes") -> "EmployerTaxes":
        return EmployerTaxes(**{f.name: getattr(self, f.name) + getattr(other, f.name) for f in fields(self)})

    def rounded(self) -> "EmployerTaxes":
        return EmployerTaxes(**{f.name: round_cents(getattr(self, f.name)) for f in fields(self)})

    def as_dict(self) -> Dict[str, Decimal]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


@dataclass(frozen=True)
class TaxCalculation:
    tax_type: str
    jurisdiction: str
    taxable_wages: Decimal
    rate: Decimal
    amount: Decimal
    explanation: str = ""
    payer: str = "employee"

    def as_dict(self) -> Dict[str, Any]:
        return {
            "tax_type": self.tax_type,
            "jurisdiction": self.jurisdiction,
            "payer": self.payer,
            "taxable_wages": str(round_cents(self.taxable_wages)),
            "rate": str(self.rate),
            "amount": str(round_cents(self.amount)),
            "explanation": self.explanation,
        }


@dataclass(frozen=True)
class AuditStep:
    step: str
    inputs: Dict[str, Any]
    outputs: Dict[str, Any]
    explanation: str

    def as_dict(self) -> Dict[str, Any]:
        return {"step": self.step, "inputs": self.inputs, "outputs": self.outputs, "explanation": self.explanation}


@dataclass(frozen=True)
class DepositInstruction:
    account_id: str
    amount: Optional[Decimal] = None
    percentage: Optional[Decimal] = None
    is_remainder: bool = False

    def __post_init__(self):
        coerce_decimals(self, "amount", "percentage")


@dataclass(frozen=True)
class DepositAllocation:
    account_id: str
    allocation_type: str  # fixed, percentage, remainder
    amount: Decimal


@dataclass(frozen=True)
class CalculationResult:
    calculation_id: str
    employee_id: str
    pay_period_start: date
    pay_period_end: date
    calculation_date: date
    gross_pay: Decimal
    taxable_wages: Dict[str, Decimal]
    pre_tax_deductions: Decimal
    post_tax_deductions: Decimal
    taxes_withheld: TaxesWithheld
    employer_taxes: EmployerTaxes
    net_pay: Decimal
    net_pay_was_clamped: bool = False
    overtime_hours: Decimal = ZERO
    regular_rate: Decimal = ZERO
    earnings_breakdown: Tuple[EarningBreakdown, ...] = ()
    deductions_breakdown: Tuple[DeductionLine, ...] = ()
    tax_calculations: Tuple[TaxCalculation, ...] = ()
    deposit_allocations: Tuple[DepositAllocation, ...] = ()
    issues: Tuple[Issue, ...] = ()
    audit_trail: Tuple[AuditStep, ...] = ()
    engine_version: str = ""
    engine_source: str = "payroll_engine"
    is_simulation: bool = False
    adjusts: Optional[str] = None

    def total_withheld(self) -> Decimal:
        return round_cents(self.taxes_withheld.total() + self.pre_tax_deductions + self.post_tax_deductions)

    @property
    def has_blocking_issues(self) -> bool:
        return any(issue.severity == "error" for issue in self.issues)


@dataclass(frozen=True)
class CalculationRequest:
    """One employee, one pay period. YTD figures and as-of date come from the caller."""

    employee_id: str
    pay_period_start: date
    pay_period_end: date
    earnings: Tuple[EarningLine, ...] = ()
    deductions: Tuple[DeductionDefinition, ...] = ()
    tax_profile: EmployeeTaxProfile = field(default_factory=EmployeeTaxProfile)
    pay_frequency: PayFrequency = PayFrequency.BIWEEKLY
    ytd: YtdTotals = field(default_factory=YtdTotals)
    deposit_instructions: Tuple[DepositInstruction, ...] = ()
    pay_types: Tuple[PayTypeDefinition, ...] = ()
    is_simulation: bool = False
    multi_jurisdiction: bool = False
    apply_overtime_premium: bool = False
    as_of: Optional[date] = None
    suta_rate_override: Optional[Decimal] = None

    def __post_init__(self):
        for name in ("earnings", "deductions", "deposit_instructions", "pay_types"):
            object.__setattr__(self, name, tuple(getattr(self, name)))
        object.__setattr__(self, "pay_frequency", PayFrequency(self.pay_frequency))
        coerce_decimals(self, "suta_rate_override")

    @property
    def effective_as_of(self) -> date:
        return self.as_of or self.pay_period_end
