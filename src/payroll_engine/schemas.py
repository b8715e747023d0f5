"""Boundary models: raw request payloads in, JSON-ready output documents out."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .models import (
    CalculationRequest,
    CalculationResult,
    DeductionDefinition,
    DeductionType,
    DepositInstruction,
    EarningLine,
    EmployeeTaxProfile,
    FilingStatus,
    PayFrequency,
    PayTypeCategory,
    PayTypeDefinition,
    YtdTotals,
)

NonNegative = Annotated[Decimal, Field(ge=0)]


class InputModel(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)


class PayTypeIn(InputModel):
    code: Annotated[str, Field(min_length=1)]
    name: str = ""
    category: PayTypeCategory = PayTypeCategory.REGULAR
    rate: Decimal = Decimal("0")
    multiplier: Decimal = Decimal("1")
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
    counts_toward_overtime_hours: bool = False
    include_in_overtime_rate: bool = False
    includable_in_regular_rate: bool = False
    counts_toward_hours_worked: bool = False
    increases_net_pay: bool = False
    is_contractor_1099: bool = False
    is_tipped_employee: bool = False
    is_reimbursable: bool = False
    is_supplemental: bool = False
    tip_status: str | None = None

    @field_validator("tip_status")
    @classmethod
    def known_tip_status(cls, value: str | None) -> str | None:
        if value is not None and value not in ("cash", "charged", "allocated"):
            raise ValueError("tip_status must be cash, charged or allocated")
        return value

    def to_domain(self) -> PayTypeDefinition:
        return PayTypeDefinition(**self.model_dump())


class EarningIn(InputModel):
    pay_type: Annotated[str, Field(min_length=1)]
    hours: Decimal = Decimal("0")
    rate: Decimal | None = None
    flat_amount: Decimal | None = None
    multiplier: Decimal | None = None
    description: str = ""

    def to_domain(self) -> EarningLine:
        return EarningLine(**self.model_dump())


class DeductionIn(InputModel):
    code: Annotated[str, Field(min_length=1)]
    deduction_type: DeductionType = DeductionType.OTHER
    amount: NonNegative = Decimal("0")
    percentage: Annotated[Decimal, Field(ge=0, le=100)] | None = None
    is_pre_tax: bool = True
    annual_limit: NonNegative | None = None
    current_ytd: NonNegative = Decimal("0")
    catch_up_amount: NonNegative = Decimal("0")
    catch_up_limit: NonNegative | None = None
    catch_up_ytd: NonNegative = Decimal("0")
    arrears_balance: NonNegative = Decimal("0")

    def to_domain(self) -> DeductionDefinition:
        return DeductionDefinition(**self.model_dump())


class TaxProfileIn(InputModel):
    filing_status: FilingStatus = FilingStatus.SINGLE
    allowances: Annotated[int, Field(ge=0)] = 0
    primary_work_jurisdiction: str = ""
    remote_work_jurisdiction: str | None = None
    residency_jurisdiction: str | None = None
    country_jurisdiction: str = "US"
    local_jurisdiction: str | None = None
    suta_state: str | None = None
    additional_federal_withholding: NonNegative = Decimal("0")
    additional_state_withholding: NonNegative = Decimal("0")
    is_exempt_federal: bool = False
    is_exempt_state: bool = False
    dual_tax_scenario: bool = False
    tax_treaty_benefits: list[str] = Field(default_factory=list)

    @field_validator("primary_work_jurisdiction", "remote_work_jurisdiction", "residency_jurisdiction",
                     "country_jurisdiction", "local_jurisdiction", "suta_state")
    @classmethod
    def upper_codes(cls, value: str | None) -> str | None:
        return value.strip().upper() if value else value

    def to_domain(self) -> EmployeeTaxProfile:
        data = self.model_dump()
        data["tax_treaty_benefits"] = tuple(data["tax_treaty_benefits"])
        return EmployeeTaxProfile(**data)


class YtdIn(InputModel):
    gross: NonNegative = Decimal("0")
    federal_wages: NonNegative = Decimal("0")
    state_wages: NonNegative = Decimal("0")
    social_security_wages: NonNegative = Decimal("0")
    medicare_wages: NonNegative = Decimal("0")
    futa_wages: NonNegative = Decimal("0")
    suta_wages: NonNegative = Decimal("0")
    sdi_wages: NonNegative = Decimal("0")

    def to_domain(self) -> YtdTotals:
        return YtdTotals(**self.model_dump())


class DepositInstructionIn(InputModel):
    account_id: Annotated[str, Field(min_length=1)]
    amount: NonNegative | None = None
    percentage: Annotated[Decimal, Field(ge=0, le=100)] | None = None
    is_remainder: bool = False

    @model_validator(mode="after")
    def one_kind(self) -> "DepositInstructionIn":
        if self.amount is not None and self.percentage is not None:
            raise ValueError("deposit instruction takes an amount or a percentage, not both")
        if not self.is_remainder and self.amount is None and self.percentage is None:
            raise ValueError("deposit instruction needs an amount, a percentage or is_remainder")
        return self

    def to_domain(self) -> DepositInstruction:
        return DepositInstruction(**self.model_dump())


class PayrollRequest(InputModel):
    employee_id: Annotated[str, Field(min_length=1)]
    pay_period_start: date
    pay_period_end: date
    earnings: list[EarningIn] = Field(default_factory=list)
    deductions: list[DeductionIn] = Field(default_factory=list)
    tax_profile: TaxProfileIn = Field(default_factory=TaxProfileIn)
    simulation: bool = False
    pay_frequency: PayFrequency = PayFrequency.BIWEEKLY
    ytd: YtdIn = Field(default_factory=YtdIn)
    deposit_instructions: list[DepositInstructionIn] = Field(default_factory=list)
    pay_types: list[PayTypeIn] = Field(default_factory=list)
    multi_jurisdiction: bool = False
    apply_overtime_premium: bool = False
    as_of: date | None = None
    suta_rate_override: Annotated[Decimal, Field(ge=0)] | None = None

    @model_validator(mode="after")
    def period_in_order(self) -> "PayrollRequest":
        if self.pay_period_end < self.pay_period_start:
            raise ValueError("pay_period_end must not be before pay_period_start")
        return self

    def to_domain(self) -> CalculationRequest:
        return CalculationRequest(
            employee_id=self.employee_id,
            pay_period_start=self.pay_period_start,
            pay_period_end=self.pay_period_end,
            earnings=tuple(line.to_domain() for line in self.earnings),
            deductions=tuple(deduction.to_domain() for deduction in self.deductions),
            tax_profile=self.tax_profile.to_domain(),
            pay_frequency=self.pay_frequency,
            ytd=self.ytd.to_domain(),
            deposit_instructions=tuple(instruction.to_domain() for instruction in self.deposit_instructions),
            pay_types=tuple(pay_type.to_domain() for pay_type in self.pay_types),
            is_simulation=self.simulation,
            multi_jurisdiction=self.multi_jurisdiction,
            apply_overtime_premium=self.apply_overtime_premium,
            as_of=self.as_of,
            suta_rate_override=self.suta_rate_override,
        )


class TaxesWithheldOut(BaseModel):
    federal: Decimal
    state: Decimal
    fica: Decimal
    medicare: Decimal
    local: Decimal | None = None
    sdi: Decimal | None = None


class EmployerTaxesOut(BaseModel):
    fica: Decimal
    medicare: Decimal
    futa: Decimal
    suta: Decimal


class DepositAllocationOut(BaseModel):
    account_id: str
    allocation_type: str
    amount: Decimal


class CalculationDetailsOut(BaseModel):
    calculation_id: str
    engine_version: str
    calculation_date: date
    adjusts: str | None = None
    taxable_wages: dict[str, Decimal]
    overtime_hours: Decimal
    regular_rate: Decimal
    earnings_breakdown: list[dict[str, Any]]
    deductions_breakdown: list[dict[str, Any]]
    tax_calculations: list[dict[str, Any]]
    audit_trail: list[dict[str, Any]]
    issues: list[dict[str, Any]]


class MetadataOut(BaseModel):
    engine_source: str
    is_simulation: bool


class PayrollOutput(BaseModel):
    employee_id: str
    pay_period_start: date
    pay_period_end: date
    gross_pay: Decimal
    pre_tax_deductions: Decimal
    taxes_withheld: TaxesWithheldOut
    post_tax_deductions: Decimal
    net_pay: Decimal
    net_pay_was_clamped: bool = False
    employer_taxes: EmployerTaxesOut
    deposit_allocations: list[DepositAllocationOut] = Field(default_factory=list)
    calculation_details: CalculationDetailsOut
    metadata: MetadataOut

    @classmethod
    def from_result(cls, result: CalculationResult) -> "PayrollOutput":
        taxes = result.taxes_withheld
        return cls(
            employee_id=result.employee_id,
            pay_period_start=result.pay_period_start,
            pay_period_end=result.pay_period_end,
            gross_pay=result.gross_pay,
            pre_tax_deductions=result.pre_tax_deductions,
            taxes_withheld=TaxesWithheldOut(
                federal=taxes.federal,
                state=taxes.state,
                fica=taxes.fica,
                medicare=taxes.medicare,
                local=taxes.local or None,
                sdi=taxes.sdi or None,
            ),
            post_tax_deductions=result.post_tax_deductions,
            net_pay=result.net_pay,
            net_pay_was_clamped=result.net_pay_was_clamped,
            employer_taxes=EmployerTaxesOut(**result.employer_taxes.as_dict()),
            deposit_allocations=[
                DepositAllocationOut(account_id=a.account_id, allocation_type=a.allocation_type, amount=a.amount)
                for a in result.deposit_allocations
            ],
            calculation_details=CalculationDetailsOut(
                calculation_id=result.calculation_id,
                engine_version=result.engine_version,
                calculation_date=result.calculation_date,
                adjusts=result.adjusts,
                taxable_wages=result.taxable_wages,
                overtime_hours=result.overtime_hours,
                regular_rate=result.regular_rate,
                earnings_breakdown=[line.as_dict() for line in result.earnings_breakdown],
                deductions_breakdown=[line.as_dict() for line in result.deductions_breakdown],
                tax_calculations=[line.as_dict() for line in result.tax_calculations],
                audit_trail=[step.as_dict() for step in result.audit_trail],
                issues=[issue.as_dict() for issue in result.issues],
            ),
            metadata=MetadataOut(engine_source=result.engine_source, is_simulation=result.is_simulation),
        )
