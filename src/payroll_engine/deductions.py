"""
Deductions engine.

Deductions are applied one at a time against a running balance of remaining
wages, pre-tax first, each class ordered by a fixed priority table. A later
percentage deduction is therefore a percentage of what the earlier ones left.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from types import MappingProxyType
from typing import List, Optional, Sequence, Tuple

from .classifier import InclusionKind, should_include_in_calculation
from .core.logging import get_logger
from .models import DeductionDefinition, DeductionLine, DeductionType, EarningBreakdown
from .money import ZERO, floor_zero, percent_of, quantize

logger = get_logger(__name__)

UNLISTED_PRIORITY = 99

PRE_TAX_PRIORITY = MappingProxyType({
    DeductionType.RETIREMENT_401K: 1,
    DeductionType.RETIREMENT_403B: 1,
    DeductionType.HSA: 2,
    DeductionType.FSA: 3,
    DeductionType.HEALTH_INSURANCE: 4,
    DeductionType.DENTAL_INSURANCE: 4,
    DeductionType.VISION_INSURANCE: 4,
    DeductionType.COMMUTER: 5,
})

POST_TAX_PRIORITY = MappingProxyType({
    DeductionType.GARNISHMENT: 1,
    DeductionType.CHILD_SUPPORT: 2,
    DeductionType.UNION_DUES: 3,
    DeductionType.ROTH_401K: 4,
    DeductionType.LOAN_REPAYMENT: 5,
    DeductionType.CHARITY: 6,
})


@dataclass(frozen=True)
class DeductionsResult:
    pre_tax_total: Decimal
    post_tax_total: Decimal
    breakdown: Tuple[DeductionLine, ...]
    adjusted_gross_pay: Decimal

    @property
    def total(self) -> Decimal:
        return self.pre_tax_total + self.post_tax_total


@dataclass(frozen=True)
class ArrearsRecovery:
    current_amount: Decimal
    recovered: Decimal
    carried_forward: Decimal


@dataclass(frozen=True)
class CatchUpResult:
    amount: Decimal
    remaining_limit: Optional[Decimal]


def deduction_priority(deduction: DeductionDefinition) -> int:
    table = PRE_TAX_PRIORITY if deduction.is_pre_tax else POST_TAX_PRIORITY
    return table.get(deduction.deduction_type, UNLISTED_PRIORITY)


def sort_deductions(deductions: Sequence[DeductionDefinition]) -> List[DeductionDefinition]:
    # sorted() is stable, so equal priorities keep their input order
    return sorted(deductions, key=lambda d: (0 if d.is_pre_tax else 1, deduction_priority(d)))


def adjusted_gross_from_breakdown(gross_pay: Decimal, pay_type_breakdown: Sequence[EarningBreakdown]) -> Decimal:
    if not pay_type_breakdown:
        return quantize(gross_pay)
    return quantize(sum(
        (item.amount for item in pay_type_breakdown
         if should_include_in_calculation(item.pay_type, InclusionKind.GROSS_PAY)),
        ZERO,
    ))


def remaining_annual_capacity(annual_limit: Optional[Decimal], ytd: Decimal) -> Optional[Decimal]:
    if annual_limit is None:
        return None
    return floor_zero(annual_limit - ytd)


def apply_catch_up(deduction: DeductionDefinition, available: Decimal) -> CatchUpResult:
    """Catch-up contributions are bounded by their own annual limit and the wages left."""
    if deduction.catch_up_amount <= ZERO:
        return CatchUpResult(amount=ZERO, remaining_limit=None)
    amount = deduction.catch_up_amount
    capacity = remaining_annual_capacity(deduction.catch_up_limit, deduction.catch_up_ytd)
    if capacity is not None:
        amount = min(amount, capacity)
    amount = quantize(min(amount, floor_zero(available)))
    remaining = None if capacity is None else quantize(capacity - amount)
    return CatchUpResult(amount=amount, remaining_limit=remaining)


def recover_arrears(current_amount: Decimal, arrears_balance: Decimal, available: Decimal) -> ArrearsRecovery:
    """The current-period amount takes priority; the backlog gets whatever capacity is left."""
    available = floor_zero(available)
    current = min(current_amount, available)
    recovered = min(floor_zero(arrears_balance), available - current)
    return ArrearsRecovery(
        current_amount=quantize(current),
        recovered=quantize(recovered),
        carried_forward=quantize(floor_zero(arrears_balance) - recovered),
    )


def calculate_deductions(
    deductions: Sequence[DeductionDefinition],
    gross_pay: Decimal,
    pay_type_breakdown: Sequence[EarningBreakdown] = (),
) -> DeductionsResult:
    adjusted_gross = adjusted_gross_from_breakdown(gross_pay, pay_type_breakdown)
    remaining_wages = adjusted_gross
    pre_tax_total = ZERO
    post_tax_total = ZERO
    lines: List[DeductionLine] = []

    for deduction in sort_deductions(deductions):
        basis = remaining_wages
        if deduction.percentage is not None:
            requested = percent_of(basis, deduction.percentage)
        else:
            requested = quantize(deduction.amount)

        amount = requested
        capacity = remaining_annual_capacity(deduction.annual_limit, deduction.current_ytd)
        if capacity is not None:
            amount = min(amount, capacity)
        if deduction.is_pre_tax:
            amount = min(amount, floor_zero(remaining_wages))

        recovery = None
        if deduction.arrears_balance > ZERO:
            recovery = recover_arrears(amount, deduction.arrears_balance, remaining_wages)
            amount = recovery.current_amount
        amount = quantize(amount)

        after_base = remaining_wages - amount - (recovery.recovered if recovery else ZERO)
        catch_up = apply_catch_up(deduction, after_base)

        remaining_limit = None if capacity is None else quantize(capacity - amount)
        line = DeductionLine(
            code=deduction.code,
            deduction_type=deduction.deduction_type,
            is_pre_tax=deduction.is_pre_tax,
            priority=deduction_priority(deduction),
            basis=quantize(basis),
            requested_amount=requested,
            base_amount=amount,
            catch_up_amount=catch_up.amount,
            arrears_recovered=recovery.recovered if recovery else ZERO,
            arrears_remaining=recovery.carried_forward if recovery else ZERO,
            remaining_annual_limit=remaining_limit,
            limit_reached=capacity is not None and requested > capacity,
        )
        lines.append(line)

        if deduction.is_pre_tax:
            pre_tax_total += line.amount
        else:
            post_tax_total += line.amount
        remaining_wages = floor_zero(remaining_wages - line.amount)

        logger.debug(
            "deduction_applied",
            code=deduction.code,
            pre_tax=deduction.is_pre_tax,
            priority=line.priority,
            requested=str(requested),
            amount=str(line.amount),
            remaining_wages=str(remaining_wages),
        )

    return DeductionsResult(
        pre_tax_total=quantize(pre_tax_total),
        post_tax_total=quantize(post_tax_total),
        breakdown=tuple(lines),
        adjusted_gross_pay=adjusted_gross,
    )
