from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import List, Mapping, Sequence, Tuple

from .classifier import InclusionKind, resolve_pay_type, should_include_in_calculation
from .core.logging import get_logger
from .exceptions import Issue
from .models import EarningBreakdown, EarningLine, PayTypeDefinition
from .money import ZERO, floor_zero, quantize

logger = get_logger(__name__)

OVERTIME_THRESHOLD_HOURS = Decimal("40")
OVERTIME_PREMIUM_FACTOR = Decimal("0.5")


@dataclass(frozen=True)
class WeeklyThresholdRule:
    threshold: Decimal = OVERTIME_THRESHOLD_HOURS

    def overtime_hours(self, total_hours: Decimal) -> Decimal:
        return floor_zero(total_hours - self.threshold)


@dataclass(frozen=True)
class EarningsResult:
    total_gross: Decimal
    total_hours: Decimal
    overtime_hours: Decimal
    regular_rate: Decimal
    regular_rate_wages: Decimal
    regular_rate_hours: Decimal
    overtime_premium: Decimal
    breakdown: Tuple[EarningBreakdown, ...]
    issues: Tuple[Issue, ...] = ()


def classify_line(line: EarningLine, pay_type: PayTypeDefinition) -> EarningBreakdown:
    return EarningBreakdown(
        pay_type=pay_type,
        hours=line.hours,
        rate=line.effective_rate(pay_type),
        multiplier=line.effective_multiplier(pay_type),
        amount=line.amount_for(pay_type),
        counted_for_overtime=should_include_in_calculation(pay_type, InclusionKind.OVERTIME_HOURS),
        in_regular_rate=should_include_in_calculation(pay_type, InclusionKind.REGULAR_RATE),
        in_gross=should_include_in_calculation(pay_type, InclusionKind.GROSS_PAY),
    )


def calculate_earnings(
    lines: Sequence[EarningLine],
    pay_types: Mapping[str, PayTypeDefinition],
    overtime_threshold: Decimal = OVERTIME_THRESHOLD_HOURS,
    premium_factor: Decimal = OVERTIME_PREMIUM_FACTOR,
) -> EarningsResult:
    """
    Gross pay, overtime hours and the blended regular rate for one period.

    Two independent flag-gated passes run over the lines: hours that count
    toward the overtime threshold, and wages/hours that make up the regular
    rate. A pay type may take part in one pass and not the other, which is how
    concurrent pay types (hourly plus piece work, say) blend into a single
    overtime premium.
    """
    issues: List[Issue] = []
    breakdown: List[EarningBreakdown] = []
    for line in lines:
        pay_type, lookup_issues = resolve_pay_type(line.pay_type, pay_types)
        issues.extend(lookup_issues)
        breakdown.append(classify_line(line, pay_type))

    total_gross = sum((item.amount for item in breakdown), ZERO)

    overtime_counted_hours = sum((item.hours for item in breakdown if item.counted_for_overtime), ZERO)

    regular_rate_wages = sum((item.amount for item in breakdown if item.in_regular_rate), ZERO)
    regular_rate_hours = sum((item.hours for item in breakdown if item.in_regular_rate), ZERO)
    regular_rate = quantize(regular_rate_wages / regular_rate_hours) if regular_rate_hours > ZERO else ZERO

    overtime_hours = WeeklyThresholdRule(overtime_threshold).overtime_hours(overtime_counted_hours)
    overtime_premium = quantize(overtime_hours * regular_rate * premium_factor)

    logger.debug(
        "earnings_calculated",
        lines=len(breakdown),
        gross=str(total_gross),
        overtime_hours=str(overtime_hours),
        regular_rate=str(regular_rate),
    )
    return EarningsResult(
        total_gross=quantize(total_gross),
        total_hours=overtime_counted_hours,
        overtime_hours=overtime_hours,
        regular_rate=regular_rate,
        regular_rate_wages=quantize(regular_rate_wages),
        regular_rate_hours=regular_rate_hours,
        overtime_premium=overtime_premium,
        breakdown=tuple(breakdown),
        issues=tuple(issues),
    )


def overtime_premium_line(result: EarningsResult, pay_type: PayTypeDefinition) -> EarningBreakdown:
    """Derived earning line carrying the half-time premium on overtime hours."""
    return EarningBreakdown(
        pay_type=pay_type,
        hours=result.overtime_hours,
        rate=result.regular_rate,
        multiplier=OVERTIME_PREMIUM_FACTOR,
        amount=result.overtime_premium,
        in_gross=should_include_in_calculation(pay_type, InclusionKind.GROSS_PAY),
        derived=True,
    )
