from decimal import Decimal

from payroll_engine.deductions import (
    UNLISTED_PRIORITY,
    apply_catch_up,
    calculate_deductions,
    deduction_priority,
    recover_arrears,
    sort_deductions,
)
from payroll_engine.earnings import calculate_earnings
from payroll_engine.models import DeductionDefinition, DeductionType, EarningLine
from payroll_engine.pay_types import standard_pay_type_map


def build_deduction(code: str, deduction_type: DeductionType, **kwargs) -> DeductionDefinition:
    return DeductionDefinition(code=code, deduction_type=deduction_type, **kwargs)


def test_percentages_apply_to_remaining_wages_in_priority_order():
    deductions = [
        build_deduction("fsa", DeductionType.FSA, percentage=10),
        build_deduction("401k", DeductionType.RETIREMENT_401K, percentage=10),
    ]

    result = calculate_deductions(deductions, Decimal("1000"))

    assert [line.code for line in result.breakdown] == ["401k", "fsa"]
    assert result.breakdown[0].amount == Decimal("100")
    assert result.breakdown[1].amount == Decimal("90")
    assert result.breakdown[1].basis == Decimal("900")
    assert result.pre_tax_total == Decimal("190")


def test_annual_limit_clamps_to_remaining_balance():
    deduction = build_deduction(
        "401k", DeductionType.RETIREMENT_401K, amount=50, annual_limit=500, current_ytd=480
    )

    line = calculate_deductions([deduction], Decimal("2000")).breakdown[0]

    assert line.requested_amount == Decimal("50")
    assert line.amount == Decimal("20")
    assert line.remaining_annual_limit == Decimal("0")
    assert line.limit_reached


def test_pre_tax_runs_before_post_tax():
    deductions = [
        build_deduction("garn", DeductionType.GARNISHMENT, amount=100, is_pre_tax=False),
        build_deduction("hsa", DeductionType.HSA, amount=50),
    ]

    result = calculate_deductions(deductions, Decimal("1000"))

    assert [line.code for line in result.breakdown] == ["hsa", "garn"]
    assert result.pre_tax_total == Decimal("50")
    assert result.post_tax_total == Decimal("100")
    assert result.total == Decimal("150")


def test_pre_tax_deduction_capped_to_remaining_wages():
    result = calculate_deductions([build_deduction("med", DeductionType.HEALTH_INSURANCE, amount=150)], Decimal("100"))

    assert result.pre_tax_total == Decimal("100")


def test_equal_priorities_keep_input_order():
    deductions = [
        build_deduction("dental", DeductionType.DENTAL_INSURANCE, amount=10),
        build_deduction("medical", DeductionType.HEALTH_INSURANCE, amount=10),
        build_deduction("vision", DeductionType.VISION_INSURANCE, amount=10),
    ]

    assert [d.code for d in sort_deductions(deductions)] == ["dental", "medical", "vision"]


def test_unlisted_types_sort_last_within_their_class():
    other = build_deduction("misc", DeductionType.OTHER, amount=5)
    commuter = build_deduction("transit", DeductionType.COMMUTER, amount=5)

    assert deduction_priority(other) == UNLISTED_PRIORITY
    assert [d.code for d in sort_deductions([other, commuter])] == ["transit", "misc"]


def test_adjusted_gross_excludes_pay_outside_true_gross():
    earnings = calculate_earnings(
        [EarningLine("REG", hours=40, rate=25), EarningLine("REIMB", flat_amount=200)], standard_pay_type_map()
    )

    result = calculate_deductions(
        [build_deduction("401k", DeductionType.RETIREMENT_401K, percentage=10)],
        earnings.total_gross,
        earnings.breakdown,
    )

    assert earnings.total_gross == Decimal("1200")
    assert result.adjusted_gross_pay == Decimal("1000")
    assert result.pre_tax_total == Decimal("100")


def test_catch_up_bounded_by_its_own_limit():
    deduction = build_deduction(
        "401k", DeductionType.RETIREMENT_401K, amount=100, annual_limit=23000, current_ytd=1000,
        catch_up_amount=50, catch_up_limit=7500, catch_up_ytd=7480,
    )

    line = calculate_deductions([deduction], Decimal("3000")).breakdown[0]

    assert line.base_amount == Decimal("100")
    assert line.catch_up_amount == Decimal("20")
    assert line.amount == Decimal("120")
    assert apply_catch_up(deduction, Decimal("5")).amount == Decimal("5")


def test_arrears_recovered_after_current_amount():
    deduction = build_deduction(
        "garn", DeductionType.GARNISHMENT, amount=100, is_pre_tax=False, arrears_balance=300
    )

    line = calculate_deductions([deduction], Decimal("250")).breakdown[0]

    assert line.base_amount == Decimal("100")
    assert line.arrears_recovered == Decimal("150")
    assert line.arrears_remaining == Decimal("150")
    assert line.amount == Decimal("250")


def test_recover_arrears_when_current_amount_exhausts_wages():
    recovery = recover_arrears(Decimal("80"), Decimal("40"), Decimal("60"))

    assert recovery.current_amount == Decimal("60")
    assert recovery.recovered == 0
    assert recovery.carried_forward == Decimal("40")
