from dataclasses import replace
from datetime import date
from decimal import Decimal

import pytest

from payroll_engine.exceptions import CalculationIntegrityError, InvalidInputError
from payroll_engine.models import (
    CalculationResult,
    DepositInstruction,
    EmployeeTaxProfile,
    EmployerTaxes,
    TaxesWithheld,
    YtdTotals,
)
from payroll_engine.net_pay import (
    OffCycleCorrection,
    RetroactiveAdjustment,
    allocate_deposits,
    calculate_net_pay,
    ensure_finalizable,
    process_off_cycle_correction,
    process_retroactive_adjustment,
    supplemental_withholding,
    validate_calculation,
)
from payroll_engine.tax_tables import TaxTableRepository


def build_table():
    return TaxTableRepository().load("2024_v1")


def build_profile() -> EmployeeTaxProfile:
    return EmployeeTaxProfile(primary_work_jurisdiction="CA")


def build_original(**overrides) -> CalculationResult:
    values = dict(
        calculation_id="orig-1",
        employee_id="emp1",
        pay_period_start=date(2024, 3, 1),
        pay_period_end=date(2024, 3, 14),
        calculation_date=date(2024, 3, 14),
        gross_pay=Decimal("2000.00"),
        taxable_wages={key: Decimal("2000.00") for key in ("federal", "state", "fica", "medicare", "futa", "suta", "sdi")},
        pre_tax_deductions=Decimal("0.00"),
        post_tax_deductions=Decimal("0.00"),
        taxes_withheld=TaxesWithheld(
            federal=Decimal("200.00"), state=Decimal("50.00"), fica=Decimal("124.00"), medicare=Decimal("29.00")
        ),
        employer_taxes=EmployerTaxes(
            fica=Decimal("124.00"), medicare=Decimal("29.00"), futa=Decimal("12.00"), suta=Decimal("68.00")
        ),
        net_pay=Decimal("1597.00"),
    )
    values.update(overrides)
    return CalculationResult(**values)


def test_net_pay_subtracts_every_component():
    result = calculate_net_pay(
        Decimal("1000"), Decimal("100"), TaxesWithheld(federal=Decimal("100"), fica=Decimal("62")), Decimal("50")
    )

    assert result.taxable_wages == Decimal("900")
    assert result.net_pay == Decimal("688")
    assert not result.was_clamped


def test_negative_net_pay_is_clamped_and_flagged():
    result = calculate_net_pay(Decimal("100"), Decimal("0"), Decimal("150"), Decimal("0"))

    assert result.net_pay == 0
    assert result.unclamped_net_pay == Decimal("-50")
    assert result.was_clamped


def test_split_deposit_fixed_then_percentage_then_remainder():
    instructions = [
        DepositInstruction("checking", amount=200),
        DepositInstruction("savings", percentage=50),
        DepositInstruction("brokerage", is_remainder=True),
    ]

    allocations = allocate_deposits(Decimal("1000"), instructions)

    assert [(a.account_id, a.amount) for a in allocations] == [
        ("checking", Decimal("200.00")),
        ("savings", Decimal("500.00")),
        ("brokerage", Decimal("300.00")),
    ]
    assert [a.allocation_type for a in allocations] == ["fixed", "percentage", "remainder"]


def test_allocations_keep_instruction_order():
    instructions = [
        DepositInstruction("brokerage", is_remainder=True),
        DepositInstruction("savings", percentage=50),
        DepositInstruction("checking", amount=200),
    ]

    allocations = allocate_deposits(Decimal("1000"), instructions)

    assert [a.amount for a in allocations] == [Decimal("300.00"), Decimal("500.00"), Decimal("200.00")]


def test_allocations_capped_to_unallocated_balance():
    instructions = [
        DepositInstruction("checking", amount=150),
        DepositInstruction("savings", percentage=50),
        DepositInstruction("rest", is_remainder=True),
    ]

    allocations = allocate_deposits(Decimal("100"), instructions)

    assert [a.amount for a in allocations] == [Decimal("100.00"), Decimal("0.00"), Decimal("0.00")]


def test_deposits_need_exactly_one_remainder():
    with pytest.raises(InvalidInputError):
        allocate_deposits(Decimal("100"), [DepositInstruction("checking", amount=50)])
    with pytest.raises(InvalidInputError):
        allocate_deposits(
            Decimal("100"), [DepositInstruction("a", is_remainder=True), DepositInstruction("b", is_remainder=True)]
        )
    assert allocate_deposits(Decimal("100"), []) == ()


def test_supplemental_withholding_uses_flat_rates():
    result = supplemental_withholding(Decimal("1000"), build_table(), build_profile())

    assert result.taxes.federal == Decimal("220")
    assert result.taxes.state == Decimal("66")
    assert result.taxes.fica == Decimal("62")
    assert result.taxes.medicare == Decimal("14.5")
    assert result.taxes.sdi == Decimal("11")
    assert result.employer_taxes.futa == Decimal("6")


def test_negative_supplemental_reverses_withholding():
    ytd = YtdTotals(gross=5000, social_security_wages=5000, medicare_wages=5000, futa_wages=5000,
                    suta_wages=5000, sdi_wages=5000)

    result = supplemental_withholding(Decimal("-1000"), build_table(), build_profile(), ytd)

    assert result.taxes.federal == Decimal("-220")
    assert result.taxes.fica == Decimal("-62")
    assert all(line.amount <= 0 for line in result.calculations)


def test_retroactive_adjustment_composes_new_result():
    original = build_original()
    adjustment = RetroactiveAdjustment(hours=80, previous_rate=25, new_rate=26, reason="Raise effective March 1")

    adjusted = process_retroactive_adjustment(original, adjustment, build_table(), build_profile())

    assert adjusted.adjusts == "orig-1"
    assert adjusted.calculation_id != original.calculation_id
    assert adjusted.gross_pay == Decimal("2080.00")
    assert adjusted.taxes_withheld.federal == Decimal("217.60")
    assert adjusted.taxes_withheld.sdi == Decimal("0.88")
    assert adjusted.net_pay == Decimal("1647.12")
    assert adjusted.audit_trail[-1].step == "retroactive_adjustment"
    assert original.gross_pay == Decimal("2000.00")
    assert validate_calculation(adjusted).is_valid


def test_off_cycle_bonus_correction():
    original = build_original()

    corrected = process_off_cycle_correction(
        original, OffCycleCorrection(amount=Decimal("500"), kind="bonus"), build_table(), build_profile()
    )

    assert corrected.adjusts == original.calculation_id
    assert corrected.gross_pay == Decimal("2500.00")
    assert corrected.net_pay == Decimal("1910.25")
    assert corrected.earnings_breakdown[-1].pay_type.is_supplemental
    assert validate_calculation(corrected).is_valid


def test_correction_on_clamped_original_keeps_shortfall():
    original = build_original(
        gross_pay=Decimal("100.00"),
        taxable_wages={key: Decimal("100.00") for key in ("federal", "state", "fica", "medicare", "futa", "suta", "sdi")},
        post_tax_deductions=Decimal("500.00"),
        taxes_withheld=TaxesWithheld(fica=Decimal("6.20"), medicare=Decimal("1.45")),
        net_pay=Decimal("0.00"),
        net_pay_was_clamped=True,
    )

    corrected = process_off_cycle_correction(
        original, OffCycleCorrection(amount=Decimal("100")), build_table(), build_profile()
    )

    # 200.00 gross - 45.00 taxes - 500.00 garnishment
    assert corrected.taxes_withheld.total() == Decimal("45.00")
    assert corrected.net_pay == 0
    assert corrected.net_pay_was_clamped
    assert "net_pay_mismatch" not in [issue.code for issue in validate_calculation(corrected).issues]


def test_correction_net_pay_reconciles_exactly():
    original = build_original()

    for cents in range(1, 20000, 37):
        corrected = process_off_cycle_correction(
            original, OffCycleCorrection(amount=Decimal(cents) / 100), build_table(), build_profile()
        )

        expected = (corrected.gross_pay - corrected.pre_tax_deductions - corrected.taxes_withheld.total()
                    - corrected.post_tax_deductions)
        assert corrected.net_pay == expected


def test_zero_off_cycle_correction_rejected():
    with pytest.raises(InvalidInputError):
        process_off_cycle_correction(build_original(), OffCycleCorrection(amount=Decimal("0")), build_table(), build_profile())


def test_validation_passes_within_tolerance():
    report = validate_calculation(build_original(net_pay=Decimal("1597.02")))

    assert report.is_valid
    assert report.expected_net_pay == Decimal("1597.00")


def test_validation_flags_mismatch_beyond_tolerance():
    report = validate_calculation(build_original(net_pay=Decimal("1590.00")))

    assert [issue.code for issue in report.issues] == ["net_pay_mismatch"]
    assert report.issues[0].category == "integrity"


def test_validation_flags_deductions_exceeding_gross():
    result = build_original(
        gross_pay=Decimal("100.00"),
        pre_tax_deductions=Decimal("80.00"),
        post_tax_deductions=Decimal("50.00"),
        taxes_withheld=TaxesWithheld(),
        net_pay=Decimal("0.00"),
    )

    report = validate_calculation(result)

    assert [issue.code for issue in report.issues] == ["net_pay_clamped", "deductions_exceed_gross"]


def test_validation_flags_negative_net_pay():
    report = validate_calculation(build_original(net_pay=Decimal("-5.00")))

    assert "negative_net_pay" in [issue.code for issue in report.issues]


def test_ensure_finalizable_blocks_on_any_failure():
    good = build_original()
    bad = replace(build_original(employee_id="emp2"), net_pay=Decimal("1500.00"))

    ensure_finalizable([good])
    with pytest.raises(CalculationIntegrityError) as excinfo:
        ensure_finalizable([good, bad])
    assert excinfo.value.issues[0].message.startswith("emp2:")
