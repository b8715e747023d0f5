from decimal import Decimal

from payroll_engine.earnings import calculate_earnings
from payroll_engine.models import EarningLine, EmployeeTaxProfile, FilingStatus, PayFrequency, YtdTotals
from payroll_engine.pay_types import standard_pay_type_map
from payroll_engine.tax_tables import TaxTableRepository
from payroll_engine.taxes import (
    TaxInput,
    calculate_taxes,
    capped_taxable,
    derive_taxable_wages,
    excess_over_threshold,
)


def build_breakdown(*lines: EarningLine):
    return calculate_earnings(list(lines), standard_pay_type_map()).breakdown


def build_input(lines=None, pre_tax=Decimal("0"), version="2024_v1", ytd=None, **profile) -> TaxInput:
    profile.setdefault("primary_work_jurisdiction", "CA")
    return TaxInput(
        breakdown=build_breakdown(*(lines or [EarningLine("REG", hours=80, rate=25)])),
        pre_tax_deductions=pre_tax,
        profile=EmployeeTaxProfile(**profile),
        table=TaxTableRepository().load(version),
        pay_frequency=PayFrequency.BIWEEKLY,
        ytd=ytd or YtdTotals(),
    )


def test_social_security_stops_at_wage_base():
    result = calculate_taxes(build_input(version="2023_v1", ytd=YtdTotals(social_security_wages=160200)))

    assert result.taxes_withheld.fica == 0


def test_social_security_taxes_only_the_part_under_the_cap():
    result = calculate_taxes(build_input(version="2023_v1", ytd=YtdTotals(social_security_wages=159200)))

    line = next(line for line in result.calculations if line.tax_type == "social_security")
    assert line.taxable_wages == Decimal("1000")
    assert result.taxes_withheld.fica == Decimal("62.00")


def test_additional_medicare_prorated_when_threshold_crossed():
    result = calculate_taxes(build_input(ytd=YtdTotals(medicare_wages=199000)))

    assert result.taxes_withheld.medicare == Decimal("38.00")  # 29.00 + 0.9% of 1000


def test_additional_medicare_threshold_follows_filing_status():
    ytd = YtdTotals(medicare_wages=210000)

    single = calculate_taxes(build_input(ytd=ytd))
    joint = calculate_taxes(build_input(ytd=ytd, filing_status=FilingStatus.MARRIED_JOINT))

    assert single.taxes_withheld.medicare == Decimal("47.00")
    assert joint.taxes_withheld.medicare == Decimal("29.00")


def test_federal_annualized_bracket_withholding():
    result = calculate_taxes(build_input())

    # (2000 x 26 - 14600) taxed 10% to 11600, 12% above, back to one period
    assert result.taxes_withheld.federal == Decimal("163.6923")


def test_exempt_federal_withholds_nothing():
    result = calculate_taxes(build_input(is_exempt_federal=True))

    assert result.taxes_withheld.federal == 0


def test_no_income_tax_state():
    result = calculate_taxes(build_input(primary_work_jurisdiction="NV"))

    assert result.taxes_withheld.state == 0
    assert result.taxes_withheld.sdi == 0
    assert result.issues == ()


def test_unknown_state_falls_back_to_default_rate():
    result = calculate_taxes(build_input(primary_work_jurisdiction="ZZ"))

    assert result.taxes_withheld.state == Decimal("100.00")
    assert [issue.code for issue in result.issues] == ["unknown_state"]


def test_missing_work_state_is_a_validation_issue():
    result = calculate_taxes(build_input(primary_work_jurisdiction=""))

    assert result.taxes_withheld.state == 0
    assert result.issues[0].category == "validation"


def test_california_sdi_and_local_tax():
    result = calculate_taxes(build_input(local_jurisdiction="NYC"))

    assert result.taxes_withheld.sdi == Decimal("22.00")
    assert result.taxes_withheld.local == Decimal("77.52")


def test_unknown_local_code_withholds_nothing():
    result = calculate_taxes(build_input(local_jurisdiction="XYZ"))

    assert result.taxes_withheld.local == 0
    assert [issue.code for issue in result.issues] == ["unknown_local_jurisdiction"]


def test_supplemental_wages_use_flat_federal_rate():
    lines = [EarningLine("REG", hours=80, rate=25), EarningLine("BONUS", flat_amount=1000)]

    result = calculate_taxes(build_input(lines=lines))

    bonus_line = next(line for line in result.calculations if line.tax_type == "federal_supplemental")
    assert bonus_line.amount == Decimal("220.00")
    regular_line = next(line for line in result.calculations if line.tax_type == "federal_income")
    assert regular_line.taxable_wages == Decimal("2000")


def test_pre_tax_deductions_reduce_every_wage_base():
    breakdown = build_breakdown(EarningLine("REG", hours=80, rate=25), EarningLine("REIMB", flat_amount=100))

    wages = derive_taxable_wages(breakdown, Decimal("200"))

    assert set(wages) == {"federal", "state", "local", "fica", "medicare", "futa", "suta", "sdi"}
    assert all(value == Decimal("1800") for value in wages.values())


def test_wage_base_floored_at_zero():
    wages = derive_taxable_wages(build_breakdown(EarningLine("REG", hours=1, rate=10)), Decimal("50"))

    assert wages["federal"] == 0


def test_capped_taxable():
    assert capped_taxable(Decimal("2000"), Decimal("159200"), Decimal("160200")) == Decimal("1000")
    assert capped_taxable(Decimal("2000"), Decimal("170000"), Decimal("160200")) == 0
    assert capped_taxable(Decimal("2000"), Decimal("170000"), None) == Decimal("2000")


def test_excess_over_threshold():
    assert excess_over_threshold(Decimal("2000"), Decimal("100"), Decimal("200000")) == 0
    assert excess_over_threshold(Decimal("2000"), Decimal("250000"), Decimal("200000")) == Decimal("2000")
