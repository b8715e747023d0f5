from decimal import Decimal

from payroll_engine.employer_taxes import calculate_employer_taxes
from payroll_engine.models import YtdTotals
from payroll_engine.tax_tables import TaxTableRepository


def build_wages(amount: str = "2000"):
    return {key: Decimal(amount) for key in ("federal", "state", "fica", "medicare", "futa", "suta", "sdi")}


def build_table(version: str = "2024_v1"):
    return TaxTableRepository().load(version)


def test_employer_match_futa_and_suta():
    result = calculate_employer_taxes(build_wages(), build_table(), "CA")

    taxes = result.employer_taxes
    assert taxes.fica == Decimal("124.00")
    assert taxes.medicare == Decimal("29.00")
    assert taxes.futa == Decimal("12.00")
    assert taxes.suta == Decimal("68.00")
    assert result.issues == ()
    assert all(line.payer == "employer" for line in result.calculations)


def test_futa_stops_at_its_own_wage_base():
    result = calculate_employer_taxes(build_wages(), build_table(), "CA", YtdTotals(futa_wages=6500, suta_wages=7000))

    assert result.employer_taxes.futa == Decimal("3.00")
    assert result.employer_taxes.suta == 0


def test_employer_medicare_has_no_additional_medicare():
    result = calculate_employer_taxes(build_wages(), build_table(), "CA", YtdTotals(medicare_wages=300000))

    assert result.employer_taxes.medicare == Decimal("29.00")


def test_employer_social_security_capped_like_employee():
    result = calculate_employer_taxes(build_wages(), build_table("2023_v1"), "CA", YtdTotals(social_security_wages=160200))

    assert result.employer_taxes.fica == 0


def test_unknown_suta_state_uses_default_row():
    result = calculate_employer_taxes(build_wages(), build_table(), "ZZ")

    assert result.employer_taxes.suta == Decimal("68.00")
    assert [issue.code for issue in result.issues] == ["unknown_suta_state"]


def test_experience_rate_override():
    result = calculate_employer_taxes(build_wages(), build_table(), "NY", suta_rate_override=Decimal("0.01"))

    assert result.employer_taxes.suta == Decimal("20.00")
