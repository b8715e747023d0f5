from dataclasses import replace
from datetime import date
from decimal import Decimal

from payroll_engine.jurisdictions import (
    JurisdictionType,
    RateSchedule,
    TaxJurisdiction,
    default_registry,
)
from payroll_engine.models import EmployeeTaxProfile, YtdTotals
from payroll_engine.multi_region import (
    MultiRegionTaxContext,
    calculate_multi_jurisdiction_tax,
    detect_tax_jurisdictions,
    progressive_tax,
    rules_in_effect,
    validate_employee_tax_setup,
)

AS_OF = date(2024, 3, 15)


def build_context(profile: EmployeeTaxProfile, amount: str = "2000", ytd: YtdTotals = YtdTotals(), as_of: date = AS_OF):
    wages = {key: Decimal(amount) for key in ("federal", "state", "local", "fica", "medicare", "futa", "suta", "sdi")}
    return MultiRegionTaxContext(profile=profile, taxable_wages=wages, as_of=as_of, ytd=ytd)


def test_work_state_taxes_and_no_income_tax_residency_adds_nothing():
    profile = EmployeeTaxProfile(primary_work_jurisdiction="CA", residency_jurisdiction="NV")

    result = calculate_multi_jurisdiction_tax(default_registry(), build_context(profile))

    assert result.jurisdictions == ("US", "CA", "NV")
    income_lines = [line for line in result.calculations if line.tax_type == "income"]
    assert {line.jurisdiction for line in income_lines} == {"US", "CA"}
    assert not [line for line in result.calculations if line.jurisdiction == "NV"]
    assert result.taxes_withheld.state == Decimal("20.0000")
    assert result.taxes_withheld.sdi == Decimal("22.0000")
    assert result.taxes_withheld.federal == Decimal("200.0000")
    assert result.taxes_withheld.fica == Decimal("124.0000")
    assert result.taxes_withheld.medicare == Decimal("29.0000")


def test_employer_only_rules_reported_separately():
    profile = EmployeeTaxProfile(primary_work_jurisdiction="CA", residency_jurisdiction="NV")

    result = calculate_multi_jurisdiction_tax(default_registry(), build_context(profile))

    assert not [line for line in result.calculations if line.tax_type == "sui"]
    sui = [line for line in result.employer_calculations if line.tax_type == "sui"]
    assert {line.jurisdiction for line in sui} == {"CA", "NV"}
    assert all(line.payer == "employer" for line in result.employer_calculations)


def test_detect_jurisdictions_is_ordered_and_deduplicated():
    profile = EmployeeTaxProfile(
        primary_work_jurisdiction="NY", remote_work_jurisdiction="NY", residency_jurisdiction="CA"
    )

    assert detect_tax_jurisdictions(profile) == ["NY", "CA"]


def test_unknown_jurisdiction_is_skipped_with_issue():
    profile = EmployeeTaxProfile(primary_work_jurisdiction="CA", remote_work_jurisdiction="ZZ")

    result = calculate_multi_jurisdiction_tax(default_registry(), build_context(profile))

    assert "ZZ" not in result.jurisdictions
    assert [issue.code for issue in result.issues] == ["unknown_jurisdiction"]
    assert result.taxes_withheld.state == Decimal("20.0000")


def test_2023_period_uses_2023_rules():
    profile = EmployeeTaxProfile(primary_work_jurisdiction="CA")

    result = calculate_multi_jurisdiction_tax(default_registry(), build_context(profile, as_of=date(2023, 6, 1)))

    assert result.issues == ()
    assert result.taxes_withheld.federal == Decimal("200.0000")
    assert result.taxes_withheld.fica == Decimal("124.0000")
    assert result.taxes_withheld.sdi == Decimal("18.0000")


def test_date_before_every_rule_falls_back_with_issue():
    profile = EmployeeTaxProfile(primary_work_jurisdiction="CA")

    result = calculate_multi_jurisdiction_tax(default_registry(), build_context(profile, as_of=date(2022, 6, 1)))

    assert [(issue.code, issue.category) for issue in result.issues] == [
        ("no_rules_in_effect", "configuration"),
        ("no_rules_in_effect", "configuration"),
    ]
    assert result.taxes_withheld.fica == Decimal("124.0000")
    assert result.taxes_withheld.state == Decimal("20.0000")
    assert result.taxes_withheld.sdi == Decimal("18.0000")


def test_rules_in_effect_picks_the_year():
    california = default_registry().get("CA")

    rules, fell_back = rules_in_effect(california, date(2023, 12, 31))

    assert not fell_back
    assert {rule.id for rule in rules} == {"CA-income-2023", "CA-sdi-2023", "CA-sui-2023"}


def test_social_security_rule_respects_ytd_cap():
    profile = EmployeeTaxProfile(primary_work_jurisdiction="TX")

    result = calculate_multi_jurisdiction_tax(
        default_registry(), build_context(profile, ytd=YtdTotals(social_security_wages=168600))
    )

    assert result.taxes_withheld.fica == 0
    assert result.taxes_withheld.state == 0


def test_social_security_cap_follows_the_year():
    profile = EmployeeTaxProfile(primary_work_jurisdiction="TX")
    ytd = YtdTotals(social_security_wages=162000)

    current = calculate_multi_jurisdiction_tax(default_registry(), build_context(profile, ytd=ytd))
    prior = calculate_multi_jurisdiction_tax(default_registry(), build_context(profile, ytd=ytd, as_of=date(2023, 6, 1)))

    assert current.taxes_withheld.fica == Decimal("124.0000")
    assert prior.taxes_withheld.fica == 0


def test_progressive_tax_slices_from_ytd():
    rates = (
        RateSchedule(min_income=0, max_income=1000, rate_percent=10),
        RateSchedule(min_income=1000, max_income=None, rate_percent=20),
    )

    assert progressive_tax(rates, Decimal("500"), Decimal("800")) == Decimal("80")
    assert progressive_tax(rates, Decimal("500"), Decimal("0")) == Decimal("50")


def test_reciprocity_hook_receives_merged_taxes():
    seen = {}

    def relieve_state(taxes, jurisdictions, registry):
        seen["jurisdictions"] = jurisdictions
        return replace(taxes, state=Decimal("0"))

    profile = EmployeeTaxProfile(primary_work_jurisdiction="CA", residency_jurisdiction="NY")

    result = calculate_multi_jurisdiction_tax(default_registry(), build_context(profile), reciprocity=relieve_state)

    assert seen["jurisdictions"] == ("US", "CA", "NY")
    assert result.taxes_withheld.state == 0


def test_default_reciprocity_leaves_both_states_taxed():
    profile = EmployeeTaxProfile(primary_work_jurisdiction="CA", residency_jurisdiction="NY")

    result = calculate_multi_jurisdiction_tax(default_registry(), build_context(profile))

    # CA 1% + NY 4% of 2000
    assert result.taxes_withheld.state == Decimal("100.0000")


def test_registry_is_immutable():
    registry = default_registry()
    extra = TaxJurisdiction(id="us-or", code="OR", name="Oregon", type=JurisdictionType.STATE, parent_code="US")

    extended = registry.with_jurisdiction(extra)

    assert "OR" in extended
    assert "OR" not in registry
    assert len(extended) == len(registry) + 1


def test_inactive_jurisdiction_is_not_returned():
    registry = default_registry().with_jurisdiction(
        TaxJurisdiction(id="us-or", code="OR", name="Oregon", type="state", is_active=False)
    )

    assert registry.get("OR") is None
    assert "OR" not in registry


def test_canada_does_not_collide_with_california():
    registry = default_registry()

    assert registry.get("CA").type == JurisdictionType.STATE
    assert registry.get("CAN").type == JurisdictionType.COUNTRY


def test_setup_validation_errors_and_warnings():
    registry = default_registry()

    missing = validate_employee_tax_setup(registry, EmployeeTaxProfile())
    assert not missing.is_valid
    assert [issue.code for issue in missing.errors] == ["work_jurisdiction_missing"]

    unknown = validate_employee_tax_setup(registry, EmployeeTaxProfile(primary_work_jurisdiction="ZZ"))
    assert [issue.code for issue in unknown.errors] == ["work_jurisdiction_unknown"]

    dual = validate_employee_tax_setup(
        registry, EmployeeTaxProfile(primary_work_jurisdiction="CA", dual_tax_scenario=True, residency_jurisdiction="UK")
    )
    assert dual.is_valid
    assert [issue.code for issue in dual.warnings] == ["dual_tax_without_remote", "treaty_benefits_missing"]

    treaty = validate_employee_tax_setup(
        registry, EmployeeTaxProfile(primary_work_jurisdiction="CA", residency_jurisdiction="UK",
                                     tax_treaty_benefits=("US-UK",))
    )
    assert treaty.warnings == ()
