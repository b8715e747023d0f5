"""
Tax jurisdictions and the read-only registry that holds them.

The registry is built once at startup and handed to each calculation
explicitly. It never changes after construction; ``with_jurisdiction`` returns
a new registry instead.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum
from types import MappingProxyType
from typing import Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple

from .models import coerce_decimals


class JurisdictionType(str, Enum):
    STATE = "state"
    PROVINCE = "province"
    COUNTRY = "country"
    LOCAL = "local"


class RuleTaxType(str, Enum):
    INCOME = "income"
    SOCIAL = "social"
    MEDICARE = "medicare"
    SUI = "sui"
    SDI = "sdi"
    LOCAL = "local"


class RateType(str, Enum):
    FLAT = "flat"
    PERCENTAGE = "percentage"
    PROGRESSIVE = "progressive"


class AppliesTo(str, Enum):
    EMPLOYEE = "employee"
    EMPLOYER = "employer"
    BOTH = "both"


@dataclass(frozen=True)
class RateSchedule:
    min_income: Decimal = Decimal("0")
    max_income: Optional[Decimal] = None
    rate_percent: Decimal = Decimal("0")
    flat_amount: Optional[Decimal] = None

    def __post_init__(self):
        coerce_decimals(self, "min_income", "max_income", "rate_percent", "flat_amount")


@dataclass(frozen=True)
class TaxRule:
    id: str
    jurisdiction_code: str
    tax_type: RuleTaxType
    rate_type: RateType
    rates: Tuple[RateSchedule, ...]
    effective_date: date
    expiry_date: Optional[date] = None
    applies_to: AppliesTo = AppliesTo.EMPLOYEE

    def __post_init__(self):
        object.__setattr__(self, "tax_type", RuleTaxType(self.tax_type))
        object.__setattr__(self, "rate_type", RateType(self.rate_type))
        object.__setattr__(self, "applies_to", AppliesTo(self.applies_to))
        object.__setattr__(self, "rates", tuple(self.rates))

    def is_effective(self, as_of: date) -> bool:
        return self.effective_date <= as_of and (self.expiry_date is None or as_of <= self.expiry_date)

    @property
    def withholds_from_employee(self) -> bool:
        return self.applies_to in (AppliesTo.EMPLOYEE, AppliesTo.BOTH)

    @property
    def charges_employer(self) -> bool:
        return self.applies_to in (AppliesTo.EMPLOYER, AppliesTo.BOTH)


@dataclass(frozen=True)
class TaxJurisdiction:
    id: str
    code: str
    name: str
    type: JurisdictionType
    tax_rules: Tuple[TaxRule, ...] = ()
    parent_code: Optional[str] = None
    is_active: bool = True
    reciprocity_agreements: Tuple[str, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "type", JurisdictionType(self.type))
        object.__setattr__(self, "tax_rules", tuple(self.tax_rules))
        object.__setattr__(self, "reciprocity_agreements", tuple(self.reciprocity_agreements))


class JurisdictionRegistry:
    def __init__(self, jurisdictions: Iterable[TaxJurisdiction] = ()):
        self._jurisdictions: Mapping[str, TaxJurisdiction] = MappingProxyType(
            {jurisdiction.code: jurisdiction for jurisdiction in jurisdictions}
        )

    def get(self, code: str) -> Optional[TaxJurisdiction]:
        jurisdiction = self._jurisdictions.get(code)
        if jurisdiction is None or not jurisdiction.is_active:
            return None
        return jurisdiction

    def __contains__(self, code: object) -> bool:
        return isinstance(code, str) and self.get(code) is not None

    def __iter__(self) -> Iterator[TaxJurisdiction]:
        return iter(self._jurisdictions.values())

    def __len__(self) -> int:
        return len(self._jurisdictions)

    def jurisdictions(self) -> List[TaxJurisdiction]:
        return list(self._jurisdictions.values())

    def with_jurisdiction(self, jurisdiction: TaxJurisdiction) -> "JurisdictionRegistry":
        merged: Dict[str, TaxJurisdiction] = dict(self._jurisdictions)
        merged[jurisdiction.code] = jurisdiction
        return JurisdictionRegistry(merged.values())


@dataclass(frozen=True)
class RuleYear:
    """Rates for one calendar year, kept in step with the shipped tax tables."""

    year: int
    federal_income: Tuple[RateSchedule, ...]
    social_security_wage_base: Decimal
    sdi: Mapping[str, Tuple[RateSchedule, ...]]
    is_latest: bool = False

    @property
    def effective_date(self) -> date:
        return date(self.year, 1, 1)

    @property
    def expiry_date(self) -> Optional[date]:
        return None if self.is_latest else date(self.year, 12, 31)


NO_INCOME_TAX_STATES = frozenset({"TX", "FL", "WA", "NV", "SD", "WY", "AK", "TN", "NH"})


def _schedule(rows: Sequence[Tuple]) -> Tuple[RateSchedule, ...]:
    return tuple(RateSchedule(min_income=lo, max_income=hi, rate_percent=rate) for lo, hi, rate in rows)


RULE_YEARS = (
    RuleYear(
        year=2023,
        federal_income=_schedule([
            (0, 11000, "10"), (11000, 44725, "12"), (44725, 95375, "22"), (95375, 182100, "24"),
            (182100, 231250, "32"), (231250, 578125, "35"), (578125, None, "37"),
        ]),
        social_security_wage_base=Decimal("160200"),
        sdi={"CA": _schedule([(0, 153164, "0.9")]), "NY": _schedule([(0, 6240, "0.5")])},
    ),
    RuleYear(
        year=2024,
        federal_income=_schedule([
            (0, 11600, "10"), (11600, 47150, "12"), (47150, 100525, "22"), (100525, 191950, "24"),
            (191950, 243725, "32"), (243725, 609350, "35"), (609350, None, "37"),
        ]),
        social_security_wage_base=Decimal("168600"),
        sdi={"CA": _schedule([(0, None, "1.1")]), "NY": _schedule([(0, 6240, "0.5")])},
        is_latest=True,
    ),
)

STATE_INCOME_RATES = {
    "CA": _schedule([
        (0, 10099, "1"), (10099, 23942, "2"), (23942, 37788, "4"), (37788, 52455, "6"),
        (52455, 66295, "8"), (66295, 338639, "9.3"), (338639, 406364, "10.3"),
        (406364, 677275, "11.3"), (677275, None, "12.3"),
    ]),
    "NY": _schedule([
        (0, 8500, "4"), (8500, 11700, "4.5"), (11700, 13900, "5.25"), (13900, 80650, "5.85"),
        (80650, 215400, "6.25"), (215400, 1077550, "6.85"), (1077550, None, "8.82"),
    ]),
}
DEFAULT_STATE_INCOME_RATES = _schedule([(0, None, "5")])

PROVINCE_INCOME_RATES = {
    "ON": _schedule([
        (0, 51446, "5.05"), (51446, 102894, "9.15"), (102894, 150000, "11.16"),
        (150000, 220000, "12.16"), (220000, None, "13.16"),
    ]),
    "BC": _schedule([
        (0, 47937, "5.06"), (47937, 95875, "7.7"), (95875, 110076, "10.5"),
        (110076, 133664, "12.29"), (133664, None, "14.7"),
    ]),
}
DEFAULT_PROVINCE_INCOME_RATES = _schedule([(0, None, "10")])

CANADA_FEDERAL_RATES = _schedule([
    (0, 53359, "15"), (53359, 106717, "20.5"), (106717, 165430, "26"),
    (165430, 235675, "29"), (235675, None, "33"),
])


def _rule(year: RuleYear, name: str, code: str, tax_type: RuleTaxType, rate_type: RateType,
          rates: Tuple[RateSchedule, ...], applies_to: AppliesTo = AppliesTo.EMPLOYEE) -> TaxRule:
    return TaxRule(
        id=f"{name}-{year.year}", jurisdiction_code=code, tax_type=tax_type, rate_type=rate_type, rates=rates,
        effective_date=year.effective_date, expiry_date=year.expiry_date, applies_to=applies_to,
    )


def state_rules(code: str, years: Sequence[RuleYear] = RULE_YEARS) -> List[TaxRule]:
    rules: List[TaxRule] = []
    for year in years:
        if code not in NO_INCOME_TAX_STATES:
            rules.append(_rule(year, f"{code}-income", code, RuleTaxType.INCOME, RateType.PROGRESSIVE,
                               STATE_INCOME_RATES.get(code, DEFAULT_STATE_INCOME_RATES)))
        if code in year.sdi:
            rules.append(_rule(year, f"{code}-sdi", code, RuleTaxType.SDI, RateType.PERCENTAGE, year.sdi[code]))
        rules.append(_rule(year, f"{code}-sui", code, RuleTaxType.SUI, RateType.PERCENTAGE,
                           _schedule([(0, 15000, "3.4")]), AppliesTo.EMPLOYER))
    return rules


def province_rules(code: str, years: Sequence[RuleYear] = RULE_YEARS) -> List[TaxRule]:
    return [
        _rule(year, f"{code}-income", code, RuleTaxType.INCOME, RateType.PROGRESSIVE,
              PROVINCE_INCOME_RATES.get(code, DEFAULT_PROVINCE_INCOME_RATES))
        for year in years
    ]


def country_rules(code: str, years: Sequence[RuleYear] = RULE_YEARS) -> List[TaxRule]:
    rules: List[TaxRule] = []
    for year in years:
        if code == "US":
            rules.extend([
                _rule(year, "us-federal-income", "US", RuleTaxType.INCOME, RateType.PROGRESSIVE,
                      year.federal_income),
                _rule(year, "us-social-security", "US", RuleTaxType.SOCIAL, RateType.PERCENTAGE,
                      _schedule([(0, year.social_security_wage_base, "6.2")]), AppliesTo.BOTH),
                _rule(year, "us-medicare", "US", RuleTaxType.MEDICARE, RateType.PERCENTAGE,
                      _schedule([(0, None, "1.45")]), AppliesTo.BOTH),
            ])
        elif code == "CAN":
            rules.append(_rule(year, "can-federal-income", "CAN", RuleTaxType.INCOME, RateType.PROGRESSIVE,
                               CANADA_FEDERAL_RATES))
    return rules


US_STATES = (("CA", "California"), ("NY", "New York"), ("TX", "Texas"), ("FL", "Florida"),
             ("WA", "Washington"), ("NV", "Nevada"))
CANADIAN_PROVINCES = (("ON", "Ontario"), ("BC", "British Columbia"), ("AB", "Alberta"), ("QC", "Quebec"))
# Canada is "CAN" so it never collides with California
COUNTRIES = (("US", "United States"), ("CAN", "Canada"), ("UK", "United Kingdom"), ("DE", "Germany"),
             ("AU", "Australia"))


def default_jurisdictions() -> List[TaxJurisdiction]:
    jurisdictions: List[TaxJurisdiction] = []
    for code, name in US_STATES:
        jurisdictions.append(TaxJurisdiction(
            id=f"us-{code.lower()}", code=code, name=name, type=JurisdictionType.STATE,
            parent_code="US", tax_rules=tuple(state_rules(code)),
        ))
    for code, name in CANADIAN_PROVINCES:
        jurisdictions.append(TaxJurisdiction(
            id=f"can-{code.lower()}", code=code, name=name, type=JurisdictionType.PROVINCE,
            parent_code="CAN", tax_rules=tuple(province_rules(code)),
        ))
    for code, name in COUNTRIES:
        jurisdictions.append(TaxJurisdiction(
            id=f"country-{code.lower()}", code=code, name=name, type=JurisdictionType.COUNTRY,
            tax_rules=tuple(country_rules(code)),
        ))
    return jurisdictions


def default_registry() -> JurisdictionRegistry:
    return JurisdictionRegistry(default_jurisdictions())
