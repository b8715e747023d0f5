"""
Pay-type classifier.

Maps the boolean wage-base flags of a :class:`PayTypeDefinition` to inclusion
decisions used by every downstream engine, and reports flag combinations that
are legally inconsistent.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Iterable, List, Mapping, Tuple

from .core.logging import get_logger
from .exceptions import Issue, configuration_issue, validation_issue
from .models import PayTypeCategory, PayTypeDefinition

logger = get_logger(__name__)


class InclusionKind(str, Enum):
    OVERTIME_HOURS = "overtime_hours"
    OVERTIME_RATE = "overtime_rate"
    GROSS_PAY = "gross_pay"
    FEDERAL_TAX = "federal_tax"
    STATE_TAX = "state_tax"
    LOCAL_TAX = "local_tax"
    FICA_SS = "fica_ss"
    MEDICARE = "medicare"
    UNEMPLOYMENT = "unemployment"
    SDI = "sdi"
    RETIREMENT_401K_BASE = "401k_base"
    WORKERS_COMP = "workers_comp"
    REGULAR_RATE = "regular_rate"
    NET_INCREASE = "net_increase"


# kind -> flag; the flag's dataclass default is the documented default
INCLUSION_FLAGS = MappingProxyType({
    InclusionKind.OVERTIME_HOURS: "counts_toward_overtime_hours",
    InclusionKind.OVERTIME_RATE: "include_in_overtime_rate",
    InclusionKind.GROSS_PAY: "includable_in_true_gross",
    InclusionKind.FEDERAL_TAX: "is_taxable_federal",
    InclusionKind.STATE_TAX: "is_taxable_state",
    InclusionKind.LOCAL_TAX: "is_taxable_local",
    InclusionKind.FICA_SS: "is_taxable_fica",
    InclusionKind.MEDICARE: "is_taxable_medicare",
    InclusionKind.UNEMPLOYMENT: "is_taxable_sui",
    InclusionKind.SDI: "is_taxable_sdi",
    InclusionKind.RETIREMENT_401K_BASE: "includable_in_401k_base",
    InclusionKind.WORKERS_COMP: "subject_to_workers_comp",
    InclusionKind.REGULAR_RATE: "includable_in_regular_rate",
    InclusionKind.NET_INCREASE: "increases_net_pay",
})

_OVERTIME_KINDS = frozenset({InclusionKind.OVERTIME_HOURS, InclusionKind.OVERTIME_RATE, InclusionKind.REGULAR_RATE})


@dataclass(frozen=True)
class FlagValidation:
    valid: bool
    errors: Tuple[Issue, ...]


def is_contractor(pay_type: PayTypeDefinition) -> bool:
    return pay_type.is_contractor_1099 or pay_type.category == PayTypeCategory.CONTRACTOR


def validate_pay_type_flags(pay_type: PayTypeDefinition) -> FlagValidation:
    errors: List[Issue] = []
    field_prefix = f"pay_types.{pay_type.code}"

    if is_contractor(pay_type):
        for flag, label in (
            ("is_taxable_fica", "FICA-taxable"),
            ("is_taxable_medicare", "Medicare-taxable"),
            ("reportable_on_w2", "W-2 reportable"),
        ):
            if getattr(pay_type, flag):
                errors.append(validation_issue(
                    "contractor_flag_conflict",
                    f"Contractor (1099) pay type {pay_type.code} cannot be {label}",
                    f"{field_prefix}.{flag}",
                ))

    if pay_type.is_tipped_employee and not pay_type.tip_status:
        errors.append(validation_issue(
            "tip_status_missing",
            f"Tipped-employee pay type {pay_type.code} has no tip status",
            f"{field_prefix}.tip_status",
        ))

    if pay_type.include_in_overtime_rate and not pay_type.counts_toward_overtime_hours:
        errors.append(validation_issue(
            "overtime_rate_without_hours",
            f"Pay type {pay_type.code} is included in the overtime rate but its hours do not count toward overtime",
            f"{field_prefix}.counts_toward_overtime_hours",
        ))

    if pay_type.is_taxable_federal and not pay_type.includable_in_true_gross:
        errors.append(validation_issue(
            "federal_taxable_outside_gross",
            f"Pay type {pay_type.code} is federally taxable but excluded from true gross pay",
            f"{field_prefix}.includable_in_true_gross",
        ))

    return FlagValidation(valid=not errors, errors=tuple(errors))


def should_include_in_calculation(pay_type: PayTypeDefinition, kind) -> bool:
    kind = InclusionKind(kind)
    if kind in _OVERTIME_KINDS and is_contractor(pay_type):
        return False
    return bool(getattr(pay_type, INCLUSION_FLAGS[kind]))


def build_pay_type_map(definitions: Iterable[PayTypeDefinition]) -> Mapping[str, PayTypeDefinition]:
    """Read-only code -> definition mapping; later duplicates replace earlier ones."""
    return MappingProxyType({definition.code: definition for definition in definitions})


def default_pay_type(code: str) -> PayTypeDefinition:
    return PayTypeDefinition(code=code, name=code, category=PayTypeCategory.OTHER)


def resolve_pay_type(code: str, pay_types: Mapping[str, PayTypeDefinition]) -> Tuple[PayTypeDefinition, List[Issue]]:
    definition = pay_types.get(code)
    if definition is not None:
        return definition, []
    logger.warning("pay_type_not_configured", pay_type=code)
    return default_pay_type(code), [configuration_issue(
        "unknown_pay_type",
        f"Pay type {code} is not configured; using default inclusion flags",
        f"earnings.{code}",
    )]


def validate_pay_types(pay_types: Iterable[PayTypeDefinition]) -> List[Issue]:
    issues: List[Issue] = []
    for pay_type in pay_types:
        issues.extend(validate_pay_type_flags(pay_type).errors)
    return issues
