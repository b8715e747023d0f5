from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from .core.logging import get_logger
from .exceptions import Issue, configuration_issue
from .models import EmployerTaxes, TaxCalculation, YtdTotals
from .money import ZERO, quantize
from .tax_tables import TaxTable
from .taxes import capped_taxable

logger = get_logger(__name__)


@dataclass(frozen=True)
class EmployerTaxResult:
    employer_taxes: EmployerTaxes
    calculations: Tuple[TaxCalculation, ...]
    issues: Tuple[Issue, ...] = ()


def _employer_line(tax_type: str, jurisdiction: str, taxable: Decimal, rate: Decimal, explanation: str) -> TaxCalculation:
    return TaxCalculation(tax_type, jurisdiction, taxable, rate, quantize(taxable * rate), explanation, payer="employer")


def calculate_employer_taxes(
    taxable_wages: Dict[str, Decimal],
    table: TaxTable,
    suta_state: Optional[str],
    ytd: YtdTotals = YtdTotals(),
    suta_rate_override: Optional[Decimal] = None,
) -> EmployerTaxResult:
    """
    Employer-side liability: FICA and Medicare match plus FUTA and SUTA.

    The match mirrors the employee's capped Social Security wages but carries no
    Additional Medicare. FUTA and SUTA each run against their own wage base;
    SUTA is keyed by state, with ``suta_rate_override`` for experience-rated
    employers.
    """
    issues: List[Issue] = []
    lines: List[TaxCalculation] = []

    ss_base = table.social_security.wage_base
    ss_taxable = capped_taxable(taxable_wages.get("fica", ZERO), ytd.social_security_wages, ss_base)
    lines.append(_employer_line(
        "social_security", "US", ss_taxable, table.employer_rate("social_security"), "Employer Social Security match",
    ))
    lines.append(_employer_line(
        "medicare", "US", taxable_wages.get("medicare", ZERO), table.employer_rate("medicare"), "Employer Medicare match",
    ))

    futa = table.futa
    futa_taxable = capped_taxable(taxable_wages.get("futa", ZERO), ytd.futa_wages, futa.wage_base)
    lines.append(_employer_line("futa", "US", futa_taxable, futa.rate, f"FUTA on the first {futa.wage_base} of wages"))

    state = suta_state or "default"
    schedule = table.suta_for(suta_state)
    if schedule is None:
        schedule = table.default_suta()
        logger.warning("suta_state_not_configured", state=suta_state, fallback_rate=str(schedule.rate))
        issues.append(configuration_issue(
            "unknown_suta_state",
            f"No SUTA rate for {suta_state or 'unspecified state'} in table {table.version}; default rate applied",
            "tax_profile.suta_state",
        ))
    rate = suta_rate_override if suta_rate_override is not None else schedule.rate
    suta_taxable = capped_taxable(taxable_wages.get("suta", ZERO), ytd.suta_wages, schedule.wage_base)
    lines.append(_employer_line("suta", state, suta_taxable, rate, f"{state} unemployment insurance"))

    amounts = {line.tax_type: line.amount for line in lines}
    return EmployerTaxResult(
        employer_taxes=EmployerTaxes(
            fica=amounts["social_security"],
            medicare=amounts["medicare"],
            futa=amounts["futa"],
            suta=amounts["suta"],
        ),
        calculations=tuple(lines),
        issues=tuple(issues),
    )
