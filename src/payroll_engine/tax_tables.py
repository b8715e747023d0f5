from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from .core.config import DEFAULT_TAX_TABLES_PATH
from .exceptions import ConfigurationError
from .money import ZERO, quantize, to_decimal


@dataclass(frozen=True)
class TaxBracket:
    up_to: Optional[Decimal]
    rate: Decimal


@dataclass(frozen=True)
class WageBaseRate:
    rate: Decimal
    wage_base: Optional[Decimal] = None


def _decimal_or_none(value) -> Optional[Decimal]:
    return None if value is None else to_decimal(value)


def _wage_base_rate(row: dict) -> WageBaseRate:
    return WageBaseRate(rate=to_decimal(row["rate"]), wage_base=_decimal_or_none(row.get("wage_base")))


def apply_brackets(amount: Decimal, brackets: Sequence[TaxBracket]) -> Decimal:
    remaining = amount
    last_cap = ZERO
    total_tax = ZERO
    for bracket in brackets:
        if bracket.up_to is None:
            taxable_at_rate = max(remaining, ZERO)
        else:
            taxable_at_rate = max(min(remaining, bracket.up_to - last_cap), ZERO)
            last_cap = bracket.up_to
        total_tax += taxable_at_rate * bracket.rate
        remaining -= taxable_at_rate
        if remaining <= 0:
            break
    if remaining > 0 and brackets:
        total_tax += remaining * brackets[-1].rate
    return quantize(total_tax)


class TaxTable:
    def __init__(self, version: str, effective_date: date, federal: dict, states: dict, fica: dict,
                 employer_taxes: dict, suta: dict, sdi: dict, locals_: dict, default_state_rate: Decimal):
        self.version = version
        self.effective_date = effective_date
        self.federal = federal
        self.states = states
        self.fica = fica
        self.employer_taxes = employer_taxes
        self.suta = suta
        self.sdi = sdi
        self.locals = locals_
        self.default_state_rate = default_state_rate

    def brackets_for(self, level: str, filing_status: str, state: Optional[str] = None) -> List[TaxBracket]:
        if level == "federal":
            tables = self.federal
        else:
            if state is None or state not in self.states:
                raise ConfigurationError(
                    f"State {state} not configured in tax table {self.version}", code="unknown_state", field=state
                )
            tables = self.states[state]
        bracket_rows = tables.get(filing_status) or tables.get("single") or []
        return [TaxBracket(up_to=_decimal_or_none(row["up_to"]), rate=to_decimal(row["rate"])) for row in bracket_rows]

    def allowance_for(self, level: str, state: Optional[str] = None) -> Decimal:
        if level == "federal":
            return to_decimal(self.federal.get("allowance", 0))
        if state is None or state not in self.states:
            return ZERO
        return to_decimal(self.states[state].get("allowance", 0))

    def standard_deduction(self, filing_status: str) -> Decimal:
        deductions = self.federal.get("standard_deduction", {})
        return to_decimal(deductions.get(filing_status, deductions.get("single", 0)))

    def supplemental_rate(self, level: str = "federal", state: Optional[str] = None) -> Decimal:
        if level == "federal":
            return to_decimal(self.federal.get("supplemental_rate", 0))
        if not self.has_state(state):
            return self.default_state_rate
        return to_decimal(self.states[state].get("supplemental_rate", self.default_state_rate))

    def has_state(self, state: Optional[str]) -> bool:
        return bool(state) and state in self.states

    def has_state_income_tax(self, state: str) -> bool:
        return not self.states.get(state, {}).get("no_income_tax", False)

    @property
    def social_security(self) -> WageBaseRate:
        return WageBaseRate(
            rate=to_decimal(self.fica["social_security_rate"]),
            wage_base=_decimal_or_none(self.fica.get("social_security_wage_base")),
        )

    @property
    def medicare_rate(self) -> Decimal:
        return to_decimal(self.fica["medicare_rate"])

    @property
    def additional_medicare_rate(self) -> Decimal:
        return to_decimal(self.fica.get("additional_medicare_rate", 0))

    def additional_medicare_threshold(self, filing_status: str) -> Decimal:
        thresholds = self.fica.get("additional_medicare_threshold", {})
        return to_decimal(thresholds.get(filing_status, thresholds.get("single", 200000)))

    def employer_rate(self, name: str) -> Decimal:
        return to_decimal(self.employer_taxes.get(f"{name}_rate", 0))

    @property
    def futa(self) -> WageBaseRate:
        return WageBaseRate(
            rate=to_decimal(self.employer_taxes.get("futa_rate", 0)),
            wage_base=_decimal_or_none(self.employer_taxes.get("futa_wage_base")),
        )

    def suta_for(self, state: Optional[str]) -> Optional[WageBaseRate]:
        """None when the state has no row; callers fall back to :meth:`default_suta`."""
        if state and state in self.suta:
            return _wage_base_rate(self.suta[state])
        return None

    def default_suta(self) -> WageBaseRate:
        row = self.suta.get("default")
        if row is None:
            raise ConfigurationError(f"Tax table {self.version} has no default SUTA row", code="suta_missing")
        return _wage_base_rate(row)

    def sdi_for(self, state: Optional[str]) -> Optional[WageBaseRate]:
        if state and state in self.sdi:
            return _wage_base_rate(self.sdi[state])
        return None

    def local_rate(self, code: Optional[str]) -> Optional[Decimal]:
        if code and code in self.locals:
            return to_decimal(self.locals[code]["rate"])
        return None


class TaxTableRepository:
    def __init__(self, base_path: Path = DEFAULT_TAX_TABLES_PATH):
        self.base_path = Path(base_path)

    def available_versions(self) -> List[str]:
        return sorted([p.stem for p in self.base_path.glob("*.json")])

    def load(self, version: str) -> TaxTable:
        file_path = self.base_path / f"{version}.json"
        if not file_path.exists():
            raise ConfigurationError(
                f"Tax table version {version} not found at {file_path}", code="tax_table_missing", field=version
            )
        with file_path.open("r", encoding="utf-8") as handle:
            data = json.load(handle, parse_float=Decimal)
        return TaxTable(
            version=data["version"],
            effective_date=date.fromisoformat(data["effective_date"]),
            federal=data["federal"],
            states=data.get("states", {}),
            fica=data["fica"],
            employer_taxes=data.get("employer_taxes", {}),
            suta=data.get("suta", {}),
            sdi=data.get("sdi", {}),
            locals_=data.get("locals", {}),
            default_state_rate=to_decimal(data.get("default_state_rate", 0)),
        )

    def load_all(self) -> Dict[str, TaxTable]:
        return {version: self.load(version) for version in self.available_versions()}

    def for_date(self, as_of: date) -> TaxTable:
        return select_table(self.load_all().values(), as_of)


def select_table(tables, as_of: date) -> TaxTable:
    """Latest table whose effective date is on or before ``as_of``."""
    candidates = [table for table in tables if table.effective_date <= as_of]
    if not candidates:
        raise ConfigurationError(f"No tax table effective on {as_of.isoformat()}", code="tax_table_missing")
    return max(candidates, key=lambda table: table.effective_date)
