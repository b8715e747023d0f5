"""
Exception taxonomy and structured issue records for the payroll engine.

Engines never raise for business-rule problems. They attach ``Issue`` records
to their results and carry on with documented defaults; the exceptions below
are raised only for malformed input, unknown configuration versions, or when a
caller explicitly asks to block (finalization, ``block_on_validation_errors``).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Optional

VALIDATION = "validation"
INTEGRITY = "integrity"
CONFIGURATION = "configuration"


@dataclass(frozen=True)
class Issue:
    category: str
    code: str
    message: str
    field: Optional[str] = None
    severity: str = "error"

    def as_dict(self) -> dict:
        return {
            "category": self.category,
            "code": self.code,
            "message": self.message,
            "field": self.field,
            "severity": self.severity,
        }


def validation_issue(code: str, message: str, field: Optional[str] = None) -> Issue:
    return Issue(category=VALIDATION, code=code, message=message, field=field)


def integrity_issue(code: str, message: str, field: Optional[str] = None) -> Issue:
    return Issue(category=INTEGRITY, code=code, message=message, field=field)


def configuration_issue(code: str, message: str, field: Optional[str] = None) -> Issue:
    return Issue(category=CONFIGURATION, code=code, message=message, field=field, severity="warning")


class PayrollEngineError(Exception):
    """Base exception for the payroll engine"""

    default_code = "payroll_error"

    def __init__(self, message: str, code: Optional[str] = None, field: Optional[str] = None,
                 issues: Optional[Iterable[Issue]] = None):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.field = field
        self.issues: List[Issue] = list(issues or [])


class PayrollValidationError(PayrollEngineError):
    """Flag inconsistencies or missing tax-profile fields"""

    default_code = "validation_failed"


class CalculationIntegrityError(PayrollEngineError):
    """A computed result does not reconcile; must block finalization"""

    default_code = "integrity_failed"


class ConfigurationError(PayrollEngineError):
    """Unknown jurisdiction, missing rate table or table version"""

    default_code = "configuration_missing"


class InvalidInputError(PayrollEngineError, ValueError):
    """Malformed input shape"""

    default_code = "invalid_input"
