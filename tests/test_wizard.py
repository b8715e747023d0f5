from datetime import date
from decimal import Decimal

import pytest

from payroll_engine.core.config import EngineSettings
from payroll_engine.engine import PayrollEngine
from payroll_engine.exceptions import CalculationIntegrityError
from payroll_engine.models import (
    CalculationRequest,
    DeductionDefinition,
    DeductionType,
    EarningLine,
    EmployeeTaxProfile,
)
from payroll_engine.wizard import PreviewWizard


def build_wizard() -> PreviewWizard:
    return PreviewWizard(PayrollEngine(settings=EngineSettings()))


def build_request(employee_id: str, hours, rate, **overrides) -> CalculationRequest:
    values = dict(
        employee_id=employee_id,
        pay_period_start=date(2024, 3, 1),
        pay_period_end=date(2024, 3, 14),
        earnings=(EarningLine("REG", hours=hours, rate=rate),),
        tax_profile=EmployeeTaxProfile(primary_work_jurisdiction="CA"),
    )
    values.update(overrides)
    return CalculationRequest(**values)


def test_preview_wizard_aggregates_totals():
    wizard = build_wizard()

    totals = wizard.preview([build_request("emp1", 40, 20), build_request("emp2", 45, 22)])

    assert set(totals.employees.keys()) == {"emp1", "emp2"}
    assert totals.gross_pay == Decimal("1790.00")
    assert totals.total_net_pay == sum(result.net_pay for result in totals.employees.values())
    assert totals.employer_taxes["futa"] == Decimal("10.74")
    assert totals.taxes_withheld["federal"] > 0
    assert totals.can_finalize
    assert wizard.finalize(totals) is totals


def test_integrity_failure_blocks_finalization():
    wizard = build_wizard()
    overdrawn = build_request(
        "emp3", 10, 10,
        deductions=(DeductionDefinition("garn", DeductionType.GARNISHMENT, amount=500, is_pre_tax=False),),
    )

    totals = wizard.preview([build_request("emp1", 40, 20), overdrawn])

    assert not totals.can_finalize
    assert set(totals.integrity_failures) == {"emp3"}
    with pytest.raises(CalculationIntegrityError) as excinfo:
        wizard.finalize(totals)
    assert all(issue.message.startswith("emp3:") for issue in excinfo.value.issues)
