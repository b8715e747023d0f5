from __future__ import annotations

from decimal import Decimal
from enum import Enum
from typing import List, Mapping

from .classifier import build_pay_type_map
from .models import PayTypeCategory, PayTypeDefinition


class EarningsCode(str, Enum):
    REGULAR = "REG"
    OVERTIME = "OT"
    DOUBLE_TIME = "DT"
    PTO = "PTO"
    HOLIDAY = "HOL"
    PIECE_RATE = "PIECE"
    COMMISSION = "COMM"
    BONUS = "BONUS"
    TIPS = "TIPS"
    REIMBURSEMENT = "REIMB"
    CONTRACTOR = "1099"
    OVERTIME_PREMIUM = "OT_PREMIUM"


def standard_pay_types() -> List[PayTypeDefinition]:
    worked = dict(counts_toward_overtime_hours=True, includable_in_regular_rate=True, counts_toward_hours_worked=True)
    return [
        PayTypeDefinition(EarningsCode.REGULAR.value, "Regular pay", PayTypeCategory.REGULAR,
                          include_in_overtime_rate=True, **worked),
        # premium hours already carry their multiplier; they do not count again toward the threshold
        PayTypeDefinition(EarningsCode.OVERTIME.value, "Overtime", PayTypeCategory.OVERTIME,
                          multiplier=Decimal("1.5"), counts_toward_hours_worked=True),
        PayTypeDefinition(EarningsCode.DOUBLE_TIME.value, "Double time", PayTypeCategory.DOUBLE_TIME,
                          multiplier=Decimal("2"), counts_toward_hours_worked=True),
        PayTypeDefinition(EarningsCode.PTO.value, "Paid time off", PayTypeCategory.PTO),
        PayTypeDefinition(EarningsCode.HOLIDAY.value, "Holiday pay", PayTypeCategory.HOLIDAY),
        PayTypeDefinition(EarningsCode.PIECE_RATE.value, "Piece work", PayTypeCategory.PIECE_RATE,
                          include_in_overtime_rate=True, **worked),
        PayTypeDefinition(EarningsCode.COMMISSION.value, "Commission", PayTypeCategory.COMMISSION,
                          includable_in_regular_rate=True, is_supplemental=True),
        PayTypeDefinition(EarningsCode.BONUS.value, "Bonus", PayTypeCategory.BONUS, is_supplemental=True),
        PayTypeDefinition(EarningsCode.TIPS.value, "Reported tips", PayTypeCategory.TIPS,
                          is_tipped_employee=True, tip_status="cash"),
        PayTypeDefinition(EarningsCode.REIMBURSEMENT.value, "Expense reimbursement", PayTypeCategory.REIMBURSEMENT,
                          is_taxable_federal=False, is_taxable_state=False, is_taxable_local=False,
                          is_taxable_fica=False, is_taxable_medicare=False, is_taxable_sui=False,
                          is_taxable_sdi=False, includable_in_true_gross=False, includable_in_401k_base=False,
                          subject_to_workers_comp=False, reportable_on_w2=False,
                          is_reimbursable=True, increases_net_pay=True),
        PayTypeDefinition(EarningsCode.CONTRACTOR.value, "Contractor payment", PayTypeCategory.CONTRACTOR,
                          is_contractor_1099=True, is_taxable_federal=False, is_taxable_state=False,
                          is_taxable_local=False, is_taxable_fica=False, is_taxable_medicare=False,
                          is_taxable_sui=False, is_taxable_sdi=False, includable_in_401k_base=False,
                          subject_to_workers_comp=False, reportable_on_w2=False),
        PayTypeDefinition(EarningsCode.OVERTIME_PREMIUM.value, "Overtime premium", PayTypeCategory.OVERTIME),
    ]


def standard_pay_type_map() -> Mapping[str, PayTypeDefinition]:
    return build_pay_type_map(standard_pay_types())
