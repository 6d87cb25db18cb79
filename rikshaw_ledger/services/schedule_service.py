from decimal import Decimal
from typing import Dict, Iterable, List, Optional

from rikshaw_ledger.api.schemas import PaymentRecord, PlanRecord, ScheduleRow, ScheduleStatus, ZERO
from rikshaw_ledger.services.reconciliation_service import (
    installment_due_date,
    linked_payments,
    payments_by_installment,
)


def row_status(paid_amount: Decimal, expected_amount: Decimal) -> ScheduleStatus:
    if paid_amount >= expected_amount:
        return ScheduleStatus.PAID
    if paid_amount > 0:
        return ScheduleStatus.PARTIALLY_PAID
    return ScheduleStatus.UNPAID


def expand_schedule(
    plan: PlanRecord,
    payments: Optional[Iterable[PaymentRecord]] = None,
    paid_by_installment: Optional[Dict[int, Decimal]] = None,
    allocation: Optional[str] = None,
) -> List[ScheduleRow]:
    """
    Month-by-month schedule for a plan: one row per period, numbered from 1.

    Pass either the plan's payments or an already computed
    installment -> paid amount map. The schedule is rebuilt on every call.
    """
    if paid_by_installment is None:
        paid_by_installment = payments_by_installment(plan, linked_payments(plan, payments or []), allocation)

    schedule = []
    for i in range(1, plan.duration_months + 1):
        paid_amount = paid_by_installment.get(i, ZERO)
        schedule.append(ScheduleRow(
            installment_number=i,
            due_date=installment_due_date(plan, i),
            expected_amount=plan.monthly_installment,
            paid_amount=paid_amount,
            status=row_status(paid_amount, plan.monthly_installment),
        ))
    return schedule


def unpaid_installment_numbers(schedule: List[ScheduleRow]) -> List[int]:
    """Periods the operator can still record a monthly payment against."""
    return [row.installment_number for row in schedule if row.status != ScheduleStatus.PAID]
