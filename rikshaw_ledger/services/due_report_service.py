"""
Monthly collections report.

For a reporting month, every plan contributes the monthly periods that are
due in that month or earlier and still not fully paid, plus one advance item
when agreed advance is still outstanding. Items are then grouped into one
entry per plan/customer for display and printing.
"""
import logging
from datetime import date
from typing import Dict, Iterable, List, Optional

from rikshaw_ledger.api.schemas import (
    DueEntry,
    DueItem,
    DueReport,
    DueStatus,
    DueType,
    PaymentRecord,
    PlanRecord,
    ZERO,
)
from rikshaw_ledger.services.reconciliation_service import (
    group_payments_by_plan,
    payments_by_installment,
    reconcile,
)
from rikshaw_ledger.services.schedule_service import expand_schedule
from rikshaw_ledger.utils.date_utils import month_bounds
from rikshaw_ledger.utils.string_utils import matches_search

logger = logging.getLogger(__name__)


def advance_anchor_date(plan: PlanRecord) -> date:
    """Outstanding advance is dated at the first advance entry, else the agreement date."""
    if plan.advance_payments and plan.advance_payments[0].date:
        return plan.advance_payments[0].date
    return plan.agreement_date


def _status_for(due_date: date, today: date) -> DueStatus:
    return DueStatus.OVERDUE if due_date < today else DueStatus.DUE


def outstanding_items(
    plan: PlanRecord,
    payments: List[PaymentRecord],
    cutoff: date,
    today: Optional[date] = None,
    strategy: Optional[str] = None,
    allocation: Optional[str] = None,
) -> List[DueItem]:
    """Unpaid obligations of one plan that fall due on or before the cutoff date."""
    today = today or date.today()
    items = []

    paid = payments_by_installment(plan, payments, allocation)
    for row in expand_schedule(plan, paid_by_installment=paid):
        if row.paid_amount >= row.expected_amount or row.due_date > cutoff:
            continue
        items.append(DueItem(
            plan_id=plan.id,
            type=DueType.MONTHLY,
            installment_number=row.installment_number,
            amount_due=row.expected_amount - row.paid_amount,
            due_date=row.due_date,
            status=_status_for(row.due_date, today),
        ))

    reconciliation = reconcile(plan, payments, today, strategy)
    if reconciliation.outstanding_advance > 0:
        anchor = advance_anchor_date(plan)
        if anchor <= cutoff:
            items.append(DueItem(
                plan_id=plan.id,
                type=DueType.ADVANCE,
                amount_due=reconciliation.outstanding_advance,
                due_date=anchor,
                status=_status_for(anchor, today),
            ))

    items.sort(key=lambda item: (item.due_date, item.type.value, item.installment_number or 0))
    return items


def group_due_items(plan: PlanRecord, items: List[DueItem]) -> Optional[DueEntry]:
    """One aggregated entry per plan/customer; None when nothing is due."""
    if not items:
        return None
    any_overdue = any(item.status == DueStatus.OVERDUE for item in items)
    return DueEntry(
        plan_id=plan.id,
        customer_name=plan.customer.name or "N/A",
        phone_number=plan.customer.phone or "N/A",
        rikshaw_details=plan.rikshaw.details,
        items=items,
        total_amount_due=sum((item.amount_due for item in items), ZERO),
        overall_status=DueStatus.OVERDUE if any_overdue else DueStatus.DUE,
        due_date=min(item.due_date for item in items),
    )


def build_due_report(
    year: int,
    month: int,
    plans: List[PlanRecord],
    payments: Iterable[PaymentRecord],
    today: Optional[date] = None,
    strategy: Optional[str] = None,
    allocation: Optional[str] = None,
) -> DueReport:
    """
    Due and overdue items for the given calendar month.

    The result depends only on (month, plans, payment set, today): the order in
    which plans or payments are supplied does not change it.
    """
    today = today or date.today()
    _, month_end = month_bounds(year, month)
    grouped: Dict[int, List[PaymentRecord]] = group_payments_by_plan(plans, payments)

    entries = []
    for plan in plans:
        items = outstanding_items(plan, grouped[plan.id], month_end, today, strategy, allocation)
        entry = group_due_items(plan, items)
        if entry:
            entries.append(entry)
    entries.sort(key=lambda entry: (entry.due_date, entry.plan_id))

    total_expected = sum((entry.total_amount_due for entry in entries), ZERO)
    total_overdue = sum(
        (item.amount_due for entry in entries for item in entry.items if item.status == DueStatus.OVERDUE),
        ZERO,
    )
    logger.info(f"Due report {year}-{month:02d}: {len(entries)} plan(s), total due {total_expected}")

    return DueReport(
        year=year,
        month=month,
        generated_on=today,
        entries=entries,
        total_expected_amount=total_expected,
        total_overdue_amount=total_overdue,
    )


def filter_due_entries(entries: List[DueEntry], term: str) -> List[DueEntry]:
    """Search by customer name, vehicle details or phone number."""
    return [
        entry for entry in entries
        if matches_search(term, entry.customer_name, entry.rikshaw_details, entry.phone_number)
    ]
