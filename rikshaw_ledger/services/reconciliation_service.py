"""
Installment reconciliation.

Turns a plan's static terms plus the unordered set of its payment events into
derived state: collected advance, monthly schedule satisfaction, plan status
and remaining balance. Every screen and report goes through this module so
that the same data always yields the same answer.

Rules:
    * advance_payments[0] is the amount collected at signing; later entries are
      agreed advance that is still owed until covered by advance_adjustment events.
    * commission events settle the showroom's own liability and never reduce
      customer debt.
    * only sums are used, so the order of payment events never matters.
"""
import logging
from collections import defaultdict
from datetime import date
from decimal import Decimal
from typing import Dict, Iterable, List, Optional

from rikshaw_ledger.api.schemas import PaymentRecord, PlanRecord, PlanReconciliation, PlanStatus, ZERO
from rikshaw_ledger.core import config
from rikshaw_ledger.core.exceptions import IntegrityAmbiguity
from rikshaw_ledger.db.models import PaymentType
from rikshaw_ledger.utils.date_utils import add_months

logger = logging.getLogger(__name__)

KNOWN_PAYMENT_TYPES = {t.value for t in PaymentType}


def installment_due_date(plan: PlanRecord, installment_number: int) -> date:
    """Due date of a 1-indexed monthly period."""
    return add_months(plan.agreement_date, installment_number)


def count_installments_due(plan: PlanRecord, today: Optional[date] = None) -> int:
    """Number of monthly periods whose due date is on or before today."""
    today = today or date.today()
    count = 0
    for i in range(1, plan.duration_months + 1):
        if installment_due_date(plan, i) > today:
            break
        count += 1
    return count


def linked_payments(plan: PlanRecord, payments: Iterable[PaymentRecord]) -> List[PaymentRecord]:
    """Payments that belong to this plan. Anything else is logged and skipped."""
    linked = []
    for payment in payments:
        if payment.plan_id == plan.id:
            linked.append(payment)
            continue
        if payment.plan_id is None:
            issue = IntegrityAmbiguity(f"Payment {payment.id} has no plan linkage; excluded", record_id=payment.id)
        else:
            issue = IntegrityAmbiguity(
                f"Payment {payment.id} belongs to plan {payment.plan_id}, not plan {plan.id}; excluded",
                record_id=payment.id,
            )
        logger.warning(str(issue))
    return linked


def totals_by_type(payments: Iterable[PaymentRecord]) -> Dict[str, Decimal]:
    totals = {t: ZERO for t in KNOWN_PAYMENT_TYPES}
    for payment in payments:
        if payment.payment_type not in KNOWN_PAYMENT_TYPES:
            logger.warning(f"Payment {payment.id} has unknown type '{payment.payment_type}'; ignored")
            continue
        totals[payment.payment_type] += payment.amount_paid
    return totals


def payments_by_installment(
    plan: PlanRecord,
    payments: Iterable[PaymentRecord],
    allocation: Optional[str] = None,
) -> Dict[int, Decimal]:
    """
    Monthly money credited to each scheduled period.

    MANUAL: each monthly event counts toward the installment_number the operator
    entered; several events for one period accumulate. Untagged events only
    count toward totals.
    FIFO: the monthly total fills periods 1..N in order, each up to the monthly
    amount; any excess lands on the last period.
    """
    allocation = allocation or config.settings.INSTALLMENT_ALLOCATION
    monthly = [p for p in payments if p.payment_type == PaymentType.MONTHLY.value]

    if allocation == config.ALLOCATION_FIFO:
        remaining = sum((p.amount_paid for p in monthly), ZERO)
        paid: Dict[int, Decimal] = {}
        for i in range(1, plan.duration_months + 1):
            portion = min(remaining, plan.monthly_installment)
            if portion > 0:
                paid[i] = portion
                remaining -= portion
        if remaining > 0 and plan.duration_months > 0:
            last = plan.duration_months
            paid[last] = paid.get(last, ZERO) + remaining
        return paid

    paid = defaultdict(lambda: ZERO)
    for payment in monthly:
        if not payment.installment_number or payment.installment_number < 1:
            logger.debug(f"Monthly payment {payment.id} on plan {plan.id} has no installment number")
            continue
        paid[payment.installment_number] += payment.amount_paid
    return dict(paid)


def plan_status(
    total_price: Decimal,
    customer_total_paid: Decimal,
    remaining_advance_due: Decimal,
    installments_due_count: int,
    monthly_applied: Decimal,
    expected_monthly_paid: Decimal,
) -> PlanStatus:
    """Strict priority: first matching rule wins."""
    if customer_total_paid >= total_price:
        return PlanStatus.COMPLETED
    if remaining_advance_due > 0:
        return PlanStatus.ADVANCE_PENDING
    if installments_due_count == 0:
        return PlanStatus.NOT_ACTIVE
    if monthly_applied < expected_monthly_paid:
        return PlanStatus.OVERDUE
    return PlanStatus.ACTIVE


def reconcile(
    plan: PlanRecord,
    payments: Iterable[PaymentRecord],
    today: Optional[date] = None,
    strategy: Optional[str] = None,
) -> PlanReconciliation:
    """Derive balances and status for one plan from its payment events."""
    today = today or date.today()
    strategy = strategy or config.settings.RECONCILIATION_STRATEGY
    totals = totals_by_type(linked_payments(plan, payments))

    total_agreed_advance = sum((a.amount for a in plan.advance_payments), ZERO)
    initial_collected_advance = plan.advance_payments[0].amount if plan.advance_payments else ZERO
    advance_adjustments_paid = totals[PaymentType.ADVANCE_ADJUSTMENT.value]
    total_monthly_paid = totals[PaymentType.MONTHLY.value]
    total_discount_applied = totals[PaymentType.DISCOUNT.value]
    total_commission_paid = totals[PaymentType.COMMISSION.value]

    installments_due = count_installments_due(plan, today)
    expected_monthly_paid = plan.monthly_installment * installments_due

    collected_advance = initial_collected_advance + advance_adjustments_paid
    monthly_applied = total_monthly_paid
    reallocated = ZERO
    if strategy == config.STRATEGY_WATERFALL:
        # Monthly money beyond what is due so far covers an advance shortfall first
        shortfall = total_agreed_advance - collected_advance
        surplus = total_monthly_paid - expected_monthly_paid
        if shortfall > 0 and surplus > 0:
            reallocated = min(shortfall, surplus)
            collected_advance += reallocated
            monthly_applied -= reallocated

    remaining_advance_due = total_agreed_advance - collected_advance
    customer_total_paid = collected_advance + monthly_applied + total_discount_applied
    customer_debt = plan.total_price - customer_total_paid
    outstanding_commission = plan.showroom_commission - total_commission_paid

    status = plan_status(
        plan.total_price,
        customer_total_paid,
        remaining_advance_due,
        installments_due,
        monthly_applied,
        expected_monthly_paid,
    )

    return PlanReconciliation(
        plan_id=plan.id,
        strategy=strategy,
        total_agreed_advance=total_agreed_advance,
        initial_collected_advance=initial_collected_advance,
        advance_adjustments_paid=advance_adjustments_paid,
        monthly_reallocated_to_advance=reallocated,
        collected_advance=collected_advance,
        remaining_advance_due=remaining_advance_due,
        outstanding_advance=max(remaining_advance_due, ZERO),
        total_monthly_paid=total_monthly_paid,
        total_discount_applied=total_discount_applied,
        total_commission_paid=total_commission_paid,
        outstanding_commission=outstanding_commission,
        customer_total_paid=customer_total_paid,
        customer_debt=customer_debt,
        remaining_balance=customer_debt + outstanding_commission,
        installments_due_count=installments_due,
        expected_monthly_paid=expected_monthly_paid,
        status=status,
    )


def group_payments_by_plan(
    plans: Iterable[PlanRecord],
    payments: Iterable[PaymentRecord],
) -> Dict[int, List[PaymentRecord]]:
    """
    Join payments to plans by plan_id. Every plan gets a (possibly empty) list.
    Payments without a resolvable plan are logged and left out so the rest of
    the ledger can still be computed.
    """
    grouped: Dict[int, List[PaymentRecord]] = {plan.id: [] for plan in plans}
    for payment in payments:
        if payment.plan_id in grouped:
            grouped[payment.plan_id].append(payment)
            continue
        if payment.plan_id is None:
            issue = IntegrityAmbiguity(f"Payment {payment.id} has no plan linkage; excluded", record_id=payment.id)
        else:
            issue = IntegrityAmbiguity(
                f"Payment {payment.id} references unknown plan {payment.plan_id}; excluded",
                record_id=payment.id,
            )
        logger.warning(str(issue))
    return grouped


def reconcile_all(
    plans: List[PlanRecord],
    payments: Iterable[PaymentRecord],
    today: Optional[date] = None,
    strategy: Optional[str] = None,
) -> Dict[int, PlanReconciliation]:
    today = today or date.today()
    grouped = group_payments_by_plan(plans, payments)
    return {plan.id: reconcile(plan, grouped[plan.id], today, strategy) for plan in plans}
