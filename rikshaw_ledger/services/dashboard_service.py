import logging
from collections import Counter
from datetime import date
from typing import Iterable, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from rikshaw_ledger.api.schemas import DashboardMetrics, PaymentRecord, PlanRecord, PlanStatus, UpcomingInstallment, ZERO
from rikshaw_ledger.core import config
from rikshaw_ledger.core.exceptions import LoadFailure
from rikshaw_ledger.db import session as db_session
from rikshaw_ledger.db.models import Customer, Rikshaw
from rikshaw_ledger.services.due_report_service import outstanding_items
from rikshaw_ledger.services.ledger_loader import ledger_loader
from rikshaw_ledger.services.reconciliation_service import group_payments_by_plan, reconcile
from rikshaw_ledger.utils.date_utils import add_months, month_bounds

logger = logging.getLogger(__name__)


def _in_month(value: Optional[date], start: date, end: date) -> bool:
    return value is not None and start <= value <= end


def upcoming_installments(
    plans: List[PlanRecord],
    grouped_payments: dict,
    today: date,
    horizon_months: int,
    strategy: Optional[str] = None,
    allocation: Optional[str] = None,
) -> List[UpcomingInstallment]:
    """Open obligations due up to horizon_months ahead; anything overdue is always included."""
    cutoff = add_months(today, horizon_months)
    upcoming = []
    for plan in plans:
        for item in outstanding_items(plan, grouped_payments[plan.id], cutoff, today, strategy, allocation):
            upcoming.append(UpcomingInstallment(
                plan_id=plan.id,
                customer_name=plan.customer.name or "N/A",
                rikshaw_details=plan.rikshaw.details,
                type=item.type,
                installment_number=item.installment_number,
                amount_due=item.amount_due,
                due_date=item.due_date,
                status=item.status,
            ))
    upcoming.sort(key=lambda row: (row.due_date, row.plan_id, row.installment_number or 0))
    return upcoming


def build_dashboard(
    plans: List[PlanRecord],
    payments: Iterable[PaymentRecord],
    rikshaws: Iterable,
    total_customers: int,
    today: Optional[date] = None,
    strategy: Optional[str] = None,
    allocation: Optional[str] = None,
    horizon_months: Optional[int] = None,
) -> DashboardMetrics:
    """
    Headline figures for the showroom.

    `rikshaws` is any iterable of objects carrying purchase_date and
    purchase_price (ORM rows in production).
    """
    today = today or date.today()
    if horizon_months is None:
        horizon_months = config.settings.UPCOMING_HORIZON_MONTHS
    month_start, month_end = month_bounds(today.year, today.month)
    rikshaws = list(rikshaws)

    grouped = group_payments_by_plan(plans, payments)
    reconciliations = {plan.id: reconcile(plan, grouped[plan.id], today, strategy) for plan in plans}
    status_counts = Counter(r.status.value for r in reconciliations.values())

    sold_this_month = [plan for plan in plans if _in_month(plan.agreement_date, month_start, month_end)]
    month_profit = ZERO
    for plan in sold_this_month:
        sale = plan.rikshaw.sale_price if plan.rikshaw.sale_price is not None else plan.total_price
        month_profit += sale - (plan.rikshaw.purchase_price or ZERO)

    month_investment = sum(
        (r.purchase_price or ZERO for r in rikshaws if _in_month(r.purchase_date, month_start, month_end)),
        ZERO,
    )

    active_plans = [plan for plan in plans if reconciliations[plan.id].status != PlanStatus.COMPLETED]

    return DashboardMetrics(
        as_of=today,
        total_rikshaws=len(rikshaws),
        sold_this_month=len(sold_this_month),
        total_customers=total_customers,
        total_revenue=sum((plan.total_price for plan in plans), ZERO),
        total_collected=sum(
            (r.collected_advance + r.total_monthly_paid - r.monthly_reallocated_to_advance
             for r in reconciliations.values()),
            ZERO,
        ),
        total_remaining_balance=sum((r.remaining_balance for r in reconciliations.values()), ZERO),
        status_counts=dict(status_counts),
        overdue_count=status_counts.get(PlanStatus.OVERDUE.value, 0),
        advance_pending_count=status_counts.get(PlanStatus.ADVANCE_PENDING.value, 0),
        current_month_investment=month_investment,
        current_month_profit=month_profit,
        upcoming_installments=upcoming_installments(active_plans, grouped, today, horizon_months, strategy, allocation),
    )


class DashboardService:
    def __init__(self, loader=None, session_factory=None):
        self._db_factory = session_factory
        self.loader = loader or ledger_loader

    def _session(self):
        return (self._db_factory or db_session.SessionLocal)()

    def get_metrics(self, today: Optional[date] = None) -> DashboardMetrics:
        plans, payments = self.loader.load()
        db = self._session()
        try:
            rikshaws = db.query(Rikshaw).all()
            total_customers = db.query(Customer).count()
        except SQLAlchemyError as e:
            logger.error(f"Loading dashboard inventory failed: {e}")
            raise LoadFailure("dashboard inventory", e) from e
        finally:
            db.close()

        metrics = build_dashboard(plans, payments, rikshaws, total_customers, today)
        logger.info(
            f"Dashboard: {metrics.total_rikshaws} rikshaws, {len(plans)} plans, "
            f"{metrics.overdue_count} overdue, {len(metrics.upcoming_installments)} upcoming"
        )
        return metrics


dashboard_service = DashboardService()
