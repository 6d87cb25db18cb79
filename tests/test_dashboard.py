from datetime import date
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from rikshaw_ledger.api.schemas import AdvancePayment, DueStatus, DueType, RikshawSnapshot
from rikshaw_ledger.services.dashboard_service import DashboardService, build_dashboard

D = Decimal
TODAY = date(2025, 3, 5)


@pytest.fixture
def plans(make_plan):
    running = make_plan(id=1)
    fresh = make_plan(
        id=2,
        total_price=D("300000"),
        advance_payments=[
            AdvancePayment(amount=D("100000"), date=date(2025, 3, 1)),
            AdvancePayment(amount=D("50000"), date=date(2025, 3, 1)),
        ],
        monthly_installment=D("15000"),
        duration_months=10,
        agreement_date=date(2025, 3, 1),
        showroom_commission=D("5000"),
        rikshaw=RikshawSnapshot(engine_number="ENG2002", purchase_price=D("250000"), sale_price=D("300000")),
    )
    return [running, fresh]


@pytest.fixture
def payments(make_payment):
    return [make_payment(35000, "monthly", installment_number=1, plan_id=1)]


@pytest.fixture
def rikshaws():
    return [
        SimpleNamespace(purchase_date=date(2025, 1, 2), purchase_price=D("400000")),
        SimpleNamespace(purchase_date=date(2025, 3, 2), purchase_price=D("250000")),
    ]


def test_headline_figures(plans, payments, rikshaws):
    metrics = build_dashboard(plans, payments, rikshaws, total_customers=2, today=TODAY, horizon_months=2)

    assert metrics.total_rikshaws == 2
    assert metrics.total_customers == 2
    assert metrics.sold_this_month == 1
    assert metrics.total_revenue == D("790000")
    assert metrics.total_collected == D("210000")
    assert metrics.total_remaining_balance == D("585000")
    assert metrics.status_counts == {"Active": 1, "Advance Pending": 1}
    assert metrics.overdue_count == 0
    assert metrics.advance_pending_count == 1
    assert metrics.current_month_investment == D("250000")
    assert metrics.current_month_profit == D("50000")


def test_upcoming_installments_within_horizon(plans, payments, rikshaws):
    metrics = build_dashboard(plans, payments, rikshaws, total_customers=2, today=TODAY, horizon_months=2)

    upcoming = [(u.plan_id, u.type, u.installment_number, u.due_date) for u in metrics.upcoming_installments]
    assert upcoming == [
        (2, DueType.ADVANCE, None, date(2025, 3, 1)),
        (1, DueType.MONTHLY, 2, date(2025, 3, 10)),
        (2, DueType.MONTHLY, 1, date(2025, 4, 1)),
        (1, DueType.MONTHLY, 3, date(2025, 4, 10)),
        (2, DueType.MONTHLY, 2, date(2025, 5, 1)),
    ]
    assert metrics.upcoming_installments[0].status == DueStatus.OVERDUE
    assert metrics.upcoming_installments[0].amount_due == D("50000")
    assert metrics.upcoming_installments[1].status == DueStatus.DUE


def test_completed_plans_have_no_upcoming_items(make_plan, make_payment):
    plan = make_plan(id=5, total_price=D("100000"), monthly_installment=D("10000"), duration_months=6)
    payments = [make_payment(25000, "discount", plan_id=5)]

    metrics = build_dashboard([plan], payments, [], total_customers=1, today=TODAY)

    assert metrics.status_counts == {"Completed": 1}
    assert metrics.upcoming_installments == []


def test_horizon_defaults_to_configuration(plans, payments, default_settings):
    default_settings.UPCOMING_HORIZON_MONTHS = 0

    metrics = build_dashboard(plans, payments, [], total_customers=0, today=TODAY)

    assert [u.due_date for u in metrics.upcoming_installments] == [date(2025, 3, 1)]


def test_service_reads_inventory_and_ledger(session_factory, plans, payments):
    loader = MagicMock()
    loader.load.return_value = (plans, payments)
    service = DashboardService(loader=loader, session_factory=session_factory)

    metrics = service.get_metrics(today=TODAY)

    loader.load.assert_called_once()
    assert metrics.total_rikshaws == 0
    assert metrics.total_customers == 0
    assert metrics.total_revenue == D("790000")
