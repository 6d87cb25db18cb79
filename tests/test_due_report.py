import logging
import random
from datetime import date
from decimal import Decimal

import pytest

from rikshaw_ledger.api.schemas import (
    AdvancePayment,
    CustomerSnapshot,
    DueStatus,
    DueType,
    PaymentRecord,
    RikshawSnapshot,
)
from rikshaw_ledger.services.due_report_service import (
    advance_anchor_date,
    build_due_report,
    filter_due_entries,
    outstanding_items,
)

D = Decimal


@pytest.fixture
def monthly_plan(make_plan):
    return make_plan(id=1)


@pytest.fixture
def advance_plan(make_plan):
    return make_plan(
        id=2,
        total_price=D("300000"),
        advance_payments=[
            AdvancePayment(amount=D("50000"), date=date(2025, 2, 1)),
            AdvancePayment(amount=D("30000"), date=date(2025, 3, 1)),
        ],
        monthly_installment=D("20000"),
        duration_months=10,
        agreement_date=date(2025, 2, 1),
        customer=CustomerSnapshot(name="Nasir Khan", phone="03214445566"),
        rikshaw=RikshawSnapshot(manufacturer="New Asia", registration_number="SGB-777", engine_number="ENG2002"),
    )


@pytest.fixture
def payments(make_payment):
    return [
        make_payment(35000, "monthly", installment_number=1, plan_id=1),
        make_payment(10000, "monthly", installment_number=2, plan_id=1),
    ]


def test_monthly_items_for_selected_month(monthly_plan, payments):
    report = build_due_report(2025, 3, [monthly_plan], payments, today=date(2025, 3, 5))

    assert len(report.entries) == 1
    entry = report.entries[0]
    assert [(i.installment_number, i.amount_due, i.status) for i in entry.items] == [
        (2, D("25000"), DueStatus.DUE),
    ]
    assert entry.total_amount_due == D("25000")
    assert entry.overall_status == DueStatus.DUE
    assert entry.due_date == date(2025, 3, 10)
    assert entry.rikshaw_details == "REG: SGA-123 | ENG: ENG1001"
    assert report.total_expected_amount == D("25000")
    assert report.total_overdue_amount == D("0")


def test_unpaid_period_from_earlier_month_is_carried_forward(monthly_plan, payments):
    report = build_due_report(2025, 4, [monthly_plan], payments, today=date(2025, 4, 5))

    entry = report.entries[0]
    assert [(i.installment_number, i.amount_due, i.due_date, i.status) for i in entry.items] == [
        (2, D("25000"), date(2025, 3, 10), DueStatus.OVERDUE),
        (3, D("35000"), date(2025, 4, 10), DueStatus.DUE),
    ]
    assert entry.overall_status == DueStatus.OVERDUE
    assert entry.due_date == date(2025, 3, 10)
    assert report.total_expected_amount == D("60000")
    assert report.total_overdue_amount == D("25000")


def test_outstanding_advance_item(advance_plan):
    report = build_due_report(2025, 2, [advance_plan], [], today=date(2025, 2, 15))

    entry = report.entries[0]
    assert len(entry.items) == 1
    item = entry.items[0]
    assert item.type == DueType.ADVANCE
    assert item.amount_due == D("30000")
    assert item.due_date == date(2025, 2, 1)
    assert item.status == DueStatus.OVERDUE


def test_advance_anchor_falls_back_to_agreement_date(make_plan):
    plan = make_plan(advance_payments=[AdvancePayment(amount=D("1000"))], agreement_date=date(2025, 4, 2))

    assert advance_anchor_date(plan) == date(2025, 4, 2)


def test_future_obligations_are_left_out(monthly_plan):
    items = outstanding_items(monthly_plan, [], cutoff=date(2025, 1, 31), today=date(2025, 1, 15))

    assert items == []


def test_plans_with_nothing_due_are_skipped(make_plan, make_payment, monthly_plan, payments):
    settled = make_plan(id=3, total_price=D("75000"), duration_months=0)

    report = build_due_report(2025, 3, [settled, monthly_plan], payments, today=date(2025, 3, 5))

    assert [entry.plan_id for entry in report.entries] == [1]


def test_report_is_independent_of_input_order(monthly_plan, advance_plan, payments, make_payment):
    all_payments = payments + [make_payment(20000, "advance_adjustment", plan_id=2)]
    plans = [monthly_plan, advance_plan]

    baseline = build_due_report(2025, 4, plans, all_payments, today=date(2025, 3, 20))
    shuffled_plans = plans[::-1]
    shuffled_payments = list(all_payments)
    random.Random(7).shuffle(shuffled_payments)
    again = build_due_report(2025, 4, shuffled_plans, shuffled_payments, today=date(2025, 3, 20))

    assert baseline == again
    assert [entry.plan_id for entry in baseline.entries] == [2, 1]


def test_orphan_payment_is_dropped_and_report_still_built(monthly_plan, payments, caplog):
    orphan = PaymentRecord(id=900, plan_id=None, amount_paid=D("35000"), payment_type="monthly", installment_number=3)

    with caplog.at_level(logging.WARNING):
        report = build_due_report(2025, 3, [monthly_plan], payments + [orphan], today=date(2025, 3, 5))

    assert report.total_expected_amount == D("25000")
    assert "Payment 900 has no plan linkage" in caplog.text


def test_filter_due_entries(monthly_plan, advance_plan, payments):
    report = build_due_report(2025, 3, [monthly_plan, advance_plan], payments, today=date(2025, 3, 5))

    assert [e.plan_id for e in filter_due_entries(report.entries, "nasir")] == [2]
    assert [e.plan_id for e in filter_due_entries(report.entries, "0300111")] == [1]
    assert [e.plan_id for e in filter_due_entries(report.entries, "sga-123")] == [1]
    assert len(filter_due_entries(report.entries, "")) == 2


def test_invalid_month_is_rejected(monthly_plan):
    with pytest.raises(ValueError):
        build_due_report(2025, 13, [monthly_plan], [])
