import tempfile
from datetime import date
from decimal import Decimal

import pytest

from rikshaw_ledger.services import print_service as print_module
from rikshaw_ledger.services.due_report_service import build_due_report
from rikshaw_ledger.services.print_service import PrintService, money, payment_type_label
from rikshaw_ledger.services.reconciliation_service import reconcile
from rikshaw_ledger.services.schedule_service import expand_schedule


@pytest.fixture
def opened(monkeypatch, tmp_path):
    urls = []
    monkeypatch.setattr(print_module.webbrowser, "open", urls.append)
    monkeypatch.setattr(tempfile, "tempdir", str(tmp_path))
    return urls


def test_receipt_content(make_plan, make_payment):
    plan = make_plan()
    payment = make_payment(35000, "monthly", installment_number=1, id=7)
    reconciliation = reconcile(plan, [payment], today=date(2025, 2, 15))

    html_content = PrintService().render_receipt(plan, payment, reconciliation)

    assert "AL-HAMD TRADERS" in html_content
    assert "Railway Road Chowk Shamah, Sargodha" in html_content
    assert "PAYMENT RECEIPT" in html_content
    assert "R-000007" in html_content
    assert "Monthly Installment" in html_content
    assert "<strong>Installment #:</strong> 1" in html_content
    assert "Amount Received: Rs 35,000.00" in html_content
    assert "Rs 380,000.00" in html_content


def test_receipt_for_commission_has_no_installment_line(make_plan, make_payment):
    plan = make_plan(showroom_commission=Decimal("5000"))
    payment = make_payment(5000, "commission")
    reconciliation = reconcile(plan, [payment], today=date(2025, 2, 15))

    html_content = PrintService().render_receipt(plan, payment, reconciliation)

    assert "Showroom Commission" in html_content
    assert "Installment #" not in html_content


def test_print_receipt_opens_browser(opened, tmp_path, make_plan, make_payment):
    plan = make_plan()
    payment = make_payment(35000, "monthly", installment_number=1)

    ok, message = PrintService().print_receipt(plan, payment, reconcile(plan, [payment]))

    assert ok is True
    assert len(opened) == 1
    assert opened[0].startswith("file://")
    assert len(list(tmp_path.glob("*.html"))) == 1


def test_plan_statement_lists_schedule(make_plan, make_payment):
    plan = make_plan(duration_months=3)
    payments = [make_payment(35000, "monthly", installment_number=1)]

    html_content = PrintService().render_plan_statement(
        plan, reconcile(plan, payments, today=date(2025, 3, 1)), expand_schedule(plan, payments), payments,
    )

    assert "INSTALLMENT PLAN STATEMENT" in html_content
    assert html_content.count("10-Feb-2025") >= 2
    assert "Partially Paid" not in html_content
    assert "Unpaid" in html_content
    assert "REG: SGA-123 | ENG: ENG1001" in html_content


def test_due_report_document(opened, make_plan, make_payment):
    plan = make_plan()
    report = build_due_report(2025, 3, [plan], [make_payment(35000, installment_number=1)], today=date(2025, 3, 15))

    service = PrintService()
    html_content = service.render_due_report(report)
    ok, _ = service.print_due_report(report)

    assert "DUE PAYMENTS REPORT: March 2025" in html_content
    assert "Monthly #2" in html_content
    assert "Total Overdue:</strong> Rs 35,000.00" in html_content
    assert ok is True


def test_customer_text_is_escaped(make_plan, make_payment):
    plan = make_plan()
    plan.customer.name = "<script>alert(1)</script>"
    payment = make_payment(100, "discount")

    html_content = PrintService().render_receipt(plan, payment, reconcile(plan, [payment]))

    assert "<script>" not in html_content
    assert "&lt;script&gt;" in html_content


def test_labels_and_money():
    assert payment_type_label("advance_adjustment") == "Advance Adjustment"
    assert payment_type_label("discount") == "Discount / Early Payoff"
    assert payment_type_label("refund") == "Payment"
    assert money(Decimal("1234.5")) == "Rs 1,234.50"
