import html
import logging
import os
import tempfile
import webbrowser
from decimal import Decimal
from typing import List, Optional

from rikshaw_ledger.api.schemas import DueReport, PaymentRecord, PlanReconciliation, PlanRecord, ScheduleRow
from rikshaw_ledger.core import config
from rikshaw_ledger.db.models import PAYMENT_TYPE_LABELS, PaymentType

logger = logging.getLogger(__name__)

MONTH_NAMES = [
    "January", "February", "March", "April", "May", "June",
    "July", "August", "September", "October", "November", "December",
]


def esc(value) -> str:
    if value is None or value == "":
        return "N/A"
    return html.escape(str(value))


def money(amount: Optional[Decimal]) -> str:
    amount = amount if amount is not None else Decimal("0")
    return f"{config.settings.CURRENCY} {amount:,.2f}"


def payment_type_label(payment_type: Optional[str]) -> str:
    try:
        return PAYMENT_TYPE_LABELS[PaymentType(payment_type)]
    except ValueError:
        return "Payment"


def receipt_number(payment: PaymentRecord) -> str:
    return f"R-{payment.id:06d}" if payment.id is not None else "R-PENDING"


BASE_STYLE = """
    body { font-family: Arial, sans-serif; margin: 0; padding: 20px; color: #000; font-size: 12px; }
    .container { width: 100%; max-width: 800px; margin: auto; }
    .shop { text-align: center; border-bottom: 2px solid #333; padding-bottom: 5px; margin-bottom: 10px; }
    .shop h2 { margin: 0; font-size: 18px; }
    .shop p { margin: 0; font-size: 10px; color: #555; }
    .title { text-align: center; font-weight: bold; font-size: 14px; margin: 10px 0; letter-spacing: 1px; }
    .box { border: 1px dashed #aaa; padding: 6px; margin-bottom: 10px; }
    .box p { margin: 2px 0; }
    .amount { text-align: center; font-size: 14px; font-weight: bold; padding: 6px; background: #e0ffe0; }
    table { width: 100%; border-collapse: collapse; margin-top: 10px; }
    th, td { border: 1px solid #999; padding: 4px 6px; text-align: left; }
    th { background: #eee; }
    td.num { text-align: right; }
    .overdue { color: #b00000; font-weight: bold; }
    .footer { text-align: center; font-size: 10px; margin-top: 15px; }
    @media print { body { padding: 0; } @page { size: A4; margin: 10mm; } }
"""


class PrintService:
    def _shop_header(self) -> str:
        s = config.settings
        return f"""
            <div class="shop">
                <h2>{esc(s.SHOP_NAME)}</h2>
                <p>{esc(s.SHOP_ADDRESS)}</p>
                <p>Contact: {esc(s.SHOP_CONTACT)}</p>
            </div>
        """

    def _page(self, title: str, body: str) -> str:
        return f"""<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <title>{esc(title)}</title>
    <style>{BASE_STYLE}</style>
</head>
<body>
    <div class="container">
        {self._shop_header()}
        {body}
    </div>
</body>
</html>
"""

    def _open(self, html_content: str, success_message: str):
        # Write to Temp File
        fd, path = tempfile.mkstemp(suffix=".html")
        with os.fdopen(fd, 'w', encoding='utf-8') as f:
            f.write(html_content)

        # Open in Browser
        webbrowser.open(f"file://{path}")
        return True, success_message

    # --- Payment receipt ---
    def render_receipt(self, plan: PlanRecord, payment: PaymentRecord, reconciliation: PlanReconciliation) -> str:
        """
        Half-page payment receipt. The remaining balance is the reconciliation
        figure for the plan after this payment was recorded.
        """
        installment_line = ""
        if payment.payment_type == PaymentType.MONTHLY.value and payment.installment_number:
            installment_line = f"<p><strong>Installment #:</strong> {payment.installment_number}</p>"
        payment_date = payment.payment_date.strftime("%d-%b-%Y") if payment.payment_date else "N/A"

        body = f"""
            <div class="title">PAYMENT RECEIPT</div>
            <p><strong>Date:</strong> {payment_date}</p>
            <p><strong>Receipt No:</strong> {receipt_number(payment)}</p>

            <div class="box">
                <p><strong>Customer Details:</strong></p>
                <p><strong>Name:</strong> {esc(plan.customer.name)}</p>
                <p><strong>Phone:</strong> {esc(plan.customer.phone)}</p>
            </div>

            <div class="box">
                <p><strong>Rikshaw Details:</strong></p>
                <p><strong>Manufacturer:</strong> {esc(plan.rikshaw.manufacturer)}</p>
                <p><strong>Reg No:</strong> {esc(plan.rikshaw.registration_number)}</p>
                <p><strong>Engine No:</strong> {esc(plan.rikshaw.engine_number)}</p>
            </div>

            <div class="box">
                <p><strong>Payment Type:</strong> {payment_type_label(payment.payment_type)}</p>
                {installment_line}
            </div>

            <div class="amount">Amount Received: {money(payment.amount_paid)}</div>
            <p style="text-align: center;"><strong>Remaining Balance:</strong> {money(reconciliation.remaining_balance)}</p>
            <p style="text-align: right;">Received By: {esc(payment.received_by)}</p>
            <div class="footer">Thank You!</div>
        """
        return self._page("Payment Receipt", body)

    def print_receipt(self, plan: PlanRecord, payment: PaymentRecord, reconciliation: PlanReconciliation):
        try:
            html_content = self.render_receipt(plan, payment, reconciliation)
            return self._open(html_content, "Receipt opened for printing")
        except Exception as e:
            logger.error(f"Receipt for payment {payment.id} failed: {e}")
            return False, str(e)

    # --- Plan statement ---
    def render_plan_statement(
        self,
        plan: PlanRecord,
        reconciliation: PlanReconciliation,
        schedule: List[ScheduleRow],
        payments: Optional[List[PaymentRecord]] = None,
    ) -> str:
        advances_html = "".join(
            f"<tr><td>{i}</td><td>{a.date.strftime('%d-%b-%Y') if a.date else 'N/A'}</td>"
            f"<td class='num'>{money(a.amount)}</td></tr>"
            for i, a in enumerate(plan.advance_payments, start=1)
        )
        schedule_html = "".join(
            f"<tr><td>{row.installment_number}</td><td>{row.due_date.strftime('%d-%b-%Y')}</td>"
            f"<td class='num'>{money(row.expected_amount)}</td><td class='num'>{money(row.paid_amount)}</td>"
            f"<td>{row.status.value}</td></tr>"
            for row in schedule
        )

        history_html = ""
        if payments:
            rows = "".join(
                f"<tr><td>{receipt_number(p)}</td>"
                f"<td>{p.payment_date.strftime('%d-%b-%Y') if p.payment_date else 'N/A'}</td>"
                f"<td>{payment_type_label(p.payment_type)}</td><td>{p.installment_number or '-'}</td>"
                f"<td class='num'>{money(p.amount_paid)}</td><td>{esc(p.received_by)}</td></tr>"
                for p in payments
            )
            history_html = f"""
                <table>
                    <tr><th>Receipt</th><th>Date</th><th>Type</th><th>Inst #</th><th>Amount</th><th>Received By</th></tr>
                    {rows}
                </table>
            """

        r = reconciliation
        body = f"""
            <div class="title">INSTALLMENT PLAN STATEMENT</div>
            <div class="box">
                <p><strong>Customer:</strong> {esc(plan.customer.name)} &nbsp; <strong>CNIC:</strong> {esc(plan.customer.cnic)}
                &nbsp; <strong>Phone:</strong> {esc(plan.customer.phone)}</p>
                <p><strong>Rikshaw:</strong> {esc(plan.rikshaw.manufacturer)} {esc(plan.rikshaw.model_name)}
                &nbsp; {esc(plan.rikshaw.details)}</p>
                <p><strong>Agreement Date:</strong> {plan.agreement_date.strftime('%d-%b-%Y')}
                &nbsp; <strong>Status:</strong> {r.status.value}</p>
            </div>

            <table>
                <tr><th>Total Price</th><td class="num">{money(plan.total_price)}</td>
                    <th>Monthly Installment</th><td class="num">{money(plan.monthly_installment)} x {plan.duration_months}</td></tr>
                <tr><th>Agreed Advance</th><td class="num">{money(r.total_agreed_advance)}</td>
                    <th>Collected Advance</th><td class="num">{money(r.collected_advance)}</td></tr>
                <tr><th>Remaining Advance</th><td class="num">{money(r.outstanding_advance)}</td>
                    <th>Monthly Paid</th><td class="num">{money(r.total_monthly_paid)}</td></tr>
                <tr><th>Discount</th><td class="num">{money(r.total_discount_applied)}</td>
                    <th>Customer Paid</th><td class="num">{money(r.customer_total_paid)}</td></tr>
                <tr><th>Customer Debt</th><td class="num">{money(r.customer_debt)}</td>
                    <th>Commission Outstanding</th><td class="num">{money(r.outstanding_commission)}</td></tr>
                <tr><th colspan="3">Remaining Balance</th><td class="num"><strong>{money(r.remaining_balance)}</strong></td></tr>
            </table>

            <table>
                <tr><th>#</th><th>Advance Date</th><th>Amount</th></tr>
                {advances_html}
            </table>

            <table>
                <tr><th>Inst #</th><th>Due Date</th><th>Expected</th><th>Paid</th><th>Status</th></tr>
                {schedule_html}
            </table>
            {history_html}
        """
        return self._page(f"Plan {plan.id} Statement", body)

    def print_plan_statement(self, plan, reconciliation, schedule, payments=None):
        try:
            html_content = self.render_plan_statement(plan, reconciliation, schedule, payments)
            return self._open(html_content, "Plan statement opened for printing")
        except Exception as e:
            logger.error(f"Statement for plan {plan.id} failed: {e}")
            return False, str(e)

    # --- Monthly due report ---
    def render_due_report(self, report: DueReport) -> str:
        rows = []
        for entry in report.entries:
            items = "<br>".join(
                f"{item.type.value}{f' #{item.installment_number}' if item.installment_number else ''}: "
                f"{money(item.amount_due)} ({item.due_date.strftime('%d-%b-%Y')})"
                for item in entry.items
            )
            css = "overdue" if entry.overall_status.value == "Overdue" else ""
            rows.append(
                f"<tr><td>{esc(entry.customer_name)}<br>{esc(entry.phone_number)}</td>"
                f"<td>{esc(entry.rikshaw_details)}</td><td>{items}</td>"
                f"<td class='num'>{money(entry.total_amount_due)}</td>"
                f"<td class='{css}'>{entry.overall_status.value}</td></tr>"
            )

        period = f"{MONTH_NAMES[report.month - 1]} {report.year}"
        body = f"""
            <div class="title">DUE PAYMENTS REPORT: {period}</div>
            <p>Generated on {report.generated_on.strftime('%d-%b-%Y')}</p>
            <table>
                <tr><th>Customer</th><th>Rikshaw</th><th>Items</th><th>Total Due</th><th>Status</th></tr>
                {''.join(rows) or '<tr><td colspan="5">No dues for this month.</td></tr>'}
            </table>
            <p><strong>Total Expected:</strong> {money(report.total_expected_amount)}
            &nbsp; <strong>Total Overdue:</strong> {money(report.total_overdue_amount)}</p>
        """
        return self._page(f"Due Report {period}", body)

    def print_due_report(self, report: DueReport):
        try:
            html_content = self.render_due_report(report)
            return self._open(html_content, "Due report opened for printing")
        except Exception as e:
            logger.error(f"Due report {report.year}-{report.month:02d} failed: {e}")
            return False, str(e)


print_service = PrintService()
