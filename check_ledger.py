from decimal import Decimal

from rikshaw_ledger.db.session import SessionLocal, check_connection, init_db
from rikshaw_ledger.db.models import InstallmentPlan
from rikshaw_ledger.services.ledger_loader import ledger_loader
from rikshaw_ledger.services.reconciliation_service import reconcile_all


def check_ledger():
    """Print every plan's reconciled status and flag stored running totals that drifted."""
    if not check_connection():
        print("Database is not reachable. Check DB_URL in .env")
        return
    init_db()

    plans, payments = ledger_loader.load()
    results = reconcile_all(plans, payments)
    print(f"Found {len(plans)} plans and {len(payments)} payments.")

    db = SessionLocal()
    try:
        stored = {
            row.id: row.total_paid_monthly_installments or Decimal("0")
            for row in db.query(InstallmentPlan).all()
        }
    finally:
        db.close()

    for plan in plans:
        r = results[plan.id]
        print("-" * 50)
        print(f"Plan {plan.id}: {plan.customer.name} ({plan.rikshaw.details})")
        print(f"Status: {r.status.value}")
        print(f"Collected advance: {r.collected_advance} / {r.total_agreed_advance}")
        print(f"Monthly paid: {r.total_monthly_paid} (expected so far {r.expected_monthly_paid})")
        print(f"Remaining balance: {r.remaining_balance}")
        if stored.get(plan.id, Decimal("0")) != r.total_monthly_paid:
            print(f"WARNING: stored monthly total {stored.get(plan.id)} differs from payments ({r.total_monthly_paid})")


if __name__ == "__main__":
    check_ledger()
