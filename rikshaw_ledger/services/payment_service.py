from datetime import date
from typing import List

from sqlalchemy import func
from sqlalchemy.orm import Session

from rikshaw_ledger.api.schemas import PaymentCreate, PaymentRecord, PlanReconciliation, ZERO
from rikshaw_ledger.core import config
from rikshaw_ledger.core.logger import logger
from rikshaw_ledger.core.exceptions import IntegrityAmbiguity, ValidationFailure
from rikshaw_ledger.db import session as db_session
from rikshaw_ledger.db.models import InstallmentPayment, InstallmentPlan, PaymentType
from rikshaw_ledger.services.ledger_loader import ledger_loader
from rikshaw_ledger.services.reconciliation_service import KNOWN_PAYMENT_TYPES, reconcile


def validate_payment(data: PaymentCreate, plan: InstallmentPlan):
    """Checks a payment against its plan before it is written."""
    if data.amount_paid is None or data.amount_paid <= 0:
        raise ValidationFailure("Amount must be a positive number.", field="amount_paid")
    if data.payment_date is None:
        raise ValidationFailure("Payment date is required.", field="payment_date")
    if not (data.received_by or "").strip():
        raise ValidationFailure("Received by is required.", field="received_by")
    if data.payment_type not in KNOWN_PAYMENT_TYPES:
        raise ValidationFailure(f"Unknown payment type '{data.payment_type}'.", field="payment_type")

    if data.payment_type != PaymentType.MONTHLY.value:
        return
    number = data.installment_number
    if number is None and config.settings.INSTALLMENT_ALLOCATION == config.ALLOCATION_FIFO:
        return
    if number is None or number < 1:
        raise ValidationFailure("Select the installment this payment is for.", field="installment_number")
    duration = plan.duration_months or 0
    if number > duration:
        raise ValidationFailure(
            f"Installment #{number} is outside the plan's {duration} month(s).",
            field="installment_number",
        )


class PaymentService:
    def __init__(self, session_factory=None, loader=None):
        self._db_factory = session_factory
        self.loader = loader or ledger_loader

    def _session(self) -> Session:
        return (self._db_factory or db_session.SessionLocal)()

    def _get_plan(self, db: Session, plan_id: int) -> InstallmentPlan:
        plan = db.query(InstallmentPlan).filter(InstallmentPlan.id == plan_id).first()
        if not plan:
            raise IntegrityAmbiguity(f"Installment plan {plan_id} not found", record_id=plan_id)
        return plan

    def _refresh_plan_hints(self, db: Session, plan: InstallmentPlan):
        """Recompute the stored monthly total and commission flag from the payment rows."""
        db.flush()
        monthly_total = db.query(func.coalesce(func.sum(InstallmentPayment.amount_paid), 0)).filter(
            InstallmentPayment.plan_id == plan.id,
            InstallmentPayment.payment_type == PaymentType.MONTHLY.value,
        ).scalar()
        commission_count = db.query(InstallmentPayment).filter(
            InstallmentPayment.plan_id == plan.id,
            InstallmentPayment.payment_type == PaymentType.COMMISSION.value,
        ).count()
        plan.total_paid_monthly_installments = monthly_total or ZERO
        plan.is_commission_paid = commission_count > 0

    def _apply(self, payment: InstallmentPayment, data: PaymentCreate):
        payment.amount_paid = data.amount_paid
        payment.payment_date = data.payment_date
        payment.received_by = data.received_by.strip()
        payment.payment_type = data.payment_type
        if data.payment_type == PaymentType.MONTHLY.value:
            payment.installment_number = data.installment_number
        else:
            payment.installment_number = None

    def _fresh_reconciliation(self, plan_id: int) -> PlanReconciliation:
        self.loader.invalidate()
        plan, payments = self.loader.load_plan_ledger(plan_id)
        return reconcile(plan, payments)

    def record_payment(self, data: PaymentCreate) -> tuple[PaymentRecord, PlanReconciliation]:
        """Record a payment event and return it with the plan's updated balances."""
        db = self._session()
        try:
            plan = self._get_plan(db, data.plan_id)
            validate_payment(data, plan)
            payment = InstallmentPayment(plan_id=plan.id)
            self._apply(payment, data)
            db.add(payment)
            self._refresh_plan_hints(db, plan)
            db.commit()
            db.refresh(payment)
            record = PaymentRecord.model_validate(payment)
            logger.info(
                f"Payment {payment.id} recorded on plan {plan.id}: {payment.payment_type} {payment.amount_paid}"
            )
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()
        return record, self._fresh_reconciliation(record.plan_id)

    def update_payment(self, payment_id: int, data: PaymentCreate) -> tuple[PaymentRecord, PlanReconciliation]:
        db = self._session()
        try:
            payment = db.query(InstallmentPayment).filter(InstallmentPayment.id == payment_id).first()
            if not payment:
                raise IntegrityAmbiguity(f"Payment {payment_id} not found", record_id=payment_id)
            if data.plan_id is not None and data.plan_id != payment.plan_id:
                raise ValidationFailure("A payment cannot be moved to another plan.", field="plan_id")
            plan = self._get_plan(db, payment.plan_id)
            validate_payment(data, plan)
            self._apply(payment, data)
            self._refresh_plan_hints(db, plan)
            db.commit()
            db.refresh(payment)
            record = PaymentRecord.model_validate(payment)
            logger.info(f"Payment {payment_id} on plan {plan.id} updated")
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()
        return record, self._fresh_reconciliation(record.plan_id)

    def delete_payment(self, payment_id: int) -> PlanReconciliation:
        db = self._session()
        try:
            payment = db.query(InstallmentPayment).filter(InstallmentPayment.id == payment_id).first()
            if not payment:
                raise IntegrityAmbiguity(f"Payment {payment_id} not found", record_id=payment_id)
            plan = self._get_plan(db, payment.plan_id)
            plan_id = plan.id
            db.delete(payment)
            self._refresh_plan_hints(db, plan)
            db.commit()
            logger.info(f"Payment {payment_id} on plan {plan_id} deleted")
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()
        return self._fresh_reconciliation(plan_id)

    def get_plan_payments(self, plan_id: int) -> List[PaymentRecord]:
        """Payment history of a plan, newest first."""
        payments = self.loader.payment_loader.load_payments(plan_id)
        return sorted(payments, key=lambda p: (p.payment_date or date.min, p.id or 0), reverse=True)


payment_service = PaymentService()
