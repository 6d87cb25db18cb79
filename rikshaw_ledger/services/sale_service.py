from datetime import date
from decimal import Decimal
from typing import Optional

from sqlalchemy.orm import Session

from rikshaw_ledger.api.schemas import (
    AdvancePayment,
    CustomerSnapshot,
    PlanCreate,
    PlanReconciliation,
    PlanRecord,
    PlanTermsUpdate,
    RikshawSnapshot,
    ZERO,
)
from rikshaw_ledger.core.logger import logger
from rikshaw_ledger.core.exceptions import IntegrityAmbiguity, ValidationFailure
from rikshaw_ledger.db import session as db_session
from rikshaw_ledger.db.models import Customer, InstallmentPlan, Rikshaw, RikshawAvailability
from rikshaw_ledger.services.ledger_loader import ledger_loader, to_plan_record
from rikshaw_ledger.services.reconciliation_service import reconcile


def validate_plan_terms(data: PlanCreate):
    """Range checks on new sale terms; raises ValidationFailure on the first violation."""
    if data.total_price is None or data.total_price <= 0:
        raise ValidationFailure("Total price must be greater than zero.", field="total_price")
    if not data.advance_payments or data.advance_payments[0].amount <= 0:
        raise ValidationFailure("The first advance payment must be greater than zero.", field="advance_payments")
    for index, entry in enumerate(data.advance_payments):
        if entry.amount <= 0:
            raise ValidationFailure(f"Advance payment #{index + 1} must be greater than zero.", field="advance_payments")
    agreed = sum((entry.amount for entry in data.advance_payments), ZERO)
    if agreed > data.total_price:
        raise ValidationFailure("Agreed advance cannot exceed the total price.", field="advance_payments")
    if data.monthly_installment < 0:
        raise ValidationFailure("Monthly installment cannot be negative.", field="monthly_installment")
    if data.duration_months < 0:
        raise ValidationFailure("Duration cannot be negative.", field="duration_months")
    if data.showroom_commission < 0:
        raise ValidationFailure("Showroom commission cannot be negative.", field="showroom_commission")


def validate_terms_update(data: PlanTermsUpdate):
    if data.total_price <= 0:
        raise ValidationFailure("Total price must be greater than zero.", field="total_price")
    if data.advance_paid is None or data.advance_paid <= 0:
        raise ValidationFailure("Advance paid must be greater than zero.", field="advance_paid")
    if data.monthly_installment < 0:
        raise ValidationFailure("Monthly installment cannot be negative.", field="monthly_installment")
    if data.duration_months < 0:
        raise ValidationFailure("Duration cannot be negative.", field="duration_months")


class SaleService:
    def __init__(self, session_factory=None, loader=None):
        self._db_factory = session_factory
        self.loader = loader or ledger_loader

    def _session(self) -> Session:
        return (self._db_factory or db_session.SessionLocal)()

    def sell_rikshaw(self, data: PlanCreate) -> PlanRecord:
        """
        Create an installment plan and mark the vehicle sold in one transaction.
        The agreement date defaults to today; advance entries without a date take
        the agreement date.
        """
        validate_plan_terms(data)
        agreement_date = data.agreement_date or date.today()

        db = self._session()
        try:
            customer = db.query(Customer).filter(Customer.id == data.customer_id).first()
            if not customer:
                raise IntegrityAmbiguity(f"Customer {data.customer_id} not found", record_id=data.customer_id)
            rikshaw = db.query(Rikshaw).filter(Rikshaw.id == data.rikshaw_id).first()
            if not rikshaw:
                raise IntegrityAmbiguity(f"Rikshaw {data.rikshaw_id} not found", record_id=data.rikshaw_id)
            if rikshaw.availability == RikshawAvailability.SOLD.value:
                raise ValidationFailure(f"Rikshaw {rikshaw.engine_number} is already sold.", field="rikshaw_id")

            rikshaw.availability = RikshawAvailability.SOLD.value
            rikshaw.sale_price = data.total_price

            advances = [
                AdvancePayment(amount=entry.amount, date=entry.date or agreement_date).model_dump(mode="json")
                for entry in data.advance_payments
            ]
            plan = InstallmentPlan(
                customer_id=customer.id,
                rikshaw_id=rikshaw.id,
                total_price=data.total_price,
                advance_payments=advances,
                monthly_installment=data.monthly_installment,
                duration_months=data.duration_months,
                agreement_date=agreement_date,
                showroom_commission=data.showroom_commission,
                is_commission_paid=False,
                total_paid_monthly_installments=ZERO,
                customer_snapshot=CustomerSnapshot.model_validate(customer).model_dump(mode="json"),
                rikshaw_snapshot=RikshawSnapshot.model_validate(rikshaw).model_dump(mode="json"),
            )
            db.add(plan)
            db.commit()
            db.refresh(plan)
            record = to_plan_record(plan)
            logger.info(
                f"Plan {plan.id}: rikshaw {rikshaw.engine_number} sold to customer {customer.id} "
                f"for {data.total_price} over {data.duration_months} month(s)"
            )
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

        self.loader.invalidate()
        return record

    def update_plan_terms(self, plan_id: int, data: PlanTermsUpdate) -> PlanReconciliation:
        """
        Administrative correction of a plan's price, collected advance, monthly
        amount and duration. Existing payment events are kept as they are.
        """
        validate_terms_update(data)

        db = self._session()
        try:
            plan = db.query(InstallmentPlan).filter(InstallmentPlan.id == plan_id).first()
            if not plan:
                raise IntegrityAmbiguity(f"Installment plan {plan_id} not found", record_id=plan_id)

            advances = [dict(entry) for entry in (plan.advance_payments or [])]
            if advances:
                advances[0]["amount"] = str(data.advance_paid)
            else:
                advances.append(AdvancePayment(amount=data.advance_paid, date=date.today()).model_dump(mode="json"))
            agreed = sum((Decimal(str(entry.get("amount") or 0)) for entry in advances), ZERO)
            if agreed > data.total_price:
                raise ValidationFailure("Agreed advance cannot exceed the total price.", field="advance_payments")

            plan.total_price = data.total_price
            plan.advance_payments = advances
            plan.monthly_installment = data.monthly_installment
            plan.duration_months = data.duration_months
            if plan.rikshaw is not None:
                plan.rikshaw.sale_price = data.total_price
            db.commit()
            logger.info(f"Plan {plan_id} terms updated")
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

        self.loader.invalidate()
        record, payments = self.loader.load_plan_ledger(plan_id)
        return reconcile(record, payments)

    def get_plan(self, plan_id: int) -> Optional[PlanRecord]:
        db = self._session()
        try:
            plan = db.query(InstallmentPlan).filter(InstallmentPlan.id == plan_id).first()
            return to_plan_record(plan) if plan else None
        finally:
            db.close()


sale_service = SaleService()
