import logging
from typing import List, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from rikshaw_ledger.api.schemas import CustomerCreate
from rikshaw_ledger.core.exceptions import IntegrityAmbiguity, ValidationFailure
from rikshaw_ledger.db import session as db_session
from rikshaw_ledger.db.models import Customer, InstallmentPlan
from rikshaw_ledger.utils.string_utils import normalize_phone

logger = logging.getLogger(__name__)


class CustomerService:
    def __init__(self, session_factory=None):
        self._db_factory = session_factory

    def _session(self) -> Session:
        return (self._db_factory or db_session.SessionLocal)()

    def check_duplicate_cnic(self, db: Session, cnic: str, exclude_id: int = None) -> bool:
        if not cnic:
            return False
        query = db.query(Customer).filter(Customer.cnic == cnic)
        if exclude_id:
            query = query.filter(Customer.id != exclude_id)
        return query.first() is not None

    def check_duplicate_phone(self, db: Session, phone: str, exclude_id: int = None) -> bool:
        if not phone:
            return False
        query = db.query(Customer).filter(Customer.phone == phone)
        if exclude_id:
            query = query.filter(Customer.id != exclude_id)
        return query.first() is not None

    def _clean(self, data: CustomerCreate) -> dict:
        values = data.model_dump()
        for key, value in values.items():
            if isinstance(value, str):
                values[key] = value.strip() or None
        values["phone"] = normalize_phone(values["phone"]) or None
        if values["guarantor_phone"]:
            values["guarantor_phone"] = normalize_phone(values["guarantor_phone"])
        return values

    def _validate(self, db: Session, values: dict, exclude_id: int = None):
        for field in ("name", "cnic", "phone"):
            if not values.get(field):
                raise ValidationFailure(f"Customer {field} is required.", field=field)
        if self.check_duplicate_cnic(db, values["cnic"], exclude_id):
            raise ValidationFailure(f"CNIC '{values['cnic']}' already exists.", field="cnic")
        if self.check_duplicate_phone(db, values["phone"], exclude_id):
            raise ValidationFailure(f"Phone number '{values['phone']}' already exists.", field="phone")

    def create_customer(self, data: CustomerCreate) -> Customer:
        """Create a new customer."""
        values = self._clean(data)
        db = self._session()
        try:
            self._validate(db, values)
            customer = Customer(**values)
            db.add(customer)
            db.commit()
            db.refresh(customer)
            logger.info(f"Customer {customer.id} created ({customer.cnic})")
            return customer
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def update_customer(self, customer_id: int, data: CustomerCreate) -> Customer:
        """Update an existing customer."""
        values = self._clean(data)
        db = self._session()
        try:
            customer = db.query(Customer).filter(Customer.id == customer_id).first()
            if not customer:
                raise IntegrityAmbiguity(f"Customer {customer_id} not found", record_id=customer_id)
            self._validate(db, values, exclude_id=customer_id)
            for key, value in values.items():
                setattr(customer, key, value)
            db.commit()
            db.refresh(customer)
            return customer
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def get_customer_by_id(self, customer_id: int) -> Optional[Customer]:
        db = self._session()
        try:
            return db.query(Customer).filter(Customer.id == customer_id).first()
        finally:
            db.close()

    def get_all_customers(self) -> List[Customer]:
        db = self._session()
        try:
            return db.query(Customer).order_by(Customer.id.desc()).all()
        finally:
            db.close()

    def search_customers(self, query: str) -> List[Customer]:
        """Search customers by name, cnic, or phone."""
        search = f"%{(query or '').strip()}%"
        db = self._session()
        try:
            return db.query(Customer).filter(
                or_(
                    Customer.name.ilike(search),
                    Customer.cnic.ilike(search),
                    Customer.phone.ilike(search),
                )
            ).order_by(Customer.id.desc()).limit(50).all()
        finally:
            db.close()

    def delete_customer(self, customer_id: int) -> bool:
        """Delete a customer that has no installment plans."""
        db = self._session()
        try:
            customer = db.query(Customer).filter(Customer.id == customer_id).first()
            if not customer:
                return False
            if db.query(InstallmentPlan).filter(InstallmentPlan.customer_id == customer_id).count():
                raise ValidationFailure("Customer has installment plans and cannot be deleted.", field="id")
            db.delete(customer)
            db.commit()
            return True
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()


customer_service = CustomerService()
