import logging
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from rikshaw_ledger.api.schemas import RikshawCreate
from rikshaw_ledger.core.exceptions import IntegrityAmbiguity, ValidationFailure
from rikshaw_ledger.db import session as db_session
from rikshaw_ledger.db.models import Rikshaw, RikshawAvailability
from rikshaw_ledger.utils.string_utils import normalize_identifier

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("manufacturer", "model_name", "type", "engine_number", "chassis_number", "purchase_date")
UNIQUE_FIELDS = ("engine_number", "chassis_number", "registration_number")


class RikshawService:
    def __init__(self, session_factory=None):
        self._db_factory = session_factory

    def _session(self) -> Session:
        return (self._db_factory or db_session.SessionLocal)()

    def _clean(self, data: RikshawCreate) -> dict:
        values = data.model_dump()
        for key in ("manufacturer", "model_name", "type", "category"):
            if values[key]:
                values[key] = values[key].strip() or None
        for key in UNIQUE_FIELDS:
            values[key] = normalize_identifier(values[key]) or None
        values["availability"] = (values["availability"] or RikshawAvailability.UNSOLD.value).strip().lower()
        return values

    def _validate(self, db: Session, values: dict, exclude_id: int = None):
        for field in REQUIRED_FIELDS:
            if not values.get(field):
                raise ValidationFailure(f"Rikshaw {field} is required.", field=field)

        if values["availability"] not in {a.value for a in RikshawAvailability}:
            raise ValidationFailure(f"Unknown availability '{values['availability']}'.", field="availability")
        if values["purchase_price"] is None or values["purchase_price"] <= 0:
            raise ValidationFailure("Purchase price must be greater than zero.", field="purchase_price")
        if values["availability"] == RikshawAvailability.SOLD.value:
            if values["sale_price"] is None or values["sale_price"] <= 0:
                raise ValidationFailure("Sale price must be greater than zero for a sold rikshaw.", field="sale_price")

        for field in UNIQUE_FIELDS:
            value = values.get(field)
            if not value:
                continue
            query = db.query(Rikshaw).filter(getattr(Rikshaw, field) == value)
            if exclude_id:
                query = query.filter(Rikshaw.id != exclude_id)
            if query.first() is not None:
                label = field.replace("_", " ")
                raise ValidationFailure(f"A rikshaw with {label} '{value}' already exists.", field=field)

    def add_rikshaw(self, data: RikshawCreate) -> Rikshaw:
        """Register a vehicle bought into stock."""
        values = self._clean(data)
        db = self._session()
        try:
            self._validate(db, values)
            rikshaw = Rikshaw(**values)
            db.add(rikshaw)
            db.commit()
            db.refresh(rikshaw)
            logger.info(f"Rikshaw {rikshaw.id} added (ENG: {rikshaw.engine_number})")
            return rikshaw
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def update_rikshaw(self, rikshaw_id: int, data: RikshawCreate) -> Rikshaw:
        """
        Update a vehicle's details. Engine and chassis numbers are fixed once
        recorded; a different value is rejected.
        """
        values = self._clean(data)
        db = self._session()
        try:
            rikshaw = db.query(Rikshaw).filter(Rikshaw.id == rikshaw_id).first()
            if not rikshaw:
                raise IntegrityAmbiguity(f"Rikshaw {rikshaw_id} not found", record_id=rikshaw_id)
            for field in ("engine_number", "chassis_number"):
                if values[field] != getattr(rikshaw, field):
                    raise ValidationFailure(f"{field.replace('_', ' ').capitalize()} cannot be changed.", field=field)
            if rikshaw.availability == RikshawAvailability.SOLD.value:
                # availability is owned by the sale
                values["availability"] = RikshawAvailability.SOLD.value
                values["sale_price"] = values["sale_price"] or rikshaw.sale_price
            self._validate(db, values, exclude_id=rikshaw_id)
            for key, value in values.items():
                setattr(rikshaw, key, value)
            db.commit()
            db.refresh(rikshaw)
            return rikshaw
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def delete_rikshaw(self, rikshaw_id: int) -> bool:
        db = self._session()
        try:
            rikshaw = db.query(Rikshaw).filter(Rikshaw.id == rikshaw_id).first()
            if not rikshaw:
                return False
            if rikshaw.availability == RikshawAvailability.SOLD.value:
                raise ValidationFailure("A sold rikshaw cannot be deleted.", field="availability")
            db.delete(rikshaw)
            db.commit()
            return True
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def get_rikshaw_by_id(self, rikshaw_id: int) -> Optional[Rikshaw]:
        db = self._session()
        try:
            return db.query(Rikshaw).filter(Rikshaw.id == rikshaw_id).first()
        finally:
            db.close()

    def get_rikshaws(self, availability: Optional[str] = None) -> List[Rikshaw]:
        """All vehicles, or only those in the given availability."""
        db = self._session()
        try:
            query = db.query(Rikshaw)
            if availability:
                query = query.filter(Rikshaw.availability == availability)
            return query.order_by(Rikshaw.id.desc()).all()
        finally:
            db.close()

    def search_rikshaws(self, query: str) -> List[Rikshaw]:
        """Search by engine, chassis or registration number, or model."""
        search = f"%{(query or '').strip()}%"
        db = self._session()
        try:
            return db.query(Rikshaw).filter(
                or_(
                    Rikshaw.engine_number.ilike(search),
                    Rikshaw.chassis_number.ilike(search),
                    Rikshaw.registration_number.ilike(search),
                    Rikshaw.model_name.ilike(search),
                )
            ).order_by(Rikshaw.id.desc()).limit(50).all()
        finally:
            db.close()

    def stock_value(self) -> Decimal:
        """Purchase cost of unsold stock."""
        return sum(
            (r.purchase_price for r in self.get_rikshaws(RikshawAvailability.UNSOLD.value)),
            Decimal("0"),
        )


rikshaw_service = RikshawService()
