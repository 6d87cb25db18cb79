import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FuturesTimeout
from datetime import date
from typing import Iterable, List, Optional, Tuple

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import joinedload

from rikshaw_ledger.api.schemas import AdvancePayment, CustomerSnapshot, PaymentRecord, PlanRecord, RikshawSnapshot
from rikshaw_ledger.core import config
from rikshaw_ledger.core.exceptions import IntegrityAmbiguity, LoadFailure
from rikshaw_ledger.db import session as db_session
from rikshaw_ledger.db.models import InstallmentPayment, InstallmentPlan
from rikshaw_ledger.utils.string_utils import matches_search

logger = logging.getLogger(__name__)


def _advance_entries(plan_id: int, raw) -> List[AdvancePayment]:
    entries = []
    for entry in raw or []:
        try:
            entries.append(AdvancePayment.model_validate(entry))
        except ValidationError as e:
            logger.warning(f"Plan {plan_id}: skipping malformed advance entry {entry!r}: {e}")
    return entries


def _customer_snapshot(row: InstallmentPlan) -> CustomerSnapshot:
    if row.customer is not None:
        return CustomerSnapshot.model_validate(row.customer)
    logger.warning(str(IntegrityAmbiguity(f"Plan {row.id} references missing customer {row.customer_id}", record_id=row.id)))
    return CustomerSnapshot.model_validate(row.customer_snapshot or {})


def _rikshaw_snapshot(row: InstallmentPlan) -> RikshawSnapshot:
    if row.rikshaw is not None:
        return RikshawSnapshot.model_validate(row.rikshaw)
    logger.warning(str(IntegrityAmbiguity(f"Plan {row.id} references missing rikshaw {row.rikshaw_id}", record_id=row.id)))
    return RikshawSnapshot.model_validate(row.rikshaw_snapshot or {})


def to_plan_record(row: InstallmentPlan) -> PlanRecord:
    """Plan terms joined with customer and vehicle details for display."""
    agreement_date = row.agreement_date
    if agreement_date is None:
        agreement_date = row.created_at.date() if row.created_at else date.today()
    return PlanRecord(
        id=row.id,
        customer_id=row.customer_id,
        rikshaw_id=row.rikshaw_id,
        total_price=row.total_price,
        advance_payments=_advance_entries(row.id, row.advance_payments),
        monthly_installment=row.monthly_installment,
        duration_months=row.duration_months,
        agreement_date=agreement_date,
        showroom_commission=row.showroom_commission,
        is_commission_paid=bool(row.is_commission_paid),
        created_at=row.created_at,
        customer=_customer_snapshot(row),
        rikshaw=_rikshaw_snapshot(row),
    )


class PlanLoader:
    def __init__(self, session_factory=None):
        self._db_factory = session_factory

    def _session(self):
        return (self._db_factory or db_session.SessionLocal)()

    def load_plans(self, plan_ids: Optional[Iterable[int]] = None) -> List[PlanRecord]:
        db = self._session()
        try:
            query = db.query(InstallmentPlan).options(
                joinedload(InstallmentPlan.customer),
                joinedload(InstallmentPlan.rikshaw),
            )
            if plan_ids is not None:
                query = query.filter(InstallmentPlan.id.in_(list(plan_ids)))
            return [to_plan_record(row) for row in query.all()]
        except SQLAlchemyError as e:
            logger.error(f"Loading installment plans failed: {e}")
            raise LoadFailure("installment plans", e) from e
        finally:
            db.close()

    def load_plan(self, plan_id: int) -> PlanRecord:
        plans = self.load_plans([plan_id])
        if not plans:
            raise IntegrityAmbiguity(f"Installment plan {plan_id} not found", record_id=plan_id)
        return plans[0]


class PaymentLoader:
    def __init__(self, session_factory=None):
        self._db_factory = session_factory

    def _session(self):
        return (self._db_factory or db_session.SessionLocal)()

    def load_payments(self, plan_id: Optional[int] = None) -> List[PaymentRecord]:
        """Payment events, optionally for one plan. No ordering is guaranteed."""
        db = self._session()
        try:
            query = db.query(InstallmentPayment)
            if plan_id is not None:
                query = query.filter(InstallmentPayment.plan_id == plan_id)
            return [PaymentRecord.model_validate(row) for row in query.all()]
        except SQLAlchemyError as e:
            logger.error(f"Loading installment payments failed: {e}")
            raise LoadFailure("installment payments", e) from e
        finally:
            db.close()


class LedgerLoader:
    """
    Fetches plans and payments side by side and hands both back once joined.
    Results may be kept for LOADER_CACHE_SECONDS; writers call invalidate().
    """

    def __init__(self, plan_loader: PlanLoader = None, payment_loader: PaymentLoader = None, cache_seconds: float = None):
        self.plan_loader = plan_loader or PlanLoader()
        self.payment_loader = payment_loader or PaymentLoader()
        self._cache_seconds = cache_seconds
        self._cache = None
        self._cached_at = 0.0
        self._lock = threading.Lock()

    @property
    def cache_seconds(self) -> float:
        if self._cache_seconds is not None:
            return self._cache_seconds
        return config.settings.LOADER_CACHE_SECONDS

    def invalidate(self):
        with self._lock:
            self._cache = None
            self._cached_at = 0.0

    def _cached(self):
        with self._lock:
            if self._cache is None or self.cache_seconds <= 0:
                return None
            if time.monotonic() - self._cached_at > self.cache_seconds:
                self._cache = None
                return None
            return self._cache

    def load(self, timeout: Optional[float] = None) -> Tuple[List[PlanRecord], List[PaymentRecord]]:
        cached = self._cached()
        if cached is not None:
            return cached

        pool = ThreadPoolExecutor(max_workers=2, thread_name_prefix="ledger-loader")
        plans_future = pool.submit(self.plan_loader.load_plans)
        payments_future = pool.submit(self.payment_loader.load_payments)
        try:
            plans = plans_future.result(timeout=timeout)
            payments = payments_future.result(timeout=timeout)
        except FuturesTimeout as e:
            raise LoadFailure("ledger", e) from e
        finally:
            plans_future.cancel()
            payments_future.cancel()
            pool.shutdown(wait=False, cancel_futures=True)

        result = (plans, payments)
        if self.cache_seconds > 0:
            with self._lock:
                self._cache = result
                self._cached_at = time.monotonic()
        return result

    def load_plan_ledger(self, plan_id: int) -> Tuple[PlanRecord, List[PaymentRecord]]:
        """One plan and its payments, always fresh (plan detail view and receipts)."""
        return self.plan_loader.load_plan(plan_id), self.payment_loader.load_payments(plan_id)


def search_plans(plans: List[PlanRecord], term: str) -> List[PlanRecord]:
    """Match customer name, CNIC, registration number or engine number."""
    return [
        plan for plan in plans
        if matches_search(
            term,
            plan.customer.name,
            plan.customer.cnic,
            plan.rikshaw.registration_number,
            plan.rikshaw.engine_number,
        )
    ]


ledger_loader = LedgerLoader()
