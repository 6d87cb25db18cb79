import itertools
from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from rikshaw_ledger.api.schemas import (
    AdvancePayment,
    CustomerSnapshot,
    PaymentRecord,
    PlanRecord,
    RikshawSnapshot,
)
from rikshaw_ledger.core import config
from rikshaw_ledger.db.session import init_db
from rikshaw_ledger.services.ledger_loader import LedgerLoader, PaymentLoader, PlanLoader

_payment_ids = itertools.count(1)


def build_plan(**overrides) -> PlanRecord:
    values = dict(
        id=1,
        customer_id=1,
        rikshaw_id=1,
        total_price=Decimal("490000"),
        advance_payments=[AdvancePayment(amount=Decimal("75000"), date=date(2025, 1, 10))],
        monthly_installment=Decimal("35000"),
        duration_months=12,
        agreement_date=date(2025, 1, 10),
        showroom_commission=Decimal("0"),
        customer=CustomerSnapshot(name="Muhammad Aslam", cnic="38403-1234567-1", phone="03001112233"),
        rikshaw=RikshawSnapshot(
            manufacturer="Sazgar",
            model_name="Auto Rikshaw",
            engine_number="ENG1001",
            chassis_number="CH1001",
            registration_number="SGA-123",
            purchase_price=Decimal("400000"),
            sale_price=Decimal("490000"),
        ),
    )
    values.update(overrides)
    return PlanRecord(**values)


def build_payment(amount, payment_type="monthly", installment_number=None, plan_id=1, payment_date=None, **extra) -> PaymentRecord:
    return PaymentRecord(
        id=extra.pop("id", next(_payment_ids)),
        plan_id=plan_id,
        amount_paid=Decimal(str(amount)),
        payment_date=payment_date or date(2025, 2, 10),
        received_by="Counter",
        payment_type=payment_type,
        installment_number=installment_number,
        **extra,
    )


@pytest.fixture
def make_plan():
    return build_plan


@pytest.fixture
def make_payment():
    return build_payment


@pytest.fixture
def session_factory(tmp_path):
    """File-backed sqlite so concurrent loader threads see the same data."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'ledger.db'}",
        connect_args={"check_same_thread": False},
    )
    init_db(engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def loader(session_factory):
    return LedgerLoader(PlanLoader(session_factory), PaymentLoader(session_factory), cache_seconds=0)


@pytest.fixture(autouse=True)
def default_settings(monkeypatch):
    """Every test starts from the stock configuration regardless of the local .env."""
    test_settings = config.Settings(
        RECONCILIATION_STRATEGY=config.STRATEGY_STRICT,
        INSTALLMENT_ALLOCATION=config.ALLOCATION_MANUAL,
        LOADER_CACHE_SECONDS=0,
        UPCOMING_HORIZON_MONTHS=6,
        SHOP_NAME="AL-HAMD TRADERS",
        SHOP_ADDRESS="Railway Road Chowk Shamah, Sargodha",
        SHOP_CONTACT="0300-1234567",
        CURRENCY="Rs",
    )
    monkeypatch.setattr(config, "settings", test_settings)
    return test_settings
