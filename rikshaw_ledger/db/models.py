from sqlalchemy import Column, Integer, String, Numeric, Date, DateTime, ForeignKey, Boolean, JSON, Index
from sqlalchemy.orm import relationship, declarative_base
import datetime as dt
import enum

Base = declarative_base()

# Money columns: exact decimals, never binary floats
Money = Numeric(12, 2)

class RikshawAvailability(str, enum.Enum):
    UNSOLD = "unsold"
    SOLD = "sold"

class PaymentType(str, enum.Enum):
    MONTHLY = "monthly"
    ADVANCE_ADJUSTMENT = "advance_adjustment"
    COMMISSION = "commission"
    DISCOUNT = "discount"

PAYMENT_TYPE_LABELS = {
    PaymentType.MONTHLY: "Monthly Installment",
    PaymentType.ADVANCE_ADJUSTMENT: "Advance Adjustment",
    PaymentType.COMMISSION: "Showroom Commission",
    PaymentType.DISCOUNT: "Discount / Early Payoff",
}

class Customer(Base):
    __tablename__ = "customers"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    cnic = Column(String(20), nullable=False, index=True)
    phone = Column(String(20), nullable=False, index=True)
    address = Column(String(255), nullable=True)

    guarantor_name = Column(String(100), nullable=True)
    guarantor_cnic = Column(String(20), nullable=True)
    guarantor_phone = Column(String(20), nullable=True)
    guarantor_address = Column(String(255), nullable=True)

    bank_name = Column(String(100), nullable=True)
    cheque_number = Column(String(50), nullable=True)

    created_at = Column(DateTime, default=dt.datetime.utcnow)
    updated_at = Column(DateTime, default=dt.datetime.utcnow, onupdate=dt.datetime.utcnow)

    plans = relationship("InstallmentPlan", back_populates="customer")

class Rikshaw(Base):
    __tablename__ = "rikshaws"

    id = Column(Integer, primary_key=True, index=True)
    manufacturer = Column(String(50), nullable=False)
    model_name = Column(String(50), nullable=False)
    type = Column(String(30), nullable=False)
    category = Column(String(30), nullable=True)

    engine_number = Column(String(50), unique=True, index=True, nullable=False)
    chassis_number = Column(String(50), unique=True, index=True, nullable=False)
    registration_number = Column(String(30), unique=True, index=True, nullable=True)

    availability = Column(String(10), default=RikshawAvailability.UNSOLD.value, index=True)
    purchase_date = Column(Date, nullable=False)
    purchase_price = Column(Money, nullable=False)
    sale_price = Column(Money, nullable=True)

    created_at = Column(DateTime, default=dt.datetime.utcnow)
    updated_at = Column(DateTime, default=dt.datetime.utcnow, onupdate=dt.datetime.utcnow)

    plan = relationship("InstallmentPlan", back_populates="rikshaw", uselist=False)

class InstallmentPlan(Base):
    __tablename__ = "installment_plans"
    __table_args__ = (
        Index('idx_installment_plans_customer_id', 'customer_id'),
    )

    id = Column(Integer, primary_key=True, index=True)
    customer_id = Column(Integer, ForeignKey("customers.id"), nullable=False)
    rikshaw_id = Column(Integer, ForeignKey("rikshaws.id"), unique=True, nullable=False)

    total_price = Column(Money, nullable=False)
    # [{"amount": "75000.00", "date": "2025-01-10"}, ...]; index 0 is collected at signing
    advance_payments = Column(JSON, nullable=False, default=list)
    monthly_installment = Column(Money, nullable=False, default=0)
    duration_months = Column(Integer, nullable=False, default=0)
    agreement_date = Column(Date, nullable=False)

    showroom_commission = Column(Money, nullable=False, default=0)
    is_commission_paid = Column(Boolean, default=False)

    # Display hint only; recomputed from installment_payments on every payment write
    total_paid_monthly_installments = Column(Money, default=0)

    customer_snapshot = Column(JSON, nullable=True)
    rikshaw_snapshot = Column(JSON, nullable=True)

    created_at = Column(DateTime, default=dt.datetime.utcnow, index=True)
    updated_at = Column(DateTime, default=dt.datetime.utcnow, onupdate=dt.datetime.utcnow)

    customer = relationship("Customer", back_populates="plans")
    rikshaw = relationship("Rikshaw", back_populates="plan")
    payments = relationship("InstallmentPayment", back_populates="plan")

class InstallmentPayment(Base):
    __tablename__ = "installment_payments"

    id = Column(Integer, primary_key=True, index=True)
    plan_id = Column(Integer, ForeignKey("installment_plans.id"), nullable=False, index=True)
    amount_paid = Column(Money, nullable=False)
    payment_date = Column(Date, nullable=False)
    received_by = Column(String(100), nullable=False)
    payment_type = Column(String(30), nullable=False, default=PaymentType.MONTHLY.value)
    installment_number = Column(Integer, nullable=True)

    created_at = Column(DateTime, default=dt.datetime.utcnow)
    updated_at = Column(DateTime, default=dt.datetime.utcnow, onupdate=dt.datetime.utcnow)

    plan = relationship("InstallmentPlan", back_populates="payments")
