from pydantic import BaseModel, Field, field_validator
from typing import List, Optional
from datetime import date, datetime as dt
from decimal import Decimal
import enum

ZERO = Decimal("0")
DateType = date

def _blank_to_none(value):
    if isinstance(value, str) and not value.strip():
        return None
    return value

def _none_to_zero(value):
    if value is None or (isinstance(value, str) and not value.strip()):
        return ZERO
    return value


class PlanStatus(str, enum.Enum):
    COMPLETED = "Completed"
    ADVANCE_PENDING = "Advance Pending"
    OVERDUE = "Overdue"
    ACTIVE = "Active"
    NOT_ACTIVE = "Not Active"

class ScheduleStatus(str, enum.Enum):
    PAID = "Paid"
    PARTIALLY_PAID = "Partially Paid"
    UNPAID = "Unpaid"

class DueStatus(str, enum.Enum):
    DUE = "Due"
    OVERDUE = "Overdue"

class DueType(str, enum.Enum):
    MONTHLY = "Monthly"
    ADVANCE = "Advance Due"


# --- Records as the loaders hand them to the core ---

class AdvancePayment(BaseModel):
    amount: Decimal = ZERO
    date: Optional[DateType] = None

    @field_validator("amount", mode="before")
    @classmethod
    def amount_default(cls, value):
        return _none_to_zero(value)

    @field_validator("date", mode="before")
    @classmethod
    def date_blank(cls, value):
        return _blank_to_none(value)

class CustomerSnapshot(BaseModel):
    name: Optional[str] = None
    cnic: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None

    model_config = {
        "from_attributes": True
    }

class RikshawSnapshot(BaseModel):
    manufacturer: Optional[str] = None
    model_name: Optional[str] = None
    engine_number: Optional[str] = None
    chassis_number: Optional[str] = None
    registration_number: Optional[str] = None
    type: Optional[str] = None
    purchase_price: Optional[Decimal] = None
    sale_price: Optional[Decimal] = None

    model_config = {
        "from_attributes": True
    }

    @property
    def details(self) -> str:
        return f"REG: {self.registration_number or 'N/A'} | ENG: {self.engine_number or 'N/A'}"

class PlanRecord(BaseModel):
    id: int
    customer_id: Optional[int] = None
    rikshaw_id: Optional[int] = None
    total_price: Decimal = ZERO
    advance_payments: List[AdvancePayment] = Field(default_factory=list)
    monthly_installment: Decimal = ZERO
    duration_months: int = 0
    agreement_date: date
    showroom_commission: Decimal = ZERO
    is_commission_paid: bool = False
    created_at: Optional[dt] = None
    customer: CustomerSnapshot = Field(default_factory=CustomerSnapshot)
    rikshaw: RikshawSnapshot = Field(default_factory=RikshawSnapshot)

    @field_validator("total_price", "monthly_installment", "showroom_commission", mode="before")
    @classmethod
    def money_defaults(cls, value):
        return _none_to_zero(value)

    @field_validator("advance_payments", mode="before")
    @classmethod
    def advance_list(cls, value):
        return value or []

    @field_validator("duration_months", mode="before")
    @classmethod
    def duration_default(cls, value):
        return value or 0

class PaymentRecord(BaseModel):
    id: Optional[int] = None
    plan_id: Optional[int] = None
    amount_paid: Decimal = ZERO
    payment_date: Optional[date] = None
    received_by: Optional[str] = None
    payment_type: Optional[str] = None
    installment_number: Optional[int] = None
    created_at: Optional[dt] = None

    model_config = {
        "from_attributes": True
    }

    @field_validator("amount_paid", mode="before")
    @classmethod
    def amount_default(cls, value):
        return _none_to_zero(value)

    @field_validator("payment_date", mode="before")
    @classmethod
    def date_blank(cls, value):
        return _blank_to_none(value)


# --- Derived views ---

class PlanReconciliation(BaseModel):
    plan_id: int
    strategy: str
    total_agreed_advance: Decimal
    initial_collected_advance: Decimal
    advance_adjustments_paid: Decimal
    monthly_reallocated_to_advance: Decimal = ZERO
    collected_advance: Decimal
    remaining_advance_due: Decimal     # raw, may be negative when over-collected
    outstanding_advance: Decimal       # clamped at zero
    total_monthly_paid: Decimal
    total_discount_applied: Decimal
    total_commission_paid: Decimal
    outstanding_commission: Decimal
    customer_total_paid: Decimal
    customer_debt: Decimal
    remaining_balance: Decimal
    installments_due_count: int
    expected_monthly_paid: Decimal
    status: PlanStatus

class ScheduleRow(BaseModel):
    installment_number: int
    due_date: date
    expected_amount: Decimal
    paid_amount: Decimal
    status: ScheduleStatus

class DueItem(BaseModel):
    plan_id: int
    type: DueType
    installment_number: Optional[int] = None
    amount_due: Decimal
    due_date: date
    status: DueStatus

class DueEntry(BaseModel):
    plan_id: int
    customer_name: str
    phone_number: str
    rikshaw_details: str
    items: List[DueItem]
    total_amount_due: Decimal
    overall_status: DueStatus
    due_date: date

class DueReport(BaseModel):
    year: int
    month: int
    generated_on: date
    entries: List[DueEntry] = Field(default_factory=list)
    total_expected_amount: Decimal = ZERO
    total_overdue_amount: Decimal = ZERO

class UpcomingInstallment(BaseModel):
    plan_id: int
    customer_name: str
    rikshaw_details: str
    type: DueType
    installment_number: Optional[int] = None
    amount_due: Decimal
    due_date: date
    status: DueStatus

class DashboardMetrics(BaseModel):
    as_of: date
    total_rikshaws: int = 0
    sold_this_month: int = 0
    total_customers: int = 0
    total_revenue: Decimal = ZERO
    total_collected: Decimal = ZERO
    total_remaining_balance: Decimal = ZERO
    status_counts: dict = Field(default_factory=dict)
    overdue_count: int = 0
    advance_pending_count: int = 0
    current_month_investment: Decimal = ZERO
    current_month_profit: Decimal = ZERO
    upcoming_installments: List[UpcomingInstallment] = Field(default_factory=list)


# --- Write payloads (validated by the services before any write) ---

class CustomerCreate(BaseModel):
    name: Optional[str] = None
    cnic: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    guarantor_name: Optional[str] = None
    guarantor_cnic: Optional[str] = None
    guarantor_phone: Optional[str] = None
    guarantor_address: Optional[str] = None
    bank_name: Optional[str] = None
    cheque_number: Optional[str] = None

class RikshawCreate(BaseModel):
    manufacturer: Optional[str] = None
    model_name: Optional[str] = None
    type: Optional[str] = None
    category: Optional[str] = None
    engine_number: Optional[str] = None
    chassis_number: Optional[str] = None
    registration_number: Optional[str] = None
    availability: str = "unsold"
    purchase_date: Optional[date] = None
    purchase_price: Optional[Decimal] = None
    sale_price: Optional[Decimal] = None

    @field_validator("registration_number", "purchase_date", mode="before")
    @classmethod
    def blank_to_none(cls, value):
        return _blank_to_none(value)

class PlanCreate(BaseModel):
    customer_id: Optional[int] = None
    rikshaw_id: Optional[int] = None
    total_price: Optional[Decimal] = None
    advance_payments: List[AdvancePayment] = Field(default_factory=list)
    monthly_installment: Decimal = ZERO
    duration_months: int = 0
    agreement_date: Optional[date] = None
    showroom_commission: Decimal = ZERO

class PlanTermsUpdate(BaseModel):
    total_price: Decimal
    advance_paid: Decimal
    monthly_installment: Decimal
    duration_months: int

class PaymentCreate(BaseModel):
    plan_id: Optional[int] = None
    amount_paid: Optional[Decimal] = None
    payment_date: Optional[date] = None
    received_by: Optional[str] = None
    payment_type: str = "monthly"
    installment_number: Optional[int] = None

    @field_validator("payment_date", mode="before")
    @classmethod
    def blank_to_none(cls, value):
        return _blank_to_none(value)
