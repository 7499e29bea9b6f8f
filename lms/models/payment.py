"""Payments against enrollments: PayHere, bank slips and manual entries."""
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from beanie import Document, Indexed
from pydantic import BaseModel, ConfigDict, Field
import pymongo

from lms.models.fields import UtcDateTime


class PaymentMethod(str, Enum):
    PAYHERE = "payhere"
    BANK_TRANSFER = "bank_transfer"
    MANUAL = "manual"


class PaymentStatus(str, Enum):
    COMPLETED = "completed"
    PENDING = "pending"
    FAILED = "failed"


class Payment(Document):
    enrollment_id: Indexed(str)
    student_id: Optional[str] = None
    target_month: Optional[str] = None  # "YYYY-MM"
    amount: float
    currency: str = "LKR"
    method: PaymentMethod = PaymentMethod.MANUAL
    status: PaymentStatus = PaymentStatus.PENDING
    verified: bool = False
    payment_date: datetime = Field(default_factory=datetime.utcnow)

    payhere_order_id: Optional[str] = None
    payhere_payment_id: Optional[str] = None
    payhere_status_code: Optional[int] = None
    payhere_md5sig: Optional[str] = None
    transaction_id: Optional[str] = None

    slip_url: Optional[str] = None
    slip_s3_key: Optional[str] = None
    raw_payload: Optional[dict[str, Any]] = None
    notes: Optional[str] = None
    recorded_by: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "payments"
        use_state_management = True
        indexes = [
            pymongo.IndexModel(
                [("transaction_id", pymongo.ASCENDING)],
                unique=True,
                partialFilterExpression={"transaction_id": {"$type": "string"}},
            ),
            pymongo.IndexModel([("payhere_order_id", pymongo.ASCENDING)], sparse=True),
        ]


class ManualPaymentCreate(BaseModel):
    model_config = ConfigDict(extra="ignore")
    enrollment_id: str
    amount: float = Field(gt=0)
    method: PaymentMethod = PaymentMethod.MANUAL
    target_month: Optional[str] = None
    transaction_id: Optional[str] = None
    payment_date: Optional[UtcDateTime] = None
    notes: Optional[str] = None


class PaymentStatusUpdate(BaseModel):
    status: PaymentStatus
    target_month: Optional[str] = None
    notes: Optional[str] = None


class CheckoutRequest(BaseModel):
    enrollment_id: str
    target_month: Optional[str] = None
    amount: Optional[float] = Field(default=None, gt=0)
