"""Student enrollment in a class, including bundle membership."""
from datetime import datetime
from enum import Enum
from typing import Optional

from beanie import Document
from pydantic import BaseModel, ConfigDict, Field
import pymongo

from lms.models.fields import UtcDateTime


class SubscriptionType(str, Enum):
    MONTHLY = "monthly"
    FULL = "full"


class EnrollmentPaymentStatus(str, Enum):
    PAID = "paid"
    UNPAID = "unpaid"
    PENDING = "pending"
    EXPIRED = "expired"


class BundleRole(str, Enum):
    PRIMARY = "primary"
    REVISION = "revision"
    PAPER = "paper"


class Enrollment(Document):
    student_id: str
    class_id: str
    subscription_type: SubscriptionType = SubscriptionType.MONTHLY
    payment_status: EnrollmentPaymentStatus = EnrollmentPaymentStatus.UNPAID
    last_payment_id: Optional[str] = None
    last_payment_date: Optional[datetime] = None
    next_payment_date: Optional[datetime] = None
    access_start_date: datetime = Field(default_factory=datetime.utcnow)
    access_end_date: Optional[datetime] = None
    paid_months: list[str] = Field(default_factory=list)

    bundle_role: BundleRole = BundleRole.PRIMARY
    bundle_parent_id: Optional[str] = None
    include_revision: bool = False
    include_paper: bool = False
    total_price: Optional[float] = None

    is_active: bool = True
    is_blocked: bool = False
    notes: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "enrollments"
        use_state_management = True
        indexes = [
            pymongo.IndexModel(
                [("student_id", pymongo.ASCENDING), ("class_id", pymongo.ASCENDING)],
                unique=True,
            ),
            [("bundle_parent_id", pymongo.ASCENDING)],
        ]


class EnrollmentCreate(BaseModel):
    model_config = ConfigDict(extra="ignore")
    class_id: str
    student_id: Optional[str] = None
    include_revision: bool = False
    include_paper: bool = False
    subscription_type: SubscriptionType = SubscriptionType.MONTHLY
    access_start_date: Optional[UtcDateTime] = None
    access_end_date: Optional[UtcDateTime] = None
    notes: Optional[str] = None


class EnrollmentQuoteRequest(BaseModel):
    class_id: str
    include_revision: bool = False
    include_paper: bool = False


class EnrollmentUpdate(BaseModel):
    model_config = ConfigDict(extra="ignore")
    payment_status: Optional[EnrollmentPaymentStatus] = None
    target_month: Optional[str] = None
    access_end_date: Optional[UtcDateTime] = None
    is_blocked: Optional[bool] = None
    notes: Optional[str] = None
