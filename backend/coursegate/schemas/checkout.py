from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel


class PaymentStatus(str, Enum):
    pending = "pending"
    completed = "completed"
    failed = "failed"


class PaymentMethod(str, Enum):
    free = "free"
    sslcommerz = "sslcommerz"
    bkash = "bkash"


class EnrollmentStatus(str, Enum):
    active = "active"
    completed = "completed"
    cancelled = "cancelled"


class EnrollOutcome(str, Enum):
    enrolled = "enrolled"
    already_enrolled = "already_enrolled"
    redirect = "redirect"


class CheckResult(str, Enum):
    completed = "completed"
    failed = "failed"
    processing = "processing"


class Enrollment(BaseModel):
    id: str
    course_id: str
    student_id: str
    status: EnrollmentStatus
    progress: float = 0
    enrolled_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class Payment(BaseModel):
    id: str
    course_id: Optional[str] = None
    user_id: Optional[str] = None
    amount: Decimal
    currency: str
    status: PaymentStatus
    payment_method: PaymentMethod
    transaction_id: Optional[str] = None
    gateway_reference: Optional[str] = None
    payment_date: Optional[datetime] = None
    settled_at: Optional[datetime] = None


class EnrollResponse(BaseModel):
    status: EnrollOutcome
    enrollment: Optional[Enrollment] = None
    payment_url: Optional[str] = None
    transaction_id: Optional[str] = None
    redirect_to: Optional[str] = None
    verify_after_seconds: Optional[float] = None


class EnrollmentStatusResponse(BaseModel):
    enrolled: bool
    enrollment: Optional[Enrollment] = None


class PaymentCheckResponse(BaseModel):
    status: CheckResult
    message: str
    transaction_id: str
    course_id: Optional[str] = None
    retry_url: Optional[str] = None
    enrollment: Optional[Enrollment] = None


def enrollment_from_row(row: dict[str, Any] | None) -> Enrollment | None:
    if not row:
        return None
    return Enrollment.model_validate({**row, "id": str(row["id"])})


def payment_from_row(row: dict[str, Any]) -> Payment:
    return Payment.model_validate({**row, "id": str(row["id"])})
