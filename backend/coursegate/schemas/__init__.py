from .checkout import (
    CheckResult,
    Enrollment,
    EnrollmentStatus,
    EnrollmentStatusResponse,
    EnrollOutcome,
    EnrollResponse,
    Payment,
    PaymentCheckResponse,
    PaymentMethod,
    PaymentStatus,
    enrollment_from_row,
    payment_from_row,
)
from .content import CourseContentResponse, LessonNode, MaterialNode

__all__ = [
    "CheckResult",
    "CourseContentResponse",
    "Enrollment",
    "EnrollmentStatus",
    "EnrollmentStatusResponse",
    "EnrollOutcome",
    "EnrollResponse",
    "LessonNode",
    "MaterialNode",
    "Payment",
    "PaymentCheckResponse",
    "PaymentMethod",
    "PaymentStatus",
    "enrollment_from_row",
    "payment_from_row",
]
