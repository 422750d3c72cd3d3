from __future__ import annotations


class PipelineError(Exception):
    """Base for purchase pipeline failures that map onto an HTTP response."""

    status_code = 400

    def __init__(self, detail: str, status_code: int | None = None) -> None:
        super().__init__(detail)
        if status_code is not None:
            self.status_code = status_code
        self.detail = detail


class ValidationError(PipelineError):
    """Rejected before any write: unknown/unpublished course, missing profile."""


class GatewaySessionError(PipelineError):
    status_code = 502


class GatewayConfigError(GatewaySessionError):
    def __init__(self, detail: str) -> None:
        super().__init__(detail, status_code=503)


class GatewayTimeout(GatewaySessionError):
    status_code = 504


class InvalidPaymentTransition(PipelineError):
    status_code = 409

    def __init__(self, current: str, target: str) -> None:
        super().__init__(f"payment cannot move from {current} to {target}")
        self.current = current
        self.target = target


class ReconciliationConflict(PipelineError):
    status_code = 409

    def __init__(self, transaction_id: str, stored: str, reported: str) -> None:
        super().__init__(
            f"payment {transaction_id} is {stored} but gateway reported {reported}"
        )
        self.transaction_id = transaction_id
        self.stored = stored
        self.reported = reported


class PartialWriteError(PipelineError):
    status_code = 500

    def __init__(self, detail: str, *, course_id: str, student_id: str) -> None:
        super().__init__(detail)
        self.course_id = course_id
        self.student_id = student_id


class PaymentNotFound(PipelineError):
    status_code = 404


__all__ = [
    "GatewayConfigError",
    "GatewaySessionError",
    "GatewayTimeout",
    "InvalidPaymentTransition",
    "PartialWriteError",
    "PaymentNotFound",
    "PipelineError",
    "ReconciliationConflict",
    "ValidationError",
]
