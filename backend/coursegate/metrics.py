from __future__ import annotations

from prometheus_client import Counter

payment_sessions_total = Counter(
    "coursegate_payment_sessions_total",
    "Gateway payment sessions requested, by gateway and outcome.",
    ["gateway", "outcome"],
)
payment_callbacks_total = Counter(
    "coursegate_payment_callbacks_total",
    "Gateway callbacks received, by gateway and result.",
    ["gateway", "result"],
)
payment_transitions_total = Counter(
    "coursegate_payment_transitions_total",
    "Payment status transitions applied, by target status and trigger.",
    ["status", "trigger"],
)
payment_verifications_total = Counter(
    "coursegate_payment_verifications_total",
    "Client-initiated payment checks, by reported result.",
    ["result"],
)
enrollments_created_total = Counter(
    "coursegate_enrollments_created_total",
    "Enrollment rows written, by path.",
    ["path"],
)
partial_writes_total = Counter(
    "coursegate_partial_writes_total",
    "Free enrollments whose payment record could not be written.",
)
