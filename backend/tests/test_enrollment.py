from decimal import Decimal

import anyio
import pytest
from prometheus_client import REGISTRY

from coursegate.config import settings
from coursegate.errors import GatewayConfigError, GatewaySessionError, GatewayTimeout, ValidationError
from coursegate.schemas import EnrollOutcome, PaymentMethod
from coursegate.services import alerts, enrollment_service
from coursegate.services.enrollment_service import effective_price
from coursegate_fakes import FakeGateway, install_gateway

pytestmark = pytest.mark.anyio("asyncio")


def _writes(store):
    return [call for call in store.calls if call[0] in {"insert", "update", "upsert", "delete"}]


def test_effective_price_prefers_discount_including_zero():
    assert effective_price({"price": 1000, "discounted_price": 800}) == Decimal("800")
    assert effective_price({"price": 1000, "discounted_price": 0}) == Decimal("0")
    assert effective_price({"price": "499.50", "discounted_price": None}) == Decimal("499.50")
    assert effective_price({"price": None}) == Decimal("0")


def test_effective_price_rejects_negative_prices():
    with pytest.raises(ValidationError):
        effective_price({"price": -1})


async def test_free_course_enrolls_and_records_free_payment(store, seed_course, student):
    course = seed_course(title="Free & Easy", price=0)

    response = await enrollment_service.enroll(student, course["id"])

    assert response.status is EnrollOutcome.enrolled
    assert response.redirect_to == "/success?course=Free%20%26%20Easy"
    (enrollment,) = store.rows("enrollments")
    assert enrollment["status"] == "active"
    assert enrollment["progress"] == 0
    assert enrollment["student_id"] == student["id"]
    (payment,) = store.rows("payments")
    assert payment["status"] == "completed"
    assert payment["amount"] == "0"
    assert payment["payment_method"] == "free"
    assert payment["transaction_id"] == f"FREE_{course['id']}_{student['id']}"


async def test_zero_discount_makes_course_free(store, seed_course, student):
    course = seed_course(price=1000, discounted_price=0)

    response = await enrollment_service.enroll(student, course["id"])

    assert response.status is EnrollOutcome.enrolled
    assert store.rows("payments", payment_method="free")


async def test_concurrent_free_enrollments_converge(store, seed_course, student):
    course = seed_course(price=0)
    results = []

    async def _enroll():
        results.append(await enrollment_service.enroll(student, course["id"]))

    async with anyio.create_task_group() as tg:
        tg.start_soon(_enroll)
        tg.start_soon(_enroll)

    assert len(results) == 2
    assert len(store.rows("enrollments", status="active")) == 1
    assert len(store.rows("payments", status="completed", payment_method="free")) == 1


async def test_paid_course_creates_pending_payment_for_discounted_price(
    monkeypatch, store, seed_course, student
):
    course = seed_course(price=1000, discounted_price=800)
    gateway = FakeGateway()
    requested = install_gateway(monkeypatch, gateway)

    response = await enrollment_service.enroll(student, course["id"])

    assert requested == [PaymentMethod.sslcommerz]
    assert response.status is EnrollOutcome.redirect
    assert response.payment_url.startswith("https://pay.example.test/")
    assert response.verify_after_seconds == settings.payment_verify_delay_seconds
    (payment,) = store.rows("payments")
    assert payment["status"] == "pending"
    assert Decimal(payment["amount"]) == Decimal("800")
    assert payment["currency"] == "BDT"
    assert payment["transaction_id"] == response.transaction_id
    assert store.rows("enrollments") == []
    (request,) = gateway.sessions
    assert request.amount == Decimal("800")
    assert request.customer_email == "student@example.test"


async def test_wallet_session_id_replaces_local_transaction_id(
    monkeypatch, store, seed_course, student
):
    course = seed_course()
    monkeypatch.setattr(settings, "payment_gateway", "bkash")
    install_gateway(monkeypatch, FakeGateway(method=PaymentMethod.bkash, session_id="PAY-42"))

    response = await enrollment_service.enroll(student, course["id"])

    (payment,) = store.rows("payments")
    assert payment["payment_method"] == "bkash"
    assert payment["transaction_id"] == "PAY-42"
    assert response.transaction_id == "PAY-42"


async def test_site_setting_selects_the_active_gateway(monkeypatch, store, seed_course, student):
    course = seed_course()
    store.seed("site_settings", {"key": "payment_gateway", "value": '"bkash"'})
    requested = install_gateway(monkeypatch, FakeGateway(method=PaymentMethod.bkash))

    await enrollment_service.enroll(student, course["id"])

    assert requested == [PaymentMethod.bkash]


async def test_active_enrollment_short_circuits(monkeypatch, store, seed_course, student):
    course = seed_course()
    store.seed(
        "enrollments",
        {"course_id": course["id"], "student_id": student["id"], "status": "active"},
    )
    gateway = FakeGateway()
    install_gateway(monkeypatch, gateway)

    response = await enrollment_service.enroll(student, course["id"])

    assert response.status is EnrollOutcome.already_enrolled
    assert response.enrollment is not None
    assert store.rows("payments") == []
    assert gateway.sessions == []


async def test_returning_free_student_heals_missing_payment(store, seed_course, student):
    course = seed_course(price=0)
    store.seed(
        "enrollments",
        {"course_id": course["id"], "student_id": student["id"], "status": "active"},
    )

    response = await enrollment_service.enroll(student, course["id"])

    assert response.status is EnrollOutcome.already_enrolled
    assert len(store.rows("payments", payment_method="free")) == 1


async def test_cancelled_enrollment_is_reactivated_for_free_course(store, seed_course, student):
    course = seed_course(price=0)
    store.seed(
        "enrollments",
        {"course_id": course["id"], "student_id": student["id"], "status": "cancelled"},
    )

    await enrollment_service.enroll(student, course["id"])

    (enrollment,) = store.rows("enrollments")
    assert enrollment["status"] == "active"


async def test_unpublished_course_is_rejected_before_any_write(store, seed_course, student):
    course = seed_course(is_published=False)

    with pytest.raises(ValidationError):
        await enrollment_service.enroll(student, course["id"])

    assert _writes(store) == []


async def test_missing_profile_is_rejected(store, seed_course):
    course = seed_course()

    with pytest.raises(ValidationError):
        await enrollment_service.enroll(None, course["id"])

    assert _writes(store) == []


async def test_unconfigured_gateway_leaves_no_payment(monkeypatch, store, seed_course, student):
    course = seed_course()
    monkeypatch.setattr(settings, "sslcommerz_store_id", None)
    monkeypatch.setattr(settings, "sslcommerz_store_password", None)

    with pytest.raises(GatewayConfigError):
        await enrollment_service.enroll(student, course["id"])

    assert store.rows("payments") == []


async def test_session_error_marks_payment_failed(monkeypatch, store, seed_course, student):
    course = seed_course()
    install_gateway(
        monkeypatch, FakeGateway(session_error=GatewaySessionError("card rail down"))
    )

    with pytest.raises(GatewaySessionError):
        await enrollment_service.enroll(student, course["id"])

    (payment,) = store.rows("payments")
    assert payment["status"] == "failed"
    assert store.rows("enrollments") == []


async def test_session_timeout_leaves_payment_pending(monkeypatch, store, seed_course, student):
    course = seed_course()
    install_gateway(monkeypatch, FakeGateway(session_error=GatewayTimeout("slow")))

    with pytest.raises(GatewayTimeout):
        await enrollment_service.enroll(student, course["id"])

    (payment,) = store.rows("payments")
    assert payment["status"] == "pending"


async def test_abandoned_pending_payment_does_not_block_new_attempt(
    monkeypatch, store, seed_course, student
):
    course = seed_course()
    install_gateway(monkeypatch, FakeGateway())

    first = await enrollment_service.enroll(student, course["id"])
    second = await enrollment_service.enroll(student, course["id"])

    assert first.transaction_id != second.transaction_id
    assert len(store.rows("payments", status="pending")) == 2


async def test_free_payment_failure_is_a_partial_write(monkeypatch, store, seed_course, student):
    course = seed_course(price=0)
    store.fail_next("upsert", "payments", times=settings.free_payment_write_attempts)
    captured = []
    monkeypatch.setattr(alerts, "capture_partial_write", captured.append)
    before = REGISTRY.get_sample_value("coursegate_partial_writes_total")

    response = await enrollment_service.enroll(student, course["id"])

    assert response.status is EnrollOutcome.enrolled
    assert store.rows("enrollments", status="active")
    assert store.rows("payments") == []
    assert REGISTRY.get_sample_value("coursegate_partial_writes_total") == before + 1
    (error,) = captured
    assert error.course_id == course["id"]
    assert error.student_id == student["id"]


async def test_free_payment_retry_recovers(store, seed_course, student):
    course = seed_course(price=0)
    store.fail_next("upsert", "payments", times=1)

    await enrollment_service.enroll(student, course["id"])

    assert len(store.rows("payments", payment_method="free")) == 1
