import json
from datetime import timedelta

import pytest
from fastapi import BackgroundTasks

from core.exceptions import (
    NotFoundError,
    PaymentMismatchError,
    PaymentNotSuccessfulError,
    SignatureMismatchError,
    ValidationFailedError,
)
from models import NotificationKind
from services.appointment_time import parse_appointment_datetime
from fakes import sign_checkout, sign_webhook, snapshot


@pytest.fixture
def appointment(store):
    store.add_user("patient-1", "Asha Rao", "asha@example.com")
    store.add_user("doctor-1", "Dr. Mehta", "mehta@example.com")
    return store.add_appointment(id=1, appt_date="2030-01-10", appt_time="10:00", payment_amount=50000)


@pytest.fixture
def paid_appointment(store, appointment):
    store.appointments[1].update({
        "payment_status": "paid",
        "payment_id": "pay_1",
        "payment_order_id": "order_1",
        "payment_amount": 10000,
    })
    store.insert_payment_record({"appointment_id": 1, "razorpay_payment_id": "pay_1", "amount": 10000,
                                 "currency": "INR", "status": "captured"})
    return store.appointments[1]


def webhook_body(event, payment_id="pay_1", order_id="order_1", notes=None):
    return json.dumps({
        "event": event,
        "payload": {"payment": {"entity": {
            "id": payment_id,
            "order_id": order_id,
            "amount": 50000,
            "currency": "INR",
            "notes": {"appointment_id": "1"} if notes is None else notes,
            "error_description": "Card declined",
        }}},
    }).encode("utf-8")


def hours_before_appointment(appointment, hours):
    at = parse_appointment_datetime(appointment["appt_date"], appointment["appt_time"], "Asia/Kolkata")
    return at - timedelta(hours=hours)


# ── create order ────────────────────────────────────────

def test_create_order_uses_appointment_fee(payment_service, gateway, store, appointment):
    before = snapshot(store, 1)

    order = payment_service.create_order(1)

    assert order["order_id"] == "order_1"
    assert order["amount"] == 50000
    assert order["currency"] == "INR"
    assert order["receipt"].startswith("appt_1_")
    assert gateway.orders[0]["notes"] == {"appointment_id": "1"}
    assert snapshot(store, 1) == before


def test_create_order_below_minimum(payment_service, gateway, appointment):
    with pytest.raises(ValidationFailedError) as exc:
        payment_service.create_order(1, requested_amount=50)

    assert "Payment amount must be at least ₹1.00" in exc.value.detail
    assert "Current amount: ₹0.50" in exc.value.detail
    assert gateway.orders == []


def test_create_order_without_amount(payment_service, store):
    store.add_appointment(id=2, appt_date="2030-01-10", appt_time="10:00", payment_amount=None)
    with pytest.raises(ValidationFailedError):
        payment_service.create_order(2)


def test_create_order_for_paid_appointment(payment_service, paid_appointment):
    with pytest.raises(ValidationFailedError, match="already paid"):
        payment_service.create_order(1)


def test_create_order_unknown_appointment(payment_service):
    with pytest.raises(NotFoundError):
        payment_service.create_order(999)


@pytest.mark.parametrize("status", ["refunded", "partial_refund"])
def test_create_order_for_refunded_appointment(payment_service, gateway, store, appointment, status):
    store.appointments[1]["payment_status"] = status

    with pytest.raises(ValidationFailedError, match="refunded"):
        payment_service.create_order(1)

    assert gateway.orders == []


# ── verify ──────────────────────────────────────────────

def test_bad_signature_changes_nothing(payment_service, gateway, store, appointment):
    gateway.add_payment("pay_1", "order_1", 50000)
    before = snapshot(store, 1)

    with pytest.raises(SignatureMismatchError):
        payment_service.verify_payment(1, "pay_1", "order_1", "not-a-signature", background_tasks=BackgroundTasks())

    assert snapshot(store, 1) == before
    assert store.payments == []
    assert gateway.fetch_calls == 0


@pytest.mark.asyncio
async def test_verify_marks_paid_and_notifies(payment_service, gateway, store, notifier, appointment):
    gateway.add_payment("pay_1", "order_1", 50000)
    tasks = BackgroundTasks()

    result = payment_service.verify_payment(1, "pay_1", "order_1", sign_checkout("order_1", "pay_1"),
                                            background_tasks=tasks)

    assert result == {"success": True, "payment_id": "pay_1"}
    row = store.appointments[1]
    assert row["payment_status"] == "paid"
    assert row["payment_id"] == "pay_1"
    assert row["payment_order_id"] == "order_1"
    assert len(store.payments) == 1
    assert store.payments[0]["status"] == "captured"

    await tasks()
    kinds = {(n["kind"], n["recipient"]) for n in notifier.sent}
    assert kinds == {
        (NotificationKind.PAYMENT_CONFIRMED, "asha@example.com"),
        (NotificationKind.PAYMENT_RECEIVED_DOCTOR, "mehta@example.com"),
    }
    assert notifier.sent[0]["data"]["doctor_name"] == "Dr. Mehta"


def test_persisted_amount_comes_from_gateway(payment_service, gateway, store, appointment):
    # Appointment fee says 500.00, but only 1.00 was actually captured
    gateway.add_payment("pay_1", "order_1", 100)

    payment_service.verify_payment(1, "pay_1", "order_1", sign_checkout("order_1", "pay_1"),
                                   background_tasks=BackgroundTasks())

    assert store.appointments[1]["payment_amount"] == 100
    assert store.payments[0]["amount"] == 100


def test_unsuccessful_gateway_payment(payment_service, gateway, store, appointment):
    gateway.add_payment("pay_1", "order_1", 50000, status="failed")
    before = snapshot(store, 1)

    with pytest.raises(PaymentNotSuccessfulError, match="Status: failed"):
        payment_service.verify_payment(1, "pay_1", "order_1", sign_checkout("order_1", "pay_1"),
                                       background_tasks=BackgroundTasks())

    assert snapshot(store, 1) == before


def test_payment_for_another_appointment(payment_service, gateway, appointment):
    gateway.add_payment("pay_1", "order_1", 50000, notes={"appointment_id": "7"})

    with pytest.raises(PaymentMismatchError):
        payment_service.verify_payment(1, "pay_1", "order_1", sign_checkout("order_1", "pay_1"),
                                       background_tasks=BackgroundTasks())


def test_second_payment_for_paid_appointment(payment_service, gateway, paid_appointment):
    gateway.add_payment("pay_2", "order_2", 50000)

    with pytest.raises(ValidationFailedError, match="already paid"):
        payment_service.verify_payment(1, "pay_2", "order_2", sign_checkout("order_2", "pay_2"),
                                       background_tasks=BackgroundTasks())


@pytest.mark.asyncio
async def test_client_and_webhook_confirm_once(payment_service, gateway, store, notifier, appointment):
    gateway.add_payment("pay_1", "order_1", 50000)
    tasks = BackgroundTasks()

    payment_service.verify_payment(1, "pay_1", "order_1", sign_checkout("order_1", "pay_1"), background_tasks=tasks)
    body = webhook_body("payment.captured")
    result = payment_service.handle_webhook(body, sign_webhook(body), background_tasks=tasks)
    await tasks()

    assert result["ignored"] is False
    assert store.appointments[1]["payment_status"] == "paid"
    assert len(store.payments) == 1
    assert len(notifier.sent) == 2


@pytest.mark.asyncio
async def test_concurrent_confirmation_notifies_once(payment_service, gateway, store, notifier, appointment):
    # The other trigger has written its ledger row but not yet marked the appointment paid
    store.insert_payment_record({"appointment_id": 1, "razorpay_payment_id": "pay_1", "amount": 50000,
                                 "currency": "INR", "status": "captured"})
    gateway.add_payment("pay_1", "order_1", 50000)
    tasks = BackgroundTasks()

    result = payment_service.verify_payment(1, "pay_1", "order_1", sign_checkout("order_1", "pay_1"),
                                            background_tasks=tasks)
    await tasks()

    assert result == {"success": True, "payment_id": "pay_1"}
    assert store.appointments[1]["payment_status"] == "paid"
    assert len(store.payments) == 1
    assert notifier.sent == []


@pytest.mark.asyncio
async def test_notification_failure_does_not_affect_payment(store, gateway, test_settings, appointment):
    from fakes import RecordingNotifier
    from services.payment_service import PaymentOrchestrator

    notifier = RecordingNotifier(fail_for={"asha@example.com"})
    service = PaymentOrchestrator(store, gateway, notifier, test_settings)
    gateway.add_payment("pay_1", "order_1", 50000)
    tasks = BackgroundTasks()

    service.verify_payment(1, "pay_1", "order_1", sign_checkout("order_1", "pay_1"), background_tasks=tasks)
    await tasks()

    assert store.appointments[1]["payment_status"] == "paid"
    assert [n["recipient"] for n in notifier.sent] == ["mehta@example.com"]


# ── webhook ─────────────────────────────────────────────

def test_webhook_bad_signature_touches_nothing(payment_service, store, appointment):
    store.calls.clear()
    body = webhook_body("payment.captured")

    with pytest.raises(SignatureMismatchError):
        payment_service.handle_webhook(body, "bad", background_tasks=BackgroundTasks())

    assert store.calls == []


def test_webhook_signature_covers_exact_body(payment_service, appointment):
    body = webhook_body("payment.captured")
    signature = sign_webhook(body)
    reformatted = json.dumps(json.loads(body), indent=2).encode("utf-8")

    with pytest.raises(SignatureMismatchError):
        payment_service.handle_webhook(reformatted, signature, background_tasks=BackgroundTasks())


@pytest.mark.parametrize("notes", [{}, [], {"appointment_id": "abc"}])
def test_webhook_without_appointment_note_is_ignored(payment_service, store, gateway, appointment, notes):
    body = webhook_body("payment.captured", notes=notes)

    result = payment_service.handle_webhook(body, sign_webhook(body), background_tasks=BackgroundTasks())

    assert result == {"received": True, "ignored": True, "event": "payment.captured"}
    assert store.appointments[1]["payment_status"] == "pending"
    assert gateway.fetch_calls == 0


def test_webhook_unhandled_event(payment_service):
    body = json.dumps({"event": "order.paid", "payload": {}}).encode("utf-8")

    result = payment_service.handle_webhook(body, sign_webhook(body), background_tasks=BackgroundTasks())

    assert result["ignored"] is True


@pytest.mark.parametrize("body", [
    b"[]",
    b"\"payment.captured\"",
    b'{"event": "payment.captured", "payload": {"payment": null}}',
    b'{"event": "payment.captured", "payload": []}',
    b'{"event": "payment.captured", "payload": {"payment": {"entity": "pay_1"}}}',
])
def test_webhook_with_unexpected_shape_is_ignored(payment_service, store, gateway, appointment, body):
    result = payment_service.handle_webhook(body, sign_webhook(body), background_tasks=BackgroundTasks())

    assert result["received"] is True
    assert result["ignored"] is True
    assert store.appointments[1]["payment_status"] == "pending"
    assert gateway.fetch_calls == 0


def test_webhook_payment_failed(payment_service, store, appointment):
    body = webhook_body("payment.failed")

    payment_service.handle_webhook(body, sign_webhook(body), background_tasks=BackgroundTasks())

    assert store.appointments[1]["payment_status"] == "failed"
    assert store.appointments[1]["payment_failure_reason"] == "Card declined"


def test_failed_event_never_downgrades_paid(payment_service, store, paid_appointment):
    body = webhook_body("payment.failed", payment_id="pay_9")

    payment_service.handle_webhook(body, sign_webhook(body), background_tasks=BackgroundTasks())

    assert store.appointments[1]["payment_status"] == "paid"


def test_order_can_be_retried_after_failure(payment_service, store, appointment):
    store.appointments[1]["payment_status"] = "failed"

    order = payment_service.create_order(1)

    assert order["amount"] == 50000


# ── refunds ─────────────────────────────────────────────

@pytest.mark.parametrize("hours,expected_refund,expected_status", [
    (48, 10000, "refunded"),
    (18, 5000, "partial_refund"),
    (8, 2500, "partial_refund"),
])
def test_refund_follows_cancellation_policy(payment_service, gateway, store, paid_appointment,
                                            hours, expected_refund, expected_status):
    now = hours_before_appointment(paid_appointment, hours)

    result = payment_service.create_refund(1, now=now)

    assert result["refund_amount"] == expected_refund
    assert gateway.refunds[0]["amount"] == expected_refund
    assert gateway.refunds[0]["payment_id"] == "pay_1"
    assert store.appointments[1]["payment_status"] == expected_status
    assert store.appointments[1]["refund_id"] == result["refund_id"]
    assert store.payments[0]["status"] == "refunded"


def test_no_refund_close_to_appointment(payment_service, gateway, store, paid_appointment):
    now = hours_before_appointment(paid_appointment, 3)

    with pytest.raises(ValidationFailedError, match="No refund available"):
        payment_service.create_refund(1, now=now)

    assert gateway.refunds == []
    assert store.appointments[1]["payment_status"] == "paid"


def test_refund_only_once(payment_service, gateway, paid_appointment):
    now = hours_before_appointment(paid_appointment, 48)
    payment_service.create_refund(1, now=now)

    with pytest.raises(ValidationFailedError, match="Refund already processed"):
        payment_service.create_refund(1, now=now)

    assert len(gateway.refunds) == 1


def test_partial_refund_is_also_final(payment_service, gateway, paid_appointment):
    payment_service.create_refund(1, amount=1000)

    with pytest.raises(ValidationFailedError, match="Refund already processed"):
        payment_service.create_refund(1, amount=1000)

    assert len(gateway.refunds) == 1


def test_explicit_refund_cannot_exceed_payment(payment_service, gateway, paid_appointment):
    with pytest.raises(ValidationFailedError, match="exceeds paid amount"):
        payment_service.create_refund(1, amount=20000)

    assert gateway.refunds == []


def test_explicit_full_refund(payment_service, store, paid_appointment):
    result = payment_service.create_refund(1, amount=10000, reason="Doctor unavailable")

    assert result["refund_amount"] == 10000
    assert store.appointments[1]["payment_status"] == "refunded"


def test_refund_without_payment(payment_service, gateway, appointment):
    with pytest.raises(ValidationFailedError, match="No payment found"):
        payment_service.create_refund(1)

    assert gateway.refunds == []
