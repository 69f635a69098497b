"""
Payment Service: order creation, payment verification and refunds for appointments.

Every operation runs in the same order: validate, call the gateway, persist
local state, then notify on a best-effort basis. Local state is never written
before the corresponding gateway call has succeeded.
"""

import asyncio
import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import BackgroundTasks

from core.config import Settings
from core.exceptions import (
    NotFoundError,
    PaymentMismatchError,
    PaymentNotSuccessfulError,
    SignatureMismatchError,
    StoreUnavailableError,
    ValidationFailedError,
)
from models import (
    NotificationKind,
    PaymentRecordStatus,
    PaymentStatus,
    REFUNDED_STATUSES,
    SUCCESSFUL_GATEWAY_STATUSES,
)
from services.appointment_time import InvalidAppointmentTime, hours_until, parse_appointment_datetime
from services.error_monitoring import capture_exception
from services.gateways.base import PaymentGatewayBase
from services.message_templates import format_amount
from services.notification_service import NotificationDispatcher, resolve_participants
from services.refund_policy import calculate_refund_amount
from services.store import AppointmentStoreBase

logger = logging.getLogger(__name__)

CONFIRM_EVENTS = ("payment.captured", "payment.authorized")
FAILED_EVENT = "payment.failed"


def _nested_dict(data: Dict[str, Any], *keys: str) -> Dict[str, Any]:
    """Walk nested webhook objects; anything that is not an object ends the walk with {}."""
    for key in keys:
        data = data.get(key) if isinstance(data, dict) else None
    return data if isinstance(data, dict) else {}


class PaymentOrchestrator:
    """Gateway-agnostic payment operations on appointments."""

    def __init__(
        self,
        store: AppointmentStoreBase,
        gateway: PaymentGatewayBase,
        notifier: NotificationDispatcher,
        settings: Settings,
    ):
        self._store = store
        self._gateway = gateway
        self._notifier = notifier
        self._settings = settings

    def _get_appointment(self, appointment_id: int) -> Dict[str, Any]:
        appointment = self._store.get_appointment(appointment_id)
        if not appointment:
            logger.error(f"Appointment {appointment_id} not found")
            raise NotFoundError("Appointment not found")
        return appointment

    # ── Create Order ────────────────────────────────────────
    def create_order(
        self,
        appointment_id: int,
        requested_amount: Optional[int] = None,
        currency: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Creates a gateway order for an appointment. Local payment state is left untouched."""
        appointment = self._get_appointment(appointment_id)

        payment_status = appointment.get("payment_status")
        if payment_status == PaymentStatus.PAID:
            raise ValidationFailedError("Appointment already paid")
        if payment_status in REFUNDED_STATUSES:
            raise ValidationFailedError("Appointment payment was refunded and cannot be paid again")

        if requested_amount is not None and requested_amount > 0:
            amount = requested_amount
        else:
            amount = int(appointment.get("payment_amount") or 0)
        if amount <= 0:
            logger.error(f"Invalid amount: {amount} for appointment {appointment_id}")
            raise ValidationFailedError(f"Invalid payment amount: {amount}")

        currency = (currency or appointment.get("payment_currency") or self._settings.DEFAULT_CURRENCY).upper()

        minimum = self._settings.PAYMENT_MIN_AMOUNT
        if amount < minimum:
            logger.error(f"Amount {amount} below gateway minimum {minimum} for appointment {appointment_id}")
            raise ValidationFailedError(
                f"Payment amount must be at least {format_amount(minimum, currency)}. "
                f"Current amount: {format_amount(amount, currency)}"
            )

        receipt = f"appt_{appointment_id}_{int(datetime.now(timezone.utc).timestamp() * 1000)}"
        notes = {"appointment_id": str(appointment_id)}

        logger.info(f"Creating {self._gateway.name} order: appointment={appointment_id} amount={amount} {currency}")
        order = self._gateway.create_order(amount=amount, currency=currency, receipt=receipt, notes=notes)
        logger.info(f"✅ Order created: {order['id']}")

        return {
            "order_id": order["id"],
            "amount": int(order.get("amount", amount)),
            "currency": order.get("currency", currency),
            "receipt": order.get("receipt", receipt),
        }

    # ── Verify Payment (client trigger) ─────────────────────
    def verify_payment(
        self,
        appointment_id: int,
        payment_id: str,
        order_id: str,
        signature: str,
        background_tasks: BackgroundTasks,
    ) -> Dict[str, Any]:
        """Checks the checkout signature, then confirms the payment against the gateway."""
        if not self._gateway.verify_payment_signature(order_id, payment_id, signature):
            logger.error(f"Invalid payment signature for appointment {appointment_id}, payment {payment_id}")
            raise SignatureMismatchError("Invalid payment signature")

        return self.confirm_payment(appointment_id, payment_id, order_id, background_tasks)

    # ── Confirm Payment (shared by client and webhook) ──────
    def confirm_payment(
        self,
        appointment_id: int,
        payment_id: str,
        order_id: Optional[str],
        background_tasks: BackgroundTasks,
    ) -> Dict[str, Any]:
        """
        Marks the appointment paid using the gateway's own view of the payment.

        Amount and currency always come from the fetched gateway payment, never
        from the caller. Replays for an already-confirmed payment are no-ops.
        """
        appointment = self._get_appointment(appointment_id)

        current_status = appointment.get("payment_status")
        if current_status == PaymentStatus.PAID or current_status in REFUNDED_STATUSES:
            if appointment.get("payment_id") == payment_id:
                logger.info(f"Payment {payment_id} already recorded for appointment {appointment_id}, skipping")
                return {"success": True, "payment_id": payment_id}
            raise ValidationFailedError("Appointment already paid")

        payment = self._gateway.fetch_payment(payment_id)

        remote_status = payment.get("status")
        if remote_status not in SUCCESSFUL_GATEWAY_STATUSES:
            logger.error(f"Payment {payment_id} not successful at gateway: {remote_status}")
            raise PaymentNotSuccessfulError(f"Payment not successful. Status: {remote_status}")

        remote_order_id = payment.get("order_id")
        if order_id and remote_order_id and remote_order_id != order_id:
            logger.error(f"Payment {payment_id} belongs to order {remote_order_id}, not {order_id}")
            raise PaymentMismatchError("Payment does not belong to this order")

        notes = payment.get("notes")
        noted_appointment = notes.get("appointment_id") if isinstance(notes, dict) else None
        if noted_appointment and str(noted_appointment) != str(appointment_id):
            logger.error(f"Payment {payment_id} was made for appointment {noted_appointment}, not {appointment_id}")
            raise PaymentMismatchError("Payment does not belong to this appointment")

        amount = int(payment.get("amount") or 0)
        currency = payment.get("currency") or self._settings.DEFAULT_CURRENCY
        if amount <= 0:
            raise PaymentNotSuccessfulError("Gateway reported an empty payment amount")

        self._store.update_appointment(appointment_id, {
            "payment_status": PaymentStatus.PAID.value,
            "payment_id": payment_id,
            "payment_order_id": remote_order_id or order_id,
            "payment_amount": amount,
            "payment_currency": currency,
            "payment_date": datetime.now(timezone.utc).isoformat(),
            "payment_failure_reason": None,
        })

        try:
            record = self._store.insert_payment_record({
                "appointment_id": appointment_id,
                "razorpay_payment_id": payment_id,
                "razorpay_order_id": remote_order_id or order_id,
                "amount": amount,
                "currency": currency,
                "status": (
                    PaymentRecordStatus.CAPTURED.value
                    if remote_status == "captured"
                    else PaymentRecordStatus.AUTHORIZED.value
                ),
                "method": payment.get("method"),
                "metadata": payment,
            })
        except StoreUnavailableError as e:
            # The appointment is already paid; the ledger row can be rebuilt from the gateway
            capture_exception(e, {"appointment_id": appointment_id, "payment_id": payment_id})
        else:
            if record is None:
                # A concurrent trigger for the same payment got here first and owns the notification
                logger.info(f"Payment {payment_id} already in the ledger, skipping notification")
                return {"success": True, "payment_id": payment_id}

        logger.info(f"✅ Appointment {appointment_id} paid: {payment_id} ({amount} {currency})")

        background_tasks.add_task(self._notify_payment_confirmed, appointment_id, payment_id, amount, currency)

        return {"success": True, "payment_id": payment_id}

    async def _notify_payment_confirmed(self, appointment_id: int, payment_id: str, amount: int, currency: str):
        """Best-effort confirmation emails to patient and doctor."""
        try:
            appointment = await asyncio.to_thread(self._store.get_appointment, appointment_id)
            if not appointment:
                logger.warning(f"Appointment {appointment_id} vanished before payment notification")
                return
            data = await asyncio.to_thread(resolve_participants, self._store, appointment)
        except Exception as e:
            logger.error(f"Failed to resolve recipients for payment {payment_id}: {e}")
            return

        data.update({"amount": amount, "currency": currency, "payment_id": payment_id})

        for kind, recipient in (
            (NotificationKind.PAYMENT_CONFIRMED, data.get("patient_email")),
            (NotificationKind.PAYMENT_RECEIVED_DOCTOR, data.get("doctor_email")),
        ):
            if not recipient:
                logger.warning(f"No email for {kind.value} notification on appointment {appointment_id}")
                continue
            try:
                await self._notifier.send(kind, recipient, data)
            except Exception as e:
                logger.error(f"Failed to send {kind.value} notification to {recipient}: {e}")

    # ── Webhook ─────────────────────────────────────────────
    def handle_webhook(
        self,
        raw_body: bytes,
        signature: Optional[str],
        background_tasks: BackgroundTasks,
    ) -> Dict[str, Any]:
        """
        Process a gateway webhook.

        The signature over the raw body is checked before anything is parsed.
        Capture events go through the same confirm_payment path as the client call.
        """
        if not self._gateway.verify_webhook_signature(raw_body, signature or ""):
            logger.error("Invalid webhook signature")
            raise SignatureMismatchError("Invalid webhook signature")

        try:
            payload = json.loads(raw_body)
        except ValueError:
            raise ValidationFailedError("Malformed webhook payload")

        if not isinstance(payload, dict):
            logger.warning("Webhook payload is not a JSON object, skipping")
            return {"received": True, "ignored": True, "event": None}

        event = payload.get("event")
        entity = _nested_dict(payload, "payload", "payment", "entity")
        notes = entity.get("notes")
        # Razorpay sends an empty list when an order has no notes
        raw_appointment_id = notes.get("appointment_id") if isinstance(notes, dict) else None

        if event not in CONFIRM_EVENTS and event != FAILED_EVENT:
            logger.info(f"Webhook event '{event}' not handled, skipping")
            return {"received": True, "ignored": True, "event": event}

        try:
            appointment_id = int(raw_appointment_id)
        except (TypeError, ValueError):
            logger.warning(f"Webhook {event} for payment {entity.get('id')} has no appointment note, skipping")
            return {"received": True, "ignored": True, "event": event}

        if event == FAILED_EVENT:
            reason = entity.get("error_description") or entity.get("error_code") or "Payment failed"
            self.record_failed_payment(appointment_id, entity.get("id"), reason)
            return {"received": True, "ignored": False, "event": event}

        self.confirm_payment(appointment_id, entity.get("id"), entity.get("order_id"), background_tasks)
        return {"received": True, "ignored": False, "event": event}

    def record_failed_payment(self, appointment_id: int, payment_id: Optional[str], reason: str) -> bool:
        """pending -> failed. Paid and refunded appointments are never downgraded."""
        appointment = self._store.get_appointment(appointment_id)
        if not appointment:
            logger.warning(f"Failed payment {payment_id} for unknown appointment {appointment_id}")
            return False

        current_status = appointment.get("payment_status")
        if current_status not in (None, PaymentStatus.PENDING, PaymentStatus.FAILED):
            logger.info(
                f"Ignoring failed payment {payment_id}: appointment {appointment_id} is already {current_status}"
            )
            return False

        self._store.update_appointment(appointment_id, {
            "payment_status": PaymentStatus.FAILED.value,
            "payment_failure_reason": reason,
        })
        logger.info(f"Appointment {appointment_id} payment marked failed: {reason}")
        return True

    # ── Refund ──────────────────────────────────────────────
    def create_refund(
        self,
        appointment_id: int,
        amount: Optional[int] = None,
        reason: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """
        Refund an appointment payment once.

        Without an explicit amount the cancellation policy decides how much
        comes back. The "already processed" check runs before any gateway
        call; it is the only guard against a duplicate remote refund.
        """
        appointment = self._get_appointment(appointment_id)

        payment_id = appointment.get("payment_id")
        if not payment_id:
            raise ValidationFailedError("No payment found for this appointment")

        current_status = appointment.get("payment_status")
        if current_status in REFUNDED_STATUSES:
            raise ValidationFailedError("Refund already processed")
        if current_status != PaymentStatus.PAID:
            raise ValidationFailedError(f"Payment is not refundable (status: {current_status})")

        paid_amount = int(appointment.get("payment_amount") or 0)

        if amount is not None:
            if amount <= 0:
                raise ValidationFailedError(f"No refund available: explicit refund amount {amount} must be positive")
            if amount > paid_amount:
                raise ValidationFailedError(f"Refund amount {amount} exceeds paid amount {paid_amount}")
            refund_amount = amount
        else:
            try:
                appointment_at = parse_appointment_datetime(
                    appointment.get("appt_date"),
                    appointment.get("appt_time"),
                    self._settings.APPOINTMENT_TIMEZONE,
                )
            except InvalidAppointmentTime as e:
                raise ValidationFailedError(f"Cannot compute refund: {e}")
            hours_left = hours_until(appointment_at, now)
            refund_amount = calculate_refund_amount(paid_amount, hours_left)
            if refund_amount <= 0:
                raise ValidationFailedError(
                    f"No refund available based on cancellation timing "
                    f"({hours_left:.1f} hours before the appointment, computed refund {refund_amount})"
                )

        refund_reason = reason or "Appointment cancelled"
        logger.info(f"Refunding {refund_amount} of {paid_amount} for appointment {appointment_id} ({refund_reason})")
        refund = self._gateway.create_refund(
            payment_id,
            refund_amount,
            notes={"reason": refund_reason, "appointment_id": str(appointment_id)},
        )

        is_full_refund = refund_amount >= paid_amount
        try:
            self._store.update_appointment(appointment_id, {
                "payment_status": (PaymentStatus.REFUNDED if is_full_refund else PaymentStatus.PARTIAL_REFUND).value,
                "refund_amount": refund_amount,
                "refund_id": refund["id"],
                "refund_date": datetime.now(timezone.utc).isoformat(),
            })
        except StoreUnavailableError as e:
            # The money has left; without this row a retry could refund twice
            capture_exception(e, {
                "appointment_id": appointment_id,
                "refund_id": refund["id"],
                "refund_amount": refund_amount,
                "alert": "refund issued but not recorded",
            })
            raise

        try:
            self._store.update_payment_record_status(payment_id, PaymentRecordStatus.REFUNDED.value)
        except StoreUnavailableError as e:
            capture_exception(e, {"appointment_id": appointment_id, "payment_id": payment_id})

        logger.info(f"✅ Refund {refund['id']} recorded for appointment {appointment_id}")
        return {"success": True, "refund_id": refund["id"], "refund_amount": refund_amount}
