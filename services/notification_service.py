"""
Notification Dispatcher
Composes a notification from its template and delivers it by email.
Every attempt is written to the store's delivery log.
"""
import logging
from typing import Any, Dict, Optional

from core.config import Settings
from core.exceptions import NotificationDeliveryError
from models import NotificationKind
from services.email_service import send_email
from services.message_templates import build_message
from services.store import AppointmentStoreBase

logger = logging.getLogger(__name__)


def resolve_participants(store: AppointmentStoreBase, appointment: Dict[str, Any]) -> Dict[str, Any]:
    """Display names and email addresses for the appointment's patient and doctor."""
    patient_id = appointment.get("patient_id")
    doctor_id = appointment.get("doctor_id")
    return {
        "appointment_id": appointment.get("id"),
        "patient_id": patient_id,
        "patient_name": (store.resolve_user_display_name(patient_id) if patient_id else None) or "Patient",
        "patient_email": store.resolve_user_email(patient_id) if patient_id else None,
        "doctor_id": doctor_id,
        "doctor_name": (store.resolve_user_display_name(doctor_id) if doctor_id else None) or "Doctor",
        "doctor_email": store.resolve_user_email(doctor_id) if doctor_id else None,
        "appointment_date": appointment.get("appt_date"),
        "appointment_time": appointment.get("appt_time"),
        "appointment_type": appointment.get("appt_type"),
    }


class NotificationDispatcher:
    """Sends payment and reminder notifications."""

    def __init__(self, settings: Settings, store: Optional[AppointmentStoreBase] = None):
        self._settings = settings
        self._store = store

    def _log(self, recipient: str, kind: str, status: str, error: Optional[str] = None):
        if self._store is not None:
            self._store.log_notification(recipient, kind, status, error)

    async def send(self, kind: NotificationKind, recipient: str, template_data: Dict[str, Any]) -> None:
        """
        Deliver one notification.

        Raises NotificationDeliveryError when there is no recipient or the
        provider rejects the message.
        """
        kind = NotificationKind(kind)
        if not recipient:
            raise NotificationDeliveryError(f"No recipient address for {kind.value} notification")

        subject, body_text, body_html = build_message(kind, template_data, self._settings.FRONTEND_URL)
        try:
            await send_email(self._settings, recipient, subject, body_text, body_html)
        except NotificationDeliveryError as e:
            self._log(recipient, kind.value, "failed", str(e))
            raise

        self._log(recipient, kind.value, "sent")
        logger.info(f"📧 {kind.value} notification sent to {recipient}")
