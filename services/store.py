"""
Appointment Store Gateway
Read/write access to appointments, the payments ledger, reminder rows and
user profiles. The orchestration services only see AppointmentStoreBase;
SupabaseAppointmentStore is the production implementation.
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional

import httpx
from postgrest.exceptions import APIError
from supabase import Client

from core.exceptions import StoreUnavailableError
from models import ReminderStatus

logger = logging.getLogger(__name__)

# PostgreSQL unique_violation
UNIQUE_VIOLATION = "23505"

APPOINTMENTS_TABLE = "appointments"
PAYMENTS_TABLE = "payments"
REMINDERS_TABLE = "appointment_reminders"
PROFILES_TABLE = "profiles"
NOTIFICATIONS_TABLE = "email_notifications"

REMINDER_WITH_APPOINTMENT = (
    "id, appointment_id, reminder_type, scheduled_for, status, "
    "appointments (id, patient_id, doctor_id, appt_date, appt_time, appt_type, status, payment_status)"
)


class AppointmentStoreBase(ABC):
    """Contract the payment orchestrator and reminder scheduler rely on."""

    # ── appointments ────────────────────────────────────────
    @abstractmethod
    def get_appointment(self, appointment_id: int) -> Optional[Dict[str, Any]]:
        ...

    @abstractmethod
    def update_appointment(self, appointment_id: int, patch: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        ...

    # ── payments ledger ─────────────────────────────────────
    @abstractmethod
    def insert_payment_record(self, record: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Returns None when the gateway payment is already in the ledger."""
        ...

    @abstractmethod
    def update_payment_record_status(self, gateway_payment_id: str, status: str) -> int:
        """Returns the number of ledger rows updated."""
        ...

    # ── reminders ───────────────────────────────────────────
    @abstractmethod
    def get_reminder(self, appointment_id: int, kind: str) -> Optional[Dict[str, Any]]:
        ...

    @abstractmethod
    def insert_reminder(self, record: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Returns None when a reminder for (appointment, kind) already exists."""
        ...

    @abstractmethod
    def query_due_reminders(self, window_start: datetime, window_end: datetime) -> List[Dict[str, Any]]:
        """Pending reminders due inside the window, each with its appointment under "appointments"."""
        ...

    @abstractmethod
    def update_reminder_status(self, reminder_id: Any, status: str, fields: Optional[Dict[str, Any]] = None) -> bool:
        """Move a reminder out of pending. False when it was no longer pending."""
        ...

    @abstractmethod
    def bulk_skip_pending_reminders(self, appointment_id: int, reason: str) -> int:
        ...

    # ── users ───────────────────────────────────────────────
    @abstractmethod
    def resolve_user_display_name(self, user_id: Any) -> Optional[str]:
        ...

    @abstractmethod
    def resolve_user_email(self, user_id: Any) -> Optional[str]:
        ...

    # ── notification log ────────────────────────────────────
    def log_notification(
        self,
        recipient_email: str,
        notification_type: str,
        status: str,
        error_message: Optional[str] = None,
    ) -> None:
        """Optional delivery log; stores without one simply ignore it."""
        return None


class SupabaseAppointmentStore(AppointmentStoreBase):
    """Supabase (PostgREST) implementation of the store contract."""

    def __init__(self, client: Optional[Client]):
        self._client = client

    @property
    def _db(self) -> Client:
        if not self._client:
            raise StoreUnavailableError("Database unavailable")
        return self._client

    @staticmethod
    def _execute(query, action: str):
        try:
            return query.execute()
        except APIError as e:
            logger.error(f"❌ Supabase error while trying to {action}: {e.message} (code={e.code})")
            raise StoreUnavailableError(f"Failed to {action}") from e
        except httpx.HTTPError as e:
            logger.error(f"❌ Supabase unreachable while trying to {action}: {e}")
            raise StoreUnavailableError(f"Failed to {action}: database unreachable") from e

    # ── appointments ────────────────────────────────────────
    def get_appointment(self, appointment_id: int) -> Optional[Dict[str, Any]]:
        result = self._execute(
            self._db.table(APPOINTMENTS_TABLE).select("*").eq("id", appointment_id),
            f"fetch appointment {appointment_id}",
        )
        return result.data[0] if result.data else None

    def update_appointment(self, appointment_id: int, patch: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        result = self._execute(
            self._db.table(APPOINTMENTS_TABLE).update(patch).eq("id", appointment_id),
            f"update appointment {appointment_id}",
        )
        return result.data[0] if result.data else None

    # ── payments ledger ─────────────────────────────────────
    def insert_payment_record(self, record: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        try:
            result = self._db.table(PAYMENTS_TABLE).insert(record).execute()
        except APIError as e:
            if e.code == UNIQUE_VIOLATION:
                logger.info(f"Payment {record.get('razorpay_payment_id')} already recorded in the ledger")
                return None
            logger.error(f"❌ Failed to save payment record: {e.message} (code={e.code})")
            raise StoreUnavailableError("Failed to save payment record") from e
        except httpx.HTTPError as e:
            logger.error(f"❌ Supabase unreachable while saving payment record: {e}")
            raise StoreUnavailableError("Failed to save payment record: database unreachable") from e
        return result.data[0] if result.data else dict(record)

    def update_payment_record_status(self, gateway_payment_id: str, status: str) -> int:
        result = self._execute(
            self._db.table(PAYMENTS_TABLE).update({"status": status}).eq("razorpay_payment_id", gateway_payment_id),
            f"update payment record {gateway_payment_id}",
        )
        return len(result.data or [])

    # ── reminders ───────────────────────────────────────────
    def get_reminder(self, appointment_id: int, kind: str) -> Optional[Dict[str, Any]]:
        result = self._execute(
            self._db.table(REMINDERS_TABLE)
            .select("*")
            .eq("appointment_id", appointment_id)
            .eq("reminder_type", kind)
            .limit(1),
            f"fetch {kind} reminder for appointment {appointment_id}",
        )
        return result.data[0] if result.data else None

    def insert_reminder(self, record: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        try:
            result = self._db.table(REMINDERS_TABLE).insert(record).execute()
        except APIError as e:
            if e.code == UNIQUE_VIOLATION:
                logger.info(
                    f"Reminder {record.get('reminder_type')} already exists for appointment {record.get('appointment_id')}"
                )
                return None
            logger.error(f"❌ Failed to insert reminder: {e.message} (code={e.code})")
            raise StoreUnavailableError("Failed to save reminder") from e
        except httpx.HTTPError as e:
            logger.error(f"❌ Supabase unreachable while inserting reminder: {e}")
            raise StoreUnavailableError("Failed to save reminder: database unreachable") from e
        return result.data[0] if result.data else None

    def query_due_reminders(self, window_start: datetime, window_end: datetime) -> List[Dict[str, Any]]:
        result = self._execute(
            self._db.table(REMINDERS_TABLE)
            .select(REMINDER_WITH_APPOINTMENT)
            .eq("status", ReminderStatus.PENDING.value)
            .gte("scheduled_for", window_start.isoformat())
            .lte("scheduled_for", window_end.isoformat())
            .order("scheduled_for"),
            "fetch due reminders",
        )
        return result.data or []

    def update_reminder_status(self, reminder_id: Any, status: str, fields: Optional[Dict[str, Any]] = None) -> bool:
        patch = {"status": status, **(fields or {})}
        # Only a reminder that is still pending may move; zero rows means someone else got there first
        result = self._execute(
            self._db.table(REMINDERS_TABLE)
            .update(patch)
            .eq("id", reminder_id)
            .eq("status", ReminderStatus.PENDING.value),
            f"mark reminder {reminder_id} as {status}",
        )
        return bool(result.data)

    def bulk_skip_pending_reminders(self, appointment_id: int, reason: str) -> int:
        result = self._execute(
            self._db.table(REMINDERS_TABLE)
            .update({"status": ReminderStatus.SKIPPED.value, "error_message": reason})
            .eq("appointment_id", appointment_id)
            .eq("status", ReminderStatus.PENDING.value),
            f"cancel reminders for appointment {appointment_id}",
        )
        return len(result.data or [])

    # ── users ───────────────────────────────────────────────
    def resolve_user_display_name(self, user_id: Any) -> Optional[str]:
        result = self._execute(
            self._db.table(PROFILES_TABLE).select("full_name").eq("id", user_id).limit(1),
            f"fetch profile {user_id}",
        )
        return result.data[0].get("full_name") if result.data else None

    def resolve_user_email(self, user_id: Any) -> Optional[str]:
        try:
            response = self._db.auth.admin.get_user_by_id(str(user_id))
        except Exception as e:
            logger.error(f"Failed to fetch email for user {user_id}: {e}")
            raise StoreUnavailableError(f"Failed to fetch email for user {user_id}") from e
        user = getattr(response, "user", None)
        return getattr(user, "email", None) if user else None

    # ── notification log ────────────────────────────────────
    def log_notification(
        self,
        recipient_email: str,
        notification_type: str,
        status: str,
        error_message: Optional[str] = None,
    ) -> None:
        try:
            self._db.table(NOTIFICATIONS_TABLE).insert({
                "recipient_email": recipient_email,
                "notification_type": notification_type,
                "status": status,
                "error_message": error_message,
            }).execute()
        except Exception as e:
            # Never fail a delivery because the log write failed
            logger.error(f"Failed to log notification: {e}")
