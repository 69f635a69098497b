"""
Reminder Service
Computes reminder fire-times for accepted appointments, stores them once per
(appointment, kind), cancels them when an appointment goes away, and sweeps
due reminders out to the notification dispatcher.
"""
import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel

from core.config import Settings
from models import AppointmentStatus, NotificationKind, ReminderKind, ReminderStatus
from schemas import SweepSummary
from services.appointment_time import InvalidAppointmentTime, parse_appointment_datetime
from services.error_monitoring import capture_exception
from services.notification_service import NotificationDispatcher, resolve_participants
from services.store import AppointmentStoreBase

logger = logging.getLogger(__name__)


class ReminderConfig(BaseModel):
    kind: ReminderKind
    hours_before: float
    enabled: bool = True


DEFAULT_REMINDER_CONFIGS = [
    ReminderConfig(kind=ReminderKind.HOURS_24_BEFORE, hours_before=24),
    ReminderConfig(kind=ReminderKind.HOURS_2_BEFORE, hours_before=2),
    ReminderConfig(kind=ReminderKind.HOUR_1_BEFORE, hours_before=1),
]

CANCELLING_STATUSES = (AppointmentStatus.CANCELLED, AppointmentStatus.DECLINED)


def _joined_appointment(reminder: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    appointment = reminder.get("appointments")
    # PostgREST embeds a many-to-one relation as an object, older clients as a one-item list
    if isinstance(appointment, list):
        return appointment[0] if appointment else None
    return appointment


class ReminderScheduler:
    """Schedules, cancels and delivers appointment reminders."""

    def __init__(
        self,
        store: AppointmentStoreBase,
        notifier: NotificationDispatcher,
        settings: Settings,
        configs: Optional[List[ReminderConfig]] = None,
    ):
        self._store = store
        self._notifier = notifier
        self._settings = settings
        self._configs = configs if configs is not None else DEFAULT_REMINDER_CONFIGS
        self._sweep_lock = asyncio.Lock()

    # ── Scheduling ──────────────────────────────────────────
    def schedule_for_appointment(self, appointment_id: int, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
        """
        Create pending reminders for an accepted appointment.

        Reminders whose fire-time has already passed are not back-filled, and
        kinds that already exist are left alone. Returns the rows created.
        """
        appointment = self._store.get_appointment(appointment_id)
        if not appointment:
            logger.warning(f"Cannot schedule reminders: appointment {appointment_id} not found")
            return []
        if appointment.get("status") != AppointmentStatus.ACCEPTED:
            logger.info(
                f"Not scheduling reminders for appointment {appointment_id} (status: {appointment.get('status')})"
            )
            return []

        try:
            appointment_at = parse_appointment_datetime(
                appointment.get("appt_date"),
                appointment.get("appt_time"),
                self._settings.APPOINTMENT_TIMEZONE,
            )
        except InvalidAppointmentTime as e:
            logger.error(f"Cannot schedule reminders for appointment {appointment_id}: {e}")
            return []

        now = now or datetime.now(timezone.utc)
        created = []
        for config in self._configs:
            if not config.enabled:
                continue
            kind = config.kind.value
            scheduled_for = appointment_at - timedelta(hours=config.hours_before)
            if scheduled_for <= now:
                logger.debug(f"Skipping {kind} reminder for appointment {appointment_id}: already past")
                continue
            if self._store.get_reminder(appointment_id, kind):
                continue

            record = self._store.insert_reminder({
                "appointment_id": appointment_id,
                "reminder_type": kind,
                "scheduled_for": scheduled_for.isoformat(),
                "status": ReminderStatus.PENDING.value,
            })
            if record:
                created.append(record)

        if created:
            logger.info(
                f"✅ Scheduled {len(created)} reminder(s) for appointment {appointment_id}: "
                f"{', '.join(r.get('reminder_type', '') for r in created)}"
            )
        return created

    def cancel_reminders_for_appointment(self, appointment_id: int, reason: str = "Appointment cancelled") -> int:
        """Skip every still-pending reminder for the appointment. Sent or failed rows are kept as they are."""
        count = self._store.bulk_skip_pending_reminders(appointment_id, reason)
        logger.info(f"Cancelled {count} pending reminder(s) for appointment {appointment_id}: {reason}")
        return count

    def handle_status_change(self, appointment_id: int, status: AppointmentStatus) -> Dict[str, Any]:
        status = AppointmentStatus(status)
        result = {"appointment_id": appointment_id, "status": status.value, "scheduled": [], "skipped": 0}
        if status == AppointmentStatus.ACCEPTED:
            created = self.schedule_for_appointment(appointment_id)
            result["scheduled"] = [r.get("reminder_type") for r in created]
        elif status in CANCELLING_STATUSES:
            result["skipped"] = self.cancel_reminders_for_appointment(
                appointment_id, f"Appointment {status.value}"
            )
        return result

    # ── Sweep ───────────────────────────────────────────────
    async def sweep(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Deliver every pending reminder due around `now`.

        Only one sweep runs at a time; a call made while another sweep is in
        progress returns immediately with overlap_skipped set.
        """
        if self._sweep_lock.locked():
            logger.info("ℹ️ Reminder sweep already running, skipping this run")
            return SweepSummary(overlap_skipped=True).model_dump()

        async with self._sweep_lock:
            now = now or datetime.now(timezone.utc)
            window_start = now - timedelta(minutes=self._settings.REMINDER_LOOKBACK_MINUTES)
            window_end = now + timedelta(minutes=self._settings.REMINDER_LOOKAHEAD_MINUTES)

            # Store calls block; they run in worker threads, off the event loop
            reminders = await asyncio.to_thread(self._store.query_due_reminders, window_start, window_end)
            summary = SweepSummary(due=len(reminders))
            if not reminders:
                logger.debug("No reminders due")
                return summary.model_dump()

            logger.info(f"📨 Processing {len(reminders)} due reminder(s)")
            semaphore = asyncio.Semaphore(max(1, self._settings.REMINDER_SWEEP_CONCURRENCY))

            async def run(reminder):
                async with semaphore:
                    return await self._process_reminder(reminder, now)

            outcomes = await asyncio.gather(*(run(r) for r in reminders))
            for outcome in outcomes:
                setattr(summary, outcome, getattr(summary, outcome) + 1)

            logger.info(
                f"✅ Reminder sweep done: sent={summary.sent} failed={summary.failed} "
                f"skipped={summary.skipped} already_processed={summary.already_processed} "
                f"write_failed={summary.write_failed}"
            )
            return summary.model_dump()

    async def _process_reminder(self, reminder: Dict[str, Any], now: datetime) -> str:
        """Returns the summary field this reminder counts towards."""
        reminder_id = reminder.get("id")
        try:
            status, fields = await self._deliver(reminder, now)
        except Exception as e:
            capture_exception(e, {"reminder_id": reminder_id, "appointment_id": reminder.get("appointment_id")})
            status, fields = ReminderStatus.FAILED, {"error_message": str(e)}

        try:
            updated = await asyncio.to_thread(self._store.update_reminder_status, reminder_id, status.value, fields)
        except Exception as e:
            # The row is still pending, so the next sweep will pick it up again
            logger.error(f"❌ Could not record reminder {reminder_id} as {status.value}; it stays pending")
            capture_exception(e, {"reminder_id": reminder_id, "status": status.value})
            return "write_failed"

        if not updated:
            logger.info(f"Reminder {reminder_id} was already processed elsewhere")
            return "already_processed"
        return status.value

    async def _deliver(self, reminder: Dict[str, Any], now: datetime):
        appointment = _joined_appointment(reminder)
        if not appointment:
            return ReminderStatus.SKIPPED, {"error_message": "Appointment not found"}
        if appointment.get("status") != AppointmentStatus.ACCEPTED:
            return ReminderStatus.SKIPPED, {"error_message": f"Appointment status: {appointment.get('status')}"}

        data = await asyncio.to_thread(resolve_participants, self._store, appointment)
        data["reminder_type"] = reminder.get("reminder_type")

        await self._notifier.send(NotificationKind.APPOINTMENT_REMINDER, data.get("patient_email"), data)
        return ReminderStatus.SENT, {"sent_at": now.isoformat(), "error_message": None}
