import logging

from fastapi import APIRouter, Depends

from dependencies.auth import get_current_admin, get_current_staff
from dependencies.services import get_reminder_scheduler
from schemas import (
    AppointmentStatusChange,
    CancelRemindersResponse,
    ScheduledReminderResponse,
    ScheduleRemindersRequest,
    StatusChangeResponse,
    SweepSummary,
)
from services.reminder_service import ReminderScheduler

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/reminders", tags=["reminders"])


@router.post("/schedule", response_model=ScheduledReminderResponse)
def schedule_reminders(
    request_data: ScheduleRemindersRequest,
    current_user: dict = Depends(get_current_staff),
    reminders: ReminderScheduler = Depends(get_reminder_scheduler),
):
    created = reminders.schedule_for_appointment(request_data.appointment_id)
    return {
        "appointment_id": request_data.appointment_id,
        "scheduled": [r.get("reminder_type") for r in created],
    }


@router.post("/status-change", response_model=StatusChangeResponse)
def appointment_status_changed(
    change: AppointmentStatusChange,
    current_user: dict = Depends(get_current_staff),
    reminders: ReminderScheduler = Depends(get_reminder_scheduler),
):
    """Reschedule or cancel reminders after an appointment moves to a new status"""
    return reminders.handle_status_change(change.appointment_id, change.status)


@router.post("/cancel/{appointment_id}", response_model=CancelRemindersResponse)
def cancel_reminders(
    appointment_id: int,
    current_user: dict = Depends(get_current_staff),
    reminders: ReminderScheduler = Depends(get_reminder_scheduler),
):
    skipped = reminders.cancel_reminders_for_appointment(appointment_id)
    return {"appointment_id": appointment_id, "skipped": skipped}


@router.post("/sweep", response_model=SweepSummary)
async def run_sweep(
    current_user: dict = Depends(get_current_admin),
    reminders: ReminderScheduler = Depends(get_reminder_scheduler),
):
    """Run a reminder sweep now (admin only)"""
    logger.info(f"Manual reminder sweep triggered by admin {current_user['id']}")
    return await reminders.sweep()
