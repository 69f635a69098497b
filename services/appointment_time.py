"""
Appointment date/time helpers.
Appointments store a local date ("2030-01-01") and a slot ("14:30") without
an offset; the zone comes from settings.
"""
from datetime import date, datetime, time, timezone
from typing import Optional, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

TIME_FORMATS = ("%H:%M", "%H:%M:%S", "%I:%M %p", "%I:%M%p")


class InvalidAppointmentTime(ValueError):
    """The appointment's date or time slot could not be parsed."""


def _parse_date(appt_date: Union[str, date]) -> date:
    if isinstance(appt_date, datetime):
        return appt_date.date()
    if isinstance(appt_date, date):
        return appt_date
    try:
        return datetime.strptime(str(appt_date).strip(), "%Y-%m-%d").date()
    except ValueError as e:
        raise InvalidAppointmentTime(f"Invalid appointment date: {appt_date!r}") from e


def _parse_time(appt_time: Union[str, time]) -> time:
    if isinstance(appt_time, time):
        return appt_time
    raw = str(appt_time or "").strip().upper()
    for fmt in TIME_FORMATS:
        try:
            return datetime.strptime(raw, fmt).time()
        except ValueError:
            continue
    raise InvalidAppointmentTime(f"Invalid appointment time: {appt_time!r}")


def parse_appointment_datetime(
    appt_date: Union[str, date, None],
    appt_time: Union[str, time, None],
    tz_name: str,
) -> datetime:
    """Combine date + slot into a timezone-aware instant, normalised to UTC."""
    if not appt_date or not appt_time:
        raise InvalidAppointmentTime("Appointment date and time are required")
    try:
        tz = ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise InvalidAppointmentTime(f"Unknown appointment timezone: {tz_name}") from e
    local = datetime.combine(_parse_date(appt_date), _parse_time(appt_time)).replace(tzinfo=tz)
    return local.astimezone(timezone.utc)


def hours_until(instant: datetime, now: Optional[datetime] = None) -> float:
    now = now or datetime.now(timezone.utc)
    return (instant - now).total_seconds() / 3600
