"""
Message Templates for Email Notifications
Each builder returns (subject, plain text body, html body).
"""
from typing import Any, Dict, Optional, Tuple
from datetime import datetime

from models import NotificationKind

CURRENCY_SYMBOLS = {"INR": "₹", "USD": "$", "EUR": "€", "GBP": "£"}

REMINDER_LEAD_TIMES = {
    "24h_before": "tomorrow",
    "2h_before": "in 2 hours",
    "1h_before": "in 1 hour",
}


def format_date(date_obj) -> str:
    """Format date object to readable string."""
    if isinstance(date_obj, str):
        try:
            date_obj = datetime.strptime(date_obj, "%Y-%m-%d")
        except ValueError:
            return date_obj
    try:
        return date_obj.strftime("%A, %d %B %Y")
    except AttributeError:
        return str(date_obj)


def format_time(time_slot: str) -> str:
    """Format time slot to readable format."""
    try:
        # Convert "10:30" to "10:30 AM" or "14:30" to "2:30 PM"
        hour, minute = map(int, str(time_slot).split(":")[:2])
        if hour < 12:
            period = "AM"
            if hour == 0:
                hour = 12
        else:
            period = "PM"
            if hour > 12:
                hour -= 12

        return f"{hour}:{minute:02d} {period}"
    except ValueError:
        return str(time_slot)


def format_amount(amount: Optional[int], currency: Optional[str]) -> str:
    """Minor units to a display string, e.g. 50000 INR -> ₹500.00"""
    currency = (currency or "INR").upper()
    symbol = CURRENCY_SYMBOLS.get(currency, f"{currency} ")
    return f"{symbol}{(amount or 0) / 100:.2f}"


def appointment_type_label(appt_type: Optional[str]) -> str:
    return "Video Consultation" if appt_type == "video" else "In-Clinic Visit"


def _html_page(title: str, colour: str, greeting: str, intro: str, rows: Dict[str, str], footer: str, link: str) -> str:
    row_html = "".join(
        f'<tr><td style="padding: 10px 0;"><strong style="color: #666666;">{label}:</strong>'
        f'<span style="color: #333333; margin-left: 10px;">{value}</span></td></tr>'
        for label, value in rows.items()
    )
    return f"""
<!DOCTYPE html>
<html>
<head>
    <meta charset="utf-8">
    <title>{title}</title>
</head>
<body style="margin: 0; padding: 0; font-family: Arial, sans-serif; background-color: #f5f5f5;">
    <table width="600" cellpadding="0" cellspacing="0" style="background-color: #ffffff; margin: 20px auto;">
        <tr><td style="background-color: {colour}; padding: 30px; text-align: center;">
            <h1 style="color: #ffffff; margin: 0; font-size: 24px;">{title}</h1>
        </td></tr>
        <tr><td style="padding: 40px 30px;">
            <p style="color: #333333; font-size: 16px;">{greeting}</p>
            <p style="color: #333333; font-size: 16px;">{intro}</p>
            <table width="100%" style="background-color: #f8f9fa; padding: 20px;">{row_html}</table>
            <p style="color: #666666; font-size: 14px;">{footer}</p>
            <p style="text-align: center;"><a href="{link}" style="background-color: {colour}; color: #ffffff; padding: 12px 30px; text-decoration: none;">View Appointment</a></p>
        </td></tr>
    </table>
</body>
</html>
"""


def _text_body(greeting: str, intro: str, rows: Dict[str, str], footer: str) -> str:
    lines = "\n".join(f"{label}: {value}" for label, value in rows.items())
    return f"{greeting}\n\n{intro}\n\n{lines}\n\n{footer}\n"


def get_payment_confirmed_message(data: Dict[str, Any], frontend_url: str) -> Tuple[str, str, str]:
    """Patient copy of the payment confirmation."""
    rows = {
        "Doctor": data.get("doctor_name", "Doctor"),
        "Date": format_date(data.get("appointment_date")),
        "Time": format_time(data.get("appointment_time")),
        "Type": appointment_type_label(data.get("appointment_type")),
        "Amount": format_amount(data.get("amount"), data.get("currency")),
        "Payment ID": data.get("payment_id", ""),
    }
    greeting = f"Hello {data.get('patient_name', 'Patient')},"
    intro = "Your payment has been received and your appointment is confirmed."
    footer = "Keep this email as your receipt."
    subject = f"Payment Confirmed - Appointment with {rows['Doctor']}"
    link = f"{frontend_url}/appointments/{data.get('appointment_id', '')}"
    return (
        subject,
        _text_body(greeting, intro, rows, footer),
        _html_page("Payment Confirmed", "#16a34a", greeting, intro, rows, footer, link),
    )


def get_payment_received_doctor_message(data: Dict[str, Any], frontend_url: str) -> Tuple[str, str, str]:
    """Doctor copy of the payment confirmation."""
    rows = {
        "Patient": data.get("patient_name", "Patient"),
        "Date": format_date(data.get("appointment_date")),
        "Time": format_time(data.get("appointment_time")),
        "Amount": format_amount(data.get("amount"), data.get("currency")),
    }
    greeting = f"Hello {data.get('doctor_name', 'Doctor')},"
    intro = f"{rows['Patient']} has paid for their appointment with you."
    subject = f"Payment Received - Appointment with {rows['Patient']}"
    return (
        subject,
        _text_body(greeting, intro, rows, ""),
        _html_page("Payment Received", "#2563eb", greeting, intro, rows, "", f"{frontend_url}/doctor/bookings"),
    )


def get_reminder_message(data: Dict[str, Any], frontend_url: str) -> Tuple[str, str, str]:
    """Appointment reminder sent to the patient."""
    lead_time = REMINDER_LEAD_TIMES.get(data.get("reminder_type", ""), "soon")
    doctor_name = data.get("doctor_name", "Doctor")
    rows = {
        "Doctor": doctor_name,
        "Date": format_date(data.get("appointment_date")),
        "Time": format_time(data.get("appointment_time")),
        "Type": appointment_type_label(data.get("appointment_type")),
    }
    greeting = f"Hello {data.get('patient_name', 'Patient')},"
    intro = f"This is a friendly reminder that your appointment is {lead_time}."
    if data.get("appointment_type") == "video":
        footer = "Please check your internet connection, camera and microphone before the call."
    else:
        footer = "Please arrive 10 minutes early."
    subject = f"Appointment Reminder - {doctor_name} {lead_time}"
    link = f"{frontend_url}/appointments/{data.get('appointment_id', '')}"
    return (
        subject,
        _text_body(greeting, intro, rows, footer),
        _html_page("Appointment Reminder", "#f59e0b", greeting, intro, rows, footer, link),
    )


TEMPLATE_BUILDERS = {
    NotificationKind.PAYMENT_CONFIRMED: get_payment_confirmed_message,
    NotificationKind.PAYMENT_RECEIVED_DOCTOR: get_payment_received_doctor_message,
    NotificationKind.APPOINTMENT_REMINDER: get_reminder_message,
}


def build_message(kind: NotificationKind, data: Dict[str, Any], frontend_url: str) -> Tuple[str, str, str]:
    try:
        builder = TEMPLATE_BUILDERS[NotificationKind(kind)]
    except (KeyError, ValueError):
        raise ValueError(f"No template for notification kind: {kind}")
    return builder(data, frontend_url)
