"""
Model enums for type hints and validation
Note: Since we're using Supabase, these are just enums for schemas and services.
The actual database schema is managed by Supabase (see migrations/).
"""
import enum

class UserRole(str, enum.Enum):
    PATIENT = "patient"
    DOCTOR = "doctor"
    ADMIN = "admin"

class AppointmentStatus(str, enum.Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    CANCELLED = "cancelled"
    COMPLETED = "completed"

class AppointmentType(str, enum.Enum):
    VIDEO = "video"
    IN_CLINIC = "in_clinic"

class PaymentStatus(str, enum.Enum):
    """Payment state held on the appointment row."""
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"
    PARTIAL_REFUND = "partial_refund"

REFUNDED_STATUSES = (PaymentStatus.REFUNDED, PaymentStatus.PARTIAL_REFUND)

class PaymentRecordStatus(str, enum.Enum):
    """Status of a row in the payments ledger."""
    CAPTURED = "captured"
    AUTHORIZED = "authorized"
    REFUNDED = "refunded"

# Gateway payment statuses that count as money received
SUCCESSFUL_GATEWAY_STATUSES = ("captured", "authorized")

class ReminderStatus(str, enum.Enum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"
    SKIPPED = "skipped"

class ReminderKind(str, enum.Enum):
    HOURS_24_BEFORE = "24h_before"
    HOURS_2_BEFORE = "2h_before"
    HOUR_1_BEFORE = "1h_before"

class NotificationKind(str, enum.Enum):
    PAYMENT_CONFIRMED = "payment_confirmed"
    PAYMENT_RECEIVED_DOCTOR = "payment_received_doctor"
    APPOINTMENT_REMINDER = "appointment_reminder"
