from pydantic import BaseModel, Field, field_validator
from typing import List, Optional
from models import AppointmentStatus


# Payment Schemas
class CreateOrderRequest(BaseModel):
    appointment_id: int
    amount: Optional[int] = Field(None, description="Amount in minor units (paise)")
    currency: Optional[str] = None

    @field_validator('amount', mode='before')
    @classmethod
    def convert_amount_to_int(cls, v):
        """Accept "50000" or 50000.0 from mobile clients"""
        if v is None or v == "":
            return None
        try:
            return int(float(v))
        except (ValueError, TypeError):
            raise ValueError(f"Invalid amount: {v}. Must be a number.")

    @field_validator('currency')
    @classmethod
    def upper_currency(cls, v):
        return v.upper() if v else v

class OrderResponse(BaseModel):
    order_id: str
    amount: int
    currency: str
    receipt: str

class VerifyPaymentRequest(BaseModel):
    appointment_id: int
    razorpay_payment_id: str
    razorpay_order_id: str
    razorpay_signature: str

class VerifyPaymentResponse(BaseModel):
    success: bool
    payment_id: str

class CreateRefundRequest(BaseModel):
    appointment_id: int
    amount: Optional[int] = Field(None, gt=0, description="Explicit refund in minor units; policy-computed when omitted")
    reason: Optional[str] = None

class RefundResponse(BaseModel):
    success: bool
    refund_id: str
    refund_amount: int

class WebhookResponse(BaseModel):
    received: bool
    ignored: bool = False
    event: Optional[str] = None


# Reminder Schemas
class ScheduleRemindersRequest(BaseModel):
    appointment_id: int

class AppointmentStatusChange(BaseModel):
    appointment_id: int
    status: AppointmentStatus

class ScheduledReminderResponse(BaseModel):
    appointment_id: int
    scheduled: List[str]

class CancelRemindersResponse(BaseModel):
    appointment_id: int
    skipped: int

class SweepSummary(BaseModel):
    due: int = 0
    sent: int = 0
    failed: int = 0
    skipped: int = 0
    already_processed: int = 0
    write_failed: int = 0
    overlap_skipped: bool = False

class StatusChangeResponse(BaseModel):
    appointment_id: int
    status: AppointmentStatus
    scheduled: List[str] = []
    skipped: int = 0
