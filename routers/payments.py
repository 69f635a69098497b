import logging
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Header, Request
from fastapi.concurrency import run_in_threadpool

from dependencies.auth import get_current_staff, get_current_user
from dependencies.services import get_payment_orchestrator
from core.limiter import rate_limit
from schemas import (
    CreateOrderRequest,
    CreateRefundRequest,
    OrderResponse,
    RefundResponse,
    VerifyPaymentRequest,
    VerifyPaymentResponse,
    WebhookResponse,
)
from services.payment_service import PaymentOrchestrator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/payments", tags=["payments"])


@router.post(
    "/create-order",
    response_model=OrderResponse,
    dependencies=[Depends(rate_limit(times=10, seconds=60))],
)
def create_order(
    order_data: CreateOrderRequest,
    current_user: dict = Depends(get_current_user),
    payments: PaymentOrchestrator = Depends(get_payment_orchestrator),
):
    """Create a gateway order for an appointment's consultation fee"""
    logger.info(f"User {current_user['id']} creating order for appointment {order_data.appointment_id}")
    return payments.create_order(order_data.appointment_id, order_data.amount, order_data.currency)


@router.post(
    "/verify",
    response_model=VerifyPaymentResponse,
    dependencies=[Depends(rate_limit(times=10, seconds=60))],
)
def verify_payment(
    verify_data: VerifyPaymentRequest,
    background_tasks: BackgroundTasks,
    current_user: dict = Depends(get_current_user),
    payments: PaymentOrchestrator = Depends(get_payment_orchestrator),
):
    """Verify the checkout signature and mark the appointment paid"""
    return payments.verify_payment(
        verify_data.appointment_id,
        verify_data.razorpay_payment_id,
        verify_data.razorpay_order_id,
        verify_data.razorpay_signature,
        background_tasks=background_tasks,
    )


@router.post("/refund", response_model=RefundResponse)
def create_refund(
    refund_data: CreateRefundRequest,
    current_user: dict = Depends(get_current_staff),
    payments: PaymentOrchestrator = Depends(get_payment_orchestrator),
):
    """Refund an appointment payment (doctor or admin only)"""
    logger.info(f"{current_user['role']} {current_user['id']} requested refund for appointment {refund_data.appointment_id}")
    return payments.create_refund(refund_data.appointment_id, refund_data.amount, refund_data.reason)


@router.post("/webhook", response_model=WebhookResponse)
async def payment_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    x_razorpay_signature: Optional[str] = Header(None),
    payments: PaymentOrchestrator = Depends(get_payment_orchestrator),
):
    """Gateway webhook; the signature covers the raw request body, so it is read before any parsing"""
    raw_body = await request.body()
    # Gateway and store calls block, so the handler runs in the threadpool
    return await run_in_threadpool(
        payments.handle_webhook, raw_body, x_razorpay_signature, background_tasks=background_tasks
    )
