"""
Payment Gateway Factory
Reads PAYMENT_GATEWAY from settings and returns the appropriate implementation.
"""

import logging
from core.config import Settings
from .base import PaymentGatewayBase

logger = logging.getLogger(__name__)


def build_payment_gateway(settings: Settings) -> PaymentGatewayBase:
    """
    Returns the configured payment gateway.

    Controlled by PAYMENT_GATEWAY env var:
      - "razorpay" (default, the only supported gateway)
    """
    gw_name = settings.PAYMENT_GATEWAY.lower().strip()

    if gw_name != "razorpay":
        raise ValueError(f"Unsupported payment gateway: {settings.PAYMENT_GATEWAY}")

    from .razorpay import RazorpayGateway
    gw = RazorpayGateway(
        key_id=settings.RAZORPAY_KEY_ID,
        key_secret=settings.RAZORPAY_KEY_SECRET,
        webhook_secret=settings.RAZORPAY_WEBHOOK_SECRET,
        timeout=settings.GATEWAY_TIMEOUT_SECONDS,
    )

    logger.info(f"🔌 Payment gateway initialized: {gw.name}")
    return gw
