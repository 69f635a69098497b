"""
Error taxonomy for the payment and reminder core.

Every error a caller can see is an HTTPException subclass tagged with a
category, so the API can tell "fix your input" (validation, trust_boundary)
apart from "retry later" (transport).
"""
from typing import Optional

from fastapi import HTTPException, status


class AppError(HTTPException):
    """Base class for errors raised by the orchestration services."""

    category = "validation"
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, detail: str):
        super().__init__(status_code=self.status_code, detail=detail)


# ── (a) domain validation ───────────────────────────────
class ValidationFailedError(AppError):
    pass


class NotFoundError(AppError):
    status_code = status.HTTP_404_NOT_FOUND


# ── (b) trust boundary ──────────────────────────────────
class SignatureMismatchError(AppError):
    category = "trust_boundary"


class PaymentNotSuccessfulError(AppError):
    category = "trust_boundary"


class PaymentMismatchError(AppError):
    category = "trust_boundary"


# ── (c) transport / infrastructure ─────────────────────
class GatewayRejectedError(AppError):
    """The gateway answered but refused the request."""

    category = "transport"
    status_code = status.HTTP_502_BAD_GATEWAY

    def __init__(self, detail: str, gateway_reason: Optional[str] = None):
        super().__init__(detail)
        self.gateway_reason = gateway_reason


class GatewayUnavailableError(AppError):
    """Timeout or connection failure talking to the gateway."""

    category = "transport"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE


class StoreUnavailableError(AppError):
    category = "transport"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE


# ── (d) best-effort side effects ───────────────────────
class NotificationDeliveryError(Exception):
    """Raised by the notification dispatcher when a message cannot be delivered."""
