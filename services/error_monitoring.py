"""
Error Monitoring and Logging
Centralized error capture for background jobs and the global exception handler
"""
import logging
from typing import Optional
from fastapi import Request

logger = logging.getLogger(__name__)

SENSITIVE_HEADERS = ("authorization", "cookie", "x-api-key", "x-razorpay-signature")


def _format_context(context: dict) -> str:
    return ", ".join([f"{k}={v}" for k, v in context.items()])


def capture_exception(error: Exception, context: Optional[dict] = None):
    """Capture exception and log it with its traceback"""
    error_msg = f"Unhandled exception: {error}"
    if context:
        error_msg += f" | Context: {_format_context(context)}"
    logger.error(error_msg, exc_info=error)


def log_error_with_context(error: Exception, request: Optional[Request] = None, user_id: Optional[str] = None):
    """Log error with request context"""
    context = {}

    if request:
        context["request"] = {
            "method": request.method,
            "path": request.url.path,
            "client": request.client.host if request.client else None,
        }
        headers = dict(request.headers)
        for header in SENSITIVE_HEADERS:
            headers.pop(header, None)
        context["headers"] = headers

    if user_id:
        context["user_id"] = user_id

    capture_exception(error, context)
