"""
Razorpay Payment Gateway Implementation
"""

import hmac
import hashlib
import logging
from typing import Optional, Dict, Any
import requests
from core.exceptions import GatewayRejectedError, GatewayUnavailableError
from .base import PaymentGatewayBase

logger = logging.getLogger(__name__)

RAZORPAY_BASE_URL = "https://api.razorpay.com/v1"


def compute_hmac_sha256(secret: str, payload: bytes) -> str:
    """Hex HMAC-SHA256, the format Razorpay uses for both signatures."""
    return hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()


def _error_reason(resp: requests.Response) -> str:
    """Pull Razorpay's own rejection reason out of an error response."""
    try:
        error = resp.json().get("error") or {}
    except ValueError:
        return resp.text or f"HTTP {resp.status_code}"
    return error.get("description") or error.get("reason") or error.get("code") or f"HTTP {resp.status_code}"


class RazorpayGateway(PaymentGatewayBase):
    """Razorpay implementation of the payment gateway."""

    def __init__(
        self,
        key_id: str,
        key_secret: str,
        webhook_secret: str = "",
        timeout: float = 15.0,
        session: Optional[requests.Session] = None,
    ):
        self._key_id = key_id
        self._key_secret = key_secret
        self._webhook_secret = webhook_secret
        self._timeout = timeout
        self._session = session or requests.Session()
        if self._key_id and self._key_secret:
            logger.info("✅ Razorpay gateway credentials loaded")
        else:
            logger.warning("⚠️ Razorpay credentials missing")

    @property
    def name(self) -> str:
        return "razorpay"

    @property
    def key_id(self) -> str:
        return self._key_id

    # ── helpers ──────────────────────────────────────────────
    @property
    def _auth(self):
        return (self._key_id, self._key_secret)

    def _request(self, method: str, path: str, action: str, json: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        if not self._key_id or not self._key_secret:
            raise GatewayRejectedError(
                f"Failed to {action}: Razorpay credentials not configured",
                gateway_reason="credentials not configured",
            )
        try:
            resp = self._session.request(
                method,
                f"{RAZORPAY_BASE_URL}{path}",
                auth=self._auth,
                json=json,
                timeout=self._timeout,
            )
        except requests.Timeout as e:
            logger.error(f"Razorpay {action} timed out after {self._timeout}s: {e}")
            raise GatewayUnavailableError(f"Failed to {action}: payment gateway timed out") from e
        except requests.RequestException as e:
            logger.error(f"Razorpay {action} transport error: {e}")
            raise GatewayUnavailableError(f"Failed to {action}: payment gateway unreachable") from e

        if resp.status_code not in (200, 201):
            reason = _error_reason(resp)
            logger.error(f"Razorpay {action} failed ({resp.status_code}): {reason}")
            raise GatewayRejectedError(f"Failed to {action}: {reason}", gateway_reason=reason)

        return resp.json()

    # ── create_order ────────────────────────────────────────
    def create_order(
        self,
        amount: int,
        currency: str,
        receipt: str,
        notes: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        payload = {
            "amount": amount,
            "currency": currency,
            "receipt": receipt,
            "payment_capture": 1,
            "notes": notes or {},
        }
        order = self._request("POST", "/orders", "create order", json=payload)
        return {
            "id": order["id"],
            "amount": order.get("amount", amount),
            "currency": order.get("currency", currency),
            "receipt": order.get("receipt", receipt),
        }

    # ── fetch_payment ───────────────────────────────────────
    def fetch_payment(self, payment_id: str) -> Dict[str, Any]:
        return self._request("GET", f"/payments/{payment_id}", "fetch payment")

    # ── create_refund ───────────────────────────────────────
    def create_refund(
        self, payment_id: str, amount: int, notes: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"amount": amount, "notes": notes or {}}
        return self._request("POST", f"/payments/{payment_id}/refund", "process refund", json=payload)

    # ── signatures ──────────────────────────────────────────
    def verify_payment_signature(self, order_id: str, payment_id: str, signature: str) -> bool:
        if not self._key_secret:
            logger.warning("Razorpay key secret not configured for signature verification")
            return False
        if not signature:
            return False
        expected = compute_hmac_sha256(self._key_secret, f"{order_id}|{payment_id}".encode("utf-8"))
        return hmac.compare_digest(expected, signature)

    def verify_webhook_signature(self, raw_body: bytes, signature: str) -> bool:
        if not self._webhook_secret:
            logger.warning("Razorpay webhook secret not configured")
            return False
        if not signature:
            return False
        expected = compute_hmac_sha256(self._webhook_secret, raw_body)
        return hmac.compare_digest(expected, signature)
