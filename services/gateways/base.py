"""
Payment Gateway Abstraction Layer
Defines the contract the payment orchestrator relies on.
All amounts are integers in the currency's minor unit (paise for INR).
"""

from abc import ABC, abstractmethod
from typing import Optional, Dict, Any


class PaymentGatewayBase(ABC):
    """Abstract base class for payment gateways.

    Implementations raise GatewayRejectedError when the gateway refuses a
    request and GatewayUnavailableError on timeouts or connection failures;
    they never return None for a failed call.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Return the gateway name, e.g. 'razorpay'"""
        ...

    @abstractmethod
    def create_order(
        self,
        amount: int,
        currency: str,
        receipt: str,
        notes: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Create a remote order.

        Returns a dict with AT LEAST:
          - id: str            (gateway order id)
          - amount: int        (minor units)
          - currency: str
          - receipt: str
        """
        ...

    @abstractmethod
    def fetch_payment(self, payment_id: str) -> Dict[str, Any]:
        """
        Fetch the authoritative payment by its gateway id.

        Returns a dict with AT LEAST: id, status, amount, currency, method, order_id.
        """
        ...

    @abstractmethod
    def create_refund(
        self, payment_id: str, amount: int, notes: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """Issue a refund (full or partial). Returns a dict with AT LEAST `id`."""
        ...

    @abstractmethod
    def verify_payment_signature(self, order_id: str, payment_id: str, signature: str) -> bool:
        """Check the checkout signature the client received from the gateway."""
        ...

    @abstractmethod
    def verify_webhook_signature(self, raw_body: bytes, signature: str) -> bool:
        """Verify an incoming webhook signature over the raw request body."""
        ...
