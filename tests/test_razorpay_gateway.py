from unittest.mock import MagicMock

import pytest
import requests

from core.exceptions import GatewayRejectedError, GatewayUnavailableError
from services.gateways import build_payment_gateway
from services.gateways.razorpay import RazorpayGateway, compute_hmac_sha256
from fakes import make_settings


def response(status_code, payload):
    resp = MagicMock(status_code=status_code)
    resp.json.return_value = payload
    resp.text = str(payload)
    return resp


@pytest.fixture
def session():
    return MagicMock(spec=requests.Session)


@pytest.fixture
def razorpay(session):
    return RazorpayGateway("rzp_test_key", "secret", webhook_secret="whsec", timeout=5, session=session)


def test_create_order(razorpay, session):
    session.request.return_value = response(200, {"id": "order_9", "amount": 50000, "currency": "INR",
                                                  "receipt": "appt_1_1"})

    order = razorpay.create_order(50000, "INR", "appt_1_1", {"appointment_id": "1"})

    assert order == {"id": "order_9", "amount": 50000, "currency": "INR", "receipt": "appt_1_1"}
    method, url = session.request.call_args.args
    assert (method, url) == ("POST", "https://api.razorpay.com/v1/orders")
    assert session.request.call_args.kwargs["timeout"] == 5
    assert session.request.call_args.kwargs["json"]["notes"] == {"appointment_id": "1"}


def test_timeout_is_transport_failure(razorpay, session):
    session.request.side_effect = requests.Timeout("read timed out")

    with pytest.raises(GatewayUnavailableError) as exc:
        razorpay.fetch_payment("pay_1")

    assert exc.value.status_code == 503
    assert exc.value.category == "transport"


def test_connection_error_is_transport_failure(razorpay, session):
    session.request.side_effect = requests.ConnectionError("refused")

    with pytest.raises(GatewayUnavailableError):
        razorpay.create_refund("pay_1", 100)


def test_rejection_keeps_gateway_reason(razorpay, session):
    session.request.return_value = response(400, {"error": {"code": "BAD_REQUEST_ERROR",
                                                            "description": "The refund amount is invalid"}})

    with pytest.raises(GatewayRejectedError) as exc:
        razorpay.create_refund("pay_1", 999999)

    assert exc.value.gateway_reason == "The refund amount is invalid"
    assert exc.value.status_code == 502


def test_missing_credentials_never_calls_out(session):
    gateway = RazorpayGateway("", "", session=session)

    with pytest.raises(GatewayRejectedError):
        gateway.fetch_payment("pay_1")

    session.request.assert_not_called()


def test_payment_signature(razorpay):
    good = compute_hmac_sha256("secret", b"order_1|pay_1")

    assert razorpay.verify_payment_signature("order_1", "pay_1", good) is True
    assert razorpay.verify_payment_signature("order_1", "pay_2", good) is False
    assert razorpay.verify_payment_signature("order_1", "pay_1", "") is False


def test_webhook_signature(razorpay):
    body = b'{"event":"payment.captured"}'

    assert razorpay.verify_webhook_signature(body, compute_hmac_sha256("whsec", body)) is True
    assert razorpay.verify_webhook_signature(body + b" ", compute_hmac_sha256("whsec", body)) is False


def test_webhook_signature_needs_secret(session):
    gateway = RazorpayGateway("rzp_test_key", "secret", webhook_secret="", session=session)
    body = b"{}"

    assert gateway.verify_webhook_signature(body, compute_hmac_sha256("", body)) is False


def test_factory_builds_razorpay():
    gateway = build_payment_gateway(make_settings(PAYMENT_GATEWAY="Razorpay", RAZORPAY_KEY_ID="rzp_test_key"))

    assert gateway.name == "razorpay"
    assert gateway.key_id == "rzp_test_key"


def test_factory_rejects_unknown_gateway():
    with pytest.raises(ValueError):
        build_payment_gateway(make_settings(PAYMENT_GATEWAY="paypal"))
