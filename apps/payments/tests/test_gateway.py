import hashlib
import hmac
import re
from decimal import Decimal
from unittest.mock import MagicMock

import pytest
import requests

from apps.payments.exceptions import GatewayUnavailable, PaymentGatewayError
from apps.payments.gateway import (
    GatewayStatus,
    PaystackGateway,
    generate_reference,
    verify_webhook_signature,
)
from shared.domain.value_objects import Money


def response(status_code=200, body=None, json_error=False):
    mock = MagicMock(status_code=status_code)
    if json_error:
        mock.json.side_effect = ValueError("not json")
    else:
        mock.json.return_value = body
    return mock


def gateway_with(resp=None, error=None):
    session = MagicMock()
    if error is not None:
        session.request.side_effect = error
    else:
        session.request.return_value = resp
    return PaystackGateway("sk_test", base_url="https://gateway.test/", timeout=5, session=session), session


def test_initialize_sends_minor_units_and_returns_session():
    gateway, session = gateway_with(response(body={
        "status": True,
        "data": {"authorization_url": "https://checkout.test/abc", "access_code": "abc", "reference": "BOOKING-1"},
    }))

    checkout = gateway.initialize(
        reference="BOOKING-1",
        amount=Money(Decimal("1500.50"), "NGN"),
        email="renter@example.com",
        callback_url="https://app.test/verify",
    )

    method, url = session.request.call_args.args
    payload = session.request.call_args.kwargs["json"]
    assert (method, url) == ("POST", "https://gateway.test/transaction/initialize")
    assert payload["amount"] == 150050
    assert payload["currency"] == "NGN"
    assert session.request.call_args.kwargs["headers"]["Authorization"] == "Bearer sk_test"
    assert checkout.authorization_url == "https://checkout.test/abc"
    assert checkout.reference == "BOOKING-1"


def test_initialize_without_authorization_url_is_a_gateway_error():
    gateway, _ = gateway_with(response(body={"status": True, "data": {"reference": "BOOKING-1"}}))
    with pytest.raises(PaymentGatewayError):
        gateway.initialize(reference="BOOKING-1", amount=Money(Decimal("1"), "NGN"), email="a@b.c", callback_url="")


@pytest.mark.parametrize(
    "gateway_status, expected",
    [
        ("success", GatewayStatus.SUCCESS),
        ("failed", GatewayStatus.FAILED),
        ("reversed", GatewayStatus.FAILED),
        ("abandoned", GatewayStatus.PENDING),
        ("ongoing", GatewayStatus.PENDING),
        ("something-new", GatewayStatus.PENDING),
    ],
)
def test_verify_maps_gateway_status(gateway_status, expected):
    gateway, _ = gateway_with(response(body={
        "status": True,
        "data": {"reference": "R", "status": gateway_status, "amount": 150050, "currency": "NGN"},
    }))
    assert gateway.verify("R").status == expected


def test_verify_parses_amount_and_paid_at():
    gateway, session = gateway_with(response(body={
        "status": True,
        "data": {
            "reference": "R",
            "status": "success",
            "amount": 150050,
            "currency": "ngn",
            "channel": "card",
            "paid_at": "2030-01-01T10:00:00.000Z",
        },
    }))

    verification = gateway.verify("R")

    assert session.request.call_args.args == ("GET", "https://gateway.test/transaction/verify/R")
    assert verification.amount == Money(Decimal("1500.50"), "NGN")
    assert verification.channel == "card"
    assert verification.paid_at is not None and verification.paid_at.tzinfo is not None


def test_unknown_currency_never_matches():
    gateway, _ = gateway_with(response(body={
        "status": True,
        "data": {"reference": "R", "status": "success", "amount": 100, "currency": "XYZ"},
    }))
    assert gateway.verify("R").amount is None


def test_transport_error_is_retriable():
    gateway, _ = gateway_with(error=requests.exceptions.ConnectTimeout("timed out"))
    with pytest.raises(GatewayUnavailable):
        gateway.verify("R")


def test_server_error_is_retriable():
    gateway, _ = gateway_with(response(status_code=502, body={}))
    with pytest.raises(GatewayUnavailable):
        gateway.verify("R")


def test_client_error_is_not_retriable():
    gateway, _ = gateway_with(response(status_code=400, body={"status": False, "message": "Invalid key"}))
    with pytest.raises(PaymentGatewayError):
        gateway.verify("R")


def test_malformed_body_is_a_gateway_error():
    gateway, _ = gateway_with(response(json_error=True))
    with pytest.raises(PaymentGatewayError):
        gateway.verify("R")


def test_generate_reference_format():
    first, second = generate_reference("BOOKING"), generate_reference("BOOKING")
    assert re.fullmatch(r"BOOKING-\d{13}-[0-9A-F]{8}", first)
    assert first != second


def test_webhook_signature():
    body = b'{"event":"charge.success"}'
    signature = hmac.new(b"secret", body, hashlib.sha512).hexdigest()
    assert verify_webhook_signature(body, signature, "secret")
    assert not verify_webhook_signature(body, signature, "other-secret")
    assert not verify_webhook_signature(body + b" ", signature, "secret")
    assert not verify_webhook_signature(body, "", "secret")
