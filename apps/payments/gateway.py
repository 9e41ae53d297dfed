"""
Hosted-checkout payment gateway client (Paystack API)

Only the two calls the booking core needs:
- POST /transaction/initialize -> authorization_url, access_code, reference
- GET  /transaction/verify/<reference> -> status, amount, currency, paid_at, channel

Amounts travel in minor units (kobo for NGN). The gateway is treated as
untrusted: every response is parsed defensively and normalised to
GatewayUnavailable (retriable) or PaymentGatewayError (not retriable).
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone as dt_timezone
from enum import Enum
from typing import Any, Dict, Optional

import requests
from django.conf import settings  # type: ignore
from django.utils import timezone  # type: ignore
from django.utils.dateparse import parse_datetime  # type: ignore

from shared.domain.value_objects import Money

from .exceptions import GatewayUnavailable, PaymentGatewayError

logger = logging.getLogger(__name__)


class GatewayStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    PENDING = "pending"


# Everything else the gateway may answer (abandoned, ongoing, processing,
# queued, unknown values) is ambiguous and maps to PENDING.
_STATUS_MAP = {
    "success": GatewayStatus.SUCCESS,
    "failed": GatewayStatus.FAILED,
    "reversed": GatewayStatus.FAILED,
}


@dataclass(frozen=True)
class CheckoutSession:
    reference: str
    authorization_url: str
    access_code: str = ""


@dataclass(frozen=True)
class GatewayVerification:
    reference: str
    status: GatewayStatus
    amount: Optional[Money] = None
    channel: str = ""
    paid_at: Optional[datetime] = None
    gateway_response: str = ""
    raw: Dict[str, Any] = field(default_factory=dict, compare=False)


def generate_reference(prefix: str = "BKG") -> str:
    """<PREFIX>-<epoch millis>-<random>, unique per payment attempt"""
    return f"{prefix}-{int(time.time() * 1000)}-{secrets.token_hex(4).upper()}"


def verify_webhook_signature(payload: bytes, signature: str, secret: str) -> bool:
    """HMAC-SHA512 of the raw request body keyed with the secret key."""
    if not signature or not secret:
        return False
    expected = hmac.new(secret.encode(), payload, hashlib.sha512).hexdigest()
    return hmac.compare_digest(expected, signature)


class PaystackGateway:
    """Thin requests-based client; one instance per process is fine."""

    def __init__(self, secret_key: str, base_url: str = "https://api.paystack.co", timeout: float = 15,
                 session: Optional[requests.Session] = None):
        self.secret_key = secret_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.secret_key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            response = self.session.request(method, url, headers=self._headers(), timeout=self.timeout, **kwargs)
        except requests.exceptions.RequestException as exc:
            logger.error("Gateway transport error on %s %s: %s", method, path, exc)
            raise GatewayUnavailable(reason=exc.__class__.__name__)

        if response.status_code >= 500:
            logger.error("Gateway %s on %s %s", response.status_code, method, path)
            raise GatewayUnavailable(status=response.status_code)

        try:
            body = response.json()
        except ValueError:
            logger.error("Gateway returned a non-JSON body on %s %s", method, path)
            raise PaymentGatewayError("Malformed gateway response")

        if response.status_code >= 400 or not body.get("status"):
            message = body.get("message") or "Gateway rejected the request"
            logger.error("Gateway rejected %s %s: %s", method, path, message)
            raise PaymentGatewayError(message, status=response.status_code)

        data = body.get("data")
        if not isinstance(data, dict):
            raise PaymentGatewayError("Malformed gateway response")
        return data

    def initialize(self, *, reference: str, amount: Money, email: str, callback_url: str,
                   metadata: Optional[Dict[str, Any]] = None) -> CheckoutSession:
        payload = {
            "email": email,
            "amount": amount.to_minor_units(),
            "currency": amount.currency,
            "reference": reference,
            "callback_url": callback_url,
            "metadata": metadata or {},
        }
        logger.info("Initializing checkout %s for %s", reference, amount)
        data = self._request("POST", "/transaction/initialize", json=payload)

        authorization_url = data.get("authorization_url")
        if not authorization_url:
            raise PaymentGatewayError("Gateway did not return an authorization URL")
        return CheckoutSession(
            reference=data.get("reference") or reference,
            authorization_url=authorization_url,
            access_code=data.get("access_code", ""),
        )

    def verify(self, reference: str) -> GatewayVerification:
        data = self._request("GET", f"/transaction/verify/{reference}")
        return self.parse_verification(reference, data)

    @staticmethod
    def parse_verification(reference: str, data: Dict[str, Any]) -> GatewayVerification:
        status = _STATUS_MAP.get(str(data.get("status", "")).lower(), GatewayStatus.PENDING)

        amount = None
        if data.get("amount") is not None and data.get("currency"):
            try:
                amount = Money.from_minor_units(int(data["amount"]), str(data["currency"]).upper())
            except (TypeError, ValueError):
                # Unknown currency or garbage amount can never match
                amount = None

        paid_at = parse_datetime(str(data["paid_at"])) if data.get("paid_at") else None
        if paid_at is not None and timezone.is_naive(paid_at):
            paid_at = timezone.make_aware(paid_at, dt_timezone.utc)
        return GatewayVerification(
            reference=data.get("reference") or reference,
            status=status,
            amount=amount,
            channel=data.get("channel") or "",
            paid_at=paid_at,
            gateway_response=data.get("gateway_response") or "",
            raw=data,
        )


def get_gateway() -> PaystackGateway:
    return PaystackGateway(
        secret_key=settings.PAYMENT_GATEWAY_SECRET_KEY,
        base_url=settings.PAYMENT_GATEWAY_BASE_URL,
        timeout=settings.PAYMENT_GATEWAY_TIMEOUT,
    )
