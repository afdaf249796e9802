"""
Razorpay integration: order creation and payment signature verification.
"""

import hashlib
import hmac
from typing import Optional

import razorpay
import requests
import structlog
from razorpay import errors as razorpay_errors

from config import Settings
from errors import GatewayError

logger = structlog.get_logger(__name__)

TIMEOUT = 10

GATEWAY_FAILURES = (
    razorpay_errors.BadRequestError,
    razorpay_errors.GatewayError,
    razorpay_errors.ServerError,
    requests.RequestException,
)


def gateway_client(settings: Settings) -> razorpay.Client:
    if not (settings.razorpay_key_id and settings.razorpay_key_secret):
        raise GatewayError("Payment gateway is not configured")
    return razorpay.Client(auth=(settings.razorpay_key_id, settings.razorpay_key_secret))


def create_gateway_order(settings: Settings, amount_paise: int, receipt: str, notes: Optional[dict] = None,
                         currency: str = "INR") -> dict:
    client = gateway_client(settings)
    payload = {"amount": int(amount_paise), "currency": currency, "receipt": receipt, "notes": notes or {}}
    try:
        return client.order.create(data=payload, timeout=TIMEOUT)
    except GATEWAY_FAILURES as e:
        logger.error("gateway_order_failed", receipt=receipt, error=str(e))
        raise GatewayError("Failed to create payment order")


def payment_signature(order_id: str, payment_id: str, secret: str) -> str:
    body = f"{order_id}|{payment_id}".encode()
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def verify_payment_signature(settings: Settings, order_id: str, payment_id: str, signature: str) -> bool:
    if not settings.razorpay_key_secret or not signature:
        return False
    expected = payment_signature(order_id, payment_id, settings.razorpay_key_secret)
    return hmac.compare_digest(expected, signature)
