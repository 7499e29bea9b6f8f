"""PayHere checkout hash and notification signature."""
from __future__ import annotations

import hashlib
import hmac
from decimal import ROUND_HALF_UP, Decimal
from typing import Mapping

from lms.config import settings
from lms.models.payment import PaymentStatus

CHECKOUT_URL = "https://www.payhere.lk/pay/checkout"
SANDBOX_CHECKOUT_URL = "https://sandbox.payhere.lk/pay/checkout"

REQUIRED_NOTIFY_FIELDS = (
    "merchant_id",
    "order_id",
    "payhere_amount",
    "payhere_currency",
    "status_code",
    "md5sig",
)


def _md5_upper(value: str) -> str:
    return hashlib.md5(value.encode("utf-8")).hexdigest().upper()


def format_amount(amount: float | str) -> str:
    """Two decimals, no thousands separator (``1500`` -> ``1500.00``)."""
    return str(Decimal(str(amount)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def checkout_hash(
    order_id: str,
    amount: float | str,
    currency: str | None = None,
    merchant_id: str | None = None,
    secret: str | None = None,
) -> str:
    merchant_id = merchant_id if merchant_id is not None else settings.payhere_merchant_id
    secret = secret if secret is not None else settings.payhere_merchant_secret
    currency = currency or settings.payhere_currency
    return _md5_upper(merchant_id + order_id + format_amount(amount) + currency + _md5_upper(secret))


def notification_signature(fields: Mapping[str, str], secret: str | None = None) -> str:
    secret = secret if secret is not None else settings.payhere_merchant_secret
    return _md5_upper(
        fields["merchant_id"]
        + fields["order_id"]
        + fields["payhere_amount"]
        + fields["payhere_currency"]
        + fields["status_code"]
        + _md5_upper(secret)
    )


def verify_notification(fields: Mapping[str, str], secret: str | None = None) -> bool:
    expected = notification_signature(fields, secret)
    return hmac.compare_digest(expected, (fields.get("md5sig") or "").upper())


def missing_notify_fields(fields: Mapping[str, str]) -> list[str]:
    return [name for name in REQUIRED_NOTIFY_FIELDS if not fields.get(name)]


def status_from_code(code: int) -> PaymentStatus:
    """PayHere status codes: 2 success, 0 pending, anything else failed."""
    if code == 2:
        return PaymentStatus.COMPLETED
    if code == 0:
        return PaymentStatus.PENDING
    return PaymentStatus.FAILED


def checkout_url() -> str:
    return SANDBOX_CHECKOUT_URL if settings.payhere_sandbox else CHECKOUT_URL
