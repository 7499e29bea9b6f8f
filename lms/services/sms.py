"""Text.lk SMS client and message templates."""
from __future__ import annotations

import logging
import re
from typing import Iterable

import httpx

from lms.config import settings

logger = logging.getLogger(__name__)

_NON_DIGIT_RE = re.compile(r"\D")


class SmsError(Exception):
    """Raised when Text.lk rejects or cannot receive a message."""


def sanitize_phone(phone: str | None) -> str:
    """Normalise a Sri Lankan number to ``94XXXXXXXXX``."""
    if not phone:
        return ""
    digits = _NON_DIGIT_RE.sub("", phone)
    if digits.startswith("0"):
        digits = digits[1:]
    if not digits.startswith("94"):
        digits = "94" + digits
    return digits


def short_class_name(name: str) -> str:
    return name[:18] + ".." if len(name) > 20 else name


class SmsService:
    """Sends plain-text SMS through the Text.lk HTTP API."""

    def __init__(self, transport: httpx.AsyncBaseTransport | None = None):
        self.driver = settings.sms_driver
        self.api_url = settings.textlk_api_url
        self.api_key = settings.textlk_api_key
        self.sender_id = settings.textlk_sender_id
        self.brand = settings.brand_name
        self._transport = transport

    @property
    def is_configured(self) -> bool:
        return self.driver == "textlk" and bool(self.api_key and self.sender_id)

    async def send(self, phone: str, message: str) -> dict | None:
        """Send one message. Returns ``None`` when SMS is disabled."""
        if not self.is_configured:
            logger.warning("SMS driver %r not configured for Text.lk, skipping message", self.driver)
            return None
        recipient = sanitize_phone(phone)
        if not recipient:
            raise SmsError("Recipient phone number is empty")

        payload = {
            "recipient": recipient,
            "sender_id": self.sender_id,
            "type": "plain",
            "message": message,
        }
        try:
            async with httpx.AsyncClient(timeout=20.0, transport=self._transport) as client:
                response = await client.post(
                    self.api_url,
                    json=payload,
                    headers={
                        "Authorization": f"Bearer {self.api_key}",
                        "Accept": "application/json",
                    },
                )
        except httpx.HTTPError as e:
            raise SmsError(f"Text.lk request failed: {e}") from e

        if response.status_code >= 400:
            raise SmsError(f"Text.lk API error: {response.status_code} - {response.text}")
        try:
            data = response.json()
        except ValueError as e:
            raise SmsError(f"Text.lk returned a non-JSON reply: {response.text[:200]}") from e
        if not isinstance(data, dict):
            raise SmsError(f"Unexpected Text.lk reply: {data!r}")
        if data.get("status") == "error":
            raise SmsError(f"Text.lk rejected message: {data.get('message')}")
        logger.info("SMS sent to %s", recipient)
        return data

    async def send_quietly(self, phone: str | None, message: str) -> bool:
        """Best-effort send: failures are logged, never raised."""
        if not phone:
            return False
        try:
            await self.send(phone, message)
            return True
        except SmsError as e:
            logger.error("SMS to %s failed: %s", phone, e)
            return False

    async def send_many(self, phones: Iterable[str | None], message: str) -> int:
        sent = 0
        for phone in phones:
            if await self.send_quietly(phone, message):
                sent += 1
        return sent

    # ============== Templates ==============

    def verification(self, code: str) -> str:
        return f"{self.brand}: Your verification code is {code}. Do not share this code."

    def welcome(self, name: str) -> str:
        return f"Welcome to {self.brand}, {name}! Your account is active. Log in to view your classes."

    def payment_receipt(self, amount: float, class_name: str, ref: str) -> str:
        return (
            f"{self.brand}: Payment received LKR {amount:,.2f} through Online Payment Gateway "
            f"for {short_class_name(class_name)}. Ref: {ref}. Thank you!"
        )

    def cancellation(self, class_name: str, reason: str) -> str:
        return (
            f"{self.brand}: Session for {class_name} has been cancelled. "
            f"Reason: {reason}. Check portal for details."
        )

    def admin_payment_alert(self, student_name: str, amount: float, class_name: str, ref: str) -> str:
        return (
            f"Admin Alert: {student_name} made a payment of LKR {amount:,.2f} for {class_name}. "
            f"Ref: {ref}. Please review."
        )

    def payment_verified(self, amount: float, class_name: str) -> str:
        return f"{self.brand}: Your payment of LKR {amount:,.2f} for {class_name} has been verified. Thank you!"

    def reschedule(self, class_name: str, new_time: str) -> str:
        return (
            f"{self.brand}: The session for {class_name} has been rescheduled to {new_time}. "
            "Please check your schedule."
        )

    def enrollment_confirmation(self, class_name: str) -> str:
        return f"{self.brand}: You have been successfully enrolled in {class_name}. Welcome aboard!"


_sms_service: SmsService | None = None


def get_sms_service() -> SmsService:
    global _sms_service
    if _sms_service is None:
        _sms_service = SmsService()
    return _sms_service
