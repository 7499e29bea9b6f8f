"""Zoho Mail sender (OAuth refresh-token flow)."""
from __future__ import annotations

import logging
from html import escape

import httpx

from lms.config import settings

logger = logging.getLogger(__name__)


class EmailError(Exception):
    pass


class EmailService:
    """Send mail through the Zoho Mail REST API.

    The access token lives in memory. A 401 or ``INVALID_OAUTHTOKEN`` answer
    triggers one refresh and one retry; nothing else is retried.
    """

    def __init__(self, transport: httpx.AsyncBaseTransport | None = None):
        self.client_id = settings.zoho_client_id
        self.client_secret = settings.zoho_client_secret
        self.refresh_token = settings.zoho_refresh_token
        self.account_id = settings.zoho_account_id
        self.from_address = settings.zoho_from_address
        self.oauth_domain = settings.zoho_oauth_domain.rstrip("/")
        self.mail_api = settings.zoho_mail_api.rstrip("/")
        self._transport = transport
        self._access_token: str | None = None

    @property
    def is_configured(self) -> bool:
        return bool(self.client_id and self.client_secret and self.refresh_token and self.account_id)

    async def refresh_access_token(self) -> str:
        async with httpx.AsyncClient(timeout=15.0, transport=self._transport) as client:
            try:
                response = await client.post(
                    f"{self.oauth_domain}/oauth/v2/token",
                    params={
                        "refresh_token": self.refresh_token,
                        "client_id": self.client_id,
                        "client_secret": self.client_secret,
                        "grant_type": "refresh_token",
                    },
                )
            except httpx.HTTPError as e:
                raise EmailError(f"Zoho token refresh failed: {e}") from e
        token = None
        if response.status_code == 200:
            try:
                token = response.json().get("access_token")
            except (ValueError, AttributeError):
                token = None
        if not token:
            raise EmailError(f"No access_token in Zoho response: {response.text}")
        self._access_token = token
        logger.info("Zoho access token refreshed")
        return token

    @staticmethod
    def _token_invalid(response: httpx.Response) -> bool:
        if response.status_code == 401:
            return True
        try:
            code = (response.json().get("data") or {}).get("errorCode")
        except (ValueError, AttributeError):
            return False
        return code in ("INVALID_OAUTHTOKEN", "INVALID_TOKEN")

    async def _post_message(self, payload: dict) -> httpx.Response:
        async with httpx.AsyncClient(timeout=20.0, transport=self._transport) as client:
            try:
                return await client.post(
                    f"{self.mail_api}/accounts/{self.account_id}/messages",
                    json=payload,
                    headers={"Authorization": f"Zoho-oauthtoken {self._access_token}"},
                )
            except httpx.HTTPError as e:
                raise EmailError(f"Zoho send failed: {e}") from e

    async def send(
        self,
        to: str | list[str],
        subject: str,
        html: str | None = None,
        text: str = "",
        from_name: str | None = None,
    ) -> dict | None:
        if not self.is_configured:
            logger.warning("Zoho mail not configured, skipping email to %s", to)
            return None
        if not self._access_token:
            await self.refresh_access_token()

        payload = {
            "fromAddress": f"{from_name or settings.brand_name} <{self.from_address}>",
            "toAddress": ",".join(to) if isinstance(to, list) else to,
            "subject": subject,
            "content": html if html is not None else text,
            "askReceipt": "no",
        }
        response = await self._post_message(payload)
        if self._token_invalid(response):
            logger.warning("Zoho access token rejected, refreshing and retrying once")
            await self.refresh_access_token()
            response = await self._post_message(payload)
        if response.status_code >= 400:
            raise EmailError(f"Zoho mail error: {response.status_code} - {response.text}")
        try:
            data = response.json()
        except ValueError as e:
            raise EmailError(f"Zoho mail returned a non-JSON reply: {response.text[:200]}") from e
        logger.info("Email sent to %s", payload["toAddress"])
        return data

    async def send_quietly(self, to: str | list[str], subject: str, html: str) -> bool:
        try:
            await self.send(to, subject, html=html)
            return True
        except EmailError as e:
            logger.error("Email to %s failed: %s", to, e)
            return False


def welcome_email(name: str) -> tuple[str, str]:
    subject = f"Welcome to {settings.brand_name}"
    html = (
        f"<p>Hi {name},</p>"
        f"<p>Your {settings.brand_name} account is ready. Log in to browse classes and join live sessions.</p>"
    )
    return subject, html


def payment_verified_email(name: str, amount: float, class_name: str, month: str) -> tuple[str, str]:
    subject = f"Payment verified: {class_name} ({month})"
    html = (
        f"<p>Hi {name},</p>"
        f"<p>Your payment of LKR {amount:,.2f} for <b>{class_name}</b> covering {month} has been verified.</p>"
    )
    return subject, html



def otp_email(name: str, code: str, purpose: str, ttl_minutes: int) -> tuple[str, str]:
    if purpose == "reset_password":
        subject = f"Your {settings.brand_name} password reset code"
        intro = "Use the code below to reset your password."
    else:
        subject = f"Verify your email for {settings.brand_name}"
        intro = f"Thank you for registering with {settings.brand_name}. Use the code below to verify your email address."
    html = (
        f"<p>Hi {escape(name)},</p>"
        f"<p>{intro}</p>"
        f"<p style=\"font-size:28px;font-weight:700;letter-spacing:6px\">{escape(code)}</p>"
        f"<p>The code expires in {ttl_minutes} minutes. If you did not request it, ignore this email.</p>"
    )
    return subject, html


def contact_received_email(name: str, email: str, phone: str | None, message: str) -> tuple[str, str]:
    subject = "New contact form message"
    html = (
        f"<p><b>Name:</b> {escape(name)}<br><b>Email:</b> {escape(email)}<br>"
        f"<b>Phone:</b> {escape(phone or '-')}</p>"
        f"<p>{escape(message)}</p>"
    )
    return subject, html


def contact_reply_email(name: str, message: str, reply: str) -> tuple[str, str]:
    subject = f"Reply from {settings.brand_name}"
    html = (
        f"<p>Dear {escape(name)},</p>"
        "<p>Thanks for contacting us.</p>"
        f"<p><b>Your message:</b> {escape(message)}</p>"
        f"<p><b>Our reply:</b> {escape(reply)}</p>"
        f"<p>Best regards,<br>{settings.brand_name} team</p>"
    )
    return subject, html


_email_service: EmailService | None = None


def get_email_service() -> EmailService:
    global _email_service
    if _email_service is None:
        _email_service = EmailService()
    return _email_service
