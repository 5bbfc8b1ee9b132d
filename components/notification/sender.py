"""SMS and email delivery."""

import asyncio
import smtplib
from email.message import EmailMessage
from typing import Protocol

import httpx

from components.core import config
from components.core.logging import get_logger

settings = config.get_settings()
logger = get_logger(__name__)


class NotificationSender(Protocol):
    """Delivery channel used by the Notifier."""

    async def send_sms(self, phone_number: str, message: str) -> bool: ...

    async def send_email(self, to: str, subject: str, html_body: str) -> bool: ...

    async def aclose(self) -> None: ...


class HttpNotificationSender:
    """Sends SMS through the bulk SMS HTTP API and email through SMTP."""

    def __init__(self, client: httpx.AsyncClient = None) -> None:
        self.client = client or httpx.AsyncClient(timeout=15.0)

    async def send_sms(self, phone_number: str, message: str) -> bool:
        response = await self.client.post(
            settings.SMS_API_URL,
            json={
                "apikey": settings.SMS_API_KEY,
                "partnerID": settings.SMS_PARTNER_ID,
                "message": message,
                "shortcode": settings.SMS_SHORTCODE,
                "mobile": phone_number,
            },
        )
        if response.status_code == 200:
            logger.info("SMS sent successfully to %s", phone_number)
            return True
        logger.error("Failed to send SMS to %s: HTTP %s", phone_number, response.status_code)
        return False

    async def send_email(self, to: str, subject: str, html_body: str) -> bool:
        message = EmailMessage()
        message["From"] = settings.SMTP_SENDER
        message["To"] = to
        message["Subject"] = subject
        message.set_content("This message requires an HTML capable mail client.")
        message.add_alternative(html_body, subtype="html")
        await asyncio.to_thread(self._deliver, message)
        logger.info("Email '%s' sent to %s", subject, to)
        return True

    @staticmethod
    def _deliver(message: EmailMessage) -> None:
        with smtplib.SMTP_SSL(settings.SMTP_HOST, settings.SMTP_PORT) as smtp:
            if settings.SMTP_USER:
                smtp.login(settings.SMTP_USER, settings.SMTP_PASSWORD)
            smtp.send_message(message)

    async def aclose(self) -> None:
        await self.client.aclose()
