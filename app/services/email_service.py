"""
Outbound email through the Resend HTTP API.

Every send carries an Idempotency-Key derived from what is being sent, so
a retried delivery run does not produce a second email within Resend's
deduplication window. Public helpers return True/False; callers decide
what a failure means (a message stays scheduled, a lost reminder is only
logged).
"""

import asyncio
import html
import random

import httpx

from app.config import settings
from app.features.delivery.domain import Message, MessageType, TrustedContact
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

RETRY_DELAYS_SECONDS = (1, 3, 8)
RETRY_STATUS_CODES = {408, 425, 429, 500, 502, 503, 504}


class EmailDeliveryError(Exception):
    """Raised when the email provider rejects a send or cannot be reached."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class EmailService:
    def __init__(
        self,
        api_key: str | None = None,
        from_email: str | None = None,
        api_url: str | None = None,
        timeout: float | None = None,
        retry_delays: tuple[float, ...] = RETRY_DELAYS_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_key = api_key if api_key is not None else settings.RESEND_API_KEY
        self.from_email = from_email or settings.RESEND_FROM_EMAIL
        self.api_url = api_url or settings.RESEND_API_URL
        self.timeout = timeout or settings.EMAIL_REQUEST_TIMEOUT_SECONDS
        self.retry_delays = retry_delays
        self._transport = transport

    async def _post_with_retry(self, payload: dict, idempotency_key: str) -> httpx.Response:
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "Idempotency-Key": idempotency_key,
        }
        attempts = len(self.retry_delays) + 1

        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            for attempt in range(attempts):
                try:
                    response = await client.post(self.api_url, json=payload, headers=headers)
                except httpx.RequestError as exc:
                    if attempt == attempts - 1:
                        raise EmailDeliveryError(f"Email provider unreachable: {exc}") from exc
                    delay = self._delay(attempt)
                    logger.warning(
                        "Email request error, retrying",
                        attempt=attempt + 1,
                        delay=delay,
                        error_type=type(exc).__name__,
                    )
                    await asyncio.sleep(delay)
                    continue

                if response.status_code in RETRY_STATUS_CODES and attempt < attempts - 1:
                    delay = self._delay(attempt)
                    logger.warning(
                        "Email provider transient status",
                        status_code=response.status_code,
                        attempt=attempt + 1,
                        delay=delay,
                    )
                    await asyncio.sleep(delay)
                    continue

                return response

        raise EmailDeliveryError("Email retries exhausted")

    def _delay(self, attempt: int) -> float:
        base = self.retry_delays[attempt]
        return base + random.uniform(0, base * 0.25)

    async def send(
        self, to_email: str, subject: str, html_body: str, text_body: str, idempotency_key: str
    ) -> str:
        """
        Send one email.

        Returns:
            Provider message id

        Raises:
            EmailDeliveryError: On missing configuration or a non-2xx response
        """
        if not self.api_key or not self.from_email:
            raise EmailDeliveryError("Email provider not configured")

        payload = {
            "from": self.from_email,
            "to": [to_email],
            "subject": subject,
            "html": html_body,
            "text": text_body,
        }
        response = await self._post_with_retry(payload, idempotency_key)

        if response.status_code >= 300:
            raise EmailDeliveryError(
                f"Email provider error: {response.status_code}", status_code=response.status_code
            )

        try:
            return response.json().get("id", "")
        except ValueError:
            return ""

    async def _send_safely(self, kind: str, to_email: str, **kwargs) -> bool:
        try:
            await self.send(to_email, **kwargs)
            return True
        except EmailDeliveryError as e:
            logger.error("Email send failed", kind=kind, error=str(e), status_code=e.status_code)
            return False

    async def send_message_delivery(
        self, recipient_email: str, message: Message, sender_label: str | None = None
    ) -> bool:
        sender = sender_label or "Someone who cares about you"
        subject = f"{sender} left you a message"

        if message.type is MessageType.TEXT:
            body = message.text_content or ""
            html_body = (
                f"<p>{html.escape(sender)} asked us to deliver this message to you.</p>"
                f"<blockquote>{html.escape(body).replace(chr(10), '<br>')}</blockquote>"
            )
            text_body = f"{sender} asked us to deliver this message to you.\n\n{body}"
        else:
            link = f"{settings.APP_BASE_URL.rstrip('/')}/messages/{message.id}"
            html_body = (
                f"<p>{html.escape(sender)} left you a {message.type.value} message.</p>"
                f'<p><a href="{html.escape(link)}">Open the message</a></p>'
            )
            text_body = f"{sender} left you a {message.type.value} message.\n\nOpen it here: {link}"

        return await self._send_safely(
            "message_delivery",
            recipient_email,
            subject=subject,
            html_body=html_body,
            text_body=text_body,
            idempotency_key=f"message-{message.id}-{recipient_email.lower()}",
        )

    async def send_checkin_reminder(
        self, to_email: str, confirm_url: str, attempt: int, attempts_limit: int, token_id: str
    ) -> bool:
        remaining = max(attempts_limit - attempt, 0)
        subject = "Please confirm you're okay"
        html_body = (
            "<p>You missed your scheduled check-in.</p>"
            f'<p><a href="{html.escape(confirm_url)}">Confirm I\'m okay</a></p>'
            f"<p>Reminders left before your messages are released: {remaining}</p>"
        )
        text_body = (
            "You missed your scheduled check-in.\n\n"
            f"Confirm here: {confirm_url}\n\n"
            f"Reminders left before your messages are released: {remaining}"
        )
        return await self._send_safely(
            "checkin_reminder",
            to_email,
            subject=subject,
            html_body=html_body,
            text_body=text_body,
            idempotency_key=f"checkin-reminder-{token_id}",
        )

    async def send_trusted_contact_alert(self, contact: TrustedContact, owner_email: str | None) -> bool:
        owner = owner_email or "a user"
        subject = "A check-in was missed"
        html_body = (
            f"<p>Hi {html.escape(contact.name or 'there')},</p>"
            f"<p>{html.escape(owner)} listed you as a trusted contact and has not "
            "confirmed their scheduled check-ins. Their messages are being delivered.</p>"
        )
        text_body = (
            f"Hi {contact.name or 'there'},\n\n"
            f"{owner} listed you as a trusted contact and has not confirmed their "
            "scheduled check-ins. Their messages are being delivered."
        )
        return await self._send_safely(
            "trusted_contact_alert",
            contact.email,
            subject=subject,
            html_body=html_body,
            text_body=text_body,
            idempotency_key=f"trusted-contact-{contact.id}-{contact.user_id}",
        )


email_service = EmailService()
