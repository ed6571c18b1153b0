"""Billing notification emails — trial started, payment succeeded, payment failed.

Sending is fire-and-forget: a failure is logged and never propagates to the
webhook that triggered it.
"""

import logging
from dataclasses import dataclass, field

import httpx

from snapparchive.config import Settings

logger = logging.getLogger(__name__)

TEMPLATES = {
    "trial_started": {
        "subject": "Your {plan_name} trial has started",
        "body": (
            "Hello,\n\n"
            "Thank you for choosing SnappArchive. Your {plan_name} trial is now active "
            "and you have full access to upload, organise and search your documents.\n\n"
            "Your card will only be charged when the trial ends. You can turn off "
            "auto-renewal at any time from the billing page.\n\n"
            "Best regards,\nThe SnappArchive team"
        ),
    },
    "payment_succeeded": {
        "subject": "Payment received: {amount}",
        "body": (
            "Hello,\n\n"
            "We received your payment of {amount}. Your subscription remains active.\n\n"
            "Invoice: {invoice_id}\n\n"
            "Best regards,\nThe SnappArchive team"
        ),
    },
    "payment_failed": {
        "subject": "Action required: your payment failed",
        "body": (
            "Hello,\n\n"
            "We could not process your latest payment.\n\n"
            "Reason: {reason}\n\n"
            "Please update your payment method from the billing page to keep access "
            "to your archive.\n\n"
            "Best regards,\nThe SnappArchive team"
        ),
    },
}


@dataclass(frozen=True)
class Notification:
    """An email queued by a webhook handler, sent once the transaction commits."""

    template: str
    to: str | None
    context: dict[str, str] = field(default_factory=dict)


def format_amount(amount_cents: int, currency: str | None) -> str:
    """Format minor units as ``29.00 EUR``."""
    code = (currency or "eur").upper()
    return f"{amount_cents / 100:.2f} {code}"


class EmailNotifier:
    """Sends billing emails through the Resend HTTP API."""

    def __init__(
        self,
        api_key: str,
        sender: str,
        api_url: str = "https://api.resend.com/emails",
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_key = api_key
        self.sender = sender
        self.api_url = api_url
        self.timeout = timeout
        self._transport = transport

    @classmethod
    def from_settings(cls, settings: Settings) -> "EmailNotifier":
        return cls(
            api_key=settings.resend_api_key,
            sender=f"{settings.email_from_name} <{settings.email_from}>",
            api_url=settings.resend_api_url,
            timeout=settings.email_timeout_seconds,
        )

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    async def send(self, template: str, to: str | None, **context: str) -> bool:
        """Render and send one templated email. Returns True if Resend accepted it."""
        if not to:
            logger.info("Skipping %s email: no recipient address", template)
            return False
        if not self.enabled:
            logger.info("Email disabled (no RESEND_API_KEY); would send %s to %s", template, to)
            return False

        tmpl = TEMPLATES[template]
        try:
            subject = tmpl["subject"].format(**context)
            body = tmpl["body"].format(**context)
        except KeyError as e:
            logger.error("Missing template variable %s for %s email", e, template)
            return False

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(
                    self.api_url,
                    headers={"Authorization": f"Bearer {self.api_key}"},
                    json={"from": self.sender, "to": [to], "subject": subject, "text": body},
                )
                response.raise_for_status()
        except httpx.HTTPError:
            logger.exception("Failed to send %s email to %s", template, to)
            return False

        logger.info("Sent %s email to %s", template, to)
        return True

    async def deliver(self, notification: Notification) -> bool:
        return await self.send(notification.template, notification.to, **notification.context)
