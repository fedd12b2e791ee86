"""Notification gateway: delivers token links by email through Resend."""

import logging
from dataclasses import dataclass
from typing import Protocol

import httpx

from authbridge.config import settings
from authbridge.models import TokenType

logger = logging.getLogger(__name__)

RESEND_URL = "https://api.resend.com/emails"

# subject prefix, heading, button label, expiry note
_TEMPLATES = {
    TokenType.PASSWORD_RESET: (
        "Password Reset",
        "A password reset was requested for your account. Use the link below to set a new password.",
        "Reset Password",
        "This link expires in 1 hour. If you didn't request this, you can safely ignore this email.",
    ),
    TokenType.EMAIL_VERIFICATION: (
        "Verify Your Email",
        "Please verify your email address to complete your account setup.",
        "Verify Email",
        "This link expires in 24 hours.",
    ),
    TokenType.MAGIC_LINK: (
        "Sign In Link",
        "Use the link below to sign in to your account. No password needed.",
        "Sign In",
        "This link expires in 15 minutes and can only be used once.",
    ),
}


@dataclass
class DeliveryResult:
    success: bool
    error: str | None = None


class Notifier(Protocol):
    async def send(
        self, token_type: TokenType, to: str, link: str, app_name: str
    ) -> DeliveryResult: ...

    async def send_test(self, to: str, app_name: str) -> DeliveryResult: ...


def render_email(token_type: TokenType, link: str, app_name: str) -> tuple[str, str]:
    """(subject, html) for a token email."""
    title, body, label, note = _TEMPLATES[TokenType(token_type)]
    html = f"""
<div style="font-family: -apple-system, 'Segoe UI', Roboto, sans-serif; max-width: 600px; margin: 0 auto; padding: 32px 20px;">
  <h1 style="font-size: 22px;">{title}</h1>
  <p style="color: #64748b;">{app_name}</p>
  <p>{body}</p>
  <p><a href="{link}" style="display: inline-block; padding: 12px 28px; background: #3b82f6; color: #ffffff; border-radius: 8px; text-decoration: none;">{label}</a></p>
  <p style="color: #64748b; font-size: 13px;">{note}</p>
</div>
"""
    return f"{title} - {app_name}", html


TEST_HTML = """
<div style="font-family: -apple-system, 'Segoe UI', Roboto, sans-serif; max-width: 600px; margin: 0 auto; padding: 32px 20px;">
  <h1 style="font-size: 22px;">Test Email</h1>
  <p>Email delivery is configured correctly. Password resets, verification emails and magic links can now be sent.</p>
</div>
"""


class ResendNotifier:
    """Sends through the Resend HTTP API.

    With no API key configured the link is logged instead (development mode)
    and delivery counts as successful. Errors never raise; they come back
    as DeliveryResult(success=False).
    """

    def __init__(self, api_key: str, from_email: str, timeout: float = 10.0, transport=None):
        self.api_key = api_key
        self.from_email = from_email
        self.timeout = timeout
        self.transport = transport

    async def send(
        self, token_type: TokenType, to: str, link: str, app_name: str
    ) -> DeliveryResult:
        subject, html = render_email(token_type, link, app_name)
        if not self.api_key:
            logger.warning(
                "Email delivery not configured; link for %s: %s", to, link,
                extra={"event": "notify.dev_mode"},
            )
            return DeliveryResult(success=True)
        return await self._deliver(to, subject, html, app_name)

    async def send_test(self, to: str, app_name: str) -> DeliveryResult:
        """Send a fixed test message. Unlike send, there is no development mode."""
        if not self.api_key:
            return DeliveryResult(success=False, error="Email delivery is not configured")
        return await self._deliver(to, f"{app_name} - Test Email", TEST_HTML, app_name)

    async def _deliver(self, to: str, subject: str, html: str, app_name: str) -> DeliveryResult:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(
                    RESEND_URL,
                    headers={"Authorization": f"Bearer {self.api_key}"},
                    json={
                        "from": f"{app_name} <{self.from_email}>",
                        "to": [to],
                        "subject": subject,
                        "html": html,
                    },
                )
        except httpx.HTTPError as exc:
            logger.warning("Email delivery failed", extra={"event": "notify.failed", "error": str(exc)})
            return DeliveryResult(success=False, error=f"Failed to send email: {exc}")

        if response.status_code >= 400:
            try:
                message = response.json().get("message") or response.text
            except ValueError:
                message = response.text
            logger.warning(
                "Email provider rejected message",
                extra={"event": "notify.rejected", "status": response.status_code},
            )
            return DeliveryResult(success=False, error=message or f"HTTP {response.status_code}")

        return DeliveryResult(success=True)


def get_notifier() -> Notifier:
    """Dependency returning the configured notifier."""
    return ResendNotifier(api_key=settings.resend_api_key, from_email=settings.from_email)
