"""
Match notification email delivery through the Resend HTTP API.
"""

from typing import Any, Optional

import httpx

from tracey.core.exceptions import EmailDeliveryError
from tracey.utils.config import EmailSettings, get_settings
from tracey.utils.logger import get_logger

logger = get_logger(__name__)


def build_match_url(app_url: str, match_id: Optional[str]) -> str:
    """Link to the match page in the web client."""
    if not match_id:
        return "#"
    return f"{app_url.rstrip('/')}/matches/{match_id}"


def render_match_email(
    score: float, category: Optional[str], match_url: str
) -> tuple[str, str, str]:
    """
    Render the "we found your item" email.

    Returns:
        (subject, html, text)
    """
    percent = f"{score * 100:.0f}%"
    subject = f"We Found Your Lost {category or 'Item'}!"
    category = category or "item"

    html = f"""<!DOCTYPE html>
<html>
  <head>
    <meta charset="utf-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
  </head>
  <body style="font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif; line-height: 1.6; color: #333; margin: 0; padding: 0; background-color: #f4f4f4;">
    <div style="max-width: 600px; margin: 20px auto; background: white; border-radius: 8px; overflow: hidden;">
      <div style="background: #667eea; padding: 30px; text-align: center;">
        <h1 style="color: white; margin: 0; font-size: 28px;">Great News!</h1>
      </div>
      <div style="padding: 30px;">
        <h2 style="color: #667eea; margin-top: 0;">We Found a Match!</h2>
        <p style="font-size: 16px; color: #555;">Someone reported finding an item that matches your lost <strong>{category}</strong>.</p>
        <div style="background: #f8f9fa; border-left: 4px solid #667eea; padding: 15px; margin: 20px 0; border-radius: 4px;">
          <p style="margin: 0; font-size: 14px; color: #666;">Match Confidence</p>
          <p style="margin: 5px 0 0 0; font-size: 32px; font-weight: bold; color: #667eea;">{percent}</p>
        </div>
        <div style="text-align: center; margin: 30px 0;">
          <a href="{match_url}" style="display: inline-block; background: #667eea; color: white; padding: 14px 32px; text-decoration: none; border-radius: 6px; font-weight: 600;">View Match Details</a>
        </div>
        <ol style="margin: 10px 0; padding-left: 20px; color: #555;">
          <li>Review the match details and photos</li>
          <li>Contact the finder to arrange pickup</li>
        </ol>
      </div>
      <div style="background: #f8f9fa; padding: 20px; text-align: center; color: #666; font-size: 12px;">
        <p style="margin: 0;">This is an automated notification from <strong>Tracey</strong></p>
      </div>
    </div>
  </body>
</html>"""

    text = (
        f"We found a match!\n\n"
        f"Someone reported finding an item that matches your lost {category}.\n"
        f"Match confidence: {percent}\n\n"
        f"View the match: {match_url}\n"
    )
    return subject, html, text


class EmailService:
    """
    Sends match emails.

    The HTTP client is created lazily and can be injected (tests pass one
    built on ``httpx.MockTransport``).
    """

    def __init__(
        self,
        settings: Optional[EmailSettings] = None,
        app_url: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        app_settings = get_settings()
        self._settings = settings or app_settings.email
        self._app_url = app_url or app_settings.notifications.app_url
        self._client = client

    @property
    def is_configured(self) -> bool:
        return bool(self._settings.api_key and self._settings.sender)

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._settings.timeout_seconds)
        return self._client

    async def send_match_email(
        self,
        to: str,
        score: float,
        match_id: Optional[str] = None,
        category: Optional[str] = None,
    ) -> str:
        """
        Email a lost-item owner about a new match.

        Returns:
            The provider's message id.

        Raises:
            EmailDeliveryError: Not configured, bad recipient, or provider failure.
        """
        if not self._settings.api_key:
            raise EmailDeliveryError("Email service not configured: missing EMAIL_API_KEY")
        if not self._settings.sender:
            raise EmailDeliveryError("Email service not configured: missing EMAIL_SENDER")
        if not to or "@" not in to:
            raise EmailDeliveryError("Invalid recipient email address")

        subject, html, text = render_match_email(
            score, category, build_match_url(self._app_url, match_id)
        )
        payload: dict[str, Any] = {
            "from": self._settings.sender,
            "to": [to],
            "subject": subject,
            "html": html,
            "text": text,
        }

        try:
            response = await self.client.post(
                self._settings.api_url,
                json=payload,
                headers={"Authorization": f"Bearer {self._settings.api_key}"},
            )
        except httpx.HTTPError as e:
            raise EmailDeliveryError(f"Email request failed: {e}") from e

        if response.status_code >= 300:
            raise EmailDeliveryError(
                f"Email provider returned {response.status_code}: {response.text[:200]}"
            )

        # A 2xx reply without a JSON body is still accepted
        try:
            body = response.json()
        except ValueError:
            body = None
        message_id = str(body.get("id") or "") if isinstance(body, dict) else ""
        logger.debug(f"Match email accepted by provider: {message_id}")
        return message_id

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


# Singleton instance
_email_service: Optional[EmailService] = None


def get_email_service() -> EmailService:
    """Get the email service singleton instance."""
    global _email_service
    if _email_service is None:
        _email_service = EmailService()
    return _email_service
