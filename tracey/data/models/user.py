"""
User and push token models for Tracey.

User profiles are owned by the web client's sign-up flow; the core only
reads them. Push tokens are written by the device registration endpoint.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from pydantic import Field

from .base import BaseDocument, EmbeddedModel, utc_now


class NotificationPreferences(EmbeddedModel):
    """
    Stored notification preferences.

    Any field may be missing on older profiles; ``resolve`` applies the
    configured defaults.
    """

    email_enabled: Optional[bool] = None
    push_enabled: Optional[bool] = None
    min_match_score: Optional[float] = Field(None, ge=0, le=1)

    def resolve(
        self,
        default_email_enabled: bool,
        default_push_enabled: bool,
        default_min_match_score: float,
    ) -> "ResolvedPreferences":
        return ResolvedPreferences(
            email_enabled=(
                default_email_enabled if self.email_enabled is None else self.email_enabled
            ),
            push_enabled=(
                default_push_enabled if self.push_enabled is None else self.push_enabled
            ),
            min_match_score=(
                default_min_match_score
                if self.min_match_score is None
                else self.min_match_score
            ),
        )


@dataclass(frozen=True)
class ResolvedPreferences:
    """Preferences with every default filled in."""

    email_enabled: bool
    push_enabled: bool
    min_match_score: float


class User(BaseDocument):
    """User profile (``users`` collection). ``_id`` is the auth uid."""

    id: Optional[str] = Field(default=None, alias="_id")
    email: Optional[str] = None
    name: Optional[str] = None
    notification_preferences: NotificationPreferences = Field(
        default_factory=NotificationPreferences
    )

    @property
    def display_name(self) -> str:
        return self.name or "there"

    class Settings:
        """MongoDB collection settings."""

        name = "users"
        indexes = ["email"]


class DeviceInfo(EmbeddedModel):
    """Client device that registered a push token."""

    user_agent: Optional[str] = None
    platform: Optional[str] = None


class PushToken(BaseDocument):
    """One registered push token (``fcmTokens`` collection)."""

    user_id: str
    token: str
    device_info: Optional[DeviceInfo] = None
    last_used_at: datetime = Field(default_factory=utc_now)
    expires_at: datetime

    def is_valid_at(self, moment: datetime) -> bool:
        return self.expires_at > moment

    class Settings:
        """MongoDB collection settings."""

        name = "fcmTokens"
        indexes = [
            [("userId", 1), ("token", 1)],  # Unique
            [("userId", 1), ("expiresAt", 1)],
            "lastUsedAt",
        ]
