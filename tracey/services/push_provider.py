"""
Push delivery through Firebase Cloud Messaging.

The firebase-admin SDK is blocking, so batch sends run in a worker thread.
Per-token results are normalized to ``(success, error_code)`` using the
same ``messaging/...`` codes the web client sees.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Optional, Protocol

import firebase_admin
from firebase_admin import credentials, exceptions, messaging
from google.auth import exceptions as auth_exceptions

from tracey.core.exceptions import PushDeliveryError
from tracey.utils.config import FirebaseSettings, get_settings
from tracey.utils.logger import get_logger

logger = get_logger(__name__)

INVALID_TOKEN_CODE = "messaging/invalid-registration-token"
UNREGISTERED_TOKEN_CODE = "messaging/registration-token-not-registered"


@dataclass
class PushMessage:
    """A notification addressed to one device token."""

    token: str
    title: str
    body: str
    data: dict[str, str] = field(default_factory=dict)


@dataclass
class PushSendResult:
    """Outcome for one token of a batch send."""

    token: str
    success: bool
    error_code: Optional[str] = None


class PushProvider(Protocol):
    """Anything that can deliver a batch of push messages."""

    async def send_each(self, messages: list[PushMessage]) -> list[PushSendResult]:
        ...


def error_code_for(exc: Optional[Exception]) -> Optional[str]:
    """Map a firebase-admin exception onto a ``messaging/...`` error code."""
    if exc is None:
        return None
    if isinstance(exc, messaging.UnregisteredError):
        return UNREGISTERED_TOKEN_CODE
    if isinstance(exc, exceptions.InvalidArgumentError):
        return INVALID_TOKEN_CODE
    code = getattr(exc, "code", None)
    return f"messaging/{str(code).lower().replace('_', '-')}" if code else "messaging/unknown-error"


def get_firebase_app(settings: Optional[FirebaseSettings] = None) -> firebase_admin.App:
    """
    Get the default Firebase app, initializing it on first use.

    Uses the service account file from ``FIREBASE_CREDENTIALS_PATH`` when
    set, otherwise Application Default Credentials.
    """
    try:
        return firebase_admin.get_app()
    except ValueError:
        pass

    settings = settings or get_settings().firebase
    options = {"projectId": settings.project_id} if settings.project_id else None
    if settings.credentials_path:
        cred = credentials.Certificate(str(settings.credentials_path))
    else:
        cred = credentials.ApplicationDefault()

    logger.info("Initializing Firebase Admin SDK")
    return firebase_admin.initialize_app(cred, options)


class FirebasePushProvider:
    """Sends push messages with ``messaging.send_each``."""

    def __init__(self, app: Optional[firebase_admin.App] = None) -> None:
        self._app = app

    @property
    def app(self) -> firebase_admin.App:
        if self._app is None:
            self._app = get_firebase_app()
        return self._app

    async def send_each(self, messages: list[PushMessage]) -> list[PushSendResult]:
        if not messages:
            return []

        fcm_messages = [
            messaging.Message(
                token=m.token,
                notification=messaging.Notification(title=m.title, body=m.body),
                data=m.data,
            )
            for m in messages
        ]

        try:
            batch = await asyncio.to_thread(messaging.send_each, fcm_messages, app=self.app)
        except (exceptions.FirebaseError, auth_exceptions.GoogleAuthError, ValueError) as e:
            raise PushDeliveryError(f"Push batch send failed: {e}") from e

        return [
            PushSendResult(
                token=message.token,
                success=response.success,
                error_code=error_code_for(response.exception),
            )
            for message, response in zip(messages, batch.responses)
        ]


# Singleton instance
_push_provider: Optional[FirebasePushProvider] = None


def get_push_provider() -> FirebasePushProvider:
    """Get the push provider singleton instance."""
    global _push_provider
    if _push_provider is None:
        _push_provider = FirebasePushProvider()
    return _push_provider
