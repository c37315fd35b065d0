"""
Business services for Tracey.

This module contains the services that deliver notifications, manage push
tokens, process the retry queue and apply claim transitions.
"""

from tracey.services.email_service import EmailService, get_email_service
from tracey.services.push_provider import (
    FirebasePushProvider,
    PushMessage,
    PushProvider,
    PushSendResult,
    get_push_provider,
)
from tracey.services.token_manager import (
    PushNotification,
    SendResult,
    TokenManager,
    get_token_manager,
)
from tracey.services.notification_dispatcher import (
    NotificationDispatcher,
    build_push_notification,
    get_notification_dispatcher,
)
from tracey.services.notification_queue import (
    NotificationQueueProcessor,
    get_queue_processor,
    retry_delay,
)
from tracey.services.scheduler import build_scheduler
from tracey.services.claim_service import ClaimService, get_claim_service

__all__ = [
    # Email
    "EmailService",
    "get_email_service",
    # Push
    "FirebasePushProvider",
    "PushMessage",
    "PushProvider",
    "PushSendResult",
    "get_push_provider",
    # Tokens
    "PushNotification",
    "SendResult",
    "TokenManager",
    "get_token_manager",
    # Dispatch
    "NotificationDispatcher",
    "build_push_notification",
    "get_notification_dispatcher",
    # Retry queue
    "NotificationQueueProcessor",
    "get_queue_processor",
    "retry_delay",
    "build_scheduler",
    # Claims
    "ClaimService",
    "get_claim_service",
]
