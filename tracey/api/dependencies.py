"""
FastAPI dependencies: service providers and request authentication.

Routes depend on the provider functions rather than the singletons
directly so tests can swap them through ``app.dependency_overrides``.
"""

import asyncio
import hmac
from typing import Optional

from fastapi import Header, HTTPException, status
from firebase_admin import auth

from tracey.core.matching.matching_engine import MatchingEngine, get_matching_engine
from tracey.services.claim_service import ClaimService, get_claim_service
from tracey.services.notification_queue import NotificationQueueProcessor, get_queue_processor
from tracey.services.push_provider import get_firebase_app
from tracey.services.token_manager import TokenManager, get_token_manager
from tracey.utils.config import get_settings
from tracey.utils.logger import get_logger

logger = get_logger(__name__)


def provide_matching_engine() -> MatchingEngine:
    return get_matching_engine()


def provide_claim_service() -> ClaimService:
    return get_claim_service()


def provide_token_manager() -> TokenManager:
    return get_token_manager()


def provide_queue_processor() -> NotificationQueueProcessor:
    return get_queue_processor()


def _bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization or not authorization.startswith("Bearer "):
        return None
    return authorization.removeprefix("Bearer ").strip() or None


async def get_current_user_id(authorization: Optional[str] = Header(None)) -> str:
    """
    Verify the caller's Firebase ID token and return their uid.

    Raises:
        HTTPException: 401 when the header is missing or the token is invalid.
    """
    id_token = _bearer_token(authorization)
    if id_token is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")

    try:
        decoded = await asyncio.to_thread(auth.verify_id_token, id_token, app=get_firebase_app())
    except (auth.InvalidIdTokenError, auth.CertificateFetchError, ValueError) as e:
        logger.warning(f"Rejected ID token: {type(e).__name__}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid ID token"
        ) from e

    return decoded["uid"]


async def verify_cron_secret(authorization: Optional[str] = Header(None)) -> None:
    """Require ``Bearer <QUEUE_CRON_SECRET>`` when a secret is configured."""
    secret = get_settings().queue.cron_secret
    if not secret:
        return
    supplied = _bearer_token(authorization) or ""
    if not hmac.compare_digest(supplied.encode(), secret.encode()):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
