"""
HTTP routes binding the core operations.
"""

from datetime import datetime, timezone

from fastapi import APIRouter, BackgroundTasks, Depends

from tracey.api.dependencies import (
    get_current_user_id,
    provide_claim_service,
    provide_matching_engine,
    provide_queue_processor,
    provide_token_manager,
    verify_cron_secret,
)
from tracey.api.schemas import (
    ActionResponse,
    ClaimItemRequest,
    ItemRequest,
    MatchActionRequest,
    MatchRunResponse,
    PushTestRequest,
    RegisterTokenRequest,
    SearchRequest,
    SearchResponse,
)
from tracey.core.matching.matching_engine import MatchingEngine, MatchRunResult
from tracey.services.claim_service import ClaimService
from tracey.services.notification_queue import NotificationQueueProcessor
from tracey.services.token_manager import PushNotification, TokenManager

router = APIRouter(prefix="/api")


def _run_response(run: MatchRunResult, background_tasks: BackgroundTasks, engine: MatchingEngine) -> dict:
    """Acknowledge the run now and deliver its notifications after the response."""
    if run.created:
        background_tasks.add_task(engine.notify_matches, run)
    return MatchRunResponse.model_validate(run.to_response()).model_dump(by_alias=True)


# -----------------------------------------------------------------------------
# Matching
# -----------------------------------------------------------------------------


@router.post("/auto-match")
async def auto_match(
    body: ItemRequest,
    background_tasks: BackgroundTasks,
    engine: MatchingEngine = Depends(provide_matching_engine),
):
    """Match a found item against open lost items."""
    run = await engine.auto_match(body.item_id, notify=False)
    return _run_response(run, background_tasks, engine)


@router.post("/auto-match-lost")
async def auto_match_lost(
    body: ItemRequest,
    background_tasks: BackgroundTasks,
    engine: MatchingEngine = Depends(provide_matching_engine),
):
    """Match a lost item against open found items."""
    run = await engine.auto_match_lost(body.item_id, notify=False)
    return _run_response(run, background_tasks, engine)


@router.post("/search-items")
async def search_items(
    body: SearchRequest,
    engine: MatchingEngine = Depends(provide_matching_engine),
):
    hits = await engine.search_items(body.embedding, body.limit)
    return SearchResponse(results=hits).model_dump(by_alias=True)


# -----------------------------------------------------------------------------
# Claims
# -----------------------------------------------------------------------------


@router.post("/claim-item")
async def claim_item(
    body: ClaimItemRequest,
    claims: ClaimService = Depends(provide_claim_service),
):
    """Claim a found item straight from search results."""
    result = await claims.claim_from_search(body.item_id, body.user_id)
    return ActionResponse(match_id=result.match_id, message=result.message).model_dump(
        by_alias=True
    )


@router.post("/claim-match")
async def claim_match(
    body: MatchActionRequest,
    claims: ClaimService = Depends(provide_claim_service),
):
    result = await claims.claim_match(body.match_id, body.user_id)
    return ActionResponse(message=result.message).model_dump(by_alias=True, exclude_none=True)


@router.post("/dismiss-match")
async def dismiss_match(
    body: MatchActionRequest,
    claims: ClaimService = Depends(provide_claim_service),
):
    result = await claims.dismiss_match(body.match_id, body.user_id)
    return ActionResponse(message=result.message).model_dump(by_alias=True, exclude_none=True)


# -----------------------------------------------------------------------------
# Push tokens
# -----------------------------------------------------------------------------


@router.post("/fcm/register")
async def register_token(
    body: RegisterTokenRequest,
    user_id: str = Depends(get_current_user_id),
    tokens: TokenManager = Depends(provide_token_manager),
):
    """Register the caller's device for push notifications."""
    await tokens.register_token(user_id, body.token, body.device_info)
    return {"success": True}


@router.post("/fcm/test")
async def send_test_push(
    body: PushTestRequest,
    _caller: str = Depends(get_current_user_id),
    tokens: TokenManager = Depends(provide_token_manager),
):
    """Send a test notification to every device of a user."""
    result = await tokens.send_to_user(
        body.user_id,
        PushNotification(
            title=body.title or "Test Notification from Tracey",
            body=body.body or "This is a test notification to verify push delivery is working.",
            data={"type": "test", "timestamp": datetime.now(timezone.utc).isoformat()},
        ),
    )
    return {
        "success": True,
        "result": {"success": result.success, "failed": result.failed},
        "message": f"Sent to {result.success} device(s), {result.failed} failed",
    }


# -----------------------------------------------------------------------------
# Retry queue
# -----------------------------------------------------------------------------


@router.api_route("/process-queue", methods=["GET", "POST"], dependencies=[Depends(verify_cron_secret)])
async def process_queue(
    processor: NotificationQueueProcessor = Depends(provide_queue_processor),
):
    """Process one batch of the notification retry queue (cron target)."""
    summary = await processor.process_queue()
    message = (
        "Queue processing already in progress"
        if summary.skipped
        else "Queue processed successfully"
    )
    return {"success": True, "message": message, **summary.model_dump(mode="json")}
