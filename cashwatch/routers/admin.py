"""Admin API over the ledger. Every mutation goes through the event bus like any other domain action."""

from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Header, HTTPException, status

from cashwatch.dependencies import Runtime, get_runtime
from cashwatch.logging_config import get_logger
from cashwatch.schemas.admin import (
    AdminActionResponse,
    BroadcastAccepted,
    BroadcastRequest,
    FundingRequest,
    RewardRequest,
)
from cashwatch.services.broadcast_service import send_broadcast
from cashwatch.services.ledger import format_amount
from cashwatch.services.result import Result

logger = get_logger("admin")

router = APIRouter(prefix="/admin", tags=["admin"])


def require_admin_token(
    runtime: Runtime = Depends(get_runtime),
    x_admin_token: Optional[str] = Header(default=None, alias="X-Admin-Token"),
) -> Runtime:
    expected = runtime.settings.admin_api_token
    if not expected:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="ADMIN_API_TOKEN not configured",
        )
    if not x_admin_token or x_admin_token != expected:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid admin token")
    return runtime


def _respond(result: Result, entity_id: str) -> AdminActionResponse:
    if not result.ok:
        code = status.HTTP_404_NOT_FOUND if result.error_code == "not_found" else status.HTTP_409_CONFLICT
        raise HTTPException(status_code=code, detail=result.error)
    return AdminActionResponse(success=True, id=entity_id, status=getattr(result.value, "status", None))


@router.post("/broadcast", response_model=BroadcastAccepted, status_code=status.HTTP_202_ACCEPTED)
async def broadcast(
    payload: BroadcastRequest,
    background_tasks: BackgroundTasks,
    runtime: Runtime = Depends(require_admin_token),
):
    admin_id = runtime.settings.telegram_admin_id
    if not admin_id:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="TELEGRAM_ADMIN_ID not configured",
        )
    users = await runtime.ledger.get_all_users()
    background_tasks.add_task(
        send_broadcast,
        runtime.ledger,
        runtime.sink,
        payload.text,
        admin_id,
        admin_id,
        runtime.settings.broadcast_delay_seconds,
    )
    logger.info("Broadcast queued", extra={"context": {"recipients": len(users)}})
    return BroadcastAccepted(success=True, recipients=len(users))


@router.post("/payouts/{payout_id}/approve", response_model=AdminActionResponse)
async def approve_payout(payout_id: str, runtime: Runtime = Depends(require_admin_token)):
    return _respond(await runtime.ledger.approve_payout(payout_id), payout_id)


@router.post("/payouts/{payout_id}/reject", response_model=AdminActionResponse)
async def reject_payout(payout_id: str, runtime: Runtime = Depends(require_admin_token)):
    return _respond(await runtime.ledger.reject_payout(payout_id), payout_id)


@router.post("/promotions/{promotion_id}/approve", response_model=AdminActionResponse)
async def approve_promotion(promotion_id: str, runtime: Runtime = Depends(require_admin_token)):
    return _respond(await runtime.ledger.approve_promotion(promotion_id), promotion_id)


@router.post("/promotions/{promotion_id}/reject", response_model=AdminActionResponse)
async def reject_promotion(
    promotion_id: str,
    refund: bool = True,
    runtime: Runtime = Depends(require_admin_token),
):
    return _respond(await runtime.ledger.reject_promotion(promotion_id, refund=refund), promotion_id)


@router.delete("/tasks/{promotion_id}", response_model=AdminActionResponse)
async def delete_task(
    promotion_id: str,
    refund: bool = False,
    runtime: Runtime = Depends(require_admin_token),
):
    return _respond(await runtime.ledger.delete_task(promotion_id, refund=refund), promotion_id)


@router.post("/users/{user_id}/rewards", response_model=AdminActionResponse)
async def grant_reward(user_id: str, payload: RewardRequest, runtime: Runtime = Depends(require_admin_token)):
    result = await runtime.ledger.grant_reward(user_id, payload.amount)
    if not result.ok:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=result.error)
    return AdminActionResponse(success=True, id=user_id, balance=format_amount(result.value))


@router.post("/users/{user_id}/funding", response_model=AdminActionResponse)
async def credit_funding(user_id: str, payload: FundingRequest, runtime: Runtime = Depends(require_admin_token)):
    """Top up the balance a user spends on promotions."""
    result = await runtime.ledger.credit_funding_balance(user_id, payload.amount)
    if not result.ok:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=result.error)
    return AdminActionResponse(success=True, id=user_id, balance=format_amount(result.value))
