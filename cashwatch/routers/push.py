from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, WebSocket, status

from cashwatch.config import require_bot_token
from cashwatch.dependencies import Runtime, get_runtime
from cashwatch.errors import AuthError, ConfigurationError
from cashwatch.logging_config import get_logger
from cashwatch.schemas.push import SessionTokenResponse
from cashwatch.services.web_app_auth import verify_init_data

logger = get_logger("push_router")

router = APIRouter()


@router.get("/api/auth/session-token", response_model=SessionTokenResponse)
async def issue_session_token(
    runtime: Runtime = Depends(get_runtime),
    x_telegram_init_data: Optional[str] = Header(default=None, alias="X-Telegram-Init-Data"),
):
    """Exchange Telegram WebApp initData for a single-use push session token."""
    try:
        bot_token = require_bot_token(runtime.settings)
    except ConfigurationError as e:
        logger.error(e.message)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=e.message)

    try:
        telegram_id = verify_init_data(x_telegram_init_data, bot_token)
    except AuthError as e:
        logger.info("Session token refused", extra={"context": {"reason": e.message}})
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=e.message)

    user = await runtime.ledger.get_user_by_chat_id(str(telegram_id))
    if user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")

    token = runtime.tokens.issue(user.id)
    return SessionTokenResponse(session_token=token, expires_in=runtime.tokens.ttl_seconds)


@router.websocket("/ws")
async def push_socket(websocket: WebSocket, runtime: Runtime = Depends(get_runtime)):
    await websocket.accept()
    await runtime.gateway.serve(websocket)
