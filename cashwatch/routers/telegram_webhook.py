import json
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status

from cashwatch.dependencies import Runtime, get_runtime
from cashwatch.logging_config import get_logger
from cashwatch.schemas.telegram import TelegramUpdate, TelegramWebhookResponse

logger = get_logger("telegram_webhook")

router = APIRouter()


async def parse_telegram_update(request: Request) -> Optional[dict]:
    """
    Parse Telegram update with tolerant decoding to avoid utf-8 crashes.
    Returns dict or None.
    """
    try:
        return await request.json()
    except Exception as e:
        logger.warning(f"Standard request.json() failed: {e}, fallback decoding")

    raw = await request.body()
    for enc in ("utf-8", "latin-1"):
        try:
            return json.loads(raw.decode(enc, errors="replace"))
        except ValueError:
            continue

    logger.error("Failed to decode Telegram webhook payload after fallbacks")
    return None


def _check_secret(provided: Optional[str], expected: Optional[str]) -> None:
    if expected and provided != expected:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid webhook secret")


@router.post("/telegram-webhook", response_model=TelegramWebhookResponse)
async def handle_telegram_webhook(
    request: Request,
    runtime: Runtime = Depends(get_runtime),
    x_telegram_bot_api_secret_token: Optional[str] = Header(default=None, alias="X-Telegram-Bot-Api-Secret-Token"),
):
    """Feed one Telegram update (message or callback query) to the conversation engine."""
    _check_secret(x_telegram_bot_api_secret_token, runtime.settings.telegram_webhook_secret)

    body = await parse_telegram_update(request)
    if body is None:
        return TelegramWebhookResponse(success=False, message="Invalid telegram payload")

    logger.debug(f"Telegram webhook received: {body}")
    try:
        update = TelegramUpdate(**body)
    except Exception as e:
        logger.warning(f"Unsupported telegram update: {e}")
        return TelegramWebhookResponse(success=False, message="Unsupported update")

    return await runtime.engine.handle_update(update)
