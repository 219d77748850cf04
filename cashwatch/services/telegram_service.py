from typing import Optional, Protocol

import httpx

from cashwatch.logging_config import get_logger

logger = get_logger("telegram_service")


class MessageSink(Protocol):
    async def send_message(self, chat_id: str, text: str, reply_markup: Optional[dict] = None) -> dict: ...

    async def answer_callback(
        self, callback_query_id: str, text: Optional[str] = None, show_alert: bool = False
    ) -> dict: ...

    async def edit_message(
        self, chat_id: str, message_id: int, text: str, reply_markup: Optional[dict] = None
    ) -> dict: ...


def is_delivered(result: Optional[dict]) -> bool:
    return bool(result) and result.get("ok") is True


class TelegramService:
    """Best-effort client for the Telegram Bot API. Never raises; failures are logged."""

    BASE_URL = "https://api.telegram.org/bot{token}"

    def __init__(self, bot_token: str, timeout: float = 30.0):
        self.bot_token = bot_token
        self.base_url = self.BASE_URL.format(token=bot_token)
        self.timeout = timeout

    async def _make_request(self, method: str, data: Optional[dict] = None) -> dict:
        """Make request to Telegram API."""
        url = f"{self.base_url}/{method}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(url, json=data or {})
                result = response.json()
        except Exception as e:
            logger.error(f"Telegram API error: {e}", extra={"context": {"method": method}})
            return {"ok": False, "error": str(e)}

        if not result.get("ok"):
            logger.warning(
                "Telegram API call rejected",
                extra={
                    "context": {
                        "method": method,
                        "status_code": response.status_code,
                        "description": result.get("description"),
                    }
                },
            )
        return result

    async def send_message(
        self,
        chat_id: str,
        text: str,
        reply_markup: Optional[dict] = None,
        parse_mode: str = "HTML",
    ) -> dict:
        """Send message to Telegram chat."""
        data = {
            "chat_id": chat_id,
            "text": text,
            "parse_mode": parse_mode,
        }
        if reply_markup:
            data["reply_markup"] = reply_markup

        return await self._make_request("sendMessage", data)

    async def answer_callback(
        self,
        callback_query_id: str,
        text: Optional[str] = None,
        show_alert: bool = False,
    ) -> dict:
        """Acknowledge a button press, optionally with a toast or alert."""
        data = {"callback_query_id": callback_query_id}
        if text:
            data["text"] = text
        if show_alert:
            data["show_alert"] = True

        return await self._make_request("answerCallbackQuery", data)

    async def edit_message(
        self,
        chat_id: str,
        message_id: int,
        text: str,
        reply_markup: Optional[dict] = None,
        parse_mode: str = "HTML",
    ) -> dict:
        """Edit existing message."""
        data = {
            "chat_id": chat_id,
            "message_id": message_id,
            "text": text,
            "parse_mode": parse_mode,
        }
        if reply_markup:
            data["reply_markup"] = reply_markup

        return await self._make_request("editMessageText", data)

    async def set_webhook(self, webhook_url: str, secret_token: Optional[str] = None) -> bool:
        """Register the webhook URL with Telegram."""
        data = {
            "url": webhook_url,
            "allowed_updates": ["message", "callback_query"],
        }
        if secret_token:
            data["secret_token"] = secret_token

        result = await self._make_request("setWebhook", data)
        if is_delivered(result):
            logger.info("Telegram webhook set", extra={"context": {"url": webhook_url}})
            return True
        logger.error("Failed to set Telegram webhook", extra={"context": {"result": result}})
        return False
