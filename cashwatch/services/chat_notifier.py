from typing import Optional

from cashwatch.logging_config import get_logger
from cashwatch.schemas.push import PushFrame
from cashwatch.services import messages
from cashwatch.services.domain import DomainActions
from cashwatch.services.telegram_service import MessageSink, is_delivered

logger = get_logger("chat_notifier")


class ChatNotifier:
    """Mirrors account events into the owner's Telegram chat."""

    def __init__(self, domain: DomainActions, sink: MessageSink):
        self.domain = domain
        self.sink = sink

    async def handle_event(self, user_id: Optional[str], event: PushFrame) -> None:
        if user_id is None:
            return

        text = messages.format_event_notice(
            event.type,
            amount=getattr(event, "amount", None),
            title=getattr(event, "title", None),
            refunded=getattr(event, "refunded", False),
            refund_amount=getattr(event, "refund_amount", None),
        )
        if text is None:
            return

        user = await self.domain.get_user(user_id)
        if user is None or not user.chat_id:
            logger.info("No chat to notify", extra={"context": {"user_id": user_id, "type": event.type}})
            return

        result = await self.sink.send_message(user.chat_id, text)
        if not is_delivered(result):
            logger.warning("Event notice not delivered", extra={"context": {"user_id": user_id, "type": event.type}})
