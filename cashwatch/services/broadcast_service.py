import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from cashwatch.logging_config import get_logger
from cashwatch.services import messages
from cashwatch.services.domain import DomainActions
from cashwatch.services.telegram_service import MessageSink, is_delivered

logger = get_logger("broadcast_service")


@dataclass
class BroadcastResult:
    success: int = 0
    failed: int = 0
    authorized: bool = True

    @property
    def total(self) -> int:
        return self.success + self.failed


def is_admin(identity: Optional[str], admin_id: Optional[str]) -> bool:
    return bool(admin_id) and identity is not None and str(identity) == str(admin_id)


async def send_broadcast(
    domain: DomainActions,
    sink: MessageSink,
    text: str,
    caller_id: str,
    admin_id: Optional[str],
    delay_seconds: float = 0.1,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> BroadcastResult:
    """Send text to every known user and report the tally to the admin chat."""
    if not is_admin(caller_id, admin_id):
        logger.warning("Unauthorized broadcast attempt", extra={"context": {"caller_id": caller_id}})
        return BroadcastResult(authorized=False)

    users = await domain.get_all_users()
    logger.info(f"Broadcasting message to {len(users)} users")

    result = BroadcastResult()
    for index, user in enumerate(users):
        if not user.chat_id:
            result.failed += 1
            continue
        try:
            sent = await sink.send_message(user.chat_id, text)
        except Exception as e:
            logger.error(f"Broadcast send failed: {e}", extra={"context": {"user_id": user.id}})
            sent = None
        if is_delivered(sent):
            result.success += 1
        else:
            result.failed += 1
        if index < len(users) - 1 and delay_seconds > 0:
            await sleep(delay_seconds)

    logger.info(
        "Broadcast completed",
        extra={"context": {"success": result.success, "failed": result.failed, "total": len(users)}},
    )
    await sink.send_message(str(admin_id), messages.format_broadcast_summary(result.success, result.failed, len(users)))
    return result
