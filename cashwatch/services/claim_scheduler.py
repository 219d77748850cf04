"""Deferred auto-verification of promotion claims."""

import asyncio
from typing import Awaitable, Callable, Optional

from cashwatch.logging_config import get_logger
from cashwatch.schemas.push import PushFrame, TaskRemoved
from cashwatch.services import keyboards, messages
from cashwatch.services.domain import DomainActions
from cashwatch.services.telegram_service import MessageSink

logger = get_logger("claim_scheduler")

ClaimKey = tuple[str, str]  # (promotion_id, user_id)


class ClaimScheduler:
    """One cancellable verification task per (promotion, user) pair."""

    def __init__(
        self,
        domain: DomainActions,
        sink: MessageSink,
        delay_seconds: float = 3.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.domain = domain
        self.sink = sink
        self.delay_seconds = delay_seconds
        self._sleep = sleep
        self._tasks: dict[ClaimKey, asyncio.Task] = {}

    def schedule(self, promotion_id: str, user_id: str, chat_id: str) -> asyncio.Task:
        key = (promotion_id, user_id)
        self.cancel(promotion_id, user_id)
        task = asyncio.create_task(self._verify(promotion_id, user_id, chat_id))
        self._tasks[key] = task
        task.add_done_callback(lambda done, key=key: self._forget(key, done))
        return task

    def _forget(self, key: ClaimKey, task: asyncio.Task) -> None:
        if self._tasks.get(key) is task:
            del self._tasks[key]

    def is_pending(self, promotion_id: str, user_id: str) -> bool:
        task = self._tasks.get((promotion_id, user_id))
        return task is not None and not task.done()

    def cancel(self, promotion_id: str, user_id: str) -> bool:
        task = self._tasks.pop((promotion_id, user_id), None)
        if task is None or task.done():
            return False
        task.cancel()
        return True

    def cancel_promotion(self, promotion_id: str) -> int:
        keys = [key for key in self._tasks if key[0] == promotion_id]
        return sum(1 for key in keys if self.cancel(*key))

    async def handle_event(self, user_id: Optional[str], event: PushFrame) -> None:
        if isinstance(event, TaskRemoved):
            cancelled = self.cancel_promotion(event.promotion_id)
            if cancelled:
                logger.info(
                    "Cancelled pending claim verifications",
                    extra={"context": {"promotion_id": event.promotion_id, "count": cancelled}},
                )

    async def shutdown(self) -> None:
        tasks = list(self._tasks.values())
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    async def _verify(self, promotion_id: str, user_id: str, chat_id: str) -> None:
        await self._sleep(self.delay_seconds)
        try:
            await self._complete(promotion_id, user_id, chat_id)
        except Exception as e:
            logger.error(
                f"Claim verification failed: {e}",
                exc_info=True,
                extra={"context": {"promotion_id": promotion_id, "user_id": user_id}},
            )

    async def _complete(self, promotion_id: str, user_id: str, chat_id: str) -> None:
        promotion = await self.domain.get_promotion(promotion_id)
        if promotion is None or not promotion.is_claimable:
            logger.info(
                "Claim no longer qualifies, skipping",
                extra={"context": {"promotion_id": promotion_id, "user_id": user_id}},
            )
            return
        if await self.domain.get_user(user_id) is None:
            return
        if await self.domain.has_completed_task(promotion_id, user_id):
            return

        result = await self.domain.complete_task(promotion_id, user_id, promotion.reward_amount)
        if result.ok:
            text = messages.format_reward_added(promotion.reward_amount)
        else:
            text = f"❌ {result.error}"
        await self.sink.send_message(chat_id, text, keyboards.build_main_keyboard())
