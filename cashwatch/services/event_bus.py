import asyncio
from typing import Awaitable, Callable, Optional

from cashwatch.logging_config import get_logger
from cashwatch.schemas.push import PushFrame

logger = get_logger("event_bus")

# user_id is None for events addressed to every live session (task_removed).
EventHandler = Callable[[Optional[str], PushFrame], Awaitable[None]]


class EventBus:
    """In-process fan-out of domain events to the chat notifier and the push gateway."""

    def __init__(self):
        self._handlers: list[EventHandler] = []

    def subscribe(self, handler: EventHandler) -> None:
        if handler not in self._handlers:
            self._handlers.append(handler)

    def unsubscribe(self, handler: EventHandler) -> None:
        if handler in self._handlers:
            self._handlers.remove(handler)

    async def publish(self, user_id: Optional[str], event: PushFrame) -> None:
        handlers = list(self._handlers)
        if not handlers:
            return
        results = await asyncio.gather(
            *(handler(user_id, event) for handler in handlers),
            return_exceptions=True,
        )
        for handler, result in zip(handlers, results):
            if isinstance(result, Exception):
                logger.error(
                    "Event handler failed",
                    exc_info=result,
                    extra={
                        "context": {
                            "event": event.to_wire().get("type"),
                            "user_id": user_id,
                            "handler": getattr(handler, "__qualname__", repr(handler)),
                        }
                    },
                )

    async def publish_all(self, event: PushFrame) -> None:
        await self.publish(None, event)
