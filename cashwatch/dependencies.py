from dataclasses import dataclass
from typing import Optional

from cashwatch.config import Settings, settings
from cashwatch.logging_config import get_logger
from cashwatch.services.chat_notifier import ChatNotifier
from cashwatch.services.claim_scheduler import ClaimScheduler
from cashwatch.services.conversation_engine import ConversationEngine
from cashwatch.services.event_bus import EventBus
from cashwatch.services.ledger import InMemoryLedger
from cashwatch.services.push_gateway import PushGateway
from cashwatch.services.session_store import InMemorySessionStore
from cashwatch.services.telegram_service import MessageSink, TelegramService
from cashwatch.services.web_app_auth import SessionTokenIssuer

logger = get_logger("dependencies")


@dataclass
class Runtime:
    settings: Settings
    bus: EventBus
    ledger: InMemoryLedger
    sink: MessageSink
    store: InMemorySessionStore
    claims: ClaimScheduler
    engine: ConversationEngine
    tokens: SessionTokenIssuer
    gateway: PushGateway
    notifier: ChatNotifier

    async def shutdown(self) -> None:
        await self.engine.drain()
        await self.claims.shutdown()
        await self.gateway.shutdown()


def build_runtime(current: Optional[Settings] = None, sink: Optional[MessageSink] = None) -> Runtime:
    """Wire the in-process services; the event bus feeds the chat notifier, the gateway and the claim scheduler."""
    current = current or settings
    bus = EventBus()
    ledger = InMemoryLedger(event_bus=bus)
    sink = sink or TelegramService(current.telegram_bot_token or "")
    store = InMemorySessionStore()
    claims = ClaimScheduler(ledger, sink, delay_seconds=current.claim_verify_delay_seconds)
    engine = ConversationEngine(ledger, sink, store, current, claim_scheduler=claims)
    tokens = SessionTokenIssuer(ttl_seconds=current.session_token_ttl_seconds)
    gateway = PushGateway(
        tokens,
        auth_timeout=current.push_auth_timeout_seconds,
        send_timeout=current.push_send_timeout_seconds,
        queue_size=current.push_queue_size,
    )
    notifier = ChatNotifier(ledger, sink)

    bus.subscribe(notifier.handle_event)
    bus.subscribe(gateway.handle_event)
    bus.subscribe(claims.handle_event)

    return Runtime(
        settings=current,
        bus=bus,
        ledger=ledger,
        sink=sink,
        store=store,
        claims=claims,
        engine=engine,
        tokens=tokens,
        gateway=gateway,
        notifier=notifier,
    )


_runtime: Optional[Runtime] = None


def get_runtime() -> Runtime:
    global _runtime
    if _runtime is None:
        _runtime = build_runtime()
        logger.info("Runtime initialized")
    return _runtime


def set_runtime(runtime: Optional[Runtime]) -> None:
    global _runtime
    _runtime = runtime
