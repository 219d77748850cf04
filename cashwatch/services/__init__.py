from cashwatch.services.result import Result
from cashwatch.services.session_store import (
    ConversationSession,
    InMemorySessionStore,
    PayoutPayload,
    PromotionPayload,
    SessionStore,
)
from cashwatch.services.state_machine import (
    FlowKind,
    PayoutStep,
    PromotionStep,
)

__all__ = [
    "Result",
    "ConversationSession",
    "InMemorySessionStore",
    "PayoutPayload",
    "PromotionPayload",
    "SessionStore",
    "FlowKind",
    "PayoutStep",
    "PromotionStep",
]
