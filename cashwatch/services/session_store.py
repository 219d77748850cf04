"""Ephemeral per-chat conversation state.

Sessions live in process memory only and are lost on restart. A session stays
until a terminal transition (completion, cancel, back to menu, or a new flow
replacing it); there is no inactivity expiry.
"""

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from decimal import Decimal
from typing import AsyncIterator, Optional, Protocol, Union

from cashwatch.services.state_machine import (
    FlowKind,
    InvalidStepError,
    PayoutStep,
    PromotionStep,
    Step,
    can_open,
    is_valid_step,
    transition,
)
from cashwatch.services.validators import PaymentMethod


@dataclass(frozen=True)
class PayoutPayload:
    method: PaymentMethod
    amount: Decimal
    details: Optional[str] = None


@dataclass(frozen=True)
class PromotionPayload:
    promotion_type: str  # subscribe | bot
    ad_cost: Decimal
    reward_amount: Decimal
    total_slots: int
    url: Optional[str] = None


Payload = Union[PayoutPayload, PromotionPayload]


@dataclass(frozen=True)
class ConversationSession:
    flow: FlowKind
    step: Step
    payload: Payload
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __post_init__(self):
        if not is_valid_step(self.flow, self.step):
            raise InvalidStepError(self.flow, self.step)
        expected = PayoutPayload if self.flow == FlowKind.PAYOUT else PromotionPayload
        if not isinstance(self.payload, expected):
            raise InvalidStepError(self.flow, self.step)

    @classmethod
    def open(cls, flow: FlowKind, step: Step, payload: Payload) -> "ConversationSession":
        if not can_open(flow, step):
            raise InvalidStepError(flow, step)
        return cls(flow=flow, step=step, payload=payload)

    def advance(self, to_step: Step, **payload_changes) -> "ConversationSession":
        """Return a new session at to_step; the current one is left untouched."""
        next_step = transition(self.step, to_step)
        return replace(
            self,
            step=next_step,
            payload=replace(self.payload, **payload_changes),
            updated_at=datetime.now(timezone.utc),
        )

    def is_at(self, flow: FlowKind, *steps: Step) -> bool:
        return self.flow == flow and (not steps or self.step in steps)

    @property
    def awaiting_url(self) -> bool:
        return self.is_at(FlowKind.PROMOTION_CREATION, *PromotionStep)

    @property
    def awaiting_payment_details(self) -> bool:
        return self.is_at(FlowKind.PAYOUT, PayoutStep.AWAITING_DETAILS)

    @property
    def awaiting_confirmation(self) -> bool:
        return self.is_at(FlowKind.PAYOUT, PayoutStep.AWAITING_CONFIRMATION)


class SessionStore(Protocol):
    async def get(self, chat_id: str) -> Optional[ConversationSession]: ...

    async def set(self, chat_id: str, session: ConversationSession) -> None: ...

    async def clear(self, chat_id: str) -> None: ...

    def lock(self, chat_id: str): ...


class InMemorySessionStore:
    """Dict-backed store with one asyncio.Lock per chat for read-modify-write sections."""

    def __init__(self):
        self._sessions: dict[str, ConversationSession] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}

    async def get(self, chat_id: str) -> Optional[ConversationSession]:
        return self._sessions.get(str(chat_id))

    async def set(self, chat_id: str, session: ConversationSession) -> None:
        self._sessions[str(chat_id)] = session

    async def clear(self, chat_id: str) -> None:
        self._sessions.pop(str(chat_id), None)

    @asynccontextmanager
    async def lock(self, chat_id: str) -> AsyncIterator[None]:
        key = str(chat_id)
        chat_lock = self._locks.get(key)
        if chat_lock is None:
            chat_lock = self._locks[key] = asyncio.Lock()
        self._lock_users[key] = self._lock_users.get(key, 0) + 1
        try:
            async with chat_lock:
                yield
        finally:
            self._lock_users[key] -= 1
            if self._lock_users[key] == 0:
                del self._lock_users[key]
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._sessions)
