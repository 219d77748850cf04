import asyncio
from decimal import Decimal

import pytest

from cashwatch.services.session_store import (
    ConversationSession,
    InMemorySessionStore,
    PayoutPayload,
    PromotionPayload,
)
from cashwatch.services.state_machine import (
    FlowKind,
    InvalidStepError,
    InvalidTransitionError,
    PayoutStep,
    PromotionStep,
)
from cashwatch.services.validators import get_payment_method

TON = get_payment_method("ton_coin")


def payout_session():
    return ConversationSession.open(
        FlowKind.PAYOUT, PayoutStep.AWAITING_DETAILS, PayoutPayload(method=TON, amount=Decimal("0.50"))
    )


class TestConversationSession:
    def test_open_payout(self):
        session = payout_session()
        assert session.awaiting_payment_details
        assert not session.awaiting_confirmation
        assert not session.awaiting_url

    def test_cannot_open_at_confirmation(self):
        with pytest.raises(InvalidStepError):
            ConversationSession.open(
                FlowKind.PAYOUT, PayoutStep.AWAITING_CONFIRMATION, PayoutPayload(method=TON, amount=Decimal("1"))
            )

    def test_step_must_match_flow(self):
        with pytest.raises(InvalidStepError):
            ConversationSession(
                flow=FlowKind.PAYOUT,
                step=PromotionStep.AWAITING_BOT_URL,
                payload=PayoutPayload(method=TON, amount=Decimal("1")),
            )

    def test_payload_must_match_flow(self):
        with pytest.raises(InvalidStepError):
            ConversationSession(
                flow=FlowKind.PROMOTION_CREATION,
                step=PromotionStep.AWAITING_BOT_URL,
                payload=PayoutPayload(method=TON, amount=Decimal("1")),
            )

    def test_advance_returns_new_session(self):
        session = payout_session()
        advanced = session.advance(PayoutStep.AWAITING_CONFIRMATION, details="EQ" + "a" * 46)

        assert advanced.awaiting_confirmation
        assert advanced.payload.details == "EQ" + "a" * 46
        assert advanced.payload.amount == Decimal("0.50")
        assert session.awaiting_payment_details
        assert session.payload.details is None

    def test_advance_rejects_backwards(self):
        confirmed = payout_session().advance(PayoutStep.AWAITING_CONFIRMATION, details="x")
        with pytest.raises(InvalidTransitionError):
            confirmed.advance(PayoutStep.AWAITING_DETAILS)

    def test_promotion_session_awaits_url(self):
        session = ConversationSession.open(
            FlowKind.PROMOTION_CREATION,
            PromotionStep.AWAITING_CHANNEL_URL,
            PromotionPayload(
                promotion_type="subscribe",
                ad_cost=Decimal("0.01"),
                reward_amount=Decimal("0.00025"),
                total_slots=1000,
            ),
        )
        assert session.awaiting_url
        assert not session.awaiting_payment_details


class TestInMemorySessionStore:
    @pytest.mark.asyncio
    async def test_get_set_clear(self):
        store = InMemorySessionStore()
        session = payout_session()

        assert await store.get("1") is None
        await store.set("1", session)
        assert await store.get("1") is session
        await store.clear("1")
        assert await store.get("1") is None

    @pytest.mark.asyncio
    async def test_keys_are_normalized_to_str(self):
        store = InMemorySessionStore()
        await store.set(42, payout_session())
        assert await store.get("42") is not None

    @pytest.mark.asyncio
    async def test_set_replaces_existing(self):
        store = InMemorySessionStore()
        await store.set("1", payout_session())
        replacement = payout_session()
        await store.set("1", replacement)

        assert await store.get("1") is replacement
        assert len(store) == 1

    @pytest.mark.asyncio
    async def test_clear_missing_is_noop(self):
        store = InMemorySessionStore()
        await store.clear("nobody")
        assert len(store) == 0

    @pytest.mark.asyncio
    async def test_lock_serializes_same_chat(self):
        store = InMemorySessionStore()
        events = []

        async def worker(name):
            async with store.lock("1"):
                events.append(f"{name}-in")
                await asyncio.sleep(0)
                events.append(f"{name}-out")

        await asyncio.gather(worker("a"), worker("b"))

        assert events == ["a-in", "a-out", "b-in", "b-out"]

    @pytest.mark.asyncio
    async def test_locks_for_different_chats_do_not_block(self):
        store = InMemorySessionStore()
        entered = asyncio.Event()

        async def holder():
            async with store.lock("1"):
                await entered.wait()

        task = asyncio.create_task(holder())
        await asyncio.sleep(0)
        async with store.lock("2"):
            entered.set()
        await task

    @pytest.mark.asyncio
    async def test_lock_released_after_error(self):
        store = InMemorySessionStore()

        with pytest.raises(RuntimeError):
            async with store.lock("1"):
                raise RuntimeError("boom")

        async with store.lock("1"):
            pass
        assert store._locks == {}
