import asyncio
from decimal import Decimal

import pytest
from factories import ADMIN_CHAT_ID, CHANNEL_ID, callback_update, text_update

from cashwatch.schemas.telegram import TelegramUpdate
from cashwatch.services import messages
from cashwatch.services.domain import PromotionDraft, TelegramProfile
from cashwatch.services.state_machine import FlowKind, PayoutStep, PromotionStep
from cashwatch.services.validators import PAYMENT_METHODS, get_payment_method, is_valid_payment_details

CHAT = 100
POLYGON_ADDRESS = "0x" + "a1" * 20
TON_ADDRESS = "EQ" + "B" * 46

VALID_DETAILS = {
    "telegram_stars": "alice_stars",
    "tether_polygon": POLYGON_ADDRESS,
    "ton_coin": TON_ADDRESS,
    "litecoin": "L" + "x" * 30,
}
INVALID_DETAILS = {
    "telegram_stars": "@alice_stars",
    "tether_polygon": POLYGON_ADDRESS[:-1],
    "ton_coin": "AB" + "B" * 46,
    "litecoin": "X" + "x" * 30,
}


async def send(engine, payload):
    return await engine.handle_update(TelegramUpdate(**payload))


async def register(engine, ledger, chat_id=CHAT, balance="0", funding="0"):
    await send(engine, text_update(chat_id, "hi"))
    user = await ledger.get_user_by_chat_id(str(chat_id))
    user.balance = Decimal(balance)
    user.funding_balance = Decimal(funding)
    return user


class TestDispatch:
    @pytest.mark.asyncio
    async def test_unrecognized_text_gets_main_menu(self, engine, sink):
        response = await send(engine, text_update(CHAT, "what is this?"))

        assert response.success is True
        last = sink.last_for(CHAT)
        assert last.text == messages.MENU_PROMPT
        assert "keyboard" in last.reply_markup

    @pytest.mark.asyncio
    async def test_every_message_upserts_user(self, engine, ledger):
        await send(engine, text_update(CHAT, "first", update_id=1))
        await send(engine, text_update(CHAT, "second", update_id=2))

        users = await ledger.get_all_users()
        assert len(users) == 1
        assert users[0].chat_id == str(CHAT)
        assert users[0].first_name == "Alice"

    @pytest.mark.asyncio
    async def test_bot_messages_are_ignored(self, engine, ledger, sink):
        payload = text_update(CHAT, "hello")
        payload["message"]["from"]["is_bot"] = True

        response = await send(engine, payload)

        assert response.message == "Ignoring bot message"
        assert await ledger.get_all_users() == []
        assert sink.sent == []

    @pytest.mark.asyncio
    async def test_start_sends_welcome_and_menu(self, engine, sink):
        await send(engine, text_update(CHAT, "/start"))

        texts = sink.texts_for(CHAT)
        assert texts[0].startswith("Welcome to CashWatch Bot!")
        assert sink.sent[0].reply_markup["inline_keyboard"][0][0]["web_app"]["url"] == "https://app.example.com"
        assert texts[-1] == messages.MENU_PROMPT

    @pytest.mark.asyncio
    async def test_unexpected_exception_is_reported_not_raised(self, engine, ledger, sink, monkeypatch):
        async def broken(*args, **kwargs):
            raise RuntimeError("storage down")

        monkeypatch.setattr(ledger, "upsert_user_by_chat_id", broken)

        response = await send(engine, text_update(CHAT, "hi"))

        assert response.success is False
        assert sink.last_for(CHAT).text == messages.GENERIC_FAILURE

    @pytest.mark.asyncio
    async def test_failure_reply_that_also_fails_is_not_raised(self, engine, ledger, sink, monkeypatch):
        async def broken(*args, **kwargs):
            raise RuntimeError("ledger down")

        monkeypatch.setattr(ledger, "upsert_user_by_chat_id", broken)
        sink.raising_chats.add(str(CHAT))

        response = await send(engine, text_update(CHAT, "hi"))

        assert response.success is False
        assert response.message == "Internal error"
        assert sink.sent == []

    @pytest.mark.asyncio
    async def test_account_shows_dashboard_with_payout_buttons(self, engine, ledger, sink):
        await register(engine, ledger, balance="0.42")

        await send(engine, text_update(CHAT, "👤 Account", update_id=2))

        last = sink.last_for(CHAT)
        assert "Current Balance: $0.42" in last.text
        callbacks = [row[0]["callback_data"] for row in last.reply_markup["inline_keyboard"]]
        assert callbacks == [f"payout_{method.id}" for method in PAYMENT_METHODS]

    @pytest.mark.asyncio
    async def test_cashout_with_empty_balance(self, engine, ledger, sink, store):
        await register(engine, ledger)

        await send(engine, text_update(CHAT, "🏦 Cashout", update_id=2))

        assert "Your current balance is $0.00" in sink.last_for(CHAT).text
        assert await store.get(str(CHAT)) is None


class TestPayoutFlow:
    @pytest.mark.asyncio
    async def test_minimum_not_met_creates_no_session(self, engine, ledger, sink, store):
        await register(engine, ledger, balance="0.02")

        await send(engine, text_update(CHAT, "💫 Telegram Stars", update_id=2))

        assert "$0.05" in sink.last_for(CHAT).text
        assert await store.get(str(CHAT)) is None

    @pytest.mark.asyncio
    async def test_minimum_not_met_via_callback(self, engine, ledger, sink, store):
        await register(engine, ledger, balance="0.02")

        await send(engine, callback_update(CHAT, "payout_telegram_stars", update_id=2))

        assert "$0.05" in sink.answers[-1]["text"]
        assert sink.answers[-1]["show_alert"] is True
        assert await store.get(str(CHAT)) is None

    @pytest.mark.asyncio
    async def test_selecting_method_opens_session_with_snapshot(self, engine, ledger, store):
        await register(engine, ledger, balance="1.25")

        await send(engine, text_update(CHAT, "🔶 Tether (Polygon)", update_id=2))

        session = await store.get(str(CHAT))
        assert session.flow == FlowKind.PAYOUT
        assert session.step == PayoutStep.AWAITING_DETAILS
        assert session.payload.method.id == "tether_polygon"
        assert session.payload.amount == Decimal("1.25")

    @pytest.mark.asyncio
    async def test_short_polygon_address_keeps_awaiting_details(self, engine, ledger, sink, store):
        await register(engine, ledger, balance="1.00")
        await send(engine, text_update(CHAT, "🔶 Tether (Polygon)", update_id=2))

        address = "0x" + "a" * 39
        assert len(address) == 41
        await send(engine, text_update(CHAT, address, update_id=3))

        session = await store.get(str(CHAT))
        assert session.step == PayoutStep.AWAITING_DETAILS
        assert session.payload.details is None
        assert sink.last_for(CHAT).text == get_payment_method("tether_polygon").error_message

    @pytest.mark.asyncio
    @pytest.mark.parametrize("method", PAYMENT_METHODS, ids=lambda method: method.id)
    async def test_only_valid_details_reach_confirmation(self, engine, ledger, store, method):
        await register(engine, ledger, balance="5")
        await send(engine, text_update(CHAT, method.label, update_id=2))

        await send(engine, text_update(CHAT, INVALID_DETAILS[method.id], update_id=3))
        assert (await store.get(str(CHAT))).step == PayoutStep.AWAITING_DETAILS

        await send(engine, text_update(CHAT, VALID_DETAILS[method.id], update_id=4))
        session = await store.get(str(CHAT))
        assert session.step == PayoutStep.AWAITING_CONFIRMATION
        assert is_valid_payment_details(method, session.payload.details)

    @pytest.mark.asyncio
    async def test_confirm_creates_payout_and_clears_session(self, engine, ledger, sink, store):
        user = await register(engine, ledger, balance="1.00")
        await send(engine, text_update(CHAT, "🔶 Tether (Polygon)", update_id=2))
        await send(engine, text_update(CHAT, POLYGON_ADDRESS, update_id=3))

        await send(engine, text_update(CHAT, "✅ CONFIRM", update_id=4))

        assert await store.get(str(CHAT)) is None
        payouts = list(ledger.payouts.values())
        assert len(payouts) == 1
        assert payouts[0].details == POLYGON_ADDRESS
        assert payouts[0].amount == Decimal("1.00")
        assert user.balance == Decimal("0")
        assert "Payout Request Confirmed" in sink.last_for(CHAT).text
        assert "New Payout Request" in sink.last_for(ADMIN_CHAT_ID).text

    @pytest.mark.asyncio
    async def test_domain_rejection_still_clears_session(self, engine, ledger, sink, store):
        user = await register(engine, ledger, balance="1.00")
        await ledger.create_payout_request(user.id, Decimal("0.10"), "ton_coin", TON_ADDRESS)
        await send(engine, text_update(CHAT, "💎 TON Coin", update_id=2))
        await send(engine, text_update(CHAT, TON_ADDRESS, update_id=3))

        response = await send(engine, text_update(CHAT, "✅ CONFIRM", update_id=4))

        assert response.success is False
        assert await store.get(str(CHAT)) is None
        assert sink.last_for(CHAT).text == "❌ You already have a pending withdrawal request"
        assert sink.texts_for(ADMIN_CHAT_ID) == []

    @pytest.mark.asyncio
    async def test_exception_during_confirm_clears_session(self, engine, ledger, sink, store, monkeypatch):
        await register(engine, ledger, balance="1.00")
        await send(engine, text_update(CHAT, "💎 TON Coin", update_id=2))
        await send(engine, text_update(CHAT, TON_ADDRESS, update_id=3))

        async def broken(*args, **kwargs):
            raise RuntimeError("ledger timeout")

        monkeypatch.setattr(ledger, "create_payout_request", broken)
        await send(engine, text_update(CHAT, "✅ CONFIRM", update_id=4))

        assert await store.get(str(CHAT)) is None
        assert sink.last_for(CHAT).text == messages.PAYOUT_FAILURE

    @pytest.mark.asyncio
    @pytest.mark.parametrize("text", ["❌ CANCEL", "actually never mind", "👥 Affiliates"])
    async def test_other_input_at_confirmation_clears_without_payout(self, engine, ledger, store, text):
        await register(engine, ledger, balance="1.00")
        await send(engine, text_update(CHAT, "💎 TON Coin", update_id=2))
        await send(engine, text_update(CHAT, TON_ADDRESS, update_id=3))

        await send(engine, text_update(CHAT, text, update_id=4))

        assert await store.get(str(CHAT)) is None
        assert ledger.payouts == {}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("data", ["bogus_button", "refresh_stats", "payout_dogecoin"])
    async def test_other_callback_at_confirmation_clears_without_payout(self, engine, ledger, store, data):
        await register(engine, ledger, balance="1.00")
        await send(engine, text_update(CHAT, "🔶 Tether (Polygon)", update_id=2))
        await send(engine, text_update(CHAT, POLYGON_ADDRESS, update_id=3))

        await send(engine, callback_update(CHAT, data, update_id=4))
        assert await store.get(str(CHAT)) is None

        await send(engine, text_update(CHAT, "✅ CONFIRM", update_id=5))
        assert ledger.payouts == {}

    @pytest.mark.asyncio
    async def test_confirm_callback_still_confirms(self, engine, ledger, store):
        await register(engine, ledger, balance="1.00")
        await send(engine, text_update(CHAT, "🔶 Tether (Polygon)", update_id=2))
        await send(engine, text_update(CHAT, POLYGON_ADDRESS, update_id=3))

        await send(engine, callback_update(CHAT, "confirm_payout", update_id=4))

        assert await store.get(str(CHAT)) is None
        assert len(ledger.payouts) == 1

    @pytest.mark.asyncio
    async def test_confirm_without_pending_payout(self, engine, ledger, sink):
        await register(engine, ledger, balance="1.00")

        await send(engine, text_update(CHAT, "✅ CONFIRM", update_id=2))

        assert sink.last_for(CHAT).text == messages.NO_PENDING_PAYOUT
        assert ledger.payouts == {}

    @pytest.mark.asyncio
    async def test_callback_flow_end_to_end(self, engine, ledger, sink, store):
        await register(engine, ledger, balance="0.50")

        await send(engine, callback_update(CHAT, "payout_ton_coin", update_id=2))
        assert (await store.get(str(CHAT))).step == PayoutStep.AWAITING_DETAILS

        await send(engine, text_update(CHAT, TON_ADDRESS, update_id=3))
        await send(engine, callback_update(CHAT, "confirm_payout", update_id=4))

        assert await store.get(str(CHAT)) is None
        assert len(ledger.payouts) == 1
        assert "Payout Request Confirmed" in sink.edits[-1]["text"]

    @pytest.mark.asyncio
    async def test_cancel_payout_callback(self, engine, ledger, sink, store):
        await register(engine, ledger, balance="0.50")
        await send(engine, callback_update(CHAT, "payout_ton_coin", update_id=2))

        await send(engine, callback_update(CHAT, "cancel_payout", update_id=3))

        assert await store.get(str(CHAT)) is None
        assert sink.edits[-1]["text"] == messages.PAYOUT_CANCELLED

    @pytest.mark.asyncio
    async def test_method_callback_for_unknown_user(self, engine, sink, store):
        response = await send(engine, callback_update(CHAT, "payout_ton_coin"))

        assert response.success is False
        assert sink.answers[-1]["text"] == messages.USER_NOT_FOUND
        assert await store.get(str(CHAT)) is None

    @pytest.mark.asyncio
    async def test_unknown_callback_is_acknowledged(self, engine, sink):
        response = await send(engine, callback_update(CHAT, "payout_paypal"))

        assert response.success is False
        assert sink.answers == [{"id": "cb-1", "text": None, "show_alert": False}]


class TestSessionLifecycle:
    @pytest.mark.asyncio
    async def test_new_flow_replaces_previous_session(self, engine, ledger, store):
        await register(engine, ledger, balance="1.00")
        await send(engine, text_update(CHAT, "📢 Channel members", update_id=2))
        assert (await store.get(str(CHAT))).flow == FlowKind.PROMOTION_CREATION

        await send(engine, text_update(CHAT, "💎 TON Coin", update_id=3))

        session = await store.get(str(CHAT))
        assert session.flow == FlowKind.PAYOUT
        assert len(store) == 1

    @pytest.mark.asyncio
    async def test_back_to_menu_clears_session(self, engine, ledger, sink, store):
        await register(engine, ledger, balance="1.00")
        await send(engine, text_update(CHAT, "💎 TON Coin", update_id=2))

        await send(engine, text_update(CHAT, "🔙 Back to Menu", update_id=3))

        assert await store.get(str(CHAT)) is None
        assert sink.last_for(CHAT).text == messages.BACK_TO_MENU

    @pytest.mark.asyncio
    async def test_sessions_are_per_chat(self, engine, ledger, store):
        await register(engine, ledger, chat_id=1, balance="1.00")
        await register(engine, ledger, chat_id=2, balance="1.00")

        await send(engine, text_update(1, "💎 TON Coin", update_id=3))
        await send(engine, text_update(2, "🤖 Bot", update_id=4))

        assert (await store.get("1")).flow == FlowKind.PAYOUT
        assert (await store.get("2")).step == PromotionStep.AWAITING_BOT_URL

    @pytest.mark.asyncio
    async def test_concurrent_updates_for_one_chat_do_not_interleave(self, engine, ledger, store):
        await register(engine, ledger, balance="1.00")

        await asyncio.gather(
            send(engine, text_update(CHAT, "💎 TON Coin", update_id=2)),
            send(engine, text_update(CHAT, "💎 TON Coin", update_id=3)),
        )

        session = await store.get(str(CHAT))
        assert session.step == PayoutStep.AWAITING_DETAILS
        assert len(store) == 1


class TestPromotionFlow:
    @pytest.mark.asyncio
    async def test_sub_type_opens_url_step(self, engine, ledger, sink, store):
        await register(engine, ledger)

        await send(engine, text_update(CHAT, "📢 Channel members", update_id=2))

        session = await store.get(str(CHAT))
        assert session.step == PromotionStep.AWAITING_CHANNEL_URL
        assert session.payload.ad_cost == Decimal("0.01")
        assert session.payload.total_slots == 1000
        assert "Instant Verify" in sink.last_for(CHAT).text

    @pytest.mark.asyncio
    async def test_invalid_url_leaves_session_unchanged(self, engine, ledger, sink, store):
        await register(engine, ledger, funding="1.00")
        await send(engine, text_update(CHAT, "🤖 Bot", update_id=2))
        before = await store.get(str(CHAT))

        await send(engine, text_update(CHAT, "https://example.com/bot", update_id=3))

        assert await store.get(str(CHAT)) is before
        assert "valid Telegram URL" in sink.last_for(CHAT).text
        assert ledger.promotions == {}

    @pytest.mark.asyncio
    async def test_insufficient_funding_clears_session(self, engine, ledger, sink, store):
        user = await register(engine, ledger, funding="0.005")
        await send(engine, text_update(CHAT, "📢 Channel members", update_id=2))

        await send(engine, text_update(CHAT, "https://t.me/my_channel", update_id=3))

        assert await store.get(str(CHAT)) is None
        assert user.funding_balance == Decimal("0.005")
        assert ledger.promotions == {}
        assert "enough balance to advertise" in sink.last_for(CHAT).text

    @pytest.mark.asyncio
    async def test_creates_promotion_debits_and_posts(self, engine, ledger, sink, store):
        user = await register(engine, ledger, funding="1.00")
        await send(engine, text_update(CHAT, "📢 Channel members", update_id=2))

        response = await send(engine, text_update(CHAT, "https://t.me/my_channel", update_id=3))

        assert response.success is True
        assert await store.get(str(CHAT)) is None
        assert user.funding_balance == Decimal("0.99")
        promotion = next(iter(ledger.promotions.values()))
        assert promotion.url == "https://t.me/my_channel"
        assert promotion.reward_amount == Decimal("0.00025")
        post = sink.last_for(CHANNEL_ID)
        assert post.reply_markup["inline_keyboard"][0][0]["url"].endswith(f"?start=claim_{promotion.id}")

    @pytest.mark.asyncio
    async def test_creation_failure_clears_session(self, engine, ledger, sink, store, monkeypatch):
        user = await register(engine, ledger, funding="1.00")
        await send(engine, text_update(CHAT, "🤖 Bot", update_id=2))

        async def broken(draft):
            raise RuntimeError("insert failed")

        monkeypatch.setattr(ledger, "create_promotion", broken)
        response = await send(engine, text_update(CHAT, "https://t.me/my_bot", update_id=3))

        assert response.success is False
        assert await store.get(str(CHAT)) is None
        assert user.funding_balance == Decimal("1.00")
        assert sink.last_for(CHAT).text == messages.PROMOTION_FAILURE

    @pytest.mark.asyncio
    async def test_missing_channel_skips_post(self, engine, ledger, sink, settings):
        settings.telegram_channel_id = None
        await register(engine, ledger, funding="1.00")
        await send(engine, text_update(CHAT, "🤖 Bot", update_id=2))

        response = await send(engine, text_update(CHAT, "https://t.me/my_bot", update_id=3))

        assert response.success is True
        assert sink.texts_for(CHANNEL_ID) == []


class TestReferrals:
    @pytest.mark.asyncio
    async def test_new_user_with_code_is_credited_and_referrer_notified(self, engine, ledger, sink):
        referrer = await register(engine, ledger, chat_id=100)

        await send(engine, text_update(200, f"/start {referrer.referral_code}", update_id=2, first_name="Bob"))

        new_user = await ledger.get_user_by_chat_id("200")
        referrals = list(ledger.referrals.values())
        assert len(referrals) == 1
        assert referrals[0].referrer_id == referrer.id
        assert referrals[0].referee_id == new_user.id
        assert any("Bob joined using your referral link" in text for text in sink.texts_for(100))

    @pytest.mark.asyncio
    async def test_replayed_start_credits_once(self, engine, ledger):
        referrer = await register(engine, ledger, chat_id=100)
        update = text_update(200, f"/start {referrer.referral_code}", update_id=2)

        await send(engine, update)
        await send(engine, update)

        assert await ledger.count_referrals(referrer.id) == 1

    @pytest.mark.asyncio
    async def test_existing_user_is_not_credited(self, engine, ledger):
        referrer = await register(engine, ledger, chat_id=100)
        await register(engine, ledger, chat_id=200)

        await send(engine, text_update(200, f"/start {referrer.referral_code}", update_id=3))

        assert ledger.referrals == {}


class TestAdminCommands:
    @pytest.mark.asyncio
    async def test_stats_for_admin(self, engine, ledger, sink):
        await register(engine, ledger, chat_id=int(ADMIN_CHAT_ID))

        await send(engine, text_update(int(ADMIN_CHAT_ID), "/stats", update_id=2))

        last = sink.last_for(ADMIN_CHAT_ID)
        assert "Application Stats" in last.text
        assert last.reply_markup["inline_keyboard"][0][0]["callback_data"] == "refresh_stats"

    @pytest.mark.asyncio
    async def test_stats_hidden_from_others(self, engine, sink):
        await send(engine, text_update(CHAT, "/stats"))

        assert sink.last_for(CHAT).text == messages.MENU_PROMPT

    @pytest.mark.asyncio
    async def test_refresh_stats_edits_message(self, engine, sink):
        await send(engine, callback_update(int(ADMIN_CHAT_ID), "refresh_stats", message_id=77))

        assert sink.edits[-1]["message_id"] == 77
        assert "Application Stats" in sink.edits[-1]["text"]

    @pytest.mark.asyncio
    async def test_broadcast_reaches_everyone(self, engine, ledger, sink):
        await register(engine, ledger, chat_id=int(ADMIN_CHAT_ID))
        await register(engine, ledger, chat_id=1)
        await register(engine, ledger, chat_id=2)
        sink.failing_chats.add("2")

        await send(engine, text_update(int(ADMIN_CHAT_ID), "/broadcast Maintenance tonight", update_id=9))
        await engine.drain()

        assert "Maintenance tonight" in sink.texts_for(1)
        assert "Maintenance tonight" in sink.texts_for(2)
        summary = sink.last_for(ADMIN_CHAT_ID).text
        assert "Successfully sent: 2" in summary
        assert "Failed: 1" in summary

    @pytest.mark.asyncio
    async def test_broadcast_from_non_admin_is_ignored(self, engine, ledger, sink):
        await register(engine, ledger, chat_id=1)
        await register(engine, ledger, chat_id=2)

        await send(engine, text_update(1, "/broadcast spam", update_id=3))
        await engine.drain()

        assert "spam" not in sink.texts_for(2)


class TestClaims:
    @pytest.mark.asyncio
    async def test_claim_link_schedules_verification(self, engine, ledger, sink):
        creator, _ = await ledger.upsert_user_by_chat_id("1", TelegramProfile(first_name="Creator"))
        promotion = await ledger.create_promotion(
            PromotionDraft(
                creator_id=creator.id,
                type="subscribe",
                title="Join",
                description="Join",
                url="https://t.me/news",
                reward_amount=Decimal("0.00025"),
                ad_cost=Decimal("0.01"),
                total_slots=10,
            )
        )

        await send(engine, text_update(CHAT, f"/start claim_{promotion.id}"))

        claimer = await ledger.get_user_by_chat_id(str(CHAT))
        assert engine.claim_scheduler.is_pending(promotion.id, claimer.id)
        assert "https://t.me/news" in sink.last_for(CHAT).text
        await engine.claim_scheduler.shutdown()

    @pytest.mark.asyncio
    async def test_claim_for_unknown_promotion(self, engine, sink):
        await send(engine, text_update(CHAT, "/start claim_missing"))

        assert sink.last_for(CHAT).text == messages.PROMOTION_NOT_FOUND
