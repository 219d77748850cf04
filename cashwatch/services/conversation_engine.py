"""Per-chat conversational state machine for the Telegram bot.

One inbound update is handled under the chat's session lock:

1. callback payloads (inline buttons)
2. user upsert (every message, idempotent by chat id)
3. fixed commands and button texts
4. free text as a promotion URL when a promotion session waits for one
5. free text as payment details when a payout session waits for them
6. anything else gets the default menu
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Awaitable, Callable, Optional

from cashwatch.config import Settings
from cashwatch.errors import InsufficientFundsError, ValidationError
from cashwatch.logging_config import LoggerAdapter, bind, get_logger
from cashwatch.schemas.telegram import (
    TelegramCallbackQuery,
    TelegramMessage,
    TelegramUpdate,
    TelegramWebhookResponse,
)
from cashwatch.services import keyboards, messages
from cashwatch.services.broadcast_service import is_admin, send_broadcast
from cashwatch.services.claim_scheduler import ClaimScheduler
from cashwatch.services.domain import DomainActions, PromotionDraft, TelegramProfile, User
from cashwatch.services.menu import CallbackAction, Command, ParsedCallback, match_command, parse_callback, parse_claim
from cashwatch.services.referral_service import credit_referral
from cashwatch.services.session_store import ConversationSession, PayoutPayload, PromotionPayload, SessionStore
from cashwatch.services.state_machine import FlowKind, PayoutStep, promotion_step_for
from cashwatch.services.telegram_service import MessageSink
from cashwatch.services.validators import (
    check_funds,
    check_payment_details,
    check_promotion_url,
    get_payment_method,
    meets_minimum,
)

logger = get_logger("conversation_engine")


@dataclass(frozen=True)
class PromotionType:
    type: str
    title: str
    ad_cost: Decimal
    reward_amount: Decimal
    total_slots: int
    instant_verify: bool = False


PROMOTION_TYPES = {
    Command.CHANNEL_MEMBERS: PromotionType(
        type="subscribe",
        title="Telegram: subscribe to the channel / join the chat",
        ad_cost=Decimal("0.01"),
        reward_amount=Decimal("0.00025"),
        total_slots=1000,
        instant_verify=True,
    ),
    Command.BOT_PROMOTION: PromotionType(
        type="bot",
        title="Telegram: launch the bot",
        ad_cost=Decimal("0.01"),
        reward_amount=Decimal("0.00035"),
        total_slots=1000,
    ),
}

PROMOTION_TITLES = {promotion_type.type: promotion_type.title for promotion_type in PROMOTION_TYPES.values()}


@dataclass
class Turn:
    chat_id: str
    user: User
    is_new_user: bool
    text: str
    session: Optional[ConversationSession]
    log: LoggerAdapter
    argument: Optional[str] = None


class ConversationEngine:
    def __init__(
        self,
        domain: DomainActions,
        sink: MessageSink,
        store: SessionStore,
        settings: Settings,
        claim_scheduler: Optional[ClaimScheduler] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.domain = domain
        self.sink = sink
        self.store = store
        self.settings = settings
        self.claim_scheduler = claim_scheduler or ClaimScheduler(
            domain, sink, delay_seconds=settings.claim_verify_delay_seconds
        )
        self._sleep = sleep
        self._background: set[asyncio.Task] = set()

        self._commands = {
            Command.START: self._handle_start,
            Command.STATS: self._handle_stats,
            Command.BROADCAST: self._handle_broadcast,
            Command.ACCOUNT: self._handle_account,
            Command.CASHOUT: self._handle_cashout,
            Command.SELECT_PAYMENT_METHOD: self._handle_payment_method_text,
            Command.AFFILIATES: self._handle_affiliates,
            Command.PROMOTION: self._handle_promotion_menu,
            Command.HOW_TO: self._handle_how_to,
            Command.ADD_FUNDS: self._handle_add_funds,
            Command.START_EARNING: self._handle_start_earning,
            Command.BACK_TO_MENU: self._handle_back_to_menu,
            Command.CHANNEL_MEMBERS: self._handle_promotion_type,
            Command.BOT_PROMOTION: self._handle_promotion_type,
            Command.CONFIRM: self._handle_confirm,
            Command.CANCEL: self._handle_cancel,
        }
        self._callbacks = {
            CallbackAction.REFRESH_STATS: self._callback_refresh_stats,
            CallbackAction.SELECT_PAYMENT_METHOD: self._callback_select_method,
            CallbackAction.CONFIRM_PAYOUT: self._callback_confirm_payout,
            CallbackAction.CANCEL_PAYOUT: self._callback_cancel_payout,
        }

    # Entry point

    async def handle_update(self, update: TelegramUpdate) -> TelegramWebhookResponse:
        chat_id = _chat_id_of(update)
        if chat_id is None:
            return TelegramWebhookResponse(success=True, message="No actionable content")

        try:
            async with self.store.lock(chat_id):
                if update.callback_query:
                    return await self._handle_callback(chat_id, update.callback_query)
                return await self._handle_message(chat_id, update.message)
        except Exception as e:
            logger.error(
                f"Failed to handle update: {e}",
                exc_info=True,
                extra={"context": {"chat_id": chat_id, "update_id": update.update_id}},
            )
            try:
                await self.sink.send_message(chat_id, messages.GENERIC_FAILURE, keyboards.build_main_keyboard())
            except Exception as send_error:
                logger.error(f"Failed to report failure to chat: {send_error}", extra={"context": {"chat_id": chat_id}})
            return TelegramWebhookResponse(success=False, message="Internal error")

    async def drain(self) -> None:
        """Wait for background work started by earlier updates (broadcasts)."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    # Messages

    async def _handle_message(self, chat_id: str, message: TelegramMessage) -> TelegramWebhookResponse:
        if message.from_user and message.from_user.is_bot:
            return TelegramWebhookResponse(success=True, message="Ignoring bot message")

        sender = message.from_user
        profile = TelegramProfile(
            first_name=sender.first_name if sender else None,
            last_name=sender.last_name if sender else None,
            username=sender.username if sender else None,
        )
        user, is_new_user = await self.domain.upsert_user_by_chat_id(chat_id, profile)

        text = (message.text or "").strip()
        parsed = match_command(text)
        session = await self.store.get(chat_id)
        log = bind(logger, chat_id=chat_id, user_id=user.id)
        turn = Turn(chat_id=chat_id, user=user, is_new_user=is_new_user, text=text, session=session, log=log)

        # Only an explicit confirm may act on a payout waiting for confirmation.
        if session and session.awaiting_confirmation and (parsed is None or parsed.command != Command.CONFIRM):
            await self.store.clear(chat_id)
            turn.session = None
            log.info("Pending payout discarded by other input")
            if parsed is None:
                await self._send_menu(chat_id, messages.PAYOUT_CANCELLED)
                return TelegramWebhookResponse(success=True, message="Payout cancelled")

        if parsed is not None:
            turn.argument = parsed.argument
            log.info("Command received", context={"command": parsed.command.name})
            return await self._commands[parsed.command](turn, parsed.command)

        if turn.session and turn.session.awaiting_url:
            return await self._submit_promotion_url(turn)

        if turn.session and turn.session.awaiting_payment_details:
            return await self._submit_payment_details(turn)

        await self._send_menu(chat_id, messages.MENU_PROMPT)
        return TelegramWebhookResponse(success=True, message="Unrecognized input")

    async def _send_menu(self, chat_id: str, text: str) -> None:
        await self.sink.send_message(chat_id, text, keyboards.build_main_keyboard())

    async def _notify_admin(self, text: str) -> None:
        admin_id = self.settings.telegram_admin_id
        if admin_id:
            await self.sink.send_message(str(admin_id), text)

    # Commands

    async def _handle_start(self, turn: Turn, _command: Command) -> TelegramWebhookResponse:
        promotion_id = parse_claim(turn.argument)
        if promotion_id:
            return await self._handle_claim(turn, promotion_id)

        if turn.argument:
            await credit_referral(self.domain, self.sink, turn.user, turn.is_new_user, turn.argument)

        await self.sink.send_message(
            turn.chat_id, messages.format_welcome(), keyboards.build_welcome_inline(self.settings.web_app_url)
        )
        await self._send_menu(turn.chat_id, messages.MENU_PROMPT)
        return TelegramWebhookResponse(success=True, message="Welcome sent")

    async def _handle_claim(self, turn: Turn, promotion_id: str) -> TelegramWebhookResponse:
        try:
            promotion = await self.domain.get_promotion(promotion_id)
            if promotion is None:
                await self._send_menu(turn.chat_id, messages.PROMOTION_NOT_FOUND)
                return TelegramWebhookResponse(success=True, message="Promotion not found")
            if not promotion.is_claimable:
                await self._send_menu(turn.chat_id, messages.PROMOTION_EXPIRED)
                return TelegramWebhookResponse(success=True, message="Promotion expired")
            if await self.domain.has_completed_task(promotion_id, turn.user.id):
                await self._send_menu(turn.chat_id, messages.PROMOTION_ALREADY_CLAIMED)
                return TelegramWebhookResponse(success=True, message="Already claimed")

            self.claim_scheduler.schedule(promotion_id, turn.user.id, turn.chat_id)
        except Exception as e:
            turn.log.error(f"Promotion claim failed: {e}", exc_info=True)
            await self._send_menu(turn.chat_id, messages.CLAIM_FAILURE)
            return TelegramWebhookResponse(success=False, message="Claim failed")

        await self._send_menu(
            turn.chat_id,
            messages.format_claim_instructions(promotion, self.claim_scheduler.delay_seconds),
        )
        return TelegramWebhookResponse(success=True, message="Claim scheduled")

    async def _handle_stats(self, turn: Turn, _command: Command) -> TelegramWebhookResponse:
        if not is_admin(turn.chat_id, self.settings.telegram_admin_id):
            await self._send_menu(turn.chat_id, messages.MENU_PROMPT)
            return TelegramWebhookResponse(success=True, message="Unrecognized input")

        stats = await self.domain.get_app_stats()
        await self.sink.send_message(turn.chat_id, messages.format_stats(stats), keyboards.build_stats_refresh_button())
        return TelegramWebhookResponse(success=True, message="Stats sent")

    async def _handle_broadcast(self, turn: Turn, _command: Command) -> TelegramWebhookResponse:
        if not is_admin(turn.chat_id, self.settings.telegram_admin_id) or not turn.argument:
            await self._send_menu(turn.chat_id, messages.MENU_PROMPT)
            return TelegramWebhookResponse(success=True, message="Unrecognized input")

        self._spawn(
            send_broadcast(
                self.domain,
                self.sink,
                turn.argument,
                caller_id=turn.chat_id,
                admin_id=self.settings.telegram_admin_id,
                delay_seconds=self.settings.broadcast_delay_seconds,
                sleep=self._sleep,
            )
        )
        await self._send_menu(turn.chat_id, "📢 Broadcast started. You'll get a summary when it finishes.")
        return TelegramWebhookResponse(success=True, message="Broadcast started")

    async def _handle_account(self, turn: Turn, _command: Command) -> TelegramWebhookResponse:
        friends = await self.domain.count_referrals(turn.user.id)
        referral_earnings = await self.domain.get_referral_earnings(turn.user.id)
        await self.sink.send_message(
            turn.chat_id,
            messages.format_account(turn.user, friends, referral_earnings),
            keyboards.build_payment_methods_inline(),
        )
        return TelegramWebhookResponse(success=True, message="Account sent")

    async def _handle_cashout(self, turn: Turn, _command: Command) -> TelegramWebhookResponse:
        balance = turn.user.balance
        if balance <= 0:
            await self._send_menu(turn.chat_id, messages.format_no_balance(balance))
            return TelegramWebhookResponse(success=True, message="No balance")

        await self.sink.send_message(
            turn.chat_id, messages.format_select_payment(balance), keyboards.build_payment_methods_keyboard()
        )
        return TelegramWebhookResponse(success=True, message="Payment methods sent")

    async def _handle_payment_method_text(self, turn: Turn, _command: Command) -> TelegramWebhookResponse:
        method = get_payment_method(turn.argument)
        session = await self._open_payout(turn.chat_id, turn.user, method)
        if session is None:
            await self._send_menu(turn.chat_id, messages.format_minimum_not_met(method, turn.user.balance))
            return TelegramWebhookResponse(success=True, message="Minimum not met")

        await self.sink.send_message(
            turn.chat_id,
            messages.format_details_request(method, session.payload.amount),
            keyboards.build_back_keyboard(),
        )
        return TelegramWebhookResponse(success=True, message="Awaiting payment details")

    async def _open_payout(self, chat_id: str, user: User, method) -> Optional[ConversationSession]:
        """Start a payout flow, replacing any earlier session; None when the balance is below the minimum."""
        await self.store.clear(chat_id)
        if not meets_minimum(user.balance, method):
            logger.info(
                "Payout minimum not met",
                extra={"context": {"chat_id": chat_id, "method": method.id, "balance": str(user.balance)}},
            )
            return None

        session = ConversationSession.open(
            FlowKind.PAYOUT,
            PayoutStep.AWAITING_DETAILS,
            PayoutPayload(method=method, amount=user.balance),
        )
        await self.store.set(chat_id, session)
        return session

    async def _handle_affiliates(self, turn: Turn, _command: Command) -> TelegramWebhookResponse:
        await self._send_menu(
            turn.chat_id, messages.format_affiliates(self.settings.bot_username, turn.user.referral_code)
        )
        return TelegramWebhookResponse(success=True, message="Affiliates sent")

    async def _handle_promotion_menu(self, turn: Turn, _command: Command) -> TelegramWebhookResponse:
        await self.sink.send_message(turn.chat_id, messages.PROMOTION_MENU, keyboards.build_promotion_types_keyboard())
        return TelegramWebhookResponse(success=True, message="Promotion menu sent")

    async def _handle_how_to(self, turn: Turn, _command: Command) -> TelegramWebhookResponse:
        await self._send_menu(turn.chat_id, messages.HOW_TO)
        return TelegramWebhookResponse(success=True, message="How-to sent")

    async def _handle_add_funds(self, turn: Turn, _command: Command) -> TelegramWebhookResponse:
        await self._send_menu(turn.chat_id, messages.format_add_funds(turn.user.funding_balance))
        return TelegramWebhookResponse(success=True, message="Add funds sent")

    async def _handle_start_earning(self, turn: Turn, _command: Command) -> TelegramWebhookResponse:
        await self._send_menu(turn.chat_id, messages.format_welcome())
        return TelegramWebhookResponse(success=True, message="Welcome sent")

    async def _handle_back_to_menu(self, turn: Turn, _command: Command) -> TelegramWebhookResponse:
        await self.store.clear(turn.chat_id)
        await self._send_menu(turn.chat_id, messages.BACK_TO_MENU)
        return TelegramWebhookResponse(success=True, message="Back to menu")

    async def _handle_promotion_type(self, turn: Turn, command: Command) -> TelegramWebhookResponse:
        promotion_type = PROMOTION_TYPES[command]
        session = ConversationSession.open(
            FlowKind.PROMOTION_CREATION,
            promotion_step_for(promotion_type.type),
            PromotionPayload(
                promotion_type=promotion_type.type,
                ad_cost=promotion_type.ad_cost,
                reward_amount=promotion_type.reward_amount,
                total_slots=promotion_type.total_slots,
            ),
        )
        await self.store.set(turn.chat_id, session)
        await self.sink.send_message(
            turn.chat_id,
            messages.format_promotion_prompt(
                promotion_type.title,
                promotion_type.ad_cost,
                self.settings.bot_username,
                promotion_type.instant_verify,
            ),
            keyboards.build_back_keyboard(),
        )
        return TelegramWebhookResponse(success=True, message="Awaiting promotion URL")

    async def _handle_confirm(self, turn: Turn, _command: Command) -> TelegramWebhookResponse:
        if not (turn.session and turn.session.awaiting_confirmation):
            await self._send_menu(turn.chat_id, messages.NO_PENDING_PAYOUT)
            return TelegramWebhookResponse(success=True, message="Nothing to confirm")
        return await self._confirm_payout(turn.chat_id, turn.user, turn.session)

    async def _handle_cancel(self, turn: Turn, _command: Command) -> TelegramWebhookResponse:
        await self.store.clear(turn.chat_id)
        await self._send_menu(turn.chat_id, messages.OPERATION_CANCELLED)
        return TelegramWebhookResponse(success=True, message="Cancelled")

    # Flow input

    async def _submit_payment_details(self, turn: Turn) -> TelegramWebhookResponse:
        session = turn.session
        method = session.payload.method
        try:
            details = check_payment_details(method, turn.text)
        except ValidationError as e:
            turn.log.info("Payment details rejected", context={"method": method.id})
            await self.sink.send_message(turn.chat_id, e.message, keyboards.build_back_keyboard())
            return TelegramWebhookResponse(success=True, message="Invalid payment details")

        confirmed = session.advance(PayoutStep.AWAITING_CONFIRMATION, details=details)
        await self.store.set(turn.chat_id, confirmed)
        await self.sink.send_message(
            turn.chat_id,
            messages.format_confirmation(method, confirmed.payload.amount, details),
            keyboards.build_confirmation_keyboard(),
        )
        return TelegramWebhookResponse(success=True, message="Awaiting confirmation")

    async def _confirm_payout(
        self,
        chat_id: str,
        user: User,
        session: ConversationSession,
        callback: Optional[TelegramCallbackQuery] = None,
    ) -> TelegramWebhookResponse:
        payload: PayoutPayload = session.payload
        try:
            result = await self.domain.create_payout_request(
                user.id, payload.amount, payload.method.id, payload.details
            )
        except Exception as e:
            logger.error(f"Payout creation failed: {e}", exc_info=True, extra={"context": {"chat_id": chat_id}})
            await self._reply(chat_id, messages.PAYOUT_FAILURE, callback, alert=True)
            return TelegramWebhookResponse(success=False, message="Payout failed")
        finally:
            await self.store.clear(chat_id)

        if not result.ok:
            logger.info(
                "Payout rejected by ledger",
                extra={"context": {"chat_id": chat_id, "error_code": result.error_code}},
            )
            await self._reply(chat_id, f"❌ {result.error}", callback, alert=True)
            return TelegramWebhookResponse(success=False, message=result.error)

        await self._reply(chat_id, messages.format_payout_success(payload.method), callback)
        await self._notify_admin(
            messages.format_admin_payout_notice(
                user, payload.method, payload.amount, payload.details, datetime.now(timezone.utc)
            )
        )
        return TelegramWebhookResponse(success=True, message="Payout requested")

    async def _submit_promotion_url(self, turn: Turn) -> TelegramWebhookResponse:
        try:
            url = check_promotion_url(turn.text)
        except ValidationError as e:
            await self.sink.send_message(turn.chat_id, e.message, keyboards.build_back_keyboard())
            return TelegramWebhookResponse(success=True, message="Invalid promotion URL")

        payload: PromotionPayload = turn.session.payload
        title = PROMOTION_TITLES[payload.promotion_type]
        try:
            try:
                check_funds(turn.user.funding_balance, payload.ad_cost)
            except InsufficientFundsError as e:
                await self._send_menu(turn.chat_id, messages.format_insufficient_funding(e.available, e.required))
                return TelegramWebhookResponse(success=True, message="Insufficient funds")

            promotion = await self.domain.create_promotion(
                PromotionDraft(
                    creator_id=turn.user.id,
                    type=payload.promotion_type,
                    title=title,
                    description=f"{title} ({url})",
                    url=url,
                    reward_amount=payload.reward_amount,
                    ad_cost=payload.ad_cost,
                    total_slots=payload.total_slots,
                )
            )
            await self.domain.deduct_funding_balance(turn.user.id, payload.ad_cost)
            await self._post_promotion(promotion)
        except Exception as e:
            turn.log.error(f"Promotion creation failed: {e}", exc_info=True)
            await self._send_menu(turn.chat_id, messages.PROMOTION_FAILURE)
            return TelegramWebhookResponse(success=False, message="Promotion failed")
        finally:
            await self.store.clear(turn.chat_id)

        turn.log.info("Promotion created", context={"promotion_id": promotion.id})
        await self._send_menu(
            turn.chat_id,
            messages.format_promotion_created(title, url, payload.reward_amount, payload.total_slots),
        )
        return TelegramWebhookResponse(success=True, message="Promotion created")

    async def _post_promotion(self, promotion) -> None:
        channel_id = self.settings.telegram_channel_id
        if not channel_id:
            logger.error("Missing TELEGRAM_CHANNEL_ID, promotion not posted", extra={"context": {"id": promotion.id}})
            return
        await self.sink.send_message(
            channel_id,
            messages.format_channel_post(promotion),
            keyboards.build_claim_button(self.settings.bot_username, promotion.id),
        )

    # Callbacks

    async def _handle_callback(self, chat_id: str, callback: TelegramCallbackQuery) -> TelegramWebhookResponse:
        parsed = parse_callback(callback.data)
        session = await self.store.get(chat_id)
        pending = session is not None and session.awaiting_confirmation
        if pending and (parsed is None or parsed.action != CallbackAction.CONFIRM_PAYOUT):
            await self.store.clear(chat_id)
            logger.info("Pending payout discarded by other callback", extra={"context": {"chat_id": chat_id}})

        if parsed is None:
            await self.sink.answer_callback(callback.id)
            return TelegramWebhookResponse(success=False, message=f"Unknown callback: {callback.data}")

        logger.info("Callback received", extra={"context": {"chat_id": chat_id, "action": parsed.action.name}})
        return await self._callbacks[parsed.action](chat_id, callback, parsed)

    async def _reply(
        self,
        chat_id: str,
        text: str,
        callback: Optional[TelegramCallbackQuery] = None,
        alert: bool = False,
    ) -> None:
        if callback is None:
            await self._send_menu(chat_id, text)
            return
        if alert:
            await self.sink.answer_callback(callback.id, text, show_alert=True)
        else:
            await self.sink.answer_callback(callback.id)
        if callback.message:
            await self.sink.edit_message(chat_id, callback.message.message_id, text)
        else:
            await self._send_menu(chat_id, text)

    async def _callback_refresh_stats(
        self, chat_id: str, callback: TelegramCallbackQuery, _parsed: ParsedCallback
    ) -> TelegramWebhookResponse:
        if not is_admin(chat_id, self.settings.telegram_admin_id):
            await self.sink.answer_callback(callback.id)
            return TelegramWebhookResponse(success=False, message="Not authorized")

        stats = await self.domain.get_app_stats()
        await self.sink.answer_callback(callback.id)
        if callback.message:
            await self.sink.edit_message(
                chat_id,
                callback.message.message_id,
                messages.format_stats(stats),
                keyboards.build_stats_refresh_button(),
            )
        return TelegramWebhookResponse(success=True, message="Stats refreshed")

    async def _callback_select_method(
        self, chat_id: str, callback: TelegramCallbackQuery, parsed: ParsedCallback
    ) -> TelegramWebhookResponse:
        user = await self.domain.get_user_by_chat_id(chat_id)
        if user is None:
            await self.sink.answer_callback(callback.id, messages.USER_NOT_FOUND, show_alert=True)
            return TelegramWebhookResponse(success=False, message="User not found")

        method = get_payment_method(parsed.argument)
        session = await self._open_payout(chat_id, user, method)
        if session is None:
            await self.sink.answer_callback(
                callback.id,
                messages.format_minimum_not_met(method, user.balance),
                show_alert=True,
            )
            return TelegramWebhookResponse(success=True, message="Minimum not met")

        await self.sink.answer_callback(callback.id, method.details_prompt)
        await self.sink.send_message(
            chat_id,
            messages.format_details_request(method, session.payload.amount),
            keyboards.build_back_keyboard(),
        )
        return TelegramWebhookResponse(success=True, message="Awaiting payment details")

    async def _callback_confirm_payout(
        self, chat_id: str, callback: TelegramCallbackQuery, _parsed: ParsedCallback
    ) -> TelegramWebhookResponse:
        session = await self.store.get(chat_id)
        if not (session and session.awaiting_confirmation):
            await self.sink.answer_callback(callback.id, messages.NO_PENDING_PAYOUT, show_alert=True)
            return TelegramWebhookResponse(success=False, message="Nothing to confirm")

        user = await self.domain.get_user_by_chat_id(chat_id)
        if user is None:
            await self.sink.answer_callback(callback.id, messages.USER_NOT_FOUND, show_alert=True)
            return TelegramWebhookResponse(success=False, message="User not found")
        return await self._confirm_payout(chat_id, user, session, callback)

    async def _callback_cancel_payout(
        self, chat_id: str, callback: TelegramCallbackQuery, _parsed: ParsedCallback
    ) -> TelegramWebhookResponse:
        await self.store.clear(chat_id)
        await self.sink.answer_callback(callback.id, "Payout request cancelled")
        if callback.message:
            await self.sink.edit_message(chat_id, callback.message.message_id, messages.PAYOUT_CANCELLED)
        return TelegramWebhookResponse(success=True, message="Cancelled")


def _chat_id_of(update: TelegramUpdate) -> Optional[str]:
    if update.callback_query:
        return str(update.callback_query.from_user.id)
    if update.message:
        return str(update.message.chat.id)
    return None
