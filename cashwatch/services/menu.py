"""Closed set of recognised inputs: reply-keyboard buttons, slash commands and callback payloads."""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from cashwatch.services.validators import get_payment_method, get_payment_method_by_label


class Command(str, Enum):
    START = "/start"
    STATS = "/stats"
    BROADCAST = "/broadcast"
    ACCOUNT = "👤 Account"
    CASHOUT = "🏦 Cashout"
    AFFILIATES = "👥 Affiliates"
    PROMOTION = "📈 Promotion"
    HOW_TO = "⁉️ How-to"
    ADD_FUNDS = "💵 Add funds"
    START_EARNING = "🏠 Start Earning"
    BACK_TO_MENU = "🔙 Back to Menu"
    CHANNEL_MEMBERS = "📢 Channel members"
    BOT_PROMOTION = "🤖 Bot"
    CONFIRM = "✅ CONFIRM"
    CANCEL = "❌ CANCEL"
    SELECT_PAYMENT_METHOD = "select_payment_method"


class CallbackAction(str, Enum):
    REFRESH_STATS = "refresh_stats"
    SELECT_PAYMENT_METHOD = "payout_"
    CONFIRM_PAYOUT = "confirm_payout"
    CANCEL_PAYOUT = "cancel_payout"


BUTTON_COMMANDS = {
    command.value: command
    for command in Command
    if not command.value.startswith("/") and command is not Command.SELECT_PAYMENT_METHOD
}

SLASH_COMMANDS = {
    Command.START.value: Command.START,
    Command.STATS.value: Command.STATS,
    Command.BROADCAST.value: Command.BROADCAST,
}


@dataclass(frozen=True)
class ParsedInput:
    command: Command
    argument: Optional[str] = None


@dataclass(frozen=True)
class ParsedCallback:
    action: CallbackAction
    argument: Optional[str] = None


def match_command(text: str) -> Optional[ParsedInput]:
    """Match text against the fixed command set; free text yields None."""
    text = (text or "").strip()
    if not text:
        return None

    if text.startswith("/"):
        head, _, rest = text.partition(" ")
        # "/start@CashWatchBot payload" in group chats
        head = head.split("@", 1)[0].lower()
        command = SLASH_COMMANDS.get(head)
        if command is None:
            return None
        return ParsedInput(command, rest.strip() or None)

    command = BUTTON_COMMANDS.get(text)
    if command is not None:
        return ParsedInput(command)

    method = get_payment_method_by_label(text)
    if method is not None:
        return ParsedInput(Command.SELECT_PAYMENT_METHOD, method.id)
    return None


def parse_callback(data: Optional[str]) -> Optional[ParsedCallback]:
    if not data:
        return None
    for action in (CallbackAction.REFRESH_STATS, CallbackAction.CONFIRM_PAYOUT, CallbackAction.CANCEL_PAYOUT):
        if data == action.value:
            return ParsedCallback(action)
    if data.startswith(CallbackAction.SELECT_PAYMENT_METHOD.value):
        method_id = data[len(CallbackAction.SELECT_PAYMENT_METHOD.value) :]
        if get_payment_method(method_id) is not None:
            return ParsedCallback(CallbackAction.SELECT_PAYMENT_METHOD, method_id)
    return None


CLAIM_PREFIX = "claim_"


def parse_claim(argument: Optional[str]) -> Optional[str]:
    """Promotion id from a "/start claim_<id>" deep link."""
    if argument and argument.startswith(CLAIM_PREFIX):
        promotion_id = argument[len(CLAIM_PREFIX) :].strip()
        return promotion_id or None
    return None
