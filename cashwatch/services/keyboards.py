from cashwatch.services.menu import CallbackAction, Command
from cashwatch.services.validators import PAYMENT_METHODS


def _reply_keyboard(rows: list[list[str]], one_time: bool = True) -> dict:
    return {
        "keyboard": [[{"text": label} for label in row] for row in rows],
        "resize_keyboard": True,
        "one_time_keyboard": one_time,
    }


def build_main_keyboard() -> dict:
    """Persistent main menu."""
    return _reply_keyboard(
        [
            [Command.ACCOUNT.value, Command.CASHOUT.value],
            [Command.AFFILIATES.value, Command.PROMOTION.value],
            [Command.HOW_TO.value, Command.ADD_FUNDS.value],
        ],
        one_time=False,
    )


def build_back_keyboard() -> dict:
    return _reply_keyboard([[Command.BACK_TO_MENU.value]])


def build_payment_methods_keyboard() -> dict:
    rows = [[method.label] for method in PAYMENT_METHODS]
    rows.append([Command.BACK_TO_MENU.value])
    return _reply_keyboard(rows)


def build_promotion_types_keyboard() -> dict:
    return _reply_keyboard(
        [
            [Command.CHANNEL_MEMBERS.value, Command.BOT_PROMOTION.value],
            [Command.BACK_TO_MENU.value],
        ]
    )


def build_confirmation_keyboard() -> dict:
    return _reply_keyboard(
        [
            [Command.CONFIRM.value, Command.CANCEL.value],
            [Command.BACK_TO_MENU.value],
        ]
    )


def build_payment_methods_inline() -> dict:
    return {
        "inline_keyboard": [
            [{"text": method.label, "callback_data": f"{CallbackAction.SELECT_PAYMENT_METHOD.value}{method.id}"}]
            for method in PAYMENT_METHODS
        ]
    }


def build_stats_refresh_button() -> dict:
    return {"inline_keyboard": [[{"text": "🔃 Refresh 🔄", "callback_data": CallbackAction.REFRESH_STATS.value}]]}


def build_welcome_inline(web_app_url: str) -> dict:
    return {
        "inline_keyboard": [
            [{"text": "🚀 Start Earning", "web_app": {"url": web_app_url}}],
            [
                {"text": "📢 Stay Updated", "url": "https://t.me/CashWatchNews"},
                {"text": "💬 Need Help?", "url": "https://t.me/CashWatchSupport"},
            ],
        ]
    }


def build_claim_button(bot_username: str, promotion_id: str) -> dict:
    claim_link = f"https://t.me/{bot_username}?start=claim_{promotion_id}"
    return {"inline_keyboard": [[{"text": "🔘 Grab Your Free Crypto Now", "url": claim_link}]]}
