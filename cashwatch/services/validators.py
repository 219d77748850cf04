"""Pure checks for user-supplied flow input."""

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Callable, Optional

from cashwatch.errors import InsufficientFundsError, ValidationError

TELEGRAM_URL_PREFIXES = ("https://t.me/", "http://t.me/")


@dataclass(frozen=True)
class PaymentMethod:
    id: str
    name: str
    emoji: str
    min_withdrawal: Decimal
    details_prompt: str
    error_message: str

    @property
    def label(self) -> str:
        """Reply-keyboard button text."""
        return f"{self.emoji} {self.name}"


def _is_telegram_username(details: str) -> bool:
    return bool(details) and not details.startswith("@")


def _is_polygon_address(details: str) -> bool:
    return details.startswith("0x") and len(details) == 42


def _is_ton_address(details: str) -> bool:
    return details.startswith(("EQ", "UQ")) and len(details) == 48


def _is_litecoin_address(details: str) -> bool:
    return details.startswith(("L", "M")) and 26 <= len(details) <= 35


PAYMENT_METHODS: tuple[PaymentMethod, ...] = (
    PaymentMethod(
        id="telegram_stars",
        name="Telegram Stars",
        emoji="💫",
        min_withdrawal=Decimal("0.05"),
        details_prompt="Please enter your Telegram username (without @):",
        error_message="❌ Please enter a valid Telegram username without the @ symbol.",
    ),
    PaymentMethod(
        id="tether_polygon",
        name="Tether (Polygon)",
        emoji="🔶",
        min_withdrawal=Decimal("0.50"),
        details_prompt="Please enter your Polygon wallet address:",
        error_message="❌ Please enter a valid Polygon wallet address (starts with 0x and is 42 characters long).",
    ),
    PaymentMethod(
        id="ton_coin",
        name="TON Coin",
        emoji="💎",
        min_withdrawal=Decimal("0.10"),
        details_prompt="Please enter your TON wallet address:",
        error_message="❌ Please enter a valid TON wallet address (starts with EQ or UQ and is 48 characters long).",
    ),
    PaymentMethod(
        id="litecoin",
        name="Litecoin",
        emoji="🪙",
        min_withdrawal=Decimal("0.25"),
        details_prompt="Please enter your Litecoin wallet address:",
        error_message="❌ Please enter a valid Litecoin address (starts with L or M and is 26-35 characters long).",
    ),
)

DETAIL_VALIDATORS: dict[str, Callable[[str], bool]] = {
    "telegram_stars": _is_telegram_username,
    "tether_polygon": _is_polygon_address,
    "ton_coin": _is_ton_address,
    "litecoin": _is_litecoin_address,
}


def get_payment_method(method_id: str) -> Optional[PaymentMethod]:
    return next((method for method in PAYMENT_METHODS if method.id == method_id), None)


def get_payment_method_by_label(text: str) -> Optional[PaymentMethod]:
    return next((method for method in PAYMENT_METHODS if method.label == text), None)


def is_valid_payment_details(method: PaymentMethod, details: str) -> bool:
    details = (details or "").strip()
    validator = DETAIL_VALIDATORS.get(method.id)
    if validator is None:
        return len(details) > 0
    return validator(details)


def check_payment_details(method: PaymentMethod, details: str) -> str:
    """Return the normalized details or raise ValidationError with the method's hint."""
    normalized = (details or "").strip()
    if not is_valid_payment_details(method, normalized):
        raise ValidationError(method.error_message)
    return normalized


def is_valid_promotion_url(url: str) -> bool:
    return (url or "").strip().startswith(TELEGRAM_URL_PREFIXES)


def check_promotion_url(url: str) -> str:
    normalized = (url or "").strip()
    if not is_valid_promotion_url(normalized):
        raise ValidationError("❌ Please enter a valid Telegram URL (should start with https://t.me/)")
    return normalized


def to_decimal(value) -> Decimal:
    if value is None:
        return Decimal("0")
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return Decimal("0")


def meets_minimum(balance, method: PaymentMethod) -> bool:
    return to_decimal(balance) >= method.min_withdrawal


def check_funds(balance, cost) -> Decimal:
    available = to_decimal(balance)
    required = to_decimal(cost)
    if available < required:
        raise InsufficientFundsError("Insufficient funding balance", available=available, required=required)
    return available
