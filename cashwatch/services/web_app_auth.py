"""Telegram WebApp initData verification and short-lived push session tokens."""

import hashlib
import hmac
import json
import secrets
import time
from dataclasses import dataclass
from typing import Callable, Optional
from urllib.parse import parse_qsl, urlencode

from cashwatch.errors import AuthError
from cashwatch.logging_config import get_logger

logger = get_logger("web_app_auth")

INIT_DATA_MAX_AGE_SECONDS = 24 * 60 * 60


def _secret_key(bot_token: str) -> bytes:
    return hmac.new(b"WebAppData", bot_token.encode("utf-8"), hashlib.sha256).digest()


def _data_check_string(fields: dict[str, str]) -> str:
    return "\n".join(f"{key}={fields[key]}" for key in sorted(fields) if key != "hash")


def sign_init_data(fields: dict[str, str], bot_token: str) -> str:
    """Build a signed initData query string, the way Telegram hands it to a WebApp."""
    digest = hmac.new(_secret_key(bot_token), _data_check_string(fields).encode("utf-8"), hashlib.sha256).hexdigest()
    return urlencode({**fields, "hash": digest})


def verify_init_data(
    init_data: Optional[str],
    bot_token: str,
    *,
    max_age_seconds: int = INIT_DATA_MAX_AGE_SECONDS,
    now: Optional[float] = None,
) -> int:
    """Return the Telegram user id carried by a valid initData string.

    Raises AuthError when the signature, age or user payload is wrong.
    """
    if not init_data:
        raise AuthError("Missing init data")

    fields = dict(parse_qsl(init_data, keep_blank_values=True))
    provided = fields.get("hash")
    if not provided:
        raise AuthError("Missing init data hash")

    expected = hmac.new(
        _secret_key(bot_token), _data_check_string(fields).encode("utf-8"), hashlib.sha256
    ).hexdigest()
    if not hmac.compare_digest(expected, provided):
        raise AuthError("Invalid init data signature")

    try:
        auth_date = int(fields.get("auth_date", "0"))
    except ValueError:
        raise AuthError("Invalid auth_date")
    current = time.time() if now is None else now
    if auth_date <= 0 or current - auth_date > max_age_seconds:
        raise AuthError("Init data expired")

    try:
        user = json.loads(fields.get("user") or "{}")
        return int(user["id"])
    except (ValueError, KeyError, TypeError):
        raise AuthError("Init data has no user")


@dataclass
class IssuedToken:
    user_id: str
    expires_at: float


class SessionTokenIssuer:
    """Single-use opaque tokens that bind a push connection to a user."""

    def __init__(self, ttl_seconds: int = 60, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._tokens: dict[str, IssuedToken] = {}

    def issue(self, user_id: str) -> str:
        self._prune()
        token = secrets.token_urlsafe(32)
        self._tokens[token] = IssuedToken(user_id=user_id, expires_at=self._clock() + self.ttl_seconds)
        return token

    def redeem(self, token: Optional[str]) -> str:
        """Consume token and return its user id; raises AuthError when unknown, used or expired."""
        issued = self._tokens.pop(token, None) if token else None
        if issued is None:
            raise AuthError("Invalid session token")
        if issued.expires_at < self._clock():
            raise AuthError("Session token expired")
        return issued.user_id

    def _prune(self) -> None:
        now = self._clock()
        expired = [token for token, issued in self._tokens.items() if issued.expires_at < now]
        for token in expired:
            del self._tokens[token]

    def __len__(self) -> int:
        return len(self._tokens)
