from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings

from cashwatch.errors import ConfigurationError


class Settings(BaseSettings):
    telegram_bot_token: Optional[str] = None
    telegram_admin_id: Optional[str] = None
    telegram_channel_id: Optional[str] = None
    telegram_webhook_url: Optional[str] = None
    telegram_webhook_secret: Optional[str] = None
    bot_username: str = "CashWatchBot"
    web_app_url: str = "https://cashwatch.onrender.com"
    admin_api_token: Optional[str] = None

    session_token_ttl_seconds: int = 60
    push_auth_timeout_seconds: float = 30.0
    push_send_timeout_seconds: float = 5.0
    push_queue_size: int = 100
    broadcast_delay_seconds: float = 0.1
    claim_verify_delay_seconds: float = 3.0

    cors_allow_origins: str = "*"
    log_level: str = "INFO"
    debug: bool = False

    class Config:
        env_file = ".env"
        extra = "ignore"

    @property
    def cors_origins(self) -> list[str]:
        origins = [origin.strip() for origin in self.cors_allow_origins.split(",") if origin.strip()]
        return origins or ["*"]


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()


def require_bot_token(current: Optional[Settings] = None) -> str:
    """Return the bot token or raise ConfigurationError when it is not configured."""
    token = (current or settings).telegram_bot_token
    if not token:
        raise ConfigurationError("TELEGRAM_BOT_TOKEN is not configured")
    return token
