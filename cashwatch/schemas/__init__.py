from cashwatch.schemas.push import AuthFrame, PushFrame, SessionTokenResponse, parse_outbound
from cashwatch.schemas.telegram import TelegramUpdate, TelegramWebhookResponse

__all__ = ["AuthFrame", "PushFrame", "SessionTokenResponse", "parse_outbound", "TelegramUpdate", "TelegramWebhookResponse"]
