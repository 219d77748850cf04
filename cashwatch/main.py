from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from cashwatch.config import require_bot_token, settings
from cashwatch.dependencies import get_runtime, set_runtime
from cashwatch.errors import ConfigurationError
from cashwatch.logging_config import get_logger, setup_logging
from cashwatch.routers import admin, push, telegram_webhook
from cashwatch.services.telegram_service import TelegramService

setup_logging(settings.log_level)

logger = get_logger("main")

app = FastAPI(
    title="CashWatch API",
    description="Telegram bot webhook and live push channel for CashWatch",
    version="0.1.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(telegram_webhook.router)
app.include_router(push.router)
app.include_router(admin.router)


@app.on_event("startup")
async def register_webhook() -> None:
    runtime = get_runtime()
    try:
        token = require_bot_token(runtime.settings)
    except ConfigurationError as e:
        logger.error(f"{e.message}; the bot cannot reply until it is set")
        return

    if not runtime.settings.telegram_webhook_url:
        logger.info("TELEGRAM_WEBHOOK_URL not set, skipping webhook registration")
        return

    registered = await TelegramService(token).set_webhook(
        runtime.settings.telegram_webhook_url,
        secret_token=runtime.settings.telegram_webhook_secret,
    )
    if not registered:
        logger.error("Webhook registration failed", extra={"context": {"url": runtime.settings.telegram_webhook_url}})


@app.on_event("shutdown")
async def stop_runtime() -> None:
    await get_runtime().shutdown()
    set_runtime(None)


@app.get("/health")
async def health():
    runtime = get_runtime()
    return {"status": "ok", "push_connections": runtime.gateway.connection_count()}
