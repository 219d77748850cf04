import pytest
from factories import ADMIN_CHAT_ID, CHANNEL_ID, RecordingSink

from cashwatch.config import Settings
from cashwatch.services.conversation_engine import ConversationEngine
from cashwatch.services.ledger import InMemoryLedger
from cashwatch.services.session_store import InMemorySessionStore


@pytest.fixture
def settings():
    return Settings(
        telegram_bot_token="123456:TEST-TOKEN",
        telegram_admin_id=ADMIN_CHAT_ID,
        telegram_channel_id=CHANNEL_ID,
        telegram_webhook_url=None,
        telegram_webhook_secret=None,
        admin_api_token="admin-secret",
        web_app_url="https://app.example.com",
        broadcast_delay_seconds=0,
        claim_verify_delay_seconds=0,
    )


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def ledger():
    return InMemoryLedger()


@pytest.fixture
def store():
    return InMemorySessionStore()


@pytest.fixture
def engine(ledger, sink, store, settings):
    return ConversationEngine(ledger, sink, store, settings)
