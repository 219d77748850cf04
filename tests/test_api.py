import json
import time
from decimal import Decimal

import pytest
from factories import ADMIN_CHAT_ID, text_update
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from cashwatch.dependencies import build_runtime, set_runtime
from cashwatch.main import app
from cashwatch.schemas.telegram import TelegramUpdate
from cashwatch.services.domain import PayoutRequest, Promotion
from cashwatch.services.push_gateway import AUTH_FAILED_CLOSE_CODE
from cashwatch.services.push_client import INIT_DATA_HEADER
from cashwatch.services.web_app_auth import sign_init_data

ADMIN_HEADERS = {"X-Admin-Token": "admin-secret"}


@pytest.fixture
def runtime(settings, sink):
    runtime = build_runtime(settings, sink=sink)
    set_runtime(runtime)
    yield runtime
    set_runtime(None)


@pytest.fixture
def client(runtime):
    with TestClient(app) as client:
        yield client


def register(client, runtime, chat_id=100):
    response = client.post("/telegram-webhook", json=text_update(chat_id, "/start"))
    assert response.json()["success"] is True
    return next(user for user in runtime.ledger.users.values() if user.chat_id == str(chat_id))


def init_data_for(chat_id, bot_token="123456:TEST-TOKEN"):
    return sign_init_data(
        {"auth_date": str(int(time.time())), "user": json.dumps({"id": chat_id, "first_name": "Alice"})},
        bot_token,
    )


class TestTelegramWebhook:
    def test_update_schema_reads_from_alias(self):
        update = TelegramUpdate(**text_update(100, "hi"))
        assert update.message.from_user.id == 100
        assert update.message.chat.id == 100

    def test_start_registers_user(self, client, runtime, sink):
        user = register(client, runtime)

        assert user.first_name == "Alice"
        assert sink.texts_for(100)

    def test_undecodable_payload(self, client):
        response = client.post(
            "/telegram-webhook", content=b"not json", headers={"Content-Type": "application/json"}
        )

        assert response.status_code == 200
        assert response.json() == {"success": False, "message": "Invalid telegram payload"}

    def test_unsupported_update(self, client):
        response = client.post("/telegram-webhook", json={"message": "oops"})

        assert response.json() == {"success": False, "message": "Unsupported update"}

    def test_update_without_content(self, client, sink):
        response = client.post("/telegram-webhook", json={"update_id": 7})

        assert response.json()["success"] is True
        assert sink.sent == []

    def test_secret_token_is_checked(self, settings, sink):
        set_runtime(build_runtime(settings.model_copy(update={"telegram_webhook_secret": "s3cret"}), sink=sink))
        try:
            with TestClient(app) as client:
                denied = client.post("/telegram-webhook", json=text_update(100, "/start"))
                allowed = client.post(
                    "/telegram-webhook",
                    json=text_update(100, "/start"),
                    headers={"X-Telegram-Bot-Api-Secret-Token": "s3cret"},
                )
        finally:
            set_runtime(None)

        assert denied.status_code == 401
        assert allowed.status_code == 200


class TestAdminApi:
    def test_requires_token(self, client):
        assert client.post("/admin/payouts/x/approve").status_code == 401
        assert client.post("/admin/payouts/x/approve", headers={"X-Admin-Token": "nope"}).status_code == 401

    def test_token_not_configured(self, settings, sink):
        set_runtime(build_runtime(settings.model_copy(update={"admin_api_token": None}), sink=sink))
        try:
            with TestClient(app) as client:
                response = client.post("/admin/payouts/x/approve", headers=ADMIN_HEADERS)
        finally:
            set_runtime(None)

        assert response.status_code == 500

    def test_approve_payout_notifies_user(self, client, runtime, sink):
        user = register(client, runtime)
        runtime.ledger.payouts["p-1"] = PayoutRequest(
            id="p-1", user_id=user.id, amount=Decimal("0.5"), method_id="polygon", details="0x" + "a" * 40
        )

        response = client.post("/admin/payouts/p-1/approve", headers=ADMIN_HEADERS)

        assert response.status_code == 200
        assert response.json()["status"] == "approved"
        assert "has been approved" in sink.last_for(100).text

        again = client.post("/admin/payouts/p-1/approve", headers=ADMIN_HEADERS)
        assert again.status_code == 409

    def test_reject_payout_refunds(self, client, runtime):
        user = register(client, runtime)
        runtime.ledger.payouts["p-1"] = PayoutRequest(
            id="p-1", user_id=user.id, amount=Decimal("0.5"), method_id="polygon", details="0x" + "a" * 40
        )

        response = client.post("/admin/payouts/p-1/reject", headers=ADMIN_HEADERS)

        assert response.json()["status"] == "rejected"
        assert user.balance == Decimal("0.5")

    def test_unknown_payout(self, client):
        assert client.post("/admin/payouts/missing/approve", headers=ADMIN_HEADERS).status_code == 404

    def test_reject_promotion_without_refund(self, client, runtime, sink):
        user = register(client, runtime)
        runtime.ledger.promotions["promo-1"] = Promotion(
            id="promo-1",
            creator_id=user.id,
            type="subscribe",
            title="Join us",
            description="",
            url="https://t.me/example",
            reward_amount=Decimal("0.00025"),
            ad_cost=Decimal("0.01"),
            total_slots=1000,
        )

        response = client.post("/admin/promotions/promo-1/reject?refund=false", headers=ADMIN_HEADERS)

        assert response.json()["status"] == "rejected"
        assert user.funding_balance == Decimal("0")
        assert "has been rejected." in sink.last_for(100).text

    def test_delete_task_with_refund(self, client, runtime, sink):
        user = register(client, runtime)
        runtime.ledger.promotions["promo-1"] = Promotion(
            id="promo-1",
            creator_id=user.id,
            type="bot",
            title="Try the bot",
            description="",
            url="https://t.me/examplebot",
            reward_amount=Decimal("0.00035"),
            ad_cost=Decimal("0.01"),
            total_slots=1000,
        )

        response = client.delete("/admin/tasks/promo-1?refund=true", headers=ADMIN_HEADERS)

        assert response.status_code == 200
        assert "promo-1" not in runtime.ledger.promotions
        assert user.funding_balance == Decimal("0.01")
        assert "deleted by admin" in sink.last_for(100).text

    def test_grant_reward(self, client, runtime):
        user = register(client, runtime)

        response = client.post(f"/admin/users/{user.id}/rewards", json={"amount": "0.05"}, headers=ADMIN_HEADERS)

        assert response.json()["balance"] == "0.05"
        assert client.post(
            "/admin/users/missing/rewards", json={"amount": "0.05"}, headers=ADMIN_HEADERS
        ).status_code == 404
        assert client.post(
            f"/admin/users/{user.id}/rewards", json={"amount": "-1"}, headers=ADMIN_HEADERS
        ).status_code == 422

    def test_credit_funding_enables_promotion(self, client, runtime):
        user = register(client, runtime)

        response = client.post(f"/admin/users/{user.id}/funding", json={"amount": "0.05"}, headers=ADMIN_HEADERS)

        assert response.status_code == 200
        assert response.json()["balance"] == "0.05"
        assert user.funding_balance == Decimal("0.05")

        client.post("/telegram-webhook", json=text_update(100, "📢 Channel members", update_id=2))
        client.post("/telegram-webhook", json=text_update(100, "https://t.me/my_channel", update_id=3))

        assert len(runtime.ledger.promotions) == 1
        assert user.funding_balance == Decimal("0.04")

    def test_credit_funding_unknown_user_or_bad_amount(self, client, runtime):
        user = register(client, runtime)

        assert client.post(
            "/admin/users/missing/funding", json={"amount": "1"}, headers=ADMIN_HEADERS
        ).status_code == 404
        assert client.post(
            f"/admin/users/{user.id}/funding", json={"amount": "0"}, headers=ADMIN_HEADERS
        ).status_code == 422

    def test_broadcast(self, client, runtime, sink):
        register(client, runtime, 100)
        register(client, runtime, 200)

        response = client.post("/admin/broadcast", json={"text": "Hello all"}, headers=ADMIN_HEADERS)

        assert response.status_code == 202
        assert response.json() == {"success": True, "recipients": 2}
        assert "Hello all" in sink.texts_for(100)
        assert "Hello all" in sink.texts_for(200)
        assert sink.texts_for(ADMIN_CHAT_ID)


class TestPushApi:
    def test_session_token_for_known_user(self, client, runtime):
        register(client, runtime)

        response = client.get("/api/auth/session-token", headers={INIT_DATA_HEADER: init_data_for(100)})

        assert response.status_code == 200
        body = response.json()
        assert body["expiresIn"] == runtime.tokens.ttl_seconds
        assert body["sessionToken"]

    def test_session_token_rejects_bad_init_data(self, client, runtime):
        register(client, runtime)

        response = client.get(
            "/api/auth/session-token", headers={INIT_DATA_HEADER: init_data_for(100, bot_token="1:OTHER")}
        )
        assert response.status_code == 401
        assert client.get("/api/auth/session-token").status_code == 401

    def test_session_token_unknown_user(self, client):
        response = client.get("/api/auth/session-token", headers={INIT_DATA_HEADER: init_data_for(555)})

        assert response.status_code == 404

    def test_socket_receives_account_events(self, client, runtime):
        user = register(client, runtime)
        token = client.get("/api/auth/session-token", headers={INIT_DATA_HEADER: init_data_for(100)}).json()[
            "sessionToken"
        ]

        with client.websocket_connect("/ws") as ws:
            ws.send_json({"type": "auth", "sessionToken": token})
            assert ws.receive_json() == {"type": "connected"}

            ws.send_json({"type": "ping"})
            assert ws.receive_json() == {"type": "pong"}

            client.post(f"/admin/users/{user.id}/rewards", json={"amount": "0.05"}, headers=ADMIN_HEADERS)
            assert ws.receive_json() == {"type": "ad_reward", "amount": "0.05"}

    def test_socket_rejects_forged_token(self, client):
        with client.websocket_connect("/ws") as ws:
            ws.send_json({"type": "auth", "sessionToken": "forged"})
            assert ws.receive_json() == {"type": "auth_error", "message": "Invalid session token"}
            with pytest.raises(WebSocketDisconnect) as exc_info:
                ws.receive_json()

        assert exc_info.value.code == AUTH_FAILED_CLOSE_CODE


def test_health(client):
    assert client.get("/health").json() == {"status": "ok", "push_connections": 0}
