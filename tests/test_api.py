import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from orderflow.core.database import get_db
from orderflow.deps import get_conversation_flow, get_lock_service, get_messaging_service
from orderflow.fsm import states
from orderflow.fsm.engine import ConversationFlow
from orderflow.models.conversation import Conversation
from orderflow.models.message_log import MessageLog
from orderflow.models.order import Order
from orderflow.models.order_intent import OrderIntent
from orderflow.models.order_payment import OrderPayment
from orderflow.models.whatsapp_config import WhatsAppConfig
from orderflow.routers.inbox import router as inbox_router
from orderflow.routers.internal_metrics import router as internal_metrics_router
from orderflow.routers.orders import router as orders_router
from orderflow.routers.payments import router as payments_router
from orderflow.routers.simulator import router as simulator_router
from orderflow.routers.webhook import router as webhook_router
from orderflow.services import inbound
from orderflow.services.conversation_locks import ConversationLockService
from orderflow.services.conversation_mutex import InMemoryConversationMutex
from orderflow.whatsapp.mock_provider import MockWhatsAppProvider
from orderflow.whatsapp.service import MessagingService
from tests.fixtures_data import CLOUD_TEXT_WEBHOOK, CUSTOMER_PHONE, LOCATION_NEAR


class _Harness:
    def __init__(self, client, provider):
        self.client = client
        self.provider = provider

    def say(self, text="", **extra):
        body = {"phone": CUSTOMER_PHONE, "text": text, **extra}
        response = self.client.post("/simulator/1/messages", json=body)
        assert response.status_code == 200
        return response.json()


def _build_client(db):
    app = FastAPI()
    for router in (
        webhook_router,
        simulator_router,
        payments_router,
        orders_router,
        inbox_router,
        internal_metrics_router,
    ):
        app.include_router(router)

    provider = MockWhatsAppProvider()
    messaging = MessagingService(mock_provider=provider)
    flow = ConversationFlow()
    locks = ConversationLockService(ttl_seconds=60)
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_conversation_flow] = lambda: flow
    app.dependency_overrides[get_messaging_service] = lambda: messaging
    app.dependency_overrides[get_lock_service] = lambda: locks
    return _Harness(TestClient(app), provider)


@pytest.fixture
def api(db):
    return _build_client(db)


def _confirmed_order(api):
    api.say("2 kola")
    api.say("evet")
    api.say("evet")
    api.say(kind="location", **LOCATION_NEAR)
    return api.say(kind="interactive", selection_id="pay_cash", selection_title="Nakit")


def test_simulator_runs_the_flow_and_delivers_replies(api, db):
    result = api.say("2 kola")

    assert result["status"] == "ok"
    assert result["phase"] == states.ORDER_COLLECTING
    assert "Kola" in result["messages"][0]["text"]
    assert len(api.provider.sent) == len(result["messages"])
    directions = [log.direction for log in db.query(MessageLog).order_by(MessageLog.id).all()]
    assert directions[0] == "in"
    assert "out" in directions


def test_simulator_unknown_tenant_is_404(api):
    response = api.client.post("/simulator/99/messages", json={"phone": CUSTOMER_PHONE, "text": "merhaba"})

    assert response.status_code == 404


def test_simulator_full_order_over_http(api, db):
    result = _confirmed_order(api)

    assert result["phase"] == states.ORDER_CONFIRMED
    order = db.query(Order).filter(Order.order_number.isnot(None)).one()
    assert order.status == "PENDING_CONFIRMATION"

    response = api.client.get(f"/api/orders/1/{order.id}")
    assert response.status_code == 200
    body = response.json()
    assert body["order_number"] == 1
    assert body["items"][0]["name"] == "Kola"


def test_webhook_verification(api, db):
    params = {"hub.mode": "subscribe", "hub.verify_token": "tenant-secret", "hub.challenge": "12345"}
    assert api.client.get("/api/whatsapp/1/webhook", params=params).status_code == 403

    db.add(WhatsAppConfig(tenant_id=1, provider="cloud", verify_token="tenant-secret"))
    db.commit()

    response = api.client.get("/api/whatsapp/1/webhook", params=params)
    assert response.status_code == 200
    assert response.text == "12345"


def test_webhook_deduplicates_provider_message_ids(api, db):
    first = api.client.post("/api/whatsapp/1/webhook", json=CLOUD_TEXT_WEBHOOK)
    second = api.client.post("/api/whatsapp/1/webhook", json=CLOUD_TEXT_WEBHOOK)

    assert first.status_code == 200
    assert first.json()["results"][0]["phase"] == states.ORDER_COLLECTING
    assert second.json()["results"] == [{"status": "duplicate"}]
    conversation = db.query(Conversation).one()
    assert conversation.customer_name == "Ayse"
    order = db.get(Order, conversation.active_order_id)
    assert order.items[0].quantity == 2


def test_webhook_ignores_payloads_without_messages(api):
    response = api.client.post("/api/whatsapp/1/webhook", json={"entry": [{"changes": [{"value": {}}]}]})

    assert response.json() == {"status": "ignored"}


def test_webhook_accepts_simple_mock_payload(api):
    payload = {"message": {"from": CUSTOMER_PHONE, "id": "mock-1", "text": "menu"}}

    response = api.client.post("/api/whatsapp/1/webhook", json=payload)

    assert response.json()["results"][0]["phase"] == states.IDLE


def test_card_payment_checkout_and_callback(api, db):
    api.say("2 kola")
    api.say("evet")
    api.say("evet")
    api.say(kind="location", **LOCATION_NEAR)
    pending = api.say("kart")
    assert pending["phase"] == states.PAYMENT_PENDING
    payment = db.query(OrderPayment).filter(OrderPayment.status == "PENDING").one()

    checkout = api.client.get(f"/api/payments/checkout/{payment.token}")
    assert checkout.status_code == 200
    assert checkout.json()["amount_cents"] == 7000

    callback = api.client.post("/api/payments/callback", json={"token": payment.token, "success": True})
    assert callback.json() == {"status": "ok", "payment_status": "SUCCESS", "phase": states.ORDER_CONFIRMED}

    replay = api.client.post("/api/payments/callback", json={"token": payment.token, "success": True})
    assert replay.json()["status"] == "duplicate"


def test_payment_callback_waits_for_conversation_and_asks_for_retry(api, db, monkeypatch):
    api.say("2 kola")
    api.say("evet")
    api.say("evet")
    api.say(kind="location", **LOCATION_NEAR)
    api.say("kart")
    payment = db.query(OrderPayment).filter(OrderPayment.status == "PENDING").one()
    token = payment.token
    busy_mutex = InMemoryConversationMutex(timeout_seconds=0.05)
    monkeypatch.setattr(inbound, "conversation_mutex", busy_mutex)

    with busy_mutex.hold(1, CUSTOMER_PHONE):
        response = api.client.post("/api/payments/callback", json={"token": token, "success": True})

    assert response.status_code == 503
    db.expire_all()
    assert db.query(OrderPayment).filter(OrderPayment.token == token).one().status == "PENDING"

    retry = api.client.post("/api/payments/callback", json={"token": token, "success": True})
    assert retry.json()["payment_status"] == "SUCCESS"
    assert retry.json()["phase"] == states.ORDER_CONFIRMED


def test_payment_endpoints_reject_unknown_tokens(api):
    assert api.client.get("/api/payments/checkout/missing-token").status_code == 404
    response = api.client.post("/api/payments/callback", json={"token": "missing-token", "success": True})
    assert response.status_code == 404


def test_order_status_updates_notify_customer(api, db):
    _confirmed_order(api)
    order = db.query(Order).filter(Order.order_number.isnot(None)).one()
    sent_before = len(api.provider.sent)

    response = api.client.patch(f"/api/orders/1/{order.id}/status", json={"status": "CONFIRMED"})

    assert response.status_code == 200
    assert response.json()["status"] == "CONFIRMED"
    assert len(api.provider.sent) == sent_before + 1
    assert "#1" in api.provider.sent[-1][1].text

    assert api.client.patch(f"/api/orders/1/{order.id}/status", json={"status": "DELIVERED"}).status_code == 409
    assert api.client.patch(f"/api/orders/1/{order.id}/status", json={"status": "LOST"}).status_code == 400


def test_draft_orders_cannot_be_moved_by_staff(api, db):
    api.say("2 kola")
    order = db.query(Order).one()

    response = api.client.patch(f"/api/orders/1/{order.id}/status", json={"status": "CONFIRMED"})

    assert response.status_code == 409


def test_inbox_lock_lifecycle(api, db):
    api.say("merhaba")
    conversation = db.query(Conversation).one()
    base = f"/api/inbox/1/conversations/{conversation.id}"

    assert api.client.post(f"{base}/lock").status_code == 401
    acquired = api.client.post(f"{base}/lock", headers={"X-Agent-ID": "agent-a"})
    assert acquired.status_code == 200
    assert acquired.json()["lock"]["locked_by"] == "agent-a"

    assert api.client.post(f"{base}/lock", headers={"X-Agent-ID": "agent-b"}).status_code == 409
    assert api.client.post(f"{base}/lock/refresh", headers={"X-Agent-ID": "agent-b"}).status_code == 403
    assert api.client.post(f"{base}/lock/refresh", headers={"X-Agent-ID": "agent-a"}).status_code == 200
    assert api.client.get(f"{base}/lock").json()["lock"]["locked_by"] == "agent-a"

    blocked = api.client.post(f"{base}/reply", headers={"X-Agent-ID": "agent-b"}, json={"text": "Merhaba"})
    assert blocked.status_code == 409
    allowed = api.client.post(f"{base}/reply", headers={"X-Agent-ID": "agent-a"}, json={"text": "Merhaba"})
    assert allowed.json() == {"status": "sent"}

    assert api.client.delete(f"{base}/lock", headers={"X-Agent-ID": "agent-a"}).json() == {"status": "released"}
    assert api.client.get(f"{base}/lock").json() == {"lock": None}


def test_inbox_unknown_conversation_is_404(api):
    response = api.client.post("/api/inbox/1/conversations/999/lock", headers={"X-Agent-ID": "agent-a"})

    assert response.status_code == 404


def test_intent_feedback(api, db):
    api.say("2 kola")
    intent = db.query(OrderIntent).one()

    response = api.client.post(f"/api/inbox/1/intents/{intent.id}/feedback", json={"feedback": "correct"})

    assert response.status_code == 200
    assert response.json() == {"id": intent.id, "agent_feedback": "correct"}
    invalid = api.client.post(f"/api/inbox/1/intents/{intent.id}/feedback", json={"feedback": "maybe"})
    assert invalid.status_code == 422


def test_internal_metrics_lists_flow_counters(api):
    api.say("2 kola")

    body = api.client.get("/internal/metrics").json()

    assert set(body) == {"requests", "flow"}
    assert "transitions" in body["flow"]
    assert "extraction" in body["flow"]
