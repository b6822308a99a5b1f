from fastapi.testclient import TestClient


REQUIRED_ROUTES = {
    "/api/whatsapp/{tenant_id}/webhook",
    "/simulator/{tenant_id}/messages",
    "/api/payments/checkout/{token}",
    "/api/payments/callback",
    "/api/orders/{tenant_id}/{order_id}",
    "/api/orders/{tenant_id}/{order_id}/status",
    "/api/inbox/{tenant_id}/conversations/{conversation_id}/lock",
    "/api/inbox/{tenant_id}/conversations/{conversation_id}/reply",
    "/api/inbox/{tenant_id}/intents/{intent_id}/feedback",
    "/internal/metrics",
}


def test_api_startup_and_router_registration(monkeypatch):
    from orderflow import main

    monkeypatch.setattr(main, "_startup_tasks", lambda: None)

    with TestClient(main.app) as client:
        response = client.get("/")
        health_response = client.get("/health")
        openapi_response = client.get("/openapi.json")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}
    assert health_response.json() == {"status": "healthy"}
    assert openapi_response.status_code == 200
    assert response.headers.get("X-Request-ID")

    paths = {route.path for route in main.app.routes}
    assert REQUIRED_ROUTES.issubset(paths)
