"""Checkout HTTP contract as seen by the storefront."""

import httpx
import pytest
from fastapi.testclient import TestClient

from calistar.services.checkout.api import create_app
from calistar.services.checkout.gateway import PagouGateway
from calistar.services.checkout.service import PaymentOrchestrator

CUSTOMER = {"name": "Ana Souza", "taxId": "529.982.247-25", "email": "ana@example.com"}


@pytest.fixture
def client(settings, session_factory, fake_pagou):
    gateway = PagouGateway(settings, transport=httpx.MockTransport(fake_pagou))
    orchestrator = PaymentOrchestrator(session_factory, gateway, settings, service_name="test")
    return TestClient(create_app(orchestrator))


def _create(client, **overrides):
    body = {"amount": 150.0, "items": [{"id": 1, "name": "Top", "price": 150.0}], "customer": CUSTOMER}
    body.update(overrides)
    return client.post("/api/checkout/create-pix", json=body)


def test_create_pix_returns_camel_case_intent(client):
    resp = _create(client)
    assert resp.status_code == 200
    body = resp.json()
    assert body["id"] == "pix_1"
    assert body["pixCode"] == "00020126PIXCODE"
    assert body["qrImage"].startswith("data:image/png;base64,")
    assert body["orderId"].startswith("ORD-")
    assert body["amount"] == 150.0
    assert body["expiresAt"]


def test_amount_below_minimum_is_400(client, fake_pagou):
    resp = _create(client, amount=4.5)
    assert resp.status_code == 400
    assert resp.json()["code"] == "invalid_amount"
    assert resp.json()["error"] == "Valor mínimo é R$ 5,00"
    assert fake_pagou.requests == []


def test_missing_customer_is_400(client):
    resp = _create(client, customer={})
    assert resp.status_code == 400
    assert resp.json()["code"] == "missing_field"
    assert resp.json()["field"] == "name"


def test_invalid_cpf_is_400(client):
    resp = _create(client, customer={"name": "Ana", "document": "123.456.789-00"})
    assert resp.status_code == 400
    assert resp.json()["code"] == "invalid_tax_id"


def test_gateway_outage_is_502(client, fake_pagou):
    fake_pagou.create_response = httpx.Response(500, json={"message": "down"})
    resp = _create(client)
    assert resp.status_code == 502
    assert resp.json()["code"] == "gateway_unavailable"


def test_gateway_rejection_is_422(client, fake_pagou):
    fake_pagou.create_response = httpx.Response(400, json={"message": "document invalid"})
    resp = _create(client)
    assert resp.status_code == 422
    assert resp.json()["code"] == "payment_rejected"


def test_idempotency_header_replays(client, fake_pagou):
    first = client.post(
        "/api/checkout/create-pix",
        json={"amount": 20, "customer": CUSTOMER},
        headers={"Idempotency-Key": "cart-9"},
    )
    second = client.post(
        "/api/checkout/create-pix",
        json={"amount": 20, "customer": CUSTOMER},
        headers={"Idempotency-Key": "cart-9"},
    )
    assert first.json()["orderId"] == second.json()["orderId"]
    assert len(fake_pagou.create_calls) == 1


def test_status_reports_paid(client, fake_pagou):
    payment_id = _create(client).json()["id"]
    fake_pagou.statuses[payment_id] = 4
    resp = client.get(f"/api/checkout/status/{payment_id}")
    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "completed"
    assert body["statusCode"] == 4
    assert body["paid"] is True
    assert body["orderStatus"] == "completed"


def test_status_of_unknown_payment_is_404(client):
    resp = client.get("/api/checkout/status/pix_missing")
    assert resp.status_code == 404
    assert resp.json()["code"] == "payment_not_found"


def test_order_view_includes_timeline(client, fake_pagou):
    created = _create(client).json()
    fake_pagou.statuses[created["id"]] = 4
    client.get(f"/api/checkout/status/{created['id']}")

    resp = client.get(f"/api/checkout/orders/{created['orderId']}")
    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "completed"
    assert body["paymentId"] == created["id"]
    assert {entry["to"] for entry in body["timeline"]} == {"pending", "completed"}


def test_unknown_order_is_404(client):
    assert client.get("/api/checkout/orders/ORD-none").status_code == 404


def test_quote(client):
    resp = client.post("/api/checkout/quote", json={"subtotal": 120})
    assert resp.json() == {
        "subtotal": 120.0,
        "shipping": 19.9,
        "total": 139.9,
        "freeShipping": False,
        "remainingForFreeShipping": 179.0,
    }


def test_health_and_metrics(client):
    assert client.get("/health").json() == {"ok": True}
    assert "checkout_requests_total" in client.get("/metrics").text


def test_oversized_amount_is_400(client, fake_pagou):
    resp = _create(client, amount="1e30")
    assert resp.status_code == 400
    assert resp.json()["code"] == "invalid_amount"
    assert fake_pagou.requests == []


def test_oversized_quote_subtotal_is_400(client):
    resp = client.post("/api/checkout/quote", json={"subtotal": "1e30"})
    assert resp.status_code == 400
    assert resp.json()["code"] == "invalid_amount"
