"""End-to-end tests for the HTTP API."""

import asyncio
import time
from decimal import Decimal
from http import HTTPStatus

from fastapi.testclient import TestClient

from storefront.api.container import build_in_memory_services
from storefront.api.server import create_app
from storefront.exceptions import StoreError, UpstreamError
from storefront.schemas.events import JobStatus

from tests.conftest import (
    WEBHOOK_SECRET,
    card_intent,
    event_payload,
    pending_intent,
    post_event,
    session_completed,
    sign,
)


def checkout(client, cart):
    response = client.post("/create-payment-intent", json=cart)
    assert response.status_code == HTTPStatus.OK
    return response.json()["id"]


def test_liveness(client):
    response = client.get("/")

    assert response.status_code == HTTPStatus.OK
    assert "running" in response.text


def test_health_check(client):
    response = client.get("/health")
    body = response.json()

    assert response.status_code == HTTPStatus.OK
    assert body["status"] == "healthy"
    assert body["redis_connected"] is False
    assert body["reconciliation_running"] is False
    assert "X-Response-Time-Ms" in response.headers


def test_paid_checkout_completes_order(client, cart, services, processor):
    """Checkout, signed completion event, reconciliation, completed order."""
    session_id = checkout(client, cart)

    order = client.get(f"/orders/{session_id}").json()
    assert order["status"] == "pending"
    assert Decimal(order["totalAmount"]) == Decimal("45")
    assert order["customerDetails"]["email"] == "ada@example.com"

    processor.intents["pi_1"] = card_intent("pi_1", brand="visa", last4="4242")
    response = post_event(client, session_completed(session_id, "pi_1"))
    assert response.status_code == HTTPStatus.OK
    assert response.json() == {"received": True}

    asyncio.run(services.worker.run_once())

    order = client.get(f"/orders/{session_id}").json()
    assert order["status"] == "completed"
    assert Decimal(order["totalAmount"]) == Decimal("45")
    assert order["paymentIntentId"] == "pi_1"
    assert order["paymentMethod"] == {
        "type": "card",
        "brand": "visa",
        "last4": "4242",
        "country": "US",
    }


def test_checkout_returns_session_reference(client, cart, processor):
    response = client.post("/create-payment-intent", json=cart)

    assert response.json()["id"] == "cs_test_1"
    assert response.json()["url"].endswith("cs_test_1")
    assert [item["price_data"]["unit_amount"] for item in processor.sessions[0]] == [1250, 2000]


def test_invalid_signature_is_rejected_without_side_effects(client, cart, services):
    session_id = checkout(client, cart)
    payload = session_completed(session_id, "pi_1")

    response = post_event(client, payload, signature=sign(payload, secret="whsec_wrong"))

    assert response.status_code == HTTPStatus.BAD_REQUEST
    assert response.json()["error_code"] == "webhook:authentication"
    assert asyncio.run(services.jobs.get(session_id)) is None
    assert client.get(f"/orders/{session_id}").json()["status"] == "pending"


def test_missing_signature_header(client):
    payload = session_completed("cs_test_1", "pi_1")

    response = client.post("/webhook", content=payload, headers={"content-type": "application/json"})

    assert response.status_code == HTTPStatus.BAD_REQUEST


def test_empty_cart_is_rejected(client, processor):
    response = client.post("/create-payment-intent", json={"products": [], "customerDetails": {}})

    assert response.status_code == HTTPStatus.BAD_REQUEST
    assert response.json()["error_code"] == "checkout:validation"
    assert processor.sessions == []


def test_malformed_checkout_body_is_rejected(client, processor):
    response = client.post("/create-payment-intent", json={"products": "mug"})

    assert response.status_code == HTTPStatus.BAD_REQUEST
    assert processor.sessions == []


def test_processor_failure_returns_bad_gateway(client, cart, processor, services):
    processor.checkout_error = UpstreamError("Your card was declined")

    response = client.post("/create-payment-intent", json=cart)

    assert response.status_code == HTTPStatus.BAD_GATEWAY
    assert response.json()["error_code"] == "processor:upstream"
    assert len(services.orders) == 0


def test_order_stays_pending_without_charge_detail(client, cart, services, processor):
    session_id = checkout(client, cart)
    processor.intents["pi_1"] = pending_intent("pi_1")

    assert post_event(client, session_completed(session_id, "pi_1")).status_code == HTTPStatus.OK
    asyncio.run(services.worker.run_once())

    assert client.get(f"/orders/{session_id}").json()["status"] == "pending"


def test_duplicate_event_is_acknowledged_once(client, cart, services, processor):
    session_id = checkout(client, cart)
    processor.intents["pi_1"] = card_intent("pi_1")
    payload = session_completed(session_id, "pi_1", event_id="evt_dup")

    first = post_event(client, payload)
    second = post_event(client, payload)

    assert first.json() == second.json() == {"received": True}
    assert services.worker.metrics["scheduled"] == 1


def test_dispatch_failure_allows_redelivery(client, cart, services, processor, mocker):
    session_id = checkout(client, cart)
    processor.intents["pi_1"] = card_intent("pi_1")
    payload = session_completed(session_id, "pi_1", event_id="evt_retry")

    mocker.patch.object(services.jobs, "enqueue", side_effect=StoreError("queue unavailable"))
    failed = post_event(client, payload)
    mocker.stopall()
    redelivered = post_event(client, payload)

    assert failed.status_code == HTTPStatus.SERVICE_UNAVAILABLE
    assert redelivered.status_code == HTTPStatus.OK
    assert services.worker.metrics["scheduled"] == 1


def test_unhandled_event_type_is_acknowledged(client, services):
    payload = event_payload("customer.created", {"id": "cus_1", "object": "customer"})

    response = post_event(client, payload)

    assert response.status_code == HTTPStatus.OK
    assert response.json() == {"received": True}
    assert services.worker.metrics["scheduled"] == 0


def test_unknown_order_is_not_found(client):
    response = client.get("/orders/cs_nope")

    assert response.status_code == HTTPStatus.NOT_FOUND
    assert response.json()["error_code"] == "store:order_not_found"


def test_product_catalog(client):
    for i in range(3):
        response = client.post("/products", json={"name": f"Print {i}", "price": 10 + i})
        assert response.json()["acknowledged"] is True
        assert response.json()["insertedId"]

    page = client.get("/products", params={"page": 1, "limit": 2}).json()

    assert [p["name"] for p in page] == ["Print 2"]
    assert client.get("/totalProducts").json() == {"totalProducts": 3}


def test_product_page_size_is_capped(client):
    response = client.get("/products", params={"limit": 1000})

    assert response.status_code == HTTPStatus.BAD_REQUEST


def test_dead_letter_admin_flow(client, cart, services, processor):
    services.worker.max_attempts = 1
    session_id = checkout(client, cart)
    processor.intents["pi_1"] = pending_intent("pi_1")
    post_event(client, session_completed(session_id, "pi_1"))
    asyncio.run(services.worker.run_once())

    dead = client.get("/admin/reconciliation/dead").json()
    assert [job["session_id"] for job in dead] == [session_id]

    metrics = client.get("/admin/metrics").json()
    assert metrics["reconciliation"]["dead_lettered"] == 1
    assert metrics["queue"]["dead"] == 1

    processor.intents["pi_1"] = card_intent("pi_1")
    response = client.post(f"/admin/reconciliation/{session_id}/requeue")
    assert response.json() == {"requeued": True, "session_id": session_id}

    asyncio.run(services.worker.run_once())
    assert client.get(f"/orders/{session_id}").json()["status"] == "completed"


def test_requeue_unknown_job(client):
    response = client.post("/admin/reconciliation/cs_nope/requeue")

    assert response.status_code == HTTPStatus.NOT_FOUND


def test_redelivered_event_rearms_dead_job(client, cart, services, processor):
    """Stripe resends reuse the event id; a dead job must still be re-armed."""
    services.worker.max_attempts = 1
    session_id = checkout(client, cart)
    processor.intents["pi_1"] = pending_intent("pi_1")
    payload = session_completed(session_id, "pi_1", event_id="evt_resent")

    post_event(client, payload)
    asyncio.run(services.worker.run_once())
    assert asyncio.run(services.jobs.get(session_id)).status == JobStatus.DEAD

    processor.intents["pi_1"] = card_intent("pi_1")
    redelivered = post_event(client, payload)

    assert redelivered.status_code == HTTPStatus.OK
    assert asyncio.run(services.jobs.get(session_id)).status == JobStatus.QUEUED

    asyncio.run(services.worker.run_once())
    assert client.get(f"/orders/{session_id}").json()["status"] == "completed"


def test_background_loop_completes_order_after_acknowledgement(cart, processor):
    services = build_in_memory_services(
        processor,
        WEBHOOK_SECRET,
        reconcile_in_background=True,
        poll_interval=0.05,
        grace_seconds=0.1,
    )

    with TestClient(create_app(services)) as client:
        assert client.get("/health").json()["reconciliation_running"] is True

        session_id = checkout(client, cart)
        processor.intents["pi_1"] = card_intent("pi_1")
        response = post_event(client, session_completed(session_id, "pi_1"))
        assert response.json() == {"received": True}

        deadline = time.monotonic() + 5
        status = None
        while time.monotonic() < deadline:
            status = client.get(f"/orders/{session_id}").json()["status"]
            if status == "completed":
                break
            time.sleep(0.05)

        assert status == "completed"

    assert services.loop.running is False
