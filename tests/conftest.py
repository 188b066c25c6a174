"""Test fixtures for the storefront checkout tests."""

import asyncio
import hashlib
import hmac
import json
import time
from typing import Any, Dict, List, Optional

import pytest
from fastapi.testclient import TestClient

from storefront.api.container import build_in_memory_services
from storefront.api.server import create_app
from storefront.exceptions import UpstreamError
from storefront.schemas.orders import CheckoutSession
from storefront.services.processor import IPaymentProcessor

WEBHOOK_SECRET = "whsec_test_secret"


class FakeProcessor(IPaymentProcessor):
    """In-process stand-in for Stripe.

    Sessions get sequential ids; payment intents are served from the
    ``intents`` map, which tests fill in to simulate charge detail
    becoming available.
    """

    def __init__(self):
        self.sessions: List[List[Dict[str, Any]]] = []
        self.intents: Dict[str, Dict[str, Any]] = {}
        self.retrieved: List[str] = []
        self.checkout_error: Optional[Exception] = None
        self.retrieve_delay: float = 0

    async def create_checkout_session(self, line_items):
        if self.checkout_error is not None:
            raise self.checkout_error

        self.sessions.append(line_items)
        session_id = f"cs_test_{len(self.sessions)}"
        return CheckoutSession(id=session_id, url=f"https://checkout.stripe.com/c/pay/{session_id}")

    async def retrieve_payment_intent(self, payment_intent_id):
        self.retrieved.append(payment_intent_id)
        if self.retrieve_delay:
            await asyncio.sleep(self.retrieve_delay)

        intent = self.intents.get(payment_intent_id)
        if intent is None:
            raise UpstreamError(
                f"No such payment_intent: '{payment_intent_id}'",
                {"payment_intent_id": payment_intent_id},
            )
        return intent


def card_intent(
    payment_intent_id: str,
    brand: str = "visa",
    last4: str = "4242",
    country: str = "US",
    expanded: bool = True,
) -> Dict[str, Any]:
    """Payment intent as returned with ``expand=["latest_charge"]``.

    With ``expanded=False`` the charge is listed under ``charges.data``
    the way older API versions return it.
    """
    charge = {
        "id": f"ch_{payment_intent_id}",
        "object": "charge",
        "payment_method_details": {
            "type": "card",
            "card": {"brand": brand, "last4": last4, "country": country},
        },
    }
    if expanded:
        return {"id": payment_intent_id, "object": "payment_intent", "latest_charge": charge}
    return {
        "id": payment_intent_id,
        "object": "payment_intent",
        "latest_charge": charge["id"],
        "charges": {"object": "list", "data": [charge]},
    }


def pending_intent(payment_intent_id: str) -> Dict[str, Any]:
    """Payment intent whose charge has not been attached yet."""
    return {"id": payment_intent_id, "object": "payment_intent", "latest_charge": None}


def event_payload(
    event_type: str,
    obj: Dict[str, Any],
    event_id: str = "evt_test_1",
) -> bytes:
    return json.dumps({
        "id": event_id,
        "object": "event",
        "type": event_type,
        "created": int(time.time()),
        "livemode": False,
        "data": {"object": obj},
    }).encode("utf-8")


def session_completed(
    session_id: str,
    payment_intent_id: Optional[str],
    event_id: str = "evt_test_1",
) -> bytes:
    return event_payload(
        "checkout.session.completed",
        {
            "id": session_id,
            "object": "checkout.session",
            "payment_intent": payment_intent_id,
            "payment_status": "paid",
        },
        event_id=event_id,
    )


def sign(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp: Optional[int] = None) -> str:
    """Build a Stripe-Signature header value for the payload."""
    timestamp = int(time.time()) if timestamp is None else timestamp
    signed = f"{timestamp}.".encode("utf-8") + payload
    digest = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


def post_event(client: TestClient, payload: bytes, signature: Optional[str] = None):
    headers = {"content-type": "application/json"}
    headers["stripe-signature"] = sign(payload) if signature is None else signature
    return client.post("/webhook", content=payload, headers=headers)


@pytest.fixture
def processor():
    return FakeProcessor()


@pytest.fixture
def services(processor):
    """In-memory services with no grace period and no background loop."""
    return build_in_memory_services(processor, WEBHOOK_SECRET, grace_seconds=0)


@pytest.fixture
def client(services):
    with TestClient(create_app(services)) as test_client:
        yield test_client


@pytest.fixture
def cart():
    return {
        "products": [
            {"name": "Ceramic Mug", "price": 12.5, "quantity": 2},
            {"name": "Canvas Tote", "price": 20, "quantity": 1},
        ],
        "customerDetails": {"name": "Ada Lovelace", "email": "ada@example.com"},
    }
