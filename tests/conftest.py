"""Test fixtures for the store backend tests."""

import hashlib
import hmac
import json
import time
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from api.dependencies import Services
from api.server import create_app
from payments.processor import PaymentSession, StripePaymentProcessor
from schemas.store import Address, Category, Product, UserRole
from services.auth import create_access_token
from storage.repositories import (
    InMemoryCategoryRepository,
    InMemoryOrderRepository,
    InMemoryProductRepository,
)

WEBHOOK_SECRET = "whsec_test_secret"


class FakePaymentProcessor(StripePaymentProcessor):
    """Stripe processor with session creation replaced; webhook verification is real."""

    def __init__(self):
        super().__init__(api_key="sk_test_fake", app_url="http://shop.test")
        self.sessions = []
        self.fail_with = None

    async def create_checkout_session(self, order, shipping, customer_email=None):
        if self.fail_with is not None:
            raise self.fail_with
        session = PaymentSession(
            id=f"cs_test_{len(self.sessions) + 1}",
            url=f"https://checkout.stripe.test/pay/{order.id}",
        )
        self.sessions.append({
            "session": session,
            "order": order,
            "shipping": shipping,
            "customer_email": customer_email,
        })
        return session


@pytest.fixture
def category():
    """A category every seeded product belongs to."""
    return Category(id="cat-ceramics", name="Ceramics", slug="ceramics")


@pytest.fixture
def catalog(category):
    """Seeded products keyed by short name."""
    return {
        "mug": Product(
            id="prod-mug", name="Speckled Mug", slug="speckled-mug",
            description="Hand-thrown stoneware mug", price=Decimal("45.99"),
            stock=15, category_id=category.id, images=["https://img.test/mug.jpg"],
            is_featured=True,
        ),
        "vase": Product(
            id="prod-vase", name="Bud Vase", slug="bud-vase",
            description="Small glazed bud vase", price=Decimal("25.00"),
            stock=3, category_id=category.id, images=["https://img.test/vase.jpg"],
        ),
        "retired": Product(
            id="prod-retired", name="Old Bowl", slug="old-bowl",
            description="No longer sold", price=Decimal("12.00"),
            stock=40, category_id=category.id, is_active=False,
        ),
    }


@pytest.fixture
def processor():
    return FakePaymentProcessor()


@pytest.fixture
def services(catalog, category, processor):
    """In-memory service graph with seeded catalog."""
    return Services.in_memory(
        products=InMemoryProductRepository(catalog.values()),
        categories=InMemoryCategoryRepository([category]),
        orders=InMemoryOrderRepository(),
        processor=processor,
        webhook_secret=WEBHOOK_SECRET,
    )


@pytest.fixture
def client(services):
    """Test client running the app lifespan."""
    with TestClient(create_app(services)) as test_client:
        yield test_client


@pytest.fixture
def user_headers():
    token = create_access_token("user-1", UserRole.USER, email="buyer@example.com")
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def other_user_headers():
    token = create_access_token("user-2", UserRole.USER)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def admin_headers():
    token = create_access_token("admin-1", UserRole.ADMIN)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def shipping_address():
    return Address(
        first_name="Ada", last_name="Lovelace", address="12 Kiln Street",
        city="Asheville", state="NC", zip_code="28801",
    ).model_dump(by_alias=True)


@pytest.fixture
def checkout(client, user_headers, shipping_address):
    """Submit a cart and return the response JSON (asserts 201)."""
    def _checkout(items, headers=None):
        response = client.post(
            "/api/checkout",
            json={"items": items, "shippingAddress": shipping_address},
            headers=headers or user_headers,
        )
        assert response.status_code == 201, response.text
        return response.json()
    return _checkout


def sign(payload: str, secret: str = WEBHOOK_SECRET, timestamp: int = None) -> str:
    """Build a Stripe-Signature header for payload."""
    timestamp = timestamp or int(time.time())
    digest = hmac.new(
        secret.encode("utf-8"), f"{timestamp}.{payload}".encode("utf-8"), hashlib.sha256
    ).hexdigest()
    return f"t={timestamp},v1={digest}"


@pytest.fixture
def send_event(client):
    """POST a signed webhook event; returns the response."""
    def _send(event_type, obj, event_id="evt_test", signature=None):
        payload = json.dumps({"id": event_id, "type": event_type, "data": {"object": obj}})
        headers = {"stripe-signature": signature or sign(payload)}
        return client.post(
            "/api/webhooks/stripe",
            content=payload,
            headers={**headers, "Content-Type": "application/json"},
        )
    return _send


@pytest.fixture
def sign_payload():
    """The Stripe-Signature builder, for tests that craft their own headers."""
    return sign
