import hashlib
import hmac
import json
import time
from typing import Any, Dict, List, Optional
from unittest.mock import AsyncMock

import httpx
import pytest

from chaos_stickers.db import build_engine, build_session_maker, get_session_factory, init_models
from chaos_stickers.fulfillment import FulfillmentService
from chaos_stickers.models import GeneratedImage
from chaos_stickers.notifications import BrevoMailer
from chaos_stickers.orders import get_mailer, get_printify_client
from chaos_stickers.printify import PrintifyClient, ProvisionedProduct
from chaos_stickers.settings import Settings, get_settings
from chaos_stickers.store import OrderStore

WEBHOOK_SECRET = "whsec_test_secret"

SHIPPING = {
    "first_name": "Ada",
    "last_name": "Lovelace",
    "email": "ada@example.com",
    "phone": "555-0100",
    "country": "US",
    "region": "NY",
    "address1": "1 Analytical Way",
    "address2": "Apt 2",
    "city": "New York",
    "zip": "10001",
}


# ===================================================================
# Helpers
# ===================================================================

def sign(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp: Optional[int] = None) -> str:
    """Builds a `Stripe-Signature` header for `payload`."""
    timestamp = int(time.time()) if timestamp is None else timestamp
    signed = f"{timestamp}.".encode() + payload
    signature = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def checkout_session(
    payment_intent: Any = "pi_123",
    line_items: Optional[List[Dict[str, Any]]] = None,
    shipping: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    line_items = [{"imageId": 10, "quantity": 1}] if line_items is None else line_items
    shipping = SHIPPING if shipping is None else shipping
    return {
        "id": "cs_test_1",
        "object": "checkout.session",
        "payment_intent": payment_intent,
        "metadata": {
            "shipping_details": json.dumps(shipping),
            "line_items": json.dumps(line_items),
        },
    }


def make_event(
    session: Optional[Dict[str, Any]] = None,
    event_type: str = "checkout.session.completed",
    event_id: str = "evt_1",
) -> bytes:
    session = checkout_session() if session is None else session
    return json.dumps({"id": event_id, "type": event_type, "data": {"object": session}}).encode()


async def add_image(
    session_factory,
    image_id: int,
    image_url: str = "",
    no_background_url: Optional[str] = None,
    has_removed_background: bool = False,
) -> None:
    async with session_factory() as session:
        session.add(
            GeneratedImage(
                id=image_id,
                prompt=f"sticker {image_id}",
                image_url=image_url,
                no_background_url=no_background_url,
                has_removed_background=has_removed_background,
            )
        )
        await session.commit()


# ===================================================================
# Fixtures
# ===================================================================

@pytest.fixture
def settings():
    return Settings(
        STRIPE_SECRET_KEY="sk_test_123",
        STRIPE_WEBHOOK_SECRET=WEBHOOK_SECRET,
        PRINTIFY_API_KEY="printify-key",
        PRINTIFY_SHOP_ID="4242",
        PRINTIFY_API_URL="https://printify.test/v1",
        BREVO_API_KEY="",
        FRONTEND_URL="https://chaos-stickers.test",
        CONFIRM_POLL_ATTEMPTS=3,
        CONFIRM_POLL_DELAY_SECONDS=0,
    )


@pytest.fixture
async def engine(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await init_models(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_maker(engine)


@pytest.fixture
def store(session_factory):
    return OrderStore(session_factory)


@pytest.fixture
async def images(session_factory):
    """Two generated designs: 10 (background removed) and 11 (primary URL only)."""
    await add_image(
        session_factory, 10,
        image_url="https://img.test/10.png",
        no_background_url="https://img.test/10-nobg.png",
        has_removed_background=True,
    )
    await add_image(session_factory, 11, image_url="https://img.test/11.png")


@pytest.fixture
def printify():
    client = AsyncMock(spec=PrintifyClient)

    async def create_product(image_url, label):
        return ProvisionedProduct(product_id=f"prod-{label}", variant_id=45740)

    client.create_product.side_effect = create_product
    client.create_order.return_value = "pf-order-1"
    client.get_order_status.return_value = "in-production"
    return client


@pytest.fixture
def mailer():
    mailer = AsyncMock(spec=BrevoMailer)
    mailer.send_order_confirmation.return_value = True
    return mailer


@pytest.fixture
def service(settings, store, printify, mailer):
    return FulfillmentService(settings, store, printify, mailer)


@pytest.fixture
async def client(settings, session_factory, printify, mailer):
    from chaos_stickers.server import app

    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_printify_client] = lambda: printify
    app.dependency_overrides[get_mailer] = lambda: mailer

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as http_client:
        yield http_client

    app.dependency_overrides.clear()
