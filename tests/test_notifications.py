import json
from types import SimpleNamespace

import httpx

from chaos_stickers.notifications import BREVO_API_URL, BrevoMailer, build_tracking_link


def make_order():
    return SimpleNamespace(
        id=42,
        printify_order_id="pf-order-1",
        shipping_email="ada@example.com",
        items=[
            SimpleNamespace(image_url="https://img.test/10-nobg.png", quantity=1),
            SimpleNamespace(image_url="https://img.test/11.png", quantity=3),
        ],
    )


def configured(settings):
    return settings.model_copy(update={"BREVO_API_KEY": "brevo-key", "EMAIL_SENDER": "orders@chaos.test"})


def test_tracking_link_uses_vendor_order_id():
    assert build_tracking_link("https://chaos.test/", "pf-1") == "https://chaos.test/orders/pf-1"


async def test_sends_confirmation_through_brevo(settings):
    sent = []

    def handler(request):
        sent.append(request)
        return httpx.Response(201, json={"messageId": "m-1"})

    mailer = BrevoMailer(configured(settings), transport=httpx.MockTransport(handler))

    assert await mailer.send_order_confirmation(make_order(), "Ada") is True

    request = sent[0]
    assert str(request.url) == BREVO_API_URL
    assert request.headers["api-key"] == "brevo-key"
    body = json.loads(request.content)
    assert body["to"] == [{"email": "ada@example.com"}]
    assert body["sender"]["email"] == "orders@chaos.test"
    assert "#42" in body["subject"]
    assert "https://chaos-stickers.test/orders/pf-order-1" in body["htmlContent"]
    assert "https://img.test/11.png" in body["htmlContent"]
    assert "Quantity: 3" in body["htmlContent"]


async def test_skips_when_not_configured(settings):
    def handler(request):
        raise AssertionError("no request expected")

    mailer = BrevoMailer(settings, transport=httpx.MockTransport(handler))
    assert await mailer.send_order_confirmation(make_order(), "Ada") is False


async def test_api_error_returns_false(settings):
    mailer = BrevoMailer(
        configured(settings),
        transport=httpx.MockTransport(lambda request: httpx.Response(400, json={"code": "invalid_parameter"})),
    )
    assert await mailer.send_order_confirmation(make_order(), "Ada") is False


async def test_transport_error_returns_false(settings):
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    mailer = BrevoMailer(configured(settings), transport=httpx.MockTransport(handler))
    assert await mailer.send_order_confirmation(make_order(), "Ada") is False
