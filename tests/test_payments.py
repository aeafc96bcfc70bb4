import json

import pytest

from chaos_stickers.errors import AuthenticationError, ConfigurationError, ValidationError
from chaos_stickers.payments import extract_order_intent, verify_payment_event

from conftest import SHIPPING, WEBHOOK_SECRET, checkout_session, make_event, sign


# --- Signature verification ---

def test_verify_accepts_valid_signature():
    payload = make_event(event_id="evt_ok")
    event = verify_payment_event(payload, sign(payload), WEBHOOK_SECRET)

    assert event.id == "evt_ok"
    assert event.type == "checkout.session.completed"
    assert event.data.object["payment_intent"] == "pi_123"


def test_verify_rejects_wrong_secret():
    payload = make_event()
    with pytest.raises(AuthenticationError):
        verify_payment_event(payload, sign(payload, secret="whsec_other"), WEBHOOK_SECRET)


def test_verify_rejects_tampered_body():
    payload = make_event()
    header = sign(payload)
    tampered = payload.replace(b"pi_123", b"pi_999")
    with pytest.raises(AuthenticationError):
        verify_payment_event(tampered, header, WEBHOOK_SECRET)


def test_verify_rejects_stale_timestamp():
    payload = make_event()
    with pytest.raises(AuthenticationError):
        verify_payment_event(payload, sign(payload, timestamp=1_000_000), WEBHOOK_SECRET)


@pytest.mark.parametrize("header", [None, "", "garbage"])
def test_verify_rejects_missing_or_malformed_header(header):
    with pytest.raises(AuthenticationError):
        verify_payment_event(make_event(), header, WEBHOOK_SECRET)


def test_verify_without_secret_is_a_configuration_error():
    payload = make_event()
    with pytest.raises(ConfigurationError):
        verify_payment_event(payload, sign(payload), "")


def test_verify_rejects_signed_but_malformed_event():
    payload = json.dumps({"id": "evt_1"}).encode()
    with pytest.raises(ValidationError):
        verify_payment_event(payload, sign(payload), WEBHOOK_SECRET)


# --- Order intent extraction ---

def test_extract_builds_typed_intent():
    session = checkout_session(line_items=[{"imageId": 10, "quantity": 2}, {"imageId": 11, "quantity": 1}])
    intent = extract_order_intent(session)

    assert intent.payment_reference == "pi_123"
    assert intent.checkout_session_id == "cs_test_1"
    assert intent.shipping_address.email == "ada@example.com"
    assert intent.shipping_address.full_name == "Ada Lovelace"
    assert [(i.image_id, i.quantity) for i in intent.line_items] == [(10, 2), (11, 1)]


def test_extract_floors_fractional_quantity():
    intent = extract_order_intent(checkout_session(line_items=[{"imageId": 10, "quantity": 2.9}]))
    assert intent.line_items[0].quantity == 2


def test_extract_accepts_integral_float_image_id():
    intent = extract_order_intent(checkout_session(line_items=[{"imageId": 10.0, "quantity": 1}]))
    assert intent.line_items[0].image_id == 10


@pytest.mark.parametrize("quantity", [0, -3, 0.5, "2", None, True])
def test_extract_rejects_bad_quantity_naming_the_item(quantity):
    items = [{"imageId": 10, "quantity": 1}, {"imageId": 11, "quantity": quantity}]
    with pytest.raises(ValidationError) as exc:
        extract_order_intent(checkout_session(line_items=items))
    assert "Line item 1" in exc.value.message


@pytest.mark.parametrize("image_id", [None, "10", 10.5, False])
def test_extract_rejects_bad_image_id(image_id):
    with pytest.raises(ValidationError) as exc:
        extract_order_intent(checkout_session(line_items=[{"imageId": image_id, "quantity": 1}]))
    assert "Line item 0" in exc.value.message


@pytest.mark.parametrize("item", [
    {"imageId": 1e20, "quantity": 1},
    {"imageId": 2**31, "quantity": 1},
    {"imageId": 0, "quantity": 1},
    {"imageId": 10, "quantity": 1e20},
    {"imageId": 10, "quantity": 2**31},
])
def test_extract_rejects_values_outside_integer_columns(item):
    items = [{"imageId": 11, "quantity": 1}, item]
    with pytest.raises(ValidationError) as exc:
        extract_order_intent(checkout_session(line_items=items))
    assert "Line item 1" in exc.value.message


def test_extract_accepts_largest_integer_column_values():
    intent = extract_order_intent(checkout_session(line_items=[{"imageId": 2**31 - 1, "quantity": 2**31 - 1}]))
    assert intent.line_items[0].image_id == 2**31 - 1
    assert intent.line_items[0].quantity == 2**31 - 1


def test_extract_rejects_empty_line_items():
    with pytest.raises(ValidationError):
        extract_order_intent(checkout_session(line_items=[]))


@pytest.mark.parametrize("payment_intent", [None, "", {"id": "pi_123"}])
def test_extract_requires_payment_intent_string(payment_intent):
    with pytest.raises(ValidationError):
        extract_order_intent(checkout_session(payment_intent=payment_intent))


def test_extract_requires_metadata():
    session = checkout_session()
    del session["metadata"]
    with pytest.raises(ValidationError):
        extract_order_intent(session)


def test_extract_rejects_non_json_metadata():
    session = checkout_session()
    session["metadata"]["line_items"] = "[{not json"
    with pytest.raises(ValidationError) as exc:
        extract_order_intent(session)
    assert "line_items" in exc.value.message


def test_extract_rejects_incomplete_shipping_address():
    shipping = {k: v for k, v in SHIPPING.items() if k != "city"}
    with pytest.raises(ValidationError):
        extract_order_intent(checkout_session(shipping=shipping))


def test_extract_rejects_invalid_email():
    with pytest.raises(ValidationError):
        extract_order_intent(checkout_session(shipping={**SHIPPING, "email": "not-an-email"}))


def test_optional_shipping_fields_default():
    minimal = {k: SHIPPING[k] for k in ("first_name", "email", "country", "address1", "city", "zip")}
    address = extract_order_intent(checkout_session(shipping=minimal)).shipping_address

    assert address.last_name == ""
    assert address.address2 is None
    assert address.full_name == "Ada"
