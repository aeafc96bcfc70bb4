# payments.py
"""
Stripe boundary for the fulfillment workflow.

1.  Verifies an inbound webhook against the configured signing secret and
    decodes it into a typed `PaymentEvent`.
2.  Parses the checkout session's untyped metadata bag into a validated
    `OrderIntent`. Nothing downstream reads the raw metadata.
3.  Resolves a checkout session id to its payment intent for the
    confirmation page.
"""
import asyncio
import json
import logging
import math
from typing import Any, Dict, List, Optional, Tuple

import stripe
from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from .errors import AuthenticationError, ConfigurationError, ValidationError

log = logging.getLogger(__name__)

CHECKOUT_COMPLETED = "checkout.session.completed"

# Metadata keys written by the checkout-session endpoint.
SHIPPING_METADATA_KEY = "shipping_details"
LINE_ITEMS_METADATA_KEY = "line_items"

# Image ids and quantities are stored in 32-bit INTEGER columns.
MAX_DB_INT = 2**31 - 1


# ===================================================================
# PYDANTIC SCHEMAS
# ===================================================================

class EventData(BaseModel):
    object: Dict[str, Any]


class PaymentEvent(BaseModel):
    """A verified Stripe event."""
    id: str
    type: str
    data: EventData


class ShippingAddress(BaseModel):
    """Printify-compatible shipping address, as collected at checkout."""
    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    first_name: str = Field(..., min_length=1)
    last_name: str = ""
    email: str = Field(..., min_length=3, pattern=r"^[^@\s]+@[^@\s]+$")
    phone: str = ""
    country: str = Field(..., min_length=1)
    region: str = ""
    address1: str = Field(..., min_length=1)
    address2: Optional[str] = None
    city: str = Field(..., min_length=1)
    zip: str = Field(..., min_length=1)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class LineItemRef(BaseModel):
    """One (generated image, quantity) pair from the order intent."""
    model_config = ConfigDict(frozen=True)

    image_id: int
    quantity: int = Field(..., ge=1)


class OrderIntent(BaseModel):
    """Everything the workflow needs from a completed checkout session."""
    model_config = ConfigDict(frozen=True)

    payment_reference: str
    checkout_session_id: Optional[str] = None
    shipping_address: ShippingAddress
    line_items: Tuple[LineItemRef, ...]


# ===================================================================
# 1. SIGNATURE VERIFICATION
# ===================================================================

def verify_payment_event(payload: bytes, sig_header: Optional[str], secret: str) -> PaymentEvent:
    """
    Verifies `payload` (the exact raw request body) against the
    `Stripe-Signature` header and decodes it.

    Raises ConfigurationError when no webhook secret is configured, before
    any verification is attempted.
    """
    if not secret:
        raise ConfigurationError("Stripe webhook secret is not configured.")
    if not sig_header:
        raise AuthenticationError("Missing Stripe-Signature header.")

    try:
        body = payload.decode("utf-8")
    except UnicodeDecodeError:
        raise AuthenticationError("Webhook payload is not valid UTF-8.")

    try:
        stripe.WebhookSignature.verify_header(
            body, sig_header, secret, tolerance=stripe.Webhook.DEFAULT_TOLERANCE
        )
    except stripe.SignatureVerificationError as e:
        raise AuthenticationError(f"Invalid signature: {e}")

    try:
        return PaymentEvent.model_validate(json.loads(body))
    except (ValueError, PydanticValidationError) as e:
        raise ValidationError(f"Invalid payload: {e}")


# ===================================================================
# 2. ORDER INTENT EXTRACTION
# ===================================================================

def _decode_metadata_json(metadata: Dict[str, Any], key: str) -> Any:
    raw = metadata.get(key)
    if raw is None or raw == "":
        raise ValidationError(f"Missing required metadata field '{key}'.")
    if not isinstance(raw, str):
        raise ValidationError(f"Metadata field '{key}' must be a JSON string.")
    try:
        return json.loads(raw)
    except ValueError:
        raise ValidationError(f"Metadata field '{key}' is not valid JSON.")


def _is_number(value: Any) -> bool:
    return (
        isinstance(value, (int, float))
        and not isinstance(value, bool)
        and math.isfinite(value)
    )


def _parse_line_item(index: int, raw: Any) -> LineItemRef:
    if not isinstance(raw, dict):
        raise ValidationError(f"Line item {index} must be an object.")

    image_id = raw.get("imageId", raw.get("image_id"))
    if not _is_number(image_id) or image_id != int(image_id):
        raise ValidationError(f"Line item {index} has an invalid image id: {image_id!r}.")
    if not 1 <= image_id <= MAX_DB_INT:
        raise ValidationError(f"Line item {index} image id is out of range: {image_id!r}.")

    quantity = raw.get("quantity")
    if not _is_number(quantity):
        raise ValidationError(f"Line item {index} has an invalid quantity: {quantity!r}.")
    quantity = math.floor(quantity)
    if quantity < 1:
        raise ValidationError(f"Line item {index} quantity must be a positive integer.")
    if quantity > MAX_DB_INT:
        raise ValidationError(f"Line item {index} quantity is out of range: {quantity}.")

    return LineItemRef(image_id=int(image_id), quantity=quantity)


def extract_order_intent(session: Dict[str, Any]) -> OrderIntent:
    """
    Builds an OrderIntent from a `checkout.session.completed` session object.

    Any malformed field fails the whole extraction; there is no partial
    acceptance of line items.
    """
    payment_reference = session.get("payment_intent")
    if not isinstance(payment_reference, str) or not payment_reference:
        raise ValidationError("Checkout session has no payment intent id.")

    metadata = session.get("metadata")
    if not isinstance(metadata, dict):
        raise ValidationError("Checkout session has no metadata.")

    shipping_raw = _decode_metadata_json(metadata, SHIPPING_METADATA_KEY)
    items_raw = _decode_metadata_json(metadata, LINE_ITEMS_METADATA_KEY)

    if not isinstance(shipping_raw, dict):
        raise ValidationError("Shipping details must be a JSON object.")
    try:
        shipping_address = ShippingAddress.model_validate(shipping_raw)
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid shipping details: {e}")

    if not isinstance(items_raw, list) or not items_raw:
        raise ValidationError("Line items must be a non-empty array.")
    line_items: List[LineItemRef] = [
        _parse_line_item(index, raw) for index, raw in enumerate(items_raw)
    ]

    return OrderIntent(
        payment_reference=payment_reference,
        checkout_session_id=session.get("id"),
        shipping_address=shipping_address,
        line_items=tuple(line_items),
    )


# ===================================================================
# 3. CHECKOUT SESSION LOOKUP
# ===================================================================

async def retrieve_payment_reference(session_id: str, api_key: str) -> Optional[str]:
    """
    Returns the payment intent id of a checkout session, or None when the
    session has not produced one yet.

    Raises `stripe.InvalidRequestError` for unknown session ids.
    """
    if not api_key:
        raise ConfigurationError("Stripe secret key is not configured.")

    # The Stripe SDK is synchronous; keep it off the event loop.
    session = await asyncio.to_thread(
        stripe.checkout.Session.retrieve, session_id, api_key=api_key
    )
    payment_intent = session["payment_intent"]
    return payment_intent if isinstance(payment_intent, str) else None
