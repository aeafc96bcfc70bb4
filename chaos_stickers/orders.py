# orders.py
"""
HTTP endpoints for payment webhooks and order lookups.

1.  POST /webhooks/stripe       - Stripe delivery, drives the fulfillment workflow.
2.  GET  /orders/confirm        - Confirmation page poller (sessionId -> order).
3.  GET  /orders/{order_id}     - Order + items, status refreshed from Printify.
4.  POST /orders/webhook        - Printify status-change push.
"""
import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

import stripe
from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, status
from pydantic import BaseModel

from .fulfillment import FulfillmentService
from .models import Order
from .notifications import BrevoMailer
from .payments import retrieve_payment_reference
from .printify import PrintifyClient, map_vendor_status
from .settings import Settings, get_settings
from .store import OrderStore, get_order_store

log = logging.getLogger(__name__)

# --- Routers ---
webhook_router = APIRouter(prefix="/webhooks", tags=["Webhooks"])
router = APIRouter(prefix="/orders", tags=["Orders"])

PRINTIFY_STATUS_EVENT = "order:status-changed"


# ===================================================================
# DEPENDENCIES
# ===================================================================

def get_printify_client(settings: Settings = Depends(get_settings)) -> PrintifyClient:
    return PrintifyClient(settings)


def get_mailer(settings: Settings = Depends(get_settings)) -> BrevoMailer:
    return BrevoMailer(settings)


def get_fulfillment_service(
    settings: Settings = Depends(get_settings),
    store: OrderStore = Depends(get_order_store),
    printify: PrintifyClient = Depends(get_printify_client),
    mailer: BrevoMailer = Depends(get_mailer),
) -> FulfillmentService:
    return FulfillmentService(settings, store, printify, mailer)


# ===================================================================
# PYDANTIC SCHEMAS
# ===================================================================

class OrderItemOut(BaseModel):
    id: int
    printify_product_id: str
    printify_variant_id: int
    quantity: int
    image_url: str
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class OrderOut(BaseModel):
    id: int
    customer_id: int
    printify_order_id: Optional[str]
    stripe_payment_id: str
    status: str
    shipping_first_name: str
    shipping_last_name: str
    shipping_email: str
    shipping_phone: Optional[str]
    shipping_country: str
    shipping_region: Optional[str]
    shipping_address1: str
    shipping_address2: Optional[str]
    shipping_city: str
    shipping_zip: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    items: List[OrderItemOut]

    class Config:
        from_attributes = True


class PrintifyWebhookData(BaseModel):
    id: Optional[str] = None
    status: Optional[str] = None


class PrintifyWebhookIn(BaseModel):
    event: str
    data: Optional[PrintifyWebhookData] = None


def _order_response(order: Order) -> Dict[str, Any]:
    return {"order": OrderOut.model_validate(order).model_dump(mode="json")}


# ===================================================================
# ENDPOINT 1: STRIPE WEBHOOK
# ===================================================================

@webhook_router.post("/stripe", include_in_schema=False)
async def stripe_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(None),
    service: FulfillmentService = Depends(get_fulfillment_service),
):
    """
    Handles incoming webhooks from Stripe.

    The body is read raw: the signature covers the exact bytes Stripe sent.
    Workflow errors are turned into `{"error": ...}` responses by the
    application's exception handler.
    """
    payload = await request.body()
    log.info("[Webhook] Received request")
    result = await service.handle_webhook(payload, stripe_signature)
    return result.to_response()


# ===================================================================
# ENDPOINT 2: CONFIRMATION POLLING
# ===================================================================

@router.get("/confirm")
async def confirm_and_fetch_order(
    session_id: Optional[str] = Query(None, alias="sessionId"),
    settings: Settings = Depends(get_settings),
    store: OrderStore = Depends(get_order_store),
):
    """
    Resolves a Checkout Session to its payment intent and waits for the
    webhook-created order to appear, for up to CONFIRM_POLL_ATTEMPTS tries.
    """
    if not session_id:
        raise HTTPException(status_code=400, detail="Missing or invalid sessionId query parameter")

    try:
        payment_reference = await retrieve_payment_reference(session_id, settings.STRIPE_SECRET_KEY)
    except stripe.InvalidRequestError:
        raise HTTPException(status_code=404, detail="Invalid session ID provided.")
    except stripe.StripeError as e:
        log.error(f"[Confirm] Stripe error fetching session {session_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to retrieve order details")

    if not payment_reference:
        log.error(f"[Confirm] No payment_intent found for session: {session_id}")
        raise HTTPException(status_code=404, detail="Payment information not found for this session.")

    attempts = settings.CONFIRM_POLL_ATTEMPTS
    for attempt in range(attempts):
        log.info(f"[Confirm] Polling DB for order with PI: {payment_reference} (Attempt {attempt + 1}/{attempts})")
        order = await store.find_order_by_payment_reference(payment_reference)
        if order is not None:
            log.info(f"[Confirm] Order found in DB: {order.id}")
            return _order_response(order)
        if attempt < attempts - 1:
            await asyncio.sleep(settings.CONFIRM_POLL_DELAY_SECONDS)

    log.error(f"[Confirm] Order with PI: {payment_reference} not found after {attempts} attempts.")
    raise HTTPException(
        status_code=404,
        detail="Order processing is delayed or failed. Please check back later or contact support.",
    )


# ===================================================================
# ENDPOINT 3: PRINTIFY STATUS WEBHOOK
# ===================================================================

@router.post("/webhook")
async def printify_webhook(
    payload: PrintifyWebhookIn,
    store: OrderStore = Depends(get_order_store),
):
    """Applies a Printify `order:status-changed` push to the matching local order."""
    if payload.event != PRINTIFY_STATUS_EVENT or payload.data is None or not payload.data.id:
        return {"success": True}
    if not payload.data.status:
        raise HTTPException(status_code=400, detail="Status change without a status")

    order = await store.find_order_by_vendor_id(payload.data.id)
    if order is None:
        raise HTTPException(status_code=404, detail="Order not found")

    new_status = map_vendor_status(payload.data.status)
    _, changed = await store.apply_status(order.id, new_status)
    if changed:
        log.info(f"Order {order.id} moved to '{new_status.value}' by Printify webhook")
    return {"success": True}


# ===================================================================
# ENDPOINT 4: ORDER STATUS
# ===================================================================

@router.get("/{order_id}")
async def get_order_status(
    order_id: int,
    store: OrderStore = Depends(get_order_store),
    printify: PrintifyClient = Depends(get_printify_client),
):
    """Returns the order and its items, first refreshing the status from Printify."""
    order = await store.get_order(order_id)
    if order is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Order not found")

    if order.printify_order_id:
        vendor_status = await printify.get_order_status(order.printify_order_id)
        new_status = map_vendor_status(vendor_status)
        if new_status.value != order.status:
            updated, changed = await store.apply_status(order.id, new_status)
            if changed:
                log.info(f"Order {order.id} status refreshed from Printify: '{order.status}' -> '{new_status.value}'")
                order = updated

    return _order_response(order)
