# fulfillment.py
"""
Post-payment fulfillment workflow.

A verified `checkout.session.completed` event is driven through these stages,
strictly in order, each failing fast:

1.  Idempotency check on the payment intent id (one Order per payment).
2.  Customer find-or-create by email.
3.  Line-item materialization: every image id resolves to a usable URL
    before any vendor call is made.
4.  Printify product provisioning, one product per line item, concurrently.
5.  One Printify order covering every provisioned item.
6.  Local Order + items + shipping snapshot, written in one commit.
7.  Best-effort confirmation email.

Known gap: vendor products (stage 4) and a vendor order (stage 5) are not
rolled back when a later stage fails. A retried delivery provisions new
products. The Printify order carries the payment intent id as its
`external_id` so orphans can be reconciled by hand.
"""
import asyncio
import enum
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from .errors import NotFoundError, StorageError, VendorError
from .models import OrderItem
from .notifications import BrevoMailer
from .payments import (
    CHECKOUT_COMPLETED,
    LineItemRef,
    OrderIntent,
    ShippingAddress,
    extract_order_intent,
    verify_payment_event,
)
from .printify import PrintifyClient, VendorLineItem
from .settings import Settings
from .store import OrderStore

log = logging.getLogger(__name__)


class Outcome(str, enum.Enum):
    PROCESSED = "processed"
    ALREADY_PROCESSED = "already_processed"
    IGNORED = "ignored"


@dataclass
class FulfillmentResult:
    outcome: Outcome
    order_id: Optional[int] = None
    message: Optional[str] = None

    def to_response(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"received": True}
        if self.order_id is not None:
            body["orderId"] = self.order_id
        if self.message:
            body["message"] = self.message
        return body


@dataclass
class MaterializedItem:
    index: int
    image_id: int
    image_url: str
    quantity: int


@dataclass
class ProvisionedItem:
    item: MaterializedItem
    product_id: str
    variant_id: int


class FulfillmentService:
    def __init__(
        self,
        settings: Settings,
        store: OrderStore,
        printify: PrintifyClient,
        mailer: BrevoMailer,
    ):
        self.settings = settings
        self.store = store
        self.printify = printify
        self.mailer = mailer

    # ===================================================================
    # ENTRY POINTS
    # ===================================================================

    async def handle_webhook(self, payload: bytes, sig_header: Optional[str]) -> FulfillmentResult:
        """Verifies a raw Stripe delivery and fulfills it if it is a completed checkout."""
        event = verify_payment_event(payload, sig_header, self.settings.STRIPE_WEBHOOK_SECRET)
        log.info(f"[Webhook {event.id}] Signature verified. Type: {event.type}")

        if event.type != CHECKOUT_COMPLETED:
            log.info(f"[Webhook {event.id}] Received unhandled event type: {event.type}")
            return FulfillmentResult(Outcome.IGNORED, message=f"Unhandled event type: {event.type}")

        intent = extract_order_intent(event.data.object)
        return await self.fulfill(intent, event.id)

    async def fulfill(self, intent: OrderIntent, event_id: str) -> FulfillmentResult:
        tag = f"[Webhook {event_id}]"
        reference = intent.payment_reference
        log.info(
            f"{tag} Fulfilling PI {reference} (checkout session {intent.checkout_session_id}) "
            f"with {len(intent.line_items)} line item(s)"
        )

        existing = await self.store.find_order_by_payment_reference(reference)
        if existing is not None:
            log.info(f"{tag} Order for PI {reference} already processed (DB ID: {existing.id}). Skipping.")
            return FulfillmentResult(Outcome.ALREADY_PROCESSED, existing.id, "Order already processed")

        customer_id = await self.resolve_customer(intent.shipping_address, tag)
        items = await self.materialize_line_items(intent.line_items, tag)
        provisioned = await self.provision_products(items, tag)
        printify_order_id = await self.submit_vendor_order(provisioned, intent, tag)

        try:
            order, created = await self.store.create_order(
                customer_id=customer_id,
                payment_reference=reference,
                printify_order_id=printify_order_id,
                shipping=intent.shipping_address.model_dump(),
                items=[
                    OrderItem(
                        printify_product_id=p.product_id,
                        printify_variant_id=p.variant_id,
                        quantity=p.item.quantity,
                        image_url=p.item.image_url,
                    )
                    for p in provisioned
                ],
            )
        except StorageError:
            log.critical(
                f"{tag} Printify order {printify_order_id} exists for PI {reference} "
                f"but the local order could not be saved. Manual reconciliation required."
            )
            raise

        if not created:
            log.warning(
                f"{tag} Lost the race for PI {reference} to order {order.id}; "
                f"Printify order {printify_order_id} is a duplicate."
            )
            return FulfillmentResult(Outcome.ALREADY_PROCESSED, order.id, "Order already processed")

        log.info(f"{tag} Database order created with ID: {order.id}")
        await self.dispatch_notification(order, intent.shipping_address, tag)
        return FulfillmentResult(Outcome.PROCESSED, order.id)

    # ===================================================================
    # STAGES
    # ===================================================================

    async def resolve_customer(self, address: ShippingAddress, tag: str = "") -> int:
        email = address.email.strip().lower()
        customer_id = await self.store.upsert_customer(email, address.full_name)
        log.info(f"{tag} Customer found/created with ID: {customer_id}")
        return customer_id

    async def materialize_line_items(self, line_items: Sequence[LineItemRef], tag: str = "") -> List[MaterializedItem]:
        """Resolves every line item to a usable image URL, or fails before any vendor call."""
        images = await self.store.fetch_generated_images(item.image_id for item in line_items)

        missing = []
        materialized = []
        for index, item in enumerate(line_items):
            image = images.get(item.image_id)
            url = image.usable_url() if image is not None else None
            if not url:
                missing.append(item.image_id)
                continue
            materialized.append(MaterializedItem(index, item.image_id, url, item.quantity))

        if missing:
            ids = ", ".join(str(image_id) for image_id in dict.fromkeys(missing))
            log.error(f"{tag} Generated image(s) not found or without a usable URL: {ids}")
            raise NotFoundError(f"Generated image not found: {ids}")
        return materialized

    async def _provision_one(self, item: MaterializedItem) -> ProvisionedItem:
        product = await self.printify.create_product(item.image_url, label=f"image-{item.image_id}")
        return ProvisionedItem(item, product.product_id, product.variant_id)

    async def provision_products(self, items: Sequence[MaterializedItem], tag: str = "") -> List[ProvisionedItem]:
        """
        Creates one Printify product per line item, all at once.

        Every request is allowed to settle before the first failure (in line
        item order) is reported.
        """
        results = await asyncio.gather(
            *(self._provision_one(item) for item in items), return_exceptions=True
        )

        failures = [(item, r) for item, r in zip(items, results) if isinstance(r, BaseException)]
        for item, error in failures:
            log.error(f"{tag} Printify product creation FAILED for line item {item.index} (image {item.image_id}): {error}")
        if failures:
            item, error = failures[0]
            if isinstance(error, VendorError):
                raise VendorError(
                    f"Printify product creation failed for line item {item.index} "
                    f"(image {item.image_id}): {error.message}",
                    item_index=item.index,
                ) from error
            raise error

        for p in results:
            log.info(f"{tag} Printify product created: {p.product_id}, Variant ID: {p.variant_id}")
        return list(results)

    async def submit_vendor_order(
        self, provisioned: Sequence[ProvisionedItem], intent: OrderIntent, tag: str = ""
    ) -> str:
        line_items = [
            VendorLineItem(product_id=p.product_id, variant_id=p.variant_id, quantity=p.item.quantity)
            for p in provisioned
        ]
        log.info(f"{tag} Creating Printify order with external_id: {intent.payment_reference}")
        try:
            printify_order_id = await self.printify.create_order(
                line_items,
                shipping_address=intent.shipping_address.model_dump(exclude_none=True),
                external_id=intent.payment_reference,
            )
        except VendorError as e:
            log.error(f"{tag} Printify createOrder FAILED: {e}")
            raise
        log.info(f"{tag} Printify order created: {printify_order_id}")
        return printify_order_id

    async def dispatch_notification(self, order, address: ShippingAddress, tag: str = "") -> None:
        """Fire-and-forget confirmation email. Never changes the workflow outcome."""
        try:
            sent = await self.mailer.send_order_confirmation(order, address.first_name)
        except Exception:
            log.exception(f"{tag} FAILED to send confirmation email for order {order.id}")
            return
        if not sent:
            log.warning(f"{tag} Confirmation email for order {order.id} was not sent")

