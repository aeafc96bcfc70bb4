# printify.py
"""
Async client for the Printify API.

Covers exactly what fulfillment needs: registering a design image by URL,
creating a sticker product bound to the configured blueprint and print
provider, submitting a multi-item order, and reading an order's status.
Every transport, HTTP-status or response-shape failure surfaces as
`VendorError`; requests carry a bounded timeout.
"""
import logging
from datetime import date
from typing import Any, Dict, List, Optional, Sequence

import httpx
from pydantic import BaseModel, ConfigDict, ValidationError

from .errors import ConfigurationError, VendorError
from .models import OrderStatus
from .settings import Settings

# --- Configuration & Setup ---
logger = logging.getLogger(__name__)


# --- Pydantic Schemas for Response Validation ---

class _PrintifyUpload(BaseModel):
    """Internal model to parse the response of an image upload."""
    model_config = ConfigDict(coerce_numbers_to_str=True)

    id: str


class _PrintifyVariant(BaseModel):
    id: int
    title: Optional[str] = None


class _PrintifyVariantList(BaseModel):
    variants: List[_PrintifyVariant]


class _PrintifyProduct(BaseModel):
    model_config = ConfigDict(coerce_numbers_to_str=True)

    id: str


class _PrintifyOrder(BaseModel):
    model_config = ConfigDict(coerce_numbers_to_str=True)

    id: str
    status: Optional[str] = None


class ProvisionedProduct(BaseModel):
    """A product created in the shop, with the variant selected for ordering."""
    product_id: str
    variant_id: int


class VendorLineItem(BaseModel):
    product_id: str
    variant_id: int
    quantity: int


# --- Client ---

class PrintifyClient:
    def __init__(self, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.api_key = settings.PRINTIFY_API_KEY
        self.shop_id = settings.PRINTIFY_SHOP_ID
        self.base_url = settings.PRINTIFY_API_URL.rstrip("/")
        self.blueprint_id = settings.PRINTIFY_BLUEPRINT_ID
        self.print_provider_id = settings.PRINTIFY_PRINT_PROVIDER_ID
        self.price_cents = settings.PRINTIFY_VARIANT_PRICE_CENTS
        self.shipping_method = settings.PRINTIFY_SHIPPING_METHOD
        self.timeout = settings.VENDOR_TIMEOUT_SECONDS
        self._transport = transport

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    async def _request(self, method: str, endpoint: str, json: Optional[Dict[str, Any]] = None) -> Any:
        """Makes an authenticated request and returns the decoded JSON body."""
        if not self.api_key or not self.shop_id:
            raise ConfigurationError("Printify is not configured (PRINTIFY_API_KEY / PRINTIFY_SHOP_ID).")

        url = f"{self.base_url}/{endpoint.lstrip('/')}"
        logger.info(f"Printify request: {method} {url}")
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.request(method, url, headers=self._headers(), json=json)
                response.raise_for_status()
                return response.json()
        except httpx.TimeoutException as e:
            raise VendorError(f"Printify request timed out: {method} {endpoint} ({type(e).__name__})")
        except httpx.HTTPStatusError as e:
            raise VendorError(
                f"Printify API error ({e.response.status_code}) on {method} {endpoint}: {e.response.text}"
            )
        except httpx.HTTPError as e:
            raise VendorError(f"Printify request failed: {method} {endpoint}: {e}")
        except ValueError:
            raise VendorError(f"Printify returned a non-JSON response for {method} {endpoint}")

    @staticmethod
    def _parse(model, data: Any, what: str):
        try:
            return model.model_validate(data)
        except ValidationError as e:
            raise VendorError(f"Unexpected Printify response for {what}: {e}")

    # --- Catalog & Products ---

    async def upload_image(self, image_url: str, file_name: str) -> str:
        """Registers a publicly reachable image with Printify and returns its upload id."""
        data = await self._request("POST", "uploads/images.json", {"file_name": file_name, "url": image_url})
        return self._parse(_PrintifyUpload, data, "image upload").id

    async def get_variants(self) -> List[_PrintifyVariant]:
        endpoint = (
            f"catalog/blueprints/{self.blueprint_id}"
            f"/print_providers/{self.print_provider_id}/variants.json"
        )
        data = await self._request("GET", endpoint)
        return self._parse(_PrintifyVariantList, data, "variant list").variants

    async def create_product(self, image_url: str, label: str) -> ProvisionedProduct:
        """
        Creates a sticker product for `image_url`.

        1. Uploads the image.
        2. Picks the first variant the blueprint/provider pair offers.
        3. Creates the product with that single variant enabled and the
           image centred on the front print area.
        """
        image_id = await self.upload_image(image_url, file_name=f"sticker-design-{label}.png")

        variants = await self.get_variants()
        if not variants:
            raise VendorError(
                f"No variants offered for blueprint {self.blueprint_id} / provider {self.print_provider_id}"
            )
        variant = variants[0]
        logger.info(f"Using variant '{variant.title}' (ID: {variant.id}) for design {label}.")

        product_data = {
            "title": f"Kiss-Cut Vinyl Sticker - {date.today().isoformat()} - {label}",
            "description": "Custom Kiss-Cut Vinyl Sticker",
            "blueprint_id": self.blueprint_id,
            "print_provider_id": self.print_provider_id,
            "variants": [
                {"id": variant.id, "price": self.price_cents, "is_enabled": True},
            ],
            "print_areas": [
                {
                    "variant_ids": [variant.id],
                    "placeholders": [
                        {
                            "position": "front",
                            "images": [
                                {"id": image_id, "x": 0.5, "y": 0.5, "scale": 0.8, "angle": 0},
                            ],
                        }
                    ],
                }
            ],
        }
        data = await self._request("POST", f"shops/{self.shop_id}/products.json", product_data)
        product = self._parse(_PrintifyProduct, data, "product creation")
        return ProvisionedProduct(product_id=product.id, variant_id=variant.id)

    # --- Orders ---

    async def create_order(
        self,
        line_items: Sequence[VendorLineItem],
        shipping_address: Dict[str, Any],
        external_id: str,
    ) -> str:
        """Submits one order covering every line item. Returns the Printify order id."""
        order_data = {
            "external_id": external_id,
            "label": external_id,
            "line_items": [item.model_dump() for item in line_items],
            "shipping_method": self.shipping_method,
            "send_shipping_notification": False,
            "address_to": shipping_address,
        }
        data = await self._request("POST", f"shops/{self.shop_id}/orders.json", order_data)
        return self._parse(_PrintifyOrder, data, "order creation").id

    async def get_order_status(self, order_id: str) -> str:
        data = await self._request("GET", f"shops/{self.shop_id}/orders/{order_id}.json")
        order = self._parse(_PrintifyOrder, data, "order lookup")
        if not order.status:
            raise VendorError(f"Printify order {order_id} has no status")
        return order.status


# --- Status mapping ---

_SHIPPED_STATUSES = {"shipped", "partially-fulfilled", "in-transit"}
_FULFILLED_STATUSES = {"fulfilled", "delivered"}
_CANCELLED_STATUSES = {"canceled", "cancelled"}


def map_vendor_status(vendor_status: str) -> OrderStatus:
    """Maps a Printify order status onto the local order status."""
    status = vendor_status.strip().lower()
    if status in _CANCELLED_STATUSES:
        return OrderStatus.CANCELLED
    if status in _FULFILLED_STATUSES:
        return OrderStatus.FULFILLED
    if status in _SHIPPED_STATUSES:
        return OrderStatus.SHIPPED
    # pending, on-hold, checking-quality, sending-to-production, in-production...
    return OrderStatus.PROCESSING
