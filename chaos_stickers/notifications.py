# notifications.py
import html
import logging
from typing import Optional, Sequence

import httpx

from .settings import Settings

log = logging.getLogger(__name__)

BREVO_API_URL = "https://api.brevo.com/v3/smtp/email"


def build_tracking_link(frontend_url: str, printify_order_id: str) -> str:
    return f"{frontend_url.rstrip('/')}/orders/{printify_order_id}"


def render_confirmation_html(first_name: str, order_id: int, tracking_link: str, items: Sequence) -> str:
    """`items` are OrderItem rows (anything with `image_url` and `quantity`)."""
    thumbnails = "\n".join(
        f"""
                <div class="item">
                    <img src="{html.escape(item.image_url, quote=True)}" alt="Your sticker" width="100" />
                    <p>Quantity: {item.quantity}</p>
                </div>"""
        for item in items
    )
    link = html.escape(tracking_link, quote=True)
    return f"""
        <html>
        <head>
            <style>
                body {{ font-family: Arial, sans-serif; line-height: 1.6; }}
                .container {{ width: 90%; margin: auto; padding: 20px; border: 1px solid #ddd; border-radius: 5px; }}
                .item {{ display: inline-block; margin-right: 12px; text-align: center; }}
                .footer {{ margin-top: 20px; font-size: 12px; color: #888; }}
            </style>
        </head>
        <body>
            <div class="container">
                <h2>Thanks for your Chaos Stickers order, {html.escape(first_name)}!</h2>
                <p>Your order #{order_id} has been confirmed and is now being processed.</p>
                {thumbnails}
                <p>You can check the status of your order here:</p>
                <p><a href="{link}">{link}</a></p>
                <p class="footer">We'll notify you again when it ships.</p>
            </div>
        </body>
        </html>
        """


class BrevoMailer:
    """Sends transactional email through the Brevo (Sendinblue) API."""

    def __init__(self, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.api_key = settings.BREVO_API_KEY
        self.sender = settings.EMAIL_SENDER
        self.sender_name = settings.EMAIL_SENDER_NAME
        self.frontend_url = settings.FRONTEND_URL
        self._transport = transport

    async def send_order_confirmation(self, order, first_name: str) -> bool:
        """
        Emails the order confirmation to the order's shipping address.

        Best-effort: returns False on any failure instead of raising, since
        the order is already committed when this runs.
        """
        email = order.shipping_email
        if not self.api_key or not self.sender:
            log.warning(f"EMAIL SKIPPED: BREVO_API_KEY or EMAIL_SENDER not set, no confirmation for order {order.id}")
            return False

        tracking_link = build_tracking_link(self.frontend_url, order.printify_order_id)
        headers = {
            "api-key": self.api_key,
            "accept": "application/json",
            "content-type": "application/json",
        }
        data = {
            "sender": {"email": self.sender, "name": self.sender_name},
            "to": [{"email": email}],
            "subject": f"Chaos Stickers Order Confirmation #{order.id}",
            "htmlContent": render_confirmation_html(first_name, order.id, tracking_link, order.items),
        }

        try:
            async with httpx.AsyncClient(timeout=15.0, transport=self._transport) as client:
                response = await client.post(BREVO_API_URL, headers=headers, json=data)

            if response.status_code == 201:
                log.info(f"EMAIL: Sent confirmation for order {order.id} to {email}")
                return True
            log.error(
                f"EMAIL FAILED: Brevo API error for order {order.id}. "
                f"Status: {response.status_code}, Response: {response.text}"
            )
            return False

        except httpx.HTTPError as e:
            log.error(f"EMAIL FAILED: Exception during Brevo API call for order {order.id}. Error: {e}")
            return False
