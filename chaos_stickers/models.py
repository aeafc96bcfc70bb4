# models.py
"""
Database models for Chaos Stickers.

This file defines all SQLAlchemy models used by the application,
providing a single source of truth for the database schema.
"""

import enum
from typing import Optional

from sqlalchemy import (
    Column, String, Boolean, DateTime, Text, Integer, ForeignKey, func
)
from sqlalchemy.orm import relationship

from .db import Base


class OrderStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    FULFILLED = "fulfilled"
    CANCELLED = "cancelled"


# Allowed local status transitions. `fulfilled` and `cancelled` are final.
ORDER_TRANSITIONS = {
    OrderStatus.PENDING: {OrderStatus.PROCESSING, OrderStatus.CANCELLED},
    OrderStatus.PROCESSING: {OrderStatus.SHIPPED, OrderStatus.FULFILLED, OrderStatus.CANCELLED},
    OrderStatus.SHIPPED: {OrderStatus.FULFILLED},
    OrderStatus.FULFILLED: set(),
    OrderStatus.CANCELLED: set(),
}


# -----------------------
# Models
# -----------------------
class Customer(Base):
    __tablename__ = "customers"
    __mapper_args__ = {"eager_defaults": True}
    id = Column(Integer, primary_key=True, autoincrement=True)
    email = Column(String(320), unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    orders = relationship("Order", back_populates="customer")
    images = relationship("GeneratedImage", back_populates="customer")


class GeneratedImage(Base):
    """One AI-produced design. Written by the generation pipeline, read-only here."""
    __tablename__ = "generated_images"
    __mapper_args__ = {"eager_defaults": True}
    id = Column(Integer, primary_key=True, autoincrement=True)
    prompt = Column(Text, nullable=False)
    image_url = Column(Text, nullable=False)
    no_background_url = Column(Text, nullable=True)
    has_removed_background = Column(Boolean, nullable=False, default=False)
    customer_id = Column(Integer, ForeignKey("customers.id"), nullable=True, index=True)  # anonymous designs allowed
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)

    customer = relationship("Customer", back_populates="images")

    def usable_url(self) -> Optional[str]:
        """The background-removed URL when removal succeeded, otherwise the primary URL."""
        if self.has_removed_background and self.no_background_url:
            return self.no_background_url
        return self.image_url or None


class Order(Base):
    __tablename__ = "orders"
    __mapper_args__ = {"eager_defaults": True}
    id = Column(Integer, primary_key=True, autoincrement=True)
    customer_id = Column(Integer, ForeignKey("customers.id"), nullable=False, index=True)
    printify_order_id = Column(String(128), nullable=True, index=True)
    # Idempotency key: one Order per Stripe payment intent.
    stripe_payment_id = Column(String(255), nullable=False, unique=True, index=True)
    status = Column(String(32), nullable=False, default=OrderStatus.PENDING.value, index=True)

    # Denormalized shipping snapshot
    shipping_first_name = Column(String(255), nullable=False)
    shipping_last_name = Column(String(255), nullable=False)
    shipping_email = Column(String(320), nullable=False)
    shipping_phone = Column(String(64), nullable=True)
    shipping_country = Column(String(64), nullable=False)
    shipping_region = Column(String(128), nullable=True)
    shipping_address1 = Column(String(512), nullable=False)
    shipping_address2 = Column(String(512), nullable=True)
    shipping_city = Column(String(255), nullable=False)
    shipping_zip = Column(String(32), nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    customer = relationship("Customer", back_populates="orders")
    items = relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItem.id",
    )

    def can_transition_to(self, new_status: OrderStatus) -> bool:
        return new_status in ORDER_TRANSITIONS[OrderStatus(self.status)]

    def transition_to(self, new_status: OrderStatus) -> bool:
        """Moves the order to `new_status` if allowed. Returns whether it changed."""
        if not self.can_transition_to(new_status):
            return False
        self.status = new_status.value
        return True

    def mark_submitted(self, printify_order_id: str) -> None:
        self.printify_order_id = printify_order_id
        self.transition_to(OrderStatus.PROCESSING)


class OrderItem(Base):
    __tablename__ = "order_items"
    __mapper_args__ = {"eager_defaults": True}
    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    printify_product_id = Column(String(128), nullable=False)
    printify_variant_id = Column(Integer, nullable=False)
    quantity = Column(Integer, nullable=False)
    # Resolved URL, not a foreign key: order history survives image record changes.
    image_url = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    order = relationship("Order", back_populates="items")
