"""
SQLAlchemy ORM models for the BubbleBeads storefront.

Tables:
    users            shopper and admin accounts (bcrypt password hash)
    cart_items       server-side cart lines, one row per (user, product)
    wishlist_items   saved products, one row per (user, product)
    orders           checkout orders and their payment state
    order_items      priced line items captured at checkout
    payment_events   every gateway state observation applied to an order
    counters         monotonically increasing sequences (order/invoice numbers)

Product data is not stored here: the catalog is static and lives in
services/catalog_service.py so prices always come from the server.
"""
import uuid
from datetime import datetime

from sqlalchemy import (
    Column, Integer, String, Float, DateTime, Text, ForeignKey,
    UniqueConstraint, Index,
)
from sqlalchemy.orm import relationship

from database import Base


def _uuid() -> str:
    return str(uuid.uuid4())


class User(Base):
    """Storefront account. role is "user" or "admin"."""
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=_uuid)
    email = Column(String(254), unique=True, nullable=False, index=True)
    password_hash = Column(String(100), nullable=False)
    first_name = Column(String(100), nullable=True)
    last_name = Column(String(100), nullable=True)
    name = Column(String(200), nullable=True)
    phone = Column(String(20), nullable=True)
    address = Column(Text, nullable=True)
    role = Column(String(20), nullable=False, default="user", index=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    orders = relationship("Order", back_populates="user", lazy="select")


# ════════════════════════════════════════════════════════════════════
# CART / WISHLIST
# ════════════════════════════════════════════════════════════════════

class CartItem(Base):
    __tablename__ = "cart_items"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(String(50), nullable=False)
    quantity = Column(Integer, nullable=False, default=1)
    added_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("user_id", "product_id", name="uq_cart_user_product"),
    )


class WishlistItem(Base):
    __tablename__ = "wishlist_items"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(String(50), nullable=False)
    added_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("user_id", "product_id", name="uq_wishlist_user_product"),
    )


# ════════════════════════════════════════════════════════════════════
# ORDERS: payment state machine lives in services/checkout_service.py
# ════════════════════════════════════════════════════════════════════

class Order(Base):
    """
    A checkout order.

    Created PENDING before the shopper is redirected to PhonePe and moved to
    COMPLETED or FAILED by the callback, webhook, verify endpoint or the
    background reconciler. Amounts are rupees (GST inclusive).
    """
    __tablename__ = "orders"

    id = Column(String(36), primary_key=True, default=_uuid)
    merchant_order_id = Column(String(64), unique=True, nullable=False, index=True)
    order_no = Column(String(32), unique=True, nullable=True)     # ORD-YYYYMMDD-####
    invoice_no = Column(String(32), unique=True, nullable=True)   # W-YYYYMMDD-####
    user_id = Column(String(36), ForeignKey("users.id"), nullable=True, index=True)

    # Customer snapshot at checkout
    customer_name = Column(String(200), nullable=False)
    customer_email = Column(String(254), nullable=False)
    customer_phone = Column(String(20), nullable=False)
    address = Column(Text, nullable=False)

    # Amounts
    subtotal = Column(Float, nullable=False, default=0.0)
    shipping = Column(Float, nullable=False, default=0.0)
    total = Column(Float, nullable=False)
    currency = Column(String(10), nullable=False, default="INR")

    # Gateway
    phonepe_order_id = Column(String(64), nullable=True, index=True)
    payment_url = Column(Text, nullable=True)
    expire_at = Column(DateTime, nullable=True)
    payment_state = Column(String(20), nullable=False, default="PENDING")  # PENDING | COMPLETED | FAILED
    failure_reason = Column(String(100), nullable=True)

    # Filled in from the latest COMPLETED payment detail
    payment_mode = Column(String(50), nullable=True)
    payment_transaction_id = Column(String(100), nullable=True)
    utr = Column(String(100), nullable=True)
    bank_name = Column(String(100), nullable=True)
    account_type = Column(String(50), nullable=True)
    card_last4 = Column(String(4), nullable=True)
    payable_amount = Column(Float, nullable=True)
    payment_timestamp = Column(DateTime, nullable=True)

    order_date = Column(DateTime, default=datetime.utcnow, index=True)
    paid_at = Column(DateTime, nullable=True)

    # Reconciler bookkeeping
    reconcile_attempts = Column(Integer, nullable=False, default=0)
    last_reconciled_at = Column(DateTime, nullable=True)

    user = relationship("User", back_populates="orders")
    items = relationship(
        "OrderItem", back_populates="order", lazy="selectin",
        cascade="all, delete-orphan",
    )
    events = relationship(
        "PaymentEvent", back_populates="order", lazy="select",
        cascade="all, delete-orphan", order_by="PaymentEvent.created_at",
    )

    __table_args__ = (
        # User order history: filter by user, newest first
        Index("ix_orders_user_date", "user_id", "order_date"),
        # Reconciler scan: pending orders by age
        Index("ix_orders_state_date", "payment_state", "order_date"),
    )


class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(String(36), ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(String(50), nullable=False)
    name = Column(String(200), nullable=False)
    price = Column(Float, nullable=False)  # server-side unit price at checkout
    quantity = Column(Integer, nullable=False, default=1)

    order = relationship("Order", back_populates="items")


class PaymentEvent(Base):
    """
    Audit + idempotency log for gateway observations.

    dedupe_key is unique for webhook deliveries so a redelivered event is
    recognised before it touches the order. Other sources leave it null.
    """
    __tablename__ = "payment_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(String(36), ForeignKey("orders.id", ondelete="CASCADE"), nullable=True, index=True)
    merchant_order_id = Column(String(64), nullable=False, index=True)
    source = Column(String(20), nullable=False)  # webhook | callback | verify | reconciler
    event_type = Column(String(64), nullable=True)
    state = Column(String(20), nullable=False)
    dedupe_key = Column(String(128), unique=True, nullable=True)
    payload = Column(Text, nullable=True)  # sanitized JSON
    applied = Column(Integer, nullable=False, default=0)  # 1 if it changed the order state
    created_at = Column(DateTime, default=datetime.utcnow, index=True)

    order = relationship("Order", back_populates="events")


class Counter(Base):
    """Named sequences. value is the last number handed out."""
    __tablename__ = "counters"

    name = Column(String(50), primary_key=True)
    value = Column(Integer, nullable=False, default=0)
