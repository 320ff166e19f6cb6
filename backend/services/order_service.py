"""
Order service: numbering, lookups and serialisation of orders.

Payment state changes are NOT made here; see checkout_service.apply_gateway_status.
"""
import logging
from datetime import datetime

from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from db_models import Counter, Order, PaymentEvent
from domain.constants import (
    INVOICE_NO_COUNTER,
    INVOICE_NO_PREFIX,
    ORDER_NO_COUNTER,
    ORDER_NO_PREFIX,
)
from domain.errors import NotFoundError

logger = logging.getLogger(__name__)


# ════════════════════════════════════════════════════════════════════
# Sequential numbers
# ════════════════════════════════════════════════════════════════════


async def next_sequence(db: AsyncSession, name: str) -> int:
    """
    Increment and return the named counter.

    The UPDATE takes the row lock, so two concurrent checkouts cannot receive
    the same value; the counter row is created on first use.
    """
    res = await db.execute(
        update(Counter).where(Counter.name == name).values(value=Counter.value + 1)
    )
    if not res.rowcount:
        db.add(Counter(name=name, value=1))
        await db.flush()
        return 1
    value = await db.execute(select(Counter.value).where(Counter.name == name))
    return value.scalar_one()


def format_number(prefix: str, when: datetime, sequence: int) -> str:
    """ORD-20250301-0007 style identifiers."""
    return f"{prefix}-{when.strftime('%Y%m%d')}-{sequence:04d}"


async def assign_numbers(db: AsyncSession, order: Order) -> None:
    when = order.order_date or datetime.utcnow()
    order.order_no = format_number(ORDER_NO_PREFIX, when, await next_sequence(db, ORDER_NO_COUNTER))
    order.invoice_no = format_number(INVOICE_NO_PREFIX, when, await next_sequence(db, INVOICE_NO_COUNTER))


# ════════════════════════════════════════════════════════════════════
# Lookups
# ════════════════════════════════════════════════════════════════════


async def get_order(db: AsyncSession, order_id: str) -> Order | None:
    """Find by internal id or merchant order id."""
    res = await db.execute(
        select(Order).where(or_(Order.id == order_id, Order.merchant_order_id == order_id))
    )
    return res.scalar_one_or_none()


async def get_order_by_merchant_id(db: AsyncSession, merchant_order_id: str) -> Order | None:
    res = await db.execute(select(Order).where(Order.merchant_order_id == merchant_order_id))
    return res.scalar_one_or_none()


async def get_user_order(db: AsyncSession, *, order_id: str, user_id: str) -> Order:
    """Order owned by user_id; someone else's order is reported as not found."""
    order = await get_order(db, order_id)
    if not order or order.user_id != user_id:
        raise NotFoundError("Order", order_id)
    return order


async def list_user_orders(
    db: AsyncSession, *, user_id: str, limit: int = 50, offset: int = 0
) -> tuple[list[Order], int]:
    total = await db.scalar(select(func.count(Order.id)).where(Order.user_id == user_id))
    res = await db.execute(
        select(Order)
        .where(Order.user_id == user_id)
        .order_by(Order.order_date.desc())
        .limit(limit)
        .offset(offset)
    )
    return list(res.scalars().all()), total or 0


async def list_all_orders(
    db: AsyncSession,
    *,
    limit: int | None = 50,
    offset: int = 0,
    state: str | None = None,
    search: str | None = None,
) -> tuple[list[Order], int]:
    """Admin listing, newest first. search matches merchant id, email or name."""
    conditions = []
    if state:
        conditions.append(Order.payment_state == state.upper())
    if search:
        like = f"%{search.strip()}%"
        conditions.append(
            or_(
                Order.merchant_order_id.ilike(like),
                Order.customer_email.ilike(like),
                Order.customer_name.ilike(like),
                Order.order_no.ilike(like),
            )
        )

    total = await db.scalar(select(func.count(Order.id)).where(*conditions))
    query = select(Order).where(*conditions).order_by(Order.order_date.desc()).offset(offset)
    if limit is not None:
        query = query.limit(limit)
    res = await db.execute(query)
    return list(res.scalars().all()), total or 0


async def get_order_with_events(db: AsyncSession, order_id: str) -> Order:
    res = await db.execute(
        select(Order)
        .options(selectinload(Order.events))
        .where(or_(Order.id == order_id, Order.merchant_order_id == order_id))
    )
    order = res.scalar_one_or_none()
    if not order:
        raise NotFoundError("Order", order_id)
    return order


# ════════════════════════════════════════════════════════════════════
# Serialisation
# ════════════════════════════════════════════════════════════════════


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def serialize_items(order: Order) -> list[dict]:
    return [
        {
            "id": item.product_id,
            "name": item.name,
            "price": item.price,
            "quantity": item.quantity,
            "total_price": round(item.price * item.quantity, 2),
        }
        for item in order.items
    ]


def serialize_order(order: Order, *, include_payment: bool = True) -> dict:
    data = {
        "id": order.id,
        "merchantOrderId": order.merchant_order_id,
        "orderNo": order.order_no,
        "invoiceNo": order.invoice_no,
        "paymentState": order.payment_state,
        "total": order.total,
        "subtotal": order.subtotal,
        "shipping": order.shipping,
        "currency": order.currency,
        "customerName": order.customer_name,
        "customerEmail": order.customer_email,
        "customerPhone": order.customer_phone,
        "address": order.address,
        "orderDate": _iso(order.order_date),
        "paidAt": _iso(order.paid_at),
        "items": serialize_items(order),
    }
    if include_payment:
        data.update(
            {
                "phonePeOrderId": order.phonepe_order_id,
                "paymentMode": order.payment_mode,
                "paymentTransactionId": order.payment_transaction_id,
                "utr": order.utr,
                "bankName": order.bank_name,
                "accountType": order.account_type,
                "cardLast4": order.card_last4,
                "payableAmount": order.payable_amount,
                "paymentTimestamp": _iso(order.payment_timestamp),
                "failureReason": order.failure_reason,
            }
        )
    return data


def serialize_event(event: PaymentEvent) -> dict:
    return {
        "id": event.id,
        "source": event.source,
        "eventType": event.event_type,
        "state": event.state,
        "applied": bool(event.applied),
        "createdAt": _iso(event.created_at),
    }


def format_items_summary(order: Order) -> str:
    """'name (xQ) - ₹price; ...' as used in exports and notifications."""
    return "; ".join(
        f"{item.name} (x{item.quantity}) - ₹{item.price:g}" for item in order.items
    )
