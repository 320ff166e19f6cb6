"""
Cart service: cart validation against server prices, plus the persisted
per-user cart and wishlist.

Validation functions are pure and work on plain dicts
({id, name, price, quantity}) as posted by the storefront. The persisted cart
stores only product ids and quantities; prices are always looked up from the
catalog when the cart is read.
"""
import logging
import math

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from db_models import CartItem, WishlistItem
from domain.constants import (
    PRICE_TOLERANCE,
    SHIPPING_DEFAULT_FEE,
    SHIPPING_FREE_MIN_BOXES,
    SHIPPING_TWO_BOX_FEE,
)
from domain.errors import NotFoundError
from services import catalog_service

logger = logging.getLogger(__name__)


# ════════════════════════════════════════════════════════════════════
# Validation
# ════════════════════════════════════════════════════════════════════


def _to_number(value, default: float = 0.0) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if math.isnan(number) or math.isinf(number):
        return default
    return number


def sanitize_cart_items(items: list[dict] | None) -> list[dict]:
    """
    Normalise raw client cart lines.

    id/name are trimmed strings, price a float (0 if unparseable), quantity
    max(1, floor(quantity)). Lines without an id or name are dropped.
    """
    sanitized = []
    for item in items or []:
        if not isinstance(item, dict):
            continue
        product_id = str(item.get("id") or "").strip()
        name = str(item.get("name") or "").strip()
        if not product_id or not name:
            continue
        quantity = _to_number(item.get("quantity"), 1.0) or 1.0
        sanitized.append(
            {
                "id": product_id,
                "name": name,
                "price": _to_number(item.get("price")),
                "quantity": max(1, math.floor(quantity)),
            }
        )
    return sanitized


def validate_cart(items: list[dict]) -> dict:
    """
    Check each line against the catalog.

    Returns {is_valid, errors, validated_items, total}. validated_items carry
    the server price and a line_total; total is rounded to 2 dp.
    """
    if not items:
        return {"is_valid": False, "errors": ["Cart is empty"], "validated_items": [], "total": 0.0}

    errors: list[str] = []
    validated: list[dict] = []
    total = 0.0

    for item in items:
        name = item.get("name") or item.get("id") or "unknown"
        quantity = item.get("quantity")
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
            errors.append(f"Invalid quantity for {name}: {quantity}")
            continue

        product_id = item.get("id", "")
        try:
            unit_price = catalog_service.get_product_price(product_id)
        except NotFoundError:
            errors.append(f"Product not found: {product_id}")
            continue
        product = catalog_service.get_product(product_id)

        client_price = _to_number(item.get("price"))
        if abs(client_price - unit_price) > PRICE_TOLERANCE:
            errors.append(
                f"Price mismatch for {name}. Expected: {unit_price:g}, Received: {client_price:g}"
            )
            continue

        line_total = unit_price * quantity
        total += line_total
        validated.append(
            {
                "id": product.id,
                "name": product.name,
                "price": product.price,
                "quantity": quantity,
                "line_total": round(line_total, 2),
            }
        )

    return {
        "is_valid": not errors and bool(validated),
        "errors": errors,
        "validated_items": validated,
        "total": round(total, 2),
    }


def total_boxes(items: list[dict]) -> int:
    boxes = 0
    for item in items:
        product = catalog_service.get_product(item.get("id", ""))
        per_item = product.boxes if product else 1
        boxes += per_item * int(item.get("quantity", 0))
    return boxes


def calculate_shipping(items: list[dict]) -> float:
    """3+ boxes ship free, exactly 2 boxes cost 49, a single box costs 99."""
    boxes = total_boxes(items)
    if boxes <= 0:
        return 0.0
    if boxes >= SHIPPING_FREE_MIN_BOXES:
        return 0.0
    if boxes == 2:
        return SHIPPING_TWO_BOX_FEE
    return SHIPPING_DEFAULT_FEE


def validate_cart_and_total(items: list[dict] | None, submitted_total: float) -> dict:
    """
    Sanitize, validate, add shipping and compare with what the client says
    it will pay. Prices are GST inclusive, so no tax is added.
    """
    sanitized = sanitize_cart_items(items)
    cart = validate_cart(sanitized)

    if not cart["is_valid"]:
        return {
            "is_valid": False,
            "errors": cart["errors"],
            "validated_items": cart["validated_items"],
            "product_total": cart["total"],
            "shipping": 0.0,
            "calculated_total": 0.0,
        }

    shipping = calculate_shipping(cart["validated_items"])
    calculated_total = round(cart["total"] + shipping, 2)
    errors = []
    submitted = _to_number(submitted_total)
    if abs(submitted - calculated_total) > PRICE_TOLERANCE:
        errors.append(f"Total mismatch: expected {calculated_total:.2f}, got {submitted:.2f}")

    return {
        "is_valid": not errors,
        "errors": errors,
        "validated_items": cart["validated_items"],
        "product_total": cart["total"],
        "shipping": shipping,
        "calculated_total": calculated_total,
    }


# ════════════════════════════════════════════════════════════════════
# Persisted cart
# ════════════════════════════════════════════════════════════════════


def _require_product(product_id: str):
    product = catalog_service.get_product(product_id)
    if product is None:
        raise NotFoundError("Product", product_id)
    return product


async def _get_line(db: AsyncSession, user_id: str, product_id: str) -> CartItem | None:
    res = await db.execute(
        select(CartItem).where(CartItem.user_id == user_id, CartItem.product_id == product_id)
    )
    return res.scalar_one_or_none()


async def add_to_cart(db: AsyncSession, *, user_id: str, product_id: str, quantity: int = 1) -> CartItem:
    """Add a product; an existing line has its quantity increased."""
    _require_product(product_id)
    line = await _get_line(db, user_id, product_id)
    if line:
        line.quantity += max(1, quantity)
    else:
        line = CartItem(user_id=user_id, product_id=product_id, quantity=max(1, quantity))
        db.add(line)
    await db.flush()
    return line


async def update_cart_item(db: AsyncSession, *, user_id: str, product_id: str, quantity: int) -> CartItem | None:
    """Set a line's quantity. quantity <= 0 removes the line and returns None."""
    if quantity <= 0:
        await remove_from_cart(db, user_id=user_id, product_id=product_id)
        return None
    line = await _get_line(db, user_id, product_id)
    if not line:
        _require_product(product_id)
        line = CartItem(user_id=user_id, product_id=product_id, quantity=quantity)
        db.add(line)
    else:
        line.quantity = quantity
    await db.flush()
    return line


async def remove_from_cart(db: AsyncSession, *, user_id: str, product_id: str) -> bool:
    res = await db.execute(
        delete(CartItem).where(CartItem.user_id == user_id, CartItem.product_id == product_id)
    )
    return (res.rowcount or 0) > 0


async def clear_cart(db: AsyncSession, *, user_id: str) -> int:
    res = await db.execute(delete(CartItem).where(CartItem.user_id == user_id))
    return res.rowcount or 0


async def get_cart(db: AsyncSession, *, user_id: str) -> dict:
    """Priced view of the user's cart: items, subtotal, shipping, total."""
    res = await db.execute(
        select(CartItem).where(CartItem.user_id == user_id).order_by(CartItem.added_at)
    )
    lines = res.scalars().all()

    items = []
    for line in lines:
        product = catalog_service.get_product(line.product_id)
        if product is None:
            # Product withdrawn from the catalog; hide it rather than fail
            logger.warning(f"Cart line for unknown product {line.product_id} (user {line.user_id[:8]})")
            continue
        items.append(
            {
                "id": product.id,
                "name": product.name,
                "price": product.price,
                "quantity": line.quantity,
                "image": product.image,
                "line_total": round(product.price * line.quantity, 2),
            }
        )

    subtotal = round(sum(i["line_total"] for i in items), 2)
    shipping = calculate_shipping(items)
    return {
        "items": items,
        "item_count": sum(i["quantity"] for i in items),
        "subtotal": subtotal,
        "shipping": shipping,
        "total": round(subtotal + shipping, 2),
    }


# ════════════════════════════════════════════════════════════════════
# Wishlist
# ════════════════════════════════════════════════════════════════════


async def add_to_wishlist(db: AsyncSession, *, user_id: str, product_id: str) -> bool:
    """Returns True if added, False if it was already on the list."""
    _require_product(product_id)
    res = await db.execute(
        select(WishlistItem).where(
            WishlistItem.user_id == user_id, WishlistItem.product_id == product_id
        )
    )
    if res.scalar_one_or_none():
        return False
    db.add(WishlistItem(user_id=user_id, product_id=product_id))
    await db.flush()
    return True


async def remove_from_wishlist(db: AsyncSession, *, user_id: str, product_id: str) -> bool:
    res = await db.execute(
        delete(WishlistItem).where(
            WishlistItem.user_id == user_id, WishlistItem.product_id == product_id
        )
    )
    return (res.rowcount or 0) > 0


async def get_wishlist(db: AsyncSession, *, user_id: str) -> list[dict]:
    res = await db.execute(
        select(WishlistItem).where(WishlistItem.user_id == user_id).order_by(WishlistItem.added_at)
    )
    products = []
    for entry in res.scalars().all():
        product = catalog_service.get_product(entry.product_id)
        if product:
            products.append(product.to_dict())
    return products
