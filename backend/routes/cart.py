"""
Cart and wishlist endpoints (authenticated).

The cart stores product ids and quantities only; every read prices the lines
from the catalog.
"""
from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from db_models import User
from deps import require_authenticated_user
from domain.responses import success_response
from middleware.rate_limit import LENIENT, MODERATE, rate_limit
from models import CartAddRequest, CartUpdateRequest, CartValidateRequest, WishlistAddRequest
from services import cart_service

router = APIRouter(tags=["cart"])


# ── Cart ────────────────────────────────────────────────────────────

@router.get("/cart")
async def get_cart(
    user: User = Depends(require_authenticated_user),
    db: AsyncSession = Depends(get_db),
):
    return success_response(await cart_service.get_cart(db, user_id=user.id))


@router.post("/cart/items", status_code=status.HTTP_201_CREATED)
async def add_cart_item(
    body: CartAddRequest,
    user: User = Depends(require_authenticated_user),
    db: AsyncSession = Depends(get_db),
    _rate=Depends(rate_limit(LENIENT)),
):
    await cart_service.add_to_cart(db, user_id=user.id, product_id=body.product_id, quantity=body.quantity)
    await db.commit()
    return success_response(await cart_service.get_cart(db, user_id=user.id))


@router.patch("/cart/items/{product_id}")
async def update_cart_item(
    product_id: str,
    body: CartUpdateRequest,
    user: User = Depends(require_authenticated_user),
    db: AsyncSession = Depends(get_db),
):
    await cart_service.update_cart_item(db, user_id=user.id, product_id=product_id, quantity=body.quantity)
    await db.commit()
    return success_response(await cart_service.get_cart(db, user_id=user.id))


@router.delete("/cart/items/{product_id}")
async def remove_cart_item(
    product_id: str,
    user: User = Depends(require_authenticated_user),
    db: AsyncSession = Depends(get_db),
):
    await cart_service.remove_from_cart(db, user_id=user.id, product_id=product_id)
    await db.commit()
    return success_response(await cart_service.get_cart(db, user_id=user.id))


@router.delete("/cart")
async def clear_cart(
    user: User = Depends(require_authenticated_user),
    db: AsyncSession = Depends(get_db),
):
    removed = await cart_service.clear_cart(db, user_id=user.id)
    await db.commit()
    return success_response({"removed": removed})


@router.post("/cart/validate")
async def validate_cart(
    body: CartValidateRequest,
    user: User = Depends(require_authenticated_user),
    _rate=Depends(rate_limit(MODERATE)),
):
    """Check posted lines and total against server prices."""
    items = [line.model_dump() for line in body.items]
    return success_response(cart_service.validate_cart_and_total(items, body.total))


# ── Wishlist ────────────────────────────────────────────────────────

@router.get("/wishlist")
async def get_wishlist(
    user: User = Depends(require_authenticated_user),
    db: AsyncSession = Depends(get_db),
):
    return success_response(await cart_service.get_wishlist(db, user_id=user.id))


@router.post("/wishlist", status_code=status.HTTP_201_CREATED)
async def add_to_wishlist(
    body: WishlistAddRequest,
    user: User = Depends(require_authenticated_user),
    db: AsyncSession = Depends(get_db),
):
    added = await cart_service.add_to_wishlist(db, user_id=user.id, product_id=body.product_id)
    await db.commit()
    return success_response({"added": added, "items": await cart_service.get_wishlist(db, user_id=user.id)})


@router.delete("/wishlist/{product_id}")
async def remove_from_wishlist(
    product_id: str,
    user: User = Depends(require_authenticated_user),
    db: AsyncSession = Depends(get_db),
):
    removed = await cart_service.remove_from_wishlist(db, user_id=user.id, product_id=product_id)
    await db.commit()
    return success_response({"removed": removed, "items": await cart_service.get_wishlist(db, user_id=user.id)})
