"""
PhonePe payment endpoints.

  POST     /phonepe/create-order  → PENDING order + hosted checkout URL
  GET|POST /phonepe/callback      → shopper returns from PhonePe (browser redirect)
  POST     /phonepe/verify        → storefront polls the authoritative status
  POST     /webhooks/phonepe      → server-to-server notification (HMAC signed)

All four feed checkout_service.apply_gateway_status().
"""
import json
import logging
from typing import Optional
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from database import get_db
from db_models import User
from deps import require_authenticated_user
from domain.enums import EventSource, PaymentState
from domain.errors import ConfigurationError
from middleware.rate_limit import MODERATE, STRICT, rate_limit
from middleware.security import ensure_not_replayed, require_same_origin
from models import CreateOrderRequest, VerifyPaymentRequest
from services import checkout_service, order_service
from services.phonepe_client import extract_transaction_id
from utils.safe_logging import log_security_event
from utils.validators import ORDER_ID_RE, validate_order_id

logger = logging.getLogger(__name__)
router = APIRouter(tags=["payments"])


def _storefront_redirect(path: str, **params) -> RedirectResponse:
    url = f"{settings.public_base_url.rstrip('/')}{path}"
    query = {k: v for k, v in params.items() if v is not None}
    if query:
        url = f"{url}?{urlencode(query)}"
    return RedirectResponse(url=url, status_code=status.HTTP_303_SEE_OTHER)


# ════════════════════════════════════════════════════════════════════
# Checkout
# ════════════════════════════════════════════════════════════════════


@router.post("/phonepe/create-order")
async def create_order(
    body: CreateOrderRequest,
    request: Request,
    user: User = Depends(require_authenticated_user),
    db: AsyncSession = Depends(get_db),
    _origin=Depends(require_same_origin),
    _rate=Depends(rate_limit(MODERATE)),
):
    ensure_not_replayed(
        {"user": user.id, "body": body.model_dump(by_alias=True)},
        request,
        "Duplicate order request detected",
    )
    return await checkout_service.create_checkout(
        db,
        user=user,
        amount=body.amount,
        currency=body.currency,
        merchant_order_id=body.merchant_order_id,
        cart=[line.model_dump() for line in body.cart],
        customer_info=body.customer_info.model_dump(),
    )


@router.api_route("/phonepe/callback", methods=["GET", "POST"])
async def payment_callback(
    merchant_order_id: Optional[str] = Query(None, alias="merchantOrderId"),
    db: AsyncSession = Depends(get_db),
):
    """Browser redirect target. Always answers with a redirect to the storefront."""
    if not merchant_order_id or len(merchant_order_id) > 64 or not ORDER_ID_RE.match(merchant_order_id):
        return _storefront_redirect("/checkout", error="invalid_callback")

    try:
        order = await order_service.get_order_by_merchant_id(db, merchant_order_id)
        if not order:
            logger.warning(f"Callback for unknown order {merchant_order_id}")
            return _storefront_redirect("/checkout", error="invalid_callback")

        gateway_status, _ = await checkout_service.sync_order_with_gateway(
            db, order, source=EventSource.CALLBACK.value,
        )
    except ConfigurationError:
        return _storefront_redirect("/checkout", error="system_error")
    except Exception as e:
        logger.error(f"Payment callback failed for {merchant_order_id}: {e}", exc_info=True)
        return _storefront_redirect("/checkout", error="callback_error")

    if order.payment_state == PaymentState.COMPLETED.value:
        return _storefront_redirect(
            "/order-success",
            order_id=merchant_order_id,
            transactionId=order.payment_transaction_id or extract_transaction_id(gateway_status),
            phonePeOrderId=order.phonepe_order_id or gateway_status.get("orderId"),
        )
    if order.payment_state == PaymentState.FAILED.value:
        return _storefront_redirect("/checkout", error="payment_failed", orderId=merchant_order_id)
    return _storefront_redirect("/checkout", status="pending", orderId=merchant_order_id)


@router.post("/phonepe/verify")
async def verify_payment(
    body: VerifyPaymentRequest,
    user: User = Depends(require_authenticated_user),
    db: AsyncSession = Depends(get_db),
    _rate=Depends(rate_limit(STRICT)),
):
    merchant_order_id = validate_order_id(body.merchant_order_id)
    order = await order_service.get_user_order(db, order_id=merchant_order_id, user_id=user.id)
    gateway_status, _ = await checkout_service.sync_order_with_gateway(
        db, order, source=EventSource.VERIFY.value,
    )
    return checkout_service.build_verify_response(order, gateway_status)


# ════════════════════════════════════════════════════════════════════
# Webhook
# ════════════════════════════════════════════════════════════════════


@router.post("/webhooks/phonepe")
async def phonepe_webhook(request: Request, db: AsyncSession = Depends(get_db)):
    raw_body = await request.body()
    signature = request.headers.get("x-phonepe-signature")

    if not checkout_service.verify_webhook_signature(raw_body, signature):
        log_security_event(
            "invalid_webhook_signature",
            path=request.url.path,
            signature_present=bool(signature),
        )
        raise HTTPException(status_code=401, detail="Invalid webhook signature")

    try:
        data = json.loads(raw_body)
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise HTTPException(status_code=400, detail="Invalid JSON payload")
    if not isinstance(data, dict):
        raise HTTPException(status_code=400, detail="Invalid JSON payload")

    result = await checkout_service.process_webhook(db, data)
    return {"status": "success", "result": result}


@router.get("/webhooks/phonepe")
async def phonepe_webhook_challenge(challenge: Optional[str] = Query(None)):
    if challenge:
        return {"challenge": challenge}
    return {"status": "ok"}
