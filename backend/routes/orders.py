"""
Order history and invoice endpoints for the signed-in shopper.

Invoices are gated twice: the bearer token identifies the user, and a
5 minute invoice token (POST /orders/{id}/invoice-token) binds the request to
one order.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import HTMLResponse, Response
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from database import get_db
from db_models import User
from deps import Pagination, pagination_params, require_authenticated_user
from domain.responses import paginated_response, success_response
from middleware.rate_limit import MODERATE, rate_limit
from models import InvoiceEmailRequest
from services import invoice_service, order_service
from utils.validators import validated_merchant_order_query, validated_order_id

logger = logging.getLogger(__name__)
router = APIRouter(tags=["orders"])


@router.get("/user/orders")
async def list_my_orders(
    user: User = Depends(require_authenticated_user),
    page: Pagination = Depends(pagination_params),
    db: AsyncSession = Depends(get_db),
):
    orders, total = await order_service.list_user_orders(
        db, user_id=user.id, limit=page["limit"], offset=page["offset"],
    )
    return paginated_response(
        [order_service.serialize_order(o) for o in orders],
        limit=page["limit"],
        offset=page["offset"],
        total=total,
    )


@router.get("/orders/{order_id}")
async def get_my_order(
    order_id: str = Depends(validated_order_id),
    user: User = Depends(require_authenticated_user),
    db: AsyncSession = Depends(get_db),
):
    order = await order_service.get_user_order(db, order_id=order_id, user_id=user.id)
    return success_response(order_service.serialize_order(order))


@router.get("/check-order")
async def check_order(
    merchant_order_id: str = Depends(validated_merchant_order_query),
    user: User = Depends(require_authenticated_user),
    db: AsyncSession = Depends(get_db),
):
    order = await order_service.get_user_order(db, order_id=merchant_order_id, user_id=user.id)
    return success_response({
        "id": order.id,
        "merchantOrderId": order.merchant_order_id,
        "orderNo": order.order_no,
        "paymentState": order.payment_state,
        "total": order.total,
        "transactionId": order.payment_transaction_id,
    })


# ── Invoices ────────────────────────────────────────────────────────

@router.post("/orders/{order_id}/invoice-token")
async def create_invoice_token(
    order_id: str = Depends(validated_order_id),
    user: User = Depends(require_authenticated_user),
    db: AsyncSession = Depends(get_db),
):
    order = await order_service.get_user_order(db, order_id=order_id, user_id=user.id)
    token = invoice_service.issue_invoice_token(order_id=order.id, user_id=user.id)
    return {
        "token": token,
        "expiresIn": f"{settings.invoice_token_ttl_minutes}m",
        "orderId": order.id,
    }


@router.get("/invoices/{order_id}/download")
async def download_invoice(
    order_id: str = Depends(validated_order_id),
    token: Optional[str] = Query(None),
    format: str = Query("html", pattern="^(html|pdf)$"),
    user: User = Depends(require_authenticated_user),
    db: AsyncSession = Depends(get_db),
):
    order = await invoice_service.authorize_invoice_access(db, order_id=order_id, token=token, user=user)

    if format == "pdf":
        pdf = await invoice_service.render_invoice_pdf(order)
        return Response(
            content=pdf,
            media_type="application/pdf",
            headers={
                "Content-Disposition": f'attachment; filename="{invoice_service.pdf_filename(order)}"',
                "Cache-Control": "no-store",
            },
        )

    return HTMLResponse(
        content=invoice_service.render_invoice_html(order),
        headers={"Cache-Control": "no-store"},
    )


@router.post("/invoices/{order_id}/email")
async def email_invoice(
    body: InvoiceEmailRequest,
    order_id: str = Depends(validated_order_id),
    user: User = Depends(require_authenticated_user),
    db: AsyncSession = Depends(get_db),
    _rate=Depends(rate_limit(MODERATE)),
):
    order = await invoice_service.authorize_invoice_access(db, order_id=order_id, token=body.token, user=user)
    await invoice_service.email_invoice(order)
    return {"success": True, "message": "Invoice emailed successfully"}
