"""
Invoice Service: short-lived invoice tokens, GST breakdown and rendering.

Flow:
    1. Shopper asks POST /orders/{id}/invoice-token   → 5 minute JWT
    2. Shopper opens /invoices/{id}/download?token=… → HTML or PDF
       or POST /invoices/{id}/email                   → PDF via Resend

The token binds the order id to the user id; authorize_invoice_access() checks
both against the request before any order data is read.

Prices are GST inclusive (18%, split CGST 9% + SGST 9%). Money is handled as
Decimal here so the printed figures always add up to the amount charged.
"""
import logging
from datetime import datetime, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal
from io import BytesIO

import jwt
from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import getSampleStyleSheet
from reportlab.lib.units import mm
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from db_models import Order, User
from domain.constants import GST_RATE, SELLER_ADDRESS, SELLER_EMAIL, SELLER_NAME
from domain.enums import PaymentState
from domain.errors import (
    ConfigurationError,
    ConflictError,
    EmailDeliveryError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from services import email_service, order_service
from services.async_executor import run_blocking
from utils.safe_logging import log_security_event
from utils.templating import render_template

logger = logging.getLogger(__name__)

TWO_PLACES = Decimal("0.01")


# ════════════════════════════════════════════════════════════════════
# Tokens
# ════════════════════════════════════════════════════════════════════


def _signing_secret() -> str:
    secret = settings.invoice_signing_secret
    if not secret:
        raise ConfigurationError("Invoice token secret is not configured")
    return secret


def issue_invoice_token(*, order_id: str, user_id: str) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "orderId": order_id,
        "userId": user_id,
        "iss": settings.invoice_token_issuer,
        "aud": settings.invoice_token_audience,
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(minutes=settings.invoice_token_ttl_minutes)).timestamp()),
    }
    return jwt.encode(payload, _signing_secret(), algorithm="HS256")


def verify_invoice_token(token: str) -> dict:
    try:
        return jwt.decode(
            token,
            _signing_secret(),
            algorithms=["HS256"],
            issuer=settings.invoice_token_issuer,
            audience=settings.invoice_token_audience,
            options={"require": ["exp", "iss", "aud"]},
        )
    except jwt.InvalidTokenError:
        raise PermissionDeniedError("Invalid or expired token")


async def authorize_invoice_access(
    db: AsyncSession, *, order_id: str, token: str | None, user: User
) -> Order:
    """Validate the invoice token for this order and user and return the order."""
    if not token:
        raise ValidationError("Missing invoice token")

    payload = verify_invoice_token(token)

    if payload.get("orderId") != order_id:
        log_security_event("invoice_token_order_mismatch", user_id=user.id, order_id=order_id)
        raise PermissionDeniedError("Token does not match the requested order")

    if payload.get("userId") != user.id:
        log_security_event("invoice_token_user_mismatch", user_id=user.id, order_id=order_id)
        raise PermissionDeniedError("Token does not belong to the current user")

    order = await order_service.get_order(db, order_id)
    if not order or order.user_id != user.id:
        raise NotFoundError("Order", order_id)

    if order.payment_state != PaymentState.COMPLETED.value:
        raise ConflictError("Invoice is only available for paid orders")

    return order


# ════════════════════════════════════════════════════════════════════
# GST
# ════════════════════════════════════════════════════════════════════


def _money(value) -> Decimal:
    return Decimal(str(value)).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def gst_breakdown(gross) -> dict:
    """
    Split a GST-inclusive amount into taxable value, CGST and SGST.

    CGST is half the tax rounded to paise; SGST takes the remainder so that
    subtotal + cgst + sgst == gross exactly.
    """
    gross = _money(gross)
    rate = Decimal(str(GST_RATE))
    subtotal = _money(gross / (Decimal("1") + rate))
    tax = gross - subtotal
    cgst = _money(tax / 2)
    sgst = tax - cgst
    return {
        "subtotal": subtotal,
        "tax": tax,
        "cgst": cgst,
        "sgst": sgst,
        "rate_percent": int(rate * 100),
        "half_rate_percent": int(rate * 50),
    }


# ════════════════════════════════════════════════════════════════════
# Rendering
# ════════════════════════════════════════════════════════════════════


def invoice_context(order: Order) -> dict:
    """Everything the HTML and PDF renderers print."""
    # GST is extracted from the amount paid, shipping included
    tax = gst_breakdown(order.total)
    when = order.paid_at or order.order_date or datetime.utcnow()
    return {
        "seller": {"name": SELLER_NAME, "address": SELLER_ADDRESS, "email": SELLER_EMAIL},
        "invoice": {
            "invoice_no": order.invoice_no,
            "order_no": order.order_no,
            "date": when.strftime("%d %b %Y"),
        },
        "customer": {
            "name": order.customer_name,
            "email": order.customer_email,
            "phone": order.customer_phone,
            "address": order.address,
        },
        "payment": {
            "merchant_order_id": order.merchant_order_id,
            "transaction_id": order.payment_transaction_id,
            "mode": order.payment_mode,
        },
        "items": order_service.serialize_items(order),
        "tax": tax,
        "shipping": _money(order.shipping or 0),
        "grand_total": _money(order.total),
    }


def render_invoice_html(order: Order) -> str:
    return render_template("invoice.html", **invoice_context(order))


def _build_pdf(ctx: dict) -> bytes:
    buffer = BytesIO()
    doc = SimpleDocTemplate(
        buffer, pagesize=A4,
        leftMargin=18 * mm, rightMargin=18 * mm, topMargin=18 * mm, bottomMargin=18 * mm,
        title=f"Invoice {ctx['invoice']['invoice_no']}",
    )
    styles = getSampleStyleSheet()
    small = styles["Normal"]

    def inr(value) -> str:
        # Helvetica has no rupee glyph
        return f"Rs. {float(value):,.2f}"

    story = [
        Paragraph(ctx["seller"]["name"], styles["Title"]),
        Paragraph(f"{ctx['seller']['address']}<br/>{ctx['seller']['email']}", small),
        Spacer(1, 6 * mm),
        Paragraph("TAX INVOICE", styles["Heading2"]),
        Paragraph(
            f"Invoice No: <b>{ctx['invoice']['invoice_no']}</b><br/>"
            f"Order No: {ctx['invoice']['order_no']}<br/>"
            f"Date: {ctx['invoice']['date']}",
            small,
        ),
        Spacer(1, 4 * mm),
        Paragraph(
            "<b>Bill To</b><br/>"
            f"{_escape(ctx['customer']['name'])}<br/>"
            f"{_escape(ctx['customer']['address'])}<br/>"
            f"{_escape(ctx['customer']['email'])} | {_escape(ctx['customer']['phone'])}",
            small,
        ),
        Spacer(1, 6 * mm),
    ]

    rows = [["#", "Item", "Qty", "Unit Price", "Amount"]]
    for index, item in enumerate(ctx["items"], start=1):
        rows.append([
            str(index), item["name"], str(item["quantity"]),
            inr(item["price"]), inr(item["total_price"]),
        ])
    items_table = Table(rows, colWidths=[10 * mm, 80 * mm, 15 * mm, 30 * mm, 30 * mm])
    items_table.setStyle(TableStyle([
        ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
        ("LINEBELOW", (0, 0), (-1, 0), 1, colors.black),
        ("LINEBELOW", (0, 1), (-1, -1), 0.25, colors.lightgrey),
        ("ALIGN", (2, 0), (-1, -1), "RIGHT"),
    ]))
    story.append(items_table)
    story.append(Spacer(1, 4 * mm))

    tax = ctx["tax"]
    totals = Table(
        [
            ["Shipping (included)", inr(ctx["shipping"])],
            ["Taxable value", inr(tax["subtotal"])],
            [f"CGST ({tax['half_rate_percent']}%)", inr(tax["cgst"])],
            [f"SGST ({tax['half_rate_percent']}%)", inr(tax["sgst"])],
            ["Grand Total", inr(ctx["grand_total"])],
        ],
        colWidths=[135 * mm, 30 * mm],
    )
    totals.setStyle(TableStyle([
        ("ALIGN", (0, 0), (-1, -1), "RIGHT"),
        ("FONTNAME", (0, -1), (-1, -1), "Helvetica-Bold"),
        ("LINEABOVE", (0, -1), (-1, -1), 1, colors.black),
    ]))
    story.append(totals)
    story.append(Spacer(1, 6 * mm))

    payment = ctx["payment"]
    reference = f"Merchant Order ID: {payment['merchant_order_id']}"
    if payment["transaction_id"]:
        reference += f"<br/>Transaction ID: {payment['transaction_id']}"
    story.append(Paragraph(reference, small))
    story.append(Paragraph("Prices are inclusive of GST. This is a computer generated invoice.", small))

    doc.build(story)
    return buffer.getvalue()


def _escape(value: str | None) -> str:
    return (value or "").replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")


async def render_invoice_pdf(order: Order) -> bytes:
    """PDF bytes; reportlab runs in the thread pool."""
    return await run_blocking(_build_pdf, invoice_context(order))


def pdf_filename(order: Order) -> str:
    return f"invoice-{order.invoice_no or order.merchant_order_id}.pdf"


async def email_invoice(order: Order) -> None:
    """Render the PDF and send it to the order's email. Raises 502 on failure."""
    pdf = await render_invoice_pdf(order)
    html = render_invoice_html(order)
    ok, error = await email_service.send_email(
        to=order.customer_email,
        subject=f"Your Invoice - Order #{order.order_no}",
        html=html,
        text=f"Please find attached the invoice for your order {order.order_no}.",
        attachments=[email_service.pdf_attachment(pdf_filename(order), pdf)],
    )
    if not ok:
        logger.error(f"Invoice email failed for {order.merchant_order_id}: {error}")
        raise EmailDeliveryError("Failed to send invoice email", details={"reason": error})
    logger.info(f"🧾 Invoice {order.invoice_no} emailed for order {order.order_no}")
