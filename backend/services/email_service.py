"""
Transactional email via Resend.

send_email() never raises: it returns (ok, error) so callers on the payment
path can log a failure and carry on.
"""
import logging
from typing import Optional

import resend

from config import settings
from services.async_executor import run_blocking
from utils.templating import render_template

logger = logging.getLogger(__name__)


def _send_sync(payload: dict) -> tuple[bool, Optional[str]]:
    api_key = (settings.resend_api_key or "").strip()
    if not api_key:
        return False, "Resend API key is not configured."

    resend.api_key = api_key
    try:
        response = resend.Emails.send(payload)
    except Exception as exc:
        return False, str(exc)

    if not isinstance(response, dict) or not response.get("id"):
        return False, str(response)
    return True, None


async def send_email(
    *,
    to: str | list[str],
    subject: str,
    html: str,
    text: Optional[str] = None,
    attachments: Optional[list[dict]] = None,
) -> tuple[bool, Optional[str]]:
    """Send one email. Returns (ok, error_message)."""
    payload: dict = {
        "from": settings.email_from,
        "to": [to] if isinstance(to, str) else list(to),
        "subject": subject,
        "html": html,
    }
    if text:
        payload["text"] = text
    if attachments:
        payload["attachments"] = attachments

    ok, error = await run_blocking(_send_sync, payload)
    if ok:
        logger.info(f"📧 Email sent: {subject!r}")
    else:
        logger.warning(f"Email not sent ({subject!r}): {error}")
    return ok, error


def pdf_attachment(filename: str, content: bytes) -> dict:
    return {"filename": filename, "content": list(content)}


async def send_order_confirmation(order: dict) -> tuple[bool, Optional[str]]:
    """Customer confirmation for a serialized COMPLETED order."""
    html = render_template(
        "order_confirmation.html",
        order=order,
        for_admin=False,
        orders_url=f"{settings.public_base_url.rstrip('/')}/orders",
    )
    text = (
        f"Your BubbleBeads order {order['orderNo']} is confirmed. "
        f"Total paid: ₹{order['total']:.2f}."
    )
    return await send_email(
        to=order["customerEmail"],
        subject=f"Order Confirmed - {order['orderNo']}",
        html=html,
        text=text,
    )


async def send_admin_order_alert(order: dict) -> tuple[bool, Optional[str]]:
    if not settings.admin_email:
        return False, "Admin email is not configured."
    html = render_template("order_confirmation.html", order=order, for_admin=True, orders_url="")
    return await send_email(
        to=settings.admin_email,
        subject=f"New Order - {order['orderNo']} (₹{order['total']:.2f})",
        html=html,
    )
