"""
Slack notifications and post-payment fan-out.

Slack messages go to incoming-webhook URLs. Customer details are masked in
new-order messages; the full record stays in the admin dashboard.

Nothing here raises into the payment path: failures are logged and reported
as False.
"""
import asyncio
import logging

import httpx

from config import settings
from services import email_service
from utils.safe_logging import mask_address, mask_email, mask_phone

logger = logging.getLogger(__name__)

SLACK_TIMEOUT_SECONDS = 10.0

# Strong references so scheduled tasks are not garbage collected mid-flight
_pending_tasks: set[asyncio.Task] = set()


async def post_slack(webhook_url: str, payload: dict) -> bool:
    if not webhook_url:
        return False
    try:
        async with httpx.AsyncClient(timeout=SLACK_TIMEOUT_SECONDS) as client:
            response = await client.post(webhook_url, json=payload)
        if response.status_code >= 400:
            logger.warning(f"Slack webhook returned {response.status_code}: {response.text[:200]}")
            return False
        return True
    except httpx.HTTPError as e:
        logger.warning(f"Slack webhook failed: {e}")
        return False


def _items_lines(order: dict) -> str:
    return "\n".join(
        f"• {item['name']} × {item['quantity']} = ₹{item['total_price']:.2f}"
        for item in order.get("items", [])
    )


async def notify_new_order(order: dict) -> bool:
    """Post a masked new-order message to the orders channel."""
    if not settings.slack_orders_webhook_url:
        return False

    text = (
        f":package: *New order {order['orderNo']}* ₹{order['total']:.2f}\n"
        f"Customer: {order['customerName']} | {mask_email(order['customerEmail'])} | "
        f"{mask_phone(order['customerPhone'])}\n"
        f"Ship to: {mask_address(order['address'])}\n"
        f"{_items_lines(order)}\n"
        f"Merchant order: {order['merchantOrderId']}"
        + (f" | Txn: {order['paymentTransactionId']}" if order.get("paymentTransactionId") else "")
    )
    return await post_slack(settings.slack_orders_webhook_url, {"text": text})


async def notify_contact(*, name: str, email: str, subject: str, message: str) -> bool:
    if not settings.slack_contact_webhook_url:
        return False
    payload = {
        "text": f"New contact form submission: {subject}",
        "blocks": [
            {"type": "header", "text": {"type": "plain_text", "text": "📬 New Contact Form Submission"}},
            {
                "type": "section",
                "fields": [
                    {"type": "mrkdwn", "text": f"*Name:*\n{name}"},
                    {"type": "mrkdwn", "text": f"*Email:*\n{email}"},
                ],
            },
            {"type": "section", "text": {"type": "mrkdwn", "text": f"*Subject:*\n{subject}"}},
            {"type": "section", "text": {"type": "mrkdwn", "text": f"*Message:*\n{message}"}},
        ],
    }
    return await post_slack(settings.slack_contact_webhook_url, payload)


async def dispatch_order_notifications(order: dict) -> dict:
    """Customer email, admin email and Slack for a just-completed order."""
    results = {}
    try:
        results["customer_email"], _ = await email_service.send_order_confirmation(order)
        results["admin_email"], _ = await email_service.send_admin_order_alert(order)
        results["slack"] = await notify_new_order(order)
    except Exception as e:
        logger.error(f"Post-payment notifications failed for {order.get('merchantOrderId')}: {e}", exc_info=True)
    logger.info(f"🔔 Notifications for {order.get('orderNo')}: {results}")
    return results


def schedule_order_notifications(order: dict) -> asyncio.Task:
    """Run dispatch_order_notifications in the background."""
    task = asyncio.create_task(dispatch_order_notifications(order))
    _pending_tasks.add(task)
    task.add_done_callback(_pending_tasks.discard)
    return task


async def drain_pending(timeout: float = 10.0) -> None:
    """Wait for in-flight notification tasks (app shutdown)."""
    if _pending_tasks:
        await asyncio.wait(list(_pending_tasks), timeout=timeout)
