"""
Contact form → Slack.
"""
import logging

from fastapi import APIRouter, Depends, HTTPException, Request

from config import settings
from middleware.rate_limit import MODERATE, rate_limit
from middleware.security import ensure_not_replayed
from models import ContactRequest
from services import notification_service
from utils.validators import sanitize_string, validate_email, validate_person_name

logger = logging.getLogger(__name__)
router = APIRouter(tags=["contact"])


@router.post("/contact")
async def submit_contact(
    body: ContactRequest,
    request: Request,
    _rate=Depends(rate_limit(MODERATE)),
):
    ensure_not_replayed(body.model_dump(), request, "Duplicate contact form submission detected")

    name = validate_person_name(body.name)
    email = validate_email(body.email)
    subject = sanitize_string(body.subject)
    message = sanitize_string(body.message)

    if not settings.slack_contact_webhook_url:
        logger.warning("Contact form received but SLACK_CONTACT_WEBHOOK_URL is not set")
        return {"success": False, "message": "Slack contact webhook not configured"}

    sent = await notification_service.notify_contact(
        name=name, email=email, subject=subject, message=message,
    )
    if not sent:
        raise HTTPException(status_code=502, detail="Failed to send message. Please try again later.")

    logger.info(f"📬 Contact form forwarded ({subject[:40]!r})")
    return {"success": True, "message": "Message sent successfully"}
