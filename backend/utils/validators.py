"""
Input validation utilities for the BubbleBeads storefront.

Reusable validators for emails, phone numbers, order identifiers and free
text. Each raises HTTPException(400) with a readable message; the *_param
helpers wrap them as FastAPI Path/Query dependencies.
"""
import re

from fastapi import HTTPException, Path, Query

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
PHONE_RE = re.compile(r"^\+?[1-9]\d{1,14}$")
ORDER_ID_RE = re.compile(r"^[a-zA-Z0-9_-]+$")
NAME_RE = re.compile(r"^[a-zA-Z\s]+$")
_CONTROL_CHARS_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")


def validate_email(email: str) -> str:
    """Validate and normalise (strip + lowercase) an email address."""
    value = (email or "").strip().lower()
    if not value:
        raise HTTPException(status_code=400, detail="Email is required")
    if len(value) > 254 or not EMAIL_RE.match(value):
        raise HTTPException(status_code=400, detail="Invalid email address")
    return value


def normalize_phone(phone: str) -> str:
    """Drop spaces, dashes and brackets so '+91 98765-43210' validates."""
    return re.sub(r"[\s\-()]", "", phone or "")


def validate_phone(phone: str) -> str:
    """
    Validate an E.164-style phone number.

    Returns the normalised number. Raises HTTPException(400) otherwise.
    """
    value = normalize_phone(phone)
    if not PHONE_RE.match(value):
        raise HTTPException(status_code=400, detail="Invalid phone number")
    return value


def validate_order_id(order_id: str) -> str:
    if not order_id:
        raise HTTPException(status_code=400, detail="Order ID is required")
    if len(order_id) > 64 or not ORDER_ID_RE.match(order_id):
        raise HTTPException(status_code=400, detail="Invalid order ID format")
    return order_id


def validate_person_name(name: str, field: str = "Name") -> str:
    value = (name or "").strip()
    if not value:
        raise HTTPException(status_code=400, detail=f"{field} is required")
    if len(value) > 100:
        raise HTTPException(status_code=400, detail=f"{field} must be less than 100 characters")
    if not NAME_RE.match(value):
        raise HTTPException(status_code=400, detail=f"{field} can only contain letters and spaces")
    return value


def sanitize_string(value: str) -> str:
    """Strip angle brackets and control characters from free text."""
    if not value:
        return ""
    cleaned = _CONTROL_CHARS_RE.sub("", value)
    return cleaned.replace("<", "").replace(">", "").strip()


def validated_order_id(order_id: str = Path(..., description="Order ID")) -> str:
    """FastAPI dependency for validating order id path parameters."""
    return validate_order_id(order_id)


def validated_merchant_order_query(
    merchant_order_id: str = Query(..., alias="merchantOrderId", description="Merchant order ID"),
) -> str:
    """FastAPI dependency for validating ?merchantOrderId= query parameters."""
    return validate_order_id(merchant_order_id)
