"""
Log-safe views of request payloads and customer data.

redact() is applied to anything that may carry credentials before it is
logged or persisted. The mask_* helpers shorten PII for channels such as
Slack that should not receive full customer details.
"""
import logging
from typing import Any

logger = logging.getLogger(__name__)

REDACTED = "[REDACTED]"

SENSITIVE_KEY_PARTS = (
    "password", "token", "secret", "key", "authorization",
    "cookie", "session", "auth", "credential", "private",
)

# Card / authentication fields a gateway payload may echo back
GATEWAY_SENSITIVE_KEYS = {"cardnumber", "cvv", "pin", "otp"}


def _is_sensitive(key: str, extra: set[str] | None = None) -> bool:
    lowered = key.lower()
    if extra and lowered in extra:
        return True
    return any(part in lowered for part in SENSITIVE_KEY_PARTS)


def redact(obj: Any, _extra: set[str] | None = None) -> Any:
    """Return a copy of obj with sensitive values replaced, walking dicts and lists."""
    if isinstance(obj, dict):
        return {
            k: (REDACTED if isinstance(k, str) and _is_sensitive(k, _extra) else redact(v, _extra))
            for k, v in obj.items()
        }
    if isinstance(obj, (list, tuple)):
        return [redact(v, _extra) for v in obj]
    return obj


def sanitize_gateway_payload(obj: Any) -> Any:
    """redact() plus card/OTP fields found in payment provider payloads."""
    return redact(obj, GATEWAY_SENSITIVE_KEYS)


def log_security_event(event: str, **context: Any) -> None:
    """Emit a WARNING line tagged [SECURITY] with redacted context."""
    logger.warning(f"[SECURITY] {event.upper()} {redact(context)}")


# ── PII masking ─────────────────────────────────────────────────────

def mask_email(email: str | None) -> str:
    if not email or "@" not in email:
        return "***"
    local, domain = email.split("@", 1)
    return f"{local[:2]}***@{domain}"


def mask_phone(phone: str | None) -> str:
    digits = "".join(ch for ch in (phone or "") if ch.isdigit())
    if len(digits) <= 4:
        return "*" * len(digits)
    return f"{digits[:2]}{'*' * (len(digits) - 4)}{digits[-2:]}"


def mask_address(address: str | None) -> str:
    """Keep only the last two comma-separated parts (city, state)."""
    parts = [p.strip() for p in (address or "").split(",") if p.strip()]
    if len(parts) >= 2:
        return f"*****, {parts[-2]}, {parts[-1]}"
    return "*****"
