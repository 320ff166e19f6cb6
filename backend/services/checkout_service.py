"""
Checkout service: order creation and the payment state machine.

Every order moves through exactly one of:

    PENDING ──► COMPLETED
        └─────► FAILED ──► COMPLETED   (only on authoritative provider status)

State is driven by four sources which all funnel into apply_gateway_status():

    callback    shopper's browser returns from PhonePe
    webhook     PhonePe server-to-server notification
    verify      storefront polls /phonepe/verify
    reconciler  background task re-checks stale PENDING orders

COMPLETED is terminal. Post-payment effects (clear cart, confirmation email,
Slack ping) run exactly once, on the transition into COMPLETED.

Security:
    - Webhook signatures are HMAC-SHA256 and FAIL CLOSED without a secret
    - Webhook success is re-checked against the order status API
    - The amount charged is recomputed from the catalog, never taken from the client
"""
import hashlib
import hmac
import json
import logging
import secrets
import string
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from db_models import Order, OrderItem, PaymentEvent, User
from domain.constants import (
    CURRENCY,
    MERCHANT_ORDER_PREFIX,
    MERCHANT_ORDER_SUFFIX_LENGTH,
)
from domain.enums import WEBHOOK_EVENT_STATES, EventSource, PaymentState
from domain.errors import (
    ConfigurationError,
    ConflictError,
    PaymentGatewayError,
    ValidationError,
)
from services import cart_service, notification_service, order_service
from services.phonepe_client import (
    PhonePeClient,
    extract_payment_info,
    extract_transaction_id,
    get_phonepe_client,
    paise_to_rupees,
    rupees_to_paise,
)
from utils.safe_logging import log_security_event, sanitize_gateway_payload
from utils.validators import ORDER_ID_RE, validate_email, validate_phone

logger = logging.getLogger(__name__)

_ORDER_ID_ALPHABET = string.ascii_uppercase + string.digits


def generate_merchant_order_id() -> str:
    """'CP' + 9 random [A-Z0-9] characters."""
    suffix = "".join(secrets.choice(_ORDER_ID_ALPHABET) for _ in range(MERCHANT_ORDER_SUFFIX_LENGTH))
    return f"{MERCHANT_ORDER_PREFIX}{suffix}"


def provider_state(value: Any) -> Optional[PaymentState]:
    """Map a provider state string onto PaymentState (None if unrecognised)."""
    try:
        return PaymentState(str(value or "").upper())
    except ValueError:
        return None


def _utcnow() -> datetime:
    return datetime.utcnow()


def _from_epoch_ms(value: Any) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromtimestamp(int(value) / 1000, tz=timezone.utc).replace(tzinfo=None)
    except (TypeError, ValueError, OverflowError):
        return None


# ════════════════════════════════════════════════════════════════════
# Order creation
# ════════════════════════════════════════════════════════════════════


def _checkout_response(order: Order) -> dict:
    return {
        "success": True,
        "orderId": order.phonepe_order_id,
        "merchantOrderId": order.merchant_order_id,
        "paymentUrl": order.payment_url,
        "state": order.payment_state,
        "expireAt": order.expire_at.isoformat() if order.expire_at else None,
        "orderNo": order.order_no,
        "total": order.total,
    }


async def _record_event(
    db: AsyncSession,
    *,
    order: Optional[Order],
    merchant_order_id: str,
    source: str,
    state: str,
    applied: bool,
    event_type: Optional[str] = None,
    payload: Any = None,
    dedupe_key: Optional[str] = None,
) -> PaymentEvent:
    event = PaymentEvent(
        order_id=order.id if order else None,
        merchant_order_id=merchant_order_id,
        source=source,
        event_type=event_type,
        state=state,
        applied=1 if applied else 0,
        dedupe_key=dedupe_key,
        payload=json.dumps(sanitize_gateway_payload(payload), default=str) if payload is not None else None,
    )
    db.add(event)
    await db.flush()
    return event


async def create_checkout(
    db: AsyncSession,
    *,
    user: User,
    amount: float,
    cart: list[dict],
    customer_info: dict,
    currency: str = CURRENCY,
    merchant_order_id: Optional[str] = None,
    client: Optional[PhonePeClient] = None,
) -> dict:
    """
    Validate the cart, persist a PENDING order, then open a PhonePe checkout.

    The order is committed before the gateway call so the callback/webhook can
    always find it. A gateway failure marks the order FAILED and re-raises.
    """
    if currency.upper() != CURRENCY:
        raise ValidationError(f"Unsupported currency: {currency}", field="currency")

    try:
        client = client or get_phonepe_client()
    except ConfigurationError:
        logger.error("Checkout attempted without PhonePe credentials configured")
        raise ConfigurationError("Payment service configuration error")

    validation = cart_service.validate_cart_and_total(cart, amount)
    if not validation["is_valid"]:
        raise ValidationError(
            "Cart validation failed",
            details={"errors": validation["errors"]},
        )

    email = validate_email(customer_info.get("email", ""))
    phone = validate_phone(customer_info.get("phone", ""))

    if merchant_order_id:
        if not ORDER_ID_RE.match(merchant_order_id) or len(merchant_order_id) > 64:
            raise ValidationError("Invalid order ID format", field="merchantOrderId")
        existing = await order_service.get_order_by_merchant_id(db, merchant_order_id)
        if existing:
            if (
                existing.user_id == user.id
                and existing.payment_state == PaymentState.PENDING.value
                and existing.payment_url
            ):
                logger.info(f"Checkout retry for {merchant_order_id}: returning existing session")
                return _checkout_response(existing)
            raise ConflictError("Order ID already exists", details={"merchantOrderId": merchant_order_id})
    else:
        merchant_order_id = generate_merchant_order_id()
        while await order_service.get_order_by_merchant_id(db, merchant_order_id):
            merchant_order_id = generate_merchant_order_id()

    order = Order(
        merchant_order_id=merchant_order_id,
        user_id=user.id,
        customer_name=customer_info.get("name", "").strip(),
        customer_email=email,
        customer_phone=phone,
        address=customer_info.get("address", "").strip(),
        subtotal=validation["product_total"],
        shipping=validation["shipping"],
        total=validation["calculated_total"],
        currency=CURRENCY,
        payment_state=PaymentState.PENDING.value,
        order_date=_utcnow(),
        items=[
            OrderItem(
                product_id=item["id"],
                name=item["name"],
                price=item["price"],
                quantity=item["quantity"],
            )
            for item in validation["validated_items"]
        ],
    )
    db.add(order)
    await order_service.assign_numbers(db, order)
    await db.flush()
    await _record_event(
        db, order=order, merchant_order_id=merchant_order_id,
        source=EventSource.CHECKOUT.value, state=PaymentState.PENDING.value, applied=True,
    )
    await db.commit()

    redirect_url = f"{settings.api_base_url.rstrip('/')}/phonepe/callback?merchantOrderId={merchant_order_id}"
    try:
        payment = await client.create_payment(
            merchant_order_id=merchant_order_id,
            amount_rupees=order.total,
            redirect_url=redirect_url,
            message=f"BubbleBeads order {order.order_no}",
            meta_info={"udf1": user.id, "udf2": email, "udf3": order.order_no},
        )
    except PaymentGatewayError as e:
        order.payment_state = PaymentState.FAILED.value
        order.failure_reason = "gateway_create_failed"
        await _record_event(
            db, order=order, merchant_order_id=merchant_order_id,
            source=EventSource.CHECKOUT.value, state=PaymentState.FAILED.value,
            applied=True, payload=e.details,
        )
        await db.commit()
        logger.error(f"PhonePe create-payment failed for {merchant_order_id}: {e.message}")
        raise

    order.phonepe_order_id = payment.get("orderId")
    order.payment_url = payment["redirectUrl"]
    order.expire_at = _from_epoch_ms(payment.get("expireAt")) or (
        order.order_date + timedelta(seconds=settings.phonepe_order_expiry_seconds)
    )
    await db.commit()

    logger.info(
        f"Order {order.order_no} ({merchant_order_id}) created for user {user.id[:8]}: "
        f"₹{order.total:.2f}, {len(order.items)} line(s)"
    )
    return _checkout_response(order)


# ════════════════════════════════════════════════════════════════════
# State machine
# ════════════════════════════════════════════════════════════════════


async def _claim_transition(db: AsyncSession, order: Order, previous: str, target: PaymentState) -> bool:
    """
    Conditional write: moves the row to `target` only while it is still in
    `previous`. False means another request changed the order first.
    """
    res = await db.execute(
        update(Order)
        .where(Order.id == order.id, Order.payment_state == previous)
        .values(payment_state=target.value)
        .execution_options(synchronize_session=False)
    )
    return res.rowcount == 1


async def apply_gateway_status(
    db: AsyncSession,
    order: Order,
    status: dict,
    *,
    source: str,
    authoritative: bool = True,
    event_type: Optional[str] = None,
    dedupe_key: Optional[str] = None,
    raw_payload: Any = None,
) -> dict:
    """
    Apply a provider status to an order. Does not commit.

    Returns {changed, previous, current, completed_now}. The caller commits and
    then calls after_commit() so notifications only go out for persisted state.
    Concurrent callers race on _claim_transition(); exactly one of them sees
    completed_now. The webhook dedupe key is stored only with an applied event.
    """
    previous = order.payment_state
    reported = provider_state(status.get("state"))
    target: Optional[PaymentState] = None
    failure_reason: Optional[str] = None

    if reported == PaymentState.COMPLETED:
        if previous == PaymentState.PENDING.value:
            target = PaymentState.COMPLETED
        elif previous == PaymentState.FAILED.value and authoritative:
            logger.warning(f"Order {order.merchant_order_id}: FAILED → COMPLETED per provider status")
            target = PaymentState.COMPLETED
    elif reported == PaymentState.FAILED:
        if previous == PaymentState.PENDING.value:
            target = PaymentState.FAILED
        elif previous == PaymentState.COMPLETED.value:
            logger.warning(
                f"Ignoring FAILED for completed order {order.merchant_order_id} (source={source})"
            )

    if target == PaymentState.COMPLETED:
        reported_amount = paise_to_rupees(status.get("amount"))
        if reported_amount is not None and rupees_to_paise(reported_amount) != rupees_to_paise(order.total):
            log_security_event(
                "payment_amount_mismatch",
                merchant_order_id=order.merchant_order_id,
                expected=order.total,
                reported=reported_amount,
                source=source,
            )
            if authoritative and previous == PaymentState.PENDING.value:
                target = PaymentState.FAILED
                failure_reason = "amount_mismatch"
            else:
                target = None

    if target is not None and not await _claim_transition(db, order, previous, target):
        await db.refresh(order)
        logger.info(
            f"Order {order.merchant_order_id}: {previous} → {target.value} lost to a concurrent update, "
            f"now {order.payment_state} (source={source})"
        )
        target = None

    completed_now = False
    if target == PaymentState.COMPLETED:
        for field, value in extract_payment_info(status).items():
            if value is not None:
                setattr(order, field, value)
        order.payment_transaction_id = order.payment_transaction_id or extract_transaction_id(status)
        order.payment_state = PaymentState.COMPLETED.value
        order.failure_reason = None
        order.paid_at = _utcnow()
        completed_now = True
        if order.user_id:
            await cart_service.clear_cart(db, user_id=order.user_id)
    elif target == PaymentState.FAILED:
        order.payment_state = PaymentState.FAILED.value
        if failure_reason:
            order.failure_reason = failure_reason
        elif not order.failure_reason:
            details = status.get("paymentDetails") or []
            latest = max(details, key=lambda p: p.get("timestamp") or 0) if details else {}
            order.failure_reason = (latest.get("errorCode") or status.get("errorCode") or "FAILED")[:100]

    changed = target is not None
    await _record_event(
        db,
        order=order,
        merchant_order_id=order.merchant_order_id,
        source=source,
        state=reported.value if reported else str(status.get("state") or "UNKNOWN")[:20],
        applied=changed,
        event_type=event_type,
        dedupe_key=dedupe_key if changed else None,
        payload=raw_payload if raw_payload is not None else status,
    )

    if changed:
        logger.info(
            f"Order {order.merchant_order_id}: {previous} → {order.payment_state} (source={source})"
        )
    return {
        "changed": changed,
        "previous": previous,
        "current": order.payment_state,
        "completed_now": completed_now,
    }


def after_commit(order: Order, result: dict) -> None:
    """Fire post-payment notifications once the COMPLETED state is persisted."""
    if result.get("completed_now"):
        notification_service.schedule_order_notifications(order_service.serialize_order(order))


async def sync_order_with_gateway(
    db: AsyncSession,
    order: Order,
    *,
    source: str,
    client: Optional[PhonePeClient] = None,
) -> tuple[dict, dict]:
    """Fetch authoritative status, apply it, commit. Returns (status, result)."""
    client = client or get_phonepe_client()
    status = await client.get_order_status(order.merchant_order_id, details=True)
    result = await apply_gateway_status(db, order, status, source=source, authoritative=True)
    await db.commit()
    after_commit(order, result)
    return status, result


# ════════════════════════════════════════════════════════════════════
# Webhooks
# ════════════════════════════════════════════════════════════════════


def verify_webhook_signature(payload: bytes, signature: str | None) -> bool:
    """
    HMAC-SHA256 (hex) of the raw body with PHONEPE_WEBHOOK_SECRET.

    FAILS CLOSED when the secret is not configured or no signature was sent.
    """
    if not settings.phonepe_webhook_secret:
        logger.error(
            "PHONEPE_WEBHOOK_SECRET not configured, rejecting webhook. "
            "Set PHONEPE_WEBHOOK_SECRET in .env to accept PhonePe webhooks."
        )
        return False

    if not signature:
        logger.warning("Webhook received without signature header")
        return False

    signature = signature.strip()
    if signature.lower().startswith("sha256="):
        signature = signature[len("sha256="):]

    expected = hmac.new(
        settings.phonepe_webhook_secret.encode("utf-8"),
        payload,
        hashlib.sha256,
    ).hexdigest()

    return hmac.compare_digest(expected, signature.lower())


def webhook_dedupe_key(data: dict, event: str, merchant_order_id: str, state: str) -> str:
    event_id = data.get("id") or data.get("eventId")
    if event_id:
        return f"evt:{str(event_id)[:120]}"
    digest = hashlib.sha256(f"{merchant_order_id}:{event}:{state}".encode("utf-8")).hexdigest()
    return f"sha:{digest}"


async def process_webhook(
    db: AsyncSession,
    data: dict,
    *,
    client: Optional[PhonePeClient] = None,
) -> dict:
    """
    Apply a verified PhonePe webhook.

    Redelivered events are answered with status=duplicate without touching the
    order. Terminal events are confirmed against the status API; if that call
    fails, a COMPLETED payload is trusted only when its amount matches.
    """
    event = str(data.get("event") or data.get("type") or "")
    inner = data.get("payload") or data.get("data") or {}
    if not isinstance(inner, dict):
        inner = {}
    merchant_order_id = str(inner.get("merchantOrderId") or inner.get("merchantTransactionId") or "")
    payload_state = str(inner.get("state") or "").upper()

    logger.info(f"  📩 PhonePe webhook: event={event} order={merchant_order_id} state={payload_state}")

    if not merchant_order_id:
        return {"status": "ignored", "reason": "missing_order_id"}

    reported = WEBHOOK_EVENT_STATES.get(event)
    if reported is None:
        logger.warning(f"  Unhandled PhonePe webhook event: {event!r} for {merchant_order_id}")
        return {"status": "ignored", "reason": "unknown_event"}

    dedupe_key = webhook_dedupe_key(data, event, merchant_order_id, reported.value)
    seen = await db.execute(select(PaymentEvent.id).where(PaymentEvent.dedupe_key == dedupe_key))
    if seen.scalar_one_or_none() is not None:
        logger.info(f"  Duplicate webhook delivery ignored ({merchant_order_id}, {event})")
        return {"status": "duplicate"}

    order = await order_service.get_order_by_merchant_id(db, merchant_order_id)
    if not order:
        logger.warning(f"  PhonePe webhook for unknown order: {merchant_order_id}")
        return {"status": "ignored", "reason": "unknown_order"}

    status = dict(inner)
    status["state"] = reported.value
    authoritative = False

    if reported in (PaymentState.COMPLETED, PaymentState.FAILED):
        try:
            client = client or get_phonepe_client()
            status = await client.get_order_status(merchant_order_id, details=True)
            authoritative = True
        except (PaymentGatewayError, ConfigurationError) as e:
            logger.warning(f"  Status re-check failed for {merchant_order_id}, using signed payload: {e.message}")
            if reported != PaymentState.COMPLETED or "amount" not in status:
                # Unconfirmed; left for the reconciler
                status["state"] = PaymentState.PENDING.value

    try:
        result = await apply_gateway_status(
            db,
            order,
            status,
            source=EventSource.WEBHOOK.value,
            authoritative=authoritative,
            event_type=event,
            dedupe_key=dedupe_key,
            raw_payload=data,
        )
        await db.commit()
    except IntegrityError:
        # Same delivery processed concurrently; the other request won
        await db.rollback()
        return {"status": "duplicate"}

    after_commit(order, result)
    return {
        "status": "processed",
        "merchantOrderId": merchant_order_id,
        "state": result["current"],
        "changed": result["changed"],
    }


# ════════════════════════════════════════════════════════════════════
# Verify endpoint payload
# ════════════════════════════════════════════════════════════════════


def build_verify_response(order: Order, status: dict) -> dict:
    state = str(status.get("state") or order.payment_state).upper()
    return {
        "success": state == PaymentState.COMPLETED.value,
        "state": state,
        "orderId": status.get("orderId") or order.phonepe_order_id,
        "merchantOrderId": order.merchant_order_id,
        "transactionId": extract_transaction_id(status) or order.payment_transaction_id,
        "amount": paise_to_rupees(status.get("amount")) if status.get("amount") is not None else order.total,
        "paymentDetails": sanitize_gateway_payload(status.get("paymentDetails") or []),
        "orderState": order.payment_state,
        "isPending": state == PaymentState.PENDING.value,
        "isFailed": state == PaymentState.FAILED.value,
    }
