"""
Payment Reconciler: background task that settles stale PENDING orders.

The callback and webhook normally move an order out of PENDING within
seconds. When both are lost (shopper closed the tab, webhook not delivered)
this task asks PhonePe for the authoritative status instead.

Each cycle:
    1. Select up to reconciler_batch_size PENDING orders older than
       reconciler_min_age_seconds
    2. Fetch the order status from PhonePe and apply it (source=reconciler)
    3. Orders still PENDING past expire_at + grace are marked FAILED ("expired")
    4. Gateway errors bump reconcile_attempts; after MAX_RECONCILE_ATTEMPTS
       the order is left for manual review

This runs as an asyncio background task during the FastAPI app lifespan.
"""
import asyncio
import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from database import async_session
from db_models import Order
from domain.constants import PENDING_GRACE_SECONDS
from domain.enums import EventSource, PaymentState
from domain.errors import ConfigurationError, PaymentGatewayError
from services import checkout_service
from services.phonepe_client import PhonePeClient, get_phonepe_client

logger = logging.getLogger(__name__)

MAX_RECONCILE_ATTEMPTS = 10
MAX_CYCLE_ERRORS_BEFORE_BACKOFF = 5

# Reconciler state
_reconciler_task: Optional[asyncio.Task] = None
_is_running: bool = False
_errors_count: int = 0
_cycles: int = 0
_orders_reconciled: int = 0
_last_run_at: Optional[datetime] = None


def expiry_deadline(order: Order) -> datetime:
    """When a still-PENDING order is given up on."""
    expires = order.expire_at or (
        (order.order_date or datetime.utcnow())
        + timedelta(seconds=settings.phonepe_order_expiry_seconds)
    )
    return expires + timedelta(seconds=PENDING_GRACE_SECONDS)


async def _expire(db: AsyncSession, order: Order) -> dict:
    logger.info(f"  ⌛ Order {order.merchant_order_id} expired unpaid")
    return await checkout_service.apply_gateway_status(
        db,
        order,
        {"state": PaymentState.FAILED.value, "errorCode": "expired"},
        source=EventSource.RECONCILER.value,
        authoritative=False,
    )


async def reconcile_order(
    db: AsyncSession,
    order: Order,
    *,
    client: Optional[PhonePeClient] = None,
    now: Optional[datetime] = None,
) -> dict:
    """
    Bring one order in line with PhonePe and commit.

    Raises PaymentGatewayError after recording the failed attempt so the
    caller can decide whether to surface it.
    """
    now = now or datetime.utcnow()
    if order.payment_state == PaymentState.COMPLETED.value:
        return {"changed": False, "previous": order.payment_state, "current": order.payment_state}

    order.last_reconciled_at = now

    if not order.phonepe_order_id and not order.payment_url:
        # Gateway never accepted the order; nothing to ask PhonePe about
        if order.payment_state == PaymentState.PENDING.value and now >= expiry_deadline(order):
            result = await _expire(db, order)
        else:
            result = {"changed": False, "previous": order.payment_state, "current": order.payment_state}
        await db.commit()
        return result

    try:
        client = client or get_phonepe_client()
        status = await client.get_order_status(order.merchant_order_id, details=True)
    except PaymentGatewayError as e:
        order.reconcile_attempts = (order.reconcile_attempts or 0) + 1
        await db.commit()
        if order.reconcile_attempts >= MAX_RECONCILE_ATTEMPTS:
            logger.error(
                f"  ❌ Order {order.merchant_order_id} could not be reconciled after "
                f"{MAX_RECONCILE_ATTEMPTS} attempts, needs manual review ({e.message})"
            )
        raise

    order.reconcile_attempts = 0
    result = await checkout_service.apply_gateway_status(
        db, order, status, source=EventSource.RECONCILER.value, authoritative=True,
    )
    if order.payment_state == PaymentState.PENDING.value and now >= expiry_deadline(order):
        result = await _expire(db, order)
    await db.commit()
    checkout_service.after_commit(order, result)
    return result


async def select_candidates(db: AsyncSession, *, now: Optional[datetime] = None) -> list[Order]:
    now = now or datetime.utcnow()
    cutoff = now - timedelta(seconds=settings.reconciler_min_age_seconds)
    res = await db.execute(
        select(Order)
        .where(
            Order.payment_state == PaymentState.PENDING.value,
            Order.order_date <= cutoff,
            Order.reconcile_attempts < MAX_RECONCILE_ATTEMPTS,
        )
        .order_by(Order.last_reconciled_at.is_not(None), Order.last_reconciled_at, Order.order_date)
        .limit(settings.reconciler_batch_size)
    )
    return list(res.scalars().all())


async def reconcile_pending(
    db: AsyncSession,
    *,
    client: Optional[PhonePeClient] = None,
    now: Optional[datetime] = None,
) -> dict:
    """One reconciliation pass. Returns counters for the cycle."""
    global _orders_reconciled

    summary = {"checked": 0, "completed": 0, "failed": 0, "unchanged": 0, "errors": 0}
    orders = await select_candidates(db, now=now)
    if not orders:
        return summary

    if client is None:
        try:
            client = get_phonepe_client()
        except ConfigurationError:
            logger.warning("Reconciler: PhonePe not configured, skipping cycle")
            return summary

    for order in orders:
        summary["checked"] += 1
        try:
            result = await reconcile_order(db, order, client=client, now=now)
        except PaymentGatewayError as e:
            summary["errors"] += 1
            logger.warning(f"  Reconcile {order.merchant_order_id} failed: {e.message}")
            continue

        if not result["changed"]:
            summary["unchanged"] += 1
        elif result["current"] == PaymentState.COMPLETED.value:
            summary["completed"] += 1
        else:
            summary["failed"] += 1

    _orders_reconciled += summary["completed"] + summary["failed"]
    if summary["completed"] or summary["failed"]:
        logger.info(
            f"  Reconciler settled {summary['completed']} completed / "
            f"{summary['failed']} failed of {summary['checked']} pending order(s)"
        )
    return summary


# ════════════════════════════════════════════════════════════════════
# Background loop
# ════════════════════════════════════════════════════════════════════


async def _reconciler_loop():
    global _is_running, _errors_count, _cycles, _last_run_at

    _is_running = True
    poll_interval = settings.reconciler_poll_seconds
    logger.info(f"Reconciler started (polling every {poll_interval}s)")

    while _is_running:
        try:
            await asyncio.sleep(poll_interval)

            async with async_session() as db:
                await reconcile_pending(db)

            _cycles += 1
            _last_run_at = datetime.utcnow()
            _errors_count = 0

        except asyncio.CancelledError:
            logger.info("Reconciler cancelled")
            break
        except Exception as e:
            _errors_count += 1
            logger.error(f"Reconciler cycle error: {e}", exc_info=True)
            if _errors_count > MAX_CYCLE_ERRORS_BEFORE_BACKOFF:
                backoff = min(600, poll_interval * 2 ** min(_errors_count - MAX_CYCLE_ERRORS_BEFORE_BACKOFF, 4))
                logger.warning(f"  Too many errors, backing off {backoff}s")
                await asyncio.sleep(backoff)

    _is_running = False
    logger.info("Reconciler stopped")


async def start():
    global _reconciler_task, _is_running

    if _reconciler_task and not _reconciler_task.done():
        logger.warning("Reconciler already running")
        return

    _is_running = True
    _reconciler_task = asyncio.create_task(_reconciler_loop())


async def stop():
    global _reconciler_task, _is_running
    _is_running = False

    if _reconciler_task and not _reconciler_task.done():
        _reconciler_task.cancel()
        try:
            await _reconciler_task
        except asyncio.CancelledError:
            pass

    _reconciler_task = None


def get_status() -> dict:
    """Reconciler status for GET /admin/reconciler/status."""
    return {
        "running": _is_running,
        "enabled": settings.reconciler_enabled,
        "cycles": _cycles,
        "lastRunAt": _last_run_at.isoformat() if _last_run_at else None,
        "ordersReconciled": _orders_reconciled,
        "errorsCount": _errors_count,
        "pollIntervalSeconds": settings.reconciler_poll_seconds,
        "maxReconcileAttempts": MAX_RECONCILE_ATTEMPTS,
    }
