"""
Admin endpoints: role management, order dashboard, export, reconciliation.

Access: bearer token of a user with role 'admin', or the legacy X-Admin-Key
header (ADMIN_ORDERS_KEY). /admin/bootstrap is the one exception: any signed
in user may call it while no admin exists yet.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from db_models import User
from deps import Pagination, pagination_params, require_admin, require_authenticated_user
from domain.errors import PermissionDeniedError
from domain.responses import paginated_response, success_response
from middleware.rate_limit import STRICT, rate_limit
from models import GrantRoleRequest
from services import account_service, export_service, order_service, reconciler_service

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/admin", tags=["admin"])


@router.post("/bootstrap")
async def bootstrap_admin(
    user: User = Depends(require_authenticated_user),
    db: AsyncSession = Depends(get_db),
    _rate=Depends(rate_limit(STRICT)),
):
    await account_service.bootstrap_admin(db, user)
    await db.commit()
    return success_response(account_service.serialize_user(user))


async def _require_admin_exists(db: AsyncSession = Depends(get_db)) -> None:
    if not await account_service.admin_exists(db):
        raise PermissionDeniedError("No admin exists yet. Use POST /admin/bootstrap first.")


# Runs before require_admin: no admin at all is a 403, not a 401
@router.post("/grant-role", dependencies=[Depends(_require_admin_exists)])
async def grant_role(
    body: GrantRoleRequest,
    db: AsyncSession = Depends(get_db),
    admin: Optional[User] = Depends(require_admin),
):
    target = await account_service.grant_role(db, granted_by=admin, user_id=body.user_id, role=body.role)
    await db.commit()
    return success_response(account_service.serialize_user(target))


@router.get("/orders")
async def list_orders(
    state: Optional[str] = Query(None, pattern="^(PENDING|COMPLETED|FAILED|pending|completed|failed)$"),
    q: Optional[str] = Query(None, max_length=100),
    page: Pagination = Depends(pagination_params),
    db: AsyncSession = Depends(get_db),
    _admin=Depends(require_admin),
):
    orders, total = await order_service.list_all_orders(
        db, limit=page["limit"], offset=page["offset"], state=state, search=q,
    )
    return paginated_response(
        [order_service.serialize_order(o) for o in orders],
        limit=page["limit"],
        offset=page["offset"],
        total=total,
    )


@router.get("/orders/export")
async def export_orders(
    state: Optional[str] = Query(None, pattern="^(PENDING|COMPLETED|FAILED|pending|completed|failed)$"),
    db: AsyncSession = Depends(get_db),
    _admin=Depends(require_admin),
):
    content = await export_service.export_orders(db, state=state)
    return Response(
        content=content,
        media_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        headers={"Content-Disposition": f'attachment; filename="{export_service.export_filename()}"'},
    )


@router.get("/orders/{order_id}")
async def get_order(
    order_id: str,
    db: AsyncSession = Depends(get_db),
    _admin=Depends(require_admin),
):
    order = await order_service.get_order_with_events(db, order_id)
    data = order_service.serialize_order(order)
    data["events"] = [order_service.serialize_event(e) for e in order.events]
    data["reconcileAttempts"] = order.reconcile_attempts
    data["lastReconciledAt"] = order.last_reconciled_at.isoformat() if order.last_reconciled_at else None
    return success_response(data)


@router.post("/orders/{order_id}/reconcile")
async def reconcile_order(
    order_id: str,
    db: AsyncSession = Depends(get_db),
    admin: Optional[User] = Depends(require_admin),
):
    order = await order_service.get_order_with_events(db, order_id)
    result = await reconciler_service.reconcile_order(db, order)
    logger.info(
        f"Manual reconcile of {order.merchant_order_id} by "
        f"{admin.id[:8] if admin else 'admin-key'}: {result}"
    )
    return success_response({**result, "order": order_service.serialize_order(order)})


@router.get("/reconciler/status")
async def reconciler_status(_admin=Depends(require_admin)):
    return success_response(reconciler_service.get_status())
