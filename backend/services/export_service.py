"""
Orders export for the admin dashboard (.xlsx via openpyxl).
"""
import logging
from datetime import datetime
from io import BytesIO

from openpyxl import Workbook
from openpyxl.styles import Font
from openpyxl.utils import get_column_letter
from sqlalchemy.ext.asyncio import AsyncSession

from db_models import Order
from services import order_service
from services.async_executor import run_blocking

logger = logging.getLogger(__name__)

EXPORT_COLUMNS = (
    "Merchant Order ID",
    "PhonePe Order ID",
    "Transaction ID",
    "Customer Name",
    "Email",
    "Phone",
    "Address",
    "Order Items",
    "Total",
    "Order Date",
    "Payment State",
)

MAX_COLUMN_WIDTH = 60


def order_row(order: Order) -> list:
    return [
        order.merchant_order_id,
        order.phonepe_order_id or "",
        order.payment_transaction_id or "",
        order.customer_name,
        order.customer_email,
        order.customer_phone,
        order.address,
        order_service.format_items_summary(order),
        order.total,
        order.order_date.strftime("%Y-%m-%d %H:%M:%S") if order.order_date else "",
        order.payment_state,
    ]


def build_workbook(rows: list[list]) -> bytes:
    wb = Workbook()
    ws = wb.active
    ws.title = "Orders"
    ws.append(list(EXPORT_COLUMNS))
    for cell in ws[1]:
        cell.font = Font(bold=True)
    for row in rows:
        ws.append(row)

    for index, column in enumerate(ws.iter_cols(min_row=1, max_row=ws.max_row), start=1):
        longest = max(len(str(cell.value)) if cell.value is not None else 0 for cell in column)
        ws.column_dimensions[get_column_letter(index)].width = min(longest + 2, MAX_COLUMN_WIDTH)

    buffer = BytesIO()
    wb.save(buffer)
    return buffer.getvalue()


def export_filename(now: datetime | None = None) -> str:
    return f"orders-{(now or datetime.utcnow()).strftime('%Y%m%d')}.xlsx"


async def export_orders(db: AsyncSession, *, state: str | None = None) -> bytes:
    orders, total = await order_service.list_all_orders(db, limit=None, state=state)
    rows = [order_row(o) for o in orders]
    content = await run_blocking(build_workbook, rows)
    logger.info(f"📊 Exported {total} orders ({len(content)} bytes)")
    return content
