"""
Tests for order numbering, lookups and serialisation.
"""
from datetime import datetime

import pytest

from domain.errors import NotFoundError
from services import order_service


class TestNumbering:

    @pytest.mark.unit
    def test_format_number(self):
        assert order_service.format_number("ORD", datetime(2025, 3, 1), 7) == "ORD-20250301-0007"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_sequence_is_monotonic(self, db_session):
        values = [await order_service.next_sequence(db_session, "order_no") for _ in range(3)]
        assert values == [1, 2, 3]
        assert await order_service.next_sequence(db_session, "invoice_no") == 1

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_orders_get_distinct_numbers(self, make_order):
        when = datetime(2025, 3, 1, 10, 30)
        first = await make_order(merchant_order_id="CPNUM000001", order_date=when)
        second = await make_order(merchant_order_id="CPNUM000002", order_date=when)
        assert first.order_no == "ORD-20250301-0001"
        assert second.order_no == "ORD-20250301-0002"
        assert first.invoice_no == "W-20250301-0001"
        assert second.invoice_no == "W-20250301-0002"


class TestLookups:

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_get_by_id_or_merchant_id(self, db_session, make_order):
        order = await make_order()
        assert (await order_service.get_order(db_session, order.id)).id == order.id
        assert (await order_service.get_order(db_session, "CPTEST00001")).id == order.id
        assert await order_service.get_order(db_session, "CPUNKNOWN") is None

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_other_users_order_is_not_found(self, db_session, user, other_user, make_order):
        order = await make_order(user)
        with pytest.raises(NotFoundError):
            await order_service.get_user_order(db_session, order_id=order.id, user_id=other_user.id)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_user_history_newest_first(self, db_session, user, other_user, make_order):
        await make_order(user, merchant_order_id="CPOLD000001", order_date=datetime(2025, 1, 1))
        await make_order(user, merchant_order_id="CPNEW000001", order_date=datetime(2025, 2, 1))
        await make_order(other_user, merchant_order_id="CPOTHER0001")

        orders, total = await order_service.list_user_orders(db_session, user_id=user.id)

        assert total == 2
        assert [o.merchant_order_id for o in orders] == ["CPNEW000001", "CPOLD000001"]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_admin_listing_filters(self, db_session, make_order):
        await make_order(merchant_order_id="CPPAID00001", state="COMPLETED")
        await make_order(merchant_order_id="CPOPEN00001")

        paid, total = await order_service.list_all_orders(db_session, state="completed")
        assert total == 1
        assert paid[0].merchant_order_id == "CPPAID00001"

        found, _ = await order_service.list_all_orders(db_session, search="open")
        assert [o.merchant_order_id for o in found] == ["CPOPEN00001"]


class TestSerialisation:

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_serialize_order(self, make_order):
        order = await make_order()
        data = order_service.serialize_order(order)
        assert data["merchantOrderId"] == "CPTEST00001"
        assert data["paymentState"] == "PENDING"
        assert data["items"] == [
            {"id": "single-box", "name": "5-in-1 Laundry Pod", "price": 450.0, "quantity": 1, "total_price": 450.0}
        ]
        assert "utr" in data

        public = order_service.serialize_order(order, include_payment=False)
        assert "utr" not in public

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_items_summary(self, make_order):
        order = await make_order()
        assert order_service.format_items_summary(order) == "5-in-1 Laundry Pod (x1) - ₹450"
