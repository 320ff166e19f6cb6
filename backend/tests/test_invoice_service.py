"""
Tests for invoice tokens, access checks, GST breakdown and rendering.
"""
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import AsyncMock, patch

import jwt
import pytest

from config import settings
from domain.errors import (
    ConflictError,
    EmailDeliveryError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from services import invoice_service


class TestInvoiceTokens:

    @pytest.mark.unit
    def test_round_trip_claims(self):
        token = invoice_service.issue_invoice_token(order_id="order-1", user_id="user-1")
        claims = invoice_service.verify_invoice_token(token)
        assert claims["orderId"] == "order-1"
        assert claims["userId"] == "user-1"
        assert claims["iss"] == "clean-pods-app"
        assert claims["aud"] == "invoice-access"
        assert claims["exp"] - claims["iat"] == 5 * 60

    @pytest.mark.unit
    def test_expired_token(self):
        past = datetime.now(timezone.utc) - timedelta(minutes=10)
        token = jwt.encode(
            {
                "orderId": "o", "userId": "u",
                "iss": settings.invoice_token_issuer, "aud": settings.invoice_token_audience,
                "iat": int(past.timestamp()), "exp": int((past + timedelta(minutes=5)).timestamp()),
            },
            settings.invoice_signing_secret,
            algorithm="HS256",
        )
        with pytest.raises(PermissionDeniedError) as exc_info:
            invoice_service.verify_invoice_token(token)
        assert exc_info.value.message == "Invalid or expired token"

    @pytest.mark.unit
    def test_wrong_audience(self):
        token = jwt.encode(
            {"orderId": "o", "userId": "u", "iss": settings.invoice_token_issuer, "aud": "something-else",
             "exp": int((datetime.now(timezone.utc) + timedelta(minutes=5)).timestamp())},
            settings.invoice_signing_secret,
            algorithm="HS256",
        )
        with pytest.raises(PermissionDeniedError):
            invoice_service.verify_invoice_token(token)

    @pytest.mark.unit
    def test_access_token_is_not_an_invoice_token(self):
        from middleware.auth import issue_access_token

        with pytest.raises(PermissionDeniedError):
            invoice_service.verify_invoice_token(issue_access_token(user_id="u", role="user"))


class TestAuthorizeInvoiceAccess:

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_paid_order_owner(self, db_session, user, make_order):
        order = await make_order(user, state="COMPLETED")
        token = invoice_service.issue_invoice_token(order_id=order.id, user_id=user.id)
        found = await invoice_service.authorize_invoice_access(db_session, order_id=order.id, token=token, user=user)
        assert found.id == order.id

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_missing_token(self, db_session, user):
        with pytest.raises(ValidationError):
            await invoice_service.authorize_invoice_access(db_session, order_id="x", token=None, user=user)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_token_for_another_order(self, db_session, user, make_order):
        order = await make_order(user, state="COMPLETED")
        token = invoice_service.issue_invoice_token(order_id="some-other-order", user_id=user.id)
        with pytest.raises(PermissionDeniedError) as exc_info:
            await invoice_service.authorize_invoice_access(db_session, order_id=order.id, token=token, user=user)
        assert exc_info.value.message == "Token does not match the requested order"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_token_for_another_user(self, db_session, user, other_user, make_order):
        order = await make_order(user, state="COMPLETED")
        token = invoice_service.issue_invoice_token(order_id=order.id, user_id=user.id)
        with pytest.raises(PermissionDeniedError) as exc_info:
            await invoice_service.authorize_invoice_access(
                db_session, order_id=order.id, token=token, user=other_user,
            )
        assert exc_info.value.message == "Token does not belong to the current user"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_order_not_owned(self, db_session, user, other_user, make_order):
        order = await make_order(other_user, state="COMPLETED")
        token = invoice_service.issue_invoice_token(order_id=order.id, user_id=user.id)
        with pytest.raises(NotFoundError):
            await invoice_service.authorize_invoice_access(db_session, order_id=order.id, token=token, user=user)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_unpaid_order(self, db_session, user, make_order):
        order = await make_order(user)
        token = invoice_service.issue_invoice_token(order_id=order.id, user_id=user.id)
        with pytest.raises(ConflictError) as exc_info:
            await invoice_service.authorize_invoice_access(db_session, order_id=order.id, token=token, user=user)
        assert exc_info.value.status_code == 409


class TestGstBreakdown:

    @pytest.mark.unit
    def test_single_box(self):
        tax = invoice_service.gst_breakdown(450)
        assert tax["subtotal"] == Decimal("381.36")
        assert tax["tax"] == Decimal("68.64")
        assert tax["cgst"] == Decimal("34.32")
        assert tax["sgst"] == Decimal("34.32")
        assert tax["rate_percent"] == 18
        assert tax["half_rate_percent"] == 9

    @pytest.mark.unit
    @pytest.mark.parametrize("gross", [450, 900, 1350, 549, 0.01, 1234.57])
    def test_parts_add_up(self, gross):
        tax = invoice_service.gst_breakdown(gross)
        assert tax["subtotal"] + tax["cgst"] + tax["sgst"] == Decimal(str(gross)).quantize(Decimal("0.01"))

    @pytest.mark.unit
    def test_odd_paise_goes_to_sgst(self):
        # 1.00 gross → 0.85 taxable, 0.15 tax
        tax = invoice_service.gst_breakdown(1)
        assert tax["tax"] == Decimal("0.15")
        assert tax["cgst"] == Decimal("0.08")
        assert tax["sgst"] == Decimal("0.07")


class TestRendering:

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_html_invoice(self, make_order):
        order = await make_order(state="COMPLETED")
        order.payment_transaction_id = "T2503011234"
        html = invoice_service.render_invoice_html(order)
        assert order.invoice_no in html
        assert "5-in-1 Laundry Pod" in html
        assert "T2503011234" in html
        assert "CGST" in html and "SGST" in html

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_html_escapes_customer_fields(self, make_order):
        order = await make_order(state="COMPLETED")
        order.customer_name = "<script>alert(1)</script>"
        html = invoice_service.render_invoice_html(order)
        assert "<script>alert(1)</script>" not in html

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_gst_includes_shipping(self, make_order):
        # 450 goods + 99 shipping
        order = await make_order(state="COMPLETED", total=549.0)
        ctx = invoice_service.invoice_context(order)
        assert ctx["tax"]["subtotal"] == Decimal("465.25")
        assert ctx["tax"]["tax"] == Decimal("83.75")
        assert ctx["tax"]["subtotal"] + ctx["tax"]["cgst"] + ctx["tax"]["sgst"] == ctx["grand_total"]
        assert ctx["shipping"] == Decimal("99.00")

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_pdf_invoice(self, make_order):
        order = await make_order(state="COMPLETED")
        pdf = await invoice_service.render_invoice_pdf(order)
        assert pdf.startswith(b"%PDF")
        assert invoice_service.pdf_filename(order) == f"invoice-{order.invoice_no}.pdf"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_email_invoice_attaches_pdf(self, make_order):
        order = await make_order(state="COMPLETED")
        with patch("services.invoice_service.email_service.send_email", new=AsyncMock(return_value=(True, None))) as send:
            await invoice_service.email_invoice(order)

        kwargs = send.call_args.kwargs
        assert kwargs["to"] == "shopper@example.com"
        assert kwargs["subject"] == f"Your Invoice - Order #{order.order_no}"
        attachment = kwargs["attachments"][0]
        assert attachment["filename"].endswith(".pdf")
        assert bytes(attachment["content"]).startswith(b"%PDF")

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_email_failure_raises(self, make_order):
        order = await make_order(state="COMPLETED")
        with patch(
            "services.invoice_service.email_service.send_email",
            new=AsyncMock(return_value=(False, "Resend API key is not configured.")),
        ):
            with pytest.raises(EmailDeliveryError) as exc_info:
                await invoice_service.email_invoice(order)
        assert exc_info.value.status_code == 502
