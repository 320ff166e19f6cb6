"""
Tests for Pydantic request models.

Tests: field validation, camelCase aliases, defaults.
"""
import os, sys
sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

import pytest
from pydantic import ValidationError

from models import (
    CartAddRequest,
    ContactRequest,
    CreateOrderRequest,
    GrantRoleRequest,
    RegisterRequest,
)

CUSTOMER = {"name": "Asha Verma", "email": "a@b.co", "phone": "9876543210", "address": "12 MG Road"}
LINE = {"id": "single-box", "name": "Pod", "price": 450, "quantity": 1}


class TestRegisterRequest:

    @pytest.mark.unit
    def test_aliases(self):
        req = RegisterRequest(email="a@b.co", password="long-enough", firstName="Asha", lastName="Verma")
        assert req.first_name == "Asha"
        assert req.last_name == "Verma"

    @pytest.mark.unit
    def test_python_names(self):
        req = RegisterRequest(email="a@b.co", password="long-enough", first_name="Asha", last_name="Verma")
        assert req.first_name == "Asha"

    @pytest.mark.unit
    def test_short_password(self):
        with pytest.raises(ValidationError):
            RegisterRequest(email="a@b.co", password="short", firstName="A", lastName="B")


class TestCartAddRequest:

    @pytest.mark.unit
    def test_default_quantity(self):
        assert CartAddRequest(productId="single-box").quantity == 1

    @pytest.mark.unit
    @pytest.mark.parametrize("quantity", [0, 101])
    def test_quantity_bounds(self, quantity):
        with pytest.raises(ValidationError):
            CartAddRequest(productId="single-box", quantity=quantity)


class TestCreateOrderRequest:

    @pytest.mark.unit
    def test_valid(self):
        req = CreateOrderRequest(amount=549, cart=[LINE], customerInfo=CUSTOMER)
        assert req.currency == "INR"
        assert req.merchant_order_id is None
        assert req.customer_info.phone == "9876543210"

    @pytest.mark.unit
    def test_empty_cart(self):
        with pytest.raises(ValidationError):
            CreateOrderRequest(amount=549, cart=[], customerInfo=CUSTOMER)

    @pytest.mark.unit
    @pytest.mark.parametrize("amount", [0, 0.5, 1_000_001])
    def test_amount_bounds(self, amount):
        with pytest.raises(ValidationError):
            CreateOrderRequest(amount=amount, cart=[LINE], customerInfo=CUSTOMER)

    @pytest.mark.unit
    def test_dump_by_alias(self):
        req = CreateOrderRequest(amount=549, cart=[LINE], customerInfo=CUSTOMER, merchantOrderId="CPX")
        dumped = req.model_dump(by_alias=True)
        assert dumped["merchantOrderId"] == "CPX"
        assert "customerInfo" in dumped


class TestOtherRequests:

    @pytest.mark.unit
    def test_grant_role_values(self):
        assert GrantRoleRequest(userId="u1", role="admin").role == "admin"
        with pytest.raises(ValidationError):
            GrantRoleRequest(userId="u1", role="superuser")

    @pytest.mark.unit
    def test_contact_message_minimum(self):
        with pytest.raises(ValidationError):
            ContactRequest(name="Asha", email="a@b.co", subject="Hi", message="too short")
