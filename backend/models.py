"""
Pydantic models for request validation.

Field names are snake_case in Python and camelCase on the wire (aliases), as
the storefront sends them.
"""
from pydantic import BaseModel, ConfigDict, Field
from typing import List, Optional

from domain.constants import CURRENCY, MAX_ORDER_AMOUNT, MIN_ORDER_AMOUNT


class StoreBase(BaseModel):
    """Shared base; allows construction by Python name or alias."""
    model_config = ConfigDict(populate_by_name=True)


# ── Auth / Profile ──────────────────────────────────────────────────

class RegisterRequest(StoreBase):
    email: str = Field(..., min_length=3, max_length=254)
    password: str = Field(..., min_length=8, max_length=128)
    first_name: str = Field(..., alias="firstName", min_length=1, max_length=100)
    last_name: str = Field(..., alias="lastName", min_length=1, max_length=100)


class LoginRequest(StoreBase):
    email: str = Field(..., min_length=3, max_length=254)
    password: str = Field(..., min_length=1, max_length=128)


class ProfileUpdateRequest(StoreBase):
    first_name: Optional[str] = Field(None, alias="firstName", max_length=100)
    last_name: Optional[str] = Field(None, alias="lastName", max_length=100)
    phone: Optional[str] = Field(None, max_length=20)
    address: Optional[str] = Field(None, max_length=500)


# ── Cart / Wishlist ─────────────────────────────────────────────────

class CartLine(StoreBase):
    """A cart line as posted by the storefront; price is checked server-side."""
    id: str = Field(..., min_length=1, max_length=50)
    name: str = Field(..., min_length=1, max_length=200)
    price: float = Field(..., ge=0)
    quantity: int = Field(..., ge=1, le=100)


class CartAddRequest(StoreBase):
    product_id: str = Field(..., alias="productId", min_length=1, max_length=50)
    quantity: int = Field(1, ge=1, le=100)


class CartUpdateRequest(StoreBase):
    quantity: int = Field(..., ge=0, le=100)


class CartValidateRequest(StoreBase):
    items: List[CartLine] = Field(default_factory=list)
    total: float = Field(..., ge=0)


class WishlistAddRequest(StoreBase):
    product_id: str = Field(..., alias="productId", min_length=1, max_length=50)


# ── Checkout ────────────────────────────────────────────────────────

class CustomerInfo(StoreBase):
    name: str = Field(..., min_length=1, max_length=200)
    email: str = Field(..., min_length=3, max_length=254)
    phone: str = Field(..., min_length=10, max_length=20)
    address: str = Field(..., min_length=1, max_length=500)


class CreateOrderRequest(StoreBase):
    amount: float = Field(..., ge=MIN_ORDER_AMOUNT, le=MAX_ORDER_AMOUNT)
    currency: str = Field(CURRENCY, max_length=3)
    merchant_order_id: Optional[str] = Field(None, alias="merchantOrderId", max_length=64)
    cart: List[CartLine] = Field(..., min_length=1)
    customer_info: CustomerInfo = Field(..., alias="customerInfo")


class VerifyPaymentRequest(StoreBase):
    merchant_order_id: str = Field(..., alias="merchantOrderId", min_length=1, max_length=64)


# ── Invoices ────────────────────────────────────────────────────────

class InvoiceEmailRequest(StoreBase):
    token: str = Field(..., min_length=1)


# ── Admin ───────────────────────────────────────────────────────────

class GrantRoleRequest(StoreBase):
    user_id: str = Field(..., alias="userId", min_length=1, max_length=36)
    role: str = Field(..., pattern="^(admin|user)$")


# ── Contact ─────────────────────────────────────────────────────────

class ContactRequest(StoreBase):
    name: str = Field(..., min_length=1, max_length=100)
    email: str = Field(..., min_length=3, max_length=254)
    subject: str = Field(..., min_length=1, max_length=200)
    message: str = Field(..., min_length=10, max_length=2000)
