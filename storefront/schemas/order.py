# storefront/schemas/order.py
import uuid
from datetime import datetime
from typing import Literal

from pydantic import ConfigDict, field_validator
from sqlmodel import SQLModel, Field

OrderStatus = Literal[
    "pending",
    "confirmed",
    "paid",
    "processing",
    "shipped",
    "delivered",
    "cancelled",
    "refunded",
]
PaymentMethod = Literal["cash", "card"]
PaymentStatus = Literal["pending", "paid", "failed", "refunded"]


class OrderAddress(SQLModel):
    """
    Postal address copied by value into the order.
    """

    model_config = ConfigDict(extra="forbid")

    full_name: str = Field(max_length=200)
    address_line1: str = Field(max_length=300)
    address_line2: str | None = Field(default=None, max_length=300)
    city: str = Field(max_length=100)
    state: str = Field(max_length=100)
    postal_code: str = Field(max_length=20)
    country: str = Field(max_length=100)
    phone_number: str | None = Field(default=None, max_length=50)
    email: str | None = Field(default=None, max_length=255)

    @field_validator(
        "full_name", "address_line1", "city", "state", "postal_code", "country"
    )
    @classmethod
    def not_empty(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("field cannot be empty")
        return v

    @field_validator("address_line2", "phone_number", "email")
    @classmethod
    def normalize_optional(cls, v: str | None) -> str | None:
        if v is None:
            return v
        v = v.strip()
        return v or None


class OrderCreate(SQLModel):
    """
    Payload for creating an order from the current cart.

    User provides:
      - shipping address (billing defaults to it)
      - payment method
      - notes (optional)

    Backend derives:
      - owner from token or session_id
      - order number, status = 'pending', payment_status = 'pending'
      - items and totals from the cart
    """

    model_config = ConfigDict(extra="forbid")

    shipping_address: OrderAddress
    billing_address: OrderAddress | None = None
    payment_method: PaymentMethod
    notes: str | None = Field(default=None, max_length=1000)

    @field_validator("notes")
    @classmethod
    def normalize_notes(cls, v: str | None) -> str | None:
        if v is None:
            return v
        v = v.strip()
        return v or None


class OrderItemRead(SQLModel):
    """
    Representation of a single order line item.
    """

    product_id: uuid.UUID
    variant_id: uuid.UUID | None = None
    product_name: str
    variant_name: str | None = None
    sku: str
    quantity: int
    unit_price: int
    total_price: int
    image: str | None = None
    attributes: list[dict] = []


class OrderRead(SQLModel):
    """
    Full order view including items.
    """

    id: uuid.UUID
    order_number: str
    user_id: uuid.UUID | None = None
    session_id: str | None = None
    items: list[OrderItemRead]
    shipping_address: OrderAddress
    billing_address: OrderAddress | None = None
    status: OrderStatus
    payment_method: PaymentMethod
    payment_status: PaymentStatus
    subtotal: int
    tax: int
    shipping: int
    discount: int
    total: int
    currency: str
    notes: str | None = None
    internal_notes: str | None = None
    cancelled_at: datetime | None = None
    cancelled_reason: str | None = None
    refunded_at: datetime | None = None
    refunded_amount: int | None = None
    shipped_at: datetime | None = None
    tracking_number: str | None = None
    delivered_at: datetime | None = None
    created_at: datetime
    updated_at: datetime


class OrderListRead(SQLModel):
    orders: list[OrderRead]
    total: int


class OrderStatusUpdate(SQLModel):
    """
    Admin payload to change order status.
    """

    model_config = ConfigDict(extra="forbid")

    status: OrderStatus
    tracking_number: str | None = Field(default=None, max_length=100)
    internal_notes: str | None = Field(default=None, max_length=2000)
    cancelled_reason: str | None = Field(default=None, max_length=500)


class OrderRefund(SQLModel):
    """
    Admin payload to refund an order. Omit `amount` for a full refund.
    """

    model_config = ConfigDict(extra="forbid")

    amount: int | None = Field(default=None, gt=0)
    reason: str | None = Field(default=None, max_length=500)


class PaymentStatusUpdate(SQLModel):
    """
    Payload pushed by the payment webhook relay.
    """

    model_config = ConfigDict(extra="forbid")

    payment_status: PaymentStatus
