# storefront/models/order.py
import uuid
from datetime import datetime, timezone

from sqlalchemy import JSON, CheckConstraint, Column, Text
from sqlmodel import SQLModel, Field

# Columns that may change after an order has been created. Everything
# else on Order is write-once (see OrderRepository.update_order).
MUTABLE_ORDER_FIELDS = frozenset(
    {
        "status",
        "payment_status",
        "cancelled_at",
        "cancelled_reason",
        "shipped_at",
        "delivered_at",
        "refunded_at",
        "refunded_amount",
        "tracking_number",
        "internal_notes",
        "updated_at",
    }
)


class Order(SQLModel, table=True):
    """
    Customer order, created once from a cart.

    Monetary fields are integers in minor units:
      total = subtotal + tax + shipping - discount
    """

    __tablename__ = "orders"
    __table_args__ = (
        CheckConstraint(
            "(user_id IS NULL) <> (session_id IS NULL)",
            name="ck_orders_single_identity",
        ),
    )

    id: uuid.UUID = Field(
        default_factory=uuid.uuid4,
        primary_key=True,
        index=True,
    )

    # ORD-<year>-<6 digit sequence>
    order_number: str = Field(
        max_length=32,
        unique=True,
        index=True,
    )

    user_id: uuid.UUID | None = Field(default=None, index=True)
    session_id: str | None = Field(default=None, max_length=255, index=True)

    shipping_address: dict = Field(sa_column=Column(JSON, nullable=False))
    billing_address: dict = Field(sa_column=Column(JSON, nullable=False))

    # pending | confirmed | paid | processing | shipped | delivered | cancelled | refunded
    status: str = Field(
        default="pending",
        index=True,
        description="Order status lifecycle",
    )

    # cash | card
    payment_method: str = Field(index=True)

    # pending | paid | failed | refunded
    payment_status: str = Field(default="pending", index=True)

    subtotal: int = Field(ge=0)
    tax: int = Field(default=0, ge=0)
    shipping: int = Field(default=0, ge=0)
    discount: int = Field(default=0, ge=0)
    total: int = Field(ge=0)
    currency: str = Field(default="USD", max_length=3)

    notes: str | None = Field(default=None, max_length=1000)
    # Unbounded: refunds append audit lines to whatever the admin wrote
    internal_notes: str | None = Field(default=None, sa_column=Column(Text))

    cancelled_at: datetime | None = None
    cancelled_reason: str | None = Field(default=None, max_length=500)
    refunded_at: datetime | None = None
    refunded_amount: int | None = Field(default=None, ge=0)
    shipped_at: datetime | None = None
    tracking_number: str | None = None
    delivered_at: datetime | None = None

    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        index=True,
        description="Creation timestamp (UTC)",
    )
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
    )


class OrderItem(SQLModel, table=True):
    """
    Line item inside an order.

    A deep snapshot of the product/variant at checkout time; rendering an
    order never needs the catalog.
    """

    __tablename__ = "order_items"

    id: uuid.UUID = Field(
        default_factory=uuid.uuid4,
        primary_key=True,
        index=True,
    )

    order_id: uuid.UUID = Field(
        foreign_key="orders.id",
        index=True,
    )

    position: int = Field(default=0, ge=0)

    product_id: uuid.UUID = Field(index=True)
    variant_id: uuid.UUID | None = Field(default=None, index=True)

    product_name: str
    variant_name: str | None = None
    sku: str

    quantity: int = Field(
        gt=0,
        description="Quantity ordered (>=1)",
    )

    unit_price: int = Field(
        ge=0,
        description="Unit price at time of order",
    )
    total_price: int = Field(ge=0)

    image: str | None = None

    attributes: list[dict] = Field(
        default_factory=list,
        sa_column=Column(JSON, nullable=False),
    )
