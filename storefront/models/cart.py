# storefront/models/cart.py
import uuid
from datetime import datetime, timezone

from sqlalchemy import CheckConstraint
from sqlmodel import SQLModel, Field


class Cart(SQLModel, table=True):
    """
    Shopping cart owned by exactly one identity:
      - user_id    for authenticated customers
      - session_id for guests

    A cart past `expires_at` is treated as absent by every read path and
    physically removed by the expiry sweep.
    """

    __tablename__ = "carts"
    __table_args__ = (
        CheckConstraint(
            "(user_id IS NULL) <> (session_id IS NULL)",
            name="ck_carts_single_identity",
        ),
    )

    id: uuid.UUID = Field(
        default_factory=uuid.uuid4,
        primary_key=True,
        index=True,
    )

    user_id: uuid.UUID | None = Field(default=None, index=True)
    session_id: str | None = Field(default=None, max_length=255, index=True)

    expires_at: datetime = Field(
        index=True,
        description="30 days for user carts, 7 days for guest carts",
    )

    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
    )
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
    )


class CartItem(SQLModel, table=True):
    """
    Line inside a cart.

    One cart cannot hold two rows for the same (product_id, variant_id);
    a missing variant counts as its own key. Rows are kept in insertion
    order through `position`, which is what item indexes refer to.
    """

    __tablename__ = "cart_items"

    id: uuid.UUID = Field(
        default_factory=uuid.uuid4,
        primary_key=True,
        index=True,
    )

    cart_id: uuid.UUID = Field(
        foreign_key="carts.id",
        index=True,
    )

    position: int = Field(default=0, ge=0)

    product_id: uuid.UUID = Field(index=True)
    variant_id: uuid.UUID | None = Field(default=None, index=True)

    quantity: int = Field(
        gt=0,
        description="Must be >= 1",
    )

    # Unit price snapshot in minor units, refreshed only by add/recalculate
    price: int = Field(
        ge=0,
        description="Price when added to cart",
    )

    added_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
    )

    @property
    def key(self) -> tuple[uuid.UUID, uuid.UUID | None]:
        return (self.product_id, self.variant_id)
