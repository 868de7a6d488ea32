# storefront/schemas/cart.py
import uuid
from datetime import datetime

from sqlmodel import SQLModel, Field


class CartItemCreate(SQLModel):
    """
    Payload for adding to cart.

    variant_id is mandatory when the product defines variants.
    """

    product_id: uuid.UUID
    variant_id: uuid.UUID | None = None
    quantity: int = Field(gt=0)


class CartItemUpdate(SQLModel):
    """
    Payload for updating quantity of a cart item, addressed by position.
    """

    item_index: int = Field(ge=0)
    quantity: int = Field(gt=0)


class CartMerge(SQLModel):
    """
    Payload for merging a guest cart into the caller's cart.
    """

    session_id: str = Field(min_length=1, max_length=255)


class ProductImageRead(SQLModel):
    url: str
    alt: str | None = None
    is_primary: bool = False


class CartProductRead(SQLModel):
    """
    Live product display data attached to a cart item.
    """

    id: uuid.UUID
    name: str
    slug: str
    images: list[ProductImageRead] = []
    base_price: int
    discount_price: int | None = None
    status: str


class CartVariantRead(SQLModel):
    """
    Live variant display data attached to a cart item.
    """

    id: uuid.UUID
    sku: str
    name: str | None = None
    base_price: int
    discount_price: int | None = None
    stock: int
    attributes: list[dict] = []


class CartItemRead(SQLModel):
    """
    Read model for a single cart item.

    `price` is the stored snapshot; `current_price` is what the catalog
    would charge right now (None if the product is gone). `price_changed`
    flags drift so clients can warn before checkout.
    """

    index: int
    product_id: uuid.UUID
    variant_id: uuid.UUID | None = None
    quantity: int
    price: int
    line_total: int
    added_at: datetime
    current_price: int | None = None
    price_changed: bool = False
    product: CartProductRead | None = None
    variant: CartVariantRead | None = None


class CartRead(SQLModel):
    """
    Full cart response model with totals.
    """

    id: uuid.UUID
    user_id: uuid.UUID | None = None
    session_id: str | None = None
    items: list[CartItemRead]
    subtotal: int
    item_count: int
    expires_at: datetime
    created_at: datetime
    updated_at: datetime


class CartResponse(SQLModel):
    """
    `cart` is None when the identity has no live cart.
    """

    cart: CartRead | None = None
    message: str | None = None


class CartSweepResult(SQLModel):
    deleted: int
