# storefront/models/product.py
import uuid
from datetime import datetime, timezone

from sqlalchemy import JSON, Column
from sqlmodel import SQLModel, Field

# draft | active | archived
PRODUCT_STATUS_ACTIVE = "active"


class Product(SQLModel, table=True):
    """
    Catalog entry, read by the cart and checkout flows.

    Prices are integers in minor units (cents). The catalog itself is
    administered elsewhere; this service only reads it (and seeds it in
    tests).
    """

    __tablename__ = "products"

    id: uuid.UUID = Field(
        default_factory=uuid.uuid4,
        primary_key=True,
        index=True,
    )

    name: str = Field(
        max_length=200,
        index=True,
        description="Display name of the product",
    )

    slug: str = Field(
        max_length=255,
        unique=True,
        index=True,
        description="URL-friendly identifier (unique)",
    )

    sku: str = Field(
        max_length=100,
        description="Stock keeping unit for products without variants",
    )

    description: str | None = Field(
        default=None,
        description="Optional long description / HTML",
    )

    base_price: int = Field(
        ge=0,
        description="Unit price in minor units",
    )

    discount_price: int | None = Field(
        default=None,
        ge=0,
        description="Sale price in minor units; wins over base_price when set",
    )

    status: str = Field(
        default="draft",
        index=True,
        description="Catalog status: draft | active | archived",
    )

    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="Creation timestamp (UTC)",
    )

    @property
    def is_active(self) -> bool:
        return self.status == PRODUCT_STATUS_ACTIVE

    @property
    def effective_price(self) -> int:
        if self.discount_price is not None:
            return self.discount_price
        return self.base_price


class ProductImage(SQLModel, table=True):
    """
    Gallery images for a product.
    """

    __tablename__ = "product_images"

    id: uuid.UUID = Field(
        default_factory=uuid.uuid4,
        primary_key=True,
        index=True,
    )

    product_id: uuid.UUID = Field(
        foreign_key="products.id",
        index=True,
        description="FK to products.id",
    )

    image_url: str = Field(
        description="Public image URL",
    )

    alt: str | None = Field(default=None, max_length=200)

    is_primary: bool = Field(
        default=False,
        description="Primary image used for order snapshots",
    )

    sort_order: int = Field(
        default=0,
        ge=0,
        description="Ordering index within the gallery",
    )


class ProductVariant(SQLModel, table=True):
    """
    Purchasable variant of a product (size, colour, ...).

    When a product has at least one variant, carts must reference a
    variant. Stock is tracked per variant only.
    """

    __tablename__ = "product_variants"

    id: uuid.UUID = Field(
        default_factory=uuid.uuid4,
        primary_key=True,
        index=True,
    )

    product_id: uuid.UUID = Field(
        foreign_key="products.id",
        index=True,
    )

    sku: str = Field(
        max_length=100,
        unique=True,
        index=True,
    )

    name: str | None = Field(
        default=None,
        max_length=200,
        description='Variant name, e.g. "Red - Large"',
    )

    base_price: int = Field(ge=0)
    discount_price: int | None = Field(default=None, ge=0)

    stock: int = Field(
        default=0,
        ge=0,
        index=True,
        description="Units currently available",
    )

    # [{"name": "Color", "value": "Red"}, ...]
    attributes: list[dict] = Field(
        default_factory=list,
        sa_column=Column(JSON, nullable=False),
    )

    # Variant-specific image URLs
    images: list[str] = Field(
        default_factory=list,
        sa_column=Column(JSON, nullable=False),
    )

    is_default: bool = Field(default=False)

    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
    )

    @property
    def effective_price(self) -> int:
        if self.discount_price is not None:
            return self.discount_price
        return self.base_price
