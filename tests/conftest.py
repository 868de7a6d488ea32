import uuid

import pytest
from fastapi.testclient import TestClient
from jose import jwt
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, create_engine

from storefront.core.config import Settings, get_settings
from storefront.database import create_db_and_tables
from storefront.main import create_app
from storefront.models.product import Product, ProductImage, ProductVariant
from storefront.repositories.cart_repo import CartRepository
from storefront.repositories.order_repo import OrderRepository
from storefront.repositories.product_repo import ProductRepository
from storefront.services.cart_service import CartService
from storefront.services.order_service import OrderService


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    create_db_and_tables(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session(engine):
    with Session(engine) as s:
        yield s


@pytest.fixture
def settings():
    return Settings(
        DATABASE_URL="sqlite://",
        JWT_SECRET="test-secret",
        SWEEP_EXPIRED_CARTS_ON_STARTUP=True,
    )


@pytest.fixture
def product_repo():
    return ProductRepository()


@pytest.fixture
def cart_repo():
    return CartRepository()


@pytest.fixture
def order_repo():
    return OrderRepository()


@pytest.fixture
def cart_service(cart_repo, product_repo, settings):
    return CartService(cart_repo, product_repo, settings)


@pytest.fixture
def order_service(order_repo, cart_repo, product_repo, settings):
    return OrderService(order_repo, cart_repo, product_repo, settings)


# ---- catalog seeding ----


@pytest.fixture
def make_product(session, product_repo):
    def _make(
        name="Chocolate Cake",
        base_price=2500,
        discount_price=None,
        status="active",
        sku=None,
        images=(),
    ) -> Product:
        slug = f"{name.lower().replace(' ', '-')}-{uuid.uuid4().hex[:6]}"
        product = product_repo.create(
            session,
            Product(
                name=name,
                slug=slug,
                sku=sku or f"SKU-{uuid.uuid4().hex[:8]}",
                base_price=base_price,
                discount_price=discount_price,
                status=status,
            ),
        )
        for i, (url, is_primary) in enumerate(images):
            product_repo.create_image(
                session,
                ProductImage(
                    product_id=product.id,
                    image_url=url,
                    is_primary=is_primary,
                    sort_order=i,
                ),
            )
        return product

    return _make


@pytest.fixture
def make_variant(session, product_repo):
    def _make(
        product: Product,
        stock=10,
        base_price=3000,
        discount_price=None,
        name="Large",
        images=None,
        attributes=None,
    ) -> ProductVariant:
        return product_repo.create_variant(
            session,
            ProductVariant(
                product_id=product.id,
                sku=f"VAR-{uuid.uuid4().hex[:8]}",
                name=name,
                base_price=base_price,
                discount_price=discount_price,
                stock=stock,
                images=images or [],
                attributes=attributes or [{"name": "Size", "value": name}],
            ),
        )

    return _make


@pytest.fixture
def shipping_address():
    return {
        "full_name": "Jamie Doe",
        "address_line1": "1 Main Street",
        "city": "Springfield",
        "state": "IL",
        "postal_code": "62701",
        "country": "US",
    }


# ---- HTTP ----


@pytest.fixture
def client(engine, settings, monkeypatch):
    monkeypatch.setenv("JWT_SECRET", settings.JWT_SECRET)
    get_settings.cache_clear()
    app = create_app(settings=settings, engine=engine)
    with TestClient(app) as c:
        yield c
    get_settings.cache_clear()


@pytest.fixture
def make_token(settings):
    def _make(user_id: uuid.UUID | None = None, role: str = "user") -> str:
        claims = {"sub": str(user_id or uuid.uuid4()), "role": role}
        return jwt.encode(claims, settings.JWT_SECRET, algorithm=settings.JWT_ALG)

    return _make


@pytest.fixture
def auth_headers(make_token):
    def _make(user_id: uuid.UUID | None = None, role: str = "user") -> dict:
        return {"Authorization": f"Bearer {make_token(user_id, role)}"}

    return _make
