# storefront/repositories/product_repo.py
import uuid

from sqlmodel import Session, select

from storefront.models.product import Product, ProductImage, ProductVariant


class ProductRepository:
    """
    Data access layer for the catalog (Product, ProductImage, ProductVariant).

    - Pure DB operations (CRUD + queries).
    - No FastAPI, no business logic.
    - The cart/order core only reads through this class; the write methods
      exist for seeding.
    """

    # ----- Products -----

    def get_by_id(self, session: Session, product_id: uuid.UUID) -> Product | None:
        return session.get(Product, product_id)

    def create(self, session: Session, product: Product) -> Product:
        session.add(product)
        session.commit()
        session.refresh(product)
        return product

    def update(self, session: Session, product: Product) -> Product:
        session.add(product)
        session.commit()
        session.refresh(product)
        return product

    # ----- Product images -----

    def list_images_for_product(
        self,
        session: Session,
        product_id: uuid.UUID,
    ) -> list[ProductImage]:
        stmt = (
            select(ProductImage)
            .where(ProductImage.product_id == product_id)
            .order_by(ProductImage.sort_order)
        )
        return list(session.exec(stmt).all())

    def create_image(
        self,
        session: Session,
        image: ProductImage,
    ) -> ProductImage:
        session.add(image)
        session.commit()
        session.refresh(image)
        return image

    # ----- Variants -----

    def get_variant(
        self,
        session: Session,
        variant_id: uuid.UUID,
    ) -> ProductVariant | None:
        return session.get(ProductVariant, variant_id)

    def list_variants_for_product(
        self,
        session: Session,
        product_id: uuid.UUID,
    ) -> list[ProductVariant]:
        stmt = select(ProductVariant).where(ProductVariant.product_id == product_id)
        return list(session.exec(stmt).all())

    def has_variants(self, session: Session, product_id: uuid.UUID) -> bool:
        stmt = (
            select(ProductVariant.id)
            .where(ProductVariant.product_id == product_id)
            .limit(1)
        )
        return session.exec(stmt).first() is not None

    def create_variant(
        self,
        session: Session,
        variant: ProductVariant,
    ) -> ProductVariant:
        session.add(variant)
        session.commit()
        session.refresh(variant)
        return variant

    def update_variant(
        self,
        session: Session,
        variant: ProductVariant,
    ) -> ProductVariant:
        session.add(variant)
        session.commit()
        session.refresh(variant)
        return variant
