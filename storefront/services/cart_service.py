# storefront/services/cart_service.py
import logging
import uuid
from datetime import datetime, timedelta, timezone

from sqlmodel import Session

from storefront.core.config import Settings, get_settings
from storefront.core.errors import NotFoundError, ValidationError
from storefront.core.identity import Identity
from storefront.models.cart import Cart, CartItem
from storefront.models.product import Product, ProductVariant
from storefront.repositories.cart_repo import CartRepository
from storefront.repositories.product_repo import ProductRepository
from storefront.schemas.cart import (
    CartItemRead,
    CartProductRead,
    CartRead,
    CartVariantRead,
    ProductImageRead,
)

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def compute_unit_price(product: Product, variant: ProductVariant | None) -> int:
    """
    Applicable unit price, in order of precedence:
      variant discount > variant base > product discount > product base
    """
    if variant is not None:
        return variant.effective_price
    return product.effective_price


def _insufficient_stock(variant: ProductVariant) -> ValidationError:
    return ValidationError(
        f"Insufficient stock. Only {variant.stock} items available.",
        details={"variant_id": str(variant.id), "available": variant.stock},
    )


class CartService:
    """
    Business logic for cart operations.

    Responsibilities:
      - one live cart per identity (user or guest), created lazily
      - validate product existence, active status and variant ownership
      - enforce quantity <= variant stock on add/update
      - snapshot the unit price on add; refresh it only on add or
        an explicit recalculation
      - merge guest carts into user carts
      - compute line totals and cart totals
    """

    def __init__(
        self,
        cart_repo: CartRepository,
        product_repo: ProductRepository,
        settings: Settings | None = None,
    ):
        self.cart_repo = cart_repo
        self.product_repo = product_repo
        self.settings = settings or get_settings()

    # ---- internal helpers ----

    def _expiry_for(self, identity: Identity, now: datetime) -> datetime:
        days = (
            self.settings.GUEST_CART_TTL_DAYS
            if identity.is_guest
            else self.settings.USER_CART_TTL_DAYS
        )
        return now + timedelta(days=days)

    def _get_or_create_cart(self, session: Session, identity: Identity) -> Cart:
        now = utcnow()
        cart = self.cart_repo.get_active(session, identity, now)
        if cart is None:
            cart = self.cart_repo.create(session, identity, self._expiry_for(identity, now))
            logger.info("Created cart %s (guest=%s)", cart.id, identity.is_guest)
        return cart

    def _require_cart(self, session: Session, identity: Identity) -> Cart:
        cart = self.cart_repo.get_active(session, identity, utcnow())
        if cart is None:
            raise NotFoundError("Cart not found")
        return cart

    def _get_valid_product(self, session: Session, product_id: uuid.UUID) -> Product:
        product = self.product_repo.get_by_id(session, product_id)
        if not product:
            raise NotFoundError("Product not found")
        if not product.is_active:
            raise ValidationError("Product is not available for purchase")
        return product

    def _resolve_variant(
        self,
        session: Session,
        product: Product,
        variant_id: uuid.UUID | None,
    ) -> ProductVariant | None:
        if variant_id is None:
            if self.product_repo.has_variants(session, product.id):
                raise ValidationError("Product variant is required for this product")
            return None

        variant = self.product_repo.get_variant(session, variant_id)
        if not variant:
            raise NotFoundError("Product variant not found")
        if variant.product_id != product.id:
            raise ValidationError("Variant does not belong to the specified product")
        return variant

    @staticmethod
    def _check_quantity(quantity: int) -> None:
        if quantity is None or quantity < 1:
            raise ValidationError("Quantity must be at least 1")

    @staticmethod
    def _check_index(items: list[CartItem], item_index: int) -> CartItem:
        if item_index < 0 or item_index >= len(items):
            raise ValidationError("Invalid item index")
        return items[item_index]

    @staticmethod
    def _next_position(items: list[CartItem]) -> int:
        return max((it.position for it in items), default=-1) + 1

    def _build_cart_read(self, session: Session, cart: Cart) -> CartRead:
        """
        Compose CartRead from the stored cart, attaching live product and
        variant display data. The stored price is never overwritten here.
        """
        items = self.cart_repo.list_items(session, cart.id)

        products: dict[uuid.UUID, Product | None] = {}
        variants: dict[uuid.UUID, ProductVariant | None] = {}
        images: dict[uuid.UUID, list[ProductImageRead]] = {}

        item_reads: list[CartItemRead] = []
        subtotal = 0
        item_count = 0

        for index, it in enumerate(items):
            if it.product_id not in products:
                products[it.product_id] = self.product_repo.get_by_id(session, it.product_id)
                images[it.product_id] = [
                    ProductImageRead(url=img.image_url, alt=img.alt, is_primary=img.is_primary)
                    for img in self.product_repo.list_images_for_product(session, it.product_id)
                ]
            product = products[it.product_id]

            variant = None
            if it.variant_id is not None:
                if it.variant_id not in variants:
                    variants[it.variant_id] = self.product_repo.get_variant(session, it.variant_id)
                variant = variants[it.variant_id]

            current_price = None
            if product is not None and (it.variant_id is None or variant is not None):
                current_price = compute_unit_price(product, variant)

            line_total = it.price * it.quantity
            subtotal += line_total
            item_count += it.quantity

            item_reads.append(
                CartItemRead(
                    index=index,
                    product_id=it.product_id,
                    variant_id=it.variant_id,
                    quantity=it.quantity,
                    price=it.price,
                    line_total=line_total,
                    added_at=it.added_at,
                    current_price=current_price,
                    price_changed=current_price is not None and current_price != it.price,
                    product=(
                        CartProductRead(
                            id=product.id,
                            name=product.name,
                            slug=product.slug,
                            images=images[it.product_id],
                            base_price=product.base_price,
                            discount_price=product.discount_price,
                            status=product.status,
                        )
                        if product is not None
                        else None
                    ),
                    variant=(
                        CartVariantRead(
                            id=variant.id,
                            sku=variant.sku,
                            name=variant.name,
                            base_price=variant.base_price,
                            discount_price=variant.discount_price,
                            stock=variant.stock,
                            attributes=variant.attributes or [],
                        )
                        if variant is not None
                        else None
                    ),
                )
            )

        return CartRead(
            id=cart.id,
            user_id=cart.user_id,
            session_id=cart.session_id,
            items=item_reads,
            subtotal=subtotal,
            item_count=item_count,
            expires_at=cart.expires_at,
            created_at=cart.created_at,
            updated_at=cart.updated_at,
        )

    # ---- public operations ----

    def get_cart(self, session: Session, identity: Identity) -> CartRead | None:
        """
        Return the live cart for the identity, or None when there is none
        (an empty cart is returned as a cart with no items).
        """
        cart = self.cart_repo.get_active(session, identity, utcnow())
        if cart is None:
            return None
        return self._build_cart_read(session, cart)

    def add_to_cart(
        self,
        session: Session,
        identity: Identity,
        product_id: uuid.UUID,
        quantity: int,
        variant_id: uuid.UUID | None = None,
    ) -> CartRead:
        """
        Add a product (or product variant) to the identity's cart.

        Rules:
          - product must exist and be active
          - products with variants require a variant of that product
          - variant stock must cover the requested quantity, and the
            combined quantity when the line already exists
          - an existing (product, variant) line has its quantity summed and
            its price refreshed; otherwise a new line is appended
        """
        self._check_quantity(quantity)
        product = self._get_valid_product(session, product_id)
        variant = self._resolve_variant(session, product, variant_id)

        if variant is not None and variant.stock < quantity:
            raise _insufficient_stock(variant)

        price = compute_unit_price(product, variant)

        cart = self._get_or_create_cart(session, identity)
        items = self.cart_repo.list_items(session, cart.id)
        existing = next(
            (it for it in items if it.key == (product_id, variant_id)),
            None,
        )

        if existing:
            new_qty = existing.quantity + quantity
            if variant is not None and variant.stock < new_qty:
                raise _insufficient_stock(variant)
            existing.quantity = new_qty
            existing.price = price
            self.cart_repo.update_item(session, existing)
        else:
            self.cart_repo.add_item(
                session,
                CartItem(
                    cart_id=cart.id,
                    position=self._next_position(items),
                    product_id=product_id,
                    variant_id=variant_id,
                    quantity=quantity,
                    price=price,
                    added_at=utcnow(),
                ),
            )

        cart = self.cart_repo.save(session, cart)
        return self._build_cart_read(session, cart)

    def update_cart_item(
        self,
        session: Session,
        identity: Identity,
        item_index: int,
        quantity: int,
    ) -> CartRead:
        """
        Replace the quantity of the item at `item_index`.

        Variant items are re-validated against live stock. The stored
        price is left untouched.
        """
        self._check_quantity(quantity)
        cart = self._require_cart(session, identity)
        items = self.cart_repo.list_items(session, cart.id)
        item = self._check_index(items, item_index)

        if item.variant_id is not None:
            variant = self.product_repo.get_variant(session, item.variant_id)
            if not variant:
                raise NotFoundError("Product variant not found")
            if variant.stock < quantity:
                raise _insufficient_stock(variant)

        item.quantity = quantity
        self.cart_repo.update_item(session, item)

        cart = self.cart_repo.save(session, cart)
        return self._build_cart_read(session, cart)

    def remove_cart_item(
        self,
        session: Session,
        identity: Identity,
        item_index: int,
    ) -> CartRead:
        """
        Remove the item at `item_index`; remaining items keep their order.
        """
        cart = self._require_cart(session, identity)
        items = self.cart_repo.list_items(session, cart.id)
        item = self._check_index(items, item_index)

        self.cart_repo.delete_item(session, item)

        cart = self.cart_repo.save(session, cart)
        return self._build_cart_read(session, cart)

    def clear_cart(self, session: Session, identity: Identity) -> None:
        """
        Empty the cart in place. The cart row and its expiry are kept.
        """
        cart = self.cart_repo.get_active(session, identity, utcnow())
        if cart is None:
            return
        self.cart_repo.clear_items(session, cart.id)
        self.cart_repo.save(session, cart)

    def recalculate_cart(self, session: Session, identity: Identity) -> CartRead:
        """
        Sync the cart with the live catalog.

        For each item:
          - drop it if the product is missing or not active,
            or if its variant no longer exists
          - clamp variant quantities down to available stock,
            dropping the item when nothing is left
          - refresh the price snapshot

        This is the only path that shrinks quantities or drops items.
        """
        cart = self._require_cart(session, identity)
        items = self.cart_repo.list_items(session, cart.id)

        dropped = 0
        clamped = 0
        for it in items:
            product = self.product_repo.get_by_id(session, it.product_id)
            if not product or not product.is_active:
                self.cart_repo.delete_item(session, it)
                dropped += 1
                continue

            variant = None
            if it.variant_id is not None:
                variant = self.product_repo.get_variant(session, it.variant_id)
                if not variant:
                    self.cart_repo.delete_item(session, it)
                    dropped += 1
                    continue

                if variant.stock < it.quantity:
                    if variant.stock <= 0:
                        self.cart_repo.delete_item(session, it)
                        dropped += 1
                        continue
                    it.quantity = variant.stock
                    clamped += 1

            it.price = compute_unit_price(product, variant)
            self.cart_repo.update_item(session, it)

        if dropped or clamped:
            logger.info(
                "Recalculated cart %s: %d item(s) dropped, %d clamped to stock",
                cart.id,
                dropped,
                clamped,
            )

        cart = self.cart_repo.save(session, cart)
        return self._build_cart_read(session, cart)

    def merge_carts(
        self,
        session: Session,
        guest_session_id: str,
        user_id: uuid.UUID,
    ) -> CartRead:
        """
        Merge the guest cart for `guest_session_id` into the user's cart.

        - Matching (product, variant) lines: quantities are summed and the
          guest price wins.
        - Other guest lines are appended as they are.
        - Variant lines are then clamped to current stock; lines clamped
          to zero are dropped.
        - The guest cart is deleted.

        A missing or empty guest cart leaves everything untouched and
        returns the (possibly new) user cart.
        """
        guest_identity = Identity.for_guest(guest_session_id)
        user_identity = Identity.for_user(user_id)

        guest_cart = self.cart_repo.get_active(session, guest_identity, utcnow())
        user_cart = self._get_or_create_cart(session, user_identity)

        guest_items = (
            self.cart_repo.list_items(session, guest_cart.id) if guest_cart else []
        )
        if not guest_items:
            return self._build_cart_read(session, user_cart)

        user_items = self.cart_repo.list_items(session, user_cart.id)
        by_key = {it.key: it for it in user_items}
        new_items: list[CartItem] = []
        position = self._next_position(user_items)

        for guest_item in guest_items:
            existing = by_key.get(guest_item.key)
            if existing:
                existing.quantity += guest_item.quantity
                existing.price = guest_item.price
                continue

            merged = CartItem(
                cart_id=user_cart.id,
                position=position,
                product_id=guest_item.product_id,
                variant_id=guest_item.variant_id,
                quantity=guest_item.quantity,
                price=guest_item.price,
                added_at=guest_item.added_at,
            )
            position += 1
            by_key[merged.key] = merged
            new_items.append(merged)

        # Re-apply the stock ceiling to the merged result
        for it in user_items + new_items:
            if it.variant_id is None:
                continue
            variant = self.product_repo.get_variant(session, it.variant_id)
            if variant and variant.stock < it.quantity:
                it.quantity = max(variant.stock, 0)

        for it in user_items:
            if it.quantity > 0:
                self.cart_repo.update_item(session, it)
            else:
                self.cart_repo.delete_item(session, it)
        for it in new_items:
            if it.quantity > 0:
                self.cart_repo.add_item(session, it)

        self.cart_repo.delete(session, guest_cart)
        user_cart = self.cart_repo.save(session, user_cart)

        logger.info(
            "Merged guest cart %s (%d item(s)) into user cart %s",
            guest_cart.id,
            len(guest_items),
            user_cart.id,
        )
        return self._build_cart_read(session, user_cart)

    def cleanup_expired_carts(self, session: Session) -> int:
        """
        Physically delete carts past their expiry. Returns how many.
        """
        deleted = self.cart_repo.delete_expired(session, utcnow())
        if deleted:
            logger.info("Swept %d expired cart(s)", deleted)
        return deleted
