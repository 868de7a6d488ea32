# storefront/repositories/cart_repo.py
import uuid
from datetime import datetime, timezone

from sqlalchemy import delete
from sqlmodel import Session, select

from storefront.core.errors import ValidationError
from storefront.core.identity import Identity
from storefront.models.cart import Cart, CartItem


class CartRepository:
    """
    Data access layer for carts and cart_items.

    NOTE:
      - Only `create` and `delete_expired` commit on their own.
        Every cart mutation is a read-modify-write of the whole item list,
        so the service stages its changes and finishes with `save`.
      - Expired carts are filtered out of every lookup.
    """

    # ---- Carts ----

    def get_active(
        self,
        session: Session,
        identity: Identity,
        now: datetime,
    ) -> Cart | None:
        stmt = select(Cart).where(Cart.expires_at > now)
        if identity.user_id is not None:
            stmt = stmt.where(Cart.user_id == identity.user_id)
        else:
            stmt = stmt.where(Cart.session_id == identity.session_id)
        stmt = stmt.order_by(Cart.created_at.desc())
        return session.exec(stmt).first()

    def create(
        self,
        session: Session,
        identity: Identity,
        expires_at: datetime,
    ) -> Cart:
        """
        Insert an empty cart for the identity.

        The Identity value already guarantees exactly one owner; the check
        is repeated here because this is the write path.
        """
        if (identity.user_id is None) == (identity.session_id is None):
            raise ValidationError("Cart must have either userId or sessionId")

        cart = Cart(
            user_id=identity.user_id,
            session_id=identity.session_id,
            expires_at=expires_at,
        )
        session.add(cart)
        session.commit()
        session.refresh(cart)
        return cart

    def save(self, session: Session, cart: Cart) -> Cart:
        """Commit staged item changes and bump updated_at."""
        cart.updated_at = datetime.now(timezone.utc)
        session.add(cart)
        session.commit()
        session.refresh(cart)
        return cart

    def delete(self, session: Session, cart: Cart) -> None:
        """Stage deletion of the cart and its items (no commit)."""
        session.execute(delete(CartItem).where(CartItem.cart_id == cart.id))
        session.delete(cart)

    def delete_expired(self, session: Session, now: datetime) -> int:
        """Physically remove every cart past its expiry. Returns the count."""
        expired_ids = list(
            session.exec(select(Cart.id).where(Cart.expires_at <= now)).all()
        )
        if not expired_ids:
            return 0

        session.execute(delete(CartItem).where(CartItem.cart_id.in_(expired_ids)))
        session.execute(delete(Cart).where(Cart.id.in_(expired_ids)))
        session.commit()
        return len(expired_ids)

    # ---- Cart items ----

    def list_items(self, session: Session, cart_id: uuid.UUID) -> list[CartItem]:
        stmt = (
            select(CartItem)
            .where(CartItem.cart_id == cart_id)
            .order_by(CartItem.position, CartItem.added_at)
        )
        return list(session.exec(stmt).all())

    def add_item(self, session: Session, item: CartItem) -> CartItem:
        session.add(item)
        return item

    def update_item(self, session: Session, item: CartItem) -> CartItem:
        session.add(item)
        return item

    def delete_item(self, session: Session, item: CartItem) -> None:
        session.delete(item)

    def clear_items(self, session: Session, cart_id: uuid.UUID) -> None:
        session.execute(delete(CartItem).where(CartItem.cart_id == cart_id))
