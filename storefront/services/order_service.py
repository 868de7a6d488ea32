# storefront/services/order_service.py
import logging
import uuid
from datetime import datetime

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session
from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from storefront.core.config import Settings, get_settings
from storefront.core.errors import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    ValidationError,
)
from storefront.core.identity import Identity
from storefront.models.cart import Cart, CartItem
from storefront.models.order import Order, OrderItem
from storefront.repositories.cart_repo import CartRepository
from storefront.repositories.order_repo import OrderRepository
from storefront.repositories.product_repo import ProductRepository
from storefront.schemas.order import (
    OrderAddress,
    OrderItemRead,
    OrderListRead,
    OrderRead,
)
from storefront.services.cart_service import compute_unit_price, utcnow

logger = logging.getLogger(__name__)

ORDER_NUMBER_PREFIX = "ORD"

# No status change is allowed once an order reaches one of these
TERMINAL_STATUSES = frozenset({"cancelled", "refunded", "delivered"})


def format_order_number(year: int, sequence: int) -> str:
    return f"{ORDER_NUMBER_PREFIX}-{year}-{sequence:06d}"


def format_money(amount: int, currency: str) -> str:
    return f"{currency} {amount // 100}.{amount % 100:02d}"


def is_order_number_collision(exc: BaseException) -> bool:
    """
    True for a unique violation on orders.order_number.

    SQLite names the column ("orders.order_number"); PostgreSQL names the
    index ("ix_orders_order_number"). Other integrity errors are not retried.
    """
    if not isinstance(exc, IntegrityError):
        return False
    return "order_number" in str(exc.orig if exc.orig is not None else exc)


class OrderService:
    """
    Business logic for orders.

    Responsibilities:
      - Create an order from the caller's cart (snapshot items, totals)
      - Allocate unique yearly order numbers, retrying on collisions
      - Delete the source cart in the same transaction
      - Enforce ownership on reads
      - Drive the status lifecycle, refunds and payment updates (admin)
    """

    def __init__(
        self,
        order_repo: OrderRepository,
        cart_repo: CartRepository,
        product_repo: ProductRepository,
        settings: Settings | None = None,
    ):
        self.order_repo = order_repo
        self.cart_repo = cart_repo
        self.product_repo = product_repo
        self.settings = settings or get_settings()

    # -------- Internal helpers --------

    def _get_order_or_404(self, session: Session, order_id: uuid.UUID) -> Order:
        order = self.order_repo.get_by_id(session, order_id)
        if not order:
            raise NotFoundError("Order not found")
        return order

    @staticmethod
    def _check_owner(order: Order, requesting_user_id: uuid.UUID | None) -> None:
        # Guest orders (no user_id) are not ownership-checked here
        if requesting_user_id is None or order.user_id is None:
            return
        if order.user_id != requesting_user_id:
            raise ForbiddenError("You do not have access to this order")

    def _next_order_number(self, session: Session, now: datetime) -> str:
        """
        Next ORD-<year>-<seq> for the current year.

        Read-then-increment; concurrent callers may compute the same
        number, in which case the unique constraint rejects the loser.
        """
        prefix = f"{ORDER_NUMBER_PREFIX}-{now.year}-"
        latest = self.order_repo.latest_number_with_prefix(session, prefix)
        sequence = 1
        if latest:
            sequence = int(latest.rsplit("-", 1)[1]) + 1
        return format_order_number(now.year, sequence)

    def _snapshot_items(
        self,
        session: Session,
        cart_items: list[CartItem],
    ) -> list[dict]:
        """
        Build order line snapshots from the cart.

        Quantity and unit price come from the cart item. The catalog is
        read only for display data (name, sku, image, attributes).
        """
        snapshots: list[dict] = []
        unavailable: list[dict[str, str]] = []

        for position, ci in enumerate(cart_items):
            product = self.product_repo.get_by_id(session, ci.product_id)
            if not product:
                unavailable.append(
                    {"product_id": str(ci.product_id), "reason": "Product not found"}
                )
                continue

            variant = None
            if ci.variant_id is not None:
                variant = self.product_repo.get_variant(session, ci.variant_id)
                if not variant:
                    unavailable.append(
                        {
                            "product_id": str(ci.product_id),
                            "variant_id": str(ci.variant_id),
                            "reason": "Product variant not found",
                        }
                    )
                    continue

            live_price = compute_unit_price(product, variant)
            if live_price != ci.price:
                logger.warning(
                    "Price drift for product %s (variant %s): cart has %d, catalog has %d",
                    ci.product_id,
                    ci.variant_id,
                    ci.price,
                    live_price,
                )

            image = None
            if variant is not None and variant.images:
                image = variant.images[0]
            else:
                images = self.product_repo.list_images_for_product(session, product.id)
                primary = next((img for img in images if img.is_primary), None)
                if primary:
                    image = primary.image_url
                elif images:
                    image = images[0].image_url

            snapshots.append(
                {
                    "position": position,
                    "product_id": ci.product_id,
                    "variant_id": ci.variant_id,
                    "product_name": product.name,
                    "variant_name": variant.name if variant else None,
                    "sku": variant.sku if variant else product.sku,
                    "quantity": ci.quantity,
                    "unit_price": ci.price,
                    "total_price": ci.price * ci.quantity,
                    "image": image,
                    "attributes": list(variant.attributes) if variant else [],
                }
            )

        if unavailable:
            raise ValidationError(
                "Cart contains unavailable items",
                details={"items": unavailable},
            )
        return snapshots

    def _insert_order(
        self,
        session: Session,
        cart: Cart,
        order_fields: dict,
        item_snapshots: list[dict],
    ) -> Order:
        """
        One attempt: allocate a number, insert order + items, delete the
        cart, commit. Rolls back and re-raises on an integrity error.
        """
        now = utcnow()
        order_number = self._next_order_number(session, now)
        order = Order(
            order_number=order_number,
            created_at=now,
            updated_at=now,
            **order_fields,
        )
        try:
            self.order_repo.create_order(session, order)
            self.order_repo.create_items(
                session,
                [OrderItem(order_id=order.id, **snap) for snap in item_snapshots],
            )
            self.cart_repo.delete(session, cart)
            session.commit()
        except IntegrityError as exc:
            session.rollback()
            if is_order_number_collision(exc):
                logger.warning("Order number %s already taken", order_number)
            raise

        session.refresh(order)
        return order

    def _build_order_read(self, session: Session, order: Order) -> OrderRead:
        items = self.order_repo.list_items_for_order(session, order.id)
        return OrderRead(
            id=order.id,
            order_number=order.order_number,
            user_id=order.user_id,
            session_id=order.session_id,
            items=[OrderItemRead.model_validate(it) for it in items],
            shipping_address=OrderAddress.model_validate(order.shipping_address),
            billing_address=(
                OrderAddress.model_validate(order.billing_address)
                if order.billing_address
                else None
            ),
            status=order.status,
            payment_method=order.payment_method,
            payment_status=order.payment_status,
            subtotal=order.subtotal,
            tax=order.tax,
            shipping=order.shipping,
            discount=order.discount,
            total=order.total,
            currency=order.currency,
            notes=order.notes,
            internal_notes=order.internal_notes,
            cancelled_at=order.cancelled_at,
            cancelled_reason=order.cancelled_reason,
            refunded_at=order.refunded_at,
            refunded_amount=order.refunded_amount,
            shipped_at=order.shipped_at,
            tracking_number=order.tracking_number,
            delivered_at=order.delivered_at,
            created_at=order.created_at,
            updated_at=order.updated_at,
        )

    def _save(self, session: Session, order: Order) -> Order:
        order.updated_at = utcnow()
        self.order_repo.update_order(session, order)
        session.commit()
        session.refresh(order)
        return order

    # -------- Checkout --------

    def create_order(
        self,
        session: Session,
        identity: Identity,
        shipping_address: OrderAddress,
        payment_method: str,
        billing_address: OrderAddress | None = None,
        notes: str | None = None,
    ) -> OrderRead:
        """
        Convert the identity's cart into an Order.

        Steps:
          1. Validate shipping address and payment method.
          2. Load the cart; error if missing or empty.
          3. Snapshot each cart item (cart price is the order price).
          4. subtotal = sum of line totals; tax/shipping/discount are 0.
          5. Insert order + items and delete the cart in one transaction,
             retrying on order-number collisions.

        Stock is neither re-validated nor decremented here.
        """
        if shipping_address is None:
            raise ValidationError("Shipping address is required")
        if not payment_method:
            raise ValidationError("Payment method is required")

        cart = self.cart_repo.get_active(session, identity, utcnow())
        cart_items = self.cart_repo.list_items(session, cart.id) if cart else []
        if not cart or not cart_items:
            raise ValidationError("Cart is empty")

        item_snapshots = self._snapshot_items(session, cart_items)

        subtotal = sum(snap["total_price"] for snap in item_snapshots)
        tax = 0
        shipping = 0
        discount = 0
        total = subtotal + tax + shipping - discount

        shipping_data = shipping_address.model_dump()
        billing_data = (
            billing_address.model_dump() if billing_address else dict(shipping_data)
        )

        order_fields = {
            "user_id": identity.user_id,
            "session_id": identity.session_id,
            "shipping_address": shipping_data,
            "billing_address": billing_data,
            "status": "pending",
            "payment_method": payment_method,
            "payment_status": "pending",
            "subtotal": subtotal,
            "tax": tax,
            "shipping": shipping,
            "discount": discount,
            "total": total,
            "currency": self.settings.CURRENCY,
            "notes": notes,
        }

        retrying = Retrying(
            reraise=True,
            stop=stop_after_attempt(self.settings.ORDER_NUMBER_MAX_ATTEMPTS),
            wait=wait_exponential(multiplier=0.05, min=0.05, max=0.5),
            retry=retry_if_exception(is_order_number_collision),
            before_sleep=before_sleep_log(logger, logging.WARNING),
        )
        try:
            order = retrying(
                self._insert_order, session, cart, order_fields, item_snapshots
            )
        except IntegrityError as exc:
            if not is_order_number_collision(exc):
                raise
            raise ConflictError("Could not allocate a unique order number, please retry") from exc

        logger.info(
            "Created order %s (%d item(s), total %s)",
            order.order_number,
            len(item_snapshots),
            format_money(order.total, order.currency),
        )
        return self._build_order_read(session, order)

    # -------- Reads --------

    def get_order_by_id(
        self,
        session: Session,
        order_id: uuid.UUID,
        requesting_user_id: uuid.UUID | None = None,
    ) -> OrderRead:
        order = self._get_order_or_404(session, order_id)
        self._check_owner(order, requesting_user_id)
        return self._build_order_read(session, order)

    def get_order_by_number(
        self,
        session: Session,
        order_number: str,
        requesting_user_id: uuid.UUID | None = None,
    ) -> OrderRead:
        order = self.order_repo.get_by_number(session, order_number)
        if not order:
            raise NotFoundError("Order not found")
        self._check_owner(order, requesting_user_id)
        return self._build_order_read(session, order)

    def get_orders_by_user(
        self,
        session: Session,
        user_id: uuid.UUID,
    ) -> list[OrderRead]:
        """All orders of a user, newest first."""
        orders = self.order_repo.list_for_user(session, user_id)
        return [self._build_order_read(session, o) for o in orders]

    def get_all_orders(
        self,
        session: Session,
        *,
        status: str | None = None,
        payment_status: str | None = None,
        payment_method: str | None = None,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> OrderListRead:
        """
        Admin listing with filters. `total` counts every matching order,
        not just the returned page.
        """
        orders, total = self.order_repo.list_all(
            session,
            status=status,
            payment_status=payment_status,
            payment_method=payment_method,
            start_date=start_date,
            end_date=end_date,
            skip=offset,
            limit=limit,
        )
        return OrderListRead(
            orders=[self._build_order_read(session, o) for o in orders],
            total=total,
        )

    # -------- Admin lifecycle --------

    def update_order_status(
        self,
        session: Session,
        order_id: uuid.UUID,
        new_status: str,
        tracking_number: str | None = None,
        internal_notes: str | None = None,
        cancelled_reason: str | None = None,
    ) -> OrderRead:
        """
        Move an order to `new_status`.

        Side effects:
          - shipped   : shipped_at set the first time only
          - delivered : delivered_at set the first time only; cash orders
                        with pending payment become paid
          - cancelled : cancelled_at and cancelled_reason recorded

        Orders that are cancelled, refunded or delivered cannot change.
        """
        order = self._get_order_or_404(session, order_id)

        if order.status in TERMINAL_STATUSES:
            raise ValidationError(
                f"Cannot change status of a {order.status} order",
                details={"current_status": order.status, "requested_status": new_status},
            )

        now = utcnow()
        previous = order.status
        order.status = new_status

        if new_status == "shipped":
            if order.shipped_at is None:
                order.shipped_at = now
        elif new_status == "delivered":
            if order.delivered_at is None:
                order.delivered_at = now
            if order.payment_method == "cash" and order.payment_status == "pending":
                order.payment_status = "paid"
        elif new_status == "cancelled":
            order.cancelled_at = now
            order.cancelled_reason = cancelled_reason

        if tracking_number:
            order.tracking_number = tracking_number
        if internal_notes is not None:
            order.internal_notes = internal_notes

        order = self._save(session, order)
        logger.info(
            "Order %s status %s -> %s", order.order_number, previous, new_status
        )
        return self._build_order_read(session, order)

    def refund_order(
        self,
        session: Session,
        order_id: uuid.UUID,
        amount: int | None = None,
        reason: str | None = None,
    ) -> OrderRead:
        """
        Record a refund (full when `amount` is omitted).

        Appends an audit line to internal_notes. The payment provider
        call is not part of this service.
        """
        order = self._get_order_or_404(session, order_id)

        if order.status == "refunded":
            raise ValidationError("Order has already been refunded")

        if amount is not None and amount <= 0:
            raise ValidationError(
                "Refund amount must be positive", details={"amount": amount}
            )

        refund_amount = order.total if amount is None else amount
        if refund_amount > order.total:
            raise ValidationError(
                "Refund amount cannot exceed order total",
                details={"amount": refund_amount, "total": order.total},
            )

        audit = (
            f"Refund: {format_money(refund_amount, order.currency)}"
            f" - {reason or 'No reason provided'}"
        )

        order.status = "refunded"
        order.payment_status = "refunded"
        order.refunded_at = utcnow()
        order.refunded_amount = refund_amount
        order.internal_notes = (
            f"{order.internal_notes}\n\n{audit}" if order.internal_notes else audit
        )

        order = self._save(session, order)
        logger.info("Refunded order %s: %s", order.order_number, audit)
        return self._build_order_read(session, order)

    def update_payment_status(
        self,
        session: Session,
        order_id: uuid.UUID,
        payment_status: str,
    ) -> OrderRead:
        """
        Apply a payment status reported by the payment provider.

        A pending order whose payment is confirmed becomes `confirmed`.
        """
        order = self._get_order_or_404(session, order_id)

        order.payment_status = payment_status
        if payment_status == "paid" and order.status == "pending":
            order.status = "confirmed"

        order = self._save(session, order)
        logger.info(
            "Order %s payment status -> %s", order.order_number, payment_status
        )
        return self._build_order_read(session, order)
