# storefront/repositories/order_repo.py
import uuid
from datetime import datetime

from sqlalchemy import func, inspect
from sqlmodel import Session, select

from storefront.core.errors import AppError
from storefront.models.order import MUTABLE_ORDER_FIELDS, Order, OrderItem


class OrderRepository:
    """
    Data access layer for orders and order_items.

    NOTE:
      - No commits here; order creation is a multi-step transaction
        (allocate number, insert order + items, delete the cart).
        The service is responsible for calling session.commit().
    """

    # ---- Orders ----

    def get_by_id(self, session: Session, order_id: uuid.UUID) -> Order | None:
        return session.get(Order, order_id)

    def get_by_number(self, session: Session, order_number: str) -> Order | None:
        stmt = select(Order).where(Order.order_number == order_number.strip().upper())
        return session.exec(stmt).first()

    def latest_number_with_prefix(self, session: Session, prefix: str) -> str | None:
        """
        Highest order number starting with `prefix`.

        Sequences are zero padded, so lexical order is numeric order.
        """
        stmt = (
            select(Order.order_number)
            .where(Order.order_number.startswith(prefix))
            .order_by(Order.order_number.desc())
            .limit(1)
        )
        return session.exec(stmt).first()

    def list_for_user(self, session: Session, user_id: uuid.UUID) -> list[Order]:
        stmt = (
            select(Order)
            .where(Order.user_id == user_id)
            .order_by(Order.created_at.desc())
        )
        return list(session.exec(stmt).all())

    def list_all(
        self,
        session: Session,
        *,
        status: str | None = None,
        payment_status: str | None = None,
        payment_method: str | None = None,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
        skip: int = 0,
        limit: int = 50,
    ) -> tuple[list[Order], int]:
        """Filtered, paginated listing. Returns (page, total matching rows)."""
        conditions = []
        if status:
            conditions.append(Order.status == status)
        if payment_status:
            conditions.append(Order.payment_status == payment_status)
        if payment_method:
            conditions.append(Order.payment_method == payment_method)
        if start_date:
            conditions.append(Order.created_at >= start_date)
        if end_date:
            conditions.append(Order.created_at <= end_date)

        stmt = (
            select(Order)
            .where(*conditions)
            .order_by(Order.created_at.desc())
            .offset(skip)
            .limit(limit)
        )
        count_stmt = select(func.count()).select_from(Order).where(*conditions)

        orders = list(session.exec(stmt).all())
        total = session.exec(count_stmt).one()
        return orders, total

    def create_order(self, session: Session, order: Order) -> Order:
        """
        Insert an Order without committing, but ensure id is populated.
        """
        session.add(order)
        session.flush()
        return order

    def update_order(self, session: Session, order: Order) -> Order:
        """
        Stage changes to an existing order.

        Only lifecycle columns (MUTABLE_ORDER_FIELDS) may change; items,
        addresses, totals and the order number are write-once.
        """
        state = inspect(order)
        if state.persistent:
            for attr in state.attrs:
                if attr.key in MUTABLE_ORDER_FIELDS:
                    continue
                if attr.history.has_changes():
                    raise AppError(f"Order field '{attr.key}' is write-once")

        session.add(order)
        session.flush()
        return order

    # ---- Order items ----

    def list_items_for_order(
        self,
        session: Session,
        order_id: uuid.UUID,
    ) -> list[OrderItem]:
        stmt = (
            select(OrderItem)
            .where(OrderItem.order_id == order_id)
            .order_by(OrderItem.position)
        )
        return list(session.exec(stmt).all())

    def create_items(
        self,
        session: Session,
        items: list[OrderItem],
    ) -> list[OrderItem]:
        session.add_all(items)
        session.flush()
        return items
