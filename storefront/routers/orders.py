# storefront/routers/orders.py
import uuid
from datetime import datetime

from fastapi import APIRouter, Depends, Query, Request, status
from sqlmodel import Session

from storefront.core.auth import CurrentUser, get_identity, require_admin, require_auth
from storefront.core.identity import Identity
from storefront.database import get_session
from storefront.schemas.common import ApiResponse
from storefront.schemas.order import (
    OrderCreate,
    OrderListRead,
    OrderRead,
    OrderRefund,
    OrderStatus,
    OrderStatusUpdate,
    PaymentMethod,
    PaymentStatus,
    PaymentStatusUpdate,
)
from storefront.services.order_service import OrderService

router = APIRouter(prefix="/orders", tags=["Orders"])


def get_order_service(request: Request) -> OrderService:
    """OrderService built by create_app with the app's settings."""
    return request.app.state.order_service


# -------- Customer endpoints --------


@router.post(
    "",
    response_model=ApiResponse[OrderRead],
    status_code=status.HTTP_201_CREATED,
)
def create_order(
    payload: OrderCreate,
    session: Session = Depends(get_session),
    service: OrderService = Depends(get_order_service),
    identity: Identity = Depends(get_identity),
):
    """
    Create an order from the caller's cart.

    Auth:
      - Bearer token, or `?session_id=` for guest checkout.

    The cart is deleted once the order is stored.
    """
    order = service.create_order(
        session,
        identity,
        shipping_address=payload.shipping_address,
        billing_address=payload.billing_address,
        payment_method=payload.payment_method,
        notes=payload.notes,
    )
    return ApiResponse(data=order)


@router.get("/me", response_model=ApiResponse[list[OrderRead]])
def list_my_orders(
    session: Session = Depends(get_session),
    service: OrderService = Depends(get_order_service),
    current_user: CurrentUser = Depends(require_auth),
):
    """
    List the authenticated user's orders, newest first.
    """
    return ApiResponse(data=service.get_orders_by_user(session, current_user.id))


@router.get("/number/{order_number}", response_model=ApiResponse[OrderRead])
def get_order_by_number(
    order_number: str,
    session: Session = Depends(get_session),
    service: OrderService = Depends(get_order_service),
    current_user: CurrentUser = Depends(require_auth),
):
    """
    Look up an order by its ORD-<year>-<seq> number (case-insensitive).
    """
    requester = None if current_user.is_admin else current_user.id
    return ApiResponse(data=service.get_order_by_number(session, order_number, requester))


@router.get("/{order_id}", response_model=ApiResponse[OrderRead])
def get_order(
    order_id: uuid.UUID,
    session: Session = Depends(get_session),
    service: OrderService = Depends(get_order_service),
    current_user: CurrentUser = Depends(require_auth),
):
    """
    Get a single order with items.

    Customers only see their own orders; admins see any.
    """
    requester = None if current_user.is_admin else current_user.id
    return ApiResponse(data=service.get_order_by_id(session, order_id, requester))


# -------- Admin endpoints --------


@router.get(
    "",
    response_model=ApiResponse[OrderListRead],
    dependencies=[Depends(require_admin)],
)
def list_all_orders(
    session: Session = Depends(get_session),
    service: OrderService = Depends(get_order_service),
    order_status: OrderStatus | None = Query(default=None, alias="status"),
    payment_status: PaymentStatus | None = None,
    payment_method: PaymentMethod | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
):
    """
    List all orders with optional filters (admin only).
    """
    result = service.get_all_orders(
        session,
        status=order_status,
        payment_status=payment_status,
        payment_method=payment_method,
        start_date=start_date,
        end_date=end_date,
        limit=limit,
        offset=offset,
    )
    return ApiResponse(data=result)


@router.patch(
    "/{order_id}/status",
    response_model=ApiResponse[OrderRead],
    dependencies=[Depends(require_admin)],
)
def update_order_status(
    order_id: uuid.UUID,
    payload: OrderStatusUpdate,
    session: Session = Depends(get_session),
    service: OrderService = Depends(get_order_service),
):
    """
    Update order status (admin only).

      pending -> confirmed -> paid -> processing -> shipped -> delivered

      cancelled, refunded, delivered -> (no change)
    """
    order = service.update_order_status(
        session,
        order_id,
        payload.status,
        tracking_number=payload.tracking_number,
        internal_notes=payload.internal_notes,
        cancelled_reason=payload.cancelled_reason,
    )
    return ApiResponse(data=order)


@router.post(
    "/{order_id}/refund",
    response_model=ApiResponse[OrderRead],
    dependencies=[Depends(require_admin)],
)
def refund_order(
    order_id: uuid.UUID,
    payload: OrderRefund,
    session: Session = Depends(get_session),
    service: OrderService = Depends(get_order_service),
):
    """
    Refund an order, fully or partially (admin only).
    """
    order = service.refund_order(
        session, order_id, amount=payload.amount, reason=payload.reason
    )
    return ApiResponse(data=order)


@router.patch(
    "/{order_id}/payment-status",
    response_model=ApiResponse[OrderRead],
    dependencies=[Depends(require_admin)],
)
def update_payment_status(
    order_id: uuid.UUID,
    payload: PaymentStatusUpdate,
    session: Session = Depends(get_session),
    service: OrderService = Depends(get_order_service),
):
    """
    Apply a payment status update (admin / payment webhook relay).
    """
    order = service.update_payment_status(session, order_id, payload.payment_status)
    return ApiResponse(data=order)
