# storefront/routers/cart.py
from fastapi import APIRouter, Depends, Path, Request
from sqlmodel import Session

from storefront.core.auth import CurrentUser, get_identity, require_admin, require_auth
from storefront.core.identity import Identity
from storefront.database import get_session
from storefront.schemas.cart import (
    CartItemCreate,
    CartItemUpdate,
    CartMerge,
    CartRead,
    CartResponse,
    CartSweepResult,
)
from storefront.schemas.common import ApiResponse, MessageRead
from storefront.services.cart_service import CartService

router = APIRouter(prefix="/cart", tags=["Cart"])


def get_cart_service(request: Request) -> CartService:
    """CartService built by create_app with the app's settings."""
    return request.app.state.cart_service


@router.get("", response_model=ApiResponse[CartResponse])
def get_cart(
    session: Session = Depends(get_session),
    service: CartService = Depends(get_cart_service),
    identity: Identity = Depends(get_identity),
):
    """
    Get the caller's cart.

    Auth:
      - Bearer token, or `?session_id=` for guests.

    Returns `cart: null` when the caller has no live cart.
    """
    cart = service.get_cart(session, identity)
    if cart is None:
        return ApiResponse(data=CartResponse(cart=None, message="Cart is empty"))
    return ApiResponse(data=CartResponse(cart=cart))


@router.post("/items", response_model=ApiResponse[CartRead])
def add_to_cart(
    payload: CartItemCreate,
    session: Session = Depends(get_session),
    service: CartService = Depends(get_cart_service),
    identity: Identity = Depends(get_identity),
):
    """
    Add a product (or variant) to the cart.

    Returns the updated cart.
    """
    cart = service.add_to_cart(
        session,
        identity,
        product_id=payload.product_id,
        variant_id=payload.variant_id,
        quantity=payload.quantity,
    )
    return ApiResponse(data=cart)


@router.put("/items", response_model=ApiResponse[CartRead])
def update_cart_item(
    payload: CartItemUpdate,
    session: Session = Depends(get_session),
    service: CartService = Depends(get_cart_service),
    identity: Identity = Depends(get_identity),
):
    """
    Replace the quantity of the item at `item_index`.
    """
    cart = service.update_cart_item(
        session,
        identity,
        item_index=payload.item_index,
        quantity=payload.quantity,
    )
    return ApiResponse(data=cart)


@router.delete("/items/{item_index}", response_model=ApiResponse[CartRead])
def remove_cart_item(
    item_index: int = Path(ge=0),
    session: Session = Depends(get_session),
    service: CartService = Depends(get_cart_service),
    identity: Identity = Depends(get_identity),
):
    """
    Remove the item at `item_index`.
    """
    return ApiResponse(data=service.remove_cart_item(session, identity, item_index))


@router.delete("/expired", response_model=ApiResponse[CartSweepResult])
def cleanup_expired_carts(
    session: Session = Depends(get_session),
    service: CartService = Depends(get_cart_service),
    _admin: CurrentUser = Depends(require_admin),
):
    """
    Delete every expired cart (admin only).
    """
    deleted = service.cleanup_expired_carts(session)
    return ApiResponse(data=CartSweepResult(deleted=deleted))


@router.delete("", response_model=ApiResponse[MessageRead])
def clear_cart(
    session: Session = Depends(get_session),
    service: CartService = Depends(get_cart_service),
    identity: Identity = Depends(get_identity),
):
    """
    Remove all items; the cart itself is kept.
    """
    service.clear_cart(session, identity)
    return ApiResponse(data=MessageRead(message="Cart cleared"))


@router.post("/recalculate", response_model=ApiResponse[CartRead])
def recalculate_cart(
    session: Session = Depends(get_session),
    service: CartService = Depends(get_cart_service),
    identity: Identity = Depends(get_identity),
):
    """
    Sync the cart with current prices and stock.

    Items that are no longer purchasable are dropped; quantities above
    available stock are reduced.
    """
    return ApiResponse(data=service.recalculate_cart(session, identity))


@router.post("/merge", response_model=ApiResponse[CartRead])
def merge_carts(
    payload: CartMerge,
    session: Session = Depends(get_session),
    service: CartService = Depends(get_cart_service),
    current_user: CurrentUser = Depends(require_auth),
):
    """
    Merge a guest cart into the authenticated user's cart.

    Called by the client right after login with its guest session id.
    """
    cart = service.merge_carts(session, payload.session_id, current_user.id)
    return ApiResponse(data=cart)
