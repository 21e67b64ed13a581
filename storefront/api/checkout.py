from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from storefront.api.deps import get_carts, get_payment_gateway, optional_user
from storefront.application.checkout_service import CheckoutService
from storefront.application.order_service import OrderService
from storefront.application.schemas import CheckoutRequest, CheckoutResponse, CheckoutStatus
from storefront.auth_local import CurrentUser
from storefront.domain.cart import CartItem, CartSnapshot, CartStore
from storefront.infrastructure.db import get_db
from storefront.infrastructure.payment_gateway import PaymentGateway

router = APIRouter(prefix="/checkout", tags=["checkout"])

@router.post("/session", response_model=CheckoutResponse, status_code=201)
def create_session(
    payload: CheckoutRequest,
    db: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    user: Optional[CurrentUser] = Depends(optional_user),
):
    """Start checkout from a client-held cart snapshot."""
    snapshot = CartSnapshot(
        items=tuple(CartItem(**line.model_dump()) for line in payload.items),
        subtotal=payload.subtotal,
        shipping=payload.shipping,
        total=payload.total,
    )
    address = payload.shipping_address.model_dump() if payload.shipping_address else None
    result = CheckoutService(db, gateway).start_checkout(snapshot, user=user, shipping_address=address)
    return CheckoutResponse(
        url=result.url,
        session_id=result.session_id,
        order_id=result.order_id,
        order_number=result.order_number,
    )

@router.get("/success", response_model=CheckoutStatus)
def checkout_success(
    session_id: str,
    cart_id: Optional[str] = None,
    storage=Depends(get_carts),
    db: Session = Depends(get_db),
):
    """Landing page after payment. The webhook, not this page, marks the order paid."""
    cart_cleared = False
    if cart_id:
        CartStore(storage, cart_id).clear()
        cart_cleared = True
    order = OrderService(db).find_by_session(session_id)
    return CheckoutStatus(
        session_id=session_id,
        cart_cleared=cart_cleared,
        order_id=order.id if order else None,
        order_number=order.order_number if order else None,
        status=order.status if order else "processing_payment",
    )
