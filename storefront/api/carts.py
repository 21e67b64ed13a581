from typing import Optional

from fastapi import APIRouter, Depends, Response
from sqlalchemy.orm import Session

from storefront.api.deps import get_carts, get_payment_gateway, optional_user
from storefront.application.catalog import CatalogService
from storefront.application.checkout_service import CheckoutService
from storefront.application.errors import CartNotFound
from storefront.application.schemas import CartAdd, CartCheckoutRequest, CartQuantity, CartRead, CheckoutResponse
from storefront.auth_local import CurrentUser
from storefront.domain.cart import CartSnapshot, CartStore
from storefront.domain.models import new_id
from storefront.infrastructure.db import get_db
from storefront.infrastructure.payment_gateway import PaymentGateway

router = APIRouter(prefix="/carts", tags=["carts"])

def _cart_read(cart_id: str, snapshot: CartSnapshot) -> CartRead:
    return CartRead(
        cart_id=cart_id,
        items=[
            {**item.to_dict(), "price": float(item.price)}
            for item in snapshot.items
        ],
        subtotal=float(snapshot.subtotal),
        shipping=float(snapshot.shipping),
        total=float(snapshot.total),
    )

def _existing_cart(cart_id: str, storage) -> CartStore:
    if storage.load(cart_id) is None:
        raise CartNotFound(cart_id)
    return CartStore(storage, cart_id)

@router.post("/", response_model=CartRead, status_code=201)
def create_cart(storage=Depends(get_carts)):
    cart_id = new_id()
    snapshot = CartSnapshot()
    storage.save(cart_id, snapshot.to_dict())
    return _cart_read(cart_id, snapshot)

@router.get("/{cart_id}", response_model=CartRead)
def get_cart(cart_id: str, storage=Depends(get_carts)):
    return _cart_read(cart_id, _existing_cart(cart_id, storage).snapshot())

@router.post("/{cart_id}/items", response_model=CartRead)
def add_item(cart_id: str, payload: CartAdd, storage=Depends(get_carts), db: Session = Depends(get_db)):
    """Resolve product/size/color against the catalog, then merge into the cart."""
    cart = _existing_cart(cart_id, storage)
    variant = CatalogService(db).resolve_variant(payload.product_id, payload.size, payload.color)
    snapshot = cart.add_item(variant.as_cart_item(), payload.quantity)
    return _cart_read(cart_id, snapshot)

@router.put("/{cart_id}/items/{variant_id}", response_model=CartRead)
def update_quantity(cart_id: str, variant_id: str, payload: CartQuantity, storage=Depends(get_carts)):
    snapshot = _existing_cart(cart_id, storage).update_quantity(variant_id, payload.quantity)
    return _cart_read(cart_id, snapshot)

@router.delete("/{cart_id}/items/{variant_id}", response_model=CartRead)
def remove_item(cart_id: str, variant_id: str, storage=Depends(get_carts)):
    snapshot = _existing_cart(cart_id, storage).remove_item(variant_id)
    return _cart_read(cart_id, snapshot)

@router.delete("/{cart_id}", status_code=204)
def clear_cart(cart_id: str, storage=Depends(get_carts)):
    CartStore(storage, cart_id).clear()
    return Response(status_code=204)

@router.post("/{cart_id}/checkout", response_model=CheckoutResponse, status_code=201)
def checkout_cart(
    cart_id: str,
    payload: Optional[CartCheckoutRequest] = None,
    storage=Depends(get_carts),
    db: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    user: Optional[CurrentUser] = Depends(optional_user),
):
    # The cart stays intact until the success page clears it
    snapshot = _existing_cart(cart_id, storage).snapshot()
    address = payload.shipping_address.model_dump() if payload and payload.shipping_address else None
    result = CheckoutService(db, gateway).start_checkout(snapshot, user=user, shipping_address=address)
    return CheckoutResponse(
        url=result.url,
        session_id=result.session_id,
        order_id=result.order_id,
        order_number=result.order_number,
    )
