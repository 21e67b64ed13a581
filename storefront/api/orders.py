from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from storefront.api.deps import require_admin, require_user
from storefront.application.order_service import OrderService
from storefront.application.schemas import OrderRead, OrderStatusUpdate
from storefront.auth_local import CurrentUser
from storefront.infrastructure.db import get_db

router = APIRouter(prefix="/orders", tags=["orders"])

@router.get("/", response_model=list[OrderRead], dependencies=[Depends(require_admin)])
def list_orders(
    status: Optional[str] = None,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
):
    """List orders, newest first."""
    return OrderService(db).list(status=status, limit=limit, offset=offset)

@router.get("/mine", response_model=list[OrderRead])
def my_orders(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    user: CurrentUser = Depends(require_user),
    db: Session = Depends(get_db),
):
    return OrderService(db).list_for_user(user.id, limit=limit, offset=offset)

@router.get("/{order_id}", response_model=OrderRead, dependencies=[Depends(require_admin)])
def get_order(order_id: str, db: Session = Depends(get_db)):
    return OrderService(db).get(order_id)

@router.patch("/{order_id}/status", response_model=OrderRead, dependencies=[Depends(require_admin)])
def update_status(order_id: str, payload: OrderStatusUpdate, db: Session = Depends(get_db)):
    """Fulfilment updates. Payment statuses are set by the webhook only."""
    return OrderService(db).request_status(order_id, payload.status, payload.notes)
