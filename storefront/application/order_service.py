from datetime import datetime, timedelta
from typing import Callable, List, Optional

from sqlalchemy.orm import Session

from storefront.application.errors import IllegalTransition, InvalidInput, OrderNotFound, PaymentSessionError
from storefront.core.logging_config import get_logger
from storefront.domain.models import Order, utcnow
from storefront.domain.status import ADMIN_EVENTS, OrderEvent, OrderStatus, next_status
from storefront.infrastructure.payment_gateway import PaymentGateway
from storefront.infrastructure.repository import OrderRepository

logger = get_logger(__name__)


class OrderService:
    def __init__(self, db: Session, clock: Callable[[], datetime] = utcnow):
        self.db = db
        self.clock = clock
        self.orders = OrderRepository(db)

    def list(self, status: Optional[str] = None, limit: int = 50, offset: int = 0) -> List[Order]:
        if status is not None:
            try:
                status = OrderStatus(status)
            except ValueError:
                raise InvalidInput(f"Unknown order status: {status}")
        return self.orders.list(status=status, limit=limit, offset=offset)

    def list_for_user(self, user_id: str, limit: int = 50, offset: int = 0) -> List[Order]:
        return self.orders.list(user_id=user_id, limit=limit, offset=offset)

    def get(self, order_id: str) -> Order:
        order = self.orders.get_with_items(order_id)
        if order is None:
            raise OrderNotFound(order_id)
        return order

    def find_by_session(self, session_id: str) -> Optional[Order]:
        return self.orders.get_by_session(session_id)

    def request_status(self, order_id: str, status: str, notes: Optional[str] = None) -> Order:
        """Admin-driven status change. Payment statuses are never reachable from here."""
        order = self.get(order_id)
        requested = OrderStatus(status)
        event = ADMIN_EVENTS.get(requested)
        if event is None or next_status(order.status, event) is None:
            raise IllegalTransition(order_id, order.status, requested.value)

        fields = {"notes": notes} if notes is not None else {}
        if not self.orders.transition(order_id, event, now=self.clock(), **fields):
            # Status moved between the read and the write
            self.db.rollback()
            current = self.orders.get(order_id, fresh=True)
            raise IllegalTransition(order_id, current.status, requested.value)
        self.db.commit()
        logger.info(
            f"Order {order.order_number} -> {requested.value}",
            extra={'extra_fields': {'order_id': order_id, 'previous': order.status}},
        )
        return self.get(order_id)

    def cancel_stale_pending(
        self,
        older_than: timedelta,
        gateway: PaymentGateway,
        now: Optional[datetime] = None,
    ) -> int:
        """Cancel pending orders whose payment session was never completed.

        Orders with a session are checked with the processor first. A
        ``complete`` session means the payment webhook has not landed yet, so
        the order is left for its redelivery. An ``open`` session is expired
        before the order is cancelled so it can no longer be paid.
        """
        now = now or self.clock()
        cancelled = 0
        for order_id, order_number, session_id in self.orders.stale_pending(now - older_than):
            if session_id and not self._close_session(gateway, order_number, session_id):
                continue
            if self.orders.transition(
                order_id,
                OrderEvent.ABANDON,
                now=now,
                notes=f"Cancelled after {older_than} without payment",
            ):
                self.db.commit()
                cancelled += 1
            else:
                self.db.rollback()
        if cancelled:
            logger.info(f"Cancelled {cancelled} stale pending orders")
        return cancelled

    def _close_session(self, gateway: PaymentGateway, order_number: str, session_id: str) -> bool:
        try:
            status = gateway.session_status(session_id)
            if status == "open":
                gateway.expire_session(session_id)
        except PaymentSessionError as e:
            logger.warning(f"Leaving {order_number} pending: {e}")
            return False
        if status == "complete":
            logger.warning(
                f"Leaving {order_number} pending: session {session_id} is complete, payment webhook not yet applied"
            )
            return False
        return True
