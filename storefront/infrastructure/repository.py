"""Order persistence.

``OrderRepository.transition`` is the only way an order's status changes. It
is a single conditional UPDATE (``WHERE id = :id AND status IN (...)``), so
two racing deliveries of one event cannot both win; the loser sees
``False`` and nothing is written.
"""

from datetime import datetime
from typing import Iterable, List, Optional

from sqlalchemy import Row, exists, select, update
from sqlalchemy.orm import Session, selectinload

from storefront.domain.models import Order, OrderItem, utcnow
from storefront.domain.status import OrderEvent, OrderStatus, TIMESTAMP_FIELDS, sources_for, target_for


class OrderRepository:
    def __init__(self, db: Session):
        self.db = db

    def get(self, order_id: str, fresh: bool = False) -> Optional[Order]:
        # fresh bypasses the identity map after a conditional UPDATE
        return self.db.get(Order, order_id, populate_existing=fresh)

    def get_with_items(self, order_id: str) -> Optional[Order]:
        stmt = (
            select(Order)
            .options(selectinload(Order.items))
            .where(Order.id == order_id)
            .execution_options(populate_existing=True)
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def get_by_number(self, order_number: str) -> Optional[Order]:
        stmt = select(Order).where(Order.order_number == order_number).execution_options(populate_existing=True)
        return self.db.execute(stmt).scalar_one_or_none()

    def get_by_session(self, session_id: str) -> Optional[Order]:
        stmt = select(Order).where(Order.stripe_session_id == session_id).execution_options(populate_existing=True)
        return self.db.execute(stmt).scalars().first()

    def locate(
        self,
        order_id: Optional[str] = None,
        order_number: Optional[str] = None,
        session_id: Optional[str] = None,
    ) -> Optional[Order]:
        """Find an order by id, then number, then payment session."""
        if order_id:
            order = self.get(order_id, fresh=True)
            if order is not None:
                return order
        if order_number:
            order = self.get_by_number(order_number)
            if order is not None:
                return order
        if session_id:
            return self.get_by_session(session_id)
        return None

    def list(
        self,
        status: Optional[OrderStatus] = None,
        user_id: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[Order]:
        stmt = select(Order).options(selectinload(Order.items)).order_by(Order.created_at.desc())
        if status is not None:
            stmt = stmt.where(Order.status == OrderStatus(status).value)
        if user_id is not None:
            stmt = stmt.where(Order.user_id == user_id)
        return list(self.db.execute(stmt.limit(limit).offset(offset)).scalars())

    def add(self, order: Order) -> Order:
        self.db.add(order)
        self.db.flush()
        return order

    def transition(
        self,
        order_id: str,
        event: OrderEvent,
        now: Optional[datetime] = None,
        **fields,
    ) -> bool:
        """Apply ``event`` if the order is still in one of its source statuses.

        Extra ``fields`` are written in the same statement. Returns whether
        the row changed. Does not commit.
        """
        now = now or utcnow()
        target = target_for(event)
        values = dict(fields)
        values["status"] = target.value
        values["updated_at"] = now
        stamp = TIMESTAMP_FIELDS.get(target)
        if stamp:
            values[stamp] = now
        stmt = (
            update(Order)
            .where(Order.id == order_id)
            .where(Order.status.in_([s.value for s in sources_for(event)]))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return self.db.execute(stmt).rowcount == 1

    def set_session(self, order_id: str, session_id: str) -> bool:
        """Record the payment session on an order that is still pending."""
        stmt = (
            update(Order)
            .where(Order.id == order_id, Order.status == OrderStatus.PENDING.value)
            .values(stripe_session_id=session_id, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        return self.db.execute(stmt).rowcount == 1

    def has_items(self, order_id: str) -> bool:
        return bool(self.db.execute(select(exists().where(OrderItem.order_id == order_id))).scalar())

    def add_items(self, order_id: str, items: Iterable[OrderItem]) -> int:
        count = 0
        for item in items:
            item.order_id = order_id
            self.db.add(item)
            count += 1
        self.db.flush()
        return count

    def stale_pending(self, cutoff: datetime) -> List[Row]:
        """``(id, order_number, stripe_session_id)`` of pending orders created before ``cutoff``."""
        stmt = select(Order.id, Order.order_number, Order.stripe_session_id).where(
            Order.status == OrderStatus.PENDING.value,
            Order.created_at < cutoff,
        )
        return list(self.db.execute(stmt).all())
