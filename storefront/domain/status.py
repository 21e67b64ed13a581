"""Order lifecycle.

Every status change goes through ``TRANSITIONS``: the current status and the
event select the next status. Anything missing from the table is illegal.
"""

from enum import Enum


class OrderStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class OrderEvent(str, Enum):
    # Issued by payment reconciliation only
    PAYMENT_SUCCEEDED = "payment_succeeded"
    PAYMENT_FAILED = "payment_failed"
    # Issued by the service itself (failed session creation, stale sweep)
    ABANDON = "abandon"
    # Issued by the admin view
    MARK_PROCESSING = "mark_processing"
    SHIP = "ship"
    DELIVER = "deliver"
    ADMIN_CANCEL = "admin_cancel"


TRANSITIONS: dict[tuple[OrderStatus, OrderEvent], OrderStatus] = {
    (OrderStatus.PENDING, OrderEvent.PAYMENT_SUCCEEDED): OrderStatus.PAID,
    (OrderStatus.PENDING, OrderEvent.PAYMENT_FAILED): OrderStatus.CANCELLED,
    (OrderStatus.PENDING, OrderEvent.ABANDON): OrderStatus.CANCELLED,
    (OrderStatus.PAID, OrderEvent.MARK_PROCESSING): OrderStatus.PROCESSING,
    (OrderStatus.PAID, OrderEvent.SHIP): OrderStatus.SHIPPED,
    (OrderStatus.PROCESSING, OrderEvent.SHIP): OrderStatus.SHIPPED,
    (OrderStatus.SHIPPED, OrderEvent.DELIVER): OrderStatus.DELIVERED,
    (OrderStatus.PENDING, OrderEvent.ADMIN_CANCEL): OrderStatus.CANCELLED,
    (OrderStatus.PAID, OrderEvent.ADMIN_CANCEL): OrderStatus.CANCELLED,
    (OrderStatus.PROCESSING, OrderEvent.ADMIN_CANCEL): OrderStatus.CANCELLED,
}

# Timestamp column stamped when an order enters a status
TIMESTAMP_FIELDS: dict[OrderStatus, str] = {
    OrderStatus.PAID: "paid_at",
    OrderStatus.SHIPPED: "shipped_at",
    OrderStatus.DELIVERED: "delivered_at",
    OrderStatus.CANCELLED: "cancelled_at",
}

PAYMENT_EVENTS = frozenset({OrderEvent.PAYMENT_SUCCEEDED, OrderEvent.PAYMENT_FAILED})

# Admin-requested status -> event
ADMIN_EVENTS: dict[OrderStatus, OrderEvent] = {
    OrderStatus.PROCESSING: OrderEvent.MARK_PROCESSING,
    OrderStatus.SHIPPED: OrderEvent.SHIP,
    OrderStatus.DELIVERED: OrderEvent.DELIVER,
    OrderStatus.CANCELLED: OrderEvent.ADMIN_CANCEL,
}


def sources_for(event: OrderEvent) -> frozenset[OrderStatus]:
    """Statuses from which ``event`` is legal."""
    return frozenset(current for (current, ev) in TRANSITIONS if ev == event)


def target_for(event: OrderEvent) -> OrderStatus:
    """The single status ``event`` leads to."""
    targets = {nxt for (_, ev), nxt in TRANSITIONS.items() if ev == event}
    if len(targets) != 1:
        raise ValueError(f"event {event.value} has no unique target status")
    return targets.pop()


def next_status(current: OrderStatus, event: OrderEvent) -> OrderStatus | None:
    return TRANSITIONS.get((OrderStatus(current), event))


def is_at_or_beyond_paid(status: OrderStatus) -> bool:
    return OrderStatus(status) in (
        OrderStatus.PAID,
        OrderStatus.PROCESSING,
        OrderStatus.SHIPPED,
        OrderStatus.DELIVERED,
    )
