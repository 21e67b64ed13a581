"""Payment webhook reconciliation.

Turns processor events into order state changes. Deliveries are
at-least-once and may run concurrently, so every handler is written to be
replayed: status changes go through ``OrderRepository.transition`` and a
delivery that loses the race reads the order back and reports ``duplicate``.

Database errors are not caught here. They reach the endpoint as a 500 and
the processor delivers the event again.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Iterable, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from storefront.application.errors import ReconciliationSkipped
from storefront.application.metadata import MetadataItem, ShopOrderMetadata, parse_metadata
from storefront.core.logging_config import get_logger
from storefront.core_settings import Settings, get_settings
from storefront.domain.models import Order, OrderItem, PaymentEvent, new_id, utcnow
from storefront.domain.pricing import compute_totals, line_total, to_money
from storefront.domain.status import OrderEvent, OrderStatus, is_at_or_beyond_paid
from storefront.infrastructure.repository import OrderRepository

logger = get_logger(__name__)

# Processor event type -> domain event. checkout.session.completed is
# classified by its payment_status instead.
EVENT_TYPES = {
    "checkout.session.async_payment_succeeded": OrderEvent.PAYMENT_SUCCEEDED,
    "checkout.session.async_payment_failed": OrderEvent.PAYMENT_FAILED,
    "checkout.session.expired": OrderEvent.PAYMENT_FAILED,
}
SETTLED_PAYMENT_STATUSES = ("paid", "no_payment_required")
# Declined attempts inside an open session; the customer can retry on the same page
RETRYABLE_FAILURES = ("payment_intent.payment_failed",)


class Outcome(str, Enum):
    APPLIED = "applied"
    CREATED = "created"
    DUPLICATE = "duplicate"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class ReconciliationResult:
    outcome: Outcome
    order_id: Optional[str] = None
    order_number: Optional[str] = None
    reason: Optional[str] = None


@dataclass(frozen=True)
class PaymentFacts:
    """What the processor object says about the payment, independent of our metadata."""

    event_type: str
    session_id: Optional[str] = None
    payment_intent_id: Optional[str] = None
    customer_email: Optional[str] = None
    shipping_address: Optional[dict] = None
    tax: Decimal = Decimal("0.00")
    amount: Optional[Decimal] = None
    currency: Optional[str] = None

    @classmethod
    def from_object(cls, event_type: str, obj: dict) -> "PaymentFacts":
        if obj.get("object") == "payment_intent":
            session_id = None
            intent_id = obj.get("id")
            amount = obj.get("amount")
        else:
            session_id = obj.get("id")
            intent_id = obj.get("payment_intent")
            if isinstance(intent_id, dict):
                intent_id = intent_id.get("id")
            amount = obj.get("amount_total")
        email = (
            (obj.get("customer_details") or {}).get("email")
            or obj.get("customer_email")
            or obj.get("receipt_email")
        )
        tax_cents = (obj.get("total_details") or {}).get("amount_tax") or 0
        return cls(
            event_type=event_type,
            session_id=session_id,
            payment_intent_id=intent_id,
            customer_email=email,
            shipping_address=shipping_address_from(obj),
            tax=from_cents(tax_cents),
            amount=from_cents(amount) if amount is not None else None,
            currency=obj.get("currency"),
        )


def from_cents(cents: int) -> Decimal:
    return to_money(Decimal(int(cents)) / 100)


def shipping_address_from(obj: dict) -> Optional[dict]:
    """Map the processor's shipping details onto the order's address snapshot."""
    details = (
        (obj.get("collected_information") or {}).get("shipping_details")
        or obj.get("shipping_details")
        or obj.get("shipping")
    )
    if not details:
        return None
    address = details.get("address") or {}
    return {
        "name": details.get("name"),
        "street": address.get("line1"),
        "apartment": address.get("line2"),
        "city": address.get("city"),
        "province": address.get("state"),
        "postal_code": address.get("postal_code"),
        "country": address.get("country"),
    }


def classify(event_type: Optional[str], obj: dict) -> OrderEvent:
    if event_type == "checkout.session.completed":
        payment_status = obj.get("payment_status")
        if payment_status in SETTLED_PAYMENT_STATUSES:
            return OrderEvent.PAYMENT_SUCCEEDED
        # Delayed payment methods report through async_payment_* later
        raise ReconciliationSkipped(f"checkout session completed with payment_status {payment_status!r}")
    if event_type in RETRYABLE_FAILURES:
        raise ReconciliationSkipped("payment attempt declined; checkout session still open")
    domain_event = EVENT_TYPES.get(event_type)
    if domain_event is None:
        raise ReconciliationSkipped(f"unhandled event type {event_type!r}")
    return domain_event


def materialize_items(items: Iterable[MetadataItem], now: datetime) -> List[OrderItem]:
    return [
        OrderItem(
            line_number=line_number,
            product_id=item.product_id,
            variant_id=item.variant_id,
            product_name=item.name,
            product_image=item.image,
            size=item.size,
            color=item.color,
            quantity=item.quantity,
            unit_price=to_money(item.price),
            total_price=line_total(item.price, item.quantity),
            created_at=now,
        )
        for line_number, item in enumerate(items, start=1)
    ]


class ReconciliationService:
    def __init__(
        self,
        db: Session,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.settings = settings or get_settings()
        self.clock = clock
        self.orders = OrderRepository(db)

    def handle_event(self, event: dict[str, Any]) -> ReconciliationResult:
        """Apply one verified processor event and record it in the ledger."""
        event_id = event.get("id")
        event_type = event.get("type") or ""
        obj = (event.get("data") or {}).get("object") or {}
        facts = PaymentFacts.from_object(event_type, obj)

        try:
            domain_event = classify(event_type, obj)
            metadata = parse_metadata(obj.get("metadata"))
            if domain_event == OrderEvent.PAYMENT_SUCCEEDED:
                result = self._payment_succeeded(metadata, facts)
            else:
                result = self._payment_failed(metadata, facts)
        except ReconciliationSkipped as e:
            self.db.rollback()
            result = ReconciliationResult(Outcome.SKIPPED, e.order_id, e.order_number, e.reason)

        logger.info(
            f"Webhook {event_type} -> {result.outcome.value}",
            extra={'extra_fields': {
                'event_id': event_id,
                'order_id': result.order_id,
                'order_number': result.order_number,
                'reason': result.reason,
            }},
        )
        if event_id:
            self._record(event_id, result, facts)
        return result

    def _payment_succeeded(self, metadata: ShopOrderMetadata, facts: PaymentFacts) -> ReconciliationResult:
        order = self.orders.locate(metadata.order_id, metadata.order_number, facts.session_id)
        if order is None:
            return self._create_from_metadata(metadata, facts)

        now = self.clock()
        fields: dict[str, Any] = {}
        if facts.session_id:
            fields["stripe_session_id"] = facts.session_id
        if facts.payment_intent_id:
            fields["stripe_payment_intent_id"] = facts.payment_intent_id
        if facts.shipping_address:
            fields["shipping_address"] = facts.shipping_address
        if facts.customer_email and not order.customer_email:
            fields["customer_email"] = facts.customer_email

        if self.orders.transition(order.id, OrderEvent.PAYMENT_SUCCEEDED, now=now, **fields):
            # Only the delivery that won the transition writes items
            if metadata.items and not self.orders.has_items(order.id):
                self.orders.add_items(order.id, materialize_items(metadata.items, now))
            self.db.commit()
            logger.info(f"Order {order.order_number} paid")
            return ReconciliationResult(Outcome.APPLIED, order.id, order.order_number)

        self.db.rollback()
        current = self.orders.get(order.id, fresh=True)
        status = OrderStatus(current.status)
        if is_at_or_beyond_paid(status):
            return ReconciliationResult(Outcome.DUPLICATE, order.id, order.order_number)
        if status == OrderStatus.CANCELLED:
            logger.error(
                f"Payment captured for cancelled order {order.order_number}; needs manual follow-up",
                extra={'extra_fields': {
                    'order_id': order.id,
                    'session_id': facts.session_id,
                    'payment_intent_id': facts.payment_intent_id,
                    'amount': str(facts.amount) if facts.amount is not None else None,
                }},
            )
            return ReconciliationResult(
                Outcome.SKIPPED, order.id, order.order_number, "payment captured for a cancelled order"
            )
        return ReconciliationResult(Outcome.SKIPPED, order.id, order.order_number, f"order is {status.value}")

    def _create_from_metadata(self, metadata: ShopOrderMetadata, facts: PaymentFacts) -> ReconciliationResult:
        """No order row exists (initiation could not save one), so rebuild it from the bundle."""
        if not metadata.items:
            raise ReconciliationSkipped(
                "no matching order and metadata carries no items",
                order_id=metadata.order_id,
                order_number=metadata.order_number,
            )
        now = self.clock()
        totals = compute_totals((item.price, item.quantity) for item in metadata.items)
        order = Order(
            id=metadata.order_id or new_id(),
            order_number=metadata.order_number,
            user_id=metadata.user_id,
            status=OrderStatus.PAID.value,
            subtotal=totals.subtotal,
            shipping=totals.shipping,
            tax=facts.tax,
            total=to_money(totals.total + facts.tax),
            currency=facts.currency or self.settings.CURRENCY,
            stripe_session_id=facts.session_id,
            stripe_payment_intent_id=facts.payment_intent_id,
            shipping_address=facts.shipping_address,
            customer_email=facts.customer_email,
            notes="Recreated from payment metadata",
            paid_at=now,
            created_at=now,
            updated_at=now,
        )
        order.items = materialize_items(metadata.items, now)
        try:
            self.db.add(order)
            self.db.commit()
        except IntegrityError:
            # A concurrent delivery inserted the same order number first
            self.db.rollback()
            return ReconciliationResult(Outcome.DUPLICATE, metadata.order_id, metadata.order_number)
        logger.warning(f"Order {order.order_number} created from payment metadata")
        return ReconciliationResult(Outcome.CREATED, order.id, order.order_number)

    def _payment_failed(self, metadata: ShopOrderMetadata, facts: PaymentFacts) -> ReconciliationResult:
        order = self.orders.locate(metadata.order_id, metadata.order_number, facts.session_id)
        if order is None:
            raise ReconciliationSkipped(
                "no order to cancel",
                order_id=metadata.order_id,
                order_number=metadata.order_number,
            )
        if self.orders.transition(
            order.id,
            OrderEvent.PAYMENT_FAILED,
            now=self.clock(),
            notes=f"Payment not completed ({facts.event_type})",
        ):
            self.db.commit()
            logger.info(f"Order {order.order_number} cancelled by {facts.event_type}")
            return ReconciliationResult(Outcome.APPLIED, order.id, order.order_number)

        self.db.rollback()
        current = self.orders.get(order.id, fresh=True)
        if current.status == OrderStatus.CANCELLED.value:
            return ReconciliationResult(Outcome.DUPLICATE, order.id, order.order_number)
        # Never move a paid order backwards
        return ReconciliationResult(
            Outcome.SKIPPED, order.id, order.order_number, f"order is already {current.status}"
        )

    def _record(self, event_id: str, result: ReconciliationResult, facts: PaymentFacts) -> None:
        entry = PaymentEvent(
            event_id=event_id,
            event_type=facts.event_type,
            order_id=result.order_id,
            order_number=result.order_number,
            outcome=result.outcome.value,
            reason=result.reason[:255] if result.reason else None,
            amount=facts.amount,
            currency=facts.currency,
            reference=facts.session_id or facts.payment_intent_id,
            received_at=self.clock(),
        )
        try:
            self.db.add(entry)
            self.db.commit()
        except IntegrityError:
            # Replayed delivery; the first one is already on file
            self.db.rollback()
