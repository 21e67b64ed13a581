from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from storefront.application.errors import AuthenticationRequired, InvalidInput, PaymentSessionError, missing_fields_error
from storefront.application.metadata import MetadataItem, build_metadata, encode_items
from storefront.application.order_numbers import next_order_number, offline_order_number
from storefront.auth_local import CurrentUser
from storefront.core.logging_config import get_logger
from storefront.core_settings import Settings, get_settings
from storefront.domain.cart import CartSnapshot
from storefront.domain.models import Order, utcnow
from storefront.domain.pricing import compute_totals, to_money
from storefront.domain.status import OrderEvent, OrderStatus
from storefront.infrastructure.payment_gateway import PaymentGateway, build_line_items
from storefront.infrastructure.repository import OrderRepository

logger = get_logger(__name__)

ORDER_NUMBER_ATTEMPTS = 3
REQUIRED_ADDRESS_FIELDS = ("name", "street", "city", "province", "postal_code", "country")
ADDRESS_FIELDS = REQUIRED_ADDRESS_FIELDS + ("apartment",)

@dataclass(frozen=True)
class CheckoutResult:
    url: str
    session_id: str
    order_id: Optional[str]
    order_number: str

class CheckoutService:
    """Turns a cart snapshot into a pending order and a hosted payment session."""

    def __init__(
        self,
        db: Session,
        gateway: PaymentGateway,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.gateway = gateway
        self.settings = settings or get_settings()
        self.clock = clock
        self.orders = OrderRepository(db)

    def start_checkout(
        self,
        snapshot: CartSnapshot,
        user: Optional[CurrentUser] = None,
        shipping_address: Optional[dict] = None,
    ) -> CheckoutResult:
        if user is None and not self.settings.ALLOW_GUEST_CHECKOUT:
            raise AuthenticationRequired("Sign in to check out")
        address = self._check_address(shipping_address, user)
        self._validate(snapshot)

        items = [
            MetadataItem(
                product_id=item.product_id,
                variant_id=item.variant_id,
                name=item.name,
                quantity=item.quantity,
                price=item.price,
                size=item.size,
                color=item.color,
                image=item.image if item.image.startswith("http") else None,
            )
            for item in snapshot.items
        ]
        # Size check before anything is written
        encode_items(items)

        now = self.clock()
        order = self._persist_pending(snapshot, user, address, now)
        order_id = order.id if order is not None else None
        order_number = order.order_number if order is not None else offline_order_number(now)
        user_id = user.id if user else None

        try:
            session = self.gateway.create_checkout_session(
                line_items=build_line_items(snapshot.items, snapshot.shipping, self.settings.CURRENCY),
                metadata=build_metadata(order_number, items, order_id=order_id, user_id=user_id),
                intent_metadata=build_metadata(
                    order_number, items, order_id=order_id, user_id=user_id, include_items=False
                ),
                idempotency_key=f"checkout_{order_number}",
                customer_email=user.email if user else None,
            )
        except PaymentSessionError as e:
            if order is not None:
                self._abandon(order, str(e))
            raise

        if order is not None:
            self._record_session(order, session.id)

        logger.info(
            "Checkout session created",
            extra={'extra_fields': {
                'order_id': order_id,
                'order_number': order_number,
                'session_id': session.id,
                'total': str(snapshot.total),
                'guest': user is None,
            }},
        )
        return CheckoutResult(url=session.url, session_id=session.id, order_id=order_id, order_number=order_number)

    def _check_address(self, address: Optional[dict], user: Optional[CurrentUser]) -> Optional[dict]:
        policy = self.settings.ADDRESS_REQUIRED_AT_CHECKOUT
        required = policy == "always" or (policy == "guests" and user is None)
        if not address and not required:
            return None
        address = address or {}
        missing = [field for field in REQUIRED_ADDRESS_FIELDS if not address.get(field)]
        if missing:
            raise missing_fields_error("shipping address", missing)
        return {field: address.get(field) or None for field in ADDRESS_FIELDS}

    def _validate(self, snapshot: CartSnapshot) -> None:
        if snapshot.is_empty:
            raise InvalidInput("Cart is empty")
        for item in snapshot.items:
            if item.quantity < 1:
                raise InvalidInput(f"Quantity for {item.name} must be at least 1")
            if item.price < 0:
                raise InvalidInput(f"Price for {item.name} cannot be negative")
            # Line items are charged per unit in cents
            if to_money(item.price) != item.price:
                raise InvalidInput(f"Price for {item.name} must be a whole number of cents")
        expected = compute_totals((item.price, item.quantity) for item in snapshot.items)
        submitted = (to_money(snapshot.subtotal), to_money(snapshot.shipping), to_money(snapshot.total))
        if submitted != (expected.subtotal, expected.shipping, expected.total):
            raise InvalidInput(
                f"Cart totals do not match its items (expected subtotal {expected.subtotal}, "
                f"shipping {expected.shipping}, total {expected.total})"
            )

    def _persist_pending(
        self,
        snapshot: CartSnapshot,
        user: Optional[CurrentUser],
        address: Optional[dict],
        now: datetime,
    ) -> Optional[Order]:
        """Insert the pending order. ``None`` means checkout continues on metadata alone."""
        for attempt in range(1, ORDER_NUMBER_ATTEMPTS + 1):
            try:
                order = Order(
                    order_number=next_order_number(self.db, now),
                    user_id=user.id if user else None,
                    status=OrderStatus.PENDING.value,
                    subtotal=to_money(snapshot.subtotal),
                    shipping=to_money(snapshot.shipping),
                    tax=to_money(0),
                    total=to_money(snapshot.total),
                    currency=self.settings.CURRENCY,
                    shipping_address=address,
                    customer_email=user.email if user else None,
                    created_at=now,
                    updated_at=now,
                )
                self.orders.add(order)
                self.db.commit()
                return order
            except IntegrityError:
                self.db.rollback()
                logger.warning(f"Order number collision, retrying (attempt {attempt})")
            except SQLAlchemyError:
                self.db.rollback()
                logger.error("Pending order could not be saved; payment metadata will carry the order", exc_info=True)
                return None
        logger.error("Could not reserve an order number; payment metadata will carry the order")
        return None

    def _abandon(self, order: Order, reason: str) -> None:
        try:
            self.orders.transition(
                order.id,
                OrderEvent.ABANDON,
                now=self.clock(),
                notes=f"Payment session could not be created: {reason}",
            )
            self.db.commit()
            logger.info(f"Order {order.order_number} cancelled after payment session failure")
        except SQLAlchemyError:
            self.db.rollback()
            logger.error(f"Order {order.order_number} left pending for the stale-order sweep", exc_info=True)

    def _record_session(self, order: Order, session_id: str) -> None:
        try:
            self.orders.set_session(order.id, session_id)
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            logger.warning(f"Session id not recorded on {order.order_number}; the webhook carries it", exc_info=True)
