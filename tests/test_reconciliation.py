import logging
from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal

from sqlalchemy import func, select

from conftest import metadata_for, session_event
from storefront.application.checkout_service import CheckoutService
from storefront.application.reconciliation import Outcome, ReconciliationService, shipping_address_from
from storefront.domain.cart import CartItem, CartSnapshot
from storefront.domain.models import Order, OrderItem, PaymentEvent
from storefront.domain.pricing import compute_totals

ITEMS = [
    {"product_id": "prod-tee", "variant_id": "prod-tee:M:Black", "name": "Classic Tee",
     "quantity": 2, "price": "29.99", "size": "M", "color": "Black"},
    {"product_id": "prod-cap", "variant_id": "prod-cap:One Size:Navy", "name": "Logo Cap",
     "quantity": 1, "price": "24.99", "size": "One Size", "color": "Navy"},
]


def start_checkout(db, gateway):
    items = tuple(
        CartItem(i["product_id"], i["variant_id"], i["name"], Decimal(i["price"]), i["quantity"], i["color"], i["size"])
        for i in ITEMS
    )
    totals = compute_totals((i.price, i.quantity) for i in items)
    snapshot = CartSnapshot(items=items, subtotal=totals.subtotal, shipping=totals.shipping, total=totals.total)
    result = CheckoutService(db, gateway).start_checkout(snapshot)
    return result, gateway.sessions[-1]


def load(db, order_id):
    return db.get(Order, order_id, populate_existing=True)


def item_count(db):
    return db.execute(select(func.count(OrderItem.id))).scalar_one()


def test_completed_session_marks_order_paid(db, gateway):
    result, session = start_checkout(db, gateway)
    event = session_event(session["metadata"], session_id=session["id"])

    outcome = ReconciliationService(db).handle_event(event)

    assert outcome.outcome == Outcome.APPLIED
    assert outcome.order_number == result.order_number
    order = load(db, result.order_id)
    assert order.status == "paid"
    assert order.paid_at is not None
    assert order.stripe_payment_intent_id == "pi_test_1"
    assert order.customer_email == "buyer@example.com"
    assert order.shipping_address["street"] == "1 Main St"
    assert order.shipping_address["province"] == "ON"
    assert order.total == Decimal("84.97")
    lines = db.execute(select(OrderItem).where(OrderItem.order_id == order.id).order_by(OrderItem.line_number)).scalars().all()
    assert [(l.line_number, l.product_name, l.quantity, l.total_price) for l in lines] == [
        (1, "Classic Tee", 2, Decimal("59.98")),
        (2, "Logo Cap", 1, Decimal("24.99")),
    ]


def test_replays_are_noops(db, gateway):
    result, session = start_checkout(db, gateway)
    event = session_event(session["metadata"], session_id=session["id"])
    service = ReconciliationService(db)

    service.handle_event(event)
    paid_at = load(db, result.order_id).paid_at
    outcomes = [service.handle_event(event).outcome for _ in range(3)]

    assert outcomes == [Outcome.DUPLICATE] * 3
    assert load(db, result.order_id).paid_at == paid_at
    assert item_count(db) == 2
    assert db.execute(select(func.count(PaymentEvent.id))).scalar_one() == 1


def test_concurrent_deliveries_apply_once(db, gateway, session_factory):
    result, session = start_checkout(db, gateway)
    event = session_event(session["metadata"], session_id=session["id"])

    def deliver(_):
        worker = session_factory()
        try:
            return ReconciliationService(worker).handle_event(event).outcome
        finally:
            worker.close()

    with ThreadPoolExecutor(max_workers=6) as pool:
        outcomes = list(pool.map(deliver, range(6)))

    assert outcomes.count(Outcome.APPLIED) == 1
    assert outcomes.count(Outcome.DUPLICATE) == 5
    order = load(db, result.order_id)
    assert order.status == "paid"
    assert order.paid_at is not None
    assert item_count(db) == 2
    assert db.execute(select(func.count(PaymentEvent.id))).scalar_one() == 1


def test_async_success_after_unpaid_completion(db, gateway):
    result, session = start_checkout(db, gateway)
    service = ReconciliationService(db)

    unpaid = session_event(session["metadata"], session_id=session["id"], payment_status="unpaid")
    assert service.handle_event(unpaid).outcome == Outcome.SKIPPED
    assert load(db, result.order_id).status == "pending"

    settled = session_event(
        session["metadata"], session_id=session["id"], event_type="checkout.session.async_payment_succeeded"
    )
    assert service.handle_event(settled).outcome == Outcome.APPLIED
    assert load(db, result.order_id).status == "paid"


def test_failure_after_success_never_regresses(db, gateway):
    result, session = start_checkout(db, gateway)
    service = ReconciliationService(db)
    service.handle_event(session_event(session["metadata"], session_id=session["id"]))

    failed = service.handle_event(session_event(
        session["metadata"], session_id=session["id"], event_type="checkout.session.expired"
    ))

    assert failed.outcome == Outcome.SKIPPED
    assert load(db, result.order_id).status == "paid"


def test_failure_cancels_pending_order_once(db, gateway):
    result, session = start_checkout(db, gateway)
    service = ReconciliationService(db)
    event = session_event(session["metadata"], session_id=session["id"], event_type="checkout.session.async_payment_failed")

    assert service.handle_event(event).outcome == Outcome.APPLIED
    cancelled_at = load(db, result.order_id).cancelled_at
    assert service.handle_event(event).outcome == Outcome.DUPLICATE
    order = load(db, result.order_id)
    assert order.status == "cancelled"
    assert order.cancelled_at == cancelled_at
    assert item_count(db) == 0


def declined_attempt(session, event_id="evt_pi_failed"):
    return {
        "id": event_id,
        "type": "payment_intent.payment_failed",
        "data": {"object": {
            "id": "pi_test_9",
            "object": "payment_intent",
            "amount": 8497,
            "currency": "cad",
            "metadata": session["intent_metadata"],
        }},
    }


def test_declined_attempt_leaves_order_pending(db, gateway):
    result, session = start_checkout(db, gateway)

    outcome = ReconciliationService(db).handle_event(declined_attempt(session))

    assert outcome.outcome == Outcome.SKIPPED
    assert "still open" in outcome.reason
    assert load(db, result.order_id).status == "pending"
    ledger = db.execute(select(PaymentEvent)).scalar_one()
    assert ledger.outcome == "skipped"
    assert ledger.reference == "pi_test_9"
    assert ledger.amount == Decimal("84.97")


def test_retry_after_decline_marks_order_paid(db, gateway):
    result, session = start_checkout(db, gateway)
    service = ReconciliationService(db)

    service.handle_event(declined_attempt(session))
    outcome = service.handle_event(session_event(session["metadata"], session_id=session["id"]))

    assert outcome.outcome == Outcome.APPLIED
    order = load(db, result.order_id)
    assert order.status == "paid"
    assert order.cancelled_at is None
    assert item_count(db) == 2


def test_late_success_on_cancelled_order_is_flagged(db, gateway, caplog):
    result, session = start_checkout(db, gateway)
    service = ReconciliationService(db)
    service.handle_event(session_event(session["metadata"], session_id=session["id"], event_type="checkout.session.expired"))

    with caplog.at_level(logging.ERROR):
        outcome = service.handle_event(session_event(session["metadata"], session_id=session["id"]))

    assert outcome.outcome == Outcome.SKIPPED
    assert load(db, result.order_id).status == "cancelled"
    assert item_count(db) == 0
    assert any("cancelled order" in r.getMessage() for r in caplog.records if r.levelno == logging.ERROR)


def test_missing_order_is_rebuilt_from_metadata(db):
    metadata = metadata_for("OSC-2024-XK2J9Q1A2B", ITEMS, user_id="user-7")
    event = session_event(metadata, session_id="cs_offline", tax_cents=1105)

    outcome = ReconciliationService(db).handle_event(event)

    assert outcome.outcome == Outcome.CREATED
    order = db.execute(select(Order)).scalar_one()
    assert order.order_number == "OSC-2024-XK2J9Q1A2B"
    assert order.status == "paid"
    assert order.user_id == "user-7"
    assert order.subtotal == Decimal("84.97")
    assert order.shipping == Decimal("0.00")
    assert order.tax == Decimal("11.05")
    assert order.total == Decimal("96.02")
    assert order.stripe_session_id == "cs_offline"
    assert item_count(db) == 2


def test_rebuilt_order_is_created_once(db):
    metadata = metadata_for("OSC-2024-XK2J9Q1A2B", ITEMS)
    service = ReconciliationService(db)

    first = service.handle_event(session_event(metadata, session_id="cs_offline"))
    second = service.handle_event(session_event(metadata, session_id="cs_offline"))

    assert first.outcome == Outcome.CREATED
    assert second.outcome == Outcome.DUPLICATE
    assert db.execute(select(func.count(Order.id))).scalar_one() == 1
    assert item_count(db) == 2


def test_concurrent_rebuild_loses_on_order_number(db, monkeypatch):
    metadata = metadata_for("OSC-2024-XK2J9Q1A2B", ITEMS)
    ReconciliationService(db).handle_event(session_event(metadata, session_id="cs_offline"))

    # The second delivery does not see the first one's row when it looks
    service = ReconciliationService(db)
    monkeypatch.setattr(service.orders, "locate", lambda *args: None)
    outcome = service.handle_event(session_event(metadata, session_id="cs_offline"))

    assert outcome.outcome == Outcome.DUPLICATE
    assert db.execute(select(func.count(Order.id))).scalar_one() == 1


def test_missing_order_without_items_is_skipped(db):
    metadata = metadata_for("OSC-2024-0042", ITEMS)
    metadata.pop("items")
    outcome = ReconciliationService(db).handle_event(session_event(metadata))
    assert outcome.outcome == Outcome.SKIPPED
    assert db.execute(select(Order)).first() is None


def test_foreign_and_unknown_events_are_skipped(db):
    service = ReconciliationService(db)
    foreign = session_event({"type": "donation", "order_number": "D-1"})
    assert service.handle_event(foreign).outcome == Outcome.SKIPPED
    unknown = session_event(metadata_for("OSC-2024-0001", ITEMS), event_type="customer.created")
    assert service.handle_event(unknown).outcome == Outcome.SKIPPED
    assert db.execute(select(Order)).first() is None
    assert db.execute(select(func.count(PaymentEvent.id))).scalar_one() == 2


def test_order_is_found_by_number_when_id_is_missing(db, gateway):
    result, session = start_checkout(db, gateway)
    metadata = dict(session["metadata"], order_id="")
    outcome = ReconciliationService(db).handle_event(session_event(metadata, session_id="cs_other"))
    assert outcome.outcome == Outcome.APPLIED
    assert outcome.order_id == result.order_id


def test_shipping_details_fallback_field():
    address = shipping_address_from({
        "shipping_details": {"name": "Bo", "address": {"line1": "2 Side St", "city": "Ottawa", "state": "ON",
                                                       "postal_code": "K1A 0A1", "country": "CA"}},
    })
    assert address == {
        "name": "Bo", "street": "2 Side St", "apartment": None, "city": "Ottawa",
        "province": "ON", "postal_code": "K1A 0A1", "country": "CA",
    }
    assert shipping_address_from({}) is None
