import re
from decimal import Decimal

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from storefront.application.checkout_service import CheckoutService
from storefront.application.errors import AuthenticationRequired, InvalidInput, PaymentSessionError
from storefront.application.metadata import parse_metadata
from storefront.auth_local import CurrentUser
from storefront.core_settings import Settings
from storefront.domain.cart import CartItem, CartSnapshot
from storefront.domain.models import Order
from storefront.domain.pricing import compute_totals
from storefront.infrastructure.payment_gateway import PaymentGateway


def snapshot_of(*items):
    totals = compute_totals((i.price, i.quantity) for i in items)
    return CartSnapshot(items=tuple(items), subtotal=totals.subtotal, shipping=totals.shipping, total=totals.total)


def fresh(db, order_id):
    return db.get(Order, order_id, populate_existing=True)


def tee(quantity=2):
    return CartItem("prod-tee", "prod-tee:M:Black", "Classic Tee", Decimal("29.99"), quantity, "Black", "M",
                    "https://cdn.example.com/tee.jpg")


def cap(quantity=1):
    return CartItem("prod-cap", "prod-cap:One Size:Navy", "Logo Cap", Decimal("24.99"), quantity, "Navy", "One Size")


ADDRESS = {
    "name": "Ada Buyer",
    "street": "1 Main St",
    "city": "Toronto",
    "province": "ON",
    "postal_code": "M5V 1A1",
    "country": "CA",
}


def test_creates_pending_order_and_session(db, gateway):
    user = CurrentUser(id="user-1", email="buyer@example.com")
    result = CheckoutService(db, gateway).start_checkout(snapshot_of(tee(), cap()), user=user)

    assert re.match(r"^OSC-\d{4}-0001$", result.order_number)
    order = fresh(db, result.order_id)
    assert order.status == "pending"
    assert order.total == Decimal("84.97")
    assert order.shipping == Decimal("0.00")
    assert order.user_id == "user-1"
    assert order.customer_email == "buyer@example.com"
    assert order.stripe_session_id == result.session_id
    assert order.items == []

    session = gateway.sessions[0]
    assert session["idempotency_key"] == f"checkout_{result.order_number}"
    assert session["customer_email"] == "buyer@example.com"
    assert [li["price_data"]["unit_amount"] for li in session["line_items"]] == [2999, 2499]
    assert session["line_items"][0]["price_data"]["product_data"]["description"] == "Black - M"
    bundle = parse_metadata(session["metadata"])
    assert bundle.order_id == result.order_id
    assert [i.quantity for i in bundle.items] == [2, 1]
    assert "items" not in session["intent_metadata"]
    assert session["intent_metadata"]["order_number"] == result.order_number


def test_shipping_line_added_below_threshold(db, gateway):
    CheckoutService(db, gateway).start_checkout(snapshot_of(cap()))
    line_items = gateway.sessions[0]["line_items"]
    assert line_items[-1]["price_data"]["product_data"]["name"] == "Shipping"
    assert line_items[-1]["price_data"]["unit_amount"] == 999


def test_guest_checkout_has_no_user(db, gateway):
    result = CheckoutService(db, gateway).start_checkout(snapshot_of(cap()))
    order = fresh(db, result.order_id)
    assert order.user_id is None
    assert gateway.sessions[0]["metadata"]["user_id"] == ""


def test_empty_cart_is_rejected(db, gateway):
    with pytest.raises(InvalidInput):
        CheckoutService(db, gateway).start_checkout(CartSnapshot())
    assert db.execute(select(Order)).first() is None
    assert gateway.sessions == []


def test_tampered_totals_are_rejected(db, gateway):
    snapshot = snapshot_of(tee())
    tampered = CartSnapshot(items=snapshot.items, subtotal=Decimal("1.00"), shipping=Decimal("0.00"), total=Decimal("1.00"))
    with pytest.raises(InvalidInput):
        CheckoutService(db, gateway).start_checkout(tampered)
    assert db.execute(select(Order)).first() is None


def test_zero_quantity_is_rejected(db, gateway):
    with pytest.raises(InvalidInput):
        CheckoutService(db, gateway).start_checkout(snapshot_of(tee(quantity=0)))


def test_fractional_cent_price_is_rejected(db, gateway):
    odd = CartItem("prod-cap", "prod-cap:One Size:Navy", "Logo Cap", Decimal("10.005"), 2, "Navy", "One Size")
    with pytest.raises(InvalidInput) as exc:
        CheckoutService(db, gateway).start_checkout(snapshot_of(odd))
    assert "cents" in str(exc.value)
    assert db.execute(select(Order)).first() is None
    assert gateway.sessions == []


def test_line_items_add_up_to_order_total(db, gateway):
    result = CheckoutService(db, gateway).start_checkout(snapshot_of(tee(3), cap(2)))
    charged = sum(li["price_data"]["unit_amount"] * li["quantity"] for li in gateway.sessions[0]["line_items"])
    assert charged == int(fresh(db, result.order_id).total * 100)


def test_checkout_endpoint_rejects_fractional_cents(client, gateway):
    line = {"product_id": "prod-cap", "variant_id": "v", "name": "Logo Cap", "price": "10.005", "quantity": 2}
    resp = client.post("/checkout/session", json={"items": [line], "subtotal": "20.01", "shipping": "9.99", "total": "30.00"})
    assert resp.status_code == 422
    assert gateway.sessions == []


def test_guest_checkout_can_be_disabled(db, gateway):
    service = CheckoutService(db, gateway, settings=Settings(ALLOW_GUEST_CHECKOUT=False))
    with pytest.raises(AuthenticationRequired):
        service.start_checkout(snapshot_of(cap()))


def test_address_policy_for_guests(db, gateway):
    service = CheckoutService(db, gateway, settings=Settings(ADDRESS_REQUIRED_AT_CHECKOUT="guests"))
    with pytest.raises(InvalidInput) as exc:
        service.start_checkout(snapshot_of(cap()), shipping_address={"name": "Ada Buyer"})
    assert "postal_code" in str(exc.value)

    # Signed-in users may leave the address to the payment page
    service.start_checkout(snapshot_of(cap()), user=CurrentUser(id="user-1"))

    result = service.start_checkout(snapshot_of(cap()), shipping_address=ADDRESS)
    order = fresh(db, result.order_id)
    assert order.shipping_address["city"] == "Toronto"
    assert order.shipping_address["apartment"] is None


def test_session_failure_cancels_pending_order(db, gateway):
    gateway.fail_with = "card processor unavailable"
    with pytest.raises(PaymentSessionError):
        CheckoutService(db, gateway).start_checkout(snapshot_of(cap()))

    order = db.execute(select(Order)).scalar_one()
    db.refresh(order)
    assert order.status == "cancelled"
    assert order.cancelled_at is not None
    assert "card processor unavailable" in order.notes
    assert order.stripe_session_id is None


def test_unconfigured_processor_cancels_order(db):
    gateway = PaymentGateway(Settings(STRIPE_SECRET_KEY="sk_placeholder"))
    with pytest.raises(PaymentSessionError) as exc:
        CheckoutService(db, gateway).start_checkout(snapshot_of(cap()))
    assert "not configured" in str(exc.value)
    order = db.execute(select(Order).execution_options(populate_existing=True)).scalar_one()
    assert order.status == "cancelled"


def test_database_outage_falls_back_to_offline_number(db, gateway, monkeypatch):
    def broken(*args, **kwargs):
        raise OperationalError("UPDATE order_number_counters", {}, Exception("database is down"))

    monkeypatch.setattr("storefront.application.checkout_service.next_order_number", broken)
    result = CheckoutService(db, gateway).start_checkout(snapshot_of(tee(), cap()))

    assert result.order_id is None
    assert re.match(r"^OSC-\d{4}-X[0-9A-Z]+$", result.order_number)
    bundle = parse_metadata(gateway.sessions[0]["metadata"])
    assert bundle.order_id is None
    assert len(bundle.items) == 2
    assert db.execute(select(Order)).first() is None


def test_order_number_collision_is_retried(db, gateway, monkeypatch):
    numbers = iter(["OSC-2024-0001", "OSC-2024-0001", "OSC-2024-0002"])
    monkeypatch.setattr("storefront.application.checkout_service.next_order_number", lambda db, now: next(numbers))
    service = CheckoutService(db, gateway)

    first = service.start_checkout(snapshot_of(cap()))
    second = service.start_checkout(snapshot_of(cap()))

    assert first.order_number == "OSC-2024-0001"
    assert second.order_number == "OSC-2024-0002"
    assert second.order_id is not None


def test_checkout_endpoint(client, gateway, user_headers):
    payload = {
        "items": [
            {"product_id": "prod-tee", "variant_id": "prod-tee:M:Black", "name": "Classic Tee",
             "price": "29.99", "quantity": 2, "color": "Black", "size": "M"},
            {"product_id": "prod-cap", "variant_id": "prod-cap:One Size:Navy", "name": "Logo Cap",
             "price": "24.99", "quantity": 1, "color": "Navy", "size": "One Size"},
        ],
        "subtotal": "84.97",
        "shipping": "0.00",
        "total": "84.97",
    }
    resp = client.post("/checkout/session", json=payload, headers=user_headers)
    assert resp.status_code == 201
    body = resp.json()
    assert body["url"].startswith("https://checkout.stripe.com/")
    assert body["session_id"] == "cs_test_1"
    assert body["order_id"]


def test_checkout_endpoint_error_bodies(client, gateway):
    resp = client.post("/checkout/session", json={"items": [], "subtotal": 0, "shipping": 0, "total": 0})
    assert resp.status_code == 400
    assert resp.json() == {"error": "Cart is empty"}

    gateway.fail_with = "stripe down"
    line = {"product_id": "prod-cap", "variant_id": "v", "name": "Logo Cap", "price": "24.99", "quantity": 1}
    resp = client.post("/checkout/session", json={"items": [line], "subtotal": "24.99", "shipping": "9.99", "total": "34.98"})
    assert resp.status_code == 502
    assert "stripe down" in resp.json()["error"]


def test_invalid_token_is_not_treated_as_guest(client):
    resp = client.post(
        "/checkout/session",
        json={"items": [], "subtotal": 0, "shipping": 0, "total": 0},
        headers={"Authorization": "Bearer not-a-jwt"},
    )
    assert resp.status_code == 401
