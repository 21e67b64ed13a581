import hashlib
import hmac
import json
import os
import tempfile
import time
import uuid
from decimal import Decimal

# Settings are read at import time
os.environ["DATABASE_URL"] = "sqlite:///" + os.path.join(tempfile.gettempdir(), "storefront-import.db")
os.environ["RUN_MIGRATIONS"] = "false"
os.environ["REDIS_URL"] = ""
os.environ["STRIPE_SECRET_KEY"] = "sk_test_storefront"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_storefronttest"
os.environ["JWT_SECRET"] = "test-jwt-secret"
os.environ["ADMIN_EMAILS"] = '["ops@example.com"]'

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from storefront.api.deps import get_carts, get_payment_gateway
from storefront.application.errors import PaymentSessionError
from storefront.application.metadata import MetadataItem, build_metadata
from storefront.auth_local import create_access_token
from storefront.domain.models import Base, Product, ProductVariant
from storefront.infrastructure.cart_storage import MemoryCartStorage
from storefront.infrastructure.db import get_db
from storefront.infrastructure.payment_gateway import CheckoutSession, PaymentGateway
from storefront.main import app

WEBHOOK_SECRET = os.environ["STRIPE_WEBHOOK_SECRET"]

TEE_ID = "prod-tee"
CAP_ID = "prod-cap"
HOODIE_ID = "prod-hoodie"


class FakeGateway(PaymentGateway):
    """Records checkout sessions instead of calling Stripe. Webhook verification is the real one."""

    def __init__(self):
        super().__init__()
        self.sessions = []
        self.fail_with = None
        # session id -> status reported by session_status; unknown ids are open
        self.statuses = {}
        self.unreachable = set()
        self.expired = []

    def create_checkout_session(self, line_items, metadata, intent_metadata, idempotency_key, customer_email=None):
        if self.fail_with:
            raise PaymentSessionError(self.fail_with)
        session_id = f"cs_test_{len(self.sessions) + 1}"
        self.sessions.append({
            "id": session_id,
            "line_items": line_items,
            "metadata": metadata,
            "intent_metadata": intent_metadata,
            "idempotency_key": idempotency_key,
            "customer_email": customer_email,
        })
        return CheckoutSession(id=session_id, url=f"https://checkout.stripe.com/c/pay/{session_id}")

    def session_status(self, session_id):
        if session_id in self.unreachable:
            raise PaymentSessionError(f"Could not retrieve session {session_id}")
        return self.statuses.get(session_id, "open")

    def expire_session(self, session_id):
        self.expired.append(session_id)
        self.statuses[session_id] = "expired"


@pytest.fixture
def engine(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'storefront.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def cart_storage():
    return MemoryCartStorage(ttl=3600)


@pytest.fixture
def client(session_factory, gateway, cart_storage):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_payment_gateway] = lambda: gateway
    app.dependency_overrides[get_carts] = lambda: cart_storage
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def catalog(db):
    db.add_all([
        Product(
            id=TEE_ID, name="Classic Tee", slug="classic-tee", base_price=Decimal("29.99"),
            images=["https://cdn.example.com/tee.jpg"], sizes=["S", "M", "L"], colors=["Black", "White"],
        ),
        Product(
            id=CAP_ID, name="Logo Cap", slug="logo-cap", base_price=Decimal("24.99"),
            images=["https://cdn.example.com/cap.jpg"], sizes=["One Size"], colors=["Navy"],
        ),
        Product(
            id=HOODIE_ID, name="Zip Hoodie", slug="zip-hoodie", base_price=Decimal("64.99"),
            images=[], sizes=["M", "XL"], colors=["Grey"],
        ),
        Product(
            id="prod-retired", name="Old Tee", slug="old-tee", base_price=Decimal("9.99"),
            images=[], sizes=[], colors=[], is_active=False,
        ),
    ])
    db.add(ProductVariant(
        id="var-hoodie-xl", product_id=HOODIE_ID, sku="HOOD-GRY-XL", size="XL", color="Grey",
        price_override=Decimal("69.99"),
    ))
    db.commit()


def auth_headers(subject="user-1", **claims):
    return {"Authorization": f"Bearer {create_access_token(subject, **claims)}"}


@pytest.fixture
def user_headers():
    return auth_headers("user-1", email="buyer@example.com")


@pytest.fixture
def admin_headers():
    return auth_headers("admin-1", email="staff@example.com", role="admin")


def sign_payload(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp=None) -> str:
    """``Stripe-Signature`` header value for ``payload``."""
    timestamp = timestamp or int(time.time())
    signed = f"{timestamp}.".encode() + payload
    signature = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def metadata_for(order_number, items, order_id=None, user_id=None):
    return build_metadata(order_number, [MetadataItem(**item) for item in items], order_id=order_id, user_id=user_id)


def session_event(
    metadata,
    event_type="checkout.session.completed",
    session_id="cs_test_1",
    payment_status="paid",
    event_id=None,
    amount_total=None,
    tax_cents=0,
):
    return {
        "id": event_id or f"evt_{uuid.uuid4().hex}",
        "object": "event",
        "type": event_type,
        "data": {
            "object": {
                "id": session_id,
                "object": "checkout.session",
                "payment_status": payment_status,
                "payment_intent": "pi_test_1",
                "amount_total": amount_total,
                "currency": "cad",
                "metadata": metadata,
                "customer_details": {"email": "buyer@example.com"},
                "total_details": {"amount_tax": tax_cents},
                "collected_information": {
                    "shipping_details": {
                        "name": "Ada Buyer",
                        "address": {
                            "line1": "1 Main St",
                            "line2": "Apt 4",
                            "city": "Toronto",
                            "state": "ON",
                            "postal_code": "M5V 1A1",
                            "country": "CA",
                        },
                    }
                },
            }
        },
    }


def post_event(client, event, signature=None):
    payload = json.dumps(event).encode()
    headers = {"Stripe-Signature": signature if signature is not None else sign_payload(payload)}
    return client.post("/webhooks/stripe", content=payload, headers=headers)


ITEMS_FOR_WEBHOOK = [
    {"product_id": TEE_ID, "variant_id": f"{TEE_ID}:M:Black", "name": "Classic Tee",
     "quantity": 2, "price": "29.99", "size": "M", "color": "Black"},
    {"product_id": CAP_ID, "variant_id": f"{CAP_ID}:One Size:Navy", "name": "Logo Cap",
     "quantity": 1, "price": "24.99", "size": "One Size", "color": "Navy"},
]
