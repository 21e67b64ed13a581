from fastapi.testclient import TestClient

from storefront.main import app


def test_root():
    client = TestClient(app)
    resp = client.get("/")
    assert resp.status_code == 200
    assert resp.json()["service"] == "storefront-service"


def test_liveness():
    client = TestClient(app)
    assert client.get("/health").json()["status"] == "pass"
    assert client.get("/health/live").json() == {"status": "alive"}


def test_request_id_is_echoed():
    client = TestClient(app)
    resp = client.get("/health/live", headers={"X-Request-ID": "req-123"})
    assert resp.headers["X-Request-ID"] == "req-123"


def test_products(client, catalog):
    products = client.get("/products/").json()
    assert [p["name"] for p in products] == ["Classic Tee", "Logo Cap", "Zip Hoodie"]
    hoodie = client.get("/products/prod-hoodie").json()
    assert hoodie["variants"][0]["price_override"] == 69.99
    assert client.get("/products/prod-retired").status_code == 404


def test_unknown_product_uses_error_body(client, catalog):
    for product_id in ("prod-retired", "prod-missing"):
        resp = client.get(f"/products/{product_id}")
        assert resp.status_code == 404
        assert resp.json() == {"error": f"Product not found: {product_id}"}
