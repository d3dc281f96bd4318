# conftest.py
import os
import random
import string
import tempfile

_tmp = tempfile.mkdtemp(prefix="rasoi-test-")
os.environ["APP_ENV"] = "dev"
os.environ["APP_SECRET"] = "test-app-secret"
os.environ["DB_URL"] = f"sqlite:///{os.path.join(_tmp, 'rasoi.db')}"
os.environ["PAYMENT_KEY_SECRET"] = "test-key-secret"
os.environ["PAYMENT_WEBHOOK_SECRET"] = "test-webhook-secret"
os.environ["TAX_RATE"] = "0.05"
os.environ["DELIVERY_FEE_MODE"] = "FLAT"
os.environ["DELIVERY_FLAT_FEE"] = "49"
os.environ["LOG_LEVEL"] = "WARNING"

import pytest
from fastapi.testclient import TestClient

from rasoi.db import Base, SessionLocal, engine
from rasoi.main import app

BASE = "http://testserver"


@pytest.fixture(autouse=True)
def fresh_schema():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def base_url():
    return BASE

@pytest.fixture
def client():
    with TestClient(app, base_url=BASE) as c:
        yield c

@pytest.fixture
def db():
    s = SessionLocal()
    try:
        yield s
    finally:
        s.close()

@pytest.fixture
def rng_suffix():
    return "".join(random.choices(string.ascii_lowercase + string.digits, k=6))


def login(client, base_url, who, password):
    r = client.post(f"{base_url}/auth/login", params={"login": who, "password": password})
    assert r.status_code == 200, f"/auth/login failed: {r.text}"
    return {"Authorization": f"Bearer {r.json()['access_token']}"}


@pytest.fixture
def auth_headers(client, base_url):
    r = client.get(f"{base_url}/healthz")
    assert r.status_code == 200, f"/healthz failed: {r.text}"

    r = client.post(f"{base_url}/admin/dev-bootstrap")
    assert r.status_code == 200, f"/admin/dev-bootstrap failed: {r.text}"

    return login(client, base_url, "9999999999", "admin")


def signup(client, base_url, name, phone):
    r = client.post(f"{base_url}/auth/signup", json={
        "name": name, "email": f"{phone}@example.com", "phone": phone, "password": "secret123",
    })
    assert r.status_code == 200, f"/auth/signup failed: {r.text}"
    return {"Authorization": f"Bearer {r.json()['access_token']}"}


@pytest.fixture
def customer_headers(client, base_url):
    return signup(client, base_url, "Asha", "9000000001")

@pytest.fixture
def other_customer_headers(client, base_url):
    return signup(client, base_url, "Ravi", "9000000002")


def make_rider(client, base_url, admin_headers, name, phone):
    r = client.post(f"{base_url}/riders/", headers=admin_headers, json={
        "full_name": name, "phone": phone, "password": "ride123",
    })
    assert r.status_code == 200, f"POST /riders failed: {r.text}"
    rider = r.json()
    rider["headers"] = login(client, base_url, phone, "ride123")
    return rider


@pytest.fixture
def rider(client, base_url, auth_headers):
    return make_rider(client, base_url, auth_headers, "Vikram", "9100000001")

@pytest.fixture
def second_rider(client, base_url, auth_headers):
    return make_rider(client, base_url, auth_headers, "Sunil", "9100000002")


@pytest.fixture
def menu(client, base_url, auth_headers):
    items = {}
    for name, price in (("Paneer Tikka", 250.0), ("Sweet Lassi", 80.0), ("Veg Thali", 199.5)):
        r = client.post(f"{base_url}/menu/items", headers=auth_headers, json={"name": name, "price": price})
        assert r.status_code == 200, f"POST /menu/items failed: {r.text}"
        items[name] = r.json()["id"]
    return items


@pytest.fixture
def save10(client, base_url, auth_headers):
    r = client.post(f"{base_url}/coupons/", headers=auth_headers, json={
        "code": "save10", "discount_percent": 10,
        "valid_from": "2020-01-01T00:00:00Z", "valid_until": "2099-12-31T23:59:59Z",
    })
    assert r.status_code == 200, f"POST /coupons failed: {r.text}"
    return r.json()


@pytest.fixture
def place(client, base_url, customer_headers, menu):
    """Place a COD order for two Paneer Tikka and return it."""
    def _place(headers=None, **extra):
        body = {
            "items": [{"item_id": menu["Paneer Tikka"], "qty": 2}],
            "shipping_address": "12 MG Road, Ghazipur",
            "payment_method": "COD",
        }
        body.update(extra)
        r = client.post(f"{base_url}/orders/", headers=headers or customer_headers, json=body)
        assert r.status_code == 200, f"POST /orders failed: {r.text}"
        return r.json()
    return _place


@pytest.fixture
def advance(client, base_url, auth_headers):
    """Walk an order forward through admin status changes."""
    def _advance(order_id, *statuses):
        out = None
        for s in statuses:
            r = client.post(f"{base_url}/orders/{order_id}/status", headers=auth_headers, json={"status": s})
            assert r.status_code == 200, f"status {s} failed: {r.text}"
            out = r.json()
        return out
    return _advance


@pytest.fixture
def make_order(db):
    """Store an order directly at a given status, bypassing checkout."""
    from decimal import Decimal
    from rasoi.models.core import OrderStatus, PayMethod, User
    from rasoi.services.pricing import FeePolicy, PriceLine, price_order
    from rasoi.services.store import DraftLine, OrderDraft, OrderStore

    owner = User(name="Asha", email="asha@example.com", phone="9000000009", pass_hash="x")
    db.add(owner)
    db.commit()

    def _make(status=OrderStatus.ORDER_PLACED, user_id=None, **extra):
        price = price_order([PriceLine(Decimal("100"), 2)], coupon_percent=None,
                            fee_policy=FeePolicy(flat_fee=Decimal("49")), tax_rate=Decimal("0.05"))
        draft = OrderDraft(
            user_id=user_id or owner.id, customer_name="Asha", shipping_address="1 Station Rd",
            payment_method=PayMethod.COD, lines=[DraftLine("item-dal", "Dal Makhani", Decimal("100"), 2)],
            price=price, tax_rate=Decimal("0.05"), status=status, **extra,
        )
        store = OrderStore(db)
        o = store.create(draft)
        store.commit()
        return o

    _make.owner = owner
    return _make
