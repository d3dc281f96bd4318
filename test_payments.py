import json
import threading

from rasoi.db import SessionLocal
from rasoi.models.core import AuditLog, Order, OrderStatusEvent, User
from rasoi.schemas.orders import CheckoutIn
from rasoi.services.payments import callback_signature, signature_matches, verify_callback, webhook_signature
from rasoi.services.store import run_with_retry


def captured(gateway_order_id, payment_id):
    return json.dumps({
        "event": "payment.captured",
        "payload": {"payment": {"entity": {"id": payment_id, "order_id": gateway_order_id, "amount": 52400}}},
    }).encode()


def send_webhook(client, base_url, raw, signature=None):
    sig = webhook_signature(raw) if signature is None else signature
    r = client.post(f"{base_url}/payments/webhook", content=raw,
                    headers={"Content-Type": "application/json", "X-Signature": sig})
    assert r.status_code == 200, r.text
    return r


def gateway_checkout(client, base_url, headers, menu, gateway_order_id):
    r = client.post(f"{base_url}/orders/", headers=headers, json={
        "items": [{"item_id": menu["Paneer Tikka"], "qty": 2}],
        "shipping_address": "12 MG Road", "payment_method": "GATEWAY", "gateway_order_id": gateway_order_id,
    })
    assert r.status_code == 200, r.text
    return r.json()


def test_signature_helpers():
    sig = callback_signature("order_1", "pay_1")
    assert len(sig) == 64
    assert signature_matches(sig, sig)
    assert not signature_matches(sig, sig[:-1] + ("0" if sig[-1] != "0" else "1"))
    assert not signature_matches(sig, None)


def test_callback_places_order_from_draft(client, base_url, customer_headers, menu):
    draft = {
        "items": [{"item_id": menu["Sweet Lassi"], "qty": 3}],
        "shipping_address": "4 Lanka, Varanasi", "payment_method": "GATEWAY",
    }
    r = client.post(f"{base_url}/payments/callback", headers=customer_headers, json={
        "gateway_order_id": "order_A", "payment_id": "pay_A",
        "signature": callback_signature("order_A", "pay_A"), "order": draft,
    })
    assert r.status_code == 200, r.text
    out = r.json()
    assert out["success"] is True
    assert out["order"]["status"] == "ORDER_PLACED"
    assert out["order"]["gateway_payment_id"] == "pay_A"
    assert len(out["order"]["delivery_code"]) == 4


def test_callback_with_bad_signature_creates_nothing(client, base_url, customer_headers, menu, db):
    r = client.post(f"{base_url}/payments/callback", headers=customer_headers, json={
        "gateway_order_id": "order_B", "payment_id": "pay_B", "signature": "deadbeef",
        "order": {"items": [{"item_id": menu["Sweet Lassi"], "qty": 1}], "shipping_address": "x",
                  "payment_method": "GATEWAY"},
    })
    assert r.status_code == 400
    assert r.json() == {"success": False, "order": None, "error": "payment verification failed, contact support"}

    r = client.get(f"{base_url}/orders/", headers=customer_headers)
    assert r.json()["total"] == 0
    assert db.query(AuditLog).filter(AuditLog.action == "INVALID_SIGNATURE").count() == 1


def test_pending_order_settled_by_callback_then_webhook(client, base_url, customer_headers, menu):
    o = gateway_checkout(client, base_url, customer_headers, menu, "order_C")
    assert o["status"] == "PAYMENT_PENDING"

    # retrying checkout for the same gateway order hands back the same order
    again = gateway_checkout(client, base_url, customer_headers, menu, "order_C")
    assert again["id"] == o["id"]

    r = client.post(f"{base_url}/payments/callback", headers=customer_headers, json={
        "gateway_order_id": "order_C", "payment_id": "pay_C", "signature": callback_signature("order_C", "pay_C"),
    })
    assert r.status_code == 200, r.text
    assert r.json()["order"]["status"] == "ORDER_PLACED"

    send_webhook(client, base_url, captured("order_C", "pay_C"))
    r = client.get(f"{base_url}/orders/{o['id']}", headers=customer_headers)
    assert r.json()["status"] == "CONFIRMED"


def test_webhook_is_idempotent(client, base_url, customer_headers, auth_headers, menu, db):
    o = gateway_checkout(client, base_url, customer_headers, menu, "order_D")
    raw = captured("order_D", "pay_D")

    send_webhook(client, base_url, raw)
    first = client.get(f"{base_url}/orders/{o['id']}", headers=customer_headers).json()
    assert first["status"] == "CONFIRMED"
    assert first["gateway_payment_id"] == "pay_D"
    admin_notes = client.get(f"{base_url}/notifications/", headers=auth_headers).json()
    customer_notes = client.get(f"{base_url}/notifications/", headers=customer_headers).json()

    send_webhook(client, base_url, raw)
    second = client.get(f"{base_url}/orders/{o['id']}", headers=customer_headers).json()
    assert second == first
    assert db.query(OrderStatusEvent).filter(OrderStatusEvent.order_id == o["id"]).count() == 3
    assert client.get(f"{base_url}/notifications/", headers=auth_headers).json() == admin_notes
    assert client.get(f"{base_url}/notifications/", headers=customer_headers).json() == customer_notes


def test_callback_after_webhook_still_succeeds(client, base_url, customer_headers, menu):
    o = gateway_checkout(client, base_url, customer_headers, menu, "order_E")
    send_webhook(client, base_url, captured("order_E", "pay_E"))

    r = client.post(f"{base_url}/payments/callback", headers=customer_headers, json={
        "gateway_order_id": "order_E", "payment_id": "pay_E", "signature": callback_signature("order_E", "pay_E"),
    })
    assert r.status_code == 200, r.text
    assert r.json()["order"]["id"] == o["id"]
    assert r.json()["order"]["status"] == "CONFIRMED"


def test_bad_or_irrelevant_webhooks_change_nothing(client, base_url, customer_headers, menu):
    o = gateway_checkout(client, base_url, customer_headers, menu, "order_F")

    send_webhook(client, base_url, captured("order_F", "pay_F"), signature="0" * 64)
    send_webhook(client, base_url, json.dumps({"event": "payment.failed", "payload": {}}).encode())
    send_webhook(client, base_url, b"not json at all")
    send_webhook(client, base_url, captured("order_unknown", "pay_X"))

    r = client.get(f"{base_url}/orders/{o['id']}", headers=customer_headers)
    assert r.json()["status"] == "PAYMENT_PENDING"
    assert r.json()["version"] == 1


def test_webhook_leaves_cancelled_order_cancelled(client, base_url, customer_headers, menu):
    o = gateway_checkout(client, base_url, customer_headers, menu, "order_G")
    r = client.post(f"{base_url}/orders/{o['id']}/cancel", headers=customer_headers, json={"reason": "too slow"})
    assert r.status_code == 200, r.text

    send_webhook(client, base_url, captured("order_G", "pay_G"))
    r = client.get(f"{base_url}/orders/{o['id']}", headers=customer_headers)
    assert r.json()["status"] == "CANCELLED"


def test_callback_proof_cannot_be_replayed_by_another_customer(client, base_url, customer_headers,
                                                               other_customer_headers, menu):
    body = {
        "gateway_order_id": "order_R", "payment_id": "pay_R", "signature": callback_signature("order_R", "pay_R"),
        "order": {"items": [{"item_id": menu["Veg Thali"], "qty": 1}], "shipping_address": "9 Cantt Rd"},
    }
    r = client.post(f"{base_url}/payments/callback", headers=customer_headers, json=body)
    assert r.status_code == 200, r.text
    assert r.json()["order"]["status"] == "ORDER_PLACED"

    r = client.post(f"{base_url}/payments/callback", headers=other_customer_headers, json=body)
    assert r.status_code == 422
    assert r.json()["success"] is False
    assert client.get(f"{base_url}/orders/", headers=other_customer_headers).json()["total"] == 0

    # the rightful owner replaying it gets the same order back
    r = client.post(f"{base_url}/payments/callback", headers=customer_headers, json=body)
    assert r.status_code == 200, r.text
    assert client.get(f"{base_url}/orders/", headers=customer_headers).json()["total"] == 1


def test_callback_order_is_always_a_gateway_order(client, base_url, customer_headers, menu):
    for suffix, draft in (("1", {}), ("2", {"payment_method": "COD"})):
        gid, pid = f"order_M{suffix}", f"pay_M{suffix}"
        r = client.post(f"{base_url}/payments/callback", headers=customer_headers, json={
            "gateway_order_id": gid, "payment_id": pid, "signature": callback_signature(gid, pid),
            "order": {"items": [{"item_id": menu["Sweet Lassi"], "qty": 1}], "shipping_address": "2 Ring Rd", **draft},
        })
        assert r.status_code == 200, r.text
        assert r.json()["order"]["payment_method"] == "GATEWAY"


def test_gateway_order_id_cannot_be_shared_between_customers(client, base_url, customer_headers,
                                                             other_customer_headers, menu):
    mine = gateway_checkout(client, base_url, customer_headers, menu, "order_P")

    r = client.post(f"{base_url}/orders/", headers=other_customer_headers, json={
        "items": [{"item_id": menu["Sweet Lassi"], "qty": 1}],
        "shipping_address": "5 Park St", "payment_method": "GATEWAY", "gateway_order_id": "order_P",
    })
    assert r.status_code == 422
    assert r.json()["error"] == "validation_error"
    assert client.get(f"{base_url}/orders/", headers=other_customer_headers).json()["total"] == 0

    send_webhook(client, base_url, captured("order_P", "pay_P"))
    r = client.get(f"{base_url}/orders/{mine['id']}", headers=customer_headers)
    assert r.json()["status"] == "CONFIRMED"


def test_concurrent_duplicate_callbacks_make_one_order(db, menu):
    owner = User(name="Meera", email="meera@example.com", phone="9000000077", pass_hash="x")
    db.add(owner)
    db.commit()
    draft = CheckoutIn(items=[{"item_id": menu["Paneer Tikka"], "qty": 1}], shipping_address="3 Lal Bagh")
    sig = callback_signature("order_Q", "pay_Q")
    barrier = threading.Barrier(4)
    placed = []

    def _callback():
        session = SessionLocal()
        try:
            user = session.get(User, owner.id)
            barrier.wait()
            o = run_with_retry(session, lambda store: verify_callback(store, user, "order_Q", "pay_Q", sig, draft))
            placed.append(o.id)
        finally:
            session.close()

    threads = [threading.Thread(target=_callback) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(placed) == 4
    assert len(set(placed)) == 1
    assert db.query(Order).filter(Order.gateway_order_id == "order_Q").count() == 1
    assert db.query(OrderStatusEvent).filter(OrderStatusEvent.order_id == placed[0]).count() == 1
