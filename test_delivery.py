import threading

import pytest

from rasoi.db import SessionLocal
from rasoi.models.core import Order, OrderStatus, Rider, User, UserRole
from rasoi.services import delivery
from rasoi.services.delivery import ClaimResult, ConfirmResult
from rasoi.services.errors import Forbidden, IllegalTransition
from rasoi.services.notifications import Actor, sync_notifications
from rasoi.services.store import OrderStore, run_with_retry

S = OrderStatus


def _claimed(db, make_order, rider_id="rider-1", code=None):
    o = make_order(S.CONFIRMED)
    result, o = delivery.claim(OrderStore(db), o.id, rider_id, "Vikram")
    assert result is ClaimResult.SUCCESS
    if code:
        db.query(Order).filter(Order.id == o.id).update({"delivery_code": code})
        db.commit()
    return o


def test_exactly_one_of_many_racing_riders_wins(db, make_order):
    o = make_order(S.CONFIRMED)
    riders = [f"rider-{i}" for i in range(5)]
    barrier = threading.Barrier(len(riders))
    results = {}

    def _race(rider_id):
        session = SessionLocal()
        try:
            barrier.wait()
            results[rider_id], _ = run_with_retry(
                session, lambda store: delivery.claim(store, o.id, rider_id, rider_id.title()))
        finally:
            session.close()

    threads = [threading.Thread(target=_race, args=(r,)) for r in riders]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    winners = [r for r, res in results.items() if res is ClaimResult.SUCCESS]
    assert len(winners) == 1
    assert sorted(res.value for res in results.values()).count("ALREADY_CLAIMED") == len(riders) - 1

    final = OrderStore(db).reload(o.id)
    assert final.status is S.OUT_FOR_DELIVERY
    assert final.rider_id == winners[0]
    assert final.rider_name == winners[0].title()
    assert final.version == 2


def test_claim_outcomes(db, make_order):
    o = _claimed(db, make_order, "rider-1")
    assert delivery.claim(OrderStore(db), o.id, "rider-1", "Vikram")[0] is ClaimResult.SUCCESS
    assert delivery.claim(OrderStore(db), o.id, "rider-2", "Sunil")[0] is ClaimResult.ALREADY_CLAIMED

    early = make_order(S.ORDER_PLACED)
    result, current = delivery.claim(OrderStore(db), early.id, "rider-2", "Sunil")
    assert result is ClaimResult.NOT_ELIGIBLE
    assert current.rider_id is None


def test_confirm_checks_the_code_once(db, make_order):
    o = _claimed(db, make_order, "rider-1", code="7421")

    result, same = delivery.confirm(OrderStore(db), o.id, "rider-1", "1234")
    assert result is ConfirmResult.CODE_MISMATCH
    assert same.status is S.OUT_FOR_DELIVERY

    with pytest.raises(Forbidden):
        delivery.confirm(OrderStore(db), o.id, "rider-2", "7421")

    result, done = delivery.confirm(OrderStore(db), o.id, "rider-1", " 7421 ")
    assert result is ConfirmResult.DELIVERED
    assert done.status is S.DELIVERED
    assert done.delivered_at is not None

    actor = Actor(UserRole.CUSTOMER, o.user_id)
    sync_notifications(db, actor)
    for code in ("7421", "1234"):
        with pytest.raises(IllegalTransition):
            delivery.confirm(OrderStore(db), o.id, "rider-1", code)
    assert sync_notifications(db, actor) == 0


def test_delivered_count_resets_on_payout(db, make_order):
    u = User(name="Vikram", phone="9100000009", pass_hash="x", role=UserRole.RIDER)
    db.add(u)
    db.flush()
    rider = Rider(id=u.id, full_name="Vikram", phone=u.phone)
    db.add(rider)
    db.commit()

    for _ in range(2):
        o = _claimed(db, make_order, rider.id, code="1111")
        delivery.confirm(OrderStore(db), o.id, rider.id, "1111")
    _claimed(db, make_order, rider.id)  # still out for delivery
    assert delivery.delivered_count(db, rider) == 2

    delivery.clear_delivery_count(db, rider.id, actor_id="admin-1")
    assert delivery.delivered_count(db, rider) == 0

    o = _claimed(db, make_order, rider.id, code="2222")
    delivery.confirm(OrderStore(db), o.id, rider.id, "2222")
    assert delivery.delivered_count(db, rider) == 1


def test_rider_flow_over_http(client, base_url, auth_headers, customer_headers, rider, second_rider, place, advance):
    o = place()
    r = client.post(f"{base_url}/riders/orders/{o['id']}/claim", headers=rider["headers"])
    assert r.status_code == 409
    assert r.json()["error"] == "not_eligible"

    advance(o["id"], "CONFIRMED")
    r = client.get(f"{base_url}/riders/available", headers=rider["headers"])
    assert [x["id"] for x in r.json()] == [o["id"]]
    assert r.json()[0]["delivery_code"] is None

    r = client.post(f"{base_url}/riders/orders/{o['id']}/claim", headers=rider["headers"])
    assert r.status_code == 200, r.text
    assert r.json()["result"] == "SUCCESS"
    assert r.json()["order"]["rider_name"] == "Vikram"

    r = client.post(f"{base_url}/riders/orders/{o['id']}/claim", headers=second_rider["headers"])
    assert r.status_code == 409
    assert r.json() == {"error": "already_claimed", "detail": "this order was just taken"}

    # codes are always four digits starting 1-9
    r = client.post(f"{base_url}/riders/orders/{o['id']}/confirm", headers=rider["headers"], json={"code": "0000"})
    assert r.status_code == 400
    assert r.json()["error"] == "code_mismatch"

    code = client.get(f"{base_url}/orders/{o['id']}", headers=customer_headers).json()["delivery_code"]
    r = client.post(f"{base_url}/riders/orders/{o['id']}/confirm", headers=rider["headers"], json={"code": code})
    assert r.status_code == 200, r.text
    assert r.json()["status"] == "DELIVERED"

    riders = {x["id"]: x for x in client.get(f"{base_url}/riders/", headers=auth_headers).json()}
    assert riders[rider["id"]]["delivered_count"] == 1
    assert riders[second_rider["id"]]["delivered_count"] == 0

    r = client.post(f"{base_url}/riders/{rider['id']}/clear-count", headers=auth_headers)
    assert r.status_code == 200
    assert r.json()["delivered_count"] == 0


def test_rider_endpoints_need_a_rider(client, base_url, customer_headers, auth_headers):
    assert client.get(f"{base_url}/riders/available", headers=customer_headers).status_code == 403
    assert client.get(f"{base_url}/riders/", headers=customer_headers).status_code == 403
    assert client.get(f"{base_url}/riders/available").status_code == 401
