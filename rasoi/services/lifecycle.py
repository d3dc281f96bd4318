"""
Order status state machine.

The machine holds no state of its own: it checks an edge against the table
below, writes the new status through the store's conditional update (guarded
on the status and version it read) and records exactly one status event for
the transition in the same transaction.
"""
import logging
from datetime import datetime, timedelta
from typing import Callable

from sqlalchemy import select

from rasoi.config import settings
from rasoi.models.common import utcnow
from rasoi.models.core import Order, OrderStatus, UserRole
from rasoi.services.errors import Forbidden, IllegalTransition, NotFound
from rasoi.services.store import Conflict, OrderStore
from rasoi.util.audit import audit
from rasoi.util.security import Principal

logger = logging.getLogger(__name__)

S = OrderStatus

FORWARD_EDGES: dict[OrderStatus, OrderStatus] = {
    S.PAYMENT_PENDING: S.ORDER_PLACED,
    S.ORDER_PLACED: S.CONFIRMED,
    S.CONFIRMED: S.PREPARING,
    S.PREPARING: S.SHIPPED,
    S.SHIPPED: S.OUT_FOR_DELIVERY,
    S.OUT_FOR_DELIVERY: S.DELIVERED,
}
TERMINAL = frozenset({S.DELIVERED, S.CANCELLED})

# only the rider claim may take this edge
CLAIM_EDGE = (S.CONFIRMED, S.OUT_FOR_DELIVERY)

CUSTOMER_CANCEL_WINDOW = frozenset({S.PAYMENT_PENDING, S.ORDER_PLACED})

PAYMENT_TIMEOUT = "PAYMENT_TIMEOUT"


def is_legal(current: OrderStatus, target: OrderStatus) -> bool:
    if target is S.CANCELLED:
        return current not in TERMINAL
    return FORWARD_EDGES.get(current) is target


def is_claim_edge(current: OrderStatus, target: OrderStatus) -> bool:
    return (current, target) == CLAIM_EDGE


def apply_transition(
    store: OrderStore,
    order: Order,
    target: OrderStatus,
    *,
    changes: dict | None = None,
    expect: dict | None = None,
    edge_ok: Callable[[OrderStatus, OrderStatus], bool] = is_legal,
) -> Order | Conflict:
    """
    Move `order` to `target` if the edge is legal and nobody has written the
    order since it was read. Raises IllegalTransition without writing;
    returns Conflict if the guarded write lost.
    """
    if not edge_ok(order.status, target):
        raise IllegalTransition(order.status, target)

    guard = {"status": order.status, "version": order.version}
    guard.update(expect or {})
    values = {"status": target}
    if target is S.DELIVERED:
        values["delivered_at"] = utcnow()
    values.update(changes or {})

    result = store.conditional_update(order.id, guard, values)
    if isinstance(result, Conflict):
        logger.info("transition %s -> %s on %s lost to a concurrent write", order.status.value, target.value, order.id)
        return result
    store.append_event(result)
    logger.info("order %s: %s -> %s (v%d)", order.id, order.status.value, target.value, result.version)
    return result


def _load(store: OrderStore, order_id: str) -> Order:
    o = store.reload(order_id)
    if not o:
        raise NotFound("order not found")
    return o


def update_status(store: OrderStore, order_id: str, target: OrderStatus, actor: Principal) -> Order | Conflict:
    """Administrative status change along the legal edges."""
    if not actor.is_admin:
        raise Forbidden("only administrators can change order status")
    if target is S.CANCELLED:
        return cancel(store, order_id, actor, reason=None)

    o = _load(store, order_id)
    before = o.status
    result = apply_transition(store, o, target)
    if isinstance(result, Conflict):
        store.rollback()
        return result
    audit(store.db, actor.sub, "Order", order_id, "STATUS",
          before={"status": before.value}, after={"status": target.value})
    store.commit()
    return result


def cancel(store: OrderStore, order_id: str, actor: Principal, reason: str | None) -> Order | Conflict:
    o = _load(store, order_id)

    if actor.role is UserRole.CUSTOMER:
        if o.user_id != actor.sub:
            raise Forbidden("not your order")
        if o.status not in CUSTOMER_CANCEL_WINDOW:
            # past the customer window only an administrator may cancel
            raise IllegalTransition(o.status, S.CANCELLED)
    elif not actor.is_admin:
        raise Forbidden("riders cannot cancel orders")

    before = o.status
    result = apply_transition(store, o, S.CANCELLED, changes={"cancellation_reason": reason})
    if isinstance(result, Conflict):
        store.rollback()
        return result
    audit(store.db, actor.sub, "Order", order_id, "CANCEL",
          before={"status": before.value}, reason=reason)
    store.commit()
    return result


def expire_stale_payments(store: OrderStore, now: datetime | None = None) -> list[str]:
    """
    Cancel orders that have sat in PAYMENT_PENDING longer than the configured
    window. An order paid in the meantime wins the guarded write and is left
    alone.
    """
    now = now or utcnow()
    cutoff = now - timedelta(minutes=settings.PAYMENT_PENDING_TTL_MIN)
    q = select(Order).where(Order.status == S.PAYMENT_PENDING, Order.created_at < cutoff)
    expired = []
    for o in list(store.db.scalars(q)):
        result = apply_transition(store, o, S.CANCELLED, changes={"cancellation_reason": PAYMENT_TIMEOUT})
        if isinstance(result, Conflict):
            continue
        audit(store.db, None, "Order", o.id, "CANCEL", before={"status": S.PAYMENT_PENDING.value}, reason=PAYMENT_TIMEOUT)
        expired.append(o.id)
    store.commit()
    if expired:
        logger.info("expired %d unpaid orders", len(expired))
    return expired
