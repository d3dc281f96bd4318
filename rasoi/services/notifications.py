"""
Per-actor notification derivation.

Notifications are never pushed. Whenever an actor looks, their log is brought
up to date by recomputing what the current orders, status history and admin
messages imply and appending whatever is missing. Ids are deterministic:

    notif-<orderId>-<STATUS>          status updates
    notif-admin-new-order-<orderId>   admin "new order" alert
    notif-<messageId>                 direct admin messages

so re-running the derivation any number of times adds nothing new.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum as PyEnum
from typing import Iterable

from sqlalchemy import delete, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from rasoi.config import settings
from rasoi.models.common import as_utc
from rasoi.models.core import (
    AdminMessage, Notification, Order, OrderStatus, OrderStatusEvent, UserRole,
)
from rasoi.services.lifecycle import PAYMENT_TIMEOUT
from rasoi.util.security import Principal

logger = logging.getLogger(__name__)

S = OrderStatus


class NotificationKind(PyEnum):
    ORDER_UPDATE = "order_update"
    ADMIN_MESSAGE = "admin_message"
    ADMIN_NEW_ORDER = "admin_new_order"
    ADMIN_ORDER_ACCEPTED = "admin_order_accepted"
    ADMIN_ORDER_DELIVERED = "admin_order_delivered"
    ADMIN_ORDER_CANCELLED = "admin_order_cancelled"
    DELIVERY_AVAILABLE = "delivery_available"
    DELIVERY_CANCELLED = "delivery_cancelled"


# what a customer is told for each status their order reaches
CUSTOMER_COPY: dict[OrderStatus, tuple[str, str] | None] = {
    S.PAYMENT_PENDING: None,
    S.ORDER_PLACED: ("Order placed", "We have received order #{short}."),
    S.CONFIRMED: ("Order confirmed", "The kitchen has confirmed order #{short}."),
    S.PREPARING: ("Being prepared", "Your food for order #{short} is being prepared."),
    S.SHIPPED: ("Packed", "Order #{short} is packed and waiting for a rider."),
    S.OUT_FOR_DELIVERY: ("Out for delivery", "{rider} is on the way with order #{short}."),
    S.DELIVERED: ("Delivered", "Order #{short} has been delivered. Enjoy your meal!"),
    S.CANCELLED: ("Order cancelled", "Order #{short} has been cancelled."),
}
PAYMENT_TIMEOUT_COPY = ("Payment not completed",
                        "We did not receive payment for order #{short}, so it was not placed.")

# which transitions the admin console hears about
ADMIN_KINDS: dict[OrderStatus, NotificationKind | None] = {
    S.PAYMENT_PENDING: None,
    S.ORDER_PLACED: NotificationKind.ADMIN_NEW_ORDER,
    S.CONFIRMED: None,
    S.PREPARING: None,
    S.SHIPPED: None,
    S.OUT_FOR_DELIVERY: NotificationKind.ADMIN_ORDER_ACCEPTED,
    S.DELIVERED: NotificationKind.ADMIN_ORDER_DELIVERED,
    S.CANCELLED: NotificationKind.ADMIN_ORDER_CANCELLED,
}

for _table in (CUSTOMER_COPY, ADMIN_KINDS):
    _missing = set(OrderStatus) - set(_table)
    if _missing:
        raise RuntimeError(f"notification table missing statuses: {sorted(s.value for s in _missing)}")


@dataclass(frozen=True)
class Actor:
    role: UserRole
    user_id: str | None = None

    @classmethod
    def of(cls, principal: Principal) -> "Actor":
        if principal.is_admin:
            return cls(UserRole.ADMIN)
        return cls(principal.role, principal.sub)

    @property
    def key(self) -> str:
        if self.role is UserRole.ADMIN:
            return "admin"
        if self.role is UserRole.RIDER:
            return f"rider:{self.user_id}"
        return f"user:{self.user_id}"


@dataclass(frozen=True)
class Derived:
    id: str
    kind: NotificationKind
    at: datetime
    title: str
    message: str
    link: str | None = None
    order_id: str | None = None
    order_status: OrderStatus | None = None

    @property
    def sort_key(self) -> tuple[datetime, str]:
        return (self.at, self.id)


def status_notif_id(order_id: str, status: OrderStatus) -> str:
    return f"notif-{order_id}-{status.value}"

def new_order_notif_id(order_id: str) -> str:
    return f"notif-admin-new-order-{order_id}"

def message_notif_id(message_id: str) -> str:
    return f"notif-{message_id}"

def _short(order_id: str) -> str:
    return order_id[-6:].upper()


def _payment_timed_out(order: Order, ev: OrderStatusEvent) -> bool:
    return ev.status is S.CANCELLED and order.cancellation_reason == PAYMENT_TIMEOUT


def _for_customer(order: Order, ev: OrderStatusEvent) -> Derived | None:
    copy = PAYMENT_TIMEOUT_COPY if _payment_timed_out(order, ev) else CUSTOMER_COPY[ev.status]
    if copy is None:
        return None
    title, text = copy
    return Derived(
        id=status_notif_id(order.id, ev.status),
        kind=NotificationKind.ORDER_UPDATE,
        at=as_utc(ev.at),
        title=title,
        message=text.format(short=_short(order.id), rider=order.rider_name or "Your rider"),
        link=f"/my-orders?id={order.id}",
        order_id=order.id,
        order_status=ev.status,
    )


def _for_admin(order: Order, ev: OrderStatusEvent) -> Derived | None:
    kind = ADMIN_KINDS[ev.status]
    # an unpaid order never reached the admin as a new order
    if kind is None or _payment_timed_out(order, ev):
        return None
    short = _short(order.id)
    at = as_utc(ev.at)
    link = f"/admin/orders?id={order.id}"
    if kind is NotificationKind.ADMIN_NEW_ORDER:
        return Derived(new_order_notif_id(order.id), kind, at, "New order",
                       f"Order #{short} from {order.customer_name} for {order.grand_total}.",
                       link, order.id, ev.status)
    if kind is NotificationKind.ADMIN_ORDER_ACCEPTED:
        who = order.rider_name or "A rider"
        return Derived(status_notif_id(order.id, ev.status), kind, at, "Order picked up",
                       f"{who} is delivering order #{short}.", link, order.id, ev.status)
    if kind is NotificationKind.ADMIN_ORDER_DELIVERED:
        return Derived(status_notif_id(order.id, ev.status), kind, at, "Order delivered",
                       f"Order #{short} was delivered.", link, order.id, ev.status)
    return Derived(status_notif_id(order.id, ev.status), kind, at, "Order cancelled",
                   f"Order #{short} was cancelled.", link, order.id, ev.status)


def _for_rider(rider_id: str, order: Order, ev: OrderStatusEvent) -> Derived | None:
    short = _short(order.id)
    if ev.status is S.CONFIRMED and order.status is S.CONFIRMED and order.rider_id is None:
        return Derived(status_notif_id(order.id, ev.status), NotificationKind.DELIVERY_AVAILABLE, as_utc(ev.at),
                       "New delivery available", f"Order #{short} is ready to be picked up.",
                       f"/delivery/orders/{order.id}", order.id, ev.status)
    if ev.status is S.CANCELLED and order.rider_id == rider_id:
        return Derived(status_notif_id(order.id, ev.status), NotificationKind.DELIVERY_CANCELLED, as_utc(ev.at),
                       "Delivery cancelled", f"Order #{short} was cancelled.",
                       f"/delivery/orders/{order.id}", order.id, ev.status)
    return None


def derive(
    actor: Actor,
    orders: dict[str, Order],
    events: Iterable[OrderStatusEvent],
    messages: Iterable[AdminMessage],
    existing_ids: set[str],
    floor: tuple[datetime, str] | None = None,
) -> list[Derived]:
    """
    Compute the notifications `actor` is owed by this snapshot and does not
    have yet. Pure: no reads, no writes.

    `floor` is the oldest entry of a full log; anything older would be
    truncated straight away, so it is not generated at all.
    """
    out: dict[str, Derived] = {}

    for ev in events:
        order = orders.get(ev.order_id)
        if order is None:
            continue
        if actor.role is UserRole.CUSTOMER:
            n = _for_customer(order, ev) if order.user_id == actor.user_id else None
        elif actor.role is UserRole.ADMIN:
            n = _for_admin(order, ev)
        else:
            n = _for_rider(actor.user_id, order, ev)
        if n is not None:
            out[n.id] = n

    if actor.role is UserRole.CUSTOMER:
        for m in messages:
            if m.user_id != actor.user_id:
                continue
            nid = message_notif_id(m.id)
            out[nid] = Derived(nid, NotificationKind.ADMIN_MESSAGE, as_utc(m.created_at), m.title, m.message)

    fresh = [n for n in out.values() if n.id not in existing_ids]
    if floor is not None:
        fresh = [n for n in fresh if n.sort_key > floor]
    return sorted(fresh, key=lambda n: n.sort_key)


def _snapshot(db: Session, actor: Actor) -> tuple[dict[str, Order], list[OrderStatusEvent], list[AdminMessage]]:
    q = select(Order)
    if actor.role is UserRole.CUSTOMER:
        q = q.where(Order.user_id == actor.user_id)
    elif actor.role is UserRole.RIDER:
        q = q.where(or_(
            Order.rider_id == actor.user_id,
            (Order.status == S.CONFIRMED) & Order.rider_id.is_(None),
        ))
    orders = {o.id: o for o in db.scalars(q)}

    events: list[OrderStatusEvent] = []
    if orders:
        evq = select(OrderStatusEvent).where(OrderStatusEvent.order_id.in_(list(orders))).order_by(OrderStatusEvent.seq)
        events = list(db.scalars(evq))

    messages: list[AdminMessage] = []
    if actor.role is UserRole.CUSTOMER:
        messages = list(db.scalars(select(AdminMessage).where(AdminMessage.user_id == actor.user_id)))
    return orders, events, messages


def _log(db: Session, actor: Actor) -> list[Notification]:
    q = (
        select(Notification)
        .where(Notification.actor_key == actor.key)
        .order_by(Notification.at.desc(), Notification.notif_id.desc())
    )
    return list(db.scalars(q))


def sync_notifications(db: Session, actor: Actor, limit: int | None = None) -> int:
    """
    Bring `actor`'s log up to date: derive, append, truncate to the newest
    `limit` entries, persist. Returns how many notifications were added.
    """
    limit = limit or settings.NOTIFICATION_LOG_LIMIT
    # a concurrent sync for the same actor may insert the same ids first
    for attempt in range(2):
        try:
            added = _sync_once(db, actor, limit)
            db.commit()
            return added
        except IntegrityError:
            db.rollback()
            logger.info("concurrent notification sync for %s, re-deriving", actor.key)
    return 0


def _sync_once(db: Session, actor: Actor, limit: int) -> int:
    log = _log(db, actor)
    existing_ids = {n.notif_id for n in log}
    floor = None
    if len(log) >= limit:
        oldest = log[limit - 1]
        floor = (as_utc(oldest.at), oldest.notif_id)

    orders, events, messages = _snapshot(db, actor)
    fresh = derive(actor, orders, events, messages, existing_ids, floor)
    for n in fresh:
        db.add(Notification(
            actor_key=actor.key, notif_id=n.id, kind=n.kind.value, at=n.at,
            title=n.title, message=n.message, read=False, link=n.link,
            order_id=n.order_id, order_status=n.order_status.value if n.order_status else None,
        ))
    db.flush()

    if fresh:
        keep = select(Notification.id).where(Notification.actor_key == actor.key) \
            .order_by(Notification.at.desc(), Notification.notif_id.desc()).limit(limit)
        db.execute(
            delete(Notification)
            .where(Notification.actor_key == actor.key, Notification.id.not_in(keep))
            .execution_options(synchronize_session=False)
        )
        logger.debug("added %d notifications for %s", len(fresh), actor.key)
    return len(fresh)


def list_notifications(db: Session, actor: Actor) -> list[Notification]:
    sync_notifications(db, actor)
    return _log(db, actor)


def mark_read(db: Session, actor: Actor, ids: list[str] | None = None) -> int:
    """Bulk, best-effort: flag the given (or all) notifications as read."""
    stmt = update(Notification).where(Notification.actor_key == actor.key, Notification.read.is_(False))
    if ids:
        stmt = stmt.where(Notification.notif_id.in_(ids))
    res = db.execute(stmt.values(read=True).execution_options(synchronize_session=False))
    db.commit()
    return res.rowcount
