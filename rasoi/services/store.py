"""
Order persistence. Everything that reads or writes the order table goes
through ``OrderStore``; the conditional update here is the one primitive the
payment, lifecycle and delivery code build their atomicity on.
"""
import logging
import secrets
import time
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Callable, TypeVar

from sqlalchemy import select, update
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from rasoi.config import settings
from rasoi.models.common import utcnow
from rasoi.models.core import Order, OrderItem, OrderStatus, OrderStatusEvent, PayMethod
from rasoi.services.errors import StoreUnavailable
from rasoi.services.feed import OrderChange, OrderFeed, Subscription, feed as default_feed
from rasoi.services.pricing import PriceBreakdown

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class DraftLine:
    item_id: str
    name: str
    unit_price: Decimal
    qty: int


@dataclass
class OrderDraft:
    user_id: str
    customer_name: str
    shipping_address: str
    payment_method: PayMethod
    lines: list[DraftLine]
    price: PriceBreakdown
    tax_rate: Decimal
    status: OrderStatus = OrderStatus.PAYMENT_PENDING
    customer_email: str | None = None
    customer_phone: str | None = None
    shipping_lat: float | None = None
    shipping_lng: float | None = None
    coupon_code: str | None = None
    gateway_order_id: str | None = None
    gateway_payment_id: str | None = None


@dataclass(frozen=True)
class Conflict:
    """A conditional update lost: the predicate no longer held."""
    current: Order | None


def new_delivery_code() -> str:
    return f"{1000 + secrets.randbelow(9000)}"


class OrderStore:
    def __init__(self, db: Session, feed: OrderFeed = default_feed):
        self.db = db
        self.feed = feed
        self._pending: list[OrderChange] = []

    # ── reads ───────────────────────────────────────────────────────────────
    def get(self, order_id: str) -> Order | None:
        return self.db.get(Order, order_id)

    def reload(self, order_id: str) -> Order | None:
        return self.db.get(Order, order_id, populate_existing=True)

    def by_gateway_order(self, gateway_order_id: str) -> Order | None:
        q = select(Order).where(Order.gateway_order_id == gateway_order_id).execution_options(populate_existing=True)
        return self.db.scalars(q).first()

    def changes_since(self, seq: int, predicate: Callable[[OrderChange], bool] | None = None) -> list[OrderChange]:
        """Committed status events after `seq`, in seq order (used to resume a stream)."""
        q = (
            select(OrderStatusEvent, Order.user_id, Order.rider_id)
            .join(Order, Order.id == OrderStatusEvent.order_id)
            .where(OrderStatusEvent.seq > seq)
            .order_by(OrderStatusEvent.seq)
        )
        out = []
        for ev, user_id, rider_id in self.db.execute(q):
            change = OrderChange(ev.seq, ev.order_id, ev.status, ev.version, ev.at, user_id, rider_id)
            if predicate is None or predicate(change):
                out.append(change)
        return out

    # ── writes ──────────────────────────────────────────────────────────────
    def create(self, draft: OrderDraft) -> Order:
        """
        Insert the order, its lines and its first status event. Raises
        IntegrityError if the gateway order id is already taken.
        """
        o = Order(
            user_id=draft.user_id,
            customer_name=draft.customer_name,
            customer_email=draft.customer_email,
            customer_phone=draft.customer_phone,
            shipping_address=draft.shipping_address,
            shipping_lat=draft.shipping_lat,
            shipping_lng=draft.shipping_lng,
            payment_method=draft.payment_method,
            subtotal=draft.price.subtotal,
            discount_amount=draft.price.discount_amount,
            coupon_code=draft.coupon_code,
            delivery_fee=draft.price.delivery_fee,
            tax_rate=draft.tax_rate,
            tax_amount=draft.price.tax_amount,
            grand_total=draft.price.grand_total,
            delivery_code=new_delivery_code(),
            status=draft.status,
            gateway_order_id=draft.gateway_order_id,
            gateway_payment_id=draft.gateway_payment_id,
            version=1,
        )
        self.db.add(o)
        self.db.flush()
        for pos, line in enumerate(draft.lines):
            self.db.add(OrderItem(
                order_id=o.id, position=pos, item_id=line.item_id,
                name=line.name, unit_price=line.unit_price, qty=line.qty,
            ))
        self.append_event(o)
        self.db.flush()
        self.db.refresh(o)
        return o

    def conditional_update(self, order_id: str, expect: dict[str, Any], changes: dict[str, Any]) -> Order | Conflict:
        """
        Apply `changes` only if every column in `expect` currently holds the
        given value (None means IS NULL). Bumps `version`. Losing the race is
        reported as Conflict, not raised.
        """
        conds = [Order.id == order_id]
        for col, val in expect.items():
            column = getattr(Order, col)
            conds.append(column.is_(None) if val is None else column == val)

        stmt = (
            update(Order)
            .where(*conds)
            .values(**changes, version=Order.version + 1, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        res = self.db.execute(stmt)
        current = self.reload(order_id)
        if res.rowcount != 1:
            return Conflict(current)
        return current

    def append_event(self, order: Order) -> OrderStatusEvent:
        ev = OrderStatusEvent(order_id=order.id, status=order.status, version=order.version, at=utcnow())
        self.db.add(ev)
        self.db.flush()
        self._pending.append(OrderChange(ev.seq, order.id, order.status, order.version, ev.at, order.user_id, order.rider_id))
        return ev

    def commit(self) -> None:
        self.db.commit()
        pending, self._pending = self._pending, []
        for change in pending:
            self.feed.publish(change)

    def rollback(self) -> None:
        self.db.rollback()
        self._pending.clear()

    def subscribe(self, predicate: Callable[[OrderChange], bool] | None = None) -> Subscription:
        return self.feed.subscribe(predicate)


def run_with_retry(db: Session, work: Callable[[OrderStore], T], attempts: int | None = None) -> T:
    """
    Run one unit of work against a fresh OrderStore, retrying the whole unit
    on transient store failures. `work` is responsible for committing.
    """
    attempts = attempts or settings.STORE_RETRY_ATTEMPTS
    for attempt in range(1, attempts + 1):
        store = OrderStore(db)
        try:
            return work(store)
        except OperationalError as e:
            store.rollback()
            logger.warning("store unavailable (attempt %d/%d): %s", attempt, attempts, e)
            if attempt < attempts:
                time.sleep(0.05 * attempt)
    raise StoreUnavailable("order store is unavailable, try again")
