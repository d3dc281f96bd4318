"""
Rider side of the lifecycle: claiming confirmed orders, proving delivery with
the customer's code, and the payout counter.
"""
import hmac
import logging
from enum import Enum as PyEnum

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from rasoi.models.common import utcnow
from rasoi.models.core import Order, OrderStatus, Rider
from rasoi.services.errors import Forbidden, IllegalTransition, NotFound
from rasoi.services.lifecycle import apply_transition, is_claim_edge
from rasoi.services.store import Conflict, OrderStore
from rasoi.util.audit import audit

logger = logging.getLogger(__name__)

S = OrderStatus


class ClaimResult(PyEnum):
    SUCCESS = "SUCCESS"
    ALREADY_CLAIMED = "ALREADY_CLAIMED"
    NOT_ELIGIBLE = "NOT_ELIGIBLE"


class ConfirmResult(PyEnum):
    DELIVERED = "DELIVERED"
    CODE_MISMATCH = "CODE_MISMATCH"


def _classify(order: Order, rider_id: str) -> ClaimResult:
    if order.rider_id == rider_id:
        return ClaimResult.SUCCESS
    if order.rider_id is not None:
        return ClaimResult.ALREADY_CLAIMED
    return ClaimResult.NOT_ELIGIBLE


def claim(store: OrderStore, order_id: str, rider_id: str, rider_name: str) -> tuple[ClaimResult, Order]:
    """
    Make `rider_id` the exclusive deliverer of a CONFIRMED, unassigned order.
    Status, rider id and rider name change in a single guarded write, so of
    any number of riders racing for the same order exactly one wins. Losers
    get ALREADY_CLAIMED and are not retried.
    """
    o = store.reload(order_id)
    if not o:
        raise NotFound("order not found")
    if o.rider_id is not None or not is_claim_edge(o.status, S.OUT_FOR_DELIVERY):
        return _classify(o, rider_id), o

    result = apply_transition(
        store, o, S.OUT_FOR_DELIVERY,
        changes={"rider_id": rider_id, "rider_name": rider_name},
        expect={"rider_id": None},
        edge_ok=is_claim_edge,
    )
    if isinstance(result, Conflict):
        store.rollback()
        outcome = _classify(result.current, rider_id)
        logger.info("rider %s lost claim on %s: %s", rider_id, order_id, outcome.value)
        return outcome, result.current

    store.commit()
    logger.info("rider %s claimed order %s", rider_id, order_id)
    return ClaimResult.SUCCESS, result


def confirm(store: OrderStore, order_id: str, rider_id: str, entered_code: str) -> tuple[ConfirmResult, Order]:
    """Check the code the customer handed the rider and, on a match, mark the order DELIVERED."""
    o = store.reload(order_id)
    if not o:
        raise NotFound("order not found")
    if o.status is not S.OUT_FOR_DELIVERY:
        raise IllegalTransition(o.status, S.DELIVERED)
    if o.rider_id != rider_id:
        raise Forbidden("order is assigned to another rider")

    if not hmac.compare_digest(o.delivery_code.encode(), (entered_code or "").strip().encode()):
        logger.info("wrong delivery code for order %s from rider %s", order_id, rider_id)
        return ConfirmResult.CODE_MISMATCH, o

    result = apply_transition(store, o, S.DELIVERED, expect={"rider_id": rider_id})
    if isinstance(result, Conflict):
        store.rollback()
        raise IllegalTransition(result.current.status, S.DELIVERED)
    store.commit()
    return ConfirmResult.DELIVERED, result


def available_orders(db: Session) -> list[Order]:
    q = (
        select(Order)
        .where(Order.status == S.CONFIRMED, Order.rider_id.is_(None))
        .order_by(Order.created_at)
    )
    return list(db.scalars(q))


def rider_orders(db: Session, rider_id: str) -> list[Order]:
    q = select(Order).where(Order.rider_id == rider_id).order_by(Order.created_at.desc())
    return list(db.scalars(q))


def delivered_count(db: Session, rider: Rider) -> int:
    """Deliveries since the rider was last paid, counted from order history every time."""
    q = (
        select(func.count())
        .select_from(Order)
        .where(Order.rider_id == rider.id, Order.status == S.DELIVERED)
    )
    if rider.last_payout_at is not None:
        q = q.where(Order.delivered_at > rider.last_payout_at)
    return int(db.scalar(q) or 0)


def clear_delivery_count(db: Session, rider_id: str, actor_id: str) -> Rider:
    rider = db.get(Rider, rider_id)
    if not rider:
        raise NotFound("rider not found")
    before = rider.last_payout_at
    rider.last_payout_at = utcnow()
    audit(db, actor_id, "Rider", rider_id, "PAYOUT",
          before={"last_payout_at": before}, after={"last_payout_at": rider.last_payout_at})
    db.commit()
    logger.info("payout recorded for rider %s", rider_id)
    return rider
