import json
import logging

from fastapi import APIRouter, Depends, Header, HTTPException
from fastapi.responses import JSONResponse, StreamingResponse
from sqlalchemy.orm import Session

from rasoi.db import get_db
from rasoi.deps import current_user, require_auth, require_role
from rasoi.models.common import utcnow
from rasoi.models.core import Order, OrderStatus, User, UserRole
from rasoi.schemas.common import ErrorOut
from rasoi.schemas.orders import CancelIn, CheckoutIn, OrderOut, ReviewIn, StatusIn
from rasoi.services import checkout, lifecycle
from rasoi.services.feed import OrderChange
from rasoi.services.store import Conflict, OrderStore, run_with_retry
from rasoi.util.security import Principal

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/orders", tags=["orders"])

KEEPALIVE_SECONDS = 15


def conflict_response() -> JSONResponse:
    return JSONResponse(status_code=409, content={"error": "conflict", "detail": "order changed, reload and try again"})


def _out(o: Order, principal: Principal) -> OrderOut:
    return OrderOut.from_order(o, show_code=o.user_id == principal.sub)


def _visible(o: Order, principal: Principal) -> bool:
    if principal.is_admin:
        return True
    if principal.is_rider:
        return o.rider_id == principal.sub
    return o.user_id == principal.sub


def change_filter(principal: Principal):
    """Which stream changes a caller may see."""
    if principal.is_admin:
        return None
    if principal.is_rider:
        # unassigned CONFIRMED orders are up for grabs, so every rider hears about them
        return lambda c: c.rider_id == principal.sub or (c.status is OrderStatus.CONFIRMED and c.rider_id is None)
    return lambda c: c.user_id == principal.sub


@router.post("/", response_model=OrderOut)
def create_order(body: CheckoutIn, db: Session = Depends(get_db), user: User = Depends(current_user)):
    if user.role is not UserRole.CUSTOMER:
        raise HTTPException(403, detail="only customers can place orders")
    o = run_with_retry(db, lambda store: checkout.place_order(store, user, body))
    return OrderOut.from_order(o, show_code=True)


@router.get("/")
def list_orders(
    status: str | None = None,
    page: int = 1,
    size: int = 20,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_auth),
):
    """
    List orders (paged), newest first. Customers see their own orders, riders
    the ones assigned to them, admins everything.

    Response shape: { "items": [ ...orders... ], "total": <int> }
    """
    q = db.query(Order)
    if principal.is_rider:
        q = q.filter(Order.rider_id == principal.sub)
    elif not principal.is_admin:
        q = q.filter(Order.user_id == principal.sub)

    if status:
        try:
            wanted = OrderStatus(status)
        except ValueError:
            raise HTTPException(status_code=400, detail="invalid status")
        q = q.filter(Order.status == wanted)

    if page < 1:
        page = 1
    if size < 1:
        size = 20
    total = q.count()
    rows = q.order_by(Order.created_at.desc()).offset((page - 1) * size).limit(size).all()
    return {"items": [_out(o, principal) for o in rows], "total": total}


@router.get("/stream")
def stream_orders(
    since: int = 0,
    last_event_id: str | None = Header(default=None),
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_auth),
):
    """
    Server-sent events of status changes the caller may see. Resume with
    `?since=<seq>` or the standard Last-Event-ID header.
    """
    if last_event_id and last_event_id.isdigit():
        since = max(since, int(last_event_id))
    predicate = change_filter(principal)
    store = OrderStore(db)
    # subscribe before reading the backlog so nothing committed in between is missed
    sub = store.subscribe(predicate)
    backlog = store.changes_since(since, predicate)
    db.close()
    replayed = {c.seq for c in backlog}

    def _frame(c: OrderChange) -> str:
        return f"id: {c.seq}\nevent: order\ndata: {json.dumps(c.as_dict())}\n\n"

    def events():
        try:
            for c in backlog:
                yield _frame(c)
            while True:
                c = sub.get(timeout=KEEPALIVE_SECONDS)
                if c is None:
                    yield ": keep-alive\n\n"
                    continue
                if c.seq in replayed:
                    continue
                yield _frame(c)
        finally:
            sub.close()

    return StreamingResponse(events(), media_type="text/event-stream",
                             headers={"Cache-Control": "no-cache"})


@router.post("/expire-pending")
def expire_pending(db: Session = Depends(get_db), _=Depends(require_role(UserRole.ADMIN))):
    expired = run_with_retry(db, lambda store: lifecycle.expire_stale_payments(store))
    return {"expired": expired}


@router.get("/{order_id}", response_model=OrderOut)
def get_order(order_id: str, db: Session = Depends(get_db), principal: Principal = Depends(require_auth)):
    o = OrderStore(db).get(order_id)
    # riders may also look at an order they could claim
    claimable = o is not None and principal.is_rider and o.status is OrderStatus.CONFIRMED and o.rider_id is None
    if not o or not (_visible(o, principal) or claimable):
        raise HTTPException(404, detail="order not found")
    return _out(o, principal)


@router.post("/{order_id}/status", response_model=OrderOut, responses={409: {"model": ErrorOut}})
def set_status(order_id: str, body: StatusIn, db: Session = Depends(get_db),
               principal: Principal = Depends(require_role(UserRole.ADMIN))):
    target = OrderStatus(body.status)
    result = run_with_retry(db, lambda store: lifecycle.update_status(store, order_id, target, principal))
    if isinstance(result, Conflict):
        return conflict_response()
    return _out(result, principal)


@router.post("/{order_id}/cancel", response_model=OrderOut, responses={409: {"model": ErrorOut}})
def cancel_order(order_id: str, body: CancelIn | None = None, db: Session = Depends(get_db),
                 principal: Principal = Depends(require_auth)):
    reason = body.reason if body else None
    result = run_with_retry(db, lambda store: lifecycle.cancel(store, order_id, principal, reason))
    if isinstance(result, Conflict):
        return conflict_response()
    return _out(result, principal)


@router.post("/{order_id}/review", response_model=OrderOut)
def review_order(order_id: str, body: ReviewIn, db: Session = Depends(get_db),
                 principal: Principal = Depends(require_auth)):
    def _work(store: OrderStore):
        o = store.reload(order_id)
        if not o or o.user_id != principal.sub:
            raise HTTPException(404, detail="order not found")
        if o.status is not OrderStatus.DELIVERED:
            raise HTTPException(409, detail="only delivered orders can be reviewed")
        if o.review_rating is not None:
            raise HTTPException(409, detail="order already reviewed")
        result = store.conditional_update(
            order_id,
            {"status": OrderStatus.DELIVERED, "version": o.version, "review_rating": None},
            {"review_rating": body.rating, "review_comment": body.comment, "reviewed_at": utcnow()},
        )
        if isinstance(result, Conflict):
            store.rollback()
            return result
        store.commit()
        return result

    result = run_with_retry(db, _work)
    if isinstance(result, Conflict):
        return conflict_response()
    return _out(result, principal)
