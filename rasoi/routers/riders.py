from typing import List

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from rasoi.db import get_db
from rasoi.deps import current_rider, require_role
from rasoi.models.core import Rider, User, UserRole
from rasoi.schemas.common import ErrorOut
from rasoi.schemas.orders import OrderOut
from rasoi.schemas.riders import ClaimOut, ConfirmIn, RiderIn, RiderOut
from rasoi.services import delivery
from rasoi.services.delivery import ClaimResult, ConfirmResult
from rasoi.services.store import run_with_retry
from rasoi.util.audit import audit
from rasoi.util.security import Principal, hash_pw

router = APIRouter(prefix="/riders", tags=["riders"])


def _rider_out(db: Session, r: Rider) -> RiderOut:
    return RiderOut(id=r.id, full_name=r.full_name, email=r.email, phone=r.phone, active=r.active,
                    last_payout_at=r.last_payout_at, delivered_count=delivery.delivered_count(db, r))


# ── admin ───────────────────────────────────────────────────────────────────
@router.post("/", response_model=RiderOut)
def create_rider(body: RiderIn, db: Session = Depends(get_db),
                 principal: Principal = Depends(require_role(UserRole.ADMIN))):
    u = User(name=body.full_name, email=body.email, phone=body.phone,
             pass_hash=hash_pw(body.password), role=UserRole.RIDER)
    db.add(u)
    try:
        db.flush()
    except IntegrityError:
        db.rollback()
        raise HTTPException(409, detail="An account with this email or phone already exists")
    r = Rider(id=u.id, full_name=body.full_name, email=body.email, phone=body.phone)
    db.add(r)
    audit(db, principal.sub, "Rider", u.id, "CREATE", after={"full_name": body.full_name, "phone": body.phone})
    db.commit()
    return _rider_out(db, r)


@router.get("/", response_model=List[RiderOut])
def list_riders(db: Session = Depends(get_db), _=Depends(require_role(UserRole.ADMIN))):
    return [_rider_out(db, r) for r in db.query(Rider).order_by(Rider.full_name).all()]


@router.post("/{rider_id}/clear-count", response_model=RiderOut)
def clear_count(rider_id: str, db: Session = Depends(get_db),
                principal: Principal = Depends(require_role(UserRole.ADMIN))):
    r = delivery.clear_delivery_count(db, rider_id, principal.sub)
    return _rider_out(db, r)


# ── rider ───────────────────────────────────────────────────────────────────
@router.get("/me", response_model=RiderOut)
def me(db: Session = Depends(get_db), rider: Rider = Depends(current_rider)):
    return _rider_out(db, rider)


@router.get("/available", response_model=List[OrderOut])
def available(db: Session = Depends(get_db), rider: Rider = Depends(current_rider)):
    return [OrderOut.from_order(o) for o in delivery.available_orders(db)]


@router.get("/me/orders", response_model=List[OrderOut])
def my_orders(db: Session = Depends(get_db), rider: Rider = Depends(current_rider)):
    return [OrderOut.from_order(o) for o in delivery.rider_orders(db, rider.id)]


@router.post("/orders/{order_id}/claim", response_model=ClaimOut, responses={409: {"model": ErrorOut}})
def claim_order(order_id: str, db: Session = Depends(get_db), rider: Rider = Depends(current_rider)):
    result, o = run_with_retry(db, lambda store: delivery.claim(store, order_id, rider.id, rider.full_name))
    if result is ClaimResult.ALREADY_CLAIMED:
        return JSONResponse(status_code=409, content={"error": "already_claimed", "detail": "this order was just taken"})
    if result is ClaimResult.NOT_ELIGIBLE:
        return JSONResponse(status_code=409, content={
            "error": "not_eligible", "detail": f"order is {o.status.value} and cannot be claimed"})
    return ClaimOut(result=result.value, order=OrderOut.from_order(o))


@router.post("/orders/{order_id}/confirm", response_model=OrderOut, responses={400: {"model": ErrorOut}})
def confirm_delivery(order_id: str, body: ConfirmIn, db: Session = Depends(get_db),
                     rider: Rider = Depends(current_rider)):
    result, o = run_with_retry(db, lambda store: delivery.confirm(store, order_id, rider.id, body.code))
    if result is ConfirmResult.CODE_MISMATCH:
        return JSONResponse(status_code=400, content={"error": "code_mismatch", "detail": "the delivery code does not match"})
    return OrderOut.from_order(o)
