from typing import List

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from rasoi.db import get_db
from rasoi.deps import require_auth, require_role
from rasoi.models.common import as_utc, utcnow
from rasoi.models.core import Coupon, UserRole
from rasoi.schemas.coupons import CouponCheckOut, CouponIn, CouponOut, CouponPatch
from rasoi.services import coupons
from rasoi.util.audit import audit
from rasoi.util.security import Principal

router = APIRouter(prefix="/coupons", tags=["coupons"])


def _out(c: Coupon) -> CouponOut:
    return CouponOut(id=c.id, code=c.code, discount_percent=c.discount_percent,
                     valid_from=c.valid_from, valid_until=c.valid_until, active=c.active)


def _get(db: Session, code: str) -> Coupon:
    c = db.query(Coupon).filter(Coupon.code == coupons.normalize_code(code)).first()
    if not c:
        raise HTTPException(404, detail="coupon not found")
    return c


@router.get("/", response_model=List[CouponOut])
def list_coupons(db: Session = Depends(get_db), _=Depends(require_role(UserRole.ADMIN))):
    return [_out(c) for c in db.query(Coupon).order_by(Coupon.code).all()]


@router.post("/", response_model=CouponOut)
def create_coupon(body: CouponIn, db: Session = Depends(get_db),
                  principal: Principal = Depends(require_role(UserRole.ADMIN))):
    code = coupons.normalize_code(body.code)
    c = Coupon(code=code, discount_percent=body.discount_percent,
               valid_from=body.valid_from, valid_until=body.valid_until, active=body.active)
    db.add(c)
    try:
        db.flush()
    except IntegrityError:
        db.rollback()
        raise HTTPException(409, detail=f"coupon {code} already exists")
    audit(db, principal.sub, "Coupon", c.id, "CREATE", after=body.model_dump())
    db.commit()
    return _out(c)


@router.patch("/{code}", response_model=CouponOut)
def update_coupon(code: str, body: CouponPatch, db: Session = Depends(get_db),
                  principal: Principal = Depends(require_role(UserRole.ADMIN))):
    c = _get(db, code)
    before = _out(c).model_dump()
    for k, v in body.model_dump(exclude_unset=True).items():
        setattr(c, k, v)
    if as_utc(c.valid_until) < as_utc(c.valid_from):
        raise HTTPException(422, detail="valid_until must not be before valid_from")
    audit(db, principal.sub, "Coupon", c.id, "UPDATE", before=before, after=body.model_dump(exclude_unset=True))
    db.commit()
    return _out(c)


@router.delete("/{code}")
def delete_coupon(code: str, db: Session = Depends(get_db),
                  principal: Principal = Depends(require_role(UserRole.ADMIN))):
    c = _get(db, code)
    audit(db, principal.sub, "Coupon", c.id, "DELETE", before=_out(c).model_dump())
    db.delete(c)
    db.commit()
    return {"deleted": c.code}


@router.get("/{code}/validate", response_model=CouponCheckOut)
def validate_coupon(code: str, db: Session = Depends(get_db), _: Principal = Depends(require_auth)):
    checked = coupons.validate(db, code, utcnow())
    if isinstance(checked, coupons.Rejected):
        return CouponCheckOut(valid=False, code=coupons.normalize_code(code), reason=checked.reason.value)
    return CouponCheckOut(valid=True, code=checked.code, discount_percent=checked.discount_percent)
