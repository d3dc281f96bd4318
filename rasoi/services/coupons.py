from dataclasses import dataclass
from datetime import datetime
from enum import Enum as PyEnum

from sqlalchemy.orm import Session

from rasoi.models.common import as_utc
from rasoi.models.core import Coupon


class RejectReason(PyEnum):
    NOT_FOUND = "NOT_FOUND"
    INACTIVE = "INACTIVE"
    EXPIRED = "EXPIRED"
    NOT_YET_VALID = "NOT_YET_VALID"


@dataclass(frozen=True)
class Rejected:
    reason: RejectReason


def normalize_code(code: str) -> str:
    return (code or "").strip().upper()


def check_coupon(coupon: Coupon | None, now: datetime) -> Coupon | Rejected:
    if coupon is None:
        return Rejected(RejectReason.NOT_FOUND)
    if not coupon.active:
        return Rejected(RejectReason.INACTIVE)
    if now < as_utc(coupon.valid_from):
        return Rejected(RejectReason.NOT_YET_VALID)
    if now > as_utc(coupon.valid_until):
        return Rejected(RejectReason.EXPIRED)
    return coupon


def validate(db: Session, code: str, now: datetime) -> Coupon | Rejected:
    """Look a code up (trimmed, case-insensitive) and check it is usable at `now`. Read-only."""
    coupon = db.query(Coupon).filter(Coupon.code == normalize_code(code)).first()
    return check_coupon(coupon, now)
