from datetime import datetime, timezone
from pydantic import BaseModel, Field, field_validator, model_validator
from typing import Optional


def _utc(v: datetime | None) -> datetime | None:
    # naive input is taken as UTC; everything is stored as UTC
    if v is None:
        return v
    return v.replace(tzinfo=timezone.utc) if v.tzinfo is None else v.astimezone(timezone.utc)


class CouponIn(BaseModel):
    code: str = Field(min_length=3, max_length=20)
    discount_percent: int = Field(ge=1, le=100)
    valid_from: datetime
    valid_until: datetime
    active: bool = True

    normalize_window = field_validator("valid_from", "valid_until")(_utc)

    @model_validator(mode="after")
    def _window(self):
        if self.valid_until < self.valid_from:
            raise ValueError("valid_until must not be before valid_from")
        return self

class CouponPatch(BaseModel):
    discount_percent: Optional[int] = Field(default=None, ge=1, le=100)
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None
    active: Optional[bool] = None

    normalize_window = field_validator("valid_from", "valid_until")(_utc)

class CouponOut(BaseModel):
    id: str
    code: str
    discount_percent: int
    valid_from: datetime
    valid_until: datetime
    active: bool

class CouponCheckOut(BaseModel):
    valid: bool
    code: str
    discount_percent: Optional[int] = None
    reason: Optional[str] = None
