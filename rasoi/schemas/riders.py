from datetime import datetime
from pydantic import BaseModel
from typing import Optional

from rasoi.schemas.orders import OrderOut

class RiderIn(BaseModel):
    full_name: str
    email: Optional[str] = None
    phone: str
    password: str

class RiderOut(BaseModel):
    id: str
    full_name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    active: bool
    last_payout_at: Optional[datetime] = None
    delivered_count: int = 0

class ClaimOut(BaseModel):
    result: str
    order: OrderOut

class ConfirmIn(BaseModel):
    code: str
