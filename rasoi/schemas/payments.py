from pydantic import BaseModel
from typing import Optional

from rasoi.schemas.orders import CheckoutIn, OrderOut

class CallbackIn(BaseModel):
    gateway_order_id: str
    payment_id: str
    signature: str
    order: Optional[CheckoutIn] = None

class CallbackOut(BaseModel):
    success: bool
    order: Optional[OrderOut] = None
    error: Optional[str] = None
