from datetime import datetime
from pydantic import BaseModel, Field
from typing import Optional, Literal, List

from rasoi.models.core import Order

PayMethodLiteral = Literal["GATEWAY", "UPI", "COD"]
OrderStatusLiteral = Literal[
    "PAYMENT_PENDING", "ORDER_PLACED", "CONFIRMED", "PREPARING",
    "SHIPPED", "OUT_FOR_DELIVERY", "DELIVERED", "CANCELLED",
]

class CartLineIn(BaseModel):
    item_id: str
    qty: int

class CartIn(BaseModel):
    items: List[CartLineIn]
    coupon_code: Optional[str] = None
    shipping_lat: Optional[float] = None
    shipping_lng: Optional[float] = None

class QuoteOut(BaseModel):
    subtotal: float
    discount_amount: float
    delivery_fee: float
    tax_amount: float
    grand_total: float
    coupon_code: Optional[str] = None

class CheckoutIn(CartIn):
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    shipping_address: str
    payment_method: PayMethodLiteral = "COD"
    gateway_order_id: Optional[str] = None

class StatusIn(BaseModel):
    status: OrderStatusLiteral

class CancelIn(BaseModel):
    reason: Optional[str] = None

class ReviewIn(BaseModel):
    rating: int = Field(ge=1, le=5)
    comment: Optional[str] = None

class OrderItemOut(BaseModel):
    item_id: str
    name: str
    unit_price: float
    qty: int

class OrderOut(BaseModel):
    id: str
    user_id: str
    customer_name: str
    customer_email: Optional[str] = None
    customer_phone: Optional[str] = None
    shipping_address: str
    payment_method: str
    status: str
    items: List[OrderItemOut]
    subtotal: float
    discount_amount: float
    coupon_code: Optional[str] = None
    delivery_fee: float
    tax_rate: float
    tax_amount: float
    grand_total: float
    rider_id: Optional[str] = None
    rider_name: Optional[str] = None
    gateway_order_id: Optional[str] = None
    gateway_payment_id: Optional[str] = None
    cancellation_reason: Optional[str] = None
    review_rating: Optional[int] = None
    review_comment: Optional[str] = None
    delivery_code: Optional[str] = None  # only ever filled in for the owning customer
    version: int
    created_at: datetime
    delivered_at: Optional[datetime] = None

    @classmethod
    def from_order(cls, o: Order, *, show_code: bool = False) -> "OrderOut":
        return cls(
            id=o.id,
            user_id=o.user_id,
            customer_name=o.customer_name,
            customer_email=o.customer_email,
            customer_phone=o.customer_phone,
            shipping_address=o.shipping_address,
            payment_method=o.payment_method.value,
            status=o.status.value,
            items=[OrderItemOut(item_id=i.item_id, name=i.name, unit_price=float(i.unit_price), qty=i.qty) for i in o.items],
            subtotal=float(o.subtotal),
            discount_amount=float(o.discount_amount or 0),
            coupon_code=o.coupon_code,
            delivery_fee=float(o.delivery_fee or 0),
            tax_rate=float(o.tax_rate),
            tax_amount=float(o.tax_amount or 0),
            grand_total=float(o.grand_total),
            rider_id=o.rider_id,
            rider_name=o.rider_name,
            gateway_order_id=o.gateway_order_id,
            gateway_payment_id=o.gateway_payment_id,
            cancellation_reason=o.cancellation_reason,
            review_rating=o.review_rating,
            review_comment=o.review_comment,
            delivery_code=o.delivery_code if show_code else None,
            version=o.version,
            created_at=o.created_at,
            delivered_at=o.delivered_at,
        )
