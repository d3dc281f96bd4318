import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from rasoi.config import settings
from rasoi.models.common import utcnow
from rasoi.models.core import MenuItem, Order, OrderStatus, PayMethod, User
from rasoi.services import coupons
from rasoi.services.errors import ValidationError
from rasoi.services.pricing import (
    FeePolicy, PriceBreakdown, PriceLine, distance_from_origin, price_order,
)
from rasoi.services.store import DraftLine, OrderDraft, OrderStore

logger = logging.getLogger(__name__)

MAX_QTY_PER_LINE = 10


@dataclass(frozen=True)
class PricedCart:
    lines: list[DraftLine]
    coupon_code: str | None
    price: PriceBreakdown
    tax_rate: Decimal


def price_cart(db: Session, body, now: datetime | None = None) -> PricedCart:
    """
    Resolve cart lines against the catalog and run them through the pricing
    engine. Used for both the quote preview and the order that gets stored, so
    the two can never disagree.
    """
    now = now or utcnow()
    if not body.items:
        raise ValidationError("cart is empty")

    wanted: dict[str, int] = {}
    for line in body.items:
        if line.qty < 1 or line.qty > MAX_QTY_PER_LINE:
            raise ValidationError(f"quantity must be between 1 and {MAX_QTY_PER_LINE}")
        wanted[line.item_id] = wanted.get(line.item_id, 0) + line.qty

    rows = db.scalars(select(MenuItem).where(MenuItem.id.in_(list(wanted)))).all()
    menu = {m.id: m for m in rows if m.is_active}
    missing = [i for i in wanted if i not in menu]
    if missing:
        raise ValidationError(f"unknown or unavailable menu items: {', '.join(missing)}")

    # prices come from the catalog, never from the client
    lines = [
        DraftLine(item_id=i, name=menu[i].name, unit_price=Decimal(str(menu[i].price)), qty=q)
        for i, q in wanted.items()
    ]

    coupon_code = None
    coupon_percent = None
    if body.coupon_code and body.coupon_code.strip():
        checked = coupons.validate(db, body.coupon_code, now)
        if isinstance(checked, coupons.Rejected):
            raise ValidationError(f"coupon rejected: {checked.reason.value}")
        coupon_code = checked.code
        coupon_percent = checked.discount_percent

    policy = FeePolicy.from_settings()
    distance = None
    if policy.mode == "DISTANCE":
        if body.shipping_lat is None or body.shipping_lng is None:
            raise ValidationError("shipping coordinates are required for delivery pricing")
        distance = distance_from_origin(body.shipping_lat, body.shipping_lng)

    tax_rate = Decimal(str(settings.TAX_RATE))
    price = price_order(
        [PriceLine(l.unit_price, l.qty) for l in lines],
        coupon_percent=coupon_percent,
        fee_policy=policy,
        distance_km=distance,
        tax_rate=tax_rate,
    )
    return PricedCart(lines=lines, coupon_code=coupon_code, price=price, tax_rate=tax_rate)

def build_draft(db: Session, user: User, body, *, status: OrderStatus, payment_method: PayMethod | None = None,
                gateway_order_id: str | None = None, gateway_payment_id: str | None = None) -> OrderDraft:
    if not body.shipping_address or not body.shipping_address.strip():
        raise ValidationError("shipping address is required")
    cart = price_cart(db, body)
    return OrderDraft(
        user_id=user.id,
        customer_name=body.customer_name or user.name,
        customer_email=user.email,
        customer_phone=body.customer_phone or user.phone,
        shipping_address=body.shipping_address.strip(),
        shipping_lat=body.shipping_lat,
        shipping_lng=body.shipping_lng,
        payment_method=payment_method or PayMethod(body.payment_method),
        lines=cart.lines,
        price=cart.price,
        tax_rate=cart.tax_rate,
        coupon_code=cart.coupon_code,
        status=status,
        gateway_order_id=gateway_order_id,
        gateway_payment_id=gateway_payment_id,
    )


def claim_gateway_order(existing: Order | None, user: User) -> Order | None:
    """A gateway order id belongs to whoever first stored an order with it."""
    if existing is not None and existing.user_id != user.id:
        logger.warning("user %s presented gateway order %s owned by order %s",
                       user.id, existing.gateway_order_id, existing.id)
        raise ValidationError("this payment belongs to another order")
    return existing


def create_or_reread(store: OrderStore, user: User, draft: OrderDraft) -> tuple[Order, bool]:
    """
    Store `draft`, or, if a concurrent request stored an order for the same
    gateway order first, return that one. The flag is True when this call
    created the order.
    """
    try:
        o = store.create(draft)
    except IntegrityError:
        store.rollback()
        if not draft.gateway_order_id:
            raise
        existing = claim_gateway_order(store.by_gateway_order(draft.gateway_order_id), user)
        if existing is None:
            raise
        logger.info("gateway order %s was stored concurrently as %s", draft.gateway_order_id, existing.id)
        return existing, False
    store.commit()
    return o, True


def place_order(store: OrderStore, user: User, body) -> Order:
    """
    Turn a cart into a durable order. Gateway payments start in
    PAYMENT_PENDING until the payment is verified; cash and UPI orders are
    placed straight away.
    """
    method = PayMethod(body.payment_method)
    gateway_order_id = None
    if method is PayMethod.GATEWAY:
        if not body.gateway_order_id:
            raise ValidationError("gateway_order_id is required for gateway payments")
        gateway_order_id = body.gateway_order_id
        # checkout retried for the same gateway order: hand back what we already have
        existing = claim_gateway_order(store.by_gateway_order(gateway_order_id), user)
        if existing is not None:
            return existing
        status = OrderStatus.PAYMENT_PENDING
    else:
        status = OrderStatus.ORDER_PLACED

    draft = build_draft(store.db, user, body, status=status, gateway_order_id=gateway_order_id)
    o, created = create_or_reread(store, user, draft)
    if created:
        logger.info("order %s created for user %s (%s, total %s)", o.id, user.id, status.value, o.grand_total)
    return o
