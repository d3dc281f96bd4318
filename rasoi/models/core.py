from sqlalchemy import (
    String, ForeignKey, Boolean, Numeric, Enum, Text, DateTime, Integer, UniqueConstraint, Float
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from enum import Enum as PyEnum
from datetime import datetime
from decimal import Decimal
from rasoi.db import Base
from rasoi.models.common import IdMixin, TSMMixin, utcnow

# ── Enums ───────────────────────────────────────────────────────────────────
class OrderStatus(PyEnum):
    PAYMENT_PENDING = "PAYMENT_PENDING"
    ORDER_PLACED = "ORDER_PLACED"
    CONFIRMED = "CONFIRMED"
    PREPARING = "PREPARING"
    SHIPPED = "SHIPPED"
    OUT_FOR_DELIVERY = "OUT_FOR_DELIVERY"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"

class PayMethod(PyEnum):
    GATEWAY = "GATEWAY"  # card/netbanking through the payment gateway
    UPI = "UPI"
    COD = "COD"

class UserRole(PyEnum):
    CUSTOMER = "CUSTOMER"
    ADMIN = "ADMIN"
    RIDER = "RIDER"

# ── Identity ────────────────────────────────────────────────────────────────
class User(Base, IdMixin, TSMMixin):
    __tablename__ = "user"
    name: Mapped[str] = mapped_column(String(160))
    email: Mapped[str | None] = mapped_column(String(160), unique=True)
    phone: Mapped[str | None] = mapped_column(String(20), unique=True)
    pass_hash: Mapped[str] = mapped_column(String(200))
    role: Mapped[UserRole] = mapped_column(Enum(UserRole), default=UserRole.CUSTOMER)
    active: Mapped[bool] = mapped_column(Boolean, default=True)

class Rider(Base, TSMMixin):
    __tablename__ = "rider"
    # same id as the rider's login user
    id: Mapped[str] = mapped_column(String(36), ForeignKey("user.id"), primary_key=True)
    full_name: Mapped[str] = mapped_column(String(160))
    email: Mapped[str | None] = mapped_column(String(160))
    phone: Mapped[str | None] = mapped_column(String(20))
    active: Mapped[bool] = mapped_column(Boolean, default=True)
    last_payout_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

# ── Menu ────────────────────────────────────────────────────────────────────
class MenuItem(Base, IdMixin, TSMMixin):
    __tablename__ = "menu_item"
    name: Mapped[str] = mapped_column(String(160))
    description: Mapped[str | None] = mapped_column(Text)
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

# ── Coupons ─────────────────────────────────────────────────────────────────
class Coupon(Base, IdMixin, TSMMixin):
    __tablename__ = "coupon"
    code: Mapped[str] = mapped_column(String(20), unique=True, index=True)  # upper-cased
    discount_percent: Mapped[int] = mapped_column(Integer)
    valid_from: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    valid_until: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    active: Mapped[bool] = mapped_column(Boolean, default=True)

# ── Orders ──────────────────────────────────────────────────────────────────
class Order(Base, IdMixin, TSMMixin):
    __tablename__ = "order"
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("user.id"), index=True)
    customer_name: Mapped[str] = mapped_column(String(160))
    customer_email: Mapped[str | None] = mapped_column(String(160))
    customer_phone: Mapped[str | None] = mapped_column(String(20))
    shipping_address: Mapped[str] = mapped_column(Text)
    shipping_lat: Mapped[float | None] = mapped_column(Float)
    shipping_lng: Mapped[float | None] = mapped_column(Float)
    payment_method: Mapped[PayMethod] = mapped_column(Enum(PayMethod))

    # price snapshot, computed once at creation
    subtotal: Mapped[Decimal] = mapped_column(Numeric(10, 2))
    discount_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=0)
    coupon_code: Mapped[str | None] = mapped_column(String(20))
    delivery_fee: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=0)
    tax_rate: Mapped[Decimal] = mapped_column(Numeric(5, 4))
    tax_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=0)
    grand_total: Mapped[Decimal] = mapped_column(Numeric(10, 2))

    delivery_code: Mapped[str] = mapped_column(String(4))
    status: Mapped[OrderStatus] = mapped_column(Enum(OrderStatus), default=OrderStatus.PAYMENT_PENDING, index=True)
    rider_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("rider.id"), index=True)
    rider_name: Mapped[str | None] = mapped_column(String(160))
    # at most one order per gateway order
    gateway_order_id: Mapped[str | None] = mapped_column(String(80), unique=True, index=True)
    gateway_payment_id: Mapped[str | None] = mapped_column(String(80))
    cancellation_reason: Mapped[str | None] = mapped_column(Text)
    delivered_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    review_rating: Mapped[int | None] = mapped_column(Integer)
    review_comment: Mapped[str | None] = mapped_column(Text)
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    items: Mapped[list["OrderItem"]] = relationship(lazy="selectin", order_by="OrderItem.position")

class OrderItem(Base, IdMixin):
    __tablename__ = "order_item"
    order_id: Mapped[str] = mapped_column(String(36), ForeignKey("order.id"), index=True)
    position: Mapped[int] = mapped_column(Integer, default=0)
    item_id: Mapped[str] = mapped_column(String(36))  # catalog id at order time, not a live reference
    name: Mapped[str] = mapped_column(String(160))
    unit_price: Mapped[Decimal] = mapped_column(Numeric(10, 2))
    qty: Mapped[int] = mapped_column(Integer)

class OrderStatusEvent(Base):
    """One row per accepted transition, written with the status change."""
    __tablename__ = "order_status_event"
    seq: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    order_id: Mapped[str] = mapped_column(String(36), ForeignKey("order.id"), index=True)
    status: Mapped[OrderStatus] = mapped_column(Enum(OrderStatus))
    version: Mapped[int] = mapped_column(Integer)
    at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    __table_args__ = (
        UniqueConstraint("order_id", "status", name="uq_order_status_event"),
    )

# ── Messages & notifications ────────────────────────────────────────────────
class AdminMessage(Base, IdMixin, TSMMixin):
    __tablename__ = "admin_message"
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("user.id"), index=True)
    title: Mapped[str] = mapped_column(String(200))
    message: Mapped[str] = mapped_column(Text)

class Notification(Base, IdMixin):
    __tablename__ = "notification"
    actor_key: Mapped[str] = mapped_column(String(60), index=True)  # "admin" | "user:<id>" | "rider:<id>"
    notif_id: Mapped[str] = mapped_column(String(120))
    kind: Mapped[str] = mapped_column(String(40))
    at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    title: Mapped[str] = mapped_column(String(200))
    message: Mapped[str] = mapped_column(Text)
    read: Mapped[bool] = mapped_column(Boolean, default=False)
    link: Mapped[str | None] = mapped_column(String(300))
    order_id: Mapped[str | None] = mapped_column(String(36))
    order_status: Mapped[str | None] = mapped_column(String(30))
    __table_args__ = (
        UniqueConstraint("actor_key", "notif_id", name="uq_notification_actor_id"),
    )

# ── Audit ───────────────────────────────────────────────────────────────────
class AuditLog(Base, IdMixin, TSMMixin):
    __tablename__ = "audit_log"
    actor_user_id: Mapped[str | None] = mapped_column(String(36))
    entity: Mapped[str] = mapped_column(String(60))
    entity_id: Mapped[str] = mapped_column(String(80))
    action: Mapped[str] = mapped_column(String(60))
    reason: Mapped[str | None] = mapped_column(Text)
    before: Mapped[str | None] = mapped_column(Text)
    after: Mapped[str | None] = mapped_column(Text)
