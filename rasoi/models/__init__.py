# Importing the module registers tables with Base for create_all()
from .core import (  # noqa: F401
    # Enums
    OrderStatus, PayMethod, UserRole,

    # Identity
    User, Rider,

    # Catalog & coupons
    MenuItem, Coupon,

    # Orders
    Order, OrderItem, OrderStatusEvent,

    # Messages & notifications
    AdminMessage, Notification,

    # Audit
    AuditLog,
)

__all__ = [
    "OrderStatus", "PayMethod", "UserRole",
    "User", "Rider",
    "MenuItem", "Coupon",
    "Order", "OrderItem", "OrderStatusEvent",
    "AdminMessage", "Notification",
    "AuditLog",
]
