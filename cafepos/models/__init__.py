# Importing the module registers tables with Base for create_all()
from .core import (  # noqa: F401
    # Enums
    OrderStatus, PaymentStatus, PayMode, ItemKind, DiscountType, TableStatus,

    # Identity
    Branch, User,

    # Dining & customers
    DiningTable, TableOrder, Customer,

    # Coupons
    Coupon,

    # Orders / payments
    Order, OrderItem, Payment,

    # Audit
    AuditLog,
)

__all__ = [
    "OrderStatus", "PaymentStatus", "PayMode", "ItemKind", "DiscountType", "TableStatus",
    "Branch", "User",
    "DiningTable", "TableOrder", "Customer",
    "Coupon",
    "Order", "OrderItem", "Payment",
    "AuditLog",
]
