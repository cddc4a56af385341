from sqlalchemy import (
    String, ForeignKey, Boolean, Numeric, Enum, Text, DateTime, Integer, JSON, UniqueConstraint
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from enum import Enum as PyEnum
from datetime import datetime
from decimal import Decimal
from cafepos.db import Base
from cafepos.models.common import IdMixin, TSMMixin

# ── Enums ───────────────────────────────────────────────────────────────────
class OrderStatus(PyEnum):
    OPEN = "open"
    PAID = "paid"
    CANCELLED = "cancelled"

    @property
    def terminal(self) -> bool:
        return self is not OrderStatus.OPEN

    def can_become(self, new: "OrderStatus") -> bool:
        # open -> paid | cancelled; terminal statuses never move again
        return self is OrderStatus.OPEN and new in (OrderStatus.PAID, OrderStatus.CANCELLED)

class PaymentStatus(PyEnum):
    UNPAID = "unpaid"
    PAID = "paid"

class PayMode(PyEnum):
    CASH = "cash"
    CARD = "card"
    UPI = "upi"
    WALLET = "wallet"
    ONLINE = "online"
    MIXED = "mixed"  # aggregate label for split settlements

class ItemKind(PyEnum):
    CATALOG = "catalog"      # references a menu item id
    CUSTOM = "custom"        # open item typed in by staff
    QUICK_ADD = "quick_add"  # packed / quick-add item

class DiscountType(PyEnum):
    AMOUNT = "amount"
    PERCENTAGE = "percentage"

class TableStatus(PyEnum):
    AVAILABLE = "available"
    OCCUPIED = "occupied"
    RESERVED = "reserved"
    MAINTENANCE = "maintenance"
    PAID = "paid"
    PRINTED = "printed"

# ── Identity ────────────────────────────────────────────────────────────────
class Branch(Base, IdMixin, TSMMixin):
    __tablename__ = "branch"
    name: Mapped[str] = mapped_column(String(160))
    code: Mapped[str | None] = mapped_column(String(30), unique=True)
    address: Mapped[str | None] = mapped_column(Text)
    phone: Mapped[str | None] = mapped_column(String(20))
    # tax profile; orders copy these at edit time
    gstin: Mapped[str | None] = mapped_column(String(32))
    cgst_rate: Mapped[Decimal] = mapped_column(Numeric(5, 2), default=Decimal("2.5"))
    sgst_rate: Mapped[Decimal] = mapped_column(Numeric(5, 2), default=Decimal("2.5"))

class User(Base, IdMixin, TSMMixin):
    __tablename__ = "user"
    branch_id: Mapped[str] = mapped_column(String(36), ForeignKey("branch.id"))
    name: Mapped[str] = mapped_column(String(160))
    mobile: Mapped[str | None] = mapped_column(String(20), unique=True)
    pass_hash: Mapped[str] = mapped_column(String(200))
    pin_hash: Mapped[str | None] = mapped_column(String(200))
    active: Mapped[bool] = mapped_column(Boolean, default=True)

# ── Dining & customers ──────────────────────────────────────────────────────
class DiningTable(Base, IdMixin, TSMMixin):
    __tablename__ = "dining_table"
    branch_id: Mapped[str] = mapped_column(String(36), ForeignKey("branch.id"))
    table_no: Mapped[int]
    capacity: Mapped[int] = mapped_column(default=4)
    location: Mapped[str | None] = mapped_column(String(40), default="indoor")
    status: Mapped[TableStatus] = mapped_column(Enum(TableStatus), default=TableStatus.AVAILABLE)
    __table_args__ = (
        UniqueConstraint("branch_id", "table_no", name="uq_dining_table_branch_no"),
    )

class TableOrder(Base):
    """Open-order set of a table; a table may carry several orders before a merge."""
    __tablename__ = "table_order"
    table_id: Mapped[str] = mapped_column(String(36), ForeignKey("dining_table.id"), primary_key=True)
    order_id: Mapped[str] = mapped_column(String(36), ForeignKey("order.id"), primary_key=True)

class Customer(Base, IdMixin, TSMMixin):
    __tablename__ = "customer"
    name: Mapped[str | None] = mapped_column(String(160))
    phone: Mapped[str] = mapped_column(String(20), unique=True)
    tax_id: Mapped[str | None] = mapped_column(String(32))
    visits: Mapped[int] = mapped_column(default=0)
    total_spent: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0)
    loyalty_points: Mapped[int] = mapped_column(default=0)

# ── Coupons (authored elsewhere; validated here) ────────────────────────────
class Coupon(Base, IdMixin, TSMMixin):
    __tablename__ = "coupon"
    code: Mapped[str] = mapped_column(String(40), unique=True)
    discount_type: Mapped[DiscountType] = mapped_column(Enum(DiscountType))
    discount_value: Mapped[Decimal] = mapped_column(Numeric(10, 2))
    max_discount_amount: Mapped[Decimal | None] = mapped_column(Numeric(10, 2))
    min_order_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=0)
    usage_limit: Mapped[int | None]
    usage_count: Mapped[int] = mapped_column(default=0)
    valid_from: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    valid_until: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

# ── Orders / payments ───────────────────────────────────────────────────────
class Order(Base, IdMixin, TSMMixin):
    __tablename__ = "order"
    branch_id: Mapped[str] = mapped_column(String(36), ForeignKey("branch.id"))
    table_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("dining_table.id"))
    order_no: Mapped[int]
    status: Mapped[OrderStatus] = mapped_column(Enum(OrderStatus), default=OrderStatus.OPEN)
    opened_by_user_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("user.id"))
    # customer
    customer_name: Mapped[str | None] = mapped_column(String(160))
    customer_phone: Mapped[str | None] = mapped_column(String(20))
    customer_tax_id: Mapped[str | None] = mapped_column(String(32))
    # discount descriptor / coupon / complementary
    discount_type: Mapped[DiscountType | None] = mapped_column(Enum(DiscountType))
    discount_value: Mapped[Decimal | None] = mapped_column(Numeric(10, 2))
    max_discount_amount: Mapped[Decimal | None] = mapped_column(Numeric(10, 2))
    coupon_code: Mapped[str | None] = mapped_column(String(40))
    is_complementary: Mapped[bool] = mapped_column(Boolean, default=False)
    complementary_reason: Mapped[str | None] = mapped_column(Text)
    # tax snapshot, copied from the branch profile at edit time
    cgst_rate: Mapped[Decimal] = mapped_column(Numeric(5, 2), default=0)
    sgst_rate: Mapped[Decimal] = mapped_column(Numeric(5, 2), default=0)
    # computed totals (always written by the billing calculator)
    subtotal: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0)
    cgst: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0)
    sgst: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0)
    tax: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0)
    discount_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0)
    round_off: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0)
    total: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0)
    complementary_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0)
    # payment
    payment_status: Mapped[PaymentStatus] = mapped_column(Enum(PaymentStatus), default=PaymentStatus.UNPAID)
    payment_method: Mapped[PayMode | None] = mapped_column(Enum(PayMode))
    split_payments: Mapped[list | None] = mapped_column(JSON)
    payment_token: Mapped[str | None] = mapped_column(String(80))
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    # cancellation audit (the credential itself is never stored)
    cancel_reason: Mapped[str | None] = mapped_column(Text)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    cancelled_by_user_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("user.id"))
    merged_into_id: Mapped[str | None] = mapped_column(String(36))
    # every UPDATE is guarded by the version it was loaded at; losing a race raises StaleDataError
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}

    items: Mapped[list["OrderItem"]] = relationship(
        back_populates="order", cascade="all, delete-orphan",
        order_by="OrderItem.position", lazy="selectin",
    )

class OrderItem(Base, IdMixin, TSMMixin):
    __tablename__ = "order_item"
    order_id: Mapped[str] = mapped_column(String(36), ForeignKey("order.id"))
    position: Mapped[int] = mapped_column(default=0)
    kind: Mapped[ItemKind] = mapped_column(Enum(ItemKind), default=ItemKind.CATALOG)
    menu_item_id: Mapped[str | None] = mapped_column(String(36))
    name: Mapped[str] = mapped_column(String(160))
    unit_price: Mapped[Decimal] = mapped_column(Numeric(10, 2))
    qty: Mapped[int]
    tax_rate: Mapped[Decimal] = mapped_column(Numeric(5, 2), default=0)
    note: Mapped[str | None] = mapped_column(Text)

    order: Mapped[Order] = relationship(back_populates="items")

class Payment(Base, IdMixin, TSMMixin):
    __tablename__ = "payment"
    order_id: Mapped[str] = mapped_column(String(36), ForeignKey("order.id"))
    mode: Mapped[PayMode] = mapped_column(Enum(PayMode))
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2))
    token: Mapped[str] = mapped_column(String(80))
    ref_no: Mapped[str | None] = mapped_column(String(120))
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

# ── Audit ───────────────────────────────────────────────────────────────────
class AuditLog(Base, IdMixin, TSMMixin):
    __tablename__ = "audit_log"
    actor_user_id: Mapped[str] = mapped_column(String(36))
    entity: Mapped[str] = mapped_column(String(60))
    entity_id: Mapped[str] = mapped_column(String(36))
    action: Mapped[str] = mapped_column(String(60))
    reason: Mapped[str | None] = mapped_column(Text)  # reason for cancel/complementary/merge
    before: Mapped[str | None] = mapped_column(Text)
    after: Mapped[str | None] = mapped_column(Text)
    request_id: Mapped[str | None] = mapped_column(String(36))
