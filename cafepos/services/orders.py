"""
Order aggregate: line items, customer, discount/coupon, complementary flag.

Every mutation recomputes the totals through the billing calculator. The
order row is versioned by the mapper, so each UPDATE only lands if the row
still carries the version it was read at. Callers that hold a copy of the
order pass that version back; a mismatch means another terminal changed the
order in between.
"""

from contextlib import contextmanager
from dataclasses import dataclass, field

from sqlalchemy import func
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from cafepos.context import RequestContext
from cafepos.errors import InvalidStateError, NotFoundError, StaleVersionError, ValidationError
from cafepos.models.core import (
    Branch, DiningTable, ItemKind, Order, OrderItem, OrderStatus, PaymentStatus, TableOrder,
)
from cafepos.services import customers
from cafepos.services.billing import Discount, LineItem, Totals, compute
from cafepos.services.coupons import CouponValidator, DbCouponValidator
from cafepos.util.audit import log_audit
from cafepos.util.logging import get_logger
from cafepos.util.time import as_utc, utcnow

logger = get_logger(__name__)


@dataclass
class OrderState:
    """Full editable state of an order as submitted by a terminal on save."""
    items: list[LineItem]
    customer_name: str | None = None
    customer_phone: str | None = None
    customer_tax_id: str | None = None
    discount: Discount | None = None
    coupon_code: str | None = None
    complementary: bool = False
    complementary_reason: str | None = None
    notes: dict[int, str] = field(default_factory=dict)


def line_items(order: Order) -> list[LineItem]:
    return [
        LineItem(name=i.name, price=i.unit_price, quantity=i.qty, tax_rate=i.tax_rate,
                 kind=i.kind, menu_item_id=i.menu_item_id)
        for i in order.items
    ]


def order_discount(order: Order) -> Discount | None:
    if order.discount_type is None or order.discount_value is None:
        return None
    return Discount(order.discount_type, order.discount_value, order.max_discount_amount)


def totals_for(order: Order) -> Totals:
    return compute(line_items(order), order_discount(order), order.cgst_rate, order.sgst_rate,
                   order.is_complementary)


def apply_totals(order: Order, t: Totals) -> Totals:
    order.subtotal = t.subtotal
    order.cgst = t.cgst
    order.sgst = t.sgst
    order.tax = t.tax
    order.discount_amount = t.discount_amount
    order.round_off = t.round_off
    order.total = t.total
    order.complementary_amount = t.complementary_amount
    return t


def detach_from_tables(db: Session, order_id: str) -> int:
    return db.query(TableOrder).filter(TableOrder.order_id == order_id).delete(synchronize_session=False)


@contextmanager
def version_guard(db: Session, order: Order):
    """Translate a lost optimistic-lock race at flush time into StaleVersionError."""
    order_id, seen = order.id, order.version
    try:
        yield
    except StaleDataError:
        db.rollback()
        current = db.query(Order.version).filter(Order.id == order_id).scalar()
        logger.warning("Concurrent edit rejected", order_id=order_id, expected=seen, actual=current)
        raise StaleVersionError(order_id, seen, current)


@dataclass
class MergePreview:
    target: Order
    sources: list[Order]
    items: list[LineItem]
    totals: Totals


def _copy_line(line: OrderItem) -> OrderItem:
    return OrderItem(position=line.position, kind=line.kind, menu_item_id=line.menu_item_id, name=line.name,
                     unit_price=line.unit_price, qty=line.qty, tax_rate=line.tax_rate, note=line.note)


def _fold_into(lines: list[OrderItem], line: OrderItem) -> OrderItem | None:
    """Add ``line`` onto a matching catalog line; returns a new line to append when nothing matches."""
    same = next(
        (l for l in lines
         if line.kind is ItemKind.CATALOG and l.kind is ItemKind.CATALOG
         and l.menu_item_id == line.menu_item_id and l.unit_price == line.unit_price
         and not l.note and not line.note),
        None,
    )
    if same:
        same.qty += line.qty
        return None
    copy = _copy_line(line)
    copy.position = max((l.position for l in lines), default=0) + 1
    return copy


def _snapshot(order: Order) -> dict:
    return {"version": order.version, "total": str(order.total), "items": len(order.items)}


class OrderService:
    def __init__(self, db: Session, ctx: RequestContext, coupons: CouponValidator | None = None):
        self._db = db
        self._ctx = ctx
        self._coupons = coupons or DbCouponValidator(db)

    # ── lookups ─────────────────────────────────────────────────────────────
    def get(self, order_id: str) -> Order:
        o = self._db.get(Order, order_id)
        if not o or o.deleted_at is not None or o.branch_id != self._ctx.branch_id:
            raise NotFoundError("order", order_id)
        return o

    def editable(self, order_id: str, expected_version: int | None = None) -> Order:
        o = self.get(order_id)
        if o.status.terminal:
            raise InvalidStateError(f"cannot modify {o.status.value} order", order_id=o.id)
        if expected_version is not None and expected_version != o.version:
            raise StaleVersionError(o.id, expected_version, o.version)
        return o

    def _branch(self) -> Branch:
        b = self._db.get(Branch, self._ctx.branch_id)
        if not b:
            raise NotFoundError("branch", self._ctx.branch_id)
        return b

    def _snapshot_rates(self, order: Order) -> None:
        b = self._branch()
        order.cgst_rate = b.cgst_rate
        order.sgst_rate = b.sgst_rate

    def _touch(self, order: Order, action: str, reason: str | None = None, **after) -> Totals:
        t = apply_totals(order, totals_for(order))
        # item-only edits leave the order row clean; touching it makes the version bump
        order.updated_at = utcnow()
        with version_guard(self._db, order):
            self._db.flush()
            log_audit(self._db, self._ctx, "order", order.id, action, reason=reason,
                      after={"version": order.version, "total": str(order.total), **after})
            self._db.commit()
        logger.info("Order updated", order_id=order.id, action=action, version=order.version,
                    total=str(order.total))
        return t

    # ── creation ────────────────────────────────────────────────────────────
    def open_order(self, table_id: str | None) -> Order:
        if table_id:
            table = self._db.get(DiningTable, table_id)
            if not table or table.deleted_at is not None or table.branch_id != self._ctx.branch_id:
                raise NotFoundError("table", table_id)
        next_no = (self._db.query(func.max(Order.order_no))
                   .filter(Order.branch_id == self._ctx.branch_id).scalar() or 0) + 1
        o = Order(
            branch_id=self._ctx.branch_id,
            table_id=table_id,
            order_no=next_no,
            status=OrderStatus.OPEN,
            payment_status=PaymentStatus.UNPAID,
            opened_by_user_id=self._ctx.user_id,
            created_at=utcnow(),
        )
        self._snapshot_rates(o)
        self._db.add(o)
        self._db.flush()
        if table_id:
            self._db.add(TableOrder(table_id=table_id, order_id=o.id))
        log_audit(self._db, self._ctx, "order", o.id, "OPEN", after={"table_id": table_id, "order_no": next_no})
        logger.info("Order opened", order_id=o.id, order_no=next_no, table_id=table_id)
        return o

    # ── items ───────────────────────────────────────────────────────────────
    def add_item(self, item: LineItem, *, table_id: str | None = None, order_id: str | None = None,
                 note: str | None = None, expected_version: int | None = None) -> Order:
        if order_id:
            o = self.editable(order_id, expected_version)
        else:
            o = self.open_order(table_id)

        existing = None
        if item.kind is ItemKind.CATALOG and not note:
            existing = next(
                (l for l in o.items
                 if l.kind is ItemKind.CATALOG and l.menu_item_id == item.menu_item_id
                 and l.unit_price == item.price and not l.note),
                None,
            )
        if existing:
            existing.qty += item.quantity
        else:
            o.items.append(OrderItem(
                position=max((l.position for l in o.items), default=0) + 1,
                kind=item.kind, menu_item_id=item.menu_item_id, name=item.name,
                unit_price=item.price, qty=item.quantity, tax_rate=item.tax_rate, note=note,
            ))
        self._touch(o, "ITEM_ADD", item=item.name, qty=item.quantity)
        return o

    def _line(self, o: Order, item_id: str) -> OrderItem:
        line = next((l for l in o.items if l.id == item_id), None)
        if not line:
            raise NotFoundError("order item", item_id)
        return line

    def remove_item(self, order_id: str, item_id: str, expected_version: int | None = None) -> Order:
        o = self.editable(order_id, expected_version)
        line = self._line(o, item_id)
        o.items.remove(line)
        self._touch(o, "ITEM_REMOVE", item=line.name, qty=line.qty)
        return o

    def update_quantity(self, order_id: str, item_id: str, delta: int,
                        expected_version: int | None = None) -> Order:
        if isinstance(delta, bool) or not isinstance(delta, int):
            raise ValidationError("quantity delta must be a whole number")
        o = self.editable(order_id, expected_version)
        line = self._line(o, item_id)
        new_qty = max(0, line.qty + delta)
        if new_qty == 0:
            o.items.remove(line)
            self._touch(o, "ITEM_REMOVE", item=line.name, qty=line.qty)
        else:
            before = line.qty
            line.qty = new_qty
            self._touch(o, "ITEM_QTY", item=line.name, before=before, qty=new_qty)
        return o

    # ── pricing adjustments ─────────────────────────────────────────────────
    def set_discount(self, order_id: str, discount: Discount | None,
                     expected_version: int | None = None) -> Order:
        o = self.editable(order_id, expected_version)
        if discount is None:
            o.discount_type = o.discount_value = o.max_discount_amount = None
        else:
            o.discount_type = discount.type
            o.discount_value = discount.value
            o.max_discount_amount = discount.max_discount_amount
        # a manual discount replaces whatever a coupon set
        o.coupon_code = None
        self._touch(o, "DISCOUNT", discount=None if discount is None else
                    {"type": discount.type.value, "value": str(discount.value)})
        return o

    def attach_coupon(self, order_id: str, code: str, expected_version: int | None = None) -> Order:
        o = self.editable(order_id, expected_version)
        discount = self._coupons.validate(code, totals_for(o).subtotal)
        o.coupon_code = code.strip().upper()
        o.discount_type = discount.type
        o.discount_value = discount.value
        o.max_discount_amount = discount.max_discount_amount
        self._touch(o, "COUPON", coupon=o.coupon_code)
        return o

    def set_complementary(self, order_id: str, reason: str, expected_version: int | None = None) -> Order:
        if not reason or not reason.strip():
            raise ValidationError("a reason is required to mark an order complementary")
        o = self.editable(order_id, expected_version)
        o.is_complementary = True
        o.complementary_reason = reason.strip()
        self._touch(o, "COMPLEMENTARY", reason=o.complementary_reason)
        return o

    def clear_complementary(self, order_id: str, expected_version: int | None = None) -> Order:
        o = self.editable(order_id, expected_version)
        o.is_complementary = False
        o.complementary_reason = None
        self._touch(o, "COMPLEMENTARY_CLEAR")
        return o

    def set_customer_info(self, order_id: str, name: str | None = None, phone: str | None = None,
                          tax_id: str | None = None, expected_version: int | None = None) -> Order:
        o = self.editable(order_id, expected_version)
        if phone and not name:
            name = customers.lookup_name(self._db, phone)
        o.customer_name = name or None
        o.customer_phone = phone or None
        o.customer_tax_id = tax_id or None
        self._touch(o, "CUSTOMER")
        return o

    # ── save ────────────────────────────────────────────────────────────────
    def save(self, order_id: str, state: OrderState, expected_version: int) -> Order:
        """Persist a terminal's full edit of the order; totals are recomputed here, never taken from the caller."""
        if not state.items:
            raise ValidationError("order must have at least one item")
        if state.complementary and not (state.complementary_reason or "").strip():
            raise ValidationError("a reason is required to mark an order complementary")
        o = self.editable(order_id, expected_version)

        discount = state.discount
        coupon_code = None
        if state.coupon_code:
            subtotal = compute(state.items).subtotal
            discount = self._coupons.validate(state.coupon_code, subtotal)
            coupon_code = state.coupon_code.strip().upper()

        o.items.clear()
        self._db.flush()
        for pos, item in enumerate(state.items, start=1):
            o.items.append(OrderItem(
                position=pos, kind=item.kind, menu_item_id=item.menu_item_id, name=item.name,
                unit_price=item.price, qty=item.quantity, tax_rate=item.tax_rate,
                note=state.notes.get(pos - 1),
            ))
        o.customer_name = state.customer_name or customers.lookup_name(self._db, state.customer_phone)
        o.customer_phone = state.customer_phone
        o.customer_tax_id = state.customer_tax_id
        o.discount_type = discount.type if discount else None
        o.discount_value = discount.value if discount else None
        o.max_discount_amount = discount.max_discount_amount if discount else None
        o.coupon_code = coupon_code
        o.is_complementary = state.complementary
        o.complementary_reason = state.complementary_reason.strip() if state.complementary else None
        self._snapshot_rates(o)
        self._touch(o, "SAVE")
        return o

    # ── merge ───────────────────────────────────────────────────────────────
    def _merge_set(self, order_ids: list[str]) -> tuple[Order, list[Order]]:
        ids = list(dict.fromkeys(order_ids))
        if len(ids) < 2:
            raise ValidationError("at least 2 orders are required to merge")
        orders = [self.get(i) for i in ids]
        for o in orders:
            if o.status is not OrderStatus.OPEN or o.payment_status is PaymentStatus.PAID:
                raise InvalidStateError(f"order #{o.order_no} cannot be merged ({o.status.value})")
        orders.sort(key=lambda o: (as_utc(o.created_at), o.order_no))
        return orders[0], orders[1:]

    def merge_preview(self, order_ids: list[str]) -> MergePreview:
        """What merge() would produce, without writing anything."""
        target, sources = self._merge_set(order_ids)
        lines = [_copy_line(l) for l in target.items]
        for src in sources:
            for line in src.items:
                extra = _fold_into(lines, line)
                if extra is not None:
                    lines.append(extra)
        items = [LineItem(name=l.name, price=l.unit_price, quantity=l.qty, tax_rate=l.tax_rate,
                          kind=l.kind, menu_item_id=l.menu_item_id) for l in lines]
        totals = compute(items, order_discount(target), target.cgst_rate, target.sgst_rate,
                         target.is_complementary)
        return MergePreview(target=target, sources=sources, items=items, totals=totals)

    def merge(self, order_ids: list[str], reason: str | None = None) -> Order:
        """Fold several unpaid open orders into the oldest one.

        Orders may sit on different tables; the surviving order keeps its
        table. The folded orders end up cancelled with a pointer to the
        surviving order and leave their tables' open-order sets.
        """
        target, sources = self._merge_set(order_ids)
        before = _snapshot(target)

        for src in sources:
            for line in list(src.items):
                extra = _fold_into(target.items, line)
                if extra is not None:
                    target.items.append(extra)
            src.status = OrderStatus.CANCELLED
            src.cancel_reason = f"merged into #{target.order_no}"
            src.cancelled_at = utcnow()
            src.cancelled_by_user_id = self._ctx.user_id
            src.merged_into_id = target.id
            with version_guard(self._db, src):
                self._db.flush()
            detach_from_tables(self._db, src.id)
            log_audit(self._db, self._ctx, "order", src.id, "MERGED", reason=reason,
                      after={"into": target.id, "from_table": src.table_id})

        self._touch(target, "MERGE", reason=reason, merged=[s.id for s in sources],
                    before_total=before["total"])
        logger.info("Orders merged", target=target.id, sources=[s.id for s in sources],
                    tables=sorted({s.table_id or "-" for s in [target, *sources]}))
        return target
