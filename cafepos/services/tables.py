"""
Dining tables: occupancy status and the set of orders currently on a table.

Status only changes when staff ask for it. Order checkout or cancellation
never moves a table by itself, so "bill settled" and "table turned over"
stay two separate, auditable actions.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from cafepos.config import settings
from cafepos.context import RequestContext
from cafepos.errors import InvalidStateError, NotFoundError, ValidationError
from cafepos.models.core import (
    DiningTable, Order, OrderStatus, PaymentStatus, TableOrder, TableStatus,
)
from cafepos.services.billing import ZERO, to_decimal
from cafepos.services.orders import version_guard
from cafepos.util.audit import log_audit
from cafepos.util.logging import get_logger
from cafepos.util.time import as_utc, utcnow

logger = get_logger(__name__)

# turning a table over to these states ends (or suspends) its service
TURNOVER_STATES = (TableStatus.AVAILABLE, TableStatus.MAINTENANCE)


@dataclass(frozen=True)
class TableSummary:
    order_count: int
    total_amount: Decimal
    unpaid_amount: Decimal
    paid_amount: Decimal
    session_started_at: datetime | None

    def elapsed_minutes(self, now: datetime | None = None) -> int | None:
        """Display-only service duration since the earliest open order."""
        if self.session_started_at is None:
            return None
        delta = (now or utcnow()) - self.session_started_at
        return max(0, int(delta.total_seconds() // 60))


def summarize(orders: list[Order]) -> TableSummary:
    live = [o for o in orders if o.status is not OrderStatus.CANCELLED]
    total = sum((to_decimal(o.total) for o in live), ZERO)
    unpaid = sum((to_decimal(o.total) for o in live if o.payment_status is not PaymentStatus.PAID), ZERO)
    started = min((as_utc(o.created_at) for o in live), default=None)
    return TableSummary(
        order_count=len(live),
        total_amount=total,
        unpaid_amount=unpaid,
        paid_amount=total - unpaid,
        session_started_at=started,
    )


def parse_status(status) -> TableStatus:
    if isinstance(status, TableStatus):
        return status
    try:
        return TableStatus(str(status).lower())
    except ValueError:
        raise ValidationError(f"unknown table status: {status}")


class TableService:
    def __init__(self, db: Session, ctx: RequestContext):
        self._db = db
        self._ctx = ctx

    def get(self, table_id: str) -> DiningTable:
        t = self._db.get(DiningTable, table_id)
        if not t or t.deleted_at is not None or t.branch_id != self._ctx.branch_id:
            raise NotFoundError("table", table_id)
        return t

    def open_orders(self, table_id: str) -> list[Order]:
        return (
            self._db.query(Order)
            .join(TableOrder, TableOrder.order_id == Order.id)
            .filter(TableOrder.table_id == table_id)
            .order_by(Order.created_at.asc(), Order.order_no.asc())
            .all()
        )

    def create_table(self, table_no: int, capacity: int = 4, location: str | None = "indoor") -> DiningTable:
        if table_no < 1:
            raise ValidationError("table number must be at least 1")
        if not 1 <= capacity <= 20:
            raise ValidationError("capacity must be between 1 and 20")
        t = DiningTable(branch_id=self._ctx.branch_id, table_no=table_no, capacity=capacity,
                        location=location, status=TableStatus.AVAILABLE)
        try:
            self._db.add(t)
            self._db.commit()
        except IntegrityError:
            self._db.rollback()
            raise ValidationError(f"table {table_no} already exists")
        logger.info("Table created", table_id=t.id, table_no=table_no)
        return t

    def list_tables(self) -> list[DiningTable]:
        return (
            self._db.query(DiningTable)
            .filter(DiningTable.branch_id == self._ctx.branch_id, DiningTable.deleted_at.is_(None))
            .order_by(DiningTable.table_no.asc())
            .all()
        )

    def change_status(self, table_id: str, status) -> DiningTable:
        """Explicit staff status change; any state may move to any other."""
        new = parse_status(status)
        t = self.get(table_id)
        orders = self.open_orders(table_id)
        unpaid = [o for o in orders
                  if o.status is OrderStatus.OPEN and o.payment_status is not PaymentStatus.PAID]
        if new in TURNOVER_STATES and unpaid and settings.BLOCK_TURNOVER_WITH_UNPAID:
            raise InvalidStateError(
                f"table {t.table_no} still has {len(unpaid)} unpaid order(s)", table_id=t.id)
        if new in TURNOVER_STATES and unpaid:
            logger.warning("Table turned over with unpaid orders", table_id=t.id,
                           status=new.value, unpaid=len(unpaid))

        before = t.status
        t.status = new
        if new is TableStatus.AVAILABLE:
            # settled orders leave with the guests; unpaid ones stay visible
            for o in orders:
                if o.status is not OrderStatus.OPEN:
                    self._db.query(TableOrder).filter(
                        TableOrder.table_id == t.id, TableOrder.order_id == o.id
                    ).delete(synchronize_session=False)
        t.version = (t.version or 1) + 1
        log_audit(self._db, self._ctx, "table", t.id, "STATUS",
                  before={"status": before.value}, after={"status": new.value})
        self._db.commit()
        logger.info("Table status changed", table_id=t.id, before=before.value, after=new.value)
        return t

    def move_orders(self, from_table_id: str, to_table_id: str) -> DiningTable:
        """Move every open order from one table to another (guests changed tables)."""
        if from_table_id == to_table_id:
            raise ValidationError("source and target table are the same")
        src = self.get(from_table_id)
        dst = self.get(to_table_id)
        moving = [o for o in self.open_orders(src.id) if o.status is OrderStatus.OPEN]
        if not moving:
            raise InvalidStateError(f"table {src.table_no} has no open orders")
        for o in moving:
            self._db.query(TableOrder).filter(
                TableOrder.table_id == src.id, TableOrder.order_id == o.id
            ).delete(synchronize_session=False)
            self._db.add(TableOrder(table_id=dst.id, order_id=o.id))
            o.table_id = dst.id
            with version_guard(self._db, o):
                self._db.flush()
        dst.status = TableStatus.OCCUPIED
        src.status = TableStatus.AVAILABLE
        log_audit(self._db, self._ctx, "table", src.id, "MOVE",
                  after={"to": dst.id, "orders": [o.id for o in moving]})
        self._db.commit()
        logger.info("Orders moved", from_table=src.id, to_table=dst.id, count=len(moving))
        return dst
