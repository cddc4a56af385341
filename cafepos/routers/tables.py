# cafepos/routers/tables.py
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from cafepos.context import RequestContext
from cafepos.db import get_db
from cafepos.deps import require_context
from cafepos.models.core import DiningTable, Order
from cafepos.schemas.tables import TableIn, TableMoveIn, TableStatusIn
from cafepos.services.billing import _money
from cafepos.services.tables import TableService, TableSummary, summarize

router = APIRouter(prefix="/tables", tags=["tables"])


def _order_brief(o: Order) -> dict:
    return {
        "id": o.id,
        "order_no": o.order_no,
        "status": o.status.value,
        "payment_status": o.payment_status.value,
        "total": _money(o.total),
        "version": o.version,
    }


def _summary_out(s: TableSummary) -> dict:
    return {
        "order_count": s.order_count,
        "total_amount": _money(s.total_amount),
        "unpaid_amount": _money(s.unpaid_amount),
        "paid_amount": _money(s.paid_amount),
        "session_started_at": s.session_started_at.isoformat() if s.session_started_at else None,
        "elapsed_minutes": s.elapsed_minutes(),
    }


def _row_from_table(svc: TableService, t: DiningTable, with_orders: bool = False) -> dict:
    """
    {
      "id": "...", "table_no": 3, "capacity": 4, "location": "indoor",
      "status": "occupied", "version": 2,
      "summary": {...}, "orders": [...]   # orders only on the detail view
    }
    """
    orders = svc.open_orders(t.id)
    row = {
        "id": t.id,
        "branch_id": t.branch_id,
        "table_no": t.table_no,
        "capacity": t.capacity,
        "location": t.location,
        "status": t.status.value,
        "version": t.version,
        "summary": _summary_out(summarize(orders)),
    }
    if with_orders:
        row["orders"] = [_order_brief(o) for o in orders]
    return row


# ------------------------------------------------------------------
# POST /tables  -> create new table
# ------------------------------------------------------------------
@router.post("")
def create_table(body: TableIn, db: Session = Depends(get_db),
                 ctx: RequestContext = Depends(require_context)):
    svc = TableService(db, ctx)
    t = svc.create_table(body.table_no, body.capacity, body.location)
    return _row_from_table(svc, t)


# ------------------------------------------------------------------
# GET /tables  -> every table of the caller's branch with its aggregates
# ------------------------------------------------------------------
@router.get("")
def list_tables(db: Session = Depends(get_db), ctx: RequestContext = Depends(require_context)):
    svc = TableService(db, ctx)
    return [_row_from_table(svc, t) for t in svc.list_tables()]


@router.get("/{table_id}")
def get_table(table_id: str, db: Session = Depends(get_db),
              ctx: RequestContext = Depends(require_context)):
    svc = TableService(db, ctx)
    return _row_from_table(svc, svc.get(table_id), with_orders=True)


# ------------------------------------------------------------------
# PUT /tables/{id}/status  -> explicit staff status change
# ------------------------------------------------------------------
@router.put("/{table_id}/status")
def change_status(table_id: str, body: TableStatusIn, db: Session = Depends(get_db),
                  ctx: RequestContext = Depends(require_context)):
    svc = TableService(db, ctx)
    t = svc.change_status(table_id, body.status)
    return _row_from_table(svc, t, with_orders=True)


@router.post("/{table_id}/move")
def move_orders(table_id: str, body: TableMoveIn, db: Session = Depends(get_db),
                ctx: RequestContext = Depends(require_context)):
    svc = TableService(db, ctx)
    dst = svc.move_orders(table_id, body.to_table_id)
    return _row_from_table(svc, dst, with_orders=True)
