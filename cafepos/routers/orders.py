from fastapi import APIRouter, Depends, Header
from sqlalchemy.orm import Session

from cafepos.context import RequestContext
from cafepos.db import get_db
from cafepos.deps import require_context
from cafepos.models.core import Order
from cafepos.schemas.orders import (
    AddItemIn, CancelConfirmIn, CancelIn, CancelRequestIn, CheckoutIn, ComplementaryIn,
    CouponIn, CustomerIn, DiscountIn, DiscountUpdateIn, ItemIn, MergeIn, OrderSaveIn,
    PreviewIn, QuantityIn,
)
from cafepos.services.billing import Discount, LineItem, _money, compute
from cafepos.services.cancellation import CancellationAuthority
from cafepos.services.checkout import CheckoutOrchestrator, CheckoutRequest
from cafepos.services.orders import OrderService, OrderState, totals_for

router = APIRouter(prefix="/orders", tags=["orders"])


def _line_item(i: ItemIn) -> LineItem:
    return LineItem(name=i.name, price=i.price, quantity=i.quantity, tax_rate=i.tax_rate,
                    kind=i.kind, menu_item_id=i.menu_item_id)


def _discount(d: DiscountIn | None) -> Discount | None:
    if d is None:
        return None
    return Discount(d.type, d.value, d.max_discount_amount)


def _order_out(o: Order) -> dict:
    """Order as the terminal renders it; totals always come from the calculator."""
    return {
        "id": o.id,
        "order_no": o.order_no,
        "table_id": o.table_id,
        "status": o.status.value,
        "payment_status": o.payment_status.value,
        "payment_method": o.payment_method.value if o.payment_method else None,
        "split_payments": o.split_payments or [],
        "version": o.version,
        "customer_name": o.customer_name,
        "customer_phone": o.customer_phone,
        "customer_tax_id": o.customer_tax_id,
        "discount": None if o.discount_type is None else {
            "type": o.discount_type.value,
            "value": _money(o.discount_value),
            "max_discount_amount": None if o.max_discount_amount is None else _money(o.max_discount_amount),
        },
        "coupon_code": o.coupon_code,
        "is_complementary": o.is_complementary,
        "complementary_reason": o.complementary_reason,
        "cancel_reason": o.cancel_reason,
        "merged_into_id": o.merged_into_id,
        "created_at": o.created_at.isoformat() if o.created_at else None,
        "paid_at": o.paid_at.isoformat() if o.paid_at else None,
        "items": [
            {
                "id": i.id,
                "position": i.position,
                "kind": i.kind.value,
                "menu_item_id": i.menu_item_id,
                "name": i.name,
                "price": _money(i.unit_price),
                "quantity": i.qty,
                "tax_rate": float(i.tax_rate or 0),
                "note": i.note,
                "line_total": _money(i.unit_price * i.qty),
            }
            for i in o.items
        ],
        "totals": totals_for(o).as_dict(),
    }


# ---------- Preview (stateless) ----------
@router.post("/preview")
def preview(body: PreviewIn, ctx: RequestContext = Depends(require_context)):
    t = compute([_line_item(i) for i in body.items], _discount(body.discount),
                body.cgst_rate, body.sgst_rate, body.is_complementary)
    return t.as_dict()


# ---------- Items ----------
@router.post("/items")
def add_item(body: AddItemIn, db: Session = Depends(get_db), ctx: RequestContext = Depends(require_context)):
    """Adds a line; the first add on a table opens the order."""
    svc = OrderService(db, ctx)
    o = svc.add_item(_line_item(body.item), table_id=body.table_id, order_id=body.order_id,
                     note=body.item.note, expected_version=body.version)
    return _order_out(o)


@router.patch("/{order_id}/items/{item_id}")
def update_quantity(order_id: str, item_id: str, body: QuantityIn, db: Session = Depends(get_db),
                    ctx: RequestContext = Depends(require_context)):
    o = OrderService(db, ctx).update_quantity(order_id, item_id, body.delta, expected_version=body.version)
    return _order_out(o)


@router.delete("/{order_id}/items/{item_id}")
def remove_item(order_id: str, item_id: str, version: int | None = None, db: Session = Depends(get_db),
                ctx: RequestContext = Depends(require_context)):
    o = OrderService(db, ctx).remove_item(order_id, item_id, expected_version=version)
    return _order_out(o)


# ---------- Adjustments ----------
@router.put("/{order_id}/discount")
def set_discount(order_id: str, body: DiscountUpdateIn, db: Session = Depends(get_db),
                 ctx: RequestContext = Depends(require_context)):
    o = OrderService(db, ctx).set_discount(order_id, _discount(body.discount), expected_version=body.version)
    return _order_out(o)


@router.put("/{order_id}/coupon")
def attach_coupon(order_id: str, body: CouponIn, db: Session = Depends(get_db),
                  ctx: RequestContext = Depends(require_context)):
    o = OrderService(db, ctx).attach_coupon(order_id, body.code, expected_version=body.version)
    return _order_out(o)


@router.put("/{order_id}/complementary")
def set_complementary(order_id: str, body: ComplementaryIn, db: Session = Depends(get_db),
                      ctx: RequestContext = Depends(require_context)):
    svc = OrderService(db, ctx)
    if body.complementary:
        o = svc.set_complementary(order_id, body.reason or "", expected_version=body.version)
    else:
        o = svc.clear_complementary(order_id, expected_version=body.version)
    return _order_out(o)


@router.put("/{order_id}/customer")
def set_customer(order_id: str, body: CustomerIn, db: Session = Depends(get_db),
                 ctx: RequestContext = Depends(require_context)):
    o = OrderService(db, ctx).set_customer_info(order_id, body.name, body.phone, body.tax_id,
                                                expected_version=body.version)
    return _order_out(o)


# ---------- Merge ----------
@router.post("/merge")
def merge_orders(body: MergeIn, db: Session = Depends(get_db), ctx: RequestContext = Depends(require_context)):
    o = OrderService(db, ctx).merge(body.order_ids, body.reason)
    return _order_out(o)


@router.post("/merge/preview")
def merge_preview(body: MergeIn, db: Session = Depends(get_db), ctx: RequestContext = Depends(require_context)):
    p = OrderService(db, ctx).merge_preview(body.order_ids)
    return {
        "target_id": p.target.id,
        "orders": [
            {"id": o.id, "order_no": o.order_no, "table_id": o.table_id, "total": _money(o.total),
             "item_count": len(o.items)}
            for o in [p.target, *p.sources]
        ],
        "items": [
            {"name": i.name, "price": _money(i.price), "quantity": i.quantity, "kind": i.kind.value,
             "menu_item_id": i.menu_item_id}
            for i in p.items
        ],
        "totals": p.totals.as_dict(),
    }


# ---------- Cancel (ask, then commit) ----------
@router.post("/cancel/confirm")
def confirm_cancel(body: CancelConfirmIn, db: Session = Depends(get_db),
                   ctx: RequestContext = Depends(require_context)):
    o = CancellationAuthority(db, ctx).confirm_cancel(body.token, body.credential or "")
    return _order_out(o)


# ---------- Single order ----------
@router.get("/{order_id}")
def get_order(order_id: str, db: Session = Depends(get_db), ctx: RequestContext = Depends(require_context)):
    return _order_out(OrderService(db, ctx).get(order_id))


@router.put("/{order_id}")
def save_order(order_id: str, body: OrderSaveIn, db: Session = Depends(get_db),
               ctx: RequestContext = Depends(require_context)):
    state = OrderState(
        items=[_line_item(i) for i in body.items],
        customer_name=body.customer_name,
        customer_phone=body.customer_phone,
        customer_tax_id=body.customer_tax_id,
        discount=_discount(body.discount),
        coupon_code=body.coupon_code,
        complementary=body.is_complementary,
        complementary_reason=body.complementary_reason,
        notes={n: i.note for n, i in enumerate(body.items) if i.note},
    )
    o = OrderService(db, ctx).save(order_id, state, expected_version=body.version)
    return _order_out(o)


@router.post("/{order_id}/checkout")
def checkout(order_id: str, body: CheckoutIn, db: Session = Depends(get_db),
             ctx: RequestContext = Depends(require_context),
             idempotency_key: str | None = Header(default=None)):
    req = CheckoutRequest(
        payment_method=body.payment_method,
        amount_paid=body.amount_paid,
        is_split=body.is_split,
        split_payments=[(p.method, p.amount) for p in body.split_payments],
        payment_token=body.payment_token or idempotency_key,
        expected_version=body.version,
    )
    res = CheckoutOrchestrator(db, ctx).checkout(order_id, req)
    out = _order_out(res.order)
    out["amount_paid"] = _money(res.amount_paid)
    out["change_due"] = _money(res.change_due)
    out["replayed"] = res.replayed
    return out


@router.post("/{order_id}/cancel")
def cancel_order(order_id: str, body: CancelIn, db: Session = Depends(get_db),
                 ctx: RequestContext = Depends(require_context)):
    o = CancellationAuthority(db, ctx).cancel(order_id, body.credential or "", body.reason or "",
                                              expected_version=body.version)
    return _order_out(o)


@router.post("/{order_id}/cancel/request")
def request_cancel(order_id: str, body: CancelRequestIn, db: Session = Depends(get_db),
                   ctx: RequestContext = Depends(require_context)):
    token = CancellationAuthority(db, ctx).request_cancel(order_id, body.reason or "")
    return {"token": token, "order_id": order_id}
