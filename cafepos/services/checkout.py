"""
Checkout: authoritative recompute, settlement check, save, payment finalization.

Settlement is verified before anything is written. Saving and finalizing are
two commits; if finalization fails the order stays saved, open and unpaid,
and retrying with the same payment token is safe because finalizers key
their work on (order, token).
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Protocol
import uuid

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from cafepos.context import RequestContext
from cafepos.errors import BackendError, InvalidStateError, SettlementError, StaleVersionError, ValidationError
from cafepos.models.core import Order, OrderStatus, PaymentStatus, PayMode, Payment
from cafepos.services import customers
from cafepos.services.billing import ZERO, Totals, money, to_decimal
from cafepos.services.coupons import CouponValidator, DbCouponValidator
from cafepos.services.orders import OrderService, apply_totals, totals_for, version_guard
from cafepos.services.payments import SplitPaymentReconciler, parse_mode
from cafepos.util.audit import log_audit
from cafepos.util.logging import get_logger
from cafepos.util.time import utcnow

logger = get_logger(__name__)


@dataclass
class CheckoutRequest:
    payment_method: str | None = "cash"
    amount_paid: Decimal | None = None
    is_split: bool = False
    split_payments: list[tuple[str, Decimal]] = field(default_factory=list)
    payment_token: str | None = None
    expected_version: int | None = None


@dataclass(frozen=True)
class Finalization:
    token: str
    payment_ids: list[str]


@dataclass
class CheckoutResult:
    order: Order
    totals: Totals
    amount_paid: Decimal
    change_due: Decimal = ZERO
    replayed: bool = False


class PaymentFinalizer(Protocol):
    def finalize(self, order: Order, entries: list[tuple[PayMode, Decimal]],
                 amount_paid: Decimal, token: str) -> Finalization: ...


class LedgerPaymentFinalizer:
    """Records payments in the local ledger; a replayed token returns the rows it already wrote."""

    def __init__(self, db: Session):
        self._db = db

    def finalize(self, order, entries, amount_paid, token):
        existing = (self._db.query(Payment)
                    .filter(Payment.order_id == order.id, Payment.token == token).all())
        if existing:
            return Finalization(token=token, payment_ids=[p.id for p in existing])
        now = utcnow()
        rows = [Payment(order_id=order.id, mode=mode, amount=money(amount), token=token, paid_at=now)
                for mode, amount in entries]
        self._db.add_all(rows)
        self._db.flush()
        return Finalization(token=token, payment_ids=[p.id for p in rows])


def build_reconciler(req: CheckoutRequest, total: Decimal) -> SplitPaymentReconciler:
    if req.is_split:
        if not req.split_payments:
            raise ValidationError("split checkout needs at least one payment")
        rec = SplitPaymentReconciler(total)
        for method, amount in req.split_payments:
            rec.add_payment(method, amount)
        return rec
    if not req.payment_method:
        raise ValidationError("payment method is required")
    return SplitPaymentReconciler(total, method=parse_mode(req.payment_method))


class CheckoutOrchestrator:
    def __init__(self, db: Session, ctx: RequestContext, finalizer: PaymentFinalizer | None = None,
                 coupons: CouponValidator | None = None):
        self._db = db
        self._ctx = ctx
        self._finalizer = finalizer or LedgerPaymentFinalizer(db)
        self._coupons = coupons or DbCouponValidator(db)
        self._orders = OrderService(db, ctx, coupons=self._coupons)

    def checkout(self, order_id: str, req: CheckoutRequest) -> CheckoutResult:
        o = self._orders.get(order_id)
        if (o.status is OrderStatus.PAID and req.payment_token
                and o.payment_token == req.payment_token):
            logger.info("Checkout replayed", order_id=o.id)
            return CheckoutResult(order=o, totals=totals_for(o), amount_paid=to_decimal(o.total),
                                  replayed=True)
        if not o.status.can_become(OrderStatus.PAID):
            raise InvalidStateError(f"order is already {o.status.value}", order_id=o.id)
        if req.expected_version is not None and req.expected_version != o.version:
            raise StaleVersionError(o.id, req.expected_version, o.version)
        if not o.items:
            raise ValidationError("cannot check out an empty order")

        # 1. authoritative totals; whatever the terminal showed is advisory
        totals = totals_for(o)
        if o.coupon_code:
            self._coupons.validate(o.coupon_code, totals.subtotal)

        # 2. settlement, before any write
        change_due = ZERO
        if o.is_complementary:
            entries: list[tuple[PayMode, Decimal]] = []
            amount_paid = ZERO
            method = None
        else:
            rec = build_reconciler(req, totals.total)
            if not rec.split_mode and req.amount_paid is not None:
                tendered = money(req.amount_paid)
                if tendered + rec.epsilon < totals.total:
                    raise SettlementError(
                        f"insufficient payment: required {totals.total}, paid {tendered}",
                        order_id=o.id)
                change_due = max(ZERO, tendered - totals.total)
            rec.require_settled()
            entries = rec.payments()
            amount_paid = rec.amount_paid()
            method = rec.payment_method()

        # 3. persist (save semantics)
        apply_totals(o, totals)
        o.updated_at = utcnow()
        log_audit(self._db, self._ctx, "order", o.id, "SAVE", after={"total": str(totals.total)})
        with version_guard(self._db, o):
            self._db.commit()

        # 4. finalize payment
        token = req.payment_token or uuid.uuid4().hex
        try:
            fin = self._finalizer.finalize(o, entries, amount_paid, token)
        except BackendError:
            self._db.rollback()
            logger.error("Payment finalization failed; order left unpaid", order_id=o.id)
            raise
        except SQLAlchemyError as e:
            self._db.rollback()
            logger.error("Payment finalization failed; order left unpaid", order_id=o.id, exc_info=True)
            raise BackendError(f"payment finalization failed: {e}") from e

        # 5. mark paid
        o.status = OrderStatus.PAID
        o.payment_status = PaymentStatus.PAID
        o.payment_method = method
        o.split_payments = [{"method": m.value, "amount": float(a)} for m, a in entries] \
            if method is PayMode.MIXED else None
        o.payment_token = fin.token
        o.paid_at = utcnow()
        if o.coupon_code:
            self._coupons.redeem(o.coupon_code)
        log_audit(self._db, self._ctx, "order", o.id, "CHECKOUT", after={
            "total": str(totals.total), "method": method.value if method else "complementary",
            "amount_paid": str(amount_paid), "payments": fin.payment_ids,
        })
        with version_guard(self._db, o):
            self._db.commit()
        logger.info("Order paid", order_id=o.id, order_no=o.order_no, total=str(totals.total),
                    method=method.value if method else "complementary")

        # best effort; never blocks a completed checkout
        customers.record_visit(self._db, o.customer_phone, o.customer_name, o.customer_tax_id, totals.total)
        return CheckoutResult(order=o, totals=totals, amount_paid=amount_paid, change_due=change_due)
