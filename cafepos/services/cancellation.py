"""
Order cancellation behind a reason and a staff credential.

The credential is only checked for presence here and handed to a
CredentialValidator; it is never compared locally, stored or logged.
Cancellation is whole-order and atomic: either every change lands in one
commit or none does.
"""

from typing import Protocol

import jwt
from sqlalchemy.orm import Session

from cafepos.context import RequestContext
from cafepos.errors import AuthorizationError, InvalidStateError, StaleVersionError, ValidationError
from cafepos.models.core import Order, OrderStatus, User
from cafepos.services.orders import OrderService, detach_from_tables, version_guard
from cafepos.util.audit import log_audit
from cafepos.util.logging import get_logger
from cafepos.util.security import create_action_token, read_action_token, verify_pw
from cafepos.util.time import utcnow

logger = get_logger(__name__)

CANCEL_ACTION = "order.cancel"


class CredentialValidator(Protocol):
    def verify(self, ctx: RequestContext, credential: str) -> bool: ...


class PinCredentialValidator:
    """Checks the acting staff member's PIN (or password when no PIN is set)."""

    def __init__(self, db: Session):
        self._db = db

    def verify(self, ctx: RequestContext, credential: str) -> bool:
        user = self._db.get(User, ctx.user_id)
        if not user or not user.active:
            return False
        return verify_pw(user.pin_hash or user.pass_hash, credential)


def _require(value: str | None, what: str) -> str:
    if value is None or not str(value).strip():
        raise ValidationError(f"{what} is required")
    return str(value).strip()


class CancellationAuthority:
    def __init__(self, db: Session, ctx: RequestContext, validator: CredentialValidator | None = None):
        self._db = db
        self._ctx = ctx
        self._validator = validator or PinCredentialValidator(db)
        self._orders = OrderService(db, ctx)

    def _cancellable(self, order_id: str) -> Order:
        o = self._orders.get(order_id)
        if o.status is not OrderStatus.OPEN:
            raise InvalidStateError(f"cannot cancel {o.status.value} order", order_id=o.id)
        return o

    def cancel(self, order_id: str, credential: str, reason: str,
               expected_version: int | None = None) -> Order:
        reason = _require(reason, "cancellation reason")
        credential = _require(credential, "credential")
        o = self._cancellable(order_id)
        if expected_version is not None and expected_version != o.version:
            raise StaleVersionError(o.id, expected_version, o.version)
        if not self._validator.verify(self._ctx, credential):
            logger.warning("Cancellation rejected", order_id=o.id, user_id=self._ctx.user_id)
            raise AuthorizationError()
        return self._commit_cancel(o, reason)

    def _commit_cancel(self, o: Order, reason: str) -> Order:
        o.status = OrderStatus.CANCELLED
        o.cancel_reason = reason
        o.cancelled_at = utcnow()
        o.cancelled_by_user_id = self._ctx.user_id
        with version_guard(self._db, o):
            self._db.flush()
            removed = detach_from_tables(self._db, o.id)
            log_audit(self._db, self._ctx, "order", o.id, "CANCEL", reason=reason,
                      after={"total": str(o.total), "tables_detached": removed})
            self._db.commit()
        logger.info("Order cancelled", order_id=o.id, order_no=o.order_no, total=str(o.total))
        return o

    # ── ask, then commit ────────────────────────────────────────────────────
    def request_cancel(self, order_id: str, reason: str) -> str:
        """First step: validate the request and hand back a short-lived confirmation token."""
        reason = _require(reason, "cancellation reason")
        o = self._cancellable(order_id)
        return create_action_token(CANCEL_ACTION, {
            "oid": o.id, "ver": o.version, "reason": reason,
            "sub": self._ctx.user_id, "branch": self._ctx.branch_id,
        })

    def confirm_cancel(self, token: str, credential: str) -> Order:
        """Second step: commit the cancellation described by the token."""
        token = _require(token, "confirmation token")
        credential = _require(credential, "credential")
        try:
            claims = read_action_token(token, CANCEL_ACTION)
        except jwt.InvalidTokenError:
            raise AuthorizationError()
        if claims.get("sub") != self._ctx.user_id or claims.get("branch") != self._ctx.branch_id:
            raise AuthorizationError()
        return self.cancel(claims["oid"], credential, claims["reason"], expected_version=claims["ver"])
