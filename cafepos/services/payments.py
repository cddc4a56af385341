"""
Split payment reconciliation.

Tracks partial payments against an order total. Each entry is clamped to what
is still owed, so the recorded entries never sum past the target.
"""

from dataclasses import dataclass
from decimal import Decimal
import itertools

from cafepos.config import settings
from cafepos.errors import SettlementError, ValidationError
from cafepos.models.core import PayMode
from cafepos.services.billing import ZERO, money, to_decimal


def parse_mode(method) -> PayMode:
    if isinstance(method, PayMode):
        mode = method
    else:
        try:
            mode = PayMode(str(method).lower())
        except ValueError:
            raise ValidationError(f"unsupported payment method: {method}")
    if mode is PayMode.MIXED:
        raise ValidationError("'mixed' is not a payment method of its own")
    return mode


@dataclass(frozen=True)
class PaymentEntry:
    id: int
    method: PayMode
    amount: Decimal


class SplitPaymentReconciler:
    def __init__(self, target, method=PayMode.CASH, epsilon=None):
        self.target = money(target)
        if self.target < ZERO:
            raise ValidationError("target total cannot be negative")
        self.method = parse_mode(method)
        self.epsilon = to_decimal(epsilon if epsilon is not None else settings.SETTLEMENT_EPSILON)
        self._entries: list[PaymentEntry] = []
        self._ids = itertools.count(1)
        self.split_mode = False

    @property
    def entries(self) -> list[PaymentEntry]:
        return list(self._entries)

    def paid(self) -> Decimal:
        return sum((e.amount for e in self._entries), ZERO)

    def remaining(self) -> Decimal:
        return self.target - self.paid()

    def is_settled(self) -> bool:
        if not self.split_mode:
            return True
        return self.remaining() <= self.epsilon

    def add_payment(self, method, amount) -> PaymentEntry | None:
        """Record a payment clamped to what is still owed.

        Returns None, recording nothing, when the order is already covered.
        """
        mode = parse_mode(method)
        amount = money(amount)
        if amount <= ZERO:
            raise ValidationError("payment amount must be greater than zero")
        amount = min(amount, self.remaining())
        if amount <= ZERO:
            return None
        entry = PaymentEntry(id=next(self._ids), method=mode, amount=amount)
        self._entries.append(entry)
        self.split_mode = True
        return entry

    def remove_payment(self, entry_id: int) -> PaymentEntry:
        for i, e in enumerate(self._entries):
            if e.id == entry_id:
                del self._entries[i]
                if not self._entries:
                    self.split_mode = False
                return e
        raise ValidationError(f"no payment entry {entry_id}")

    def payments(self) -> list[tuple[PayMode, Decimal]]:
        """Effective (method, amount) pairs; a single implied pair outside split mode."""
        if not self.split_mode:
            return [(self.method, self.target)]
        return [(e.method, e.amount) for e in self._entries]

    def payment_method(self) -> PayMode:
        return PayMode.MIXED if self.split_mode else self.method

    def amount_paid(self) -> Decimal:
        return sum((a for _, a in self.payments()), ZERO)

    def require_settled(self) -> None:
        if not self.is_settled():
            raise SettlementError(
                f"payments do not cover the total: required {self.target}, "
                f"paid {self.paid()}, remaining {money(self.remaining())}",
                target=str(self.target), remaining=str(self.remaining()),
            )
