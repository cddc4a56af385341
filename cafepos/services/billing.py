"""
Bill computation shared by the terminal preview and the server.

Pure and deterministic: the same inputs give the same Totals on both sides,
and the server never trusts a total submitted by a client.
"""

from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable

from cafepos.errors import ValidationError
from cafepos.models.core import DiscountType, ItemKind

ZERO = Decimal("0")
CENT = Decimal("0.01")
UNIT = Decimal("1")
HUNDRED = Decimal("100")


def to_decimal(x) -> Decimal:
    if isinstance(x, Decimal):
        return x
    if x is None:
        return ZERO
    # go through str to avoid float binary artifacts
    return Decimal(str(x))


def money(x) -> Decimal:
    return to_decimal(x).quantize(CENT, rounding=ROUND_HALF_UP)


def _money(x) -> float:
    return float(money(x))


@dataclass(frozen=True)
class LineItem:
    name: str
    price: Decimal
    quantity: int
    tax_rate: Decimal = ZERO
    kind: ItemKind = ItemKind.CATALOG
    menu_item_id: str | None = None

    def __post_init__(self):
        object.__setattr__(self, "price", to_decimal(self.price))
        object.__setattr__(self, "tax_rate", to_decimal(self.tax_rate))
        if isinstance(self.kind, str):
            object.__setattr__(self, "kind", ItemKind(self.kind))
        if not self.name:
            raise ValidationError("item name is required")
        if self.price < ZERO:
            raise ValidationError(f"price of {self.name} cannot be negative")
        if isinstance(self.quantity, bool) or not isinstance(self.quantity, int) or self.quantity < 1:
            raise ValidationError(f"quantity of {self.name} must be a whole number >= 1")
        if self.kind is ItemKind.CATALOG and not self.menu_item_id:
            raise ValidationError("catalog items must reference a menu item")

    @property
    def line_total(self) -> Decimal:
        return self.price * self.quantity


@dataclass(frozen=True)
class Discount:
    type: DiscountType
    value: Decimal
    max_discount_amount: Decimal | None = None

    def __post_init__(self):
        if isinstance(self.type, str):
            object.__setattr__(self, "type", DiscountType(self.type))
        object.__setattr__(self, "value", to_decimal(self.value))
        if self.max_discount_amount is not None:
            object.__setattr__(self, "max_discount_amount", to_decimal(self.max_discount_amount))
            if self.max_discount_amount < ZERO:
                raise ValidationError("discount cap cannot be negative")
        if self.value < ZERO:
            raise ValidationError("discount cannot be negative")
        if self.type is DiscountType.PERCENTAGE and self.value > HUNDRED:
            raise ValidationError("percentage discount cannot exceed 100")

    def amount_for(self, subtotal: Decimal) -> Decimal:
        if self.type is DiscountType.PERCENTAGE:
            amount = subtotal * self.value / HUNDRED
            if self.max_discount_amount is not None:
                amount = min(amount, self.max_discount_amount)
            return money(amount)
        return money(self.value)


@dataclass(frozen=True)
class Totals:
    subtotal: Decimal = ZERO
    cgst: Decimal = ZERO
    sgst: Decimal = ZERO
    tax: Decimal = ZERO
    discount_amount: Decimal = ZERO
    pre_round_total: Decimal = ZERO
    round_off: Decimal = ZERO
    total: Decimal = ZERO
    complementary_amount: Decimal = ZERO
    cgst_rate: Decimal = ZERO
    sgst_rate: Decimal = ZERO
    complementary: bool = False
    item_count: int = field(default=0)

    def as_dict(self) -> dict:
        return {
            "subtotal": _money(self.subtotal),
            "cgst": _money(self.cgst),
            "sgst": _money(self.sgst),
            "tax": _money(self.tax),
            "discount": _money(self.discount_amount),
            "pre_round_total": _money(self.pre_round_total),
            "round_off": _money(self.round_off),
            "total": _money(self.total),
            "complementary_amount": _money(self.complementary_amount),
            "cgst_rate": float(self.cgst_rate),
            "sgst_rate": float(self.sgst_rate),
            "is_complementary": self.complementary,
            "item_count": self.item_count,
        }


def compute(
    items: Iterable[LineItem],
    discount: Discount | None = None,
    cgst_rate=ZERO,
    sgst_rate=ZERO,
    complementary: bool = False,
) -> Totals:
    items = list(items)
    cgst_rate = to_decimal(cgst_rate)
    sgst_rate = to_decimal(sgst_rate)
    if cgst_rate < ZERO or sgst_rate < ZERO:
        raise ValidationError("tax rates cannot be negative")

    subtotal = money(sum((i.line_total for i in items), ZERO))
    cgst = money(subtotal * cgst_rate / HUNDRED)
    sgst = money(subtotal * sgst_rate / HUNDRED)
    tax = cgst + sgst
    discount_amount = discount.amount_for(subtotal) if discount else ZERO

    # a discount larger than the bill never produces a negative payable
    pre_round = max(ZERO, subtotal + tax - discount_amount)
    rounded = pre_round.quantize(UNIT, rounding=ROUND_HALF_UP)

    common = dict(
        subtotal=subtotal, cgst=cgst, sgst=sgst, tax=tax,
        discount_amount=discount_amount, pre_round_total=pre_round,
        cgst_rate=cgst_rate, sgst_rate=sgst_rate,
        item_count=sum(i.quantity for i in items),
    )
    if complementary:
        return Totals(**common, round_off=ZERO, total=ZERO,
                      complementary_amount=rounded, complementary=True)
    return Totals(**common, round_off=money(rounded - pre_round), total=rounded)
