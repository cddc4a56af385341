from decimal import Decimal
from pydantic import BaseModel, Field
from typing import Optional, Literal

ItemKindLiteral = Literal["catalog", "custom", "quick_add"]
DiscountTypeLiteral = Literal["amount", "percentage"]
PayModeLiteral = Literal["cash", "card", "upi", "wallet", "online"]

class ItemIn(BaseModel):
    name: str
    price: Decimal = Field(ge=0)
    quantity: int = Field(default=1, ge=1)
    tax_rate: Decimal = Decimal("0")
    kind: ItemKindLiteral = "catalog"
    menu_item_id: Optional[str] = None
    note: Optional[str] = None

class AddItemIn(BaseModel):
    item: ItemIn
    order_id: Optional[str] = None
    table_id: Optional[str] = None
    version: Optional[int] = None

class QuantityIn(BaseModel):
    delta: int
    version: Optional[int] = None

class DiscountIn(BaseModel):
    type: DiscountTypeLiteral
    value: Decimal = Field(ge=0)
    max_discount_amount: Optional[Decimal] = None

class DiscountUpdateIn(BaseModel):
    discount: Optional[DiscountIn] = None
    version: Optional[int] = None

class ComplementaryIn(BaseModel):
    complementary: bool = True
    reason: Optional[str] = None
    version: Optional[int] = None

class CustomerIn(BaseModel):
    name: Optional[str] = None
    phone: Optional[str] = None
    tax_id: Optional[str] = None
    version: Optional[int] = None

class CouponIn(BaseModel):
    code: str
    version: Optional[int] = None

class OrderSaveIn(BaseModel):
    """Full order state from a terminal. Any totals it carries are ignored."""
    version: int
    items: list[ItemIn]
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    customer_tax_id: Optional[str] = None
    discount: Optional[DiscountIn] = None
    coupon_code: Optional[str] = None
    is_complementary: bool = False
    complementary_reason: Optional[str] = None

class PreviewIn(BaseModel):
    items: list[ItemIn]
    discount: Optional[DiscountIn] = None
    cgst_rate: Decimal = Decimal("0")
    sgst_rate: Decimal = Decimal("0")
    is_complementary: bool = False

class SplitPaymentIn(BaseModel):
    method: PayModeLiteral
    amount: Decimal

class CheckoutIn(BaseModel):
    payment_method: Optional[PayModeLiteral] = "cash"
    amount_paid: Optional[Decimal] = None
    is_split: bool = False
    split_payments: list[SplitPaymentIn] = []
    payment_token: Optional[str] = None
    version: Optional[int] = None

class CancelIn(BaseModel):
    credential: Optional[str] = None
    reason: Optional[str] = None
    version: Optional[int] = None

class CancelRequestIn(BaseModel):
    reason: Optional[str] = None

class CancelConfirmIn(BaseModel):
    token: str
    credential: Optional[str] = None

class MergeIn(BaseModel):
    order_ids: list[str]
    reason: Optional[str] = None
