"""
Terminal-side client for the POS API.

Wraps an ``httpx.Client`` (a FastAPI ``TestClient`` works too), keeps the
bearer token and branch it logged in with, and turns error bodies back into
the exceptions the server raised. Bill previews run locally through the same
calculator the server uses, so the number on screen is the number charged.
"""

from decimal import Decimal
from typing import Any
import uuid

import httpx

from cafepos.errors import ERRORS_BY_CODE, AuthorizationError, BackendError, PosError, ValidationError
from cafepos.services.billing import Discount, LineItem, Totals, compute, to_decimal
from cafepos.util.logging import get_logger

logger = get_logger(__name__)


def _rebuild(code: str | None, detail: str, status_code: int) -> PosError:
    cls = ERRORS_BY_CODE.get(code or "")
    if cls is None:
        if status_code == 422:
            return ValidationError(detail)
        if status_code in (401, 403):
            return AuthorizationError(detail or "not authorized")
        return BackendError(detail or f"HTTP {status_code}")
    # bypass the subclass constructors: the server already formatted the message
    exc = cls.__new__(cls)
    PosError.__init__(exc, detail)
    return exc


def _flatten_problems(problems: list) -> str:
    out = []
    for p in problems:
        if isinstance(p, dict):
            loc = ".".join(str(x) for x in p.get("loc", ()))
            out.append(f"{loc}: {p.get('msg')}")
        else:
            out.append(str(p))
    return "; ".join(out)


def _item_body(item: LineItem, note: str | None = None) -> dict:
    return {
        "name": item.name,
        "price": str(item.price),
        "quantity": item.quantity,
        "tax_rate": str(item.tax_rate),
        "kind": item.kind.value,
        "menu_item_id": item.menu_item_id,
        "note": note,
    }


def _discount_body(d: Discount | None) -> dict | None:
    if d is None:
        return None
    return {
        "type": d.type.value,
        "value": str(d.value),
        "max_discount_amount": None if d.max_discount_amount is None else str(d.max_discount_amount),
    }


class PosClient:
    def __init__(self, http: httpx.Client, token: str | None = None, branch_id: str | None = None):
        self.http = http
        self.token = token
        self.branch_id = branch_id
        self._tax_profile: dict | None = None

    # ── plumbing ────────────────────────────────────────────────────────────
    def _headers(self, extra: dict | None = None) -> dict:
        h = {"X-Request-ID": str(uuid.uuid4())}
        if self.token:
            h["Authorization"] = f"Bearer {self.token}"
        if extra:
            h.update(extra)
        return h

    def _call(self, method: str, path: str, *, headers: dict | None = None, **kwargs) -> Any:
        try:
            r = self.http.request(method, path, headers=self._headers(headers), **kwargs)
        except httpx.HTTPError as e:
            logger.error("POS backend unreachable", method=method, path=path, error=str(e))
            raise BackendError(str(e)) from e
        if r.status_code >= 400:
            try:
                body = r.json()
            except ValueError:
                body = {"detail": r.text}
            detail = body.get("detail") if isinstance(body, dict) else None
            if isinstance(detail, list):
                # pydantic 422 bodies carry a list of problems
                detail = _flatten_problems(detail)
            elif not isinstance(detail, str):
                detail = str(detail or r.text)
            raise _rebuild(body.get("code") if isinstance(body, dict) else None, detail, r.status_code)
        return r.json()

    # ── session ─────────────────────────────────────────────────────────────
    def login(self, mobile: str, password: str) -> str:
        data = self._call("POST", "/auth/login", params={"mobile": mobile, "password": password})
        self.token = data["access_token"]
        self.branch_id = data.get("branch_id")
        self._tax_profile = None
        return self.token

    def tax_profile(self, refresh: bool = False) -> dict:
        if self._tax_profile is None or refresh:
            self._tax_profile = self._call("GET", f"/branches/{self.branch_id}/tax-profile")
        return self._tax_profile

    def set_tax_profile(self, cgst_rate, sgst_rate, gstin: str | None = None) -> dict:
        self._tax_profile = self._call("PUT", f"/branches/{self.branch_id}/tax-profile", json={
            "cgst_rate": float(cgst_rate), "sgst_rate": float(sgst_rate), "gstin": gstin,
        })
        return self._tax_profile

    # ── bill preview (local) ────────────────────────────────────────────────
    def preview(self, items: list[LineItem], discount: Discount | None = None,
                complementary: bool = False, order: dict | None = None) -> Totals:
        """Bill for ``items``. An existing order is billed at the rates it was snapshotted with."""
        rates = order["totals"] if order else self.tax_profile()
        return compute(items, discount, to_decimal(rates["cgst_rate"]), to_decimal(rates["sgst_rate"]),
                       complementary)

    # ── tables ──────────────────────────────────────────────────────────────
    def list_tables(self) -> list[dict]:
        return self._call("GET", "/tables")

    def get_table(self, table_id: str) -> dict:
        return self._call("GET", f"/tables/{table_id}")

    def set_table_status(self, table_id: str, status: str) -> dict:
        return self._call("PUT", f"/tables/{table_id}/status", json={"status": status})

    def move_orders(self, from_table_id: str, to_table_id: str) -> dict:
        return self._call("POST", f"/tables/{from_table_id}/move", json={"to_table_id": to_table_id})

    # ── orders ──────────────────────────────────────────────────────────────
    def get_order(self, order_id: str) -> dict:
        return self._call("GET", f"/orders/{order_id}")

    def add_item(self, item: LineItem, *, table_id: str | None = None, order_id: str | None = None,
                 note: str | None = None, version: int | None = None) -> dict:
        return self._call("POST", "/orders/items", json={
            "item": _item_body(item, note), "table_id": table_id, "order_id": order_id, "version": version,
        })

    def update_quantity(self, order_id: str, item_id: str, delta: int, version: int | None = None) -> dict:
        return self._call("PATCH", f"/orders/{order_id}/items/{item_id}",
                          json={"delta": delta, "version": version})

    def remove_item(self, order_id: str, item_id: str, version: int | None = None) -> dict:
        params = {"version": version} if version is not None else None
        return self._call("DELETE", f"/orders/{order_id}/items/{item_id}", params=params)

    def set_discount(self, order_id: str, discount: Discount | None, version: int | None = None) -> dict:
        return self._call("PUT", f"/orders/{order_id}/discount",
                          json={"discount": _discount_body(discount), "version": version})

    def attach_coupon(self, order_id: str, code: str, version: int | None = None) -> dict:
        return self._call("PUT", f"/orders/{order_id}/coupon", json={"code": code, "version": version})

    def set_complementary(self, order_id: str, reason: str | None, complementary: bool = True,
                          version: int | None = None) -> dict:
        return self._call("PUT", f"/orders/{order_id}/complementary",
                          json={"complementary": complementary, "reason": reason, "version": version})

    def set_customer(self, order_id: str, name: str | None = None, phone: str | None = None,
                     tax_id: str | None = None, version: int | None = None) -> dict:
        return self._call("PUT", f"/orders/{order_id}/customer",
                          json={"name": name, "phone": phone, "tax_id": tax_id, "version": version})

    def save_order(self, order_id: str, version: int, items: list[LineItem], *,
                   discount: Discount | None = None, coupon_code: str | None = None,
                   customer_name: str | None = None, customer_phone: str | None = None,
                   customer_tax_id: str | None = None, complementary: bool = False,
                   complementary_reason: str | None = None) -> dict:
        return self._call("PUT", f"/orders/{order_id}", json={
            "version": version,
            "items": [_item_body(i) for i in items],
            "discount": _discount_body(discount),
            "coupon_code": coupon_code,
            "customer_name": customer_name,
            "customer_phone": customer_phone,
            "customer_tax_id": customer_tax_id,
            "is_complementary": complementary,
            "complementary_reason": complementary_reason,
        })

    def merge(self, order_ids: list[str], reason: str | None = None) -> dict:
        return self._call("POST", "/orders/merge", json={"order_ids": order_ids, "reason": reason})

    def merge_preview(self, order_ids: list[str]) -> dict:
        return self._call("POST", "/orders/merge/preview", json={"order_ids": order_ids})

    # ── checkout & cancel ───────────────────────────────────────────────────
    def checkout(self, order_id: str, payment_method: str | None = "cash", amount_paid: Decimal | None = None,
                 split_payments: list[tuple[str, Decimal]] | None = None, payment_token: str | None = None,
                 version: int | None = None) -> dict:
        """Settle an order. Reusing ``payment_token`` on a retry never charges twice."""
        token = payment_token or uuid.uuid4().hex
        body = {
            "payment_method": payment_method,
            "amount_paid": None if amount_paid is None else str(amount_paid),
            "is_split": bool(split_payments),
            "split_payments": [{"method": m, "amount": str(a)} for m, a in (split_payments or [])],
            "payment_token": token,
            "version": version,
        }
        return self._call("POST", f"/orders/{order_id}/checkout", json=body,
                          headers={"Idempotency-Key": token})

    def cancel(self, order_id: str, credential: str, reason: str, version: int | None = None) -> dict:
        return self._call("POST", f"/orders/{order_id}/cancel",
                          json={"credential": credential, "reason": reason, "version": version})

    def request_cancel(self, order_id: str, reason: str) -> str:
        return self._call("POST", f"/orders/{order_id}/cancel/request", json={"reason": reason})["token"]

    def confirm_cancel(self, token: str, credential: str) -> dict:
        return self._call("POST", "/orders/cancel/confirm", json={"token": token, "credential": credential})
