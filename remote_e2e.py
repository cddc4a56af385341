#!/usr/bin/env python3
"""
Remote E2E smoke runner for a deployed Cafe POS API.

Walks one table through order -> bill -> split payment -> turnover, then a
second order through the ask-then-commit cancellation.

Run:
    BASE_URL=http://localhost:8000 python remote_e2e.py
"""

import os
import sys
import time
import uuid
from decimal import Decimal

import httpx

from cafepos.client import PosClient
from cafepos.errors import PosError
from cafepos.models.core import ItemKind
from cafepos.services.billing import LineItem

BASE_URL = os.getenv("BASE_URL", "http://localhost:8000").rstrip("/")
MOBILE = os.getenv("POS_MOBILE", "9999999999")
PASSWORD = os.getenv("POS_PASSWORD", "admin")
PIN = os.getenv("POS_PIN", "1234")
TIMEOUT = 25
RNG = str(int(time.time()))[-6:] + "-" + uuid.uuid4().hex[:6]


def step(name: str, fn, *args, **kwargs):
    try:
        out = fn(*args, **kwargs)
    except PosError as e:
        print(f"\n❌ {name} -> {type(e).__name__}: {e}\n", file=sys.stderr)
        sys.exit(1)
    print(f"✅ {name}")
    return out


def login_or_bootstrap(pos: PosClient, http: httpx.Client) -> None:
    r = http.get("/healthz")
    if r.status_code != 200:
        print(f"❌ GET /healthz -> {r.status_code}", file=sys.stderr)
        sys.exit(1)
    try:
        pos.login(MOBILE, PASSWORD)
    except PosError:
        # fresh dev database
        http.post("/admin/dev-bootstrap")
        step("POST /auth/login", pos.login, MOBILE, PASSWORD)


def main():
    with httpx.Client(base_url=BASE_URL, timeout=TIMEOUT) as http:
        pos = PosClient(http)
        login_or_bootstrap(pos, http)
        profile = step("GET tax-profile", pos.tax_profile)
        print(f"   cgst={profile['cgst_rate']} sgst={profile['sgst_rate']}")

        table = step("GET /tables", pos.list_tables)[0]
        items = [
            LineItem("Masala Chai", Decimal("40"), 2, menu_item_id="chai"),
            LineItem(f"Birthday cake {RNG}", Decimal("350"), 1, kind=ItemKind.CUSTOM),
        ]
        order = step("add item (opens order)", pos.add_item, items[0], table_id=table["id"])
        order = step("add item", pos.add_item, items[1], order_id=order["id"], version=order["version"])

        local = pos.preview(items, order=order)
        if float(local.total) != order["totals"]["total"]:
            print(f"❌ preview {local.total} != server {order['totals']['total']}", file=sys.stderr)
            sys.exit(1)
        print(f"✅ preview matches server total {local.total}")

        half = (local.total / 2).quantize(Decimal("1"))
        paid = step("checkout (split)", pos.checkout, order["id"],
                    split_payments=[("cash", half), ("upi", local.total)], version=order["version"])
        print(f"   paid {paid['amount_paid']} via {paid['payment_method']}: {paid['split_payments']}")

        t = step("table -> available", pos.set_table_status, table["id"], "available")
        print(f"   open orders left on table: {len(t['orders'])}")

        # ask, then commit
        other = step("takeaway order", pos.add_item, items[0])
        token = step("cancel request", pos.request_cancel, other["id"], "smoke test")
        done = step("cancel confirm", pos.confirm_cancel, token, PIN)
        print(f"   order #{done['order_no']} {done['status']}")

    print("\n🎉 Smoke run complete")


if __name__ == "__main__":
    main()
