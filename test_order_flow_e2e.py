# test_order_flow_e2e.py
from decimal import Decimal

import pytest

from cafepos.errors import StaleVersionError
from cafepos.services.billing import Discount
from cafepos.services.orders import OrderService


BURGER = {"name": "Burger", "price": 150, "quantity": 2, "kind": "catalog", "menu_item_id": "m-burger"}
FRIES = {"name": "Fries", "price": 80, "quantity": 1, "kind": "catalog", "menu_item_id": "m-fries"}


def jprint(step, r):
    """Helper to print response and assert on failure."""
    assert 200 <= r.status_code < 300, f"{step} -> {r.status_code}: {r.text}"
    return r.json() if r.headers.get("content-type", "").startswith("application/json") else r.text


def first_table(client, base_url, auth_headers):
    r = client.get(f"{base_url}/tables", headers=auth_headers)
    return jprint("GET /tables", r)[0]["id"]


def open_cart(client, base_url, auth_headers):
    """Burger x2 + Fries x1 on table 1 -> 399 with the default 2.5 + 2.5 rates."""
    table_id = first_table(client, base_url, auth_headers)
    r = client.post(f"{base_url}/orders/items", headers=auth_headers, json={"item": BURGER, "table_id": table_id})
    order = jprint("POST /orders/items (burger)", r)
    r = client.post(f"{base_url}/orders/items", headers=auth_headers, json={"item": FRIES, "order_id": order["id"]})
    return jprint("POST /orders/items (fries)", r)


def test_requires_auth(client, base_url, boot):
    r = client.get(f"{base_url}/tables")
    assert r.status_code == 401


def test_first_item_opens_order_on_table(client, base_url, auth_headers):
    order = open_cart(client, base_url, auth_headers)
    assert order["status"] == "open"
    assert order["payment_status"] == "unpaid"
    assert order["order_no"] == 1
    assert [i["name"] for i in order["items"]] == ["Burger", "Fries"]
    t = order["totals"]
    assert (t["subtotal"], t["cgst"], t["sgst"], t["total"], t["round_off"]) == (380.0, 9.5, 9.5, 399.0, 0.0)

    r = client.get(f"{base_url}/tables/{order['table_id']}", headers=auth_headers)
    table = jprint("GET /tables/{id}", r)
    assert [o["id"] for o in table["orders"]] == [order["id"]]
    # opening an order does not flip the table
    assert table["status"] == "available"


def test_same_catalog_item_merges_quantity(client, base_url, auth_headers):
    order = open_cart(client, base_url, auth_headers)
    r = client.post(f"{base_url}/orders/items", headers=auth_headers,
                    json={"item": {**BURGER, "quantity": 1}, "order_id": order["id"]})
    order = jprint("POST /orders/items (burger again)", r)
    assert len(order["items"]) == 2
    assert order["items"][0]["quantity"] == 3


def test_quantity_delta_to_zero_removes_line(client, base_url, auth_headers):
    order = open_cart(client, base_url, auth_headers)
    fries = order["items"][1]
    r = client.patch(f"{base_url}/orders/{order['id']}/items/{fries['id']}", headers=auth_headers,
                     json={"delta": -5})
    order = jprint("PATCH quantity", r)
    assert [i["name"] for i in order["items"]] == ["Burger"]
    assert order["totals"]["subtotal"] == 300.0

    r = client.delete(f"{base_url}/orders/{order['id']}/items/{order['items'][0]['id']}", headers=auth_headers)
    order = jprint("DELETE item", r)
    assert order["items"] == []
    assert order["totals"]["total"] == 0.0


def test_save_recomputes_and_ignores_client_totals(client, base_url, auth_headers):
    order = open_cart(client, base_url, auth_headers)
    body = {
        "version": order["version"],
        "items": [BURGER, FRIES, {"name": "Birthday candle", "price": 10, "quantity": 1, "kind": "custom"}],
        "customer_name": "Asha",
        "customer_phone": "9876500000",
        "totals": {"total": 1},
    }
    r = client.put(f"{base_url}/orders/{order['id']}", headers=auth_headers, json=body)
    saved = jprint("PUT /orders/{id}", r)
    assert saved["totals"]["subtotal"] == 390.0
    assert saved["totals"]["total"] == 410.0
    assert saved["totals"]["round_off"] == 0.5
    assert saved["version"] > order["version"]
    assert saved["customer_name"] == "Asha"


def test_save_rejects_empty_order(client, base_url, auth_headers):
    order = open_cart(client, base_url, auth_headers)
    r = client.put(f"{base_url}/orders/{order['id']}", headers=auth_headers,
                   json={"version": order["version"], "items": []})
    assert r.status_code == 400
    assert r.json()["code"] == "validation_error"


def test_stale_version_is_rejected(client, base_url, auth_headers):
    order = open_cart(client, base_url, auth_headers)
    stale = order["version"]
    r = client.put(f"{base_url}/orders/{order['id']}/discount", headers=auth_headers,
                   json={"discount": {"type": "amount", "value": 10}, "version": stale})
    jprint("PUT discount", r)
    r = client.put(f"{base_url}/orders/{order['id']}", headers=auth_headers,
                   json={"version": stale, "items": [BURGER]})
    assert r.status_code == 409
    assert r.json()["code"] == "stale_version"
    # the losing save changed nothing
    r = client.get(f"{base_url}/orders/{order['id']}", headers=auth_headers)
    assert len(jprint("GET order", r)["items"]) == 2


def test_discount_and_clear(client, base_url, auth_headers):
    order = open_cart(client, base_url, auth_headers)
    r = client.put(f"{base_url}/orders/{order['id']}/discount", headers=auth_headers, json={
        "discount": {"type": "percentage", "value": 10, "max_discount_amount": 30},
    })
    order = jprint("PUT discount", r)
    assert order["totals"]["discount"] == 30.0
    assert order["totals"]["total"] == 369.0

    r = client.put(f"{base_url}/orders/{order['id']}/discount", headers=auth_headers, json={"discount": None})
    order = jprint("PUT discount (clear)", r)
    assert order["discount"] is None
    assert order["totals"]["total"] == 399.0


def test_coupon_applies_and_checks_minimum(client, base_url, auth_headers, boot):
    order = open_cart(client, base_url, auth_headers)
    r = client.put(f"{base_url}/orders/{order['id']}/coupon", headers=auth_headers,
                   json={"code": boot["coupon_code"].lower()})
    order = jprint("PUT coupon", r)
    assert order["coupon_code"] == "WELCOME10"
    assert order["totals"]["discount"] == 38.0
    assert order["totals"]["total"] == 361.0

    # a fries-only bill is under the 200 minimum
    table_id = order["table_id"]
    r = client.post(f"{base_url}/orders/items", headers=auth_headers, json={"item": FRIES, "table_id": table_id})
    small = jprint("POST /orders/items (second order)", r)
    r = client.put(f"{base_url}/orders/{small['id']}/coupon", headers=auth_headers, json={"code": "WELCOME10"})
    assert r.status_code == 400

    r = client.put(f"{base_url}/orders/{small['id']}/coupon", headers=auth_headers, json={"code": "NOPE"})
    assert r.status_code == 400
    assert r.json()["detail"] == "invalid coupon code"


def test_complementary_needs_reason(client, base_url, auth_headers):
    order = open_cart(client, base_url, auth_headers)
    r = client.put(f"{base_url}/orders/{order['id']}/complementary", headers=auth_headers,
                   json={"complementary": True, "reason": "  "})
    assert r.status_code == 400

    r = client.put(f"{base_url}/orders/{order['id']}/complementary", headers=auth_headers,
                   json={"complementary": True, "reason": "owner's guest"})
    order = jprint("PUT complementary", r)
    assert order["totals"]["total"] == 0.0
    assert order["totals"]["complementary_amount"] == 399.0

    r = client.put(f"{base_url}/orders/{order['id']}/complementary", headers=auth_headers,
                   json={"complementary": False})
    order = jprint("PUT complementary (clear)", r)
    assert order["is_complementary"] is False
    assert order["totals"]["total"] == 399.0


def test_preview_matches_server_bill(client, base_url, auth_headers):
    r = client.post(f"{base_url}/orders/preview", headers=auth_headers, json={
        "items": [BURGER, FRIES], "cgst_rate": 2.5, "sgst_rate": 2.5,
        "discount": {"type": "percentage", "value": 10, "max_discount_amount": 30},
    })
    t = jprint("POST /orders/preview", r)
    assert t["total"] == 369.0
    assert t["pre_round_total"] == 369.0


def test_merge_folds_into_oldest(client, base_url, auth_headers):
    first = open_cart(client, base_url, auth_headers)
    r = client.post(f"{base_url}/orders/items", headers=auth_headers,
                    json={"item": {**BURGER, "quantity": 1}, "table_id": first["table_id"]})
    second = jprint("POST /orders/items (second order)", r)
    assert second["order_no"] == 2

    r = client.post(f"{base_url}/orders/merge", headers=auth_headers,
                    json={"order_ids": [second["id"], first["id"]], "reason": "same party"})
    merged = jprint("POST /orders/merge", r)
    assert merged["id"] == first["id"]
    assert merged["items"][0]["quantity"] == 3
    assert merged["totals"]["subtotal"] == 530.0

    r = client.get(f"{base_url}/orders/{second['id']}", headers=auth_headers)
    gone = jprint("GET merged-away order", r)
    assert gone["status"] == "cancelled"
    assert gone["merged_into_id"] == first["id"]

    r = client.get(f"{base_url}/tables/{first['table_id']}", headers=auth_headers)
    assert [o["id"] for o in jprint("GET table", r)["orders"]] == [first["id"]]


def test_merge_needs_two_orders(client, base_url, auth_headers):
    order = open_cart(client, base_url, auth_headers)
    r = client.post(f"{base_url}/orders/merge", headers=auth_headers, json={"order_ids": [order["id"]]})
    assert r.status_code == 400


def test_unknown_order_is_404(client, base_url, auth_headers):
    r = client.get(f"{base_url}/orders/does-not-exist", headers=auth_headers)
    assert r.status_code == 404
    assert r.json()["code"] == "not_found"


def test_tax_profile_change_applies_to_new_orders(client, base_url, auth_headers, boot):
    order = open_cart(client, base_url, auth_headers)
    r = client.put(f"{base_url}/branches/{boot['branch_id']}/tax-profile", headers=auth_headers,
                   json={"cgst_rate": 0, "sgst_rate": 0, "gstin": None})
    assert jprint("PUT tax-profile", r)["cgst_rate"] == 0.0

    r = client.get(f"{base_url}/orders/{order['id']}", headers=auth_headers)
    assert jprint("GET order", r)["totals"]["total"] == 399.0

    r = client.post(f"{base_url}/orders/items", headers=auth_headers, json={"item": FRIES})
    fresh = jprint("POST /orders/items (takeaway)", r)
    assert fresh["table_id"] is None
    assert fresh["totals"]["total"] == 80.0


def test_merge_across_tables_keeps_oldest_table(client, base_url, auth_headers):
    order = open_cart(client, base_url, auth_headers)
    r = client.get(f"{base_url}/tables", headers=auth_headers)
    other_table = jprint("GET /tables", r)[1]["id"]
    r = client.post(f"{base_url}/orders/items", headers=auth_headers,
                    json={"item": FRIES, "table_id": other_table})
    joined = jprint("POST /orders/items (second table)", r)

    r = client.post(f"{base_url}/orders/merge", headers=auth_headers,
                    json={"order_ids": [joined["id"], order["id"]], "reason": "parties joined"})
    merged = jprint("POST /orders/merge", r)
    assert merged["id"] == order["id"]
    assert merged["table_id"] == order["table_id"]
    assert merged["items"][1]["quantity"] == 2

    r = client.get(f"{base_url}/tables/{other_table}", headers=auth_headers)
    assert jprint("GET other table", r)["orders"] == []


def test_merge_preview_writes_nothing(client, base_url, auth_headers):
    first = open_cart(client, base_url, auth_headers)
    r = client.post(f"{base_url}/orders/items", headers=auth_headers,
                    json={"item": {**BURGER, "quantity": 1}, "table_id": first["table_id"]})
    second = jprint("POST /orders/items (second order)", r)

    r = client.post(f"{base_url}/orders/merge/preview", headers=auth_headers,
                    json={"order_ids": [second["id"], first["id"]]})
    preview = jprint("POST /orders/merge/preview", r)
    assert preview["target_id"] == first["id"]
    assert [o["order_no"] for o in preview["orders"]] == [1, 2]
    assert [(i["name"], i["quantity"]) for i in preview["items"]] == [("Burger", 3), ("Fries", 1)]
    assert preview["totals"]["subtotal"] == 530.0
    assert preview["totals"]["total"] == 557.0

    r = client.get(f"{base_url}/orders/{first['id']}", headers=auth_headers)
    untouched = jprint("GET order", r)
    assert untouched["version"] == first["version"]
    assert untouched["items"][0]["quantity"] == 2
    r = client.get(f"{base_url}/orders/{second['id']}", headers=auth_headers)
    assert jprint("GET order", r)["status"] == "open"


def test_concurrent_edit_from_another_terminal_is_rejected(client, base_url, auth_headers,
                                                           db_session, other_session, ctx):
    order = open_cart(client, base_url, auth_headers)
    mine = OrderService(db_session, ctx)
    assert mine.editable(order["id"], order["version"]).version == order["version"]

    # the other terminal commits first, from the same version
    theirs = OrderService(other_session, ctx)
    theirs.set_discount(order["id"], Discount("amount", Decimal("10")), expected_version=order["version"])

    with pytest.raises(StaleVersionError) as exc:
        mine.set_complementary(order["id"], "owner's guest", expected_version=order["version"])
    assert exc.value.expected == order["version"]
    assert exc.value.actual == order["version"] + 1

    r = client.get(f"{base_url}/orders/{order['id']}", headers=auth_headers)
    after = jprint("GET order", r)
    assert after["version"] == order["version"] + 1
    assert after["is_complementary"] is False
    assert after["totals"]["discount"] == 10.0
