# test_checkout_flow_e2e.py
from decimal import Decimal

import pytest

from cafepos.errors import BackendError, StaleVersionError
from cafepos.models.core import Customer, Order, OrderStatus, Payment, PaymentStatus
from cafepos.services.checkout import CheckoutOrchestrator, CheckoutRequest, LedgerPaymentFinalizer
from cafepos.services.orders import OrderService

BURGER = {"name": "Burger", "price": 150, "quantity": 2, "kind": "catalog", "menu_item_id": "m-burger"}
FRIES = {"name": "Fries", "price": 80, "quantity": 1, "kind": "catalog", "menu_item_id": "m-fries"}


def jprint(step, r):
    """Helper to print response and assert on failure."""
    assert 200 <= r.status_code < 300, f"{step} -> {r.status_code}: {r.text}"
    return r.json() if r.headers.get("content-type", "").startswith("application/json") else r.text


def open_cart(client, base_url, auth_headers):
    r = client.get(f"{base_url}/tables", headers=auth_headers)
    table_id = jprint("GET /tables", r)[0]["id"]
    r = client.post(f"{base_url}/orders/items", headers=auth_headers, json={"item": BURGER, "table_id": table_id})
    order = jprint("POST /orders/items", r)
    r = client.post(f"{base_url}/orders/items", headers=auth_headers, json={"item": FRIES, "order_id": order["id"]})
    return jprint("POST /orders/items", r)


def test_cash_checkout_with_change(client, base_url, auth_headers, db_session):
    order = open_cart(client, base_url, auth_headers)
    r = client.post(f"{base_url}/orders/{order['id']}/checkout", headers=auth_headers,
                    json={"payment_method": "cash", "amount_paid": 500})
    paid = jprint("POST checkout", r)
    assert paid["status"] == "paid"
    assert paid["payment_status"] == "paid"
    assert paid["payment_method"] == "cash"
    assert paid["amount_paid"] == 399.0
    assert paid["change_due"] == 101.0
    assert paid["paid_at"]

    rows = db_session.query(Payment).filter(Payment.order_id == order["id"]).all()
    assert [(p.mode.value, p.amount) for p in rows] == [("cash", Decimal("399.00"))]

    # settling a bill leaves the table for staff to turn over
    r = client.get(f"{base_url}/tables/{order['table_id']}", headers=auth_headers)
    table = jprint("GET table", r)
    assert table["status"] == "available"
    assert table["summary"]["paid_amount"] == 399.0


def test_short_cash_blocks_checkout(client, base_url, auth_headers):
    order = open_cart(client, base_url, auth_headers)
    r = client.post(f"{base_url}/orders/{order['id']}/checkout", headers=auth_headers,
                    json={"payment_method": "card", "amount_paid": 300})
    assert r.status_code == 402
    assert r.json()["code"] == "settlement_error"

    r = client.get(f"{base_url}/orders/{order['id']}", headers=auth_headers)
    after = jprint("GET order", r)
    assert after["status"] == "open"
    assert after["version"] == order["version"]


def test_split_checkout_clamps_and_reports_mixed(client, base_url, auth_headers):
    order = open_cart(client, base_url, auth_headers)
    r = client.post(f"{base_url}/orders/{order['id']}/checkout", headers=auth_headers, json={
        "is_split": True,
        "split_payments": [{"method": "cash", "amount": 200}, {"method": "card", "amount": 250}],
    })
    paid = jprint("POST checkout (split)", r)
    assert paid["payment_method"] == "mixed"
    assert paid["split_payments"] == [{"method": "cash", "amount": 200.0}, {"method": "card", "amount": 199.0}]
    assert paid["amount_paid"] == 399.0


def test_split_entry_past_the_total_is_dropped(client, base_url, auth_headers, db_session):
    order = open_cart(client, base_url, auth_headers)
    r = client.post(f"{base_url}/orders/{order['id']}/checkout", headers=auth_headers, json={
        "is_split": True,
        "split_payments": [{"method": "cash", "amount": 399}, {"method": "card", "amount": 50}],
    })
    paid = jprint("POST checkout (over-covered split)", r)
    assert paid["status"] == "paid"
    assert paid["payment_method"] == "mixed"
    assert paid["split_payments"] == [{"method": "cash", "amount": 399.0}]
    assert paid["amount_paid"] == 399.0
    rows = db_session.query(Payment).filter(Payment.order_id == order["id"]).all()
    assert [(p.mode.value, p.amount) for p in rows] == [("cash", Decimal("399.00"))]


def test_split_checkout_of_zero_total(client, base_url, auth_headers):
    order = open_cart(client, base_url, auth_headers)
    r = client.put(f"{base_url}/orders/{order['id']}/discount", headers=auth_headers,
                   json={"discount": {"type": "amount", "value": 500}})
    assert jprint("PUT discount", r)["totals"]["total"] == 0.0
    r = client.post(f"{base_url}/orders/{order['id']}/checkout", headers=auth_headers, json={
        "is_split": True, "split_payments": [{"method": "cash", "amount": 1}],
    })
    paid = jprint("POST checkout (zero total)", r)
    assert paid["status"] == "paid"
    assert paid["amount_paid"] == 0.0


def test_underpaid_split_is_refused(client, base_url, auth_headers):
    order = open_cart(client, base_url, auth_headers)
    r = client.post(f"{base_url}/orders/{order['id']}/checkout", headers=auth_headers, json={
        "is_split": True, "split_payments": [{"method": "upi", "amount": 200}],
    })
    assert r.status_code == 402
    r = client.get(f"{base_url}/orders/{order['id']}", headers=auth_headers)
    assert jprint("GET order", r)["payment_status"] == "unpaid"


def test_complementary_checkout_takes_no_payment(client, base_url, auth_headers, db_session):
    order = open_cart(client, base_url, auth_headers)
    r = client.put(f"{base_url}/orders/{order['id']}/complementary", headers=auth_headers,
                   json={"reason": "staff meal"})
    jprint("PUT complementary", r)
    r = client.post(f"{base_url}/orders/{order['id']}/checkout", headers=auth_headers,
                    json={"payment_method": None})
    paid = jprint("POST checkout (complementary)", r)
    assert paid["status"] == "paid"
    assert paid["payment_method"] is None
    assert paid["totals"]["total"] == 0.0
    assert paid["totals"]["complementary_amount"] == 399.0
    assert db_session.query(Payment).filter(Payment.order_id == order["id"]).count() == 0


def test_retry_with_same_token_is_replayed(client, base_url, auth_headers, db_session):
    order = open_cart(client, base_url, auth_headers)
    body = {"payment_method": "upi", "payment_token": "tok-123"}
    first = jprint("POST checkout", client.post(f"{base_url}/orders/{order['id']}/checkout",
                                                headers=auth_headers, json=body))
    again = jprint("POST checkout (retry)", client.post(f"{base_url}/orders/{order['id']}/checkout",
                                                        headers=auth_headers, json=body))
    assert first["replayed"] is False
    assert again["replayed"] is True
    assert again["version"] == first["version"]
    assert db_session.query(Payment).filter(Payment.order_id == order["id"]).count() == 1

    # a different token on a paid order is a second sale attempt
    r = client.post(f"{base_url}/orders/{order['id']}/checkout", headers=auth_headers,
                    json={"payment_method": "upi", "payment_token": "tok-999"})
    assert r.status_code == 409


def test_idempotency_header_is_used_as_token(client, base_url, auth_headers, db_session):
    order = open_cart(client, base_url, auth_headers)
    h = {**auth_headers, "Idempotency-Key": "hdr-1"}
    jprint("POST checkout", client.post(f"{base_url}/orders/{order['id']}/checkout", headers=h, json={}))
    again = jprint("POST checkout (retry)", client.post(f"{base_url}/orders/{order['id']}/checkout",
                                                        headers=h, json={}))
    assert again["replayed"] is True


def test_coupon_usage_counted_on_checkout(client, base_url, auth_headers, db_session):
    from cafepos.models.core import Coupon

    order = open_cart(client, base_url, auth_headers)
    jprint("PUT coupon", client.put(f"{base_url}/orders/{order['id']}/coupon", headers=auth_headers,
                                    json={"code": "WELCOME10"}))
    paid = jprint("POST checkout", client.post(f"{base_url}/orders/{order['id']}/checkout",
                                               headers=auth_headers, json={}))
    assert paid["totals"]["total"] == 361.0
    assert db_session.query(Coupon).filter(Coupon.code == "WELCOME10").one().usage_count == 1


def test_customer_stats_and_name_prefill(client, base_url, auth_headers, db_session):
    order = open_cart(client, base_url, auth_headers)
    jprint("PUT customer", client.put(f"{base_url}/orders/{order['id']}/customer", headers=auth_headers,
                                      json={"name": "Asha", "phone": "9876500000"}))
    jprint("POST checkout", client.post(f"{base_url}/orders/{order['id']}/checkout",
                                        headers=auth_headers, json={}))
    c = db_session.query(Customer).filter(Customer.phone == "9876500000").one()
    assert (c.visits, c.loyalty_points) == (1, 3)

    nxt = open_cart(client, base_url, auth_headers)
    r = client.put(f"{base_url}/orders/{nxt['id']}/customer", headers=auth_headers, json={"phone": "9876500000"})
    assert jprint("PUT customer (phone only)", r)["customer_name"] == "Asha"


def test_empty_order_cannot_be_checked_out(client, base_url, auth_headers):
    order = open_cart(client, base_url, auth_headers)
    for item in order["items"]:
        jprint("DELETE item", client.delete(f"{base_url}/orders/{order['id']}/items/{item['id']}",
                                            headers=auth_headers))
    r = client.post(f"{base_url}/orders/{order['id']}/checkout", headers=auth_headers, json={})
    assert r.status_code == 400


class FlakyFinalizer:
    """Fails the first call, then behaves like the ledger."""

    def __init__(self, db):
        self.calls = 0
        self._ledger = LedgerPaymentFinalizer(db)

    def finalize(self, order, entries, amount_paid, token):
        self.calls += 1
        if self.calls == 1:
            raise BackendError("gateway timeout")
        return self._ledger.finalize(order, entries, amount_paid, token)


def test_finalization_failure_leaves_order_unpaid_and_retry_is_safe(client, base_url, auth_headers,
                                                                    db_session, ctx):
    order = open_cart(client, base_url, auth_headers)
    flaky = FlakyFinalizer(db_session)
    orch = CheckoutOrchestrator(db_session, ctx, finalizer=flaky)
    req = CheckoutRequest(payment_method="cash", payment_token="pay-1")

    with pytest.raises(BackendError) as exc:
        orch.checkout(order["id"], req)
    assert str(exc.value) == "gateway timeout"
    o = db_session.get(Order, order["id"])
    assert o.status is OrderStatus.OPEN
    assert o.payment_status is PaymentStatus.UNPAID
    # the recomputed totals were saved before finalizing
    assert o.total == Decimal("399")

    res = orch.checkout(order["id"], req)
    assert res.order.status is OrderStatus.PAID
    assert db_session.query(Payment).filter(Payment.order_id == o.id).count() == 1
    assert orch.checkout(order["id"], req).replayed


def test_checkout_loses_to_a_concurrent_edit(client, base_url, auth_headers, db_session, other_session, ctx):
    order = open_cart(client, base_url, auth_headers)
    orch = CheckoutOrchestrator(db_session, ctx)
    assert db_session.get(Order, order["id"]).version == order["version"]

    OrderService(other_session, ctx).set_customer_info(order["id"], name="Meera")

    with pytest.raises(StaleVersionError):
        orch.checkout(order["id"], CheckoutRequest(payment_method="cash"))
    o = db_session.get(Order, order["id"])
    assert o.status is OrderStatus.OPEN
    assert o.customer_name == "Meera"
    assert db_session.query(Payment).filter(Payment.order_id == o.id).count() == 0
