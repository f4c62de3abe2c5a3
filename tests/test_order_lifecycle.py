import datetime as dt

import pytest

from conftest import stock_of
from marketplace import messaging
from marketplace.errors import ValidationError
from marketplace.models import Order, OrderItem
from marketplace.orders import OrderLifecycle, TRANSITIONS, decrement_stock, parse_order_lines


def test_decrement_stock_is_conditional(db, make_product):
    product = make_product(stock=3)

    assert decrement_stock(db, product.id, 2) is True
    assert decrement_stock(db, product.id, 2) is False
    db.commit()

    assert stock_of(db, product.id) == 1


def test_decrement_stock_unknown_product(db):
    assert decrement_stock(db, 404, 1) is False


def test_parse_order_lines_keeps_duplicates():
    assert parse_order_lines([{"product_id": 1, "quantity": 2}, {"product_id": 1, "quantity": 1}]) == [(1, 2), (1, 1)]


@pytest.mark.parametrize(
    "items",
    [
        [],
        None,
        [{"product_id": 1, "quantity": 0}],
        [{"product_id": 1, "quantity": 1.5}],
        [{"product_id": 1, "quantity": True}],
        [{"product_id": "1", "quantity": 1}],
        [{"quantity": 1}],
    ],
)
def test_parse_order_lines_rejects_bad_input(items):
    with pytest.raises(ValidationError):
        parse_order_lines(items)


def test_transition_table_only_lets_buyers_cancel():
    for current, allowed in TRANSITIONS["BUYER"].items():
        assert allowed == frozenset({"CANCELLED"}), current
    assert TRANSITIONS["SELLER"]["DELIVERED"] == TRANSITIONS["ADMIN"]["CANCELLED"]


def _pending_checkout_order(db, buyer, product, expires_at):
    order = Order(
        buyer_id=buyer.id,
        total=product.price,
        status="PENDING",
        checkout_session_id="cs_test_x",
        checkout_expires_at=expires_at,
        items=[OrderItem(product_id=product.id, quantity=1, price=product.price)],
    )
    db.add(order)
    db.commit()
    return order.id


def test_expire_checkouts_cancels_only_lapsed_pending_orders(db, buyer, make_product):
    product = make_product(stock=2)
    now = dt.datetime(2030, 1, 1, 12, 0, tzinfo=dt.timezone.utc)
    lapsed = _pending_checkout_order(db, buyer, product, now - dt.timedelta(minutes=1))
    live = _pending_checkout_order(db, buyer, product, now + dt.timedelta(hours=1))
    direct = Order(buyer_id=buyer.id, total=product.price, status="PENDING")
    db.add(direct)
    db.commit()
    direct_id = direct.id

    expired = OrderLifecycle(db).expire_checkouts(now=now)

    assert expired == [lapsed]
    db.expire_all()
    assert db.get(Order, lapsed).status == "CANCELLED"
    assert db.get(Order, live).status == "PENDING"
    assert db.get(Order, direct_id).status == "PENDING"
    assert stock_of(db, product.id) == 2


def test_expired_checkout_cannot_be_paid_later(db, buyer, make_product):
    product = make_product(stock=2)
    now = dt.datetime.now(dt.timezone.utc)
    order_id = _pending_checkout_order(db, buyer, product, now - dt.timedelta(seconds=5))
    lifecycle = OrderLifecycle(db)

    assert lifecycle.expire_checkouts() == [order_id]
    assert lifecycle.confirm_payment(order_id, "pi_late") is False
    db.expire_all()
    assert db.get(Order, order_id).status == "CANCELLED"
    assert stock_of(db, product.id) == 2


def test_paid_order_is_not_expired(db, buyer, make_product):
    product = make_product(stock=2)
    now = dt.datetime.now(dt.timezone.utc)
    order_id = _pending_checkout_order(db, buyer, product, now - dt.timedelta(seconds=5))
    lifecycle = OrderLifecycle(db)

    assert lifecycle.confirm_payment(order_id, "pi_ok") is True
    assert lifecycle.expire_checkouts() == []
    db.expire_all()
    assert db.get(Order, order_id).status == "PAID"
    assert stock_of(db, product.id) == 1


def test_committed_changes_are_published(db, buyer, make_product, monkeypatch):
    published = []
    monkeypatch.setattr(messaging, "EVENTS_ENABLED", True)
    monkeypatch.setattr(messaging, "_publish", lambda key, payload: published.append((key, payload)))
    product = make_product(stock=5)
    lifecycle = OrderLifecycle(db)

    order = lifecycle.create_order(buyer.id, [{"product_id": product.id, "quantity": 2}])
    lifecycle.update_status({"id": buyer.id, "role": "BUYER"}, order.id, "CANCELLED")

    keys = [key for key, _ in published]
    assert keys == ["order.created", "order.status_changed"]
    created = published[0][1]
    assert created["order_id"] == order.id
    assert created["items"] == [{"product_id": product.id, "quantity": 2}]
    assert published[1][1]["previous"] == "PENDING"
