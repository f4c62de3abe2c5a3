from decimal import Decimal

from conftest import auth_headers, stock_of
from marketplace.models import Cart, CartItem, Order, OrderItem


def _add_to_cart(db, user, product, quantity=1):
    cart = Cart(user_id=user.id)
    db.add(cart)
    db.commit()
    db.add(CartItem(cart_id=cart.id, product_id=product.id, quantity=quantity))
    db.commit()


def test_create_order_reserves_stock_and_clears_cart(client, db, buyer, make_product):
    product = make_product(price="10.00", stock=5)
    _add_to_cart(db, buyer, product)

    resp = client.post(
        "/orders/",
        json={"items": [{"productId": product.id, "quantity": 2}], "shippingAddress": {"city": "Oslo"}},
        headers=auth_headers(buyer),
    )

    assert resp.status_code == 201
    body = resp.json()
    assert body["status"] == "PENDING"
    assert body["buyerId"] == buyer.id
    assert Decimal(body["total"]) == Decimal("20.00")
    assert body["shippingAddress"] == {"city": "Oslo"}
    assert body["items"][0]["product"]["name"] == "Widget"
    assert stock_of(db, product.id) == 3
    assert db.query(CartItem).count() == 0


def test_total_uses_server_prices(client, db, buyer, make_product):
    a = make_product(name="Hammer", price="12.50", stock=10)
    b = make_product(name="Nails", price="0.99", stock=100)

    resp = client.post(
        "/orders/",
        json={"items": [
            {"productId": a.id, "quantity": 2, "price": "0.01"},
            {"productId": b.id, "quantity": 3},
        ]},
        headers=auth_headers(buyer),
    )

    assert resp.status_code == 201
    assert Decimal(resp.json()["total"]) == Decimal("27.97")


def test_insufficient_stock_writes_nothing(client, db, buyer, make_product):
    plenty = make_product(name="Plenty", stock=10)
    scarce = make_product(name="Scarce", stock=1)

    resp = client.post(
        "/orders/",
        json={"items": [
            {"productId": plenty.id, "quantity": 1},
            {"productId": scarce.id, "quantity": 2},
        ]},
        headers=auth_headers(buyer),
    )

    assert resp.status_code == 400
    body = resp.json()
    assert body["error"] == "Conflict"
    assert '"Scarce"' in body["detail"]
    assert "Available: 1, Requested: 2" in body["detail"]
    assert db.query(Order).count() == 0
    assert db.query(OrderItem).count() == 0
    assert stock_of(db, plenty.id) == 10


def test_unknown_product_is_rejected(client, db, buyer, make_product):
    product = make_product()

    resp = client.post(
        "/orders/",
        json={"items": [{"productId": product.id, "quantity": 1}, {"productId": 9999, "quantity": 1}]},
        headers=auth_headers(buyer),
    )

    assert resp.status_code == 400
    assert resp.json()["error"] == "NotFound"
    assert "9999" in resp.json()["detail"]
    assert db.query(Order).count() == 0


def test_duplicate_lines_that_exceed_stock_roll_back(client, db, buyer, make_product):
    product = make_product(stock=3)

    resp = client.post(
        "/orders/",
        json={"items": [{"productId": product.id, "quantity": 2}, {"productId": product.id, "quantity": 2}]},
        headers=auth_headers(buyer),
    )

    assert resp.status_code == 400
    assert resp.json()["error"] == "Conflict"
    assert db.query(Order).count() == 0
    assert stock_of(db, product.id) == 3


def test_duplicate_lines_within_stock_stay_separate(client, db, buyer, make_product):
    product = make_product(stock=5)

    resp = client.post(
        "/orders/",
        json={"items": [{"productId": product.id, "quantity": 2}, {"productId": product.id, "quantity": 1}]},
        headers=auth_headers(buyer),
    )

    assert resp.status_code == 201
    assert [i["quantity"] for i in resp.json()["items"]] == [2, 1]
    assert stock_of(db, product.id) == 2


def test_price_snapshot_survives_price_change(client, db, buyer, make_product):
    product = make_product(price="10.00", stock=5)
    resp = client.post(
        "/orders/",
        json={"items": [{"productId": product.id, "quantity": 1}]},
        headers=auth_headers(buyer),
    )
    order_id = resp.json()["id"]

    product.price = Decimal("99.00")
    db.commit()

    got = client.get(f"/orders/?id={order_id}", headers=auth_headers(buyer))
    assert Decimal(got.json()["items"][0]["price"]) == Decimal("10.00")
    assert Decimal(got.json()["total"]) == Decimal("10.00")


def test_resubmitting_creates_a_second_order(client, db, buyer, make_product):
    product = make_product(stock=5)
    payload = {"items": [{"productId": product.id, "quantity": 1}]}

    first = client.post("/orders/", json=payload, headers=auth_headers(buyer))
    second = client.post("/orders/", json=payload, headers=auth_headers(buyer))

    assert first.json()["id"] != second.json()["id"]
    assert stock_of(db, product.id) == 3


def test_bad_order_payloads(client, buyer, make_product):
    product = make_product()
    headers = auth_headers(buyer)

    for payload in (
        {"items": []},
        {"items": [{"productId": product.id, "quantity": 0}]},
        {"items": [{"productId": product.id, "quantity": -1}]},
        {"items": [{"productId": product.id, "quantity": "2"}]},
        {},
    ):
        resp = client.post("/orders/", json=payload, headers=headers)
        assert resp.status_code == 400, payload
        assert resp.json()["error"] == "ValidationError"


def test_orders_require_authentication(client, make_product):
    product = make_product()
    resp = client.post("/orders/", json={"items": [{"productId": product.id, "quantity": 1}]})
    assert resp.status_code == 401
    assert resp.json()["error"] == "Unauthenticated"


def test_order_listing_is_scoped_by_role(client, db, make_user, make_product):
    buyer_a, buyer_b = make_user("BUYER"), make_user("BUYER")
    other_seller, admin = make_user("SELLER"), make_user("ADMIN")
    mine = make_product(name="Mine", stock=10)
    theirs = make_product(name="Theirs", stock=10, seller_id=other_seller.id)

    client.post("/orders/", json={"items": [{"productId": mine.id, "quantity": 1}]}, headers=auth_headers(buyer_a))
    client.post("/orders/", json={"items": [{"productId": theirs.id, "quantity": 1}]}, headers=auth_headers(buyer_b))

    assert client.get("/orders/", headers=auth_headers(buyer_a)).json()["total"] == 1
    assert client.get("/orders/", headers=auth_headers(other_seller)).json()["total"] == 1
    assert client.get("/orders/", headers=auth_headers(admin)).json()["total"] == 2

    listed = client.get("/orders/?status=PAID", headers=auth_headers(admin)).json()
    assert listed == {"orders": [], "total": 0, "page": 1, "limit": 20}


def test_single_order_visible_to_owner_and_admin_only(client, make_user, make_product):
    owner, stranger, admin = make_user("BUYER"), make_user("BUYER"), make_user("ADMIN")
    product = make_product()
    order_id = client.post(
        "/orders/", json={"items": [{"productId": product.id, "quantity": 1}]}, headers=auth_headers(owner)
    ).json()["id"]

    assert client.get(f"/orders/?id={order_id}", headers=auth_headers(owner)).status_code == 200
    assert client.get(f"/orders/?id={order_id}", headers=auth_headers(admin)).status_code == 200
    assert client.get(f"/orders/?id={order_id}", headers=auth_headers(stranger)).status_code == 403
    assert client.get("/orders/?id=4242", headers=auth_headers(owner)).status_code == 404
