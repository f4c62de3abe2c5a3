import pytest

from conftest import auth_headers


@pytest.fixture
def order_of(client, make_product):
    def _place(buyer):
        product = make_product()
        resp = client.post(
            "/orders/", json={"items": [{"productId": product.id, "quantity": 1}]}, headers=auth_headers(buyer)
        )
        return resp.json()["id"]

    return _place


def _set_status(client, user, order_id, status):
    return client.put(f"/orders/?id={order_id}", json={"status": status}, headers=auth_headers(user))


def test_buyer_can_cancel_own_order(client, buyer, order_of):
    order_id = order_of(buyer)

    resp = _set_status(client, buyer, order_id, "CANCELLED")

    assert resp.status_code == 200
    assert resp.json()["status"] == "CANCELLED"


def test_buyer_cannot_ship(client, buyer, order_of):
    order_id = order_of(buyer)

    resp = _set_status(client, buyer, order_id, "SHIPPED")

    assert resp.status_code == 403
    assert resp.json() == {"error": "Forbidden", "detail": "Buyers can only cancel orders"}


def test_buyer_cannot_cancel_someone_elses_order(client, make_user, order_of):
    owner, other = make_user("BUYER"), make_user("BUYER")
    order_id = order_of(owner)

    resp = _set_status(client, other, order_id, "CANCELLED")

    assert resp.status_code == 403


@pytest.mark.parametrize("role", ["SELLER", "ADMIN"])
def test_seller_and_admin_may_set_any_status(client, make_user, buyer, order_of, role):
    actor = make_user(role)
    order_id = order_of(buyer)

    for status in ("SHIPPED", "DELIVERED", "PENDING", "PAID", "CANCELLED"):
        resp = _set_status(client, actor, order_id, status)
        assert resp.status_code == 200
        assert resp.json()["status"] == status


@pytest.mark.parametrize("status", ["REFUNDED", "paid", None, 3])
def test_unknown_status_is_invalid(client, admin, buyer, order_of, status):
    order_id = order_of(buyer)

    resp = _set_status(client, admin, order_id, status)

    assert resp.status_code == 400
    assert resp.json()["error"] == "InvalidArgument"
    assert resp.json()["detail"].startswith("Status must be one of:")


def test_missing_order_is_not_found(client, admin):
    resp = _set_status(client, admin, 31337, "SHIPPED")
    assert resp.status_code == 404


def test_status_change_requires_order_id(client, admin):
    resp = client.put("/orders/", json={"status": "SHIPPED"}, headers=auth_headers(admin))
    assert resp.status_code == 400


def test_status_change_requires_authentication(client, buyer, order_of):
    order_id = order_of(buyer)
    resp = client.put(f"/orders/?id={order_id}", json={"status": "CANCELLED"})
    assert resp.status_code == 401
