from datetime import timedelta
from decimal import Decimal

import pytest

from models import db, utcnow
from models.cart import Cart
from models.store import Product
from app.errors import ValidationFailed
from app.services.cart_service import add_to_cart
from app.version import API_PREFIX


def test_add_item_upserts_and_extends_expiry(app, make_store, make_product):
    product = db.session.get(Product, make_product(make_store(), price="4.50"))
    cart = Cart(expires_at=utcnow() + timedelta(days=1))
    db.session.add(cart)

    cart.add_item(product, 2)
    cart.add_item(product, 3)
    db.session.commit()

    assert len(cart.items) == 1
    assert cart.items[0].quantity == 5
    assert cart.total_items() == 5
    assert cart.total_price() == Decimal("22.50")
    assert cart.expires_at > utcnow() + timedelta(days=29)


def test_repeated_adds_in_one_transaction_share_a_line(app, make_store, make_product):
    pid = make_product(make_store(), inventory=7)
    cart = Cart()
    db.session.add(cart)

    add_to_cart(cart, pid, 3)
    add_to_cart(cart, pid, 3)
    with pytest.raises(ValidationFailed) as exc:
        add_to_cart(cart, pid, 2)
    db.session.commit()

    assert exc.value.payload["available"] == 7
    assert [ci.quantity for ci in cart.items] == [6]


def test_update_to_zero_removes_line(app, make_store, make_product):
    product = db.session.get(Product, make_product(make_store()))
    cart = Cart()
    db.session.add(cart)
    item = cart.add_item(product, 2)
    db.session.commit()

    assert cart.update_item(item, 0) is None
    db.session.commit()
    assert cart.items == []


def test_cart_itself_does_not_check_stock(app, make_store, make_product):
    product = db.session.get(Product, make_product(make_store(), inventory=1))
    cart = Cart()
    db.session.add(cart)
    cart.add_item(product, 50)
    db.session.commit()
    assert cart.total_items() == 50


def test_add_route_rejects_more_than_available(client, make_user, make_store, make_product, auth_headers):
    uid = make_user()
    pid = make_product(make_store(), inventory=3)
    hdr = auth_headers(uid)

    resp = client.post(f"{API_PREFIX}/cart/items", json={"product_id": pid, "quantity": 2}, headers=hdr)
    assert resp.status_code == 200
    assert resp.get_json()["data"]["total_items"] == 2

    resp = client.post(f"{API_PREFIX}/cart/items", json={"product_id": pid, "quantity": 2}, headers=hdr)
    assert resp.status_code == 422
    body = resp.get_json()
    assert body["available"] == 3
    assert body["error"] == body["message"]
    assert body["status"] == "error"


def test_add_route_unknown_product(client, make_user, auth_headers):
    resp = client.post(f"{API_PREFIX}/cart/items", json={"product_id": 999}, headers=auth_headers(make_user()))
    assert resp.status_code == 404


def test_add_route_validates_quantity(client, make_user, auth_headers):
    resp = client.post(f"{API_PREFIX}/cart/items", json={"product_id": 1, "quantity": 0}, headers=auth_headers(make_user()))
    assert resp.status_code == 422
    assert resp.get_json()["errors"][0]["loc"] == ["quantity"]


def test_update_and_remove_routes(client, make_user, make_store, make_product, auth_headers):
    uid = make_user()
    hdr = auth_headers(uid)
    store_id = make_store()
    p1 = make_product(store_id, name="One")
    p2 = make_product(store_id, name="Two")
    client.post(f"{API_PREFIX}/cart/items", json={"product_id": p1, "quantity": 1}, headers=hdr)
    resp = client.post(f"{API_PREFIX}/cart/items", json={"product_id": p2, "quantity": 1}, headers=hdr)
    items = resp.get_json()["data"]["items"]

    resp = client.put(f"{API_PREFIX}/cart/items/{items[0]['id']}", json={"quantity": 4}, headers=hdr)
    assert resp.status_code == 200
    assert resp.get_json()["data"]["total_items"] == 5

    resp = client.delete(f"{API_PREFIX}/cart/items/{items[1]['id']}", headers=hdr)
    assert resp.get_json()["data"]["total_items"] == 4

    resp = client.delete(f"{API_PREFIX}/cart", headers=hdr)
    assert resp.get_json()["data"]["items"] == []


def test_cannot_touch_someone_elses_cart_item(client, make_user, make_store, make_product, auth_headers):
    pid = make_product(make_store())
    owner = auth_headers(make_user("owner@example.com"))
    other = auth_headers(make_user("other@example.com"))
    resp = client.post(f"{API_PREFIX}/cart/items", json={"product_id": pid}, headers=owner)
    item_id = resp.get_json()["data"]["items"][0]["id"]

    client.get(f"{API_PREFIX}/cart", headers=other)
    resp = client.put(f"{API_PREFIX}/cart/items/{item_id}", json={"quantity": 2}, headers=other)
    assert resp.status_code == 404


def test_guest_cart_is_keyed_by_token(client, make_store, make_product):
    pid = make_product(make_store())
    resp = client.post(f"{API_PREFIX}/cart/items", json={"product_id": pid, "quantity": 2})
    assert resp.status_code == 200
    token = resp.get_json()["data"]["guest_token"]
    assert resp.headers["X-Guest-Token"] == token

    resp = client.get(f"{API_PREFIX}/cart", headers={"X-Guest-Token": token})
    assert resp.get_json()["data"]["total_items"] == 2

    resp = client.get(f"{API_PREFIX}/cart", headers={"X-Guest-Token": "not-the-token"})
    assert resp.get_json()["data"]["items"] == []


def test_guest_token_is_stored_hashed(client, make_store, make_product):
    pid = make_product(make_store())
    token = client.post(f"{API_PREFIX}/cart/items", json={"product_id": pid}).get_json()["data"]["guest_token"]
    cart = Cart.query.one()
    assert cart.guest_token_hash != token
    assert len(cart.guest_token_hash) == 64


def test_expired_cart_is_emptied_on_access(client, make_user, make_store, make_product, auth_headers):
    uid = make_user()
    hdr = auth_headers(uid)
    pid = make_product(make_store())
    client.post(f"{API_PREFIX}/cart/items", json={"product_id": pid, "quantity": 1}, headers=hdr)

    cart = Cart.query.filter_by(user_id=uid).one()
    cart.expires_at = utcnow() - timedelta(minutes=1)
    db.session.commit()

    resp = client.get(f"{API_PREFIX}/cart", headers=hdr)
    data = resp.get_json()["data"]
    assert data["items"] == []
    db.session.expire_all()
    assert Cart.query.filter_by(user_id=uid).one().expires_at > utcnow()
