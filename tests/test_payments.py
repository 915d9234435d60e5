import json

import pytest

from models import db
from models.order import Order, OrderStatusLog
from models.user import User
from app.version import API_PREFIX

WEBHOOK = f"{API_PREFIX}/payments/webhook"


@pytest.fixture
def guest_order(client, make_store, make_product, address):
    """A pending 53.19 guest order and the headers that authorize paying it."""
    pid = make_product(make_store(), price="40.00")
    resp = client.post(f"{API_PREFIX}/guest/orders", json={
        "email": "payer@example.com",
        "cart_items": [{"product_id": pid, "quantity": 1}],
        "shipping_address": address,
    })
    data = resp.get_json()["data"]
    return data["orders"][0]["id"], {"X-Guest-Token": data["guest_token"]}


def _intent(client, order_id, headers):
    resp = client.post(f"{API_PREFIX}/payments/create_intent", json={"order_id": order_id}, headers=headers)
    assert resp.status_code == 200, resp.get_json()
    return resp.get_json()["data"]


def _deliver(client, gateway, event_type, obj):
    body, signature = gateway.event(event_type, obj)
    return client.post(WEBHOOK, data=body, headers={"Stripe-Signature": signature, "Content-Type": "application/json"})


def _order(order_id):
    db.session.expire_all()
    return db.session.get(Order, order_id)


def test_create_intent_in_minor_units(client, gateway, guest_order):
    order_id, hdr = guest_order
    data = _intent(client, order_id, hdr)

    assert data["amount"] == 5319
    assert data["currency"] == "usd"
    assert data["client_secret"]
    assert _order(order_id).payment_reference == data["payment_intent_id"]
    created = [c for c in gateway.calls if c["method"] == "create_payment_intent"]
    assert created[0]["metadata"]["order_id"] == str(order_id)


def test_open_intent_is_reused(client, gateway, guest_order):
    order_id, hdr = guest_order
    first = _intent(client, order_id, hdr)
    second = _intent(client, order_id, hdr)

    assert second["payment_intent_id"] == first["payment_intent_id"]
    assert second["reused"] is True
    assert len([c for c in gateway.calls if c["method"] == "create_payment_intent"]) == 1


def test_guest_needs_token_to_pay(client, guest_order):
    order_id, _ = guest_order
    resp = client.post(f"{API_PREFIX}/payments/create_intent", json={"order_id": order_id})
    assert resp.status_code == 404
    resp = client.post(f"{API_PREFIX}/payments/create_intent", json={"order_id": order_id}, headers={"X-Guest-Token": "guess"})
    assert resp.status_code == 404


def test_cancelled_order_cannot_be_paid(client, guest_order):
    order_id, hdr = guest_order
    assert client.patch(f"{API_PREFIX}/orders/{order_id}/cancel", json={}, headers=hdr).status_code == 200
    resp = client.post(f"{API_PREFIX}/payments/create_intent", json={"order_id": order_id}, headers=hdr)
    assert resp.status_code == 422
    assert resp.get_json()["message"] == "Order cannot be paid"


def test_processor_error_surfaces_as_payment_error(client, gateway, guest_order):
    order_id, hdr = guest_order
    gateway.fail_next("create_payment_intent", "api unavailable")
    resp = client.post(f"{API_PREFIX}/payments/create_intent", json={"order_id": order_id}, headers=hdr)
    assert resp.status_code == 422
    assert "api unavailable" in resp.get_json()["message"]
    assert _order(order_id).payment_reference is None


def test_registered_buyer_gets_processor_customer(client, make_user, make_store, make_product, auth_headers, address):
    uid = make_user()
    hdr = auth_headers(uid)
    pid = make_product(make_store())
    client.post(f"{API_PREFIX}/cart/items", json={"product_id": pid}, headers=hdr)
    order_id = client.post(f"{API_PREFIX}/orders", json={"shipping_address": address}, headers=hdr).get_json()["data"]["orders"][0]["id"]

    _intent(client, order_id, hdr)
    customer = db.session.get(User, uid).processor_customer_id
    assert customer.startswith("cus_fake_")

    # another buyer cannot pay for it
    other = auth_headers(make_user("other@example.com"))
    resp = client.post(f"{API_PREFIX}/payments/create_intent", json={"order_id": order_id}, headers=other)
    assert resp.status_code == 404


def test_confirm_succeeded(client, gateway, guest_order):
    order_id, hdr = guest_order
    intent = _intent(client, order_id, hdr)
    gateway.set_intent_status(intent["payment_intent_id"], "succeeded")

    resp = client.post(f"{API_PREFIX}/payments/confirm", json={"order_id": order_id}, headers=hdr)

    assert resp.status_code == 200
    order = resp.get_json()["data"]["order"]
    assert (order["status"], order["payment_status"]) == ("confirmed", "paid")


def test_confirm_processing_records_pending_settlement(client, gateway, guest_order):
    order_id, hdr = guest_order
    intent = _intent(client, order_id, hdr)
    gateway.set_intent_status(intent["payment_intent_id"], "processing")

    resp = client.post(f"{API_PREFIX}/payments/confirm", json={"order_id": order_id}, headers=hdr)

    assert resp.status_code == 202
    assert resp.get_json()["data"]["payment_status"] == "processing"
    order = _order(order_id)
    assert (order.status, order.payment_status) == ("pending", "processing")
    assert [log.payment_status for log in order.status_logs][-1] == "processing"

    # polling again while still processing writes nothing new
    logs = len(order.status_logs)
    assert client.post(f"{API_PREFIX}/payments/confirm", json={"order_id": order_id}, headers=hdr).status_code == 202
    assert len(_order(order_id).status_logs) == logs

    gateway.set_intent_status(intent["payment_intent_id"], "succeeded")
    resp = client.post(f"{API_PREFIX}/payments/confirm", json={"order_id": order_id}, headers=hdr)
    assert resp.status_code == 200
    assert _order(order_id).payment_status == "paid"


@pytest.mark.parametrize("status,message", [
    ("requires_payment_method", "Payment method required"),
    ("requires_action", "Additional authentication required"),
    ("canceled", "Payment failed"),
])
def test_confirm_failure_reasons(client, gateway, guest_order, status, message):
    order_id, hdr = guest_order
    intent = _intent(client, order_id, hdr)
    gateway.set_intent_status(intent["payment_intent_id"], status)

    resp = client.post(f"{API_PREFIX}/payments/confirm", json={"order_id": order_id}, headers=hdr)

    assert resp.status_code == 422
    assert resp.get_json()["message"] == message
    assert _order(order_id).payment_status == "pending"


def test_confirm_without_intent(client, guest_order):
    order_id, hdr = guest_order
    resp = client.post(f"{API_PREFIX}/payments/confirm", json={"order_id": order_id}, headers=hdr)
    assert resp.status_code == 422


def test_webhook_success_is_idempotent(client, gateway, guest_order):
    order_id, hdr = guest_order
    intent = _intent(client, order_id, hdr)
    obj = {"id": intent["payment_intent_id"], "object": "payment_intent"}

    for _ in range(2):
        resp = _deliver(client, gateway, "payment_intent.succeeded", obj)
        assert resp.status_code == 200
        assert resp.get_json() == {"received": True}

    order = _order(order_id)
    assert (order.status, order.payment_status) == ("confirmed", "paid")
    assert OrderStatusLog.query.filter_by(order_id=order_id, payment_status="paid").count() == 1


def test_confirm_and_webhook_converge(client, gateway, guest_order):
    order_id, hdr = guest_order
    intent = _intent(client, order_id, hdr)
    gateway.set_intent_status(intent["payment_intent_id"], "succeeded")

    _deliver(client, gateway, "payment_intent.succeeded", {"id": intent["payment_intent_id"]})
    resp = client.post(f"{API_PREFIX}/payments/confirm", json={"order_id": order_id}, headers=hdr)

    assert resp.status_code == 200
    assert OrderStatusLog.query.filter_by(order_id=order_id, status="confirmed").count() == 1


def test_webhook_rejects_bad_signature(client, gateway, guest_order):
    order_id, hdr = guest_order
    intent = _intent(client, order_id, hdr)
    body, _ = gateway.event("payment_intent.succeeded", {"id": intent["payment_intent_id"]})

    resp = client.post(WEBHOOK, data=body, headers={"Stripe-Signature": "t=1,v1=deadbeef"})
    assert resp.status_code == 400
    assert resp.get_json()["message"] == "Invalid signature"

    resp = client.post(WEBHOOK, data=body)
    assert resp.status_code == 400
    assert _order(order_id).payment_status == "pending"


def test_webhook_rejects_malformed_payload(client, gateway):
    body = b"{not json"
    resp = client.post(WEBHOOK, data=body, headers={"Stripe-Signature": gateway.sign(body)})
    assert resp.status_code == 400
    assert resp.get_json()["message"] == "Invalid payload"


def test_webhook_payment_failed(client, gateway, guest_order):
    order_id, hdr = guest_order
    intent = _intent(client, order_id, hdr)

    _deliver(client, gateway, "payment_intent.payment_failed", {
        "id": intent["payment_intent_id"],
        "last_payment_error": {"message": "Your card was declined."},
    })

    order = _order(order_id)
    assert order.payment_status == "failed"
    assert order.status == "pending"
    assert "Your card was declined." in order.notes


def test_webhook_full_and_partial_refunds(client, gateway, guest_order):
    order_id, hdr = guest_order
    intent = _intent(client, order_id, hdr)
    pi = intent["payment_intent_id"]
    _deliver(client, gateway, "payment_intent.succeeded", {"id": pi})

    partial = {"id": "ch_1", "payment_intent": pi, "amount": 5319, "amount_refunded": 1000}
    _deliver(client, gateway, "charge.refunded", partial)
    _deliver(client, gateway, "charge.refunded", partial)
    order = _order(order_id)
    assert order.status == "confirmed"
    assert order.payment_status == "paid"
    assert order.notes.count("Partial refund: $10.00") == 1

    _deliver(client, gateway, "charge.refunded", dict(partial, amount_refunded=5319))
    order = _order(order_id)
    assert (order.status, order.payment_status) == ("refunded", "refunded")


def test_webhook_acknowledges_unknown_events_and_orders(client, gateway):
    resp = _deliver(client, gateway, "customer.created", {"id": "cus_1"})
    assert resp.status_code == 200
    assert resp.get_json() == {"received": True}

    resp = _deliver(client, gateway, "payment_intent.succeeded", {"id": "pi_unknown"})
    assert resp.status_code == 200


def test_fake_signature_matches_stripe_scheme(gateway):
    body = json.dumps({"type": "ping"}).encode()
    assert gateway.construct_webhook_event(body, gateway.sign(body)) == {"type": "ping"}


def test_cancel_voids_open_intent(client, gateway, guest_order):
    order_id, hdr = guest_order
    intent = _intent(client, order_id, hdr)

    assert client.patch(f"{API_PREFIX}/orders/{order_id}/cancel", json={}, headers=hdr).status_code == 200

    assert gateway.intents[intent["payment_intent_id"]].status == "canceled"


def test_confirm_refuses_payment_for_cancelled_order(client, gateway, guest_order):
    order_id, hdr = guest_order
    intent = _intent(client, order_id, hdr)
    gateway.set_intent_status(intent["payment_intent_id"], "succeeded")
    # the intent already settled, so cancelling cannot void it
    assert client.patch(f"{API_PREFIX}/orders/{order_id}/cancel", json={}, headers=hdr).status_code == 200

    resp = client.post(f"{API_PREFIX}/payments/confirm", json={"order_id": order_id}, headers=hdr)

    assert resp.status_code == 422
    assert resp.get_json()["message"] == "Order is cancelled and can no longer be paid"
    order = _order(order_id)
    assert (order.status, order.payment_status) == ("cancelled", "pending")


def test_success_after_cancel_is_flagged_once(client, gateway, guest_order):
    order_id, hdr = guest_order
    intent = _intent(client, order_id, hdr)
    gateway.set_intent_status(intent["payment_intent_id"], "succeeded")
    client.patch(f"{API_PREFIX}/orders/{order_id}/cancel", json={}, headers=hdr)

    obj = {"id": intent["payment_intent_id"], "amount": 5319}
    assert _deliver(client, gateway, "payment_intent.succeeded", obj).status_code == 200
    assert _deliver(client, gateway, "payment_intent.succeeded", obj).status_code == 200

    order = _order(order_id)
    assert (order.status, order.payment_status) == ("cancelled", "pending")
    assert order.notes.count("captured after the order was cancelled; refund required") == 1
    assert intent["payment_intent_id"] in order.notes


def test_success_after_cancel_outcome(app, gateway, guest_order):
    from app.services.payment_service import handle_webhook

    order_id, _ = guest_order
    order = db.session.get(Order, order_id)
    order.payment_reference = "pi_late"
    order.status = "cancelled"
    db.session.commit()

    body, signature = gateway.event("payment_intent.succeeded", {"id": "pi_late", "amount": 5319})
    assert handle_webhook(body, signature) == "paid_after_cancel"
    assert handle_webhook(body, signature) == "noop"
