from flask import Blueprint, request, jsonify

from app.version import API_PREFIX
from app.schemas.payments import ConfirmPaymentRequest, CreateIntentRequest
from app.services.orders import order_for_buyer
from app.services.payment_service import confirm_order_payment, create_intent, handle_webhook
from app.utils import auth_optional, ok, transactional, validate_schema
from extensions import limiter

payments_bp = Blueprint("payments", __name__, url_prefix=f"{API_PREFIX}/payments")

GUEST_TOKEN_HEADER = "X-Guest-Token"


def _order_for_caller(order_id):
    return order_for_buyer(order_id, request.user, request.headers.get(GUEST_TOKEN_HEADER))


@payments_bp.route("/create_intent", methods=["POST"])
@auth_optional
@validate_schema(CreateIntentRequest)
def create_payment_intent():
    with transactional("Create payment intent failed"):
        order = _order_for_caller(request.validated_data.order_id)
        payload = create_intent(order, request.user)
    return ok(payload)


@payments_bp.route("/confirm", methods=["POST"])
@auth_optional
@validate_schema(ConfirmPaymentRequest)
def confirm_payment():
    actor = request.user.id if request.user is not None else "guest"
    with transactional("Payment confirmation failed"):
        order = _order_for_caller(request.validated_data.order_id)
        result = confirm_order_payment(order, actor)
    if result.settled:
        return ok({"order": order.to_dict()}, "Payment confirmed")
    return ok(
        {"order_id": order.id, "payment_status": order.payment_status},
        "Payment is processing",
        202,
    )


@payments_bp.route("/webhook", methods=["POST"])
@limiter.exempt
def webhook():
    """Processor callback. Authenticated by signature only."""
    payload = request.get_data()
    signature = request.headers.get("Stripe-Signature")
    with transactional("Payment webhook processing failed"):
        handle_webhook(payload, signature)
    return jsonify({"received": True}), 200
