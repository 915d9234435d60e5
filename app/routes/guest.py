from flask import Blueprint, request, current_app
from flask_limiter.util import get_remote_address

from app.version import API_PREFIX
from app.schemas.orders import GuestCheckoutRequest
from app.services.cart_service import cart_for_guest_token
from app.services.checkout import checkout_guest
from app.services.orders import find_by_number_for_email
from app.utils import ok, validate_schema
from extensions import limiter

guest_bp = Blueprint("guest", __name__, url_prefix=f"{API_PREFIX}/guest")

GUEST_TOKEN_HEADER = "X-Guest-Token"


def guest_checkout_response(data):
    """Check out explicit lines, or the caller's token-keyed cart when none are sent."""
    token = request.headers.get(GUEST_TOKEN_HEADER)
    cart = None if data.cart_items else cart_for_guest_token(token)
    orders, identity = checkout_guest(
        data.email,
        cart_items=[line.model_dump() for line in data.cart_items] if data.cart_items else None,
        shipping_address=data.shipping_address,
        billing_address=data.billing_address,
        payment_method=data.payment_method,
        cart=cart,
        cart_token=token,
    )
    resp, code = ok(
        {"orders": [o.to_dict() for o in orders], "guest_token": identity.token},
        "Orders created",
        201,
    )
    resp.headers[GUEST_TOKEN_HEADER] = identity.token
    return resp, code


@guest_bp.route("/orders", methods=["POST"])
@limiter.limit(lambda: current_app.config["CHECKOUT_LIMIT_PER_IP"], key_func=get_remote_address, error_message="Too many checkouts from this IP")
@validate_schema(GuestCheckoutRequest)
def create_guest_orders():
    return guest_checkout_response(request.validated_data)


@guest_bp.route("/orders/<order_number>", methods=["GET"])
def show_guest_order(order_number):
    order = find_by_number_for_email(order_number, request.args.get("email"))
    return ok(order.to_dict())
