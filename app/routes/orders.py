from flask import Blueprint, request, current_app
from flask_limiter.util import get_remote_address

from app.version import API_PREFIX
from app.auth.permissions import role_has_scope
from app.errors import Forbidden, InvalidTransition
from app.schemas.orders import CancelOrderRequest, GuestCheckoutRequest, UpdateStatusRequest
from app.services import order_state
from app.routes.guest import guest_checkout_response
from app.services.checkout import checkout_cart
from app.services.orders import (
    cancel_order,
    find_by_number_for_email,
    list_orders,
    order_for_actor,
    order_for_seller,
)
from app.utils import (
    auth_optional,
    auth_required,
    ok,
    scope_required,
    transactional,
    validate_schema,
)
from extensions import limiter

orders_bp = Blueprint("orders", __name__, url_prefix=f"{API_PREFIX}/orders")

GUEST_TOKEN_HEADER = "X-Guest-Token"


# ------------------- Buyer Endpoints -------------------

@orders_bp.route("", methods=["POST"])
@limiter.limit(lambda: current_app.config["CHECKOUT_LIMIT_PER_IP"], key_func=get_remote_address, error_message="Too many checkouts from this IP")
@auth_optional
@validate_schema(GuestCheckoutRequest)
def create_orders():
    data = request.validated_data
    user = request.user
    if user is None:
        return guest_checkout_response(data)
    if not role_has_scope(user.role, "checkout"):
        raise Forbidden()
    orders = checkout_cart(
        user,
        data.shipping_address,
        billing_address=data.billing_address,
        payment_method=data.payment_method,
    )
    return ok({"orders": [o.to_dict() for o in orders]}, "Orders created", 201)


@orders_bp.route("", methods=["GET"])
@auth_required
def index():
    store_orders = request.args.get("store_orders", "false").lower() in ("1", "true", "yes")
    orders, meta = list_orders(
        request.user,
        store_orders=store_orders,
        status=request.args.get("status"),
        page=request.args.get("page", 1, type=int),
        per_page=request.args.get("per_page", 20, type=int),
    )
    return ok({"orders": [o.to_dict(include_items=False) for o in orders], "meta": meta})


@orders_bp.route("/<int:order_id>", methods=["GET"])
@auth_optional
def show(order_id):
    order = order_for_actor(order_id, request.user, request.headers.get(GUEST_TOKEN_HEADER))
    return ok(order.to_dict())


@orders_bp.route("/by_number/<order_number>", methods=["GET"])
def by_number(order_number):
    order = find_by_number_for_email(order_number, request.args.get("email"))
    return ok(order.to_dict())


@orders_bp.route("/<int:order_id>/cancel", methods=["PATCH"])
@auth_optional
@validate_schema(CancelOrderRequest)
def cancel(order_id):
    user = request.user
    if user is not None and not role_has_scope(user.role, "cancel_order"):
        raise Forbidden()
    with transactional("Order cancel failed"):
        order = order_for_actor(order_id, user, request.headers.get(GUEST_TOKEN_HEADER))
        actor = user.id if user is not None else "guest"
        if not cancel_order(order, actor, reason=request.validated_data.reason):
            raise InvalidTransition(f"Order cannot be cancelled while {order.status}")
    return ok(order.to_dict(), "Order cancelled")


# ------------------- Seller Endpoints -------------------

@orders_bp.route("/<int:order_id>/fulfill", methods=["PATCH"])
@auth_required
@scope_required("fulfill_order")
def fulfill(order_id):
    with transactional("Order fulfillment failed"):
        order = order_for_seller(order_id, request.user)
        if not order_state.fulfill(order, request.user.id):
            raise InvalidTransition("Order must be confirmed and paid before fulfillment")
    return ok(order.to_dict(), "Order fulfilled")


@orders_bp.route("/<int:order_id>/update_status", methods=["PATCH"])
@auth_required
@scope_required("update_order_status")
@validate_schema(UpdateStatusRequest)
def update_status(order_id):
    data = request.validated_data
    with transactional("Order status update failed"):
        order = order_for_seller(order_id, request.user)
        if not order_state.seller_update_status(order, data.status, request.user.id, data.tracking_number):
            raise InvalidTransition(f"Cannot move order from {order.status} to {data.status}")
    return ok(order.to_dict(), "Order status updated")
