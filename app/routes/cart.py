import secrets

from flask import Blueprint, request

from app.version import API_PREFIX
from app.schemas.cart import AddCartItemRequest, UpdateCartItemRequest
from app.services.cart_service import (
    add_to_cart,
    cart_for_guest_token,
    cart_for_user,
    clear_cart,
    open_guest_cart,
    remove_cart_item,
    update_cart_item,
)
from app.errors import NotFound
from app.utils import auth_optional, ok, transactional, validate_schema

cart_bp = Blueprint("cart", __name__, url_prefix=f"{API_PREFIX}/cart")

GUEST_TOKEN_HEADER = "X-Guest-Token"

EMPTY_CART = {"id": None, "expires_at": None, "items": [], "total_items": 0, "total_price": 0.0}


def _resolve_cart(create):
    """Cart for the caller, plus the token when a guest cart was just opened."""
    if request.user is not None:
        return cart_for_user(request.user, create=create), None
    cart = cart_for_guest_token(request.headers.get(GUEST_TOKEN_HEADER))
    if cart is None and create:
        token = secrets.token_urlsafe(32)
        return open_guest_cart(token), token
    return cart, None


def _cart_response(cart, new_token=None, message="success", status=200):
    data = cart.to_dict() if cart is not None else dict(EMPTY_CART)
    if new_token:
        data["guest_token"] = new_token
    resp, code = ok(data, message, status)
    if new_token:
        resp.headers[GUEST_TOKEN_HEADER] = new_token
    return resp, code


@cart_bp.route("", methods=["GET"])
@auth_optional
def get_cart():
    with transactional("Failed to load cart"):
        cart, token = _resolve_cart(create=request.user is not None)
    return _cart_response(cart, token)


@cart_bp.route("/items", methods=["POST"])
@auth_optional
@validate_schema(AddCartItemRequest)
def add_item():
    data = request.validated_data
    with transactional("Failed to add to cart"):
        cart, token = _resolve_cart(create=True)
        add_to_cart(cart, data.product_id, data.quantity)
    return _cart_response(cart, token, "Item added to cart")


@cart_bp.route("/items/<int:item_id>", methods=["PUT"])
@auth_optional
@validate_schema(UpdateCartItemRequest)
def update_item(item_id):
    with transactional("Failed to update cart"):
        cart, _ = _resolve_cart(create=False)
        if cart is None:
            raise NotFound("Cart item not found")
        update_cart_item(cart, item_id, request.validated_data.quantity)
    return _cart_response(cart, message="Cart updated")


@cart_bp.route("/items/<int:item_id>", methods=["DELETE"])
@auth_optional
def remove_item(item_id):
    with transactional("Failed to remove cart item"):
        cart, _ = _resolve_cart(create=False)
        if cart is None:
            raise NotFound("Cart item not found")
        remove_cart_item(cart, item_id)
    return _cart_response(cart, message="Item removed")


@cart_bp.route("", methods=["DELETE"])
@auth_optional
def clear():
    with transactional("Failed to clear cart"):
        cart, _ = _resolve_cart(create=False)
        if cart is not None:
            clear_cart(cart)
    return _cart_response(cart, message="Cart cleared")
