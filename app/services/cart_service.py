"""Cart access and mutation on behalf of users and guests.

The cart aggregate itself never looks at stock. The add and update paths
here refuse quantities the product cannot cover so a buyer learns early;
checkout checks again.
"""
import logging

from flask import current_app

from app.errors import NotFound, ValidationFailed
from app.services.identity import hash_token
from models import db
from models.cart import Cart, CartItem, DEFAULT_CART_TTL_DAYS
from models.store import Product

logger = logging.getLogger(__name__)


def _ttl_days():
    return current_app.config.get("CART_TTL_DAYS", DEFAULT_CART_TTL_DAYS)


def _refresh(cart):
    if cart.expires_at is not None and cart.is_expired:
        logger.info({"event": "cart.expired", "cart_id": cart.id, "items": len(cart.items)})
        cart.clear()
        cart.extend_expiration(_ttl_days())
    return cart


def cart_for_user(user, create=True):
    cart = Cart.query.filter_by(user_id=user.id).first()
    if cart is None:
        if not create:
            return None
        cart = Cart(user_id=user.id)
        cart.extend_expiration(_ttl_days())
        db.session.add(cart)
        db.session.flush()
    return _refresh(cart)


def cart_for_guest_token(token):
    if not token:
        return None
    cart = Cart.query.filter_by(guest_token_hash=hash_token(token)).first()
    return _refresh(cart) if cart else None


def open_guest_cart(token):
    cart = Cart(guest_token_hash=hash_token(token))
    cart.extend_expiration(_ttl_days())
    db.session.add(cart)
    db.session.flush()
    return cart


def _purchasable_product(product_id):
    product = db.session.get(Product, product_id)
    if product is None or not product.is_active:
        raise NotFound("Product not found")
    return product


def _check_stock(product, quantity):
    if product.track_inventory and product.inventory < quantity:
        raise ValidationFailed(
            f"Only {product.inventory} of {product.name} available",
            available=product.inventory,
        )


def add_to_cart(cart, product_id, quantity):
    product = _purchasable_product(product_id)
    existing = cart.find_item(product)
    resulting = quantity + (existing.quantity if existing else 0)
    _check_stock(product, resulting)
    return cart.add_item(product, quantity, ttl_days=_ttl_days())


def _owned_item(cart, item_id):
    item = db.session.get(CartItem, item_id)
    if item is None or item.cart_id != cart.id:
        raise NotFound("Cart item not found")
    return item


def update_cart_item(cart, item_id, quantity):
    item = _owned_item(cart, item_id)
    if quantity > 0:
        _check_stock(item.product, quantity)
    return cart.update_item(item, quantity, ttl_days=_ttl_days())


def remove_cart_item(cart, item_id):
    cart.remove_item(_owned_item(cart, item_id))


def clear_cart(cart):
    cart.clear()
