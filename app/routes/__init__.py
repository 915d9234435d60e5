from .cart import cart_bp
from .orders import orders_bp
from .guest import guest_bp
from .payments import payments_bp
from .admin import admin_bp


__all__ = [
    'cart_bp',
    'orders_bp',
    'guest_bp',
    'payments_bp',
    'admin_bp',
]
