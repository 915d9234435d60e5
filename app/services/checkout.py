"""Turn a cart, or a guest's line list, into one order per store.

Each store's order is committed on its own. When a later store fails, the
orders already committed stay in place and ``PartialCheckoutError`` tells
the caller which ones exist; the cart is only cleared after every store
succeeded.
"""
import logging
import re
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import List, Optional

from app.errors import InsufficientInventory, NotFound, PartialCheckoutError, ValidationFailed
from app.metrics import CHECKOUT_FAILURES, ORDERS_CREATED
from app.services import order_state
from app.services.cart_service import cart_for_user
from app.services.identity import GuestIdentity, Purchaser
from app.services.inventory import Line, find_shortages
from app.utils.db import transactional
from models import db
from models.order import Order, OrderItem, OrderStatus, PaymentStatus
from models.store import Product

logger = logging.getLogger(__name__)

REQUIRED_ADDRESS_FIELDS = (
    "firstName", "lastName", "email", "address1", "city", "state", "zipCode", "country",
)

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def missing_address_fields(address) -> List[str]:
    address = address or {}
    return [f for f in REQUIRED_ADDRESS_FIELDS if not str(address.get(f) or "").strip()]


def merge_lines(lines) -> List[Line]:
    """Collapse repeated products into one line, keeping first-seen order."""
    merged = OrderedDict()
    for line in lines:
        if line.product.id in merged:
            prev = merged[line.product.id]
            merged[line.product.id] = Line(prev.product, prev.quantity + line.quantity)
        else:
            merged[line.product.id] = line
    return list(merged.values())


@dataclass
class CheckoutSession:
    purchaser: Purchaser
    lines: List[Line]
    shipping_address: dict
    billing_address: Optional[dict] = None
    payment_method: Optional[str] = None
    source: str = "cart"
    orders: List[Order] = field(default_factory=list)
    failed_store_id: Optional[int] = None

    def validate(self):
        if not self.lines:
            raise ValidationFailed("Cart is empty")
        missing = missing_address_fields(self.shipping_address)
        if missing:
            CHECKOUT_FAILURES.labels("invalid_address").inc()
            raise ValidationFailed(
                f"Shipping address is missing: {', '.join(missing)}",
                missing_fields=missing,
            )
        shortages = find_shortages(self.lines)
        if shortages:
            CHECKOUT_FAILURES.labels("insufficient_inventory").inc()
            raise InsufficientInventory(shortages)

    def partitions(self):
        by_store = OrderedDict()
        for line in self.lines:
            by_store.setdefault(line.product.store_id, []).append(line)
        return by_store

    def run(self) -> List[Order]:
        self.validate()
        for store_id, lines in self.partitions().items():
            try:
                with transactional("Failed to place store order"):
                    order = place_store_order(self, store_id, lines)
            except Exception as exc:
                self.failed_store_id = store_id
                if not self.orders:
                    CHECKOUT_FAILURES.labels("store_order").inc()
                    raise
                CHECKOUT_FAILURES.labels("partial").inc()
                logger.error({
                    "event": "checkout.partial_failure",
                    "failed_store_id": store_id,
                    "created": [o.order_number for o in self.orders],
                    "error": str(exc),
                })
                raise PartialCheckoutError(
                    "Checkout stopped part way. Some orders were created.",
                    orders=self.orders,
                    failed_store_id=store_id,
                ) from exc
            self.orders.append(order)
            ORDERS_CREATED.labels(self.source).inc()
            logger.info({
                "event": "checkout.order_created",
                "order_number": order.order_number,
                "store_id": store_id,
                "total_amount": str(order.total_amount),
            })
        return self.orders


def place_store_order(checkout: CheckoutSession, store_id, lines) -> Order:
    """Build one store's order. Runs inside that store's transaction."""
    order = Order(
        order_number=Order.next_order_number(),
        store_id=store_id,
        status=OrderStatus.PENDING.value,
        payment_status=PaymentStatus.PENDING.value,
        shipping_address=dict(checkout.shipping_address),
        billing_address=dict(checkout.billing_address) if checkout.billing_address else None,
        payment_method=checkout.payment_method,
    )
    checkout.purchaser.stamp(order)
    for line in lines:
        order.items.append(
            OrderItem(
                product=line.product,
                quantity=line.quantity,
                unit_price=line.product.base_price,
                product_snapshot=line.product.snapshot(),
            )
        )
    db.session.add(order)
    db.session.flush()
    order_state.record_placed(order, checkout.purchaser.actor)
    return order


def _cart_lines(cart) -> List[Line]:
    """Lines from a stored cart, refusing products deactivated since they were added."""
    unavailable = [ci.product_id for ci in cart.items if ci.product is None or not ci.product.is_active]
    if unavailable:
        CHECKOUT_FAILURES.labels("unavailable_product").inc()
        raise ValidationFailed(
            "Some products in the cart are no longer available",
            unavailable_items=unavailable,
        )
    return merge_lines(Line(ci.product, ci.quantity) for ci in cart.items)


def checkout_cart(user, shipping_address, billing_address=None, payment_method=None) -> List[Order]:
    cart = cart_for_user(user, create=False)
    if cart is None or not cart.items:
        raise ValidationFailed("Cart is empty")
    lines = _cart_lines(cart)
    orders = CheckoutSession(
        Purchaser.for_user(user),
        lines,
        shipping_address,
        billing_address,
        payment_method,
        source="cart",
    ).run()
    with transactional("Failed to clear cart after checkout"):
        cart.clear()
    return orders


def _guest_lines(cart_items) -> List[Line]:
    lines = []
    for entry in cart_items:
        product = db.session.get(Product, entry["product_id"])
        if product is None or not product.is_active:
            raise NotFound(f"Product {entry['product_id']} not found")
        lines.append(Line(product, int(entry["quantity"])))
    return merge_lines(lines)


def checkout_guest(email, cart_items=None, shipping_address=None, billing_address=None,
                   payment_method=None, cart=None, cart_token=None):
    """Guest checkout from an explicit line list or from a token-keyed cart.

    Returns the created orders and the ``GuestIdentity`` whose token the
    buyer needs for payment and lookups.
    """
    email = (email or "").strip().lower()
    if not email:
        raise ValidationFailed("Email is required for guest checkout")
    if not EMAIL_RE.match(email):
        raise ValidationFailed("Email is invalid")

    if cart is not None and not cart_items:
        if not cart.items:
            raise ValidationFailed("Cart is empty")
        identity = GuestIdentity(email=email, token=cart_token)
    else:
        if not cart_items:
            raise ValidationFailed("Cart items are required")
        identity = GuestIdentity.issue(email)
        cart = None

    missing = missing_address_fields(shipping_address)
    if missing:
        CHECKOUT_FAILURES.labels("invalid_address").inc()
        raise ValidationFailed(
            f"Shipping address is missing: {', '.join(missing)}",
            missing_fields=missing,
        )

    if cart is not None:
        lines = _cart_lines(cart)
    else:
        lines = _guest_lines(cart_items)

    orders = CheckoutSession(
        Purchaser.for_guest(identity),
        lines,
        shipping_address,
        billing_address,
        payment_method,
        source="guest",
    ).run()
    if cart is not None:
        with transactional("Failed to clear guest cart after checkout"):
            cart.clear()
    return orders, identity
