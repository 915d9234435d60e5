"""Order totals: subtotal, flat shipping, flat tax.

``compute_totals`` is pure. ``apply_totals`` writes the result onto an order
and also runs from a ``before_flush`` hook, so every persist of an order or
of its lines leaves ``total = subtotal + shipping + tax`` intact.
"""
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable

from sqlalchemy import event
from sqlalchemy.orm import Session

from app.utils.money import to_money
from models.order import Order, OrderItem

FREE_SHIPPING_THRESHOLD = Decimal("100.00")
FLAT_SHIPPING_COST = Decimal("9.99")
TAX_RATE = Decimal("0.08")


@dataclass(frozen=True)
class Totals:
    subtotal: Decimal
    shipping_cost: Decimal
    tax_amount: Decimal
    total_amount: Decimal


def shipping_for(subtotal: Decimal) -> Decimal:
    return Decimal("0.00") if subtotal >= FREE_SHIPPING_THRESHOLD else FLAT_SHIPPING_COST


def compute_totals(line_totals: Iterable) -> Totals:
    subtotal = to_money(sum((Decimal(str(t)) for t in line_totals), Decimal("0")))
    shipping = to_money(shipping_for(subtotal))
    tax = to_money(subtotal * TAX_RATE)
    return Totals(
        subtotal=subtotal,
        shipping_cost=shipping,
        tax_amount=tax,
        total_amount=subtotal + shipping + tax,
    )


def apply_totals(order: Order, exclude=()) -> bool:
    """Recompute totals from the order's lines.

    No-op while the order has no lines, so an order shell can be added
    first and finalized once its items are attached.
    """
    items = [oi for oi in order.items if oi not in exclude]
    if not items:
        return False
    for item in items:
        item.price_line()
    totals = compute_totals(item.total_price for item in items)
    order.subtotal = totals.subtotal
    order.shipping_cost = totals.shipping_cost
    order.tax_amount = totals.tax_amount
    order.total_amount = totals.total_amount
    return True


@event.listens_for(Session, "before_flush")
def _recalculate_before_flush(session, flush_context, instances):
    deleted = set(session.deleted)
    touched = set()
    for obj in list(session.new) + list(session.dirty):
        if isinstance(obj, Order):
            touched.add(obj)
        elif isinstance(obj, OrderItem) and obj.order is not None:
            touched.add(obj.order)
    for obj in deleted:
        if isinstance(obj, OrderItem) and obj.order is not None:
            touched.add(obj.order)
    for order in touched:
        if order not in deleted:
            apply_totals(order, exclude=deleted)
