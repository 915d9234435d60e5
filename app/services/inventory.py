"""Inventory guard and the inventory policy applied over an order's life.

The guard is a point-in-time read with no locking. Stock is only written at
fulfillment, through a conditional UPDATE, so placing an order never holds
stock and several unfulfilled orders may overcommit the same product.
"""
import logging
from dataclasses import dataclass
from typing import Iterable, List

from sqlalchemy import update

from app.metrics import INVENTORY_DECREMENT_SKIPPED
from models import db
from models.store import Product

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Line:
    product: Product
    quantity: int


def find_shortages(lines: Iterable[Line]) -> List[dict]:
    """Every line whose tracked product has less stock than requested."""
    shortages = []
    for line in lines:
        product = line.product
        if product.track_inventory and product.inventory < line.quantity:
            shortages.append({
                "product_id": product.id,
                "product_name": product.name,
                "requested": line.quantity,
                "available": product.inventory,
            })
    return shortages


class InventoryPolicy:
    """Hooks the order state machine calls at each lifecycle step."""

    name = "abstract"

    def on_order_placed(self, order):
        return None

    def on_order_cancelled(self, order):
        return None

    def on_order_fulfilled(self, order):
        raise NotImplementedError


class DecrementOnFulfillment(InventoryPolicy):
    """Nothing is held at placement; stock leaves at fulfillment.

    Each tracked line is decremented only if enough stock remains at that
    instant. Short lines are skipped and reported, they do not fail the
    fulfillment.
    """

    name = "decrement_on_fulfillment"

    def on_order_fulfilled(self, order):
        skipped = []
        for item in order.items:
            product = item.product
            if product is None or not product.track_inventory:
                continue
            result = db.session.execute(
                update(Product)
                .where(
                    Product.id == product.id,
                    Product.track_inventory.is_(True),
                    Product.inventory >= item.quantity,
                )
                .values(inventory=Product.inventory - item.quantity)
                .execution_options(synchronize_session=False)
            )
            db.session.expire(product, ["inventory"])
            if result.rowcount == 0:
                skipped.append(product.id)
                INVENTORY_DECREMENT_SKIPPED.inc()
                logger.warning({
                    "event": "inventory.decrement_skipped",
                    "order_number": order.order_number,
                    "product_id": product.id,
                    "quantity": item.quantity,
                })
        return skipped


DEFAULT_POLICY = DecrementOnFulfillment()
