import secrets
from decimal import Decimal
from enum import Enum

from sqlalchemy import Column, String, Text, DateTime, ForeignKey, Numeric
from sqlalchemy.orm import validates

from models import db, BIGINT, utcnow


class OrderStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


def _money(value):
    return float(value) if value is not None else None


class Order(db.Model):
    """One store's share of a checkout.

    Addresses are JSON snapshots, not references. Totals are kept consistent
    with the line items by the totals calculator before every flush.
    """

    __tablename__ = "order"
    __table_args__ = (
        db.Index("ix_order_store_status", "store_id", "status"),
        db.Index("ix_order_user_created", "user_id", "created_at"),
        db.CheckConstraint("subtotal >= 0", name="ck_order_subtotal_non_negative"),
        db.CheckConstraint("shipping_cost >= 0", name="ck_order_shipping_non_negative"),
        db.CheckConstraint("tax_amount >= 0", name="ck_order_tax_non_negative"),
        db.CheckConstraint("total_amount >= 0", name="ck_order_total_non_negative"),
    )

    id = Column(BIGINT, primary_key=True)
    order_number = Column(String(32), unique=True, nullable=False)

    # Registered buyers have user_id; guests only have customer_email plus
    # the digest of their bearer token.
    user_id = Column(BIGINT, ForeignKey("user.id"), nullable=True)
    customer_email = Column(String(255), nullable=False, index=True)
    guest_token_hash = Column(String(64), nullable=True)

    store_id = Column(BIGINT, ForeignKey("store.id"), nullable=False)

    status = Column(String(20), nullable=False, default=OrderStatus.PENDING.value, index=True)
    payment_status = Column(String(20), nullable=False, default=PaymentStatus.PENDING.value, index=True)

    subtotal = Column(Numeric(10, 2), nullable=False, default=Decimal("0.00"))
    shipping_cost = Column(Numeric(10, 2), nullable=False, default=Decimal("0.00"))
    tax_amount = Column(Numeric(10, 2), nullable=False, default=Decimal("0.00"))
    total_amount = Column(Numeric(10, 2), nullable=False, default=Decimal("0.00"))

    shipping_address = Column(db.JSON, nullable=False)
    billing_address = Column(db.JSON, nullable=True)

    payment_method = Column(String(50), nullable=True)
    payment_reference = Column(String(255), nullable=True, index=True)  # processor intent id
    tracking_number = Column(String(100), nullable=True)
    notes = Column(Text, nullable=True)

    fulfilled_at = Column(DateTime, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)
    refunded_at = Column(DateTime, nullable=True)
    refund_amount = Column(Numeric(10, 2), nullable=True)
    refund_reason = Column(Text, nullable=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    user = db.relationship("User", backref="orders", lazy=True)
    store = db.relationship("Store", backref="orders", lazy=True)
    items = db.relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItem.id",
        lazy=True,
    )
    status_logs = db.relationship(
        "OrderStatusLog",
        backref="order",
        cascade="all, delete-orphan",
        order_by="OrderStatusLog.id",
        lazy=True,
    )

    @validates("store_id")
    def _store_is_immutable(self, key, value):
        if self.store_id is not None and value != self.store_id:
            raise ValueError("An order cannot move to another store")
        return value

    @classmethod
    def next_order_number(cls, today=None):
        """ORD-YYYYMMDD-XXXXXXXX, retried until unused."""
        stamp = (today or utcnow()).strftime("%Y%m%d")
        while True:
            candidate = f"ORD-{stamp}-{secrets.token_hex(4).upper()}"
            if not db.session.query(cls.id).filter_by(order_number=candidate).first():
                return candidate

    @property
    def is_guest(self):
        return self.user_id is None

    def total_items(self):
        return sum(oi.quantity for oi in self.items)

    def append_note(self, text):
        self.notes = f"{self.notes}\n{text}" if self.notes else text

    def to_dict(self, include_items=True):
        data = {
            "id": self.id,
            "order_number": self.order_number,
            "store_id": self.store_id,
            "user_id": self.user_id,
            "customer_email": self.customer_email,
            "status": self.status,
            "payment_status": self.payment_status,
            "subtotal": _money(self.subtotal),
            "shipping_cost": _money(self.shipping_cost),
            "tax_amount": _money(self.tax_amount),
            "total_amount": _money(self.total_amount),
            "shipping_address": self.shipping_address,
            "billing_address": self.billing_address,
            "payment_method": self.payment_method,
            "payment_reference": self.payment_reference,
            "tracking_number": self.tracking_number,
            "notes": self.notes,
            "fulfilled_at": self.fulfilled_at.isoformat() if self.fulfilled_at else None,
            "cancelled_at": self.cancelled_at.isoformat() if self.cancelled_at else None,
            "refunded_at": self.refunded_at.isoformat() if self.refunded_at else None,
            "refund_amount": _money(self.refund_amount),
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
        if include_items:
            data["items"] = [oi.to_dict() for oi in self.items]
        return data


class OrderItem(db.Model):
    __tablename__ = "order_item"
    __table_args__ = (
        db.UniqueConstraint("order_id", "product_id", name="uq_order_item_order_product"),
        db.CheckConstraint("quantity >= 1", name="ck_order_item_quantity_positive"),
        db.CheckConstraint("unit_price > 0", name="ck_order_item_unit_price_positive"),
        db.CheckConstraint("total_price > 0", name="ck_order_item_total_price_positive"),
    )

    id = db.Column(BIGINT, primary_key=True)
    order_id = db.Column(BIGINT, db.ForeignKey("order.id"), nullable=False)
    product_id = db.Column(BIGINT, db.ForeignKey("product.id", ondelete="SET NULL"), nullable=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price = db.Column(db.Numeric(10, 2), nullable=False)
    total_price = db.Column(db.Numeric(10, 2), nullable=False)

    # Frozen copy of the product at checkout time
    product_snapshot = db.Column(db.JSON, nullable=False)

    order = db.relationship("Order", back_populates="items")
    product = db.relationship("Product")

    @validates("product_snapshot")
    def _snapshot_is_immutable(self, key, value):
        if self.product_snapshot is not None:
            raise ValueError("product_snapshot is immutable once captured")
        return value

    def price_line(self):
        self.total_price = Decimal(self.quantity) * Decimal(self.unit_price)
        return self.total_price

    def to_dict(self):
        snapshot = self.product_snapshot or {}
        return {
            "product_id": self.product_id,
            "name": snapshot.get("name"),
            "sku": snapshot.get("sku"),
            "image": snapshot.get("image"),
            "unit_price": float(self.unit_price),
            "quantity": self.quantity,
            "total_price": float(self.total_price),
        }


class OrderStatusLog(db.Model):
    __tablename__ = "order_status_log"
    id = Column(BIGINT, primary_key=True)
    order_id = Column(BIGINT, ForeignKey("order.id"), nullable=False)
    status = Column(String(30), nullable=False)
    payment_status = Column(String(30), nullable=True)
    updated_by = Column(String(64), nullable=False)
    timestamp = Column(DateTime, default=utcnow)

    def to_dict(self):
        return {
            "order_id": self.order_id,
            "status": self.status,
            "payment_status": self.payment_status,
            "updated_by": self.updated_by,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }
