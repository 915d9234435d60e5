from datetime import timedelta
from decimal import Decimal

from models import db, BIGINT, utcnow

DEFAULT_CART_TTL_DAYS = 30


class Cart(db.Model):
    """Per-buyer collection of candidate purchases.

    A cart belongs either to a registered user or to a guest, the latter
    identified only by the digest of an opaque bearer token. The cart never
    checks stock; checkout does. None of the mutators commit, the caller owns
    the transaction.
    """

    __tablename__ = "cart"

    id = db.Column(BIGINT, primary_key=True)
    user_id = db.Column(BIGINT, db.ForeignKey("user.id"), unique=True, nullable=True)
    guest_token_hash = db.Column(db.String(64), unique=True, nullable=True)
    expires_at = db.Column(db.DateTime, nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    items = db.relationship(
        "CartItem",
        back_populates="cart",
        cascade="all, delete-orphan",
        order_by="CartItem.id",
        lazy=True,
    )

    def __init__(self, **kwargs):
        kwargs.setdefault("expires_at", utcnow() + timedelta(days=DEFAULT_CART_TTL_DAYS))
        super().__init__(**kwargs)

    @property
    def is_expired(self):
        return self.expires_at <= utcnow()

    def extend_expiration(self, days=DEFAULT_CART_TTL_DAYS):
        self.expires_at = utcnow() + timedelta(days=days)

    def find_item(self, product):
        # unflushed lines only know their product object, not its id
        return next(
            (ci for ci in self.items if ci.product is product or ci.product_id == product.id),
            None,
        )

    def add_item(self, product, quantity=1, ttl_days=DEFAULT_CART_TTL_DAYS):
        """Upsert a line: re-adding a product bumps its quantity."""
        item = self.find_item(product)
        if item:
            item.quantity += quantity
        else:
            item = CartItem(product=product, quantity=quantity, added_at=utcnow())
            self.items.append(item)
        self.extend_expiration(ttl_days)
        return item

    def update_item(self, item, quantity, ttl_days=DEFAULT_CART_TTL_DAYS):
        if quantity <= 0:
            self.remove_item(item)
            return None
        item.quantity = quantity
        self.extend_expiration(ttl_days)
        return item

    def remove_item(self, item):
        if item in self.items:
            self.items.remove(item)

    def clear(self):
        self.items.clear()

    def total_items(self):
        return sum(ci.quantity for ci in self.items)

    def total_price(self):
        return sum((ci.line_total for ci in self.items), Decimal("0.00"))

    def to_dict(self):
        return {
            "id": self.id,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "items": [ci.to_dict() for ci in self.items],
            "total_items": self.total_items(),
            "total_price": float(self.total_price()),
        }


class CartItem(db.Model):
    __tablename__ = "cart_item"
    __table_args__ = (
        db.UniqueConstraint("cart_id", "product_id", name="uq_cart_item_cart_product"),
        db.CheckConstraint("quantity >= 1", name="ck_cart_item_quantity_positive"),
    )

    id = db.Column(BIGINT, primary_key=True)
    cart_id = db.Column(BIGINT, db.ForeignKey("cart.id"), nullable=False)
    product_id = db.Column(BIGINT, db.ForeignKey("product.id"), nullable=False)
    quantity = db.Column(db.Integer, nullable=False, default=1)
    added_at = db.Column(db.DateTime, default=utcnow)

    cart = db.relationship("Cart", back_populates="items")
    product = db.relationship("Product")

    @property
    def line_total(self):
        return Decimal(self.quantity) * Decimal(self.product.base_price)

    def to_dict(self):
        return {
            "id": self.id,
            "product_id": self.product_id,
            "product_name": self.product.name,
            "store_id": self.product.store_id,
            "unit_price": float(self.product.base_price),
            "quantity": self.quantity,
            "subtotal": float(self.line_total),
        }
