from decimal import Decimal

from models import db, BIGINT, utcnow


class Store(db.Model):
    __tablename__ = "store"

    id = db.Column(BIGINT, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    owner_id = db.Column(BIGINT, db.ForeignKey("user.id"), unique=True, nullable=False)
    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime, default=utcnow)

    owner = db.relationship("User", back_populates="store")
    products = db.relationship("Product", back_populates="store", lazy=True)

    def __repr__(self):
        return f"<Store id={self.id} name={self.name}>"


class Product(db.Model):
    __tablename__ = "product"
    __table_args__ = (
        db.CheckConstraint("inventory >= 0", name="ck_product_inventory_non_negative"),
    )

    id = db.Column(BIGINT, primary_key=True)
    store_id = db.Column(BIGINT, db.ForeignKey("store.id"), nullable=False, index=True)

    name = db.Column(db.String(200), nullable=False)
    sku = db.Column(db.String(50), nullable=True)
    description = db.Column(db.Text, nullable=True)
    image_url = db.Column(db.String(255), nullable=True)

    base_price = db.Column(db.Numeric(10, 2), nullable=False)

    # Inventory is read by the storefront and the checkout guard; only
    # fulfillment writes it.
    track_inventory = db.Column(db.Boolean, default=True, nullable=False)
    inventory = db.Column(db.Integer, default=0, nullable=False)
    low_stock_threshold = db.Column(db.Integer, default=5, nullable=False)

    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    store = db.relationship("Store", back_populates="products")

    @property
    def is_low_stock(self):
        return self.track_inventory and self.inventory <= self.low_stock_threshold

    def snapshot(self):
        """Point-in-time copy of the fields an order line must keep."""
        return {
            "name": self.name,
            "sku": self.sku,
            "description": self.description,
            "price": str(Decimal(self.base_price)),
            "image": self.image_url,
        }

    def to_dict(self):
        return {
            "id": self.id,
            "store_id": self.store_id,
            "name": self.name,
            "sku": self.sku,
            "base_price": float(self.base_price),
            "track_inventory": self.track_inventory,
            "inventory": self.inventory,
            "low_stock": self.is_low_stock,
        }
