# --- models/user.py ---
from models import db, BIGINT, utcnow


class User(db.Model):
    __tablename__ = "user"

    id = db.Column(BIGINT, primary_key=True)
    email = db.Column(db.String(255), unique=True, nullable=False)
    first_name = db.Column(db.String(100), nullable=True)
    last_name = db.Column(db.String(100), nullable=True)
    role = db.Column(db.String(20), nullable=False, default="consumer")  # consumer, seller, admin
    email_verified = db.Column(db.Boolean, default=False)
    is_active = db.Column(db.Boolean, default=True)

    # Customer id on the payment processor side, created lazily on first intent
    processor_customer_id = db.Column(db.String(64), nullable=True)

    created_at = db.Column(db.DateTime, default=utcnow)

    store = db.relationship("Store", back_populates="owner", uselist=False)

    @property
    def full_name(self):
        return " ".join(p for p in (self.first_name, self.last_name) if p)

    def __repr__(self):
        return f"<User id={self.id} role={self.role}>"
