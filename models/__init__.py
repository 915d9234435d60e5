from datetime import datetime, timezone

from flask_sqlalchemy import SQLAlchemy
from sqlalchemy import BigInteger, Integer

# Use BigInteger in production but fall back to Integer for SQLite
BIGINT = BigInteger().with_variant(Integer, "sqlite")

db = SQLAlchemy()


def utcnow():
    """Naive UTC timestamp, matching the DateTime columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


# Re-export common models for convenience
from .user import User  # noqa: F401,E402
from .store import Store, Product  # noqa: F401,E402
from .cart import Cart, CartItem  # noqa: F401,E402
from .order import Order, OrderItem, OrderStatusLog  # noqa: F401,E402
