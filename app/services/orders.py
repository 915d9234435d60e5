import logging
from datetime import timedelta

from sqlalchemy import or_

from app.errors import NotFound, ValidationFailed
from app.services import order_state
from app.services.payment_service import release_open_intent
from app.services.identity import token_matches
from models import db, utcnow
from models.order import Order, OrderStatus, PaymentStatus

logger = logging.getLogger(__name__)

MAX_PER_PAGE = 100


def _is_admin(user):
    return user is not None and user.role == "admin"


def _owns_store(user, order):
    store = getattr(user, "store", None) if user is not None else None
    return store is not None and order.store_id == store.id


def order_for_actor(order_id, user=None, guest_token=None) -> Order:
    """The order if the caller may see it, 404 otherwise.

    Buyers, the selling store's owner, admins and holders of the guest
    token all qualify. A mismatch looks exactly like a missing order.
    """
    order = db.session.get(Order, order_id)
    if order is None:
        raise NotFound("Order not found")
    if user is not None and (order.user_id == user.id or _owns_store(user, order) or _is_admin(user)):
        return order
    if user is None and token_matches(guest_token, order.guest_token_hash):
        return order
    raise NotFound("Order not found")


def order_for_buyer(order_id, user=None, guest_token=None) -> Order:
    order = db.session.get(Order, order_id)
    if order is None:
        raise NotFound("Order not found")
    if user is not None and (order.user_id == user.id or _is_admin(user)):
        return order
    if user is None and token_matches(guest_token, order.guest_token_hash):
        return order
    raise NotFound("Order not found")


def order_for_seller(order_id, user) -> Order:
    order = db.session.get(Order, order_id)
    if order is None or not (_owns_store(user, order) or _is_admin(user)):
        raise NotFound("Order not found")
    return order


def find_by_number_for_email(order_number, email) -> Order:
    order = Order.query.filter_by(order_number=order_number).first()
    if order is None or not email or order.customer_email.lower() != email.strip().lower():
        raise NotFound("Order not found")
    return order


def list_orders(user, store_orders=False, status=None, page=1, per_page=20):
    query = Order.query
    if store_orders:
        if _is_admin(user):
            pass
        elif user.store is None:
            return [], {"page": page, "per_page": per_page, "total": 0, "pages": 0}
        else:
            query = query.filter(Order.store_id == user.store.id)
    else:
        query = query.filter(Order.user_id == user.id)
    if status:
        try:
            status = OrderStatus(status).value
        except ValueError:
            raise ValidationFailed(f"Unknown status: {status}")
        query = query.filter(Order.status == status)

    page = max(int(page or 1), 1)
    per_page = min(max(int(per_page or 20), 1), MAX_PER_PAGE)
    pagination = query.order_by(Order.created_at.desc(), Order.id.desc()).paginate(
        page=page, per_page=per_page, error_out=False
    )
    meta = {
        "page": pagination.page,
        "per_page": pagination.per_page,
        "total": pagination.total,
        "pages": pagination.pages,
    }
    return pagination.items, meta


def cancel_order(order, actor, reason=None) -> bool:
    """Cancel through the state machine and void any unfinished processor intent."""
    if not order_state.cancel(order, actor, reason=reason):
        return False
    release_open_intent(order)
    return True


def expire_pending_orders(timeout_hours, now=None) -> list:
    """Cancel unpaid orders left pending longer than ``timeout_hours``."""
    cutoff = (now or utcnow()) - timedelta(hours=timeout_hours)
    stale = (
        Order.query.filter(
            Order.status == OrderStatus.PENDING.value,
            Order.payment_status != PaymentStatus.PAID.value,
            or_(Order.created_at < cutoff, Order.created_at.is_(None)),
        )
        .order_by(Order.id)
        .all()
    )
    expired = []
    for order in stale:
        if cancel_order(order, "system", reason=f"Payment not received within {timeout_hours} hours"):
            expired.append(order.order_number)
    if expired:
        logger.info({"event": "orders.expired", "count": len(expired), "orders": expired})
    return expired
