"""Order lifecycle.

Every mutation goes through here so that status and payment status only
move along the tables below, each change leaves an ``OrderStatusLog`` row,
and the buyer gets an email once the surrounding transaction commits.
Functions return ``True`` when they changed the order and ``False`` when
the move was not legal; none of them commit.
"""
import logging

from app.services import notifications
from app.services.inventory import DEFAULT_POLICY
from models import db, utcnow
from models.order import OrderStatus as S, PaymentStatus as P, OrderStatusLog

logger = logging.getLogger(__name__)

STATUS_TRANSITIONS = {
    S.PENDING: {S.CONFIRMED, S.PROCESSING, S.SHIPPED, S.DELIVERED, S.CANCELLED},
    S.CONFIRMED: {S.PROCESSING, S.SHIPPED, S.DELIVERED, S.CANCELLED, S.REFUNDED},
    S.PROCESSING: {S.SHIPPED, S.DELIVERED, S.REFUNDED},
    S.SHIPPED: {S.DELIVERED, S.REFUNDED},
    S.DELIVERED: {S.REFUNDED},
    S.CANCELLED: {S.REFUNDED},
    S.REFUNDED: set(),
}

PAYMENT_TRANSITIONS = {
    P.PENDING: {P.PROCESSING, P.PAID, P.FAILED},
    P.PROCESSING: {P.PAID, P.FAILED},
    P.FAILED: {P.PROCESSING, P.PAID},
    P.PAID: {P.REFUNDED},
    P.REFUNDED: set(),
}

CANCELLABLE = {S.PENDING, S.CONFIRMED}
SELLER_STATUSES = {S.PROCESSING, S.SHIPPED, S.DELIVERED}


def can_transition(current, target) -> bool:
    return S(target) in STATUS_TRANSITIONS[S(current)]


def can_transition_payment(current, target) -> bool:
    return P(target) in PAYMENT_TRANSITIONS[P(current)]


def _record(order, actor, notify_kind=notifications.STATUS_UPDATE, **context):
    db.session.add(
        OrderStatusLog(
            order=order,
            status=order.status,
            payment_status=order.payment_status,
            updated_by=str(actor),
        )
    )
    context.setdefault("status", order.status)
    notifications.notify(notify_kind, order, **context)
    logger.info({
        "event": "order.transition",
        "order_number": order.order_number,
        "status": order.status,
        "payment_status": order.payment_status,
        "actor": str(actor),
    })


def record_placed(order, actor):
    """Initial log row and confirmation email for a freshly placed order."""
    _record(
        order,
        actor,
        notifications.ORDER_CONFIRMATION,
        total_amount=str(order.total_amount),
    )
    DEFAULT_POLICY.on_order_placed(order)


def cancel(order, actor, reason=None) -> bool:
    if S(order.status) not in CANCELLABLE:
        return False
    order.status = S.CANCELLED.value
    order.cancelled_at = utcnow()
    if reason:
        order.append_note(f"Cancelled: {reason}")
    DEFAULT_POLICY.on_order_cancelled(order)
    _record(order, actor)
    return True


def fulfill(order, actor, policy=DEFAULT_POLICY) -> bool:
    """Hand a paid, confirmed order to the seller and release its stock."""
    if order.status != S.CONFIRMED.value or order.payment_status != P.PAID.value:
        return False
    order.status = S.PROCESSING.value
    order.fulfilled_at = utcnow()
    policy.on_order_fulfilled(order)
    _record(order, actor)
    return True


def confirm_payment(order, actor="payment_processor", reference=None) -> bool:
    """Mark an order paid and confirmed.

    Returns ``False`` for an order that is already paid, so a redelivered
    success event changes nothing.
    """
    if order.status != S.PENDING.value:
        return False
    if not can_transition_payment(order.payment_status, P.PAID):
        return False
    order.status = S.CONFIRMED.value
    order.payment_status = P.PAID.value
    if reference and not order.payment_reference:
        order.payment_reference = reference
    _record(order, actor)
    return True


def mark_payment_processing(order, actor="payment_processor") -> bool:
    """The processor accepted the payment but has not settled it yet."""
    if order.status != S.PENDING.value:
        return False
    if not can_transition_payment(order.payment_status, P.PROCESSING):
        return False
    order.payment_status = P.PROCESSING.value
    db.session.add(
        OrderStatusLog(
            order=order,
            status=order.status,
            payment_status=order.payment_status,
            updated_by=str(actor),
        )
    )
    return True


def mark_payment_failed(order, actor="payment_processor", message=None) -> bool:
    if order.payment_status == P.FAILED.value:
        return False
    if not can_transition_payment(order.payment_status, P.FAILED):
        return False
    order.payment_status = P.FAILED.value
    if message:
        order.append_note(f"Payment failed: {message}")
    db.session.add(
        OrderStatusLog(
            order=order,
            status=order.status,
            payment_status=order.payment_status,
            updated_by=str(actor),
        )
    )
    logger.info({
        "event": "order.payment_failed",
        "order_number": order.order_number,
        "actor": str(actor),
    })
    return True


def apply_refund(order, actor, amount=None, reason=None) -> bool:
    """Full refund: both statuses move to refunded."""
    if order.payment_status != P.PAID.value:
        return False
    if not can_transition(order.status, S.REFUNDED):
        return False
    order.status = S.REFUNDED.value
    order.payment_status = P.REFUNDED.value
    order.refunded_at = utcnow()
    order.refund_amount = amount if amount is not None else order.total_amount
    if reason:
        order.refund_reason = reason
    _record(order, actor)
    return True


def seller_update_status(order, target, actor, tracking_number=None) -> bool:
    target = S(target)
    if target not in SELLER_STATUSES:
        return False
    if S(order.status) in (S.CANCELLED, S.REFUNDED):
        return False
    if not can_transition(order.status, target):
        return False
    order.status = target.value
    if target == S.SHIPPED:
        if tracking_number:
            order.tracking_number = tracking_number
        if order.fulfilled_at is None:
            order.fulfilled_at = utcnow()
        _record(
            order,
            actor,
            notifications.SHIPPING_CONFIRMATION,
            tracking_number=order.tracking_number,
        )
    else:
        _record(order, actor)
    return True
