"""Keeps order payment state in line with the payment processor.

Two paths reach the same transitions: the buyer-driven confirm call, which
polls the processor, and the processor's webhooks. Both re-derive from the
order's current state so that whichever arrives second changes nothing.
"""
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from flask import current_app

from app.errors import PaymentError, ValidationFailed, WebhookError
from app.metrics import PAYMENT_ERRORS, WEBHOOK_EVENTS
from app.payments import get_gateway
from app.payments.port import GatewayError, InvalidSignature, WebhookVerificationError
from app.services import order_state
from app.utils.money import to_minor_units, to_money
from models import utcnow
from models.order import Order, OrderStatus, PaymentStatus

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConfirmationResult:
    success: bool
    status: str
    error: Optional[str] = None

    @property
    def settled(self) -> bool:
        return self.success and self.status == "succeeded"


def _intent_payload(intent, reused=False):
    return {
        "client_secret": intent.client_secret,
        "payment_intent_id": intent.id,
        "amount": intent.amount,
        "currency": intent.currency,
        "reused": reused,
    }


def create_intent(order: Order, user=None) -> dict:
    if order.status != OrderStatus.PENDING.value or order.payment_status == PaymentStatus.PAID.value:
        raise PaymentError("Order cannot be paid")

    gateway = get_gateway()
    amount = to_minor_units(order.total_amount)
    currency = current_app.config.get("PAYMENT_CURRENCY", "usd")

    try:
        if order.payment_reference:
            try:
                existing = gateway.retrieve_payment_intent(order.payment_reference)
            except GatewayError as e:
                logger.warning("Could not reuse intent %s: %s", order.payment_reference, e)
                existing = None
            if existing is not None and existing.is_open and existing.amount == amount:
                return _intent_payload(existing, reused=True)

        customer = None
        if user is not None:
            customer = gateway.find_or_create_customer(
                user.email,
                user.full_name,
                existing_id=user.processor_customer_id,
                metadata={"user_id": str(user.id)},
            )
            user.processor_customer_id = customer

        intent = gateway.create_payment_intent(
            amount,
            currency,
            customer=customer,
            metadata={"order_id": str(order.id), "order_number": order.order_number},
            description=f"Order {order.order_number}",
            shipping=order.shipping_address,
        )
    except GatewayError as e:
        PAYMENT_ERRORS.labels("create_intent").inc()
        logger.error({"event": "payment.intent_failed", "order_number": order.order_number, "error": str(e)})
        raise PaymentError(f"Payment processing error: {e}")

    order.payment_reference = intent.id
    logger.info({
        "event": "payment.intent_created",
        "order_number": order.order_number,
        "payment_intent_id": intent.id,
        "amount": amount,
    })
    return _intent_payload(intent)


def confirm_intent(payment_reference: str) -> ConfirmationResult:
    try:
        intent = get_gateway().retrieve_payment_intent(payment_reference)
    except GatewayError as e:
        PAYMENT_ERRORS.labels("confirm").inc()
        return ConfirmationResult(False, "error", str(e))

    if intent.status == "succeeded":
        return ConfirmationResult(True, "succeeded")
    if intent.status == "processing":
        return ConfirmationResult(True, "processing")
    if intent.status == "requires_payment_method":
        return ConfirmationResult(False, intent.status, "Payment method required")
    if intent.status == "requires_action":
        return ConfirmationResult(False, intent.status, "Additional authentication required")
    return ConfirmationResult(False, intent.status, "Payment failed")


def confirm_order_payment(order: Order, actor) -> ConfirmationResult:
    if order.payment_status == PaymentStatus.PAID.value:
        return ConfirmationResult(True, "succeeded")
    if not order.payment_reference:
        raise PaymentError("Order has no payment in progress")

    result = confirm_intent(order.payment_reference)
    if not result.success:
        raise PaymentError(result.error or "Payment confirmation failed", payment_status=result.status)
    if order.status != OrderStatus.PENDING.value:
        # the charge went through for an order nobody will ship
        raise PaymentError(
            f"Order is {order.status} and can no longer be paid",
            order_status=order.status,
            payment_status=order.payment_status,
        )
    if result.settled:
        if not order_state.confirm_payment(order, actor, reference=order.payment_reference):
            raise PaymentError("Payment could not be applied to the order", payment_status=order.payment_status)
    else:
        order_state.mark_payment_processing(order, actor)
    return result


def release_open_intent(order: Order) -> bool:
    """Void the processor intent of an order that will never be paid."""
    if not order.payment_reference or order.payment_status == PaymentStatus.PAID.value:
        return False
    try:
        get_gateway().cancel_payment_intent(order.payment_reference)
    except GatewayError as e:
        PAYMENT_ERRORS.labels("cancel_intent").inc()
        logger.warning({
            "event": "payment.intent_cancel_failed",
            "order_number": order.order_number,
            "payment_intent_id": order.payment_reference,
            "error": str(e),
        })
        return False
    logger.info({
        "event": "payment.intent_cancelled",
        "order_number": order.order_number,
        "payment_intent_id": order.payment_reference,
    })
    return True


# --- webhooks ---

def _order_for_intent(intent_id):
    if not intent_id:
        return None
    return Order.query.filter_by(payment_reference=intent_id).first()


def _paid_after_close_note(intent_id, status) -> str:
    return f"Payment {intent_id} captured after the order was {status}; refund required"


def _on_payment_succeeded(intent):
    order = _order_for_intent(intent.get("id"))
    if order is None:
        return "no_order"
    if order_state.confirm_payment(order, reference=intent.get("id")):
        return "applied"
    if order.payment_status == PaymentStatus.PAID.value or order.status == OrderStatus.PENDING.value:
        return "noop"

    note = _paid_after_close_note(intent.get("id"), order.status)
    if order.notes and note in order.notes:
        return "noop"
    order.append_note(note)
    logger.warning({
        "event": "payment.paid_after_cancel",
        "order_number": order.order_number,
        "status": order.status,
        "payment_intent_id": intent.get("id"),
        "amount": intent.get("amount"),
    })
    return "paid_after_cancel"


def _on_payment_failed(intent):
    order = _order_for_intent(intent.get("id"))
    if order is None:
        return "no_order"
    message = (intent.get("last_payment_error") or {}).get("message")
    return "applied" if order_state.mark_payment_failed(order, message=message) else "noop"


def _partial_refund_note(amount) -> str:
    return f"Partial refund: ${to_money(amount)}"


def _on_charge_refunded(charge):
    order = _order_for_intent(charge.get("payment_intent"))
    if order is None:
        return "no_order"
    refunded = Decimal(charge.get("amount_refunded") or 0) / 100
    charged = Decimal(charge.get("amount") or 0) / 100
    if refunded >= charged:
        applied = order_state.apply_refund(order, "payment_processor", amount=to_money(refunded))
        return "applied" if applied else "noop"
    note = _partial_refund_note(refunded)
    if order.notes and note in order.notes:
        return "noop"
    order.append_note(note)
    order.refund_amount = to_money(refunded)
    return "applied"


WEBHOOK_HANDLERS = {
    "payment_intent.succeeded": _on_payment_succeeded,
    "payment_intent.payment_failed": _on_payment_failed,
    "charge.refunded": _on_charge_refunded,
}


def handle_webhook(payload: bytes, signature: Optional[str]) -> str:
    try:
        event = get_gateway().construct_webhook_event(payload, signature)
    except WebhookVerificationError as e:
        WEBHOOK_EVENTS.labels("unknown", "rejected").inc()
        reason = "Invalid signature" if isinstance(e, InvalidSignature) else "Invalid payload"
        logger.warning({"event": "payment.webhook_rejected", "reason": reason})
        raise WebhookError(reason)

    event_type = event.get("type")
    handler = WEBHOOK_HANDLERS.get(event_type)
    if handler is None:
        WEBHOOK_EVENTS.labels("unhandled", "ignored").inc()
        logger.info("Unhandled payment event type: %s", event_type)
        return "ignored"

    obj = (event.get("data") or {}).get("object") or {}
    outcome = handler(obj)
    WEBHOOK_EVENTS.labels(event_type, outcome).inc()
    logger.info({"event": "payment.webhook", "type": event_type, "id": event.get("id"), "outcome": outcome})
    return outcome


def refund_order(order: Order, actor, amount=None, reason=None) -> dict:
    """Refund through the processor, then record it on the order.

    Refunds accumulate; once they reach the order total the order moves to
    refunded, before that each one only leaves a note.
    """
    if order.payment_status != PaymentStatus.PAID.value:
        raise PaymentError("Only paid orders can be refunded")
    if not order.payment_reference:
        raise PaymentError("Order has no processor payment to refund")

    total = to_money(order.total_amount)
    already = to_money(order.refund_amount or 0)
    amount = to_money(amount) if amount is not None else total - already
    if amount <= 0:
        raise ValidationFailed("Refund amount must be positive")
    if already + amount > total:
        raise ValidationFailed("Refund exceeds the amount paid", refundable=float(total - already))

    try:
        refund = get_gateway().create_refund(
            order.payment_reference,
            amount=to_minor_units(amount),
            metadata={
                "order_id": str(order.id),
                "order_number": order.order_number,
                "reason": reason or "",
            },
        )
    except GatewayError as e:
        PAYMENT_ERRORS.labels("refund").inc()
        raise PaymentError(f"Refund failed: {e}")

    cumulative = already + amount
    if cumulative >= total:
        order_state.apply_refund(order, actor, amount=cumulative, reason=reason)
    else:
        order.refunded_at = utcnow()
        order.refund_amount = cumulative
        if reason:
            order.refund_reason = reason
        order.append_note(_partial_refund_note(cumulative))

    logger.info({
        "event": "payment.refunded",
        "order_number": order.order_number,
        "refund_id": refund.id,
        "amount": str(amount),
        "full": cumulative >= total,
    })
    return {"refund_id": refund.id, "amount": float(amount), "status": refund.status}
