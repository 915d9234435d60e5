import logging
from celery import shared_task

logger = logging.getLogger(__name__)

STATUS_MESSAGES = {
    "pending": "We've received your order and it's being prepared.",
    "confirmed": "Your order has been confirmed and is being processed.",
    "processing": "Your order is currently being prepared for shipment.",
    "shipped": "Great news! Your order has been shipped and is on its way to you.",
    "delivered": "Your order has been delivered. We hope you love it!",
    "cancelled": "Your order has been cancelled. If you have any questions, please contact us.",
    "refunded": "Your order has been refunded. Please allow 3-5 business days for the refund to appear.",
}


def status_message(status: str) -> str:
    return STATUS_MESSAGES.get(status, "Your order status has been updated.")


def render_order_email(kind: str, order_number: str, context: dict) -> tuple:
    if kind == "order_confirmation":
        subject = f"Order Confirmation - {order_number}"
        body = f"Thank you for your order. Total: ${context.get('total_amount')}"
    elif kind == "shipping_confirmation":
        subject = f"Your order has shipped - {order_number}"
        tracking = context.get("tracking_number")
        body = status_message("shipped")
        if tracking:
            body += f" Tracking number: {tracking}"
    else:
        subject = f"Order Update - {order_number}"
        body = status_message(context.get("status", ""))
    return subject, body


@shared_task(bind=True, max_retries=3, default_retry_delay=60)
def send_order_email_task(self, kind: str, to: str, order_number: str, context: dict = None) -> dict:
    """Log the rendered email instead of sending it."""
    subject, body = render_order_email(kind, order_number, context or {})
    logger.info("[Email disabled] %s to %s | %s | %s", kind, to, subject, body)
    return {"subject": subject, "body": body}
