import logging
from celery import shared_task
from flask import current_app, has_app_context

from app.services.orders import expire_pending_orders
from app.utils import transactional

logger = logging.getLogger(__name__)


def _run_expiry() -> int:
    hours = current_app.config.get("PENDING_ORDER_TIMEOUT_HOURS", 48)
    with transactional("Failed to expire pending orders"):
        expired = expire_pending_orders(hours)
    return len(expired)


@shared_task(bind=True, max_retries=2, default_retry_delay=300)
def expire_pending_orders_task(self) -> int:
    """Cancel orders that stayed unpaid past the configured timeout."""
    if has_app_context():
        return _run_expiry()

    from app import create_app

    app = create_app()
    with app.app_context():
        return _run_expiry()
