"""Order emails are queued on the session and handed to Celery after commit.

A rolled back transaction drops its queue, so buyers are never told about a
change that did not persist.
"""
import logging

from sqlalchemy import event
from sqlalchemy.orm import Session

from models import db

logger = logging.getLogger(__name__)

_QUEUE_KEY = "pending_notifications"

ORDER_CONFIRMATION = "order_confirmation"
STATUS_UPDATE = "order_status_update"
SHIPPING_CONFIRMATION = "shipping_confirmation"


def notify(kind, order, **context):
    if not order.customer_email:
        return
    db.session.info.setdefault(_QUEUE_KEY, []).append({
        "kind": kind,
        "to": order.customer_email,
        "order_number": order.order_number,
        "context": context,
    })


def pending():
    return list(db.session.info.get(_QUEUE_KEY, []))


@event.listens_for(Session, "after_commit")
def _dispatch_after_commit(session):
    queued = session.info.pop(_QUEUE_KEY, None)
    if not queued:
        return
    from app.tasks.notifications import send_order_email_task

    for message in queued:
        try:
            send_order_email_task.delay(
                message["kind"], message["to"], message["order_number"], message["context"]
            )
        except Exception as exc:
            logger.error("Failed to enqueue %s for %s: %s", message["kind"], message["order_number"], exc)


@event.listens_for(Session, "after_rollback")
def _discard_after_rollback(session):
    session.info.pop(_QUEUE_KEY, None)
