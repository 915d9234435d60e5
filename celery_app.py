import os
import logging
from celery import Celery
from celery.schedules import crontab
from celery.signals import task_failure, task_retry

broker_url = os.environ.get("CELERY_BROKER_URL", "memory://")
backend_url = os.environ.get("CELERY_RESULT_BACKEND", "cache+memory://")

celery_app = Celery(
    "marketplace",
    broker=broker_url,
    backend=backend_url,
    include=["app.tasks.notifications", "app.tasks.orders"],
)
celery_app.conf.task_always_eager = os.environ.get("CELERY_TASK_ALWAYS_EAGER", "0") == "1"
celery_app.conf.task_eager_propagates = True
celery_app.conf.task_store_eager_result = False
celery_app.conf.beat_schedule = {
    "expire-pending-orders": {
        "task": "app.tasks.orders.expire_pending_orders_task",
        "schedule": crontab(minute=0),
    },
}

logger = logging.getLogger(__name__)


def init_celery(app):
    """Apply Flask config on top of the env defaults."""
    celery_app.conf.task_always_eager = app.config.get(
        "CELERY_TASK_ALWAYS_EAGER", celery_app.conf.task_always_eager
    )
    app.extensions["celery"] = celery_app
    return celery_app


@task_failure.connect
def _log_failure(sender=None, task_id=None, exception=None, **kwargs):
    logger.error("Task %s failed: %s", getattr(sender, 'name', task_id), exception)

@task_retry.connect
def _log_retry(sender=None, request=None, reason=None, **kwargs):
    logger.warning("Task %s retry due to: %s", getattr(sender, 'name', ''), reason)
