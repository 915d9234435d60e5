import logging
from flask import Blueprint
from werkzeug.exceptions import HTTPException
from app.utils.responses import error

errors_bp = Blueprint("errors_bp", __name__)


class DomainError(Exception):
    """Failure scoped to one request, reported to the caller as JSON."""

    status = 422

    def __init__(self, message, status=None, **payload):
        super().__init__(message)
        self.message = message
        if status is not None:
            self.status = status
        self.payload = payload


class ValidationFailed(DomainError):
    status = 422


class InsufficientInventory(DomainError):
    status = 422

    def __init__(self, shortages, message="Insufficient inventory for some items"):
        super().__init__(message, insufficient_items=shortages)
        self.shortages = shortages


class PartialCheckoutError(DomainError):
    """Some per-store orders were committed before another store failed."""

    status = 422

    def __init__(self, message, orders, failed_store_id):
        super().__init__(
            message,
            orders=[o.to_dict() for o in orders],
            failed_store_id=failed_store_id,
        )
        self.orders = orders
        self.failed_store_id = failed_store_id


class InvalidTransition(DomainError):
    status = 422


class PaymentError(DomainError):
    status = 422


class WebhookError(DomainError):
    status = 400


class NotFound(DomainError):
    status = 404

    def __init__(self, message="Not found"):
        super().__init__(message)


class Forbidden(DomainError):
    status = 403

    def __init__(self, message="Forbidden"):
        super().__init__(message)


@errors_bp.app_errorhandler(DomainError)
def handle_domain_error(e):
    logging.getLogger(__name__).info(
        {"event": "request.rejected", "error": type(e).__name__, "reason": e.message}
    )
    return error(e.message, status=e.status, **e.payload)


@errors_bp.app_errorhandler(HTTPException)
def handle_http_exception(e):
    msg = e.description or getattr(e, "name", "HTTP Error")
    return error(msg, status=e.code, code=e.code)


@errors_bp.app_errorhandler(Exception)
def handle_unexpected_exception(e):
    logging.exception("Unhandled exception")
    return error(
        "An unexpected error occurred. Please try again later.",
        status=500,
        code=500,
    )
