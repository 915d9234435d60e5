from flask import Blueprint, request

from app.version import API_PREFIX
from app.errors import NotFound
from app.schemas.orders import RefundRequest
from app.services.payment_service import refund_order
from app.utils import auth_required, ok, role_required, transactional, validate_schema
from models import db
from models.order import Order

admin_bp = Blueprint("admin", __name__, url_prefix=f"{API_PREFIX}/admin")


@admin_bp.before_request
@auth_required
@role_required("admin")
def _enforce_admin_role():
    """Ensure the requester is an authenticated admin."""
    return None


@admin_bp.route("/orders/<int:order_id>/refund", methods=["POST"])
@validate_schema(RefundRequest)
def refund(order_id):
    data = request.validated_data
    with transactional("Refund failed"):
        order = db.session.get(Order, order_id)
        if order is None:
            raise NotFound("Order not found")
        result = refund_order(order, request.user.id, amount=data.amount, reason=data.reason)
    return ok({"refund": result, "order": order.to_dict()}, "Refund issued")
