# backend/settlement/routes/orders.py
"""
Order routes.

Orders are listed by working date: the business-day window
[previous working day 15:00, working date 14:59:59] local time.
Line edits and deletes are allowed only while the order's business day is
still the current one.
"""

from datetime import date

from flask import Blueprint, current_app, request

from ..errors import SettlementError
from ..extensions import db
from ..models import Order
from ..validation import ModelValidationPolicy, validate_payload, ValidationError
from ..services import order_service
from ..services.business_day_service import business_day_window, today_working_date


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")

ORDER_CREATE_POLICY = ModelValidationPolicy(
    writable_fields={"user_id", "company_id", "lines"},
    required_on_create={"user_id", "lines"},
)


def _order_payload(order: Order) -> dict:
    return {
        **order.to_dict(),
        "working_date": order_service.order_working_date(order).isoformat(),
        "editable": order_service.is_order_editable(order),
    }


def _fail(action: str, exc: Exception):
    db.session.rollback()
    if isinstance(exc, ValidationError):
        return {"error": str(exc)}, 400
    if isinstance(exc, SettlementError):
        return exc.to_dict(), exc.http_status
    current_app.logger.exception("Failed to %s", action)
    return {"error": "Internal server error"}, 500


@orders_bp.get("")
def list_orders_route():
    """?working_date=YYYY-MM-DD (default: today's working date) &status="""
    raw = request.args.get("working_date")
    try:
        day = date.fromisoformat(raw) if raw else today_working_date()
    except ValueError:
        return {"error": "working_date must be YYYY-MM-DD"}, 400

    window = business_day_window(day)
    orders = order_service.list_orders_for_working_date(day, status=request.args.get("status") or None)
    return {
        "working_date": window.working_date.isoformat(),
        "window": window.to_dict(),
        "orders": [_order_payload(o) for o in orders],
    }


@orders_bp.post("")
def place_order_route():
    """
    Request body:
    {
        "user_id": 5,
        "company_id": 3,  (optional, defaults to the user's company)
        "lines": [{"product_id": 1, "color": "black", "size": "M", "quantity": 2, "unit_price": 12000}]
    }
    """
    payload = request.get_json(silent=True) or {}
    try:
        patch = validate_payload(model=Order, payload=payload, policy=ORDER_CREATE_POLICY, partial=False)
        order = order_service.place_order(
            user_id=patch["user_id"],
            company_id=patch.get("company_id"),
            lines=patch["lines"],
        )
    except Exception as e:  # noqa: BLE001
        return _fail("place order", e)
    return {"order": _order_payload(order)}, 201


@orders_bp.get("/<int:order_id>")
def get_order_route(order_id: int):
    try:
        return {"order": _order_payload(order_service.get_order(order_id))}
    except SettlementError as e:
        return e.to_dict(), e.http_status


@orders_bp.patch("/<int:order_id>")
def update_order_route(order_id: int):
    """Replace order lines. 409 once the order's business day has closed."""
    payload = request.get_json(silent=True) or {}
    try:
        order = order_service.update_order_lines(order_id, payload.get("lines"))
    except Exception as e:  # noqa: BLE001
        return _fail("update order", e)
    return {"order": _order_payload(order)}


@orders_bp.delete("/<int:order_id>")
def delete_order_route(order_id: int):
    try:
        order_service.delete_order(order_id)
    except Exception as e:  # noqa: BLE001
        return _fail("delete order", e)
    return {"deleted": True}


@orders_bp.patch("/<int:order_id>/status")
def set_order_status_route(order_id: int):
    payload = request.get_json(silent=True) or {}
    try:
        order = order_service.set_order_status(order_id, payload.get("status"))
    except Exception as e:  # noqa: BLE001
        return _fail("update order status", e)
    return {"order": _order_payload(order)}


@orders_bp.patch("/<int:order_id>/tracking")
def set_tracking_number_route(order_id: int):
    payload = request.get_json(silent=True) or {}
    try:
        order = order_service.set_tracking_number(order_id, payload.get("tracking_number"))
    except Exception as e:  # noqa: BLE001
        return _fail("update tracking number", e)
    return {"order": _order_payload(order)}
