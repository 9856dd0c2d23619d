# Overview: Service-layer operations for wholesale orders; the business-day window and editability live here.

from __future__ import annotations

from datetime import date, datetime

from ..extensions import db
from ..errors import OrderNotEditable, OrderNotFound
from ..models import Order, OrderLine
from ..models.orders import ORDER_STATUSES
from ..validation import ValidationError, normalize_line_items
from settlement.time_utils import utcnow
from .business_day_service import business_day_window, is_same_business_day, working_date
from .catalog_service import resolve_variant
from .directory_service import get_company, get_user
from .document_service import next_document_number


def _build_lines(raw_lines) -> list[OrderLine]:
    lines = []
    for item in normalize_line_items(raw_lines):
        key = resolve_variant(
            product_id=item["product_id"],
            product_name=item["product_name"],
            color=item["color"],
            size=item["size"],
        )
        lines.append(OrderLine(
            product_id=key.product_id,
            product_name=item["product_name"] or f"product {key.product_id}",
            color=key.color,
            size=key.size,
            quantity=item["quantity"],
            shipped_quantity=0,
            unit_price=item["unit_price"],
        ))
    return lines


def place_order(
    *,
    user_id: int,
    lines: list,
    company_id: int | None = None,
    created_at: datetime | None = None,
    commit: bool = True,
) -> Order:
    user = get_user(user_id)
    if company_id is None:
        company_id = user.company_id
    else:
        get_company(company_id)

    created_at = created_at or utcnow()
    order_lines = _build_lines(lines)
    order_number = next_document_number(
        document_type="order",
        prefix="ORD",
        day=working_date(created_at),
    )

    order = Order(
        order_number=order_number,
        user_id=user.id,
        company_id=company_id,
        status="pending",
        created_at=created_at,
        lines=order_lines,
    )
    db.session.add(order)
    if commit:
        db.session.commit()
    else:
        db.session.flush()
    return order


def get_order(order_id: int) -> Order:
    order = db.session.get(Order, order_id)
    if order is None:
        raise OrderNotFound(f"order {order_id} not found", order_id=order_id)
    return order


def order_working_date(order: Order) -> date:
    return working_date(order.created_at)


def is_order_editable(order: Order, now: datetime | None = None) -> bool:
    """Edits and deletes are allowed only while the order's business day is still open."""
    return is_same_business_day(order.created_at, now=now)


def _require_editable(order: Order) -> None:
    if not is_order_editable(order):
        raise OrderNotEditable(
            f"order {order.order_number} belongs to closed business day {order_working_date(order).isoformat()}",
            order_id=order.id,
        )


def list_orders_for_working_date(day, *, status: str | None = None) -> list[Order]:
    """Orders created inside the business-day window of `day`, oldest first."""
    window = business_day_window(day)
    query = db.session.query(Order).filter(
        Order.created_at >= window.start_utc,
        Order.created_at < window.end_exclusive_utc,
    )
    if status:
        query = query.filter(Order.status == status)
    return query.order_by(Order.created_at.asc(), Order.id.asc()).all()


def update_order_lines(order_id: int, lines: list, *, commit: bool = True) -> Order:
    order = get_order(order_id)
    _require_editable(order)

    order.lines = _build_lines(lines)
    order.updated_at = utcnow()
    if commit:
        db.session.commit()
    else:
        db.session.flush()
    return order


def delete_order(order_id: int, *, commit: bool = True) -> None:
    order = get_order(order_id)
    _require_editable(order)

    db.session.delete(order)
    if commit:
        db.session.commit()
    else:
        db.session.flush()


def set_order_status(order_id: int, status: str, *, commit: bool = True) -> Order:
    if status not in ORDER_STATUSES:
        raise ValidationError(f"status must be one of {', '.join(ORDER_STATUSES)}")
    order = get_order(order_id)
    order.status = status
    order.updated_at = utcnow()
    if commit:
        db.session.commit()
    else:
        db.session.flush()
    return order


def set_tracking_number(order_id: int, tracking_number: str | None, *, commit: bool = True) -> Order:
    order = get_order(order_id)
    tracking_number = (tracking_number or "").strip() or None
    if tracking_number and len(tracking_number) > 64:
        raise ValidationError("tracking_number exceeds max length 64")
    order.tracking_number = tracking_number
    order.updated_at = utcnow()
    if commit:
        db.session.commit()
    else:
        db.session.flush()
    return order
