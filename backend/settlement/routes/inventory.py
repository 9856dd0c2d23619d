# backend/settlement/routes/inventory.py
"""
Stock ledger routes.

Variants are addressed by product id in the path and ?color=&size= in the
query string; missing options mean "default".

Every write goes through inventory_service; nothing here touches
quantity_on_hand directly.
"""
from flask import Blueprint, current_app, request

from ..errors import SettlementError
from ..extensions import db
from ..models import StockMovement
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    ValidationError,
    coerce_int,
    enforce_rules_stock_adjust,
)
from ..services import catalog_service, inventory_service
from ..services.catalog_service import VariantKey


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")

STOCK_ADJUST_POLICY = ModelValidationPolicy(
    writable_fields={
        "product_id",
        "color",
        "size",
        "delta",
        "reason",
        "movement_type",
        "reference_type",
        "reference_id",
    },
    required_on_create={"product_id", "delta"},
)


def _key_from_request(product_id: int) -> VariantKey:
    return VariantKey.of(product_id, request.args.get("color"), request.args.get("size"))


@inventory_bp.post("/adjust")
def adjust_stock_route():
    """
    Apply one stock movement.

    Request body:
    {
        "product_id": 1,
        "color": "black",       (optional)
        "size": "M",            (optional)
        "delta": -2,
        "reason": "damaged",    (optional)
        "movement_type": "adjustment"  (optional)
    }

    Returns:
        201: movement + resulting status
        400: invalid input
        404: unknown variant
        409: insufficient stock
    """
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(
            model=StockMovement,
            payload=payload,
            policy=STOCK_ADJUST_POLICY,
            partial=False,
        )
        enforce_rules_stock_adjust(patch)
    except ValidationError as e:
        return {"error": str(e)}, 400

    key = VariantKey.of(patch["product_id"], patch.get("color"), patch.get("size"))
    try:
        movement = inventory_service.adjust(
            key,
            patch["delta"],
            patch.get("reason"),
            patch.get("reference_type") or "manual",
            patch.get("reference_id"),
            movement_type=patch.get("movement_type") or "adjustment",
        )
    except ValidationError as e:
        return {"error": str(e)}, 400
    except SettlementError as e:
        return e.to_dict(), e.http_status
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to adjust stock")
        return {"error": "Internal server error"}, 500

    return {"movement": movement.to_dict(), "status": inventory_service.status_of(key)}, 201


@inventory_bp.post("/adjust-many")
def adjust_many_route():
    """
    Apply several movements independently.

    Request body: {"requests": [{...same shape as /adjust...}, ...]}

    Always 200 with per-request results; a failed request never undoes the
    others.
    """
    payload = request.get_json(silent=True) or {}
    requests = payload.get("requests")
    if not isinstance(requests, list) or not requests:
        return {"error": "requests must be a non-empty list"}, 400

    results = inventory_service.adjust_many(requests)
    succeeded = sum(1 for r in results if r.ok)
    return {
        "succeeded": succeeded,
        "failed": len(results) - succeeded,
        "results": [r.to_dict(serialize=lambda m: m.to_dict()) for r in results],
    }


@inventory_bp.post("/variants")
def register_variant_route():
    """Make a (product, color, size) variant known to the stock ledger."""
    payload = request.get_json(silent=True) or {}
    try:
        product_id = coerce_int(payload.get("product_id"), "product_id")
        record = catalog_service.register_variant(product_id, payload.get("color"), payload.get("size"))
    except ValidationError as e:
        return {"error": str(e)}, 400
    except SettlementError as e:
        return e.to_dict(), e.http_status
    return {"variant": record.to_dict()}, 201


@inventory_bp.get("/<int:product_id>/status")
def stock_status_route(product_id: int):
    try:
        return inventory_service.status_of(_key_from_request(product_id))
    except SettlementError as e:
        return e.to_dict(), e.http_status


@inventory_bp.get("/<int:product_id>/availability")
def stock_availability_route(product_id: int):
    """On hand, reserved by open orders, and available to promise."""
    try:
        return inventory_service.availability_of(_key_from_request(product_id))
    except SettlementError as e:
        return e.to_dict(), e.http_status


@inventory_bp.get("/<int:product_id>/history")
def stock_history_route(product_id: int):
    """Movements for a variant, most recent first. ?limit=50&offset=0"""
    try:
        limit = coerce_int(request.args.get("limit", "50"), "limit")
        offset = coerce_int(request.args.get("offset", "0"), "offset")
        key = _key_from_request(product_id)
        movements = inventory_service.history_of(key, limit=limit, offset=offset)
    except ValidationError as e:
        return {"error": str(e)}, 400
    except SettlementError as e:
        return e.to_dict(), e.http_status

    return {
        **key.to_dict(),
        "limit": limit,
        "offset": offset,
        "movements": [m.to_dict() for m in movements],
    }


@inventory_bp.get("/<int:product_id>/options")
def product_options_route(product_id: int):
    return {"product_id": product_id, "options": catalog_service.options_of(product_id)}


@inventory_bp.get("/sync-check")
def sync_check_route():
    """Variants whose stock record disagrees with the movement ledger."""
    mismatches = inventory_service.sync_check()
    return {"in_sync": not mismatches, "mismatches": mismatches}
