# backend/settlement/routes/mileage.py
"""
Mileage ledger routes.

Balances are read from the account cache, which the ledger keeps in step
with every entry write.
"""
from flask import Blueprint, current_app, request

from ..errors import SettlementError
from ..extensions import db
from ..models import MileageEntry
from ..validation import ModelValidationPolicy, validate_payload, ValidationError, coerce_int
from ..services import directory_service, mileage_service


mileage_bp = Blueprint("mileage", __name__, url_prefix="/api/mileage")

MILEAGE_WRITE_POLICY = ModelValidationPolicy(
    writable_fields={"amount", "source", "reference_type", "reference_id", "description", "status", "override"},
    required_on_create={"amount"},
)


@mileage_bp.get("/<int:user_id>")
def mileage_summary_route(user_id: int):
    """Balance and recent entries. ?status=pending&limit=50&offset=0"""
    try:
        limit = coerce_int(request.args.get("limit", "50"), "limit")
        offset = coerce_int(request.args.get("offset", "0"), "offset")
        entries = mileage_service.entries_for(
            user_id,
            status=request.args.get("status"),
            limit=limit,
            offset=offset,
        )
        return {
            "user_id": user_id,
            "display_name": directory_service.display_name_of(user_id=user_id),
            "balance": mileage_service.balance_of(user_id),
            "entries": [e.to_dict() for e in entries],
        }
    except ValidationError as e:
        return {"error": str(e)}, 400
    except SettlementError as e:
        return e.to_dict(), e.http_status


def _write_entry(user_id: int, *, debit: bool):
    payload = request.get_json(silent=True) or {}
    try:
        patch = validate_payload(
            model=MileageEntry,
            payload=payload,
            policy=MILEAGE_WRITE_POLICY,
            partial=False,
        )
        kwargs = dict(
            reference_type=patch.get("reference_type"),
            description=patch.get("description"),
            status=patch.get("status") or "completed",
        )
        if debit:
            kwargs["override"] = bool(patch.get("override", False))
            op = mileage_service.debit
        else:
            op = mileage_service.credit
        entry = op(
            user_id,
            patch["amount"],
            patch.get("source") or "manual",
            patch.get("reference_id"),
            **kwargs,
        )
    except ValidationError as e:
        return {"error": str(e)}, 400
    except SettlementError as e:
        return e.to_dict(), e.http_status
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to write mileage entry")
        return {"error": "Internal server error"}, 500

    return {"entry": entry.to_dict(), "balance": mileage_service.balance_of(user_id)}, 201


@mileage_bp.post("/<int:user_id>/credit")
def credit_route(user_id: int):
    """
    Request body: {"amount": 1000, "source": "manual", "description": "..."}
    """
    return _write_entry(user_id, debit=False)


@mileage_bp.post("/<int:user_id>/debit")
def debit_route(user_id: int):
    """
    Request body: {"amount": 1000, "source": "manual", "override": false}

    409 when the balance would go negative and override is not set.
    """
    return _write_entry(user_id, debit=True)


@mileage_bp.post("/<int:user_id>/recompute")
def recompute_route(user_id: int):
    """Rebuild the cached balance from completed entries."""
    try:
        balance = mileage_service.recompute_balance(user_id)
    except SettlementError as e:
        return e.to_dict(), e.http_status
    return {"user_id": user_id, "balance": balance}


def _transition_entry(entry_id: int, op, action: str):
    try:
        entry = op(entry_id)
    except SettlementError as e:
        return e.to_dict(), e.http_status
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to %s mileage entry %s", action, entry_id)
        return {"error": "Internal server error"}, 500
    return {"entry": entry.to_dict(), "balance": mileage_service.balance_of(entry.user_id)}


@mileage_bp.post("/entries/<int:entry_id>/settle")
def settle_entry_route(entry_id: int):
    return _transition_entry(entry_id, mileage_service.settle_pending_entry, "settle")


@mileage_bp.post("/entries/<int:entry_id>/cancel")
def cancel_entry_route(entry_id: int):
    return _transition_entry(entry_id, mileage_service.cancel_pending_entry, "cancel")


@mileage_bp.post("/entries/<int:entry_id>/reverse")
def reverse_entry_route(entry_id: int):
    return _transition_entry(entry_id, mileage_service.reverse_entry, "reverse")
