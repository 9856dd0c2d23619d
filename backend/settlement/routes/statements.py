# backend/settlement/routes/statements.py
"""
Return and deduction statement API routes.

DESIGN:
- Create/edit statements while pending; totals are always recomputed
- Single-statement transitions raise typed errors -> 4xx with a stable code
- Bulk processing (PATCH .../process) always answers 200 with counts and an
  itemized failure list

Line items use one canonical shape:
{product_id?, product_name, color, size, quantity, unit_price}.
Older clients send "return_quantity" (or "qty") instead of "quantity"; that
alias is resolved here and never reaches the services.
"""

from datetime import date

from flask import Blueprint, current_app, request

from ..errors import SettlementError
from ..extensions import db
from ..models import ReturnStatement, DeductionStatement
from ..validation import ModelValidationPolicy, validate_payload, ValidationError, coerce_int
from ..services import deduction_statement_service, reconciliation_service, return_statement_service
from settlement.time_utils import parse_iso_datetime


return_statements_bp = Blueprint("return_statements", __name__, url_prefix="/api/return-statements")
deduction_statements_bp = Blueprint("deduction_statements", __name__, url_prefix="/api/deduction-statements")

QUANTITY_ALIASES = ("return_quantity", "qty")

RETURN_CREATE_POLICY = ModelValidationPolicy(
    writable_fields={"company_id", "order_id", "reason_code", "return_type", "refund_method", "lines"},
    required_on_create={"lines"},
)

RETURN_UPDATE_POLICY = ModelValidationPolicy(
    writable_fields={"reason_code", "return_type", "refund_method", "lines"},
)

DEDUCTION_CREATE_POLICY = ModelValidationPolicy(
    writable_fields={"company_id", "reason_code", "lines"},
    required_on_create={"company_id", "lines"},
)

DEDUCTION_UPDATE_POLICY = ModelValidationPolicy(
    writable_fields={"reason_code", "lines"},
)


# =============================================================================
# HELPERS
# =============================================================================

def canonical_lines(raw_lines):
    """Map transport aliases onto the canonical line shape."""
    if not isinstance(raw_lines, list):
        return raw_lines
    lines = []
    for raw in raw_lines:
        if isinstance(raw, dict) and "quantity" not in raw:
            raw = dict(raw)
            for alias in QUANTITY_ALIASES:
                if alias in raw:
                    raw["quantity"] = raw.pop(alias)
                    break
        lines.append(raw)
    return lines


def _date_arg(name: str):
    raw = request.args.get(name)
    if not raw:
        return None
    try:
        if "T" in raw:
            return parse_iso_datetime(raw)
        return date.fromisoformat(raw)
    except ValueError:
        raise ValidationError(f"{name} must be an ISO-8601 date or datetime")


def _list_filters() -> dict:
    company_id = request.args.get("company_id")
    return {
        "status": request.args.get("status") or None,
        "company_id": coerce_int(company_id, "company_id") if company_id else None,
        "created_from": _date_arg("created_from"),
        "created_to": _date_arg("created_to"),
        "limit": coerce_int(request.args.get("limit", "100"), "limit"),
        "offset": coerce_int(request.args.get("offset", "0"), "offset"),
    }


def _statement_ids(payload: dict) -> list[int]:
    ids = payload.get("statement_ids")
    if not isinstance(ids, list) or not ids:
        raise ValidationError("statement_ids must be a non-empty list")
    return [coerce_int(i, "statement_ids[]") for i in ids]


def _run(action: str, op, *, status: int = 200):
    """Run a service call and map errors the way every statement route does."""
    try:
        result = op()
    except ValidationError as e:
        db.session.rollback()
        return {"error": str(e)}, 400
    except SettlementError as e:
        db.session.rollback()
        return e.to_dict(), e.http_status
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to %s", action)
        return {"error": "Internal server error"}, 500
    if result is None:
        return {"deleted": True}, status
    return {"statement": result.to_dict()}, status


# =============================================================================
# RETURN STATEMENTS
# =============================================================================

@return_statements_bp.get("")
def list_return_statements_route():
    """?status=&company_id=&created_from=YYYY-MM-DD&created_to=YYYY-MM-DD&limit=&offset="""
    try:
        statements = return_statement_service.list_return_statements(**_list_filters())
    except ValidationError as e:
        return {"error": str(e)}, 400
    return {"statements": [s.to_dict() for s in statements]}


@return_statements_bp.post("")
def create_return_statement_route():
    """
    Create a pending return statement.

    Request body:
    {
        "company_id": 3,            (optional when order_id is given)
        "order_id": 12,             (optional)
        "reason_code": "defect",    (optional)
        "return_type": "exchange",  (optional)
        "refund_method": "mileage", (mileage | cash | card, default mileage)
        "lines": [{"product_id": 1, "product_name": "Tee", "color": "black",
                   "size": "M", "quantity": 3, "unit_price": 10000}]
    }
    """
    payload = request.get_json(silent=True) or {}

    def op():
        patch = validate_payload(
            model=ReturnStatement,
            payload=payload,
            policy=RETURN_CREATE_POLICY,
            partial=False,
        )
        return return_statement_service.create_return_statement(
            lines=canonical_lines(patch["lines"]),
            company_id=patch.get("company_id"),
            order_id=patch.get("order_id"),
            reason_code=patch.get("reason_code"),
            return_type=patch.get("return_type"),
            refund_method=patch.get("refund_method") or "mileage",
        )

    return _run("create return statement", op, status=201)


@return_statements_bp.get("/<int:statement_id>")
def get_return_statement_route(statement_id: int):
    return _run("load return statement", lambda: return_statement_service.get_return_statement(statement_id))


@return_statements_bp.patch("/<int:statement_id>")
def update_return_statement_route(statement_id: int):
    """Edit header fields and/or replace lines (pending only)."""
    payload = request.get_json(silent=True) or {}

    def op():
        patch = validate_payload(
            model=ReturnStatement,
            payload=payload,
            policy=RETURN_UPDATE_POLICY,
            partial=True,
        )
        lines = patch.pop("lines", None)
        statement = return_statement_service.get_return_statement(statement_id)
        if patch:
            statement = return_statement_service.update_return_header(statement_id, patch, commit=False)
        if lines is not None:
            statement = return_statement_service.update_return_lines(
                statement_id, canonical_lines(lines), commit=False
            )
        db.session.commit()
        return statement

    return _run("update return statement", op)


@return_statements_bp.delete("/<int:statement_id>")
def delete_return_statement_route(statement_id: int):
    return _run("delete return statement", lambda: return_statement_service.delete_return_statement(statement_id))


@return_statements_bp.post("/<int:statement_id>/approve")
def approve_return_statement_route(statement_id: int):
    return _run("approve return statement", lambda: return_statement_service.approve_return_statement(statement_id))


@return_statements_bp.post("/<int:statement_id>/reject")
def reject_return_statement_route(statement_id: int):
    """Request body: {"reason": "..."} (required)"""
    payload = request.get_json(silent=True) or {}
    return _run(
        "reject return statement",
        lambda: return_statement_service.reject_return_statement(statement_id, payload.get("reason")),
    )


@return_statements_bp.post("/<int:statement_id>/process")
def process_return_statement_route(statement_id: int):
    """Stock in per line, mileage refund, status refunded. All or nothing."""
    return _run("process return statement", lambda: return_statement_service.process_return_statement(statement_id))


@return_statements_bp.patch("/process")
def process_return_batch_route():
    """
    Bulk processing.

    Request body: {"statement_ids": [1, 2, 3]}
    Returns 200: {processed_count, failed_count, total_mileage_moved, errors}
    """
    payload = request.get_json(silent=True) or {}
    try:
        ids = _statement_ids(payload)
    except ValidationError as e:
        return {"error": str(e)}, 400
    return reconciliation_service.process_return_batch(ids).to_dict()


# =============================================================================
# DEDUCTION STATEMENTS
# =============================================================================

@deduction_statements_bp.get("")
def list_deduction_statements_route():
    try:
        statements = deduction_statement_service.list_deduction_statements(**_list_filters())
    except ValidationError as e:
        return {"error": str(e)}, 400
    return {"statements": [s.to_dict() for s in statements]}


@deduction_statements_bp.post("")
def create_deduction_statement_route():
    """
    Create a pending deduction statement.

    Request body:
    {
        "company_id": 3,
        "reason_code": "damaged",  (optional)
        "lines": [{"product_id": 1, "quantity": 2, "unit_price": 5000}]
    }
    """
    payload = request.get_json(silent=True) or {}

    def op():
        patch = validate_payload(
            model=DeductionStatement,
            payload=payload,
            policy=DEDUCTION_CREATE_POLICY,
            partial=False,
        )
        return deduction_statement_service.create_deduction_statement(
            company_id=patch["company_id"],
            lines=canonical_lines(patch["lines"]),
            reason_code=patch.get("reason_code"),
        )

    return _run("create deduction statement", op, status=201)


@deduction_statements_bp.get("/<int:statement_id>")
def get_deduction_statement_route(statement_id: int):
    return _run(
        "load deduction statement",
        lambda: deduction_statement_service.get_deduction_statement(statement_id),
    )


@deduction_statements_bp.patch("/<int:statement_id>")
def update_deduction_statement_route(statement_id: int):
    payload = request.get_json(silent=True) or {}

    def op():
        patch = validate_payload(
            model=DeductionStatement,
            payload=payload,
            policy=DEDUCTION_UPDATE_POLICY,
            partial=True,
        )
        lines = patch.pop("lines", None)
        statement = deduction_statement_service.get_deduction_statement(statement_id)
        if patch:
            statement = deduction_statement_service.update_deduction_header(statement_id, patch, commit=False)
        if lines is not None:
            statement = deduction_statement_service.update_deduction_lines(
                statement_id, canonical_lines(lines), commit=False
            )
        db.session.commit()
        return statement

    return _run("update deduction statement", op)


@deduction_statements_bp.delete("/<int:statement_id>")
def delete_deduction_statement_route(statement_id: int):
    return _run(
        "delete deduction statement",
        lambda: deduction_statement_service.delete_deduction_statement(statement_id),
    )


@deduction_statements_bp.post("/<int:statement_id>/process")
def process_deduction_statement_route(statement_id: int):
    """Request body (optional): {"override": true} lets the debit overdraw mileage."""
    payload = request.get_json(silent=True) or {}
    return _run(
        "process deduction statement",
        lambda: deduction_statement_service.process_deduction_statement(
            statement_id, override=bool(payload.get("override", False))
        ),
    )


@deduction_statements_bp.post("/<int:statement_id>/cancel")
def cancel_deduction_statement_route(statement_id: int):
    """Request body (optional): {"reason": "..."}"""
    payload = request.get_json(silent=True) or {}
    return _run(
        "cancel deduction statement",
        lambda: deduction_statement_service.cancel_deduction_statement(statement_id, payload.get("reason")),
    )


@deduction_statements_bp.patch("/process")
def process_deduction_batch_route():
    """Request body: {"statement_ids": [1, 2, 3]}"""
    payload = request.get_json(silent=True) or {}
    try:
        ids = _statement_ids(payload)
    except ValidationError as e:
        return {"error": str(e)}, 400
    return reconciliation_service.process_deduction_batch(ids).to_dict()
