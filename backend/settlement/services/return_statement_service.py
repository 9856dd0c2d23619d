"""
Return Statement Service

WHY: Goods coming back from a wholesale customer must land in stock and, for
mileage refunds, in the customer's mileage ledger. Both effects belong to
one statement, so they commit together or not at all.

DESIGN PRINCIPLES:
- Lines are a pending-only snapshot; totals are folded from lines
- Every line is resolved to a known variant before any ledger write
- One return_in movement per line, at most one refund entry per statement
- Cash/card refunds are settled outside the mileage ledger
- Rejection is terminal and has no ledger effects

LIFECYCLE:
1. Create statement (PENDING)
2. Approve (PENDING -> APPROVED) or reject (PENDING -> REJECTED)
3. Process (PENDING|APPROVED -> REFUNDED): stock in, mileage credit, order returned
"""

from __future__ import annotations

from ..extensions import db
from ..errors import InvalidTransition, StatementAlreadyProcessed
from ..models import Order, ReturnStatement, ReturnStatementLine
from ..models.statements import REFUND_METHODS
from ..validation import ValidationError
from settlement.time_utils import utcnow
from . import inventory_service, mileage_service
from .directory_service import get_company, mileage_user_for_company
from .document_service import next_document_number
from .order_service import get_order
from .statement_service import (
    LedgerKeys,
    build_lines,
    get_statement,
    has_ledger_effects,
    list_statements,
    replace_lines,
    resolve_line_keys,
    run_statement_transaction,
    statement_day,
)


REFERENCE_TYPE = "return_statement"

RETURN_STATUS_PENDING = "pending"
RETURN_STATUS_APPROVED = "approved"
RETURN_STATUS_REFUNDED = "refunded"
RETURN_STATUS_REJECTED = "rejected"

PROCESSABLE_STATUSES = (RETURN_STATUS_PENDING, RETURN_STATUS_APPROVED)


def _validate_refund_method(refund_method: str) -> str:
    if refund_method not in REFUND_METHODS:
        raise ValidationError(f"refund_method must be one of {', '.join(REFUND_METHODS)}")
    return refund_method


# =============================================================================
# CREATION / EDITS
# =============================================================================

def create_return_statement(
    *,
    lines: list,
    company_id: int | None = None,
    order_id: int | None = None,
    reason_code: str | None = None,
    return_type: str | None = None,
    refund_method: str = "mileage",
    commit: bool = True,
) -> ReturnStatement:
    """
    Create a pending return statement.

    Args:
        lines: canonical line dicts {product_id?, product_name, color, size, quantity, unit_price}
        company_id: customer company; taken from the order when omitted
        order_id: order the goods were shipped with (optional)
        refund_method: mileage | cash | card

    Raises:
        ValidationError: bad lines, refund method, or no company
        OrderNotFound / AccountNotFound: unknown order or company
    """
    _validate_refund_method(refund_method)

    order = get_order(order_id) if order_id is not None else None
    if company_id is None and order is not None:
        company_id = order.company_id
    if company_id is None:
        raise ValidationError("company_id is required")
    get_company(company_id)

    statement_lines = build_lines(ReturnStatementLine, lines)
    now = utcnow()
    statement_number = next_document_number(
        document_type=REFERENCE_TYPE,
        prefix="RS",
        day=statement_day(now),
    )

    statement = ReturnStatement(
        statement_number=statement_number,
        order_id=order.id if order is not None else None,
        company_id=company_id,
        reason_code=reason_code,
        return_type=return_type,
        refund_method=refund_method,
        status=RETURN_STATUS_PENDING,
        created_at=now,
        lines=statement_lines,
    )
    db.session.add(statement)
    if commit:
        db.session.commit()
    else:
        db.session.flush()
    return statement


def get_return_statement(statement_id: int) -> ReturnStatement:
    return get_statement(ReturnStatement, statement_id)


def _require_pending(statement: ReturnStatement, action: str) -> None:
    if statement.status == RETURN_STATUS_REFUNDED:
        raise StatementAlreadyProcessed(
            f"return statement {statement.statement_number} is already refunded",
            statement_id=statement.id,
        )
    if statement.status != RETURN_STATUS_PENDING:
        raise InvalidTransition(
            f"cannot {action} return statement {statement.statement_number} in status {statement.status}",
            statement_id=statement.id,
        )


def update_return_lines(statement_id: int, lines: list, *, commit: bool = True) -> ReturnStatement:
    statement = get_return_statement(statement_id)
    _require_pending(statement, "edit")
    replace_lines(statement, ReturnStatementLine, lines)
    if commit:
        db.session.commit()
    else:
        db.session.flush()
    return statement


def update_return_header(statement_id: int, patch: dict, *, commit: bool = True) -> ReturnStatement:
    """Edit reason_code / return_type / refund_method while pending."""
    statement = get_return_statement(statement_id)
    _require_pending(statement, "edit")
    for field in ("reason_code", "return_type", "refund_method"):
        if field in patch:
            value = patch[field]
            if field == "refund_method":
                value = _validate_refund_method(value)
            setattr(statement, field, value)
    statement.updated_at = utcnow()
    if commit:
        db.session.commit()
    else:
        db.session.flush()
    return statement


def delete_return_statement(statement_id: int, *, commit: bool = True) -> None:
    """Hard delete (header + lines), allowed only before any ledger effect."""
    statement = get_return_statement(statement_id)
    if statement.status == RETURN_STATUS_REFUNDED or has_ledger_effects(REFERENCE_TYPE, statement.id):
        raise InvalidTransition(
            f"return statement {statement.statement_number} has ledger effects and cannot be deleted",
            statement_id=statement.id,
        )
    db.session.delete(statement)
    if commit:
        db.session.commit()
    else:
        db.session.flush()


def list_return_statements(**filters) -> list[ReturnStatement]:
    return list_statements(ReturnStatement, **filters)


# =============================================================================
# TRANSITIONS
# =============================================================================

def approve_return_statement(statement_id: int) -> ReturnStatement:
    """PENDING -> APPROVED. No ledger effects until processing."""
    def op():
        statement = get_statement(ReturnStatement, statement_id, lock=True)
        _require_pending(statement, "approve")
        now = utcnow()
        statement.status = RETURN_STATUS_APPROVED
        statement.approved_at = now
        statement.updated_at = now
        return statement

    return run_statement_transaction(op)


def reject_return_statement(statement_id: int, reason: str) -> ReturnStatement:
    """PENDING -> REJECTED (terminal)."""
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("rejection reason is required")
    if len(reason) > 255:
        raise ValidationError("rejection reason exceeds max length 255")

    def op():
        statement = get_statement(ReturnStatement, statement_id, lock=True)
        _require_pending(statement, "reject")
        statement.status = RETURN_STATUS_REJECTED
        statement.rejection_reason = reason
        statement.updated_at = utcnow()
        return statement

    return run_statement_transaction(op)


def mileage_user_for(statement: ReturnStatement) -> int:
    """Refunds go to the ordering user, else to the company's account holder."""
    if statement.order_id is not None:
        order = db.session.get(Order, statement.order_id)
        if order is not None and order.user_id is not None:
            return order.user_id
    return mileage_user_for_company(statement.company_id)


def _check_processable(statement: ReturnStatement) -> None:
    if statement.status == RETURN_STATUS_REFUNDED:
        raise StatementAlreadyProcessed(
            f"return statement {statement.statement_number} is already refunded",
            statement_id=statement.id,
        )
    if statement.status not in PROCESSABLE_STATUSES:
        raise InvalidTransition(
            f"cannot process return statement {statement.statement_number} in status {statement.status}",
            statement_id=statement.id,
        )


def refund_amount_of(statement: ReturnStatement) -> int:
    """Mileage the statement credits when processed (0 for cash/card)."""
    if statement.refund_method != "mileage":
        return 0
    return statement.total_amount


def _refund_user(statement: ReturnStatement) -> int | None:
    return mileage_user_for(statement) if refund_amount_of(statement) > 0 else None


def process_return_statement(statement_id: int) -> ReturnStatement:
    """
    Settle a return: PENDING|APPROVED -> REFUNDED in one transaction.

    Raises:
        StatementNotFound / StatementAlreadyProcessed / InvalidTransition
        UnknownVariant: a line cannot be resolved (nothing is written)
        AccountNotFound: mileage refund with no account to credit
    """
    def plan():
        statement = get_return_statement(statement_id)
        _check_processable(statement)
        return LedgerKeys.of(resolve_line_keys(statement), [_refund_user(statement)])

    def op(held):
        stmt = get_statement(ReturnStatement, statement_id, lock=True)
        _check_processable(stmt)
        keys = resolve_line_keys(stmt)
        user_id = _refund_user(stmt)
        held.require_covers(stmt, keys, [user_id])

        for key, line in zip(keys, stmt.lines):
            inventory_service.adjust(
                key,
                line.quantity,
                f"Return {stmt.statement_number} line {line.position}",
                REFERENCE_TYPE,
                stmt.id,
                movement_type="return_in",
                commit=False,
            )

        amount = refund_amount_of(stmt)
        if amount > 0:
            mileage_service.credit(
                user_id,
                amount,
                "refund",
                stmt.id,
                reference_type=REFERENCE_TYPE,
                description=f"Refund for return {stmt.statement_number}",
                commit=False,
            )

        now = utcnow()
        if stmt.approved_at is None:
            stmt.approved_at = now
        stmt.status = RETURN_STATUS_REFUNDED
        stmt.processed_at = now
        stmt.updated_at = now

        if stmt.order_id is not None:
            order = db.session.get(Order, stmt.order_id)
            if order is not None:
                order.status = "returned"
                order.updated_at = now
        return stmt

    return run_statement_transaction(op, plan=plan)
