"""
Deduction Statement Service

WHY: Damaged or missing goods are written off against the customer's
mileage. The stock write-off and the mileage debit are one fact; if either
fails, neither is recorded.

LIFECYCLE:
1. Create statement (PENDING)
2. Process (PENDING -> COMPLETED): return_out per line, mileage debit
3. Cancel:
   - PENDING -> CANCELLED: no ledger effects
   - COMPLETED -> CANCELLED: compensating return_in per line and a mileage
     credit; the original movements and entry stay untouched
"""

from __future__ import annotations

from ..extensions import db
from ..errors import InvalidTransition, StatementAlreadyProcessed
from ..models import DeductionStatement, DeductionStatementLine
from ..validation import ValidationError
from settlement.time_utils import utcnow
from . import inventory_service, mileage_service
from .directory_service import get_company, mileage_user_for_company
from .document_service import next_document_number
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


REFERENCE_TYPE = "deduction_statement"

DEDUCTION_STATUS_PENDING = "pending"
DEDUCTION_STATUS_COMPLETED = "completed"
DEDUCTION_STATUS_CANCELLED = "cancelled"


# =============================================================================
# CREATION / EDITS
# =============================================================================

def create_deduction_statement(
    *,
    company_id: int,
    lines: list,
    reason_code: str | None = None,
    commit: bool = True,
) -> DeductionStatement:
    get_company(company_id)
    statement_lines = build_lines(DeductionStatementLine, lines)
    now = utcnow()
    statement_number = next_document_number(
        document_type=REFERENCE_TYPE,
        prefix="DED",
        day=statement_day(now),
    )

    statement = DeductionStatement(
        statement_number=statement_number,
        company_id=company_id,
        reason_code=reason_code,
        status=DEDUCTION_STATUS_PENDING,
        created_at=now,
        lines=statement_lines,
    )
    db.session.add(statement)
    if commit:
        db.session.commit()
    else:
        db.session.flush()
    return statement


def get_deduction_statement(statement_id: int) -> DeductionStatement:
    return get_statement(DeductionStatement, statement_id)


def _require_pending(statement: DeductionStatement, action: str) -> None:
    if statement.status == DEDUCTION_STATUS_COMPLETED:
        raise StatementAlreadyProcessed(
            f"deduction statement {statement.statement_number} is already completed",
            statement_id=statement.id,
        )
    if statement.status != DEDUCTION_STATUS_PENDING:
        raise InvalidTransition(
            f"cannot {action} deduction statement {statement.statement_number} in status {statement.status}",
            statement_id=statement.id,
        )


def update_deduction_lines(statement_id: int, lines: list, *, commit: bool = True) -> DeductionStatement:
    statement = get_deduction_statement(statement_id)
    _require_pending(statement, "edit")
    replace_lines(statement, DeductionStatementLine, lines)
    if commit:
        db.session.commit()
    else:
        db.session.flush()
    return statement


def update_deduction_header(statement_id: int, patch: dict, *, commit: bool = True) -> DeductionStatement:
    statement = get_deduction_statement(statement_id)
    _require_pending(statement, "edit")
    if "reason_code" in patch:
        statement.reason_code = patch["reason_code"]
    statement.updated_at = utcnow()
    if commit:
        db.session.commit()
    else:
        db.session.flush()
    return statement


def delete_deduction_statement(statement_id: int, *, commit: bool = True) -> None:
    statement = get_deduction_statement(statement_id)
    if statement.status == DEDUCTION_STATUS_COMPLETED or has_ledger_effects(REFERENCE_TYPE, statement.id):
        raise InvalidTransition(
            f"deduction statement {statement.statement_number} has ledger effects and cannot be deleted",
            statement_id=statement.id,
        )
    db.session.delete(statement)
    if commit:
        db.session.commit()
    else:
        db.session.flush()


def list_deduction_statements(**filters) -> list[DeductionStatement]:
    return list_statements(DeductionStatement, **filters)


# =============================================================================
# TRANSITIONS
# =============================================================================

def _debit_user(statement: DeductionStatement) -> int | None:
    return mileage_user_for_company(statement.company_id) if statement.total_amount > 0 else None


def _credited_user(statement: DeductionStatement) -> int | None:
    """Account the completed deduction debited; compensation credits it back."""
    debits = mileage_service.entries_for_reference(REFERENCE_TYPE, statement.id)
    return debits[0].user_id if debits else None


def process_deduction_statement(statement_id: int, *, override: bool = False) -> DeductionStatement:
    """
    PENDING -> COMPLETED in one transaction.

    Raises:
        StatementNotFound / StatementAlreadyProcessed / InvalidTransition
        UnknownVariant: a line cannot be resolved
        InsufficientStock: a line would take stock below zero
        InsufficientMileage: the debit exceeds the balance (unless override)
    """
    def plan():
        statement = get_deduction_statement(statement_id)
        _require_pending(statement, "process")
        return LedgerKeys.of(resolve_line_keys(statement), [_debit_user(statement)])

    def op(held):
        stmt = get_statement(DeductionStatement, statement_id, lock=True)
        _require_pending(stmt, "process")
        keys = resolve_line_keys(stmt)
        user_id = _debit_user(stmt)
        held.require_covers(stmt, keys, [user_id])

        for key, line in zip(keys, stmt.lines):
            inventory_service.adjust(
                key,
                -line.quantity,
                f"Deduction {stmt.statement_number} line {line.position}",
                REFERENCE_TYPE,
                stmt.id,
                movement_type="return_out",
                commit=False,
            )

        amount = stmt.total_amount
        if amount > 0:
            mileage_service.debit(
                user_id,
                amount,
                "manual",
                stmt.id,
                override=override,
                reference_type=REFERENCE_TYPE,
                description=f"Deduction {stmt.statement_number}",
                commit=False,
            )

        now = utcnow()
        stmt.status = DEDUCTION_STATUS_COMPLETED
        stmt.processed_at = now
        stmt.updated_at = now
        return stmt

    return run_statement_transaction(op, plan=plan)


def cancel_deduction_statement(statement_id: int, reason: str | None = None) -> DeductionStatement:
    """
    Cancel a pending or completed deduction.

    A completed deduction is undone with compensating entries: return_in per
    line and a mileage credit of the debited amount.
    """
    reason = (reason or "").strip() or None
    if reason and len(reason) > 255:
        raise ValidationError("cancel reason exceeds max length 255")

    statement = get_deduction_statement(statement_id)
    if statement.status == DEDUCTION_STATUS_CANCELLED:
        raise InvalidTransition(
            f"deduction statement {statement.statement_number} is already cancelled",
            statement_id=statement.id,
        )
    compensate = statement.status == DEDUCTION_STATUS_COMPLETED

    def plan():
        current = get_deduction_statement(statement_id)
        if current.status != DEDUCTION_STATUS_COMPLETED:
            return LedgerKeys()
        return LedgerKeys.of(resolve_line_keys(current), [_credited_user(current)])

    def op(held):
        stmt = get_statement(DeductionStatement, statement_id, lock=True)
        if stmt.status == DEDUCTION_STATUS_CANCELLED:
            raise InvalidTransition(
                f"deduction statement {stmt.statement_number} is already cancelled",
                statement_id=stmt.id,
            )
        if (stmt.status == DEDUCTION_STATUS_COMPLETED) != compensate:
            raise InvalidTransition(
                f"deduction statement {stmt.statement_number} changed status during cancellation",
                statement_id=stmt.id,
            )

        if compensate:
            keys = resolve_line_keys(stmt)
            user_id = _credited_user(stmt)
            held.require_covers(stmt, keys, [user_id])
            for key, line in zip(keys, stmt.lines):
                inventory_service.adjust(
                    key,
                    line.quantity,
                    f"Cancel deduction {stmt.statement_number} line {line.position}",
                    REFERENCE_TYPE,
                    stmt.id,
                    movement_type="return_in",
                    commit=False,
                )
            debited = -sum(
                e.amount
                for e in mileage_service.entries_for_reference(REFERENCE_TYPE, stmt.id)
                if e.status == "completed"
            )
            if debited > 0:
                mileage_service.credit(
                    user_id,
                    debited,
                    "manual",
                    stmt.id,
                    reference_type=REFERENCE_TYPE,
                    description=f"Cancel deduction {stmt.statement_number}",
                    commit=False,
                )

        now = utcnow()
        stmt.status = DEDUCTION_STATUS_CANCELLED
        stmt.cancel_reason = reason
        stmt.cancelled_at = now
        stmt.updated_at = now
        return stmt

    return run_statement_transaction(op, plan=plan)
