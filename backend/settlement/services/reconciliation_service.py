# Overview: Bulk statement processing; folds per-statement outcomes into one batch summary.
"""
Reconciliation Coordinator

- Statements are processed in the given order, each in its own transaction.
- A failing statement is rolled back, reported as {statement_id, message}
  and never stops the batch.
- An id repeated within one batch is reported as already processed.
"""

from __future__ import annotations

from typing import Callable, Iterable

from flask import current_app

from ..errors import StatementAlreadyProcessed
from ..extensions import db
from .deduction_statement_service import process_deduction_statement
from .results import BatchResult, Result
from .return_statement_service import process_return_statement, refund_amount_of


def _process_batch(
    statement_ids: Iterable[int],
    *,
    kind: str,
    process: Callable[[int], int],
) -> BatchResult:
    batch = BatchResult()
    seen: set[int] = set()

    for statement_id in statement_ids:
        if statement_id in seen:
            result = Result.failure(
                statement_id,
                StatementAlreadyProcessed(
                    f"{kind} statement {statement_id} appears more than once in this batch",
                    statement_id=statement_id,
                ),
            )
        else:
            seen.add(statement_id)
            try:
                result = Result.success(statement_id, process(statement_id))
            except Exception as exc:  # noqa: BLE001
                db.session.rollback()
                result = Result.failure(statement_id, exc)

        if not result.ok:
            current_app.logger.warning(
                "Failed to process %s statement %s: %s", kind, statement_id, result.message
            )
        batch.add(result)

    current_app.logger.info(
        "Processed %s statements: %d ok, %d failed, %d mileage moved",
        kind,
        batch.processed_count,
        batch.failed_count,
        batch.total_mileage_moved,
    )
    return batch


def _process_return(statement_id: int) -> int:
    statement = process_return_statement(statement_id)
    return refund_amount_of(statement)


def _process_deduction(statement_id: int) -> int:
    statement = process_deduction_statement(statement_id)
    return statement.total_amount


def process_return_batch(statement_ids: Iterable[int]) -> BatchResult:
    """Process return statements; total_mileage_moved is the mileage credited."""
    return _process_batch(statement_ids, kind="return", process=_process_return)


def process_deduction_batch(statement_ids: Iterable[int]) -> BatchResult:
    """Process deduction statements; total_mileage_moved is the mileage debited."""
    return _process_batch(statement_ids, kind="deduction", process=_process_deduction)
