# Overview: Shared statement mechanics (line snapshots, lookup, listing, the one-transaction processing runner).
"""
Statement Invariants (authoritative)

- Lines are a snapshot in one canonical shape; they can be replaced only
  while the statement is pending.
- Totals are folded from lines on every read (see models.statements).
- Processing one statement is one transaction: every stock movement, the
  mileage entry and the status change commit together or not at all.
- A statement referenced by any StockMovement or MileageEntry is never
  deleted.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Iterable

from ..extensions import db
from ..errors import SettlementError, StatementChanged, StatementNotFound, UnknownVariant
from ..models import MileageEntry, Product, StockMovement
from ..validation import ValidationError, normalize_line_items
from settlement.time_utils import business_timezone, to_local, to_utc_naive, utcnow
from .catalog_service import VariantKey, resolve_variant
from .concurrency import lock_for_update, mileage_locks, run_with_retry, variant_locks


# =============================================================================
# LINES
# =============================================================================

def build_lines(line_model, raw_lines) -> list:
    """Validate raw line dicts and build ordered line rows (positions 1..n)."""
    lines = []
    for position, item in enumerate(normalize_line_items(raw_lines), start=1):
        if not item["product_name"]:
            product = db.session.get(Product, item["product_id"])
            item["product_name"] = product.name if product else f"product {item['product_id']}"
        lines.append(line_model(position=position, **item))
    return lines


def replace_lines(statement, line_model, raw_lines) -> None:
    """
    Swap the whole line snapshot.

    The old rows are flushed away first so the new positions do not collide
    with the (statement_id, position) unique constraint.
    """
    new_lines = build_lines(line_model, raw_lines)
    statement.lines = []
    db.session.flush()
    statement.lines = new_lines
    statement.updated_at = utcnow()


def resolve_line_keys(statement) -> list[VariantKey]:
    """
    Resolve every line to a variant before any ledger write.

    One unknown variant fails the statement as a whole.
    """
    keys = []
    for line in statement.lines:
        try:
            keys.append(resolve_variant(
                product_id=line.product_id,
                product_name=line.product_name,
                color=line.color,
                size=line.size,
            ))
        except UnknownVariant as exc:
            raise UnknownVariant(
                f"line {line.position}: {exc.message}",
                statement_id=statement.id,
                position=line.position,
            ) from exc
    return keys


# =============================================================================
# LOOKUP
# =============================================================================

def get_statement(model, statement_id: int, *, lock: bool = False):
    query = db.session.query(model).filter(model.id == statement_id)
    if lock:
        query = lock_for_update(query).populate_existing()
    statement = query.first()
    if statement is None:
        raise StatementNotFound(
            f"{model.__tablename__[:-1].replace('_', ' ')} {statement_id} not found",
            statement_id=statement_id,
        )
    return statement


def has_ledger_effects(reference_type: str, statement_id: int) -> bool:
    movement = (
        db.session.query(StockMovement.id)
        .filter_by(reference_type=reference_type, reference_id=statement_id)
        .first()
    )
    if movement is not None:
        return True
    entry = (
        db.session.query(MileageEntry.id)
        .filter_by(reference_type=reference_type, reference_id=statement_id)
        .first()
    )
    return entry is not None


def _local_day_start(day: date) -> datetime:
    return to_utc_naive(datetime.combine(day, time(0), tzinfo=business_timezone()))


def _as_bound(value, *, upper: bool) -> datetime | None:
    """Dates are local calendar days (inclusive); datetimes are taken as-is."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return to_utc_naive(value)
    if isinstance(value, date):
        return _local_day_start(value + timedelta(days=1) if upper else value)
    raise ValidationError("date filters must be dates or datetimes")


def list_statements(
    model,
    *,
    status: str | None = None,
    company_id: int | None = None,
    created_from=None,
    created_to=None,
    limit: int = 100,
    offset: int = 0,
) -> list:
    """Statements newest first, optionally filtered by status, company and created range."""
    query = db.session.query(model)
    if status:
        query = query.filter(model.status == status)
    if company_id is not None:
        query = query.filter(model.company_id == company_id)

    start = _as_bound(created_from, upper=False)
    end = _as_bound(created_to, upper=True)
    if start is not None:
        query = query.filter(model.created_at >= start)
    if end is not None:
        if isinstance(created_to, datetime):
            query = query.filter(model.created_at <= end)
        else:
            query = query.filter(model.created_at < end)

    return (
        query.order_by(model.created_at.desc(), model.id.desc())
        .offset(max(0, int(offset)))
        .limit(max(1, min(int(limit), 500)))
        .all()
    )


def statement_day(now: datetime | None = None) -> date:
    """Local calendar day used in statement numbers."""
    return to_local(now or utcnow()).date()


# =============================================================================
# PROCESSING
# =============================================================================

# One re-plan after the statement moves outside the held keys.
PLAN_ATTEMPTS = 2


@dataclass(frozen=True)
class LedgerKeys:
    """Variant and mileage keys held for one statement transaction."""

    variant_keys: frozenset = frozenset()
    user_ids: frozenset = frozenset()

    @classmethod
    def of(cls, variant_keys: Iterable[VariantKey] = (), user_ids: Iterable[int | None] = ()) -> "LedgerKeys":
        return cls(
            frozenset(variant_keys),
            frozenset(u for u in user_ids if u is not None),
        )

    def require_covers(self, statement, variant_keys: Iterable[VariantKey], user_ids: Iterable[int | None] = ()) -> None:
        """
        Fail with StatementChanged unless every key resolved from the locked
        statement is already held.
        """
        needed = LedgerKeys.of(variant_keys, user_ids)
        if needed.variant_keys <= self.variant_keys and needed.user_ids <= self.user_ids:
            return
        raise StatementChanged(
            f"statement {statement.statement_number} changed while it was being processed",
            statement_id=statement.id,
        )


def run_statement_transaction(op, *, plan=None):
    """
    Run `op` as one atomic unit while holding every ledger key it touches.

    Without `plan`, op() runs under no ledger lock. With `plan`, plan() reads
    the statement unlocked and returns the LedgerKeys to hold; op(held) must
    re-read and lock the statement, resolve its keys again and call
    held.require_covers(). A StatementChanged from op releases the locks and
    plans once more.

    On a transient conflict the session is rolled back and op runs again from
    scratch. Domain errors roll back and propagate unchanged.
    """
    attempts = PLAN_ATTEMPTS if plan is not None else 1
    for attempt in range(attempts):
        held = plan() if plan is not None else None
        args = (held,) if plan is not None else ()

        def _op():
            try:
                result = op(*args)
                db.session.commit()
                return result
            except (SettlementError, ValidationError):
                db.session.rollback()
                raise

        try:
            keys = held or LedgerKeys()
            with variant_locks.hold(keys.variant_keys), mileage_locks.hold(keys.user_ids):
                return run_with_retry(_op)
        except StatementChanged:
            if attempt >= attempts - 1:
                raise
