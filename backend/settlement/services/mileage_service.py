# Overview: Service-layer operations for the mileage (loyalty point) ledger.

from __future__ import annotations

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..errors import (
    AccountNotFound,
    InsufficientMileage,
    InvalidTransition,
    MileageEntryNotFound,
    SettlementError,
)
from ..models import MileageAccount, MileageEntry, User
from ..models.mileage import MILEAGE_SOURCES
from ..validation import ValidationError, enforce_rules_mileage_amount
from settlement.time_utils import utcnow
from .concurrency import lock_for_update, mileage_locks, run_with_retry
"""
Mileage Ledger Invariants (authoritative)

- MileageEntry rows are append-only; amount never changes after insert.
- balance(user) = SUM(amount) over entries with status='completed'.
- MileageAccount.balance caches that sum and is written in the same
  transaction as every entry insert or status change for the user, so a
  reader never sees a balance that disagrees with committed entries.
- Only pending entries change status (pending -> completed | cancelled).
  A completed entry is undone by a compensating entry (reverse_entry).
- A debit that would make the balance negative fails with
  InsufficientMileage unless override=True (administrative action).
"""


def _require_user(user_id: int) -> User:
    user = db.session.get(User, user_id)
    if user is None:
        raise AccountNotFound(f"user {user_id} not found", user_id=user_id)
    return user


def _account_for(user_id: int, *, lock: bool = False) -> MileageAccount:
    _require_user(user_id)
    query = db.session.query(MileageAccount).filter_by(user_id=user_id)
    if lock:
        query = lock_for_update(query).populate_existing()
    account = query.first()
    if account is None:
        account = create_account(user_id)
    return account


def create_account(user_id: int) -> MileageAccount:
    """
    Insert the user's account row inside a savepoint.

    Two writers racing on a new user both try the insert; the loser hits
    uq_mileage_accounts_user, its savepoint is rolled back and it continues
    with the winner's row. The surrounding transaction is left intact.
    """
    try:
        with db.session.begin_nested():
            account = MileageAccount(user_id=user_id, balance=0)
            db.session.add(account)
    except IntegrityError:
        account = (
            db.session.query(MileageAccount)
            .filter_by(user_id=user_id)
            .populate_existing()
            .one()
        )
    return account


def _validate_source(source: str) -> None:
    if source not in MILEAGE_SOURCES:
        raise ValidationError(f"source must be one of {', '.join(MILEAGE_SOURCES)}")


def _append_entry(
    *,
    user_id: int,
    amount: int,
    source: str,
    reference_type: str | None,
    reference_id: int | None,
    description: str | None,
    status: str,
    override: bool,
) -> MileageEntry:
    """Core insert + balance update without keyed locking, retry, or commit."""
    _validate_source(source)
    if status not in ("pending", "completed"):
        raise ValidationError("new entries must be pending or completed")

    account = _account_for(user_id, lock=True)
    if status == "completed":
        resulting = account.balance + amount
        if amount < 0 and resulting < 0 and not override:
            raise InsufficientMileage(
                f"insufficient mileage for user {user_id}: balance {account.balance}, requested {-amount}",
                user_id=user_id,
                balance=account.balance,
                amount=-amount,
            )
        account.balance = resulting
        account.updated_at = utcnow()

    entry = MileageEntry(
        user_id=user_id,
        amount=amount,
        kind="earn" if amount > 0 else "spend",
        source=source,
        status=status,
        description=description,
        reference_type=reference_type,
        reference_id=reference_id,
        created_at=utcnow(),
    )
    db.session.add(entry)
    db.session.flush()
    return entry


def _write(user_id: int, commit: bool, op):
    with mileage_locks.hold([user_id]):
        if not commit:
            return op()

        def _op():
            try:
                result = op()
                db.session.commit()
                return result
            except (SettlementError, ValidationError):
                db.session.rollback()
                raise

        return run_with_retry(_op)


def credit(
    user_id: int,
    amount: int,
    source: str = "manual",
    reference_id: int | None = None,
    *,
    reference_type: str | None = None,
    description: str | None = None,
    status: str = "completed",
    commit: bool = True,
) -> MileageEntry:
    """Earn entry (+amount)."""
    amount = enforce_rules_mileage_amount(amount)
    return _write(user_id, commit, lambda: _append_entry(
        user_id=user_id,
        amount=amount,
        source=source,
        reference_type=reference_type,
        reference_id=reference_id,
        description=description,
        status=status,
        override=False,
    ))


def debit(
    user_id: int,
    amount: int,
    source: str = "manual",
    reference_id: int | None = None,
    *,
    override: bool = False,
    reference_type: str | None = None,
    description: str | None = None,
    status: str = "completed",
    commit: bool = True,
) -> MileageEntry:
    """
    Spend entry (-amount).

    Raises InsufficientMileage if the balance would go negative, unless
    override=True.
    """
    amount = enforce_rules_mileage_amount(amount)
    return _write(user_id, commit, lambda: _append_entry(
        user_id=user_id,
        amount=-amount,
        source=source,
        reference_type=reference_type,
        reference_id=reference_id,
        description=description,
        status=status,
        override=override,
    ))


def balance_of(user_id: int) -> int:
    _require_user(user_id)
    account = db.session.query(MileageAccount).filter_by(user_id=user_id).first()
    return int(account.balance) if account else 0


def ledger_balance(user_id: int) -> int:
    """Balance folded directly from completed entries (ignores the cache)."""
    total = (
        db.session.query(func.coalesce(func.sum(MileageEntry.amount), 0))
        .filter(MileageEntry.user_id == user_id, MileageEntry.status == "completed")
        .scalar()
    )
    return int(total or 0)


def recompute_balance(user_id: int, *, commit: bool = True) -> int:
    """Rebuild the cached balance from the ledger."""
    def op():
        account = _account_for(user_id, lock=True)
        account.balance = ledger_balance(user_id)
        account.updated_at = utcnow()
        db.session.flush()
        return account.balance

    return _write(user_id, commit, op)


def _require_entry(entry_id: int, *, lock: bool = False) -> MileageEntry:
    query = db.session.query(MileageEntry).filter_by(id=entry_id)
    if lock:
        query = lock_for_update(query).populate_existing()
    entry = query.first()
    if entry is None:
        raise MileageEntryNotFound(f"mileage entry {entry_id} not found", entry_id=entry_id)
    return entry


def settle_pending_entry(entry_id: int, *, override: bool = False, commit: bool = True) -> MileageEntry:
    """pending -> completed; the amount starts counting toward the balance."""
    user_id = _require_entry(entry_id).user_id

    def op():
        entry = _require_entry(entry_id, lock=True)
        if entry.status != "pending":
            raise InvalidTransition(f"mileage entry {entry_id} is {entry.status}, not pending")
        account = _account_for(entry.user_id, lock=True)
        resulting = account.balance + entry.amount
        if entry.amount < 0 and resulting < 0 and not override:
            raise InsufficientMileage(
                f"insufficient mileage for user {entry.user_id}: balance {account.balance}, requested {-entry.amount}",
                user_id=entry.user_id,
            )
        account.balance = resulting
        account.updated_at = utcnow()
        entry.status = "completed"
        entry.status_changed_at = utcnow()
        db.session.flush()
        return entry

    return _write(user_id, commit, op)


def cancel_pending_entry(entry_id: int, *, commit: bool = True) -> MileageEntry:
    """pending -> cancelled; the balance never included it."""
    user_id = _require_entry(entry_id).user_id

    def op():
        entry = _require_entry(entry_id, lock=True)
        if entry.status != "pending":
            raise InvalidTransition(f"mileage entry {entry_id} is {entry.status}, not pending")
        entry.status = "cancelled"
        entry.status_changed_at = utcnow()
        db.session.flush()
        return entry

    return _write(user_id, commit, op)


def reverse_entry(entry_id: int, *, description: str | None = None, commit: bool = True) -> MileageEntry:
    """
    Compensate a completed entry with an opposite completed entry.

    Reversing an earn may push the balance negative: it undoes a fact that
    already happened, so it is applied as an override.
    """
    entry = _require_entry(entry_id)
    if entry.status != "completed":
        raise InvalidTransition(f"only completed entries can be reversed (entry {entry_id} is {entry.status})")

    return _write(entry.user_id, commit, lambda: _append_entry(
        user_id=entry.user_id,
        amount=-entry.amount,
        source=entry.source,
        reference_type=entry.reference_type,
        reference_id=entry.reference_id,
        description=description or f"Reversal of mileage entry {entry.id}",
        status="completed",
        override=True,
    ))


def entries_for(user_id: int, *, status: str | None = None, limit: int = 50, offset: int = 0) -> list[MileageEntry]:
    _require_user(user_id)
    query = db.session.query(MileageEntry).filter_by(user_id=user_id)
    if status:
        query = query.filter_by(status=status)
    return (
        query.order_by(MileageEntry.created_at.desc(), MileageEntry.id.desc())
        .offset(max(0, int(offset)))
        .limit(max(1, min(int(limit), 500)))
        .all()
    )


def entries_for_reference(reference_type: str, reference_id: int) -> list[MileageEntry]:
    return (
        db.session.query(MileageEntry)
        .filter_by(reference_type=reference_type, reference_id=reference_id)
        .order_by(MileageEntry.id.asc())
        .all()
    )


def total_outstanding() -> int:
    """Sum of all cached balances (points the platform owes its customers)."""
    total = db.session.query(func.coalesce(func.sum(MileageAccount.balance), 0)).scalar()
    return int(total or 0)
