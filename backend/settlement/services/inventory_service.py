# Overview: Service-layer operations for the stock ledger; encapsulates business logic and database work.

# backend/settlement/services/inventory_service.py

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from flask import current_app, has_app_context
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..errors import InsufficientStock, SettlementError
from ..models import Order, OrderLine, StockMovement, StockRecord
from ..models.inventory import MOVEMENT_TYPES, REFERENCE_TYPES
from ..models.orders import OPEN_ORDER_STATUSES
from ..validation import ValidationError
from settlement.time_utils import utcnow
from .catalog_service import VariantKey, require_stock_record
from .concurrency import run_with_retry, variant_locks
from .results import Result
"""
Stock Ledger Invariants (authoritative)

- Every change to stock is a StockMovement row (append-only, immutable).
- StockRecord.quantity_on_hand is a projection: it always equals the
  resulting_quantity of the latest movement for the variant.
- The movement insert and the projection update happen in one transaction.
- quantity_on_hand is never persisted negative. Any movement may bring a
  variant to exactly 0; none may go below.
- inbound/return_in deltas are positive, outbound/return_out deltas negative,
  adjustment may be either (never 0).

Concurrency:
- Same variant: serialized by an in-process keyed lock, SELECT ... FOR UPDATE,
  and the StockRecord version_id (optimistic check for multi-process setups).
- Different variants: no shared lock, fully parallel.
- Transient conflicts are retried once (TRANSIENT_RETRY_ATTEMPTS).
"""


STATUS_OUT_OF_STOCK = "out_of_stock"
STATUS_LOW = "low"
STATUS_NORMAL = "normal"

POSITIVE_MOVEMENTS = {"inbound", "return_in"}
NEGATIVE_MOVEMENTS = {"outbound", "return_out"}


def _low_stock_threshold() -> int:
    if has_app_context():
        return int(current_app.config.get("LOW_STOCK_THRESHOLD", 10))
    return 10


def stock_status(quantity: int, threshold: int | None = None) -> str:
    if threshold is None:
        threshold = _low_stock_threshold()
    if quantity <= 0:
        return STATUS_OUT_OF_STOCK
    if quantity <= threshold:
        return STATUS_LOW
    return STATUS_NORMAL


def _coerce_key(key) -> VariantKey:
    if isinstance(key, VariantKey):
        return key
    if isinstance(key, dict):
        return VariantKey.of(key.get("product_id"), key.get("color"), key.get("size"))
    return VariantKey.of(*key)


def _validate_movement(delta: int, movement_type: str, reference_type: str | None) -> None:
    if movement_type not in MOVEMENT_TYPES:
        raise ValidationError(f"movement_type must be one of {', '.join(MOVEMENT_TYPES)}")
    if reference_type is not None and reference_type not in REFERENCE_TYPES:
        raise ValidationError(f"reference_type must be one of {', '.join(REFERENCE_TYPES)}")
    if isinstance(delta, bool) or not isinstance(delta, int):
        raise ValidationError("delta must be an integer")
    if delta == 0:
        raise ValidationError("delta must be non-zero")
    if movement_type in POSITIVE_MOVEMENTS and delta < 0:
        raise ValidationError(f"{movement_type} movements must increase stock")
    if movement_type in NEGATIVE_MOVEMENTS and delta > 0:
        raise ValidationError(f"{movement_type} movements must decrease stock")


def _adjust_inner(
    *,
    key: VariantKey,
    delta: int,
    reason: str | None,
    reference_type: str | None,
    reference_id: int | None,
    movement_type: str,
) -> StockMovement:
    """Core movement logic without keyed locking, retry, or commit."""
    _validate_movement(delta, movement_type, reference_type)

    record = require_stock_record(key, lock=True)
    current = record.quantity_on_hand
    resulting = current + delta
    if resulting < 0:
        raise InsufficientStock(
            f"insufficient stock for {key.label()}: on hand {current}, requested {-delta}",
            key=key,
            on_hand=current,
            delta=delta,
        )

    now = utcnow()
    movement = StockMovement(
        stock_record_id=record.id,
        product_id=key.product_id,
        color=key.color,
        size=key.size,
        delta=delta,
        movement_type=movement_type,
        reason=reason,
        resulting_quantity=resulting,
        reference_type=reference_type,
        reference_id=reference_id,
        created_at=now,
    )
    record.quantity_on_hand = resulting
    record.updated_at = now

    db.session.add(movement)
    db.session.flush()
    return movement


def adjust(
    key,
    delta: int,
    reason: str | None = None,
    reference_type: str | None = "manual",
    reference_id: int | None = None,
    *,
    movement_type: str = "adjustment",
    commit: bool = True,
) -> StockMovement:
    """
    Apply one stock movement to a variant.

    Raises:
        UnknownVariant: the variant has no stock record
        InsufficientStock: the movement would make on-hand negative
        ValidationError: zero delta, unknown type, or sign/type mismatch

    commit=False lets a caller (statement processing) group several movements
    with other ledger writes in its own transaction; the caller then owns
    commit, rollback and retry.
    """
    key = _coerce_key(key)

    with variant_locks.hold([key]):
        if not commit:
            return _adjust_inner(
                key=key,
                delta=delta,
                reason=reason,
                reference_type=reference_type,
                reference_id=reference_id,
                movement_type=movement_type,
            )

        def _op():
            try:
                movement = _adjust_inner(
                    key=key,
                    delta=delta,
                    reason=reason,
                    reference_type=reference_type,
                    reference_id=reference_id,
                    movement_type=movement_type,
                )
                db.session.commit()
                return movement
            except (SettlementError, ValidationError):
                db.session.rollback()
                raise

        return run_with_retry(_op)


def receive_stock(key, quantity: int, reason: str | None = None, **kwargs) -> StockMovement:
    """Inbound convenience wrapper (quantity > 0)."""
    return adjust(key, quantity, reason, movement_type="inbound", **kwargs)


def ship_stock(key, quantity: int, reason: str | None = None, **kwargs) -> StockMovement:
    """Outbound convenience wrapper (quantity > 0 leaves stock)."""
    return adjust(key, -quantity, reason, movement_type="outbound", **kwargs)


@dataclass(frozen=True)
class AdjustRequest:
    key: VariantKey
    delta: int
    reason: str | None = None
    reference_type: str | None = "manual"
    reference_id: int | None = None
    movement_type: str = "adjustment"

    @classmethod
    def from_dict(cls, data: dict) -> "AdjustRequest":
        if not isinstance(data, dict):
            raise ValidationError("each request must be an object")
        if data.get("product_id") is None:
            raise ValidationError("product_id is required")
        return cls(
            key=VariantKey.of(data["product_id"], data.get("color"), data.get("size")),
            delta=data.get("delta"),
            reason=data.get("reason"),
            reference_type=data.get("reference_type", "manual"),
            reference_id=data.get("reference_id"),
            movement_type=data.get("movement_type", "adjustment"),
        )


def adjust_many(requests: Iterable[AdjustRequest | dict]) -> list[Result[StockMovement]]:
    """
    Apply requests independently within one logical batch.

    Each request commits on its own; a failure never rolls back requests that
    already succeeded. Results are in request order, keyed by position.
    Raw dicts are parsed per item, so a malformed request only fails itself.
    """
    results: list[Result[StockMovement]] = []
    for index, req in enumerate(requests):
        try:
            if not isinstance(req, AdjustRequest):
                req = AdjustRequest.from_dict(req)
            movement = adjust(
                req.key,
                req.delta,
                req.reason,
                req.reference_type,
                req.reference_id,
                movement_type=req.movement_type,
            )
            results.append(Result.success(index, movement))
        except (SettlementError, ValidationError, SQLAlchemyError) as exc:
            db.session.rollback()
            results.append(Result.failure(index, exc))
    return results


def history_of(key, limit: int = 50, offset: int = 0) -> list[StockMovement]:
    """Movements for a variant, most recent first."""
    key = _coerce_key(key)
    require_stock_record(key)
    limit = max(1, min(int(limit), 500))
    offset = max(0, int(offset))

    return (
        db.session.query(StockMovement)
        .filter_by(product_id=key.product_id, color=key.color, size=key.size)
        .order_by(StockMovement.created_at.desc(), StockMovement.id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )


def status_of(key) -> dict:
    key = _coerce_key(key)
    record = require_stock_record(key)
    return {
        **key.to_dict(),
        "quantity_on_hand": record.quantity_on_hand,
        "status": stock_status(record.quantity_on_hand),
    }


def reserved_quantity(key) -> int:
    """Unshipped quantity of open orders for the variant."""
    key = _coerce_key(key)
    pending = OrderLine.quantity - OrderLine.shipped_quantity
    total = (
        db.session.query(func.coalesce(func.sum(pending), 0))
        .join(Order, Order.id == OrderLine.order_id)
        .filter(
            OrderLine.product_id == key.product_id,
            OrderLine.color == key.color,
            OrderLine.size == key.size,
            Order.status.in_(OPEN_ORDER_STATUSES),
            OrderLine.quantity > OrderLine.shipped_quantity,
        )
        .scalar()
    )
    return int(total or 0)


def availability_of(key) -> dict:
    key = _coerce_key(key)
    record = require_stock_record(key)
    reserved = reserved_quantity(key)
    return {
        **key.to_dict(),
        "stock": record.quantity_on_hand,
        "reserved": reserved,
        "available": max(0, record.quantity_on_hand - reserved),
    }


def sync_check() -> list[dict]:
    """
    Verify the projection against the ledger for every variant.

    Returns one row per mismatching variant; an empty list means the
    stock records agree with their movement history.
    """
    sums = dict(
        db.session.query(StockMovement.stock_record_id, func.sum(StockMovement.delta))
        .group_by(StockMovement.stock_record_id)
        .all()
    )
    latest_ids = select(func.max(StockMovement.id)).group_by(StockMovement.stock_record_id)
    latest = dict(
        db.session.query(StockMovement.stock_record_id, StockMovement.resulting_quantity)
        .filter(StockMovement.id.in_(latest_ids))
        .all()
    )

    mismatches = []
    for record in db.session.query(StockRecord).order_by(StockRecord.id.asc()).all():
        ledger_sum = int(sums.get(record.id) or 0)
        last_resulting = latest.get(record.id, 0)
        if record.quantity_on_hand != ledger_sum or record.quantity_on_hand != last_resulting:
            mismatches.append({
                "stock_record_id": record.id,
                "product_id": record.product_id,
                "color": record.color,
                "size": record.size,
                "quantity_on_hand": record.quantity_on_hand,
                "ledger_sum": ledger_sum,
                "last_resulting_quantity": last_resulting,
            })
    return mismatches
