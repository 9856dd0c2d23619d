# Overview: Product/variant catalog lookups used by the ledgers and statements.

from __future__ import annotations

from typing import NamedTuple

from ..extensions import db
from ..errors import UnknownVariant
from ..models import Product, StockRecord
from ..validation import ValidationError, coerce_int, normalize_option
from .concurrency import lock_for_update


class VariantKey(NamedTuple):
    product_id: int
    color: str = "default"
    size: str = "default"

    @classmethod
    def of(cls, product_id, color=None, size=None) -> "VariantKey":
        return cls(coerce_int(product_id, "product_id"), normalize_option(color), normalize_option(size))

    def label(self) -> str:
        return f"product {self.product_id} ({self.color}/{self.size})"

    def to_dict(self) -> dict:
        return {"product_id": self.product_id, "color": self.color, "size": self.size}


def register_product(*, code: str, name: str, base_price: int = 0, commit: bool = True) -> Product:
    code = (code or "").strip()
    name = (name or "").strip()
    if not code or not name:
        raise ValidationError("code and name are required")
    if base_price < 0:
        raise ValidationError("base_price must be >= 0")

    product = Product(code=code, name=name, base_price=base_price, is_active=True)
    db.session.add(product)
    if commit:
        db.session.commit()
    else:
        db.session.flush()
    return product


def register_variant(product_id: int, color=None, size=None, *, commit: bool = True) -> StockRecord:
    """
    Make a variant known to the stock ledger (quantity 0).

    Idempotent: an existing record is returned unchanged. Stock itself only
    ever arrives through inventory_service movements.
    """
    key = VariantKey.of(product_id, color, size)
    product = db.session.get(Product, key.product_id)
    if product is None:
        raise UnknownVariant(f"product {key.product_id} not found", key=key)

    record = get_stock_record(key)
    if record is not None:
        return record

    record = StockRecord(product_id=key.product_id, color=key.color, size=key.size, quantity_on_hand=0)
    db.session.add(record)
    if commit:
        db.session.commit()
    else:
        db.session.flush()
    return record


def get_stock_record(key: VariantKey, *, lock: bool = False) -> StockRecord | None:
    query = db.session.query(StockRecord).filter_by(
        product_id=key.product_id,
        color=key.color,
        size=key.size,
    )
    if lock:
        query = lock_for_update(query).populate_existing()
    return query.first()


def require_stock_record(key: VariantKey, *, lock: bool = False) -> StockRecord:
    record = get_stock_record(key, lock=lock)
    if record is None:
        raise UnknownVariant(f"unknown variant: {key.label()}", key=key)
    return record


def resolve_variant(
    *,
    product_id: int | None = None,
    product_name: str | None = None,
    color=None,
    size=None,
) -> VariantKey:
    """
    Resolve a line item to a known variant key.

    Lines may carry a product id or only the free-text product name the
    statement was written with. Name lookups must match exactly one product.
    """
    if product_id is None:
        name = (product_name or "").strip()
        if not name:
            raise UnknownVariant("line has neither product_id nor product_name")
        matches = db.session.query(Product.id).filter(Product.name == name).limit(2).all()
        if not matches:
            raise UnknownVariant(f"unknown product: {name!r}")
        if len(matches) > 1:
            raise UnknownVariant(f"ambiguous product name: {name!r}")
        product_id = matches[0][0]

    key = VariantKey.of(product_id, color, size)
    require_stock_record(key)
    return key


def base_price_of(key: VariantKey) -> int:
    require_stock_record(key)
    product = db.session.get(Product, key.product_id)
    return int(product.base_price or 0)


def options_of(product_id: int) -> list[dict]:
    """Known (color, size) options of a product with their on-hand quantity."""
    records = (
        db.session.query(StockRecord)
        .filter_by(product_id=product_id)
        .order_by(StockRecord.color.asc(), StockRecord.size.asc())
        .all()
    )
    return [
        {"color": r.color, "size": r.size, "quantity_on_hand": r.quantity_on_hand}
        for r in records
    ]
