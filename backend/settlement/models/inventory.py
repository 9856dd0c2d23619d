from __future__ import annotations

from ..extensions import db
from settlement.time_utils import to_utc_z


MOVEMENT_TYPES = ("inbound", "outbound", "adjustment", "return_in", "return_out")
REFERENCE_TYPES = ("order", "return_statement", "deduction_statement", "sample", "manual")


class StockRecord(db.Model):
    """
    Current stock projection for one variant (product, color, size).

    INVARIANT: quantity_on_hand equals resulting_quantity of the latest
    StockMovement for the same variant. Only inventory_service writes it.

    version_id enables optimistic locking: two sessions that read the same
    quantity cannot both flush an update (StaleDataError on the loser).
    """
    __tablename__ = "stock_records"
    __table_args__ = (
        db.UniqueConstraint("product_id", "color", "size", name="uq_stock_records_variant"),
        db.CheckConstraint("quantity_on_hand >= 0", name="ck_stock_records_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    color = db.Column(db.String(64), nullable=False, default="default")
    size = db.Column(db.String(64), nullable=False, default="default")

    quantity_on_hand = db.Column(db.Integer, nullable=False, default=0)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True)

    product = db.relationship("Product", backref=db.backref("stock_records", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return (
            f"<StockRecord product_id={self.product_id} color={self.color!r} "
            f"size={self.size!r} qty={self.quantity_on_hand}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "color": self.color,
            "size": self.size,
            "quantity_on_hand": self.quantity_on_hand,
            "version_id": self.version_id,
            "updated_at": to_utc_z(self.updated_at),
        }


class StockMovement(db.Model):
    """
    Append-only stock ledger row. IMMUTABLE: never updated or deleted;
    corrections are new movements.
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.Index("ix_stock_movements_variant_created", "product_id", "color", "size", "created_at"),
        db.Index("ix_stock_movements_reference", "reference_type", "reference_id"),
        db.CheckConstraint("delta <> 0", name="ck_stock_movements_non_zero"),
        db.CheckConstraint("resulting_quantity >= 0", name="ck_stock_movements_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    stock_record_id = db.Column(db.Integer, db.ForeignKey("stock_records.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    color = db.Column(db.String(64), nullable=False)
    size = db.Column(db.String(64), nullable=False)

    delta = db.Column(db.Integer, nullable=False)
    movement_type = db.Column(db.String(16), nullable=False, index=True)
    reason = db.Column(db.String(255), nullable=True)
    resulting_quantity = db.Column(db.Integer, nullable=False)

    reference_type = db.Column(db.String(32), nullable=True)
    reference_id = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "stock_record_id": self.stock_record_id,
            "product_id": self.product_id,
            "color": self.color,
            "size": self.size,
            "delta": self.delta,
            "movement_type": self.movement_type,
            "reason": self.reason,
            "resulting_quantity": self.resulting_quantity,
            "reference_type": self.reference_type,
            "reference_id": self.reference_id,
            "created_at": to_utc_z(self.created_at),
        }
