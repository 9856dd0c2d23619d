from __future__ import annotations

from ..extensions import db
from settlement.time_utils import to_utc_z


# Orders whose unshipped quantities still reserve stock
OPEN_ORDER_STATUSES = ("pending", "confirmed", "processing")
ORDER_STATUSES = ("pending", "confirmed", "processing", "shipped", "delivered", "cancelled", "returned")


class Order(db.Model):
    """
    Wholesale order header.

    The business day an order belongs to is derived from created_at by the
    business-day calculator; it is never stored.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.UniqueConstraint("order_number", name="uq_orders_number"),
        db.Index("ix_orders_created_at", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_number = db.Column(db.String(32), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id"), nullable=True, index=True)

    status = db.Column(db.String(16), nullable=False, default="pending", index=True)
    tracking_number = db.Column(db.String(64), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True)

    lines = db.relationship(
        "OrderLine",
        backref="order",
        lazy=True,
        order_by="OrderLine.id",
        cascade="all, delete-orphan",
    )

    @property
    def total_amount(self) -> int:
        return sum(line.quantity * line.unit_price for line in self.lines)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_number": self.order_number,
            "user_id": self.user_id,
            "company_id": self.company_id,
            "status": self.status,
            "tracking_number": self.tracking_number,
            "total_amount": self.total_amount,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "lines": [line.to_dict() for line in self.lines],
        }


class OrderLine(db.Model):
    __tablename__ = "order_lines"
    __table_args__ = (
        db.Index("ix_order_lines_variant", "product_id", "color", "size"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    product_name = db.Column(db.String(255), nullable=False)
    color = db.Column(db.String(64), nullable=False, default="default")
    size = db.Column(db.String(64), nullable=False, default="default")
    quantity = db.Column(db.Integer, nullable=False)
    shipped_quantity = db.Column(db.Integer, nullable=False, default=0)
    unit_price = db.Column(db.Integer, nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "color": self.color,
            "size": self.size,
            "quantity": self.quantity,
            "shipped_quantity": self.shipped_quantity,
            "unit_price": self.unit_price,
        }
