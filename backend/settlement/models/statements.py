from __future__ import annotations

from ..extensions import db
from settlement.time_utils import to_utc_z


RETURN_STATUSES = ("pending", "approved", "refunded", "rejected")
DEDUCTION_STATUSES = ("pending", "completed", "cancelled")
REFUND_METHODS = ("mileage", "cash", "card")


def compute_line_amounts(quantity: int, unit_price: int) -> tuple[int, int, int]:
    """
    (line_total, tax, total) for one statement line.

    Downstream reporting depends on tax = floor(line_total * 0.1) per line.
    Amounts are whole won and non-negative, so integer division is exact.
    """
    line_total = quantity * unit_price
    tax = line_total // 10
    return line_total, tax, line_total + tax


class StatementLineMixin:
    """Canonical line shape shared by return and deduction statements."""

    position = db.Column(db.Integer, nullable=False)
    product_id = db.Column(db.Integer, nullable=True)
    product_name = db.Column(db.String(255), nullable=False)
    color = db.Column(db.String(64), nullable=False, default="default")
    size = db.Column(db.String(64), nullable=False, default="default")
    quantity = db.Column(db.Integer, nullable=False)
    unit_price = db.Column(db.Integer, nullable=False)

    @property
    def line_total(self) -> int:
        return compute_line_amounts(self.quantity, self.unit_price)[0]

    @property
    def tax(self) -> int:
        return compute_line_amounts(self.quantity, self.unit_price)[1]

    @property
    def total(self) -> int:
        return compute_line_amounts(self.quantity, self.unit_price)[2]

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "position": self.position,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "color": self.color,
            "size": self.size,
            "quantity": self.quantity,
            "unit_price": self.unit_price,
            "line_total": self.line_total,
            "tax": self.tax,
            "total": self.total,
        }


class StatementTotalsMixin:
    """
    Header totals are always folded from the current lines; nothing is stored,
    so an edit can never leave a stale total behind.
    """

    @property
    def subtotal(self) -> int:
        return sum(line.line_total for line in self.lines)

    @property
    def tax_total(self) -> int:
        return sum(line.tax for line in self.lines)

    @property
    def total_amount(self) -> int:
        return sum(line.total for line in self.lines)


class ReturnStatement(StatementTotalsMixin, db.Model):
    """
    Return statement: goods coming back from a customer.

    LIFECYCLE:
    pending -> approved -> refunded
    pending -> refunded (approve and settle in one action)
    pending -> rejected (terminal, no ledger effects)
    """
    __tablename__ = "return_statements"
    __table_args__ = (
        db.UniqueConstraint("statement_number", name="uq_return_statements_number"),
        db.Index("ix_return_statements_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    statement_number = db.Column(db.String(32), nullable=False)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True, index=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id"), nullable=False, index=True)

    reason_code = db.Column(db.String(64), nullable=True)
    return_type = db.Column(db.String(32), nullable=True)
    refund_method = db.Column(db.String(16), nullable=False, default="mileage")

    status = db.Column(db.String(16), nullable=False, default="pending", index=True)
    rejection_reason = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    processed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    order = db.relationship("Order", backref=db.backref("return_statements", lazy=True))
    company = db.relationship("Company")
    lines = db.relationship(
        "ReturnStatementLine",
        backref="statement",
        lazy=True,
        order_by="ReturnStatementLine.position",
        cascade="all, delete-orphan",
    )
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "statement_number": self.statement_number,
            "order_id": self.order_id,
            "company_id": self.company_id,
            "reason_code": self.reason_code,
            "return_type": self.return_type,
            "refund_method": self.refund_method,
            "status": self.status,
            "rejection_reason": self.rejection_reason,
            "subtotal": self.subtotal,
            "tax_total": self.tax_total,
            "total_amount": self.total_amount,
            "created_at": to_utc_z(self.created_at),
            "approved_at": to_utc_z(self.approved_at),
            "processed_at": to_utc_z(self.processed_at),
            "updated_at": to_utc_z(self.updated_at),
            "lines": [line.to_dict() for line in self.lines],
        }


class ReturnStatementLine(StatementLineMixin, db.Model):
    __tablename__ = "return_statement_lines"
    __table_args__ = (
        db.UniqueConstraint("statement_id", "position", name="uq_return_lines_position"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    statement_id = db.Column(db.Integer, db.ForeignKey("return_statements.id"), nullable=False, index=True)


class DeductionStatement(StatementTotalsMixin, db.Model):
    """
    Deduction statement: damaged or missing goods written off against a
    company's mileage.

    LIFECYCLE:
    pending -> completed (stock out, mileage debit)
    pending -> cancelled (no ledger effects)
    completed -> cancelled (compensating stock in and mileage credit)
    """
    __tablename__ = "deduction_statements"
    __table_args__ = (
        db.UniqueConstraint("statement_number", name="uq_deduction_statements_number"),
        db.Index("ix_deduction_statements_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    statement_number = db.Column(db.String(32), nullable=False)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id"), nullable=False, index=True)
    reason_code = db.Column(db.String(64), nullable=True)

    status = db.Column(db.String(16), nullable=False, default="pending", index=True)
    cancel_reason = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    processed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    company = db.relationship("Company")
    lines = db.relationship(
        "DeductionStatementLine",
        backref="statement",
        lazy=True,
        order_by="DeductionStatementLine.position",
        cascade="all, delete-orphan",
    )
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "statement_number": self.statement_number,
            "company_id": self.company_id,
            "reason_code": self.reason_code,
            "status": self.status,
            "cancel_reason": self.cancel_reason,
            "subtotal": self.subtotal,
            "tax_total": self.tax_total,
            "total_amount": self.total_amount,
            "created_at": to_utc_z(self.created_at),
            "processed_at": to_utc_z(self.processed_at),
            "cancelled_at": to_utc_z(self.cancelled_at),
            "updated_at": to_utc_z(self.updated_at),
            "lines": [line.to_dict() for line in self.lines],
        }


class DeductionStatementLine(StatementLineMixin, db.Model):
    __tablename__ = "deduction_statement_lines"
    __table_args__ = (
        db.UniqueConstraint("statement_id", "position", name="uq_deduction_lines_position"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    statement_id = db.Column(db.Integer, db.ForeignKey("deduction_statements.id"), nullable=False, index=True)


class DocumentSequence(db.Model):
    """
    Atomic per-type, per-day document sequences.

    WHY: Prevent race conditions when generating statement numbers.
    """
    __tablename__ = "document_sequences"
    __table_args__ = (
        db.UniqueConstraint("document_type", "sequence_date", name="uq_doc_sequences_type_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    document_type = db.Column(db.String(32), nullable=False, index=True)
    sequence_date = db.Column(db.String(8), nullable=False)
    next_number = db.Column(db.Integer, nullable=False, default=1)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "document_type": self.document_type,
            "sequence_date": self.sequence_date,
            "next_number": self.next_number,
        }
