from __future__ import annotations

from ..extensions import db
from settlement.time_utils import to_utc_z


MILEAGE_KINDS = ("earn", "spend")
MILEAGE_SOURCES = ("order", "refund", "manual", "auto")
MILEAGE_STATUSES = ("pending", "completed", "cancelled")


class MileageAccount(db.Model):
    """
    Cached mileage balance for a user.

    The balance is a projection of completed MileageEntry rows and is updated
    in the same transaction as any entry that changes it.
    """
    __tablename__ = "mileage_accounts"
    __table_args__ = (
        db.UniqueConstraint("user_id", name="uq_mileage_accounts_user"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    balance = db.Column(db.Integer, nullable=False, default=0)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True)

    user = db.relationship("User", backref=db.backref("mileage_account", uselist=False, lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "balance": self.balance,
            "version_id": self.version_id,
            "updated_at": to_utc_z(self.updated_at),
        }


class MileageEntry(db.Model):
    """
    Append-only ledger of mileage events.

    amount is signed (earn > 0, spend < 0). Only status may change, and only
    out of "pending"; completed entries are reversed with a new entry.
    """
    __tablename__ = "mileage_entries"
    __table_args__ = (
        db.Index("ix_mileage_entries_user_created", "user_id", "created_at"),
        db.Index("ix_mileage_entries_reference", "reference_type", "reference_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    amount = db.Column(db.Integer, nullable=False)
    kind = db.Column(db.String(8), nullable=False)
    source = db.Column(db.String(16), nullable=False, index=True)
    status = db.Column(db.String(16), nullable=False, default="completed", index=True)
    description = db.Column(db.String(255), nullable=True)

    reference_type = db.Column(db.String(32), nullable=True)
    reference_id = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    status_changed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "amount": self.amount,
            "kind": self.kind,
            "source": self.source,
            "status": self.status,
            "description": self.description,
            "reference_type": self.reference_type,
            "reference_id": self.reference_id,
            "created_at": to_utc_z(self.created_at),
            "status_changed_at": to_utc_z(self.status_changed_at),
        }
