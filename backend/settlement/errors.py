# Overview: Domain error taxonomy shared by the ledgers, statements and coordinator.
"""
Settlement error taxonomy.

Services raise these; routes translate them with `http_status`; the
reconciliation coordinator converts them into {statement_id, message} records.
`code` is stable and safe to expose to API clients.
"""


class SettlementError(Exception):
    """Base class for domain errors raised by the settlement core."""

    code = "SETTLEMENT_ERROR"
    http_status = 400

    def __init__(self, message: str, **context):
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> dict:
        return {"code": self.code, "error": self.message}


class InsufficientStock(SettlementError):
    code = "INSUFFICIENT_STOCK"
    http_status = 409


class InsufficientMileage(SettlementError):
    code = "INSUFFICIENT_MILEAGE"
    http_status = 409


class UnknownVariant(SettlementError):
    code = "UNKNOWN_VARIANT"
    http_status = 404


class StatementNotFound(SettlementError):
    code = "STATEMENT_NOT_FOUND"
    http_status = 404


class StatementAlreadyProcessed(SettlementError):
    code = "STATEMENT_ALREADY_PROCESSED"
    http_status = 409


class InvalidTransition(SettlementError):
    code = "INVALID_TRANSITION"
    http_status = 409


class AccountNotFound(SettlementError):
    """No mileage account could be resolved for a company/user."""
    code = "ACCOUNT_NOT_FOUND"
    http_status = 404


class OrderNotFound(SettlementError):
    code = "ORDER_NOT_FOUND"
    http_status = 404


class OrderNotEditable(SettlementError):
    """The order's business day is already closed."""
    code = "ORDER_NOT_EDITABLE"
    http_status = 409


class CalendarGap(SettlementError):
    """
    A year has no lunar holiday table.

    Never fatal for working-date calculation: callers fall back to
    "no lunar holidays known" for that year.
    """
    code = "CALENDAR_GAP"


class MileageEntryNotFound(SettlementError):
    code = "MILEAGE_ENTRY_NOT_FOUND"
    http_status = 404


class StatementChanged(SettlementError):
    """
    The statement's lines or mileage account moved outside the ledger keys
    held for it. Processing re-plans once before this reaches the caller.
    """
    code = "STATEMENT_CHANGED"
    http_status = 409
