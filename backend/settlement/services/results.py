# Overview: Typed per-item outcomes for bulk operations.
"""
Bulk operations never abort on the first failure. Each item produces a
Result; the batch summary is a fold over those results.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Generic, Optional, TypeVar

from ..errors import SettlementError


T = TypeVar("T")


@dataclass(frozen=True)
class Result(Generic[T]):
    key: Any
    value: Optional[T] = None
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, key: Any, value: T) -> "Result[T]":
        return cls(key=key, value=value)

    @classmethod
    def failure(cls, key: Any, error: Exception) -> "Result[T]":
        return cls(key=key, error=error)

    @property
    def message(self) -> str | None:
        if self.error is None:
            return None
        if isinstance(self.error, SettlementError):
            return self.error.message
        return str(self.error) or self.error.__class__.__name__

    def to_dict(self, serialize=None) -> dict:
        if self.ok:
            value = serialize(self.value) if serialize else self.value
            return {"key": self.key, "ok": True, "value": value}
        return {
            "key": self.key,
            "ok": False,
            "code": getattr(self.error, "code", "ERROR"),
            "error": self.message,
        }


@dataclass
class BatchResult:
    processed_count: int = 0
    total_mileage_moved: int = 0
    errors: list[dict] = field(default_factory=list)

    def add(self, result: Result[int]) -> "BatchResult":
        """Fold one statement outcome; value is the mileage it moved."""
        if result.ok:
            self.processed_count += 1
            self.total_mileage_moved += int(result.value or 0)
        else:
            self.errors.append({"statement_id": result.key, "message": result.message})
        return self

    @property
    def failed_count(self) -> int:
        return len(self.errors)

    def to_dict(self) -> dict:
        return {
            "processed_count": self.processed_count,
            "failed_count": self.failed_count,
            "total_mileage_moved": self.total_mileage_moved,
            "errors": list(self.errors),
        }
