"""
Result contracts returned by every SIPOMA Store operation.

Operations hand back errors as values instead of raising, so callers can render
failure state without exception-handling control flow. Success and failure are
told apart by ``Result.ok`` (is there an error?), never by whether ``data`` is
truthy: ``0``, ``""`` and ``[]`` are valid payloads.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Generic, List, Optional, TypeVar

from sipoma_store.errors import StoreError

T = TypeVar("T")


@dataclass(frozen=True)
class Result(Generic[T]):
    """
    Outcome of one operation.

    Attributes
    ----------
    data : T | None
        The payload. Always ``None`` when ``error`` is set.
    error : StoreError | None
        The failure, if any.
    count : int | None
        Exact total row count for list queries, when the backend reported one.
    """

    data: Optional[T] = None
    error: Optional[StoreError] = None
    count: Optional[int] = None

    def __post_init__(self) -> None:
        if self.error is not None and self.data is not None:
            raise ValueError("Result cannot carry both data and an error")

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, data: Optional[T] = None, count: Optional[int] = None) -> "Result[T]":
        return cls(data=data, count=count)

    @classmethod
    def failure(cls, error: StoreError) -> "Result[T]":
        return cls(error=error)

    def unwrap(self) -> T:
        """Return ``data`` or raise the carried error."""
        if self.error is not None:
            raise self.error
        return self.data  # type: ignore[return-value]


@dataclass(frozen=True)
class ItemError:
    """One failed item of a batch, keyed by the identifier it targeted."""

    id: Any
    error: StoreError


@dataclass(frozen=True)
class BulkResult(Generic[T]):
    """Parallel successes and failures of a non-atomic batch operation."""

    data: List[T] = field(default_factory=list)
    errors: List[ItemError] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


__all__ = ["Result", "ItemError", "BulkResult"]
