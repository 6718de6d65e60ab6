"""
Translate ``QueryOptions`` into PostgREST query parameters.

Parameters are emitted in a fixed logical order: select, filters, order,
limit, offset. Filters are equality predicates only and are combined with AND,
which is what repeating ``column=eq.value`` pairs means to the backend.
"""

from __future__ import annotations

from datetime import date, datetime
from enum import Enum
from typing import Any, List, Optional, Tuple

from sipoma_store.domain.models import QueryOptions

Params = List[Tuple[str, str]]


def encode_value(value: Any) -> str:
    """Render one filter operand in PostgREST's text form."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, Enum):
        return encode_value(value.value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (int, float, str)):
        return str(value)
    raise ValueError(f"Unsupported filter value of type {type(value).__name__}")


def eq_filter(column: str, value: Any) -> Tuple[str, str]:
    if not column:
        raise ValueError("Filter column must be a non-empty string")
    if value is None:
        return column, "is.null"
    return column, f"eq.{encode_value(value)}"


def build_params(options: Optional[QueryOptions], default_page_size: int) -> Params:
    """
    Build the ordered parameter list for a ``find_all`` request.

    Raises
    ------
    ValueError
        If a filter column is empty or a value cannot be encoded.
    """
    options = options or QueryOptions()
    params: Params = [("select", options.select or "*")]

    for column, value in options.filter.items():
        params.append(eq_filter(column, value))

    if options.order is not None:
        direction = "asc" if options.order.ascending else "desc"
        params.append(("order", f"{options.order.column}.{direction}"))

    limit = options.limit
    if options.offset is not None and limit is None:
        limit = default_page_size
    if limit is not None:
        params.append(("limit", str(limit)))
    if options.offset is not None:
        params.append(("offset", str(options.offset)))
    return params


def parse_content_range(header: Optional[str]) -> Optional[int]:
    """
    Total row count from a ``Content-Range`` header (``0-9/120`` or ``*/0``).

    Returns None when the backend did not report a total (``0-9/*``).
    """
    if not header or "/" not in header:
        return None
    total = header.rsplit("/", 1)[1].strip()
    return int(total) if total.isdigit() else None


__all__ = ["Params", "encode_value", "eq_filter", "build_params", "parse_content_range"]
