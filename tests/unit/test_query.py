from __future__ import annotations

from datetime import date, datetime, timezone

import pytest
from pydantic import ValidationError as PydanticValidationError

from sipoma_store.domain.models import ChangeKind, OrderBy, QueryOptions
from sipoma_store.tables.query import build_params, encode_value, eq_filter, parse_content_range

PAGE_SIZE = 10


def test_default_options_select_everything() -> None:
    assert build_params(None, PAGE_SIZE) == [("select", "*")]


def test_params_are_emitted_in_logical_order() -> None:
    options = QueryOptions(
        select=["id", "title"],
        filter={"status": "active", "owner_id": "u-1"},
        order=OrderBy(column="created_at", ascending=False),
        limit=5,
        offset=20,
    )

    assert build_params(options, PAGE_SIZE) == [
        ("select", "id,title"),
        ("status", "eq.active"),
        ("owner_id", "eq.u-1"),
        ("order", "created_at.desc"),
        ("limit", "5"),
        ("offset", "20"),
    ]


def test_offset_without_limit_uses_page_size() -> None:
    params = build_params(QueryOptions(offset=30), PAGE_SIZE)
    assert ("limit", str(PAGE_SIZE)) in params
    assert ("offset", "30") in params


def test_limit_without_offset_is_kept() -> None:
    assert build_params(QueryOptions(limit=3), PAGE_SIZE) == [("select", "*"), ("limit", "3")]


def test_negative_paging_is_rejected() -> None:
    with pytest.raises(PydanticValidationError):
        QueryOptions(limit=-1)


def test_query_options_are_immutable() -> None:
    options = QueryOptions(limit=1)
    with pytest.raises(PydanticValidationError):
        options.limit = 2


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        (True, "true"),
        (False, "false"),
        (7, "7"),
        (1.5, "1.5"),
        ("planned", "planned"),
        (ChangeKind.INSERT, "insert"),
        (date(2025, 3, 1), "2025-03-01"),
        (datetime(2025, 3, 1, 8, 0, tzinfo=timezone.utc), "2025-03-01T08:00:00+00:00"),
    ],
)
def test_encode_value(value, expected) -> None:
    assert encode_value(value) == expected


def test_encode_value_rejects_containers() -> None:
    with pytest.raises(ValueError):
        encode_value({"nested": True})


def test_eq_filter_null_uses_is() -> None:
    assert eq_filter("resolved_at", None) == ("resolved_at", "is.null")


def test_eq_filter_requires_column() -> None:
    with pytest.raises(ValueError):
        eq_filter("", 1)


@pytest.mark.parametrize(
    ("header", "expected"),
    [
        ("0-9/120", 120),
        ("*/0", 0),
        ("0-9/*", None),
        (None, None),
        ("garbage", None),
    ],
)
def test_parse_content_range(header, expected) -> None:
    assert parse_content_range(header) == expected
