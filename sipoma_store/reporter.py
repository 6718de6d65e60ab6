from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional, Sequence

from pydantic import BaseModel
from rich import box
from rich.console import Console
from rich.table import Table

# Columns wider than this are truncated in table cells.
MAX_CELL_WIDTH = 40


def _as_row(item: Any) -> Dict[str, Any]:
    if isinstance(item, BaseModel):
        return item.model_dump(mode="json")
    if isinstance(item, Mapping):
        return dict(item)
    return {"value": item}


def collect_columns(rows: Sequence[Mapping[str, Any]]) -> List[str]:
    """
    Union of row keys in first-seen order, with ``id`` first when present.

    >>> collect_columns([{"title": "a", "id": 1}, {"id": 2, "status": "x"}])
    ['id', 'title', 'status']
    """
    columns: List[str] = []
    for row in rows:
        for key in row:
            if key not in columns:
                columns.append(key)
    if "id" in columns:
        columns.remove("id")
        columns.insert(0, "id")
    return columns


def _cell(value: Any) -> str:
    if value is None:
        return "[dim]-[/dim]"
    text = str(value)
    if len(text) > MAX_CELL_WIDTH:
        return text[: MAX_CELL_WIDTH - 1] + "…"
    return text


def print_rows(
    items: Sequence[Any],
    title: str,
    count: Optional[int] = None,
    console: Optional[Console] = None,
) -> None:
    """
    Render collection rows as a rich table.

    Handles typed records and projected (plain dict) rows alike. The caption
    reports the exact total when the backend returned one.
    """
    console = console or Console()

    if not items:
        console.print(f"[yellow]No rows in {title}.[/yellow]")
        return

    rows = [_as_row(item) for item in items]
    columns = collect_columns(rows)

    caption = f"{len(rows)} of {count} rows" if count is not None else f"{len(rows)} rows"
    table = Table(title=title, box=box.ROUNDED, caption=caption)
    for column in columns:
        if column == "id":
            table.add_column(column, style="cyan", no_wrap=True)
        else:
            table.add_column(column)

    for row in rows:
        table.add_row(*(_cell(row.get(column)) for column in columns))

    console.print(table)


__all__ = ["print_rows", "collect_columns"]
