from __future__ import annotations

from rich.console import Console

from sipoma_store.domain.models import Project
from sipoma_store.reporter import collect_columns, print_rows


def _render(items, count=None) -> str:
    console = Console(record=True, width=300)
    print_rows(items, title="projects", count=count, console=console)
    return console.export_text()


def test_collect_columns_puts_id_first() -> None:
    assert collect_columns([{"title": "a", "id": 1}, {"id": 2, "status": "x"}]) == ["id", "title", "status"]


def test_print_rows_renders_models_and_caption() -> None:
    text = _render([Project(id=1, title="Kiln upgrade"), Project(id=2, title="Silo")], count=12)

    assert "Kiln upgrade" in text
    assert "Silo" in text
    assert "2 of 12 rows" in text


def test_print_rows_handles_projected_rows() -> None:
    text = _render([{"id": 1, "title": "Only title"}])

    assert "Only title" in text
    assert "1 rows" in text


def test_print_rows_empty() -> None:
    assert "No rows in projects." in _render([])
