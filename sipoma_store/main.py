from __future__ import annotations

import asyncio
import json
import sys
from typing import Any, Awaitable, Callable, List, Optional, TypeVar

import typer
from pydantic import BaseModel

from sipoma_store.config import get_settings
from sipoma_store.domain.models import OrderBy, QueryOptions
from sipoma_store.domain.results import Result
from sipoma_store.infrastructure.client import RemoteClient
from sipoma_store.reporter import print_rows
from sipoma_store.tables.collections import accessor_for
from sipoma_store.utils.logging import configure_logging
from sipoma_store.utils.retry import retry_network

app = typer.Typer(help="SIPOMA Store CLI.")

T = TypeVar("T")


def _run(operation: Callable[[RemoteClient], Awaitable[T]]) -> T:
    settings = get_settings()
    configure_logging(level=settings.log_level, json_logs=settings.log_json)

    async def _with_client() -> T:
        async with RemoteClient(settings) as client:
            return await operation(client)

    return asyncio.run(_with_client())


def _dump(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, list):
        return [_dump(item) for item in value]
    return value


def _exit_on_error(result: Result[Any]) -> None:
    if not result.ok:
        typer.echo(f"{type(result.error).__name__}: {result.error.message}", err=True)
        raise typer.Exit(code=1)


def _parse_filters(filters: List[str]) -> dict:
    parsed = {}
    for item in filters:
        column, sep, value = item.partition("=")
        if not sep or not column:
            raise typer.BadParameter(f"Expected column=value, got '{item}'", param_hint="--filter")
        parsed[column] = value
    return parsed


def _parse_order(order: Optional[str]) -> Optional[OrderBy]:
    if not order:
        return None
    column, _, direction = order.partition(":")
    return OrderBy(column=column, ascending=direction.lower() != "desc")


@app.command()
def info() -> None:
    """
    Show effective configuration values.
    """
    settings = get_settings()
    typer.echo(
        f"URL={settings.supabase_url} schema={settings.db_schema} "
        f"key={'set' if settings.supabase_anon_key else 'missing'} | "
        f"session_file={settings.session_file} persist={settings.persist_session} "
        f"page_size={settings.default_page_size}"
    )


@app.command()
def login(
    email: str = typer.Argument(..., help="Account e-mail."),
    password: str = typer.Option(..., prompt=True, hide_input=True),
) -> None:
    """
    Sign in and persist the session for later commands.
    """
    result = _run(lambda client: client.sign_in(email, password))
    _exit_on_error(result)
    typer.echo(f"Signed in as {result.data.user.email or result.data.user.id}")


@app.command()
def register(
    email: str = typer.Argument(..., help="Account e-mail."),
    full_name: str = typer.Option("", "--full-name", help="Display name stored in the profile."),
    password: str = typer.Option(..., prompt=True, hide_input=True, confirmation_prompt=True),
) -> None:
    """
    Create an account. New accounts start in 'pending' status until approved.
    """
    result = _run(
        lambda client: client.sign_up(email, password, {"full_name": full_name, "status": "pending"})
    )
    _exit_on_error(result)
    user = result.data.user
    typer.echo(f"Registered {user.email or user.id}")
    if result.data.session is None:
        typer.echo("Confirm the e-mail address before signing in.")


@app.command()
def logout() -> None:
    """
    Sign out and forget the stored session.
    """
    result = _run(lambda client: client.sign_out())
    _exit_on_error(result)
    typer.echo("Signed out.")


@app.command()
def whoami() -> None:
    """
    Show the signed-in principal, verified against the server.
    """
    result = _run(lambda client: retry_network(client.get_user))
    _exit_on_error(result)
    typer.echo(json.dumps(_dump(result.data), indent=2))


@app.command("list")
def list_rows(
    table: str = typer.Argument(..., help="Collection name."),
    filters: List[str] = typer.Option([], "--filter", "-f", help="Equality filter column=value (repeatable)."),
    select: Optional[str] = typer.Option(None, "--select", help="Comma-separated columns."),
    order: Optional[str] = typer.Option(None, "--order", help="Order column, e.g. created_at:desc."),
    limit: Optional[int] = typer.Option(None, "--limit", "-n"),
    offset: Optional[int] = typer.Option(None, "--offset"),
    as_table: bool = typer.Option(False, "--table", help="Render a table instead of JSON."),
) -> None:
    """
    Print rows of a collection as JSON (or a table).
    """
    options = QueryOptions(
        select=select,
        filter=_parse_filters(filters),
        order=_parse_order(order),
        limit=limit,
        offset=offset,
    )
    result = _run(lambda client: retry_network(lambda: accessor_for(table, client).find_all(options)))
    _exit_on_error(result)
    if as_table:
        print_rows(result.data, title=table, count=result.count)
        return
    typer.echo(json.dumps(_dump(result.data), indent=2))
    if result.count is not None:
        typer.echo(f"{len(result.data)} of {result.count} rows", err=True)


@app.command()
def get(
    table: str = typer.Argument(..., help="Collection name."),
    record_id: str = typer.Argument(..., help="Row identifier."),
) -> None:
    """
    Print one row as JSON.
    """
    result = _run(lambda client: retry_network(lambda: accessor_for(table, client).find_by_id(record_id)))
    _exit_on_error(result)
    typer.echo(json.dumps(_dump(result.data), indent=2))


@app.command()
def watch(
    table: str = typer.Argument(..., help="Collection name."),
    event_filter: Optional[str] = typer.Option(None, "--filter", "-f", help="Server filter, e.g. status=eq.active."),
) -> None:
    """
    Stream change events as JSON lines until interrupted.
    """

    async def _watch(client: RemoteClient) -> Result[None]:
        stream = accessor_for(table, client).changes(event_filter)
        async for change in stream:
            typer.echo(change.model_dump_json())
        return Result.failure(stream.error) if stream.error is not None else Result.success(None)

    _exit_on_error(_run(_watch))


def main() -> None:
    try:
        app()
    except KeyboardInterrupt:
        typer.echo("Cancelled by user.", err=True)
        sys.exit(130)


if __name__ == "__main__":
    main()
