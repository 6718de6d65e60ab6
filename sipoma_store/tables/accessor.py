"""
Typed table accessor: uniform CRUD + subscribe over one remote collection.

Rows are parsed with the accessor's pydantic model at the point they come off
the network. A response that does not validate (including an error payload
delivered on a success path) becomes ``Result(data=None, error=QueryError)``;
it is never passed through as if it were a record.

Usage:
    projects = TableAccessor("projects", Project, client=client)
    result = await projects.find_all(QueryOptions(filter={"status": "active"}))
    if result.ok:
        for project in result.data:
            ...
"""

from __future__ import annotations

import asyncio
from typing import (
    Any,
    AsyncIterator,
    Generic,
    Iterable,
    List,
    Mapping,
    Optional,
    Tuple,
    Type,
    TypeVar,
    Union,
)

from pydantic import BaseModel, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from sipoma_store.domain.models import ChangeEvent, QueryOptions, RecordId, RemoteRecord
from sipoma_store.domain.results import BulkResult, ItemError, Result
from sipoma_store.errors import QueryError, StoreError
from sipoma_store.infrastructure.client import RemoteClient, get_client
from sipoma_store.infrastructure.realtime import ChangeCallback, ChannelHandle
from sipoma_store.tables.query import build_params, eq_filter, parse_content_range
from sipoma_store.utils.logging import get_logger

log = get_logger(__name__)

ModelT = TypeVar("ModelT", bound=RemoteRecord)
Item = Union[Mapping[str, Any], BaseModel]
UpdateSpec = Union[Mapping[str, Any], Tuple[RecordId, Item]]

_SINGLE_OBJECT = "application/vnd.pgrst.object+json"
_ERROR_KEYS = frozenset({"message", "code", "details", "hint", "error", "error_description", "msg"})
_JSON_ROW = TypeAdapter(dict)


def looks_like_error(row: Any) -> bool:
    """
    True for an error-shaped object: only error keys, at least one string message.

    Records with a real ``message`` column (alerts) also carry an id and other
    columns, so they are not mistaken for errors.
    """
    if not isinstance(row, Mapping) or not row:
        return False
    if not set(row) <= _ERROR_KEYS:
        return False
    return any(isinstance(row.get(key), str) for key in ("message", "error_description", "msg", "error"))


def _payload(item: Item) -> dict:
    if isinstance(item, BaseModel):
        return item.model_dump(mode="json", exclude_unset=True)
    if isinstance(item, Mapping):
        return _JSON_ROW.dump_python(dict(item), mode="json")
    raise TypeError(f"Expected a mapping or pydantic model, got {type(item).__name__}")


class TableAccessor(Generic[ModelT]):
    """
    CRUD and change notifications for one named collection.

    Construction performs no I/O. When ``client`` is omitted the process
    default client is resolved on each operation.
    """

    def __init__(
        self,
        name: str,
        model: Type[ModelT] = RemoteRecord,  # type: ignore[assignment]
        *,
        client: Optional[RemoteClient] = None,
        id_field: str = "id",
    ) -> None:
        if not name:
            raise ValueError("Collection name must be a non-empty string")
        self.name = name
        self.model = model
        self.id_field = id_field
        self._client = client

    def __repr__(self) -> str:
        return f"TableAccessor({self.name!r}, {self.model.__name__})"

    @property
    def client(self) -> RemoteClient:
        return self._client if self._client is not None else get_client()

    @property
    def url(self) -> str:
        return f"{self.client.settings.rest_url}/{self.name}"

    # Validation boundary -----------------------------------------------

    def _parse_row(self, row: Any, projected: bool = False) -> Any:
        if not isinstance(row, Mapping) or looks_like_error(row):
            raise QueryError(message=f"Malformed row returned from '{self.name}'")
        if projected:
            return dict(row)
        try:
            return self.model.model_validate(row)
        except PydanticValidationError as exc:
            raise QueryError(
                message=f"Row from '{self.name}' failed {self.model.__name__} validation",
                details={"errors": exc.errors(include_url=False)},
            ) from exc

    def _parse_rows(self, rows: Any, projected: bool = False) -> List[Any]:
        if not isinstance(rows, list):
            raise QueryError(message=f"Expected a list of rows from '{self.name}'")
        return [self._parse_row(row, projected) for row in rows]

    def _id_filter(self, id: RecordId) -> Tuple[str, str]:
        try:
            return eq_filter(self.id_field, id)
        except ValueError as exc:
            raise QueryError(message=f"Invalid id for '{self.name}': {exc}") from exc

    def to_model(self, record: Mapping[str, Any]) -> ModelT:
        """Validate a change-event record as this collection's model."""
        return self._parse_row(record)

    # Reads -------------------------------------------------------------

    async def find_all(self, options: Optional[QueryOptions] = None) -> Result[List[ModelT]]:
        client = self.client
        try:
            params = build_params(options, client.settings.default_page_size)
        except ValueError as exc:
            return Result.failure(QueryError(message=str(exc)))
        projected = bool(options and options.select not in (None, "*"))
        try:
            response = await client.request(
                "GET", self.url, params=params, headers={"Prefer": "count=exact"}
            )
            data = self._parse_rows(response.json(), projected)
        except StoreError as exc:
            log.debug("find_all failed", extra={"collection": self.name, "error": exc.message})
            return Result.failure(exc)
        except ValueError:
            return Result.failure(QueryError(message=f"Invalid JSON from '{self.name}'"))
        return Result.success(data, count=parse_content_range(response.headers.get("content-range")))

    async def find_by_id(self, id: RecordId, select: Optional[str] = None) -> Result[ModelT]:
        """Look up one row; a missing id yields ``NotFoundError``."""
        try:
            params = [("select", select or "*"), self._id_filter(id)]
            row = await self.client.request_json(
                "GET", self.url, params=params, headers={"Accept": _SINGLE_OBJECT}
            )
            return Result.success(self._parse_row(row, projected=select not in (None, "*")))
        except StoreError as exc:
            return Result.failure(exc)

    # Writes ------------------------------------------------------------

    async def create(self, item: Item) -> Result[ModelT]:
        """Insert one row and return it as materialized by the server."""
        try:
            row = await self.client.request_json(
                "POST",
                self.url,
                json=_payload(item),
                headers={"Prefer": "return=representation", "Accept": _SINGLE_OBJECT},
            )
            return Result.success(self._parse_row(row))
        except StoreError as exc:
            return Result.failure(exc)

    async def update(self, id: RecordId, changes: Item) -> Result[ModelT]:
        """Update the given fields of one row; a missing id yields ``NotFoundError``."""
        body = _payload(changes)
        if not body:
            return Result.failure(QueryError(message="No fields to update"))
        try:
            row = await self.client.request_json(
                "PATCH",
                self.url,
                params=[self._id_filter(id)],
                json=body,
                headers={"Prefer": "return=representation", "Accept": _SINGLE_OBJECT},
            )
            return Result.success(self._parse_row(row))
        except StoreError as exc:
            return Result.failure(exc)

    async def delete(self, id: RecordId) -> Result[None]:
        """Remove one row. Deleting an absent id succeeds."""
        try:
            await self.client.request("DELETE", self.url, params=[self._id_filter(id)])
        except StoreError as exc:
            return Result.failure(exc)
        return Result.success(None)

    async def bulk_insert(self, items: Iterable[Item]) -> Result[List[ModelT]]:
        """Insert all rows in one request; the backend applies them all or none."""
        body = [_payload(item) for item in items]
        if not body:
            return Result.success([])
        try:
            rows = await self.client.request_json(
                "POST",
                self.url,
                json=body,
                headers={"Prefer": "return=representation"},
            )
            return Result.success(self._parse_rows(rows))
        except StoreError as exc:
            return Result.failure(exc)

    async def bulk_update(self, updates: Iterable[UpdateSpec]) -> BulkResult[ModelT]:
        """
        Apply independent updates concurrently and report each outcome.

        Not atomic: some rows may be updated while others fail. Each entry is
        ``{"id": ..., "data": {...}}`` or an ``(id, data)`` pair.
        """
        pairs: List[Tuple[RecordId, Item]] = []
        for spec in updates:
            if isinstance(spec, Mapping):
                pairs.append((spec["id"], spec["data"]))
            else:
                pairs.append((spec[0], spec[1]))

        results = await asyncio.gather(*(self.update(id, data) for id, data in pairs))

        outcome: BulkResult[ModelT] = BulkResult()
        for (id, _), result in zip(pairs, results):
            if result.ok:
                outcome.data.append(result.data)
            else:
                outcome.errors.append(ItemError(id=id, error=result.error))
        if outcome.errors:
            log.info(
                "bulk_update partially failed",
                extra={"collection": self.name, "failed": len(outcome.errors), "total": len(pairs)},
            )
        return outcome

    # Change notifications ----------------------------------------------

    async def subscribe(
        self,
        callback: ChangeCallback,
        filter: Optional[str] = None,
    ) -> Result[ChannelHandle]:
        """Invoke ``callback`` for every change on this collection until the handle closes."""
        return await self.client.subscribe(self.name, callback, filter)

    def changes(self, filter: Optional[str] = None) -> "ChangeStream":
        """Lazy stream of change events; each iteration opens a fresh channel."""
        return ChangeStream(self, filter)


class ChangeStream:
    """
    Async iterable over one collection's change events.

    Nothing is opened until iteration starts. When iteration ends, because the
    consumer stopped or the connection dropped, the channel is closed; the
    reason (if any) is left on ``error``. Iterating again resubscribes.
    """

    def __init__(self, accessor: TableAccessor[Any], event_filter: Optional[str] = None) -> None:
        self.accessor = accessor
        self.event_filter = event_filter
        self.error: Optional[StoreError] = None

    async def __aiter__(self) -> AsyncIterator[ChangeEvent]:
        result = await self.accessor.client.open_channel(self.accessor.name, self.event_filter)
        if not result.ok:
            self.error = result.error
            return
        handle = result.data
        self.error = None
        try:
            async for change in handle:
                yield change
            self.error = handle.error
        finally:
            await handle.close()


__all__ = ["TableAccessor", "ChangeStream", "looks_like_error"]
