"""
Realtime change notifications for SIPOMA Store.

Bridges the backend's realtime service (Phoenix channels over a WebSocket,
JSON frames ``{topic, event, payload, ref, join_ref}``) onto typed
``ChangeEvent`` values.

Delivery contract:
- each accepted ``postgres_changes`` frame yields exactly one event, in the
  order frames arrive; nothing is reordered or deduplicated;
- a dropped connection ends the stream; events during the gap are lost and
  nothing is replayed (at-most-once);
- ``ChannelHandle.close`` stops delivery immediately, releases the socket and
  is safe to call more than once.

Usage:
    result = await client.open_channel("alerts", "resolved=eq.false")
    async with result.unwrap() as channel:
        async for event in channel:
            print(event.kind, event.record)
"""

from __future__ import annotations

import asyncio
import inspect
import itertools
import json
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol, Union, runtime_checkable

import websockets
from pydantic import ValidationError as PydanticValidationError
from websockets.exceptions import ConnectionClosed

from sipoma_store.domain.models import ChangeEvent, ChangeKind
from sipoma_store.errors import ChannelError
from sipoma_store.utils.logging import get_logger

log = get_logger(__name__)

PHOENIX_TOPIC = "phoenix"
_END = object()

ChangeCallback = Callable[[ChangeEvent], Union[None, Awaitable[None]]]
ErrorCallback = Callable[[ChannelError], Union[None, Awaitable[None]]]


@runtime_checkable
class RealtimeSocket(Protocol):
    """The slice of a WebSocket connection the bridge relies on."""

    async def send(self, message: str) -> None:
        ...

    async def recv(self) -> Union[str, bytes]:
        ...

    async def close(self) -> None:
        ...


SocketFactory = Callable[[str], Awaitable[RealtimeSocket]]


async def connect_socket(url: str) -> RealtimeSocket:
    """Default socket factory backed by the ``websockets`` client."""
    return await websockets.connect(url)


def normalize_filter(expression: Optional[str]) -> Optional[str]:
    """
    Convert ``column.op.value`` into the server's ``column=op.value`` form.

    >>> normalize_filter("resolved.eq.false")
    'resolved=eq.false'
    >>> normalize_filter("status=in.(planned,confirmed)")
    'status=in.(planned,confirmed)'
    """
    if not expression:
        return None
    if "=" in expression:
        return expression
    column, sep, rest = expression.partition(".")
    if not sep or not rest:
        raise ValueError(f"Invalid realtime filter '{expression}'")
    return f"{column}={rest}"


def topic_for(schema: str, collection: str) -> str:
    return f"realtime:{schema}:{collection}"


def build_join_payload(
    schema: str,
    collection: str,
    event_filter: Optional[str],
    access_token: Optional[str],
) -> Dict[str, Any]:
    change_config: Dict[str, Any] = {"event": "*", "schema": schema, "table": collection}
    if event_filter:
        change_config["filter"] = event_filter
    payload: Dict[str, Any] = {
        "config": {
            "broadcast": {"ack": False, "self": False},
            "presence": {"key": ""},
            "postgres_changes": [change_config],
        }
    }
    if access_token:
        payload["access_token"] = access_token
    return payload


def parse_change(frame: Dict[str, Any], collection: str) -> Optional[ChangeEvent]:
    """
    Translate one raw frame into a ``ChangeEvent``, or ``None`` if the frame is
    not a row mutation.
    """
    event = frame.get("event")
    payload = frame.get("payload") or {}
    if event == "postgres_changes":
        data = payload.get("data") or {}
    elif event in ("INSERT", "UPDATE", "DELETE"):
        data = payload
    else:
        return None

    change_type = str(data.get("type") or event).lower()
    try:
        kind = ChangeKind(change_type)
    except ValueError:
        return None

    old_record = data.get("old_record") or {}
    record = data.get("record") or {}
    if kind is ChangeKind.DELETE and not record:
        record = old_record
    return ChangeEvent(
        kind=kind,
        collection=data.get("table") or collection,
        schema_name=data.get("schema") or "public",
        record=record,
        old_record=old_record,
        commit_timestamp=data.get("commit_timestamp"),
    )


def _frame(topic: str, event: str, payload: Dict[str, Any], ref: str, join_ref: Optional[str]) -> str:
    return json.dumps(
        {"topic": topic, "event": event, "payload": payload, "ref": ref, "join_ref": join_ref}
    )


def _decode(raw: Union[str, bytes]) -> Dict[str, Any]:
    try:
        frame = json.loads(raw)
    except ValueError:
        log.warning("Dropping undecodable realtime frame")
        return {}
    return frame if isinstance(frame, dict) else {}


class ChannelHandle:
    """
    One joined realtime channel.

    Iterate it (``async for``) to consume events, or register a callback with
    ``on``. Both read the same underlying queue, so use one or the other.
    """

    def __init__(
        self,
        socket: RealtimeSocket,
        *,
        collection: str,
        topic: str,
        join_ref: str,
        heartbeat_seconds: float = 30.0,
    ) -> None:
        self.collection = collection
        self.topic = topic
        self.error: Optional[ChannelError] = None
        self._socket = socket
        self._join_ref = join_ref
        self._refs = itertools.count(int(join_ref) + 1)
        self._heartbeat_seconds = heartbeat_seconds
        self._queue: "asyncio.Queue[Any]" = asyncio.Queue()
        self._closed = False
        self._tasks: list[asyncio.Task[None]] = []
        self._dispatcher: Optional[asyncio.Task[None]] = None

    @property
    def closed(self) -> bool:
        return self._closed

    def _next_ref(self) -> str:
        return str(next(self._refs))

    def start(self) -> None:
        """Begin reading frames and sending heartbeats."""
        self._tasks.append(asyncio.create_task(self._read_loop()))
        if self._heartbeat_seconds > 0:
            self._tasks.append(asyncio.create_task(self._heartbeat_loop()))

    def _fail(self, error: ChannelError) -> None:
        if self.error is None and not self._closed:
            self.error = error
            log.warning(
                "Realtime channel ended",
                extra={"collection": self.collection, "reason": error.message},
            )

    async def _read_loop(self) -> None:
        try:
            while not self._closed:
                frame = _decode(await self._socket.recv())
                if not frame or frame.get("topic") != self.topic:
                    continue
                event = frame.get("event")
                if event in ("phx_close", "phx_error"):
                    self._fail(ChannelError(message=f"Channel closed by server ({event})", code=event))
                    return
                if event == "system" and (frame.get("payload") or {}).get("status") == "error":
                    reason = (frame.get("payload") or {}).get("message") or "subscription rejected"
                    self._fail(ChannelError(message=str(reason), code="system"))
                    return
                try:
                    change = parse_change(frame, self.collection)
                except (PydanticValidationError, AttributeError, TypeError) as exc:
                    log.warning(
                        "Dropping malformed change frame",
                        extra={"collection": self.collection, "error": str(exc)},
                    )
                    continue
                if change is not None:
                    self._queue.put_nowait(change)
        except ConnectionClosed as exc:
            self._fail(ChannelError(message=f"Realtime connection lost: {exc}", retryable=True))
        except OSError as exc:
            self._fail(ChannelError(message=f"Realtime connection lost: {exc}", retryable=True))
        except Exception as exc:
            log.exception("Realtime read loop failed", extra={"collection": self.collection})
            self._fail(ChannelError(message=f"Realtime read failed: {exc}"))
        finally:
            self._queue.put_nowait(_END)

    async def _heartbeat_loop(self) -> None:
        while not self._closed:
            await asyncio.sleep(self._heartbeat_seconds)
            try:
                await self._socket.send(_frame(PHOENIX_TOPIC, "heartbeat", {}, self._next_ref(), None))
            except (ConnectionClosed, OSError):
                return

    def __aiter__(self) -> "ChannelHandle":
        return self

    async def __anext__(self) -> ChangeEvent:
        if self._closed:
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _END or self._closed:
            raise StopAsyncIteration
        return item

    def on(self, callback: ChangeCallback, on_error: Optional[ErrorCallback] = None) -> "ChannelHandle":
        """Invoke ``callback`` once per event from a background task."""
        if self._dispatcher is not None:
            raise RuntimeError("A callback is already registered on this channel")
        self._dispatcher = asyncio.create_task(self._dispatch(callback, on_error))
        return self

    async def _dispatch(self, callback: ChangeCallback, on_error: Optional[ErrorCallback]) -> None:
        async for change in self:
            try:
                outcome = callback(change)
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception:
                log.exception("Change callback failed", extra={"collection": self.collection})
        if self.error is not None and on_error is not None:
            outcome = on_error(self.error)
            if inspect.isawaitable(outcome):
                await outcome

    async def close(self) -> None:
        """Leave the channel and release the socket. Idempotent."""
        if self._closed:
            return
        self._closed = True
        current = asyncio.current_task()
        pending = [
            task
            for task in [*self._tasks, self._dispatcher]
            if task is not None and task is not current and not task.done()
        ]
        for task in pending:
            task.cancel()
        try:
            await self._socket.send(
                _frame(self.topic, "phx_leave", {}, self._next_ref(), self._join_ref)
            )
        except (ConnectionClosed, OSError):
            pass
        await self._socket.close()
        self._queue.put_nowait(_END)
        await asyncio.gather(*pending, return_exceptions=True)
        log.info("Realtime channel closed", extra={"collection": self.collection})

    async def __aenter__(self) -> "ChannelHandle":
        return self

    async def __aexit__(self, *_: object) -> None:
        await self.close()


async def join_channel(
    socket: RealtimeSocket,
    *,
    collection: str,
    schema: str = "public",
    event_filter: Optional[str] = None,
    access_token: Optional[str] = None,
    join_timeout_seconds: float = 10.0,
    heartbeat_seconds: float = 30.0,
) -> ChannelHandle:
    """
    Join ``collection``'s change channel on an open socket.

    Raises
    ------
    ChannelError
        If the server rejects the join, the socket drops, or no reply arrives
        within ``join_timeout_seconds``.
    """
    topic = topic_for(schema, collection)
    join_ref = "1"
    payload = build_join_payload(schema, collection, normalize_filter(event_filter), access_token)

    async def _await_reply() -> Dict[str, Any]:
        while True:
            frame = _decode(await socket.recv())
            if frame.get("event") == "phx_reply" and frame.get("ref") == join_ref:
                return frame.get("payload") or {}

    try:
        await socket.send(_frame(topic, "phx_join", payload, join_ref, join_ref))
        reply = await asyncio.wait_for(_await_reply(), timeout=join_timeout_seconds)
    except asyncio.TimeoutError as exc:
        raise ChannelError(message=f"Timed out joining channel '{collection}'", retryable=True) from exc
    except (ConnectionClosed, OSError) as exc:
        raise ChannelError(message=f"Connection lost while joining '{collection}': {exc}", retryable=True) from exc

    if reply.get("status") != "ok":
        response = reply.get("response") or {}
        reason = response.get("reason") or response.get("message") or reply.get("status") or "join rejected"
        raise ChannelError(message=f"Channel join rejected: {reason}", code=str(reply.get("status")))

    handle = ChannelHandle(
        socket,
        collection=collection,
        topic=topic,
        join_ref=join_ref,
        heartbeat_seconds=heartbeat_seconds,
    )
    handle.start()
    log.info("Realtime channel joined", extra={"collection": collection, "filter": event_filter})
    return handle


__all__ = [
    "RealtimeSocket",
    "SocketFactory",
    "ChannelHandle",
    "ChangeCallback",
    "connect_socket",
    "join_channel",
    "normalize_filter",
    "parse_change",
]
