"""
Pytest configuration for SIPOMA Store.

Provides fixtures for:
- Test settings that never touch the developer's environment or session file
- An in-memory backend (REST, auth, RPC, storage) behind ``httpx.MockTransport``
- An in-memory realtime socket speaking the channel frame format
- A ``RemoteClient`` wired to both
"""

from __future__ import annotations

import asyncio
import itertools
import json
from collections import defaultdict
from typing import Any, Callable, Dict, List, Optional, Tuple

import httpx
import pytest
from websockets.exceptions import ConnectionClosedOK

from sipoma_store.config import Settings
from sipoma_store.infrastructure.client import RemoteClient, reset_client
from sipoma_store.infrastructure.http import AsyncHttpClient
from sipoma_store.infrastructure.session_store import MemorySessionStore

TEST_URL = "https://example.supabase.co"
TEST_KEY = "anon-test-key"

_CLOSED = object()


def _text(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


class FakeBackend:
    """
    Minimal stand-in for the hosted REST/auth/storage endpoints.

    Tables are lists of dict rows. ``overrides`` maps ``(method, path)`` to a
    handler returning a canned ``httpx.Response`` for error-path tests.
    """

    def __init__(self) -> None:
        self.tables: Dict[str, List[Dict[str, Any]]] = defaultdict(list)
        self.required: Dict[str, Tuple[str, ...]] = {}
        self.requests: List[httpx.Request] = []
        self.overrides: Dict[Tuple[str, str], Callable[[httpx.Request], httpx.Response]] = {}
        self.rpc_results: Dict[str, Any] = {}
        self.rpc_calls: List[Tuple[str, Dict[str, Any]]] = []
        self.objects: Dict[str, bytes] = {}
        self.users: Dict[str, Dict[str, Any]] = {}
        self.access_tokens: Dict[str, Dict[str, Any]] = {}
        self.refresh_tokens: Dict[str, Dict[str, Any]] = {}
        self.confirm_email = False
        self.expires_in = 3600
        self.unreachable = False
        self._ids = itertools.count(1)
        self._tokens = itertools.count(1)

    # Dispatch ----------------------------------------------------------

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.unreachable:
            raise httpx.ConnectError("backend unreachable", request=request)
        override = self.overrides.get((request.method, request.url.path))
        if override is not None:
            return override(request)

        path = request.url.path
        if path.startswith("/rest/v1/rpc/"):
            return self._rpc(request, path.rsplit("/", 1)[1])
        if path.startswith("/rest/v1/"):
            return self._rest(request, path.split("/")[3])
        if path.startswith("/auth/v1/"):
            return self._auth(request, path.split("/")[3])
        if path.startswith("/storage/v1/object/"):
            return self._storage(request, path[len("/storage/v1/object/") :])
        return httpx.Response(404, json={"message": f"No route for {path}"})

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    # REST --------------------------------------------------------------

    def _matches(self, request: httpx.Request) -> List[Dict[str, Any]]:
        rows = []
        filters = [
            (column, value)
            for column, value in request.url.params.multi_items()
            if column not in ("select", "order", "limit", "offset")
        ]
        table = request.url.path.split("/")[3]
        for row in self.tables[table]:
            ok = True
            for column, expr in filters:
                op, _, operand = expr.partition(".")
                if op == "eq" and _text(row.get(column)) != operand:
                    ok = False
                elif op == "is" and operand == "null" and row.get(column) is not None:
                    ok = False
            if ok:
                rows.append(row)
        return rows

    def _single(self, request: httpx.Request) -> bool:
        return request.headers.get("accept") == "application/vnd.pgrst.object+json"

    def _not_single(self, count: int) -> httpx.Response:
        return httpx.Response(
            406,
            json={
                "code": "PGRST116",
                "message": "JSON object requested, multiple (or no) rows returned",
                "details": f"The result contains {count} rows",
                "hint": None,
            },
        )

    def _project(self, rows: List[Dict[str, Any]], select: str) -> List[Dict[str, Any]]:
        if select == "*":
            return [dict(row) for row in rows]
        columns = [column.strip() for column in select.split(",")]
        return [{column: row.get(column) for column in columns} for row in rows]

    def _rest(self, request: httpx.Request, table: str) -> httpx.Response:
        params = request.url.params
        if request.method == "GET":
            rows = self._matches(request)
            if "order" in params:
                column, _, direction = params["order"].partition(".")
                rows = sorted(rows, key=lambda r: r.get(column), reverse=direction == "desc")
            total = len(rows)
            offset = int(params.get("offset", 0))
            rows = rows[offset:]
            if "limit" in params:
                rows = rows[: int(params["limit"])]
            rows = self._project(rows, params.get("select", "*"))
            if self._single(request):
                if len(rows) != 1:
                    return self._not_single(len(rows))
                return httpx.Response(200, json=rows[0])
            headers = {}
            if "count=exact" in request.headers.get("prefer", ""):
                end = offset + len(rows) - 1
                headers["Content-Range"] = f"{offset}-{end}/{total}" if rows else f"*/{total}"
            return httpx.Response(200, json=rows, headers=headers)

        if request.method == "POST":
            body = json.loads(request.content)
            items = body if isinstance(body, list) else [body]
            created = []
            for item in items:
                for column in self.required.get(table, ()):
                    if item.get(column) is None:
                        return httpx.Response(
                            400,
                            json={
                                "code": "23502",
                                "message": f'null value in column "{column}" violates not-null constraint',
                                "details": None,
                                "hint": None,
                            },
                        )
                row = dict(item)
                row.setdefault("id", next(self._ids))
                row.setdefault("created_at", "2025-01-01T00:00:00+00:00")
                if any(_text(existing["id"]) == _text(row["id"]) for existing in self.tables[table]):
                    return httpx.Response(
                        409,
                        json={
                            "code": "23505",
                            "message": "duplicate key value violates unique constraint",
                            "details": f"Key (id)=({row['id']}) already exists.",
                            "hint": None,
                        },
                    )
                created.append(row)
            self.tables[table].extend(created)
            if self._single(request):
                return httpx.Response(201, json=created[0])
            return httpx.Response(201, json=created)

        if request.method == "PATCH":
            changes = json.loads(request.content)
            rows = self._matches(request)
            if self._single(request) and len(rows) != 1:
                return self._not_single(len(rows))
            for row in rows:
                row.update(changes)
            if self._single(request):
                return httpx.Response(200, json=rows[0])
            return httpx.Response(200, json=rows)

        if request.method == "DELETE":
            doomed = {id(row) for row in self._matches(request)}
            self.tables[table] = [row for row in self.tables[table] if id(row) not in doomed]
            return httpx.Response(204)

        return httpx.Response(405, json={"message": "method not allowed"})

    def _rpc(self, request: httpx.Request, function: str) -> httpx.Response:
        params = json.loads(request.content or b"{}")
        self.rpc_calls.append((function, params))
        if function not in self.rpc_results:
            return httpx.Response(
                404,
                json={"code": "PGRST202", "message": f"Could not find the function public.{function}"},
            )
        return httpx.Response(200, json=self.rpc_results[function])

    # Auth --------------------------------------------------------------

    def _bundle(self, user: Dict[str, Any]) -> Dict[str, Any]:
        n = next(self._tokens)
        access, refresh = f"access-{n}", f"refresh-{n}"
        self.access_tokens[access] = user
        self.refresh_tokens[refresh] = user
        return {
            "access_token": access,
            "token_type": "bearer",
            "expires_in": self.expires_in,
            "refresh_token": refresh,
            "user": user,
        }

    def _bearer_user(self, request: httpx.Request) -> Optional[Dict[str, Any]]:
        header = request.headers.get("authorization", "")
        return self.access_tokens.get(header.removeprefix("Bearer "))

    def _auth(self, request: httpx.Request, endpoint: str) -> httpx.Response:
        if endpoint == "signup":
            body = json.loads(request.content)
            if body["email"] in self.users:
                return httpx.Response(
                    422,
                    json={"code": 422, "error_code": "user_already_exists", "msg": "User already registered"},
                )
            user = {
                "id": f"user-{len(self.users) + 1}",
                "email": body["email"],
                "role": "authenticated",
                "user_metadata": body.get("data") or {},
            }
            self.users[body["email"]] = {"password": body["password"], "user": user}
            if self.confirm_email:
                return httpx.Response(200, json=user)
            return httpx.Response(200, json=self._bundle(user))

        if endpoint == "token":
            body = json.loads(request.content)
            grant = request.url.params.get("grant_type")
            if grant == "password":
                account = self.users.get(body.get("email"))
                if account is None or account["password"] != body.get("password"):
                    return httpx.Response(
                        400,
                        json={"error": "invalid_grant", "error_description": "Invalid login credentials"},
                    )
                return httpx.Response(200, json=self._bundle(account["user"]))
            if grant == "refresh_token":
                user = self.refresh_tokens.pop(body.get("refresh_token"), None)
                if user is None:
                    return httpx.Response(
                        400,
                        json={"error": "invalid_grant", "error_description": "Invalid Refresh Token"},
                    )
                return httpx.Response(200, json=self._bundle(user))

        if endpoint == "logout":
            header = request.headers.get("authorization", "")
            self.access_tokens.pop(header.removeprefix("Bearer "), None)
            return httpx.Response(204)

        if endpoint == "user":
            user = self._bearer_user(request)
            if user is None:
                return httpx.Response(401, json={"code": 401, "msg": "invalid JWT"})
            return httpx.Response(200, json=user)

        return httpx.Response(404, json={"msg": "not found"})

    # Storage -----------------------------------------------------------

    def _storage(self, request: httpx.Request, key: str) -> httpx.Response:
        if request.method == "POST":
            if key in self.objects and request.headers.get("x-upsert") != "true":
                return httpx.Response(
                    409,
                    json={"statusCode": "409", "error": "Duplicate", "message": "The resource already exists"},
                )
            self.objects[key] = request.content
            return httpx.Response(200, json={"Key": key})
        if request.method == "GET":
            if key not in self.objects:
                return httpx.Response(404, json={"statusCode": "404", "error": "not_found", "message": "Object not found"})
            return httpx.Response(200, content=self.objects[key])
        return httpx.Response(405, json={"message": "method not allowed"})


class FakeSocket:
    """In-memory realtime socket. The server side is driven by the test."""

    def __init__(self, join_status: str = "ok", reply: bool = True) -> None:
        self.join_status = join_status
        self.reply = reply
        self.after_join: List[Callable[["FakeSocket"], None]] = []
        self.sent: List[Dict[str, Any]] = []
        self.closed = False
        self.topic: Optional[str] = None
        self._incoming: "asyncio.Queue[Any]" = asyncio.Queue()

    async def send(self, message: str) -> None:
        if self.closed:
            raise ConnectionClosedOK(None, None)
        frame = json.loads(message)
        self.sent.append(frame)
        if frame["event"] == "phx_join":
            self.topic = frame["topic"]
            if self.reply:
                self.push(
                    {
                        "topic": frame["topic"],
                        "event": "phx_reply",
                        "payload": {
                            "status": self.join_status,
                            "response": {} if self.join_status == "ok" else {"reason": "unauthorized"},
                        },
                        "ref": frame["ref"],
                    }
                )
                for step in self.after_join:
                    step(self)

    async def recv(self) -> str:
        item = await self._incoming.get()
        if item is _CLOSED:
            raise ConnectionClosedOK(None, None)
        return item

    async def close(self) -> None:
        self.closed = True
        self._incoming.put_nowait(_CLOSED)

    def push(self, frame: Dict[str, Any]) -> None:
        self._incoming.put_nowait(json.dumps(frame))

    def push_change(
        self,
        change_type: str,
        record: Optional[Dict[str, Any]] = None,
        old_record: Optional[Dict[str, Any]] = None,
        table: str = "alerts",
    ) -> None:
        self.push(
            {
                "topic": self.topic,
                "event": "postgres_changes",
                "payload": {
                    "ids": [1],
                    "data": {
                        "type": change_type,
                        "schema": "public",
                        "table": table,
                        "commit_timestamp": "2025-01-01T00:00:00Z",
                        "record": record or {},
                        "old_record": old_record or {},
                        "columns": [],
                        "errors": None,
                    },
                },
                "ref": None,
            }
        )

    def drop(self) -> None:
        self._incoming.put_nowait(_CLOSED)


class SocketFactory:
    """Hands out prepared ``FakeSocket`` instances and records requested URLs."""

    def __init__(self) -> None:
        self.sockets: List[FakeSocket] = []
        self.urls: List[str] = []
        self.join_status = "ok"
        self.reply = True
        self.fail_connect = False
        self.after_join: List[Callable[[FakeSocket], None]] = []

    async def __call__(self, url: str) -> FakeSocket:
        self.urls.append(url)
        if self.fail_connect:
            raise OSError("connection refused")
        socket = FakeSocket(join_status=self.join_status, reply=self.reply)
        socket.after_join = list(self.after_join)
        self.sockets.append(socket)
        return socket

    @property
    def last(self) -> FakeSocket:
        return self.sockets[-1]


@pytest.fixture
def test_settings() -> Settings:
    """
    Settings fixture with test-specific overrides.

    Heartbeats are disabled so no background sleeps outlive a test.
    """
    return Settings(
        supabase_url=TEST_URL,
        supabase_anon_key=TEST_KEY,
        persist_session=False,
        default_page_size=10,
        realtime_heartbeat_seconds=0,
        realtime_join_timeout_seconds=1.0,
        log_level="DEBUG",
    )


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def socket_factory() -> SocketFactory:
    return SocketFactory()


@pytest.fixture
def session_store() -> MemorySessionStore:
    return MemorySessionStore()


@pytest.fixture
def make_client(
    test_settings: Settings,
    backend: FakeBackend,
    socket_factory: SocketFactory,
) -> Callable[..., RemoteClient]:
    """Build clients sharing one backend; pass ``store=`` to simulate a restart."""

    def _make(store=None, settings: Optional[Settings] = None) -> RemoteClient:
        effective = settings or test_settings
        return RemoteClient(
            effective,
            store=store if store is not None else MemorySessionStore(),
            http=AsyncHttpClient(api_key=effective.supabase_anon_key, transport=backend.transport()),
            socket_factory=socket_factory,
        )

    return _make


@pytest.fixture
def client(make_client, session_store: MemorySessionStore) -> RemoteClient:
    return make_client(store=session_store)


@pytest.fixture(autouse=True)
def _isolated_default_client():
    reset_client()
    yield
    reset_client()
