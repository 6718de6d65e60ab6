"""
Remote session client for the hosted backend.

``RemoteClient`` holds one configured connection: the project endpoint and key,
the HTTP transport, the realtime socket factory, and the authenticated
session. It is an explicit context object: construct it (or let
``initialize``/``get_client`` build the process default) and pass it to table
accessors. Every operation returns a ``Result``; none raises for remote,
transport or auth failures.
"""

from __future__ import annotations

import threading
from typing import Any, Dict, Mapping, Optional, Sequence
from urllib.parse import urlencode

import httpx
from websockets.exceptions import WebSocketException

from sipoma_store.config import Settings, get_settings
from sipoma_store.domain.models import AuthResponse, Session, User
from sipoma_store.domain.results import Result
from sipoma_store.errors import (
    AuthError,
    ChannelError,
    NetworkError,
    QueryError,
    StoreError,
    from_exception,
)
from sipoma_store.infrastructure.http import AsyncHttpClient
from sipoma_store.infrastructure.realtime import (
    ChangeCallback,
    ChannelHandle,
    SocketFactory,
    connect_socket,
    join_channel,
    normalize_filter,
)
from sipoma_store.infrastructure.session_store import (
    FileSessionStore,
    MemorySessionStore,
    SessionStore,
)
from sipoma_store.utils.logging import get_logger

log = get_logger(__name__)

_UNSET = object()


def _as_auth_error(error: StoreError) -> StoreError:
    """Auth endpoint rejections surface as ``AuthError``; transport failures stay as they are."""
    if isinstance(error, (AuthError, NetworkError)):
        return error
    return AuthError(
        message=error.message,
        code=error.code,
        status_code=error.status_code,
        details=error.details,
    )


class RemoteClient:
    """
    One connection to the backend plus the current session.

    Parameters
    ----------
    settings : Settings
        Endpoint, key and tuning values.
    store : SessionStore, optional
        Where the session is persisted. Defaults to a file store at
        ``settings.session_file``, or memory when persistence is disabled.
    http : AsyncHttpClient, optional
        Injected transport (tests pass one built on ``httpx.MockTransport``).
    socket_factory : callable, optional
        Opens realtime sockets; defaults to the ``websockets`` client.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        store: Optional[SessionStore] = None,
        http: Optional[AsyncHttpClient] = None,
        socket_factory: Optional[SocketFactory] = None,
    ) -> None:
        self.settings = settings
        if store is None:
            store = (
                FileSessionStore(settings.session_file)
                if settings.persist_session
                else MemorySessionStore()
            )
        self._store = store
        self._http = http or AsyncHttpClient(
            api_key=settings.supabase_anon_key,
            timeout_seconds=settings.request_timeout_seconds,
        )
        self._socket_factory = socket_factory or connect_socket
        self._session: Any = _UNSET

    async def aclose(self) -> None:
        await self._http.aclose()

    async def __aenter__(self) -> "RemoteClient":
        return self

    async def __aexit__(self, *_: object) -> None:
        await self.aclose()

    # Session state -----------------------------------------------------

    @property
    def current_session(self) -> Optional[Session]:
        """The in-process session, rehydrated from the store on first access."""
        if self._session is _UNSET:
            self._session = self._store.load()
        return self._session

    @property
    def access_token(self) -> Optional[str]:
        session = self.current_session
        return session.access_token if session is not None else None

    def _set_session(self, session: Optional[Session]) -> None:
        self._session = session
        if session is None:
            self._store.clear()
        else:
            self._store.save(session)

    # Low-level requests ------------------------------------------------

    async def request_json(self, method: str, url: str, **kwargs: Any) -> Any:
        """
        Issue one authenticated request and decode its JSON body.

        Raises ``StoreError``; public operations catch it at their boundary.
        """
        kwargs.setdefault("token", self.access_token)
        return await self._http.request_json(method, url, **kwargs)

    async def request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        kwargs.setdefault("token", self.access_token)
        return await self._http.request(method, url, **kwargs)

    # Auth --------------------------------------------------------------

    async def get_session(self) -> Result[Session]:
        """
        Return the current session, or ``Result(data=None)`` if nobody is signed in.

        A valid cached session is returned without network I/O. An expired one
        is refreshed with a single round trip when a refresh token is available.
        """
        session = self.current_session
        if session is None:
            return Result.success(None)
        if not session.is_expired():
            return Result.success(session)
        if not (self.settings.auto_refresh_token and session.refresh_token):
            log.info("Stored session expired", extra={"user_id": session.user.id})
            self._set_session(None)
            return Result.success(None)

        result = await self.refresh_session()
        if result.ok:
            return result
        if isinstance(result.error, NetworkError):
            return result
        return Result.success(None)

    async def refresh_session(self) -> Result[Session]:
        session = self.current_session
        if session is None or not session.refresh_token:
            return Result.failure(AuthError(message="No refresh token available"))
        try:
            payload = await self._http.request_json(
                "POST",
                f"{self.settings.auth_url}/token",
                params={"grant_type": "refresh_token"},
                json={"refresh_token": session.refresh_token},
            )
            refreshed = Session.from_token_response(payload)
        except StoreError as exc:
            error = _as_auth_error(exc)
            if not isinstance(error, NetworkError):
                log.info("Session refresh rejected", extra={"user_id": session.user.id})
                self._set_session(None)
            return Result.failure(error)
        except (TypeError, ValueError) as exc:
            return Result.failure(AuthError(message=f"Malformed token response: {exc}"))
        self._set_session(refreshed)
        log.info("Session refreshed", extra={"user_id": refreshed.user.id})
        return Result.success(refreshed)

    async def sign_in(self, email: str, password: str) -> Result[Session]:
        try:
            payload = await self._http.request_json(
                "POST",
                f"{self.settings.auth_url}/token",
                params={"grant_type": "password"},
                json={"email": email, "password": password},
            )
            session = Session.from_token_response(payload)
        except StoreError as exc:
            return Result.failure(_as_auth_error(exc))
        except (TypeError, ValueError) as exc:
            return Result.failure(AuthError(message=f"Malformed token response: {exc}"))
        self._set_session(session)
        log.info("Signed in", extra={"user_id": session.user.id})
        return Result.success(session)

    async def sign_up(
        self,
        email: str,
        password: str,
        attributes: Optional[Mapping[str, Any]] = None,
    ) -> Result[AuthResponse]:
        """
        Register a new principal with optional profile ``attributes``.

        When the backend issues a session right away it is stored, the caller
        is signed in, and it is returned on ``AuthResponse.session``. While
        e-mail confirmation is pending ``session`` is None.
        """
        try:
            payload = await self._http.request_json(
                "POST",
                f"{self.settings.auth_url}/signup",
                json={"email": email, "password": password, "data": dict(attributes or {})},
            )
            if isinstance(payload, dict) and payload.get("access_token"):
                session = Session.from_token_response(payload)
                self._set_session(session)
                log.info("Signed up and signed in", extra={"user_id": session.user.id})
                return Result.success(AuthResponse(user=session.user, session=session))
            user_payload = payload.get("user", payload) if isinstance(payload, dict) else payload
            user = User.model_validate(user_payload)
        except StoreError as exc:
            return Result.failure(_as_auth_error(exc))
        except ValueError as exc:
            return Result.failure(AuthError(message=f"Malformed sign-up response: {exc}"))
        log.info("Signed up, confirmation pending", extra={"user_id": user.id})
        return Result.success(AuthResponse(user=user))

    async def sign_out(self) -> Result[None]:
        """Revoke the session remotely and always forget it locally."""
        session = self.current_session
        if session is None:
            return Result.success(None)
        error: Optional[StoreError] = None
        try:
            await self._http.request(
                "POST",
                f"{self.settings.auth_url}/logout",
                token=session.access_token,
            )
        except StoreError as exc:
            error = _as_auth_error(exc)
        self._set_session(None)
        log.info("Signed out", extra={"user_id": session.user.id})
        return Result.failure(error) if error is not None else Result.success(None)

    async def get_user(self) -> Result[User]:
        """Verify the access token with the server and return its principal."""
        session_result = await self.get_session()
        if not session_result.ok:
            return Result.failure(session_result.error)
        if session_result.data is None:
            return Result.failure(AuthError(message="Not signed in"))
        try:
            payload = await self.request_json("GET", f"{self.settings.auth_url}/user")
            return Result.success(User.model_validate(payload))
        except StoreError as exc:
            return Result.failure(_as_auth_error(exc))
        except ValueError as exc:
            return Result.failure(AuthError(message=f"Malformed user response: {exc}"))

    # Remote procedures -------------------------------------------------

    async def rpc(self, function: str, params: Optional[Mapping[str, Any]] = None) -> Result[Any]:
        try:
            data = await self.request_json(
                "POST",
                f"{self.settings.rest_url}/rpc/{function}",
                json=dict(params or {}),
            )
        except StoreError as exc:
            return Result.failure(exc)
        return Result.success(data)

    async def execute_query(self, query: str, params: Optional[Sequence[Any]] = None) -> Result[Any]:
        """Run SQL through the backend's ``execute_sql`` procedure."""
        result = await self.rpc("execute_sql", {"query": query, "params": list(params or [])})
        if not result.ok:
            log.warning("Query failed", extra={"error": result.error.message})
        return result

    # Realtime ----------------------------------------------------------

    def _realtime_url(self) -> str:
        query = urlencode(
            {
                "apikey": self.settings.supabase_anon_key,
                "eventsPerSecond": self.settings.realtime_events_per_second,
                "vsn": "1.0.0",
            }
        )
        return f"{self.settings.realtime_url}?{query}"

    async def open_channel(
        self,
        collection: str,
        event_filter: Optional[str] = None,
    ) -> Result[ChannelHandle]:
        """
        Join the change channel for ``collection``.

        ``event_filter`` is evaluated by the server, e.g. ``"status=eq.active"``.
        No retry is attempted on failure. A malformed filter is a ``QueryError``
        and no connection is opened.
        """
        try:
            event_filter = normalize_filter(event_filter)
        except ValueError as exc:
            return Result.failure(QueryError(message=str(exc)))
        try:
            socket = await self._socket_factory(self._realtime_url())
        except (OSError, TimeoutError, WebSocketException) as exc:
            return Result.failure(
                ChannelError(message=f"Could not connect to realtime: {from_exception(exc).message}", retryable=True)
            )
        try:
            handle = await join_channel(
                socket,
                collection=collection,
                schema=self.settings.db_schema,
                event_filter=event_filter,
                access_token=self.access_token or self.settings.supabase_anon_key,
                join_timeout_seconds=self.settings.realtime_join_timeout_seconds,
                heartbeat_seconds=self.settings.realtime_heartbeat_seconds,
            )
        except ChannelError as exc:
            await socket.close()
            log.warning("Realtime join failed", extra={"collection": collection, "reason": exc.message})
            return Result.failure(exc)
        return Result.success(handle)

    async def subscribe(
        self,
        collection: str,
        callback: ChangeCallback,
        event_filter: Optional[str] = None,
    ) -> Result[ChannelHandle]:
        result = await self.open_channel(collection, event_filter)
        if result.ok:
            result.data.on(callback)
        return result


# Process default -------------------------------------------------------

_default_client: Optional[RemoteClient] = None
_default_params: Optional[Dict[str, Any]] = None
_default_lock = threading.Lock()


def initialize(
    url: Optional[str] = None,
    key: Optional[str] = None,
    **options: Any,
) -> RemoteClient:
    """
    Build the process-wide default client.

    Calling again with the same parameters returns the same client. Calling
    with different parameters is not supported and raises ``RuntimeError``.
    ``options`` override other ``Settings`` fields by name.
    """
    global _default_client, _default_params
    params = {"url": url, "key": key, **options}
    with _default_lock:
        if _default_client is not None:
            if params != _default_params:
                raise RuntimeError("Remote client already initialized with different parameters")
            return _default_client

        overrides: Dict[str, Any] = dict(options)
        if url is not None:
            overrides["supabase_url"] = url
        if key is not None:
            overrides["supabase_anon_key"] = key
        settings = get_settings().model_copy(update=overrides) if overrides else get_settings()
        _default_client = RemoteClient(settings)
        _default_params = params
        log.info("Remote client initialized", extra={"url": settings.supabase_url})
        return _default_client


def get_client() -> RemoteClient:
    """Return the default client, initializing it from settings on first use."""
    if _default_client is None:
        return initialize()
    return _default_client


def reset_client() -> None:
    """Forget the default client (tests)."""
    global _default_client, _default_params
    with _default_lock:
        _default_client = None
        _default_params = None


async def get_session() -> Result[Session]:
    return await get_client().get_session()


async def sign_in(email: str, password: str) -> Result[Session]:
    return await get_client().sign_in(email, password)


async def sign_up(
    email: str,
    password: str,
    attributes: Optional[Mapping[str, Any]] = None,
) -> Result[AuthResponse]:
    return await get_client().sign_up(email, password, attributes)


async def sign_out() -> Result[None]:
    return await get_client().sign_out()


async def subscribe_to_collection(
    name: str,
    callback: ChangeCallback,
    event_filter: Optional[str] = None,
) -> Result[ChannelHandle]:
    return await get_client().subscribe(name, callback, event_filter)


__all__ = [
    "RemoteClient",
    "initialize",
    "get_client",
    "reset_client",
    "get_session",
    "sign_in",
    "sign_up",
    "sign_out",
    "subscribe_to_collection",
]
