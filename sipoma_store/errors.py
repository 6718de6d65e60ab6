"""
Error taxonomy for SIPOMA Store and normalization of backend failures.

Every public operation hands these back inside a ``Result`` rather than raising
them. They are still ``Exception`` subclasses so a caller that prefers
exceptions can ``raise`` them (see ``Result.unwrap``).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

import httpx


@dataclass(frozen=True)
class StoreError(Exception):
    """Base error for any failed store, auth, or channel operation."""

    message: str
    code: Optional[str] = None
    status_code: Optional[int] = None
    details: Mapping[str, Any] = field(default_factory=dict, hash=False, compare=False)
    retryable: bool = False

    def __str__(self) -> str:
        return self.message


@dataclass(frozen=True)
class NetworkError(StoreError):
    """Transport unreachable or timed out. Safe to retry."""

    retryable: bool = True


@dataclass(frozen=True)
class AuthError(StoreError):
    """Invalid credentials, missing/expired session, or insufficient permission."""


@dataclass(frozen=True)
class ValidationError(StoreError):
    """Remote constraint violation on create/update."""


@dataclass(frozen=True)
class ConflictError(ValidationError):
    """Uniqueness or state conflict reported by the backend."""


@dataclass(frozen=True)
class NotFoundError(StoreError):
    """The targeted identifier matched no row."""


@dataclass(frozen=True)
class QueryError(StoreError):
    """Malformed request, or a response that failed record validation."""


@dataclass(frozen=True)
class ChannelError(StoreError):
    """Realtime channel could not be joined, or was closed by the server."""


# PostgREST codes, see https://postgrest.org/en/stable/references/errors.html
_AUTH_CODES = frozenset({"42501", "PGRST301", "PGRST302", "invalid_grant", "invalid_credentials"})
_NOT_FOUND_CODES = frozenset({"PGRST116", "user_not_found"})
_CONFLICT_CODES = frozenset({"23505", "user_already_exists", "email_exists"})
_NETWORK_STATUSES = frozenset({502, 503, 504})


def _payload_message(payload: Mapping[str, Any]) -> Optional[str]:
    for key in ("message", "error_description", "msg", "error"):
        value = payload.get(key)
        if isinstance(value, str) and value:
            return value
    return None


def _payload_code(payload: Mapping[str, Any]) -> Optional[str]:
    for key in ("error_code", "code", "error"):
        value = payload.get(key)
        if isinstance(value, (str, int)) and not isinstance(value, bool):
            return str(value)
    return None


def classify(
    message: str,
    *,
    code: Optional[str] = None,
    status_code: Optional[int] = None,
    details: Optional[Mapping[str, Any]] = None,
) -> StoreError:
    """Pick the taxonomy member for a backend code and/or HTTP status."""
    kwargs = {
        "message": message,
        "code": code,
        "status_code": status_code,
        "details": dict(details or {}),
    }
    if code in _AUTH_CODES:
        return AuthError(**kwargs)
    if code in _NOT_FOUND_CODES:
        return NotFoundError(**kwargs)
    if code in _CONFLICT_CODES:
        return ConflictError(**kwargs)
    if code and len(code) == 5 and code[:2] in ("22", "23"):
        return ValidationError(**kwargs)
    if status_code in (401, 403):
        return AuthError(**kwargs)
    if status_code == 404:
        return NotFoundError(**kwargs)
    if status_code == 409:
        return ConflictError(**kwargs)
    if status_code == 422:
        return ValidationError(**kwargs)
    if status_code in _NETWORK_STATUSES:
        return NetworkError(**kwargs)
    return QueryError(**kwargs)


def from_response(response: httpx.Response) -> StoreError:
    """Normalize a non-success HTTP response into a ``StoreError``."""
    try:
        payload = response.json()
    except ValueError:
        payload = None

    request = response.request
    fallback = f"HTTP {response.status_code} for {request.method} {request.url.path}"
    if isinstance(payload, Mapping):
        message = _payload_message(payload) or fallback
        details = {k: v for k, v in payload.items() if k in ("details", "hint")}
        return classify(
            message,
            code=_payload_code(payload),
            status_code=response.status_code,
            details=details,
        )
    return classify(fallback, status_code=response.status_code)


def from_exception(exc: BaseException) -> StoreError:
    """Normalize a transport-level exception into a ``StoreError``."""
    if isinstance(exc, StoreError):
        return exc
    if isinstance(exc, httpx.TimeoutException):
        return NetworkError(message=f"Request timed out: {exc}" if str(exc) else "Request timed out")
    if isinstance(exc, (httpx.TransportError, OSError, TimeoutError)):
        return NetworkError(message=str(exc) or type(exc).__name__)
    return QueryError(message=str(exc) or type(exc).__name__)


__all__ = [
    "StoreError",
    "NetworkError",
    "AuthError",
    "ValidationError",
    "ConflictError",
    "NotFoundError",
    "QueryError",
    "ChannelError",
    "classify",
    "from_response",
    "from_exception",
]
