"""
SIPOMA Store - typed data access for the SIPOMA operations dashboard.

This package wraps the dashboard's hosted Postgres backend (REST query
endpoint, auth endpoint, realtime channels, and file storage) behind:

- A remote session client holding the connection and the signed-in session
- Typed table accessors with uniform CRUD, bulk, and subscribe operations
- A change-notification bridge that turns realtime frames into typed events

Every operation returns a ``Result`` carrying either data or an error value.
"""

from __future__ import annotations

__version__ = "0.1.0"
__license__ = "MIT"

# Public API exports
from sipoma_store.config import Settings, get_settings
from sipoma_store.domain.models import (
    AuthResponse,
    ChangeEvent,
    ChangeKind,
    OrderBy,
    QueryOptions,
    RemoteRecord,
    Session,
    User,
)
from sipoma_store.domain.results import BulkResult, ItemError, Result
from sipoma_store.errors import (
    AuthError,
    ChannelError,
    ConflictError,
    NetworkError,
    NotFoundError,
    QueryError,
    StoreError,
    ValidationError,
)
from sipoma_store.infrastructure.client import (
    RemoteClient,
    get_client,
    get_session,
    initialize,
    sign_in,
    sign_out,
    sign_up,
    subscribe_to_collection,
)
from sipoma_store.infrastructure.realtime import ChannelHandle
from sipoma_store.tables.accessor import ChangeStream, TableAccessor
from sipoma_store.utils.logging import configure_logging, get_logger

__all__ = [
    # Version info
    "__version__",
    "__license__",
    # Configuration
    "Settings",
    "get_settings",
    # Session client
    "RemoteClient",
    "initialize",
    "get_client",
    "get_session",
    "sign_in",
    "sign_up",
    "sign_out",
    "subscribe_to_collection",
    # Table access
    "TableAccessor",
    "ChangeStream",
    "ChannelHandle",
    # Values
    "Result",
    "BulkResult",
    "ItemError",
    "QueryOptions",
    "OrderBy",
    "RemoteRecord",
    "ChangeEvent",
    "ChangeKind",
    "Session",
    "User",
    "AuthResponse",
    # Errors
    "StoreError",
    "NetworkError",
    "AuthError",
    "ValidationError",
    "ConflictError",
    "NotFoundError",
    "QueryError",
    "ChannelError",
    # Logging
    "configure_logging",
    "get_logger",
]
