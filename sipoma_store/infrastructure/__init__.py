"""
Infrastructure package for SIPOMA Store.

Centralizes backend connectivity: the HTTP transport, the remote session
client, session persistence, realtime channels, and file storage. Keep this
layer focused on I/O and resource management, decoupled from table logic.
"""

from sipoma_store.infrastructure.client import (
    RemoteClient,
    get_client,
    get_session,
    initialize,
    reset_client,
    sign_in,
    sign_out,
    sign_up,
    subscribe_to_collection,
)
from sipoma_store.infrastructure.realtime import ChannelHandle, join_channel, normalize_filter
from sipoma_store.infrastructure.session_store import FileSessionStore, MemorySessionStore, SessionStore
from sipoma_store.infrastructure.storage import download, public_url, upload

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
    "ChannelHandle",
    "join_channel",
    "normalize_filter",
    "SessionStore",
    "FileSessionStore",
    "MemorySessionStore",
    "upload",
    "download",
    "public_url",
]
