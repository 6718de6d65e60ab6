"""
File-object storage helpers (avatars, report attachments).

Objects live in named buckets on the backend; this module only moves bytes
and builds URLs.
"""

from __future__ import annotations

from typing import Optional
from urllib.parse import quote

from sipoma_store.domain.results import Result
from sipoma_store.errors import QueryError, StoreError
from sipoma_store.infrastructure.client import RemoteClient


def _object_path(bucket: str, path: str) -> str:
    return f"{quote(bucket)}/{quote(path.lstrip('/'))}"


async def upload(
    client: RemoteClient,
    bucket: str,
    path: str,
    content: bytes,
    content_type: Optional[str] = None,
    upsert: bool = False,
) -> Result[str]:
    """Store ``content`` and return the object key reported by the backend."""
    headers = {
        "Content-Type": content_type or "application/octet-stream",
        "x-upsert": "true" if upsert else "false",
    }
    try:
        payload = await client.request_json(
            "POST",
            f"{client.settings.storage_url}/object/{_object_path(bucket, path)}",
            content=content,
            headers=headers,
        )
    except StoreError as exc:
        return Result.failure(exc)
    if not isinstance(payload, dict) or not isinstance(payload.get("Key"), str):
        return Result.failure(QueryError(message="Upload response did not include an object key"))
    return Result.success(payload["Key"])


async def download(client: RemoteClient, bucket: str, path: str) -> Result[bytes]:
    try:
        response = await client.request(
            "GET",
            f"{client.settings.storage_url}/object/{_object_path(bucket, path)}",
        )
    except StoreError as exc:
        return Result.failure(exc)
    return Result.success(response.content)


def public_url(client: RemoteClient, bucket: str, path: str) -> str:
    """URL of an object in a public bucket. No network I/O."""
    return f"{client.settings.storage_url}/object/public/{_object_path(bucket, path)}"


__all__ = ["upload", "download", "public_url"]
