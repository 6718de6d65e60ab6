"""
Session persistence for SIPOMA Store.

The remote client saves the token bundle after every sign-in or refresh and
rehydrates it on first use, so a restarted process resumes the signed-in
session without a fresh ``sign_in`` call.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Optional, Protocol, runtime_checkable

from pydantic import ValidationError as PydanticValidationError

from sipoma_store.domain.models import Session
from sipoma_store.utils.logging import get_logger

log = get_logger(__name__)


@runtime_checkable
class SessionStore(Protocol):
    """Durable home for the current session (or its absence)."""

    def load(self) -> Optional[Session]:
        ...

    def save(self, session: Session) -> None:
        ...

    def clear(self) -> None:
        ...


class MemorySessionStore:
    """Process-local store; used in tests and when persistence is disabled."""

    def __init__(self, session: Optional[Session] = None) -> None:
        self._session = session

    def load(self) -> Optional[Session]:
        return self._session

    def save(self, session: Session) -> None:
        self._session = session

    def clear(self) -> None:
        self._session = None


class FileSessionStore:
    """
    JSON file store, readable only by the owning user.

    An unreadable or corrupt file is treated as "no session".
    """

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path).expanduser()

    def load(self) -> Optional[Session]:
        if not self.path.exists():
            return None
        try:
            return Session.model_validate_json(self.path.read_text(encoding="utf-8"))
        except (OSError, PydanticValidationError) as exc:
            log.warning(
                "Ignoring unreadable session file",
                extra={"path": str(self.path), "error": type(exc).__name__},
            )
            return None

    def save(self, session: Session) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        fd = os.open(tmp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(session.model_dump_json())
        os.replace(tmp_path, self.path)

    def clear(self) -> None:
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass


__all__ = ["SessionStore", "MemorySessionStore", "FileSessionStore"]
