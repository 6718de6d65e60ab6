"""
Configuration settings for SIPOMA Store.

Uses Pydantic Settings to load environment variables for the hosted backend
endpoint and key, session persistence, realtime channel tuning, and logging.
"""
from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Backend
    supabase_url: str = Field("http://localhost:54321", alias="SUPABASE_URL")
    supabase_anon_key: str = Field("", alias="SUPABASE_ANON_KEY")
    db_schema: str = Field("public", alias="SUPABASE_SCHEMA")
    request_timeout_seconds: float = Field(10.0, alias="REQUEST_TIMEOUT_SECONDS")
    default_page_size: int = Field(10, alias="DEFAULT_PAGE_SIZE")

    # Auth
    auto_refresh_token: bool = Field(True, alias="AUTO_REFRESH_TOKEN")
    persist_session: bool = Field(True, alias="PERSIST_SESSION")
    session_file: Path = Field(Path("~/.sipoma/session.json"), alias="SESSION_FILE")

    # Realtime
    realtime_heartbeat_seconds: float = Field(30.0, alias="REALTIME_HEARTBEAT_SECONDS")
    realtime_join_timeout_seconds: float = Field(10.0, alias="REALTIME_JOIN_TIMEOUT_SECONDS")
    realtime_events_per_second: int = Field(10, alias="REALTIME_EVENTS_PER_SECOND")

    # Application
    app_env: str = Field("development", alias="APP_ENV")
    log_level: str = Field("INFO", alias="LOG_LEVEL")
    log_json: bool = Field(False, alias="LOG_JSON")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    @property
    def rest_url(self) -> str:
        return f"{self.supabase_url.rstrip('/')}/rest/v1"

    @property
    def auth_url(self) -> str:
        return f"{self.supabase_url.rstrip('/')}/auth/v1"

    @property
    def storage_url(self) -> str:
        return f"{self.supabase_url.rstrip('/')}/storage/v1"

    @property
    def realtime_url(self) -> str:
        base = self.supabase_url.rstrip("/")
        if base.startswith("https://"):
            base = "wss://" + base[len("https://") :]
        elif base.startswith("http://"):
            base = "ws://" + base[len("http://") :]
        return f"{base}/realtime/v1/websocket"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Retrieve a cached instance of Settings to avoid repeated env parsing.
    """
    return Settings()


__all__ = ["Settings", "get_settings"]
