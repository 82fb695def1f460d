"""
Pydantic models for the DonorHub real-time client.

Server payloads use camelCase and Mongo-style ``_id`` fields; the models
expose snake_case attributes and accept either spelling.
"""

from __future__ import annotations

import time
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, NamedTuple

from pydantic import BaseModel, Field, ValidationInfo, field_validator


# ============================================================
#  Configuration
# ============================================================


class ReconnectConfig(BaseModel):
    """WebSocket reconnection settings."""

    max_retries: int = 5
    initial_delay_ms: int = 1000
    max_delay_ms: int = 5000

    def delay_for(self, attempt: int) -> float:
        """Backoff delay in seconds before retry number ``attempt`` (1-based)."""
        delay_ms = self.initial_delay_ms * (2 ** max(attempt - 1, 0))
        return min(delay_ms, self.max_delay_ms) / 1000.0


class CoordinatorConfig(BaseModel):
    """Configuration for a per-session real-time coordinator."""

    api_url: str
    socket_url: str | None = None
    request_timeout: float = 30.0
    toast_ttl_ms: int = 4000
    celebration_duration_ms: int = 1500
    inbox_page_size: int = 20
    org_roles: frozenset[str] = frozenset({"ngo_admin"})
    reconnect: ReconnectConfig = Field(default_factory=ReconnectConfig)

    def resolved_socket_url(self) -> str:
        """Socket endpoint, derived from ``api_url`` unless set explicitly."""
        if self.socket_url:
            return self.socket_url
        base = self.api_url.rstrip("/")
        if base.endswith("/api"):
            base = base[: -len("/api")]
        return base.replace("http://", "ws://").replace("https://", "wss://")


# ============================================================
#  Session & connection
# ============================================================


class Session(BaseModel):
    """Authenticated session; drives the connection lifecycle."""

    identity: str = Field(alias="id")
    auth_token: str = Field("", alias="token")
    role: str = "user"
    org_id: str | None = Field(None, alias="ngo")

    model_config = {"populate_by_name": True}

    @property
    def is_authenticated(self) -> bool:
        return bool(self.identity) and bool(self.auth_token)


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"


# ============================================================
#  Events
# ============================================================


class RealtimeEvent(BaseModel):
    """A server-pushed event delivered over the socket.

    Wire frames look like ``{"type": "donation:accepted", "data": {...}}``.
    ``payload`` is usually a dict, but delete events carry a bare id.
    """

    name: str = Field(alias="type")
    payload: Any = Field(None, alias="data")
    received_at: float = Field(default_factory=time.time)

    model_config = {"populate_by_name": True}

    @property
    def resource(self) -> str:
        return self.name.split(":", 1)[0]

    def field(self, key: str, default: Any = None) -> Any:
        """Read ``key`` from a dict payload; ``default`` for anything else."""
        if isinstance(self.payload, dict):
            value = self.payload.get(key)
            return default if value is None else value
        return default


# ============================================================
#  Query cache
# ============================================================


class CacheKey(NamedTuple):
    """``(resource, id)``; ``id=None`` addresses the collection."""

    resource: str
    id: str | None = None

    def __str__(self) -> str:
        return self.resource if self.id is None else f"{self.resource}/{self.id}"


class CacheEntry(BaseModel):
    key: CacheKey
    value: Any = None
    last_fetched_at: float | None = None
    is_stale: bool = True

    @property
    def has_value(self) -> bool:
        return self.last_fetched_at is not None


# ============================================================
#  Notifications & toasts
# ============================================================


_TEXT_DEFAULTS = {"category": "general", "title": "Notification", "message": ""}


def _new_id() -> str:
    return uuid.uuid4().hex


class Notification(BaseModel):
    """A durable inbox notification."""

    id: str = Field(default_factory=_new_id, alias="_id")
    category: str = Field("general", alias="type")
    title: str = "Notification"
    message: str = ""
    created_at: str | None = Field(None, alias="createdAt")
    is_read: bool = Field(False, alias="isRead")
    data: dict[str, Any] | None = None

    model_config = {"populate_by_name": True}

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> Any:
        if value is None or value == "":
            return _new_id()
        return str(value)

    @field_validator("category", "title", "message", mode="before")
    @classmethod
    def _drop_null_text(cls, value: Any, info: ValidationInfo) -> Any:
        if value is None:
            return _TEXT_DEFAULTS[info.field_name]
        return str(value)

    @field_validator("created_at", mode="before")
    @classmethod
    def _coerce_timestamp(cls, value: Any) -> Any:
        # The server sends ISO strings; epoch milliseconds also appear.
        if value is None or isinstance(value, str):
            return value
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            try:
                return datetime.fromtimestamp(value / 1000, tz=timezone.utc).isoformat()
            except (OverflowError, OSError, ValueError):
                return None
        return None

    @field_validator("is_read", mode="before")
    @classmethod
    def _coerce_read_flag(cls, value: Any) -> Any:
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            return value.strip().lower() in ("true", "1", "yes")
        if isinstance(value, (int, float)):
            return value != 0
        return False

    @field_validator("data", mode="before")
    @classmethod
    def _drop_non_mapping_data(cls, value: Any) -> Any:
        return value if isinstance(value, dict) else None


class ToastMessage(BaseModel):
    """An ephemeral, auto-expiring notice."""

    id: str = Field(default_factory=_new_id)
    icon: str = "🔔"
    text: str
    created_at: float = Field(default_factory=time.monotonic)
    ttl: float

    @property
    def expires_at(self) -> float:
        return self.created_at + self.ttl


# ============================================================
#  Gamification
# ============================================================


class CelebrationState(str, Enum):
    IDLE = "idle"
    CELEBRATING = "celebrating"


class GamificationState(BaseModel):
    """Displayed progression; every value is server-declared."""

    points: int = Field(0, ge=0)
    level: int = Field(1, ge=1)
    badges: set[str] = Field(default_factory=set)
    celebration: CelebrationState = CelebrationState.IDLE
