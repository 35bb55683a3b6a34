"""Connection state and engine status snapshot."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum

from pydantic import Field

from pydht.models._base import DhtBaseModel


class ConnectionState(StrEnum):
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


class EngineStatus(DhtBaseModel):
    """Point-in-time view of the live feed and buffer."""

    connection: ConnectionState
    last_update: datetime | None = None
    last_error: str | None = None
    total_stored: int = Field(default=0, ge=0)
    backfill_loaded: int = Field(default=0, ge=0)
