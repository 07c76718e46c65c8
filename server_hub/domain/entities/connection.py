"""Domain entity describing a live realtime connection."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol


class ConnectionTransport(Protocol):
    """Bidirectional message channel owned by a single connection."""

    async def send_json(self, message: dict[str, Any]) -> None:
        ...

    async def close(self, code: int = 1000) -> None:
        ...


@dataclass(eq=False)
class Connection:
    """A transport session bound to an authenticated user.

    ``last_delivered_seq`` is the highest sequence pushed through ``transport``;
    ``last_acknowledged_seq`` never exceeds it once the session is live.
    """

    connection_id: str
    user_id: int
    transport: ConnectionTransport
    scopes: set[str] = field(default_factory=set)
    last_acknowledged_seq: int = 0
    last_delivered_seq: int = 0
    last_seen_at: datetime | None = None
    connected_at: datetime | None = None


__all__ = ["Connection", "ConnectionTransport"]
