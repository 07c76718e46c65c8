"""In-memory index of live realtime connections.

Connections are indexed by owning user and by subscribed scope. Each index
bucket is protected by one of a fixed set of striped locks so that unrelated
users and scopes never contend; a small index lock guards the authoritative
``connection_id -> Connection`` map. A registration becomes visible to lookups
at the moment it is published into that map and disappears the moment it is
removed from it, so lookups never return a connection whose deregistration
has completed.

No method performs I/O or awaits while holding a lock.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Hashable, Iterable
from datetime import datetime, timedelta

from server_hub.domain.entities import Connection
from server_hub.domain.exceptions import DuplicateRegistration, InvalidAcknowledgement
from server_hub.utils import now_in_app_timezone

logger = logging.getLogger(__name__)


class _StripedLocks:
    def __init__(self, stripes: int) -> None:
        self._locks = tuple(threading.Lock() for _ in range(stripes))

    def __call__(self, key: Hashable) -> threading.Lock:
        return self._locks[hash(key) % len(self._locks)]


class ConnectionRegistry:
    """Track live connections per user and per tenant scope."""

    def __init__(
        self,
        *,
        stripes: int = 32,
        clock: Callable[[], datetime] = now_in_app_timezone,
    ) -> None:
        self._clock = clock
        self._index_lock = threading.Lock()
        self._connections: dict[str, Connection] = {}
        self._reserved: set[str] = set()
        self._identity_lock = _StripedLocks(stripes)
        self._scope_lock = _StripedLocks(stripes)
        self._by_identity: dict[int, set[str]] = {}
        self._by_scope: dict[str, set[str]] = {}

    def __len__(self) -> int:
        with self._index_lock:
            return len(self._connections)

    def register(self, connection: Connection) -> None:
        """Add ``connection`` to every index it belongs to.

        Raises :class:`DuplicateRegistration` when the id is already registered
        or a registration with the same id is in progress.
        """

        connection_id = connection.connection_id
        with self._index_lock:
            if connection_id in self._connections or connection_id in self._reserved:
                raise DuplicateRegistration(connection_id)
            self._reserved.add(connection_id)

        if connection.last_seen_at is None:
            connection.last_seen_at = self._clock()

        with self._identity_lock(connection.user_id):
            self._by_identity.setdefault(connection.user_id, set()).add(connection_id)
        for scope_id in set(connection.scopes):
            with self._scope_lock(scope_id):
                self._by_scope.setdefault(scope_id, set()).add(connection_id)

        with self._index_lock:
            self._reserved.discard(connection_id)
            self._connections[connection_id] = connection
        logger.debug(
            "Registered connection %s for user %s", connection_id, connection.user_id
        )

    def deregister(self, connection_id: str) -> Connection | None:
        """Remove ``connection_id``; unknown ids are ignored."""

        with self._index_lock:
            connection = self._connections.pop(connection_id, None)
            if connection is None:
                return None
            scopes = set(connection.scopes)

        with self._identity_lock(connection.user_id):
            self._discard(self._by_identity, connection.user_id, connection_id)
        for scope_id in scopes:
            with self._scope_lock(scope_id):
                self._discard(self._by_scope, scope_id, connection_id)
        logger.debug(
            "Deregistered connection %s for user %s", connection_id, connection.user_id
        )
        return connection

    def get(self, connection_id: str) -> Connection | None:
        with self._index_lock:
            return self._connections.get(connection_id)

    def lookup(self, user_id: int) -> set[str]:
        """Return the ids of the live connections owned by ``user_id``."""

        with self._identity_lock(user_id):
            candidates = set(self._by_identity.get(user_id, ()))
        return self._live(candidates)

    def lookup_by_scope(self, scope_id: str) -> set[str]:
        """Return the ids of the live connections subscribed to ``scope_id``."""

        with self._scope_lock(scope_id):
            candidates = set(self._by_scope.get(scope_id, ()))
        return self._live(candidates)

    def subscribe(self, connection_id: str, scope_id: str) -> bool:
        """Subscribe a live connection to ``scope_id``.

        Returns ``False`` when the connection is no longer registered.
        """

        with self._scope_lock(scope_id):
            with self._index_lock:
                connection = self._connections.get(connection_id)
                if connection is None:
                    return False
                connection.scopes.add(scope_id)
            self._by_scope.setdefault(scope_id, set()).add(connection_id)
        return True

    def unsubscribe(self, connection_id: str, scope_id: str) -> bool:
        with self._scope_lock(scope_id):
            with self._index_lock:
                connection = self._connections.get(connection_id)
                if connection is None:
                    return False
                connection.scopes.discard(scope_id)
            self._discard(self._by_scope, scope_id, connection_id)
        return True

    def touch(self, connection_id: str) -> None:
        """Refresh the liveness timestamp of ``connection_id``."""

        now = self._clock()
        with self._index_lock:
            connection = self._connections.get(connection_id)
            if connection is not None:
                connection.last_seen_at = now

    def record_delivery(self, connection_id: str, sequence: int) -> None:
        with self._index_lock:
            connection = self._connections.get(connection_id)
            if connection is not None and sequence > connection.last_delivered_seq:
                connection.last_delivered_seq = sequence

    def acknowledge(self, connection_id: str, sequence: int) -> Connection:
        """Advance the acknowledgement cursor of ``connection_id``.

        Acknowledgements never move backwards and may not exceed the highest
        sequence delivered to the connection.
        """

        with self._index_lock:
            connection = self._connections.get(connection_id)
            if connection is None:
                raise KeyError(connection_id)
            if sequence > connection.last_delivered_seq:
                raise InvalidAcknowledgement(
                    f"Sequence {sequence} was never delivered to this connection"
                )
            if sequence > connection.last_acknowledged_seq:
                connection.last_acknowledged_seq = sequence
            return connection

    def expire_idle(
        self, timeout: timedelta, *, now: datetime | None = None
    ) -> list[Connection]:
        """Deregister and return connections silent for longer than ``timeout``."""

        deadline = (now or self._clock()) - timeout
        with self._index_lock:
            stale = [
                connection_id
                for connection_id, connection in self._connections.items()
                if connection.last_seen_at is not None and connection.last_seen_at < deadline
            ]
        expired = []
        for connection_id in stale:
            connection = self.deregister(connection_id)
            if connection is not None:
                expired.append(connection)
        if expired:
            logger.info("Expired %s idle connection(s)", len(expired))
        return expired

    def connections(self) -> list[Connection]:
        with self._index_lock:
            return list(self._connections.values())

    def _live(self, candidates: Iterable[str]) -> set[str]:
        with self._index_lock:
            return {
                connection_id
                for connection_id in candidates
                if connection_id in self._connections
            }

    @staticmethod
    def _discard(index: dict, key: Hashable, connection_id: str) -> None:
        bucket = index.get(key)
        if bucket is None:
            return
        bucket.discard(connection_id)
        if not bucket:
            index.pop(key, None)


__all__ = ["ConnectionRegistry"]
