"""Authenticate incoming connections and bind them into the registry."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from datetime import datetime
from uuid import uuid4

from anyio import to_thread

from server_hub.domain.entities import Connection, ConnectionTransport
from server_hub.domain.exceptions import AuthFailure
from server_hub.utils import now_in_app_timezone

from .registry import ConnectionRegistry
from .store import NotificationStore

logger = logging.getLogger(__name__)

IdentityResolver = Callable[[str], int]


class SessionBinder:
    """Turn a raw transport plus a claimed token into a registered :class:`Connection`."""

    def __init__(
        self,
        registry: ConnectionRegistry,
        store: NotificationStore,
        resolve_identity: IdentityResolver,
        *,
        clock: Callable[[], datetime] = now_in_app_timezone,
    ) -> None:
        self._registry = registry
        self._store = store
        self._resolve_identity = resolve_identity
        self._clock = clock

    async def bind(
        self,
        transport: ConnectionTransport,
        token: str | None,
        scopes: Iterable[str] = (),
        *,
        resume_after: int | None = None,
    ) -> Connection:
        """Authenticate ``token`` and register the resulting connection.

        Raises :class:`AuthFailure` without touching the registry when the token
        cannot be resolved. Requested scopes the user is not a member of are
        ignored. ``resume_after`` overrides the stored acknowledgement cursor and is
        clamped to the highest sequence stored for the user.
        """

        if not token:
            raise AuthFailure("Missing token")

        # Identity resolution may block on the database; no registry lock is held here.
        user_id = await to_thread.run_sync(self._resolve_identity, token)

        requested = {scope.strip() for scope in scopes if scope and scope.strip()}
        allowed = await self._store.member_scopes(user_id, requested) if requested else set()
        if requested - allowed:
            logger.info(
                "User %s is not a member of %s; subscription skipped",
                user_id,
                sorted(requested - allowed),
            )

        if resume_after is None:
            cursor = await self._store.get_resume_cursor(user_id)
        else:
            # A client cursor can never point past what was actually stored.
            last_seq = await self._store.get_last_sequence(user_id)
            cursor = min(max(resume_after, 0), last_seq)
            if cursor != resume_after:
                logger.info(
                    "Clamped resume cursor %s of user %s to %s",
                    resume_after,
                    user_id,
                    cursor,
                )

        now = self._clock()
        connection = Connection(
            connection_id=uuid4().hex,
            user_id=user_id,
            transport=transport,
            scopes=set(allowed),
            last_acknowledged_seq=cursor,
            last_delivered_seq=cursor,
            last_seen_at=now,
            connected_at=now,
        )
        self._registry.register(connection)
        logger.info(
            "Bound connection %s for user %s (scopes=%s, cursor=%s)",
            connection.connection_id,
            user_id,
            sorted(allowed),
            cursor,
        )
        return connection


__all__ = ["IdentityResolver", "SessionBinder"]
