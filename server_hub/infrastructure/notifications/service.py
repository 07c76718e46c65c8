"""Wiring of the realtime delivery components for one application instance."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import timedelta

from sqlalchemy.orm import Session

from server_hub.config import Settings
from server_hub.domain.entities import Connection, ConnectionTransport
from server_hub.domain.exceptions import StoreUnavailable

from .binder import IdentityResolver, SessionBinder
from .dispatcher import DeliveryDispatcher
from .reconciler import ReconnectionReconciler
from .registry import ConnectionRegistry
from .store import NotificationStore

logger = logging.getLogger(__name__)

CLOSE_CODE_IDLE = 1001
CLOSE_CODE_STORE_UNAVAILABLE = 1011


@dataclass
class NotificationDelivery:
    """Registry, binder, dispatcher and reconciler sharing one connection index."""

    registry: ConnectionRegistry
    store: NotificationStore
    binder: SessionBinder
    dispatcher: DeliveryDispatcher
    reconciler: ReconnectionReconciler
    idle_timeout: timedelta = field(default=timedelta(seconds=120))

    async def connect(
        self,
        transport: ConnectionTransport,
        token: str | None,
        scopes: Iterable[str] = (),
        *,
        resume_after: int | None = None,
    ) -> Connection:
        """Bind a new connection and replay what it missed.

        The replay starts before control returns to the event loop, so it takes
        the push order of the connection ahead of any live delivery.
        """

        connection = await self.binder.bind(
            transport, token, scopes, resume_after=resume_after
        )
        try:
            await self.reconciler.reconcile(connection)
        except StoreUnavailable:
            await self.dispatcher.drop(
                connection.connection_id, code=CLOSE_CODE_STORE_UNAVAILABLE
            )
            raise
        return connection

    async def disconnect(self, connection_id: str) -> None:
        await self.dispatcher.drop(connection_id)

    async def expire_idle(self) -> int:
        """Drop connections that stayed silent longer than ``idle_timeout``."""

        expired = self.registry.expire_idle(self.idle_timeout)
        for connection in expired:
            await self.dispatcher.close(connection, code=CLOSE_CODE_IDLE)
        return len(expired)

    async def aclose(self) -> None:
        for connection in self.registry.connections():
            await self.dispatcher.drop(connection.connection_id)
        await self.dispatcher.aclose()


def build_notification_delivery(
    settings: Settings,
    session_factory: Callable[[], Session],
    resolve_identity: IdentityResolver,
) -> NotificationDelivery:
    """Create the delivery components configured from ``settings``."""

    registry = ConnectionRegistry()
    store = NotificationStore(session_factory)
    dispatcher = DeliveryDispatcher(
        registry,
        store,
        attempts=settings.push_attempts,
        backoff_base=settings.push_backoff_base_seconds,
        timeout=settings.push_timeout_seconds,
    )
    return NotificationDelivery(
        registry=registry,
        store=store,
        binder=SessionBinder(registry, store, resolve_identity),
        dispatcher=dispatcher,
        reconciler=ReconnectionReconciler(
            store, dispatcher, page_size=settings.replay_page_size
        ),
        idle_timeout=timedelta(seconds=settings.connection_idle_timeout_seconds),
    )


__all__ = ["NotificationDelivery", "build_notification_delivery"]
