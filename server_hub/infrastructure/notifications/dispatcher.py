"""Push freshly stored notifications to the live connections of their recipient."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Coroutine
from contextlib import asynccontextmanager
from typing import Any

import anyio
from anyio import from_thread

from server_hub.domain.entities import Connection, NotificationRecord
from server_hub.domain.exceptions import DeliveryExhausted, StoreUnavailable

from .registry import ConnectionRegistry
from .store import NotificationStore

logger = logging.getLogger(__name__)

CLOSE_CODE_DELIVERY_FAILED = 1011


def serialize_notification(record: NotificationRecord) -> dict[str, Any]:
    """Return the websocket payload representation for ``record``."""

    payload: dict[str, Any] = {
        "id": record.id,
        "seq": record.sequence,
        "recipient_id": record.recipient_id,
        "type": record.notification_type,
        "heading": record.heading,
        "message": record.message,
        "scope": record.scope_id,
        "read": record.is_read,
        "state": record.delivery_state,
        "created_at": record.created_at.isoformat() if record.created_at else None,
    }
    if record.link is not None:
        payload["link"] = record.link
    return payload


class DeliveryDispatcher:
    """Fan records out to live connections with bounded, ordered retries.

    Pushes to a single connection are serialized by a per-connection lock and
    a connection never receives a sequence lower than one it already got, so
    each connection observes its records in ascending order. A connection that
    exhausts its retry budget is dropped; the record stays in the store and is
    replayed on the next connect.
    """

    def __init__(
        self,
        registry: ConnectionRegistry,
        store: NotificationStore,
        *,
        attempts: int = 3,
        backoff_base: float = 0.2,
        timeout: float = 2.0,
    ) -> None:
        if attempts < 1:
            raise ValueError("attempts must be at least 1")
        self._registry = registry
        self._store = store
        self._attempts = attempts
        self._backoff_base = backoff_base
        self._timeout = timeout
        self._push_locks: dict[str, asyncio.Lock] = {}
        self._inflight: dict[str, set[asyncio.Task]] = {}
        self._background: set[asyncio.Task] = set()

    def dispatch(self, record: NotificationRecord) -> None:
        """Schedule delivery of ``record`` without waiting for it.

        Works from the event loop and from the worker threads used by sync
        route handlers. Delivery problems are logged, never raised.
        """

        try:
            asyncio.get_running_loop()
        except RuntimeError:
            try:
                from_thread.run_sync(self._spawn_delivery, record)
            except RuntimeError:
                logger.warning(
                    "No event loop available to push sequence %s to user %s; "
                    "it will be replayed on reconnect",
                    record.sequence,
                    record.recipient_id,
                )
        else:
            self._spawn_delivery(record)

    async def deliver(self, record: NotificationRecord) -> set[str]:
        """Push ``record`` to every matching connection and return the reached ids."""

        targets = self._resolve_targets(record)
        if not targets:
            logger.debug(
                "No live connection for user %s; sequence %s stays pending",
                record.recipient_id,
                record.sequence,
            )
            return set()

        tasks: dict[str, asyncio.Task] = {}
        for connection_id in sorted(targets):
            connection = self._registry.get(connection_id)
            if connection is not None:
                tasks[connection_id] = self.spawn(connection_id, self.push(connection, record))
        results = await asyncio.gather(*tasks.values(), return_exceptions=True)

        reached = {
            connection_id
            for connection_id, result in zip(tasks, results)
            if result is True
        }
        if reached:
            await self._mark_delivered(record.recipient_id, [record.sequence])
        return reached

    async def push(self, connection: Connection, record: NotificationRecord) -> bool:
        """Push one record to one connection; ``False`` when it was not sent."""

        async with self.hold(connection):
            return await self.push_locked(connection, record)

    @asynccontextmanager
    async def hold(self, connection: Connection) -> AsyncIterator[None]:
        """Reserve the push order of ``connection`` for the enclosed block."""

        lock = self._push_locks.setdefault(connection.connection_id, asyncio.Lock())
        async with lock:
            yield

    async def push_locked(
        self,
        connection: Connection,
        record: NotificationRecord,
        *,
        fill_gaps: bool = True,
    ) -> bool:
        """Push while the caller holds :meth:`hold` for ``connection``.

        Returns ``True`` only when ``record`` was sent by this call. A record at
        or below the connection's delivered cursor arrived too late to be sent
        in order and is reported as not reached. When ``record`` skips ahead of
        the cursor, the stored records in between are pushed first so a late
        lower sequence is never lost for this connection.
        """

        connection_id = connection.connection_id
        if self._registry.get(connection_id) is None:
            return False
        if record.sequence <= connection.last_delivered_seq:
            logger.debug(
                "Sequence %s is behind connection %s (delivered up to %s)",
                record.sequence,
                connection_id,
                connection.last_delivered_seq,
            )
            return False

        if fill_gaps and record.sequence > connection.last_delivered_seq + 1:
            if not await self._fill_gap(connection, record.sequence):
                return False

        return await self._send_locked(connection, record)

    async def _send_locked(self, connection: Connection, record: NotificationRecord) -> bool:
        connection_id = connection.connection_id
        try:
            await self._send_with_retry(connection, record)
        except DeliveryExhausted as exc:
            logger.warning("%s; dropping connection", exc)
            await self.drop(connection_id, code=CLOSE_CODE_DELIVERY_FAILED)
            return False

        self._registry.record_delivery(connection_id, record.sequence)
        return True

    async def _fill_gap(self, connection: Connection, before_seq: int) -> bool:
        """Push stored records between the delivered cursor and ``before_seq``.

        Scoped records the connection is not subscribed to are left for
        replay. Returns ``False`` when the connection was dropped on the way.
        """

        after_seq = connection.last_delivered_seq
        try:
            records = await self._store.list_pending(
                connection.user_id, after_seq, limit=before_seq - after_seq - 1
            )
        except StoreUnavailable:
            logger.warning(
                "Could not load sequences %s-%s for connection %s; "
                "they will be replayed on reconnect",
                after_seq + 1,
                before_seq - 1,
                connection.connection_id,
            )
            return True

        sent: list[int] = []
        for missing in records:
            if missing.sequence >= before_seq:
                break
            if missing.scope_id and missing.scope_id not in connection.scopes:
                continue
            if not await self._send_locked(connection, missing):
                await self._mark_delivered(connection.user_id, sent)
                return False
            sent.append(missing.sequence)
        await self._mark_delivered(connection.user_id, sent)
        return True

    async def _mark_delivered(self, recipient_id: int, sequences: list[int]) -> None:
        if not sequences:
            return
        try:
            await self._store.mark_delivered(recipient_id, sequences)
        except StoreUnavailable:
            logger.warning(
                "Could not mark sequences %s of user %s as delivered",
                sequences,
                recipient_id,
            )

    async def acknowledge(self, connection_id: str, sequence: int) -> int:
        """Advance the acknowledgement cursor of the connection and of its user."""

        connection = self._registry.acknowledge(connection_id, sequence)
        await self._store.mark_acknowledged(
            connection.user_id, connection.last_acknowledged_seq
        )
        return connection.last_acknowledged_seq

    async def mark_read(self, connection_id: str, sequence: int) -> None:
        connection = self._registry.get(connection_id)
        if connection is None:
            raise KeyError(connection_id)
        await self._store.mark_read(connection.user_id, sequence)

    def spawn(self, connection_id: str, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        """Run ``coro`` as a task that is cancelled when the connection drops."""

        task = asyncio.get_running_loop().create_task(coro)
        tasks = self._inflight.setdefault(connection_id, set())
        tasks.add(task)

        def _forget(finished: asyncio.Task) -> None:
            pending = self._inflight.get(connection_id)
            if pending is None:
                return
            pending.discard(finished)
            if not pending:
                self._inflight.pop(connection_id, None)

        task.add_done_callback(_forget)
        return task

    def cancel(self, connection_id: str) -> int:
        """Cancel in-flight pushes targeting ``connection_id`` only."""

        current = asyncio.current_task()
        cancelled = 0
        for task in list(self._inflight.get(connection_id, ())):
            if task is current or task.done():
                continue
            task.cancel()
            cancelled += 1
        return cancelled

    async def drop(self, connection_id: str, *, code: int = 1000) -> None:
        """Deregister ``connection_id``, cancel its pushes and close its transport."""

        connection = self._registry.deregister(connection_id)
        if connection is None:
            self.release(connection_id)
            return
        await self.close(connection, code=code)

    def release(self, connection_id: str) -> None:
        """Cancel pushes and forget the push lock of a deregistered connection."""

        self.cancel(connection_id)
        self._push_locks.pop(connection_id, None)

    async def close(self, connection: Connection, *, code: int = 1000) -> None:
        """Release a connection already removed from the registry and close it."""

        self.release(connection.connection_id)
        logger.info(
            "Dropped connection %s of user %s (code=%s)",
            connection.connection_id,
            connection.user_id,
            code,
        )
        try:
            await connection.transport.close(code=code)
        except Exception as exc:  # noqa: BLE001 - transport is already unusable
            logger.debug(
                "Closing connection %s failed: %s", connection.connection_id, exc
            )

    async def aclose(self) -> None:
        """Cancel background deliveries; used on application shutdown."""

        for task in list(self._background):
            task.cancel()
        for connection_id in list(self._inflight):
            self.cancel(connection_id)
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)

    def _resolve_targets(self, record: NotificationRecord) -> set[str]:
        targets = self._registry.lookup(record.recipient_id)
        if record.scope_id and targets:
            targets &= self._registry.lookup_by_scope(record.scope_id)
        return targets

    async def _send_with_retry(
        self, connection: Connection, record: NotificationRecord
    ) -> None:
        message = {"notification": serialize_notification(record)}
        for attempt in range(1, self._attempts + 1):
            try:
                with anyio.fail_after(self._timeout):
                    await connection.transport.send_json(message)
                return
            except Exception as exc:  # noqa: BLE001 - any transport error counts as a failed attempt
                logger.warning(
                    "Push of sequence %s to connection %s failed (attempt %s/%s): %r",
                    record.sequence,
                    connection.connection_id,
                    attempt,
                    self._attempts,
                    exc,
                )
            if attempt < self._attempts:
                await anyio.sleep(self._backoff_base * 2 ** (attempt - 1))
        raise DeliveryExhausted(connection.connection_id, record.sequence, self._attempts)

    def _spawn_delivery(self, record: NotificationRecord) -> None:
        task = asyncio.get_running_loop().create_task(self._deliver_logged(record))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _deliver_logged(self, record: NotificationRecord) -> None:
        try:
            await self.deliver(record)
        except Exception:
            logger.exception(
                "Delivery of sequence %s to user %s failed",
                record.sequence,
                record.recipient_id,
            )


__all__ = [
    "CLOSE_CODE_DELIVERY_FAILED",
    "DeliveryDispatcher",
    "serialize_notification",
]
