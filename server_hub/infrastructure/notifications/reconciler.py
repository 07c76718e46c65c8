"""Replay notifications a user missed while no connection was live."""

from __future__ import annotations

import logging

from server_hub.domain.entities import Connection

from .dispatcher import DeliveryDispatcher
from .store import NotificationStore

logger = logging.getLogger(__name__)


class ReconnectionReconciler:
    """Push stored records after the connection's delivered cursor.

    The replay holds the connection's push order for its whole duration, so a
    live delivery racing with it waits and is then skipped when the replay
    already sent it. Running it again for the same connection pushes nothing
    twice.
    """

    def __init__(
        self,
        store: NotificationStore,
        dispatcher: DeliveryDispatcher,
        *,
        page_size: int = 100,
    ) -> None:
        if page_size < 1:
            raise ValueError("page_size must be at least 1")
        self._store = store
        self._dispatcher = dispatcher
        self._page_size = page_size

    async def reconcile(self, connection: Connection) -> int:
        """Replay pending records to ``connection`` and return how many were pushed."""

        pushed = 0
        async with self._dispatcher.hold(connection):
            after_seq = connection.last_delivered_seq
            while True:
                records = await self._store.list_pending(
                    connection.user_id, after_seq, limit=self._page_size
                )
                if not records:
                    break

                sent: list[int] = []
                for record in records:
                    if not await self._dispatcher.push_locked(
                        connection, record, fill_gaps=False
                    ):
                        logger.info(
                            "Replay to connection %s stopped at sequence %s",
                            connection.connection_id,
                            record.sequence,
                        )
                        await self._mark_delivered(connection, sent)
                        return pushed + len(sent)
                    sent.append(record.sequence)

                await self._mark_delivered(connection, sent)
                pushed += len(sent)
                after_seq = records[-1].sequence
                if len(records) < self._page_size:
                    break

        if pushed:
            logger.info(
                "Replayed %s notification(s) to connection %s of user %s",
                pushed,
                connection.connection_id,
                connection.user_id,
            )
        return pushed

    async def _mark_delivered(self, connection: Connection, sequences: list[int]) -> None:
        if sequences:
            await self._store.mark_delivered(connection.user_id, sequences)


__all__ = ["ReconnectionReconciler"]
