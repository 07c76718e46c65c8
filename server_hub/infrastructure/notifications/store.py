"""Async facade running store adapter calls on worker threads."""

from __future__ import annotations

from collections.abc import Callable, Iterable, Sequence
from typing import TypeVar

from anyio import to_thread
from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import Session

from server_hub.domain.entities import NotificationRecord
from server_hub.domain.exceptions import StoreUnavailable
from server_hub.infrastructure.repositories import (
    MembershipRepository,
    NotificationRepository,
)

T = TypeVar("T")


class NotificationStore:
    """Expose the notification and membership repositories to async callers.

    Every call opens its own session from ``session_factory`` and runs on a
    worker thread, so the event loop never blocks on the database.
    """

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self._session_factory = session_factory

    async def append(
        self,
        recipient_id: int,
        heading: str,
        message: str,
        *,
        scope_id: str | None = None,
        link: str | None = None,
        notification_type: str = "info",
    ) -> NotificationRecord:
        return await self._run(
            lambda session: NotificationRepository(session).append(
                recipient_id,
                heading,
                message,
                scope_id=scope_id,
                link=link,
                notification_type=notification_type,
            )
        )

    async def list_pending(
        self, recipient_id: int, after_seq: int, *, limit: int | None = None
    ) -> Sequence[NotificationRecord]:
        return await self._run(
            lambda session: NotificationRepository(session).list_pending(
                recipient_id, after_seq, limit=limit
            )
        )

    async def mark_read(self, recipient_id: int, sequence: int) -> None:
        await self._run(
            lambda session: NotificationRepository(session).mark_read(
                recipient_id, sequence
            )
        )

    async def mark_delivered(self, recipient_id: int, sequences: Iterable[int]) -> None:
        values = list(sequences)
        await self._run(
            lambda session: NotificationRepository(session).mark_delivered(
                recipient_id, values
            )
        )

    async def mark_acknowledged(self, recipient_id: int, up_to_seq: int) -> None:
        await self._run(
            lambda session: NotificationRepository(session).mark_acknowledged(
                recipient_id, up_to_seq
            )
        )

    async def get_resume_cursor(self, recipient_id: int) -> int:
        return await self._run(
            lambda session: NotificationRepository(session).get_resume_cursor(
                recipient_id
            )
        )

    async def get_last_sequence(self, recipient_id: int) -> int:
        return await self._run(
            lambda session: NotificationRepository(session).get_last_sequence(
                recipient_id
            )
        )

    async def member_scopes(self, user_id: int, scope_ids: Iterable[str]) -> set[str]:
        requested = list(scope_ids)
        return await self._run(
            lambda session: MembershipRepository(session).filter_member_scopes(
                user_id, requested
            )
        )

    async def _run(self, operation: Callable[[Session], T]) -> T:
        return await to_thread.run_sync(self._call, operation)

    def _call(self, operation: Callable[[Session], T]) -> T:
        session = self._session_factory()
        try:
            return operation(session)
        except DBAPIError as exc:
            raise StoreUnavailable("Notification store unavailable") from exc
        finally:
            session.close()


__all__ = ["NotificationStore"]
