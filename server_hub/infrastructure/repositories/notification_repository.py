"""Persistence helpers for notification records.

The repository is the only path through which notifications reach the
database. Sequence numbers are handed out per recipient from the
``notification_sequence`` counter row, incremented with a single ``UPDATE`` in
the same transaction that inserts the record, so concurrent producers never
observe the same value. Within one process a striped lock additionally keeps a
single writer per recipient.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable, Iterator, Sequence
from contextlib import contextmanager
from datetime import datetime

from sqlalchemy import func, select, update
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.orm import Session

from server_hub.domain.entities import (
    DELIVERY_STATE_ACKNOWLEDGED,
    DELIVERY_STATE_DELIVERED,
    DELIVERY_STATE_PENDING,
    NOTIFICATION_TYPE_INFO,
    NotificationRecord,
)
from server_hub.domain.exceptions import StoreUnavailable
from server_hub.infrastructure.models import NotificationModel, NotificationSequenceModel
from server_hub.utils import (
    ensure_app_naive_datetime,
    ensure_app_timezone,
    now_in_app_naive_datetime,
)

logger = logging.getLogger(__name__)

_HEADING_MAX_LENGTH = 120
_LINK_MAX_LENGTH = 512
_LOCK_STRIPES = 64
_sequence_locks = tuple(threading.Lock() for _ in range(_LOCK_STRIPES))


def _sequence_lock(recipient_id: int) -> threading.Lock:
    return _sequence_locks[hash(recipient_id) % _LOCK_STRIPES]


def _clean_text(value: object, *, field_name: str, max_length: int | None = None) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"Notification {field_name} must be a non-empty string")
    cleaned = value.strip()
    if max_length is not None and len(cleaned) > max_length:
        raise ValueError(
            f"Notification {field_name} must be at most {max_length} characters"
        )
    return cleaned


def _clean_link(link: object) -> str | None:
    if link is None:
        return None
    return _clean_text(link, field_name="link", max_length=_LINK_MAX_LENGTH)


class NotificationRepository:
    """Durable store for :class:`NotificationRecord` objects."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def append(
        self,
        recipient_id: int,
        heading: str,
        message: str,
        *,
        scope_id: str | None = None,
        link: str | None = None,
        notification_type: str = NOTIFICATION_TYPE_INFO,
    ) -> NotificationRecord:
        """Persist a new record assigning the next sequence for ``recipient_id``."""

        heading = _clean_text(heading, field_name="heading", max_length=_HEADING_MAX_LENGTH)
        message = _clean_text(message, field_name="message")
        link = _clean_link(link)
        notification_type = (notification_type or NOTIFICATION_TYPE_INFO).strip()
        if scope_id is not None:
            scope_id = _clean_text(scope_id, field_name="scope", max_length=64)

        with _sequence_lock(recipient_id), self._guard("append"):
            sequence = self._next_sequence(recipient_id)
            model = NotificationModel(
                recipient_id=recipient_id,
                sequence=sequence,
                scope_id=scope_id,
                notification_type=notification_type or NOTIFICATION_TYPE_INFO,
                heading=heading,
                message=message,
                link=link,
                delivery_state=DELIVERY_STATE_PENDING,
                created_at=now_in_app_naive_datetime(),
            )
            self.session.add(model)
            self.session.commit()
            self.session.refresh(model)
        return self._to_entity(model)

    def get(self, recipient_id: int, sequence: int) -> NotificationRecord | None:
        with self._guard("get"):
            model = self._get_model(recipient_id, sequence)
        return self._to_entity(model) if model else None

    def list_pending(
        self,
        recipient_id: int,
        after_seq: int,
        *,
        limit: int | None = None,
    ) -> Sequence[NotificationRecord]:
        """Return records after ``after_seq`` in ascending sequence order.

        Read, delivered and acknowledged records are included; only archived
        records are skipped. Calling again with the same ``after_seq`` returns the
        same prefix, so replay can be restarted safely.
        """

        query = (
            self.session.query(NotificationModel)
            .filter(NotificationModel.recipient_id == recipient_id)
            .filter(NotificationModel.sequence > after_seq)
            .filter(NotificationModel.archived_at.is_(None))
            .order_by(NotificationModel.sequence.asc())
        )
        if limit is not None:
            query = query.limit(limit)
        with self._guard("list_pending"):
            models = query.all()
        return [self._to_entity(model) for model in models]

    def list_for_user(
        self, recipient_id: int, *, limit: int | None = 50
    ) -> Sequence[NotificationRecord]:
        query = (
            self.session.query(NotificationModel)
            .filter(NotificationModel.recipient_id == recipient_id)
            .filter(NotificationModel.archived_at.is_(None))
            .order_by(NotificationModel.sequence.desc())
        )
        if limit is not None:
            query = query.limit(limit)
        with self._guard("list_for_user"):
            models = query.all()
        return [self._to_entity(model) for model in models]

    def list_unread(
        self, recipient_id: int, *, limit: int | None = 50
    ) -> Sequence[NotificationRecord]:
        query = (
            self.session.query(NotificationModel)
            .filter(NotificationModel.recipient_id == recipient_id)
            .filter(NotificationModel.read_at.is_(None))
            .filter(NotificationModel.archived_at.is_(None))
            .order_by(NotificationModel.sequence.desc())
        )
        if limit is not None:
            query = query.limit(limit)
        with self._guard("list_unread"):
            models = query.all()
        return [self._to_entity(model) for model in models]

    def mark_read(self, recipient_id: int, sequence: int) -> None:
        """Flag the record as read; repeated calls keep the first read time."""

        with self._guard("mark_read"):
            self.session.execute(
                update(NotificationModel)
                .where(NotificationModel.recipient_id == recipient_id)
                .where(NotificationModel.sequence == sequence)
                .where(NotificationModel.read_at.is_(None))
                .values(read_at=now_in_app_naive_datetime())
            )
            self.session.commit()

    def mark_all_read(self, recipient_id: int) -> int:
        """Flag every unread record of ``recipient_id`` and return how many changed."""

        with self._guard("mark_all_read"):
            result = self.session.execute(
                update(NotificationModel)
                .where(NotificationModel.recipient_id == recipient_id)
                .where(NotificationModel.read_at.is_(None))
                .values(read_at=now_in_app_naive_datetime())
            )
            self.session.commit()
        return result.rowcount or 0

    def mark_delivered(self, recipient_id: int, sequences: Iterable[int]) -> None:
        """Move pending records to ``delivered``; later states are left untouched."""

        values = sorted({sequence for sequence in sequences if sequence})
        if not values:
            return
        with self._guard("mark_delivered"):
            self.session.execute(
                update(NotificationModel)
                .where(NotificationModel.recipient_id == recipient_id)
                .where(NotificationModel.sequence.in_(values))
                .where(NotificationModel.delivery_state == DELIVERY_STATE_PENDING)
                .values(delivery_state=DELIVERY_STATE_DELIVERED)
            )
            self.session.commit()

    def mark_acknowledged(self, recipient_id: int, up_to_seq: int) -> None:
        """Advance the durable acknowledgement cursor of ``recipient_id``.

        Only ``delivered`` records become ``acknowledged``; records still
        ``pending`` were never pushed and keep holding back the resume cursor.
        """

        if up_to_seq <= 0:
            return
        with self._guard("mark_acknowledged"):
            self.session.execute(
                update(NotificationModel)
                .where(NotificationModel.recipient_id == recipient_id)
                .where(NotificationModel.sequence <= up_to_seq)
                .where(NotificationModel.delivery_state == DELIVERY_STATE_DELIVERED)
                .values(delivery_state=DELIVERY_STATE_ACKNOWLEDGED)
            )
            self.session.execute(
                update(NotificationSequenceModel)
                .where(NotificationSequenceModel.recipient_id == recipient_id)
                .where(NotificationSequenceModel.acknowledged_seq < up_to_seq)
                .values(acknowledged_seq=up_to_seq)
            )
            self.session.commit()

    def get_acknowledged_seq(self, recipient_id: int) -> int:
        with self._guard("get_acknowledged_seq"):
            value = self.session.execute(
                select(NotificationSequenceModel.acknowledged_seq).where(
                    NotificationSequenceModel.recipient_id == recipient_id
                )
            ).scalar_one_or_none()
        return value or 0

    def get_last_sequence(self, recipient_id: int) -> int:
        """Return the highest sequence handed out to ``recipient_id`` so far."""

        with self._guard("get_last_sequence"):
            value = self.session.execute(
                select(NotificationSequenceModel.last_seq).where(
                    NotificationSequenceModel.recipient_id == recipient_id
                )
            ).scalar_one_or_none()
        return value or 0

    def get_resume_cursor(self, recipient_id: int) -> int:
        """Return the sequence after which a new session should replay.

        This is the acknowledgement cursor, lowered to just before the oldest
        record that is still ``pending`` so undelivered records are never
        skipped.
        """

        acknowledged = self.get_acknowledged_seq(recipient_id)
        with self._guard("get_resume_cursor"):
            oldest_pending = self.session.execute(
                select(func.min(NotificationModel.sequence))
                .where(NotificationModel.recipient_id == recipient_id)
                .where(NotificationModel.delivery_state == DELIVERY_STATE_PENDING)
                .where(NotificationModel.archived_at.is_(None))
            ).scalar_one_or_none()
        if oldest_pending is None:
            return acknowledged
        return min(acknowledged, oldest_pending - 1)

    def archive_older_than(self, cutoff: datetime) -> int:
        """Archive read records created before ``cutoff``.

        Unread records are kept regardless of age so a returning user still
        receives them on reconnect.
        """

        with self._guard("archive_older_than"):
            result = self.session.execute(
                update(NotificationModel)
                .where(NotificationModel.created_at < ensure_app_naive_datetime(cutoff))
                .where(NotificationModel.read_at.is_not(None))
                .where(NotificationModel.archived_at.is_(None))
                .values(archived_at=now_in_app_naive_datetime())
            )
            self.session.commit()
        return result.rowcount or 0

    def _next_sequence(self, recipient_id: int) -> int:
        for _ in range(2):
            result = self.session.execute(
                update(NotificationSequenceModel)
                .where(NotificationSequenceModel.recipient_id == recipient_id)
                .values(last_seq=NotificationSequenceModel.last_seq + 1)
            )
            if result.rowcount:
                return self.session.execute(
                    select(NotificationSequenceModel.last_seq).where(
                        NotificationSequenceModel.recipient_id == recipient_id
                    )
                ).scalar_one()

            self.session.add(
                NotificationSequenceModel(
                    recipient_id=recipient_id, last_seq=1, acknowledged_seq=0
                )
            )
            try:
                self.session.flush()
            except IntegrityError:
                # Another process created the counter row first.
                self.session.rollback()
                continue
            return 1
        raise StoreUnavailable(
            f"Could not allocate a sequence number for recipient {recipient_id}"
        )

    def _get_model(self, recipient_id: int, sequence: int) -> NotificationModel | None:
        return (
            self.session.query(NotificationModel)
            .filter(NotificationModel.recipient_id == recipient_id)
            .filter(NotificationModel.sequence == sequence)
            .first()
        )

    @contextmanager
    def _guard(self, operation: str) -> Iterator[None]:
        try:
            yield
        except DBAPIError as exc:
            self.session.rollback()
            logger.warning("Notification store %s failed: %s", operation, exc)
            raise StoreUnavailable(f"Notification store unavailable during {operation}") from exc

    @staticmethod
    def _to_entity(model: NotificationModel) -> NotificationRecord:
        return NotificationRecord(
            id=model.id,
            recipient_id=model.recipient_id,
            sequence=model.sequence,
            heading=model.heading,
            message=model.message,
            scope_id=model.scope_id,
            link=model.link,
            notification_type=model.notification_type,
            delivery_state=model.delivery_state,
            created_at=ensure_app_timezone(model.created_at),
            read_at=ensure_app_timezone(model.read_at),
            archived_at=ensure_app_timezone(model.archived_at),
        )


__all__ = ["NotificationRepository"]
