"""Producer use cases: persist a notification, then hand it to delivery."""

from __future__ import annotations

import logging
from typing import Protocol

from sqlalchemy.orm import Session

from server_hub.domain.entities import NOTIFICATION_TYPE_INFO, NotificationRecord
from server_hub.infrastructure.repositories import (
    MembershipRepository,
    NotificationRepository,
    UserRepository,
)

logger = logging.getLogger(__name__)


class NotificationDispatcher(Protocol):
    def dispatch(self, record: NotificationRecord) -> None:
        ...


def publish_notification(
    session: Session,
    dispatcher: NotificationDispatcher,
    *,
    recipient_id: int,
    heading: str,
    message: str,
    scope_id: str | None = None,
    link: str | None = None,
    notification_type: str = NOTIFICATION_TYPE_INFO,
) -> NotificationRecord:
    """Store a notification for ``recipient_id`` and schedule its push.

    The call succeeds once the record is stored; whether a live connection
    received it is not reported back to the producer.
    """

    if UserRepository(session).get(recipient_id) is None:
        raise LookupError(f"Recipient {recipient_id} not found")

    record = NotificationRepository(session).append(
        recipient_id,
        heading,
        message,
        scope_id=scope_id,
        link=link,
        notification_type=notification_type,
    )
    dispatcher.dispatch(record)
    return record


def publish_scope_notification(
    session: Session,
    dispatcher: NotificationDispatcher,
    *,
    scope_id: str,
    heading: str,
    message: str,
    link: str | None = None,
    notification_type: str = NOTIFICATION_TYPE_INFO,
    exclude_user_id: int | None = None,
) -> list[NotificationRecord]:
    """Notify every member of ``scope_id`` except ``exclude_user_id``."""

    member_ids = MembershipRepository(session).list_member_ids(scope_id)
    repository = NotificationRepository(session)
    records: list[NotificationRecord] = []
    for member_id in member_ids:
        if member_id == exclude_user_id:
            continue
        record = repository.append(
            member_id,
            heading,
            message,
            scope_id=scope_id,
            link=link,
            notification_type=notification_type,
        )
        dispatcher.dispatch(record)
        records.append(record)
    logger.info(
        "Published '%s' to %s member(s) of scope %s", heading, len(records), scope_id
    )
    return records


__all__ = [
    "NotificationDispatcher",
    "publish_notification",
    "publish_scope_notification",
]
