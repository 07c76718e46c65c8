"""Retention policy for the notification audit trail."""

from __future__ import annotations

import logging
from datetime import timedelta

from sqlalchemy.orm import Session

from server_hub.infrastructure.repositories import NotificationRepository
from server_hub.utils import now_in_app_timezone

logger = logging.getLogger(__name__)


def archive_expired_notifications(session: Session, *, retention_days: int) -> int:
    """Archive read notifications older than ``retention_days``.

    Archived records stay in the table but are no longer listed or replayed.
    """

    cutoff = now_in_app_timezone() - timedelta(days=retention_days)
    archived = NotificationRepository(session).archive_older_than(cutoff)
    if archived:
        logger.info("Archived %s notification(s) created before %s", archived, cutoff)
    return archived
