"""Public helpers for emitting notifications."""

from .publish import (
    NotificationDispatcher,
    publish_notification,
    publish_scope_notification,
)
from .retention import archive_expired_notifications

__all__ = [
    "NotificationDispatcher",
    "archive_expired_notifications",
    "publish_notification",
    "publish_scope_notification",
]
