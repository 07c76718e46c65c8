"""Aggregate application use cases."""

from .notifications import (
    archive_expired_notifications,
    publish_notification,
    publish_scope_notification,
)
from .users import authenticate_user, create_user, record_login

__all__ = [
    "archive_expired_notifications",
    "authenticate_user",
    "create_user",
    "publish_notification",
    "publish_scope_notification",
    "record_login",
]
