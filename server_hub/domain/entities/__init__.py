"""Domain entities exposed by the application."""

from .connection import Connection, ConnectionTransport
from .membership import (
    MEMBER_ROLE_ADMIN,
    MEMBER_ROLE_MEMBER,
    MEMBER_ROLE_MODERATOR,
    MEMBER_ROLE_OWNER,
    SCOPE_KIND_GROUP,
    SCOPE_KIND_SERVER,
    ScopeMembership,
)
from .notification import (
    DELIVERY_STATE_ACKNOWLEDGED,
    DELIVERY_STATE_DELIVERED,
    DELIVERY_STATE_PENDING,
    DELIVERY_STATES,
    NOTIFICATION_TYPE_INFO,
    NotificationRecord,
)
from .user import User

__all__ = [
    "Connection",
    "ConnectionTransport",
    "DELIVERY_STATE_ACKNOWLEDGED",
    "DELIVERY_STATE_DELIVERED",
    "DELIVERY_STATE_PENDING",
    "DELIVERY_STATES",
    "MEMBER_ROLE_ADMIN",
    "MEMBER_ROLE_MEMBER",
    "MEMBER_ROLE_MODERATOR",
    "MEMBER_ROLE_OWNER",
    "NOTIFICATION_TYPE_INFO",
    "NotificationRecord",
    "SCOPE_KIND_GROUP",
    "SCOPE_KIND_SERVER",
    "ScopeMembership",
    "User",
]
