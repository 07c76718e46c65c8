from .auth import Token
from .notification import (
    MarkAllReadResponse,
    NotificationCreate,
    NotificationRead,
    ScopeNotificationCreate,
)

__all__ = [
    "MarkAllReadResponse",
    "NotificationCreate",
    "NotificationRead",
    "ScopeNotificationCreate",
    "Token",
]
