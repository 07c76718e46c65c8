"""Repository implementations for infrastructure layer."""

from .membership_repository import MembershipRepository
from .notification_repository import NotificationRepository
from .user_repository import UserRepository

__all__ = [
    "MembershipRepository",
    "NotificationRepository",
    "UserRepository",
]
