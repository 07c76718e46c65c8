"""ORM models used by the application infrastructure."""

from .notification import NotificationModel, NotificationSequenceModel
from .scope_member import ScopeMemberModel
from .user import UserModel

__all__ = [
    "NotificationModel",
    "NotificationSequenceModel",
    "ScopeMemberModel",
    "UserModel",
]
