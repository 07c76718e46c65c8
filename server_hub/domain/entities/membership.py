"""Domain entity linking a user to a server or group."""

from dataclasses import dataclass
from datetime import datetime

SCOPE_KIND_SERVER = "server"
SCOPE_KIND_GROUP = "group"

MEMBER_ROLE_OWNER = "OWNER"
MEMBER_ROLE_ADMIN = "ADMIN"
MEMBER_ROLE_MODERATOR = "MODERATOR"
MEMBER_ROLE_MEMBER = "MEMBER"


@dataclass
class ScopeMembership:
    """Membership of ``user_id`` in the tenant scope ``scope_id``."""

    id: int | None
    scope_id: str
    scope_kind: str
    user_id: int
    role: str = MEMBER_ROLE_MEMBER
    joined_at: datetime | None = None


__all__ = [
    "MEMBER_ROLE_ADMIN",
    "MEMBER_ROLE_MEMBER",
    "MEMBER_ROLE_MODERATOR",
    "MEMBER_ROLE_OWNER",
    "SCOPE_KIND_GROUP",
    "SCOPE_KIND_SERVER",
    "ScopeMembership",
]
