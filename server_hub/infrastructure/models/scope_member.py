"""SQLAlchemy model for server and group membership."""

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, UniqueConstraint

from server_hub.infrastructure.database import Base
from server_hub.utils import now_in_app_naive_datetime


class ScopeMemberModel(Base):
    """Membership row linking a user to a server or group."""

    __tablename__ = "scope_member"
    __table_args__ = (
        UniqueConstraint("scope_id", "user_id", name="uq_scope_member_scope_user"),
    )

    id = Column(Integer, primary_key=True, index=True)
    scope_id = Column(String(64), nullable=False, index=True)
    scope_kind = Column(String(16), nullable=False)
    user_id = Column(
        Integer, ForeignKey("user.id", ondelete="CASCADE"), nullable=False, index=True
    )
    role = Column(String(16), nullable=False, default="MEMBER")
    joined_at = Column(DateTime(), nullable=False, default=now_in_app_naive_datetime)


__all__ = ["ScopeMemberModel"]
