"""SQLAlchemy models for persisted notifications."""

from sqlalchemy import (
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)

from server_hub.infrastructure.database import Base
from server_hub.utils import now_in_app_naive_datetime


class NotificationModel(Base):
    """Append-only notification record addressed to one recipient."""

    __tablename__ = "notification"
    __table_args__ = (
        UniqueConstraint("recipient_id", "sequence", name="uq_notification_recipient_seq"),
        Index("ix_notification_recipient_read", "recipient_id", "read_at"),
    )

    id = Column(Integer, primary_key=True, index=True)
    recipient_id = Column(
        Integer, ForeignKey("user.id", ondelete="CASCADE"), nullable=False, index=True
    )
    sequence = Column(Integer, nullable=False)
    scope_id = Column(String(64), nullable=True, index=True)
    notification_type = Column(String(32), nullable=False, default="info")
    heading = Column(String(120), nullable=False)
    message = Column(Text, nullable=False)
    link = Column(String(512), nullable=True)
    delivery_state = Column(String(16), nullable=False, default="pending")
    created_at = Column(DateTime(), nullable=False, default=now_in_app_naive_datetime)
    read_at = Column(DateTime(), nullable=True)
    archived_at = Column(DateTime(), nullable=True)


class NotificationSequenceModel(Base):
    """Per-recipient counter used to hand out gap-free sequence numbers.

    ``acknowledged_seq`` is the highest sequence any session of the recipient
    acknowledged and seeds the replay cursor of new connections.
    """

    __tablename__ = "notification_sequence"

    recipient_id = Column(
        Integer, ForeignKey("user.id", ondelete="CASCADE"), primary_key=True
    )
    last_seq = Column(Integer, nullable=False, default=0)
    acknowledged_seq = Column(Integer, nullable=False, default=0)


__all__ = ["NotificationModel", "NotificationSequenceModel"]
