"""Domain entity representing a durable user notification."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

DELIVERY_STATE_PENDING = "pending"
DELIVERY_STATE_DELIVERED = "delivered"
DELIVERY_STATE_ACKNOWLEDGED = "acknowledged"

DELIVERY_STATES = (
    DELIVERY_STATE_PENDING,
    DELIVERY_STATE_DELIVERED,
    DELIVERY_STATE_ACKNOWLEDGED,
)

NOTIFICATION_TYPE_INFO = "info"


@dataclass
class NotificationRecord:
    """Ordered unit of delivery addressed to a single recipient.

    ``sequence`` is assigned per recipient by the store and is strictly
    increasing without gaps. ``scope_id`` is the server or group the record
    belongs to, ``None`` for personal notifications.
    """

    id: int | None
    recipient_id: int
    sequence: int
    heading: str
    message: str
    scope_id: str | None = None
    link: str | None = None
    notification_type: str = NOTIFICATION_TYPE_INFO
    delivery_state: str = DELIVERY_STATE_PENDING
    created_at: datetime | None = None
    read_at: datetime | None = None
    archived_at: datetime | None = None

    @property
    def is_read(self) -> bool:
        return self.read_at is not None


__all__ = [
    "DELIVERY_STATE_ACKNOWLEDGED",
    "DELIVERY_STATE_DELIVERED",
    "DELIVERY_STATE_PENDING",
    "DELIVERY_STATES",
    "NOTIFICATION_TYPE_INFO",
    "NotificationRecord",
]
