"""Pydantic models describing notification payloads."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field


class NotificationCreate(BaseModel):
    """Payload used by producers to notify a single user."""

    recipient_id: int = Field(..., gt=0)
    heading: str = Field(..., min_length=1, max_length=120)
    message: str = Field(..., min_length=1)
    type: str = Field(default="info", min_length=1, max_length=32)
    scope_id: str | None = Field(default=None, min_length=1, max_length=64)
    link: str | None = Field(default=None, min_length=1, max_length=512)


class ScopeNotificationCreate(BaseModel):
    """Payload used to notify every member of a server or group."""

    heading: str = Field(..., min_length=1, max_length=120)
    message: str = Field(..., min_length=1)
    type: str = Field(default="info", min_length=1, max_length=32)
    link: str | None = Field(default=None, min_length=1, max_length=512)


class NotificationRead(BaseModel):
    """Representation of a notification returned to the client."""

    id: int
    seq: int
    recipient_id: int
    type: str
    heading: str
    message: str
    scope_id: str | None = None
    link: str | None = None
    read: bool
    state: str
    created_at: datetime
    read_at: datetime | None = None


class MarkAllReadResponse(BaseModel):
    success: bool
    message: str
    updated_count: int


__all__ = [
    "MarkAllReadResponse",
    "NotificationCreate",
    "NotificationRead",
    "ScopeNotificationCreate",
]
