"""Realtime presence and notification delivery for the infrastructure layer."""

from .binder import IdentityResolver, SessionBinder
from .dispatcher import DeliveryDispatcher, serialize_notification
from .reconciler import ReconnectionReconciler
from .registry import ConnectionRegistry
from .service import NotificationDelivery, build_notification_delivery
from .store import NotificationStore
from .transport import WebSocketTransport

__all__ = [
    "ConnectionRegistry",
    "DeliveryDispatcher",
    "IdentityResolver",
    "NotificationDelivery",
    "NotificationStore",
    "ReconnectionReconciler",
    "SessionBinder",
    "WebSocketTransport",
    "build_notification_delivery",
    "serialize_notification",
]
