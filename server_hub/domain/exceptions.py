"""Errors raised by the presence and notification delivery core."""

from __future__ import annotations


class DeliveryError(Exception):
    """Base class for delivery related failures."""


class AuthFailure(DeliveryError):
    """The connection token could not be resolved to an active identity."""


class DuplicateRegistration(DeliveryError):
    """A connection id was registered twice."""

    def __init__(self, connection_id: str) -> None:
        super().__init__(f"Connection {connection_id!r} is already registered")
        self.connection_id = connection_id


class StoreUnavailable(DeliveryError):
    """The persistence collaborator could not be reached; callers may retry."""


class DeliveryExhausted(DeliveryError):
    """Every push attempt to a single connection failed."""

    def __init__(self, connection_id: str, sequence: int, attempts: int) -> None:
        super().__init__(
            f"Push of sequence {sequence} to connection {connection_id!r} "
            f"failed after {attempts} attempts"
        )
        self.connection_id = connection_id
        self.sequence = sequence
        self.attempts = attempts


class InvalidAcknowledgement(DeliveryError, ValueError):
    """A client acknowledged a sequence that was never delivered to it."""


__all__ = [
    "AuthFailure",
    "DeliveryError",
    "DeliveryExhausted",
    "DuplicateRegistration",
    "InvalidAcknowledgement",
    "StoreUnavailable",
]
