"""In-memory collaborators for the realtime delivery tests."""

from __future__ import annotations

from typing import Any

import anyio
import pytest

from server_hub.domain.entities import NotificationRecord


class RecordingTransport:
    """Transport that records pushes and can fail or hang on demand."""

    def __init__(self, *, failures: int = 0, hang: bool = False) -> None:
        self.sent: list[dict[str, Any]] = []
        self.failures = failures
        self.hang = hang
        self.attempts = 0
        self.started = anyio.Event()
        self.closed_with: int | None = None

    async def send_json(self, message: dict[str, Any]) -> None:
        self.attempts += 1
        self.started.set()
        if self.hang:
            await anyio.sleep_forever()
        if self.failures:
            self.failures -= 1
            raise ConnectionError("transport is gone")
        self.sent.append(message)

    async def close(self, code: int = 1000) -> None:
        self.closed_with = code

    @property
    def sequences(self) -> list[int]:
        return [message["notification"]["seq"] for message in self.sent]


class MemoryStore:
    """Store double keeping records per recipient in memory."""

    def __init__(self) -> None:
        self.records: dict[int, list[NotificationRecord]] = {}
        self.delivered: dict[int, set[int]] = {}
        self.acknowledged: dict[int, int] = {}
        self.read: dict[int, set[int]] = {}
        self.members: dict[int, set[str]] = {}
        self.resume_cursor: dict[int, int] = {}

    def add(self, recipient_id: int, count: int, *, scope_id: str | None = None):
        records = self.records.setdefault(recipient_id, [])
        added = []
        for _ in range(count):
            record = NotificationRecord(
                id=None,
                recipient_id=recipient_id,
                sequence=len(records) + 1,
                heading="Heads up",
                message=f"message {len(records) + 1}",
                scope_id=scope_id,
            )
            records.append(record)
            added.append(record)
        return added

    async def list_pending(self, recipient_id, after_seq, *, limit=None):
        pending = [
            record
            for record in self.records.get(recipient_id, [])
            if record.sequence > after_seq
        ]
        return pending[:limit] if limit is not None else pending

    async def mark_delivered(self, recipient_id, sequences):
        self.delivered.setdefault(recipient_id, set()).update(sequences)

    async def mark_acknowledged(self, recipient_id, up_to_seq):
        current = self.acknowledged.get(recipient_id, 0)
        self.acknowledged[recipient_id] = max(current, up_to_seq)

    async def mark_read(self, recipient_id, sequence):
        self.read.setdefault(recipient_id, set()).add(sequence)

    async def get_resume_cursor(self, recipient_id):
        return self.resume_cursor.get(recipient_id, 0)

    async def get_last_sequence(self, recipient_id):
        return len(self.records.get(recipient_id, []))

    async def member_scopes(self, user_id, scope_ids):
        return set(scope_ids) & self.members.get(user_id, set())


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def transport_factory():
    return RecordingTransport
