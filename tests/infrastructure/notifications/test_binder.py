"""Tests for connection authentication, binding and the connect flow."""

from __future__ import annotations

import asyncio
from datetime import timedelta

import anyio
import pytest

from server_hub.domain.exceptions import (
    AuthFailure,
    InvalidAcknowledgement,
    StoreUnavailable,
)
from server_hub.infrastructure.notifications import (
    ConnectionRegistry,
    DeliveryDispatcher,
    NotificationDelivery,
    ReconnectionReconciler,
    SessionBinder,
)

pytestmark = pytest.mark.anyio

TOKENS = {"alice-token": 7, "bob-token": 8}


def resolve(token: str) -> int:
    try:
        return TOKENS[token]
    except KeyError:
        raise AuthFailure("Invalid credentials") from None


@pytest.fixture
def registry() -> ConnectionRegistry:
    return ConnectionRegistry()


@pytest.fixture
def delivery(registry, store) -> NotificationDelivery:
    dispatcher = DeliveryDispatcher(registry, store, backoff_base=0, timeout=0.5)
    return NotificationDelivery(
        registry=registry,
        store=store,
        binder=SessionBinder(registry, store, resolve),
        dispatcher=dispatcher,
        reconciler=ReconnectionReconciler(store, dispatcher),
        idle_timeout=timedelta(seconds=60),
    )


async def test_bind_registers_authenticated_connection(registry, store, transport_factory) -> None:
    binder = SessionBinder(registry, store, resolve)

    connection = await binder.bind(transport_factory(), "alice-token")

    assert connection.user_id == 7
    assert registry.lookup(7) == {connection.connection_id}
    assert connection.connected_at is not None


@pytest.mark.parametrize("token", [None, "", "stolen-token"])
async def test_failed_authentication_registers_nothing(
    registry, store, transport_factory, token
) -> None:
    binder = SessionBinder(registry, store, resolve)

    with pytest.raises(AuthFailure):
        await binder.bind(transport_factory(), token)

    assert len(registry) == 0


async def test_bind_ignores_scopes_the_user_does_not_belong_to(
    registry, store, transport_factory
) -> None:
    store.members[7] = {"general"}
    binder = SessionBinder(registry, store, resolve)

    connection = await binder.bind(transport_factory(), "alice-token", ["general", "secret"])

    assert connection.scopes == {"general"}
    assert registry.lookup_by_scope("general") == {connection.connection_id}
    assert registry.lookup_by_scope("secret") == set()


async def test_bind_uses_stored_cursor_unless_client_resumes(
    registry, store, transport_factory
) -> None:
    store.add(7, 5)
    store.resume_cursor[7] = 4
    binder = SessionBinder(registry, store, resolve)

    stored = await binder.bind(transport_factory(), "alice-token")
    resumed = await binder.bind(transport_factory(), "alice-token", resume_after=2)

    assert stored.last_acknowledged_seq == 4
    assert stored.last_delivered_seq == 4
    assert resumed.last_acknowledged_seq == 2


async def test_client_cursor_is_clamped_to_stored_sequences(
    registry, store, transport_factory
) -> None:
    store.add(7, 2)
    binder = SessionBinder(registry, store, resolve)

    connection = await binder.bind(transport_factory(), "alice-token", resume_after=1000)

    assert connection.last_acknowledged_seq == 2
    assert connection.last_delivered_seq == 2


async def test_oversized_client_cursor_cannot_acknowledge_or_hide_new_records(
    delivery, store, transport_factory
) -> None:
    transport = transport_factory()
    connection = await delivery.connect(transport, "alice-token", resume_after=1000)

    with pytest.raises(InvalidAcknowledgement):
        await delivery.dispatcher.acknowledge(connection.connection_id, 1000)

    (record,) = store.add(7, 1)
    assert await delivery.dispatcher.deliver(record) == {connection.connection_id}
    assert transport.sequences == [1]
    assert store.delivered[7] == {1}


async def test_connect_replays_records_stored_while_offline(
    delivery, store, transport_factory
) -> None:
    store.add(7, 2)
    transport = transport_factory()

    connection = await delivery.connect(transport, "alice-token")

    assert transport.sequences == [1, 2]
    assert store.delivered[7] == {1, 2}
    assert connection.last_delivered_seq == 2


async def test_connect_drops_connection_when_replay_store_fails(
    delivery, registry, store, transport_factory
) -> None:
    async def unavailable(*args, **kwargs):
        raise StoreUnavailable("database is down")

    store.list_pending = unavailable
    transport = transport_factory()

    with pytest.raises(StoreUnavailable):
        await delivery.connect(transport, "alice-token")

    assert len(registry) == 0
    assert transport.closed_with == 1011


async def test_expire_idle_closes_silent_connections(
    delivery, registry, transport_factory
) -> None:
    transport = transport_factory()
    connection = await delivery.connect(transport, "bob-token")
    connection.last_seen_at = connection.last_seen_at - timedelta(minutes=5)

    assert await delivery.expire_idle() == 1
    assert registry.get(connection.connection_id) is None
    assert transport.closed_with == 1001


async def test_expire_idle_cancels_pushes_to_the_expired_connection(
    registry, store, transport_factory
) -> None:
    dispatcher = DeliveryDispatcher(registry, store, attempts=1, timeout=30)
    delivery = NotificationDelivery(
        registry=registry,
        store=store,
        binder=SessionBinder(registry, store, resolve),
        dispatcher=dispatcher,
        reconciler=ReconnectionReconciler(store, dispatcher),
        idle_timeout=timedelta(seconds=60),
    )
    transport = transport_factory(hang=True)
    connection = await delivery.connect(transport, "bob-token")
    (record,) = store.add(8, 1)
    pending = asyncio.ensure_future(dispatcher.deliver(record))
    with anyio.fail_after(1):
        await transport.started.wait()
    connection.last_seen_at = connection.last_seen_at - timedelta(minutes=5)

    assert await delivery.expire_idle() == 1

    with anyio.fail_after(1):
        assert await pending == set()
    assert transport.closed_with == 1001
    assert 8 not in store.delivered


async def test_disconnect_is_idempotent(delivery, registry, transport_factory) -> None:
    connection = await delivery.connect(transport_factory(), "bob-token")

    await delivery.disconnect(connection.connection_id)
    await delivery.disconnect(connection.connection_id)

    assert len(registry) == 0
