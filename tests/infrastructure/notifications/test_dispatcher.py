"""Tests for live delivery, retries and replay of notifications."""

from __future__ import annotations

import asyncio

import anyio
import pytest

from server_hub.domain.entities import Connection
from server_hub.domain.exceptions import InvalidAcknowledgement, StoreUnavailable
from server_hub.infrastructure.notifications import (
    ConnectionRegistry,
    DeliveryDispatcher,
    ReconnectionReconciler,
    serialize_notification,
)

pytestmark = pytest.mark.anyio


@pytest.fixture
def registry() -> ConnectionRegistry:
    return ConnectionRegistry()


@pytest.fixture
def dispatcher(registry, store) -> DeliveryDispatcher:
    return DeliveryDispatcher(registry, store, attempts=3, backoff_base=0.001, timeout=0.5)


def _register(registry, transport, connection_id: str, user_id: int, scopes=(), cursor: int = 0):
    connection = Connection(
        connection_id=connection_id,
        user_id=user_id,
        transport=transport,
        scopes=set(scopes),
        last_acknowledged_seq=cursor,
        last_delivered_seq=cursor,
    )
    registry.register(connection)
    return connection


async def test_deliver_reaches_every_connection_of_the_recipient(
    registry, store, dispatcher, transport_factory
) -> None:
    first, second, other = transport_factory(), transport_factory(), transport_factory()
    _register(registry, first, "a", user_id=7, scopes={"general"})
    _register(registry, second, "b", user_id=7, scopes={"general"})
    _register(registry, other, "c", user_id=8, scopes={"general"})
    (record,) = store.add(7, 1, scope_id="general")

    reached = await dispatcher.deliver(record)

    assert reached == {"a", "b"}
    assert first.sequences == [1]
    assert second.sequences == [1]
    assert other.sent == []
    assert store.delivered[7] == {1}


async def test_scoped_record_skips_unsubscribed_connections(
    registry, store, dispatcher, transport_factory
) -> None:
    subscribed, unsubscribed = transport_factory(), transport_factory()
    _register(registry, subscribed, "a", user_id=7, scopes={"general"})
    _register(registry, unsubscribed, "b", user_id=7)
    (record,) = store.add(7, 1, scope_id="general")

    assert await dispatcher.deliver(record) == {"a"}
    assert unsubscribed.sent == []


async def test_deliver_without_live_connection_keeps_record_pending(
    store, dispatcher
) -> None:
    (record,) = store.add(7, 1)

    assert await dispatcher.deliver(record) == set()
    assert 7 not in store.delivered


async def test_transient_failure_is_retried(registry, store, dispatcher, transport_factory) -> None:
    transport = transport_factory(failures=2)
    _register(registry, transport, "a", user_id=7)
    (record,) = store.add(7, 1)

    assert await dispatcher.deliver(record) == {"a"}
    assert transport.attempts == 3
    assert transport.sequences == [1]
    assert registry.get("a").last_delivered_seq == 1


async def test_exhausted_retries_drop_the_connection(
    registry, store, dispatcher, transport_factory
) -> None:
    transport = transport_factory(failures=10)
    _register(registry, transport, "a", user_id=7)
    (record,) = store.add(7, 1)

    reached = await dispatcher.deliver(record)

    assert reached == set()
    assert transport.attempts == 3
    assert registry.get("a") is None
    assert transport.closed_with == 1011
    assert 7 not in store.delivered
    assert [r.sequence for r in await store.list_pending(7, 0)] == [1]


async def test_hung_transport_times_out(registry, store, transport_factory) -> None:
    dispatcher = DeliveryDispatcher(registry, store, attempts=2, backoff_base=0, timeout=0.05)
    transport = transport_factory(hang=True)
    _register(registry, transport, "a", user_id=7)
    (record,) = store.add(7, 1)

    with anyio.fail_after(2):
        reached = await dispatcher.deliver(record)

    assert reached == set()
    assert transport.attempts == 2
    assert registry.get("a") is None


async def test_concurrent_deliveries_arrive_in_sequence_order(
    registry, store, dispatcher, transport_factory
) -> None:
    transport = transport_factory()
    _register(registry, transport, "a", user_id=7)
    records = store.add(7, 5)

    await asyncio.gather(*(dispatcher.deliver(record) for record in records))

    assert transport.sequences == [1, 2, 3, 4, 5]


async def test_out_of_order_dispatch_fills_the_gap_first(
    registry, store, dispatcher, transport_factory
) -> None:
    transport = transport_factory()
    _register(registry, transport, "a", user_id=7)
    first, second = store.add(7, 2)

    assert await dispatcher.deliver(second) == {"a"}
    assert await dispatcher.deliver(first) == set()

    assert transport.sequences == [1, 2]
    assert store.delivered[7] == {1, 2}
    assert await dispatcher.acknowledge("a", 2) == 2


async def test_late_lower_sequence_is_not_reported_as_reached(
    registry, store, dispatcher, transport_factory
) -> None:
    transport = transport_factory()
    connection = _register(registry, transport, "a", user_id=7, cursor=1)
    (first,) = store.add(7, 1)

    assert await dispatcher.push(connection, first) is False
    assert transport.sent == []
    assert 7 not in store.delivered


async def test_gap_fill_leaves_unsubscribed_scoped_records_pending(
    registry, store, dispatcher, transport_factory
) -> None:
    transport = transport_factory()
    _register(registry, transport, "a", user_id=7)
    store.add(7, 1, scope_id="secret")
    (second,) = store.add(7, 1)

    assert await dispatcher.deliver(second) == {"a"}

    assert transport.sequences == [2]
    assert store.delivered[7] == {2}


async def test_gap_fill_survives_store_outage(
    registry, store, dispatcher, transport_factory
) -> None:
    async def unavailable(*args, **kwargs):
        raise StoreUnavailable("database is down")

    transport = transport_factory()
    _register(registry, transport, "a", user_id=7)
    _, second = store.add(7, 2)
    store.list_pending = unavailable

    assert await dispatcher.deliver(second) == {"a"}

    assert transport.sequences == [2]
    assert store.delivered[7] == {2}


async def test_drop_cancels_in_flight_pushes(registry, store, transport_factory) -> None:
    dispatcher = DeliveryDispatcher(registry, store, attempts=1, timeout=30)
    transport = transport_factory(hang=True)
    _register(registry, transport, "a", user_id=7)
    (record,) = store.add(7, 1)

    delivery = asyncio.ensure_future(dispatcher.deliver(record))
    with anyio.fail_after(1):
        await transport.started.wait()

    await dispatcher.drop("a")

    with anyio.fail_after(1):
        assert await delivery == set()
    assert transport.closed_with == 1000
    assert registry.get("a") is None


async def test_acknowledge_updates_connection_and_store(
    registry, store, dispatcher, transport_factory
) -> None:
    transport = transport_factory()
    _register(registry, transport, "a", user_id=7)
    for record in store.add(7, 3):
        await dispatcher.deliver(record)

    assert await dispatcher.acknowledge("a", 2) == 2
    assert store.acknowledged[7] == 2

    with pytest.raises(InvalidAcknowledgement):
        await dispatcher.acknowledge("a", 4)

    await dispatcher.mark_read("a", 3)
    assert store.read[7] == {3}


async def test_reconcile_replays_missed_records_in_pages(
    registry, store, dispatcher, transport_factory
) -> None:
    store.add(7, 5)
    transport = transport_factory()
    connection = _register(registry, transport, "a", user_id=7, cursor=1)
    reconciler = ReconnectionReconciler(store, dispatcher, page_size=2)

    pushed = await reconciler.reconcile(connection)

    assert pushed == 4
    assert transport.sequences == [2, 3, 4, 5]
    assert store.delivered[7] == {2, 3, 4, 5}
    assert connection.last_delivered_seq == 5


async def test_reconcile_twice_does_not_resend(
    registry, store, dispatcher, transport_factory
) -> None:
    store.add(7, 3)
    transport = transport_factory()
    connection = _register(registry, transport, "a", user_id=7)
    reconciler = ReconnectionReconciler(store, dispatcher)

    await reconciler.reconcile(connection)
    await reconciler.reconcile(connection)

    assert transport.sequences == [1, 2, 3]


async def test_live_delivery_during_replay_keeps_order(
    registry, store, dispatcher, transport_factory
) -> None:
    records = store.add(7, 3)
    transport = transport_factory()
    connection = _register(registry, transport, "a", user_id=7)
    reconciler = ReconnectionReconciler(store, dispatcher)

    await asyncio.gather(reconciler.reconcile(connection), dispatcher.deliver(records[-1]))

    assert transport.sequences == [1, 2, 3]


async def test_reconcile_stops_when_connection_is_dropped(
    registry, store, dispatcher, transport_factory
) -> None:
    store.add(7, 3)
    transport = transport_factory(failures=10)
    connection = _register(registry, transport, "a", user_id=7)
    reconciler = ReconnectionReconciler(store, dispatcher)

    assert await reconciler.reconcile(connection) == 0
    assert registry.get("a") is None
    assert 7 not in store.delivered


def test_serialize_notification_omits_missing_link(store) -> None:
    (record,) = store.add(7, 1, scope_id="general")

    payload = serialize_notification(record)

    assert payload["seq"] == 1
    assert payload["scope"] == "general"
    assert payload["read"] is False
    assert "link" not in payload
