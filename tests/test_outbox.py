"""Outbox rows are published once and retried on failure."""

import asyncio

from sqlalchemy import select

from calistar.common.events import EventEnvelope
from calistar.common.outbox import enqueue_event, publish_outbox_batch
from calistar.services.checkout.models import OutboxEvent


class FakeBus:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.published: list[tuple[str, EventEnvelope]] = []

    async def publish(self, topic: str, event: EventEnvelope) -> None:
        if self.fail:
            raise ConnectionError("broker unavailable")
        self.published.append((topic, event))


def _stage(session_factory, order_id="ORD-1"):
    with session_factory() as db:
        event = enqueue_event(
            db, OutboxEvent, topic="orders.paid", aggregate_id=order_id, trace_id="t-1", payload={"order_id": order_id}
        )
        db.commit()
    return event


def _statuses(session_factory):
    with session_factory() as db:
        return [row.status for row in db.execute(select(OutboxEvent)).scalars()]


def test_pending_rows_are_published_and_marked_sent(session_factory):
    staged = _stage(session_factory)
    bus = FakeBus()
    assert asyncio.run(publish_outbox_batch(session_factory, OutboxEvent, bus, "test")) == 1
    topic, event = bus.published[0]
    assert topic == "orders.paid"
    assert event.event_id == staged.event_id
    assert event.aggregate_id == "ORD-1"
    assert event.payload == {"order_id": "ORD-1"}
    assert _statuses(session_factory) == ["SENT"]

    assert asyncio.run(publish_outbox_batch(session_factory, OutboxEvent, bus, "test")) == 0
    assert len(bus.published) == 1


def test_failed_publish_is_requeued(session_factory):
    _stage(session_factory)
    assert asyncio.run(publish_outbox_batch(session_factory, OutboxEvent, FakeBus(fail=True), "test")) == 0
    assert _statuses(session_factory) == ["PENDING"]

    bus = FakeBus()
    assert asyncio.run(publish_outbox_batch(session_factory, OutboxEvent, bus, "test")) == 1
    assert _statuses(session_factory) == ["SENT"]
