"""Transactional outbox helpers.

Rows are written in the same transaction as the state change they describe
and published afterwards by `run_outbox_publisher`. Helpers take the outbox
model as a parameter so they stay independent of any one service.
"""

import asyncio
from datetime import datetime, timedelta, timezone

from sqlalchemy import func, or_, select, update

from calistar.common.events import EventEnvelope, KafkaBus
from calistar.common.logging import logger
from calistar.common.metrics import outbox_oldest_pending_age_seconds, outbox_pending_total


def enqueue_event(db, outbox_model, topic: str, aggregate_id: str, trace_id: str, payload: dict) -> EventEnvelope:
    """Stage one event in the caller's transaction."""

    event = EventEnvelope(event_type=topic, aggregate_id=aggregate_id, trace_id=trace_id, payload=payload)
    db.add(
        outbox_model(
            id=event.event_id,
            aggregate_type="order",
            aggregate_id=aggregate_id,
            event_type=topic,
            topic=topic,
            payload=event.model_dump(),
        )
    )
    return event


def claim_outbox_batch(db, outbox_model, limit: int = 100, processing_timeout_seconds: int = 30) -> list[dict]:
    """Claim a batch of pending/stale rows for publishing."""

    table = outbox_model.__table__
    now = datetime.now(timezone.utc)
    stale_before = now - timedelta(seconds=processing_timeout_seconds)
    ids = (
        db.execute(
            select(table.c.id)
            .where(
                or_(
                    table.c.status == "PENDING",
                    (table.c.status == "PROCESSING") & (table.c.sent_at < stale_before),
                )
            )
            .order_by(table.c.created_at)
            .limit(limit)
            .with_for_update(skip_locked=True)
        )
        .scalars()
        .all()
    )
    if not ids:
        return []
    db.execute(update(table).where(table.c.id.in_(ids)).values(status="PROCESSING", sent_at=now))
    rows = db.execute(select(table.c.id, table.c.topic, table.c.payload).where(table.c.id.in_(ids))).all()
    return [{"id": row.id, "topic": row.topic, "payload": row.payload} for row in rows]


def mark_outbox_sent(db, outbox_model, event_id: str) -> None:
    """Mark one claimed outbox row as delivered."""

    table = outbox_model.__table__
    db.execute(
        update(table)
        .where(table.c.id == event_id, table.c.status == "PROCESSING")
        .values(status="SENT", sent_at=datetime.now(timezone.utc))
    )


def requeue_outbox_event(db, outbox_model, event_id: str) -> None:
    """Return a claimed row to `PENDING` so it can be retried."""

    table = outbox_model.__table__
    db.execute(
        update(table)
        .where(table.c.id == event_id, table.c.status == "PROCESSING")
        .values(status="PENDING", sent_at=None)
    )


def update_outbox_backlog_metrics(db, outbox_model, service_name: str) -> None:
    """Update gauges for pending outbox depth and oldest age."""

    table = outbox_model.__table__
    pending_statuses = ("PENDING", "PROCESSING")
    pending_count = (
        db.execute(select(func.count()).select_from(table).where(table.c.status.in_(pending_statuses))).scalar_one()
    )
    oldest_pending = db.execute(
        select(func.min(table.c.created_at)).where(table.c.status.in_(pending_statuses))
    ).scalar_one()
    age_seconds = 0.0
    if oldest_pending is not None:
        if oldest_pending.tzinfo is None:
            oldest_pending = oldest_pending.replace(tzinfo=timezone.utc)
        age_seconds = max(0.0, (datetime.now(timezone.utc) - oldest_pending).total_seconds())
    outbox_pending_total.labels(service=service_name).set(float(pending_count))
    outbox_oldest_pending_age_seconds.labels(service=service_name).set(age_seconds)


async def publish_outbox_batch(session_factory, outbox_model, bus: KafkaBus, service_name: str) -> int:
    """Publish one claimed batch; failed rows go back to `PENDING`."""

    with session_factory() as db:
        rows = claim_outbox_batch(db, outbox_model, limit=100)
        update_outbox_backlog_metrics(db, outbox_model, service_name)
        db.commit()
    sent = 0
    for row in rows:
        try:
            await bus.publish(row["topic"], EventEnvelope(**row["payload"]))
        except Exception as exc:
            logger.exception("outbox publish failed event_id=%s: %s", row["id"], exc)
            with session_factory() as db:
                requeue_outbox_event(db, outbox_model, row["id"])
                db.commit()
            continue
        with session_factory() as db:
            mark_outbox_sent(db, outbox_model, row["id"])
            db.commit()
        sent += 1
    return sent


async def run_outbox_publisher(session_factory, outbox_model, bus: KafkaBus, service_name: str) -> None:
    """Continuously publish pending outbox rows."""

    while True:
        try:
            await publish_outbox_batch(session_factory, outbox_model, bus, service_name)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.error("outbox publisher loop error: %s", exc)
        await asyncio.sleep(0.5)
