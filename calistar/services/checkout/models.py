"""Checkout database models.

The order table is the durable record of every PIX checkout attempt. Both the
status-polling path and the webhook path update it through the state machine.
"""

from datetime import datetime
from uuid import uuid4

from sqlalchemy import DateTime, ForeignKey, Integer, String, Text, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from calistar.common.db import Base, JSONType


class Order(Base):
    """Current state of one checkout, keyed by the local correlation id."""

    __tablename__ = "orders"

    order_id: Mapped[str] = mapped_column(String, primary_key=True)
    gateway_payment_id: Mapped[str | None] = mapped_column(String, unique=True, index=True, nullable=True)
    idempotency_key: Mapped[str | None] = mapped_column(String, unique=True, index=True, nullable=True)
    amount_cents: Mapped[int] = mapped_column(Integer)
    payer_name: Mapped[str] = mapped_column(String)
    payer_tax_id: Mapped[str] = mapped_column(String(11))
    payer_email: Mapped[str | None] = mapped_column(String, nullable=True)
    payer_phone: Mapped[str | None] = mapped_column(String, nullable=True)
    items: Mapped[list] = mapped_column(JSONType, default=list)
    pix_code: Mapped[str | None] = mapped_column(Text, nullable=True)
    qr_image: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String, index=True)
    state_version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    transaction_id: Mapped[str | None] = mapped_column(String, nullable=True)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class OrderTimeline(Base):
    """Immutable audit trail of every order status transition."""

    __tablename__ = "order_timeline"

    timeline_id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid4()))
    order_id: Mapped[str] = mapped_column(ForeignKey("orders.order_id"), index=True)
    from_state: Mapped[str | None] = mapped_column(String, nullable=True)
    to_state: Mapped[str] = mapped_column(String)
    source: Mapped[str] = mapped_column(String)
    reason: Mapped[str] = mapped_column(String)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class WebhookReceipt(Base):
    """One processed gateway delivery; redeliveries hit the unique key."""

    __tablename__ = "webhook_receipts"
    __table_args__ = (UniqueConstraint("delivery_key", "event_name", name="uq_webhook_delivery"),)

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid4()))
    delivery_key: Mapped[str] = mapped_column(String, index=True)
    event_name: Mapped[str] = mapped_column(String)
    gateway_payment_id: Mapped[str] = mapped_column(String, index=True)
    order_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    outcome: Mapped[str] = mapped_column(String)
    received_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class OutboxEvent(Base):
    """Fulfillment events waiting to be published to Kafka."""

    __tablename__ = "outbox_events"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid4()))
    aggregate_type: Mapped[str] = mapped_column(String)
    aggregate_id: Mapped[str] = mapped_column(String, index=True)
    event_type: Mapped[str] = mapped_column(String, index=True)
    topic: Mapped[str] = mapped_column(String)
    payload: Mapped[dict] = mapped_column(JSONType)
    status: Mapped[str] = mapped_column(String, default="PENDING", index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
