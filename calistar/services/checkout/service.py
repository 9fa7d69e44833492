"""PIX payment orchestration.

Creates payment intents with the gateway, answers status polls and consumes
gateway webhooks. Polling and webhooks race to confirm the same order; both
go through `_advance`, a conditional update guarded by `state_version`, so
whichever arrives first applies the transition and the other is a no-op.
"""

import secrets
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Callable

from pydantic import ValidationError as PayloadValidationError
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from calistar.common.config import Settings
from calistar.common.errors import (
    CalistarError,
    CheckoutInProgress,
    InvalidAmount,
    InvalidTaxId,
    MissingField,
    PaymentNotFound,
)
from calistar.common.logging import logger, order_id_ctx, payment_id_ctx
from calistar.common.metrics import (
    checkout_requests_total,
    duplicate_webhooks_skipped_total,
    late_confirmations_total,
    order_transitions_total,
    paid_failed_orders_total,
    payment_status_polls_total,
    webhook_deliveries_total,
)
from calistar.common.outbox import enqueue_event
from calistar.common.state_machine import can_transition
from calistar.services.checkout.cpf import strip_tax_id, validate_cpf
from calistar.services.checkout.gateway import GatewayStatus, PagouGateway
from calistar.services.checkout.models import Order, OrderTimeline, OutboxEvent, WebhookReceipt
from calistar.services.checkout.pricing import Quote, from_cents, parse_amount, quote, round_amount, to_cents
from calistar.services.checkout.schemas import WebhookPayload

# Gateway event names, current and legacy, mapped to the order status they confirm.
WEBHOOK_EVENTS: dict[str, str] = {
    "payment.completed": "completed",
    "payment.refunded": "refunded",
    "qrcode.completed": "completed",
    "qrcode.refunded": "refunded",
}

FULFILLMENT_TOPICS: dict[str, str] = {
    "completed": "orders.paid",
    "refunded": "orders.refunded",
}

SETTLED_STATUSES = ("completed", "refunded")

# Gateway statuses that end the payment window; any other status (including
# `unknown`) lets an order past its deadline expire.
UNEXPIRABLE_GATEWAY_STATUSES = ("completed", "refunded", "canceled")


@dataclass(frozen=True)
class Customer:
    name: str | None
    tax_id: str | None
    email: str | None = None
    phone: str | None = None


@dataclass(frozen=True)
class StatusResult:
    payment_id: str
    status: str
    status_code: int | str | None
    amount: Decimal | None
    paid: bool
    order_id: str | None = None
    order_status: str | None = None


def new_order_id(now_ms: int | None = None) -> str:
    """Local correlation token `ORD-<epoch ms>-<random>`."""

    now_ms = int(time.time() * 1000) if now_ms is None else now_ms
    return f"ORD-{now_ms}-{secrets.token_hex(4)}"


def _as_utc(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def reported_status(gateway_status: str, order_status: str | None) -> str:
    """Status shown to the client; never regresses below a settled order."""

    if order_status in SETTLED_STATUSES and gateway_status not in SETTLED_STATUSES:
        return order_status
    if order_status == "refunded":
        return order_status
    return gateway_status


class PaymentOrchestrator:
    """Owns the order record and its progression through the PIX lifecycle."""

    def __init__(
        self,
        session_factory,
        gateway: PagouGateway,
        settings: Settings,
        service_name: str = "checkout",
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.session_factory = session_factory
        self.gateway = gateway
        self.settings = settings
        self.service_name = service_name
        self.clock = clock

    # -- creation ---------------------------------------------------------

    def _validate(self, amount, customer: Customer) -> tuple[Decimal, str, str]:
        value = parse_amount(amount)
        if value < self.settings.pix_min_amount:
            raise InvalidAmount(detail=f"amount={value}")
        name = (customer.name or "").strip()
        if not name:
            raise MissingField("name")
        tax_id = strip_tax_id(customer.tax_id)
        if not tax_id:
            raise MissingField("taxId")
        if not validate_cpf(tax_id):
            raise InvalidTaxId()
        return round_amount(value), name, tax_id

    def _gateway_request(self, order: Order, item_count: int) -> dict:
        metadata = [{"key": "order_id", "value": order.order_id}]
        if order.payer_email:
            metadata.append({"key": "email", "value": order.payer_email})
        if order.payer_phone:
            metadata.append({"key": "phone", "value": order.payer_phone})
        base_url = self.settings.public_base_url.rstrip("/")
        return {
            "amount": float(from_cents(order.amount_cents)),
            "description": f"Compra {self.settings.store_name} - {max(item_count, 1)} item(s)",
            "expiration": self.settings.pix_expiration_seconds,
            "payer": {"name": order.payer_name, "document": order.payer_tax_id},
            "metadata": metadata,
            "notification_url": f"{base_url}/api/checkout/webhook?order_id={order.order_id}",
            "customer_code": order.order_id,
        }

    def _existing_for_key(self, db, idempotency_key: str) -> Order | None:
        existing = db.execute(select(Order).where(Order.idempotency_key == idempotency_key)).scalar_one_or_none()
        if existing is None:
            return None
        if existing.gateway_payment_id is None:
            raise CheckoutInProgress(detail=f"order_id={existing.order_id}")
        return existing

    async def create(
        self,
        amount,
        items: list | None,
        customer: Customer,
        idempotency_key: str | None = None,
        trace_id: str = "",
    ) -> Order:
        """Validate, persist the order, then ask the gateway for a PIX code.

        A repeated call with the same idempotency key returns the stored
        order. Gateway failures are surfaced as-is and never retried here.
        """

        try:
            rounded, name, tax_id = self._validate(amount, customer)
        except CalistarError as exc:
            checkout_requests_total.labels(service=self.service_name, outcome=exc.code).inc()
            raise
        items = list(items or [])

        with self.session_factory() as db:
            if idempotency_key:
                existing = self._existing_for_key(db, idempotency_key)
                if existing is not None:
                    logger.info("checkout replayed order_id=%s", existing.order_id)
                    checkout_requests_total.labels(service=self.service_name, outcome="replayed").inc()
                    return existing
            now = self.clock()
            order = Order(
                order_id=new_order_id(),
                idempotency_key=idempotency_key,
                amount_cents=to_cents(rounded),
                payer_name=name,
                payer_tax_id=tax_id,
                payer_email=customer.email or None,
                payer_phone=customer.phone or None,
                items=items,
                status="pending",
                state_version=0,
                expires_at=now + timedelta(seconds=self.settings.pix_expiration_seconds),
            )
            db.add(order)
            db.add(
                OrderTimeline(
                    order_id=order.order_id,
                    from_state=None,
                    to_state="pending",
                    source="checkout",
                    reason="order_created",
                )
            )
            try:
                db.commit()
            except IntegrityError as exc:
                db.rollback()
                raise CheckoutInProgress(detail="concurrent checkout with same idempotency key") from exc

        order_id_ctx.set(order.order_id)
        logger.info("checkout started order_id=%s amount_cents=%s", order.order_id, order.amount_cents)
        try:
            pix = await self.gateway.create_pix(self._gateway_request(order, len(items)))
        except CalistarError as exc:
            self._fail_order(order.order_id, exc.code, trace_id)
            checkout_requests_total.labels(service=self.service_name, outcome=exc.code).inc()
            raise

        if pix.amount is not None and to_cents(pix.amount) != order.amount_cents:
            logger.warning(
                "gateway echoed different amount order_id=%s sent_cents=%s echoed=%s",
                order.order_id,
                order.amount_cents,
                pix.amount,
            )
        with self.session_factory() as db:
            stored = db.get(Order, order.order_id)
            stored.gateway_payment_id = pix.payment_id
            stored.pix_code = pix.pix_code
            stored.qr_image = pix.qr_image
            db.commit()
        payment_id_ctx.set(pix.payment_id)
        checkout_requests_total.labels(service=self.service_name, outcome="created").inc()
        logger.info("checkout created order_id=%s payment_id=%s", stored.order_id, pix.payment_id)
        return stored

    def _fail_order(self, order_id: str, reason: str, trace_id: str) -> None:
        """Mark an order whose creation call failed and free its idempotency key."""

        with self.session_factory() as db:
            order = db.get(Order, order_id)
            self._advance(db, order, "failed", source="checkout", reason=reason, trace_id=trace_id)
            order.idempotency_key = None
            db.commit()

    # -- transitions ------------------------------------------------------

    def _advance(
        self,
        db,
        order: Order,
        new_status: str,
        source: str,
        reason: str,
        trace_id: str = "",
        **values,
    ) -> bool:
        """Apply one forward transition; same-state and backward moves are no-ops.

        The write is conditional on `(status, state_version)`, so a concurrent
        writer that got there first makes this call a no-op as well.
        """

        if not can_transition(order.status, new_status):
            if order.status == "failed" and new_status == "completed":
                paid_failed_orders_total.labels(service=self.service_name).inc()
                logger.warning(
                    "payment_on_failed_order order_id=%s payment_id=%s source=%s: paid after creation failed",
                    order.order_id,
                    order.gateway_payment_id,
                    source,
                )
            elif order.status != new_status:
                logger.info(
                    "transition ignored order_id=%s from=%s to=%s source=%s",
                    order.order_id,
                    order.status,
                    new_status,
                    source,
                )
            return False

        from_status = order.status
        current_version = order.state_version
        result = db.execute(
            update(Order)
            .where(
                Order.order_id == order.order_id,
                Order.status == from_status,
                Order.state_version == current_version,
            )
            .values(status=new_status, state_version=current_version + 1, updated_at=self.clock(), **values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            logger.info(
                "transition lost race order_id=%s expected_version=%s to=%s source=%s",
                order.order_id,
                current_version,
                new_status,
                source,
            )
            db.refresh(order)
            return False

        order.status = new_status
        order.state_version = current_version + 1
        for key, value in values.items():
            setattr(order, key, value)
        db.add(
            OrderTimeline(
                order_id=order.order_id,
                from_state=from_status,
                to_state=new_status,
                source=source,
                reason=reason,
            )
        )
        order_transitions_total.labels(service=self.service_name, to_state=new_status, source=source).inc()

        if from_status == "expired" and new_status == "completed":
            late_confirmations_total.labels(service=self.service_name).inc()
            logger.warning(
                "late_confirmation order_id=%s payment_id=%s source=%s: paid after client-side expiry",
                order.order_id,
                order.gateway_payment_id,
                source,
            )
        topic = FULFILLMENT_TOPICS.get(new_status)
        if topic:
            enqueue_event(
                db,
                OutboxEvent,
                topic=topic,
                aggregate_id=order.order_id,
                trace_id=trace_id,
                payload={
                    "order_id": order.order_id,
                    "payment_id": order.gateway_payment_id,
                    "transaction_id": order.transaction_id,
                    "amount_cents": order.amount_cents,
                    "items": order.items,
                    "customer": {
                        "name": order.payer_name,
                        "email": order.payer_email,
                        "phone": order.payer_phone,
                    },
                    "source": source,
                },
            )
        logger.info(
            "order transition order_id=%s %s->%s source=%s reason=%s",
            order.order_id,
            from_status,
            new_status,
            source,
            reason,
        )
        return True

    # -- status polling ---------------------------------------------------

    def _find_by_payment(self, db, payment_id: str) -> Order | None:
        return db.execute(select(Order).where(Order.gateway_payment_id == payment_id)).scalar_one_or_none()

    async def get_status(self, payment_id: str, trace_id: str = "") -> StatusResult:
        """Read the gateway status and fold it into the stored order, if any."""

        payment_id_ctx.set(payment_id)
        status: GatewayStatus = await self.gateway.get_pix(payment_id)
        payment_status_polls_total.labels(service=self.service_name, status=status.status).inc()

        with self.session_factory() as db:
            order = self._find_by_payment(db, payment_id)
            if order is None:
                return StatusResult(
                    payment_id=status.payment_id,
                    status=status.status,
                    status_code=status.status_code,
                    amount=status.amount,
                    paid=status.paid,
                )
            order_id_ctx.set(order.order_id)
            reason = f"gateway_status:{status.status_code}"
            if status.status == "completed":
                self._advance(db, order, "completed", "poll", reason, trace_id, paid_at=self.clock())
            elif status.status == "refunded":
                if order.status != "completed":
                    self._advance(db, order, "completed", "poll", "implied_by_refund", trace_id, paid_at=self.clock())
                self._advance(db, order, "refunded", "poll", reason, trace_id)
            elif status.status in ("active", "canceled"):
                self._advance(db, order, status.status, "poll", reason, trace_id)

            if (
                status.status not in UNEXPIRABLE_GATEWAY_STATUSES
                and order.status in ("pending", "active")
                and self.clock() >= _as_utc(order.expires_at)
            ):
                self._advance(db, order, "expired", "poll", "expired_without_confirmation", trace_id)
            db.commit()

            shown = reported_status(status.status, order.status)
            return StatusResult(
                payment_id=status.payment_id,
                status=shown,
                status_code=status.status_code,
                amount=status.amount if status.amount is not None else from_cents(order.amount_cents),
                paid=shown == "completed",
                order_id=order.order_id,
                order_status=order.status,
            )

    # -- webhooks ---------------------------------------------------------

    def handle_webhook(self, body: bytes, order_hint: str | None = None, trace_id: str = "") -> str:
        """Consume one gateway notification and return its outcome label.

        Never raises: the HTTP layer always acknowledges, so a failing
        delivery is logged and dropped instead of being redelivered.
        """

        try:
            payload = WebhookPayload.model_validate_json(body)
        except (PayloadValidationError, ValueError) as exc:
            logger.warning("webhook malformed dropped error=%s", str(exc).splitlines()[0])
            webhook_deliveries_total.labels(service=self.service_name, event_name="unknown", outcome="malformed").inc()
            return "malformed"

        target = WEBHOOK_EVENTS.get(payload.event_name)
        if target is None:
            logger.info("webhook ignored event_name=%s payment_id=%s", payload.event_name, payload.data.id)
            webhook_deliveries_total.labels(
                service=self.service_name, event_name="unrecognized", outcome="ignored"
            ).inc()
            return "ignored"

        payment_id_ctx.set(payload.data.id)
        try:
            outcome = self._apply_webhook(payload, target, order_hint, trace_id)
        except IntegrityError:
            # A concurrent redelivery inserted the same receipt first.
            outcome = "duplicate"
        except Exception as exc:
            logger.exception("webhook processing failed payment_id=%s: %s", payload.data.id, exc)
            outcome = "error"
        webhook_deliveries_total.labels(
            service=self.service_name, event_name=payload.event_name, outcome=outcome
        ).inc()
        return outcome

    def _correlate(self, db, data, order_hint: str | None) -> Order | None:
        """Find the order by our own correlation id first, gateway id last."""

        for candidate in (order_hint, data.external_id, data.client_code):
            if not candidate:
                continue
            order = db.get(Order, candidate)
            if order is None:
                continue
            if order.gateway_payment_id not in (None, data.id):
                logger.warning(
                    "webhook correlation mismatch order_id=%s stored_payment_id=%s payment_id=%s",
                    order.order_id,
                    order.gateway_payment_id,
                    data.id,
                )
                continue
            return order
        return self._find_by_payment(db, data.id)

    def _apply_webhook(self, payload: WebhookPayload, target: str, order_hint: str | None, trace_id: str) -> str:
        data = payload.data
        delivery_key = data.transaction_id or data.id
        with self.session_factory() as db:
            seen = db.execute(
                select(WebhookReceipt).where(
                    WebhookReceipt.delivery_key == delivery_key,
                    WebhookReceipt.event_name == payload.event_name,
                )
            ).scalar_one_or_none()
            if seen is not None:
                logger.info("duplicate webhook skipped event_name=%s delivery_key=%s", payload.event_name, delivery_key)
                duplicate_webhooks_skipped_total.labels(
                    service=self.service_name, event_name=payload.event_name
                ).inc()
                return "duplicate"

            order = self._correlate(db, data, order_hint)
            if order is None:
                # Unmatched deliveries leave no receipt; a redelivery is processed again.
                logger.warning("webhook for unknown order payment_id=%s hint=%s", data.id, order_hint)
                return "unmatched"
            receipt = WebhookReceipt(
                delivery_key=delivery_key,
                event_name=payload.event_name,
                gateway_payment_id=data.id,
                order_id=order.order_id,
                outcome="noop",
            )
            db.add(receipt)

            order_id_ctx.set(order.order_id)
            if order.gateway_payment_id is None:
                order.gateway_payment_id = data.id
            if data.amount is not None and to_cents(data.amount) != order.amount_cents:
                logger.warning(
                    "webhook amount mismatch order_id=%s expected_cents=%s amount=%s",
                    order.order_id,
                    order.amount_cents,
                    data.amount,
                )

            reason = f"webhook:{payload.event_name}"
            paid_fields = {"paid_at": self.clock(), "transaction_id": data.transaction_id}
            if target == "completed":
                applied = self._advance(db, order, "completed", "webhook", reason, trace_id, **paid_fields)
            else:
                if order.status not in SETTLED_STATUSES:
                    self._advance(db, order, "completed", "webhook", "implied_by_refund", trace_id, **paid_fields)
                applied = self._advance(db, order, "refunded", "webhook", reason, trace_id)
            receipt.outcome = "applied" if applied else "noop"
            db.commit()
            return receipt.outcome

    # -- reads ------------------------------------------------------------

    def get_order(self, order_id: str) -> tuple[Order, list[OrderTimeline]]:
        with self.session_factory() as db:
            order = db.get(Order, order_id)
            if order is None:
                raise PaymentNotFound("Pedido não encontrado", detail=f"order_id={order_id}")
            timeline = (
                db.execute(
                    select(OrderTimeline)
                    .where(OrderTimeline.order_id == order_id)
                    .order_by(OrderTimeline.created_at.asc())
                )
                .scalars()
                .all()
            )
            return order, list(timeline)

    def quote(self, subtotal) -> Quote:
        return quote(subtotal, self.settings)
