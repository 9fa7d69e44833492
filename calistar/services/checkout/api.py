"""HTTP surface for the PIX checkout flow consumed by the storefront."""

from uuid import uuid4

from fastapi import APIRouter, FastAPI, Header, Query, Request

from calistar.common.errors import install_error_handlers
from calistar.common.logging import trace_id_ctx
from calistar.common.metrics import metrics_response
from calistar.services.checkout.schemas import (
    CreatePixRequest,
    OrderResponse,
    PaymentIntentResponse,
    PaymentStatusResponse,
    QuoteRequest,
    QuoteResponse,
)
from calistar.services.checkout.service import Customer, PaymentOrchestrator
from calistar.services.checkout.pricing import from_cents


def _iso(value) -> str | None:
    return value.isoformat() if value is not None else None


def create_app(orchestrator: PaymentOrchestrator, lifespan=None) -> FastAPI:
    """Build the checkout FastAPI app around an already wired orchestrator."""

    app = FastAPI(title="Calistar Checkout", lifespan=lifespan)
    install_error_handlers(app)
    router = APIRouter(prefix="/api/checkout")

    @router.post("/create-pix", response_model=PaymentIntentResponse)
    async def create_pix(
        req: CreatePixRequest,
        idempotency_key: str | None = Header(default=None),
        x_trace_id: str | None = Header(default=None),
    ):
        """Create a PIX payment intent for the current cart."""

        trace_id = x_trace_id or str(uuid4())
        trace_id_ctx.set(trace_id)
        order = await orchestrator.create(
            req.amount,
            [item.model_dump(exclude_none=True) for item in req.items],
            Customer(
                name=req.customer.name,
                tax_id=req.customer.tax_id,
                email=req.customer.email,
                phone=req.customer.phone,
            ),
            idempotency_key=idempotency_key,
            trace_id=trace_id,
        )
        return PaymentIntentResponse(
            id=order.gateway_payment_id,
            order_id=order.order_id,
            amount=float(from_cents(order.amount_cents)),
            pix_code=order.pix_code,
            qr_image=order.qr_image,
            expires_at=_iso(order.expires_at),
        )

    @router.get("/status/{payment_id}", response_model=PaymentStatusResponse)
    async def payment_status(payment_id: str, x_trace_id: str | None = Header(default=None)):
        """Current payment status; safe to poll every few seconds."""

        trace_id = x_trace_id or str(uuid4())
        trace_id_ctx.set(trace_id)
        result = await orchestrator.get_status(payment_id, trace_id=trace_id)
        return PaymentStatusResponse(
            id=result.payment_id,
            status=result.status,
            status_code=result.status_code,
            amount=float(result.amount) if result.amount is not None else None,
            paid=result.paid,
            order_id=result.order_id,
            order_status=result.order_status,
        )

    @router.post("/webhook")
    async def webhook(request: Request, order_id: str | None = Query(default=None)):
        """Gateway notifications; always acknowledged to avoid redelivery storms."""

        trace_id_ctx.set(request.headers.get("x-trace-id") or str(uuid4()))
        body = await request.body()
        orchestrator.handle_webhook(body, order_hint=order_id, trace_id=trace_id_ctx.get())
        return {"received": True}

    @router.get("/orders/{order_id}", response_model=OrderResponse)
    def get_order(order_id: str):
        """Back-office view of one order and its transition history."""

        order, timeline = orchestrator.get_order(order_id)
        return OrderResponse(
            order_id=order.order_id,
            payment_id=order.gateway_payment_id,
            status=order.status,
            amount=float(from_cents(order.amount_cents)),
            transaction_id=order.transaction_id,
            expires_at=_iso(order.expires_at),
            paid_at=_iso(order.paid_at),
            timeline=[
                {
                    "from": entry.from_state,
                    "to": entry.to_state,
                    "source": entry.source,
                    "reason": entry.reason,
                    "at": _iso(entry.created_at),
                }
                for entry in timeline
            ],
        )

    @router.post("/quote", response_model=QuoteResponse)
    def checkout_quote(req: QuoteRequest):
        """Shipping and total for a cart subtotal."""

        result = orchestrator.quote(req.subtotal)
        return QuoteResponse(
            subtotal=float(result.subtotal),
            shipping=float(result.shipping),
            total=float(result.total),
            free_shipping=result.free_shipping,
            remaining_for_free_shipping=float(result.remaining_for_free_shipping),
        )

    app.include_router(router)

    @app.get("/metrics")
    def metrics():
        """Prometheus scrape endpoint."""

        return metrics_response()

    @app.get("/health")
    def health():
        """Container health probe endpoint."""

        return {"ok": True}

    return app
