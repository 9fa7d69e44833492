"""Checkout service process: wiring, outbox publisher lifecycle, ASGI app."""

import asyncio
from contextlib import asynccontextmanager

from fastapi import FastAPI

from calistar.common.config import get_settings
from calistar.common.db import make_session_factory
from calistar.common.events import KafkaBus
from calistar.common.logging import configure_logging
from calistar.common.outbox import run_outbox_publisher
from calistar.common.startup import log_startup_config
from calistar.common.tracing import instrument_app, setup_tracing
from calistar.services.checkout.api import create_app
from calistar.services.checkout.gateway import PagouGateway
from calistar.services.checkout.models import OutboxEvent
from calistar.services.checkout.service import PaymentOrchestrator

settings = get_settings()
configure_logging(settings.service_name, settings.log_level)
setup_tracing(settings)
log_startup_config(
    settings,
    [
        "SERVICE_NAME",
        "POSTGRES_DSN",
        "KAFKA_BOOTSTRAP_SERVERS",
        "PAGOU_API_URL",
        "PAGOU_SECRET_KEY",
        "PUBLIC_BASE_URL",
        "PIX_MIN_AMOUNT",
        "PIX_EXPIRATION_SECONDS",
    ],
)
session_factory = make_session_factory(settings.postgres_dsn)
gateway = PagouGateway(settings, service_name=settings.service_name)
orchestrator = PaymentOrchestrator(session_factory, gateway, settings, service_name=settings.service_name)
kafka = KafkaBus(settings.kafka_bootstrap_servers)


@asynccontextmanager
async def lifespan(_: FastAPI):
    """Run the fulfillment outbox publisher with app lifecycle."""

    publisher_task = asyncio.create_task(
        run_outbox_publisher(session_factory, OutboxEvent, kafka, settings.service_name)
    )
    yield
    publisher_task.cancel()
    await gateway.close()
    await kafka.close()


app = create_app(orchestrator, lifespan=lifespan)
instrument_app(app)
