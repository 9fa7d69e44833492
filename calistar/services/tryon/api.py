"""HTTP surface for the virtual try-on flow."""

from uuid import uuid4

from fastapi import FastAPI, Header, Request

from calistar.common.errors import CalistarError, MissingField, install_error_handlers
from calistar.common.logging import logger, trace_id_ctx
from calistar.common.metrics import metrics_response, tryon_requests_total
from calistar.common.ratelimit import TokenBucket
from calistar.services.tryon.pipeline import TryOnPipeline
from calistar.services.tryon.schemas import TryOnRequest, TryOnResponse, TryOnStep

MISSING_INPUT_MESSAGE = "Foto do usuário e imagem do produto são obrigatórios"


def create_app(
    pipeline: TryOnPipeline,
    limiter: TokenBucket | None = None,
    lifespan=None,
    service_name: str = "tryon",
) -> FastAPI:
    """Build the try-on FastAPI app around a wired pipeline."""

    app = FastAPI(title="Calistar Virtual Try-On", lifespan=lifespan)
    install_error_handlers(app)

    @app.post("/api/virtual-try-on", response_model=TryOnResponse)
    async def virtual_try_on(req: TryOnRequest, request: Request, x_trace_id: str | None = Header(default=None)):
        """Compose one garment (or an outfit) onto the user's photo."""

        trace_id_ctx.set(x_trace_id or str(uuid4()))
        try:
            if limiter is not None:
                limiter.consume(request.client.host if request.client else "anonymous")
            if not req.user_photo_base64:
                raise MissingField("userPhotoBase64", MISSING_INPUT_MESSAGE)
            if req.garments:
                garments = [pipeline.garment(g.image_url, g.category) for g in req.garments]
            elif req.garment_image_url:
                garments = [pipeline.garment(req.garment_image_url, req.garment_category)]
            else:
                raise MissingField("garmentImageUrl", MISSING_INPUT_MESSAGE)
            result = await pipeline.submit(req.user_photo_base64, garments)
        except CalistarError as exc:
            tryon_requests_total.labels(service=service_name, outcome=exc.code).inc()
            raise
        tryon_requests_total.labels(service=service_name, outcome="completed").inc()
        logger.info("tryon completed task_id=%s steps=%s", result.task_id, len(result.steps))
        return TryOnResponse(
            result_image_url=result.result_url,
            task_id=result.task_id,
            steps=[
                TryOnStep(slot=step.slot.value, task_id=step.task_id, result_image_url=step.result_url)
                for step in result.steps
            ],
        )

    @app.get("/metrics")
    def metrics():
        """Prometheus scrape endpoint."""

        return metrics_response()

    @app.get("/health")
    def health():
        """Container health probe endpoint."""

        return {"ok": True}

    return app
