"""Error taxonomy shared by checkout and try-on services.

Every error carries the HTTP status it maps to, a stable machine code and a
user-facing message (Portuguese, shown as-is by the storefront).
"""

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from calistar.common.logging import logger


class CalistarError(Exception):
    """Base class for errors surfaced to API callers."""

    status_code = 500
    code = "internal_error"
    message = "Erro ao processar a solicitação."

    def __init__(self, message: str | None = None, detail: str | None = None) -> None:
        self.message = message or self.message
        self.detail = detail
        super().__init__(detail or self.message)

    def extra(self) -> dict:
        """Additional structured fields included in the error body."""

        return {}

    def to_body(self) -> dict:
        body = {"error": self.message, "code": self.code}
        if self.detail:
            body["details"] = self.detail
        body.update(self.extra())
        return body


# Validation errors: rejected at the boundary, never sent upstream.


class ValidationError(CalistarError):
    status_code = 400
    code = "validation_error"
    message = "Dados inválidos."


class InvalidAmount(ValidationError):
    code = "invalid_amount"
    message = "Valor mínimo é R$ 5,00"


class MissingField(ValidationError):
    code = "missing_field"
    message = "Nome e CPF são obrigatórios"

    def __init__(self, field: str, message: str | None = None) -> None:
        self.field = field
        super().__init__(message, detail=f"missing field: {field}")

    def extra(self) -> dict:
        return {"field": self.field}


class InvalidTaxId(ValidationError):
    code = "invalid_tax_id"
    message = "CPF inválido"


class InvalidImageData(ValidationError):
    code = "invalid_image_data"
    message = "Não foi possível ler a foto enviada. Envie uma imagem JPG ou PNG."


class InvalidGarmentSet(ValidationError):
    code = "invalid_garment_set"
    message = "Combinação de peças inválida para o provador virtual."


class PaymentNotFound(CalistarError):
    status_code = 404
    code = "payment_not_found"
    message = "Pagamento não encontrado"


class CheckoutInProgress(CalistarError):
    status_code = 409
    code = "checkout_in_progress"
    message = "Seu pagamento ainda está sendo gerado. Aguarde alguns segundos."


class PaymentRejected(CalistarError):
    """The gateway answered and refused the request (4xx)."""

    status_code = 422
    code = "payment_rejected"
    message = "O pagamento foi recusado. Confira seus dados e tente novamente."


# Transient upstream errors.


class GatewayUnavailable(CalistarError):
    status_code = 502
    code = "gateway_unavailable"
    message = "Erro ao processar pagamento. Tente novamente em instantes."


class MalformedGatewayResponse(GatewayUnavailable):
    code = "malformed_gateway_response"


# Domain failures reported by the try-on API.


class ProcessingError(CalistarError):
    status_code = 500
    code = "processing_error"
    message = "Erro ao processar o provador virtual. Tente novamente."


class InsufficientCredits(ProcessingError):
    status_code = 402
    code = "insufficient_credits"
    message = "Créditos insuficientes na API. Por favor, verifique seu plano."


class RateLimited(ProcessingError):
    status_code = 429
    code = "rate_limited"
    message = "Limite de requisições atingido. Aguarde um momento e tente novamente."

    def __init__(self, retry_after: int | None = None, detail: str | None = None) -> None:
        self.retry_after = retry_after
        super().__init__(detail=detail)

    def extra(self) -> dict:
        return {"retryAfter": self.retry_after} if self.retry_after is not None else {}


class GarmentProcessingFailed(ProcessingError):
    status_code = 502
    code = "garment_processing_failed"
    message = "Não foi possível aplicar a peça na sua foto. Tente novamente."

    def __init__(self, slot: str, reason: str) -> None:
        self.slot = slot
        self.reason = reason
        super().__init__(detail=f"slot={slot} reason={reason}")

    def extra(self) -> dict:
        return {"slot": self.slot, "reason": self.reason}


class TaskTimedOut(ProcessingError):
    status_code = 504
    code = "task_timed_out"
    message = "O provador virtual demorou demais para responder. Tente novamente."

    def __init__(self, slot: str) -> None:
        self.slot = slot
        super().__init__(detail=f"slot={slot}")

    def extra(self) -> dict:
        return {"slot": self.slot}


def install_error_handlers(app: FastAPI) -> None:
    """Render `CalistarError` subclasses as structured JSON responses."""

    @app.exception_handler(CalistarError)
    async def handle_calistar_error(request: Request, exc: CalistarError):
        if exc.status_code >= 500:
            logger.error("request failed path=%s code=%s detail=%s", request.url.path, exc.code, exc.detail)
        else:
            logger.info("request rejected path=%s code=%s", request.url.path, exc.code)
        headers = {}
        if isinstance(exc, RateLimited) and exc.retry_after is not None:
            headers["Retry-After"] = str(exc.retry_after)
        return JSONResponse(status_code=exc.status_code, content=exc.to_body(), headers=headers)
