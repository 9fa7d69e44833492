"""Pagou PIX gateway client and response normalization.

The gateway has shipped more than one response shape for the same
resources. Each shape gets its own decoder; everything past this module only
sees `GatewayPix` / `GatewayStatus`.
"""

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation

import httpx

from calistar.common.config import Settings
from calistar.common.errors import (
    GatewayUnavailable,
    MalformedGatewayResponse,
    PaymentNotFound,
    PaymentRejected,
)
from calistar.common.http import (
    TRANSIENT_ERRORS,
    build_async_client,
    error_message,
    is_transient_status,
    json_body,
    observe_call,
    record_error,
)
from calistar.common.logging import logger

DEPENDENCY = "pagou"

STATUS_BY_CODE: dict[int, str] = {
    1: "pending",
    2: "active",
    3: "canceled",
    4: "completed",
    5: "refunded",
}

STATUS_BY_NAME: dict[str, str] = {
    "empty": "pending",
    "pending": "pending",
    "created": "pending",
    "active": "active",
    "canceled": "canceled",
    "cancelled": "canceled",
    "completed": "completed",
    "paid": "completed",
    "refunded": "refunded",
}

UNKNOWN_STATUS = "unknown"
PAID_STATUS = "completed"


def map_gateway_status(raw) -> str:
    """Map a numeric or string gateway status; anything unmapped is `unknown`."""

    if isinstance(raw, bool):
        return UNKNOWN_STATUS
    if isinstance(raw, int):
        return STATUS_BY_CODE.get(raw, UNKNOWN_STATUS)
    if isinstance(raw, str):
        text = raw.strip().lower()
        if text.isdigit():
            return STATUS_BY_CODE.get(int(text), UNKNOWN_STATUS)
        return STATUS_BY_NAME.get(text, UNKNOWN_STATUS)
    return UNKNOWN_STATUS


@dataclass(frozen=True)
class GatewayPix:
    payment_id: str
    amount: Decimal | None
    pix_code: str
    qr_image: str
    api_version: str


@dataclass(frozen=True)
class GatewayStatus:
    payment_id: str
    status: str
    status_code: int | str | None
    amount: Decimal | None

    @property
    def paid(self) -> bool:
        return self.status == PAID_STATUS


def normalize_qr_image(image: str) -> str:
    """Return a data URI (or URL) for a QR image given raw base64 or a data URI."""

    image = image.strip()
    if image.startswith("data:") or image.startswith(("http://", "https://")):
        return image
    return f"data:image/png;base64,{image}"


def _decimal_or_none(value) -> Decimal | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return None


def _required_text(raw: dict, key: str, field: str) -> str:
    value = raw.get(key)
    if not isinstance(value, str) or not value.strip():
        raise MalformedGatewayResponse(detail=f"gateway response missing {field}")
    return value.strip()


def _decode_v1(raw: dict) -> GatewayPix:
    # {"id", "amount", "payload": {"payload_id", "data", "image"}}
    payload = raw["payload"]
    return GatewayPix(
        payment_id=_required_text(raw, "id", "id"),
        amount=_decimal_or_none(raw.get("amount")),
        pix_code=_required_text(payload, "data", "pix code"),
        qr_image=normalize_qr_image(_required_text(payload, "image", "qr image")),
        api_version="v1",
    )


def _decode_legacy(raw: dict) -> GatewayPix:
    # {"id", "amount", "pix_qr_code", "pix_qr_code_base64"}
    return GatewayPix(
        payment_id=_required_text(raw, "id", "id"),
        amount=_decimal_or_none(raw.get("amount")),
        pix_code=_required_text(raw, "pix_qr_code", "pix code"),
        qr_image=normalize_qr_image(_required_text(raw, "pix_qr_code_base64", "qr image")),
        api_version="legacy",
    )


PIX_DECODERS = {"v1": _decode_v1, "legacy": _decode_legacy}


def detect_pix_version(raw: dict) -> str:
    if isinstance(raw.get("payload"), dict):
        return "v1"
    if "pix_qr_code" in raw or "pix_qr_code_base64" in raw:
        return "legacy"
    raise MalformedGatewayResponse(detail="unrecognised gateway response shape")


def normalize_pix_response(raw) -> GatewayPix:
    """Decode a create-payment response into the canonical shape or fail hard."""

    if not isinstance(raw, dict):
        raise MalformedGatewayResponse(detail="gateway response is not an object")
    return PIX_DECODERS[detect_pix_version(raw)](raw)


def normalize_status_response(raw, payment_id: str) -> GatewayStatus:
    if not isinstance(raw, dict):
        raise MalformedGatewayResponse(detail="gateway status response is not an object")
    code = raw.get("status")
    return GatewayStatus(
        payment_id=str(raw.get("id") or payment_id),
        status=map_gateway_status(code),
        status_code=code if isinstance(code, (int, str)) and not isinstance(code, bool) else None,
        amount=_decimal_or_none(raw.get("amount")),
    )


class PagouGateway:
    """Thin async client for the Pagou `/v1/pix` resources.

    Creation is never retried here: a timed out request may still have
    produced a PIX code on the gateway side.
    """

    def __init__(
        self,
        settings: Settings,
        transport: httpx.AsyncBaseTransport | None = None,
        service_name: str = "checkout",
    ) -> None:
        self.service_name = service_name
        self.client = build_async_client(
            settings.pagou_api_url,
            settings.pagou_secret_key,
            settings.pagou_timeout_seconds,
            transport=transport,
        )

    async def create_pix(self, request: dict) -> GatewayPix:
        try:
            with observe_call(self.service_name, DEPENDENCY, "create"):
                resp = await self.client.post("/v1/pix", json=request)
        except TRANSIENT_ERRORS as exc:
            logger.warning("pagou create failed transport error=%s", type(exc).__name__)
            raise GatewayUnavailable(detail=f"create: {type(exc).__name__}") from exc

        if is_transient_status(resp.status_code):
            record_error(self.service_name, DEPENDENCY, "create", f"http_{resp.status_code}")
            raise GatewayUnavailable(detail=f"create: HTTP {resp.status_code}")
        if resp.status_code >= 400:
            record_error(self.service_name, DEPENDENCY, "create", f"http_{resp.status_code}")
            raise PaymentRejected(detail=error_message(resp))

        body = json_body(resp)
        try:
            pix = normalize_pix_response(body)
        except MalformedGatewayResponse:
            record_error(self.service_name, DEPENDENCY, "create", "malformed")
            raise
        logger.info("pagou pix created payment_id=%s api_version=%s", pix.payment_id, pix.api_version)
        return pix

    async def get_pix(self, payment_id: str) -> GatewayStatus:
        try:
            with observe_call(self.service_name, DEPENDENCY, "read"):
                resp = await self.client.get(f"/v1/pix/{payment_id}")
        except TRANSIENT_ERRORS as exc:
            raise GatewayUnavailable(detail=f"read: {type(exc).__name__}") from exc

        if resp.status_code == 404:
            raise PaymentNotFound(detail=f"payment_id={payment_id}")
        if resp.status_code >= 400:
            record_error(self.service_name, DEPENDENCY, "read", f"http_{resp.status_code}")
            raise GatewayUnavailable(detail=f"read: {error_message(resp)}")
        return normalize_status_response(json_body(resp), payment_id)

    async def close(self) -> None:
        await self.client.aclose()
