"""FitRoom try-on task API client."""

from dataclasses import dataclass
from enum import Enum

import httpx

from calistar.common.config import Settings
from calistar.common.errors import InsufficientCredits, ProcessingError, RateLimited
from calistar.common.http import (
    TRANSIENT_ERRORS,
    USER_AGENT,
    build_async_client,
    error_message,
    is_transient_status,
    json_body,
    observe_call,
    record_error,
)
from calistar.common.logging import logger
from calistar.services.tryon.images import ImagePayload, sniff_mime
from calistar.services.tryon.slots import GarmentSlot

DEPENDENCY = "fitroom"
TASKS_PATH = "/api/tryon/v2/tasks"


class TaskStatus(str, Enum):
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


STATUS_ALIASES: dict[str, TaskStatus] = {
    "created": TaskStatus.QUEUED,
    "queued": TaskStatus.QUEUED,
    "pending": TaskStatus.QUEUED,
    "processing": TaskStatus.PROCESSING,
    "running": TaskStatus.PROCESSING,
    "completed": TaskStatus.COMPLETED,
    "succeeded": TaskStatus.COMPLETED,
    "failed": TaskStatus.FAILED,
    "error": TaskStatus.FAILED,
}


@dataclass(frozen=True)
class TaskSnapshot:
    task_id: str
    status: TaskStatus
    progress: int
    result_url: str | None = None
    error: str | None = None


class TransientReadError(ProcessingError):
    """A task read that may succeed if repeated (timeout, 5xx)."""


def parse_task_status(raw) -> TaskStatus:
    # Unrecognised values keep the task polling until the attempt ceiling.
    if not isinstance(raw, str):
        return TaskStatus.PROCESSING
    return STATUS_ALIASES.get(raw.strip().lower(), TaskStatus.PROCESSING)


def _progress(raw) -> int:
    try:
        return max(0, min(100, int(raw)))
    except (TypeError, ValueError):
        return 0


class FitRoomClient:
    """Creates and reads try-on tasks, and downloads images by URL."""

    def __init__(
        self,
        settings: Settings,
        transport: httpx.AsyncBaseTransport | None = None,
        service_name: str = "tryon",
    ) -> None:
        self.service_name = service_name
        self.client = build_async_client(
            settings.fitroom_api_url,
            settings.fitroom_api_key,
            settings.tryon_timeout_seconds,
            transport=transport,
        )
        # Signed result URLs and catalog images must not receive the API key.
        self.downloads = httpx.AsyncClient(
            headers={"User-Agent": USER_AGENT},
            timeout=httpx.Timeout(settings.tryon_timeout_seconds),
            follow_redirects=True,
            transport=transport,
        )

    def _raise_for_status(self, resp: httpx.Response, operation: str) -> None:
        if resp.status_code < 400:
            return
        record_error(self.service_name, DEPENDENCY, operation, f"http_{resp.status_code}")
        detail = f"{operation}: {error_message(resp)}"
        if resp.status_code == 402:
            raise InsufficientCredits(detail=detail)
        if resp.status_code == 429:
            retry_after = resp.headers.get("Retry-After")
            raise RateLimited(
                retry_after=int(retry_after) if retry_after and retry_after.isdigit() else None,
                detail=detail,
            )
        if operation == "read" and is_transient_status(resp.status_code):
            raise TransientReadError(detail=detail)
        raise ProcessingError(detail=detail)

    async def create_task(self, model_image: ImagePayload, garment_image: ImagePayload, slot: GarmentSlot) -> str:
        files = {
            "model_image": (f"model.{model_image.extension}", model_image.data, model_image.mime_type),
            "cloth_image": (f"cloth.{garment_image.extension}", garment_image.data, garment_image.mime_type),
        }
        try:
            with observe_call(self.service_name, DEPENDENCY, "create"):
                resp = await self.client.post(TASKS_PATH, files=files, data={"cloth_type": slot.value})
        except TRANSIENT_ERRORS as exc:
            raise ProcessingError(detail=f"create: {type(exc).__name__}") from exc
        self._raise_for_status(resp, "create")
        body = json_body(resp) or {}
        task_id = body.get("task_id")
        if not isinstance(task_id, str) or not task_id:
            raise ProcessingError(detail="create: response without task_id")
        logger.info("tryon task created task_id=%s slot=%s", task_id, slot.value)
        return task_id

    async def get_task(self, task_id: str) -> TaskSnapshot:
        try:
            with observe_call(self.service_name, DEPENDENCY, "read"):
                resp = await self.client.get(f"{TASKS_PATH}/{task_id}")
        except TRANSIENT_ERRORS as exc:
            raise TransientReadError(detail=f"read: {type(exc).__name__}") from exc
        self._raise_for_status(resp, "read")
        body = json_body(resp)
        if body is None:
            raise TransientReadError(detail="read: response is not a JSON object")
        return TaskSnapshot(
            task_id=task_id,
            status=parse_task_status(body.get("status")),
            progress=_progress(body.get("progress")),
            result_url=body.get("download_signed_url") or None,
            error=body.get("error") or None,
        )

    async def fetch_image(self, url: str) -> ImagePayload:
        """Download an image (catalog garment or intermediate result)."""

        try:
            with observe_call(self.service_name, DEPENDENCY, "download"):
                resp = await self.downloads.get(url)
        except TRANSIENT_ERRORS as exc:
            raise ProcessingError(detail=f"download: {type(exc).__name__}") from exc
        if resp.status_code >= 400:
            record_error(self.service_name, DEPENDENCY, "download", f"http_{resp.status_code}")
            raise ProcessingError(detail=f"download: HTTP {resp.status_code}")
        data = resp.content
        if not data:
            raise ProcessingError(detail="download: empty body")
        content_type = resp.headers.get("content-type", "").split(";")[0].strip().lower()
        mime_type = sniff_mime(data) or (content_type if content_type.startswith("image/") else "image/jpeg")
        return ImagePayload(data=data, mime_type=mime_type)

    async def close(self) -> None:
        await self.client.aclose()
        await self.downloads.aclose()
