"""Virtual try-on composition.

A request is a small state machine over `(remaining garments, current image)`.
Each step uploads the current image with one garment, waits for the task and,
when more garments remain, downloads the result to become the next step's
input. The first failing step aborts the whole request; there is no partial
composite.
"""

import asyncio
from dataclasses import dataclass, field
from time import perf_counter
from typing import Awaitable, Callable

from calistar.common.config import Settings
from calistar.common.errors import (
    GarmentProcessingFailed,
    InsufficientCredits,
    ProcessingError,
    RateLimited,
    TaskTimedOut,
)
from calistar.common.logging import logger, task_id_ctx
from calistar.common.metrics import tryon_poll_attempts, tryon_step_seconds
from calistar.services.tryon.client import FitRoomClient, TaskSnapshot, TaskStatus, TransientReadError
from calistar.services.tryon.images import ImagePayload, decode_image_payload
from calistar.services.tryon.slots import Garment, GarmentSlot, build_slot_table, infer_slot, order_garments

# Account-level failures and step failures that already name their slot.
PASSTHROUGH_ERRORS = (InsufficientCredits, RateLimited, GarmentProcessingFailed, TaskTimedOut)


@dataclass(frozen=True)
class StepResult:
    slot: GarmentSlot
    task_id: str
    result_url: str
    polls: int


@dataclass(frozen=True)
class CompositionState:
    remaining: tuple[Garment, ...]
    current_image: ImagePayload
    completed: tuple[StepResult, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class TryOnResult:
    result_url: str
    task_id: str
    steps: tuple[StepResult, ...]


class TryOnPipeline:
    """Runs garment composition steps sequentially against the try-on API."""

    def __init__(
        self,
        client: FitRoomClient,
        settings: Settings,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        service_name: str = "tryon",
    ) -> None:
        self.client = client
        self.sleep = sleep
        self.service_name = service_name
        self.poll_interval = settings.tryon_poll_interval_seconds
        self.max_attempts = settings.tryon_poll_max_attempts
        self.slot_table = build_slot_table(settings.tryon_category_slots)

    def garment(self, image_url: str, category: str | None) -> Garment:
        return Garment(image_url=image_url, slot=infer_slot(category, self.slot_table), category=category)

    async def submit(self, user_photo: ImagePayload | str, garments: list[Garment]) -> TryOnResult:
        """Compose every garment onto the user photo, in slot order."""

        if not isinstance(user_photo, ImagePayload):
            user_photo = decode_image_payload(user_photo)
        state = CompositionState(remaining=tuple(order_garments(garments)), current_image=user_photo)
        logger.info("tryon started slots=%s", [g.slot.value for g in state.remaining])
        while state.remaining:
            state = await self._step(state)
        last = state.completed[-1]
        return TryOnResult(result_url=last.result_url, task_id=last.task_id, steps=state.completed)

    async def _step(self, state: CompositionState) -> CompositionState:
        garment, rest = state.remaining[0], state.remaining[1:]
        started = perf_counter()
        try:
            garment_image = await self.client.fetch_image(garment.image_url)
            task_id = await self.client.create_task(state.current_image, garment_image, garment.slot)
            token = task_id_ctx.set(task_id)
            try:
                snapshot, polls = await self.poll_task(task_id, garment.slot)
                next_image = state.current_image
                if rest:
                    # The next upload needs the composed pixels, not a URL.
                    next_image = await self.client.fetch_image(snapshot.result_url)
            finally:
                task_id_ctx.reset(token)
        except PASSTHROUGH_ERRORS:
            raise
        except ProcessingError as exc:
            logger.warning("tryon step failed slot=%s detail=%s", garment.slot.value, exc.detail)
            raise GarmentProcessingFailed(garment.slot.value, exc.detail or exc.message) from exc
        tryon_step_seconds.labels(service=self.service_name, slot=garment.slot.value).observe(
            perf_counter() - started
        )
        step = StepResult(slot=garment.slot, task_id=task_id, result_url=snapshot.result_url, polls=polls)
        return CompositionState(remaining=rest, current_image=next_image, completed=state.completed + (step,))

    async def poll_task(self, task_id: str, slot: GarmentSlot) -> tuple[TaskSnapshot, int]:
        """Poll until a terminal status or the attempt ceiling.

        Transient read failures count as attempts and polling continues.
        """

        progress = 0
        for attempt in range(1, self.max_attempts + 1):
            try:
                snapshot = await self.client.get_task(task_id)
            except TransientReadError as exc:
                logger.warning("tryon poll transient failure attempt=%s detail=%s", attempt, exc.detail)
            else:
                if snapshot.status is TaskStatus.COMPLETED:
                    tryon_poll_attempts.labels(service=self.service_name).observe(attempt)
                    if not snapshot.result_url:
                        raise GarmentProcessingFailed(slot.value, "completed without a result image")
                    logger.info("tryon task completed attempt=%s", attempt)
                    return snapshot, attempt
                if snapshot.status is TaskStatus.FAILED:
                    tryon_poll_attempts.labels(service=self.service_name).observe(attempt)
                    raise GarmentProcessingFailed(slot.value, snapshot.error or "task processing failed")
                progress = max(progress, snapshot.progress)
                logger.debug("tryon task status=%s progress=%s", snapshot.status.value, progress)
            if attempt < self.max_attempts:
                await self.sleep(self.poll_interval)
        logger.warning("tryon task timed out attempts=%s", self.max_attempts)
        raise TaskTimedOut(slot.value)
