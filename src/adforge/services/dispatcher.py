"""Job dispatcher - validates, reserves credits, persists and triggers a job.

Reservation and job insertion share one transaction: a job row never exists
without its credits consumed, and credits are never consumed without a job row.
"""

from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Awaitable, Callable
from uuid import UUID

import structlog

from adforge.core.timezone import utcnow
from adforge.models.job import Job, JobStatus
from adforge.models.usage_event import UsageReason
from adforge.services.exceptions import (
    InsufficientCreditsError,
    NotFoundError,
    OwnershipError,
    UsageLimitError,
    ValidationError,
)
from adforge.services.generation.prompt_validator import validate_prompt
from adforge.services.generation.request_builder import validate_style
from adforge.services.ledger import CreditLedger
from adforge.services.pricing import MAX_OUTPUTS, credits_required, parse_model
from adforge.services.trigger import WorkerTrigger
from adforge.uow import UnitOfWork

logger = structlog.get_logger(__name__)

MAX_IMAGES_PER_JOB = 10


@dataclass
class CreateJobInput:
    """Validated-at-the-edge job creation parameters."""

    prompt: str
    image_ids: list[UUID] = field(default_factory=list)
    model: str | None = None
    aspect_ratio: str | None = None
    output_count: int = 1
    style: str | None = None
    job_name: str | None = None
    folder_id: UUID | None = None


@dataclass
class DispatchResult:
    job: Job
    result_path: str | None


class JobDispatcher:
    """Accepts job creation requests and hands accepted jobs to the worker."""

    def __init__(
        self,
        uow_factory: Callable[[], Awaitable[UnitOfWork]],
        trigger: WorkerTrigger,
        ledger: CreditLedger | None = None,
        free_daily_limit: int = 10,
        free_total_limit: int = 400,
    ):
        self.uow_factory = uow_factory
        self.trigger = trigger
        self.ledger = ledger or CreditLedger()
        self.free_daily_limit = free_daily_limit
        self.free_total_limit = free_total_limit

    async def create_job(self, user_id: UUID, params: CreateJobInput) -> DispatchResult:
        """Create a job and trigger its execution.

        Args:
            user_id: Authenticated caller
            params: Job parameters

        Returns:
            DispatchResult with the persisted job and the worker's result path

        Raises:
            ValidationError: Bad prompt, style, model or image list
            NotFoundError: Unknown profile or image
            OwnershipError: Image belongs to another user
            UsageLimitError: Free-tier quota exhausted
            InsufficientCreditsError: Balance below the job's cost
            InternalError: Worker trigger failed (job stays pending, credits stay consumed)
        """
        try:
            prompt = validate_prompt(params.prompt)
        except ValueError as e:
            raise ValidationError(str(e)) from e

        style = validate_style(params.style)
        selector = parse_model(params.model, params.aspect_ratio)
        if params.output_count < 1 or params.output_count > MAX_OUTPUTS:
            raise ValidationError(f"n must be between 1 and {MAX_OUTPUTS}")
        cost = credits_required(selector, params.output_count)

        image_ids = list(params.image_ids)
        if len(image_ids) > MAX_IMAGES_PER_JOB:
            raise ValidationError(f"At most {MAX_IMAGES_PER_JOB} images per job")
        if len(set(image_ids)) != len(image_ids):
            raise ValidationError("Duplicate image ids")

        async with await self.uow_factory() as uow:
            profile = await uow.profiles.get_by_id(user_id)
            if profile is None:
                raise NotFoundError("Profile not found")

            if not profile.has_active_subscription:
                await self._check_free_tier(uow, user_id)

            await self._check_images(uow, user_id, image_ids)

            job = Job(
                user_id=user_id,
                image_ids=[str(image_id) for image_id in image_ids],
                prompt=prompt,
                model=selector.identifier,
                style=style,
                aspect_ratio=selector.aspect,
                output_count=params.output_count,
                result_type=selector.result_type,
                status=JobStatus.PENDING,
                credits_used=cost,
                custom_name=params.job_name,
                folder_id=params.folder_id,
            )

            consumed = await self.ledger.consume(
                uow,
                user_id,
                cost,
                UsageReason.JOB_CONSUME,
                metadata=_usage_metadata(job),
            )
            if not consumed:
                available = await uow.profiles.get_balance(user_id) or 0
                raise InsufficientCreditsError(available=available, required=cost)

            await uow.jobs.add(job)

        logger.info(
            "job.created",
            job_id=str(job.id),
            user_id=str(user_id),
            model=job.model,
            output_count=job.output_count,
            credits_used=cost,
        )

        ack = await self.trigger.trigger(job.id)
        return DispatchResult(job=job, result_path=ack.get("result_path"))

    async def _check_free_tier(self, uow: UnitOfWork, user_id: UUID) -> None:
        total = await uow.jobs.count_for_user(user_id)
        if total >= self.free_total_limit:
            raise UsageLimitError(
                "Free tier total job limit reached", limit=self.free_total_limit, used=total
            )

        daily = await uow.jobs.count_for_user(user_id, since=utcnow() - timedelta(days=1))
        if daily >= self.free_daily_limit:
            raise UsageLimitError(
                "Free tier daily job limit reached", limit=self.free_daily_limit, used=daily
            )

    async def _check_images(self, uow: UnitOfWork, user_id: UUID, image_ids: list[UUID]) -> None:
        if not image_ids:
            return
        found = await uow.images.get_many(image_ids)
        for image_id in image_ids:
            image = found.get(image_id)
            if image is None:
                raise NotFoundError("Image not found", image_id=str(image_id))
            if image.user_id != user_id:
                raise OwnershipError("Image not found", image_id=str(image_id))


def _usage_metadata(job: Job) -> dict[str, Any]:
    return {
        "job_id": str(job.id),
        "model": job.model,
        "output_count": job.output_count,
    }
