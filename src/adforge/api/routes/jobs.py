"""Job API endpoints.

- POST /api/jobs - Create a job (reserve credits, persist, trigger the worker)
- GET /api/jobs - Paginated list of the caller's jobs
- GET /api/jobs/{job_id} - Poll one job
- PATCH /api/jobs/{job_id}/rename - Set display name
- DELETE /api/jobs/{job_id} - Delete a failed job

Every endpoint is scoped to the authenticated caller; foreign job ids are
indistinguishable from unknown ones (404).
"""

from datetime import datetime
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field

from adforge.api.dependencies import get_current_user_id, get_dispatcher, get_uow_factory
from adforge.models.job import InvalidStateTransition, Job, JobStatus
from adforge.services.dispatcher import MAX_IMAGES_PER_JOB, CreateJobInput, JobDispatcher
from adforge.services.exceptions import JobStateError, NotFoundError, ValidationError
from adforge.services.generation.prompt_validator import MAX_PROMPT_LENGTH
from adforge.services.pricing import MAX_OUTPUTS

logger = structlog.get_logger()
router = APIRouter(prefix="/api/jobs", tags=["jobs"])


# Request/Response Models


class CreateJobRequest(BaseModel):
    """Request model for job creation."""

    image_ids: list[UUID] = Field(
        default_factory=list,
        description="Source image ids; the first is the scene, the rest are references",
        max_length=MAX_IMAGES_PER_JOB,
    )
    prompt: str = Field(..., min_length=1, max_length=MAX_PROMPT_LENGTH)
    model: str | None = Field(
        default=None,
        description="Model identifier, e.g. openai-high-portrait, gemini, seedream, seedance",
    )
    aspect_ratio: str | None = Field(
        default=None, description="square, landscape or portrait (default: square)"
    )
    n: int = Field(default=1, ge=1, le=MAX_OUTPUTS, description="Number of outputs")
    job_name: str | None = Field(default=None, max_length=255)
    folder_id: UUID | None = None
    style: str = Field(default="photorealistic", max_length=64)


class CreateJobResponse(BaseModel):
    job_id: UUID
    status: str
    credits_used: int
    result_path: str | None = Field(
        default=None,
        description="Storage key the result will be written to (null for multi-output jobs)",
    )


class JobDTO(BaseModel):
    """Data Transfer Object for job information in API responses."""

    id: UUID
    status: str = Field(..., description="Job status (pending, processing, completed, failed)")
    prompt: str
    model: str
    style: str
    aspect_ratio: str
    output_count: int
    image_ids: list[str]
    credits_used: int
    result_type: str
    result_path: str | None = Field(default=None, description="Set only when completed")
    result_paths: list[str] | None = None
    error_message: str | None = Field(default=None, description="Set only when failed")
    custom_name: str | None = None
    folder_id: UUID | None = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_job(cls, job: Job) -> "JobDTO":
        return cls(
            id=job.id,
            status=job.status.value,
            prompt=job.prompt,
            model=job.model,
            style=job.style,
            aspect_ratio=job.aspect_ratio,
            output_count=job.output_count,
            image_ids=list(job.image_ids),
            credits_used=job.credits_used,
            result_type=job.result_type,
            result_path=job.result_path,
            result_paths=job.result_paths,
            error_message=job.error_message,
            custom_name=job.custom_name,
            folder_id=job.folder_id,
            created_at=job.created_at,
            updated_at=job.updated_at,
        )


class JobsResponse(BaseModel):
    """Response model for paginated jobs list."""

    jobs: list[JobDTO]
    total: int = Field(..., description="Total number of jobs matching query (across all pages)")
    offset: int
    limit: int


class RenameJobRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)


class DeleteJobResponse(BaseModel):
    success: bool


# API Endpoints


@router.post("", response_model=CreateJobResponse, status_code=status.HTTP_201_CREATED)
async def create_job(
    request: CreateJobRequest,
    user_id: UUID = Depends(get_current_user_id),
    dispatcher: JobDispatcher = Depends(get_dispatcher),
) -> CreateJobResponse:
    """Create a generation job.

    Validates the request, checks image ownership, consumes the job's credits
    and inserts the job in one transaction, then triggers the worker.

    Errors:
    - 400: invalid prompt, model, style, aspect ratio or image list
    - 401: missing or invalid token
    - 402: insufficient credits ({error, available, required})
    - 404: unknown or foreign image
    - 429: free-tier job limit reached
    - 500: worker trigger failed (the job stays pending)
    """
    result = await dispatcher.create_job(
        user_id,
        CreateJobInput(
            prompt=request.prompt,
            image_ids=request.image_ids,
            model=request.model,
            aspect_ratio=request.aspect_ratio,
            output_count=request.n,
            style=request.style,
            job_name=request.job_name,
            folder_id=request.folder_id,
        ),
    )
    return CreateJobResponse(
        job_id=result.job.id,
        status=result.job.status.value,
        credits_used=result.job.credits_used,
        result_path=result.result_path,
    )


@router.get("", response_model=JobsResponse)
async def list_jobs(
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=20, ge=1, le=100),
    status_filter: JobStatus | None = Query(default=None, alias="status"),
    user_id: UUID = Depends(get_current_user_id),
    uow_factory=Depends(get_uow_factory),
) -> JobsResponse:
    """List the caller's jobs, newest first."""
    async with await uow_factory() as uow:
        jobs, total = await uow.jobs.list_for_user(
            user_id, offset=offset, limit=limit, status=status_filter
        )
        return JobsResponse(
            jobs=[JobDTO.from_job(job) for job in jobs],
            total=total,
            offset=offset,
            limit=limit,
        )


@router.get("/{job_id}", response_model=JobDTO)
async def get_job(
    job_id: UUID,
    user_id: UUID = Depends(get_current_user_id),
    uow_factory=Depends(get_uow_factory),
) -> JobDTO:
    async with await uow_factory() as uow:
        job = await uow.jobs.get_for_user(job_id, user_id)
        if job is None:
            raise NotFoundError("Job not found")
        return JobDTO.from_job(job)


@router.patch("/{job_id}/rename", response_model=JobDTO)
async def rename_job(
    job_id: UUID,
    request: RenameJobRequest,
    user_id: UUID = Depends(get_current_user_id),
    uow_factory=Depends(get_uow_factory),
) -> JobDTO:
    async with await uow_factory() as uow:
        job = await uow.jobs.get_for_user(job_id, user_id)
        if job is None:
            raise NotFoundError("Job not found")
        try:
            job.rename(request.name)
        except ValueError as e:
            raise ValidationError(str(e)) from e
        await uow.jobs.save(job)
        return JobDTO.from_job(job)


@router.delete("/{job_id}", response_model=DeleteJobResponse)
async def delete_job(
    job_id: UUID,
    user_id: UUID = Depends(get_current_user_id),
    uow_factory=Depends(get_uow_factory),
) -> DeleteJobResponse:
    """Delete a failed job. Pending, processing and completed jobs cannot be deleted (409)."""
    async with await uow_factory() as uow:
        job = await uow.jobs.get_for_user(job_id, user_id)
        if job is None:
            raise NotFoundError("Job not found")
        try:
            job.ensure_deletable()
        except InvalidStateTransition as e:
            raise JobStateError(str(e), status=job.status.value) from e
        await uow.jobs.delete(job)

    logger.info("job.deleted", job_id=str(job_id), user_id=str(user_id))
    return DeleteJobResponse(success=True)
