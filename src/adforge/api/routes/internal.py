"""Worker endpoint - runs a pending job in the background.

Authenticated with the worker service credential only; end-user tokens are
rejected. The request is acknowledged as soon as the job is confirmed pending;
generation then continues as a background task in this process.
"""

from uuid import UUID

import structlog
from fastapi import APIRouter, BackgroundTasks, Depends, Request
from pydantic import BaseModel

from adforge.api.dependencies import get_uow_factory, require_service_token
from adforge.models.job import JobStatus
from adforge.services.exceptions import JobStateError, NotFoundError
from adforge.services.materializer import planned_result_path
from adforge.workers.job_runner import run_job

logger = structlog.get_logger()
router = APIRouter(
    prefix="/internal/jobs",
    tags=["internal"],
    dependencies=[Depends(require_service_token)],
)


class RunJobRequest(BaseModel):
    job_id: UUID


class RunJobResponse(BaseModel):
    success: bool
    result_path: str | None = None


@router.post("/run", response_model=RunJobResponse)
async def run_job_endpoint(
    payload: RunJobRequest,
    request: Request,
    background_tasks: BackgroundTasks,
    uow_factory=Depends(get_uow_factory),
) -> RunJobResponse:
    """Accept a job for execution.

    Returns:
        {success: true, result_path} where result_path is the key a single-output
        job will be written to (null for multi-output jobs)

    Raises:
        NotFoundError: 404 if the job does not exist
        JobStateError: 409 if the job is not pending
    """
    async with await uow_factory() as uow:
        job = await uow.jobs.get_by_id(payload.job_id)
        if job is None:
            raise NotFoundError("Job not found")
        if job.status != JobStatus.PENDING:
            raise JobStateError("Job is not pending", status=job.status.value)
        result_path = planned_result_path(job)

    state = request.app.state
    background_tasks.add_task(
        run_job,
        payload.job_id,
        state.session_factory,
        state.request_builder,
        state.generator,
        state.materializer,
    )
    logger.info("worker.job_accepted", job_id=str(payload.job_id))
    return RunJobResponse(success=True, result_path=result_path)
