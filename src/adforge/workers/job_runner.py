"""Job runner - executes one pending job end to end.

Flow: pending → processing → (build request → provider → materialize) →
completed | failed.

Like the other workers this uses direct session management rather than the
UnitOfWork: the processing transition must be committed before the provider
call starts, and the terminal transition is committed separately on every path.
Every error is recorded on the job row; nothing propagates to the caller.
Consumed credits are not refunded on failure.
"""

import time
from dataclasses import dataclass
from typing import Callable
from uuid import UUID

import structlog

from adforge.models.job import InvalidStateTransition, JobStatus
from adforge.repositories.job import JobRepository
from adforge.repositories.source_image import SourceImageRepository
from adforge.services.exceptions import ServiceError
from adforge.services.generation.replicate_client import ReplicateGenerator
from adforge.services.generation.request_builder import GenerationRequestBuilder
from adforge.services.materializer import ResultMaterializer

logger = structlog.get_logger(__name__)


@dataclass
class RunOutcome:
    job_id: UUID
    status: JobStatus | None
    result_paths: list[str] | None = None
    error: str | None = None


async def run_job(
    job_id: UUID,
    session_factory: Callable,
    builder: GenerationRequestBuilder,
    generator: ReplicateGenerator,
    materializer: ResultMaterializer,
) -> RunOutcome:
    """Process a single pending job.

    Args:
        job_id: Job to run
        session_factory: Factory function to create new database sessions
        builder: Resolves source images into a GenerationRequest
        generator: External generation adapter
        materializer: Copies provider outputs into owned storage

    Returns:
        RunOutcome with the job's final status (None if the job could not be
        claimed: unknown id or not pending)
    """
    start_time = time.time()

    async with session_factory() as session:
        jobs = JobRepository(session)
        images = SourceImageRepository(session)

        try:
            job = await jobs.get_for_run(job_id)
            if job is None:
                logger.warning("job.run.not_found", job_id=str(job_id))
                return RunOutcome(job_id=job_id, status=None, error="Job not found")

            try:
                job.mark_processing()
            except InvalidStateTransition as e:
                logger.warning(
                    "job.run.not_pending", job_id=str(job_id), status=job.status.value
                )
                return RunOutcome(job_id=job_id, status=job.status, error=str(e))

            await jobs.save(job)
            await session.commit()
        except Exception as e:
            # Job stays pending
            logger.error("job.run.claim_failed", job_id=str(job_id), error=str(e), exc_info=True)
            return RunOutcome(job_id=job_id, status=None, error=f"Failed to claim job: {e}")

        logger.info("job.processing", job_id=str(job_id), model=job.model)

        try:
            request = await builder.build(images, job)
            urls = await generator.generate(request)
            keys = await materializer.materialize(job, urls)

            job.mark_completed(keys)
            await jobs.save(job)
            await session.commit()

            logger.info(
                "job.completed",
                job_id=str(job_id),
                result_path=job.result_path,
                output_count=len(keys),
                duration_seconds=time.time() - start_time,
            )
            return RunOutcome(job_id=job_id, status=JobStatus.COMPLETED, result_paths=keys)

        except ServiceError as e:
            logger.warning(
                "job.failed",
                job_id=str(job_id),
                error_type=type(e).__name__,
                error=e.message,
                duration_seconds=time.time() - start_time,
            )
            return await _record_failure(session, jobs, job_id, e.message)

        except Exception as e:
            logger.error(
                "job.failed.unexpected",
                job_id=str(job_id),
                error=str(e),
                exc_info=True,
            )
            return await _record_failure(session, jobs, job_id, f"Unexpected error: {e}")


async def _record_failure(session, jobs: JobRepository, job_id: UUID, message: str) -> RunOutcome:
    """Roll back partial work and commit the failed transition on a fresh read."""
    try:
        await session.rollback()
        job = await jobs.get_by_id(job_id)
        if job is None:
            return RunOutcome(job_id=job_id, status=None, error=message)

        try:
            job.mark_failed(message)
        except InvalidStateTransition:
            logger.warning("job.fail_skipped", job_id=str(job_id), status=job.status.value)
            return RunOutcome(job_id=job_id, status=job.status, error=message)

        await jobs.save(job)
        await session.commit()
    except Exception as e:
        logger.error(
            "job.fail_record_failed", job_id=str(job_id), error=str(e), exc_info=True
        )
        return RunOutcome(job_id=job_id, status=None, error=message)

    return RunOutcome(job_id=job_id, status=JobStatus.FAILED, error=job.error_message)
