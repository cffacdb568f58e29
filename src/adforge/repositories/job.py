"""Job repository - durable job records."""

from datetime import datetime
from uuid import UUID

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from adforge.models.job import Job, JobStatus


class JobRepository:
    """Repository for Job entities.

    No row locking is taken on jobs: exactly one worker invocation per job id
    is assumed.
    """

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def add(self, job: Job) -> Job:
        """Persist new job to database.

        Args:
            job: Job entity to persist

        Returns:
            Persisted job with generated ID
        """
        self.session.add(job)
        await self.session.flush()
        return job

    async def get_by_id(self, job_id: UUID) -> Job | None:
        """Retrieve job by UUID.

        Args:
            job_id: Job's unique identifier

        Returns:
            Job if found, None otherwise
        """
        result = await self.session.execute(select(Job).where(Job.id == job_id))  # type: ignore[arg-type]
        return result.scalar_one_or_none()

    async def get_for_run(self, job_id: UUID) -> Job | None:
        """Retrieve job with a row lock held until the caller commits.

        A second trigger for the same job blocks here and then sees the
        committed processing status.
        """
        result = await self.session.execute(
            select(Job).where(Job.id == job_id).with_for_update()  # type: ignore[arg-type]
        )
        return result.scalar_one_or_none()

    async def get_for_user(self, job_id: UUID, user_id: UUID) -> Job | None:
        """Retrieve job only if it belongs to the given user.

        Args:
            job_id: Job's unique identifier
            user_id: Expected owner

        Returns:
            Job if found and owned by user, None otherwise
        """
        result = await self.session.execute(
            select(Job).where(Job.id == job_id, Job.user_id == user_id)  # type: ignore[arg-type]
        )
        return result.scalar_one_or_none()

    async def list_for_user(
        self,
        user_id: UUID,
        offset: int = 0,
        limit: int = 20,
        status: JobStatus | None = None,
    ) -> tuple[list[Job], int]:
        """Retrieve a user's jobs with pagination and total count.

        Args:
            user_id: Owner
            offset: Number of jobs to skip (default: 0)
            limit: Maximum number of jobs to return (default: 20)
            status: Optional status filter

        Returns:
            Tuple of (jobs newest first, total count across all pages)
        """
        conditions = [Job.user_id == user_id]
        if status is not None:
            conditions.append(Job.status == status)

        count_result = await self.session.execute(select(func.count(Job.id)).where(*conditions))  # type: ignore[arg-type]
        total = count_result.scalar() or 0

        data_result = await self.session.execute(
            select(Job)
            .where(*conditions)  # type: ignore[arg-type]
            .order_by(Job.created_at.desc())  # type: ignore[attr-defined]
            .offset(offset)
            .limit(limit)
        )
        return (list(data_result.scalars().all()), total)

    async def count_for_user(self, user_id: UUID, since: datetime | None = None) -> int:
        """Count jobs created by a user, optionally only those created after `since`."""
        stmt = select(func.count(Job.id)).where(Job.user_id == user_id)  # type: ignore[arg-type]
        if since is not None:
            stmt = stmt.where(Job.created_at >= since)  # type: ignore[arg-type]
        result = await self.session.execute(stmt)
        return result.scalar() or 0

    async def get_stuck_processing(self, older_than: datetime, limit: int = 100) -> list[Job]:
        """Retrieve jobs that entered processing before `older_than` and never finished.

        Args:
            older_than: Cutoff on updated_at (the processing transition timestamp)
            limit: Maximum number of jobs to return

        Returns:
            Jobs ordered oldest first
        """
        result = await self.session.execute(
            select(Job)
            .where(Job.status == JobStatus.PROCESSING)  # type: ignore[arg-type]
            .where(Job.updated_at < older_than)  # type: ignore[arg-type]
            .order_by(Job.updated_at.asc())  # type: ignore[attr-defined]
            .limit(limit)
            .with_for_update(skip_locked=True)
        )
        return list(result.scalars().all())

    async def save(self, job: Job) -> Job:
        """Flush in-memory changes of a job (status transitions, rename)."""
        self.session.add(job)
        await self.session.flush()
        await self.session.refresh(job)
        return job

    async def delete(self, job: Job) -> None:
        """Delete a job row. Callers check job.ensure_deletable() first."""
        await self.session.execute(delete(Job).where(Job.id == job.id))  # type: ignore[arg-type]
        await self.session.flush()
