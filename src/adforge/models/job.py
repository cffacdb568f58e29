"""Job entity - one generation request and its lifecycle record."""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

import sqlalchemy as sa
from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel

from adforge.core.timezone import utcnow

MAX_ERROR_LENGTH = 1000


class JobStatus(str, Enum):
    """Job lifecycle status."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATUSES = (JobStatus.COMPLETED, JobStatus.FAILED)


class InvalidStateTransition(Exception):
    """Raised when attempting an invalid job state transition."""

    pass


class Job(SQLModel, table=True):
    """Job represents a generation request.

    Status only advances pending -> processing -> completed|failed.
    result_path is set iff completed, error_message is set iff failed.
    """

    __tablename__ = "jobs"  # type: ignore[assignment]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    user_id: UUID = Field(foreign_key="profiles.id", index=True)
    # Ordered: index 0 is the scene image, the rest are references
    image_ids: list[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    prompt: str
    model: str = Field(max_length=64)
    style: str = Field(default="photorealistic", max_length=64)
    aspect_ratio: str = Field(default="square", max_length=16)
    output_count: int = Field(default=1, ge=1, le=4)
    status: JobStatus = Field(
        default=JobStatus.PENDING,
        sa_column=Column(
            sa.Enum(
                JobStatus,
                name="job_status",
                values_callable=lambda enum: [member.value for member in enum],
            ),
            nullable=False,
            index=True,
        ),
    )
    credits_used: int = Field(ge=0)
    result_type: str = Field(default="image", max_length=16)
    result_path: Optional[str] = Field(default=None)
    result_paths: Optional[list[str]] = Field(default=None, sa_column=Column(JSON))
    error_message: Optional[str] = Field(default=None, max_length=MAX_ERROR_LENGTH)
    custom_name: Optional[str] = Field(default=None, max_length=255)
    folder_id: Optional[UUID] = Field(default=None)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def mark_processing(self) -> None:
        """Transition from pending to processing.

        Raises:
            InvalidStateTransition: If current status is not pending
        """
        if self.status != JobStatus.PENDING:
            raise InvalidStateTransition(
                f"Cannot mark processing from {self.status.value}. Job must be in pending state."
            )
        self.status = JobStatus.PROCESSING
        self.updated_at = utcnow()

    def mark_completed(self, result_paths: list[str]) -> None:
        """Transition from processing to completed.

        Args:
            result_paths: Storage keys of the materialized assets, first one is the
                job's result pointer

        Raises:
            InvalidStateTransition: If current status is not processing
            ValueError: If no result path is given
        """
        if self.status != JobStatus.PROCESSING:
            raise InvalidStateTransition(
                f"Cannot mark completed from {self.status.value}. "
                "Job must be in processing state."
            )
        if not result_paths or not result_paths[0]:
            raise ValueError("result_paths is required")
        self.result_path = result_paths[0]
        self.result_paths = list(result_paths)
        self.error_message = None
        self.status = JobStatus.COMPLETED
        self.updated_at = utcnow()

    def mark_failed(self, error_message: str) -> None:
        """Transition from any non-terminal state to failed.

        Args:
            error_message: Error description (truncated to 1000 characters)

        Raises:
            InvalidStateTransition: If current status is already terminal
        """
        if self.is_terminal:
            raise InvalidStateTransition(
                f"Cannot mark failed from terminal state {self.status.value}."
            )
        self.error_message = (error_message or "Unknown error")[:MAX_ERROR_LENGTH]
        self.result_path = None
        self.result_paths = None
        self.status = JobStatus.FAILED
        self.updated_at = utcnow()

    def rename(self, name: str) -> None:
        """Set the display name. Allowed in every status.

        Raises:
            ValueError: If name is empty or longer than 255 characters
        """
        name = (name or "").strip()
        if not name or len(name) > 255:
            raise ValueError("Job name must be between 1 and 255 characters")
        self.custom_name = name
        self.updated_at = utcnow()

    def ensure_deletable(self) -> None:
        """Deletion is an explicit cleanup action for failed jobs only.

        Raises:
            InvalidStateTransition: If the job is not failed
        """
        if self.status != JobStatus.FAILED:
            raise InvalidStateTransition(
                f"Cannot delete job in {self.status.value} state. Only failed jobs can be deleted."
            )
