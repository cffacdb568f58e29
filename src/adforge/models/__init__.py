"""SQLModel database entities.

All models are imported here to ensure they're registered with SQLModel metadata
for Alembic autogenerate support.
"""

from adforge.models.job import InvalidStateTransition, Job, JobStatus
from adforge.models.profile import Profile
from adforge.models.source_image import SourceImage
from adforge.models.usage_event import UsageEvent, UsageReason

__all__ = [
    "Profile",
    "Job",
    "JobStatus",
    "InvalidStateTransition",
    "SourceImage",
    "UsageEvent",
    "UsageReason",
]
