"""Repository layer.

Provides data access abstractions for all domain entities.
No base classes - each repository is self-contained.
"""

from adforge.repositories.job import JobRepository
from adforge.repositories.profile import ProfileRepository
from adforge.repositories.source_image import SourceImageRepository
from adforge.repositories.usage_event import UsageEventRepository

__all__ = [
    "ProfileRepository",
    "JobRepository",
    "SourceImageRepository",
    "UsageEventRepository",
]
