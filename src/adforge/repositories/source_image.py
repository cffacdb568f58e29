"""SourceImage repository."""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from adforge.models.source_image import SourceImage


class SourceImageRepository:
    """Repository for SourceImage entities."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def add(self, image: SourceImage) -> SourceImage:
        self.session.add(image)
        await self.session.flush()
        return image

    async def get_by_id(self, image_id: UUID) -> SourceImage | None:
        result = await self.session.execute(
            select(SourceImage).where(SourceImage.id == image_id)  # type: ignore[arg-type]
        )
        return result.scalar_one_or_none()

    async def get_many(self, image_ids: list[UUID]) -> dict[UUID, SourceImage]:
        """Load several images at once.

        Returns:
            Mapping of id -> image for the ids that exist (unknown ids are absent)
        """
        if not image_ids:
            return {}
        result = await self.session.execute(
            select(SourceImage).where(SourceImage.id.in_(image_ids))  # type: ignore[attr-defined]
        )
        return {image.id: image for image in result.scalars().all()}
