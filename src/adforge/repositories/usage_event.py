"""UsageEvent repository - append-only, no update or delete methods."""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from adforge.models.usage_event import UsageEvent


class UsageEventRepository:
    """Repository for UsageEvent entities."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def append(self, event: UsageEvent) -> UsageEvent:
        """Append an audit record.

        Args:
            event: UsageEvent to persist

        Returns:
            Persisted event
        """
        self.session.add(event)
        await self.session.flush()
        return event

    async def list_for_user(self, user_id: UUID, limit: int = 50) -> list[UsageEvent]:
        """Retrieve a user's most recent usage events (newest first)."""
        result = await self.session.execute(
            select(UsageEvent)
            .where(UsageEvent.user_id == user_id)  # type: ignore[arg-type]
            .order_by(UsageEvent.created_at.desc())  # type: ignore[attr-defined]
            .limit(limit)
        )
        return list(result.scalars().all())
