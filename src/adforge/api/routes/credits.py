"""Credit balance endpoint."""

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from adforge.api.dependencies import get_current_user_id, get_uow_factory
from adforge.services.exceptions import NotFoundError

router = APIRouter(prefix="/api/credits", tags=["credits"])


class UsageEventDTO(BaseModel):
    delta: int
    reason: str
    metadata: dict | None = None
    created_at: datetime


class CreditsResponse(BaseModel):
    balance: int
    subscription_status: str | None = None
    recent_events: list[UsageEventDTO]


@router.get("", response_model=CreditsResponse)
async def get_credits(
    limit: int = Query(default=20, ge=1, le=100),
    user_id: UUID = Depends(get_current_user_id),
    uow_factory=Depends(get_uow_factory),
) -> CreditsResponse:
    """Return the caller's balance, subscription status and latest ledger events."""
    async with await uow_factory() as uow:
        profile = await uow.profiles.get_by_id(user_id)
        if profile is None:
            raise NotFoundError("Profile not found")
        events = await uow.usage_events.list_for_user(user_id, limit=limit)
        return CreditsResponse(
            balance=profile.credits,
            subscription_status=profile.subscription_status,
            recent_events=[
                UsageEventDTO(
                    delta=event.delta,
                    reason=event.reason,
                    metadata=event.event_metadata,
                    created_at=event.created_at,
                )
                for event in events
            ],
        )
