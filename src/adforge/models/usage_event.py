"""UsageEvent entity - append-only audit trail of ledger mutations."""

from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel

from adforge.core.timezone import utcnow


class UsageReason:
    """Reason codes recorded on usage events."""

    JOB_CONSUME = "job_consume"
    SUBSCRIPTION_GRANT = "subscription_grant"
    RECURRING_GRANT = "recurring_grant"


class UsageEvent(SQLModel, table=True):
    """One row per successful ledger mutation. Never updated or deleted."""

    __tablename__ = "usage_events"  # type: ignore[assignment]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    user_id: UUID = Field(foreign_key="profiles.id", index=True)
    delta: int  # Negative for consumption, positive for grants
    reason: str = Field(max_length=50)
    # "metadata" is reserved on declarative classes, so the attribute is renamed
    event_metadata: Optional[dict] = Field(default=None, sa_column=Column("metadata", JSON))
    created_at: datetime = Field(default_factory=utcnow)
