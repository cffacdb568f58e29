"""Profile entity - per-user credit balance and billing identifiers."""

from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlmodel import Field, SQLModel

from adforge.core.timezone import utcnow

ACTIVE_SUBSCRIPTION_STATUSES = ("active", "trialing")


class Profile(SQLModel, table=True):
    """Profile holds the user's credit balance.

    The balance is mutated exclusively through the credit ledger's atomic
    consume/add operations and is never negative (enforced by a CHECK constraint).
    """

    __tablename__ = "profiles"  # type: ignore[assignment]

    id: UUID = Field(primary_key=True)  # Same id as the auth provider's user
    email: Optional[str] = Field(default=None, max_length=320, index=True)
    credits: int = Field(default=0, ge=0)
    stripe_customer_id: Optional[str] = Field(default=None, max_length=255, unique=True)
    subscription_id: Optional[str] = Field(default=None, max_length=255)
    subscription_status: Optional[str] = Field(default=None, max_length=50)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def has_active_subscription(self) -> bool:
        return self.subscription_status in ACTIVE_SUBSCRIPTION_STATUSES
