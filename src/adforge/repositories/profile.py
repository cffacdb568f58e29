"""Profile repository - credit balance storage with atomic consume/add.

Balance mutations are single conditional UPDATE ... RETURNING statements, so
concurrent calls for the same user serialize on the row lock taken by PostgreSQL.
"""

from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from adforge.core.timezone import utcnow
from adforge.models.profile import Profile


class ProfileRepository:
    """Repository for Profile entities.

    Methods:
    - get_by_id: Retrieve profile by user id
    - get_by_stripe_customer: Retrieve profile linked to a Stripe customer
    - get_by_email: Case-insensitive email lookup
    - add: Persist new profile
    - consume_credits: Atomic decrement iff balance >= amount
    - add_credits: Atomic increment
    - update_subscription: Persist billing identifiers and subscription status
    """

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def get_by_id(self, user_id: UUID) -> Profile | None:
        """Retrieve profile by user id.

        Args:
            user_id: User's unique identifier

        Returns:
            Profile if found, None otherwise
        """
        result = await self.session.execute(select(Profile).where(Profile.id == user_id))  # type: ignore[arg-type]
        return result.scalar_one_or_none()

    async def get_by_stripe_customer(self, customer_id: str) -> Profile | None:
        """Retrieve profile linked to a Stripe customer id.

        Args:
            customer_id: Stripe customer id (cus_...)

        Returns:
            Profile if found, None otherwise
        """
        result = await self.session.execute(
            select(Profile).where(Profile.stripe_customer_id == customer_id)  # type: ignore[arg-type]
        )
        return result.scalar_one_or_none()

    async def get_by_email(self, email: str) -> Profile | None:
        """Retrieve profile by email (case-insensitive)."""
        result = await self.session.execute(
            select(Profile).where(func.lower(Profile.email) == email.lower())
        )
        return result.scalars().first()

    async def add(self, profile: Profile) -> Profile:
        """Persist new profile to database.

        Args:
            profile: Profile entity to persist

        Returns:
            Persisted profile
        """
        self.session.add(profile)
        await self.session.flush()
        return profile

    async def consume_credits(self, user_id: UUID, amount: int) -> int | None:
        """Decrement the balance iff balance >= amount.

        Executes a single conditional UPDATE. Concurrent transactions updating the
        same row block on its lock and re-evaluate the WHERE clause against the
        committed balance, so two reservations can never both succeed when only
        one is affordable.

        Args:
            user_id: Owner of the balance
            amount: Positive number of credits to consume

        Returns:
            New balance on success, None if the balance was insufficient or the
            profile does not exist (no mutation in either case)
        """
        result = await self.session.execute(
            update(Profile)
            .where(Profile.id == user_id)  # type: ignore[arg-type]
            .where(Profile.credits >= amount)  # type: ignore[arg-type]
            .values(credits=Profile.credits - amount, updated_at=utcnow())
            .returning(Profile.credits)
            .execution_options(synchronize_session=False)
        )
        return result.scalar_one_or_none()

    async def add_credits(self, user_id: UUID, amount: int) -> int | None:
        """Atomically increment the balance.

        Args:
            user_id: Owner of the balance
            amount: Positive number of credits to add

        Returns:
            New balance, or None if the profile does not exist
        """
        result = await self.session.execute(
            update(Profile)
            .where(Profile.id == user_id)  # type: ignore[arg-type]
            .values(credits=Profile.credits + amount, updated_at=utcnow())
            .returning(Profile.credits)
            .execution_options(synchronize_session=False)
        )
        return result.scalar_one_or_none()

    async def get_balance(self, user_id: UUID) -> int | None:
        """Read the committed balance without loading the entity into the session."""
        result = await self.session.execute(
            select(Profile.credits).where(Profile.id == user_id)  # type: ignore[arg-type]
        )
        return result.scalar_one_or_none()

    async def update_subscription(
        self,
        profile: Profile,
        *,
        status: str | None,
        subscription_id: str | None = None,
        customer_id: str | None = None,
        clear_subscription: bool = False,
    ) -> Profile:
        """Persist subscription status and billing identifiers.

        Args:
            profile: Profile entity to update
            status: New subscription status (e.g. "active", "past_due", "canceled")
            subscription_id: Stripe subscription id to store (ignored if None)
            customer_id: Stripe customer id to link (ignored if None)
            clear_subscription: Remove the stored subscription id

        Returns:
            Updated profile
        """
        profile.subscription_status = status
        if subscription_id:
            profile.subscription_id = subscription_id
        if clear_subscription:
            profile.subscription_id = None
        if customer_id:
            profile.stripe_customer_id = customer_id
        profile.updated_at = utcnow()
        self.session.add(profile)
        await self.session.flush()
        return profile
