"""Credit ledger - atomic balance mutations with an append-only audit trail."""

from typing import Any
from uuid import UUID

import structlog

from adforge.models.usage_event import UsageEvent
from adforge.services.exceptions import NotFoundError
from adforge.uow import UnitOfWork

logger = structlog.get_logger(__name__)


class CreditLedger:
    """Consume/add operations on a user's credit balance.

    Both operations run inside the caller's UnitOfWork, so the balance change and
    its UsageEvent commit (or roll back) together with whatever else the caller
    writes in the same transaction.
    """

    async def consume(
        self,
        uow: UnitOfWork,
        user_id: UUID,
        amount: int,
        reason: str,
        metadata: dict[str, Any] | None = None,
    ) -> bool:
        """Decrement the balance iff balance >= amount.

        Args:
            uow: Active unit of work
            user_id: Owner of the balance
            amount: Positive number of credits
            reason: Usage reason code recorded on the audit event
            metadata: Extra audit context (e.g. job id)

        Returns:
            True if the credits were consumed, False if the balance was
            insufficient (nothing is mutated)

        Raises:
            ValueError: If amount is not positive
        """
        if amount <= 0:
            raise ValueError(f"Consume amount must be positive, got {amount}")

        new_balance = await uow.profiles.consume_credits(user_id, amount)
        if new_balance is None:
            logger.info("ledger.consume_rejected", user_id=str(user_id), amount=amount)
            return False

        await uow.usage_events.append(
            UsageEvent(user_id=user_id, delta=-amount, reason=reason, event_metadata=metadata)
        )
        logger.info(
            "ledger.consumed",
            user_id=str(user_id),
            amount=amount,
            reason=reason,
            balance=new_balance,
        )
        return True

    async def add(
        self,
        uow: UnitOfWork,
        user_id: UUID,
        amount: int,
        reason: str,
        metadata: dict[str, Any] | None = None,
    ) -> int:
        """Atomically increment the balance.

        Args:
            uow: Active unit of work
            user_id: Owner of the balance
            amount: Positive number of credits
            reason: Usage reason code recorded on the audit event
            metadata: Extra audit context (e.g. Stripe event id)

        Returns:
            New balance

        Raises:
            ValueError: If amount is not positive
            NotFoundError: If the user has no profile
        """
        if amount <= 0:
            raise ValueError(f"Add amount must be positive, got {amount}")

        new_balance = await uow.profiles.add_credits(user_id, amount)
        if new_balance is None:
            raise NotFoundError(f"Profile not found for user {user_id}")

        await uow.usage_events.append(
            UsageEvent(user_id=user_id, delta=amount, reason=reason, event_metadata=metadata)
        )
        logger.info(
            "ledger.added",
            user_id=str(user_id),
            amount=amount,
            reason=reason,
            balance=new_balance,
        )
        return new_balance
