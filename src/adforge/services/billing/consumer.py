"""Billing event consumer - Stripe webhook events → ledger grants and subscription status.

Event mapping:
- checkout.session.completed (mode=subscription) → subscription started:
  link customer/subscription to the profile, grant the plan's credits
- invoice.payment_succeeded / invoice.paid (billing_reason=subscription_cycle)
  → recurring payment: grant the plan's credits again
- customer.subscription.updated / customer.subscription.deleted → status only
- invoice.payment_failed → status "past_due"
- anything else → acknowledged, ignored

Redelivered events are processed again; grants are not deduplicated.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable
from uuid import UUID

import stripe
import structlog

from adforge.models.profile import Profile
from adforge.models.usage_event import UsageReason
from adforge.services.billing.plans import PlanCatalog
from adforge.services.exceptions import InternalError
from adforge.services.ledger import CreditLedger
from adforge.uow import UnitOfWork

logger = structlog.get_logger(__name__)

PAST_DUE = "past_due"
CANCELED = "canceled"
RECURRING_BILLING_REASONS = ("subscription_cycle",)


@dataclass
class SubscriptionInfo:
    id: str
    status: str | None
    customer_id: str | None
    price_id: str | None


class StripeSubscriptionLookup:
    """Fetches subscriptions through the Stripe SDK (synchronous, run in a thread)."""

    def __init__(self, api_key: str):
        self.api_key = api_key

    async def __call__(self, subscription_id: str) -> SubscriptionInfo:
        def _retrieve():
            return stripe.Subscription.retrieve(subscription_id, api_key=self.api_key)

        try:
            subscription = await asyncio.to_thread(_retrieve)
        except stripe.StripeError as e:
            raise InternalError(f"Failed to retrieve subscription {subscription_id}: {e}") from e

        items = subscription["items"]["data"] if subscription.get("items") else []
        price = items[0].get("price") if items else None
        return SubscriptionInfo(
            id=subscription["id"],
            status=subscription.get("status"),
            customer_id=_as_id(subscription.get("customer")),
            price_id=_as_id(price),
        )


SubscriptionLookup = Callable[[str], Awaitable[SubscriptionInfo]]


@dataclass
class BillingResult:
    event_type: str
    handled: bool
    user_id: UUID | None = None
    credits_granted: int = 0


class BillingEventConsumer:
    """Applies verified Stripe events. Signature verification happens before this runs."""

    def __init__(
        self,
        uow_factory: Callable[[], Awaitable[UnitOfWork]],
        plans: PlanCatalog,
        lookup_subscription: SubscriptionLookup,
        ledger: CreditLedger | None = None,
    ):
        self.uow_factory = uow_factory
        self.plans = plans
        self.lookup_subscription = lookup_subscription
        self.ledger = ledger or CreditLedger()
        self.handlers = {
            "checkout.session.completed": self.subscription_started,
            "invoice.payment_succeeded": self.recurring_payment_succeeded,
            "invoice.paid": self.recurring_payment_succeeded,
            "customer.subscription.updated": self.subscription_updated,
            "customer.subscription.deleted": self.subscription_canceled,
            "invoice.payment_failed": self.payment_failed,
        }

    async def handle(self, event: dict[str, Any]) -> BillingResult:
        """Dispatch one event by type.

        Raises:
            ServiceError: Ledger or lookup failure (the webhook answers 5xx and
                Stripe redelivers)
        """
        event_type = event.get("type", "")
        obj = (event.get("data") or {}).get("object") or {}
        handler = self.handlers.get(event_type)

        log = logger.bind(event_id=event.get("id"), event_type=event_type)
        if handler is None:
            log.debug("billing.event_ignored")
            return BillingResult(event_type=event_type, handled=False)

        result = await handler(event, obj)
        log.info(
            "billing.event_processed",
            handled=result.handled,
            user_id=str(result.user_id) if result.user_id else None,
            credits_granted=result.credits_granted,
        )
        return result

    async def subscription_started(self, event: dict, session: dict) -> BillingResult:
        event_type = event["type"]
        if session.get("mode") != "subscription":
            return BillingResult(event_type=event_type, handled=False)

        subscription_id = _as_id(session.get("subscription"))
        customer_id = _as_id(session.get("customer"))
        if not subscription_id:
            logger.warning("billing.checkout_without_subscription", event_id=event.get("id"))
            return BillingResult(event_type=event_type, handled=False)

        subscription = await self.lookup_subscription(subscription_id)
        customer_id = customer_id or subscription.customer_id
        plan = self.plans.by_price(subscription.price_id) or self.plans.by_name(
            (session.get("metadata") or {}).get("plan")
        )

        async with await self.uow_factory() as uow:
            profile = await self._find_checkout_profile(uow, session, customer_id)
            if profile is None:
                logger.warning(
                    "billing.profile_not_found",
                    event_id=event.get("id"),
                    customer_id=customer_id,
                )
                return BillingResult(event_type=event_type, handled=False)

            await uow.profiles.update_subscription(
                profile,
                status=subscription.status or "active",
                subscription_id=subscription.id,
                customer_id=customer_id,
            )

            granted = 0
            if plan is None:
                logger.warning(
                    "billing.unknown_price",
                    event_id=event.get("id"),
                    price_id=subscription.price_id,
                )
            else:
                await self.ledger.add(
                    uow,
                    profile.id,
                    plan.credits,
                    UsageReason.SUBSCRIPTION_GRANT,
                    metadata=_grant_metadata(event, plan.name, subscription.id),
                )
                granted = plan.credits

        return BillingResult(
            event_type=event_type, handled=True, user_id=profile.id, credits_granted=granted
        )

    async def recurring_payment_succeeded(self, event: dict, invoice: dict) -> BillingResult:
        event_type = event["type"]
        # The first invoice (subscription_create) is covered by the start grant
        if invoice.get("billing_reason") not in RECURRING_BILLING_REASONS:
            return BillingResult(event_type=event_type, handled=False)

        customer_id = _as_id(invoice.get("customer"))
        subscription_id = _invoice_subscription_id(invoice)
        price_id = _invoice_price_id(invoice)
        if not price_id and subscription_id:
            price_id = (await self.lookup_subscription(subscription_id)).price_id

        plan = self.plans.by_price(price_id)
        if plan is None:
            logger.warning("billing.unknown_price", event_id=event.get("id"), price_id=price_id)
            return BillingResult(event_type=event_type, handled=False)

        async with await self.uow_factory() as uow:
            profile = await uow.profiles.get_by_stripe_customer(customer_id) if customer_id else None
            if profile is None:
                logger.warning(
                    "billing.profile_not_found",
                    event_id=event.get("id"),
                    customer_id=customer_id,
                )
                return BillingResult(event_type=event_type, handled=False)

            await self.ledger.add(
                uow,
                profile.id,
                plan.credits,
                UsageReason.RECURRING_GRANT,
                metadata=_grant_metadata(event, plan.name, subscription_id),
            )

        return BillingResult(
            event_type=event_type, handled=True, user_id=profile.id, credits_granted=plan.credits
        )

    async def subscription_updated(self, event: dict, subscription: dict) -> BillingResult:
        return await self._set_status(
            event,
            _as_id(subscription.get("customer")),
            subscription.get("status"),
            subscription_id=_as_id(subscription),
        )

    async def subscription_canceled(self, event: dict, subscription: dict) -> BillingResult:
        return await self._set_status(
            event,
            _as_id(subscription.get("customer")),
            subscription.get("status") or CANCELED,
            clear_subscription=True,
        )

    async def payment_failed(self, event: dict, invoice: dict) -> BillingResult:
        return await self._set_status(event, _as_id(invoice.get("customer")), PAST_DUE)

    async def _set_status(
        self,
        event: dict,
        customer_id: str | None,
        status: str | None,
        subscription_id: str | None = None,
        clear_subscription: bool = False,
    ) -> BillingResult:
        event_type = event["type"]
        if not customer_id:
            return BillingResult(event_type=event_type, handled=False)

        async with await self.uow_factory() as uow:
            profile = await uow.profiles.get_by_stripe_customer(customer_id)
            if profile is None:
                logger.warning(
                    "billing.profile_not_found",
                    event_id=event.get("id"),
                    customer_id=customer_id,
                )
                return BillingResult(event_type=event_type, handled=False)

            await uow.profiles.update_subscription(
                profile,
                status=status,
                subscription_id=subscription_id,
                clear_subscription=clear_subscription,
            )

        return BillingResult(event_type=event_type, handled=True, user_id=profile.id)

    async def _find_checkout_profile(
        self, uow: UnitOfWork, session: dict, customer_id: str | None
    ) -> Profile | None:
        """Resolve the paying user: client_reference_id, then customer id, then email."""
        reference = session.get("client_reference_id")
        if reference:
            try:
                profile = await uow.profiles.get_by_id(UUID(reference))
            except ValueError:
                profile = None
            if profile is not None:
                return profile

        if customer_id:
            profile = await uow.profiles.get_by_stripe_customer(customer_id)
            if profile is not None:
                return profile

        email = (session.get("customer_details") or {}).get("email") or session.get(
            "customer_email"
        )
        if email:
            return await uow.profiles.get_by_email(email)
        return None


def _as_id(value: Any) -> str | None:
    """Stripe fields are either an id string or an expanded object."""
    if value is None:
        return None
    if isinstance(value, str):
        return value
    return value.get("id")


def _invoice_subscription_id(invoice: dict) -> str | None:
    subscription = _as_id(invoice.get("subscription"))
    if subscription:
        return subscription
    # Newer API versions nest it under parent.subscription_details
    details = (invoice.get("parent") or {}).get("subscription_details") or {}
    return _as_id(details.get("subscription"))


def _invoice_price_id(invoice: dict) -> str | None:
    lines = (invoice.get("lines") or {}).get("data") or []
    if not lines:
        return None
    line = lines[0]
    price = _as_id(line.get("price"))
    if price:
        return price
    details = (line.get("pricing") or {}).get("price_details") or {}
    return _as_id(details.get("price"))


def _grant_metadata(event: dict, plan: str, subscription_id: str | None) -> dict[str, Any]:
    return {"stripe_event_id": event.get("id"), "plan": plan, "subscription_id": subscription_id}
