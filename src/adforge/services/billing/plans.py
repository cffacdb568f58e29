"""Subscription plan catalog - plan names, Stripe price ids and credit grants."""

from dataclasses import dataclass

from adforge.core.config import Settings

PLAN_CREDITS = {"starter": 200, "pro": 600, "business": 1500}


@dataclass(frozen=True)
class Plan:
    name: str
    credits: int
    price_id: str | None = None


class PlanCatalog:
    """Resolves Stripe price ids (or plan names) to credit grants."""

    def __init__(self, price_ids: dict[str, str]):
        """Initialize catalog.

        Args:
            price_ids: Mapping of plan name -> Stripe price id. Plans without a
                configured price id can only be resolved by name.
        """
        self.plans = {
            name: Plan(name=name, credits=credits, price_id=price_ids.get(name) or None)
            for name, credits in PLAN_CREDITS.items()
        }
        self._by_price = {plan.price_id: plan for plan in self.plans.values() if plan.price_id}

    @classmethod
    def from_settings(cls, settings: Settings) -> "PlanCatalog":
        return cls(
            {
                "starter": settings.stripe_starter_price_id,
                "pro": settings.stripe_pro_price_id,
                "business": settings.stripe_business_price_id,
            }
        )

    def by_price(self, price_id: str | None) -> Plan | None:
        if not price_id:
            return None
        return self._by_price.get(price_id)

    def by_name(self, name: str | None) -> Plan | None:
        if not name:
            return None
        return self.plans.get(name.lower())
