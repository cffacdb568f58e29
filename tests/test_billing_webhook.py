"""Stripe webhook tests.

- Signature is verified before any handling (400, no side effects on mismatch)
- Subscription start and recurring payments grant plan credits
- Status-only events never touch the ledger
"""

import hashlib
import hmac
import json
import time
from uuid import uuid4

import pytest

from adforge.services.billing.consumer import BillingEventConsumer, SubscriptionInfo
from adforge.services.billing.plans import PlanCatalog
from adforge.services.billing.stripe_signature import InvalidSignature, verify_stripe_event
from adforge.services.exceptions import InternalError
from adforge.services.ledger import CreditLedger

WEBHOOK_SECRET = "whsec_test_secret"


def sign(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp: int | None = None) -> str:
    """Build a Stripe-Signature header the way Stripe does."""
    timestamp = timestamp or int(time.time())
    signed_payload = f"{timestamp}.".encode() + payload
    signature = hmac.new(secret.encode(), signed_payload, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def event(event_type: str, obj: dict) -> bytes:
    return json.dumps(
        {"id": f"evt_{uuid4().hex[:12]}", "type": event_type, "data": {"object": obj}}
    ).encode()


async def post_event(client, payload: bytes, signature: str | None = None):
    headers = {"Content-Type": "application/json"}
    headers["Stripe-Signature"] = signature if signature is not None else sign(payload)
    return await client.post("/webhooks/stripe", content=payload, headers=headers)


async def balance_and_profile(uow_factory, user_id):
    async with await uow_factory() as uow:
        profile = await uow.profiles.get_by_id(user_id)
        events = await uow.usage_events.list_for_user(user_id)
        return profile, events


def checkout_session(user_id=None, customer="cus_1", subscription="sub_1", email=None) -> dict:
    return {
        "object": "checkout.session",
        "mode": "subscription",
        "customer": customer,
        "subscription": subscription,
        "client_reference_id": str(user_id) if user_id else None,
        "customer_details": {"email": email},
    }


def cycle_invoice(customer="cus_1", price="price_pro", reason="subscription_cycle") -> dict:
    return {
        "object": "invoice",
        "customer": customer,
        "subscription": "sub_1",
        "billing_reason": reason,
        "lines": {"data": [{"price": {"id": price}}]},
    }


class TestSignatureVerification:
    def test_valid_signature(self):
        payload = event("invoice.paid", {})
        assert verify_stripe_event(payload, sign(payload), WEBHOOK_SECRET)["type"] == "invoice.paid"

    def test_wrong_secret(self):
        payload = event("invoice.paid", {})
        with pytest.raises(InvalidSignature):
            verify_stripe_event(payload, sign(payload, secret="whsec_other"), WEBHOOK_SECRET)

    def test_tampered_payload(self):
        payload = event("invoice.paid", {"amount": 1})
        header = sign(payload)
        with pytest.raises(InvalidSignature):
            verify_stripe_event(payload.replace(b"1", b"9"), header, WEBHOOK_SECRET)

    def test_stale_timestamp(self):
        payload = event("invoice.paid", {})
        with pytest.raises(InvalidSignature):
            verify_stripe_event(
                payload, sign(payload, timestamp=int(time.time()) - 3600), WEBHOOK_SECRET
            )

    def test_missing_header(self):
        with pytest.raises(InvalidSignature, match="Missing"):
            verify_stripe_event(b"{}", None, WEBHOOK_SECRET)


@pytest.mark.asyncio
class TestStripeWebhook:
    async def test_subscription_started_grants_plan_credits(
        self, test_client, uow_factory, make_profile
    ):
        """Start event for the pro plan adds 600 credits and links the customer."""
        profile = await make_profile(credits=0)

        response = await post_event(
            test_client, event("checkout.session.completed", checkout_session(profile.id))
        )

        assert response.status_code == 200
        assert response.json() == {"received": True}
        stored, events = await balance_and_profile(uow_factory, profile.id)
        assert stored.credits == 600
        assert stored.stripe_customer_id == "cus_1"
        assert stored.subscription_id == "sub_1"
        assert stored.subscription_status == "active"
        assert [(e.delta, e.reason) for e in events] == [(600, "subscription_grant")]

    async def test_profile_resolved_by_email(self, test_client, uow_factory, make_profile):
        profile = await make_profile(credits=5, email="Owner@Example.com")

        await post_event(
            test_client,
            event("checkout.session.completed", checkout_session(email="owner@example.com")),
        )

        stored, _ = await balance_and_profile(uow_factory, profile.id)
        assert stored.credits == 605

    async def test_bad_signature_has_no_side_effects(self, test_client, uow_factory, make_profile):
        profile = await make_profile(credits=0)
        payload = event("checkout.session.completed", checkout_session(profile.id))

        response = await post_event(test_client, payload, signature=sign(payload, "whsec_wrong"))

        assert response.status_code == 400
        assert response.json()["error"].startswith("Webhook Error:")
        stored, events = await balance_and_profile(uow_factory, profile.id)
        assert stored.credits == 0
        assert stored.stripe_customer_id is None
        assert events == []

    async def test_missing_signature(self, test_client):
        response = await post_event(test_client, event("invoice.paid", {}), signature="")
        assert response.status_code == 400

    async def test_recurring_payment_grants_again(self, test_client, uow_factory, make_profile):
        profile = await make_profile(credits=3, stripe_customer_id="cus_1")

        response = await post_event(
            test_client, event("invoice.payment_succeeded", cycle_invoice(price="price_starter"))
        )

        assert response.status_code == 200
        stored, events = await balance_and_profile(uow_factory, profile.id)
        assert stored.credits == 203
        assert events[0].reason == "recurring_grant"

    async def test_first_invoice_is_not_granted_twice(self, test_client, uow_factory, make_profile):
        profile = await make_profile(credits=600, stripe_customer_id="cus_1")

        await post_event(
            test_client, event("invoice.paid", cycle_invoice(reason="subscription_create"))
        )

        stored, events = await balance_and_profile(uow_factory, profile.id)
        assert stored.credits == 600
        assert events == []

    async def test_invoice_without_line_price_uses_subscription(
        self, test_client, uow_factory, make_profile
    ):
        profile = await make_profile(credits=0, stripe_customer_id="cus_1")
        invoice = cycle_invoice()
        invoice["lines"] = {"data": []}

        await post_event(test_client, event("invoice.paid", invoice))

        stored, _ = await balance_and_profile(uow_factory, profile.id)
        assert stored.credits == 600  # lookup returns price_pro

    async def test_subscription_updated_changes_status_only(
        self, test_client, uow_factory, make_profile
    ):
        profile = await make_profile(credits=50, stripe_customer_id="cus_1")

        await post_event(
            test_client,
            event(
                "customer.subscription.updated",
                {"id": "sub_2", "customer": "cus_1", "status": "trialing"},
            ),
        )

        stored, events = await balance_and_profile(uow_factory, profile.id)
        assert stored.subscription_status == "trialing"
        assert stored.subscription_id == "sub_2"
        assert stored.credits == 50
        assert events == []

    async def test_subscription_deleted(self, test_client, uow_factory, make_profile):
        profile = await make_profile(
            credits=50, stripe_customer_id="cus_1", subscription_status="active"
        )

        await post_event(
            test_client,
            event(
                "customer.subscription.deleted",
                {"id": "sub_1", "customer": "cus_1", "status": "canceled"},
            ),
        )

        stored, _ = await balance_and_profile(uow_factory, profile.id)
        assert stored.subscription_status == "canceled"
        assert stored.subscription_id is None
        assert stored.credits == 50

    async def test_payment_failed_marks_past_due(self, test_client, uow_factory, make_profile):
        profile = await make_profile(credits=50, stripe_customer_id="cus_1")

        await post_event(test_client, event("invoice.payment_failed", {"customer": "cus_1"}))

        stored, events = await balance_and_profile(uow_factory, profile.id)
        assert stored.subscription_status == "past_due"
        assert stored.credits == 50
        assert events == []

    async def test_unhandled_event_is_acknowledged(self, test_client, session):
        response = await post_event(test_client, event("customer.created", {"id": "cus_9"}))
        assert response.status_code == 200
        assert response.json() == {"received": True}

    @pytest.mark.xfail(
        strict=True, reason="Redelivered Stripe events are not deduplicated against the ledger"
    )
    async def test_redelivered_event_grants_once(self, test_client, uow_factory, make_profile):
        profile = await make_profile(credits=0, stripe_customer_id="cus_1")
        payload = event("invoice.paid", cycle_invoice())

        await post_event(test_client, payload)
        await post_event(test_client, payload)

        stored, _ = await balance_and_profile(uow_factory, profile.id)
        assert stored.credits == 600


class FailingLedger(CreditLedger):
    async def add(self, uow, user_id, amount, reason, metadata=None):
        raise InternalError("Ledger unavailable")


@pytest.mark.asyncio
class TestStripeWebhookFailures:
    @pytest.fixture
    def failing_consumer(self, test_client, uow_factory, settings):
        """Swap in a consumer whose ledger fails after the subscription is linked."""
        from adforge.app import app

        async def lookup_subscription(subscription_id: str) -> SubscriptionInfo:
            return SubscriptionInfo(
                id=subscription_id, status="active", customer_id=None, price_id="price_pro"
            )

        app.state.billing_consumer = BillingEventConsumer(
            uow_factory,
            PlanCatalog.from_settings(settings),
            lookup_subscription,
            ledger=FailingLedger(),
        )
        return app.state.billing_consumer

    async def test_ledger_failure_answers_500_and_rolls_back(
        self, test_client, failing_consumer, uow_factory, make_profile
    ):
        """Stripe redelivers on 5xx, so nothing from the failed attempt may be committed."""
        profile = await make_profile(credits=0)

        response = await post_event(
            test_client, event("checkout.session.completed", checkout_session(profile.id))
        )

        assert response.status_code == 500
        assert response.json() == {"error": "Ledger unavailable"}
        stored, events = await balance_and_profile(uow_factory, profile.id)
        assert stored.credits == 0
        assert stored.stripe_customer_id is None
        assert stored.subscription_id is None
        assert stored.subscription_status is None
        assert events == []

    async def test_lookup_failure_answers_500(
        self, test_client, uow_factory, make_profile, settings
    ):
        from adforge.app import app

        async def lookup_subscription(subscription_id: str) -> SubscriptionInfo:
            raise InternalError(f"Failed to retrieve subscription {subscription_id}")

        app.state.billing_consumer = BillingEventConsumer(
            uow_factory, PlanCatalog.from_settings(settings), lookup_subscription
        )
        profile = await make_profile(credits=0)

        response = await post_event(
            test_client, event("checkout.session.completed", checkout_session(profile.id))
        )

        assert response.status_code == 500
        stored, events = await balance_and_profile(uow_factory, profile.id)
        assert stored.credits == 0
        assert events == []
