"""Stripe webhook signature verification."""

import json

import stripe

# Stripe's default replay window
DEFAULT_TOLERANCE_SECONDS = 300


class InvalidSignature(Exception):
    """Webhook payload failed signature verification or is not valid JSON."""


def verify_stripe_event(
    payload: bytes,
    signature_header: str | None,
    secret: str,
    tolerance: int = DEFAULT_TOLERANCE_SECONDS,
) -> dict:
    """Verify the Stripe-Signature header and decode the event.

    Args:
        payload: Raw request body, exactly as received
        signature_header: Value of the Stripe-Signature header
        secret: Endpoint signing secret (whsec_...)
        tolerance: Maximum accepted age of the signature timestamp in seconds

    Returns:
        Decoded event dictionary

    Raises:
        InvalidSignature: If the header is missing, the secret is not configured,
            the signature does not match, or the body is not a JSON object
    """
    if not signature_header:
        raise InvalidSignature("Missing Stripe-Signature header")
    if not secret:
        raise InvalidSignature("Webhook secret not configured")

    try:
        stripe.WebhookSignature.verify_header(
            payload.decode("utf-8"), signature_header, secret, tolerance
        )
    except (stripe.SignatureVerificationError, UnicodeDecodeError) as e:
        raise InvalidSignature(str(e)) from e

    try:
        event = json.loads(payload)
    except ValueError as e:
        raise InvalidSignature(f"Invalid JSON payload: {e}") from e

    if not isinstance(event, dict) or "type" not in event:
        raise InvalidSignature("Payload is not a Stripe event")
    return event
