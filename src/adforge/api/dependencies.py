"""FastAPI dependencies for request validation and common operations.

This module provides reusable FastAPI dependencies for:
- End-user authentication (JWT bearer tokens)
- Worker authentication (service token)
- Stripe webhook signature validation
- Access to services stored on app.state
"""

from typing import Annotated, Callable
from uuid import UUID

import structlog
from fastapi import Depends, Header, Request

from adforge.core.config import Settings
from adforge.services import auth
from adforge.services.billing.consumer import BillingEventConsumer
from adforge.services.billing.stripe_signature import InvalidSignature, verify_stripe_event
from adforge.services.dispatcher import JobDispatcher
from adforge.services.exceptions import AuthError, ValidationError
from adforge.uow import UnitOfWork

logger = structlog.get_logger()


def get_settings(request: Request) -> Settings:
    """Get application settings loaded during lifespan startup."""
    return request.app.state.settings


def get_uow_factory(request: Request) -> Callable[[], UnitOfWork]:
    """Get UnitOfWork factory from app state.

    Example:
        >>> @router.get("/endpoint")
        >>> async def endpoint(uow_factory=Depends(get_uow_factory)):
        ...     async with await uow_factory() as uow:
        ...         await uow.jobs.get_for_user(job_id, user_id)
    """
    return request.app.state.uow_factory


def get_dispatcher(request: Request) -> JobDispatcher:
    return request.app.state.dispatcher


def get_billing_consumer(request: Request) -> BillingEventConsumer:
    return request.app.state.billing_consumer


async def get_current_user_id(
    authorization: Annotated[str | None, Header()] = None,
    settings: Settings = Depends(get_settings),
) -> UUID:
    """Authenticate the end user from the Authorization header.

    Returns:
        User id from the token's `sub` claim

    Raises:
        AuthError: 401 if the header is missing or the token is invalid
    """
    token = auth.bearer_token(authorization)
    if token is None:
        raise AuthError("Unauthorized")
    return auth.decode_user_token(
        token,
        settings.jwt_secret,
        audience=settings.jwt_audience,
        algorithm=settings.jwt_algorithm,
    )


async def require_service_token(
    authorization: Annotated[str | None, Header()] = None,
    settings: Settings = Depends(get_settings),
) -> None:
    """Allow only callers presenting the worker service credential.

    End-user tokens are rejected even when valid.

    Raises:
        AuthError: 401 if the service token is missing or wrong
    """
    if not auth.verify_service_token(auth.bearer_token(authorization), settings.worker_service_token):
        logger.warning("worker.auth_rejected")
        raise AuthError("Unauthorized")


async def validate_stripe_signature(
    request: Request,
    stripe_signature: Annotated[str | None, Header()] = None,
    settings: Settings = Depends(get_settings),
) -> dict:
    """Validate the Stripe webhook signature before processing the request.

    Reads the raw request body (the exact bytes Stripe signed), verifies the
    Stripe-Signature header and returns the decoded event.

    Returns:
        Decoded Stripe event

    Raises:
        ValidationError: 400 if the signature is missing or invalid
    """
    raw_body = await request.body()
    try:
        return verify_stripe_event(raw_body, stripe_signature, settings.stripe_webhook_secret)
    except InvalidSignature as e:
        logger.warning("webhook.signature_invalid", error=str(e))
        raise ValidationError(f"Webhook Error: {e}") from e
