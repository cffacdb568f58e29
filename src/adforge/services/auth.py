"""Bearer token verification for end users (JWT) and the worker (service token)."""

import hmac
from uuid import UUID

import jwt

from adforge.services.exceptions import AuthError


def decode_user_token(
    token: str,
    secret: str,
    audience: str = "authenticated",
    algorithm: str = "HS256",
) -> UUID:
    """Verify a user access token and return the user id from its `sub` claim.

    Args:
        token: Encoded JWT (without the "Bearer " prefix)
        secret: Shared signing secret
        audience: Expected `aud` claim
        algorithm: Signing algorithm

    Returns:
        User id

    Raises:
        AuthError: If the token is expired, malformed, wrongly signed, or has no
            valid `sub` claim
    """
    if not secret:
        raise AuthError("Authentication not configured")

    try:
        claims = jwt.decode(
            token,
            secret,
            algorithms=[algorithm],
            audience=audience,
            options={"require": ["sub", "exp"]},
        )
    except jwt.ExpiredSignatureError as e:
        raise AuthError("Token expired") from e
    except jwt.InvalidTokenError as e:
        raise AuthError("Invalid token") from e

    try:
        return UUID(str(claims["sub"]))
    except ValueError as e:
        raise AuthError("Invalid token subject") from e


def verify_service_token(presented: str | None, expected: str) -> bool:
    """Constant-time comparison of the worker service token."""
    if not presented or not expected:
        return False
    return hmac.compare_digest(presented.encode(), expected.encode())


def bearer_token(authorization: str | None) -> str | None:
    """Extract the token from an `Authorization: Bearer <token>` header."""
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()
