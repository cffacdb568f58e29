"""Service error hierarchy for the job pipeline and credit ledger.

Every error carries the HTTP status the API layer renders it with:
- Errors raised before any side effect (validation, auth, ownership, credits)
  are returned synchronously to the caller.
- Errors raised inside the worker (provider, storage) are recorded on the Job row.
"""


class ServiceError(Exception):
    """Base exception for all service errors."""

    status_code: int = 500

    def __init__(self, message: str, **extra):
        super().__init__(message)
        self.message = message
        self.extra = extra

    def to_dict(self) -> dict:
        """Render the error as an API response body."""
        return {"error": self.message, **self.extra}


class ValidationError(ServiceError):
    """Malformed or out-of-range request data."""

    status_code = 400


class AuthError(ServiceError):
    """Missing, invalid or expired credentials."""

    status_code = 401


class InsufficientCreditsError(ServiceError):
    """Credit reservation failed. Carries the available and required amounts."""

    status_code = 402

    def __init__(self, available: int, required: int):
        super().__init__("Insufficient credits", available=available, required=required)
        self.available = available
        self.required = required


class NotFoundError(ServiceError):
    """Referenced entity does not exist."""

    status_code = 404


class OwnershipError(ServiceError):
    """Referenced entity belongs to another user.

    Rendered as 404 so foreign ids are indistinguishable from unknown ones.
    """

    status_code = 404


class JobStateError(ServiceError):
    """Operation not permitted in the job's current status."""

    status_code = 409


class UsageLimitError(ServiceError):
    """Free-tier job quota exhausted."""

    status_code = 429


class InternalError(ServiceError):
    """Unexpected failure (trigger call, database, configuration)."""

    status_code = 500


class StorageError(ServiceError):
    """Object storage failure (signed URL, download, upload)."""

    status_code = 500


class ProviderError(ServiceError):
    """External generation provider failure."""

    status_code = 500


class TransientProviderError(ProviderError):
    """Network timeout, rate limit or provider outage.

    Not retried automatically; the classification only shapes the recorded message.
    """


class ContentPolicyError(ProviderError):
    """Prompt or input rejected by the provider's content policy."""


class PermanentProviderError(ProviderError):
    """Authentication, validation or malformed-output failure."""
