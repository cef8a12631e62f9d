"""
Custom exceptions and error handling for the profile matching pipeline.

Provides:
- Typed exception hierarchy for different failure modes
- Error context preservation for debugging
- HTTP status mapping for the webhook boundary
"""

from typing import Any


class ProfileMatchingError(Exception):
    """Base exception for all profile matching errors."""

    status_code: int = 500

    def __init__(self, message: str, context: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def __str__(self) -> str:
        if self.context:
            return f"{self.message} | context={self.context}"
        return self.message


# =============================================================================
# Client Errors
# =============================================================================


class ClientError(ProfileMatchingError):
    """Base class for client-related errors."""

    pass


class OpenAIError(ClientError):
    """Error from OpenAI API calls."""

    pass


class OpenAIRateLimitError(OpenAIError):
    """Rate limit exceeded on OpenAI API."""

    pass


class OpenAIModelError(OpenAIError):
    """Model refused request or returned invalid response."""

    pass


class PostgresError(ClientError):
    """Error from Postgres operations."""

    pass


class PostgresConnectionError(PostgresError):
    """Failed to connect to Postgres."""

    pass


class PostgresQueryError(PostgresError):
    """Error executing a Postgres statement."""

    pass


# =============================================================================
# Pipeline Errors
# =============================================================================


class PipelineError(ProfileMatchingError):
    """Base class for pipeline-related errors."""

    pass


class ValidationError(PipelineError):
    """Input validation failed. Raised before any side effect is attempted."""

    status_code = 400


class UnknownFieldError(ValidationError):
    """A merge named a field outside the tracked profile field set."""

    pass


class ProtectedFieldError(ValidationError):
    """A merge named a protected field (identifier, timestamps, embedding)."""

    pass


class NotFoundError(PipelineError):
    """Profile not found on a lookup-only path."""

    status_code = 404


class DuplicateEventError(PipelineError):
    """Event was already processed or is in flight. Reported as a no-op."""

    status_code = 200


class ConflictOnInsert(PipelineError):
    """Match pair already exists. Reported as a no-op."""

    status_code = 200


class UpstreamError(PipelineError):
    """An external service failed or timed out."""

    pass


class ExtractionError(UpstreamError):
    """Profile extraction failed.

    ``reason`` is ``schema_violation`` when the response did not match the
    output schema, ``upstream_unavailable`` when the service errored or timed out.
    """

    SCHEMA_VIOLATION = 'schema_violation'
    UPSTREAM_UNAVAILABLE = 'upstream_unavailable'

    def __init__(
        self,
        message: str,
        reason: str = UPSTREAM_UNAVAILABLE,
        context: dict[str, Any] | None = None,
    ):
        super().__init__(message, context=context)
        self.reason = reason
        self.context.setdefault('reason', reason)


class EmbeddingError(UpstreamError):
    """Embedding generation failed or returned an unusable vector."""

    pass


# =============================================================================
# Error Handling Utilities
# =============================================================================


def wrap_openai_error(exc: Exception, context: dict[str, Any] | None = None) -> OpenAIError:
    """
    Wrap an OpenAI exception in our typed error hierarchy.

    Args:
        exc: The original exception
        context: Additional context for debugging

    Returns:
        Typed OpenAIError subclass
    """
    error_str = str(exc).lower()
    ctx = context or {}
    ctx['original_error'] = str(exc)
    ctx['error_type'] = type(exc).__name__

    if 'rate limit' in error_str or 'rate_limit' in error_str:
        return OpenAIRateLimitError(
            f"OpenAI rate limit exceeded: {exc}",
            context=ctx,
        )
    elif 'content policy' in error_str or 'refused' in error_str:
        return OpenAIModelError(
            f"OpenAI model refused request: {exc}",
            context=ctx,
        )
    else:
        return OpenAIError(
            f"OpenAI API error: {exc}",
            context=ctx,
        )


def wrap_postgres_error(exc: Exception, context: dict[str, Any] | None = None) -> PostgresError:
    """
    Wrap a SQLAlchemy/asyncpg exception in our typed error hierarchy.

    Args:
        exc: The original exception
        context: Additional context for debugging

    Returns:
        Typed PostgresError subclass
    """
    error_str = str(exc).lower()
    ctx = context or {}
    ctx['original_error'] = str(exc)
    ctx['error_type'] = type(exc).__name__

    if 'connection' in error_str or 'connect' in error_str:
        return PostgresConnectionError(
            f"Postgres connection failed: {exc}",
            context=ctx,
        )
    return PostgresQueryError(
        f"Postgres query error: {exc}",
        context=ctx,
    )


def status_code_for(exc: BaseException) -> int:
    """HTTP status the webhook boundary reports for an exception."""
    if isinstance(exc, ProfileMatchingError):
        return exc.status_code
    return 500
