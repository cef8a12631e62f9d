"""
Tests for the errors module.
"""

import pytest

from profile_matching.errors import (
    ClientError,
    ConflictOnInsert,
    DuplicateEventError,
    EmbeddingError,
    ExtractionError,
    NotFoundError,
    OpenAIError,
    OpenAIModelError,
    OpenAIRateLimitError,
    PipelineError,
    PostgresConnectionError,
    PostgresError,
    PostgresQueryError,
    ProfileMatchingError,
    ProtectedFieldError,
    UnknownFieldError,
    UpstreamError,
    ValidationError,
    status_code_for,
    wrap_openai_error,
    wrap_postgres_error,
)


class TestErrorHierarchy:
    """Test error class hierarchy."""

    def test_base_error_with_context(self):
        """Test that base error captures context."""
        error = ProfileMatchingError(
            "Something went wrong",
            context={"key": "value", "count": 42},
        )

        assert error.message == "Something went wrong"
        assert error.context == {"key": "value", "count": 42}
        assert "key" in str(error)

    def test_base_error_without_context(self):
        """Test error without context."""
        error = ProfileMatchingError("Simple error")

        assert error.message == "Simple error"
        assert error.context == {}
        assert str(error) == "Simple error"

    def test_pipeline_error_inheritance(self):
        assert issubclass(ValidationError, PipelineError)
        assert issubclass(UnknownFieldError, ValidationError)
        assert issubclass(ProtectedFieldError, ValidationError)
        assert issubclass(NotFoundError, PipelineError)
        assert issubclass(DuplicateEventError, PipelineError)
        assert issubclass(ConflictOnInsert, PipelineError)
        assert issubclass(ExtractionError, UpstreamError)
        assert issubclass(EmbeddingError, UpstreamError)

    def test_client_error_inheritance(self):
        assert issubclass(OpenAIError, ClientError)
        assert issubclass(OpenAIRateLimitError, OpenAIError)
        assert issubclass(OpenAIModelError, OpenAIError)
        assert issubclass(PostgresConnectionError, PostgresError)
        assert issubclass(PostgresQueryError, PostgresError)
        assert issubclass(ClientError, ProfileMatchingError)

    def test_extraction_error_reason(self):
        error = ExtractionError("bad output", reason=ExtractionError.SCHEMA_VIOLATION)

        assert error.reason == "schema_violation"
        assert error.context["reason"] == "schema_violation"

    def test_extraction_error_default_reason(self):
        assert ExtractionError("down").reason == ExtractionError.UPSTREAM_UNAVAILABLE


class TestStatusCodes:
    """Test the HTTP status assigned to each error."""

    @pytest.mark.parametrize(
        "error, expected",
        [
            (ValidationError("bad"), 400),
            (ProtectedFieldError("protected"), 400),
            (UnknownFieldError("unknown"), 400),
            (NotFoundError("missing"), 404),
            (DuplicateEventError("dup"), 200),
            (ConflictOnInsert("exists"), 200),
            (ExtractionError("down"), 500),
            (EmbeddingError("down"), 500),
            (PostgresQueryError("boom"), 500),
            (RuntimeError("unexpected"), 500),
        ],
    )
    def test_status_code_for(self, error, expected):
        assert status_code_for(error) == expected


class TestErrorWrapping:
    """Test error wrapping utilities."""

    def test_wrap_openai_rate_limit(self):
        wrapped = wrap_openai_error(Exception("Rate limit exceeded"))

        assert isinstance(wrapped, OpenAIRateLimitError)
        assert wrapped.context["error_type"] == "Exception"

    def test_wrap_openai_refusal(self):
        wrapped = wrap_openai_error(Exception("The model refused the request"))

        assert isinstance(wrapped, OpenAIModelError)

    def test_wrap_openai_generic(self):
        wrapped = wrap_openai_error(Exception("Bad gateway"), context={"model": "gpt-4o-mini"})

        assert type(wrapped) is OpenAIError
        assert wrapped.context["model"] == "gpt-4o-mini"
        assert wrapped.context["original_error"] == "Bad gateway"

    def test_wrap_postgres_connection(self):
        wrapped = wrap_postgres_error(Exception("could not connect to server"))

        assert isinstance(wrapped, PostgresConnectionError)

    def test_wrap_postgres_query(self):
        wrapped = wrap_postgres_error(Exception('relation "profiles" does not exist'))

        assert isinstance(wrapped, PostgresQueryError)
