"""Mapping from the error hierarchy to HTTP responses."""

from fastapi.responses import JSONResponse

from profile_matching.errors import ExtractionError, ProfileMatchingError, status_code_for


def error_response(exc: Exception) -> JSONResponse:
    """JSON error body with the status the hierarchy assigns to ``exc``."""
    content: dict = {"error": str(exc.message if isinstance(exc, ProfileMatchingError) else exc)}
    if isinstance(exc, ExtractionError):
        content["reason"] = exc.reason
    return JSONResponse(status_code=status_code_for(exc), content=content)
