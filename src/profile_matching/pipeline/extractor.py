"""
Profile extraction service.

Turns a call transcript into candidate profile fields using OpenAI
structured output. The result is strictly validated and never trusted
blindly: anything off-schema is an ExtractionError.
"""

import asyncio
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from ..clients.openai_client import OpenAIClient
from ..errors import ExtractionError, OpenAIError, OpenAIModelError
from ..logging import get_logger
from ..models.extraction import ExtractedProfile
from ..prompts.extract_profile import build_extraction_prompt

logger = get_logger(__name__)


class ProfileExtractor:
    """
    Extracts profile fields from transcripts.

    One attempt per call, bounded by a timeout. Retrying is left to the
    event redelivery that follows a released idempotency key.
    """

    DEFAULT_TIMEOUT_SECONDS = 60.0

    def __init__(self, openai_client: OpenAIClient, timeout_seconds: float | None = None):
        """
        Initialize the extractor.

        Args:
            openai_client: Configured OpenAI client
            timeout_seconds: Upper bound on the extraction call
        """
        self.openai_client = openai_client
        self.timeout_seconds = timeout_seconds or self.DEFAULT_TIMEOUT_SECONDS

    async def extract(
        self,
        transcript: str,
        context_vars: dict[str, Any] | None = None,
    ) -> ExtractedProfile:
        """
        Extract candidate profile fields from a transcript.

        Args:
            transcript: Full call transcript
            context_vars: Dynamic variables the call agent was given

        Returns:
            ExtractedProfile with every key present (values may be null)

        Raises:
            ExtractionError: reason ``schema_violation`` if the response did
                not match the schema, ``upstream_unavailable`` if the service
                failed or timed out
        """
        messages = build_extraction_prompt(transcript, context_vars or {})

        try:
            extracted = await asyncio.wait_for(
                self.openai_client.chat_completion_structured(
                    messages=messages,
                    response_model=ExtractedProfile,
                ),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            raise ExtractionError(
                f'Extraction timed out after {self.timeout_seconds}s',
                reason=ExtractionError.UPSTREAM_UNAVAILABLE,
            ) from e
        except (PydanticValidationError, OpenAIModelError) as e:
            raise ExtractionError(
                f'Extraction response violated the output schema: {e}',
                reason=ExtractionError.SCHEMA_VIOLATION,
            ) from e
        except OpenAIError as e:
            raise ExtractionError(
                f'Extraction service unavailable: {e.message}',
                reason=ExtractionError.UPSTREAM_UNAVAILABLE,
                context=dict(e.context),
            ) from e

        logger.info(
            'extraction.completed',
            fields=[k for k, v in extracted.model_dump().items() if v is not None],
        )
        return extracted
