"""
OpenAI client wrapper for the profile matching pipeline.

Handles:
- Chat completions with structured output (Pydantic model parsing)
- Embeddings generation with retry on transient failures
"""

import os
from typing import TypeVar

import openai
from openai import AsyncOpenAI
from pydantic import BaseModel
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ..errors import OpenAIModelError, wrap_openai_error

# Type variable for structured output parsing
T = TypeVar('T', bound=BaseModel)

# Failures worth retrying for idempotent embedding requests
_TRANSIENT_ERRORS = (
    openai.APIConnectionError,
    openai.APITimeoutError,
    openai.RateLimitError,
    openai.InternalServerError,
)


class OpenAIClient:
    """
    Async OpenAI client with structured output and embedding support.

    Configuration via environment variables:
    - OPENAI_API_KEY: Required API key
    - OPENAI_CHAT_MODEL: Chat model (default: gpt-4o-mini)
    - OPENAI_EMBEDDING_MODEL: Embedding model (default: text-embedding-3-small)
    - OPENAI_EMBEDDING_DIMENSIONS: Embedding dimensions (default: 1536)

    The SDK's own retries are disabled: extraction is never retried here
    (a failed event is redelivered instead), embeddings retry via tenacity.
    """

    def __init__(
        self,
        api_key: str | None = None,
        chat_model: str | None = None,
        embedding_model: str | None = None,
        embedding_dimensions: int | None = None,
        request_timeout: float | None = None,
    ):
        """
        Initialize the OpenAI client.

        Args:
            api_key: OpenAI API key (defaults to OPENAI_API_KEY env var)
            chat_model: Model for chat completions (defaults to OPENAI_CHAT_MODEL or gpt-4o-mini)
            embedding_model: Model for embeddings (defaults to OPENAI_EMBEDDING_MODEL or text-embedding-3-small)
            embedding_dimensions: Embedding vector dimensions (defaults to OPENAI_EMBEDDING_DIMENSIONS or 1536)
            request_timeout: Per-request HTTP timeout in seconds (SDK default if None)
        """
        self.api_key = api_key or os.getenv('OPENAI_API_KEY')
        if not self.api_key:
            raise ValueError('OPENAI_API_KEY environment variable is required')

        self.chat_model = chat_model or os.getenv('OPENAI_CHAT_MODEL', 'gpt-4o-mini')
        self.embedding_model = embedding_model or os.getenv(
            'OPENAI_EMBEDDING_MODEL', 'text-embedding-3-small'
        )
        self.embedding_dimensions = embedding_dimensions or int(
            os.getenv('OPENAI_EMBEDDING_DIMENSIONS', '1536')
        )

        client_kwargs: dict = {'api_key': self.api_key, 'max_retries': 0}
        if request_timeout is not None:
            client_kwargs['timeout'] = request_timeout
        self._client = AsyncOpenAI(**client_kwargs)

    async def chat_completion_structured(
        self,
        messages: list[dict[str, str]],
        response_model: type[T],
        model: str | None = None,
        temperature: float = 0.0,
    ) -> T:
        """
        Get a chat completion with structured output (Pydantic model).

        Uses OpenAI's native structured output via response_format, which
        constrains the model to the strict JSON schema of ``response_model``.

        Args:
            messages: List of message dicts with 'role' and 'content'
            response_model: Pydantic model class for the response
            model: Override the default chat model
            temperature: Sampling temperature

        Returns:
            Parsed Pydantic model instance

        Raises:
            pydantic.ValidationError: response did not match ``response_model``
            OpenAIModelError: model refused, was cut off, or returned nothing
            OpenAIError: any other API failure
        """
        try:
            response = await self._client.chat.completions.parse(
                model=model or self.chat_model,
                messages=messages,  # type: ignore
                response_format=response_model,
                temperature=temperature,
            )
        except (openai.LengthFinishReasonError, openai.ContentFilterFinishReasonError) as e:
            raise OpenAIModelError(
                f'OpenAI response was not a complete structured object: {e}',
                context={'error_type': type(e).__name__},
            ) from e
        except openai.APIError as e:
            raise wrap_openai_error(e, context={'model': model or self.chat_model}) from e

        message = response.choices[0].message
        if message.parsed is None:
            raise OpenAIModelError(
                'Failed to parse structured response',
                context={'refusal': getattr(message, 'refusal', None)},
            )
        return message.parsed

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception_type(_TRANSIENT_ERRORS),
        reraise=True,
    )
    async def create_embedding(self, text: str) -> list[float]:
        """
        Create an embedding for a single text.

        Args:
            text: Text to embed

        Returns:
            Embedding vector as list of floats
        """
        # Clean the text - remove newlines, extra whitespace
        cleaned_text = ' '.join(text.split())

        response = await self._client.embeddings.create(
            model=self.embedding_model,
            input=cleaned_text,
            dimensions=self.embedding_dimensions,
        )
        return response.data[0].embedding

    async def close(self):
        """Close the client connection."""
        await self._client.close()
