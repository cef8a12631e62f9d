"""
Preference tag embedding.

Concatenates a profile's preference tags into one text unit and turns it
into a unit-norm vector of fixed dimension.
"""

import asyncio

import numpy as np
import openai

from ..clients.openai_client import OpenAIClient
from ..errors import EmbeddingError, OpenAIError, ValidationError
from ..logging import get_logger

logger = get_logger(__name__)


def tags_to_text(tags: list[str]) -> str:
    """The text unit embedded for a tag list. Order is preserved."""
    return ' '.join(tags)


class TagEmbedder:
    """Generates normalized embeddings for preference tag lists."""

    DEFAULT_TIMEOUT_SECONDS = 20.0

    def __init__(
        self,
        openai_client: OpenAIClient,
        dimensions: int | None = None,
        timeout_seconds: float | None = None,
    ):
        """
        Initialize the embedder.

        Args:
            openai_client: Configured OpenAI client
            dimensions: Expected vector length (defaults to the client's)
            timeout_seconds: Upper bound on the embedding call, retries included
        """
        self.openai_client = openai_client
        self.dimensions = dimensions or openai_client.embedding_dimensions
        self.timeout_seconds = timeout_seconds or self.DEFAULT_TIMEOUT_SECONDS

    async def embed(self, tags: list[str]) -> list[float]:
        """
        Embed a tag list.

        Raises:
            ValidationError: ``tags`` is empty
            EmbeddingError: the service failed, timed out, or returned an
                unusable vector
        """
        if not tags:
            raise ValidationError('Cannot embed an empty tag list')

        text = tags_to_text(tags)
        try:
            raw = await asyncio.wait_for(
                self.openai_client.create_embedding(text),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            raise EmbeddingError(
                f'Embedding timed out after {self.timeout_seconds}s',
                context={'tag_count': len(tags)},
            ) from e
        except (openai.APIError, OpenAIError) as e:
            raise EmbeddingError(
                f'Embedding service failed: {e}',
                context={'tag_count': len(tags), 'error_type': type(e).__name__},
            ) from e

        vector = np.asarray(raw, dtype=np.float64)
        if vector.shape != (self.dimensions,):
            raise EmbeddingError(
                'Embedding has unexpected dimension',
                context={'expected': self.dimensions, 'actual': int(vector.size)},
            )
        if not np.all(np.isfinite(vector)):
            raise EmbeddingError('Embedding contains non-finite values')

        norm = float(np.linalg.norm(vector))
        if norm == 0.0:
            raise EmbeddingError('Embedding is the zero vector')

        logger.debug('embedding.created', tag_count=len(tags), dimensions=self.dimensions)
        return (vector / norm).tolist()
