"""
Profile Matching Pipeline

Ingests call_ended webhook events, extracts profile fields from transcripts
with OpenAI structured output, merges them into stored profiles, and matches
contacts by the similarity of their preference tag embeddings (pgvector).
"""

__version__ = '0.1.0'

# Re-export key classes for convenience
from .pipeline import (
    ProfilePipeline,
    PipelineResult,
    EventDeduplicator,
    ProfileExtractor,
    ProfileMerger,
    ProfileMatcher,
    TagEmbedder,
    MatchResult,
    MergeResult,
)
from .logging import (
    configure_logging,
    get_logger,
    logging_context,
    PipelineTimer,
)
from .errors import (
    ProfileMatchingError,
    PipelineError,
    ValidationError,
    NotFoundError,
    DuplicateEventError,
    UpstreamError,
    ExtractionError,
    EmbeddingError,
    OpenAIError,
    PostgresError,
)

__all__ = [
    # Version
    '__version__',
    # Main Pipeline
    'ProfilePipeline',
    'PipelineResult',
    # Components
    'EventDeduplicator',
    'ProfileExtractor',
    'ProfileMerger',
    'ProfileMatcher',
    'TagEmbedder',
    'MatchResult',
    'MergeResult',
    # Logging
    'configure_logging',
    'get_logger',
    'logging_context',
    'PipelineTimer',
    # Errors
    'ProfileMatchingError',
    'PipelineError',
    'ValidationError',
    'NotFoundError',
    'DuplicateEventError',
    'UpstreamError',
    'ExtractionError',
    'EmbeddingError',
    'OpenAIError',
    'PostgresError',
]
