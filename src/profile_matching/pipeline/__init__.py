"""
Pipeline components for event admission, profile extraction, merging, embedding and matching.
"""

from .deduplicator import Admission, AdmitDecision, EventDeduplicator
from .embedder import TagEmbedder, tags_to_text
from .extractor import ProfileExtractor
from .matcher import MatchCandidate, MatchOutcome, MatchResult, ProfileMatcher
from .merger import MergePolicy, MergeResult, ProfileMerger
from .pipeline import EmbeddingStatus, EventStatus, PipelineResult, ProfilePipeline

__all__ = [
    # Main Pipeline
    'ProfilePipeline',
    'PipelineResult',
    'EventStatus',
    'EmbeddingStatus',
    # Deduplication
    'Admission',
    'AdmitDecision',
    'EventDeduplicator',
    # Extraction
    'ProfileExtractor',
    # Merging
    'MergePolicy',
    'MergeResult',
    'ProfileMerger',
    # Embedding
    'TagEmbedder',
    'tags_to_text',
    # Matching
    'MatchCandidate',
    'MatchOutcome',
    'MatchResult',
    'ProfileMatcher',
]
