"""
Pytest configuration and shared fixtures.

Key fixtures:
- mock_openai: OpenAIClient stand-in with a deterministic bag-of-words embedding
- profile_store / match_store / idempotency_store: in-memory backends
- pipeline: ProfilePipeline wired to the above

No test needs network access or a database.
"""

import sys
import zlib
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

# Add src to path for imports
src_path = Path(__file__).parent.parent / 'src'
sys.path.insert(0, str(src_path))

# Load environment variables
from dotenv import load_dotenv

env_file = Path(__file__).parent.parent / '.env'
if env_file.exists():
    load_dotenv(env_file)

from profile_matching.models.extraction import ExtractedProfile
from profile_matching.pipeline.pipeline import ProfilePipeline
from profile_matching.stores.memory import (
    InMemoryIdempotencyStore,
    InMemoryMatchStore,
    InMemoryProfileStore,
)

EMBEDDING_DIMENSIONS = 8


def bag_of_words_embedding(text: str) -> list[float]:
    """Deterministic, order-independent fake embedding (not normalized)."""
    vector = [0.0] * EMBEDDING_DIMENSIONS
    for word in text.split():
        vector[zlib.crc32(word.encode()) % EMBEDDING_DIMENSIONS] += 1.0
    return vector


def make_extracted(**fields) -> ExtractedProfile:
    """ExtractedProfile with every key present, null unless given."""
    data = {name: None for name in ExtractedProfile.model_fields}
    data.update(fields)
    return ExtractedProfile.model_validate(data)


COMPLETE_FIELDS = {
    'first_name': 'Ana',
    'gender': 'female',
    'year_of_birth': 1994,
    'job_or_education': 'engineer',
    'relationship_type': 'long-term',
    'dealbreakers': ['smoking'],
    'preference_tags': ['honest', 'funny'],
    'dating_preferences': {'min_age': 28, 'max_age': 38, 'gender': 'male'},
    'time_since_single': '6 months',
}


@pytest.fixture
def mock_openai() -> MagicMock:
    """OpenAIClient stand-in. Extraction returns an all-null profile by default."""
    client = MagicMock()
    client.embedding_dimensions = EMBEDDING_DIMENSIONS
    client.chat_completion_structured = AsyncMock(return_value=make_extracted())
    client.create_embedding = AsyncMock(side_effect=bag_of_words_embedding)
    client.close = AsyncMock()
    return client


@pytest.fixture
def profile_store() -> InMemoryProfileStore:
    return InMemoryProfileStore()


@pytest.fixture
def match_store() -> InMemoryMatchStore:
    return InMemoryMatchStore()


@pytest.fixture
def idempotency_store() -> InMemoryIdempotencyStore:
    return InMemoryIdempotencyStore()


@pytest.fixture
def pipeline(mock_openai, profile_store, match_store, idempotency_store) -> ProfilePipeline:
    return ProfilePipeline(
        openai_client=mock_openai,
        profile_store=profile_store,
        match_store=match_store,
        idempotency_store=idempotency_store,
        max_concurrent_events=4,
    )


@pytest.fixture
def sample_transcript() -> str:
    """Sample onboarding call transcript."""
    return """
Agent: Hi there! What should I call you?
User: I'm Ana. I work as an engineer.
Agent: Nice! What do you look for in a partner?
User: Someone honest and funny. Smoking is a dealbreaker for me.
""".strip()
