"""Configuration for the profile matching FastAPI service."""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Service settings loaded from environment variables."""

    # OpenAI
    OPENAI_API_KEY: str
    OPENAI_CHAT_MODEL: str = "gpt-4o-mini"
    OPENAI_EMBEDDING_MODEL: str = "text-embedding-3-small"
    OPENAI_EMBEDDING_DIMENSIONS: int = 1536

    # Postgres (pgvector)
    DATABASE_URL: str
    DATABASE_REQUIRE_SSL: bool = False
    DATABASE_POOL_SIZE: int = 5
    SETUP_SCHEMA: bool = False

    # Idempotency
    IDEMPOTENCY_BACKEND: str = "postgres"
    IDEMPOTENCY_LEASE_SECONDS: int = 900
    IDEMPOTENCY_RETENTION_SECONDS: int = 30 * 24 * 3600

    # Matching
    MATCH_SIMILARITY_THRESHOLD: float = 0.7
    MATCH_TOP_K: int = 2

    # External call timeouts
    EXTRACTION_TIMEOUT_SECONDS: float = 60.0
    EMBEDDING_TIMEOUT_SECONDS: float = 20.0

    # Pipeline
    MAX_CONCURRENT_EVENTS: int = 16
    LOG_JSON: bool = True
    LOG_LEVEL: str = "INFO"


@lru_cache
def get_settings() -> Settings:
    """Cached settings singleton."""
    return Settings()
