"""
Configuration management for the profile matching pipeline.

Loads settings from environment variables with sensible defaults.
"""

import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env file from project root
_project_root = Path(__file__).parent.parent.parent
_env_file = _project_root / '.env'
if _env_file.exists():
    load_dotenv(_env_file)


class Config:
    """Configuration settings loaded from environment."""

    # OpenAI
    OPENAI_API_KEY: str = os.getenv('OPENAI_API_KEY', '')
    OPENAI_CHAT_MODEL: str = os.getenv('OPENAI_CHAT_MODEL', 'gpt-4o-mini')
    OPENAI_EMBEDDING_MODEL: str = os.getenv('OPENAI_EMBEDDING_MODEL', 'text-embedding-3-small')
    OPENAI_EMBEDDING_DIMENSIONS: int = int(os.getenv('OPENAI_EMBEDDING_DIMENSIONS', '1536'))

    # Postgres (pgvector)
    DATABASE_URL: str = os.getenv('DATABASE_URL', '')

    # Idempotency
    IDEMPOTENCY_BACKEND: str = os.getenv('IDEMPOTENCY_BACKEND', 'postgres')
    IDEMPOTENCY_LEASE_SECONDS: int = int(os.getenv('IDEMPOTENCY_LEASE_SECONDS', '900'))
    IDEMPOTENCY_RETENTION_SECONDS: int = int(
        os.getenv('IDEMPOTENCY_RETENTION_SECONDS', str(30 * 24 * 3600))
    )

    # Matching
    MATCH_SIMILARITY_THRESHOLD: float = float(os.getenv('MATCH_SIMILARITY_THRESHOLD', '0.7'))
    MATCH_TOP_K: int = int(os.getenv('MATCH_TOP_K', '2'))

    # External call timeouts
    EXTRACTION_TIMEOUT_SECONDS: float = float(os.getenv('EXTRACTION_TIMEOUT_SECONDS', '60'))
    EMBEDDING_TIMEOUT_SECONDS: float = float(os.getenv('EMBEDDING_TIMEOUT_SECONDS', '20'))

    # Pipeline
    MAX_CONCURRENT_EVENTS: int = int(os.getenv('MAX_CONCURRENT_EVENTS', '16'))
    LOG_LEVEL: str = os.getenv('LOG_LEVEL', 'INFO')

    @classmethod
    def validate(cls) -> list[str]:
        """
        Validate that required configuration is present.

        Returns:
            List of missing required configuration keys
        """
        missing = []
        if not cls.OPENAI_API_KEY:
            missing.append('OPENAI_API_KEY')
        if not cls.DATABASE_URL:
            missing.append('DATABASE_URL')
        return missing


# Singleton config instance
config = Config()
