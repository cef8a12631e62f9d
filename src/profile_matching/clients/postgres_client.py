"""
Postgres client for the profile matching pipeline.

Owns the SQLAlchemy 2.0 async engine (asyncpg driver) shared by the profile,
match and idempotency stores, plus the schema used by those stores. Vectors
are stored with pgvector and exchanged as '[0.1,0.2,...]' literals, so no
pgvector Python package is needed.

Tables:
- profiles (one row per contact, pgvector embedding of the preference tags)
- profile_matches (PRIMARY KEY on the ordered contact pair)
- processed_events (idempotency keys with expiry)
"""

from __future__ import annotations

import json
from typing import Any
from urllib.parse import parse_qs, urlencode, urlparse, urlunparse

import structlog
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

logger = structlog.get_logger(__name__)


def _sanitize_url(url: str) -> str:
    """Remove URL query params that asyncpg does not understand.

    Hosted Postgres URLs often include ``channel_binding=require`` and
    ``sslmode=require`` which are libpq parameters. asyncpg rejects unknown
    connection params; SSL is passed via ``connect_args`` instead.
    """
    _STRIP_PARAMS = {'channel_binding', 'sslmode'}
    parsed = urlparse(url)
    if not parsed.query:
        return url
    params = parse_qs(parsed.query)
    filtered = {k: v for k, v in params.items() if k not in _STRIP_PARAMS}
    new_query = urlencode(filtered, doseq=True)
    return urlunparse(parsed._replace(query=new_query))


def _embedding_to_pgvector(embedding: list[float] | None) -> str | None:
    """Convert embedding list to pgvector literal string, e.g. '[0.1,0.2,...]'."""
    if embedding is None:
        return None
    return '[' + ','.join(str(f) for f in embedding) + ']'


def _pgvector_to_embedding(value: str | list[float] | None) -> list[float] | None:
    """Parse a pgvector text literal back into a list of floats."""
    if value is None:
        return None
    if isinstance(value, list):
        return [float(v) for v in value]
    return [float(v) for v in json.loads(value)]


def schema_statements(embedding_dimensions: int) -> list[str]:
    """DDL for the tables the stores expect. Safe to run repeatedly."""
    return [
        'CREATE EXTENSION IF NOT EXISTS vector',
        f"""
        CREATE TABLE IF NOT EXISTS profiles (
            contact_id          TEXT PRIMARY KEY,
            first_name          TEXT,
            gender              TEXT,
            year_of_birth       INTEGER,
            job_or_education    TEXT,
            relationship_type   TEXT,
            dealbreakers        TEXT[] NOT NULL DEFAULT '{{}}',
            preference_tags     TEXT[] NOT NULL DEFAULT '{{}}',
            dating_preferences  JSONB,
            time_since_single   TEXT,
            embedding           vector({embedding_dimensions}),
            embedded_tags       TEXT[],
            match_pending       BOOLEAN NOT NULL DEFAULT false,
            created_at          TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at          TIMESTAMPTZ NOT NULL DEFAULT now()
        )
        """,
        """
        CREATE INDEX IF NOT EXISTS profiles_embedding_hnsw
            ON profiles USING hnsw (embedding vector_cosine_ops)
        """,
        """
        CREATE TABLE IF NOT EXISTS profile_matches (
            contact_low     TEXT NOT NULL REFERENCES profiles (contact_id),
            contact_high    TEXT NOT NULL REFERENCES profiles (contact_id),
            similarity      DOUBLE PRECISION NOT NULL,
            triggered_by    TEXT NOT NULL,
            created_at      TIMESTAMPTZ NOT NULL DEFAULT now(),
            PRIMARY KEY (contact_low, contact_high),
            CHECK (contact_low < contact_high)
        )
        """,
        """
        CREATE TABLE IF NOT EXISTS processed_events (
            event_id    TEXT PRIMARY KEY,
            status      TEXT NOT NULL,
            claim_token TEXT,
            expires_at  TIMESTAMPTZ NOT NULL,
            updated_at  TIMESTAMPTZ NOT NULL DEFAULT now()
        )
        """,
        """
        CREATE INDEX IF NOT EXISTS processed_events_expires_at
            ON processed_events (expires_at)
        """,
    ]


class PostgresClient:
    """
    Async Postgres client shared by the Postgres-backed stores.

    Uses SQLAlchemy 2.0 async engine with asyncpg for raw SQL execution.
    """

    def __init__(
        self,
        database_url: str | None = None,
        require_ssl: bool = False,
        pool_size: int = 5,
    ):
        """
        Initialize with a Postgres connection URL.

        Args:
            database_url: Postgres connection URL. If the URL starts with
                          'postgres://' or 'postgresql://', it will be
                          converted to use asyncpg.
            require_ssl: Pass ssl='require' to asyncpg
            pool_size: Connection pool size
        """
        self._engine: AsyncEngine | None = None
        self._database_url = database_url
        self._require_ssl = require_ssl
        self._pool_size = pool_size

    async def connect(self, database_url: str | None = None) -> None:
        """
        Create the async engine. No-op if already connected.

        Args:
            database_url: Override the URL from __init__.
        """
        if self._engine is not None:
            return

        url = database_url or self._database_url
        if not url:
            raise ValueError('database_url is required')

        url = _sanitize_url(url)

        # Normalise driver prefix for asyncpg
        if url.startswith('postgres://'):
            url = url.replace('postgres://', 'postgresql+asyncpg://', 1)
        elif url.startswith('postgresql://') and '+asyncpg' not in url:
            url = url.replace('postgresql://', 'postgresql+asyncpg://', 1)

        connect_args: dict[str, Any] = {}
        if self._require_ssl:
            connect_args['ssl'] = 'require'

        self._engine = create_async_engine(
            url,
            pool_size=self._pool_size,
            max_overflow=self._pool_size,
            pool_pre_ping=True,
            pool_timeout=30,
            connect_args=connect_args,
        )
        logger.info('postgres_client.connected')

    async def close(self) -> None:
        """Dispose of the engine and connection pool."""
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            logger.info('postgres_client.closed')

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            raise RuntimeError('PostgresClient not connected, call connect() first')
        return self._engine

    async def verify_connectivity(self) -> bool:
        """Return True if we can execute a simple query."""
        try:
            async with self.engine.begin() as conn:
                await conn.execute(text('SELECT 1'))
            return True
        except Exception:
            logger.exception('postgres_client.connectivity_check_failed')
            return False

    async def setup_schema(self, embedding_dimensions: int) -> None:
        """Create the extension, tables and indexes if they do not exist."""
        async with self.engine.begin() as conn:
            for statement in schema_statements(embedding_dimensions):
                await conn.execute(text(statement))
        logger.info('postgres_client.schema_ready', embedding_dimensions=embedding_dimensions)
