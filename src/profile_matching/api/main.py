"""FastAPI application for the profile matching service."""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI

from profile_matching.clients.openai_client import OpenAIClient
from profile_matching.clients.postgres_client import PostgresClient
from profile_matching.logging import configure_logging
from profile_matching.pipeline.pipeline import ProfilePipeline
from profile_matching.stores import (
    PostgresMatchStore,
    PostgresProfileStore,
    create_idempotency_store,
)

from .config import get_settings
from .routes.health import router as health_router
from .routes.profiles import router as profiles_router
from .routes.webhook import router as webhook_router

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize persistent clients at startup, clean up at shutdown."""
    settings = get_settings()
    configure_logging(json_output=settings.LOG_JSON, log_level=settings.LOG_LEVEL)

    logger.info("lifespan.startup", idempotency_backend=settings.IDEMPOTENCY_BACKEND)

    # Postgres (pgvector): profiles, matches, idempotency keys
    postgres = PostgresClient(
        settings.DATABASE_URL,
        require_ssl=settings.DATABASE_REQUIRE_SSL,
        pool_size=settings.DATABASE_POOL_SIZE,
    )
    await postgres.connect()
    if settings.SETUP_SCHEMA:
        await postgres.setup_schema(settings.OPENAI_EMBEDDING_DIMENSIONS)

    # OpenAI: extraction and embeddings
    openai = OpenAIClient(
        api_key=settings.OPENAI_API_KEY,
        chat_model=settings.OPENAI_CHAT_MODEL,
        embedding_model=settings.OPENAI_EMBEDDING_MODEL,
        embedding_dimensions=settings.OPENAI_EMBEDDING_DIMENSIONS,
    )

    pipeline = ProfilePipeline(
        openai_client=openai,
        profile_store=PostgresProfileStore(postgres),
        match_store=PostgresMatchStore(postgres),
        idempotency_store=create_idempotency_store(settings.IDEMPOTENCY_BACKEND, postgres),
        postgres_client=postgres,
        top_k=settings.MATCH_TOP_K,
        similarity_threshold=settings.MATCH_SIMILARITY_THRESHOLD,
        lease_seconds=settings.IDEMPOTENCY_LEASE_SECONDS,
        retention_seconds=settings.IDEMPOTENCY_RETENTION_SECONDS,
        extraction_timeout=settings.EXTRACTION_TIMEOUT_SECONDS,
        embedding_timeout=settings.EMBEDDING_TIMEOUT_SECONDS,
        max_concurrent_events=settings.MAX_CONCURRENT_EVENTS,
    )

    # Store on app.state for request handlers
    app.state.postgres = postgres
    app.state.openai = openai
    app.state.pipeline = pipeline

    logger.info("lifespan.ready")
    yield

    # Shutdown
    logger.info("lifespan.shutdown")
    await pipeline.close()


app = FastAPI(
    title="profile-matching",
    description="Call webhook consumer: extracts dating profiles from transcripts and matches contacts",
    lifespan=lifespan,
)

app.include_router(health_router)
app.include_router(webhook_router)
app.include_router(profiles_router)
