"""
Main pipeline orchestrator for call profile extraction and matching.

Provides end-to-end processing of a call_ended event:
1. Admit the event once (idempotency claim)
2. Ensure the contact's profile exists
3. Completeness gate: skip extraction when every field is already known
4. Extract candidate fields from the transcript
5. Merge them into the stored profile (single atomic write)
6. Re-embed the preference tags when they changed
7. Match against other profiles when the embedding changed
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from ..clients.openai_client import OpenAIClient
from ..clients.postgres_client import PostgresClient
from ..config import config
from ..errors import DuplicateEventError, EmbeddingError, NotFoundError, ValidationError
from ..logging import PipelineTimer, get_logger, logging_context
from ..models.event import CallEvent
from ..models.profile import Profile
from ..stores import (
    IdempotencyStore,
    MatchStore,
    PostgresMatchStore,
    PostgresProfileStore,
    ProfileStore,
    create_idempotency_store,
)
from ..stores.base import EmbeddingWrite
from ..utils import new_trace_id
from .deduplicator import EventDeduplicator
from .embedder import TagEmbedder
from .extractor import ProfileExtractor
from .matcher import MatchOutcome, MatchResult, ProfileMatcher
from .merger import MergePolicy, MergeResult, ProfileMerger

logger = get_logger(__name__)


class EventStatus:
    """Outcomes reported for a processed webhook event."""

    PROCESSED = 'processed'
    ALREADY_PROCESSED = 'already_processed'
    PROFILE_COMPLETE = 'profile_complete'
    SKIPPED_EMPTY_TRANSCRIPT = 'skipped_empty_transcript'


class EmbeddingStatus:
    """What happened to the stored embedding during an event."""

    UPDATED = 'updated'
    UNCHANGED = 'unchanged'
    CLEARED = 'cleared'
    FAILED = 'failed'
    STALE = 'stale'


@dataclass
class PipelineResult:
    """Result of processing one call event through the pipeline."""

    # Identifiers
    event_id: str
    contact_id: str
    status: str = EventStatus.PROCESSED

    # Profile results
    profile_created: bool = False
    extracted: bool = False
    changed_fields: list[str] = field(default_factory=list)
    embedding_status: str | None = None

    # Match results
    match: MatchResult | None = None

    # Timing
    started_at: datetime = field(default_factory=datetime.now)
    completed_at: datetime | None = None
    processing_time_ms: int | None = None
    stage_timings: dict[str, float] = field(default_factory=dict)

    # Non-fatal problems
    warnings: list[str] = field(default_factory=list)

    @property
    def match_created(self) -> bool:
        return self.match is not None and self.match.created

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            'event_id': self.event_id,
            'contact_id': self.contact_id,
            'status': self.status,
            'profile_created': self.profile_created,
            'extracted': self.extracted,
            'changed_fields': self.changed_fields,
            'embedding_status': self.embedding_status,
            'match': self.match.to_dict() if self.match else None,
            'processing_time_ms': self.processing_time_ms,
            'stage_timings': self.stage_timings,
            'warnings': self.warnings,
        }


class ProfilePipeline:
    """
    End-to-end pipeline for turning call transcripts into profiles and matches.

    Orchestrates:
    - EventDeduplicator: admit each call event once
    - ProfileMerger: completeness gate and atomic field merge
    - ProfileExtractor: structured extraction from the transcript
    - TagEmbedder: preference tag embeddings
    - ProfileMatcher: symmetric, deduplicated match creation

    Usage:
        pipeline = await ProfilePipeline.from_env()
        result = await pipeline.process_event(event)
    """

    def __init__(
        self,
        openai_client: OpenAIClient,
        profile_store: ProfileStore,
        match_store: MatchStore,
        idempotency_store: IdempotencyStore,
        postgres_client: PostgresClient | None = None,
        merge_policy: MergePolicy = MergePolicy.FILL_MISSING,
        top_k: int | None = None,
        similarity_threshold: float | None = None,
        lease_seconds: float | None = None,
        retention_seconds: float | None = None,
        extraction_timeout: float | None = None,
        embedding_timeout: float | None = None,
        max_concurrent_events: int | None = None,
    ):
        """
        Initialize the pipeline with its clients and stores.

        Args:
            openai_client: Client for extraction and embeddings
            profile_store: Profile persistence and similarity search
            match_store: Match record persistence
            idempotency_store: Backend for event claims
            postgres_client: Owned Postgres client, closed with the pipeline
            merge_policy: Policy for merging extracted fields
            top_k: Nearest profiles considered per match
            similarity_threshold: Minimum similarity for a match
            lease_seconds: Lifetime of an in-flight event claim
            retention_seconds: How long a completed event stays rejected
            extraction_timeout: Upper bound on extraction, in seconds
            embedding_timeout: Upper bound on embedding, in seconds
            max_concurrent_events: Events processed at once by this instance
        """
        self.openai = openai_client
        self.postgres = postgres_client
        self.profile_store = profile_store
        self.match_store = match_store
        self.merge_policy = merge_policy

        # Initialize pipeline components
        self.deduplicator = EventDeduplicator(
            idempotency_store,
            lease_seconds=lease_seconds,
            retention_seconds=retention_seconds,
        )
        self.extractor = ProfileExtractor(openai_client, timeout_seconds=extraction_timeout)
        self.merger = ProfileMerger(profile_store, default_policy=merge_policy)
        self.embedder = TagEmbedder(openai_client, timeout_seconds=embedding_timeout)
        self.matcher = ProfileMatcher(
            profile_store,
            match_store,
            top_k=top_k,
            threshold=similarity_threshold,
        )

        self._semaphore = asyncio.Semaphore(max_concurrent_events or config.MAX_CONCURRENT_EVENTS)

    @classmethod
    async def from_env(cls) -> ProfilePipeline:
        """
        Create pipeline from environment variables.

        Expects:
            OPENAI_API_KEY: OpenAI API key
            DATABASE_URL: Postgres (pgvector) connection URL
            IDEMPOTENCY_BACKEND: 'postgres' (default) or 'memory'

        Returns:
            Configured and connected ProfilePipeline
        """
        missing = config.validate()
        if missing:
            raise ValidationError(
                f"Missing required configuration: {', '.join(missing)}",
                context={'missing': missing},
            )

        openai = OpenAIClient(
            api_key=config.OPENAI_API_KEY,
            chat_model=config.OPENAI_CHAT_MODEL,
            embedding_model=config.OPENAI_EMBEDDING_MODEL,
            embedding_dimensions=config.OPENAI_EMBEDDING_DIMENSIONS,
        )
        postgres = PostgresClient(config.DATABASE_URL)
        await postgres.connect()

        return cls(
            openai_client=openai,
            profile_store=PostgresProfileStore(postgres),
            match_store=PostgresMatchStore(postgres),
            idempotency_store=create_idempotency_store(config.IDEMPOTENCY_BACKEND, postgres),
            postgres_client=postgres,
            top_k=config.MATCH_TOP_K,
            similarity_threshold=config.MATCH_SIMILARITY_THRESHOLD,
            lease_seconds=config.IDEMPOTENCY_LEASE_SECONDS,
            retention_seconds=config.IDEMPOTENCY_RETENTION_SECONDS,
            extraction_timeout=config.EXTRACTION_TIMEOUT_SECONDS,
            embedding_timeout=config.EMBEDDING_TIMEOUT_SECONDS,
            max_concurrent_events=config.MAX_CONCURRENT_EVENTS,
        )

    async def close(self) -> None:
        """Close all client connections."""
        await self.openai.close()
        if self.postgres is not None:
            await self.postgres.close()

    async def process_event(self, event: CallEvent) -> PipelineResult:
        """
        Process a call_ended event through the full pipeline.

        Args:
            event: Validated call event

        Returns:
            PipelineResult describing what changed

        Raises:
            ValidationError: the event cannot be processed as given
            UpstreamError: extraction failed or timed out (event released)
            PostgresError: a store operation failed (event released)
        """
        result = PipelineResult(event_id=event.call_id, contact_id=event.contact_id)

        with logging_context(
            trace_id=new_trace_id(),
            event_id=event.call_id,
            contact_id=event.contact_id,
        ):
            if not event.transcript.strip():
                logger.info('pipeline_skipped_empty_transcript')
                result.status = EventStatus.SKIPPED_EMPTY_TRANSCRIPT
                return result

            async with self._semaphore:
                timer = PipelineTimer()
                logger.info('pipeline_started', transcript_length=len(event.transcript))

                try:
                    async with self.deduplicator.claim(event.call_id):
                        await self._run(event, result, timer)
                except DuplicateEventError:
                    result.status = EventStatus.ALREADY_PROCESSED
                except Exception as e:
                    logger.error(
                        'pipeline_failed',
                        error=str(e),
                        error_type=type(e).__name__,
                        **timer.summary(),
                    )
                    raise

                result.completed_at = datetime.now()
                result.processing_time_ms = int(timer.total_ms)
                result.stage_timings = timer.stages.copy()

                logger.info(
                    'pipeline_complete',
                    status=result.status,
                    changed_fields=result.changed_fields,
                    embedding_status=result.embedding_status,
                    match_outcome=result.match.outcome.value if result.match else None,
                    **timer.summary(),
                )
                return result

    async def _run(self, event: CallEvent, result: PipelineResult, timer: PipelineTimer) -> None:
        # Step 1: Ensure the profile exists
        with timer.stage('load_profile'):
            profile, result.profile_created = await self.get_or_create_profile(event.contact_id)

        # Step 2: Completeness gate
        if self.merger.is_complete(profile):
            logger.info('pipeline_profile_complete')
            result.status = EventStatus.PROFILE_COMPLETE
            await self._refresh_and_match(profile, result, timer)
            return

        # Step 3: Extract candidate fields
        with timer.stage('extraction'):
            extracted = await self.extractor.extract(event.transcript, event.context_vars)
        result.extracted = True

        # Step 4: Merge into the stored profile
        with timer.stage('merge'):
            merged: MergeResult = await self.merger.apply(
                event.contact_id,
                extracted.to_update(),
                self.merge_policy,
            )
        result.changed_fields = [f.value for f in merged.changed_fields]

        # Steps 5-6: Embedding and matching
        await self._refresh_and_match(merged.after, result, timer)

    async def _refresh_and_match(
        self,
        profile: Profile,
        result: PipelineResult,
        timer: PipelineTimer,
    ) -> None:
        embedding, pending = profile.embedding, profile.match_pending
        if profile.needs_embedding:
            with timer.stage('embedding'):
                result.embedding_status, write = await self._refresh_embedding(
                    profile, result.warnings
                )
            if write is not None:
                embedding, pending = write.current, write.match_pending
        else:
            result.embedding_status = EmbeddingStatus.UNCHANGED

        # A failed match leaves match_pending set, so a redelivery retries it
        if pending and embedding is not None:
            with timer.stage('matching'):
                result.match = await self.matcher.match(profile.contact_id, embedding)
            await self.profile_store.clear_match_pending(profile.contact_id, embedding)

    async def _refresh_embedding(
        self,
        profile: Profile,
        warnings: list[str],
    ) -> tuple[str, EmbeddingWrite | None]:
        """
        Bring the stored embedding in line with the profile's current tags.

        Empty tags clear the embedding. An embedding failure leaves the
        previous state in place and is reported as a warning.
        """
        tags = list(profile.preference_tags)

        if not tags:
            write = await self.profile_store.set_embedding(profile.contact_id, None, tags)
            return EmbeddingStatus.CLEARED if write.applied else EmbeddingStatus.STALE, write

        try:
            embedding = await self.embedder.embed(tags)
        except EmbeddingError as e:
            logger.warning('embedding_failed', error=str(e))
            warnings.append(f'Embedding failed: {e.message}')
            return EmbeddingStatus.FAILED, None

        write = await self.profile_store.set_embedding(profile.contact_id, embedding, tags)
        if not write.applied:
            logger.info('embedding_stale', tag_count=len(tags))
            return EmbeddingStatus.STALE, write
        if write.changed:
            return EmbeddingStatus.UPDATED, write
        return EmbeddingStatus.UNCHANGED, write

    async def rematch(self, contact_id: str) -> MatchResult:
        """
        Rerun matching for a stored profile.

        Refreshes a stale or missing embedding first.

        Raises:
            NotFoundError: the profile does not exist
        """
        with logging_context(trace_id=new_trace_id(), contact_id=contact_id):
            profile = await self.get_profile(contact_id)
            embedding = profile.embedding

            if profile.needs_embedding:
                _, write = await self._refresh_embedding(profile, [])
                if write is not None and write.applied:
                    embedding = write.current

            if embedding is None:
                logger.info('rematch.no_embedding')
                return MatchResult(contact_id=contact_id, outcome=MatchOutcome.NO_EMBEDDING)

            match = await self.matcher.match(contact_id, embedding)
            await self.profile_store.clear_match_pending(contact_id, embedding)
            return match

    async def get_profile(self, contact_id: str) -> Profile:
        """
        Look up a profile.

        Raises:
            NotFoundError: the profile does not exist
        """
        profile = await self.profile_store.get(contact_id)
        if profile is None:
            raise NotFoundError('Profile not found', context={'contact_id': contact_id})
        return profile

    async def get_or_create_profile(self, contact_id: str) -> tuple[Profile, bool]:
        """Return the profile, creating an empty one for an unknown contact."""
        profile = await self.profile_store.get(contact_id)
        if profile is not None:
            return profile, False
        profile = await self.profile_store.get_or_create(contact_id)
        logger.info('profile_created', contact_id=contact_id)
        return profile, True
