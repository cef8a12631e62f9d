"""
Event admission control.

Admits each call event at most once. A claim is taken before any side
effect; it is marked completed after the event is fully processed and
released if processing fails or is cancelled, so the platform's redelivery
can retry it.
"""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from enum import Enum

from ..errors import DuplicateEventError, ValidationError
from ..logging import get_logger
from ..stores.base import IdempotencyStore

logger = get_logger(__name__)


class AdmitDecision(str, Enum):
    """Result of offering an event id to the deduplicator."""

    ACCEPTED = 'accepted'
    REJECTED_DUPLICATE = 'rejected_duplicate'


@dataclass(frozen=True)
class Admission:
    """Decision for one offer, with the claim token when accepted."""

    decision: AdmitDecision
    token: str | None = None

    @property
    def accepted(self) -> bool:
        return self.decision is AdmitDecision.ACCEPTED


class EventDeduplicator:
    """
    Guards event processing with claims in an IdempotencyStore.

    Usage:
        async with deduplicator.claim(event.call_id):
            ...  # completed on success, released on any exception
    """

    DEFAULT_LEASE_SECONDS = 15 * 60
    DEFAULT_RETENTION_SECONDS = 30 * 24 * 3600

    def __init__(
        self,
        store: IdempotencyStore,
        lease_seconds: float | None = None,
        retention_seconds: float | None = None,
    ):
        """
        Initialize the deduplicator.

        Args:
            store: Backend holding the claims
            lease_seconds: Lifetime of an in-flight claim; a crashed worker's
                           claim frees after this long
            retention_seconds: How long a completed event stays rejected
        """
        self.store = store
        self.lease_seconds = lease_seconds or self.DEFAULT_LEASE_SECONDS
        self.retention_seconds = retention_seconds or self.DEFAULT_RETENTION_SECONDS

    async def admit(self, event_id: str) -> Admission:
        """Claim ``event_id`` if it is not completed or in flight."""
        if not event_id:
            raise ValidationError('Event id is required for deduplication')

        token = await self.store.try_claim(event_id, self.lease_seconds)
        if token is not None:
            logger.debug('dedup.accepted', event_id=event_id)
            return Admission(AdmitDecision.ACCEPTED, token)

        logger.info('dedup.rejected', event_id=event_id)
        return Admission(AdmitDecision.REJECTED_DUPLICATE)

    async def complete(self, event_id: str, token: str) -> None:
        """Keep ``event_id`` rejected for the retention period."""
        await self.store.mark_completed(event_id, token, self.retention_seconds)
        logger.debug('dedup.completed', event_id=event_id)

    async def release(self, event_id: str, token: str) -> None:
        """Free ``event_id`` so a redelivery is admitted, unless another claim has taken over."""
        await self.store.release(event_id, token)
        logger.info('dedup.released', event_id=event_id)

    @asynccontextmanager
    async def claim(self, event_id: str) -> AsyncIterator[None]:
        """
        Admit ``event_id`` for the duration of the block.

        Raises:
            DuplicateEventError: the event is completed or in flight elsewhere
        """
        admission = await self.admit(event_id)
        if not admission.accepted:
            raise DuplicateEventError(
                'Event already processed or in flight',
                context={'event_id': event_id},
            )

        try:
            yield
        except BaseException:
            # Shielded so a cancelled task still frees its claim
            await asyncio.shield(self.release(event_id, admission.token))
            raise

        await self.complete(event_id, admission.token)
