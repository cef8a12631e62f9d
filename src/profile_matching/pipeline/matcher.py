"""
Profile matching service.

Given a freshly written embedding, finds the most similar other profile and
records at most one symmetric match for the pair:

1. Top-K cosine search against the profile store
2. Self-exclusion
3. Similarity threshold (at or above)
4. Best candidate by similarity, ties to the smaller contact id
5. Existence check, then atomic insert-if-absent on the unordered pair
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from ..errors import ConflictOnInsert
from ..logging import get_logger
from ..models.match import ContactPair, MatchRecord
from ..stores.base import MatchStore, ProfileStore

logger = get_logger(__name__)


class MatchOutcome(str, Enum):
    """How a matching attempt ended."""

    CREATED = 'created'
    ALREADY_MATCHED = 'already_matched'
    NO_CANDIDATES = 'no_candidates'
    BELOW_THRESHOLD = 'below_threshold'
    NO_EMBEDDING = 'no_embedding'


@dataclass
class MatchCandidate:
    """A candidate from similarity search."""

    contact_id: str
    similarity: float


@dataclass
class MatchResult:
    """Result of one matching attempt for a contact."""

    contact_id: str
    outcome: MatchOutcome
    candidates: list[MatchCandidate] = field(default_factory=list)
    selected: MatchCandidate | None = None
    record: MatchRecord | None = None

    @property
    def created(self) -> bool:
        return self.outcome is MatchOutcome.CREATED

    def to_dict(self) -> dict[str, Any]:
        return {
            'outcome': self.outcome.value,
            'matched_with': self.selected.contact_id if self.selected else None,
            'similarity': round(self.selected.similarity, 4) if self.selected else None,
            'record': self.record.to_dict() if self.record else None,
        }


class ProfileMatcher:
    """
    Matches a profile against all other embedded profiles.

    Thresholds:
    - top_k: how many nearest profiles the store returns (self included)
    - threshold: minimum cosine similarity for a match
    """

    DEFAULT_TOP_K = 2
    DEFAULT_THRESHOLD = 0.7

    def __init__(
        self,
        profile_store: ProfileStore,
        match_store: MatchStore,
        top_k: int | None = None,
        threshold: float | None = None,
    ):
        """
        Initialize the matcher.

        Args:
            profile_store: Store used for similarity search
            match_store: Store holding match records
            top_k: Override the default number of nearest profiles
            threshold: Override the default similarity threshold
        """
        self.profile_store = profile_store
        self.match_store = match_store
        self.top_k = top_k or self.DEFAULT_TOP_K
        self.threshold = self.DEFAULT_THRESHOLD if threshold is None else threshold

    async def match(self, contact_id: str, embedding: list[float]) -> MatchResult:
        """
        Find and record the best match for ``contact_id``.

        Args:
            contact_id: Contact whose embedding was just written
            embedding: That contact's current embedding

        Returns:
            MatchResult describing the outcome
        """
        hits = await self.profile_store.search_similar(embedding, limit=self.top_k)
        candidates = [
            # Clamped: float error can push identical vectors past 1.0
            MatchCandidate(contact_id=h.contact_id, similarity=min(1.0, max(-1.0, h.similarity)))
            for h in hits
            if h.contact_id != contact_id
        ]

        if not candidates:
            logger.info('match.no_candidates')
            return MatchResult(contact_id=contact_id, outcome=MatchOutcome.NO_CANDIDATES)

        best = self._select_best(candidates)
        if best is None:
            logger.info(
                'match.below_threshold',
                best_similarity=round(max(c.similarity for c in candidates), 4),
                threshold=self.threshold,
            )
            return MatchResult(
                contact_id=contact_id,
                outcome=MatchOutcome.BELOW_THRESHOLD,
                candidates=candidates,
            )

        pair = ContactPair.of(contact_id, best.contact_id)
        result = MatchResult(
            contact_id=contact_id,
            outcome=MatchOutcome.CREATED,
            candidates=candidates,
            selected=best,
        )

        existing = await self.match_store.get(pair)
        if existing is not None:
            logger.info('match.already_matched', matched_with=best.contact_id)
            result.outcome = MatchOutcome.ALREADY_MATCHED
            result.record = existing
            return result

        try:
            result.record = await self._insert(pair, best.similarity, triggered_by=contact_id)
        except ConflictOnInsert as e:
            # Other side of the pair inserted between the check and the insert
            logger.info('match.conflict_on_insert', matched_with=best.contact_id)
            result.outcome = MatchOutcome.ALREADY_MATCHED
            result.record = e.context.get('record')
            return result

        logger.info(
            'match.created',
            matched_with=best.contact_id,
            similarity=round(best.similarity, 4),
        )
        return result

    def _select_best(self, candidates: list[MatchCandidate]) -> MatchCandidate | None:
        """Highest similarity at or above threshold; ties to the smaller id."""
        eligible = [c for c in candidates if c.similarity >= self.threshold]
        if not eligible:
            return None
        return min(eligible, key=lambda c: (-c.similarity, c.contact_id))

    async def _insert(self, pair: ContactPair, similarity: float, triggered_by: str) -> MatchRecord:
        """
        Insert the match record for ``pair``.

        Raises:
            ConflictOnInsert: a record for the pair already exists
        """
        outcome = await self.match_store.insert_if_absent(pair, similarity, triggered_by)
        if not outcome.inserted:
            raise ConflictOnInsert(
                'Match pair already exists',
                context={'pair': [pair.low, pair.high], 'record': outcome.record},
            )
        return outcome.record
