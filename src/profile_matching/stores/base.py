"""Abstract store interfaces.

Every mutating operation is a single atomic primitive scoped to one key:
an event id, a contact id, or an unordered contact pair. No operation
takes a lock wider than its key.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass

from ..models.match import ContactPair, MatchRecord
from ..models.profile import Profile, ProfileUpdate


@dataclass(frozen=True)
class ProfileWrite:
    """Profile state on both sides of an atomic update."""

    before: Profile
    after: Profile
    created: bool = False


@dataclass(frozen=True)
class EmbeddingWrite:
    """Outcome of a compare-and-set embedding write.

    ``applied`` is False when the profile's tags changed after the embedding
    was requested; the stale vector is discarded. ``current`` and
    ``match_pending`` describe the stored state after the call.
    """

    applied: bool
    previous: list[float] | None
    current: list[float] | None
    match_pending: bool = False

    @property
    def changed(self) -> bool:
        return self.applied and self.previous != self.current


@dataclass(frozen=True)
class SimilarProfile:
    """A similarity search hit."""

    contact_id: str
    similarity: float


@dataclass(frozen=True)
class InsertResult:
    """Outcome of an insert-if-absent on the match store."""

    inserted: bool
    record: MatchRecord


class ProfileStore(ABC):
    """Persistence for profiles and their embeddings."""

    @abstractmethod
    async def get(self, contact_id: str) -> Profile | None:
        """Return the profile or None."""

    @abstractmethod
    async def upsert(self, contact_id: str, fields: ProfileUpdate | None = None) -> Profile:
        """Create the profile if absent and overwrite the provided fields."""

    @abstractmethod
    async def apply_update(
        self,
        contact_id: str,
        resolve: Callable[[Profile], ProfileUpdate],
    ) -> ProfileWrite:
        """Atomically read, resolve and write one profile.

        ``resolve`` receives the stored profile (created empty if absent)
        while the row is held and returns the fields to write.
        """

    @abstractmethod
    async def set_embedding(
        self,
        contact_id: str,
        embedding: list[float] | None,
        tags: list[str],
    ) -> EmbeddingWrite:
        """Store ``embedding`` only if the profile's tags still equal ``tags``."""

    @abstractmethod
    async def search_similar(self, embedding: list[float], limit: int) -> list[SimilarProfile]:
        """Top ``limit`` embedded profiles by cosine similarity, best first."""

    @abstractmethod
    async def clear_match_pending(self, contact_id: str, embedding: list[float]) -> bool:
        """Clear the pending-match flag if ``embedding`` is still the stored one."""

    async def get_or_create(self, contact_id: str) -> Profile:
        return await self.upsert(contact_id)


class MatchStore(ABC):
    """Persistence for symmetric match records."""

    @abstractmethod
    async def get(self, pair: ContactPair) -> MatchRecord | None:
        """Return the record for ``pair`` or None."""

    @abstractmethod
    async def insert_if_absent(
        self,
        pair: ContactPair,
        similarity: float,
        triggered_by: str,
    ) -> InsertResult:
        """Insert the record unless one exists for the pair; never duplicates."""

    @abstractmethod
    async def list_for(self, contact_id: str) -> list[MatchRecord]:
        """All records that include ``contact_id``."""


class IdempotencyStore(ABC):
    """Keyed claims with expiry, used to admit each event once."""

    @abstractmethod
    async def try_claim(self, key: str, lease_seconds: float) -> str | None:
        """Atomically claim ``key`` if it is absent or expired.

        Returns the claim token, or None when the key is held.
        """

    @abstractmethod
    async def mark_completed(self, key: str, token: str, retention_seconds: float) -> None:
        """Keep ``key`` claimed for ``retention_seconds`` if ``token`` still owns it."""

    @abstractmethod
    async def release(self, key: str, token: str) -> None:
        """Drop the in-flight claim held by ``token`` so the key can be claimed again."""
