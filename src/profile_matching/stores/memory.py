"""In-process store implementations.

Suitable for single-instance deployments and tests. Each store serializes
work per key with its own asyncio.Lock; unrelated keys never contend. A
key's lock lives only while some task holds or waits for it.
"""

from __future__ import annotations

import asyncio
import time
from collections import Counter
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timezone

import numpy as np

from ..models.match import ContactPair, MatchRecord
from ..models.profile import Profile, ProfileUpdate
from ..utils import uuid7
from .base import (
    EmbeddingWrite,
    IdempotencyStore,
    InsertResult,
    MatchStore,
    ProfileStore,
    ProfileWrite,
    SimilarProfile,
)


class _KeyedLocks:
    """One asyncio.Lock per key, dropped once no task holds or awaits it."""

    def __init__(self) -> None:
        self._locks: dict[object, asyncio.Lock] = {}
        self._users: Counter[object] = Counter()

    @asynccontextmanager
    async def __call__(self, key: object) -> AsyncIterator[None]:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._users[key] += 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if not self._users[key]:
                del self._users[key]
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)


def _apply_fields(profile: Profile, fields: ProfileUpdate) -> Profile:
    if fields.is_empty():
        return profile
    changes = {field.value: value for field, value in fields.items()}
    changes['updated_at'] = datetime.now(timezone.utc)
    return Profile.model_validate({**profile.model_dump(), **changes})


class InMemoryProfileStore(ProfileStore):
    """Profiles held in a dict, cosine search with numpy."""

    def __init__(self) -> None:
        self._profiles: dict[str, Profile] = {}
        self._locks = _KeyedLocks()

    async def get(self, contact_id: str) -> Profile | None:
        return self._profiles.get(contact_id)

    async def upsert(self, contact_id: str, fields: ProfileUpdate | None = None) -> Profile:
        async with self._locks(contact_id):
            profile = self._profiles.get(contact_id) or Profile(contact_id=contact_id)
            if fields is not None:
                profile = _apply_fields(profile, fields)
            self._profiles[contact_id] = profile
            return profile

    async def apply_update(
        self,
        contact_id: str,
        resolve: Callable[[Profile], ProfileUpdate],
    ) -> ProfileWrite:
        async with self._locks(contact_id):
            before = self._profiles.get(contact_id)
            created = before is None
            if before is None:
                before = Profile(contact_id=contact_id)
            after = _apply_fields(before, resolve(before))
            self._profiles[contact_id] = after
            return ProfileWrite(before=before, after=after, created=created)

    async def set_embedding(
        self,
        contact_id: str,
        embedding: list[float] | None,
        tags: list[str],
    ) -> EmbeddingWrite:
        async with self._locks(contact_id):
            profile = self._profiles.get(contact_id)
            if profile is None:
                return EmbeddingWrite(applied=False, previous=None, current=None)
            if profile.preference_tags != tags:
                return EmbeddingWrite(
                    applied=False,
                    previous=profile.embedding,
                    current=profile.embedding,
                    match_pending=profile.match_pending,
                )

            current = list(embedding) if embedding is not None else None
            if current is None:
                pending = False
            else:
                pending = profile.match_pending or current != profile.embedding
            self._profiles[contact_id] = profile.model_copy(
                update={
                    'embedding': current,
                    'embedded_tags': list(tags),
                    'match_pending': pending,
                    'updated_at': datetime.now(timezone.utc),
                }
            )
            return EmbeddingWrite(
                applied=True,
                previous=profile.embedding,
                current=current,
                match_pending=pending,
            )

    async def clear_match_pending(self, contact_id: str, embedding: list[float]) -> bool:
        async with self._locks(contact_id):
            profile = self._profiles.get(contact_id)
            if profile is None or profile.embedding != list(embedding):
                return False
            self._profiles[contact_id] = profile.model_copy(update={'match_pending': False})
            return True

    async def search_similar(self, embedding: list[float], limit: int) -> list[SimilarProfile]:
        embedded = [p for p in self._profiles.values() if p.embedding is not None]
        if not embedded or limit <= 0:
            return []

        query = np.asarray(embedding, dtype=float)
        matrix = np.asarray([p.embedding for p in embedded], dtype=float)
        norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query)
        scores = np.divide(
            matrix @ query,
            norms,
            out=np.zeros(len(embedded)),
            where=norms > 0,
        )

        hits = [
            SimilarProfile(contact_id=p.contact_id, similarity=float(s))
            for p, s in zip(embedded, scores)
        ]
        hits.sort(key=lambda h: (-h.similarity, h.contact_id))
        return hits[:limit]


class InMemoryMatchStore(MatchStore):
    """Match records keyed by ContactPair."""

    def __init__(self) -> None:
        self._records: dict[ContactPair, MatchRecord] = {}
        self._locks = _KeyedLocks()

    async def get(self, pair: ContactPair) -> MatchRecord | None:
        return self._records.get(pair)

    async def insert_if_absent(
        self,
        pair: ContactPair,
        similarity: float,
        triggered_by: str,
    ) -> InsertResult:
        async with self._locks(pair):
            existing = self._records.get(pair)
            if existing is not None:
                return InsertResult(inserted=False, record=existing)
            record = MatchRecord(pair=pair, similarity=similarity, triggered_by=triggered_by)
            self._records[pair] = record
            return InsertResult(inserted=True, record=record)

    async def list_for(self, contact_id: str) -> list[MatchRecord]:
        return [r for pair, r in self._records.items() if contact_id in pair]


@dataclass
class _Claim:
    token: str
    expires_at: float
    completed: bool = False


class InMemoryIdempotencyStore(IdempotencyStore):
    """Claims held in a dict with monotonic-clock expiry. Lost on restart."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._claims: dict[str, _Claim] = {}
        self._locks = _KeyedLocks()
        self._clock = clock

    async def try_claim(self, key: str, lease_seconds: float) -> str | None:
        async with self._locks(key):
            now = self._clock()
            claim = self._claims.get(key)
            if claim is not None and claim.expires_at > now:
                return None
            token = str(uuid7())
            self._claims[key] = _Claim(token=token, expires_at=now + lease_seconds)
            self._purge_expired(now)
            return token

    async def mark_completed(self, key: str, token: str, retention_seconds: float) -> None:
        async with self._locks(key):
            claim = self._claims.get(key)
            if claim is not None and claim.token == token:
                claim.expires_at = self._clock() + retention_seconds
                claim.completed = True

    async def release(self, key: str, token: str) -> None:
        async with self._locks(key):
            claim = self._claims.get(key)
            if claim is not None and claim.token == token and not claim.completed:
                del self._claims[key]

    def _purge_expired(self, now: float) -> None:
        expired = [k for k, claim in self._claims.items() if claim.expires_at <= now]
        for k in expired:
            del self._claims[k]
