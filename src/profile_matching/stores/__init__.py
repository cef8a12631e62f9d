"""
Storage backends for profiles, matches and idempotency keys.
"""

from __future__ import annotations

from ..clients.postgres_client import PostgresClient
from .base import (
    EmbeddingWrite,
    IdempotencyStore,
    InsertResult,
    MatchStore,
    ProfileStore,
    ProfileWrite,
    SimilarProfile,
)
from .memory import InMemoryIdempotencyStore, InMemoryMatchStore, InMemoryProfileStore
from .postgres import PostgresIdempotencyStore, PostgresMatchStore, PostgresProfileStore


def create_idempotency_store(
    backend: str,
    postgres_client: PostgresClient | None = None,
) -> IdempotencyStore:
    """Instantiate the configured idempotency backend.

    Args:
        backend: 'postgres' (durable, shared across instances) or 'memory'.
        postgres_client: Required for the postgres backend.
    """
    if backend == 'memory':
        return InMemoryIdempotencyStore()

    if backend == 'postgres':
        if postgres_client is None:
            raise ValueError('postgres_client must be provided when IDEMPOTENCY_BACKEND=postgres')
        return PostgresIdempotencyStore(postgres_client)

    raise ValueError(f'Unsupported idempotency backend: {backend!r}')


__all__ = [
    'EmbeddingWrite',
    'IdempotencyStore',
    'InsertResult',
    'MatchStore',
    'ProfileStore',
    'ProfileWrite',
    'SimilarProfile',
    'InMemoryIdempotencyStore',
    'InMemoryMatchStore',
    'InMemoryProfileStore',
    'PostgresIdempotencyStore',
    'PostgresMatchStore',
    'PostgresProfileStore',
    'create_idempotency_store',
]
