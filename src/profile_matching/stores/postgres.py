"""Postgres-backed store implementations.

Each operation is one statement or one transaction keyed by a single row:
- profiles: INSERT ... ON CONFLICT for creation, SELECT ... FOR UPDATE for merges,
  a tag-guarded UPDATE for embeddings that also raises match_pending
- profile_matches: INSERT ... ON CONFLICT DO NOTHING on the ordered pair
- processed_events: INSERT ... ON CONFLICT DO UPDATE ... WHERE expired, scoped by claim_token
"""

from __future__ import annotations

import json
from collections.abc import Callable
from typing import Any

import structlog
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection

from ..clients.postgres_client import (
    PostgresClient,
    _embedding_to_pgvector,
    _pgvector_to_embedding,
)
from ..errors import wrap_postgres_error
from ..models.match import ContactPair, MatchRecord
from ..models.profile import LIST_FIELDS, Profile, ProfileField, ProfileUpdate
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

logger = structlog.get_logger(__name__)

_PROFILE_COLUMNS = """
    contact_id, first_name, gender, year_of_birth, job_or_education,
    relationship_type, dealbreakers, preference_tags, dating_preferences,
    time_since_single, embedding::text AS embedding, embedded_tags,
    match_pending, created_at, updated_at
"""

_MATCH_COLUMNS = 'contact_low, contact_high, similarity, triggered_by, created_at'


def _row_to_profile(row: Any) -> Profile:
    data = dict(row._mapping)
    prefs = data.get('dating_preferences')
    if isinstance(prefs, str):
        data['dating_preferences'] = json.loads(prefs)
    data['embedding'] = _pgvector_to_embedding(data.get('embedding'))
    return Profile.model_validate(data)


def _row_to_match(row: Any) -> MatchRecord:
    data = row._mapping
    return MatchRecord(
        pair=ContactPair(low=data['contact_low'], high=data['contact_high']),
        similarity=float(data['similarity']),
        triggered_by=data['triggered_by'],
        created_at=data['created_at'],
    )


def _field_params(fields: ProfileUpdate) -> dict[str, Any]:
    """Bind parameters for the provided fields, keyed by column name."""
    params: dict[str, Any] = {}
    for field, value in fields.items():
        if field is ProfileField.DATING_PREFERENCES:
            value = json.dumps(value.model_dump(mode='json')) if value is not None else None
        elif field is ProfileField.GENDER:
            value = value.value if value is not None else None
        elif field in LIST_FIELDS:
            value = list(value or [])
        params[field.value] = value
    return params


def _placeholder(column: str) -> str:
    if column == ProfileField.DATING_PREFERENCES.value:
        return f'CAST(:{column} AS jsonb)'
    return f':{column}'


class PostgresProfileStore(ProfileStore):
    """Profiles in the ``profiles`` table, cosine search via pgvector."""

    def __init__(self, client: PostgresClient):
        self.client = client

    async def get(self, contact_id: str) -> Profile | None:
        sql = text(f'SELECT {_PROFILE_COLUMNS} FROM profiles WHERE contact_id = :contact_id')
        try:
            async with self.client.engine.connect() as conn:
                row = (await conn.execute(sql, {'contact_id': contact_id})).first()
        except SQLAlchemyError as e:
            raise wrap_postgres_error(e, context={'contact_id': contact_id}) from e
        return _row_to_profile(row) if row is not None else None

    async def upsert(self, contact_id: str, fields: ProfileUpdate | None = None) -> Profile:
        params = _field_params(fields) if fields is not None else {}
        columns = list(params)

        insert_cols = ', '.join(['contact_id', *columns])
        insert_vals = ', '.join([':contact_id', *(_placeholder(c) for c in columns)])
        if columns:
            assignments = ', '.join(f'{c} = EXCLUDED.{c}' for c in columns)
            on_conflict = f'DO UPDATE SET {assignments}, updated_at = now()'
        else:
            # No-op update so RETURNING yields the existing row
            on_conflict = 'DO UPDATE SET contact_id = EXCLUDED.contact_id'

        sql = text(f"""
            INSERT INTO profiles ({insert_cols}) VALUES ({insert_vals})
            ON CONFLICT (contact_id) {on_conflict}
            RETURNING {_PROFILE_COLUMNS}
        """)
        try:
            async with self.client.engine.begin() as conn:
                row = (await conn.execute(sql, {'contact_id': contact_id, **params})).one()
        except SQLAlchemyError as e:
            raise wrap_postgres_error(e, context={'contact_id': contact_id}) from e

        logger.debug('profile_store.upsert', contact_id=contact_id, fields=columns)
        return _row_to_profile(row)

    async def apply_update(
        self,
        contact_id: str,
        resolve: Callable[[Profile], ProfileUpdate],
    ) -> ProfileWrite:
        try:
            async with self.client.engine.begin() as conn:
                created = await self._ensure_row(conn, contact_id)
                locked = (
                    await conn.execute(
                        text(f"""
                            SELECT {_PROFILE_COLUMNS} FROM profiles
                            WHERE contact_id = :contact_id
                            FOR UPDATE
                        """),
                        {'contact_id': contact_id},
                    )
                ).one()
                before = _row_to_profile(locked)

                params = _field_params(resolve(before))
                if not params:
                    return ProfileWrite(before=before, after=before, created=created)

                assignments = ', '.join(f'{c} = {_placeholder(c)}' for c in params)
                row = (
                    await conn.execute(
                        text(f"""
                            UPDATE profiles SET {assignments}, updated_at = now()
                            WHERE contact_id = :contact_id
                            RETURNING {_PROFILE_COLUMNS}
                        """),
                        {'contact_id': contact_id, **params},
                    )
                ).one()
        except SQLAlchemyError as e:
            raise wrap_postgres_error(e, context={'contact_id': contact_id}) from e

        logger.debug('profile_store.apply_update', contact_id=contact_id, fields=list(params))
        return ProfileWrite(before=before, after=_row_to_profile(row), created=created)

    async def set_embedding(
        self,
        contact_id: str,
        embedding: list[float] | None,
        tags: list[str],
    ) -> EmbeddingWrite:
        # prev reads the row before the UPDATE in the same statement
        sql = text("""
            WITH prev AS (
                SELECT contact_id, embedding AS raw_embedding,
                       embedding::text AS embedding, preference_tags, match_pending
                FROM profiles
                WHERE contact_id = :contact_id
                FOR UPDATE
            ),
            updated AS (
                UPDATE profiles p
                SET embedding = CAST(:embedding AS vector),
                    embedded_tags = CAST(:tags AS text[]),
                    match_pending = CASE
                        WHEN CAST(:embedding AS vector) IS NULL THEN false
                        WHEN prev.raw_embedding IS DISTINCT FROM CAST(:embedding AS vector) THEN true
                        ELSE prev.match_pending
                    END,
                    updated_at = now()
                FROM prev
                WHERE p.contact_id = prev.contact_id
                  AND prev.preference_tags = CAST(:tags AS text[])
                RETURNING p.contact_id, p.embedding::text AS embedding, p.match_pending
            )
            SELECT prev.embedding AS previous,
                   prev.match_pending AS previous_pending,
                   updated.embedding AS current,
                   updated.match_pending AS current_pending,
                   (updated.contact_id IS NOT NULL) AS applied
            FROM prev LEFT JOIN updated ON true
        """)
        params = {
            'contact_id': contact_id,
            'embedding': _embedding_to_pgvector(embedding),
            'tags': list(tags),
        }
        try:
            async with self.client.engine.begin() as conn:
                row = (await conn.execute(sql, params)).first()
        except SQLAlchemyError as e:
            raise wrap_postgres_error(e, context={'contact_id': contact_id}) from e

        if row is None:
            return EmbeddingWrite(applied=False, previous=None, current=None)
        data = row._mapping
        previous = _pgvector_to_embedding(data['previous'])
        if not data['applied']:
            return EmbeddingWrite(
                applied=False,
                previous=previous,
                current=previous,
                match_pending=bool(data['previous_pending']),
            )
        return EmbeddingWrite(
            applied=True,
            previous=previous,
            current=_pgvector_to_embedding(data['current']),
            match_pending=bool(data['current_pending']),
        )

    async def clear_match_pending(self, contact_id: str, embedding: list[float]) -> bool:
        sql = text("""
            UPDATE profiles SET match_pending = false
            WHERE contact_id = :contact_id
              AND embedding = CAST(:embedding AS vector)
            RETURNING contact_id
        """)
        params = {'contact_id': contact_id, 'embedding': _embedding_to_pgvector(embedding)}
        try:
            async with self.client.engine.begin() as conn:
                row = (await conn.execute(sql, params)).first()
        except SQLAlchemyError as e:
            raise wrap_postgres_error(e, context={'contact_id': contact_id}) from e
        return row is not None

    async def search_similar(self, embedding: list[float], limit: int) -> list[SimilarProfile]:
        sql = text("""
            SELECT contact_id, 1 - (embedding <=> CAST(:query AS vector)) AS similarity
            FROM profiles
            WHERE embedding IS NOT NULL
            ORDER BY embedding <=> CAST(:query AS vector), contact_id
            LIMIT :limit
        """)
        try:
            async with self.client.engine.connect() as conn:
                rows = (
                    await conn.execute(
                        sql,
                        {'query': _embedding_to_pgvector(embedding), 'limit': limit},
                    )
                ).all()
        except SQLAlchemyError as e:
            raise wrap_postgres_error(e) from e
        return [
            SimilarProfile(contact_id=r._mapping['contact_id'], similarity=float(r._mapping['similarity']))
            for r in rows
        ]

    @staticmethod
    async def _ensure_row(conn: AsyncConnection, contact_id: str) -> bool:
        result = await conn.execute(
            text("""
                INSERT INTO profiles (contact_id) VALUES (:contact_id)
                ON CONFLICT (contact_id) DO NOTHING
                RETURNING contact_id
            """),
            {'contact_id': contact_id},
        )
        return result.first() is not None


class PostgresMatchStore(MatchStore):
    """Match records in ``profile_matches``, keyed by the ordered pair."""

    def __init__(self, client: PostgresClient):
        self.client = client

    async def get(self, pair: ContactPair) -> MatchRecord | None:
        sql = text(f"""
            SELECT {_MATCH_COLUMNS} FROM profile_matches
            WHERE contact_low = :low AND contact_high = :high
        """)
        try:
            async with self.client.engine.connect() as conn:
                row = (await conn.execute(sql, {'low': pair.low, 'high': pair.high})).first()
        except SQLAlchemyError as e:
            raise wrap_postgres_error(e, context={'pair': [pair.low, pair.high]}) from e
        return _row_to_match(row) if row is not None else None

    async def insert_if_absent(
        self,
        pair: ContactPair,
        similarity: float,
        triggered_by: str,
    ) -> InsertResult:
        insert = text(f"""
            INSERT INTO profile_matches (contact_low, contact_high, similarity, triggered_by)
            VALUES (:low, :high, :similarity, :triggered_by)
            ON CONFLICT (contact_low, contact_high) DO NOTHING
            RETURNING {_MATCH_COLUMNS}
        """)
        select = text(f"""
            SELECT {_MATCH_COLUMNS} FROM profile_matches
            WHERE contact_low = :low AND contact_high = :high
        """)
        params = {
            'low': pair.low,
            'high': pair.high,
            'similarity': similarity,
            'triggered_by': triggered_by,
        }
        try:
            async with self.client.engine.begin() as conn:
                row = (await conn.execute(insert, params)).first()
                if row is not None:
                    return InsertResult(inserted=True, record=_row_to_match(row))
                existing = (await conn.execute(select, params)).one()
        except SQLAlchemyError as e:
            raise wrap_postgres_error(e, context={'pair': [pair.low, pair.high]}) from e
        return InsertResult(inserted=False, record=_row_to_match(existing))

    async def list_for(self, contact_id: str) -> list[MatchRecord]:
        sql = text(f"""
            SELECT {_MATCH_COLUMNS} FROM profile_matches
            WHERE contact_low = :contact_id OR contact_high = :contact_id
            ORDER BY created_at
        """)
        try:
            async with self.client.engine.connect() as conn:
                rows = (await conn.execute(sql, {'contact_id': contact_id})).all()
        except SQLAlchemyError as e:
            raise wrap_postgres_error(e, context={'contact_id': contact_id}) from e
        return [_row_to_match(r) for r in rows]


class PostgresIdempotencyStore(IdempotencyStore):
    """Durable, shared idempotency keys in ``processed_events``."""

    def __init__(self, client: PostgresClient):
        self.client = client

    async def try_claim(self, key: str, lease_seconds: float) -> str | None:
        sql = text("""
            INSERT INTO processed_events (event_id, status, claim_token, expires_at)
            VALUES (:key, 'processing', :token, now() + make_interval(secs => :lease))
            ON CONFLICT (event_id) DO UPDATE SET
                status = 'processing',
                claim_token = EXCLUDED.claim_token,
                expires_at = EXCLUDED.expires_at,
                updated_at = now()
            WHERE processed_events.expires_at <= now()
            RETURNING claim_token
        """)
        params = {'key': key, 'token': str(uuid7()), 'lease': float(lease_seconds)}
        try:
            async with self.client.engine.begin() as conn:
                row = (await conn.execute(sql, params)).first()
        except SQLAlchemyError as e:
            raise wrap_postgres_error(e, context={'event_id': key}) from e
        return row._mapping['claim_token'] if row is not None else None

    async def mark_completed(self, key: str, token: str, retention_seconds: float) -> None:
        sql = text("""
            UPDATE processed_events
            SET status = 'completed',
                expires_at = now() + make_interval(secs => :retention),
                updated_at = now()
            WHERE event_id = :key AND claim_token = :token
        """)
        params = {'key': key, 'token': token, 'retention': float(retention_seconds)}
        try:
            async with self.client.engine.begin() as conn:
                await conn.execute(sql, params)
        except SQLAlchemyError as e:
            raise wrap_postgres_error(e, context={'event_id': key}) from e

    async def release(self, key: str, token: str) -> None:
        sql = text("""
            DELETE FROM processed_events
            WHERE event_id = :key AND claim_token = :token AND status = 'processing'
        """)
        try:
            async with self.client.engine.begin() as conn:
                await conn.execute(sql, {'key': key, 'token': token})
        except SQLAlchemyError as e:
            raise wrap_postgres_error(e, context={'event_id': key}) from e
