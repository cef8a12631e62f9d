"""
Match records between two profiles.

A match is symmetric: ``ContactPair.of(a, b) == ContactPair.of(b, a)``. The
ordered (low, high) form is the storage key, so at most one record can exist
per pair no matter which side triggered it.
"""

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field, model_validator

from ..errors import ValidationError


class ContactPair(BaseModel):
    """Unordered pair of distinct contact identifiers, stored low/high."""

    model_config = ConfigDict(frozen=True)

    low: str = Field(..., min_length=1)
    high: str = Field(..., min_length=1)

    @model_validator(mode='after')
    def _check_order(self) -> 'ContactPair':
        if not self.low < self.high:
            raise ValueError('ContactPair requires low < high; use ContactPair.of()')
        return self

    @classmethod
    def of(cls, a: str, b: str) -> 'ContactPair':
        if a == b:
            raise ValidationError(
                'A contact cannot be matched with itself',
                context={'contact_id': a},
            )
        low, high = sorted((a, b))
        return cls(low=low, high=high)

    def other(self, contact_id: str) -> str:
        """The member of the pair that is not ``contact_id``."""
        if contact_id == self.low:
            return self.high
        if contact_id == self.high:
            return self.low
        raise ValueError(f'{contact_id!r} is not part of this pair')

    def __contains__(self, contact_id: object) -> bool:
        return contact_id in (self.low, self.high)


class MatchRecord(BaseModel):
    """A persisted match. Immutable once created."""

    model_config = ConfigDict(frozen=True)

    pair: ContactPair
    similarity: float = Field(..., ge=-1.0, le=1.0)
    triggered_by: str = Field(..., description='Contact whose embedding update created the match')
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, str | float]:
        return {
            'contact_a': self.pair.low,
            'contact_b': self.pair.high,
            'similarity': round(self.similarity, 4),
            'triggered_by': self.triggered_by,
            'created_at': self.created_at.isoformat(),
        }
