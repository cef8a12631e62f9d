"""
Profile model and the closed set of tracked profile fields.

A Profile is keyed by a stable contact identifier (the caller's phone number
in production). Only the fields enumerated in ProfileField can be written by
the merge engine; identifiers, timestamps and the embedding columns are
protected and managed by the store.
"""

from collections.abc import Iterable, Mapping
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..errors import ProtectedFieldError, UnknownFieldError


class Gender(str, Enum):
    """Gender values accepted for a profile and for dating preferences."""

    MALE = 'male'
    FEMALE = 'female'
    OTHER = 'other'


class ProfileField(str, Enum):
    """Tracked profile fields. The only valid merge targets."""

    FIRST_NAME = 'first_name'
    GENDER = 'gender'
    YEAR_OF_BIRTH = 'year_of_birth'
    JOB_OR_EDUCATION = 'job_or_education'
    RELATIONSHIP_TYPE = 'relationship_type'
    DEALBREAKERS = 'dealbreakers'
    PREFERENCE_TAGS = 'preference_tags'
    DATING_PREFERENCES = 'dating_preferences'
    TIME_SINCE_SINGLE = 'time_since_single'


LIST_FIELDS = frozenset({ProfileField.DEALBREAKERS, ProfileField.PREFERENCE_TAGS})

# Columns owned by the store. Never merge targets.
PROTECTED_FIELDS = frozenset({
    'contact_id',
    'created_at',
    'updated_at',
    'embedding',
    'embedded_tags',
    'match_pending',
})


class DatingPreferences(BaseModel):
    """Structured partner preferences (age range and preferred gender)."""

    model_config = ConfigDict(extra='forbid', frozen=True)

    min_age: int | None = None
    max_age: int | None = None
    gender: Gender | None = None

    def is_empty(self) -> bool:
        return self.min_age is None and self.max_age is None and self.gender is None


def is_empty_value(value: Any) -> bool:
    """True for None, blank strings, empty lists and empty preference objects."""
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple)):
        return len(value) == 0
    if isinstance(value, DatingPreferences):
        return value.is_empty()
    return False


def resolve_field_name(name: str | ProfileField) -> ProfileField:
    """
    Resolve a field name to a ProfileField.

    Raises:
        ProtectedFieldError: name is an identifier/timestamp/embedding column
        UnknownFieldError: name is not a tracked profile field
    """
    if isinstance(name, ProfileField):
        return name
    if name in PROTECTED_FIELDS:
        raise ProtectedFieldError(
            f"Field '{name}' is protected and cannot be merged",
            context={'field': name},
        )
    try:
        return ProfileField(name)
    except ValueError:
        raise UnknownFieldError(
            f"Field '{name}' is not a tracked profile field",
            context={'field': name},
        ) from None


class ProfileFields(BaseModel):
    """Tracked profile attributes, all nullable."""

    first_name: str | None = None
    gender: Gender | None = None
    year_of_birth: int | None = None
    job_or_education: str | None = None
    relationship_type: str | None = None
    dealbreakers: list[str] | None = None
    preference_tags: list[str] | None = None
    dating_preferences: DatingPreferences | None = None
    time_since_single: str | None = None

    def get(self, field: ProfileField) -> Any:
        return getattr(self, field.value)


class ProfileUpdate(ProfileFields):
    """
    A partial set of tracked field values.

    Only fields explicitly provided (``model_fields_set``) take part in a
    merge; a field left out is never touched. Build one from an arbitrary
    mapping with ``from_fields`` so protected or unknown names fail fast.
    """

    model_config = ConfigDict(extra='forbid', frozen=True)

    @classmethod
    def from_fields(cls, data: Mapping[str, Any]) -> 'ProfileUpdate':
        values = {resolve_field_name(name).value: value for name, value in data.items()}
        return cls.model_validate(values)

    @property
    def provided(self) -> list[ProfileField]:
        """Provided fields in declaration order."""
        return [f for f in ProfileField if f.value in self.model_fields_set]

    def items(self) -> Iterable[tuple[ProfileField, Any]]:
        for field in self.provided:
            yield field, self.get(field)

    def is_empty(self) -> bool:
        return not self.model_fields_set


class Profile(ProfileFields):
    """Persisted profile of a contact."""

    contact_id: str = Field(..., min_length=1, description='Stable contact identifier')

    dealbreakers: list[str] = Field(default_factory=list)
    preference_tags: list[str] = Field(
        default_factory=list,
        description='Positive-trait labels ("green flags") that drive matching',
    )

    embedding: list[float] | None = Field(
        default=None,
        description='Unit-norm embedding of the preference tags, None until computed',
    )
    embedded_tags: list[str] | None = Field(
        default=None,
        description='Preference tags the current embedding was computed from',
    )
    match_pending: bool = Field(
        default=False,
        description='Set with a new embedding, cleared once matching for it has run',
    )

    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @field_validator('dealbreakers', 'preference_tags', mode='before')
    @classmethod
    def _none_list_to_empty(cls, value: Any) -> Any:
        return [] if value is None else value

    @property
    def has_embedding(self) -> bool:
        return self.embedding is not None

    @property
    def needs_embedding(self) -> bool:
        """True when the stored embedding does not reflect the current tags."""
        return (self.embedded_tags or []) != self.preference_tags

    def field_status(self) -> dict[str, dict[str, Any]]:
        """Every tracked field with its value and completion flag."""
        status = {}
        for field in ProfileField:
            value = self.get(field)
            if isinstance(value, BaseModel):
                value = value.model_dump(mode='json')
            elif isinstance(value, Enum):
                value = value.value
            status[field.value] = {
                'value': value,
                'is_completed': not is_empty_value(self.get(field)),
            }
        return status
