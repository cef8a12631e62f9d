"""
Profile merge service.

Two responsibilities:
- Completeness gate: decide whether a profile still needs extraction at all
- Field merge: combine a candidate ProfileUpdate with the stored profile
  under a field-level policy, persisted as one atomic store write
"""

from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from ..logging import get_logger
from ..models.profile import (
    Profile,
    ProfileField,
    ProfileUpdate,
    is_empty_value,
    resolve_field_name,
)
from ..stores.base import ProfileStore

logger = get_logger(__name__)


class MergePolicy(str, Enum):
    """How candidate values combine with stored ones."""

    # Stored non-empty values win; candidates only fill gaps
    FILL_MISSING = 'fill_missing'
    # Every provided candidate value replaces the stored one
    OVERWRITE = 'overwrite'


@dataclass
class MergeResult:
    """Result of applying a candidate to a stored profile."""

    before: Profile
    after: Profile
    changed_fields: list[ProfileField] = field(default_factory=list)
    created: bool = False

    @property
    def changed(self) -> bool:
        return bool(self.changed_fields)

    @property
    def tags_changed(self) -> bool:
        return self.before.preference_tags != self.after.preference_tags

    def to_dict(self) -> dict[str, Any]:
        return {
            'changed_fields': [f.value for f in self.changed_fields],
            'created': self.created,
            'tags_changed': self.tags_changed,
        }


class ProfileMerger:
    """
    Merges candidate fields into stored profiles.

    Only the closed ProfileField set can be targeted. The merge itself is
    pure; ``apply`` runs it inside the store's atomic read-modify-write.
    """

    def __init__(
        self,
        profile_store: ProfileStore,
        default_policy: MergePolicy = MergePolicy.FILL_MISSING,
    ):
        """
        Initialize the merger.

        Args:
            profile_store: Store holding the profiles
            default_policy: Policy used when ``apply`` is not given one
        """
        self.profile_store = profile_store
        self.default_policy = default_policy

    @staticmethod
    def missing_fields(profile: Profile) -> list[ProfileField]:
        """Tracked fields that are still empty, in declaration order."""
        return [f for f in ProfileField if is_empty_value(profile.get(f))]

    @classmethod
    def is_complete(cls, profile: Profile) -> bool:
        """True when every tracked field holds a non-empty value."""
        return not cls.missing_fields(profile)

    @staticmethod
    def validate_targets(names: Iterable[str | ProfileField]) -> list[ProfileField]:
        """
        Resolve merge target names.

        Raises:
            ProtectedFieldError: a name is an identifier/timestamp/embedding column
            UnknownFieldError: a name is not a tracked profile field
        """
        return [resolve_field_name(name) for name in names]

    @staticmethod
    def merge(
        stored: Profile,
        candidate: ProfileUpdate,
        policy: MergePolicy = MergePolicy.FILL_MISSING,
    ) -> ProfileUpdate:
        """
        Compute the fields to write.

        Only fields the candidate provides are considered, and only those
        whose value would actually change are returned.
        """
        writes: dict[str, Any] = {}
        for target, value in candidate.items():
            current = stored.get(target)
            if policy is MergePolicy.FILL_MISSING:
                if is_empty_value(value) or not is_empty_value(current):
                    continue
            if value == current:
                continue
            writes[target.value] = value
        return ProfileUpdate.model_validate(writes)

    async def apply(
        self,
        contact_id: str,
        candidate: ProfileUpdate,
        policy: MergePolicy | None = None,
    ) -> MergeResult:
        """
        Merge ``candidate`` into the stored profile and persist atomically.

        The profile is created empty first if it does not exist.
        """
        policy = policy or self.default_policy
        changed: list[ProfileField] = []

        def resolve(stored: Profile) -> ProfileUpdate:
            writes = self.merge(stored, candidate, policy)
            changed[:] = writes.provided
            return writes

        write = await self.profile_store.apply_update(contact_id, resolve)

        logger.info(
            'merge.applied',
            policy=policy.value,
            changed_fields=[f.value for f in changed],
            created=write.created,
        )
        return MergeResult(
            before=write.before,
            after=write.after,
            changed_fields=list(changed),
            created=write.created,
        )
