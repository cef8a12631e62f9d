"""
LLM structured output model for profile extraction.

Used as the Pydantic response_format target for the OpenAI structured output
call. Every key is required but nullable; extra keys are rejected. The model
is converted to a ProfileUpdate before merge logic sees it.
"""

from pydantic import BaseModel, ConfigDict, Field

from .profile import DatingPreferences, Gender, ProfileUpdate


class ExtractedDatingPreferences(BaseModel):
    """Dating preferences as stated in the call."""

    model_config = ConfigDict(extra='forbid')

    min_age: int | None = Field(..., description='Minimum age preference for dating')
    max_age: int | None = Field(..., description='Maximum age preference for dating')
    gender: Gender | None = Field(..., description='Preferred gender for dating')


class ExtractedProfile(BaseModel):
    """Candidate profile fields extracted from a transcript. Not yet authoritative."""

    model_config = ConfigDict(extra='forbid')

    first_name: str | None = Field(..., description="The user's first name.")
    gender: Gender | None = Field(..., description="The user's gender.")
    year_of_birth: int | None = Field(..., description='The year the user was born.')
    job_or_education: str | None = Field(
        ..., description="The user's job or education status."
    )
    relationship_type: str | None = Field(
        ...,
        description='The type of relationship the user is seeking '
        '(casual, long-term, still figuring it out).',
    )
    dealbreakers: list[str] | None = Field(
        ..., description='A list of dealbreakers the user has.'
    )
    preference_tags: list[str] | None = Field(
        ...,
        description='A list of green flags: positive traits the user looks for in a partner.',
    )
    dating_preferences: ExtractedDatingPreferences | None = Field(
        ..., description="The user's dating preferences."
    )
    time_since_single: str | None = Field(
        ..., description='Time elapsed since the user was last in a relationship.'
    )

    def to_update(self) -> ProfileUpdate:
        """Convert to an internal ProfileUpdate carrying every extracted key."""
        data = self.model_dump(exclude={'dating_preferences', 'dealbreakers', 'preference_tags'})
        data['dealbreakers'] = _clean_list(self.dealbreakers)
        data['preference_tags'] = _clean_list(self.preference_tags)
        prefs = self.dating_preferences
        data['dating_preferences'] = (
            DatingPreferences(**prefs.model_dump()) if prefs is not None else None
        )
        return ProfileUpdate.from_fields(data)


def _clean_list(values: list[str] | None) -> list[str] | None:
    """Strip entries, drop blanks and duplicates while keeping order."""
    if values is None:
        return None
    seen: dict[str, None] = {}
    for value in values:
        item = value.strip()
        if item:
            seen.setdefault(item, None)
    return list(seen)
