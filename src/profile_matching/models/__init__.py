"""
Data models for the profile matching pipeline.
"""

from .event import CallEvent, EventKind, WebhookPayload, parse_webhook
from .extraction import ExtractedDatingPreferences, ExtractedProfile
from .match import ContactPair, MatchRecord
from .profile import (
    LIST_FIELDS,
    PROTECTED_FIELDS,
    DatingPreferences,
    Gender,
    Profile,
    ProfileField,
    ProfileUpdate,
    is_empty_value,
    resolve_field_name,
)

__all__ = [
    # Events
    'CallEvent',
    'EventKind',
    'WebhookPayload',
    'parse_webhook',
    # Extraction
    'ExtractedDatingPreferences',
    'ExtractedProfile',
    # Matches
    'ContactPair',
    'MatchRecord',
    # Profiles
    'LIST_FIELDS',
    'PROTECTED_FIELDS',
    'DatingPreferences',
    'Gender',
    'Profile',
    'ProfileField',
    'ProfileUpdate',
    'is_empty_value',
    'resolve_field_name',
]
