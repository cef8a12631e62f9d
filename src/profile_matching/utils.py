"""
Utility helpers for the profile matching pipeline.

Trace ids are UUIDv7 so log lines from one event sort by time. fastuuid.UUID
is not isinstance-compatible with uuid.UUID, so uuid7() roundtrips through
the string form.
"""

from uuid import UUID

import fastuuid


def uuid7() -> UUID:
    """Generate a UUIDv7 (time-sortable) as a stdlib uuid.UUID."""
    return UUID(str(fastuuid.uuid7()))


def new_trace_id() -> str:
    """Trace id attached to every log line of one pipeline run."""
    return str(uuid7())
