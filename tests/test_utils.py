"""
Tests for the uuid7() and new_trace_id() helpers.
"""

import time
from uuid import UUID

from profile_matching.utils import new_trace_id, uuid7


class TestUuid7:
    def test_returns_stdlib_uuid(self):
        """uuid7() must return a stdlib uuid.UUID, not fastuuid.UUID."""
        assert type(uuid7()) is UUID

    def test_version_is_7(self):
        assert uuid7().version == 7

    def test_time_sortable(self):
        first = uuid7()
        time.sleep(0.002)
        second = uuid7()

        assert first < second


class TestTraceId:
    def test_trace_id_is_uuid_string(self):
        trace_id = new_trace_id()

        assert UUID(trace_id).version == 7

    def test_trace_ids_unique(self):
        assert len({new_trace_id() for _ in range(100)}) == 100
