"""
Tests for event admission (EventDeduplicator + InMemoryIdempotencyStore).
"""

import asyncio

import pytest

from profile_matching.errors import DuplicateEventError, ValidationError
from profile_matching.pipeline.deduplicator import AdmitDecision, EventDeduplicator
from profile_matching.stores.memory import InMemoryIdempotencyStore


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def deduplicator(clock) -> EventDeduplicator:
    store = InMemoryIdempotencyStore(clock=clock)
    return EventDeduplicator(store, lease_seconds=60, retention_seconds=3600)


async def _decision(deduplicator: EventDeduplicator, event_id: str) -> AdmitDecision:
    return (await deduplicator.admit(event_id)).decision


class TestAdmit:
    @pytest.mark.asyncio
    async def test_first_delivery_accepted(self, deduplicator):
        admission = await deduplicator.admit("call_1")

        assert admission.decision is AdmitDecision.ACCEPTED
        assert admission.accepted
        assert admission.token

    @pytest.mark.asyncio
    async def test_in_flight_delivery_rejected(self, deduplicator):
        await deduplicator.admit("call_1")

        admission = await deduplicator.admit("call_1")

        assert admission.decision is AdmitDecision.REJECTED_DUPLICATE
        assert admission.token is None

    @pytest.mark.asyncio
    async def test_completed_delivery_rejected(self, deduplicator, clock):
        admission = await deduplicator.admit("call_1")
        await deduplicator.complete("call_1", admission.token)
        clock.advance(600)

        assert await _decision(deduplicator, "call_1") is AdmitDecision.REJECTED_DUPLICATE

    @pytest.mark.asyncio
    async def test_released_delivery_accepted_again(self, deduplicator):
        admission = await deduplicator.admit("call_1")
        await deduplicator.release("call_1", admission.token)

        assert await _decision(deduplicator, "call_1") is AdmitDecision.ACCEPTED

    @pytest.mark.asyncio
    async def test_release_does_not_free_completed_event(self, deduplicator):
        admission = await deduplicator.admit("call_1")
        await deduplicator.complete("call_1", admission.token)
        await deduplicator.release("call_1", admission.token)

        assert await _decision(deduplicator, "call_1") is AdmitDecision.REJECTED_DUPLICATE

    @pytest.mark.asyncio
    async def test_lease_expiry_frees_crashed_claim(self, deduplicator, clock):
        await deduplicator.admit("call_1")
        clock.advance(61)

        assert await _decision(deduplicator, "call_1") is AdmitDecision.ACCEPTED

    @pytest.mark.asyncio
    async def test_retention_expiry(self, deduplicator, clock):
        admission = await deduplicator.admit("call_1")
        await deduplicator.complete("call_1", admission.token)
        clock.advance(3601)

        assert await _decision(deduplicator, "call_1") is AdmitDecision.ACCEPTED

    @pytest.mark.asyncio
    async def test_distinct_events_independent(self, deduplicator):
        assert await _decision(deduplicator, "call_1") is AdmitDecision.ACCEPTED
        assert await _decision(deduplicator, "call_2") is AdmitDecision.ACCEPTED

    @pytest.mark.asyncio
    async def test_concurrent_admits_accept_exactly_one(self, deduplicator):
        admissions = await asyncio.gather(*(deduplicator.admit("call_1") for _ in range(20)))
        decisions = [a.decision for a in admissions]

        assert decisions.count(AdmitDecision.ACCEPTED) == 1
        assert decisions.count(AdmitDecision.REJECTED_DUPLICATE) == 19

    @pytest.mark.asyncio
    async def test_empty_event_id_rejected(self, deduplicator):
        with pytest.raises(ValidationError):
            await deduplicator.admit("")


class TestLeaseTakeover:
    """A worker whose lease expired must not disturb the claim that replaced it."""

    @pytest.mark.asyncio
    async def test_stale_release_keeps_new_claim(self, deduplicator, clock):
        slow = await deduplicator.admit("call_1")
        clock.advance(61)
        fresh = await deduplicator.admit("call_1")
        assert fresh.accepted
        assert fresh.token != slow.token

        await deduplicator.release("call_1", slow.token)

        assert await _decision(deduplicator, "call_1") is AdmitDecision.REJECTED_DUPLICATE

    @pytest.mark.asyncio
    async def test_stale_complete_does_not_finish_new_claim(self, deduplicator, clock):
        slow = await deduplicator.admit("call_1")
        clock.advance(61)
        fresh = await deduplicator.admit("call_1")

        await deduplicator.complete("call_1", slow.token)
        await deduplicator.release("call_1", fresh.token)

        assert await _decision(deduplicator, "call_1") is AdmitDecision.ACCEPTED

    @pytest.mark.asyncio
    async def test_failed_slow_worker_leaves_redelivery_claimed(self, deduplicator, clock):
        entered = asyncio.Event()
        proceed = asyncio.Event()

        async def slow_worker():
            async with deduplicator.claim("call_1"):
                entered.set()
                await proceed.wait()
                raise RuntimeError("extraction down")

        task = asyncio.create_task(slow_worker())
        await entered.wait()
        clock.advance(61)
        redelivery = await deduplicator.admit("call_1")
        assert redelivery.accepted

        proceed.set()
        with pytest.raises(RuntimeError):
            await task

        assert await _decision(deduplicator, "call_1") is AdmitDecision.REJECTED_DUPLICATE


class TestClaim:
    @pytest.mark.asyncio
    async def test_success_completes(self, deduplicator):
        async with deduplicator.claim("call_1"):
            pass

        with pytest.raises(DuplicateEventError):
            async with deduplicator.claim("call_1"):
                pass

    @pytest.mark.asyncio
    async def test_failure_releases(self, deduplicator):
        with pytest.raises(RuntimeError):
            async with deduplicator.claim("call_1"):
                raise RuntimeError("extraction down")

        assert await _decision(deduplicator, "call_1") is AdmitDecision.ACCEPTED

    @pytest.mark.asyncio
    async def test_cancellation_releases(self, deduplicator):
        started = asyncio.Event()

        async def worker():
            async with deduplicator.claim("call_1"):
                started.set()
                await asyncio.sleep(10)

        task = asyncio.create_task(worker())
        await started.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert await _decision(deduplicator, "call_1") is AdmitDecision.ACCEPTED

    @pytest.mark.asyncio
    async def test_duplicate_raises_before_body(self, deduplicator):
        await deduplicator.admit("call_1")
        ran = False

        with pytest.raises(DuplicateEventError):
            async with deduplicator.claim("call_1"):
                ran = True

        assert ran is False
