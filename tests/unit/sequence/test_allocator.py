"""Tests for SequentialIdAllocator."""

import asyncio

import pytest

from casebook.core.modules.sequence import allocator as allocator_module
from casebook.core.modules.sequence.allocator import SequentialIdAllocator
from casebook.errors import AllocationExhaustedError, StorageFaultError


def record_for(parent_key):
    """Build callback producing records like the conftest SequencedRecord, without importing it."""

    def build(sequence_id):
        return type("Record", (), {"parent_key": parent_key, "sequence_id": sequence_id})()

    return build


@pytest.fixture
def fast_allocator():
    return SequentialIdAllocator(max_attempts=5, backoff=0, timeout=5)


class TestSequentialAllocation:
    """Ids are allocated sequentially from count + 1 with a linear scan."""

    @pytest.mark.asyncio
    async def test_empty_scope_yields_consecutive_ids(self, fast_allocator, sequence_store):
        """Three allocations on an empty project yield tc1, tc2, tc3."""
        ids = []
        for _ in range(3):
            record = await fast_allocator.allocate(sequence_store, "proj-1", "tc", record_for("proj-1"))
            ids.append(record.sequence_id)
        assert ids == ["tc1", "tc2", "tc3"]

    @pytest.mark.asyncio
    async def test_preseeded_id_is_skipped(self, fast_allocator, sequence_store):
        """With tc1 present the first allocation yields tc2."""
        sequence_store.seed("proj-1", "tc1")
        record = await fast_allocator.allocate(sequence_store, "proj-1", "tc", record_for("proj-1"))
        assert record.sequence_id == "tc2"

    @pytest.mark.asyncio
    async def test_skips_taken_ids_above_count(self, fast_allocator, sequence_store):
        """A gap below the count does not cause reuse, taken ids above it are skipped."""
        sequence_store.seed("proj-1", "tc2", "tc3")
        record = await fast_allocator.allocate(sequence_store, "proj-1", "tc", record_for("proj-1"))
        assert record.sequence_id == "tc4"

    @pytest.mark.asyncio
    async def test_never_numbers_at_or_below_count(self, fast_allocator, sequence_store):
        """The allocated number is always greater than the count at call time."""
        sequence_store.seed("proj-1", "tc7", "tc9", "tc12")
        record = await fast_allocator.allocate(sequence_store, "proj-1", "tc", record_for("proj-1"))
        assert int(record.sequence_id.removeprefix("tc")) > 3

    @pytest.mark.asyncio
    async def test_scopes_are_independent(self, fast_allocator, sequence_store):
        """Each parent key has its own numbering."""
        sequence_store.seed("proj-1", "DEF-1", "DEF-2")
        record = await fast_allocator.allocate(sequence_store, "proj-2", "DEF-", record_for("proj-2"))
        assert record.sequence_id == "DEF-1"

    @pytest.mark.asyncio
    async def test_defect_prefix(self, fast_allocator, sequence_store):
        """The same allocator serves the DEF- prefix."""
        record = await fast_allocator.allocate(sequence_store, "proj-1", "DEF-", record_for("proj-1"))
        assert record.sequence_id == "DEF-1"

    @pytest.mark.asyncio
    async def test_empty_parent_key_rejected(self, fast_allocator, sequence_store):
        """An empty scope is a programming error."""
        with pytest.raises(ValueError):
            await fast_allocator.allocate(sequence_store, "", "tc", record_for(""))
        with pytest.raises(ValueError):
            await fast_allocator.allocate(sequence_store, None, "tc", record_for(None))

    def test_max_attempts_must_be_positive(self):
        with pytest.raises(ValueError):
            SequentialIdAllocator(max_attempts=0)


class TestConcurrentAllocation:
    """Racing allocations in one scope never produce duplicates."""

    @pytest.mark.asyncio
    async def test_concurrent_allocations_are_unique(self, racing_sequence_store):
        """N concurrent allocations yield N distinct ids tc1..tcN."""
        n = 8
        allocator = SequentialIdAllocator(max_attempts=n, backoff=0.001, timeout=5)
        records = await asyncio.gather(
            *(allocator.allocate(racing_sequence_store, "proj-1", "tc", record_for("proj-1")) for _ in range(n))
        )
        ids = [record.sequence_id for record in records]
        assert len(set(ids)) == n
        assert sorted(ids, key=lambda i: int(i[2:])) == [f"tc{i}" for i in range(1, n + 1)]

    @pytest.mark.asyncio
    async def test_conflict_is_retried(self, fast_allocator, sequence_store):
        """A lost race is retried and succeeds with a fresh candidate."""
        sequence_store.conflicts_to_inject = 2
        record = await fast_allocator.allocate(sequence_store, "proj-1", "tc", record_for("proj-1"))
        assert record.sequence_id == "tc1"
        assert sequence_store.create_calls == 3


class TestAllocationFailures:
    """Bounded retries and error propagation."""

    @pytest.mark.asyncio
    async def test_exhausted_after_max_attempts(self, fast_allocator, sequence_store):
        """Conflicting on every attempt fails with AllocationExhaustedError after 5 tries."""
        sequence_store.conflicts_to_inject = 100
        with pytest.raises(AllocationExhaustedError):
            await fast_allocator.allocate(sequence_store, "proj-1", "tc", record_for("proj-1"))
        assert sequence_store.create_calls == 5
        assert sequence_store.ids("proj-1") == []

    @pytest.mark.asyncio
    async def test_backoff_grows_linearly_without_final_sleep(self, sequence_store, monkeypatch):
        """Backoff sleeps base * attempt between attempts and not after the last one."""
        delays = []

        async def fake_sleep(delay):
            delays.append(delay)

        monkeypatch.setattr(allocator_module.asyncio, "sleep", fake_sleep)
        sequence_store.conflicts_to_inject = 100
        allocator = SequentialIdAllocator(max_attempts=5, backoff=0.1, timeout=5)

        with pytest.raises(AllocationExhaustedError):
            await allocator.allocate(sequence_store, "proj-1", "tc", record_for("proj-1"))
        assert delays == pytest.approx([0.1, 0.2, 0.3, 0.4])

    @pytest.mark.asyncio
    async def test_timeout_reported_as_exhausted(self, sequence_store):
        """Exceeding the overall timeout fails with AllocationExhaustedError."""
        sequence_store.create_delay = 1.0
        allocator = SequentialIdAllocator(max_attempts=5, backoff=0, timeout=0.05)
        with pytest.raises(AllocationExhaustedError):
            await allocator.allocate(sequence_store, "proj-1", "tc", record_for("proj-1"))

    @pytest.mark.asyncio
    async def test_storage_fault_propagates_immediately(self, fast_allocator, sequence_store):
        """Non-uniqueness failures are not retried."""
        sequence_store.fault = StorageFaultError("connection reset")
        with pytest.raises(StorageFaultError):
            await fast_allocator.allocate(sequence_store, "proj-1", "tc", record_for("proj-1"))
        assert sequence_store.create_calls == 1
