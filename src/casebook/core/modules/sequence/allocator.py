"""Collision-free allocation of per-scope sequence ids (tc1, tc2, DEF-1, ...).

The allocator is stateless. Every attempt re-reads the number of records in
the scope, scans upward from ``count + 1`` until it finds an id nobody holds
and creates the entity with that id in a single write. Two concurrent
allocators can still pick the same id between the lookup and the write; the
store's unique index on ``(scope, sequence id)`` rejects the loser, which backs
off and starts over. The unique index is the actual source of truth, the scan
only keeps the expected number of conflicts low.
"""

import asyncio
from collections.abc import Callable
from typing import Any, Protocol

import structlog

from casebook.core.modules.sequence.models import format_sequence_id
from casebook.errors import AllocationExhaustedError, StorageFaultError

logger = structlog.get_logger(__name__)

DEFAULT_MAX_ATTEMPTS = 5
DEFAULT_BACKOFF = 0.1  # Seconds, multiplied by the attempt number
DEFAULT_TIMEOUT = 10.0  # Seconds


class UniqueConstraintError(Exception):
    """Raised by a SequenceStore when the sequence id is already taken in the scope."""


class SequenceStore[T](Protocol):
    """Storage capability the allocator needs, scoped by parent key."""

    async def count(self, parent_key: Any) -> int:
        """Number of live entities in the scope."""
        ...

    async def find_by_key(self, parent_key: Any, sequence_id: str) -> T | None:
        """Entity holding the sequence id in the scope, if any."""
        ...

    async def create(self, entity: T) -> T:
        """Persist the entity. Must raise UniqueConstraintError on a duplicate sequence id."""
        ...


class SequentialIdAllocator:
    """Allocates ``<prefix><n>`` ids per scope, retrying on unique index conflicts."""

    def __init__(
        self,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        backoff: float = DEFAULT_BACKOFF,
        timeout: float | None = DEFAULT_TIMEOUT,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self._max_attempts = max_attempts
        self._backoff = backoff
        self._timeout = timeout

    async def next_candidate(self, store: SequenceStore[Any], parent_key: Any, prefix: str) -> str:
        """Find the first free id at or above ``count + 1``.

        This is an unbounded linear scan. It terminates because every id it
        skips belongs to an existing entity.
        """
        number = await store.count(parent_key) + 1
        candidate = format_sequence_id(prefix, number)
        while await store.find_by_key(parent_key, candidate) is not None:
            number += 1
            candidate = format_sequence_id(prefix, number)
        return candidate

    async def allocate[T](self, store: SequenceStore[T], parent_key: Any, prefix: str, build: Callable[[str], T]) -> T:
        """Create an entity with the next free sequence id in the scope.

        Args:
            store: Storage for the entity kind, enforcing uniqueness of (scope, id)
            parent_key: Scope the id must be unique in (e.g. a project id)
            prefix: Entity kind prefix, e.g. "tc" or "DEF-"
            build: Builds the entity to persist from the allocated id

        Returns:
            The created entity

        Raises:
            AllocationExhaustedError: If all attempts conflicted or the timeout expired
            StorageFaultError: If the store failed for any other reason
        """
        if parent_key is None or parent_key == "":
            raise ValueError("parent_key must not be empty")

        deadline = asyncio.timeout(self._timeout)
        try:
            async with deadline:
                return await self._allocate(store, parent_key, prefix, build)
        except TimeoutError as e:
            if not deadline.expired():
                raise
            logger.warning("sequence_allocation_timeout", parent_key=parent_key, prefix=prefix, timeout=self._timeout)
            raise AllocationExhaustedError(
                f"Timed out allocating a '{prefix}' id for {parent_key} after {self._timeout}s"
            ) from e

    async def _allocate[T](self, store: SequenceStore[T], parent_key: Any, prefix: str, build: Callable[[str], T]) -> T:
        for attempt in range(1, self._max_attempts + 1):
            candidate: str | None = None
            try:
                candidate = await self.next_candidate(store, parent_key, prefix)
                entity = await store.create(build(candidate))
            except UniqueConstraintError:
                logger.info("sequence_id_conflict", parent_key=parent_key, candidate=candidate, attempt=attempt)
                if attempt < self._max_attempts:
                    await asyncio.sleep(self._backoff * attempt)
                continue
            except StorageFaultError:
                logger.error("sequence_allocation_failed", parent_key=parent_key, candidate=candidate, attempt=attempt)
                raise

            logger.debug("sequence_id_allocated", parent_key=parent_key, sequence_id=candidate, attempt=attempt)
            return entity

        logger.warning("sequence_allocation_exhausted", parent_key=parent_key, prefix=prefix, attempts=self._max_attempts)
        raise AllocationExhaustedError(
            f"Failed to allocate a unique '{prefix}' id for {parent_key} after {self._max_attempts} attempts"
        )
