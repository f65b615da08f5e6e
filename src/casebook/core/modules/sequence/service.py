from collections.abc import Callable
from typing import Any

from casebook.core.core import Service
from casebook.core.modules.sequence.allocator import SequenceStore, SequentialIdAllocator


class SequenceService(Service):
    """Shared allocator for per-project sequence ids, configured from app config."""

    _allocator: SequentialIdAllocator | None = None

    @property
    def allocator(self) -> SequentialIdAllocator:
        if self._allocator is None:
            config = self.core.config
            self._allocator = SequentialIdAllocator(
                max_attempts=config.id_allocation_max_attempts,
                backoff=config.id_allocation_backoff,
                timeout=config.id_allocation_timeout,
            )
        return self._allocator

    async def allocate[T](self, store: SequenceStore[T], parent_key: Any, prefix: str, build: Callable[[str], T]) -> T:
        """Create an entity with the next free sequence id for the given scope and prefix."""
        return await self.allocator.allocate(store, parent_key, prefix, build)
