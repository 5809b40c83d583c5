import logging
from collections.abc import AsyncIterator, Mapping
from typing import Any

from dracula.backends.base import CounterStore
from dracula.schemas import Counter, CounterId, CounterInput, CounterPatch, CreateResult, PaginationOptions
from dracula.types import Filter

logger = logging.getLogger("dracula")


class Dracula:
    """
    Dracula is a fancy counter: a uniform async API over a pluggable counter store.

    Every operation is forwarded to the configured CounterStore, so the same code
    runs unchanged against MongoDB or SQLite. Use ``create_dracula_from_env`` to
    build an instance from ``DRACULA_*`` environment variables.

    Example:
        ```python
        async with await create_dracula_from_env() as dracula:
            result = await dracula.create({"count": 1, "meta": {"hole": 3}})
            counters = await dracula.get({"meta.hole": {"$gte": 3}}, {"limit": 10})
        ```

    Attributes:
        store (CounterStore): The backing store operations are delegated to.
    """

    def __init__(self, store: CounterStore) -> None:
        self.store = store

    async def create(self, counter: CounterInput | Mapping[str, Any]) -> CreateResult:
        """
        Creates a counter.

        Args:
            counter (CounterInput | Mapping[str, Any]): ``count``, ``meta`` and an optional ``createdAt``.

        Returns:
            A CreateResult holding the identifier assigned by the store.

        Raises:
            ValidationFailed: If the counter is malformed. Nothing is persisted.
        """
        return await self.store.create(counter)

    async def get(
        self, filter: Filter | None = None, options: PaginationOptions | Mapping[str, Any] | None = None
    ) -> list[Counter]:
        """
        Returns counters matching ``filter``, ordered by id.

        Args:
            filter (Filter | None): MongoDB-style filter. ``None`` or ``{}`` matches everything.
            options (PaginationOptions | Mapping[str, Any] | None): ``skip`` then ``limit``.

        Returns:
            The matching counters.
        """
        return await self.store.get(filter, options)

    async def compute(self, filter: Filter | None = None) -> int:
        """Returns how many counters match ``filter``."""
        return await self.store.compute(filter)

    def stream(self, filter: Filter | None = None) -> AsyncIterator[Counter]:
        """
        Lazily iterates counters matching ``filter``.

        Example:
            ```python
            async with contextlib.aclosing(dracula.stream({"count": 1})) as counters:
                async for counter in counters:
                    ...
            ```
        """
        return self.store.stream(filter)

    async def get_by_id(self, id: CounterId) -> Counter | None:
        return await self.store.get_by_id(id)

    async def update(self, id: CounterId, updates: CounterPatch | Mapping[str, Any]) -> int:
        """
        Replaces the provided fields of a counter. ``meta`` is replaced, not merged.

        Returns:
            1 if the counter exists and ``updates`` was non-empty, else 0.
        """
        return await self.store.update(id, updates)

    async def delete(self, id: CounterId) -> int:
        return await self.store.delete(id)

    async def delete_all(self) -> int:
        """
        Deletes every counter in the store. Intended for tests and local development.
        """
        return await self.store.delete_all()

    async def close(self) -> None:
        await self.store.close()
        logger.debug("Closed %s", type(self.store).__name__)

    async def __aenter__(self) -> "Dracula":
        return self

    async def __aexit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        await self.close()
