"""
Base counter store interface.
"""

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Mapping
from typing import Any

from dracula.schemas import Counter, CounterId, CounterInput, CounterPatch, CreateResult, PaginationOptions
from dracula.types import Filter


class CounterStore(ABC):
    """
    Asynchronous counter store interface (non-blocking I/O).

    Every backend must expose the same observable semantics: validation happens
    before any I/O, results are returned in a stable order (ascending id),
    ``compute(f) == len(get(f))`` and ``stream(f)`` yields exactly what ``get(f)``
    returns without pagination.
    """

    @abstractmethod
    async def create(self, counter: CounterInput | Mapping[str, Any]) -> CreateResult:
        """
        Create a new counter and return its store-assigned identifier.

        Raises:
            ValidationFailed: If ``count`` is not finite, ``meta`` is not a mapping or
                ``created_at`` is not a valid timestamp.
        """
        pass

    @abstractmethod
    async def get(
        self, filter: Filter | None = None, options: PaginationOptions | Mapping[str, Any] | None = None
    ) -> list[Counter]:
        """Retrieve counters matching ``filter``, skipping then limiting per ``options``."""
        pass

    @abstractmethod
    async def compute(self, filter: Filter | None = None) -> int:
        """Count counters matching ``filter`` without returning them."""
        pass

    @abstractmethod
    def stream(self, filter: Filter | None = None) -> AsyncIterator[Counter]:
        """
        Lazily yield counters matching ``filter``.

        The iterator is single-pass. Closing it early (``aclose()``, or leaving an
        ``async for`` inside ``contextlib.aclosing``) releases the underlying cursor.
        """
        pass

    @abstractmethod
    async def get_by_id(self, id: CounterId) -> Counter | None:
        """Retrieve a single counter, or ``None`` if no counter has this id."""
        pass

    @abstractmethod
    async def update(self, id: CounterId, updates: CounterPatch | Mapping[str, Any]) -> int:
        """
        Replace only the provided fields of a counter.

        Returns:
            1 if the counter was updated, 0 if it does not exist or ``updates`` holds no
            recognized field.
        """
        pass

    @abstractmethod
    async def delete(self, id: CounterId) -> int:
        """Delete a single counter. Returns the number deleted (0 or 1)."""
        pass

    @abstractmethod
    async def delete_all(self) -> int:
        """Delete every counter. Returns the number deleted."""
        pass

    async def close(self) -> None:
        """Release resources owned by the store (optional)."""
        pass
