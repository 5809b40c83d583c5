from collections.abc import AsyncGenerator, Mapping, Sequence
from typing import Any, Protocol

from dracula.schemas import RunResult

Filter = Mapping[str, Any]
Row = Mapping[str, Any]


class RowDatabase(Protocol):
    """
    Defines the minimal async interface the row store expects from a SQLite-style database.

    Any object exposing these methods can back a SQLiteCounterStore: a real
    SQLite connection, or the pure-Python in-memory implementation used for
    ephemeral storage and tests. Rows are returned as mappings keyed by column name.
    """

    async def run(self, sql: str, params: Sequence[Any] = ()) -> RunResult:
        """
        Executes a write statement (DDL, INSERT, UPDATE or DELETE) and commits it.

        Args:
            sql (str): The statement to execute.
            params (Sequence[Any]): Positional parameters bound to ``?`` placeholders.

        Returns:
            A RunResult holding the last inserted row id and the number of changed rows.
        """
        ...

    async def all(self, sql: str, params: Sequence[Any] = ()) -> list[Row]:
        """
        Executes a query and returns every resulting row.
        """
        ...

    async def get(self, sql: str, params: Sequence[Any] = ()) -> Row | None:
        """
        Executes a query and returns the first resulting row, or ``None`` when there is none.
        """
        ...

    def iterate(self, sql: str, params: Sequence[Any] = ()) -> AsyncGenerator[Row, None]:
        """
        Executes a query and yields rows lazily.

        Implementations must release the underlying cursor when the iterator is
        closed early and must not read further rows after that.
        """
        ...

    async def close(self) -> None:
        """
        Releases the underlying connection, if the database owns one.
        """
        ...
