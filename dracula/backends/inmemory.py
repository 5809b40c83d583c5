"""
In-memory row database implementation.
"""

import asyncio
import re
from collections.abc import AsyncGenerator, Sequence
from typing import Any

from dracula.exceptions import InternalError
from dracula.schemas import RunResult
from dracula.types import Row

_UPDATE_BY_ID = re.compile(r"^UPDATE \w+ SET (?P<assignments>.+) WHERE ID = \?$")
_COLUMNS = {"count", "created_at", "meta"}


class InMemoryRowDatabase:
    """
    Class representing an ephemeral, SQLite-like row database kept entirely in memory.

    It understands only the statements SQLiteCounterStore issues against its single
    counters table: ``CREATE TABLE``, ``INSERT``, ``UPDATE ... SET <columns> WHERE id = ?``,
    ``DELETE`` with or without ``WHERE id = ?`` and ``SELECT`` of every row or of one
    row by id. The table name in the statement is not checked. Any other statement
    raises InternalError instead of silently returning a wrong answer.

    Attributes:
        _rows (list[dict[str, Any]]): Stored rows in insertion (and therefore id) order.
        _next_id (int): Id assigned to the next inserted row.
        _lock (asyncio.Lock): Asynchronous lock to ensure safe concurrent access to the rows.
    """

    def __init__(self) -> None:
        self._rows: list[dict[str, Any]] = []
        self._next_id = 1
        self._lock = asyncio.Lock()

    @staticmethod
    def _normalize(sql: str) -> str:
        return " ".join(sql.split()).upper()

    @staticmethod
    def _assigned_columns(assignments: str, sql: str) -> list[str]:
        columns = []
        for assignment in assignments.split(","):
            column, _, placeholder = assignment.partition("=")
            column = column.strip().lower()
            if column not in _COLUMNS or placeholder.strip() != "?":
                raise InternalError(f"Unsupported SQL in InMemoryRowDatabase.run: {sql.strip()}")
            columns.append(column)
        return columns

    async def run(self, sql: str, params: Sequence[Any] = ()) -> RunResult:
        """
        Executes a write statement against the in-memory rows.

        Args:
            sql (str): One of the statements listed in the class docstring.
            params (Sequence[Any]): Positional parameters in statement order.

        Returns:
            A RunResult with the inserted row id and the number of changed rows.

        Raises:
            InternalError: If the statement is not supported.
        """
        statement = self._normalize(sql)

        async with self._lock:
            if statement.startswith("CREATE TABLE"):
                return RunResult()

            if statement.startswith("INSERT INTO"):
                count, created_at, meta = params
                row = {"id": self._next_id, "count": count, "created_at": created_at, "meta": meta}
                self._next_id += 1
                self._rows.append(row)
                return RunResult(last_row_id=row["id"], changes=1)

            update = _UPDATE_BY_ID.match(statement)
            if update:
                columns = self._assigned_columns(update.group("assignments"), sql)
                *values, row_id = params
                changes = 0
                for row in self._rows:
                    if row["id"] == row_id:
                        row.update(zip(columns, values))
                        changes += 1
                return RunResult(changes=changes)

            if statement.startswith("DELETE FROM"):
                if "WHERE ID = ?" in statement:
                    (row_id,) = params
                    before = len(self._rows)
                    self._rows = [row for row in self._rows if row["id"] != row_id]
                    return RunResult(changes=before - len(self._rows))
                if "WHERE" not in statement:
                    deleted = len(self._rows)
                    self._rows = []
                    return RunResult(changes=deleted)

        raise InternalError(f"Unsupported SQL in InMemoryRowDatabase.run: {sql.strip()}")

    def _check_select(self, sql: str, method: str) -> str:
        statement = self._normalize(sql)
        if not (statement.startswith("SELECT") and " FROM " in statement):
            raise InternalError(f"Unsupported SQL in InMemoryRowDatabase.{method}: {sql.strip()}")
        return statement

    async def all(self, sql: str, params: Sequence[Any] = ()) -> list[Row]:
        self._check_select(sql, "all")
        async with self._lock:
            return [dict(row) for row in self._rows]

    async def get(self, sql: str, params: Sequence[Any] = ()) -> Row | None:
        statement = self._check_select(sql, "get")
        async with self._lock:
            if "WHERE ID = ?" in statement:
                (row_id,) = params
                return next((dict(row) for row in self._rows if row["id"] == row_id), None)
            return dict(self._rows[0]) if self._rows else None

    async def iterate(self, sql: str, params: Sequence[Any] = ()) -> AsyncGenerator[Row, None]:
        """
        Yields a copy of each row, one at a time, over a snapshot of the table.
        """
        self._check_select(sql, "iterate")
        async with self._lock:
            snapshot = list(self._rows)
        for row in snapshot:
            yield dict(row)

    async def close(self) -> None:
        """Nothing to release for the in-memory implementation."""
        pass
