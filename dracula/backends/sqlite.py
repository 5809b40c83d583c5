"""
SQLite counter store implementation.
"""

import asyncio
import json
import logging
import re
from collections.abc import AsyncGenerator, AsyncIterator, Mapping, Sequence
from contextlib import aclosing
from datetime import datetime, timezone
from typing import Any

try:
    import aiosqlite
except ImportError:
    aiosqlite = None  # type: ignore[assignment]

from dracula.backends.base import CounterStore
from dracula.constants import DEFAULT_TABLE_NAME, STREAM_BATCH_SIZE
from dracula.exceptions import ConfigError, InternalError, StoreConnectionError, ValidationFailed
from dracula.filters import compile_filter
from dracula.schemas import (
    Counter,
    CounterId,
    CounterInput,
    CounterPatch,
    CreateResult,
    PaginationOptions,
    RowId,
    RunResult,
    coerce_model,
    normalize_timestamp,
    utc_now,
)
from dracula.types import Filter, Row, RowDatabase

logger = logging.getLogger("dracula.sqlite")

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def format_timestamp(value: datetime) -> str:
    """Serializes a timestamp as ISO-8601 UTC with millisecond precision, e.g. ``2024-01-01T00:00:00.000Z``."""
    return value.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_timestamp(raw: str) -> datetime:
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    return normalize_timestamp(datetime.fromisoformat(raw))


def _dump_meta(meta: dict[str, Any]) -> str:
    try:
        return json.dumps(meta, allow_nan=False)
    except (TypeError, ValueError) as e:
        raise ValidationFailed(f"counter.meta must be JSON-serializable for the SQLite store: {e}", cause=e) from e


def _as_record(counter: Counter) -> dict[str, Any]:
    return {"count": counter.count, "createdAt": counter.created_at, "meta": counter.meta}


class SQLiteCounterStore(CounterStore):
    """
    Counter store backed by a single SQLite-style table.

    The table holds one row per counter, ``(id, count, created_at, meta)``, where
    ``meta`` is stored as JSON text and ``created_at`` as an ISO-8601 string. The row
    database has no structured query support, so ``get``, ``compute`` and ``stream``
    load rows in id order, deserialize them and apply the in-process filter
    evaluator.

    The table is created lazily on first use. Initialization is guarded by a one-shot
    gate so that concurrent first calls issue a single ``CREATE TABLE``.

    Example:
        ```python
        db = AiosqliteDatabase("counters.db")
        await db.connect()
        store = SQLiteCounterStore(db)
        await store.create({"count": 1, "meta": {"hole": 3}})
        ```

    Attributes:
        _db (RowDatabase): The row database statements are executed against.
        _table (str): Name of the counters table.
        _owns_database (bool): Whether ``close()`` also closes ``_db``.
        _initialized (bool): Set once the table is known to exist.
        _init_lock (asyncio.Lock): One-shot gate serializing the first initialization.
    """

    def __init__(self, db: RowDatabase, table_name: str = DEFAULT_TABLE_NAME, owns_database: bool = False) -> None:
        if not table_name or not _IDENTIFIER.match(table_name):
            raise ConfigError(f"Invalid table name: {table_name!r}")

        self._db = db
        self._table = table_name
        self._owns_database = owns_database
        self._initialized = False
        self._init_lock = asyncio.Lock()
        self._select_sql = f"SELECT id, count, created_at, meta FROM {table_name} ORDER BY id"  # nosec B608
        self._select_by_id_sql = f"SELECT id, count, created_at, meta FROM {table_name} WHERE id = ?"  # nosec B608

    async def _ensure_initialized(self) -> None:
        """
        Creates the counters table if needed, at most once per store instance.

        Returns:
            None
        """
        if self._initialized:
            return
        async with self._init_lock:
            if self._initialized:
                return
            await self._db.run(
                f"""
                CREATE TABLE IF NOT EXISTS {self._table}
                (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    count INTEGER NOT NULL,
                    created_at TEXT NOT NULL,
                    meta TEXT NOT NULL
                )
                """
            )
            self._initialized = True
            logger.info("Initialized counter table %s", self._table)

    def _row_id(self, id: CounterId) -> int:
        if not isinstance(id, RowId):
            raise ValidationFailed(f"SQLiteCounterStore expects a RowId, got {type(id).__name__}")
        return id.value

    def _row_to_counter(self, row: Row) -> Counter:
        return Counter(
            id=RowId(value=row["id"]),
            count=row["count"],
            created_at=parse_timestamp(row["created_at"]),
            meta=json.loads(row["meta"]),
        )

    async def create(self, counter: CounterInput | Mapping[str, Any]) -> CreateResult:
        """
        Validates and inserts a counter, stamping ``created_at`` with the current time if absent.

        Args:
            counter (CounterInput | Mapping[str, Any]): The counter to create.

        Returns:
            A CreateResult holding the new RowId.

        Raises:
            ValidationFailed: If the input fails validation or ``meta`` is not JSON-serializable.
        """
        data = coerce_model(CounterInput, counter, "counter")
        created_at = data.created_at or utc_now()
        meta_json = _dump_meta(data.meta)

        await self._ensure_initialized()
        result = await self._db.run(
            f"INSERT INTO {self._table} (count, created_at, meta) VALUES (?, ?, ?)",  # nosec B608
            (data.count, format_timestamp(created_at), meta_json),
        )
        if result.last_row_id is None:
            raise InternalError("Row database did not report the inserted row id")

        logger.debug("Created counter %s in %s", result.last_row_id, self._table)
        return CreateResult(id=RowId(value=result.last_row_id))

    async def get(
        self, filter: Filter | None = None, options: PaginationOptions | Mapping[str, Any] | None = None
    ) -> list[Counter]:
        """
        Returns counters matching ``filter`` in id order, applying ``skip`` then ``limit``.

        Args:
            filter (Filter | None): MongoDB-style filter evaluated in process.
            options (PaginationOptions | Mapping[str, Any] | None): Optional pagination.

        Returns:
            The matching counters.
        """
        compiled = compile_filter(filter)
        page = PaginationOptions() if options is None else coerce_model(PaginationOptions, options, "pagination")

        await self._ensure_initialized()
        rows = await self._db.all(self._select_sql)
        counters = [c for c in map(self._row_to_counter, rows) if compiled.matches(_as_record(c))]
        return page.apply(counters)

    async def compute(self, filter: Filter | None = None) -> int:
        compiled = compile_filter(filter)

        await self._ensure_initialized()
        rows = await self._db.all(self._select_sql)
        return sum(1 for row in rows if compiled.matches(_as_record(self._row_to_counter(row))))

    async def stream(self, filter: Filter | None = None) -> AsyncIterator[Counter]:
        """
        Yields matching counters while reading rows from the database in batches.

        Closing the iterator early closes the underlying cursor; no further rows are read.
        """
        compiled = compile_filter(filter)

        await self._ensure_initialized()
        async with aclosing(self._db.iterate(self._select_sql)) as rows:
            async for row in rows:
                counter = self._row_to_counter(row)
                if compiled.matches(_as_record(counter)):
                    yield counter

    async def get_by_id(self, id: CounterId) -> Counter | None:
        key = self._row_id(id)

        await self._ensure_initialized()
        row = await self._db.get(self._select_by_id_sql, (key,))
        return self._row_to_counter(row) if row is not None else None

    async def update(self, id: CounterId, updates: CounterPatch | Mapping[str, Any]) -> int:
        """
        Replaces the provided fields of a counter in a single statement, leaving the
        other columns untouched.

        Args:
            id (CounterId): RowId of the counter.
            updates (CounterPatch | Mapping[str, Any]): Fields to replace.

        Returns:
            The number of rows changed: 0 if the id is unknown or ``updates`` is empty, else 1.
        """
        key = self._row_id(id)
        changes = coerce_model(CounterPatch, updates, "counter update").provided()

        columns: dict[str, Any] = {}
        if "count" in changes:
            columns["count"] = changes["count"]
        if "created_at" in changes:
            columns["created_at"] = format_timestamp(changes["created_at"])
        if "meta" in changes:
            columns["meta"] = _dump_meta(changes["meta"])
        if not columns:
            return 0

        await self._ensure_initialized()
        assignments = ", ".join(f"{column} = ?" for column in columns)
        result = await self._db.run(
            f"UPDATE {self._table} SET {assignments} WHERE id = ?",  # nosec B608
            (*columns.values(), key),
        )
        logger.debug("Updated counter %s in %s (%s)", key, self._table, ", ".join(sorted(changes)))
        return result.changes

    async def delete(self, id: CounterId) -> int:
        key = self._row_id(id)

        await self._ensure_initialized()
        result = await self._db.run(f"DELETE FROM {self._table} WHERE id = ?", (key,))  # nosec B608
        return result.changes

    async def delete_all(self) -> int:
        await self._ensure_initialized()
        result = await self._db.run(f"DELETE FROM {self._table}")  # nosec B608
        logger.info("Deleted %d counters from %s", result.changes, self._table)
        return result.changes

    async def close(self) -> None:
        """
        Closes the row database if this store owns it.

        Returns:
            None
        """
        if self._owns_database:
            await self._db.close()


class AiosqliteDatabase:
    """
    RowDatabase implementation over an ``aiosqlite`` connection.

    Accepts either a path (``":memory:"`` for an ephemeral database), in which case
    the connection is opened by ``connect()`` and closed by ``close()``, or an already
    open ``aiosqlite.Connection`` owned by the caller.

    Example:
        ```python
        db = AiosqliteDatabase("counters.db")
        await db.connect()
        ```

    Attributes:
        _db (aiosqlite.Connection | None): Async SQLite connection object.
        _path (str | None): Path to the SQLite database file.
        _owns_connection (bool): Specifies whether this instance is responsible for closing the connection.
        _lock (asyncio.Lock): Serializes statements issued over the shared connection.
        _batch_size (int): Number of rows fetched per round trip by ``iterate``.
    """

    def __init__(
        self, connection_or_path: "str | aiosqlite.Connection" = ":memory:", batch_size: int = STREAM_BATCH_SIZE
    ) -> None:
        if aiosqlite is None:
            raise ImportError("Run `pip install aiosqlite` to use AiosqliteDatabase.")

        self._lock = asyncio.Lock()
        self._db: Any = None
        self._path: str | None = None
        self._batch_size = batch_size

        if isinstance(connection_or_path, str):
            self._path = connection_or_path
            self._owns_connection = True
        else:
            self._db = connection_or_path
            self._owns_connection = False

    async def connect(self) -> None:
        """
        Async initialization. Must be called before use.

        Raises:
            StoreConnectionError: If the database cannot be opened.
        """
        if self._db is None and self._owns_connection and self._path:
            try:
                self._db = await aiosqlite.connect(self._path)
            except aiosqlite.Error as e:
                raise StoreConnectionError(f"Cannot open SQLite database {self._path!r}: {e}", cause=e) from e
            logger.info("Opened SQLite database %s", self._path)

        if self._db is None:
            raise StoreConnectionError("Connection not initialized properly.")

        self._db.row_factory = aiosqlite.Row

    def _connection(self) -> Any:
        if self._db is None:
            raise StoreConnectionError("Not connected; call connect() first")
        return self._db

    async def run(self, sql: str, params: Sequence[Any] = ()) -> RunResult:
        db = self._connection()
        async with self._lock:
            async with db.execute(sql, tuple(params)) as cursor:
                result = RunResult(last_row_id=cursor.lastrowid, changes=max(cursor.rowcount, 0))
            await db.commit()
        return result

    async def all(self, sql: str, params: Sequence[Any] = ()) -> list[Row]:
        db = self._connection()
        async with self._lock:
            async with db.execute(sql, tuple(params)) as cursor:
                return list(await cursor.fetchall())

    async def get(self, sql: str, params: Sequence[Any] = ()) -> Row | None:
        db = self._connection()
        async with self._lock:
            async with db.execute(sql, tuple(params)) as cursor:
                row: Row | None = await cursor.fetchone()
                return row

    async def iterate(self, sql: str, params: Sequence[Any] = ()) -> AsyncGenerator[Row, None]:
        """
        Yields rows fetched ``batch_size`` at a time from a single cursor.

        The cursor is closed when iteration finishes or the generator is closed early.
        """
        db = self._connection()
        async with self._lock:
            cursor = await db.execute(sql, tuple(params))
        try:
            while True:
                async with self._lock:
                    batch = await cursor.fetchmany(self._batch_size)
                if not batch:
                    break
                for row in batch:
                    yield row
        finally:
            await cursor.close()

    async def close(self) -> None:
        """
        Closes the connection if this instance opened it.

        Returns:
            None
        """
        if self._owns_connection and self._db is not None:
            await self._db.close()
            self._db = None
            logger.info("Closed SQLite database %s", self._path)
