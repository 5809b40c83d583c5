"""
MongoDB counter store implementation using Motor.
"""

import inspect
import logging
from collections.abc import AsyncIterator, Iterator, Mapping
from contextlib import contextmanager
from typing import Any

from dracula.backends.base import CounterStore
from dracula.config import CollectionConfig
from dracula.exceptions import ConfigError, InternalError, StoreConnectionError, ValidationFailed
from dracula.schemas import (
    Counter,
    CounterId,
    CounterInput,
    CounterPatch,
    CreateResult,
    DocumentId,
    PaginationOptions,
    coerce_model,
    normalize_timestamp,
    utc_now,
)
from dracula.types import Filter

try:
    from bson import ObjectId
    from motor.motor_asyncio import AsyncIOMotorClient
    from pymongo.errors import ConnectionFailure, PyMongoError
    from pymongo.server_api import ServerApi
except ImportError:
    raise ImportError("motor package is required. pip install motor")

logger = logging.getLogger("dracula.mongo")

_ID_ORDER = [("_id", 1)]
_FIELD_NAMES = {"count": "count", "created_at": "createdAt", "meta": "meta"}


def create_mongo_client(uri: str | None, **kwargs: Any) -> AsyncIOMotorClient:
    """
    Builds a Motor client pinned to the stable server API v1.

    The client connects lazily; use ``ping_mongo`` to verify reachability.

    Args:
        uri (str | None): MongoDB connection string.
        **kwargs: Extra options forwarded to ``AsyncIOMotorClient``.

    Returns:
        The Motor client.

    Raises:
        StoreConnectionError: If ``uri`` is empty or cannot be parsed.
    """
    if not uri:
        raise StoreConnectionError("DRACULA_MONGO_CONNECTION is required")
    try:
        return AsyncIOMotorClient(uri, server_api=ServerApi("1", strict=True, deprecation_errors=True), **kwargs)
    except PyMongoError as e:
        raise StoreConnectionError(f"Invalid MongoDB connection string: {e}", cause=e) from e


async def ping_mongo(client: AsyncIOMotorClient) -> None:
    """
    Pings the server behind ``client``.

    Raises:
        StoreConnectionError: If the server is unreachable.
    """
    try:
        await client.admin.command("ping")
    except PyMongoError as e:
        raise StoreConnectionError(f"MongoDB is unreachable: {e}", cause=e) from e


@contextmanager
def _connection_errors() -> Iterator[None]:
    try:
        yield
    except ConnectionFailure as e:
        raise StoreConnectionError(f"MongoDB operation failed: {e}", cause=e) from e


def _native_filter(filter: Filter | None) -> dict[str, Any]:
    if filter is None:
        return {}
    if not isinstance(filter, Mapping):
        raise InternalError(f"Filter must be a mapping, got {type(filter).__name__}")
    return dict(filter)


class MongoCounterStore(CounterStore):
    """
    Counter store backed by a MongoDB collection.

    Documents have the shape ``{_id, count, createdAt, meta}``. Filters are forwarded
    to MongoDB untranslated, so every operator the server understands is available;
    results are ordered by ``_id``.

    Attributes:
        _client (AsyncIOMotorClient): Motor client used for every operation.
        _owns_client (bool): Whether ``close()`` closes ``_client``.
        _config (CollectionConfig): Database and collection names.
        _collection: The Motor collection holding the counters.
    """

    def __init__(
        self,
        client_or_url: "str | AsyncIOMotorClient",
        config: CollectionConfig,
        owns_client: bool = False,
    ) -> None:
        if not config.db_name or not config.collection_name:
            raise ConfigError("db_name and collection_name are required")

        if isinstance(client_or_url, str):
            self._client = create_mongo_client(client_or_url)
            self._owns_client = True
        else:
            self._client = client_or_url
            self._owns_client = owns_client

        self._config = config
        self._collection = self._client.get_database(config.db_name).get_collection(config.collection_name)

    def _object_id(self, id: CounterId) -> ObjectId:
        if not isinstance(id, DocumentId):
            raise ValidationFailed(f"MongoCounterStore expects a DocumentId, got {type(id).__name__}")
        return id.value

    def _to_counter(self, doc: Mapping[str, Any]) -> Counter:
        return Counter(
            id=DocumentId(value=doc["_id"]),
            count=doc["count"],
            created_at=normalize_timestamp(doc["createdAt"]),
            meta=doc["meta"],
        )

    async def create(self, counter: CounterInput | Mapping[str, Any]) -> CreateResult:
        """
        Validates and inserts a counter document, defaulting ``createdAt`` to now.

        Args:
            counter (CounterInput | Mapping[str, Any]): The counter to create.

        Returns:
            A CreateResult holding the new DocumentId.
        """
        data = coerce_model(CounterInput, counter, "counter")
        document = {"count": data.count, "createdAt": data.created_at or utc_now(), "meta": data.meta}

        with _connection_errors():
            result = await self._collection.insert_one(document)

        logger.debug("Created counter %s in %s", result.inserted_id, self._config.collection_name)
        return CreateResult(id=DocumentId(value=result.inserted_id))

    async def get(
        self, filter: Filter | None = None, options: PaginationOptions | Mapping[str, Any] | None = None
    ) -> list[Counter]:
        """
        Runs ``find`` with native skip and limit.

        Args:
            filter (Filter | None): MongoDB filter, forwarded as is.
            options (PaginationOptions | Mapping[str, Any] | None): Optional pagination.

        Returns:
            The matching counters ordered by ``_id``.
        """
        query = _native_filter(filter)
        page = PaginationOptions() if options is None else coerce_model(PaginationOptions, options, "pagination")

        with _connection_errors():
            cursor = self._collection.find(query, skip=page.skip, limit=page.limit or 0, sort=_ID_ORDER)
            return [self._to_counter(doc) async for doc in cursor]

    async def compute(self, filter: Filter | None = None) -> int:
        query = _native_filter(filter)
        with _connection_errors():
            return int(await self._collection.count_documents(query))

    async def stream(self, filter: Filter | None = None) -> AsyncIterator[Counter]:
        """
        Yields counters straight from a server-side cursor.

        The cursor is closed when iteration finishes or the generator is closed early.
        """
        query = _native_filter(filter)
        cursor = self._collection.find(query, sort=_ID_ORDER)
        try:
            with _connection_errors():
                async for doc in cursor:
                    yield self._to_counter(doc)
        finally:
            closing = cursor.close()
            if inspect.isawaitable(closing):
                await closing

    async def get_by_id(self, id: CounterId) -> Counter | None:
        oid = self._object_id(id)
        with _connection_errors():
            doc = await self._collection.find_one({"_id": oid})
        return self._to_counter(doc) if doc is not None else None

    async def update(self, id: CounterId, updates: CounterPatch | Mapping[str, Any]) -> int:
        """
        Applies ``$set`` with only the provided fields.

        Returns:
            1 if a document with this id exists, else 0. An empty patch returns 0
            without contacting the server.
        """
        oid = self._object_id(id)
        changes = coerce_model(CounterPatch, updates, "counter update").provided()
        if not changes:
            return 0

        fields = {_FIELD_NAMES[name]: value for name, value in changes.items()}
        with _connection_errors():
            result = await self._collection.update_one({"_id": oid}, {"$set": fields})
        return int(result.matched_count)

    async def delete(self, id: CounterId) -> int:
        oid = self._object_id(id)
        with _connection_errors():
            result = await self._collection.delete_one({"_id": oid})
        return int(result.deleted_count)

    async def delete_all(self) -> int:
        """
        Deletes every document in the collection. Intended for tests and local development.
        """
        with _connection_errors():
            result = await self._collection.delete_many({})
        logger.info("Deleted %d counters from %s", result.deleted_count, self._config.collection_name)
        return int(result.deleted_count)

    async def close(self) -> None:
        """
        Closes the Motor client if this store owns it.

        Returns:
            None
        """
        if self._owns_client:
            self._client.close()
            logger.info("Closed MongoDB client for %s.%s", self._config.db_name, self._config.collection_name)
