import logging

from dracula.backends.base import CounterStore
from dracula.backends.inmemory import InMemoryRowDatabase
from dracula.backends.sqlite import AiosqliteDatabase, SQLiteCounterStore
from dracula.client import Dracula
from dracula.config import DraculaSettings
from dracula.constants import Engine
from dracula.exceptions import ConfigError, StoreConnectionError
from dracula.types import RowDatabase

logger = logging.getLogger("dracula.factory")


async def _sqlite_store(settings: DraculaSettings) -> CounterStore:
    db: RowDatabase
    if settings.sqlite_file:
        file_db = AiosqliteDatabase(settings.sqlite_file)
        await file_db.connect()
        db = file_db
    else:
        db = InMemoryRowDatabase()
    try:
        return SQLiteCounterStore(db, settings.sqlite_table, owns_database=True)
    except ConfigError:
        await db.close()
        raise


async def _mongo_store(settings: DraculaSettings) -> CounterStore:
    from dracula.backends.mongodb import MongoCounterStore, create_mongo_client, ping_mongo

    config = settings.collection_config()
    client = create_mongo_client(settings.mongo_connection)
    try:
        await ping_mongo(client)
    except StoreConnectionError:
        client.close()
        raise
    return MongoCounterStore(client, config, owns_client=True)


async def create_dracula_from_env(settings: DraculaSettings | None = None) -> Dracula:
    """
    Builds a Dracula instance from ``DRACULA_*`` environment variables.

    ``DRACULA_DB_ENGINE=sqlite`` selects the SQLite store, backed by the file named in
    ``DRACULA_SQLITE_FILE`` or kept in memory when that is unset. Any other value
    selects MongoDB, which requires ``DRACULA_MONGO_DATABASE``,
    ``DRACULA_MONGO_COLLECTION`` and a reachable ``DRACULA_MONGO_CONNECTION``.

    Args:
        settings (DraculaSettings | None): Explicit settings; read from the environment when omitted.

    Returns:
        A Dracula instance that owns its store connection. Close it when done.

    Raises:
        ConfigError: If a required database, collection or table name is missing or invalid.
        StoreConnectionError: If the MongoDB connection string is missing or the server is unreachable.
    """
    settings = settings or DraculaSettings()

    if settings.db_engine is Engine.SQLITE:
        store = await _sqlite_store(settings)
    else:
        store = await _mongo_store(settings)

    logger.info("Created Dracula with %s", type(store).__name__)
    return Dracula(store)
