"""
Environment-driven configuration for Dracula.

Settings are read from ``DRACULA_``-prefixed environment variables using
pydantic-settings, e.g. ``DRACULA_DB_ENGINE=sqlite`` or ``DRACULA_MONGO_CONNECTION``.
"""

from typing import Any

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from dracula.constants import DEFAULT_TABLE_NAME, Engine
from dracula.exceptions import ConfigError


class CollectionConfig(BaseModel):
    """
    Names the MongoDB database and collection that hold the counters.

    Attributes:
        db_name (str): Database name.
        collection_name (str): Collection name.
    """

    db_name: str
    collection_name: str


class DraculaSettings(BaseSettings):
    """
    Dracula settings with environment variable support.

    Only the variables needed by the selected engine are required, and they are
    checked when a store is built rather than when the settings are loaded.
    """

    model_config = SettingsConfigDict(env_prefix="DRACULA_", extra="ignore")

    db_engine: Engine = Field(default=Engine.MONGO, description="Backing store: 'mongo' or 'sqlite'")
    mongo_connection: str | None = Field(default=None, description="MongoDB connection string")
    mongo_database: str | None = Field(default=None, description="MongoDB database name")
    mongo_collection: str | None = Field(default=None, description="MongoDB collection name")
    sqlite_file: str | None = Field(default=None, description="SQLite file path; unset keeps rows in memory")
    sqlite_table: str = Field(default=DEFAULT_TABLE_NAME, description="SQLite table name")

    @field_validator("db_engine", mode="before")
    @classmethod
    def _resolve_engine(cls, value: Any) -> Engine:
        # Anything other than "sqlite" selects MongoDB.
        if isinstance(value, Engine):
            return value
        if isinstance(value, str) and value.strip().lower() == Engine.SQLITE.value:
            return Engine.SQLITE
        return Engine.MONGO

    def collection_config(self) -> CollectionConfig:
        """
        Builds the MongoDB collection config from the settings.

        Raises:
            ConfigError: If the database or collection name is missing.
        """
        if not self.mongo_database:
            raise ConfigError("DRACULA_MONGO_DATABASE is required")
        if not self.mongo_collection:
            raise ConfigError("DRACULA_MONGO_COLLECTION is required")
        return CollectionConfig(db_name=self.mongo_database, collection_name=self.mongo_collection)
