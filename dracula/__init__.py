import importlib.metadata

try:
    __version__ = importlib.metadata.version("dracula")
except importlib.metadata.PackageNotFoundError:
    __version__ = "unknown"

from dracula.backends.base import CounterStore
from dracula.backends.inmemory import InMemoryRowDatabase
from dracula.backends.sqlite import AiosqliteDatabase, SQLiteCounterStore
from dracula.client import Dracula
from dracula.config import CollectionConfig, DraculaSettings
from dracula.constants import Engine, ErrorCode
from dracula.exceptions import (
    ConfigError,
    DraculaError,
    InternalError,
    NotFoundError,
    StoreConnectionError,
    ValidationFailed,
)
from dracula.factory import create_dracula_from_env
from dracula.filters import compile_filter, matches
from dracula.schemas import (
    Counter,
    CounterId,
    CounterInput,
    CounterPatch,
    CreateResult,
    DocumentId,
    PaginationOptions,
    RowId,
)
from dracula.types import Filter, RowDatabase

__all__ = [
    "Dracula",
    "create_dracula_from_env",
    "DraculaSettings",
    "CollectionConfig",
    "CounterStore",
    "SQLiteCounterStore",
    "AiosqliteDatabase",
    "InMemoryRowDatabase",
    "RowDatabase",
    "Counter",
    "CounterInput",
    "CounterPatch",
    "CounterId",
    "DocumentId",
    "RowId",
    "CreateResult",
    "PaginationOptions",
    "Filter",
    "compile_filter",
    "matches",
    "Engine",
    "ErrorCode",
    "DraculaError",
    "ValidationFailed",
    "StoreConnectionError",
    "ConfigError",
    "NotFoundError",
    "InternalError",
]
