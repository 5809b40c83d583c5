from enum import Enum

DEFAULT_TABLE_NAME = "counters"
STREAM_BATCH_SIZE = 500


class Engine(str, Enum):
    """
    Represents the backing stores a Dracula instance can be built on.

    MONGO is the default and forwards filters to MongoDB natively. SQLITE stores
    rows in a SQLite-style table and evaluates filters in process.
    """

    MONGO = "mongo"
    SQLITE = "sqlite"


class ErrorCode(str, Enum):
    """
    Stable, machine-checkable codes carried by every DraculaError.
    """

    VALIDATION = "E_VALIDATION"
    CONNECTION = "E_CONNECTION"
    CONFIG = "E_CONFIG"
    NOT_FOUND = "E_NOT_FOUND"
    INTERNAL = "E_INTERNAL"


class QueryOperator(str, Enum):
    """
    Represents the filter operators understood by the in-process evaluator.

    The values are the operator keys as they appear inside a filter condition,
    which are the same keys MongoDB accepts natively.
    """

    GT = "$gt"
    GTE = "$gte"
    LT = "$lt"
    LTE = "$lte"
    IN = "$in"
    NIN = "$nin"
    REGEX = "$regex"


OR_KEY = "$or"
OPERATOR_SIGIL = "$"
