from typing import Any

from dracula.constants import ErrorCode


class DraculaError(Exception):
    """
    Represents custom exceptions for the Dracula counter library.

    Every error carries a stable ``code`` that callers can branch on, a human
    readable message and, optionally, the underlying ``cause`` it wraps. The
    cause is also chained with ``raise ... from`` wherever one exists.

    Attributes:
        code (ErrorCode): Machine-checkable kind of the error.
        message (str): Human readable description.
        cause (Any): The wrapped underlying error, if any.
    """

    code: ErrorCode = ErrorCode.INTERNAL

    def __init__(self, message: str, cause: Any = None) -> None:
        super().__init__(message)
        self.message = message
        self.cause = cause

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.code.value, "message": self.message}


class ValidationFailed(DraculaError):
    """
    Raised when a counter input fails structural checks.

    Always raised before any I/O is attempted, so a rejected write is never
    partially applied.
    """

    code = ErrorCode.VALIDATION


class StoreConnectionError(DraculaError):
    """
    Raised when the backing store is unreachable or no connection string was given.
    """

    code = ErrorCode.CONNECTION


class ConfigError(DraculaError):
    """
    Raised when required configuration (database, collection or table name) is
    missing or malformed.
    """

    code = ErrorCode.CONFIG


class NotFoundError(DraculaError):
    """
    Reserved for lookups that must distinguish "absent" from "empty". Store
    lookups by id report absence by returning ``None`` instead.
    """

    code = ErrorCode.NOT_FOUND


class InternalError(DraculaError):
    """
    Raised when an operation hits an unsupported code path, such as a filter
    construct the in-process evaluator cannot translate or SQL the in-memory row
    database does not understand.
    """

    code = ErrorCode.INTERNAL
