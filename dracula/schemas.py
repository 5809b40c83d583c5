import math
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Annotated, Any, TypeVar, Union

from bson import ObjectId
from bson.errors import InvalidId
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StrictFloat,
    StrictInt,
    ValidationError,
    ValidationInfo,
    field_validator,
)

from dracula.exceptions import ValidationFailed

Number = Union[StrictInt, StrictFloat]

INT64_MIN = -(2**63)
INT64_MAX = 2**63 - 1
ModelT = TypeVar("ModelT", bound=BaseModel)


def normalize_timestamp(value: datetime) -> datetime:
    """
    Converts a timestamp to timezone-aware UTC truncated to millisecond precision.

    Naive datetimes are assumed to already be in UTC. Millisecond precision is what
    BSON dates hold, so normalizing on input makes every backend round-trip the
    value exactly.

    Args:
        value (datetime): The timestamp to normalize.

    Returns:
        The normalized timestamp.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    else:
        value = value.astimezone(timezone.utc)
    return value.replace(microsecond=value.microsecond // 1000 * 1000)


def utc_now() -> datetime:
    return normalize_timestamp(datetime.now(timezone.utc))


def _check_finite(value: int | float) -> int | float:
    # SQLite INTEGER and BSON int64 are both signed 64-bit
    if isinstance(value, int):
        if not INT64_MIN <= value <= INT64_MAX:
            raise ValueError("count must fit in a signed 64-bit integer")
        return value
    if not math.isfinite(value):
        raise ValueError("count must be a finite number")
    return value


class DocumentId(BaseModel):
    """
    Identifier of a counter held by the document (MongoDB) backend.

    Attributes:
        value (ObjectId): The native ``_id`` of the document.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    value: ObjectId

    @classmethod
    def parse(cls, raw: str | ObjectId) -> "DocumentId":
        """
        Builds a DocumentId from a 24-character hex string or an ObjectId.

        Raises:
            ValidationFailed: If ``raw`` is not a valid ObjectId representation.
        """
        try:
            return cls(value=ObjectId(raw))
        except (InvalidId, TypeError) as e:
            raise ValidationFailed(f"Invalid document id: {raw!r}", cause=e) from e

    def __str__(self) -> str:
        return str(self.value)


class RowId(BaseModel):
    """
    Identifier of a counter held by the row (SQLite) backend.

    Attributes:
        value (int): The auto-incremented primary key of the row.
    """

    model_config = ConfigDict(frozen=True)

    value: StrictInt

    def __str__(self) -> str:
        return str(self.value)


CounterId = Union[DocumentId, RowId]


class Counter(BaseModel):
    """
    Represents a persisted counter record.

    Attributes:
        id (CounterId): Store-assigned identifier. Opaque to callers; pass it back to the same store.
        count (int | float): The finite numeric value of the counter.
        created_at (datetime): UTC creation timestamp, always populated on read.
        meta (dict[str, Any]): Free-form, arbitrarily nested metadata queried by filters.
    """

    model_config = ConfigDict(populate_by_name=True)

    id: CounterId
    count: Number
    created_at: datetime = Field(alias="createdAt")
    meta: dict[str, Any]


class CounterInput(BaseModel):
    """
    Shape expected from callers when creating counters.

    Attributes:
        count (int | float): Must be a finite number; bools are rejected.
        meta (dict[str, Any]): Must be a non-null mapping.
        created_at (datetime | None): Optional creation time. Defaults to "now" at creation.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    count: Number
    meta: dict[str, Any]
    created_at: datetime | None = Field(default=None, alias="createdAt")

    @field_validator("count")
    @classmethod
    def _count_is_finite(cls, value: int | float) -> int | float:
        return _check_finite(value)

    @field_validator("created_at", mode="before")
    @classmethod
    def _reject_null_created_at(cls, value: Any) -> Any:
        # omit the key to default to "now"
        if value is None:
            raise ValueError("createdAt, if provided, must be a timestamp")
        return value

    @field_validator("created_at")
    @classmethod
    def _normalize_created_at(cls, value: datetime | None) -> datetime | None:
        return normalize_timestamp(value) if value is not None else None


class CounterPatch(BaseModel):
    """
    Partial counter input used by ``update``.

    Only fields explicitly provided are applied; unknown keys are ignored and an
    explicit ``None`` is rejected. ``meta`` is replaced wholesale, not merged.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    count: Number | None = None
    meta: dict[str, Any] | None = None
    created_at: datetime | None = Field(default=None, alias="createdAt")

    @field_validator("count", "meta", "created_at", mode="before")
    @classmethod
    def _reject_null(cls, value: Any, info: ValidationInfo) -> Any:
        if value is None:
            raise ValueError(f"{info.field_name} cannot be null")
        return value

    @field_validator("count")
    @classmethod
    def _count_is_finite(cls, value: int | float) -> int | float:
        return _check_finite(value)

    @field_validator("created_at")
    @classmethod
    def _normalize_created_at(cls, value: datetime) -> datetime:
        return normalize_timestamp(value)

    def provided(self) -> dict[str, Any]:
        """Returns the fields the caller actually set, keyed by field name."""
        return {name: getattr(self, name) for name in self.model_fields_set}


class PaginationOptions(BaseModel):
    """
    Options for paginating query results.

    ``limit=0`` is refused with ValidationFailed rather than read as "no limit";
    omit ``limit`` (or pass ``None``) to return every match.

    Attributes:
        limit (int | None): Maximum number of records to return, at least 1. ``None`` returns all.
        skip (int): Number of records dropped from the front before ``limit`` applies.
    """

    limit: Annotated[StrictInt, Field(ge=1)] | None = None
    skip: Annotated[StrictInt, Field(ge=0)] = 0

    def apply(self, items: list[Any]) -> list[Any]:
        end = None if self.limit is None else self.skip + self.limit
        return items[self.skip : end]


class CreateResult(BaseModel):
    id: CounterId


class RunResult(BaseModel):
    """
    Outcome of a write statement executed against a row database.

    Attributes:
        last_row_id (int | None): Primary key assigned by the last INSERT, if any.
        changes (int): Number of rows the statement inserted, updated or deleted.
    """

    last_row_id: int | None = None
    changes: int = 0


def coerce_model(model_cls: type[ModelT], value: ModelT | Mapping[str, Any] | None, what: str) -> ModelT:
    """
    Validates ``value`` into ``model_cls``, translating pydantic failures into ValidationFailed.

    Args:
        model_cls (type[BaseModel]): The model to validate against.
        value: Either an instance of ``model_cls`` (returned as is) or a mapping of its fields.
        what (str): Name used in error messages.

    Returns:
        The validated model instance.

    Raises:
        ValidationFailed: If ``value`` is not a mapping or fails validation.
    """
    if isinstance(value, model_cls):
        return value
    if not isinstance(value, Mapping):
        raise ValidationFailed(f"{what} must be a non-null mapping")
    try:
        return model_cls.model_validate(dict(value))
    except ValidationError as e:
        raise ValidationFailed(f"Invalid {what}: {e}", cause=e) from e
