import math
from datetime import datetime, timedelta, timezone

import pytest
from bson import ObjectId

from dracula import CounterInput, CounterPatch, DocumentId, PaginationOptions, RowId, ValidationFailed
from dracula.schemas import coerce_model, normalize_timestamp


@pytest.mark.parametrize(
    "bad_input",
    [
        {"count": math.nan, "meta": {}},
        {"count": math.inf, "meta": {}},
        {"count": -math.inf, "meta": {}},
        {"count": True, "meta": {}},
        {"count": "1", "meta": {}},
        {"meta": {}},
        {"count": 1, "meta": None},
        {"count": 1, "meta": ["a"]},
        {"count": 1},
        {"count": 1, "meta": {}, "createdAt": "not a date"},
        {"count": 1, "meta": {}, "createdAt": None},
    ],
)
def test_counter_input_rejects_malformed_values(bad_input):
    with pytest.raises(ValidationFailed) as excinfo:
        coerce_model(CounterInput, bad_input, "counter")

    assert excinfo.value.code.value == "E_VALIDATION"
    assert excinfo.value.cause is not None


@pytest.mark.parametrize("count", [2**63 - 1, -(2**63), 1e300])
def test_counter_input_accepts_the_int64_range(count):
    assert coerce_model(CounterInput, {"count": count, "meta": {}}, "counter").count == count


@pytest.mark.parametrize("count", [2**63, -(2**63) - 1, 2**70, 10**400])
def test_counts_outside_int64_are_rejected(count):
    with pytest.raises(ValidationFailed, match="64-bit"):
        coerce_model(CounterInput, {"count": count, "meta": {}}, "counter")
    with pytest.raises(ValidationFailed, match="64-bit"):
        coerce_model(CounterPatch, {"count": count}, "counter update")


@pytest.mark.parametrize("not_a_mapping", [None, 1, "counter", ["count", 1]])
def test_coerce_model_requires_a_mapping(not_a_mapping):
    with pytest.raises(ValidationFailed, match="counter must be a non-null mapping"):
        coerce_model(CounterInput, not_a_mapping, "counter")


def test_counter_input_accepts_aliases_and_ignores_unknown_keys():
    data = coerce_model(
        CounterInput,
        {"count": 2.5, "meta": {"a": {"b": [1, 2]}}, "createdAt": "2024-01-01T10:00:00.123456Z", "extra": 1},
        "counter",
    )

    assert data.count == 2.5
    assert data.meta == {"a": {"b": [1, 2]}}
    assert data.created_at == datetime(2024, 1, 1, 10, 0, 0, 123000, tzinfo=timezone.utc)


def test_coerce_model_returns_instances_unchanged():
    data = CounterInput(count=1, meta={})

    assert coerce_model(CounterInput, data, "counter") is data


def test_normalize_timestamp():
    naive = datetime(2024, 1, 1, 12, 30, 0, 999999)
    offset = datetime(2024, 1, 1, 14, 30, tzinfo=timezone(timedelta(hours=2)))

    assert normalize_timestamp(naive) == datetime(2024, 1, 1, 12, 30, 0, 999000, tzinfo=timezone.utc)
    assert normalize_timestamp(offset) == datetime(2024, 1, 1, 12, 30, tzinfo=timezone.utc)
    assert normalize_timestamp(offset).tzinfo is timezone.utc


def test_patch_reports_only_provided_fields():
    assert coerce_model(CounterPatch, {}, "counter update").provided() == {}
    assert coerce_model(CounterPatch, {"unknown": 1}, "counter update").provided() == {}
    assert coerce_model(CounterPatch, {"count": 3}, "counter update").provided() == {"count": 3}

    patch = coerce_model(CounterPatch, {"meta": {"x": 1}, "createdAt": "2024-01-01T00:00:00Z"}, "counter update")
    assert patch.provided() == {
        "meta": {"x": 1},
        "created_at": datetime(2024, 1, 1, tzinfo=timezone.utc),
    }


@pytest.mark.parametrize(
    "bad_patch",
    [{"count": None}, {"meta": None}, {"createdAt": None}, {"count": math.nan}, {"meta": "text"}],
)
def test_patch_rejects_null_and_malformed_values(bad_patch):
    with pytest.raises(ValidationFailed):
        coerce_model(CounterPatch, bad_patch, "counter update")


def test_pagination_slicing():
    items = list(range(10))

    assert PaginationOptions().apply(items) == items
    assert PaginationOptions(skip=3).apply(items) == list(range(3, 10))
    assert PaginationOptions(limit=4).apply(items) == [0, 1, 2, 3]
    assert PaginationOptions(skip=8, limit=5).apply(items) == [8, 9]
    assert PaginationOptions(skip=20, limit=5).apply(items) == []


@pytest.mark.parametrize("bad_options", [{"limit": 0}, {"limit": -1}, {"skip": -1}, {"limit": "5"}, {"skip": 1.5}])
def test_pagination_rejects_invalid_options(bad_options):
    with pytest.raises(ValidationFailed):
        coerce_model(PaginationOptions, bad_options, "pagination")


def test_document_id_parse():
    oid = ObjectId()

    assert DocumentId.parse(str(oid)) == DocumentId(value=oid)
    assert DocumentId.parse(oid).value == oid
    assert str(DocumentId(value=oid)) == str(oid)

    with pytest.raises(ValidationFailed):
        DocumentId.parse("not-an-object-id")


def test_ids_are_hashable_and_distinct_variants():
    assert RowId(value=1) == RowId(value=1)
    assert len({RowId(value=1), RowId(value=1), RowId(value=2)}) == 2
    assert str(RowId(value=7)) == "7"

    with pytest.raises(ValueError):
        RowId(value="1")
