from datetime import datetime, timedelta, timezone

import pytest

from dracula import InternalError, compile_filter, matches
from dracula.constants import QueryOperator
from dracula.filters import MISSING, CompiledFilter, Literal, Operator, Unsupported, resolve_path

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def record(count=1, created_at=NOW, **meta):
    return {"count": count, "createdAt": created_at, "meta": meta}


def test_range_operators_are_and_ed():
    records = [record(score=s) for s in (5, 10, 15)]

    hits = [r for r in records if matches(r, {"meta.score": {"$gt": 5, "$lt": 15}})]

    assert [r["meta"]["score"] for r in hits] == [10]


def test_in_matches_any_listed_value():
    records = [record(tag=t) for t in ("a", "b", "c")]

    hits = [r["meta"]["tag"] for r in records if matches(r, {"meta.tag": {"$in": ["a", "c"]}})]

    assert hits == ["a", "c"]


def test_or_composes_with_remaining_conditions():
    records = [
        record(count=1, type="shot", hole=1),
        record(count=1, type="putt", hole=2),
        record(count=1, type="putt", hole=5),
        record(count=2, type="shot", hole=3),
    ]
    f = {"count": 1, "$or": [{"meta.type": "shot"}, {"meta.hole": {"$in": [2, 3]}}]}

    hits = [r["meta"]["hole"] for r in records if matches(r, f)]

    # hole 3 satisfies the $or but not count == 1
    assert hits == [1, 2]


def test_or_fails_when_no_branch_matches():
    assert not matches(record(type="putt"), {"$or": [{"meta.type": "shot"}, {"meta.type": "drive"}]})


def test_regex_matches_substrings():
    assert matches(record(note="the alpha release"), {"meta.note": {"$regex": "alpha"}})
    assert not matches(record(note="Alpha"), {"meta.note": {"$regex": "alpha"}})
    assert not matches(record(note=42), {"meta.note": {"$regex": "42"}})


@pytest.mark.parametrize("empty", [{}, None])
def test_empty_filter_matches_everything(empty):
    assert matches(record(), empty)
    assert matches({}, empty)


def test_unknown_operator_fails_closed():
    records = [record(score=s) for s in (1, 2, 3)]

    assert not any(matches(r, {"meta.score": {"$foo": 1}}) for r in records)
    # other operators in the same condition don't rescue it
    assert not any(matches(r, {"meta.score": {"$gte": 0, "$foo": 1}}) for r in records)


def test_literal_equality_on_dotted_and_root_paths():
    r = record(count=3, status="open", nested={"deep": True})

    assert matches(r, {"count": 3})
    assert matches(r, {"count": 3.0})
    assert matches(r, {"meta.status": "open", "meta.nested.deep": True})
    assert not matches(r, {"meta.status": "closed"})


def test_nested_mapping_is_a_literal():
    r = record(score=10)

    assert matches(r, {"meta": {"score": 10}})
    # a mapping without operator keys is compared whole, so extra fields break equality
    assert not matches(record(score=10, tag="a"), {"meta": {"score": 10}})


def test_bools_only_equal_bools():
    assert not matches(record(flag=1), {"meta.flag": True})
    assert not matches(record(flag=True), {"meta.flag": 1})
    assert matches(record(flag=True), {"meta.flag": True})
    assert not matches(record(flag=True), {"meta.flag": {"$gt": 0}})


def test_missing_field_semantics():
    # a None literal matches both null and absent fields
    assert matches(record(), {"meta.absent": None})
    assert matches(record(absent=None), {"meta.absent": None})
    assert matches(record(), {"meta.absent": {"$in": [None, 1]}})
    assert not matches(record(), {"meta.absent": {"$nin": [None]}})
    assert not matches(record(absent=0), {"meta.absent": None})

    assert not matches(record(), {"meta.absent": 0})
    assert not matches(record(), {"meta.absent": {"$gt": 0}})
    assert not matches(record(absent=None), {"meta.absent": {"$lte": 0}})
    assert matches(record(), {"meta.absent": {"$nin": [1, 2]}})


def test_comparisons_across_type_families_never_match():
    assert not matches(record(score="10"), {"meta.score": {"$gt": 5}})
    assert not matches(record(score=None), {"meta.score": {"$lt": 5}})
    assert matches(record(name="bob"), {"meta.name": {"$gte": "alice"}})


def test_datetime_comparisons():
    r = record(created_at=NOW)

    assert matches(r, {"createdAt": {"$gte": NOW - timedelta(days=1), "$lte": NOW}})
    assert not matches(r, {"createdAt": {"$gt": NOW}})
    assert not matches(r, {"createdAt": {"$gt": NOW.replace(tzinfo=None)}})


def test_in_and_nin_require_a_list_operand():
    assert not matches(record(tag="a"), {"meta.tag": {"$in": "abc"}})
    assert not matches(record(tag="z"), {"meta.tag": {"$nin": "abc"}})
    assert matches(record(tag="z"), {"meta.tag": {"$nin": ["a", "b"]}})


def test_array_fields_match_whole_array_or_any_element():
    r = record(tags=["x", "y"], scores=[3, 12])

    assert matches(r, {"meta.tags": "x"})
    assert matches(r, {"meta.tags": ["x", "y"]})
    assert not matches(r, {"meta.tags": ["y", "x"]})
    assert not matches(r, {"meta.tags": "z"})

    assert matches(r, {"meta.tags": {"$in": ["x"]}})
    assert matches(r, {"meta.tags": {"$in": [["x", "y"]]}})
    assert not matches(r, {"meta.tags": {"$in": ["z"]}})

    # one listed element is enough to exclude the record
    assert not matches(r, {"meta.tags": {"$nin": ["y"]}})
    assert matches(r, {"meta.tags": {"$nin": ["z"]}})

    assert matches(r, {"meta.scores": {"$gt": 10}})
    assert not matches(r, {"meta.scores": {"$gt": 20}})
    assert matches(r, {"meta.tags": {"$regex": "^y"}})


def test_in_uses_deep_equality():
    assert matches(record(pos=[1, 2]), {"meta.pos": {"$in": [[1, 2], [3, 4]]}})
    assert not matches(record(pos=[2, 1]), {"meta.pos": {"$in": [[1, 2]]}})


@pytest.mark.parametrize(
    "bad_filter",
    [
        ["meta.tag", "a"],
        "meta.tag",
        {"$or": {"meta.tag": "a"}},
        {"$and": [{"meta.tag": "a"}]},
        {"$nor": []},
        {"meta.note": {"$regex": "("}},
        {"$or": [{"meta.tag": "a"}, "not a filter"]},
    ],
)
def test_structural_errors_raise_internal_error(bad_filter):
    with pytest.raises(InternalError) as excinfo:
        compile_filter(bad_filter)

    assert excinfo.value.code.value == "E_INTERNAL"


def test_compile_filter_produces_tagged_terms():
    compiled = compile_filter({"meta.score": {"$gte": 1, "$bogus": 2}, "count": 4})

    score, count = compiled.conditions
    assert score.path == ("meta", "score")
    assert score.terms == (Operator(QueryOperator.GTE, 1), Unsupported("$bogus"))
    assert count.terms == (Literal(4),)


def test_compiled_filter_is_reusable_and_passes_through():
    compiled = compile_filter({"meta.tag": "a"})

    assert compile_filter(compiled) is compiled
    assert compiled.matches(record(tag="a"))
    assert not compiled.matches(record(tag="b"))
    assert CompiledFilter().matches(record())


def test_resolve_path():
    r = record(a={"b": {"c": 1}}, s="text")

    assert resolve_path(r, ("meta", "a", "b", "c")) == 1
    assert resolve_path(r, ("meta", "a", "x")) is MISSING
    assert resolve_path(r, ("meta", "s", "length")) is MISSING
