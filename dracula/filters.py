"""
In-process evaluation of MongoDB-style counter filters.

A filter maps dotted field paths (resolved from the record root, e.g. ``meta.status``)
to either a literal, matched by deep equality, or an operator mapping such as
``{"$gte": 10, "$lt": 20}``. A top-level ``$or`` holds sub-filters of which at least
one must match. Everything else is AND-ed. As in MongoDB, a field holding an array
matches when the array itself or any of its elements satisfies the condition.

Filters are parsed once into tagged terms (``Literal``, ``Operator``, ``Unsupported``)
so that evaluating a record never re-inspects operator keys.

Usage::

    from dracula.filters import compile_filter, matches

    matches({"meta": {"tag": "a"}}, {"meta.tag": {"$in": ["a", "c"]}})  # True

    compiled = compile_filter({"$or": [{"meta.type": "shot"}, {"meta.hole": {"$in": [2, 3]}}]})
    hits = [r for r in records if compiled.matches(r)]
"""

import logging
import operator
import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Union

from dracula.constants import OPERATOR_SIGIL, OR_KEY, QueryOperator
from dracula.exceptions import InternalError
from dracula.types import Filter

logger = logging.getLogger("dracula.filters")


class _Missing:
    """Marker for a path that does not resolve. Only a ``None`` literal matches it."""

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING: Any = _Missing()


def resolve_path(record: Mapping[str, Any], path: tuple[str, ...]) -> Any:
    """
    Descends ``path`` through nested mappings of ``record``.

    Args:
        record (Mapping[str, Any]): The record to read from.
        path (tuple[str, ...]): Path segments, e.g. ``("meta", "status")``.

    Returns:
        The value at ``path``, or ``MISSING`` when an intermediate value is absent or
        not a mapping, or the last segment is absent.
    """
    current: Any = record
    for segment in path:
        if not isinstance(current, Mapping) or segment not in current:
            return MISSING
        current = current[segment]
    return current


def _is_sequence(value: Any) -> bool:
    return isinstance(value, (list, tuple))


def values_equal(actual: Any, expected: Any) -> bool:
    """
    Deep value equality with BSON-like typing: bools only equal bools, ``1 == 1.0``,
    mapping key order is irrelevant and sequence order matters. A missing field
    equals ``None``, as it does in MongoDB queries.
    """
    if actual is MISSING:
        return expected is None
    if expected is MISSING:
        return False
    if isinstance(actual, bool) or isinstance(expected, bool):
        return isinstance(actual, bool) and isinstance(expected, bool) and actual == expected
    if isinstance(actual, Mapping) or isinstance(expected, Mapping):
        if not (isinstance(actual, Mapping) and isinstance(expected, Mapping)):
            return False
        if actual.keys() != expected.keys():
            return False
        return all(values_equal(actual[key], expected[key]) for key in actual)
    if _is_sequence(actual) or _is_sequence(expected):
        if not (_is_sequence(actual) and _is_sequence(expected)) or len(actual) != len(expected):
            return False
        return all(values_equal(a, e) for a, e in zip(actual, expected))
    return bool(actual == expected)


def _ordering_family(value: Any) -> str | None:
    if isinstance(value, bool):
        return "bool"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, datetime):
        return "datetime"
    return None


def _ordered(compare: Callable[[Any, Any], bool]) -> Callable[[Any, Any], bool]:
    def evaluate(actual: Any, operand: Any) -> bool:
        family = _ordering_family(actual)
        if family is None or family != _ordering_family(operand):
            return False
        try:
            return bool(compare(actual, operand))
        except TypeError:
            # naive vs aware datetimes
            return False

    return evaluate


def _in(actual: Any, operand: Any) -> bool:
    if not _is_sequence(operand):
        return False
    return any(values_equal(actual, candidate) for candidate in operand)


def _regex(actual: Any, operand: Any) -> bool:
    if not isinstance(operand, re.Pattern) or not isinstance(actual, str):
        return False
    return operand.search(actual) is not None


_OPERATORS: dict[QueryOperator, Callable[[Any, Any], bool]] = {
    QueryOperator.GT: _ordered(operator.gt),
    QueryOperator.GTE: _ordered(operator.ge),
    QueryOperator.LT: _ordered(operator.lt),
    QueryOperator.LTE: _ordered(operator.le),
    QueryOperator.IN: _in,
    QueryOperator.REGEX: _regex,
}


def _candidates(actual: Any) -> tuple[Any, ...]:
    """
    Values a condition is tested against: the field itself and, for an array
    field, each of its elements.
    """
    if _is_sequence(actual):
        return (actual, *actual)
    return (actual,)


@dataclass(frozen=True)
class Literal:
    """Matches when the field value, or any element of an array field, deep-equals ``value``."""

    value: Any

    def evaluate(self, actual: Any) -> bool:
        return any(values_equal(candidate, self.value) for candidate in _candidates(actual))


@dataclass(frozen=True)
class Operator:
    """
    Matches when the ``kind`` operator holds between the field value and ``operand``.

    Array fields match when the operator holds for the whole array or any element.
    ``$nin`` is the negation of ``$in`` over the same candidates, so an array field
    fails it as soon as one element is listed.
    """

    kind: QueryOperator
    operand: Any

    def evaluate(self, actual: Any) -> bool:
        if self.kind is QueryOperator.NIN:
            if not _is_sequence(self.operand):
                return False
            return not any(_in(candidate, self.operand) for candidate in _candidates(actual))
        compare = _OPERATORS[self.kind]
        return any(compare(candidate, self.operand) for candidate in _candidates(actual))


@dataclass(frozen=True)
class Unsupported:
    """An operator the evaluator does not know. Never matches."""

    name: str

    def evaluate(self, actual: Any) -> bool:
        return False


Term = Union[Literal, Operator, Unsupported]


@dataclass(frozen=True)
class Condition:
    """All ``terms`` must hold for the value found at ``path``."""

    path: tuple[str, ...]
    terms: tuple[Term, ...]

    def matches(self, record: Mapping[str, Any]) -> bool:
        actual = resolve_path(record, self.path)
        return all(term.evaluate(actual) for term in self.terms)


@dataclass(frozen=True)
class CompiledFilter:
    """
    A parsed filter: ``conditions`` are AND-ed, and when ``any_of`` is non-empty at
    least one of its sub-filters must also match.
    """

    conditions: tuple[Condition, ...] = ()
    any_of: tuple["CompiledFilter", ...] = ()

    def matches(self, record: Mapping[str, Any]) -> bool:
        for condition in self.conditions:
            if not condition.matches(record):
                return False
        if self.any_of:
            return any(sub.matches(record) for sub in self.any_of)
        return True


def _compile_regex(pattern: str) -> re.Pattern[str]:
    try:
        return re.compile(pattern)
    except re.error as e:
        raise InternalError(f"Invalid $regex pattern {pattern!r}: {e}", cause=e) from e


def _is_operator_key(key: Any) -> bool:
    return isinstance(key, str) and key.startswith(OPERATOR_SIGIL)


def _parse_terms(condition: Any) -> tuple[Term, ...]:
    if not (isinstance(condition, Mapping) and any(_is_operator_key(key) for key in condition)):
        return (Literal(condition),)

    terms: list[Term] = []
    for key, operand in condition.items():
        try:
            kind = QueryOperator(key)
        except ValueError:
            logger.debug("Unsupported filter operator %r never matches", key)
            terms.append(Unsupported(str(key)))
            continue
        if kind is QueryOperator.REGEX and isinstance(operand, str):
            operand = _compile_regex(operand)
        terms.append(Operator(kind, operand))
    return tuple(terms)


def _parse_any_of(branches: Any) -> tuple[CompiledFilter, ...]:
    if not _is_sequence(branches):
        raise InternalError(f"{OR_KEY} must hold a list of filters, got {type(branches).__name__}")
    return tuple(compile_filter(branch) for branch in branches)


def compile_filter(filter: Filter | CompiledFilter | None) -> CompiledFilter:
    """
    Parses a filter mapping into a reusable CompiledFilter.

    ``None`` and ``{}`` both compile to a filter matching every record. A
    CompiledFilter is returned unchanged.

    Args:
        filter (Mapping[str, Any] | CompiledFilter | None): The filter to parse.

    Returns:
        The compiled filter.

    Raises:
        InternalError: If the filter is not a mapping, ``$or`` is not a list of
            mappings, a top-level key other than ``$or`` starts with ``$``, or a
            ``$regex`` pattern does not compile.
    """
    if filter is None:
        return CompiledFilter()
    if isinstance(filter, CompiledFilter):
        return filter
    if not isinstance(filter, Mapping):
        raise InternalError(f"Filter must be a mapping, got {type(filter).__name__}")

    conditions: list[Condition] = []
    any_of: tuple[CompiledFilter, ...] = ()
    for key, condition in filter.items():
        if key == OR_KEY:
            any_of = _parse_any_of(condition)
        elif not isinstance(key, str):
            raise InternalError(f"Filter keys must be strings, got {key!r}")
        elif key.startswith(OPERATOR_SIGIL):
            raise InternalError(f"Unsupported top-level filter operator: {key}")
        else:
            conditions.append(Condition(tuple(key.split(".")), _parse_terms(condition)))
    return CompiledFilter(tuple(conditions), any_of)


def matches(record: Mapping[str, Any], filter: Filter | CompiledFilter | None) -> bool:
    """
    Decides whether ``record`` satisfies ``filter``.

    Args:
        record (Mapping[str, Any]): The record, e.g. ``{"count": 3, "createdAt": ..., "meta": {...}}``.
        filter: A filter mapping, a CompiledFilter, or ``None``.

    Returns:
        True if the record matches.
    """
    return compile_filter(filter).matches(record)
