"""MongoDB-style queries over in-memory record collections.

Criteria dictionaries are compiled into a small closed set of expression
types, then evaluated against each record. Supported operators:

- comparison: ``$eq``, ``$ne``, ``$gt``, ``$gte``, ``$lt``, ``$lte``
- membership: ``$in``, ``$nin``, ``$all``
- element: ``$exists``, ``$regex`` (with ``$options``)
- logical: ``$and``, ``$or``, ``$nor``

Array fields follow MongoDB semantics: a condition holds when any element
satisfies it (``$ne`` and ``$nin`` hold when no element does). Dotted paths
such as ``"trends.daily"`` walk nested objects.

Unsupported operators raise ``QueryError`` instead of matching nothing.
"""

from __future__ import annotations

import operator
import re
from dataclasses import dataclass
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator


class QueryError(ValueError):
    """Malformed criteria, sort or projection."""


class SearchQuery(BaseModel):
    """Query descriptor: filter, then sort, skip, limit and project."""

    criteria: dict[str, Any] = Field(default_factory=dict)
    sort: dict[str, Literal[1, -1]] = Field(default_factory=dict)
    skip: int = Field(default=0, ge=0)
    limit: int | None = Field(default=None, ge=0)
    projection: dict[str, Literal[0, 1]] | None = None

    model_config = {"extra": "forbid"}

    @field_validator("criteria", "sort", mode="before")
    @classmethod
    def _none_as_empty(cls, value):
        return {} if value is None else value

    @field_validator("skip", mode="before")
    @classmethod
    def _none_as_zero(cls, value):
        return 0 if value is None else value


# ---------------------------------------------------------------------------
# Expression types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class MatchAll:
    pass


@dataclass(frozen=True)
class Equals:
    path: str
    value: Any


@dataclass(frozen=True)
class NotEquals:
    path: str
    value: Any


@dataclass(frozen=True)
class In:
    path: str
    values: tuple


@dataclass(frozen=True)
class NotIn:
    path: str
    values: tuple


@dataclass(frozen=True)
class AllOf:
    path: str
    values: tuple


@dataclass(frozen=True)
class Compare:
    path: str
    op: str
    value: Any


@dataclass(frozen=True)
class Exists:
    path: str
    present: bool


@dataclass(frozen=True)
class Regex:
    path: str
    pattern: re.Pattern


@dataclass(frozen=True)
class And:
    clauses: tuple


@dataclass(frozen=True)
class Or:
    clauses: tuple


@dataclass(frozen=True)
class Nor:
    clauses: tuple


Expression = (
    MatchAll
    | Equals
    | NotEquals
    | In
    | NotIn
    | AllOf
    | Compare
    | Exists
    | Regex
    | And
    | Or
    | Nor
)

_COMPARATORS = {
    "$gt": operator.gt,
    "$gte": operator.ge,
    "$lt": operator.lt,
    "$lte": operator.le,
}
_LOGICAL = {"$and": And, "$or": Or, "$nor": Nor}
_LIST_OPERATORS = {"$in": In, "$nin": NotIn, "$all": AllOf}
_REGEX_FLAGS = {"i": re.IGNORECASE, "m": re.MULTILINE, "s": re.DOTALL, "x": re.VERBOSE}


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


def parse_criteria(criteria: dict | None) -> Expression:
    """Compile a criteria dictionary into an expression.

    Raises:
        QueryError: On unknown operators or malformed operands.
    """
    if not criteria:
        return MatchAll()
    if not isinstance(criteria, dict):
        raise QueryError(f"Criteria must be an object, got {type(criteria).__name__}")

    clauses: list = []
    for key, value in criteria.items():
        if key in _LOGICAL:
            if not isinstance(value, list) or not value:
                raise QueryError(f"{key} expects a non-empty list of criteria")
            for sub in value:
                if not isinstance(sub, dict):
                    raise QueryError(f"{key} entries must be objects")
            clauses.append(_LOGICAL[key](tuple(parse_criteria(sub) for sub in value)))
        elif key.startswith("$"):
            raise QueryError(f"Unsupported operator: {key}")
        else:
            clauses.extend(_parse_field(key, value))

    return clauses[0] if len(clauses) == 1 else And(tuple(clauses))


def _is_operator_object(value: Any) -> bool:
    if not isinstance(value, dict) or not value:
        return False
    keys = [key.startswith("$") for key in value]
    if any(keys) and not all(keys):
        raise QueryError(f"Cannot mix operators and fields in {value!r}")
    return all(keys)


def _parse_field(path: str, value: Any) -> list:
    if not _is_operator_object(value):
        return [Equals(path, value)]

    clauses: list = []
    for op, operand in value.items():
        if op in ("$eq", "$ne"):
            cls = Equals if op == "$eq" else NotEquals
            clauses.append(cls(path, operand))
        elif op in _LIST_OPERATORS:
            if not isinstance(operand, list):
                raise QueryError(f"{op} on '{path}' expects a list")
            clauses.append(_LIST_OPERATORS[op](path, tuple(operand)))
        elif op in _COMPARATORS:
            clauses.append(Compare(path, op, operand))
        elif op == "$exists":
            clauses.append(Exists(path, bool(operand)))
        elif op == "$regex":
            clauses.append(Regex(path, _compile_regex(path, operand, value.get("$options", ""))))
        elif op == "$options":
            if "$regex" not in value:
                raise QueryError(f"$options on '{path}' requires $regex")
        else:
            raise QueryError(f"Unsupported operator: {op}")
    return clauses


def _compile_regex(path: str, pattern: Any, options: Any) -> re.Pattern:
    if not isinstance(pattern, str) or not isinstance(options, str):
        raise QueryError(f"$regex on '{path}' expects string pattern and options")
    flags = 0
    for char in options:
        if char not in _REGEX_FLAGS:
            raise QueryError(f"Unsupported $options flag: {char}")
        flags |= _REGEX_FLAGS[char]
    try:
        return re.compile(pattern, flags)
    except re.error as e:
        raise QueryError(f"Invalid $regex on '{path}': {e}") from e


# ---------------------------------------------------------------------------
# Evaluation
# ---------------------------------------------------------------------------


def _lookup(value: Any, parts: list[str]) -> list:
    """Values reached by following `parts`, fanning out over lists."""
    if not parts:
        return [value]
    if isinstance(value, dict):
        if parts[0] in value:
            return _lookup(value[parts[0]], parts[1:])
        return []
    if isinstance(value, list):
        if parts[0].isdigit():
            index = int(parts[0])
            return _lookup(value[index], parts[1:]) if index < len(value) else []
        found = []
        for item in value:
            if isinstance(item, dict):
                found.extend(_lookup(item, parts))
        return found
    return []


def _candidates(record: dict, path: str) -> list:
    """Values a condition on `path` is tested against (arrays and their items)."""
    candidates = []
    for value in _lookup(record, path.split(".")):
        candidates.append(value)
        if isinstance(value, list):
            candidates.extend(value)
    return candidates


def _equal(a: Any, b: Any) -> bool:
    # True == 1 in Python but not in a query
    if isinstance(a, bool) != isinstance(b, bool):
        return False
    return a == b


def _contains(candidates: list, value: Any) -> bool:
    if value is None and not candidates:
        return True
    return any(_equal(candidate, value) for candidate in candidates)


def _comparable(a: Any, b: Any) -> bool:
    if isinstance(a, bool) or isinstance(b, bool):
        return False
    if isinstance(a, (int, float)) and isinstance(b, (int, float)):
        return True
    return isinstance(a, str) and isinstance(b, str)


def evaluate(expression: Expression, record: dict) -> bool:
    """Return True if `record` satisfies `expression`."""
    match expression:
        case MatchAll():
            return True
        case Equals(path, value):
            return _contains(_candidates(record, path), value)
        case NotEquals(path, value):
            return not _contains(_candidates(record, path), value)
        case In(path, values):
            candidates = _candidates(record, path)
            return any(_contains(candidates, value) for value in values)
        case NotIn(path, values):
            candidates = _candidates(record, path)
            return not any(_contains(candidates, value) for value in values)
        case AllOf(path, values):
            candidates = _candidates(record, path)
            return bool(values) and all(_contains(candidates, v) for v in values)
        case Compare(path, op, value):
            compare = _COMPARATORS[op]
            return any(
                _comparable(candidate, value) and compare(candidate, value)
                for candidate in _candidates(record, path)
            )
        case Exists(path, present):
            return bool(_lookup(record, path.split("."))) == present
        case Regex(path, pattern):
            return any(
                isinstance(candidate, str) and pattern.search(candidate) is not None
                for candidate in _candidates(record, path)
            )
        case And(clauses):
            return all(evaluate(clause, record) for clause in clauses)
        case Or(clauses):
            return any(evaluate(clause, record) for clause in clauses)
        case Nor(clauses):
            return not any(evaluate(clause, record) for clause in clauses)
    raise QueryError(f"Unknown expression: {expression!r}")


# ---------------------------------------------------------------------------
# Sort / projection
# ---------------------------------------------------------------------------


def _sort_key(record: dict, path: str) -> tuple:
    # Missing < numbers < strings < objects < arrays < booleans
    values = _lookup(record, path.split("."))
    value = values[0] if values else None
    if value is None:
        return (0, 0)
    if isinstance(value, bool):
        return (5, value)
    if isinstance(value, (int, float)):
        return (1, value)
    if isinstance(value, str):
        return (2, value)
    if isinstance(value, dict):
        return (3, 0)
    return (4, 0)


def sort_records(records: list[dict], sort: dict[str, int]) -> list[dict]:
    """Stable sort on one or more fields (1 ascending, -1 descending)."""
    result = list(records)
    # Apply keys right-to-left so the first key ends up most significant
    for path, direction in reversed(list(sort.items())):
        if direction not in (1, -1):
            raise QueryError(f"Sort direction for '{path}' must be 1 or -1")
        result.sort(key=lambda record, p=path: _sort_key(record, p), reverse=direction == -1)
    return result


def _include(record: dict, paths: list[str]) -> dict:
    selected: dict = {}
    nested: dict[str, list[str]] = {}
    for path in paths:
        head, _, rest = path.partition(".")
        if head not in record:
            continue
        if rest:
            nested.setdefault(head, []).append(rest)
        else:
            selected[head] = record[head]
    for head, rests in nested.items():
        if head not in selected and isinstance(record[head], dict):
            selected[head] = _include(record[head], rests)
    return {key: selected[key] for key in record if key in selected}


def _exclude(record: dict, paths: list[str]) -> dict:
    remaining = dict(record)
    nested: dict[str, list[str]] = {}
    for path in paths:
        head, _, rest = path.partition(".")
        if rest:
            nested.setdefault(head, []).append(rest)
        else:
            remaining.pop(head, None)
    for head, rests in nested.items():
        if isinstance(remaining.get(head), dict):
            remaining[head] = _exclude(remaining[head], rests)
    return remaining


def validate_projection(projection: dict[str, int]) -> int:
    """Return 1 for an inclusion projection, 0 for an exclusion one."""
    modes = set(projection.values())
    if modes not in ({0}, {1}):
        raise QueryError("Projection cannot mix inclusion and exclusion")
    return modes.pop()


def project(record: dict, projection: dict[str, int] | None) -> dict:
    """Return a copy of `record` restricted by an inclusion or exclusion projection."""
    if not projection:
        return dict(record)
    if validate_projection(projection) == 1:
        return _include(record, list(projection))
    return _exclude(record, list(projection))


def run_query(collection: list[dict], query: SearchQuery) -> tuple[list[dict], int]:
    """Filter, sort, page and project a collection.

    Returns:
        Tuple of (page of result copies, number of matches before paging).
    """
    expression = parse_criteria(query.criteria)
    if query.projection:
        validate_projection(query.projection)

    matches = [record for record in collection if evaluate(expression, record)]
    total = len(matches)

    if query.sort:
        matches = sort_records(matches, query.sort)

    end = None if query.limit is None else query.skip + query.limit
    page = matches[query.skip : end]

    return [project(record, query.projection) for record in page], total
