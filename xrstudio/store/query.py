"""Typed filter and update documents for the embedded document store.

Call sites write MongoDB-style dictionaries (``{"orgId": org_id}``,
``{"$addToSet": {"activityIds": activity_id}}``) so the same code runs against
either backend. The embedded backend parses them into the closed set of
variants below before touching SQL:

  filters:  ``Eq`` and ``In``, ANDed together
  updates:  ``SetFields``, then ``AddToSet``, then ``Pull``

Anything outside that subset raises ``UnsupportedQueryError``.
"""

from __future__ import annotations

import copy
import re
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Mapping, Union

from .errors import UnsupportedQueryError

ID_FIELD = "_id"
# Accepted in filters and sorts as another name for the identifier.
ID_ALIAS = "id"

_SEGMENT_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_\-]*$")


@dataclass(frozen=True)
class FieldPath:
    """Dotted document path, validated segment by segment."""

    segments: tuple[str, ...]

    @classmethod
    def parse(cls, name: str) -> "FieldPath":
        if not isinstance(name, str) or not name:
            raise UnsupportedQueryError(f"Invalid field name: {name!r}")
        if name == ID_ALIAS:
            name = ID_FIELD
        segments = tuple(name.split("."))
        for segment in segments:
            if not _SEGMENT_RE.match(segment):
                raise UnsupportedQueryError(f"Invalid field name: {name!r}")
        return cls(segments)

    @property
    def json_path(self) -> str:
        # Quoted members keep hyphenated keys valid in SQLite JSON paths.
        return "$" + "".join(f'."{segment}"' for segment in self.segments)

    @property
    def is_id(self) -> bool:
        return self.segments == (ID_FIELD,)

    def lookup(self, document: Mapping[str, Any]) -> tuple[bool, Any]:
        current: Any = document
        for segment in self.segments:
            if not isinstance(current, Mapping) or segment not in current:
                return False, None
            current = current[segment]
        return True, current

    def assign(self, document: dict[str, Any], value: Any) -> None:
        current = document
        for segment in self.segments[:-1]:
            child = current.get(segment)
            if not isinstance(child, dict):
                child = {}
                current[segment] = child
            current = child
        current[self.segments[-1]] = value

    def __str__(self) -> str:
        return ".".join(self.segments)


@dataclass(frozen=True)
class Eq:
    field: FieldPath
    value: Any


@dataclass(frozen=True)
class In:
    field: FieldPath
    values: tuple[Any, ...]


Predicate = Union[Eq, In]


@dataclass(frozen=True)
class Filter:
    predicates: tuple[Predicate, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.predicates

    def id_lookup(self) -> list[Any] | None:
        """Return the ids to fetch when the filter only constrains ``_id``."""
        if len(self.predicates) != 1:
            return None
        predicate = self.predicates[0]
        if not predicate.field.is_id:
            return None
        if isinstance(predicate, Eq):
            return [predicate.value]
        return list(predicate.values)

    def matches(self, document: Mapping[str, Any]) -> bool:
        return all(_predicate_matches(p, document) for p in self.predicates)


@dataclass(frozen=True)
class SetFields:
    fields: tuple[tuple[FieldPath, Any], ...]


@dataclass(frozen=True)
class AddToSet:
    field: FieldPath
    values: tuple[Any, ...]


@dataclass(frozen=True)
class Pull:
    field: FieldPath
    value: Any


UpdateOp = Union[SetFields, AddToSet, Pull]


@dataclass(frozen=True)
class Update:
    operations: tuple[UpdateOp, ...] = field(default_factory=tuple)


def normalize_value(value: Any) -> Any:
    """Map a Python value onto what SQLite's JSON functions return for it."""
    if isinstance(value, bool):
        return 1 if value else 0
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


def parse_filter(query: Mapping[str, Any] | Filter | None) -> Filter:
    if query is None:
        return Filter()
    if isinstance(query, Filter):
        return query
    if not isinstance(query, Mapping):
        raise UnsupportedQueryError(f"Filter must be a mapping, got {type(query).__name__}")

    predicates: list[Predicate] = []
    for name, value in query.items():
        if isinstance(name, str) and name.startswith("$"):
            raise UnsupportedQueryError(f"Unsupported filter operator: {name}")
        path = FieldPath.parse(name)
        if isinstance(value, Mapping):
            if set(value.keys()) != {"$in"}:
                raise UnsupportedQueryError(f"Unsupported filter on '{name}': {sorted(value)}")
            candidates = value["$in"]
            if isinstance(candidates, (str, bytes)) or not hasattr(candidates, "__iter__"):
                raise UnsupportedQueryError(f"$in on '{name}' requires a list")
            predicates.append(In(path, tuple(_plain(v) for v in candidates)))
        else:
            predicates.append(Eq(path, _plain(value)))
    return Filter(tuple(predicates))


def parse_update(update: Mapping[str, Any] | Update) -> Update:
    if isinstance(update, Update):
        return update
    if not isinstance(update, Mapping) or not update:
        raise UnsupportedQueryError("Update must be a non-empty mapping of operators")

    unknown = [key for key in update if key not in {"$set", "$addToSet", "$pull"}]
    if unknown:
        raise UnsupportedQueryError(f"Unsupported update operators: {unknown}")

    operations: list[UpdateOp] = []
    set_body = update.get("$set")
    if set_body:
        pairs = []
        for name, value in _operator_body("$set", set_body).items():
            path = FieldPath.parse(name)
            if path.is_id:
                raise UnsupportedQueryError("$set cannot change _id")
            pairs.append((path, value))
        operations.append(SetFields(tuple(pairs)))

    for name, value in _operator_body("$addToSet", update.get("$addToSet") or {}).items():
        if isinstance(value, Mapping) and set(value.keys()) == {"$each"}:
            values = tuple(value["$each"])
        else:
            values = (value,)
        operations.append(AddToSet(FieldPath.parse(name), values))

    for name, value in _operator_body("$pull", update.get("$pull") or {}).items():
        operations.append(Pull(FieldPath.parse(name), value))

    return Update(tuple(operations))


def apply_update(document: Mapping[str, Any], update: Update) -> tuple[dict[str, Any], bool]:
    """Apply ``update`` to a copy of ``document``. Returns ``(new_doc, changed)``."""
    result = copy.deepcopy(dict(document))
    changed = False

    for op in update.operations:
        if isinstance(op, SetFields):
            for path, value in op.fields:
                present, current = path.lookup(result)
                if not present or not values_equal(current, value):
                    path.assign(result, copy.deepcopy(value))
                    changed = True
        elif isinstance(op, AddToSet):
            present, current = path_list(result, op.field, "$addToSet")
            if not present:
                current = []
                op.field.assign(result, current)
            for value in op.values:
                if not any(values_equal(item, value) for item in current):
                    current.append(copy.deepcopy(value))
                    changed = True
        elif isinstance(op, Pull):
            present, current = path_list(result, op.field, "$pull")
            if present:
                kept = [item for item in current if not values_equal(item, op.value)]
                if len(kept) != len(current):
                    op.field.assign(result, kept)
                    changed = True
        else:
            raise UnsupportedQueryError(f"Unknown update operation: {op!r}")

    return result, changed


def path_list(document: dict[str, Any], path: FieldPath, operator: str) -> tuple[bool, list]:
    present, current = path.lookup(document)
    if not present or current is None:
        return False, []
    if not isinstance(current, list):
        raise UnsupportedQueryError(f"Cannot apply {operator} to non-array field '{path}'")
    return True, current


def values_equal(left: Any, right: Any) -> bool:
    """Equality that keeps ``True`` and ``1`` apart, as a document database does."""
    if isinstance(left, bool) or isinstance(right, bool):
        return isinstance(left, bool) and isinstance(right, bool) and left is right
    return left == right


def _predicate_matches(predicate: Predicate, document: Mapping[str, Any]) -> bool:
    present, current = predicate.field.lookup(document)
    if isinstance(predicate, Eq):
        candidates = (predicate.value,)
    else:
        candidates = predicate.values

    for expected in candidates:
        if expected is None and (not present or current is None):
            return True
        if not present:
            continue
        if values_equal(_plain(current), expected):
            return True
        if isinstance(current, list) and any(values_equal(_plain(i), expected) for i in current):
            return True
    return False


def _plain(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


def _operator_body(operator: str, body: Any) -> Mapping[str, Any]:
    if not isinstance(body, Mapping):
        raise UnsupportedQueryError(f"{operator} requires a mapping of fields")
    return body
