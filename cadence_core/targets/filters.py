"""Minimal target filter predicate used by the local target registry.

A filter is ``*`` or a ``;``-separated list of clauses that must all hold.
Each clause is ``field==pattern`` or ``field!=pattern`` where field is one of
``id``, ``name``, ``tag`` or ``attr.<key>`` and pattern may use fnmatch
wildcards. ``tag`` matches when any tag matches the pattern.
"""

from __future__ import annotations

from dataclasses import dataclass
from fnmatch import fnmatchcase

from cadence_core.errors import ValidationError
from cadence_core.targets.types import TargetRecord

MATCH_ALL = "*"


@dataclass(frozen=True)
class FilterClause:
    field: str
    pattern: str
    negate: bool


def parse_filter(expression: str) -> tuple[FilterClause, ...]:
    text = (expression or "").strip()
    if not text:
        raise ValidationError("Target filter must not be empty")
    if text == MATCH_ALL:
        return ()
    clauses: list[FilterClause] = []
    for raw in text.split(";"):
        part = raw.strip()
        if not part:
            continue
        if "!=" in part:
            field, pattern = part.split("!=", 1)
            negate = True
        elif "==" in part:
            field, pattern = part.split("==", 1)
            negate = False
        else:
            raise ValidationError(f"Invalid filter clause: {part}")
        field = field.strip().lower()
        if field not in {"id", "name", "tag"} and not field.startswith("attr."):
            raise ValidationError(f"Unknown filter field: {field}")
        clauses.append(
            FilterClause(field=field, pattern=pattern.strip().lower(), negate=negate)
        )
    return tuple(clauses)


def matches_filter(clauses: tuple[FilterClause, ...], target: TargetRecord) -> bool:
    for clause in clauses:
        if _clause_matches(clause, target) == clause.negate:
            return False
    return True


def _clause_matches(clause: FilterClause, target: TargetRecord) -> bool:
    if clause.field == "id":
        return fnmatchcase(target.id.lower(), clause.pattern)
    if clause.field == "name":
        return fnmatchcase(target.name.lower(), clause.pattern)
    if clause.field == "tag":
        return any(fnmatchcase(tag, clause.pattern) for tag in target.tags or ())
    key = clause.field[len("attr.") :]
    value = (target.attributes or {}).get(key)
    if value is None:
        return False
    return fnmatchcase(str(value).lower(), clause.pattern)
