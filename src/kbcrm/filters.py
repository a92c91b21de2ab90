"""Evaluate filter expressions against notes.

Expressions are the tagged models of :mod:`kbcrm.models` (see
``parse_filter``). Evaluation never raises: a path that does not resolve is
simply absent, and an expression of unrecognized shape matches everything.
"""

from __future__ import annotations

import logging
from typing import Any, assert_never

from .models import (
    AllExpr,
    AnyExpr,
    FilterExpr,
    Note,
    NotExpr,
    PathCompareExpr,
    PermissiveExpr,
    TypeEqExpr,
    TypeInExpr,
    normalize_type,
)
from .parser.links import LinkResolver, canonicalize, clean_link_target, extract_references

log = logging.getLogger(__name__)

LENGTH_SUFFIX = ".length"
THIS_TOKEN = "@this"

_ABSENT = object()


def matches(
    note: Note,
    expr: FilterExpr | None,
    *,
    host: Note | None = None,
    corpus: LinkResolver | None = None,
) -> bool:
    """True if ``note`` satisfies ``expr``.

    Args:
        note: Candidate note.
        expr: Parsed filter expression; None matches everything.
        host: The panel's host note, needed by ``contains: "@this"``.
        corpus: Link resolver, needed by ``contains: "@this"``.
    """
    if expr is None:
        return True

    match expr:
        case AllExpr(children=children):
            return all(matches(note, child, host=host, corpus=corpus) for child in children)
        case AnyExpr(children=children):
            return any(matches(note, child, host=host, corpus=corpus) for child in children)
        case NotExpr(child=child):
            return not matches(note, child, host=host, corpus=corpus)
        case TypeInExpr(types=types):
            return note.type in {normalize_type(t) for t in types}
        case TypeEqExpr(type=entity_type):
            return note.type == normalize_type(entity_type)
        case PathCompareExpr():
            return _compare(note, expr, host, corpus)
        case PermissiveExpr():
            return True
        case _:
            assert_never(expr)


def filter_notes(
    notes: list[Note],
    expr: FilterExpr | None,
    *,
    host: Note | None = None,
    corpus: LinkResolver | None = None,
) -> list[Note]:
    """Keep the notes matching ``expr``, preserving order."""
    if expr is None:
        return list(notes)
    return [note for note in notes if matches(note, expr, host=host, corpus=corpus)]


def resolve_path(metadata: dict[str, Any], path: str) -> Any:
    """Value at a dotted frontmatter path.

    ``key.length`` is the item count of a list, 1 for a present scalar and 0
    when absent. A key containing dots is matched literally before the path
    is split.

    Returns:
        The value, or None when the path does not resolve.
    """
    if path.endswith(LENGTH_SUFFIX):
        value = resolve_path(metadata, path[: -len(LENGTH_SUFFIX)])
        if value is None:
            return 0
        if isinstance(value, list):
            return len(value)
        return 1

    if path in metadata:
        return metadata[path]

    current: Any = metadata
    for part in path.split("."):
        if not isinstance(current, dict) or part not in current:
            return None
        current = current[part]
    return current


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _normalize_scalar(value: Any) -> str:
    if value is None:
        return ""
    return clean_link_target(value) if isinstance(value, str) else str(value).strip()


def _scalar_eq(left: Any, right: Any) -> bool:
    if isinstance(left, str) and isinstance(right, str):
        return left.strip() == right.strip()
    return left == right


def _ordered(left: Any, op: str, right: Any) -> bool:
    comparable = (_is_number(left) and _is_number(right)) or (
        isinstance(left, str) and isinstance(right, str)
    )
    if not comparable:
        return False
    if op == "gt":
        return left > right
    if op == "gte":
        return left >= right
    if op == "lt":
        return left < right
    return left <= right


def _links_to_host(note: Note, value: Any, host: Note | None, corpus: LinkResolver | None) -> bool:
    if host is None or corpus is None:
        log.debug("contains @this evaluated without a host; treating as no match")
        return False
    return any(canonicalize(ref, note.id, corpus) == host.id for ref in extract_references(value))


def _compare(
    note: Note, expr: PathCompareExpr, host: Note | None, corpus: LinkResolver | None
) -> bool:
    value = resolve_path(note.metadata, expr.path)
    op, expected = expr.op, expr.value

    if op == "exists":
        present = value is not None and value != []
        return present if expected is None or bool(expected) else not present

    if op in ("contains", "notContains"):
        if expected == THIS_TOKEN:
            found = _links_to_host(note, value, host, corpus)
        elif isinstance(value, list):
            found = _normalize_scalar(expected) in [_normalize_scalar(v) for v in value]
        elif isinstance(value, str):
            found = _normalize_scalar(value) == _normalize_scalar(expected)
        else:
            found = False
        return found if op == "contains" else not found

    if isinstance(value, list):
        # Non-membership comparisons on lists apply to their length
        value = len(value)
    elif isinstance(value, dict):
        return True

    if op == "eq":
        return _scalar_eq(value, expected)
    if op == "ne":
        return not _scalar_eq(value, expected)
    if op in ("gt", "gte", "lt", "lte"):
        return _ordered(value, op, expected)
    if op in ("in", "nin"):
        options = expected if isinstance(expected, list) else [expected]
        found = any(_scalar_eq(value, option) for option in options)
        return found if op == "in" else not found

    log.warning("Unsupported filter operator %r treated as permissive", op)
    return True
