"""Ordering of related-note lists.

- manual: keep the incoming order (query discovery order)
- column: natural, case-insensitive order of a column's display string
- date: effective date; undated notes always last
"""

from __future__ import annotations

import logging
import re
from datetime import date, datetime, time
from pathlib import PurePosixPath
from typing import Any

from .config import COLUMN_JOIN
from .models import (
    AttributeColumn,
    ColumnDef,
    CoverColumn,
    DateColumn,
    EntityIconColumn,
    Note,
    ShowColumn,
    SortSpec,
)
from .parser.links import is_wikilink, parse_link
from .templates import display_name

log = logging.getLogger(__name__)

_DIGITS = re.compile(r"(\d+)")


def _parse_datetime(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime.combine(value, time())
    if isinstance(value, str) and value.strip():
        text = value.strip()
        try:
            return datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            log.debug("Unparseable date value %r", value)
    return None


def _parse_time(value: Any) -> time | None:
    if isinstance(value, time):
        return value
    if isinstance(value, int):
        # YAML reads unquoted 10:30 as sexagesimal minutes
        return time(value // 60 % 24, value % 60)
    if isinstance(value, str) and value.strip():
        try:
            return time.fromisoformat(value.strip())
        except ValueError:
            log.debug("Unparseable time value %r", value)
    return None


def effective_date(note: Note) -> datetime | None:
    """A note's date for ordering.

    Fallback chain: ``date`` (combined with ``time`` when ``date`` has no time
    part), then legacy ``datetime``/``date_time``, then file creation time.
    """
    metadata = note.metadata
    raw_date = metadata.get("date")
    parsed = _parse_datetime(raw_date)
    if parsed is not None:
        date_only = isinstance(raw_date, date) and not isinstance(raw_date, datetime)
        date_only = date_only or (isinstance(raw_date, str) and len(raw_date.strip()) == 10)
        extra_time = _parse_time(metadata.get("time")) if date_only else None
        if extra_time is not None:
            parsed = datetime.combine(parsed.date(), extra_time)
        return _naive(parsed)

    for key in ("datetime", "date_time"):
        parsed = _parse_datetime(metadata.get(key))
        if parsed is not None:
            return _naive(parsed)

    return _naive(note.created) if note.created else None


def _naive(value: datetime) -> datetime:
    # Aware and naive values must compare; drop the zone after normalizing to local time
    if value.tzinfo is not None:
        return value.astimezone().replace(tzinfo=None)
    return value


def _display(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, list):
        return COLUMN_JOIN.join(part for part in (_display(v) for v in value) if part)
    if isinstance(value, datetime):
        return value.isoformat(timespec="minutes")
    if isinstance(value, date):
        return value.isoformat()
    if is_wikilink(value):
        link = parse_link(value)
        return link.alias or PurePosixPath(link.target).name
    return str(value).strip()


def column_for(name: str) -> ColumnDef:
    if name == "show":
        return ShowColumn()
    if name == "date":
        return DateColumn()
    return AttributeColumn(key=name)


def column_value(note: Note, column: ColumnDef | str) -> str:
    """Display string of a note's cell in ``column``."""
    if isinstance(column, str):
        column = column_for(column)

    match column:
        case ShowColumn():
            return display_name(note)
        case DateColumn():
            when = effective_date(note)
            return _display(when) if when else ""
        case AttributeColumn(key=key):
            return _display(note.metadata.get(key))
        case CoverColumn():
            return _display(note.metadata.get("cover"))
        case EntityIconColumn():
            return note.type
    log.warning("Unsupported column %r", column)
    return ""


def natural_key(text: str) -> tuple[tuple[int, int, str], ...]:
    """Case-insensitive key that orders embedded numbers numerically."""
    parts = _DIGITS.split(text.strip().lower())
    return tuple((0, int(part), "") if part.isdigit() else (1, 0, part) for part in parts if part)


def sort_notes(notes: list[Note], spec: SortSpec | dict[str, Any] | None) -> list[Note]:
    """Order notes per ``spec``. All strategies are stable."""
    if spec is None:
        return list(notes)
    if not isinstance(spec, SortSpec):
        spec = SortSpec.model_validate(spec)

    descending = spec.direction == "desc"
    if spec.strategy == "manual":
        return list(notes)

    if spec.strategy == "column":
        column = spec.column or "show"
        return sorted(notes, key=lambda n: natural_key(column_value(n, column)), reverse=descending)

    dated = [(note, effective_date(note)) for note in notes]
    with_date = [pair for pair in dated if pair[1] is not None]
    without_date = [note for note, when in dated if when is None]
    with_date.sort(key=lambda pair: pair[1], reverse=descending)
    return [note for note, _ in with_date] + without_date


def apply_saved_order(notes: list[Note], order: list[str] | None) -> list[Note]:
    """Move notes listed in a saved manual ``order`` to the front, in that order."""
    if not order:
        return list(notes)
    by_id = {note.id: note for note in notes}
    front = [by_id[note_id] for note_id in dict.fromkeys(order) if note_id in by_id]
    placed = {note.id for note in front}
    return front + [note for note in notes if note.id not in placed]
