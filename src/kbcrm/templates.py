"""Token substitution for related-note titles and attributes.

Recipe templates may contain:

- ``{@this}``: wiki link to the host note
- ``{@this.prop}``: the host's ``prop`` value. When the token is the whole
  string the raw value is copied (lists stay lists); inline it is stringified.
- ``{date}``, ``{datetime}``, ``{show}`` (case-insensitive)
- ``{YYYY}``, ``{YY}``, ``{MM}``, ``{DD}``, ``{hh}``, ``{mm}`` (``{MM}`` is the
  month, ``{mm}`` the minute)

New note bodies use the separate ``{{title}}`` style, see
:func:`render_note_template`.
"""

from __future__ import annotations

import copy
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from .config import COLUMN_JOIN, DISPLAY_NAME_KEYS, UNTITLED
from .merge import is_reserved_key
from .models import Note


class _Missing:
    """Marker for a template leaf that resolved to nothing."""

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING: Any = _Missing()

_WHOLE_THIS = re.compile(r"^\{\s*@this\s*(?:\.\s*([A-Za-z0-9_-]+)\s*)?\}$")
_INLINE_THIS = re.compile(r"\{\s*@this\s*(?:\.\s*([A-Za-z0-9_-]+)\s*)?\}")
_NAMED_TOKENS = re.compile(r"\{\s*(datetime|date|show)\s*\}", re.IGNORECASE)
_DATE_PARTS = re.compile(r"\{\s*(YYYY|yyyy|YY|yy|MM|DD|dd|hh|mm)\s*\}")
_NOTE_TOKENS = re.compile(r"\{\{\s*(title|type|filename|slug|datetime|date|time)\s*\}\}", re.IGNORECASE)


def display_name(note: Note) -> str:
    """``show``, else ``name``, else the file name, else "Untitled"."""
    for key in DISPLAY_NAME_KEYS:
        value = note.metadata.get(key)
        if value is not None and str(value).strip():
            return str(value).strip()
    return note.basename or UNTITLED


@dataclass
class TemplateContext:
    """What templates may refer to: the host note, its link, and "now"."""

    host: Note
    host_link: str
    now: datetime = field(default_factory=datetime.now)

    @property
    def host_name(self) -> str:
        return display_name(self.host)

    def host_value(self, prop: str) -> Any:
        value = self.host.metadata.get(prop)
        if value is None and prop == "show":
            return self.host_name
        return value

    def date_part(self, token: str) -> str:
        # Year and day accept either case; MM is month, mm is minute
        if token in ("yyyy", "yy", "dd"):
            token = token.upper()
        return {
            "YYYY": f"{self.now.year:04d}",
            "YY": f"{self.now.year % 100:02d}",
            "MM": f"{self.now.month:02d}",
            "DD": f"{self.now.day:02d}",
            "hh": f"{self.now.hour:02d}",
            "mm": f"{self.now.minute:02d}",
        }[token]

    def named(self, token: str) -> str:
        token = token.lower()
        if token == "date":
            return self.now.strftime("%Y-%m-%d")
        if token == "datetime":
            return self.now.isoformat(timespec="seconds")
        return self.host_name


def _stringify(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, list):
        return COLUMN_JOIN.join(_stringify(v) for v in value if v is not None)
    return str(value)


def _render_string(template: str, context: TemplateContext) -> Any:
    whole = _WHOLE_THIS.match(template.strip())
    if whole:
        prop = whole.group(1)
        if not prop:
            return context.host_link
        value = context.host_value(prop)
        return MISSING if value is None else copy.deepcopy(value)

    def this_token(match: re.Match[str]) -> str:
        prop = match.group(1)
        return context.host_link if not prop else _stringify(context.host_value(prop))

    text = _INLINE_THIS.sub(this_token, template)
    text = _NAMED_TOKENS.sub(lambda m: context.named(m.group(1)), text)
    return _DATE_PARTS.sub(lambda m: context.date_part(m.group(1)), text)


def render(template: Any, context: TemplateContext) -> Any:
    """Resolve every token in a template value.

    Strings are substituted, lists and dicts are walked recursively, other
    scalars pass through. List items that render to lists are flattened one
    level; leaves that resolve to nothing are dropped.

    Returns:
        The rendered value, or MISSING when a whole-string ``{@this.prop}``
        token names an absent host property.
    """
    if isinstance(template, str):
        return _render_string(template, context)
    if isinstance(template, list):
        rendered: list[Any] = []
        for item in template:
            value = render(item, context)
            if value is MISSING:
                continue
            if isinstance(value, list):
                rendered.extend(value)
            else:
                rendered.append(value)
        return rendered
    if isinstance(template, dict):
        result = {}
        for key, item in template.items():
            value = render(item, context)
            if value is not MISSING:
                result[key] = value
        return result
    return template


def render_title(template: str | None, context: TemplateContext, default: str = UNTITLED) -> str:
    """Render a title template, falling back to ``default`` when blank."""
    if not template:
        return default
    value = render(template, context)
    text = "" if value is MISSING else _stringify(value)
    return text.strip() or default


def render_attributes(templates: dict[str, Any] | None, context: TemplateContext) -> dict[str, Any]:
    """Render attribute templates, dropping reserved type keys and missing leaves."""
    attributes: dict[str, Any] = {}
    for key, template in (templates or {}).items():
        if is_reserved_key(str(key)):
            continue
        value = render(template, context)
        if value is not MISSING:
            attributes[key] = value
    return attributes


def slugify(text: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", text.lower())
    return slug.strip("-")


def render_note_template(template: str, *, title: str, entity_type: str, now: datetime) -> str:
    """Fill ``{{title}}``-style placeholders of an entity's note template."""
    values = {
        "title": title,
        "type": entity_type,
        "filename": f"{title}.md",
        "slug": slugify(title),
        "date": now.strftime("%Y-%m-%d"),
        "time": now.strftime("%H:%M"),
        "datetime": now.isoformat(timespec="seconds"),
    }
    return _NOTE_TOKENS.sub(lambda m: values[m.group(1).lower()], template)
