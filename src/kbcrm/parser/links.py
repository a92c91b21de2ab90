"""Link reference parsing and canonicalization.

Frontmatter properties reference other notes with wiki links
(``[[Target]]``, ``[[Target|Alias]]``, ``[[Target#Anchor]]``) or bare
paths/names. Every comparison between references goes through
:func:`canonicalize`, which maps a raw reference to a stable identity string.
"""

from __future__ import annotations

import logging
from typing import Any, NamedTuple, Protocol

from ..config import DEFAULT_EXTENSION

log = logging.getLogger(__name__)


class LinkResolver(Protocol):
    """The part of a note corpus the canonicalizer needs."""

    def resolve_link_relative(self, target: str, source_id: str) -> str | None: ...

    def has(self, note_id: str) -> bool: ...


class ParsedLink(NamedTuple):
    """Components of a raw link reference."""

    target: str
    alias: str | None = None
    anchor: str | None = None


def parse_link(raw: Any) -> ParsedLink:
    """Split a raw reference into target, alias and anchor.

    Examples:
        "[[Ada Lovelace|Ada]]" -> ParsedLink("Ada Lovelace", "Ada", None)
        "[[Projects/Apollo#Goals]]" -> ParsedLink("Projects/Apollo", None, "Goals")
        "people/ada.md" -> ParsedLink("people/ada.md", None, None)
    """
    if raw is None:
        return ParsedLink("")
    text = str(raw).strip()
    if text.startswith("[[") and text.endswith("]]"):
        text = text[2:-2]

    alias = None
    if "|" in text:
        text, alias = text.split("|", 1)
        alias = alias.strip() or None

    anchor = None
    if "#" in text:
        text, anchor = text.split("#", 1)
        anchor = anchor.strip() or None

    return ParsedLink(text.strip(), alias, anchor)


def clean_link_target(raw: Any) -> str:
    """Return the bare target of a reference (wrapper, alias and anchor removed)."""
    return parse_link(raw).target


def is_wikilink(value: Any) -> bool:
    return isinstance(value, str) and value.strip().startswith("[[") and value.strip().endswith("]]")


def build_wikilink(link_text: str, alias: str | None = None) -> str:
    """Build ``[[link_text]]`` (or ``[[link_text|alias]]``)."""
    if link_text.endswith(DEFAULT_EXTENSION):
        link_text = link_text[: -len(DEFAULT_EXTENSION)]
    suffix = f"|{alias}" if alias else ""
    return f"[[{link_text}{suffix}]]"


def extract_references(value: Any) -> list[str]:
    """Flatten a frontmatter value into the reference strings it holds.

    Scalars yield one reference, arrays one per non-empty scalar item;
    nested objects and empty values are skipped.
    """
    if value is None:
        return []
    items = value if isinstance(value, list) else [value]
    refs: list[str] = []
    for item in items:
        if item is None or isinstance(item, (dict, list)):
            continue
        text = str(item).strip()
        if text:
            refs.append(text)
    return refs


def canonicalize(raw: Any, source_id: str, corpus: LinkResolver) -> str:
    """Resolve a raw link reference to its canonical identity.

    Resolution order, first match wins:
    1. The corpus's "shortest path relative to source" lookup
    2. An exact note id
    3. The target with the default extension appended
    4. The cleaned target itself (unresolved, but still usable for dedup)

    Never raises.
    """
    target = clean_link_target(raw)
    if not target:
        return ""

    try:
        resolved = corpus.resolve_link_relative(target, source_id)
        if resolved:
            return resolved
        if corpus.has(target):
            return target
        with_extension = f"{target}{DEFAULT_EXTENSION}"
        if not target.endswith(DEFAULT_EXTENSION) and corpus.has(with_extension):
            return with_extension
    except Exception as e:
        log.debug("Link resolution failed for %r from %s: %s", raw, source_id, e)

    log.debug("Unresolved link %r from %s", raw, source_id)
    return target


def references_note(value: Any, note_id: str, source_id: str, corpus: LinkResolver) -> bool:
    """True if any reference in ``value`` canonicalizes to ``note_id``."""
    return any(canonicalize(ref, source_id, corpus) == note_id for ref in extract_references(value))
