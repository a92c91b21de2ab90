"""Note file parsing and link reference handling."""

from .links import (
    ParsedLink,
    build_wikilink,
    canonicalize,
    clean_link_target,
    extract_references,
    parse_link,
)
from .markdown import ParseError, parse_note, render_note

__all__ = [
    "ParseError",
    "ParsedLink",
    "build_wikilink",
    "canonicalize",
    "clean_link_target",
    "extract_references",
    "parse_link",
    "parse_note",
    "render_note",
]
