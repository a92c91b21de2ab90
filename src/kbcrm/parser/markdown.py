"""Markdown notes with YAML frontmatter."""

from datetime import datetime
from pathlib import Path
from typing import Any

import frontmatter

from ..models import Note


class ParseError(Exception):
    """Raised when a note file cannot be read."""

    def __init__(self, path: Path, message: str) -> None:
        self.path = path
        self.message = message
        super().__init__(f"{path}: {message}")


def note_id_for(path: Path, vault_root: Path) -> str:
    """Vault-relative POSIX path used as a note's identity."""
    return path.relative_to(vault_root).as_posix()


def _created_at(path: Path) -> datetime | None:
    try:
        stat = path.stat()
    except OSError:
        return None
    # st_birthtime only exists on some platforms
    timestamp = getattr(stat, "st_birthtime", None) or stat.st_ctime
    return datetime.fromtimestamp(timestamp)


def parse_note(path: Path, vault_root: Path) -> Note:
    """Parse a markdown file into a Note.

    Notes without frontmatter are valid (they just carry no type), so unlike
    entry parsing this only fails when the file is unreadable or the YAML
    block is malformed.

    Raises:
        ParseError: If the file cannot be read or its frontmatter is invalid.
    """
    if not path.is_file():
        raise ParseError(path, "Path is not a file")

    try:
        post = frontmatter.load(str(path))
    except Exception as e:
        raise ParseError(path, f"Failed to parse frontmatter: {e}") from e

    if not isinstance(post.metadata, dict):
        raise ParseError(path, "Frontmatter must be a mapping")

    return Note(
        id=note_id_for(path, vault_root),
        metadata=dict(post.metadata),
        created=_created_at(path),
    )


def read_body(path: Path) -> str:
    """Return the markdown body of a note (frontmatter stripped)."""
    try:
        return frontmatter.load(str(path)).content
    except Exception as e:
        raise ParseError(path, f"Failed to parse frontmatter: {e}") from e


def render_note(metadata: dict[str, Any], body: str = "") -> str:
    """Serialize frontmatter and body back into note text."""
    post = frontmatter.Post(body)
    post.metadata.update(metadata)
    return frontmatter.dumps(post, sort_keys=False) + "\n"
