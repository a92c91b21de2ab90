"""Document store: a point-in-time corpus snapshot and a vault on disk.

Evaluation code only ever sees a :class:`Corpus`, an immutable snapshot of
all notes. Mutation goes through a :class:`DocumentStore`, whose metadata
writes are atomic per file and nothing more.
"""

from __future__ import annotations

import asyncio
import logging
import re
import tempfile
import weakref
from collections.abc import Callable, Iterable
from pathlib import Path, PurePosixPath
from typing import Any, Protocol

from .config import DEFAULT_EXTENSION, VAULT_MARKER_DIR
from .models import Note, normalize_type
from .parser.markdown import ParseError, parse_note, read_body, render_note

log = logging.getLogger(__name__)

MetadataMutator = Callable[[dict[str, Any]], None]

# Characters that cannot appear in a note file name
_UNSAFE_FILENAME_CHARS = re.compile(r'[\\/:*?"<>|#^\[\]]')


class DocumentStore(Protocol):
    """Operations the relationship engine needs from the host note store."""

    def list_notes_by_type(self, entity_type: str) -> list[Note]: ...

    def resolve_link_relative(self, raw: str, source_id: str) -> str | None: ...

    def read_metadata(self, note_id: str) -> dict[str, Any]: ...

    async def write_metadata_atomic(self, note_id: str, mutator: MetadataMutator) -> None: ...

    async def create_note(self, note_id: str, content: str) -> Note: ...

    def snapshot(self) -> Corpus: ...


# ─────────────────────────────────────────────────────────────────────────────
# Corpus snapshot
# ─────────────────────────────────────────────────────────────────────────────


def _strip_extension(target: str) -> str:
    return target[: -len(DEFAULT_EXTENSION)] if target.endswith(DEFAULT_EXTENSION) else target


def _ensure_extension(target: str) -> str:
    return target if target.endswith(DEFAULT_EXTENSION) else f"{target}{DEFAULT_EXTENSION}"


class Corpus:
    """Read-only snapshot of every note, in stable enumeration order."""

    def __init__(self, notes: Iterable[Note]) -> None:
        self._notes: dict[str, Note] = {}
        for note in sorted(notes, key=lambda n: n.id):
            self._notes[note.id] = note

        self._by_type: dict[str, list[Note]] = {}
        self._by_basename: dict[str, list[str]] = {}
        self._by_alias: dict[str, str] = {}
        for note in self._notes.values():
            self._by_type.setdefault(note.type, []).append(note)
            self._by_basename.setdefault(note.basename.lower(), []).append(note.id)
            aliases = note.metadata.get("aliases")
            if isinstance(aliases, str):
                aliases = [aliases]
            if isinstance(aliases, list):
                for alias in aliases:
                    key = str(alias).strip().lower() if alias is not None else ""
                    if key and key not in self._by_alias:
                        self._by_alias[key] = note.id

    def __len__(self) -> int:
        return len(self._notes)

    def __contains__(self, note_id: object) -> bool:
        return note_id in self._notes

    @property
    def notes(self) -> list[Note]:
        return list(self._notes.values())

    def get(self, note_id: str) -> Note | None:
        return self._notes.get(note_id)

    def has(self, note_id: str) -> bool:
        return note_id in self._notes

    def notes_of_type(self, entity_type: str) -> list[Note]:
        return list(self._by_type.get(normalize_type(entity_type), []))

    def notes_of_types(self, types: Iterable[str]) -> list[Note]:
        """Notes of any of ``types``, in enumeration order; all notes if empty."""
        wanted = {normalize_type(t) for t in types}
        if not wanted:
            return self.notes
        return [note for note in self._notes.values() if note.type in wanted]

    def resolve_link_relative(self, target: str, source_id: str) -> str | None:
        """Resolve a cleaned link target the way wiki links resolve.

        Attempts resolution in order:
        1. Path relative to the source note's folder
        2. Path from the vault root
        3. Path suffix match (for partial paths like ``people/Ada``)
        4. File name match, preferring the source's folder, then the shortest path
        5. Frontmatter alias (case-insensitive)

        Returns:
            The note id, or None if nothing matches.
        """
        normalized = target.strip().replace("\\", "/").strip("/")
        if not normalized:
            return None
        path = _ensure_extension(normalized)

        source_folder = str(PurePosixPath(source_id).parent) if source_id else "."
        if source_folder != ".":
            relative = f"{source_folder}/{path}"
            if relative in self._notes:
                return relative

        if path in self._notes:
            return path

        if "/" in normalized:
            suffix = f"/{path}".lower()
            matches = [note_id for note_id in self._notes if note_id.lower().endswith(suffix)]
            if matches:
                return self._closest(matches, source_folder)

        stem = PurePosixPath(_strip_extension(normalized)).name.lower()
        if "/" not in normalized and stem in self._by_basename:
            return self._closest(self._by_basename[stem], source_folder)

        return self._by_alias.get(_strip_extension(normalized).lower())

    @staticmethod
    def _closest(candidates: list[str], source_folder: str) -> str:
        same_folder = [c for c in candidates if str(PurePosixPath(c).parent) == source_folder]
        if same_folder:
            return same_folder[0]
        return min(candidates, key=lambda c: (c.count("/"), len(c), c))

    def link_text(self, note_id: str) -> str:
        """Shortest unambiguous link text for a note: basename, else full path."""
        stem = PurePosixPath(note_id).stem
        if len(self._by_basename.get(stem.lower(), [])) <= 1:
            return stem
        return _strip_extension(note_id)

    def replace(self, note: Note) -> Corpus:
        """Return a new snapshot with ``note`` added or replaced."""
        notes = dict(self._notes)
        notes[note.id] = note
        return Corpus(notes.values())


def safe_filename(title: str) -> str:
    """Strip characters that cannot appear in a note file name."""
    cleaned = _UNSAFE_FILENAME_CHARS.sub("", title)
    return re.sub(r"\s+", " ", cleaned).strip()


def next_available_id(corpus: Corpus, folder: str, title: str) -> str:
    """Pick ``folder/title.md``, adding `` 2``, `` 3`` ... until it is unused."""
    stem = safe_filename(title) or "Untitled"
    prefix = f"{folder.strip('/')}/" if folder.strip("/") else ""
    candidate = f"{prefix}{stem}{DEFAULT_EXTENSION}"
    counter = 2
    while corpus.has(candidate):
        candidate = f"{prefix}{stem} {counter}{DEFAULT_EXTENSION}"
        counter += 1
    return candidate


# ─────────────────────────────────────────────────────────────────────────────
# Vault on disk
# ─────────────────────────────────────────────────────────────────────────────


def _atomic_write(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with tempfile.NamedTemporaryFile(
        mode="w", dir=path.parent, delete=False, suffix=".tmp", encoding="utf-8"
    ) as f:
        temp_path = Path(f.name)
        try:
            f.write(text)
        except Exception:
            f.close()
            temp_path.unlink(missing_ok=True)
            raise
    temp_path.replace(path)


class VaultStore:
    """DocumentStore over a directory of markdown notes.

    Each metadata write reads the file, applies the mutator to its
    frontmatter and replaces the file through a temp file in the same
    directory. Writers of the same note are serialised with a per-note lock;
    there is no cross-file transaction.
    """

    def __init__(self, root: Path) -> None:
        self.root = Path(root)
        self._corpus: Corpus | None = None
        # Entries go away once no writer holds the lock
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    def _path(self, note_id: str) -> Path:
        path = (self.root / note_id).resolve()
        if not path.is_relative_to(self.root.resolve()):
            raise ValueError(f"Note id escapes the vault: {note_id}")
        return path

    def _lock(self, note_id: str) -> asyncio.Lock:
        lock = self._locks.get(note_id)
        if lock is None:
            lock = self._locks[note_id] = asyncio.Lock()
        return lock

    def _iter_note_files(self) -> Iterable[Path]:
        for path in sorted(self.root.rglob(f"*{DEFAULT_EXTENSION}")):
            relative = path.relative_to(self.root)
            if any(part.startswith(".") for part in relative.parts):
                continue
            if VAULT_MARKER_DIR in relative.parts:
                continue
            yield path

    def snapshot(self) -> Corpus:
        if self._corpus is None:
            notes = []
            for path in self._iter_note_files():
                try:
                    notes.append(parse_note(path, self.root))
                except ParseError as e:
                    log.debug("Skipping %s: %s", path, e.message)
            self._corpus = Corpus(notes)
        return self._corpus

    def invalidate(self) -> None:
        self._corpus = None

    def list_notes_by_type(self, entity_type: str) -> list[Note]:
        return self.snapshot().notes_of_type(entity_type)

    def resolve_link_relative(self, raw: str, source_id: str) -> str | None:
        return self.snapshot().resolve_link_relative(raw, source_id)

    def read_metadata(self, note_id: str) -> dict[str, Any]:
        return dict(parse_note(self._path(note_id), self.root.resolve()).metadata)

    async def write_metadata_atomic(self, note_id: str, mutator: MetadataMutator) -> None:
        """Apply ``mutator`` to a note's frontmatter and persist it atomically.

        Raises:
            FileNotFoundError: If the note does not exist.
            ParseError: If the note's frontmatter cannot be read.
        """
        path = self._path(note_id)
        async with self._lock(note_id):
            if not path.is_file():
                raise FileNotFoundError(f"Note not found: {note_id}")
            metadata = self.read_metadata(note_id)
            body = read_body(path)
            mutator(metadata)
            _atomic_write(path, render_note(metadata, body))
            self.invalidate()
        log.debug("Updated frontmatter of %s", note_id)

    async def create_note(self, note_id: str, content: str) -> Note:
        """Create a new note file.

        Raises:
            FileExistsError: If a note already exists at ``note_id``.
        """
        path = self._path(note_id)
        async with self._lock(note_id):
            if path.exists():
                raise FileExistsError(f"Note already exists: {note_id}")
            _atomic_write(path, content)
            self.invalidate()
        log.info("Created note %s", note_id)
        return parse_note(path, self.root.resolve())
