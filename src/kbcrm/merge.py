"""Idempotent link merges on a frontmatter mapping.

Link-valued properties hold either a single reference string or a list of
them. The functions here mutate a metadata dict in place (the caller persists
it through an atomic per-file write) and return whether anything changed.
Applying the same add twice leaves the metadata exactly as one add did.
"""

from __future__ import annotations

import copy
import logging
from collections.abc import Callable
from typing import Any

from .config import RESERVED_TYPE_KEYS

log = logging.getLogger(__name__)

KeyFn = Callable[[Any], str]


def normalize_value(value: Any) -> str:
    """Comparison key of a property item: trimmed string, case preserved."""
    return "" if value is None else str(value).strip()


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str) and not value.strip():
        return True
    return isinstance(value, list) and not value


def _check_not_object(metadata: dict[str, Any], key: str) -> None:
    if isinstance(metadata.get(key), dict):
        raise ValueError(f"Property {key!r} holds an object, not links")


def add_link(metadata: dict[str, Any], key: str, link: str, key_fn: KeyFn | None = None) -> bool:
    """Add ``link`` to ``metadata[key]`` unless an equal entry is present.

    - absent/empty -> ``[link]``
    - scalar -> ``[scalar, link]`` (no-op when they compare equal)
    - list -> appended when missing; first-insertion order is kept

    Args:
        metadata: Frontmatter mapping, mutated in place.
        key: Property name.
        link: Reference to add.
        key_fn: Comparison key; defaults to the trimmed string. Callers pass a
            canonicalizer so that ``[[Ada]]`` and ``[[people/Ada]]`` compare equal.

    Returns:
        True if the metadata changed.

    Raises:
        ValueError: If the property holds a nested object.
    """
    key_fn = key_fn or normalize_value
    _check_not_object(metadata, key)
    current = metadata.get(key)
    wanted = key_fn(link)

    if _is_empty(current):
        metadata[key] = [link]
        return True

    if isinstance(current, list):
        if any(key_fn(item) == wanted for item in current if item is not None):
            return False
        metadata[key] = [*current, link]
        return True

    if key_fn(current) == wanted:
        return False
    metadata[key] = [current, link]
    return True


def remove_link(metadata: dict[str, Any], key: str, link: str, key_fn: KeyFn | None = None) -> bool:
    """Remove every entry of ``metadata[key]`` equal to ``link``.

    A matching scalar deletes the property; a list keeps its shape (possibly
    empty). Removing an absent link is a no-op.

    Returns:
        True if the metadata changed.
    """
    key_fn = key_fn or normalize_value
    _check_not_object(metadata, key)
    current = metadata.get(key)
    unwanted = key_fn(link)

    if _is_empty(current):
        return False

    if isinstance(current, list):
        remaining = [item for item in current if item is None or key_fn(item) != unwanted]
        if len(remaining) == len(current):
            return False
        metadata[key] = remaining
        return True

    if key_fn(current) == unwanted:
        del metadata[key]
        return True
    return False


def set_link(
    metadata: dict[str, Any],
    key: str,
    link: str,
    *,
    multiple: bool,
    key_fn: KeyFn | None = None,
) -> bool:
    """Link through a property declared single- or multi-valued.

    Multi-valued properties merge via :func:`add_link`; single-valued ones are
    replaced by the scalar ``link``.
    """
    if multiple:
        return add_link(metadata, key, link, key_fn)

    key_fn = key_fn or normalize_value
    current = metadata.get(key)
    if not isinstance(current, (list, dict)) and not _is_empty(current):
        if key_fn(current) == key_fn(link):
            return False
    metadata[key] = link
    return True


def merge_value(metadata: dict[str, Any], key: str, value: Any, key_fn: KeyFn | None = None) -> bool:
    """Merge a rendered attribute value into an existing property.

    Absent properties take a copy of ``value``. List values are merged item by
    item with the scalar-to-list upgrade of :func:`add_link`. Existing objects
    and object values are left alone rather than overwritten.

    Returns:
        True if the metadata changed.
    """
    current = metadata.get(key)
    if _is_empty(current):
        if _is_empty(value):
            return False
        metadata[key] = copy.deepcopy(value)
        return True

    if isinstance(current, dict) or isinstance(value, dict):
        log.debug("Not merging object value into %r", key)
        return False

    items = value if isinstance(value, list) else [value]
    changed = False
    for item in items:
        if item is None or isinstance(item, (dict, list)):
            continue
        changed = add_link(metadata, key, item, key_fn) or changed
    return changed


def is_reserved_key(key: str) -> bool:
    return key.strip().lower() in RESERVED_TYPE_KEYS


def apply_attributes(
    metadata: dict[str, Any],
    attributes: dict[str, Any],
    *,
    overwrite: bool = False,
    key_fn: KeyFn | None = None,
) -> list[str]:
    """Write rendered attributes into ``metadata``, never touching the type keys.

    Args:
        metadata: Frontmatter mapping, mutated in place.
        attributes: Rendered attribute values.
        overwrite: Replace existing values (new notes) instead of merging
            (existing notes).

    Returns:
        The property names that changed.
    """
    changed: list[str] = []
    for key, value in attributes.items():
        if is_reserved_key(key):
            continue
        if overwrite:
            if metadata.get(key) != value:
                metadata[key] = copy.deepcopy(value)
                changed.append(key)
        elif merge_value(metadata, key, value, key_fn):
            changed.append(key)
    return changed
