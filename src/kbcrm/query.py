"""Relationship query evaluation over a corpus snapshot.

A query is a list of clauses; each clause threads a working set of notes
through its steps, starting from the host note:

    out {property: team, type: team}     host -> its teams
    in  {property: team, type: person}   teams -> people linking to them
    not host                              drop the host itself
    unique                                dedupe

Traversal steps anchor on the current working set, so the first one starts
from the host and later ones chain from the previous step's results.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any, Literal, assert_never

from pydantic import ValidationError

from .models import (
    Clause,
    InStep,
    Note,
    NotHostStep,
    NotInStep,
    OutStep,
    Step,
    TypeFilterStep,
    UniqueStep,
    normalize_type,
)
from .parser.links import canonicalize, extract_references
from .store import Corpus

log = logging.getLogger(__name__)

CombineMode = Literal["union", "intersect", "subtract"]


def unique_by_id(notes: Iterable[Note]) -> list[Note]:
    """Dedupe by note id, keeping the first occurrence."""
    seen: set[str] = set()
    result: list[Note] = []
    for note in notes:
        if note.id not in seen:
            seen.add(note.id)
            result.append(note)
    return result


def linked_ids(note: Note, properties: list[str], corpus: Corpus) -> list[str]:
    """Canonical ids referenced by ``note`` through any of ``properties``."""
    ids: list[str] = []
    for prop in properties:
        for ref in extract_references(note.metadata.get(prop)):
            target = canonicalize(ref, note.id, corpus)
            if target and target not in ids:
                ids.append(target)
    return ids


def _scan(corpus: Corpus, types: list[str]) -> list[Note]:
    # Scan in the configured type order, then enumeration order
    if not types:
        return corpus.notes
    notes: list[Note] = []
    for entity_type in dict.fromkeys(normalize_type(t) for t in types):
        notes.extend(corpus.notes_of_type(entity_type))
    return notes


def _backlinks(
    anchors: list[Note], candidates: list[Note], properties: list[str], host: Note, corpus: Corpus
) -> list[Note]:
    anchor_ids = {anchor.id for anchor in anchors}
    found: list[Note] = []
    for candidate in candidates:
        if candidate.id == host.id:
            continue
        if anchor_ids.intersection(linked_ids(candidate, properties, corpus)):
            found.append(candidate)
    return unique_by_id(found)


def _forward_links(anchors: list[Note], step: OutStep, corpus: Corpus) -> list[Note]:
    wanted = {normalize_type(t) for t in step.type}
    found: list[Note] = []
    for anchor in anchors:
        for target_id in linked_ids(anchor, step.property, corpus):
            target = corpus.get(target_id)
            if target is None:
                continue
            if wanted and target.type not in wanted:
                continue
            found.append(target)
    return unique_by_id(found)


def apply_step(working: list[Note], step: Step, host: Note, corpus: Corpus) -> list[Note]:
    """Apply one step to the working set."""
    match step:
        case InStep():
            return _backlinks(working, _scan(corpus, step.type), step.property, host, corpus)
        case OutStep():
            return _forward_links(working, step, corpus)
        case NotInStep():
            excluded = {normalize_type(t) for t in step.type}
            candidates = [note for note in corpus.notes if note.type not in excluded]
            return _backlinks(working, candidates, step.property, host, corpus)
        case TypeFilterStep():
            if not step.type:
                return working
            wanted = {normalize_type(t) for t in step.type}
            return [note for note in working if note.type in wanted]
        case UniqueStep():
            return unique_by_id(working)
        case NotHostStep():
            return [note for note in working if note.id != host.id]
        case _:
            assert_never(step)


def evaluate_clause(host: Note, clause: Clause, corpus: Corpus) -> list[Note]:
    """Run a clause's steps from ``[host]``; the result is deduped by id."""
    if not clause.steps:
        return []
    working = [host]
    for step in clause.steps:
        working = apply_step(working, step, host, corpus)
    return unique_by_id(working)


def combine_results(results: list[list[Note]], combine: CombineMode = "union") -> list[Note]:
    """Combine clause results.

    - union: every note, first-seen order across clauses
    - intersect: notes present in every clause, first clause order
    - subtract: first clause notes not present in any later clause
    """
    if not results:
        return []
    if combine == "union":
        return unique_by_id(note for result in results for note in result)
    if combine == "intersect":
        common = set.intersection(*({note.id for note in result} for result in results))
        return [note for note in unique_by_id(results[0]) if note.id in common]
    if combine == "subtract":
        removed = {note.id for result in results[1:] for note in result}
        return [note for note in unique_by_id(results[0]) if note.id not in removed]
    assert_never(combine)


def _parse_clause(raw: Any) -> Clause | None:
    if isinstance(raw, Clause):
        return raw
    try:
        return Clause.model_validate(raw)
    except ValidationError as e:
        log.warning("Ignoring malformed query clause %r: %s", raw, e.errors()[0]["msg"])
        return None


def evaluate(
    host: Note,
    clauses: list[Clause] | list[dict[str, Any]],
    corpus: Corpus,
    combine: CombineMode = "union",
) -> list[Note]:
    """Evaluate a relationship query for ``host``.

    Args:
        host: The note the query is evaluated for.
        clauses: Parsed clauses, or raw clause mappings from configuration.
        corpus: Snapshot of the vault.
        combine: How clause results are merged.

    Returns:
        Related notes in first-discovered order, without duplicate ids.
    """
    parsed = [clause for clause in (_parse_clause(c) for c in clauses) if clause is not None]
    results = [evaluate_clause(host, clause, corpus) for clause in parsed]
    related = combine_results(results, combine)
    log.debug("Query for %s matched %d note(s) across %d clause(s)", host.id, len(related), len(parsed))
    return related
