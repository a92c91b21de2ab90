"""Related-note panels and the pick-or-create flow.

Reading side: :func:`resolve_related` turns a panel configuration into the
ordered list of related notes (query or simple backlink, then filter, then
sort).

Writing side: creating a related note and linking notes together. A new
note is written in one call with its backlinks already in its frontmatter;
linking the host is a second write to a different file. The two writes are
not atomic together, so a failure of the second one raises
:class:`LinkingError`, which carries the created note and can retry the
linking without creating the note again.
"""

from __future__ import annotations

import copy
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime
from enum import Enum
from typing import Any

import frontmatter

from .config import DEFAULT_SORT, MATCH_PROPERTY_SYNONYMS, STATE_KEY
from .filters import filter_notes
from .merge import KeyFn, add_link, apply_attributes, remove_link, set_link
from .models import (
    Clause,
    ColumnDef,
    CreateEntityConfig,
    CreateRecipe,
    CreateRelatedConfig,
    DateColumn,
    EntitiesConfig,
    EntityConfig,
    FrontmatterFieldConfig,
    InStep,
    LinkResult,
    Note,
    OutStep,
    RelationshipLinkConfig,
    ShowColumn,
    SortSpec,
    TypeFilterStep,
    normalize_type,
)
from .parser.links import build_wikilink, canonicalize
from .parser.markdown import render_note
from .query import evaluate, linked_ids
from .sorting import apply_saved_order, column_value, sort_notes
from .store import Corpus, DocumentStore, next_available_id
from .templates import (
    TemplateContext,
    display_name,
    render_attributes,
    render_note_template,
    render_title,
)

log = logging.getLogger(__name__)

DEFAULT_COLUMNS: list[ColumnDef] = [ShowColumn(), DateColumn()]


class RelationshipError(Exception):
    """Base class for failures of the create/link flows."""


class CreationError(RelationshipError):
    """The document store could not create the note; nothing was written."""


class LinkingError(RelationshipError):
    """A metadata write failed after the target note was created or selected.

    Attributes:
        note_id: The note that exists but is not (fully) linked.
        created: True if ``note_id`` was created by the failed flow.
    """

    def __init__(
        self,
        message: str,
        *,
        note_id: str,
        created: bool,
        retry: Callable[[], Awaitable[LinkResult]] | None = None,
    ) -> None:
        super().__init__(message)
        self.note_id = note_id
        self.created = created
        self._retry = retry

    async def retry_linking(self) -> LinkResult:
        """Run the linking step again; the note is never recreated."""
        if self._retry is None:
            raise RelationshipError(f"Linking of {self.note_id} cannot be retried")
        return await self._retry()


class FlowStateError(RelationshipError):
    """An operation was attempted in a state that does not allow it."""


def canonical_key(source_id: str, corpus: Corpus) -> KeyFn:
    """Comparison key for merges: the canonical id as seen from ``source_id``."""
    return lambda value: canonicalize(value, source_id, corpus)


# ─────────────────────────────────────────────────────────────────────────────
# Panels (read side)
# ─────────────────────────────────────────────────────────────────────────────


def default_match_properties(host: Note) -> list[str]:
    """Properties a simple backlink panel matches when none are configured."""
    if not host.type:
        return []
    return [host.type, *MATCH_PROPERTY_SYNONYMS.get(host.type, ())]


def panel_target_type(config: RelationshipLinkConfig) -> str | None:
    """Entity type a panel lists: configured, else the last typed step of its query."""
    target = config.target_type or config.target
    if target:
        return normalize_type(target)
    if config.find and config.find.query:
        for step in reversed(config.find.query[0].steps):
            if isinstance(step, (InStep, OutStep, TypeFilterStep)) and step.type:
                return normalize_type(step.type[0])
    return None


def recipe_link_properties(recipe: CreateRecipe, host: Note) -> list[str]:
    """Properties of a new note that link back to the host.

    Blank and repeated names are dropped. An absent or empty list falls back
    to ``[host_type]``.
    """
    props = [p.strip() for p in recipe.link_properties or [] if p and p.strip()]
    if props:
        return list(dict.fromkeys(props))
    return [host.type] if host.type else []


def match_properties(host: Note, config: RelationshipLinkConfig) -> list[str]:
    if config.properties:
        return list(config.properties)
    if config.target_key:
        return [config.target_key.strip()]
    return default_match_properties(host)


def saved_order(host: Note, panel_key: str | None) -> list[str]:
    """Manual order persisted on the host under ``crmState.<panel>.order``."""
    if not panel_key:
        return []
    state = host.metadata.get(STATE_KEY)
    if not isinstance(state, dict) or not isinstance(state.get(panel_key), dict):
        return []
    order = state[panel_key].get("order")
    return [str(item) for item in order] if isinstance(order, list) else []


def resolve_related(
    host: Note,
    config: RelationshipLinkConfig,
    corpus: Corpus,
    *,
    panel_key: str | None = None,
) -> list[Note]:
    """Related notes of ``host`` for one panel.

    Query panels evaluate their clauses; simple panels list notes of the target
    type whose match properties link to the host. The optional filter is
    applied next, then the sort (newest first when none is configured). Manual
    sorting honours an order saved on the host for ``panel_key``.
    """
    if config.find and config.find.query:
        notes = evaluate(host, config.find.query, corpus, config.find.combine)
    else:
        properties = match_properties(host, config)
        target_type = panel_target_type(config)
        if not properties:
            log.debug("Panel %s on %s has no match properties", panel_key, host.id)
            return []
        clause = Clause(steps=[InStep(property=properties, type=[target_type] if target_type else [])])
        notes = evaluate(host, [clause], corpus)

    notes = filter_notes(notes, config.filter, host=host, corpus=corpus)

    sort = config.sort or SortSpec.model_validate(DEFAULT_SORT)
    if sort.strategy == "manual":
        return apply_saved_order(notes, saved_order(host, panel_key))
    return sort_notes(notes, sort)


def panel_rows(notes: list[Note], columns: list[ColumnDef] | None = None) -> list[dict[str, str]]:
    """Table rows for a panel: note id plus one display string per column."""
    columns = columns or DEFAULT_COLUMNS
    rows = []
    for note in notes:
        row = {"id": note.id}
        for column in columns:
            header = column.label or getattr(column, "key", None) or column.type
            row[header] = column_value(note, column)
        rows.append(row)
    return rows


async def save_order(store: DocumentStore, host_id: str, panel_key: str, order: list[str]) -> None:
    """Persist a manual panel order on the host note."""

    def mutate(metadata: dict[str, Any]) -> None:
        state = metadata.get(STATE_KEY)
        state = copy.deepcopy(state) if isinstance(state, dict) else {}
        panel_state = state.get(panel_key) if isinstance(state.get(panel_key), dict) else {}
        panel_state["order"] = list(dict.fromkeys(order))
        state[panel_key] = panel_state
        metadata[STATE_KEY] = state

    await store.write_metadata_atomic(host_id, mutate)


# ─────────────────────────────────────────────────────────────────────────────
# Recipes
# ─────────────────────────────────────────────────────────────────────────────


def recipe_from_create_related(entry: CreateRelatedConfig, target: EntityConfig | None = None) -> CreateRecipe:
    create = entry.create
    open_after = create.open_after_create
    return CreateRecipe(
        title_template=create.title or _default_title(target, entry.effective_target_type),
        attribute_templates=create.attributes,
        link_properties=create.link_properties,
        open_after_create=True if open_after is None else open_after,
    )


def build_recipe(
    create_entity: CreateEntityConfig | None,
    *,
    host_entity: EntityConfig | None = None,
    target_entity: EntityConfig | None = None,
    target_type: str | None = None,
    link_properties: list[str] | None = None,
) -> CreateRecipe:
    """Resolve a panel's ``createEntity`` block into a recipe.

    ``referenceCreate`` names a ``createRelated`` entry of the host entity whose
    recipe is used as the base; the panel's own title/attributes override it.
    """
    create_entity = create_entity or CreateEntityConfig()
    base = CreateRecipe(link_properties=link_properties)

    if create_entity.reference_create and host_entity:
        entry = host_entity.find_create_related(create_entity.reference_create.strip())
        if entry is None:
            log.warning(
                "createEntity references unknown createRelated %r on %s",
                create_entity.reference_create,
                host_entity.type,
            )
        else:
            base = recipe_from_create_related(entry, target_entity)
            if link_properties is not None:
                base.link_properties = link_properties

    title = create_entity.title or base.title_template
    if not title:
        title = _default_title(target_entity, target_type)
    attributes = dict(base.attribute_templates or {})
    attributes.update(create_entity.attributes or {})
    open_after = create_entity.open_after_create
    return CreateRecipe(
        title_template=title,
        attribute_templates=attributes or None,
        link_properties=base.link_properties,
        open_after_create=base.open_after_create if open_after is None else open_after,
    )


def _default_title(target: EntityConfig | None, target_type: str | None) -> str:
    if target is not None:
        return f"Untitled {target.display_singular}"
    if target_type:
        return f"Untitled {target_type[:1].upper()}{target_type[1:]}"
    return "Untitled"


# ─────────────────────────────────────────────────────────────────────────────
# Create and link (write side)
# ─────────────────────────────────────────────────────────────────────────────


def _initial_metadata(
    target: EntityConfig | None, title: str, target_type: str, now: datetime
) -> tuple[dict[str, Any], str]:
    if target is None or not target.template.strip():
        return {"type": target_type}, ""
    text = render_note_template(target.template, title=title, entity_type=target_type, now=now).lstrip()
    if not text.startswith("---") and "\n---" in text:
        # Templates may omit the opening fence and start with frontmatter keys
        text = f"---\n{text}"
    post = frontmatter.loads(text)
    metadata = dict(post.metadata)
    metadata["type"] = target_type
    return metadata, post.content


async def create_note_for(
    store: DocumentStore,
    host: Note,
    recipe: CreateRecipe,
    target_type: str,
    *,
    entities: EntitiesConfig | None = None,
    title: str | None = None,
    now: datetime | None = None,
) -> Note:
    """Render a recipe and create the note, backlinks included.

    The new note's frontmatter gets the rendered attributes and a link to the
    host in each link property (``[host_type]`` by default), all in the single
    create call.

    Raises:
        CreationError: If the store fails to create the note.
    """
    now = now or datetime.now()
    target_type = normalize_type(target_type)
    corpus = store.snapshot()
    context = TemplateContext(host=host, host_link=build_wikilink(corpus.link_text(host.id)), now=now)

    note_title = (title or "").strip() or render_title(recipe.title_template, context)
    target = entities.get(target_type) if entities else None
    folder = (target.folder if target and target.folder is not None else target_type) or ""
    note_id = next_available_id(corpus, folder, note_title)

    metadata, body = _initial_metadata(target, note_title, target_type, now)
    apply_attributes(metadata, render_attributes(recipe.attribute_templates, context), overwrite=True)

    link_properties = recipe_link_properties(recipe, host)
    key_fn = canonical_key(note_id, corpus)
    for prop in link_properties:
        add_link(metadata, prop, context.host_link, key_fn)

    try:
        created = await store.create_note(note_id, render_note(metadata, body))
    except Exception as e:
        log.error("Failed to create %s note %s: %s", target_type, note_id, e)
        raise CreationError(f"Could not create {note_id}: {e}") from e
    return created


async def link_to_host(
    store: DocumentStore,
    host: Note,
    target: Note,
    *,
    host_property: str | None = None,
    multiple: bool = True,
    link_properties: list[str] | None = None,
    attribute_templates: dict[str, Any] | None = None,
    created: bool = False,
    now: datetime | None = None,
) -> LinkResult:
    """Wire an existing note to the host.

    - rendered ``attribute_templates`` are merged into the target (type keys
      are never touched) and a host link is added to each of
      ``link_properties``, in one write of the target
    - ``host_property`` on the host receives a link to the target; a
      single-valued property (``multiple=False``) is replaced

    Raises:
        LinkingError: If a metadata write fails. Writes already done stay done;
            retrying is safe because every merge is idempotent.
    """
    corpus = store.snapshot()
    if not corpus.has(target.id):
        corpus = corpus.replace(target)
    host_link = build_wikilink(corpus.link_text(host.id))
    target_link = build_wikilink(corpus.link_text(target.id))
    context = TemplateContext(host=host, host_link=host_link, now=now or datetime.now())
    attributes = render_attributes(attribute_templates, context)
    backlink_properties = list(link_properties or [])

    async def run() -> LinkResult:
        try:
            if attributes or backlink_properties:
                target_key = canonical_key(target.id, corpus)

                def mutate_target(metadata: dict[str, Any]) -> None:
                    apply_attributes(metadata, attributes, key_fn=target_key)
                    for prop in backlink_properties:
                        add_link(metadata, prop, host_link, target_key)

                await store.write_metadata_atomic(target.id, mutate_target)

            if host_property:
                host_key = canonical_key(host.id, corpus)

                def mutate_host(metadata: dict[str, Any]) -> None:
                    set_link(metadata, host_property, target_link, multiple=multiple, key_fn=host_key)

                await store.write_metadata_atomic(host.id, mutate_host)
        except Exception as e:
            log.error("Linking %s to %s failed: %s", target.id, host.id, e)
            raise LinkingError(
                f"{target.id} exists but could not be linked to {host.id}: {e}",
                note_id=target.id,
                created=created,
                retry=run,
            ) from e

        return LinkResult(
            note_id=target.id,
            created=created,
            host_id=host.id,
            host_property=host_property,
            backlink_properties=backlink_properties,
        )

    return await run()


async def create_related(
    store: DocumentStore,
    host: Note,
    recipe: CreateRecipe,
    target_type: str,
    *,
    entities: EntitiesConfig | None = None,
    host_property: str | None = None,
    multiple: bool = True,
    title: str | None = None,
    now: datetime | None = None,
) -> LinkResult:
    """Create a related note from a recipe and link it to the host.

    Raises:
        CreationError: Nothing was created.
        LinkingError: The note was created but the host could not be linked.
    """
    note = await create_note_for(
        store, host, recipe, target_type, entities=entities, title=title, now=now
    )
    link_properties = recipe_link_properties(recipe, host)
    result = LinkResult(
        note_id=note.id,
        created=True,
        host_id=host.id,
        backlink_properties=link_properties,
        open_after_create=recipe.open_after_create,
    )
    if host_property:
        linked = await link_to_host(
            store, host, note, host_property=host_property, multiple=multiple, created=True, now=now
        )
        result.host_property = linked.host_property
    return result


async def link_existing(
    store: DocumentStore,
    host: Note,
    target: Note,
    recipe: CreateRecipe | None = None,
    *,
    host_property: str | None = None,
    multiple: bool = True,
    now: datetime | None = None,
) -> LinkResult:
    """Link an already existing note, applying the recipe's attributes to it."""
    recipe = recipe or CreateRecipe()
    link_properties = recipe.link_properties
    if link_properties is None and not host_property:
        link_properties = [host.type] if host.type else []
    return await link_to_host(
        store,
        host,
        target,
        host_property=host_property,
        multiple=multiple,
        link_properties=link_properties,
        attribute_templates=recipe.attribute_templates,
        now=now,
    )


# ─────────────────────────────────────────────────────────────────────────────
# Add-property flow
# ─────────────────────────────────────────────────────────────────────────────


def property_candidates(
    host: Note, key: str, field: FrontmatterFieldConfig, corpus: Corpus
) -> list[Note]:
    """Notes offered by the picker of an entity-valued frontmatter property.

    Candidates come from the field's query (or every note), narrowed by its
    filter; the host and notes already linked through ``key`` are excluded.
    """
    if field.find and field.find.query:
        notes = evaluate(host, field.find.query, corpus, field.find.combine)
    else:
        notes = corpus.notes
    notes = filter_notes(notes, field.filter, host=host, corpus=corpus)
    already = set(linked_ids(host, [key], corpus))
    notes = [note for note in notes if note.id != host.id and note.id not in already]
    return sorted(notes, key=lambda note: display_name(note).lower())


async def add_property_link(
    store: DocumentStore, host: Note, key: str, field: FrontmatterFieldConfig, target: Note
) -> bool:
    """Link ``target`` through the host's ``key``; single-valued fields are replaced."""
    corpus = store.snapshot()
    link = build_wikilink(corpus.link_text(target.id))
    key_fn = canonical_key(host.id, corpus)
    changed = False

    def mutate(metadata: dict[str, Any]) -> None:
        nonlocal changed
        changed = set_link(metadata, key, link, multiple=field.multiple, key_fn=key_fn)

    await store.write_metadata_atomic(host.id, mutate)
    return changed


async def remove_property_link(store: DocumentStore, host: Note, key: str, target_id: str) -> bool:
    """Remove every reference to ``target_id`` from the host's ``key``."""
    corpus = store.snapshot()
    key_fn = canonical_key(host.id, corpus)
    changed = False

    def mutate(metadata: dict[str, Any]) -> None:
        nonlocal changed
        changed = remove_link(metadata, key, target_id, key_fn)

    await store.write_metadata_atomic(host.id, mutate)
    return changed


# ─────────────────────────────────────────────────────────────────────────────
# Pick-or-create state machine
# ─────────────────────────────────────────────────────────────────────────────


class FlowState(str, Enum):
    IDLE = "idle"
    SEARCHING = "searching"
    SELECTING = "selecting"
    CREATING = "creating"
    LINKING = "linking"
    ABANDONED = "abandoned"
    FAILED = "failed"


class PickOrCreateFlow:
    """Pick an existing related note or create a new one, then link it.

    States: IDLE -> SEARCHING -> (SELECTING | CREATING) -> LINKING -> IDLE.
    ``abandon()`` is accepted until linking starts; afterwards the flow makes
    no further writes. A failure moves the flow to FAILED and re-raises; the
    caller may search again to start over.
    """

    def __init__(
        self,
        store: DocumentStore,
        host: Note,
        candidates: list[Note],
        recipe: CreateRecipe,
        target_type: str,
        *,
        entities: EntitiesConfig | None = None,
        host_property: str | None = None,
        multiple: bool = True,
        now: datetime | None = None,
    ) -> None:
        self.store = store
        self.host = host
        self.candidates = list(candidates)
        self.recipe = recipe
        self.target_type = normalize_type(target_type)
        self.entities = entities
        self.host_property = host_property
        self.multiple = multiple
        self.now = now
        self.state = FlowState.IDLE
        self.query = ""
        self.last_result: LinkResult | None = None

    def _require(self, *allowed: FlowState) -> None:
        if self.state not in allowed:
            names = ", ".join(s.value for s in allowed)
            raise FlowStateError(f"Cannot do that while {self.state.value} (allowed: {names})")

    @property
    def visible(self) -> list[Note]:
        """Candidates whose display name contains the current search text."""
        needle = self.query.strip().lower()
        if not needle:
            return list(self.candidates)
        return [note for note in self.candidates if needle in display_name(note).lower()]

    def search(self, text: str) -> list[Note]:
        self._require(FlowState.IDLE, FlowState.SEARCHING, FlowState.FAILED)
        self.state = FlowState.SEARCHING
        self.query = text
        return self.visible

    def abandon(self) -> None:
        """Stop the flow; no write happens after this."""
        if self.state is FlowState.LINKING:
            raise FlowStateError("Linking already started and cannot be abandoned")
        self.state = FlowState.ABANDONED
        log.debug("Pick-or-create flow on %s abandoned", self.host.id)

    async def select(self, note: Note) -> LinkResult:
        """Link an existing note (its attributes merged from the recipe)."""
        self._require(FlowState.IDLE, FlowState.SEARCHING)
        self.state = FlowState.SELECTING
        return await self._link(note, created=False)

    async def create(self, title: str | None = None) -> LinkResult:
        """Create a note from the recipe (``title`` overrides the template)."""
        self._require(FlowState.IDLE, FlowState.SEARCHING)
        self.state = FlowState.CREATING
        try:
            note = await create_note_for(
                self.store,
                self.host,
                self.recipe,
                self.target_type,
                entities=self.entities,
                title=title or (self.query.strip() or None),
                now=self.now,
            )
        except CreationError:
            self.state = FlowState.FAILED
            raise

        if self.state is FlowState.ABANDONED:
            log.info("Flow abandoned after creating %s; host left unlinked", note.id)
            return LinkResult(note_id=note.id, created=True, host_id=self.host.id)
        return await self._link(note, created=True)

    async def _link(self, note: Note, *, created: bool) -> LinkResult:
        if self.state is FlowState.ABANDONED:
            raise FlowStateError("Flow was abandoned")
        self.state = FlowState.LINKING
        link_properties = recipe_link_properties(self.recipe, self.host)
        if not created and self.recipe.link_properties is not None:
            link_properties = list(self.recipe.link_properties)
        try:
            result = await link_to_host(
                self.store,
                self.host,
                note,
                host_property=self.host_property,
                multiple=self.multiple,
                # A created note already carries its backlinks and attributes
                link_properties=None if created else link_properties,
                attribute_templates=None if created else self.recipe.attribute_templates,
                created=created,
                now=self.now,
            )
        except LinkingError:
            self.state = FlowState.FAILED
            raise
        if created:
            result.backlink_properties = link_properties
        result.open_after_create = self.recipe.open_after_create
        self.state = FlowState.IDLE
        self.query = ""
        self.last_result = result
        return result
