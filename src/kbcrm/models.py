"""Pydantic models for notes and entity relationship configuration.

The step, filter and column grammars are closed unions of small models. The
``parse_*`` helpers turn the loose JSON/YAML configuration shapes into those
models; malformed pieces are logged and degrade (dropped steps, permissive
filters) instead of failing the whole entity definition.
"""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import PurePosixPath
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from .config import TYPE_KEYS

log = logging.getLogger(__name__)


class _ConfigModel(BaseModel):
    """Base for configuration models: camelCase aliases, unknown keys ignored."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


def _as_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, (list, tuple, set)):
        items = value
    else:
        items = [value]
    out: list[str] = []
    for item in items:
        text = str(item).strip()
        if text and text not in out:
            out.append(text)
    return out


def normalize_type(value: Any) -> str:
    """Normalize an entity type for comparison (trim + lowercase)."""
    if value is None:
        return ""
    return str(value).strip().lower()


# ─────────────────────────────────────────────────────────────────────────────
# Notes
# ─────────────────────────────────────────────────────────────────────────────


class Note(BaseModel):
    """A typed markdown note: vault-relative path plus its frontmatter."""

    id: str  # Vault-relative path, e.g. "people/Ada Lovelace.md"
    metadata: dict[str, Any] = Field(default_factory=dict)
    created: datetime | None = None  # File creation timestamp, if known

    @property
    def type(self) -> str:
        for key in TYPE_KEYS:
            value = self.metadata.get(key)
            if value is not None and str(value).strip():
                return normalize_type(value)
        return ""

    @property
    def basename(self) -> str:
        return PurePosixPath(self.id).stem

    @property
    def folder(self) -> str:
        parent = str(PurePosixPath(self.id).parent)
        return "" if parent == "." else parent


# ─────────────────────────────────────────────────────────────────────────────
# Query steps
# ─────────────────────────────────────────────────────────────────────────────


class InStep(BaseModel):
    """Notes whose ``property`` links to an anchor (backlinks)."""

    kind: Literal["in"] = "in"
    property: list[str]
    type: list[str] = Field(default_factory=list)


class OutStep(BaseModel):
    """Notes referenced by an anchor's own ``property``."""

    kind: Literal["out"] = "out"
    property: list[str]
    type: list[str] = Field(default_factory=list)


class NotInStep(BaseModel):
    """Backlinks via ``property`` whose type is NOT in ``type``."""

    kind: Literal["notIn"] = "notIn"
    property: list[str]
    type: list[str] = Field(default_factory=list)


class UniqueStep(BaseModel):
    kind: Literal["unique"] = "unique"


class NotHostStep(BaseModel):
    kind: Literal["notHost"] = "notHost"


class TypeFilterStep(BaseModel):
    """Narrow the working set to the given types."""

    kind: Literal["filter"] = "filter"
    type: list[str] = Field(default_factory=list)


Step = Union[InStep, OutStep, NotInStep, UniqueStep, NotHostStep, TypeFilterStep]

_TRAVERSAL_STEPS = {"in": InStep, "out": OutStep, "notIn": NotInStep}


def parse_step(raw: Any) -> Step | None:
    """Parse one configured step; returns None (and logs) when malformed."""
    if isinstance(raw, (InStep, OutStep, NotInStep, UniqueStep, NotHostStep, TypeFilterStep)):
        return raw
    if not isinstance(raw, dict):
        log.warning("Ignoring malformed query step: %r", raw)
        return None

    for key, model in _TRAVERSAL_STEPS.items():
        if key in raw:
            body = raw[key]
            if not isinstance(body, dict):
                log.warning("Ignoring %r step without a property mapping: %r", key, raw)
                return None
            properties = _as_list(body.get("property"))
            if not properties:
                log.warning("Ignoring %r step without properties: %r", key, raw)
                return None
            return model(property=properties, type=_as_list(body.get("type")))

    if raw.get("unique") or raw.get("dedupe"):
        return UniqueStep()
    if raw.get("not") == "host":
        return NotHostStep()
    if "filter" in raw:
        body = raw["filter"]
        types = _as_list(body.get("type")) if isinstance(body, dict) else []
        return TypeFilterStep(type=types)

    log.warning("Ignoring unknown query step: %r", raw)
    return None


class Clause(_ConfigModel):
    """One traversal path of a query: steps applied in order."""

    description: str | None = None
    steps: list[Step] = Field(default_factory=list)

    @field_validator("steps", mode="before")
    @classmethod
    def _parse_steps(cls, value: Any) -> list[Step]:
        if not isinstance(value, list):
            log.warning("Query clause steps must be a list, got %r", value)
            return []
        parsed = (parse_step(item) for item in value)
        return [step for step in parsed if step is not None]


class FindSpec(_ConfigModel):
    query: list[Clause] = Field(default_factory=list)
    combine: Literal["union", "intersect", "subtract"] = "union"

    @field_validator("query", mode="before")
    @classmethod
    def _drop_malformed_clauses(cls, value: Any) -> list[Any]:
        if value is None:
            return []
        if not isinstance(value, list):
            log.warning("Query must be a list of clauses, got %r", value)
            return []
        clauses = []
        for item in value:
            if isinstance(item, (dict, Clause)):
                clauses.append(item)
            else:
                log.warning("Skipping query clause that is not a mapping: %r", item)
        return clauses

    @field_validator("combine", mode="before")
    @classmethod
    def _default_combine(cls, value: Any) -> str:
        if value in ("union", "intersect", "subtract"):
            return value
        if value is not None:
            log.warning("Unknown combine mode %r, using union", value)
        return "union"


# ─────────────────────────────────────────────────────────────────────────────
# Filter expressions
# ─────────────────────────────────────────────────────────────────────────────

CompareOp = Literal[
    "eq", "ne", "gt", "gte", "lt", "lte", "exists", "contains", "notContains", "in", "nin"
]
COMPARE_OPS: tuple[str, ...] = (
    "eq", "ne", "gt", "gte", "lt", "lte", "exists", "contains", "notContains", "in", "nin",
)


class AllExpr(BaseModel):
    kind: Literal["all"] = "all"
    children: list[FilterExpr] = Field(default_factory=list)


class AnyExpr(BaseModel):
    kind: Literal["any"] = "any"
    children: list[FilterExpr] = Field(default_factory=list)


class NotExpr(BaseModel):
    kind: Literal["not"] = "not"
    child: FilterExpr


class TypeInExpr(BaseModel):
    kind: Literal["typeIn"] = "typeIn"
    types: list[str]


class TypeEqExpr(BaseModel):
    kind: Literal["typeEq"] = "typeEq"
    type: str


class PathCompareExpr(BaseModel):
    """Compare the value at a dotted frontmatter path (``.length`` supported)."""

    kind: Literal["path"] = "path"
    path: str
    op: CompareOp
    value: Any = None


class PermissiveExpr(BaseModel):
    """An expression of unrecognized shape; always matches."""

    kind: Literal["permissive"] = "permissive"
    raw: Any = None


FilterExpr = Union[AllExpr, AnyExpr, NotExpr, TypeInExpr, TypeEqExpr, PathCompareExpr, PermissiveExpr]

for _model in (AllExpr, AnyExpr, NotExpr):
    _model.model_rebuild()

_EXPR_TYPES = (AllExpr, AnyExpr, NotExpr, TypeInExpr, TypeEqExpr, PathCompareExpr, PermissiveExpr)


def parse_filter(raw: Any) -> FilterExpr | None:
    """Parse a configured filter; None means "no filter".

    Accepted shapes: ``{"all": [...]}``, ``{"any": [...]}``, ``{"not": expr}``,
    ``{"type": "task"}``, ``{"type": {"in": [...]}}`` and predicate maps such as
    ``{"participants.length": {"gt": 1}, "status": "open"}`` (keys ANDed).
    """
    if raw is None:
        return None
    return _parse_filter_node(raw)


def _parse_filter_node(raw: Any) -> FilterExpr:
    if isinstance(raw, _EXPR_TYPES):
        return raw
    if not isinstance(raw, dict):
        log.warning("Filter expression of unrecognized shape treated as permissive: %r", raw)
        return PermissiveExpr(raw=raw)

    if "all" in raw:
        if not isinstance(raw["all"], list):
            log.warning("Filter 'all' must be a list: %r", raw)
            return PermissiveExpr(raw=raw)
        return AllExpr(children=[_parse_filter_node(item) for item in raw["all"]])
    if "any" in raw:
        if not isinstance(raw["any"], list):
            log.warning("Filter 'any' must be a list: %r", raw)
            return PermissiveExpr(raw=raw)
        return AnyExpr(children=[_parse_filter_node(item) for item in raw["any"]])
    if "not" in raw:
        return NotExpr(child=_parse_filter_node(raw["not"]))

    children: list[FilterExpr] = []
    for key, spec in raw.items():
        key = str(key).strip()
        if key == "type":
            children.append(_parse_type_predicate(spec))
        elif isinstance(spec, dict):
            for op, value in spec.items():
                if op not in COMPARE_OPS:
                    log.warning("Unknown filter operator %r on %r ignored", op, key)
                    children.append(PermissiveExpr(raw={key: {op: value}}))
                    continue
                children.append(PathCompareExpr(path=key, op=op, value=value))
        else:
            children.append(PathCompareExpr(path=key, op="eq", value=spec))

    if len(children) == 1:
        return children[0]
    return AllExpr(children=children)


def _parse_type_predicate(spec: Any) -> FilterExpr:
    if isinstance(spec, str):
        return TypeEqExpr(type=normalize_type(spec))
    if isinstance(spec, list):
        return TypeInExpr(types=[normalize_type(t) for t in spec])
    if isinstance(spec, dict) and "in" in spec:
        return TypeInExpr(types=[normalize_type(t) for t in _as_list(spec["in"])])
    if isinstance(spec, dict) and "eq" in spec:
        return TypeEqExpr(type=normalize_type(spec["eq"]))
    log.warning("Type predicate of unrecognized shape treated as permissive: %r", spec)
    return PermissiveExpr(raw={"type": spec})


# ─────────────────────────────────────────────────────────────────────────────
# Sorting and columns
# ─────────────────────────────────────────────────────────────────────────────


class SortSpec(_ConfigModel):
    strategy: Literal["manual", "column", "date"] = "manual"
    column: str | None = None
    direction: Literal["asc", "desc"] = "asc"

    @model_validator(mode="before")
    @classmethod
    def _degrade_unknown(cls, data: Any) -> Any:
        if isinstance(data, BaseModel):
            data = data.model_dump()
        if not isinstance(data, dict):
            log.warning("Sort config of unrecognized shape, using manual order: %r", data)
            return {"strategy": "manual"}
        data = dict(data)
        if data.get("strategy") not in (None, "manual", "column", "date"):
            log.warning("Unknown sort strategy %r, using manual order", data.get("strategy"))
            return {"strategy": "manual"}
        if data.get("strategy") is None:
            # The entity-list shape omits the strategy: {column, direction}
            data["strategy"] = "column" if data.get("column") else "manual"
        if data.get("direction") not in ("asc", "desc"):
            data.pop("direction", None)
        return data


class _Column(_ConfigModel):
    label: str | None = None
    align: Literal["left", "right", "center"] | None = None


class ShowColumn(_Column):
    type: Literal["show"] = "show"


class DateColumn(_Column):
    type: Literal["date"] = "date"


class AttributeColumn(_Column):
    type: Literal["attribute"] = "attribute"
    key: str


class CoverColumn(_Column):
    type: Literal["cover"] = "cover"
    mode: Literal["cover", "contain"] = "cover"


class EntityIconColumn(_Column):
    type: Literal["entityIcon"] = "entityIcon"


ColumnDef = Annotated[
    Union[ShowColumn, DateColumn, AttributeColumn, CoverColumn, EntityIconColumn],
    Field(discriminator="type"),
]

_COLUMN_TYPES = {"show", "date", "attribute", "cover", "entityIcon"}


def _parse_columns(value: Any) -> list[Any]:
    if value is None:
        return []
    if not isinstance(value, list):
        log.warning("Columns must be a list, got %r", value)
        return []
    kept = []
    for column in value:
        if isinstance(column, BaseModel):
            kept.append(column)
        elif isinstance(column, str) and column in _COLUMN_TYPES:
            kept.append({"type": column})
        elif isinstance(column, str):
            # Entity list shorthand: a bare frontmatter key
            kept.append({"type": "attribute", "key": column})
        elif isinstance(column, dict) and column.get("type") in _COLUMN_TYPES:
            if column["type"] == "attribute" and not column.get("key"):
                log.warning("Attribute column without key ignored: %r", column)
                continue
            kept.append(column)
        else:
            log.warning("Ignoring unknown column definition: %r", column)
    return kept


# ─────────────────────────────────────────────────────────────────────────────
# Creation recipes
# ─────────────────────────────────────────────────────────────────────────────


class CreateSpec(_ConfigModel):
    """The ``create`` block of a createRelated entry (wire shape)."""

    title: str | None = None
    attributes: dict[str, Any] | None = None
    link_properties: list[str] | None = None
    open_after_create: bool | None = None

    @field_validator("link_properties", mode="before")
    @classmethod
    def _listify(cls, value: Any) -> list[str] | None:
        return None if value is None else _as_list(value)


class CreateEntityConfig(_ConfigModel):
    """A panel's ``createEntity`` block."""

    enabled: bool = True
    reference_create: str | None = None
    title: str | None = None
    attributes: dict[str, Any] | None = None
    open_after_create: bool | None = None


class CreateRecipe(BaseModel):
    """Resolved recipe for creating a related note."""

    title_template: str | None = None
    attribute_templates: dict[str, Any] | None = None
    link_properties: list[str] | None = None
    open_after_create: bool = True


class CreateRelatedConfig(_ConfigModel):
    key: str
    label: str | None = None
    icon: str | None = None
    target_type: str | None = None
    panel_key: str | None = None
    create: CreateSpec = Field(default_factory=CreateSpec)

    @property
    def effective_target_type(self) -> str:
        """Explicit target type, else the ``type`` attribute, else the key."""
        if self.target_type:
            return normalize_type(self.target_type)
        attributes = self.create.attributes or {}
        if isinstance(attributes.get("type"), str) and attributes["type"].strip():
            return normalize_type(attributes["type"])
        return normalize_type(self.key)


# ─────────────────────────────────────────────────────────────────────────────
# Links / panels
# ─────────────────────────────────────────────────────────────────────────────


class RelationshipLinkConfig(_ConfigModel):
    """Configuration of one related-items panel."""

    target_type: str | None = None
    target_key: str | None = None
    target: str | None = None  # Legacy: entity type or property name
    properties: list[str] | None = None
    find: FindSpec | None = None
    filter: FilterExpr | None = None
    sort: SortSpec | None = None
    columns: list[ColumnDef] = Field(default_factory=list)
    create_entity: CreateEntityConfig | None = None
    title: str | None = None
    subtitle: str | None = None
    icon: str | None = None
    visibility: Literal["always", "notEmpty"] = "always"
    page_size: int | None = None
    collapsed: bool | None = None

    @model_validator(mode="before")
    @classmethod
    def _legacy_aliases(cls, data: Any) -> Any:
        if isinstance(data, dict) and "properties" not in data and "prop" in data:
            data = dict(data)
            data["properties"] = data.pop("prop")
        return data

    @field_validator("properties", mode="before")
    @classmethod
    def _listify(cls, value: Any) -> list[str] | None:
        return None if value is None else _as_list(value)

    @field_validator("filter", mode="before")
    @classmethod
    def _parse_filter(cls, value: Any) -> FilterExpr | None:
        return parse_filter(value)

    @field_validator("columns", mode="before")
    @classmethod
    def _parse_columns(cls, value: Any) -> list[Any]:
        return _parse_columns(value)

    @property
    def has_query(self) -> bool:
        return bool(self.find and self.find.query)


class LinkConfig(_ConfigModel):
    """An entry of an entity's ``links`` list."""

    type: str
    key: str | None = None
    desc: str | None = None
    collapsed: bool | None = None
    config: RelationshipLinkConfig | None = None

    @model_validator(mode="before")
    @classmethod
    def _legacy_flat_shape(cls, data: Any) -> Any:
        # Legacy backlinks declare the panel fields next to "type"
        if isinstance(data, dict) and data.get("type") == "backlinks" and "config" not in data:
            data = dict(data)
            panel = {k: v for k, v in data.items() if k not in ("type", "key", "desc")}
            data = {k: data[k] for k in ("type", "key", "desc", "collapsed") if k in data}
            data["config"] = panel
        return data

    @property
    def panel_key(self) -> str:
        if self.key:
            return f"backlinks:{self.key}"
        config = self.config or RelationshipLinkConfig()
        target = config.target_type or config.target or self.type
        suffix = f":{config.target_key}" if config.target_key else ""
        return f"backlinks:{normalize_type(target)}{suffix}"


class FrontmatterFieldConfig(_ConfigModel):
    """A frontmatter property editable through the add-property picker."""

    type: str = "entity"
    title: str | None = None
    filter: FilterExpr | None = None
    find: FindSpec | None = None
    multiple: bool = False

    @field_validator("filter", mode="before")
    @classmethod
    def _parse_filter(cls, value: Any) -> FilterExpr | None:
        return parse_filter(value)


class EntityListConfig(_ConfigModel):
    columns: list[ColumnDef] = Field(default_factory=list)
    sort: SortSpec | None = None

    @field_validator("columns", mode="before")
    @classmethod
    def _parse_columns(cls, value: Any) -> list[Any]:
        return _parse_columns(value)


class EntityConfig(_ConfigModel):
    type: str = ""
    name: str
    singular: str | None = None
    icon: str = "tag"
    aliases: list[str] = Field(default_factory=list)
    template: str = ""
    folder: str | None = None  # Vault folder for new notes; defaults to the type
    list_config: EntityListConfig | None = Field(default=None, alias="list")
    frontmatter: dict[str, FrontmatterFieldConfig] = Field(default_factory=dict)
    create_related: list[CreateRelatedConfig] = Field(default_factory=list)
    links: list[LinkConfig] = Field(default_factory=list)

    @field_validator("name")
    @classmethod
    def _name_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Entity `name` must be a non-empty string")
        return value.strip()

    @field_validator("icon", mode="before")
    @classmethod
    def _default_icon(cls, value: Any) -> str:
        if not isinstance(value, str) or not value.strip():
            return "tag"
        return value

    @property
    def display_singular(self) -> str:
        if self.singular:
            return self.singular
        return self.type[:1].upper() + self.type[1:]

    def backlink_panels(self) -> list[LinkConfig]:
        return [link for link in self.links if link.type == "backlinks" and link.config]

    def find_panel(self, key: str) -> LinkConfig | None:
        for link in self.backlink_panels():
            if link.key == key or link.panel_key == key:
                return link
        return None

    def find_create_related(self, key: str) -> CreateRelatedConfig | None:
        for entry in self.create_related:
            if entry.key.strip() == key:
                return entry
        return None


class EntitiesConfig(_ConfigModel):
    """All entity definitions, keyed by normalized type."""

    entities: dict[str, EntityConfig]

    @model_validator(mode="before")
    @classmethod
    def _unwrap_and_key(cls, data: Any) -> Any:
        if isinstance(data, dict) and isinstance(data.get("mondoConfig"), dict):
            data = data["mondoConfig"]
        if isinstance(data, dict) and isinstance(data.get("entities"), dict):
            entities = {}
            for key, value in data["entities"].items():
                if isinstance(value, dict):
                    value = {**value, "type": value.get("type") or key}
                entities[normalize_type(key)] = value
            data = {**data, "entities": entities}
        return data

    @field_validator("entities")
    @classmethod
    def _at_least_one(cls, value: dict[str, EntityConfig]) -> dict[str, EntityConfig]:
        if not value:
            raise ValueError("`entities` must include at least one definition")
        return value

    def get(self, entity_type: str) -> EntityConfig | None:
        return self.entities.get(normalize_type(entity_type))

    @property
    def types(self) -> list[str]:
        return list(self.entities)


# ─────────────────────────────────────────────────────────────────────────────
# Results
# ─────────────────────────────────────────────────────────────────────────────


class LinkResult(BaseModel):
    """Outcome of a pick-or-create flow."""

    note_id: str  # The selected or created note
    created: bool  # True when the note was created by this flow
    host_id: str
    host_property: str | None = None  # Host property that received the link
    backlink_properties: list[str] = Field(default_factory=list)
    open_after_create: bool = True
