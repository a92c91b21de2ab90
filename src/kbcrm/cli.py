"""Command line interface for kbcrm.

Examples:
    kbcrm panels companies/Acme.md
    kbcrm related companies/Acme.md --panel employees
    kbcrm create-related companies/Acme.md task --title "Renew contract"
    kbcrm add-property people/Ada.md company companies/Acme.md
"""

from __future__ import annotations

import asyncio
import difflib
import json
import sys
from collections.abc import Sequence
from typing import Any

import click
from click.exceptions import ClickException, UsageError

from . import __version__, registry
from ._logging import set_quiet_mode
from .config import ConfigurationError, get_vault_root
from .models import CreateRecipe, EntitiesConfig, EntityConfig, LinkConfig, Note
from .relations import (
    CreationError,
    LinkingError,
    RelationshipError,
    add_property_link,
    build_recipe,
    create_related,
    link_existing,
    match_properties,
    panel_rows,
    panel_target_type,
    property_candidates,
    recipe_from_create_related,
    remove_property_link,
    resolve_related,
    save_order,
)
from .store import Corpus, VaultStore
from .templates import display_name


def run_async(coro):
    """Run async function synchronously."""
    return asyncio.run(coro)


def format_table(rows: list[dict], columns: list[str], max_widths: dict | None = None) -> str:
    """Format rows as a simple table."""
    if not rows:
        return ""

    max_widths = max_widths or {}
    widths = {col: len(col) for col in columns}

    def cell(row: dict, col: str) -> str:
        val = str(row.get(col, ""))
        limit = max_widths.get(col, 50)
        return val[: limit - 3] + "..." if len(val) > limit else val

    for row in rows:
        for col in columns:
            widths[col] = max(widths[col], len(cell(row, col)))

    lines = [
        "  ".join(col.upper().ljust(widths[col]) for col in columns),
        "  ".join("-" * widths[col] for col in columns),
    ]
    for row in rows:
        lines.append("  ".join(cell(row, col).ljust(widths[col]) for col in columns))
    return "\n".join(lines)


def output(data, as_json: bool = False):
    """Output data as JSON or formatted text."""
    if as_json:
        click.echo(json.dumps(data, indent=2, default=str))
    else:
        click.echo(data)


# ─────────────────────────────────────────────────────────────────────────────
# JSON Error Handling
# ─────────────────────────────────────────────────────────────────────────────


def format_json_error(code: str, message: str, details: dict | None = None) -> str:
    """Format an error as JSON for --json-errors output."""
    error: dict[str, dict[str, object]] = {"error": {"code": code, "message": message}}
    if details:
        error["error"]["details"] = details
    return json.dumps(error)


def get_error_code_for_exception(exc: Exception) -> str:
    """Map exceptions to error codes."""
    if isinstance(exc, click.BadParameter):
        return "INVALID_ARGUMENT"
    elif isinstance(exc, click.MissingParameter):
        return "MISSING_ARGUMENT"
    elif isinstance(exc, click.NoSuchOption):
        return "UNKNOWN_OPTION"
    elif isinstance(exc, UsageError):
        return "USAGE_ERROR"
    elif isinstance(exc, ClickException):
        return "CLI_ERROR"
    return "UNKNOWN_ERROR"


class FlowError(ClickException):
    """A create/link failure, with the note left behind (if any)."""

    def __init__(self, message: str, code: str, details: dict | None = None) -> None:
        super().__init__(message)
        self.code = code
        self.details = details


class JsonErrorGroup(click.Group):
    """Click group that formats errors as JSON when --json-errors is set.

    Also suggests the closest command name for typos.
    """

    def resolve_command(self, ctx, args):
        try:
            return super().resolve_command(ctx, args)
        except UsageError as e:
            cmd_name = args[0] if args else ""
            if cmd_name and "No such command" in str(e):
                matches = difflib.get_close_matches(cmd_name, self.list_commands(ctx), n=1, cutoff=0.6)
                if matches:
                    raise UsageError(f"No such command '{cmd_name}'. Did you mean '{matches[0]}'?")
            raise

    def main(
        self,
        args: Sequence[str] | None = None,
        prog_name: str | None = None,
        complete_var: str | None = None,
        standalone_mode: bool = True,
        **extra: Any,
    ) -> Any:
        argv = list(args) if args is not None else list(sys.argv[1:])
        if "--json-errors" not in argv:
            return super().main(argv, prog_name, complete_var, standalone_mode, **extra)

        # --json-errors is accepted anywhere on the command line
        argv = ["--json-errors", *[a for a in argv if a != "--json-errors"]]
        try:
            return super().main(argv, prog_name, complete_var, standalone_mode=False, **extra)
        except FlowError as e:
            click.echo(format_json_error(e.code, e.format_message(), e.details), err=True)
            raise SystemExit(1)
        except ClickException as e:
            click.echo(format_json_error(get_error_code_for_exception(e), e.format_message()), err=True)
            raise SystemExit(1)
        except SystemExit:
            raise
        except Exception as e:
            click.echo(format_json_error("INTERNAL_ERROR", str(e)), err=True)
            raise SystemExit(1)


# ─────────────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────────────


def _open_vault() -> VaultStore:
    try:
        return VaultStore(get_vault_root())
    except ConfigurationError as e:
        raise ClickException(str(e)) from e


def _entities() -> EntitiesConfig:
    try:
        return registry.get()
    except ConfigurationError as e:
        raise ClickException(str(e)) from e


def _find_note(corpus: Corpus, ref: str) -> Note:
    note = corpus.get(ref) or corpus.get(f"{ref}.md")
    if note is None:
        resolved = corpus.resolve_link_relative(ref, "")
        note = corpus.get(resolved) if resolved else None
    if note is None:
        raise ClickException(f"Note not found: {ref}")
    return note


def _host_entity(host: Note, entities: EntitiesConfig) -> EntityConfig:
    entity = entities.get(host.type) if host.type else None
    if entity is None:
        raise ClickException(f"{host.id} has no configured entity type (type: {host.type or 'none'})")
    return entity


def _panel(entity: EntityConfig, key: str) -> LinkConfig:
    panel = entity.find_panel(key)
    if panel is None:
        keys = ", ".join(link.key or link.panel_key for link in entity.backlink_panels())
        raise ClickException(f"No panel {key!r} on {entity.type} (available: {keys})")
    return panel


def _note_summary(note: Note) -> dict[str, str]:
    return {"id": note.id, "title": display_name(note), "type": note.type}


def _run_flow(coro) -> Any:
    try:
        return run_async(coro)
    except CreationError as e:
        raise FlowError(f"Creation failed: {e}", "CREATION_FAILED") from e
    except LinkingError as e:
        raise FlowError(
            f"Note created but not linked: {e}" if e.created else f"Linking failed: {e}",
            "LINKING_FAILED",
            {"note_id": e.note_id, "created": e.created},
        ) from e
    except RelationshipError as e:
        raise FlowError(str(e), "RELATIONSHIP_ERROR") from e


# ─────────────────────────────────────────────────────────────────────────────
# Commands
# ─────────────────────────────────────────────────────────────────────────────


@click.group(cls=JsonErrorGroup)
@click.version_option(version=__version__, prog_name="kbcrm")
@click.option("--json-errors", "json_errors", is_flag=True, help="Output errors as JSON (for programmatic use)")
@click.option(
    "--quiet",
    "-q",
    is_flag=True,
    envvar="KBCRM_QUIET",
    help="Suppress warnings, show only errors and essential output",
)
@click.pass_context
def cli(ctx: click.Context, json_errors: bool, quiet: bool):
    """kbcrm: related notes, queries and pick-or-create for markdown vaults.

    \b
    Read:
      kbcrm entities                         # Configured entity types
      kbcrm panels people/Ada.md             # Panels of a note
      kbcrm related people/Ada.md --panel teammates

    \b
    Write:
      kbcrm create-related companies/Acme.md task --title "Renew contract"
      kbcrm link companies/Acme.md people/Ada.md
      kbcrm add-property people/Ada.md company companies/Acme.md
    """
    ctx.ensure_object(dict)
    ctx.obj["json_errors"] = json_errors
    set_quiet_mode(quiet)


@cli.command("entities")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def entities_cmd(as_json: bool):
    """List configured entity types."""
    config = _entities()
    rows = [
        {
            "type": entity.type,
            "name": entity.name,
            "panels": len(entity.backlink_panels()),
            "create": ", ".join(entry.key for entry in entity.create_related),
        }
        for entity in config.entities.values()
    ]
    if as_json:
        output(rows, as_json=True)
    else:
        click.echo(format_table(rows, ["type", "name", "panels", "create"]))


@cli.command("panels")
@click.argument("host")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def panels(host: str, as_json: bool):
    """List the related-item panels of HOST with their sizes."""
    store = _open_vault()
    corpus = store.snapshot()
    note = _find_note(corpus, host)
    entity = _host_entity(note, _entities())

    rows = []
    for link in entity.backlink_panels():
        config = link.config
        related = resolve_related(note, config, corpus, panel_key=link.panel_key)
        if config.visibility == "notEmpty" and not related:
            continue
        rows.append(
            {
                "key": link.key or link.panel_key,
                "title": config.title or link.desc or link.panel_key,
                "count": len(related),
                "query": "find" if config.has_query else ", ".join(match_properties(note, config)),
            }
        )
    if as_json:
        output(rows, as_json=True)
    else:
        click.echo(format_table(rows, ["key", "title", "count", "query"]))


@cli.command("related")
@click.argument("host")
@click.option("--panel", "panel_key", help="Only this panel (default: all)")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def related(host: str, panel_key: str | None, as_json: bool):
    """Show notes related to HOST, panel by panel."""
    store = _open_vault()
    corpus = store.snapshot()
    note = _find_note(corpus, host)
    entity = _host_entity(note, _entities())
    links = [_panel(entity, panel_key)] if panel_key else entity.backlink_panels()

    result = {}
    for link in links:
        related_notes = resolve_related(note, link.config, corpus, panel_key=link.panel_key)
        if link.config.visibility == "notEmpty" and not related_notes and not panel_key:
            continue
        result[link.key or link.panel_key] = panel_rows(related_notes, link.config.columns)

    if as_json:
        output(result, as_json=True)
        return
    for key, rows in result.items():
        click.echo(f"## {key} ({len(rows)})")
        if rows:
            click.echo(format_table(rows, list(rows[0])))
        click.echo()


@cli.command("create-related")
@click.argument("host")
@click.argument("key", required=False)
@click.option("--panel", "panel_key", help="Create through a panel's createEntity recipe")
@click.option("--title", help="Title of the new note (default: from the recipe)")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def create_related_cmd(host: str, key: str | None, panel_key: str | None, title: str | None, as_json: bool):
    """Create a note related to HOST from a createRelated KEY or a --panel recipe."""
    if not key and not panel_key:
        raise UsageError("Provide a createRelated KEY or --panel")

    store = _open_vault()
    entities = _entities()
    corpus = store.snapshot()
    note = _find_note(corpus, host)
    entity = _host_entity(note, entities)

    if panel_key:
        config = _panel(entity, panel_key).config
        if config.create_entity is not None and not config.create_entity.enabled:
            raise ClickException(f"Panel {panel_key!r} does not allow creating notes")
        target_type = panel_target_type(config)
        if not target_type:
            raise ClickException(f"Panel {panel_key!r} has no target type")
        recipe = build_recipe(
            config.create_entity,
            host_entity=entity,
            target_entity=entities.get(target_type),
            target_type=target_type,
            link_properties=config.properties,
        )
    else:
        entry = entity.find_create_related(key)
        if entry is None:
            available = ", ".join(e.key for e in entity.create_related) or "none"
            raise ClickException(f"No createRelated {key!r} on {entity.type} (available: {available})")
        target_type = entry.effective_target_type
        recipe = recipe_from_create_related(entry, entities.get(target_type))

    result = _run_flow(create_related(store, note, recipe, target_type, entities=entities, title=title))
    if as_json:
        output(result.model_dump(), as_json=True)
    else:
        click.echo(f"Created: {result.note_id}")
        if result.backlink_properties:
            click.echo(f"  Linked back via: {', '.join(result.backlink_properties)}")


@cli.command("link")
@click.argument("host")
@click.argument("target")
@click.option("--property", "host_property", help="Also link TARGET from this HOST property")
@click.option("--via", "link_properties", multiple=True, help="TARGET property linking back to HOST (repeatable)")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def link(host: str, target: str, host_property: str | None, link_properties: tuple[str, ...], as_json: bool):
    """Link an existing TARGET note to HOST (idempotent)."""
    store = _open_vault()
    entities = _entities()
    corpus = store.snapshot()
    host_note = _find_note(corpus, host)
    target_note = _find_note(corpus, target)

    multiple = True
    if host_property:
        entity = entities.get(host_note.type) if host_note.type else None
        field = entity.frontmatter.get(host_property) if entity else None
        multiple = field.multiple if field else True

    recipe = CreateRecipe(link_properties=list(link_properties) or None)
    result = _run_flow(
        link_existing(store, host_note, target_note, recipe, host_property=host_property, multiple=multiple)
    )
    if as_json:
        output(result.model_dump(), as_json=True)
    else:
        click.echo(f"Linked: {result.note_id} -> {result.host_id}")


@cli.command("unlink")
@click.argument("host")
@click.argument("property_name")
@click.argument("target")
def unlink(host: str, property_name: str, target: str):
    """Remove references to TARGET from HOST's PROPERTY_NAME."""
    store = _open_vault()
    corpus = store.snapshot()
    host_note = _find_note(corpus, host)
    target_note = _find_note(corpus, target)
    changed = run_async(remove_property_link(store, host_note, property_name, target_note.id))
    click.echo(f"Removed {target_note.id} from {property_name}" if changed else "Nothing to remove")


@cli.command("add-property")
@click.argument("host")
@click.argument("property_name")
@click.argument("target", required=False)
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def add_property(host: str, property_name: str, target: str | None, as_json: bool):
    """Set an entity-valued PROPERTY_NAME of HOST, or list candidates without TARGET."""
    store = _open_vault()
    corpus = store.snapshot()
    host_note = _find_note(corpus, host)
    entity = _host_entity(host_note, _entities())
    field = entity.frontmatter.get(property_name)
    if field is None:
        available = ", ".join(entity.frontmatter) or "none"
        raise ClickException(f"{entity.type} has no property {property_name!r} (available: {available})")

    if target is None:
        candidates = [_note_summary(n) for n in property_candidates(host_note, property_name, field, corpus)]
        if as_json:
            output(candidates, as_json=True)
        else:
            click.echo(format_table(candidates, ["title", "type", "id"]) or "No candidates")
        return

    target_note = _find_note(corpus, target)
    changed = _run_flow(add_property_link(store, host_note, property_name, field, target_note))
    if as_json:
        output({"host": host_note.id, "property": property_name, "target": target_note.id, "changed": changed}, as_json=True)
    else:
        click.echo(f"Set {property_name} on {host_note.id}" if changed else "Already linked")


@cli.command("reorder")
@click.argument("host")
@click.argument("panel_key")
@click.argument("note_ids", nargs=-1, required=True)
def reorder(host: str, panel_key: str, note_ids: tuple[str, ...]):
    """Save a manual order for a HOST panel (listed notes first)."""
    store = _open_vault()
    corpus = store.snapshot()
    host_note = _find_note(corpus, host)
    link_config = _panel(_host_entity(host_note, _entities()), panel_key)
    ordered = [_find_note(corpus, ref).id for ref in note_ids]
    run_async(save_order(store, host_note.id, link_config.panel_key, ordered))
    click.echo(f"Saved order of {len(ordered)} note(s) for {link_config.panel_key}")


def main():
    """Entry point for kbcrm CLI."""
    from ._logging import configure_logging

    configure_logging()
    cli()


if __name__ == "__main__":
    main()
