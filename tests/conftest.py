"""Shared test fixtures for the kbcrm test suite.

Design:
- tmp_vault: isolated vault in a temp directory (KBCRM_VAULT_ROOT points at it)
- runner / cli_invoke: CliRunner bound to the temp vault
- registry state is reset around every test
"""

import os
from pathlib import Path
from typing import Any, Generator

import pytest
import yaml
from click.testing import CliRunner

from kbcrm import registry
from kbcrm.cli import cli
from kbcrm.models import Note
from kbcrm.store import Corpus


# ─────────────────────────────────────────────────────────────────────────────
# Core Fixtures
# ─────────────────────────────────────────────────────────────────────────────


@pytest.fixture(autouse=True)
def _reset_registry() -> Generator[None, None, None]:
    registry.reset()
    yield
    registry.reset()


@pytest.fixture
def runner() -> CliRunner:
    """CLI runner with isolated environment."""
    return CliRunner()


@pytest.fixture
def tmp_vault(tmp_path: Path) -> Generator[Path, None, None]:
    """Create an isolated vault directory.

    Sets KBCRM_VAULT_ROOT to the temp directory, yields the path, then
    restores the environment.

    Usage:
        def test_something(tmp_vault):
            write_note(tmp_vault, "people/Ada.md", {"type": "person"})
    """
    vault = tmp_path / "vault"
    vault.mkdir()
    (vault / ".kbcrm").mkdir()

    original_root = os.environ.get("KBCRM_VAULT_ROOT")
    original_entities = os.environ.pop("KBCRM_ENTITIES", None)
    os.environ["KBCRM_VAULT_ROOT"] = str(vault)

    yield vault

    if original_root is not None:
        os.environ["KBCRM_VAULT_ROOT"] = original_root
    else:
        os.environ.pop("KBCRM_VAULT_ROOT", None)
    if original_entities is not None:
        os.environ["KBCRM_ENTITIES"] = original_entities


@pytest.fixture
def cli_invoke(runner: CliRunner, tmp_vault: Path):
    """Helper for invoking the CLI against the temp vault.

    Usage:
        def test_panels(cli_invoke):
            result = cli_invoke(["panels", "companies/Acme.md"])
            assert result.exit_code == 0
    """

    def _invoke(args: list[str], input: str | None = None, catch_exceptions: bool = False):
        return runner.invoke(
            cli,
            args,
            input=input,
            catch_exceptions=catch_exceptions,
            env={"KBCRM_VAULT_ROOT": str(tmp_vault)},
        )

    return _invoke


# ─────────────────────────────────────────────────────────────────────────────
# Helper Functions (for test code, not fixtures)
# ─────────────────────────────────────────────────────────────────────────────


def write_note(vault: Path, path: str, metadata: dict[str, Any], body: str = "") -> Path:
    """Write a note with YAML frontmatter.

    Usage in tests:
        from conftest import write_note
        write_note(tmp_vault, "people/Ada.md", {"type": "person", "company": "[[Acme]]"})
    """
    note_path = vault / path
    note_path.parent.mkdir(parents=True, exist_ok=True)
    frontmatter = yaml.safe_dump(metadata, sort_keys=False, allow_unicode=True)
    note_path.write_text(f"---\n{frontmatter}---\n\n{body}\n", encoding="utf-8")
    return note_path


def read_frontmatter(vault: Path, path: str) -> dict[str, Any]:
    """Parse the frontmatter of a note written to disk."""
    text = (vault / path).read_text(encoding="utf-8")
    _, block, _ = text.split("---", 2)
    return yaml.safe_load(block) or {}


def make_note(note_id: str, **metadata: Any) -> Note:
    """In-memory note for pure evaluation tests."""
    return Note(id=note_id, metadata=metadata)


def make_corpus(*notes: Note) -> Corpus:
    return Corpus(notes)
