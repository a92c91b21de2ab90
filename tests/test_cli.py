"""Tests for the kbcrm CLI."""

import json

import pytest

from conftest import read_frontmatter, write_note
from kbcrm.cli import cli, format_json_error, format_table


@pytest.fixture
def vault(tmp_vault):
    write_note(tmp_vault, "companies/Acme.md", {"type": "company"})
    write_note(tmp_vault, "companies/Beta.md", {"type": "company"})
    write_note(tmp_vault, "people/Ada.md", {"type": "person", "company": "[[Acme]]", "role": "CTO"})
    write_note(tmp_vault, "people/Bob.md", {"type": "person"})
    write_note(tmp_vault, "facts/Founded.md", {"type": "fact", "reference": "[[Acme]]"})
    write_note(tmp_vault, "facts/Public.md", {"type": "fact", "reference": ["[[Acme]]"]})
    return tmp_vault


class TestHelpers:
    def test_format_table(self):
        table = format_table([{"a": "x", "b": "long value"}], ["a", "b"], max_widths={"b": 6})
        lines = table.splitlines()
        assert lines[0].split() == ["A", "B"]
        assert lines[2].split() == ["x", "lon..."]

    def test_format_table_empty(self):
        assert format_table([], ["a"]) == ""

    def test_format_json_error(self):
        data = json.loads(format_json_error("CLI_ERROR", "boom", {"note_id": "a.md"}))
        assert data == {"error": {"code": "CLI_ERROR", "message": "boom", "details": {"note_id": "a.md"}}}


class TestReadCommands:
    def test_entities(self, cli_invoke, vault):
        result = cli_invoke(["entities", "--json"])
        assert result.exit_code == 0
        types = [row["type"] for row in json.loads(result.output)]
        assert "person" in types and "company" in types

    def test_panels(self, cli_invoke, vault):
        result = cli_invoke(["panels", "companies/Acme.md", "--json"])
        assert result.exit_code == 0
        counts = {row["key"]: row["count"] for row in json.loads(result.output)}
        assert counts["employees"] == 1
        assert counts["facts"] == 2
        assert "other" not in counts

    def test_related_panel_json(self, cli_invoke, vault):
        result = cli_invoke(["related", "companies/Acme", "--panel", "employees", "--json"])
        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data == {
            "employees": [{"id": "people/Ada.md", "cover": "", "show": "Ada", "team": "", "role": "CTO"}]
        }

    def test_related_text(self, cli_invoke, vault):
        result = cli_invoke(["related", "Acme", "--panel", "facts"])
        assert result.exit_code == 0
        assert "## facts (2)" in result.output
        assert "Founded" in result.output

    def test_unknown_note(self, cli_invoke, vault):
        result = cli_invoke(["related", "nope.md"])
        assert result.exit_code == 1
        assert "Note not found: nope.md" in result.output

    def test_unknown_panel(self, cli_invoke, vault):
        result = cli_invoke(["related", "companies/Acme.md", "--panel", "nope"])
        assert result.exit_code == 1
        assert "available: employees" in result.output


class TestCreateRelated:
    def test_from_create_related_key(self, cli_invoke, vault):
        result = cli_invoke(["create-related", "companies/Acme.md", "task", "--title", "Renew contract"])
        assert result.exit_code == 0
        assert "Created: tasks/Renew contract.md" in result.output
        metadata = read_frontmatter(vault, "tasks/Renew contract.md")
        assert metadata["type"] == "task"
        assert metadata["company"] == ["[[Acme]]"]

    def test_from_panel(self, cli_invoke, vault):
        result = cli_invoke(["create-related", "companies/Acme.md", "--panel", "employees", "--json"])
        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["note_id"] == "people/Untitled Person.md"
        assert data["backlink_properties"] == ["company"]
        assert read_frontmatter(vault, data["note_id"])["company"] == ["[[Acme]]"]

    def test_requires_key_or_panel(self, cli_invoke, vault):
        result = cli_invoke(["create-related", "companies/Acme.md"])
        assert result.exit_code == 2

    def test_unknown_key(self, cli_invoke, vault):
        result = cli_invoke(["create-related", "companies/Acme.md", "spaceship"])
        assert result.exit_code == 1
        assert "No createRelated 'spaceship'" in result.output


class TestWriteCommands:
    def test_link_and_unlink(self, cli_invoke, vault):
        result = cli_invoke(["link", "companies/Acme.md", "people/Bob.md", "--property", "employees"])
        assert result.exit_code == 0
        assert read_frontmatter(vault, "companies/Acme.md")["employees"] == ["[[Bob]]"]

        result = cli_invoke(["unlink", "companies/Acme.md", "employees", "people/Bob.md"])
        assert result.exit_code == 0
        assert read_frontmatter(vault, "companies/Acme.md")["employees"] == []

    def test_link_via_backlink_property(self, cli_invoke, vault):
        result = cli_invoke(["link", "companies/Beta.md", "people/Bob.md", "--via", "company"])
        assert result.exit_code == 0
        assert read_frontmatter(vault, "people/Bob.md")["company"] == ["[[Beta]]"]

    def test_add_property_candidates(self, cli_invoke, vault):
        result = cli_invoke(["add-property", "people/Ada.md", "company", "--json"])
        assert result.exit_code == 0
        assert json.loads(result.output) == [{"id": "companies/Beta.md", "title": "Beta", "type": "company"}]

    def test_add_property_replaces_single_value(self, cli_invoke, vault):
        result = cli_invoke(["add-property", "people/Ada.md", "company", "companies/Beta.md"])
        assert result.exit_code == 0
        assert read_frontmatter(vault, "people/Ada.md")["company"] == "[[Beta]]"

    def test_add_unknown_property(self, cli_invoke, vault):
        result = cli_invoke(["add-property", "people/Ada.md", "shoeSize"])
        assert result.exit_code == 1
        assert "no property 'shoeSize'" in result.output

    def test_reorder_manual_panel(self, cli_invoke, vault):
        result = cli_invoke(["reorder", "companies/Acme.md", "facts", "facts/Public.md"])
        assert result.exit_code == 0

        result = cli_invoke(["related", "companies/Acme.md", "--panel", "facts", "--json"])
        ids = [row["id"] for row in json.loads(result.output)["facts"]]
        assert ids == ["facts/Public.md", "facts/Founded.md"]


class TestErrors:
    def test_json_errors(self, cli_invoke, vault):
        result = cli_invoke(["related", "nope.md", "--json-errors"])
        assert result.exit_code == 1
        assert '"code": "CLI_ERROR"' in result.output
        assert "Note not found" in result.output

    def test_typo_suggestion(self, cli_invoke, vault):
        result = cli_invoke(["relatd", "companies/Acme.md"])
        assert result.exit_code == 2
        assert "Did you mean 'related'?" in result.output

    def test_missing_vault(self, runner, tmp_path, monkeypatch):
        monkeypatch.delenv("KBCRM_VAULT_ROOT", raising=False)
        monkeypatch.chdir(tmp_path)
        result = runner.invoke(cli, ["panels", "x.md"])
        assert result.exit_code == 1
        assert "No vault found" in result.output
