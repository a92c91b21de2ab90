"""Tests for panel sorting and column values."""

from datetime import date, datetime

from conftest import make_note
from kbcrm.models import Note, SortSpec
from kbcrm.sorting import (
    apply_saved_order,
    column_value,
    effective_date,
    natural_key,
    sort_notes,
)


def ids(notes):
    return [note.id for note in notes]


class TestEffectiveDate:
    def test_date_combined_with_time(self):
        note = make_note("m.md", date=date(2024, 3, 7), time="14:30")
        assert effective_date(note) == datetime(2024, 3, 7, 14, 30)

    def test_sexagesimal_time(self):
        """Unquoted YAML 09:15 arrives as an int of minutes."""
        note = make_note("m.md", date="2024-03-07", time=555)
        assert effective_date(note) == datetime(2024, 3, 7, 9, 15)

    def test_full_datetime_ignores_time(self):
        note = make_note("m.md", date="2024-03-07T08:00:00", time="14:30")
        assert effective_date(note) == datetime(2024, 3, 7, 8, 0)

    def test_legacy_datetime_key(self):
        note = make_note("m.md", datetime="2023-12-31T23:00:00")
        assert effective_date(note) == datetime(2023, 12, 31, 23, 0)

    def test_created_fallback(self):
        note = Note(id="m.md", created=datetime(2022, 1, 1))
        assert effective_date(note) == datetime(2022, 1, 1)

    def test_unparseable_is_undated(self):
        assert effective_date(make_note("m.md", date="someday")) is None


class TestSortNotes:
    def test_manual_keeps_incoming_order(self):
        notes = [make_note("b.md"), make_note("a.md"), make_note("c.md")]
        assert ids(sort_notes(notes, SortSpec(strategy="manual"))) == ["b.md", "a.md", "c.md"]
        assert ids(sort_notes(notes, None)) == ["b.md", "a.md", "c.md"]

    def test_column_natural_order(self):
        notes = [make_note("x/Item 10.md"), make_note("x/item 2.md"), make_note("x/Item 1.md")]
        spec = {"strategy": "column", "column": "show"}
        assert ids(sort_notes(notes, spec)) == ["x/Item 1.md", "x/item 2.md", "x/Item 10.md"]

    def test_column_descending(self):
        notes = [make_note("a.md", status="b"), make_note("b.md", status="a"), make_note("c.md", status="c")]
        spec = SortSpec(strategy="column", column="status", direction="desc")
        assert ids(sort_notes(notes, spec)) == ["c.md", "a.md", "b.md"]

    def test_column_sort_is_stable(self):
        notes = [make_note(f"{i}.md", status="same") for i in range(4)]
        spec = SortSpec(strategy="column", column="status")
        assert ids(sort_notes(notes, spec)) == ids(notes)

    def test_date_descending_undated_last(self):
        notes = [
            make_note("none.md"),
            make_note("old.md", date="2020-01-01"),
            make_note("new.md", date="2024-01-01"),
            make_note("none2.md", date="not a date"),
        ]
        spec = SortSpec(strategy="date", direction="desc")
        assert ids(sort_notes(notes, spec)) == ["new.md", "old.md", "none.md", "none2.md"]

    def test_date_ascending_undated_last(self):
        notes = [make_note("none.md"), make_note("new.md", date="2024-01-01"), make_note("old.md", date="2020-01-01")]
        assert ids(sort_notes(notes, {"strategy": "date"})) == ["old.md", "new.md", "none.md"]

    def test_unknown_strategy_degrades_to_manual(self):
        notes = [make_note("b.md"), make_note("a.md")]
        assert ids(sort_notes(notes, {"strategy": "random"})) == ["b.md", "a.md"]

    def test_entity_list_shape(self):
        """``{column, direction}`` without a strategy sorts by that column."""
        spec = SortSpec.model_validate({"column": "show", "direction": "desc"})
        assert spec.strategy == "column"


class TestColumnValue:
    def test_wikilink_attribute_shows_alias_or_name(self):
        note = make_note("t.md", company="[[companies/Acme|ACME]]", owner="[[people/Ada]]")
        assert column_value(note, "company") == "ACME"
        assert column_value(note, "owner") == "Ada"

    def test_list_attribute_joined(self):
        note = make_note("t.md", team=["[[Core]]", None, "[[Web]]"])
        assert column_value(note, "team") == "Core, Web"

    def test_date_column(self):
        note = make_note("t.md", date=date(2024, 3, 7))
        assert column_value(note, "date") == "2024-03-07T00:00"

    def test_show_column(self):
        assert column_value(make_note("people/Ada.md", name="Ada L."), "show") == "Ada L."


def test_natural_key_case_insensitive():
    assert natural_key("File 2") < natural_key("file 10")


class TestSavedOrder:
    def test_listed_notes_first(self):
        notes = [make_note("a.md"), make_note("b.md"), make_note("c.md")]
        assert ids(apply_saved_order(notes, ["c.md", "a.md"])) == ["c.md", "a.md", "b.md"]

    def test_unknown_and_duplicate_ids_ignored(self):
        notes = [make_note("a.md"), make_note("b.md")]
        assert ids(apply_saved_order(notes, ["gone.md", "b.md", "b.md"])) == ["b.md", "a.md"]

    def test_no_order(self):
        notes = [make_note("a.md")]
        assert ids(apply_saved_order(notes, None)) == ["a.md"]
