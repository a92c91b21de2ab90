"""Tests for filter expression parsing and evaluation."""

import pytest

from conftest import make_corpus, make_note
from kbcrm.filters import filter_notes, matches, resolve_path
from kbcrm.models import AllExpr, AnyExpr, PermissiveExpr, parse_filter


@pytest.fixture
def meeting():
    return make_note(
        "meetings/Sync.md",
        type="meeting",
        participants=["[[Ada]]", "[[Bob]]"],
        status="open",
        priority=3,
        location={"city": "Paris"},
    )


class TestParseFilter:
    def test_none_is_no_filter(self):
        assert parse_filter(None) is None

    def test_predicate_map_is_anded(self):
        expr = parse_filter({"status": "open", "priority": {"gt": 1}})
        assert isinstance(expr, AllExpr)
        assert len(expr.children) == 2

    def test_unknown_shape_is_permissive(self):
        assert isinstance(parse_filter("status == open"), PermissiveExpr)

    def test_unknown_operator_is_permissive(self):
        assert isinstance(parse_filter({"status": {"like": "op%"}}), PermissiveExpr)

    def test_nested_groups(self):
        expr = parse_filter({"any": [{"type": "task"}, {"not": {"status": "done"}}]})
        assert isinstance(expr, AnyExpr)


class TestMatches:
    def test_no_filter_matches(self, meeting):
        assert matches(meeting, None) is True

    def test_empty_all_and_any(self, meeting):
        """An empty conjunction holds; an empty disjunction does not."""
        assert matches(meeting, parse_filter({"all": []})) is True
        assert matches(meeting, parse_filter({"any": []})) is False

    def test_not(self, meeting):
        assert matches(meeting, parse_filter({"not": {"status": "done"}})) is True

    def test_type_predicates(self, meeting):
        assert matches(meeting, parse_filter({"type": "Meeting"})) is True
        assert matches(meeting, parse_filter({"type": {"in": ["task", "meeting"]}})) is True
        assert matches(meeting, parse_filter({"type": ["task"]})) is False

    def test_length(self, meeting):
        assert matches(meeting, parse_filter({"participants.length": {"gt": 1}})) is True
        assert matches(meeting, parse_filter({"missing.length": {"eq": 0}})) is True

    def test_nested_path(self, meeting):
        assert matches(meeting, parse_filter({"location.city": "Paris"})) is True

    def test_exists(self, meeting):
        assert matches(meeting, parse_filter({"status": {"exists": True}})) is True
        assert matches(meeting, parse_filter({"owner": {"exists": False}})) is True

    def test_contains_ignores_link_decoration(self, meeting):
        assert matches(meeting, parse_filter({"participants": {"contains": "Ada"}})) is True
        assert matches(meeting, parse_filter({"participants": {"notContains": "[[Eve]]"}})) is True

    def test_ordering_on_incomparable_types_is_false(self, meeting):
        assert matches(meeting, parse_filter({"status": {"gt": 1}})) is False
        assert matches(meeting, parse_filter({"priority": {"lt": "high"}})) is False

    def test_in_and_nin(self, meeting):
        assert matches(meeting, parse_filter({"status": {"in": ["open", "blocked"]}})) is True
        assert matches(meeting, parse_filter({"status": {"nin": ["open"]}})) is False

    def test_contains_this_requires_host(self, meeting):
        corpus = make_corpus(meeting, make_note("people/Ada.md", type="person"))
        host = corpus.get("people/Ada.md")
        expr = parse_filter({"participants": {"contains": "@this"}})
        assert matches(meeting, expr, host=host, corpus=corpus) is True
        assert matches(meeting, expr) is False

    def test_permissive_matches(self, meeting):
        assert matches(meeting, parse_filter(["not", "a", "filter"])) is True


class TestResolvePath:
    def test_dotted_key_matched_literally_first(self):
        assert resolve_path({"a.b": 1, "a": {"b": 2}}, "a.b") == 1

    def test_scalar_length_is_one(self):
        assert resolve_path({"company": "[[Acme]]"}, "company.length") == 1

    def test_unresolved_is_none(self):
        assert resolve_path({"a": 1}, "a.b") is None


def test_filter_notes_preserves_order():
    notes = [make_note(f"t/{i}.md", status="open" if i % 2 else "done") for i in range(5)]
    kept = filter_notes(notes, parse_filter({"status": "open"}))
    assert [n.id for n in kept] == ["t/1.md", "t/3.md"]
