"""Tests for relationship query evaluation."""

import pytest

from conftest import make_corpus, make_note
from kbcrm.models import Clause, FindSpec
from kbcrm.query import combine_results, evaluate, evaluate_clause, linked_ids


def ids(notes):
    return [note.id for note in notes]


@pytest.fixture
def company_corpus():
    return make_corpus(
        make_note("companies/H.md", type="company", show="Acme"),
        make_note("people/P1.md", type="person", company="[[H]]"),
        make_note("people/P2.md", type="person", company=["[[companies/H|Acme]]"]),
        make_note("people/P3.md", type="person", company="[[Elsewhere]]"),
        make_note("projects/X.md", type="project", company="[[H]]"),
    )


class TestBacklinks:
    def test_in_step_returns_backlinks(self, company_corpus):
        host = company_corpus.get("companies/H.md")
        clauses = [{"steps": [{"in": {"property": "company", "type": "person"}}]}]
        assert ids(evaluate(host, clauses, company_corpus)) == ["people/P1.md", "people/P2.md"]

    def test_in_without_types_scans_everything(self, company_corpus):
        host = company_corpus.get("companies/H.md")
        clauses = [{"steps": [{"in": {"property": "company"}}]}]
        assert ids(evaluate(host, clauses, company_corpus)) == [
            "people/P1.md",
            "people/P2.md",
            "projects/X.md",
        ]

    def test_scan_follows_type_order(self, company_corpus):
        host = company_corpus.get("companies/H.md")
        clauses = [{"steps": [{"in": {"property": "company", "type": ["project", "person"]}}]}]
        assert ids(evaluate(host, clauses, company_corpus)) == [
            "projects/X.md",
            "people/P1.md",
            "people/P2.md",
        ]


class TestNotIn:
    def test_excludes_types(self):
        corpus = make_corpus(
            make_note("H.md", type="project", linksTo=["[[A]]", "[[B]]"]),
            make_note("A.md", type="task", linksTo="[[H]]"),
            make_note("B.md", type="note", linksTo="[[H]]"),
        )
        host = corpus.get("H.md")
        clauses = [{"steps": [{"notIn": {"property": "linksTo", "type": ["task"]}}]}]
        assert ids(evaluate(host, clauses, corpus)) == ["B.md"]

    def test_catch_all_complements_typed_panels(self):
        """notIn over the panel types returns exactly what typed panels miss."""
        corpus = make_corpus(
            make_note("H.md", type="project"),
            make_note("a.md", type="task", project="[[H]]"),
            make_note("b.md", type="meeting", project="[[H]]"),
            make_note("c.md", type="fact", project="[[H]]"),
            make_note("d.md", project="[[H]]"),
        )
        host = corpus.get("H.md")
        typed = evaluate(host, [{"steps": [{"in": {"property": "project", "type": ["task", "meeting"]}}]}], corpus)
        rest = evaluate(host, [{"steps": [{"notIn": {"property": "project", "type": ["task", "meeting"]}}]}], corpus)
        everything = evaluate(host, [{"steps": [{"in": {"property": "project"}}]}], corpus)
        assert set(ids(typed)).isdisjoint(ids(rest))
        assert set(ids(typed)) | set(ids(rest)) == set(ids(everything))


class TestChainedQueries:
    @pytest.fixture
    def team_corpus(self):
        return make_corpus(
            make_note("teams/Core.md", type="team"),
            make_note("teams/Web.md", type="team"),
            make_note("people/Ada.md", type="person", team=["[[Core]]", "[[Web]]"]),
            make_note("people/Bob.md", type="person", team="[[Core]]"),
            make_note("people/Cy.md", type="person", team=["[[Web]]", "[[Core]]"]),
            make_note("people/Dee.md", type="person", team="[[Other]]"),
        )

    def test_teammates_exclude_self_and_dedup(self, team_corpus):
        host = team_corpus.get("people/Ada.md")
        clauses = [
            {
                "steps": [
                    {"out": {"property": "team", "type": "team"}},
                    {"in": {"property": "team", "type": "person"}},
                    {"not": "host"},
                    {"unique": True},
                ]
            }
        ]
        assert ids(evaluate(host, clauses, team_corpus)) == ["people/Bob.md", "people/Cy.md"]

    def test_out_step_skips_unresolved_and_wrong_type(self, team_corpus):
        host = team_corpus.get("people/Dee.md")
        clause = Clause.model_validate({"steps": [{"out": {"property": "team", "type": "team"}}]})
        assert evaluate_clause(host, clause, team_corpus) == []

    def test_filter_step(self, team_corpus):
        host = team_corpus.get("people/Ada.md")
        clause = Clause.model_validate(
            {"steps": [{"out": {"property": "team"}}, {"filter": {"type": "person"}}]}
        )
        assert evaluate_clause(host, clause, team_corpus) == []


class TestCombine:
    def test_union_keeps_first_seen_order(self):
        a, b, c = make_note("a.md"), make_note("b.md"), make_note("c.md")
        assert ids(combine_results([[b, a], [c, a]])) == ["b.md", "a.md", "c.md"]

    def test_intersect(self):
        a, b, c = make_note("a.md"), make_note("b.md"), make_note("c.md")
        assert ids(combine_results([[a, b, c], [c, a]], "intersect")) == ["a.md", "c.md"]

    def test_subtract(self):
        a, b, c = make_note("a.md"), make_note("b.md"), make_note("c.md")
        assert ids(combine_results([[a, b, c], [b]], "subtract")) == ["a.md", "c.md"]

    def test_empty(self):
        assert combine_results([]) == []


class TestMalformedQueries:
    def test_malformed_steps_are_skipped(self, company_corpus):
        host = company_corpus.get("companies/H.md")
        clauses = [
            {"steps": [{"sideways": {}}, {"in": {"property": "company", "type": "person"}}]},
        ]
        assert ids(evaluate(host, clauses, company_corpus)) == ["people/P1.md", "people/P2.md"]

    def test_clause_without_valid_steps_is_empty(self, company_corpus):
        host = company_corpus.get("companies/H.md")
        assert evaluate(host, [{"steps": [{"in": {"type": "person"}}]}], company_corpus) == []

    def test_non_mapping_clause_ignored(self, company_corpus):
        host = company_corpus.get("companies/H.md")
        assert evaluate(host, ["nonsense"], company_corpus) == []

    def test_non_list_find_query_is_empty(self):
        assert FindSpec.model_validate({"query": "oops"}).query == []
        assert FindSpec.model_validate({"query": None}).query == []

    def test_find_query_drops_non_mapping_clauses(self):
        find = FindSpec.model_validate({"query": ["oops", 3, {"steps": [{"unique": True}]}]})
        assert len(find.query) == 1
        assert [step.kind for step in find.query[0].steps] == ["unique"]


def test_linked_ids_canonicalizes(company_corpus):
    note = company_corpus.get("people/P2.md")
    assert linked_ids(note, ["company", "missing"], company_corpus) == ["companies/H.md"]
