"""Built-in entity definitions.

Used when no ``entities.yaml`` is configured. The structure is the same
camelCase shape a YAML file uses, validated through :class:`EntitiesConfig`.
"""

from __future__ import annotations

from typing import Any

from .models import EntitiesConfig

_NOTE_TEMPLATE = "---\ndate: {{date}}\n---\n"

_SHOW_ASC = {"strategy": "column", "column": "show", "direction": "asc"}


def _panel(key: str, title: str, target_type: str, properties: list[str], **config: Any) -> dict[str, Any]:
    return {
        "type": "backlinks",
        "key": key,
        "config": {"targetType": target_type, "properties": properties, "title": title, **config},
    }


def _create(key: str, label: str, panel_key: str, **create: Any) -> dict[str, Any]:
    return {
        "key": key,
        "label": label,
        "panelKey": panel_key,
        "create": {"attributes": {"type": key}, **create},
    }


def _reference_panels(host_type: str) -> list[dict[str, Any]]:
    """Facts, logs, documents and tasks pointing at the host via ``reference``."""
    properties = ["reference", host_type]
    return [
        _panel("facts", "Facts", "fact", properties, sort={"strategy": "manual"}),
        _panel("logs", "Logs", "log", properties),
        _panel("documents", "Documents", "document", properties, sort={"strategy": "manual"}),
        _panel(
            "tasks",
            "Tasks",
            "task",
            properties,
            columns=["show", {"type": "attribute", "key": "status"}, {"type": "date", "align": "right"}],
            sort={"strategy": "manual"},
        ),
    ]


def _other_links(excluded: list[str]) -> dict[str, Any]:
    """Catch-all panel: notes linking via linksTo that no typed panel shows."""
    return {
        "type": "backlinks",
        "key": "other",
        "config": {
            "title": "Other links",
            "visibility": "notEmpty",
            "find": {"query": [{"steps": [{"notIn": {"property": "linksTo", "type": excluded}}]}]},
        },
    }


_REFERENCE_TYPES = ["fact", "log", "document", "task"]

DEFAULT_ENTITIES: dict[str, Any] = {
    "person": {
        "name": "People",
        "icon": "user",
        "folder": "people",
        "template": "---\ndate: {{date}}\ncompany: []\nrole: []\nteam: []\n---\n",
        "list": {"columns": ["cover", "show", "company", "role", "team"], "sort": {"column": "show"}},
        "frontmatter": {
            "company": {"type": "entity", "title": "Company", "filter": {"type": "company"}},
            "team": {"type": "entity", "title": "Team", "filter": {"type": "team"}, "multiple": True},
            "reportsTo": {"type": "entity", "title": "Reports to", "filter": {"type": "person"}},
        },
        "createRelated": [
            _create("meeting", "Meeting", "meetings", title="{date} with {show}",
                    attributes={"type": "meeting", "participants": ["{@this}"]},
                    linkProperties=["participants"]),
            _create("task", "Task", "tasks"),
        ],
        "links": [
            {
                "type": "backlinks",
                "key": "reports",
                "config": {
                    "title": "Reports",
                    "find": {"query": [{"steps": [{"in": {"property": ["reportsTo"], "type": "person"}}]}]},
                    "sort": _SHOW_ASC,
                    "columns": ["cover", "show", {"type": "attribute", "key": "role"}],
                    "createEntity": {"title": "Untitled Report", "attributes": {"reportsTo": "{@this}"}},
                },
            },
            {
                "type": "backlinks",
                "key": "teammates",
                "desc": "People who share at least one team with the host",
                "config": {
                    "targetType": "person",
                    "title": "Teammates",
                    "find": {
                        "query": [
                            {
                                "steps": [
                                    {"out": {"property": ["team", "teams"], "type": "team"}},
                                    {"in": {"property": ["team", "teams"], "type": "person"}},
                                    {"not": "host"},
                                    {"unique": True},
                                ]
                            }
                        ],
                        "combine": "union",
                    },
                    "sort": _SHOW_ASC,
                    "columns": ["cover", "show", {"type": "attribute", "key": "role"},
                                {"type": "attribute", "key": "team"}],
                    "createEntity": {"title": "Untitled Teammate", "attributes": {"team": "{@this.team}"}},
                },
            },
            {
                "type": "backlinks",
                "key": "1o1s",
                "config": {
                    "targetType": "meeting",
                    "title": "1:1s",
                    "find": {"query": [{"steps": [{"in": {"property": ["participants", "people"], "type": "meeting"}}]}]},
                    "filter": {"participants.length": {"eq": 1}},
                    "sort": {"strategy": "date", "direction": "desc"},
                    "createEntity": {"referenceCreate": "meeting"},
                },
            },
            {
                "type": "backlinks",
                "key": "meetings",
                "config": {
                    "targetType": "meeting",
                    "title": "Meetings",
                    "find": {"query": [{"steps": [{"in": {"property": ["participants", "people"], "type": "meeting"}}]}]},
                    "filter": {"participants.length": {"gt": 1}},
                    "sort": {"strategy": "date", "direction": "desc"},
                    "createEntity": {"referenceCreate": "meeting"},
                },
            },
            *_reference_panels("person"),
            _other_links(_REFERENCE_TYPES + ["meeting"]),
        ],
    },
    "company": {
        "name": "Companies",
        "icon": "building-2",
        "folder": "companies",
        "template": "---\ndate: {{date}}\nlocation: []\n---\n",
        "list": {"columns": ["show", "location"]},
        "createRelated": [
            _create("person", "Person", "employees"),
            _create("team", "Team", "teams"),
            _create("project", "Project", "projects"),
            _create("task", "Task", "tasks"),
        ],
        "links": [
            _panel("employees", "Employees", "person", ["company"], sort=_SHOW_ASC,
                   columns=["cover", "show", {"type": "attribute", "key": "team"},
                            {"type": "attribute", "key": "role"}],
                   createEntity={"referenceCreate": "person"}),
            _panel("teams", "Teams", "team", ["company"], sort=_SHOW_ASC, columns=["show"],
                   createEntity={"referenceCreate": "team"}),
            {
                "type": "backlinks",
                "key": "projects",
                "config": {
                    "targetType": "project",
                    "title": "Projects",
                    "find": {
                        "query": [
                            {
                                "description": "Direct projects linked via company property",
                                "steps": [{"in": {"property": ["company"], "type": "project"}}, {"unique": True}],
                            },
                            {
                                "description": "Projects linked to teams that belong to this company",
                                "steps": [
                                    {"in": {"property": ["company"], "type": "team"}},
                                    {"in": {"property": ["team", "teams"], "type": "project"}},
                                    {"unique": True},
                                ],
                            },
                        ],
                        "combine": "union",
                    },
                    "sort": {"strategy": "manual"},
                    "columns": ["show", {"type": "attribute", "key": "status"},
                                {"type": "attribute", "key": "team"}, {"type": "date", "align": "right"}],
                },
            },
            *_reference_panels("company"),
            _other_links(_REFERENCE_TYPES + ["person", "team", "project"]),
        ],
    },
    "team": {
        "name": "Teams",
        "icon": "layers",
        "folder": "teams",
        "template": "---\ndate: {{date}}\ncompany: []\n---\n",
        "frontmatter": {
            "company": {"type": "entity", "title": "Company", "filter": {"type": "company"}},
        },
        "createRelated": [
            _create("person", "Member", "members", attributes={"type": "person", "team": ["{@this}"]},
                    linkProperties=[]),
            _create("project", "Project", "projects"),
        ],
        "links": [
            _panel("members", "Members", "person", ["team", "teams"], sort=_SHOW_ASC,
                   columns=["cover", "show", {"type": "attribute", "key": "role"}],
                   createEntity={"referenceCreate": "person"}),
            _panel("projects", "Projects", "project", ["team", "teams"]),
            *_reference_panels("team"),
        ],
    },
    "project": {
        "name": "Projects",
        "icon": "folder-git-2",
        "folder": "projects",
        "template": "---\ndate: {{date}}\nstatus: active\n---\n",
        "list": {"columns": ["show", "status", "company"], "sort": {"column": "show"}},
        "frontmatter": {
            "company": {"type": "entity", "title": "Company", "filter": {"type": "company"}},
            "team": {"type": "entity", "title": "Team", "filter": {"type": "team"}, "multiple": True},
            "participants": {"type": "entity", "title": "People", "filter": {"type": "person"}, "multiple": True},
        },
        "createRelated": [_create("task", "Task", "tasks"), _create("log", "Log", "logs", title="{date} {show}")],
        "links": [
            _panel("people", "People", "person", ["project", "projects"], sort=_SHOW_ASC),
            *_reference_panels("project"),
        ],
    },
    "task": {
        "name": "Tasks",
        "icon": "check-square",
        "folder": "tasks",
        "template": "---\ndate: {{date}}\nstatus: todo\n---\n",
        "list": {"columns": ["show", "status", "date"], "sort": {"column": "date", "direction": "desc"}},
        "frontmatter": {
            "participants": {"type": "entity", "title": "Assignees", "filter": {"type": "person"}, "multiple": True},
            "project": {"type": "entity", "title": "Project", "filter": {"type": "project"}},
        },
        "links": [_panel("subtasks", "Subtasks", "task", ["task", "parent"])],
    },
    "meeting": {
        "name": "Meetings",
        "icon": "calendar",
        "folder": "meetings",
        "template": "---\ndate: {{date}}\ntime: {{time}}\nparticipants: []\n---\n",
        "list": {"columns": ["show", "participants", "date"], "sort": {"column": "date", "direction": "desc"}},
        "frontmatter": {
            "participants": {"type": "entity", "title": "Participants", "filter": {"type": "person"}, "multiple": True},
        },
        "createRelated": [_create("task", "Task", "tasks"), _create("fact", "Fact", "facts")],
        "links": [*_reference_panels("meeting")],
    },
    "fact": {"name": "Facts", "icon": "file-text", "folder": "facts", "template": _NOTE_TEMPLATE},
    "log": {"name": "Logs", "icon": "clipboard-list", "folder": "logs", "template": _NOTE_TEMPLATE},
    "document": {"name": "Documents", "icon": "paperclip", "folder": "documents", "template": _NOTE_TEMPLATE},
}


def default_entities() -> EntitiesConfig:
    """Validated built-in entity configuration."""
    return EntitiesConfig.model_validate({"entities": DEFAULT_ENTITIES})
