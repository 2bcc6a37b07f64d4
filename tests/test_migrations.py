from __future__ import annotations

import copy

import pytest

from persistence.migrations import (
    CURRENT_SCHEMA_VERSION,
    SCHEMA_VERSION_FIELD,
    detect_version,
    mark_with_current_version,
    migrate,
    migration_info,
    needs_migration,
)

V1_DOC = {
    "id": "doc-1",
    "title": "Old resume",
    "personalInfo": {"name": "Grace Hopper", "email": "grace@example.com"},
    "sections": [{"id": "s1", "title": "Experience", "items": [{"company": "Navy"}]}],
    "settings": {"fontSize": "large", "accentColor": "green"},
    "targetJob": {"title": "Compiler engineer"},
    "updatedAt": "2023-01-01T00:00:00.000Z",
    "customFlag": {"keep": "me"},
}

V2_DOC = {
    "id": "doc-2",
    "title": "Mid resume",
    "personalInfo": {"fullName": "Alan Turing"},
    "sections": [],
    "settings": {"fontFamily": "Georgia"},
    "projects": [{"name": "Bombe"}],
    "targetJobId": "job-7",
    "updatedAt": "2024-01-01T00:00:00.000Z",
}


def test_detect_version_heuristics_in_order():
    assert detect_version(V1_DOC) == 1
    assert detect_version(V2_DOC) == 2
    assert detect_version({"personalInfo": {"profilePicture": ""}}) == 3
    # Satisfies both the v2 and v3 predicates; the v2 check runs first.
    assert detect_version({"projects": [], "personalInfo": {"profilePicture": ""}}) == 2
    assert detect_version({}) == 1
    assert detect_version("not a dict") == 1


def test_explicit_tag_wins_and_bools_are_ignored():
    assert detect_version({SCHEMA_VERSION_FIELD: 3, "targetJob": {"title": "x"}}) == 3
    assert detect_version({SCHEMA_VERSION_FIELD: True}) == 1


def test_migrate_v1_normalizes_legacy_fields_and_keeps_unknown_data():
    before = copy.deepcopy(V1_DOC)
    out = migrate(V1_DOC)

    assert V1_DOC == before
    assert out["personalInfo"]["fullName"] == "Grace Hopper"
    assert out["personalInfo"]["profilePicture"] == ""
    assert out["settings"]["fontSize"] == 12
    assert out["settings"]["accentColor"] == "#10B981"
    assert out["settings"]["templateId"] == "classic"
    assert out["targetJob"] == {"title": "Compiler engineer", "description": "", "industry": ""}
    assert out["projects"] == [] and out["customSections"] == []
    assert out["customFlag"] == {"keep": "me"}
    assert out["sections"][0]["items"][0]["company"] == "Navy"
    assert out["sections"][0]["items"][0]["id"]
    assert SCHEMA_VERSION_FIELD not in out


def test_migrate_v2_adds_v3_fields():
    out = migrate(V2_DOC)
    assert out["personalInfo"]["profilePicture"] == ""
    assert out["settings"]["fontFamily"] == "Georgia"
    assert out["settings"]["lineHeight"] == 1.5
    assert out["projects"] == [{"name": "Bombe"}]
    assert out["targetJobId"] == "job-7"


@pytest.mark.parametrize("doc", [V1_DOC, V2_DOC, {}, {"sections": "broken", "settings": None}])
def test_migrate_is_idempotent(doc):
    once = migrate(doc)
    assert migrate(once) == once


def test_non_dict_payload_becomes_new_document():
    out = migrate(None)
    assert out["id"]
    assert out["title"] == "Untitled Resume"


def test_tagging_and_needs_migration():
    current = migrate(V1_DOC)
    tagged = mark_with_current_version(current)
    assert tagged[SCHEMA_VERSION_FIELD] == CURRENT_SCHEMA_VERSION
    assert needs_migration(tagged) is False
    assert needs_migration(V1_DOC) is True

    info = migration_info(V1_DOC)
    assert info.detected_version == 1
    assert info.migration_path == [2, 3]
