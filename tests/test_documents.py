from __future__ import annotations

from persistence.documents import (
    ensure_identity,
    parse_timestamp,
    repair_document,
    touch,
    validate_document,
)


def test_valid_document_passes(make_document):
    result = validate_document(make_document())
    assert result.is_valid
    assert result.summary == "All required fields are filled."


def test_missing_required_fields_are_listed(make_document):
    doc = make_document(title="", sections=[], personalInfo={"fullName": "  "})
    result = validate_document(doc)

    assert not result.is_valid
    assert [e.field for e in result.errors] == ["fullName", "title", "hasContent"]
    assert result.summary.startswith("Please fill in the following required fields:")


def test_projects_count_as_content(make_document):
    doc = make_document(sections=[], projects=[{"name": "Compiler"}])
    assert validate_document(doc).is_valid


def test_ensure_identity_assigns_id_and_timestamp():
    doc = ensure_identity({"id": "", "title": "x"})
    assert doc["id"]
    assert parse_timestamp(doc["updatedAt"]) is not None


def test_touch_never_moves_backwards():
    future = "2999-01-01T00:00:00.000Z"
    touched = touch({"updatedAt": future})
    assert parse_timestamp(touched["updatedAt"]) > parse_timestamp(future)


def test_repair_fills_structure_and_keeps_extras():
    repaired = repair_document({"personalInfo": {"name": "Legacy"}, "extra": 1, "sections": "bad"})
    assert repaired is not None
    assert repaired["id"]
    assert repaired["personalInfo"]["fullName"] == "Legacy"
    assert repaired["sections"] == []
    assert repaired["settings"]["fontFamily"] == "Inter"
    assert repaired["extra"] == 1
    assert repair_document(["not", "a", "dict"]) is None
