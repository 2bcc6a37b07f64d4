from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Any, Mapping, Union

from persistence.documents import generate_id, touch


@dataclass(frozen=True)
class SetDocument:
    document: Mapping[str, Any]


@dataclass(frozen=True)
class UpdatePersonalInfo:
    changes: Mapping[str, Any]


@dataclass(frozen=True)
class UpdateSettings:
    changes: Mapping[str, Any]


@dataclass(frozen=True)
class AddSection:
    section: Mapping[str, Any]
    index: int | None = None


@dataclass(frozen=True)
class RemoveSection:
    section_id: str


@dataclass(frozen=True)
class UpdateSection:
    section_id: str
    changes: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class SetField:
    name: str
    value: Any


Action = Union[SetDocument, UpdatePersonalInfo, UpdateSettings, AddSection, RemoveSection, UpdateSection, SetField]


def _merge(base: Any, changes: Mapping[str, Any]) -> dict[str, Any]:
    merged = dict(base) if isinstance(base, Mapping) else {}
    merged.update(copy.deepcopy(dict(changes)))
    return merged


def _sections(doc: Mapping[str, Any]) -> list[Any]:
    sections = doc.get("sections")
    return list(sections) if isinstance(sections, list) else []


def apply_action(document: Mapping[str, Any], action: Action) -> dict[str, Any]:
    """
    Return the document that results from `action`. The input is not mutated.

    Every action except SetDocument refreshes `updatedAt`.
    """
    if isinstance(action, SetDocument):
        return copy.deepcopy(dict(action.document))

    doc = copy.deepcopy(dict(document))

    if isinstance(action, UpdatePersonalInfo):
        doc["personalInfo"] = _merge(doc.get("personalInfo"), action.changes)
    elif isinstance(action, UpdateSettings):
        doc["settings"] = _merge(doc.get("settings"), action.changes)
    elif isinstance(action, AddSection):
        section = copy.deepcopy(dict(action.section))
        section.setdefault("id", generate_id())
        section.setdefault("items", [])
        sections = _sections(doc)
        if action.index is None:
            sections.append(section)
        else:
            sections.insert(action.index, section)
        doc["sections"] = sections
    elif isinstance(action, RemoveSection):
        doc["sections"] = [
            s for s in _sections(doc) if not (isinstance(s, Mapping) and s.get("id") == action.section_id)
        ]
        if doc.get("focusedSectionId") == action.section_id:
            doc["focusedSectionId"] = None
    elif isinstance(action, UpdateSection):
        doc["sections"] = [
            _merge(s, action.changes) if isinstance(s, Mapping) and s.get("id") == action.section_id else s
            for s in _sections(doc)
        ]
    elif isinstance(action, SetField):
        if action.name == "id":
            raise ValueError("A document's id cannot be changed")
        doc[action.name] = copy.deepcopy(action.value)
    else:
        raise TypeError(f"Unknown action: {type(action).__name__}")

    return touch(doc)
