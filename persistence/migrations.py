"""
Schema versioning for persisted resumes.

Schema history:
  v1: initial schema (no version tracking)
  v2: targetJobId, focusedSectionId and the advanced sections
      (projects, certifications, languages, volunteer, customSections)
  v3: personalInfo.profilePicture, complete FormattingSettings

Writers tag payloads with ``_schemaVersion``; untagged payloads are dated by
structural heuristics checked in a fixed order. A payload can satisfy more
than one heuristic, so the order in ``VERSION_HEURISTICS`` is part of the
on-disk contract and must not be rearranged.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping

from .documents import (
    DEFAULT_TITLE,
    FormattingSettings,
    generate_id,
    new_document,
    utc_now_iso,
)

logger = logging.getLogger(__name__)

CURRENT_SCHEMA_VERSION = 3
SCHEMA_VERSION_FIELD = "_schemaVersion"

ADVANCED_SECTIONS = ("projects", "certifications", "languages", "volunteer", "customSections")

_FONT_SIZES = {"small": 10, "medium": 11, "large": 12}
_COLOR_NAMES = {
    "blue": "#3B82F6",
    "green": "#10B981",
    "purple": "#8B5CF6",
    "red": "#EF4444",
    "orange": "#F59E0B",
}


def _has_advanced_sections(payload: Mapping[str, Any]) -> bool:
    return any(name in payload for name in ("projects", "certifications", "targetJobId"))


def _has_profile_picture(payload: Mapping[str, Any]) -> bool:
    info = payload.get("personalInfo")
    return isinstance(info, Mapping) and "profilePicture" in info


def _has_legacy_target_job(payload: Mapping[str, Any]) -> bool:
    return bool(payload.get("targetJob")) and not payload.get("targetJobId")


VERSION_HEURISTICS: tuple[tuple[int, Callable[[Mapping[str, Any]], bool]], ...] = (
    (2, _has_advanced_sections),
    (3, _has_profile_picture),
    (1, _has_legacy_target_job),
)


def _explicit_version(payload: Mapping[str, Any]) -> int | None:
    tag = payload.get(SCHEMA_VERSION_FIELD)
    if isinstance(tag, int) and not isinstance(tag, bool) and tag >= 1:
        return tag
    return None


def detect_version(payload: Any) -> int:
    if not isinstance(payload, Mapping):
        return 1
    explicit = _explicit_version(payload)
    if explicit is not None:
        return explicit
    for version, predicate in VERSION_HEURISTICS:
        if predicate(payload):
            return version
    return 1


# --- upgrade steps ---------------------------------------------------------


def _v1_to_v2(payload: dict[str, Any]) -> dict[str, Any]:
    migrated = copy.deepcopy(payload)
    migrated.setdefault("targetJobId", None)
    migrated.setdefault("focusedSectionId", None)
    for name in ADVANCED_SECTIONS:
        migrated.setdefault(name, [])

    target = migrated.get("targetJob")
    if isinstance(target, Mapping):
        migrated["targetJob"] = {
            **target,
            "title": target.get("title") or "",
            "description": target.get("description") or "",
            "industry": target.get("industry") or "",
        }
    else:
        migrated["targetJob"] = {"title": "", "description": "", "industry": ""}

    migrated[SCHEMA_VERSION_FIELD] = 2
    return migrated


def _v2_to_v3(payload: dict[str, Any]) -> dict[str, Any]:
    migrated = copy.deepcopy(payload)
    info = migrated.get("personalInfo")
    if isinstance(info, Mapping) and "profilePicture" not in info:
        migrated["personalInfo"] = {**info, "profilePicture": ""}

    settings = migrated.get("settings")
    if isinstance(settings, Mapping):
        migrated["settings"] = {
            **FormattingSettings().model_dump(),
            **settings,
            "templateId": settings.get("templateId") or "classic",
        }

    migrated[SCHEMA_VERSION_FIELD] = 3
    return migrated


# Keyed by the version a step upgrades *from*.
MIGRATIONS: dict[int, Callable[[dict[str, Any]], dict[str, Any]]] = {
    1: _v1_to_v2,
    2: _v2_to_v3,
}


# --- final normalization ---------------------------------------------------


def _normalize_personal_info(info: Any) -> dict[str, Any]:
    if not isinstance(info, Mapping):
        info = {}

    def _str(value: Any) -> str:
        return value if isinstance(value, str) else ""

    return {
        **info,
        "fullName": _str(info.get("fullName") or info.get("name")),
        "email": _str(info.get("email")),
        "phone": _str(info.get("phone")),
        "summary": _str(info.get("summary")),
        "linkedin": _str(info.get("linkedin") or info.get("linkedIn")),
        "website": _str(info.get("website") or info.get("portfolio")),
        "location": _str(info.get("location")),
        "jobTitle": _str(info.get("jobTitle")),
        "profilePicture": _str(info.get("profilePicture")),
    }


def _normalize_settings(settings: Any) -> dict[str, Any]:
    if not isinstance(settings, Mapping):
        return FormattingSettings().model_dump()

    font_size = settings.get("fontSize")
    if isinstance(font_size, str):
        font_size = _FONT_SIZES.get(font_size.lower(), 11)
    elif not isinstance(font_size, (int, float)) or isinstance(font_size, bool):
        font_size = 11

    accent = settings.get("accentColor")
    if not isinstance(accent, str) or not accent:
        accent = "#3B82F6"
    elif not accent.startswith("#"):
        accent = _COLOR_NAMES.get(accent.lower(), "#3B82F6")

    line_height = settings.get("lineHeight")
    if not isinstance(line_height, (int, float)) or isinstance(line_height, bool):
        line_height = 1.5

    return {
        **settings,
        "fontFamily": settings.get("fontFamily") or "Inter",
        "fontSize": font_size,
        "accentColor": accent,
        "lineHeight": line_height,
        "layout": settings.get("layout") or "classic",
        "templateId": settings.get("templateId") or "classic",
    }


def _normalize_sections(sections: Any) -> list[dict[str, Any]]:
    if not isinstance(sections, list):
        return []
    normalized = []
    for section in sections:
        if not isinstance(section, Mapping):
            normalized.append(
                {"id": generate_id(), "title": "Untitled Section", "type": "custom", "isVisible": True, "items": []}
            )
            continue
        items = section.get("items")
        normalized.append(
            {
                **section,
                "id": section.get("id") or generate_id(),
                "title": section.get("title") or "Untitled Section",
                "type": section.get("type") or "custom",
                "isVisible": section.get("isVisible") is not False,
                "items": [
                    {**item, "id": item.get("id") or generate_id()} if isinstance(item, Mapping) else item
                    for item in items
                ]
                if isinstance(items, list)
                else [],
            }
        )
    return normalized


def _normalize(payload: dict[str, Any]) -> dict[str, Any]:
    final = dict(payload)
    final["id"] = payload.get("id") or generate_id()
    final["title"] = payload.get("title") or DEFAULT_TITLE
    final["personalInfo"] = _normalize_personal_info(payload.get("personalInfo"))
    final["sections"] = _normalize_sections(payload.get("sections"))
    final["settings"] = _normalize_settings(payload.get("settings"))
    ats = payload.get("atsScore")
    final["atsScore"] = ats if isinstance(ats, (int, float)) and not isinstance(ats, bool) else 0
    final["updatedAt"] = payload.get("updatedAt") or utc_now_iso()
    final["isAISidebarOpen"] = bool(payload.get("isAISidebarOpen", False))
    target = payload.get("targetJob") if isinstance(payload.get("targetJob"), Mapping) else {}
    final["targetJob"] = {
        **target,
        "title": target.get("title") or "",
        "description": target.get("description") or "",
        "industry": target.get("industry") or "",
    }
    final["targetJobId"] = payload.get("targetJobId")
    final["focusedSectionId"] = payload.get("focusedSectionId")
    for name in ADVANCED_SECTIONS:
        value = payload.get(name)
        final[name] = value if isinstance(value, list) else []
    final.pop(SCHEMA_VERSION_FIELD, None)
    return final


def migrate(payload: Any) -> dict[str, Any]:
    """
    Bring `payload` up to CURRENT_SCHEMA_VERSION without dropping any field.

    Pure and idempotent: the input is never mutated and
    ``migrate(migrate(x)) == migrate(x)``. The version tag is stripped from
    the result.
    """
    if not isinstance(payload, Mapping):
        logger.warning("Invalid payload provided to migrate, returning a new document")
        return new_document()

    version = detect_version(payload)
    if version > CURRENT_SCHEMA_VERSION:
        logger.warning("Payload claims schema v%d, newer than v%d", version, CURRENT_SCHEMA_VERSION)

    migrated = copy.deepcopy(dict(payload))
    while version < CURRENT_SCHEMA_VERSION:
        migrated = MIGRATIONS[version](migrated)
        version += 1

    return _normalize(migrated)


def needs_migration(payload: Any) -> bool:
    if not isinstance(payload, Mapping):
        return True
    return detect_version(payload) < CURRENT_SCHEMA_VERSION


def mark_with_current_version(document: Mapping[str, Any]) -> dict[str, Any]:
    return {**document, SCHEMA_VERSION_FIELD: CURRENT_SCHEMA_VERSION}


def strip_version_tag(payload: Mapping[str, Any]) -> dict[str, Any]:
    doc = dict(payload)
    doc.pop(SCHEMA_VERSION_FIELD, None)
    return doc


def upgrade_for_use(payload: Any) -> tuple[dict[str, Any], bool]:
    """
    Return a payload ready for normal use and whether it had to be migrated.

    Current, tagged payloads only lose their tag; anything older (or untagged)
    goes through `migrate`.
    """
    if needs_migration(payload):
        return migrate(payload), True
    return strip_version_tag(payload), False


@dataclass
class MigrationInfo:
    detected_version: int
    current_version: int
    needs_migration: bool
    migration_path: list[int] = field(default_factory=list)


def migration_info(payload: Any) -> MigrationInfo:
    detected = detect_version(payload)
    return MigrationInfo(
        detected_version=detected,
        current_version=CURRENT_SCHEMA_VERSION,
        needs_migration=needs_migration(payload),
        migration_path=list(range(detected + 1, CURRENT_SCHEMA_VERSION + 1)),
    )
