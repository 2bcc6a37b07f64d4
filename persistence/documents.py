"""
Document helpers.

The sync core treats a resume as an opaque JSON-compatible dict with an `id`
and an `updatedAt`. The pydantic models below only describe the parts that
validation and repair need; unknown fields are always preserved.
"""

from __future__ import annotations

import copy
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Mapping

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

logger = logging.getLogger(__name__)

DEFAULT_TITLE = "Untitled Resume"


class PersonalInfo(BaseModel):
    model_config = ConfigDict(extra="allow")

    fullName: str = ""
    email: str = ""
    phone: str = ""
    summary: str = ""
    linkedin: str | None = None
    website: str | None = None
    location: str | None = None
    jobTitle: str | None = None
    profilePicture: str | None = None


class ResumeSection(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str
    title: str = "Untitled Section"
    type: str = "custom"
    isVisible: bool = True
    items: list[Any] = Field(default_factory=list)


class FormattingSettings(BaseModel):
    model_config = ConfigDict(extra="allow")

    fontFamily: str = "Inter"
    fontSize: float = 11
    accentColor: str = "#3B82F6"
    lineHeight: float = 1.5
    layout: str = "classic"
    templateId: str = "classic"


class TargetJob(BaseModel):
    model_config = ConfigDict(extra="allow")

    title: str = ""
    description: str = ""
    industry: str = ""


class ResumeDocument(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str = Field(min_length=1)
    title: str = DEFAULT_TITLE
    personalInfo: PersonalInfo = Field(default_factory=PersonalInfo)
    sections: list[ResumeSection] = Field(default_factory=list)
    settings: FormattingSettings = Field(default_factory=FormattingSettings)
    atsScore: float = 0
    updatedAt: str
    targetJob: TargetJob = Field(default_factory=TargetJob)
    targetJobId: str | None = None
    focusedSectionId: str | None = None
    projects: list[Any] = Field(default_factory=list)
    certifications: list[Any] = Field(default_factory=list)
    languages: list[Any] = Field(default_factory=list)
    volunteer: list[Any] = Field(default_factory=list)
    customSections: list[Any] = Field(default_factory=list)


class RequiredFieldError(BaseModel):
    field: str
    label: str
    section: str
    message: str


class ValidationResult(BaseModel):
    is_valid: bool
    errors: list[RequiredFieldError] = Field(default_factory=list)
    summary: str = ""


# --- time & identity -------------------------------------------------------


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def utc_now_iso() -> str:
    return to_iso(utc_now())


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO-8601 timestamp (with or without `Z`); naive values are UTC."""
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(text)
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def generate_id() -> str:
    return str(uuid.uuid4())


def new_document(**fields: Any) -> dict[str, Any]:
    """A fresh, empty resume with a new id."""
    doc = ResumeDocument(id=generate_id(), updatedAt=utc_now_iso()).model_dump(mode="json")
    doc.update(copy.deepcopy(fields))
    if not doc.get("id"):
        doc["id"] = generate_id()
    return doc


def ensure_identity(document: Mapping[str, Any]) -> dict[str, Any]:
    doc = copy.deepcopy(dict(document))
    if not isinstance(doc.get("id"), str) or not doc["id"].strip():
        doc["id"] = generate_id()
        logger.info("Assigned new id %s to document without identity", doc["id"])
    if not parse_timestamp(doc.get("updatedAt")):
        doc["updatedAt"] = utc_now_iso()
    return doc


def touch(document: Mapping[str, Any]) -> dict[str, Any]:
    """Copy of `document` with `updatedAt` refreshed, never moving backwards."""
    doc = copy.deepcopy(dict(document))
    now = utc_now()
    previous = parse_timestamp(doc.get("updatedAt"))
    if previous is not None and previous >= now:
        now = previous + timedelta(milliseconds=1)
    doc["updatedAt"] = to_iso(now)
    return doc


# --- validation ------------------------------------------------------------


def _has_content(doc: Mapping[str, Any]) -> bool:
    sections = doc.get("sections") or []
    if any(isinstance(s, Mapping) and s.get("items") for s in sections):
        return True
    return bool(doc.get("projects")) or bool(doc.get("certifications"))


def validate_document(document: Mapping[str, Any]) -> ValidationResult:
    """Structural check plus the required fields a resume must have before it is saved."""
    errors: list[RequiredFieldError] = []

    try:
        ResumeDocument.model_validate(document)
    except PydanticValidationError as e:
        for err in e.errors():
            loc = ".".join(str(p) for p in err.get("loc", ()))
            errors.append(
                RequiredFieldError(
                    field=loc or "document",
                    label=loc or "Document",
                    section="Resume",
                    message=err.get("msg", "Invalid value"),
                )
            )

    info = document.get("personalInfo") if isinstance(document.get("personalInfo"), Mapping) else {}
    full_name = info.get("fullName") if isinstance(info, Mapping) else None
    if not isinstance(full_name, str) or not full_name.strip():
        errors.append(
            RequiredFieldError(
                field="fullName",
                label="Full Name",
                section="Personal Details",
                message="Full name is required",
            )
        )

    title = document.get("title")
    if not isinstance(title, str) or not title.strip():
        errors.append(
            RequiredFieldError(
                field="title",
                label="Resume Title",
                section="Resume",
                message="Resume title is required",
            )
        )

    if not _has_content(document):
        errors.append(
            RequiredFieldError(
                field="hasContent",
                label="Resume Content",
                section="Resume",
                message="Your resume must have at least one section with content (Experience, Education, or Skills)",
            )
        )

    if not errors:
        summary = "All required fields are filled."
    elif len(errors) == 1:
        summary = f"Please fill in: {errors[0].label}"
    else:
        summary = "Please fill in the following required fields: " + ", ".join(e.label for e in errors)

    return ValidationResult(is_valid=not errors, errors=errors, summary=summary)


# --- repair ----------------------------------------------------------------


def repair_document(data: Any) -> dict[str, Any] | None:
    """
    Fill in whatever required structure is missing, keeping every field that
    is present. Returns None for values that are not objects at all.
    """
    if not isinstance(data, Mapping):
        return None

    doc = copy.deepcopy(dict(data))
    if not isinstance(doc.get("id"), str) or not doc["id"]:
        doc["id"] = generate_id()
    if not isinstance(doc.get("title"), str) or not doc["title"]:
        doc["title"] = DEFAULT_TITLE

    info = doc.get("personalInfo") if isinstance(doc.get("personalInfo"), Mapping) else {}
    info = dict(info)
    info.setdefault("fullName", info.get("name") or "")
    for name in ("email", "phone", "summary"):
        if not isinstance(info.get(name), str):
            info[name] = ""
    doc["personalInfo"] = info

    if not isinstance(doc.get("sections"), list):
        doc["sections"] = []
    settings = doc.get("settings") if isinstance(doc.get("settings"), Mapping) else {}
    doc["settings"] = {**FormattingSettings().model_dump(), **settings}
    if not isinstance(doc.get("atsScore"), (int, float)) or isinstance(doc.get("atsScore"), bool):
        doc["atsScore"] = 0
    if not parse_timestamp(doc.get("updatedAt")):
        doc["updatedAt"] = utc_now_iso()
    target = doc.get("targetJob") if isinstance(doc.get("targetJob"), Mapping) else {}
    doc["targetJob"] = {**TargetJob().model_dump(), **target}
    doc.setdefault("targetJobId", None)
    doc.setdefault("focusedSectionId", None)
    for name in ("projects", "certifications", "languages", "volunteer", "customSections"):
        if not isinstance(doc.get(name), list):
            doc[name] = []
    return doc
