"""Pydantic models for the aggregated squad view."""
from __future__ import annotations

import hashlib
import re
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

MemberStatus = Literal["working", "idle"]
TaskStatus = Literal["pending", "in_progress", "completed"]
SkillSource = Literal["awesome-copilot", "skills.sh", "local"]
ChangeType = Literal["created", "changed", "deleted"]

_SLUG_INVALID = re.compile(r"[^a-z0-9]+")


def slugify(name: str) -> str:
    """Convert a display name into a filesystem-safe slug."""
    return _SLUG_INVALID.sub("-", (name or "").lower()).strip("-")


def skill_slug(name: str) -> str:
    """Slug for a skill directory; never empty.

    Names with no ASCII letters or digits (``日本語``, emoji) get a stable
    ``skill-<hash>`` slug derived from the name.
    """
    slug = slugify(name)
    if slug:
        return slug
    digest = hashlib.sha1((name or "").encode("utf-8")).hexdigest()[:10]
    return f"skill-{digest}"


def is_safe_dirname(name: str) -> bool:
    """True when ``name`` is a single path component inside its parent."""
    if not name or name in (".", ".."):
        return False
    return "/" not in name and "\\" not in name and "\x00" not in name


# ── Team models ─────────────────────────────────────────────────────

class Task(BaseModel):
    id: str
    title: str
    description: Optional[str] = None
    status: TaskStatus = "pending"
    assignee: str = ""  # member name, not validated against the roster
    startedAt: Optional[str] = None
    completedAt: Optional[str] = None


class Member(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    role: str
    status: MemberStatus = "idle"
    currentTask: Optional[Task] = None


class CopilotCapabilities(BaseModel):
    model_config = ConfigDict(frozen=True)

    autoAssign: bool = False
    goodFit: Optional[list[str]] = None
    needsReview: Optional[list[str]] = None
    notSuitable: Optional[list[str]] = None


class Roster(BaseModel):
    model_config = ConfigDict(frozen=True)

    members: list[Member] = Field(default_factory=list)
    repository: Optional[str] = None
    owner: Optional[str] = None
    copilotCapabilities: Optional[CopilotCapabilities] = None
    degraded: bool = False  # membership derived from log participants


# ── Session log models ──────────────────────────────────────────────

class WorkItem(BaseModel):
    agent: str
    description: str


class LogEntry(BaseModel):
    date: str
    topic: str
    timestamp: str
    participants: list[str] = Field(default_factory=list)
    summary: str = ""
    decisions: Optional[list[str]] = None
    outcomes: Optional[list[str]] = None
    relatedIssues: Optional[list[str]] = None
    whatWasDone: Optional[list[WorkItem]] = None
    filePath: str = ""


class WorkDetails(BaseModel):
    task: Task
    member: Member
    logEntries: Optional[list[LogEntry]] = None


# ── Decision models ─────────────────────────────────────────────────

class DecisionEntry(BaseModel):
    title: str
    date: Optional[str] = None
    author: Optional[str] = None
    filePath: str
    content: str = ""
    lineNumber: Optional[int] = None


# ── Skill models ────────────────────────────────────────────────────

class Skill(BaseModel):
    name: str
    slug: str = ""
    description: str = ""
    source: SkillSource = "local"
    sourceUrl: Optional[str] = None
    confidence: Optional[Literal["low", "medium", "high"]] = None
    content: Optional[str] = None  # resolved body, loaded on demand

    @model_validator(mode="before")
    @classmethod
    def _derive_slug(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        slug = data.get("slug")
        if not slug:
            return {**data, "slug": skill_slug(str(data.get("name") or ""))}
        if not is_safe_dirname(str(slug)):
            raise ValueError(f"skill slug {slug!r} is not a single directory name")
        return data


# ── Watcher / integration models ────────────────────────────────────

class FileChangeEvent(BaseModel):
    type: ChangeType
    path: str
    timestamp: str = ""


class TrackedIssue(BaseModel):
    number: int
    title: str
    state: str = "open"
    url: Optional[str] = None
    assignee: Optional[str] = None
