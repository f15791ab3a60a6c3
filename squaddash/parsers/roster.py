"""Parse the team roster document (``team.md``) into a Roster."""
from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Optional

from squaddash.models import CopilotCapabilities, Member, MemberStatus, Roster
from squaddash.parsers.markdown import (
    TableRow,
    extract_section,
    extract_table_rows,
    read_markdown,
)

logger = logging.getLogger("squaddash.parsers")

_MEMBER_SECTIONS = ("Members", "Roster")
_CODING_AGENT_SECTION = "Coding Agent"
_WORKING_MARKERS = ("working", "\U0001f528")  # 🔨

_REPOSITORY_CELL_RE = re.compile(r"\*\*Repository\*\*\s*\|\s*([^\n|]+)", re.IGNORECASE)
_REPOSITORY_FIELD_RE = re.compile(r"\*\*Repository:\*\*\s*(.+)", re.IGNORECASE)
_OWNER_FIELD_RE = re.compile(r"\*\*Owner:\*\*\s*([^(\n]+)", re.IGNORECASE)
_AUTO_ASSIGN_RE = re.compile(r"<!--\s*copilot-auto-assign:\s*(true|false)\s*-->", re.IGNORECASE)
_LIST_ITEM_RE = re.compile(r"^[-*]\s+(.+)$")

_GOOD_FIT = "\U0001f7e2"  # 🟢
_NEEDS_REVIEW = "\U0001f7e1"  # 🟡
_NOT_SUITABLE = "\U0001f534"  # 🔴
_CAPABILITY_MARKERS = (_GOOD_FIT, _NEEDS_REVIEW, _NOT_SUITABLE)
_INLINE_CAPABILITY_RES = {
    "goodFit": re.compile(_GOOD_FIT + r"\s*Good fit[^:\n]*:[ \t]*([^\n]+)", re.IGNORECASE),
    "needsReview": re.compile(_NEEDS_REVIEW + r"\s*Needs review[^:\n]*:[ \t]*([^\n]+)", re.IGNORECASE),
    "notSuitable": re.compile(_NOT_SUITABLE + r"\s*Not suitable[^:\n]*:[ \t]*([^\n]+)", re.IGNORECASE),
}


def parse_status_badge(status_text: str) -> MemberStatus:
    """Collapse a human-authored status badge onto working / idle.

    Badges such as ``✅ Active``, ``📋 Silent`` or ``🤖 Coding Agent`` describe
    configuration, not runtime activity, so only an explicit working marker
    maps to ``working``.
    """
    text = (status_text or "").lower()
    if any(marker in text for marker in _WORKING_MARKERS):
        return "working"
    return "idle"


def _member_from_row(row: TableRow) -> Optional[Member]:
    name = (row.get("name") or "").strip()
    role = (row.get("role") or "").strip()
    if not name or not role:
        return None
    # Coordinators route work; they are not tracked as active members
    if role.lower() == "coordinator":
        return None
    return Member(name=name, role=role, status=parse_status_badge(row.get("status") or ""))


def _members_from_section(section: Optional[str]) -> list[Member]:
    if not section:
        return []
    members: list[Member] = []
    for row in extract_table_rows(section):
        member = _member_from_row(row)
        if member is not None:
            members.append(member)
    return members


def _extract_repository(content: str) -> Optional[str]:
    match = _REPOSITORY_CELL_RE.search(content) or _REPOSITORY_FIELD_RE.search(content)
    if not match:
        return None
    return match.group(1).strip() or None


def _extract_owner(content: str) -> Optional[str]:
    match = _OWNER_FIELD_RE.search(content)
    if not match:
        return None
    return match.group(1).strip() or None


def _split_items(text: str) -> list[str]:
    return [item.strip(" *") for item in text.split(",") if item.strip(" *")]


def _capability_list(section: str, marker: str) -> Optional[list[str]]:
    """Items after a marker line: inline ``marker Label: a, b`` and/or bullets."""
    items: list[str] = []
    collecting = False
    for line in section.split("\n"):
        trimmed = line.strip()
        if marker in trimmed:
            collecting = True
            _, colon, tail = trimmed.partition(":")
            if colon:
                items.extend(_split_items(tail))
            continue
        if not collecting:
            continue
        if any(other in trimmed for other in _CAPABILITY_MARKERS):
            break
        match = _LIST_ITEM_RE.match(trimmed)
        if match:
            items.append(match.group(1).strip())
    return items or None


def _extract_copilot_capabilities(content: str) -> Optional[CopilotCapabilities]:
    """Auto-assign flag and good fit / needs review / not suitable lists.

    Lists come from a ``### Capabilities`` subsection under ``## Coding Agent``
    (or a ``## @copilot Capabilities`` section), else from inline
    ``🟢 Good fit: a, b`` lines anywhere in the document.
    """
    auto_assign = _AUTO_ASSIGN_RE.search(content)
    coding_agent = extract_section(content, _CODING_AGENT_SECTION, 2)
    if coding_agent is not None:
        section = extract_section(coding_agent, "Capabilities", 3)
    else:
        section = extract_section(content, "@copilot Capabilities", 2)

    inline: dict[str, list[str]] = {}
    for key, pattern in _INLINE_CAPABILITY_RES.items():
        match = pattern.search(content)
        if match:
            inline[key] = _split_items(match.group(1))

    if not section and not inline and not auto_assign:
        return None

    if section:
        lists = {
            "goodFit": _capability_list(section, _GOOD_FIT),
            "needsReview": _capability_list(section, _NEEDS_REVIEW),
            "notSuitable": _capability_list(section, _NOT_SUITABLE),
        }
    else:
        lists = {key: values or None for key, values in inline.items()}
    return CopilotCapabilities(
        autoAssign=bool(auto_assign) and auto_assign.group(1).lower() == "true",
        **lists,
    )


def parse_roster_content(content: str) -> Roster:
    """Parse roster document text (line endings already normalized)."""
    members_section = None
    for name in _MEMBER_SECTIONS:
        members_section = extract_section(content, name, 2)
        if members_section is not None:
            break

    members = _members_from_section(members_section)
    members.extend(_members_from_section(extract_section(content, _CODING_AGENT_SECTION, 2)))

    return Roster(
        members=members,
        repository=_extract_repository(content),
        owner=_extract_owner(content),
        copilotCapabilities=_extract_copilot_capabilities(content),
    )


def parse_roster_file(path: Path) -> Optional[Roster]:
    """Parse ``team.md``; returns None when the document does not exist."""
    if not path.is_file():
        return None
    try:
        content = read_markdown(path)
    except (OSError, UnicodeDecodeError) as exc:
        logger.warning("Could not read roster %s: %s", path, exc)
        return None
    return parse_roster_content(content)
