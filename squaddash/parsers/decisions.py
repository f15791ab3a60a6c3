"""Extract decision records from the decisions log and ``decisions/`` files.

The running log (``decisions.md``) mixes real decisions with structural
subsections. Decision boundaries come from heading depth:

* ``# Decision: {title}`` opens a decision that runs to the next H1;
* every ``##`` opens a decision;
* a ``###`` opens one only when its text starts with a ``YYYY-MM-DD`` date.

Generic subsection titles ("Context", "Rationale", ...) are filtered out.
Standalone files under ``decisions/`` (any depth) are one decision each.
"""
from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Callable, Optional

from squaddash import config
from squaddash.date_utils import file_created_date, find_date_key
from squaddash.models import DecisionEntry
from squaddash.observability import record_parser_failure
from squaddash.parsers.markdown import MalformedSourceError, iter_headings, read_markdown

logger = logging.getLogger("squaddash.decisions")

SkipCallback = Callable[[Path, str], None]

UNTITLED_DECISION = "Untitled Decision"
_METADATA_WINDOW = 20

_DATE_PREFIX_RE = re.compile(r"^(\d{4}-\d{2}-\d{2})(?:/\d+)?[:/]?\s*")
_H1_DECISION_RE = re.compile(r"^Decision:\s*(.+)$", re.IGNORECASE)
_STRAY_HASH_RE = re.compile(r"^#\s+")
_USER_DIRECTIVE_RE = re.compile(r"^User directive\s*[—–-]\s*", re.IGNORECASE)
_DECISION_PREFIX_RE = re.compile(r"^Decision:\s*", re.IGNORECASE)
_FILE_TITLE_PREFIX_RE = re.compile(
    r"^(?:Design Decision|Decision|Feature Summary|Context|Summary):\s*",
    re.IGNORECASE,
)
_DATE_FIELD_RE = re.compile(r"\*\*Date:?\*\*:?\s*(.+)", re.IGNORECASE)
_AUTHOR_FIELD_RE = re.compile(r"\*\*Author:?\*\*:?\s*(.+)", re.IGNORECASE)
_BY_FIELD_RE = re.compile(r"\*\*By:?\*\*:?\s*(.+)", re.IGNORECASE)

# Headings that structure a decision's body rather than name a decision
SUBSECTION_NAMES = frozenset(
    {
        "context",
        "decision",
        "decisions",
        "rationale",
        "impact",
        "alternatives considered",
        "implementation details",
        "implementation",
        "members",
        "alumni",
        "@copilot",
        "location",
        "action required",
        "open questions",
        "open questions / risks",
        "related issues",
        "success metrics",
        "scope decision",
        "directive",
        "problem statement",
        "data flow analysis",
        "root cause",
        "the design gap",
        "what should happen",
        "recommended fix",
        "test cases to add",
        "files to modify",
        "for linus",
        "implementation phases",
        "sprint goal",
        "context & opportunity",
        "work items",
        "risks & open questions",
        "next steps",
        "outcome",
        "success criteria",
        "vision",
        "core features",
        "overview",
        "goals",
        "non-goals",
        "assumptions",
        "constraints",
        "background",
        "summary",
        "appendix",
        "references",
        "changelog",
        "history",
        "todo",
        "notes",
    }
)


def split_heading_date(text: str) -> tuple[Optional[str], str]:
    """Split a leading ``YYYY-MM-DD`` (optionally ``/N`` and ``:``) off a heading."""
    match = _DATE_PREFIX_RE.match(text)
    if not match:
        return None, text.strip()
    return match.group(1), text[match.end():].strip()


def is_structural_heading(title: str) -> bool:
    normalized = title.strip().lower()
    return normalized in SUBSECTION_NAMES or normalized.startswith("items deferred")


def _clean_title(text: str) -> tuple[Optional[str], str]:
    title = _STRAY_HASH_RE.sub("", text.strip())
    date, title = split_heading_date(title)
    title = _USER_DIRECTIVE_RE.sub("", title)
    title = _DECISION_PREFIX_RE.sub("", title)
    return date, title.strip()


def _field(pattern: re.Pattern[str], line: str) -> Optional[str]:
    match = pattern.search(line)
    if not match:
        return None
    return match.group(1).strip() or None


def _section_end(headings: list[tuple[int, int, str]], position: int, depth: int, total: int) -> int:
    for index, other_depth, _ in headings[position + 1:]:
        if other_depth <= depth:
            return index
    return total


def _window_metadata(
    lines: list[str],
    start: int,
    end: int,
    date: Optional[str],
    author: Optional[str],
) -> tuple[Optional[str], Optional[str]]:
    for line in lines[start + 1:min(start + 1 + _METADATA_WINDOW, end)]:
        if date is None:
            value = _field(_DATE_FIELD_RE, line)
            if value:
                date = find_date_key(value) or None
        if author is None:
            author = _field(_AUTHOR_FIELD_RE, line)
        if author is None:
            author = _field(_BY_FIELD_RE, line)
    return date, author


def parse_decisions_content(content: str, file_path: str = "") -> list[DecisionEntry]:
    """Parse the running decisions log, in document order."""
    lines = content.split("\n")
    headings = list(iter_headings(lines))
    entries: list[DecisionEntry] = []
    skip_until = -1

    for position, (index, depth, text) in enumerate(headings):
        if index < skip_until:
            continue

        if depth == 1:
            match = _H1_DECISION_RE.match(text)
            if not match:
                continue
            date, title = _clean_title(match.group(1))
        elif depth == 2:
            date, title = _clean_title(text)
        elif depth == 3 and _DATE_PREFIX_RE.match(text):
            date, title = _clean_title(text)
        else:
            continue

        if is_structural_heading(title):
            continue

        end = _section_end(headings, position, depth, len(lines))
        date, author = _window_metadata(lines, index, end, date, None)
        entries.append(
            DecisionEntry(
                title=title or UNTITLED_DECISION,
                date=date,
                author=author,
                filePath=file_path,
                content="\n".join(lines[index:end]).rstrip(),
                lineNumber=index,
            )
        )
        if depth == 1:
            # Everything under a "# Decision:" block belongs to it
            skip_until = end

    return entries


def parse_decision_file(path: Path) -> DecisionEntry:
    """Parse one standalone decision file; raises MalformedSourceError if unreadable."""
    try:
        content = read_markdown(path)
    except (OSError, UnicodeDecodeError) as exc:
        raise MalformedSourceError(f"{path.name}: unreadable ({exc})") from exc

    lines = content.split("\n")
    headings = list(iter_headings(lines))
    chosen = next((h for h in headings if h[1] == 1), None)
    if chosen is None:
        chosen = next((h for h in headings if h[1] in (2, 3)), None)

    title = UNTITLED_DECISION
    date: Optional[str] = None
    line_number = 0
    if chosen is not None:
        line_number = chosen[0]
        heading_text = _STRAY_HASH_RE.sub("", chosen[2])
        date, heading_text = split_heading_date(heading_text)
        heading_text = _USER_DIRECTIVE_RE.sub("", heading_text)
        heading_text = _FILE_TITLE_PREFIX_RE.sub("", heading_text).strip()
        title = heading_text or UNTITLED_DECISION

    author = _field(_AUTHOR_FIELD_RE, content) or _field(_BY_FIELD_RE, content)
    if date is None:
        date = find_date_key(_field(_DATE_FIELD_RE, content) or "") or None
    if date is None:
        date = file_created_date(path) or None

    return DecisionEntry(
        title=title,
        date=date,
        author=author,
        filePath=str(path),
        content=content.rstrip(),
        lineNumber=line_number,
    )


def sort_decisions(entries: list[DecisionEntry]) -> list[DecisionEntry]:
    """Newest first; undated entries last; ties keep discovery order."""
    return sorted(entries, key=lambda entry: entry.date or "", reverse=True)


def scan_decisions(squad_dir: Path, on_skip: Optional[SkipCallback] = None) -> list[DecisionEntry]:
    """Collect decisions from ``decisions.md`` and every file under ``decisions/``."""
    entries: list[DecisionEntry] = []

    canonical = squad_dir / config.DECISIONS_FILENAME
    if canonical.is_file():
        try:
            entries.extend(parse_decisions_content(read_markdown(canonical), str(canonical)))
        except (OSError, UnicodeDecodeError) as exc:
            logger.warning("Skipping decisions log %s: %s", canonical, exc)
            record_parser_failure("decisions")
            if on_skip is not None:
                on_skip(canonical, str(exc))

    decisions_dir = squad_dir / config.DECISIONS_DIRNAME
    if decisions_dir.is_dir():
        for path in sorted(decisions_dir.rglob("*.md")):
            if not path.is_file():
                continue
            try:
                entries.append(parse_decision_file(path))
            except MalformedSourceError as exc:
                logger.warning("Skipping decision file %s: %s", path, exc)
                record_parser_failure("decision_file")
                if on_skip is not None:
                    on_skip(path, str(exc))

    return sort_decisions(entries)
