"""Discover and parse session log files into LogEntry models.

Session logs live in ``{squad}/orchestration-log/`` and/or ``{squad}/log/``
and are named ``{YYYY-MM-DD}-{topic}.md`` (optionally ``YYYY-MM-DDThhmm``).
Two layouts are in circulation:

* structured: a ``## Metadata`` block (Date / Topic / Timestamp), ``## Who
  Worked``, ``## What Was Done``, optional ``## Decisions Made`` / ``## Key
  Outcomes`` and ``## Related Issues``;
* flat: bold inline fields (``**Date:**``, ``**Participants:**``,
  ``**Timestamp:**``) followed by ``## Summary`` / ``## Decisions`` /
  ``## Outcomes``.

The presence of a Metadata heading decides which layout a file uses.
"""
from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Callable, Optional

from squaddash import config
from squaddash.date_utils import find_date_key, midnight_timestamp
from squaddash.models import LogEntry, WorkItem, slugify
from squaddash.observability import record_parser_failure
from squaddash.parsers.markdown import (
    MalformedSourceError,
    bold_field,
    extract_table_rows,
    first_section,
    has_heading,
    is_separator_row,
    list_items,
    read_markdown,
    split_table_cells,
    strip_markdown_links,
)

logger = logging.getLogger("squaddash.parsers")

SkipCallback = Callable[[Path, str], None]


_FILENAME_RE = re.compile(r"^(\d{4}-\d{2}-\d{2})(?:T\d{4})?-(.+)\.md$")
_ISSUE_REF_RE = re.compile(r"#\d+")
_PARENTHETICAL_RE = re.compile(r"\s*\(.*?\)\s*$")
_NAME_SPLIT_RE = re.compile(r"\s+[—–-]\s+|:")
_METADATA_LINE_RE = re.compile(
    r"^\s*(?:[-*]\s+)?(?:\*\*)?([A-Za-z][A-Za-z ]*?)(?::\*\*|\*\*\s*:|:)\s*(.+?)\s*$"
)
_AGENT_ROUTED_RE = re.compile(r"\*\*Agent routed\*\*\s*\|\s*(.+)", re.IGNORECASE)
_BOLD_AGENT_BULLET_RE = re.compile(r"^\s*[-*]\s+\*\*(.+?):?\*\*:?\s")
_BOLD_CAPITALIZED_BULLET_RE = re.compile(r"^\s*[-*]\s+\*\*([A-Z][a-z]+)\*\*\s")
_PLAIN_AGENT_BULLET_RE = re.compile(r"^\s*[-*]\s+([A-Z][a-z]+)\s+(.+?)\s*$")
_WORK_ITEM_RE = re.compile(r"^\s*[-*]\s+\*\*(.+?):?\*\*:?\s*(.+?)\s*$")
_INLINE_WORK_LABEL_RE = re.compile(
    r"\*\*(?:Work done|What happened|What was done):\*\*\s*\n([\s\S]*?)(?=\n\*\*|\n##\s|$)",
    re.IGNORECASE,
)
_OUTCOME_CELL_RE = re.compile(r"\|\s*\*\*Outcome\*\*\s*\|\s*(.+?)\s*\|", re.IGNORECASE)
_EM_DASH_HEADING_RE = re.compile(r"^#{1,6}\s+.+?\s*—\s*(.+)$", re.MULTILINE)
_ANY_HEADING_RE = re.compile(r"^#{1,6}\s+(.+)$", re.MULTILINE)
_H1_RE = re.compile(r"^#\s+(.+)$", re.MULTILINE)


# ── Discovery ───────────────────────────────────────────────────────

def discover_log_files(squad_dir: Path) -> list[Path]:
    """Collect log files from every known log directory (union, sorted)."""
    files: list[Path] = []
    for dir_name in config.LOG_DIRECTORIES:
        log_dir = squad_dir / dir_name
        if not log_dir.is_dir():
            continue
        for path in log_dir.iterdir():
            if not path.is_file() or path.suffix != ".md":
                continue
            if path.name.lower().startswith("readme"):
                continue
            files.append(path)
    return sorted(files)


# ── Field helpers ───────────────────────────────────────────────────

def _clean_name(raw: str) -> str:
    text = strip_markdown_links(raw).replace("**", "").replace("`", "").strip()
    text = _NAME_SPLIT_RE.split(text, maxsplit=1)[0]
    text = _PARENTHETICAL_RE.sub("", text)
    return text.strip().rstrip(".").strip()


def _unique(names: list[str]) -> list[str]:
    seen: list[str] = []
    for name in names:
        if name and name not in seen:
            seen.append(name)
    return seen


def _split_names(value: str) -> list[str]:
    return _unique([_clean_name(part) for part in re.split(r"[,;]", value)])


def _metadata_fields(section: str) -> dict[str, str]:
    """Read ``Key: value`` pairs from a Metadata block (list, lines or table)."""
    fields: dict[str, str] = {}
    for line in section.split("\n"):
        trimmed = line.strip()
        if trimmed.startswith("|"):
            # Key/value tables often have no header row, so every row counts
            cells = split_table_cells(trimmed)
            if len(cells) >= 2 and not is_separator_row(cells):
                key = cells[0].replace("**", "").strip().rstrip(":").lower()
                if key:
                    fields.setdefault(key, cells[1].strip())
            continue
        match = _METADATA_LINE_RE.match(line)
        if match:
            fields.setdefault(match.group(1).strip().lower(), match.group(2).strip())
    return fields


def _title_slug(content: str) -> str:
    match = _H1_RE.search(content)
    if not match:
        return ""
    return slugify(match.group(1))[:50].strip("-")


def _bold_agents(lines: list[str], allow_plain: bool) -> list[str]:
    agents: list[str] = []
    for line in lines:
        match = _BOLD_AGENT_BULLET_RE.match(line)
        if match:
            agents.append(_clean_name(match.group(1)))
            continue
        if allow_plain:
            plain = _PLAIN_AGENT_BULLET_RE.match(line)
            if plain:
                agents.append(plain.group(1))
    return _unique(agents)


def _who_worked(content: str) -> list[str]:
    section = first_section(content, ("Who Worked",))
    if not section:
        return []
    rows = extract_table_rows(section)
    if rows:
        names = [_clean_name(next(iter(row.values()), "")) for row in rows]
        return _unique([n for n in names if not n.startswith(("-", "*"))])
    items = list_items(section)
    if items:
        return _unique([_clean_name(item) for item in items])
    return _split_names(section.replace("\n", ","))


def _extract_participants(content: str, metadata: dict[str, str]) -> list[str]:
    for key in ("participants", "who worked", "agents"):
        if metadata.get(key):
            return _split_names(metadata[key])

    inline = bold_field(content, "Participants", "Participant", "Who worked")
    if inline:
        return _split_names(inline)

    routed = _AGENT_ROUTED_RE.search(content)
    if routed:
        names = [_clean_name(p.replace("|", "")) for p in re.split(r"[,;]", routed.group(1))]
        names = _unique(names)
        if names:
            return names

    who_worked = _who_worked(content)
    if who_worked:
        return who_worked

    action = first_section(content, ("What Happened", "What Was Done"))
    if action:
        agents = _bold_agents(action.split("\n"), allow_plain=False)
        if agents:
            return agents

    inline_block = _INLINE_WORK_LABEL_RE.search(content)
    if inline_block:
        agents = _bold_agents(inline_block.group(1).split("\n"), allow_plain=True)
        if agents:
            return agents

    agents: list[str] = []
    for line in content.split("\n"):
        match = _BOLD_CAPITALIZED_BULLET_RE.match(line)
        if match:
            agents.append(match.group(1))
    return _unique(agents)


def _list_section(content: str, names: tuple[str, ...]) -> Optional[list[str]]:
    section = first_section(content, names)
    if not section:
        return None
    items = list_items(section)
    return items or None


def _related_issues(content: str) -> Optional[list[str]]:
    section = first_section(content, ("Related Issues",))
    issues = _ISSUE_REF_RE.findall(section) if section else []
    if not issues:
        issues = _unique(_ISSUE_REF_RE.findall(content))
    return issues or None


def _work_items(content: str, participants: list[str]) -> Optional[list[WorkItem]]:
    section = first_section(content, ("What Was Done", "Summary", "What Happened"))
    if section is None:
        inline_block = _INLINE_WORK_LABEL_RE.search(content)
        section = inline_block.group(1) if inline_block else None
    if not section:
        return None

    items: list[WorkItem] = []
    for line in section.split("\n"):
        match = _WORK_ITEM_RE.match(line)
        if match:
            items.append(WorkItem(agent=_clean_name(match.group(1)), description=match.group(2).strip()))
            continue
        plain = _PLAIN_AGENT_BULLET_RE.match(line)
        # Unbolded "- Name did something" only counts for known participants
        if plain and plain.group(1) in participants:
            items.append(WorkItem(agent=plain.group(1), description=plain.group(2).strip()))
    return items or None


def _summary_fallback(content: str) -> str:
    paragraph: list[str] = []
    for line in content.split("\n"):
        trimmed = line.strip()
        if trimmed.startswith("#") or trimmed.startswith("**") or trimmed.startswith("|"):
            if paragraph:
                break
            continue
        if trimmed:
            paragraph.append(trimmed)
        elif paragraph:
            break
    return " ".join(paragraph) or "No summary available"


def _heading_title(content: str) -> Optional[str]:
    match = _EM_DASH_HEADING_RE.search(content) or _ANY_HEADING_RE.search(content)
    return match.group(1).strip() if match else None


def _outcome_cell(content: str) -> Optional[str]:
    match = _OUTCOME_CELL_RE.search(content)
    if not match:
        return None
    return match.group(1).replace("**", "").replace("`", "").strip() or None


def _summary(content: str, structured: bool) -> str:
    names = ("What Was Done", "Summary") if structured else ("Summary",)
    return (
        first_section(content, names)
        or _outcome_cell(content)
        or _heading_title(content)
        or _summary_fallback(content)
    )


# ── Parsing ─────────────────────────────────────────────────────────

def parse_log_content(content: str, filename: str, file_path: str = "") -> LogEntry:
    """Parse one session log's text into a LogEntry.

    Raises MalformedSourceError when date, topic or participants cannot be
    determined. The file name is authoritative for date and topic; the
    content's declared values are used when the name does not encode them.
    """
    structured = has_heading(content, "Metadata")
    metadata: dict[str, str] = {}
    if structured:
        metadata = _metadata_fields(first_section(content, ("Metadata",), (1, 2, 3)) or "")

    declared_date = find_date_key(metadata.get("date", "")) or find_date_key(bold_field(content, "Date") or "")
    declared_topic = slugify(metadata.get("topic", "")) or _title_slug(content)

    name_match = _FILENAME_RE.match(filename)
    if name_match:
        date, topic = name_match.group(1), name_match.group(2)
        if declared_date and declared_date != date:
            logger.debug("Log %s declares date %s; using %s from file name", filename, declared_date, date)
    else:
        date, topic = declared_date, declared_topic

    if not date:
        raise MalformedSourceError(f"{filename}: no session date in file name or content")
    if not topic:
        raise MalformedSourceError(f"{filename}: no session topic in file name or content")

    participants = _extract_participants(content, metadata)
    if not participants:
        raise MalformedSourceError(f"{filename}: no participants found")

    timestamp = (
        metadata.get("timestamp")
        or metadata.get("time")
        or bold_field(content, "Timestamp", "Time")
        or midnight_timestamp(date)
    )

    return LogEntry(
        date=date,
        topic=topic,
        timestamp=timestamp,
        participants=participants,
        summary=_summary(content, structured),
        decisions=_list_section(content, ("Decisions Made", "Decisions")),
        outcomes=_list_section(content, ("Key Outcomes", "Outcomes")),
        relatedIssues=_related_issues(content),
        whatWasDone=_work_items(content, participants),
        filePath=file_path,
    )


def parse_log_file(path: Path) -> LogEntry:
    """Read and parse a single log file; raises on unreadable or malformed files."""
    try:
        content = read_markdown(path)
    except (OSError, UnicodeDecodeError) as exc:
        raise MalformedSourceError(f"{path.name}: unreadable ({exc})") from exc
    return parse_log_content(content, path.name, str(path))


def scan_log_entries(squad_dir: Path, on_skip: Optional[SkipCallback] = None) -> list[LogEntry]:
    """Parse every discoverable log file, newest first.

    Malformed files are skipped with a warning (and reported through
    ``on_skip``); they never abort discovery of the remaining files.
    """
    entries: list[LogEntry] = []
    for path in discover_log_files(squad_dir):
        try:
            entries.append(parse_log_file(path))
        except MalformedSourceError as exc:
            logger.warning("Skipping session log %s: %s", path, exc)
            record_parser_failure("session_log")
            if on_skip is not None:
                on_skip(path, str(exc))
    entries.sort(key=lambda entry: entry.date, reverse=True)
    return entries
