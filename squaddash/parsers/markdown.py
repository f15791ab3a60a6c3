"""Markdown primitives shared by every squad file parser.

Heading-bounded section extraction, table-row extraction, inline bold fields
and frontmatter splitting are centralized here so the brittle pattern matching
lives in one place. Callers are expected to pass text that already went
through :func:`normalize_eol` (``read_markdown`` does this on read).
"""
from __future__ import annotations

import re
from pathlib import Path
from typing import Any, Iterator, Optional

import yaml

_HEADING_RE = re.compile(r"^(#+)(?:[ \t]+(.*?))?[ \t]*$")
_FENCE_RE = re.compile(r"^(```|~~~)")
_CELL_SPLIT_RE = re.compile(r"(?<!\\)\|")
_SEPARATOR_CELL_RE = re.compile(r"^[-:]+$")
_BULLET_RE = re.compile(r"^\s*[-*+]\s+(.+?)\s*$")
_NUMBERED_RE = re.compile(r"^\s*\d+[.)]\s+(.+?)\s*$")
_LINK_RE = re.compile(r"\[([^\]]+)\]\([^)]+\)")
_FRONTMATTER_RE = re.compile(r"^---[ \t]*\n(.*?)\n---[ \t]*(?:\n(.*)|$)", re.DOTALL)
_FM_LINE_RE = re.compile(r"^([A-Za-z_][\w-]*)\s*:\s*(.*?)\s*$")


class MalformedSourceError(ValueError):
    """Raised when a squad file matches none of the known layouts."""


def normalize_eol(text: str) -> str:
    """Normalize ``\\r\\n`` and bare ``\\r`` line endings to ``\\n``."""
    return text.replace("\r\n", "\n").replace("\r", "\n")


def read_markdown(path: Path) -> str:
    """Read a markdown file as UTF-8 with normalized line endings."""
    return normalize_eol(path.read_text(encoding="utf-8"))


# ── Headings and sections ───────────────────────────────────────────

def parse_heading(line: str) -> Optional[tuple[int, str]]:
    """Return ``(depth, text)`` for an ATX heading line, else None."""
    match = _HEADING_RE.match(line.strip())
    if not match:
        return None
    return len(match.group(1)), (match.group(2) or "").strip()


def iter_headings(lines: list[str]) -> Iterator[tuple[int, int, str]]:
    """Yield ``(line_index, depth, text)`` for headings outside code fences."""
    in_fence = False
    for index, line in enumerate(lines):
        if _FENCE_RE.match(line.strip()):
            in_fence = not in_fence
            continue
        if in_fence:
            continue
        parsed = parse_heading(line)
        if parsed is not None:
            yield index, parsed[0], parsed[1]


def extract_section(document: str, heading_name: str, level: int = 2) -> Optional[str]:
    """Return the body under a ``level``-deep heading named ``heading_name``.

    The body runs until the next heading at the same or a shallower depth, or
    the end of the document. Heading names match case-insensitively. Returns
    None when no such heading exists.
    """
    lines = document.split("\n")
    target = heading_name.strip().lower()
    start: Optional[int] = None
    for index, depth, text in iter_headings(lines):
        if start is None:
            if depth == level and text.lower() == target:
                start = index + 1
            continue
        if depth <= level:
            return "\n".join(lines[start:index]).strip()
    if start is None:
        return None
    return "\n".join(lines[start:]).strip()


def first_section(document: str, names: tuple[str, ...], levels: tuple[int, ...] = (2, 3)) -> Optional[str]:
    """Try each heading name at each depth; return the first section found."""
    for name in names:
        for level in levels:
            section = extract_section(document, name, level)
            if section is not None:
                return section
    return None


def has_heading(document: str, heading_name: str) -> bool:
    target = heading_name.strip().lower()
    return any(text.lower() == target for _, _, text in iter_headings(document.split("\n")))


# ── Tables ──────────────────────────────────────────────────────────

class TableRow(dict):
    """Header-keyed table row with case-insensitive lookup."""

    def __getitem__(self, key: str) -> str:
        return super().__getitem__(key.lower())

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and super().__contains__(key.lower())

    def get(self, key: str, default: Any = None) -> Any:
        return super().get(key.lower(), default)


def split_table_cells(line: str) -> list[str]:
    """Split a ``| a | b |`` line into trimmed cell texts."""
    body = line.strip()
    if body.startswith("|"):
        body = body[1:]
    if body.endswith("|") and not body.endswith("\\|"):
        body = body[:-1]
    return [cell.strip().replace("\\|", "|") for cell in _CELL_SPLIT_RE.split(body)]


def is_separator_row(cells: list[str]) -> bool:
    return bool(cells) and all(_SEPARATOR_CELL_RE.match(cell) for cell in cells)


def extract_table_rows(section_text: str) -> list[TableRow]:
    """Parse the first markdown table in ``section_text`` into keyed rows.

    The first ``|`` line is the header (lower-cased for lookup), separator
    rows are skipped, short rows are padded with ``""`` and long rows are
    truncated to the header width.
    """
    headers: Optional[list[str]] = None
    rows: list[TableRow] = []
    for line in section_text.split("\n"):
        trimmed = line.strip()
        if not trimmed.startswith("|"):
            continue
        cells = split_table_cells(trimmed)
        if headers is None:
            headers = [cell.lower() for cell in cells]
            continue
        if is_separator_row(cells):
            continue
        padded = (cells + [""] * len(headers))[: len(headers)]
        rows.append(TableRow(zip(headers, padded)))
    return rows


def format_table(headers: list[str], rows: list[dict[str, str]]) -> str:
    """Render rows back into a markdown table under ``headers``."""

    def _cell(value: Any) -> str:
        return str(value if value is not None else "").replace("|", "\\|")

    lines = [
        "| " + " | ".join(_cell(h) for h in headers) + " |",
        "| " + " | ".join("---" for _ in headers) + " |",
    ]
    for row in rows:
        lookup = TableRow((str(k).lower(), v) for k, v in row.items())
        lines.append("| " + " | ".join(_cell(lookup.get(h, "")) for h in headers) + " |")
    return "\n".join(lines)


# ── Inline constructs ───────────────────────────────────────────────

def bold_field(text: str, *labels: str) -> Optional[str]:
    """Return the value of the first ``**Label:** value`` line for any label.

    The colon may sit inside or outside the bold markers.
    """
    alternatives = "|".join(re.escape(label) for label in labels)
    pattern = re.compile(
        rf"\*\*(?:{alternatives})(?::\*\*|\*\*\s*:)[ \t]*(\S[^\n]*)",
        re.IGNORECASE,
    )
    match = pattern.search(text)
    if not match:
        return None
    return match.group(1).strip()


def list_items(text: str) -> list[str]:
    """Collect bullet and numbered list item texts, in order."""
    items: list[str] = []
    for line in text.split("\n"):
        match = _BULLET_RE.match(line) or _NUMBERED_RE.match(line)
        if match:
            items.append(match.group(1).strip())
    return items


def strip_markdown_links(text: str) -> str:
    """Replace ``[text](url)`` with ``text``."""
    return _LINK_RE.sub(r"\1", text)


# ── Frontmatter ─────────────────────────────────────────────────────

def _fallback_frontmatter(raw: str) -> dict[str, Any]:
    result: dict[str, Any] = {}
    for line in raw.split("\n"):
        match = _FM_LINE_RE.match(line)
        if match:
            result[match.group(1)] = match.group(2).strip().strip("\"'")
    return result


def extract_frontmatter(text: str) -> tuple[dict[str, Any], str]:
    """Split leading ``---`` frontmatter from the body.

    Values are loaded with PyYAML. Hand-written skill files often carry
    unquoted colons that YAML rejects; those fall back to flat ``key: value``
    lines. Returns ``({}, text)`` when there is no frontmatter block.
    """
    match = _FRONTMATTER_RE.match(text)
    if not match:
        return {}, text
    raw = match.group(1)
    body = match.group(2) or ""
    try:
        fm = yaml.safe_load(raw) or {}
    except yaml.YAMLError:
        fm = _fallback_frontmatter(raw)
    if not isinstance(fm, dict):
        fm = {}
    return fm, body


def render_frontmatter(fields: dict[str, Any], body: str) -> str:
    """Build a markdown document from a frontmatter mapping and a body."""
    fm_text = yaml.dump(fields, default_flow_style=False, sort_keys=False, allow_unicode=True)
    return f"---\n{fm_text}---\n{body}"
