"""Parse skill catalog listings and installed ``SKILL.md`` documents."""
from __future__ import annotations

import html
import re
from typing import Any

from squaddash.models import Skill
from squaddash.parsers.markdown import extract_frontmatter, render_frontmatter

AWESOME_COPILOT_TREE_URL = "https://github.com/github/awesome-copilot/tree/main/skills/"

_TABLE_ROW_RE = re.compile(r"^\|\s*\[([^\]]+)\]\(([^)]+)\)\s*\|\s*(.*?)\s*\|")
_LIST_ITEM_RE = re.compile(r"^\s*[-*]\s+\[([^\]]+)\]\(([^)]+)\)\s*[-–—]?\s*(.*)")
_SEPARATOR_ROW_RE = re.compile(r"^\|\s*-+\s*\|")
_HTML_TAG_RE = re.compile(r"<[^>]+>")
_WHITESPACE_RE = re.compile(r"\s+")

_SKILLS_SH_ENTRY_RE = re.compile(
    r'<a[^>]+href="/([^/"]+)/([^/"]+)/([^"]+)"[^>]*>(.*?)</a>',
    re.IGNORECASE | re.DOTALL,
)
_H3_RE = re.compile(r"<h3[^>]*>([^<]+)</h3>", re.IGNORECASE)
_MONO_P_RE = re.compile(r'<p[^>]*class="[^"]*font-mono[^"]*"[^>]*>([^<]+)</p>', re.IGNORECASE)

_H1_RE = re.compile(r"^#\s+(.+)")
_SKILL_PREFIX_RE = re.compile(r"^skill:\s*", re.IGNORECASE)
_CONFIDENCE_VALUES = ("low", "medium", "high")


def _strip_html(text: str) -> str:
    return _WHITESPACE_RE.sub(" ", _HTML_TAG_RE.sub(" ", text)).strip()


def _awesome_url(relative_url: str) -> str:
    if relative_url.startswith("../skills/"):
        tail = relative_url[len("../skills/"):]
        if tail.endswith("/SKILL.md"):
            tail = tail[: -len("/SKILL.md")]
        return AWESOME_COPILOT_TREE_URL + tail
    return relative_url


def parse_awesome_readme(markdown: str) -> list[Skill]:
    """Parse the awesome-copilot skills README (table rows or link list items)."""
    skills: list[Skill] = []
    for line in markdown.split("\n"):
        if _SEPARATOR_ROW_RE.match(line):
            continue

        table = _TABLE_ROW_RE.match(line)
        if table:
            name, url, description = table.group(1).strip(), _awesome_url(table.group(2).strip()), _strip_html(table.group(3))
        else:
            item = _LIST_ITEM_RE.match(line)
            if not item:
                continue
            name, url, description = item.group(1).strip(), item.group(2).strip(), item.group(3).strip()

        if not description or len(name) < 2:
            continue
        skills.append(
            Skill(
                name=name,
                description=description,
                source="awesome-copilot",
                sourceUrl=url,
                confidence="high",
            )
        )
    return skills


def parse_skills_sh_html(page: str) -> list[Skill]:
    """Parse skills.sh leaderboard entries (``<a href="/owner/repo/skill">``)."""
    skills: list[Skill] = []
    for match in _SKILLS_SH_ENTRY_RE.finditer(page):
        owner, repo, skill_path, inner = match.groups()
        if not owner or not repo or not skill_path:
            continue
        heading = _H3_RE.search(inner)
        if not heading:
            continue
        description = _MONO_P_RE.search(inner)
        skills.append(
            Skill(
                name=html.unescape(heading.group(1)).strip(),
                description=html.unescape(description.group(1)).strip() if description else f"{owner}/{repo}",
                source="skills.sh",
                sourceUrl=f"https://github.com/{owner}/{repo}",
                confidence="high",
            )
        )
    return deduplicate_skills(skills)


def deduplicate_skills(skills: list[Skill]) -> list[Skill]:
    """Keep one skill per slug, preferring the awesome-copilot listing."""
    seen: dict[str, Skill] = {}
    for skill in skills:
        existing = seen.get(skill.slug)
        if existing is None:
            seen[skill.slug] = skill
        elif skill.source == "awesome-copilot" and existing.source != "awesome-copilot":
            seen[skill.slug] = skill
    return list(seen.values())


def _fm_str(frontmatter: dict[str, Any], key: str) -> str:
    value = frontmatter.get(key)
    if value is None:
        return ""
    return str(value).strip()


def parse_installed_skill(dir_name: str, content: str) -> Skill:
    """Build a Skill from an installed ``{slug}/SKILL.md`` document.

    The directory name is the slug. Name and description come from
    frontmatter when present, otherwise from the first H1 and the first
    paragraph line of the body.
    """
    frontmatter, body = extract_frontmatter(content)
    name = _fm_str(frontmatter, "name")
    description = _fm_str(frontmatter, "description")
    confidence = _fm_str(frontmatter, "confidence").lower()

    body_lines = body.split("\n")
    if not name:
        for line in body_lines:
            heading = _H1_RE.match(line)
            if heading:
                name = heading.group(1).strip()
                break
    name = _SKILL_PREFIX_RE.sub("", name or dir_name).strip() or dir_name

    if not description:
        for line in body_lines:
            trimmed = line.strip()
            if not trimmed or trimmed == "---":
                continue
            if trimmed.startswith(("#", ">", "**Source:**")):
                continue
            description = trimmed
            break

    return Skill(
        name=name,
        slug=dir_name,
        description=description or name,
        source="local",
        confidence=confidence if confidence in _CONFIDENCE_VALUES else None,
        content=content,
    )


def build_skill_stub(skill: Skill) -> str:
    """Metadata-only SKILL.md used when the source content cannot be fetched."""
    fields: dict[str, Any] = {"name": skill.name, "description": skill.description, "source": skill.source}
    if skill.sourceUrl:
        fields["sourceUrl"] = skill.sourceUrl

    lines = [f"# {skill.name}", ""]
    if skill.description:
        lines.extend([skill.description, ""])
    if skill.sourceUrl:
        lines.extend([f"**Source:** [{skill.source}]({skill.sourceUrl})", ""])
    lines.append(f"> Imported from the {skill.source} catalog.")
    lines.append("> Full content could not be fetched from the source URL.")
    lines.append("")
    return render_frontmatter(fields, "\n".join(lines))
