"""Skill catalog service: fetch, cache, search and install skills.

Two catalog sources are supported (the awesome-copilot skills README and the
skills.sh leaderboard). Listings are cached per source on the service
instance with a TTL; network failures while listing propagate as
:class:`NetworkFailureError` so the caller can report them.
"""
from __future__ import annotations

import logging
import re
import shutil
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Literal, Optional

import requests

from squaddash import config
from squaddash.models import Skill, is_safe_dirname, slugify
from squaddash.parsers.markdown import read_markdown
from squaddash.parsers.skills import (
    build_skill_stub,
    deduplicate_skills,
    parse_awesome_readme,
    parse_installed_skill,
    parse_skills_sh_html,
)

logger = logging.getLogger("squaddash.skills")

CatalogSource = Literal["awesome-copilot", "skills.sh"]
SourceFilter = Literal["awesome-copilot", "skills.sh", "all"]

_GITHUB_REPO_RE = re.compile(r"^https?://github\.com/([^/]+)/([^/]+?)(?:\.git)?(?:/.*)?$")
_GITHUB_SUBPATH_RE = re.compile(r"^https?://github\.com/[^/]+/[^/]+/(?:tree|blob)/[^/]+/(.+?)/?$")


class SkillCatalogError(Exception):
    """Base error for skill catalog operations."""


class NetworkFailureError(SkillCatalogError):
    """A catalog source could not be fetched."""


class DuplicateSkillError(SkillCatalogError):
    """A skill with the same slug is already installed."""

    def __init__(self, slug: str):
        super().__init__(f"Skill '{slug}' is already installed")
        self.slug = slug


class SkillNotFoundError(SkillCatalogError, FileNotFoundError):
    """No installed skill exists for the requested slug."""


class InvalidSlugError(SkillCatalogError, ValueError):
    """The slug cannot be used as an installed skill directory name."""

    def __init__(self, slug: str):
        super().__init__(f"Skill slug '{slug}' is not a valid directory name")
        self.slug = slug


@dataclass
class CatalogCache:
    data: list[Skill]
    fetchedAt: float

    def is_fresh(self, now: float, ttl_seconds: float) -> bool:
        return now - self.fetchedAt < ttl_seconds


class SkillCatalogService:
    """Fetches catalog listings and manages installed skills under ``skills_dir``."""

    def __init__(
        self,
        skills_dir: Path,
        session: Optional[requests.Session] = None,
        ttl_seconds: Optional[float] = None,
        timeout_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.skills_dir = Path(skills_dir)
        self.ttl_seconds = float(config.SKILL_CATALOG_TTL_SECONDS if ttl_seconds is None else ttl_seconds)
        self.timeout_seconds = float(config.HTTP_TIMEOUT_SECONDS if timeout_seconds is None else timeout_seconds)
        self._clock = clock
        self._cache: dict[str, CatalogCache] = {}
        if session is None:
            session = requests.Session()
            session.max_redirects = config.HTTP_MAX_REDIRECTS
            session.headers.update(
                {
                    "User-Agent": config.HTTP_USER_AGENT,
                    "Accept": "text/html, text/plain, application/json",
                }
            )
        self._session = session

    # ── HTTP ────────────────────────────────────────────────────────

    def _get(self, url: str) -> str:
        try:
            response = self._session.get(url, timeout=self.timeout_seconds)
            response.raise_for_status()
        except requests.RequestException as exc:
            raise NetworkFailureError(f"GET {url} failed: {exc}") from exc
        return response.text

    # ── Listing ─────────────────────────────────────────────────────

    def _fetch_source(self, source: CatalogSource) -> list[Skill]:
        if source == "awesome-copilot":
            return parse_awesome_readme(self._get(config.AWESOME_COPILOT_URL))
        return parse_skills_sh_html(self._get(config.SKILLS_SH_URL))

    def _source_listing(self, source: CatalogSource, force_refresh: bool) -> list[Skill]:
        now = self._clock()
        cached = self._cache.get(source)
        if not force_refresh and cached is not None and cached.is_fresh(now, self.ttl_seconds):
            logger.debug("Skill catalog cache hit for %s (%d skills)", source, len(cached.data))
            return list(cached.data)

        skills = self._fetch_source(source)
        self._cache[source] = CatalogCache(data=skills, fetchedAt=self._clock())
        logger.info("Fetched %d skills from %s", len(skills), source)
        return list(skills)

    def list_skills(self, force_refresh: bool = False, source: SourceFilter = "all") -> list[Skill]:
        """Return catalog skills, served from the TTL cache when fresh.

        With ``source="all"`` a failing source is tolerated as long as the
        other one returns results; when nothing could be fetched the failure
        is raised.
        """
        sources: tuple[CatalogSource, ...] = ("awesome-copilot", "skills.sh") if source == "all" else (source,)
        results: list[Skill] = []
        errors: list[str] = []
        for name in sources:
            try:
                results.extend(self._source_listing(name, force_refresh))
            except NetworkFailureError as exc:
                errors.append(f"{name}: {exc}")

        if errors and not results:
            raise NetworkFailureError("Failed to fetch skills: " + "; ".join(errors))
        if errors:
            logger.warning("Skill catalog partially unavailable: %s", "; ".join(errors))

        if source == "all":
            return deduplicate_skills(results)
        return results

    def search_skills(self, query: str, source: SourceFilter = "all") -> list[Skill]:
        """Case-insensitive substring match over name and description."""
        needle = (query or "").strip().lower()
        catalog = self.list_skills(source=source)
        if not needle:
            return catalog
        return [
            skill
            for skill in catalog
            if needle in (skill.name or "").lower() or needle in (skill.description or "").lower()
        ]

    def invalidate(self) -> None:
        self._cache.clear()

    # ── Content resolution ──────────────────────────────────────────

    def _candidate_urls(self, url: str) -> list[str]:
        repo = _GITHUB_REPO_RE.match(url)
        if not repo:
            return [url]
        owner, name = repo.group(1), repo.group(2)
        paths: list[str] = []
        subpath = _GITHUB_SUBPATH_RE.match(url)
        if subpath:
            paths.extend([f"{subpath.group(1)}/SKILL.md", f"{subpath.group(1)}/README.md"])
        paths.extend([".github/copilot-instructions.md", "SKILL.md", "README.md"])
        return [f"https://raw.githubusercontent.com/{owner}/{name}/main/{path}" for path in paths]

    def fetch_skill_content(self, skill: Skill) -> Optional[str]:
        """Try each candidate location in order; None when all of them fail."""
        if not skill.sourceUrl:
            return None
        for url in self._candidate_urls(skill.sourceUrl):
            try:
                return self._get(url)
            except NetworkFailureError as exc:
                logger.debug("Skill content not at %s: %s", url, exc)
        return None

    def resolve_content(self, skill: Skill) -> str:
        """Return installable content for ``skill``; falls back to a metadata stub."""
        if skill.content:
            return skill.content
        content = self.fetch_skill_content(skill)
        if content:
            return content
        logger.info("Using metadata stub for skill %s", skill.slug)
        return build_skill_stub(skill)

    # ── Installed skills ────────────────────────────────────────────

    def _skill_dir(self, slug: str) -> Optional[Path]:
        """``skills_dir / slug`` when it names a direct child, else None."""
        if not is_safe_dirname(slug):
            return None
        candidate = self.skills_dir / slug
        if candidate.resolve().parent != self.skills_dir.resolve():
            return None
        return candidate

    def install_skill(self, skill: Skill, force: bool = False) -> Path:
        """Write ``{slug}/SKILL.md``; raises DuplicateSkillError unless ``force``."""
        skill_dir = self._skill_dir(skill.slug) if slugify(skill.slug) == skill.slug else None
        if skill_dir is None:
            raise InvalidSlugError(skill.slug)
        if skill_dir.exists() and not force:
            raise DuplicateSkillError(skill.slug)

        content = self.resolve_content(skill)
        if skill_dir.exists():
            shutil.rmtree(skill_dir)
        skill_dir.mkdir(parents=True, exist_ok=True)
        skill_file = skill_dir / config.SKILL_FILENAME
        skill_file.write_text(content, encoding="utf-8")
        logger.info("Installed skill %s into %s", skill.slug, skill_dir)
        return skill_file

    def remove_skill(self, slug: str) -> None:
        skill_dir = self._skill_dir(slug)
        if skill_dir is None or skill_dir.is_symlink() or not skill_dir.is_dir():
            raise SkillNotFoundError(f"Skill '{slug}' is not installed")
        shutil.rmtree(skill_dir)
        logger.info("Removed skill %s", slug)

    def get_installed_skills(self) -> list[Skill]:
        """Skills installed on disk, one per ``{slug}/SKILL.md``, sorted by slug."""
        if not self.skills_dir.is_dir():
            return []
        skills: list[Skill] = []
        for entry in sorted(self.skills_dir.iterdir()):
            skill_file = entry / config.SKILL_FILENAME
            if not entry.is_dir() or not skill_file.is_file():
                continue
            try:
                content = read_markdown(skill_file)
            except (OSError, UnicodeDecodeError) as exc:
                logger.warning("Skipping installed skill %s: %s", skill_file, exc)
                continue
            skills.append(parse_installed_skill(entry.name, content))
        return skills
