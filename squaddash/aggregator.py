"""Merge roster, session logs, decisions and installed skills into one view.

The aggregator memoizes an immutable :class:`SquadSnapshot`. ``invalidate``
discards it; the next read rebuilds from the files on disk. A rebuild that
finishes after a newer invalidation is returned to its caller but not
published, so the memoized snapshot is always a complete, current one.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Protocol

from squaddash import config
from squaddash.date_utils import utc_now_iso
from squaddash.file_watcher import FileWatcher
from squaddash.models import (
    DecisionEntry,
    LogEntry,
    Member,
    MemberStatus,
    Roster,
    Skill,
    Task,
    TrackedIssue,
    WorkDetails,
)
from squaddash.observability import record_ingestion, start_span
from squaddash.parsers.decisions import scan_decisions
from squaddash.parsers.roster import parse_roster_file
from squaddash.parsers.session_logs import scan_log_entries
from squaddash.services.activity import derive_tasks, member_states
from squaddash.services.decision_search import DecisionSearchCriteria, filter_decisions
from squaddash.services.skill_catalog import SkillCatalogService
from squaddash.squad_paths import squad_dir, watch_roots

logger = logging.getLogger("squaddash.aggregator")

DEGRADED_ROLE = "Squad Member"
PLACEHOLDER_ROLE = "Team Member"


class IssueTracker(Protocol):
    """Optional issue-tracking backend."""

    def get_member_issues(self, member_name: str) -> list[TrackedIssue]:
        ...


@dataclass(frozen=True)
class SquadSnapshot:
    roster: Roster
    logEntries: tuple[LogEntry, ...] = ()
    tasks: tuple[Task, ...] = ()
    decisions: tuple[DecisionEntry, ...] = ()
    skills: tuple[Skill, ...] = ()
    skippedFiles: tuple[tuple[str, str], ...] = ()
    generatedAt: str = field(default_factory=utc_now_iso)


def _resolve_status(
    name: str,
    declared: MemberStatus,
    states: dict[str, MemberStatus],
    current_task: Optional[Task],
) -> MemberStatus:
    if declared == "working":
        return "working"
    # Log activity only counts while the member still has work in progress
    if states.get(name) == "working" and current_task is not None:
        return "working"
    return "idle"


def merge_roster(
    declared: Optional[Roster],
    entries: list[LogEntry],
    tasks: list[Task],
) -> Roster:
    """Overlay log-derived runtime state onto the declared roster.

    When the roster document is missing (or lists nobody) membership is the
    union of log participants, in first-seen order, and the result is
    flagged ``degraded``.
    """
    states = member_states(entries)

    def _current(name: str) -> Optional[Task]:
        return next((t for t in tasks if t.assignee == name and t.status == "in_progress"), None)

    if declared is not None and declared.members:
        members = []
        for member in declared.members:
            current = _current(member.name)
            members.append(
                Member(
                    name=member.name,
                    role=member.role,
                    status=_resolve_status(member.name, member.status, states, current),
                    currentTask=current,
                )
            )
        return declared.model_copy(update={"members": members})

    names: list[str] = []
    for entry in entries:
        for participant in entry.participants:
            if participant not in names:
                names.append(participant)

    members = []
    for name in names:
        current = _current(name)
        members.append(
            Member(
                name=name,
                role=DEGRADED_ROLE,
                status=_resolve_status(name, "idle", states, current),
                currentTask=current,
            )
        )
    return Roster(
        members=members,
        repository=declared.repository if declared else None,
        owner=declared.owner if declared else None,
        copilotCapabilities=declared.copilotCapabilities if declared else None,
        degraded=True,
    )


class SquadAggregator:
    """Read-side facade over one workspace's squad folder."""

    def __init__(
        self,
        workspace_root: Path,
        squad_folder: Optional[str] = None,
        skill_catalog: Optional[SkillCatalogService] = None,
        issue_tracker: Optional[IssueTracker] = None,
    ):
        self.workspace_root = Path(workspace_root)
        self._squad_folder = squad_folder
        # A default catalog follows the squad folder as it is re-detected
        self._owns_catalog = skill_catalog is None
        self.skill_catalog = skill_catalog or SkillCatalogService(self.squad_dir / config.SKILLS_DIRNAME)
        self.issue_tracker = issue_tracker
        self._snapshot: Optional[SquadSnapshot] = None
        self._generation = 0

    @property
    def squad_dir(self) -> Path:
        return squad_dir(self.workspace_root, self._squad_folder)

    def _catalog(self) -> SkillCatalogService:
        if self._owns_catalog:
            self.skill_catalog.skills_dir = self.squad_dir / config.SKILLS_DIRNAME
        return self.skill_catalog

    # ── Snapshot lifecycle ──────────────────────────────────────────

    def _drop_snapshot(self) -> None:
        self._generation += 1
        self._snapshot = None
        logger.debug("Squad snapshot invalidated (generation %d)", self._generation)

    def invalidate(self) -> None:
        """Drop the memoized snapshot and the skill catalog cache."""
        self._drop_snapshot()
        self.skill_catalog.invalidate()

    def snapshot(self) -> SquadSnapshot:
        current = self._snapshot
        if current is not None:
            return current

        generation = self._generation
        built = self._build()
        if generation == self._generation:
            self._snapshot = built
        else:
            logger.debug("Discarding snapshot built for stale generation %d", generation)
        return built

    def _build(self) -> SquadSnapshot:
        started = time.perf_counter()
        root = self.squad_dir
        skipped: list[tuple[str, str]] = []

        def _on_skip(path: Path, reason: str) -> None:
            skipped.append((str(path), reason))

        try:
            with start_span("squaddash.aggregate", {"squad.dir": str(root)}):
                entries = scan_log_entries(root, on_skip=_on_skip)
                tasks = derive_tasks(entries)
                roster = merge_roster(parse_roster_file(root / config.ROSTER_FILENAME), entries, tasks)
                decisions = scan_decisions(root, on_skip=_on_skip)
                skills = self._catalog().get_installed_skills()
        except Exception:
            record_ingestion("squad", "error", (time.perf_counter() - started) * 1000)
            raise

        duration_ms = (time.perf_counter() - started) * 1000
        record_ingestion("squad", "partial" if skipped else "success", duration_ms)
        logger.debug(
            "Aggregated %d members, %d logs, %d decisions in %.1fms (%d skipped)",
            len(roster.members),
            len(entries),
            len(decisions),
            duration_ms,
            len(skipped),
        )
        return SquadSnapshot(
            roster=roster,
            logEntries=tuple(entries),
            tasks=tuple(tasks),
            decisions=tuple(decisions),
            skills=tuple(skills),
            skippedFiles=tuple(skipped),
        )

    # ── Read API ────────────────────────────────────────────────────

    def get_roster(self) -> Roster:
        return self.snapshot().roster

    def get_log_entries(self) -> list[LogEntry]:
        return list(self.snapshot().logEntries)

    def get_tasks(self) -> list[Task]:
        return list(self.snapshot().tasks)

    def get_tasks_for_member(self, member_name: str) -> list[Task]:
        return [task for task in self.snapshot().tasks if task.assignee == member_name]

    def get_work_details(self, task_id: str) -> Optional[WorkDetails]:
        """Task plus its assignee and the log entries that reference it."""
        snap = self.snapshot()
        task = next((t for t in snap.tasks if t.id == task_id), None)
        if task is None:
            return None

        assignee = (task.assignee or "").lower()
        member = next((m for m in snap.roster.members if m.name.lower() == assignee), None)
        if member is None:
            member = Member(name=task.assignee or "Unknown", role=PLACEHOLDER_ROLE)

        related = [
            entry
            for entry in snap.logEntries
            if any(task_id in issue for issue in entry.relatedIssues or [])
        ]
        return WorkDetails(task=task, member=member, logEntries=related or None)

    def get_decisions(self) -> list[DecisionEntry]:
        return list(self.snapshot().decisions)

    def search_decisions(
        self,
        query: Optional[str] = None,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
        author: Optional[str] = None,
    ) -> list[DecisionEntry]:
        criteria = DecisionSearchCriteria(query=query, startDate=start_date, endDate=end_date, author=author)
        return filter_decisions(self.get_decisions(), criteria)

    def get_installed_skills(self) -> list[Skill]:
        return list(self.snapshot().skills)

    def get_member_issues(self, member_name: str) -> list[TrackedIssue]:
        if self.issue_tracker is None:
            return []
        return self.issue_tracker.get_member_issues(member_name)

    # ── Skill writes ────────────────────────────────────────────────

    def install_skill(self, skill: Skill, force: bool = False) -> Path:
        path = self._catalog().install_skill(skill, force=force)
        self._drop_snapshot()
        return path

    def remove_skill(self, slug: str) -> None:
        self._catalog().remove_skill(slug)
        self._drop_snapshot()

    # ── Watcher wiring ──────────────────────────────────────────────

    def attach_watcher(self, watcher: FileWatcher) -> FileWatcher:
        watcher.register_cache_invalidator(self.invalidate)
        return watcher

    def create_watcher(self, debounce_ms: Optional[int] = None) -> FileWatcher:
        """A watcher over every existing squad folder, wired to ``invalidate``."""
        roots = watch_roots(self.workspace_root) or [self.squad_dir]
        return self.attach_watcher(FileWatcher(roots, debounce_ms=debounce_ms))
