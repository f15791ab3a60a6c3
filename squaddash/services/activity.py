"""Derive runtime member state and tasks from parsed session logs."""
from __future__ import annotations

import re

from squaddash.models import LogEntry, MemberStatus, Task, slugify

TITLE_MAX_LENGTH = 60

_ISSUE_NUMBER_RE = re.compile(r"#(\d+)")
_OUTCOME_DONE_MARKERS = ("completed", "done", "✅")
_SUMMARY_DONE_MARKERS = _OUTCOME_DONE_MARKERS + ("pass", "succeeds")


def _newest_first(entries: list[LogEntry]) -> list[LogEntry]:
    return sorted(entries, key=lambda entry: entry.date, reverse=True)


def _has_marker(text: str, markers: tuple[str, ...]) -> bool:
    lowered = (text or "").lower()
    return any(marker in lowered for marker in markers)


def truncate_title(text: str, max_length: int = TITLE_MAX_LENGTH) -> str:
    """Cut ``text`` to ``max_length`` at a word boundary, appending an ellipsis."""
    if len(text) <= max_length:
        return text
    truncated = text[:max_length]
    last_space = truncated.rfind(" ")
    if last_space > max_length * 0.5:
        truncated = truncated[:last_space]
    return truncated + "…"


def prose_task_id(date: str, agent: str) -> str:
    return f"{date}-{slugify(agent)}"


def member_states(entries: list[LogEntry]) -> dict[str, MemberStatus]:
    """Participants of the newest log are ``working``; everyone else ``idle``."""
    if not entries:
        return {}
    latest = set(_newest_first(entries)[0].participants)
    states: dict[str, MemberStatus] = {}
    for entry in entries:
        for participant in entry.participants:
            states[participant] = "working" if participant in latest else "idle"
    return states


def derive_tasks(entries: list[LogEntry]) -> list[Task]:
    """Build the task list from issue references, then prose work items.

    Issue tasks come first (related issues are in progress; issues named in
    outcomes are completed when the outcome says so). Entries that produced
    no issue task contribute their per-agent "What Was Done" items, or a
    single synthetic task built from the summary.
    """
    tasks: list[Task] = []
    seen: set[str] = set()
    prose_entries: list[LogEntry] = []

    for entry in _newest_first(entries):
        assignee = entry.participants[0] if entry.participants else "unknown"
        produced = False

        for ref in entry.relatedIssues or []:
            task_id = ref.replace("#", "").strip()
            if not task_id or task_id in seen:
                continue
            seen.add(task_id)
            produced = True
            tasks.append(
                Task(
                    id=task_id,
                    title=f"Issue #{task_id}",
                    description=entry.summary,
                    status="in_progress",
                    assignee=assignee,
                    startedAt=entry.date,
                )
            )

        for outcome in entry.outcomes or []:
            for task_id in _ISSUE_NUMBER_RE.findall(outcome):
                if task_id in seen:
                    continue
                seen.add(task_id)
                produced = True
                completed = _has_marker(outcome, _OUTCOME_DONE_MARKERS)
                tasks.append(
                    Task(
                        id=task_id,
                        title=f"Issue #{task_id}",
                        description=outcome,
                        status="completed" if completed else "in_progress",
                        assignee=assignee,
                        startedAt=entry.date,
                        completedAt=entry.date if completed else None,
                    )
                )

        if not produced and entry.participants:
            prose_entries.append(entry)

    for entry in prose_entries:
        for item in entry.whatWasDone or []:
            task_id = prose_task_id(entry.date, item.agent)
            if task_id in seen:
                continue
            seen.add(task_id)
            tasks.append(
                Task(
                    id=task_id,
                    title=truncate_title(item.description),
                    description=item.description,
                    status="completed",
                    assignee=item.agent,
                    startedAt=entry.date,
                    completedAt=entry.date,
                )
            )

    for entry in prose_entries:
        if entry.whatWasDone or not entry.summary:
            continue
        assignee = entry.participants[0]
        task_id = prose_task_id(entry.date, assignee)
        if task_id in seen:
            continue
        seen.add(task_id)
        completed = _has_marker(" ".join([entry.summary, *(entry.outcomes or [])]), _SUMMARY_DONE_MARKERS)
        tasks.append(
            Task(
                id=task_id,
                title=truncate_title(entry.summary),
                description=entry.summary,
                status="completed" if completed else "in_progress",
                assignee=assignee,
                startedAt=entry.date,
                completedAt=entry.date if completed else None,
            )
        )

    return tasks
