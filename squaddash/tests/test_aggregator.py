import asyncio
import tempfile
import unittest
from pathlib import Path

from squaddash.aggregator import SquadAggregator
from squaddash.models import Skill, TrackedIssue


TEAM_MD = """# Team

## Members

| Name | Role | Charter | Status |
|------|------|---------|--------|
| Danny | Lead | — | ✅ Active |
| Linus | Backend | — | ✅ Active |
| Scribe | Coordinator | — | 📋 Silent |
"""

UI_LOG = """# UI session

**Date:** 2026-02-10
**Participants:** Rusty

## Summary
Built the tree view.
"""

API_LOG = """# API session

**Date:** 2026-02-12
**Participants:** Linus

## Summary
Wiring the data provider.

## Related Issues
- #7
"""

DECISIONS_MD = """# Decisions

### 2026-02-01: Old call
**By:** Danny

## 2026-02-15: Dashboard Fixes
**By:** Rusty
"""


def _write(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")


class _FakeTracker:
    def __init__(self) -> None:
        self.requested: list[str] = []

    def get_member_issues(self, member_name: str) -> list[TrackedIssue]:
        self.requested.append(member_name)
        return [TrackedIssue(number=7, title="Data provider", assignee=member_name)]


class AggregatorTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)
        self.squad = self.root / ".squad"
        _write(self.squad / "orchestration-log" / "2026-02-10-ui.md", UI_LOG)
        _write(self.squad / "log" / "2026-02-12-api.md", API_LOG)

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def test_degraded_mode_derives_members_from_logs(self) -> None:
        roster = SquadAggregator(self.root).get_roster()
        self.assertTrue(roster.degraded)
        self.assertEqual(sorted(m.name for m in roster.members), ["Linus", "Rusty"])

        members = {m.name: m for m in roster.members}
        self.assertEqual(members["Rusty"].status, "idle")
        self.assertEqual(members["Rusty"].role, "Squad Member")
        self.assertEqual(members["Linus"].status, "working")
        self.assertIsNotNone(members["Linus"].currentTask)
        assert members["Linus"].currentTask is not None
        self.assertEqual(members["Linus"].currentTask.id, "7")

    def test_roster_document_is_authoritative(self) -> None:
        _write(self.squad / "team.md", TEAM_MD)
        roster = SquadAggregator(self.root).get_roster()

        self.assertFalse(roster.degraded)
        self.assertEqual([m.name for m in roster.members], ["Danny", "Linus"])
        members = {m.name: m for m in roster.members}
        self.assertEqual(members["Danny"].status, "idle")
        self.assertEqual(members["Linus"].status, "working")
        self.assertEqual(members["Linus"].role, "Backend")

    def test_log_activity_without_open_work_stays_idle(self) -> None:
        _write(self.squad / "team.md", TEAM_MD)
        _write(
            self.squad / "log" / "2026-02-13-wrapup.md",
            "# Wrap-up\n\n**Participants:** Danny\n\n## Summary\nAll done ✅\n",
        )
        members = {m.name: m for m in SquadAggregator(self.root).get_roster().members}
        self.assertEqual(members["Danny"].status, "idle")
        self.assertIsNone(members["Danny"].currentTask)
        self.assertEqual(members["Linus"].status, "idle")

    def test_empty_roster_document_falls_back_to_logs(self) -> None:
        _write(self.squad / "team.md", "# Team\n\n## Members\n\n| Name | Role |\n|---|---|\n")
        roster = SquadAggregator(self.root).get_roster()
        self.assertTrue(roster.degraded)
        self.assertEqual(len(roster.members), 2)

    def test_snapshot_is_memoized_until_invalidated(self) -> None:
        aggregator = SquadAggregator(self.root)
        first = aggregator.get_roster()
        _write(self.squad / "team.md", TEAM_MD)

        self.assertIs(aggregator.get_roster(), first)
        aggregator.invalidate()
        second = aggregator.get_roster()
        self.assertIsNot(second, first)
        self.assertFalse(second.degraded)

    def test_recompute_superseded_by_invalidate_is_not_published(self) -> None:
        aggregator = SquadAggregator(self.root)
        original_build = aggregator._build

        def _racing_build():
            built = original_build()
            aggregator.invalidate()
            return built

        aggregator._build = _racing_build  # type: ignore[method-assign]
        stale = aggregator.snapshot()
        self.assertEqual(len(stale.roster.members), 2)

        aggregator._build = original_build  # type: ignore[method-assign]
        fresh = aggregator.snapshot()
        self.assertIsNot(fresh, stale)
        self.assertIs(aggregator.snapshot(), fresh)

    def test_malformed_files_are_reported_on_the_snapshot(self) -> None:
        _write(self.squad / "log" / "2026-02-11-broken.md", "# Broken\n\nNobody here.\n")
        snapshot = SquadAggregator(self.root).snapshot()
        self.assertEqual(len(snapshot.logEntries), 2)
        self.assertEqual(len(snapshot.skippedFiles), 1)
        self.assertTrue(snapshot.skippedFiles[0][0].endswith("2026-02-11-broken.md"))

    def test_decisions_are_sorted_newest_first(self) -> None:
        _write(self.squad / "decisions.md", DECISIONS_MD)
        _write(self.squad / "decisions" / "2026" / "tree.md", "# Tree grouping\n**Date:** 2026-02-05\n")
        aggregator = SquadAggregator(self.root)

        titles = [d.title for d in aggregator.get_decisions()]
        self.assertEqual(titles, ["Dashboard Fixes", "Tree grouping", "Old call"])
        self.assertEqual([d.title for d in aggregator.search_decisions(author="rusty")], ["Dashboard Fixes"])

    def test_tasks_and_work_details(self) -> None:
        _write(self.squad / "team.md", TEAM_MD)
        aggregator = SquadAggregator(self.root)

        self.assertEqual([t.id for t in aggregator.get_tasks_for_member("Linus")], ["7"])
        details = aggregator.get_work_details("7")
        self.assertIsNotNone(details)
        assert details is not None
        self.assertEqual(details.member.name, "Linus")
        self.assertIsNotNone(details.logEntries)
        assert details.logEntries is not None
        self.assertEqual([e.topic for e in details.logEntries], ["api"])
        self.assertIsNone(aggregator.get_work_details("missing"))

    def test_work_details_for_unknown_assignee_use_placeholder(self) -> None:
        _write(self.squad / "team.md", TEAM_MD)
        details = SquadAggregator(self.root).get_work_details("2026-02-10-rusty")
        self.assertIsNotNone(details)
        assert details is not None
        self.assertEqual(details.member.name, "Rusty")
        self.assertEqual(details.member.role, "Team Member")

    def test_member_issues_without_tracker(self) -> None:
        self.assertEqual(SquadAggregator(self.root).get_member_issues("Linus"), [])

    def test_member_issues_with_tracker(self) -> None:
        tracker = _FakeTracker()
        issues = SquadAggregator(self.root, issue_tracker=tracker).get_member_issues("Linus")
        self.assertEqual([i.number for i in issues], [7])
        self.assertEqual(tracker.requested, ["Linus"])

    def test_installed_skills_refresh_after_install_and_remove(self) -> None:
        aggregator = SquadAggregator(self.root)
        self.assertEqual(aggregator.get_installed_skills(), [])

        aggregator.install_skill(Skill(name="Release Checklist", description="Steps", content="# Release Checklist\n\nSteps\n"))
        self.assertEqual([s.slug for s in aggregator.get_installed_skills()], ["release-checklist"])
        self.assertTrue((self.squad / "skills" / "release-checklist" / "SKILL.md").is_file())

        aggregator.remove_skill("release-checklist")
        self.assertEqual(aggregator.get_installed_skills(), [])

    def test_legacy_squad_folder(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir)
            _write(root / ".ai-team" / "team.md", TEAM_MD)
            aggregator = SquadAggregator(root)
            self.assertEqual(aggregator.squad_dir, root / ".ai-team")
            self.assertEqual([m.name for m in aggregator.get_roster().members], ["Danny", "Linus"])

    def test_default_catalog_follows_new_squad_folder(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir)
            _write(root / ".ai-team" / "team.md", TEAM_MD)
            aggregator = SquadAggregator(root)
            aggregator.install_skill(Skill(name="Old Home", content="# Old Home\n"))
            self.assertTrue((root / ".ai-team" / "skills" / "old-home" / "SKILL.md").is_file())

            _write(root / ".squad" / "team.md", TEAM_MD)
            aggregator.invalidate()
            aggregator.install_skill(Skill(name="New Home", content="# New Home\n"))
            self.assertTrue((root / ".squad" / "skills" / "new-home" / "SKILL.md").is_file())
            self.assertFalse((root / ".ai-team" / "skills" / "new-home").exists())
            self.assertEqual([s.slug for s in aggregator.get_installed_skills()], ["new-home"])

    def test_capabilities_survive_roster_merge(self) -> None:
        _write(self.squad / "team.md", TEAM_MD + "\n<!-- copilot-auto-assign: true -->\n")
        roster = SquadAggregator(self.root).get_roster()
        self.assertIsNotNone(roster.copilotCapabilities)
        assert roster.copilotCapabilities is not None
        self.assertTrue(roster.copilotCapabilities.autoAssign)
        self.assertFalse(roster.degraded)


class WatcherWiringTests(unittest.IsolatedAsyncioTestCase):
    async def test_watcher_batches_invalidate_the_snapshot(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir)
            _write(root / ".squad" / "log" / "2026-02-12-api.md", API_LOG)
            aggregator = SquadAggregator(root)
            watcher = aggregator.create_watcher(debounce_ms=20)
            self.assertEqual(watcher.paths, [root / ".squad"])

            before = aggregator.snapshot()
            watcher.queue_event("changed", str(root / ".squad" / "team.md"))
            await asyncio.sleep(0.1)

            self.assertIsNot(aggregator.snapshot(), before)


if __name__ == "__main__":
    unittest.main()
