import asyncio
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from watchfiles import Change

from squaddash import config
from squaddash.file_watcher import FileWatcher, markdown_filter


async def _wait_for(predicate, timeout: float = 2.0) -> None:
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.01)


class DebounceTests(unittest.IsolatedAsyncioTestCase):
    async def test_rapid_events_on_one_path_coalesce_into_one_batch(self) -> None:
        watcher = FileWatcher([], debounce_ms=50)
        batches = []
        watcher.subscribe(batches.append)

        for change_type in ("created", "changed", "changed", "changed", "deleted"):
            watcher.queue_event(change_type, "/squad/team.md")
            await asyncio.sleep(0.01)

        await asyncio.sleep(0.2)
        self.assertEqual(len(batches), 1)
        self.assertEqual(len(batches[0]), 1)
        self.assertEqual(batches[0][0].type, "deleted")
        self.assertEqual(batches[0][0].path, "/squad/team.md")
        self.assertEqual(watcher.pending_count, 0)

    async def test_distinct_paths_share_one_batch(self) -> None:
        watcher = FileWatcher([], debounce_ms=30)
        batches = []
        watcher.subscribe(batches.append)

        watcher.queue_event("changed", "/squad/team.md")
        watcher.queue_event("created", "/squad/decisions.md")
        await asyncio.sleep(0.15)

        self.assertEqual(len(batches), 1)
        self.assertEqual(sorted(e.path for e in batches[0]), ["/squad/decisions.md", "/squad/team.md"])

    async def test_separate_bursts_produce_separate_batches(self) -> None:
        watcher = FileWatcher([], debounce_ms=30)
        batches = []
        watcher.subscribe(batches.append)

        watcher.queue_event("changed", "/squad/team.md")
        await asyncio.sleep(0.15)
        watcher.queue_event("changed", "/squad/team.md")
        await asyncio.sleep(0.15)

        self.assertEqual(len(batches), 2)

    async def test_invalidators_run_and_failures_are_isolated(self) -> None:
        watcher = FileWatcher([], debounce_ms=20)
        calls = []

        def _broken(batch) -> None:
            raise RuntimeError("subscriber bug")

        watcher.register_cache_invalidator(lambda: calls.append("invalidate"))
        watcher.subscribe(_broken)
        watcher.subscribe(lambda batch: calls.append("notified"))

        with self.assertLogs("squaddash.watcher", level="ERROR"):
            watcher.queue_event("changed", "/squad/team.md")
            await asyncio.sleep(0.1)

        self.assertEqual(calls, ["invalidate", "notified"])

    async def test_unsubscribe(self) -> None:
        watcher = FileWatcher([], debounce_ms=20)
        batches = []
        unsubscribe = watcher.subscribe(batches.append)
        unsubscribe()
        unsubscribe()

        watcher.queue_event("changed", "/squad/team.md")
        await asyncio.sleep(0.1)
        self.assertEqual(batches, [])


class LifecycleTests(unittest.IsolatedAsyncioTestCase):
    async def test_start_and_stop_are_idempotent(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            watcher = FileWatcher([Path(tmpdir)], debounce_ms=20)

            await watcher.start()
            await watcher.start()
            self.assertTrue(watcher.is_watching)

            await watcher.stop()
            await watcher.stop()
            await watcher.dispose()
            self.assertFalse(watcher.is_watching)

    async def test_start_without_existing_paths_is_a_noop(self) -> None:
        watcher = FileWatcher([Path("/nonexistent/squad")], debounce_ms=20)
        await watcher.start()
        self.assertFalse(watcher.is_watching)
        await watcher.stop()

    async def test_watch_loop_forwards_markdown_changes(self) -> None:
        awatch_kwargs = {}

        async def _fake_awatch(*paths, **kwargs):
            awatch_kwargs.update(kwargs)
            yield {
                (Change.added, "/squad/log/2026-02-12-a.md"),
                (Change.modified, "/squad/notes.txt"),
            }
            yield {(Change.modified, "/squad/log/2026-02-12-a.md")}
            await kwargs["stop_event"].wait()

        with tempfile.TemporaryDirectory() as tmpdir:
            watcher = FileWatcher([Path(tmpdir)], debounce_ms=20)
            batches = []
            watcher.subscribe(batches.append)

            with patch("squaddash.file_watcher.awatch", _fake_awatch):
                await watcher.start()
                await _wait_for(lambda: len(batches) == 1)
                await watcher.stop()

        self.assertEqual(len(batches[0]), 1)
        self.assertEqual(batches[0][0].type, "changed")
        self.assertTrue(batches[0][0].path.endswith("2026-02-12-a.md"))
        # watchfiles grouping stays within the configured window
        self.assertLessEqual(awatch_kwargs["debounce"], 20)
        self.assertEqual(awatch_kwargs["step"], config.WATCH_STEP_MS)

    def test_markdown_filter(self) -> None:
        self.assertTrue(markdown_filter(Change.added, "/squad/team.md"))
        self.assertFalse(markdown_filter(Change.added, "/squad/team.md.swp"))


if __name__ == "__main__":
    unittest.main()
