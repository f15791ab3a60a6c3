"""Squad folder watcher using watchfiles.

Raw filesystem events for markdown files are coalesced by path and flushed
as one batch once no new event has arrived for the debounce window.
watchfiles' own grouping is limited to ``WATCH_STEP_MS`` so the configured
window is the one that applies.
Registered cache invalidators run before subscribers on every flush.
"""
from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Callable, Iterable, Optional

from watchfiles import Change, awatch

from squaddash import config
from squaddash.date_utils import utc_now_iso
from squaddash.models import ChangeType, FileChangeEvent

logger = logging.getLogger("squaddash.watcher")

BatchCallback = Callable[[list[FileChangeEvent]], None]
Invalidator = Callable[[], None]

_CHANGE_TYPES: dict[Change, ChangeType] = {
    Change.added: "created",
    Change.modified: "changed",
    Change.deleted: "deleted",
}


def markdown_filter(change: Change, path: str) -> bool:
    return path.endswith(".md")


class FileWatcher:
    """Background watcher over one or more squad directories."""

    def __init__(self, paths: Iterable[Path], debounce_ms: Optional[int] = None):
        self.paths = [Path(p) for p in paths]
        self.debounce_ms = config.WATCH_DEBOUNCE_MS if debounce_ms is None else debounce_ms
        self._task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None
        self._running = False
        self._pending: dict[str, FileChangeEvent] = {}
        self._timer: Optional[asyncio.TimerHandle] = None
        self._generation = 0
        self._subscribers: list[BatchCallback] = []
        self._invalidators: list[Invalidator] = []

    @property
    def is_watching(self) -> bool:
        return self._running

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def subscribe(self, callback: BatchCallback) -> Callable[[], None]:
        """Register a batch callback; returns a function that unsubscribes it."""
        self._subscribers.append(callback)

        def _unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return _unsubscribe

    def register_cache_invalidator(self, invalidator: Invalidator) -> None:
        if invalidator not in self._invalidators:
            self._invalidators.append(invalidator)

    async def start(self) -> None:
        """Start watching in a background task; a second start is a no-op."""
        if self._running:
            logger.debug("File watcher already running")
            return

        watch_paths = [p for p in self.paths if p.exists()]
        if not watch_paths:
            logger.warning("No squad directories exist, watcher has nothing to monitor")
            return

        self._running = True
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._watch_loop(watch_paths, self._stop_event))
        logger.info("File watcher started for %s", [str(p) for p in watch_paths])

    async def stop(self) -> None:
        """Stop watching and drop pending events; stopping twice is a no-op."""
        if not self._running and self._task is None:
            return
        self._running = False
        if self._stop_event is not None:
            self._stop_event.set()
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        self._cancel_timer()
        self._pending.clear()
        logger.info("File watcher stopped")

    async def dispose(self) -> None:
        await self.stop()
        self._subscribers.clear()
        self._invalidators.clear()

    # ── Debounce ────────────────────────────────────────────────────

    def queue_event(self, change_type: ChangeType, path: str) -> None:
        """Record an event and re-arm the debounce timer.

        A later event for the same path replaces the pending one. Must be
        called from the event loop thread.
        """
        self._pending[path] = FileChangeEvent(type=change_type, path=path, timestamp=utc_now_iso())
        self._cancel_timer()
        self._generation += 1
        generation = self._generation
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(self.debounce_ms / 1000.0, self._flush, generation)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _flush(self, generation: int) -> None:
        # A newer event re-armed the timer after this one was scheduled
        if generation != self._generation:
            return
        self._timer = None
        if not self._pending:
            return
        batch = list(self._pending.values())
        self._pending = {}
        logger.debug("Flushing %d coalesced file events", len(batch))

        for invalidator in list(self._invalidators):
            try:
                invalidator()
            except Exception as exc:  # noqa: BLE001
                logger.error("Cache invalidator failed: %s", exc)

        for callback in list(self._subscribers):
            try:
                callback(batch)
            except Exception as exc:  # noqa: BLE001
                logger.error("File change subscriber failed: %s", exc)

    # ── Watch loop ──────────────────────────────────────────────────

    def _classify_changes(self, changes: set[tuple[Change, str]]) -> list[tuple[ChangeType, str]]:
        result: list[tuple[ChangeType, str]] = []
        for change, path in changes:
            if not path.endswith(".md"):
                continue
            change_type = _CHANGE_TYPES.get(change)
            if change_type is not None:
                result.append((change_type, path))
        return result

    async def _watch_loop(self, watch_paths: list[Path], stop_event: asyncio.Event) -> None:
        try:
            async for changes in awatch(
                *watch_paths,
                stop_event=stop_event,
                watch_filter=markdown_filter,
                debounce=min(config.WATCH_STEP_MS, self.debounce_ms),
                step=config.WATCH_STEP_MS,
                recursive=True,
            ):
                if not self._running:
                    break
                for change_type, path in self._classify_changes(changes):
                    self.queue_event(change_type, path)
        except asyncio.CancelledError:
            logger.debug("File watcher task cancelled")
        except Exception as exc:  # noqa: BLE001
            logger.error("File watcher error: %s", exc)
        finally:
            self._running = False
