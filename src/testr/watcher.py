"""Watch test sources and rediscover on change."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable
from pathlib import Path

from watchfiles import Change, awatch

from .adapters.base import matches_pattern
from .adapters.registry import AdapterRegistry

logger = logging.getLogger(__name__)


class TestFileWatcher:
    """Calls ``on_change`` after each debounced batch of test file changes.

    Only files matching one of ``patterns`` (relative to a watched root)
    count; anything under an excluded directory is ignored.
    """

    def __init__(
        self,
        roots: Iterable[Path],
        patterns: Iterable[str],
        on_change: Callable[[], Awaitable[object]],
        debounce_ms: int = 500,
        excluded_dirs: Iterable[str] = (),
    ):
        self.roots = [Path(r).resolve() for r in roots]
        self.patterns = list(dict.fromkeys(patterns))
        self.on_change = on_change
        self.debounce_ms = debounce_ms
        self.excluded_dirs = set(excluded_dirs)
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task | None = None

    @classmethod
    def for_registry(
        cls,
        roots: Iterable[Path],
        registry: AdapterRegistry,
        on_change: Callable[[], Awaitable[object]],
        debounce_ms: int = 500,
    ) -> TestFileWatcher:
        """Watch the union of every registered adapter's source patterns."""
        adapters = registry.get_all()
        return cls(
            roots,
            patterns=[p for adapter in adapters for p in adapter.test_patterns],
            on_change=on_change,
            debounce_ms=debounce_ms,
            excluded_dirs={d for adapter in adapters for d in adapter.excluded_dirs},
        )

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def matches(self, path: str | Path) -> bool:
        """Check whether a changed path is a watched test source."""
        path = Path(path)
        for root in self.roots:
            try:
                relative = path.relative_to(root)
            except ValueError:
                continue
            if self.excluded_dirs.intersection(relative.parts[:-1]):
                return False
            posix = relative.as_posix()
            return any(matches_pattern(posix, pattern) for pattern in self.patterns)
        return False

    def _filter(self, change: Change, path: str) -> bool:
        return self.matches(path)

    async def watch(self) -> None:
        """Main watch loop. Returns when ``stop()`` is called."""
        roots = [r for r in self.roots if r.exists()]
        if not roots:
            logger.warning("No existing roots to watch")
            return

        logger.info("Watching %d root(s) for test changes", len(roots))
        async for changes in awatch(
            *roots,
            watch_filter=self._filter,
            debounce=self.debounce_ms,
            stop_event=self._stop_event,
        ):
            logger.debug("Test files changed: %s", sorted(path for _, path in changes))
            try:
                await self.on_change()
            except Exception:
                logger.exception("Rediscovery after file change failed")

    def start(self) -> asyncio.Task:
        """Run ``watch()`` as a background task on the running loop."""
        if self._task is not None and not self._task.done():
            return self._task
        self._stop_event.clear()
        task = asyncio.get_running_loop().create_task(self.watch())
        self._task = task
        return task

    def stop(self) -> None:
        self._stop_event.set()
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None
