"""The contract every framework adapter implements.

An adapter hides one framework behind four independent capabilities:

- ``detect``: cheap, read-only probe of a project root
- ``discover``: find and parse the framework's test files
- ``run``: execute a subset of tests through the framework CLI
- ``parse_one``: parse a single source file

Orchestration code only ever talks to this interface. Adding a framework
means adding a subclass, never branching on the framework elsewhere.
"""

from __future__ import annotations

import fnmatch
import logging
import os
from abc import ABC, abstractmethod
from collections.abc import Sequence
from pathlib import Path

from ..config import TestrConfig
from ..models import DiscoveryResult, TestFramework, TestRunResult, TestSuite, count_tests
from .process import CancellationSignal

logger = logging.getLogger(__name__)


class TestFrameworkAdapter(ABC):
    """Base class for framework adapters.

    Subclasses set ``framework`` and ``dependency_dir`` and implement the
    abstract methods. File discovery is shared.
    """

    framework: TestFramework
    dependency_dir: str = ""

    def __init__(self, config: TestrConfig | None = None) -> None:
        self.config = config or TestrConfig()

    @property
    @abstractmethod
    def test_patterns(self) -> list[str]:
        """Glob patterns (relative to the project root) of test source files."""

    @abstractmethod
    def detect(self, project_root: Path) -> bool:
        """Check whether this framework is used in ``project_root``.

        Must not raise: any I/O failure means "not detected".
        """

    @abstractmethod
    def parse_one(self, file: str, content: str) -> TestSuite | None:
        """Parse one source file into a file-level suite, or None."""

    @abstractmethod
    async def run(
        self,
        project_root: Path,
        test_ids: Sequence[str],
        cancel: CancellationSignal | None = None,
    ) -> TestRunResult:
        """Run the given tests and return their results.

        Must not raise: spawn failures, unparseable output and cancellation
        all resolve to an empty (or fully marked) TestRunResult.
        """

    @property
    def excluded_dirs(self) -> set[str]:
        excluded = set(self.config.discovery.exclude_dirs)
        if self.dependency_dir:
            excluded.add(self.dependency_dir)
        return excluded

    def discover(self, project_root: Path) -> DiscoveryResult:
        """Find and parse every test file under ``project_root``.

        A file that cannot be read or parsed is skipped; it never aborts the pass.
        """
        suites: list[TestSuite] = []
        test_count = 0

        for path in self.find_test_files(project_root):
            try:
                content = path.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError) as e:
                logger.debug("Skipping unreadable file %s: %s", path, e)
                continue

            try:
                suite = self.parse_one(str(path), content)
            except Exception as e:
                logger.warning("Failed to parse %s: %s", path, e)
                continue

            if suite is None:
                logger.debug("No %s tests in %s", self.framework.value, path)
                continue

            suites.append(suite)
            test_count += count_tests(suite)

        return DiscoveryResult(framework=self.framework, suites=suites, test_count=test_count)

    def find_test_files(self, project_root: Path) -> list[Path]:
        """List files matching ``test_patterns``, pattern order first, then path order.

        Excluded directories are pruned during the walk, not filtered afterwards.
        """
        root = Path(project_root).resolve()
        excluded = self.excluded_dirs
        candidates: list[tuple[str, Path]] = []

        for dirpath, dirnames, filenames in os.walk(root):
            dirnames[:] = sorted(d for d in dirnames if d not in excluded)
            for filename in sorted(filenames):
                path = Path(dirpath) / filename
                candidates.append((path.relative_to(root).as_posix(), path))

        found: list[Path] = []
        seen: set[Path] = set()
        for pattern in self.test_patterns:
            for relative, path in candidates:
                if path not in seen and matches_pattern(relative, pattern):
                    seen.add(path)
                    found.append(path)
        return found


def matches_pattern(relative_path: str, pattern: str) -> bool:
    """Match a POSIX relative path against a glob; ``**/name`` matches at any depth."""
    if pattern.startswith("**/"):
        name_pattern = pattern[3:]
        if "/" not in name_pattern:
            return fnmatch.fnmatchcase(relative_path.rsplit("/", 1)[-1], name_pattern)
        return fnmatch.fnmatchcase(relative_path, pattern) or fnmatch.fnmatchcase(
            relative_path, name_pattern
        )
    return fnmatch.fnmatchcase(relative_path, pattern)
