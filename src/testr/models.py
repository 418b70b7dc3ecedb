"""Data models for discovered tests and execution results."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Union


class TestFramework(str, Enum):
    """Supported test frameworks."""

    JEST = "jest"
    PHPUNIT = "phpunit"


class TestStatus(str, Enum):
    """Outcome of a single executed test."""

    PASSED = "passed"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class TestLocation:
    """Source position of a suite or case (1-based)."""

    file: str
    line: int
    column: int


@dataclass
class TestCase:
    """A single test, the leaf of the tree."""

    id: str
    name: str
    full_name: str
    location: TestLocation
    parent_id: str | None = None


@dataclass
class TestSuite:
    """A grouping node: a file, a describe block or a test class.

    Children keep source order, which is also the default run order.
    """

    id: str
    name: str
    location: TestLocation
    children: list[TestSuite | TestCase] = field(default_factory=list)
    parent_id: str | None = None


TestItem = Union[TestSuite, TestCase]


def is_test_suite(item: TestItem) -> bool:
    """Check whether an item is a suite (has children) rather than a case."""
    return isinstance(item, TestSuite)


def count_tests(suite: TestSuite) -> int:
    """Count the leaf test cases below a suite."""
    count = 0
    for child in suite.children:
        if is_test_suite(child):
            count += count_tests(child)  # type: ignore[arg-type]
        else:
            count += 1
    return count


@dataclass
class DiscoveryResult:
    """Everything one adapter found under a project root."""

    framework: TestFramework
    suites: list[TestSuite] = field(default_factory=list)
    test_count: int = 0


@dataclass
class TestExecutionResult:
    """Result of one test as reported by the framework."""

    test_id: str
    status: TestStatus
    duration_ms: float = 0.0
    error_message: str | None = None
    error_stack: str | None = None


@dataclass
class TestRunResult:
    """Aggregate result of one adapter run."""

    passed: int = 0
    failed: int = 0
    skipped: int = 0
    duration_ms: float = 0.0
    results: list[TestExecutionResult] = field(default_factory=list)

    @classmethod
    def empty(cls) -> TestRunResult:
        """Result used for cancelled, unspawnable or unparseable runs."""
        return cls()

    @property
    def total(self) -> int:
        return self.passed + self.failed + self.skipped

    @property
    def is_empty(self) -> bool:
        return self.total == 0 and not self.results

    def summary(self) -> str:
        """Generate a summary string."""
        parts = []
        if self.passed > 0:
            parts.append(f"{self.passed} passed")
        if self.failed > 0:
            parts.append(f"{self.failed} failed")
        if self.skipped > 0:
            parts.append(f"{self.skipped} skipped")

        result = f"Tests: {', '.join(parts) or 'no tests run'}"
        if self.duration_ms > 0:
            result += f" ({self.duration_ms:.0f}ms)"
        return result
