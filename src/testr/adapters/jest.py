"""Jest adapter.

Runs ``jest --json`` with a ``--testNamePattern`` built from the requested
identifiers and maps the JSON report back onto identifiers.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Sequence
from pathlib import Path

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError

from ..identifiers import encode, file_token_for, to_name_pattern
from ..models import TestExecutionResult, TestFramework, TestRunResult, TestStatus, TestSuite
from ..parsers import jest as jest_parser
from .base import TestFrameworkAdapter
from .process import CancellationSignal, run_process, split_command

logger = logging.getLogger(__name__)

JSON_FLAG = "--json"
LOCATION_FLAG = "--testLocationInResults"
NAME_PATTERN_FLAG = "--testNamePattern"

_JS_REGEX_META = re.compile(r"[.*+?^${}()|\[\]\\]")
_ANSI_ESCAPE = re.compile(r"\x1b\[[0-9;]*[A-Za-z]")
_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")

_STATUS_MAP = {
    "passed": TestStatus.PASSED,
    "failed": TestStatus.FAILED,
    "pending": TestStatus.SKIPPED,
    "skipped": TestStatus.SKIPPED,
}


# =============================================================================
# Jest JSON report
# =============================================================================


class JestAssertionResult(BaseModel):
    """One test entry of a Jest file result."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    ancestor_titles: list[str] = Field(default_factory=list, alias="ancestorTitles")
    title: str
    status: str
    duration: float | None = None
    failure_messages: list[str] = Field(default_factory=list, alias="failureMessages")


class JestFileResult(BaseModel):
    """Results for one test file.

    Jest's ``--json`` output names these ``name``/``assertionResults``; the
    in-process aggregated result uses ``testFilePath``/``testResults``.
    Both shapes are accepted.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    test_file_path: str = Field(validation_alias=AliasChoices("testFilePath", "name"))
    assertion_results: list[JestAssertionResult] = Field(
        default_factory=list,
        validation_alias=AliasChoices("assertionResults", "testResults"),
    )


class JestReport(BaseModel):
    """Top-level Jest ``--json`` report."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    success: bool = False
    num_total_tests: int = Field(0, alias="numTotalTests")
    num_passed_tests: int = Field(0, alias="numPassedTests")
    num_failed_tests: int = Field(0, alias="numFailedTests")
    num_pending_tests: int = Field(0, alias="numPendingTests")
    test_results: list[JestFileResult] = Field(default_factory=list, alias="testResults")


def map_status(status: str) -> TestStatus:
    """Map Jest's status vocabulary onto TestStatus (unknown means skipped)."""
    return _STATUS_MAP.get(status, TestStatus.SKIPPED)


def escape_js_regex(text: str) -> str:
    """Escape JavaScript regex metacharacters."""
    return _JS_REGEX_META.sub(lambda m: "\\" + m.group(0), text)


def build_name_filter(test_ids: Sequence[str]) -> str:
    """Build one alternation regex matching every requested test name.

    File-level identifiers project to an empty name and are dropped; an
    empty return value means "no filter".
    """
    patterns = [to_name_pattern(test_id) for test_id in test_ids]
    return "|".join(escape_js_regex(p) for p in patterns if p)


def parse_jest_output(stdout: str) -> TestRunResult:
    """Parse Jest ``--json`` output into a TestRunResult.

    Any decode or validation failure degrades to an empty result.
    """
    match = _JSON_OBJECT.search(stdout)
    if not match:
        logger.warning("No JSON report found in Jest output")
        return TestRunResult.empty()

    try:
        report = JestReport.model_validate(json.loads(match.group(0)))
    except (json.JSONDecodeError, ValidationError) as e:
        logger.warning("Could not parse Jest JSON report: %s", e)
        return TestRunResult.empty()

    results: list[TestExecutionResult] = []
    for file_result in report.test_results:
        file_token = file_token_for(file_result.test_file_path)
        for assertion in file_result.assertion_results:
            messages = [_ANSI_ESCAPE.sub("", m) for m in assertion.failure_messages]
            results.append(
                TestExecutionResult(
                    test_id=encode([*assertion.ancestor_titles, assertion.title], file_token),
                    status=map_status(assertion.status),
                    duration_ms=assertion.duration or 0.0,
                    error_message=messages[0] if messages else None,
                    error_stack="\n".join(messages) if messages else None,
                )
            )

    return TestRunResult(
        passed=report.num_passed_tests,
        failed=report.num_failed_tests,
        skipped=report.num_pending_tests,
        duration_ms=sum(r.duration_ms for r in results),
        results=results,
    )


# =============================================================================
# Adapter
# =============================================================================


class JestAdapter(TestFrameworkAdapter):
    """Adapter for Jest projects."""

    framework = TestFramework.JEST
    dependency_dir = "node_modules"

    @property
    def test_patterns(self) -> list[str]:
        return self.config.jest.test_patterns

    def detect(self, project_root: Path) -> bool:
        """Detect Jest via package.json dependencies or a jest.config.* file."""
        root = Path(project_root)
        try:
            package_json = root / "package.json"
            if package_json.exists():
                pkg = json.loads(package_json.read_text(encoding="utf-8"))
                if isinstance(pkg, dict):
                    deps = {**pkg.get("dependencies", {}), **pkg.get("devDependencies", {})}
                    if "jest" in deps:
                        return True

            return any((root / name).exists() for name in self.config.jest.config_files)
        except (OSError, ValueError, TypeError) as e:
            logger.debug("Jest detection failed for %s: %s", root, e)
            return False

    def parse_one(self, file: str, content: str) -> TestSuite | None:
        return jest_parser.parse_test_file(file, content)

    def find_executable(self, project_root: Path) -> list[str]:
        """Resolve the Jest binary: local .cmd shim, local binary, then npx."""
        bin_paths = self.config.jest.bin_paths
        for key in ("windows", "unix"):
            local = Path(project_root) / bin_paths[key]
            if local.exists():
                return [str(local)]
        return split_command(bin_paths["fallback"])

    def build_command(self, project_root: Path, test_ids: Sequence[str]) -> list[str]:
        argv = [*self.find_executable(project_root), JSON_FLAG, LOCATION_FLAG]
        name_filter = build_name_filter(test_ids)
        if name_filter:
            argv += [NAME_PATTERN_FLAG, name_filter]
        return argv

    async def run(
        self,
        project_root: Path,
        test_ids: Sequence[str],
        cancel: CancellationSignal | None = None,
    ) -> TestRunResult:
        root = Path(project_root)
        try:
            argv = self.build_command(root, test_ids)
            outcome = await run_process(
                argv,
                cwd=root,
                env={"CI": "true"},
                cancel=cancel,
                timeout=self.config.execution.process_timeout,
            )
            if not outcome.completed:
                return TestRunResult.empty()

            if outcome.stderr:
                logger.debug("Jest stderr: %s", outcome.stderr[:500])
            result = parse_jest_output(outcome.stdout)
            logger.info(
                "Jest finished with code %s: %d passed, %d failed, %d skipped",
                outcome.exit_code,
                result.passed,
                result.failed,
                result.skipped,
            )
            return result
        except Exception:
            logger.exception("Jest run failed in %s", root)
            return TestRunResult.empty()
