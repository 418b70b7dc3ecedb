"""PHPUnit adapter.

Runs PHPUnit with ``--log-junit`` pointing at a temporary report in the
project root and a ``--filter`` built from ``Class::method`` tokens. The
JUnit report is preferred; when it is missing or unusable, the console
summary is parsed instead. The report file is always removed.
"""

from __future__ import annotations

import html
import json
import logging
import re
import uuid
from collections.abc import Sequence
from pathlib import Path

from ..identifiers import SEPARATOR, decode, encode, file_token_for
from ..models import TestExecutionResult, TestFramework, TestRunResult, TestStatus, TestSuite
from ..parsers import phpunit as phpunit_parser
from .base import TestFrameworkAdapter
from .process import CancellationSignal, run_process, split_command

logger = logging.getLogger(__name__)

FILTER_FLAG = "--filter"
JUNIT_FLAG = "--log-junit"
TESTDOX_FLAG = "--testdox"
REPORT_PREFIX = "testr-junit-"
FILTER_END = r"(?:\s|$)"

MAX_ERROR_LENGTH = 500

_TESTCASE = re.compile(r"<testcase\b([^>]*?)(?:/>|>(.*?)</testcase>)", re.DOTALL)
_TESTSUITE_TIME = re.compile(r"<testsuite\b[^>]*?\btime=\"([^\"]+)\"")
_ATTRIBUTE = re.compile(r"([\w:-]+)=\"([^\"]*)\"")
_PROBLEM = re.compile(r"<(failure|error)\b([^>]*?)(?:/>|>(.*?)</\1>)", re.DOTALL)
_DATA_SET = re.compile(r"\s+with data set .*$")
_DURATION_SUFFIX = re.compile(r"\s+\(?\d+(?:\.\d+)?\s*(?:ms|s|seconds?)\)?$")
_KEYWORD_PREFIX = re.compile(r"^\[?(PASS|FAIL)\w*\]?[\s:]+(\S.*)$")
_KEYWORD_SUFFIX = re.compile(r"^(.*?\S)[\s.:]+\[?(OK|PASS\w*|FAIL\w*)\]?$")

_PASS_GLYPHS = ("✔", "✓")
_FAIL_GLYPHS = ("✘", "✗", "⨯")
_SKIP_GLYPHS = ("↩", "∅", "-")
_BOX_CHARS = "│├┐┘┴ \t"
_PCRE_META = re.compile(r"[.\\+*?\[^\]$(){}=!<>|:\-#/]")


# =============================================================================
# Filters and names
# =============================================================================


def escape_pcre(text: str) -> str:
    """Escape PCRE metacharacters the way PHP's ``preg_quote`` does."""
    return _PCRE_META.sub(lambda m: "\\" + m.group(0), text)


def build_filter(test_ids: Sequence[str]) -> str:
    """Build the ``--filter`` alternation of ``Class::method`` tokens.

    Each token is escaped and must end at whitespace or the end of the name,
    so ``testAdd`` does not select ``testAddMore`` while ``testAdd with data
    set #0`` still runs. An empty return value means "no filter".
    """
    tokens = []
    for test_id in test_ids:
        segments = decode(test_id).path_segments
        if len(segments) >= 2:
            token = f"{escape_pcre(segments[-2])}{SEPARATOR}{escape_pcre(segments[-1])}"
        elif len(segments) == 1:
            token = escape_pcre(segments[0])
        else:
            continue
        tokens.append(token + FILTER_END)
    return "|".join(tokens)


def testdox_name(method: str) -> str:
    """Name PHPUnit's testdox output prints for a test method.

    ``testUserCanLogin`` and ``test_user_can_login`` both become
    ``User can login``.
    """
    name = re.sub(r"^test_?", "", method)
    name = re.sub(r"(?<=[a-z0-9])(?=[A-Z])", " ", name).replace("_", " ")
    words = name.split()
    if not words:
        return method
    sentence = " ".join(words).lower()
    return sentence[0].upper() + sentence[1:]


# =============================================================================
# JUnit report
# =============================================================================


def parse_junit_xml(xml: str, test_ids: Sequence[str]) -> TestRunResult | None:
    """Parse a PHPUnit JUnit report.

    Testcase element records are located by pattern and their attributes read
    directly. Each record is correlated with a requested identifier by method
    name plus file or class; unmatched records get an identifier built from
    the report itself.

    Returns:
        TestRunResult, or None if the report holds no testcase records.
    """
    results: list[TestExecutionResult] = []
    passed = failed = skipped = 0

    for match in _TESTCASE.finditer(xml):
        attrs = {k: html.unescape(v) for k, v in _ATTRIBUTE.findall(match.group(1))}
        body = match.group(2) or ""

        name = attrs.get("name")
        if not name:
            continue
        file = attrs.get("file", "")
        class_name = _short_class_name(attrs)
        duration = float(attrs.get("time", "0") or 0) * 1000

        error_message = error_stack = None
        problem = _PROBLEM.search(body)
        if problem:
            status = TestStatus.FAILED
            failed += 1
            problem_attrs = dict(_ATTRIBUTE.findall(problem.group(2)))
            text = html.unescape(problem.group(3) or "").strip()
            error_message = (
                html.unescape(problem_attrs["message"])
                if problem_attrs.get("message")
                else (text.splitlines()[0] if text else "Test failed")
            )
            error_stack = text or error_message
        elif "<skipped" in body or "<incomplete" in body:
            status = TestStatus.SKIPPED
            skipped += 1
        else:
            status = TestStatus.PASSED
            passed += 1

        results.append(
            TestExecutionResult(
                test_id=_correlate(test_ids, name, file, class_name),
                status=status,
                duration_ms=duration,
                error_message=error_message,
                error_stack=error_stack,
            )
        )

    if not results:
        return None

    suite_time = _TESTSUITE_TIME.search(xml)
    total_duration = (
        float(suite_time.group(1)) * 1000 if suite_time else sum(r.duration_ms for r in results)
    )
    return TestRunResult(
        passed=passed,
        failed=failed,
        skipped=skipped,
        duration_ms=total_duration,
        results=results,
    )


def _short_class_name(attrs: dict[str, str]) -> str:
    if attrs.get("class"):
        return attrs["class"].split("\\")[-1]
    if attrs.get("classname"):
        return attrs["classname"].split(".")[-1]
    return ""


def _correlate(test_ids: Sequence[str], name: str, file: str, class_name: str) -> str:
    method = _DATA_SET.sub("", name).casefold()
    token = file_token_for(file).casefold() if file else ""
    for test_id in test_ids:
        decoded = decode(test_id)
        if not decoded.path_segments or decoded.path_segments[-1].casefold() != method:
            continue
        same_file = bool(token) and decoded.file_token.casefold() == token
        same_class = bool(class_name) and class_name.casefold() in (
            s.casefold() for s in decoded.path_segments[:-1]
        )
        if same_file or same_class:
            return test_id

    names = [class_name, name] if class_name else [name]
    return encode(names, file_token_for(file) if file else "")


# =============================================================================
# Console fallback
# =============================================================================


def parse_console_output(
    stdout: str,
    stderr: str,
    test_ids: Sequence[str],
    exit_code: int | None = None,
) -> TestRunResult:
    """Parse PHPUnit's human-readable output.

    Counts come from labeled numbers in the summary; per-test status comes
    from pass/fail markers next to each requested test's name.
    """
    output = stdout + "\n" + stderr
    lines = output.splitlines()

    counts = _parse_counts(output)
    results = [_console_result(test_id, lines, output) for test_id in test_ids]
    recognized = [r for r in results if r is not None]

    if counts is None and not recognized:
        if exit_code not in (None, 0) and test_ids:
            message = _tail(output) or f"PHPUnit exited with code {exit_code}"
            logger.warning("Unrecognized PHPUnit output, marking %d tests failed", len(test_ids))
            failures = [
                TestExecutionResult(
                    test_id=test_id,
                    status=TestStatus.FAILED,
                    error_message=message,
                    error_stack=message,
                )
                for test_id in test_ids
            ]
            return TestRunResult(failed=len(failures), results=failures)
        return TestRunResult.empty()

    default_status = _default_status(output)
    final_results = [
        r
        if r is not None
        else TestExecutionResult(test_id=test_id, status=default_status)
        for test_id, r in zip(test_ids, results)
    ]

    if counts is None:
        counts = (
            sum(1 for r in final_results if r.status == TestStatus.PASSED),
            sum(1 for r in final_results if r.status == TestStatus.FAILED),
            sum(1 for r in final_results if r.status == TestStatus.SKIPPED),
        )

    passed, failed, skipped = counts
    return TestRunResult(
        passed=passed,
        failed=failed,
        skipped=skipped,
        duration_ms=_parse_duration(output),
        results=final_results,
    )


def _parse_counts(output: str) -> tuple[int, int, int] | None:
    labeled = {}
    for number, label in re.findall(r"(\d+)\s+(passed|failed|skipped|errors?)\b", output, re.I):
        key = label.lower().rstrip("s") if label.lower().startswith("error") else label.lower()
        labeled[key] = int(number)
    if labeled:
        return (
            labeled.get("passed", 0),
            labeled.get("failed", 0) + labeled.get("error", 0),
            labeled.get("skipped", 0),
        )

    ok = re.search(r"OK\s*\((\d+)\s+tests?", output, re.I)
    if ok:
        return int(ok.group(1)), 0, 0

    summary = re.search(r"Tests:\s*(\d+)(?P<rest>[^\n]*)", output)
    if summary:
        total = int(summary.group(1))
        details = {
            k.lower(): int(v)
            for k, v in re.findall(
                r"(Failures|Errors|Skipped|Incomplete):\s*(\d+)", summary.group("rest"), re.I
            )
        }
        failed = details.get("failures", 0) + details.get("errors", 0)
        skipped = details.get("skipped", 0) + details.get("incomplete", 0)
        return max(total - failed - skipped, 0), failed, skipped

    return None


def _parse_duration(output: str) -> float:
    match = re.search(r"(?:Time|Duration):\s*([\d.:]+)\s*(ms|seconds?|s)?", output, re.I)
    if not match:
        return 0.0
    value, unit = match.group(1), (match.group(2) or "").lower()
    try:
        if ":" in value:
            minutes, seconds = value.split(":", 1)
            return (int(minutes) * 60 + float(seconds)) * 1000
        if unit == "ms":
            return float(value)
        return float(value) * 1000
    except ValueError:
        return 0.0


def _console_result(test_id: str, lines: list[str], output: str) -> TestExecutionResult | None:
    segments = decode(test_id).path_segments
    if not segments:
        return None
    method = segments[-1]
    names = {method.casefold(), testdox_name(method).casefold()}

    for index, raw in enumerate(lines):
        outcome = _line_outcome(raw.strip())
        if outcome is None or outcome[1] not in names:
            continue

        status = outcome[0]
        if status == TestStatus.FAILED:
            message = _failure_block(lines, index) or _numbered_failure(output, method)
            return TestExecutionResult(
                test_id=test_id,
                status=TestStatus.FAILED,
                error_message=message,
                error_stack=message,
            )
        return TestExecutionResult(test_id=test_id, status=status)

    return None


def _line_outcome(line: str) -> tuple[TestStatus, str] | None:
    """Read a status and a folded test name from one console line.

    Understands testdox glyph lines (``✔ Add``) and keyword lines such as
    ``PASS Tests\\Unit\\CalculatorTest::testAdd`` or ``testAdd ... OK``.
    """
    if not line:
        return None

    glyph, _, rest = line.partition(" ")
    for glyphs, status in (
        (_FAIL_GLYPHS, TestStatus.FAILED),
        (_PASS_GLYPHS, TestStatus.PASSED),
        (_SKIP_GLYPHS, TestStatus.SKIPPED),
    ):
        if glyph in glyphs:
            return status, _test_label(rest)

    keyword = _KEYWORD_PREFIX.match(line)
    if keyword:
        return _keyword_status(keyword.group(1)), _test_label(keyword.group(2))
    keyword = _KEYWORD_SUFFIX.match(line)
    if keyword:
        return _keyword_status(keyword.group(2)), _test_label(keyword.group(1))
    return None


def _keyword_status(word: str) -> TestStatus:
    return TestStatus.FAILED if word.startswith("FAIL") else TestStatus.PASSED


def _test_label(text: str) -> str:
    """Bare test name: no duration, data set or class qualifier, folded."""
    label = _DURATION_SUFFIX.sub("", text.strip())
    label = _DATA_SET.sub("", label)
    for qualifier in (SEPARATOR, ">"):
        label = label.rpartition(qualifier)[2]
    return label.strip().casefold()


def _default_status(output: str) -> TestStatus:
    if "FAILURES!" in output or "ERRORS!" in output:
        return TestStatus.FAILED
    if "No tests executed" in output:
        return TestStatus.SKIPPED
    return TestStatus.PASSED


def _failure_block(lines: list[str], index: int) -> str | None:
    """Collect the lines nested under the failing test line at ``index``."""
    indent = _indent(lines[index])
    collected: list[str] = []
    for raw in lines[index + 1 :]:
        if not raw.strip() or _indent(raw) <= indent:
            break
        text = raw.strip(_BOX_CHARS)
        if text:
            collected.append(text)
    message = "\n".join(collected)
    return message[:MAX_ERROR_LENGTH] if message else None


def _indent(line: str) -> int:
    return len(line) - len(line.lstrip())


def _numbered_failure(output: str, method: str) -> str | None:
    match = re.search(
        rf"^\d+\)\s+\S*{re.escape(method)}\b[^\n]*\n(.*?)(?:\n\s*\n|\Z)",
        output,
        re.MULTILINE | re.DOTALL,
    )
    if not match:
        return None
    return match.group(1).strip()[:MAX_ERROR_LENGTH] or None


def _tail(output: str, count: int = 5) -> str:
    lines = [line for line in output.strip().splitlines() if line.strip()]
    return "\n".join(lines[-count:])[:MAX_ERROR_LENGTH]


# =============================================================================
# Adapter
# =============================================================================


class PhpunitAdapter(TestFrameworkAdapter):
    """Adapter for PHPUnit (and Laravel ``artisan test``) projects."""

    framework = TestFramework.PHPUNIT
    dependency_dir = "vendor"

    @property
    def test_patterns(self) -> list[str]:
        return self.config.phpunit.test_patterns

    def detect(self, project_root: Path) -> bool:
        """Detect PHPUnit via phpunit.xml(.dist), composer.json or Laravel's artisan."""
        root = Path(project_root)
        try:
            if any((root / name).exists() for name in self.config.phpunit.config_files):
                return True

            composer_json = root / "composer.json"
            if composer_json.exists():
                try:
                    composer = json.loads(composer_json.read_text(encoding="utf-8"))
                    requires = {**composer.get("require", {}), **composer.get("require-dev", {})}
                    if "phpunit/phpunit" in requires:
                        return True
                except (ValueError, TypeError, AttributeError) as e:
                    logger.debug("Unreadable composer.json in %s: %s", root, e)

            return (root / "artisan").exists()
        except OSError as e:
            logger.debug("PHPUnit detection failed for %s: %s", root, e)
            return False

    def parse_one(self, file: str, content: str) -> TestSuite | None:
        return phpunit_parser.parse_test_file(file, content)

    def find_executable(self, project_root: Path) -> list[str]:
        """Resolve PHPUnit: vendor binary, ``php artisan test``, then PATH."""
        root = Path(project_root)
        bin_paths = self.config.phpunit.bin_paths
        vendor = root / bin_paths["vendor"]
        if vendor.exists():
            return [str(vendor)]
        if (root / "artisan").exists():
            return split_command(bin_paths["artisan"])
        return split_command(bin_paths["fallback"])

    def build_command(
        self, project_root: Path, test_ids: Sequence[str], report_path: Path
    ) -> list[str]:
        argv = [*self.find_executable(project_root), TESTDOX_FLAG, JUNIT_FLAG, str(report_path)]
        test_filter = build_filter(test_ids)
        if test_filter:
            argv += [FILTER_FLAG, test_filter]
        return argv

    async def run(
        self,
        project_root: Path,
        test_ids: Sequence[str],
        cancel: CancellationSignal | None = None,
    ) -> TestRunResult:
        root = Path(project_root)
        report_path = root / f"{REPORT_PREFIX}{uuid.uuid4().hex}.xml"
        try:
            argv = self.build_command(root, test_ids, report_path)
            logger.info("Executing PHPUnit with %d test filter(s)", len(test_ids))
            outcome = await run_process(
                argv,
                cwd=root,
                cancel=cancel,
                timeout=self.config.execution.process_timeout,
            )
            if not outcome.completed:
                if outcome.exited is not None:
                    # A late exit may still write the report.
                    outcome.exited.add_done_callback(lambda _: _remove_report(report_path))
                return TestRunResult.empty()

            result = None
            if report_path.exists():
                try:
                    result = parse_junit_xml(report_path.read_text(encoding="utf-8"), test_ids)
                except (OSError, UnicodeDecodeError, ValueError) as e:
                    logger.warning("Could not parse JUnit report %s: %s", report_path, e)
            if result is None:
                logger.info("No usable JUnit report, falling back to console output")
                result = parse_console_output(
                    outcome.stdout, outcome.stderr, test_ids, outcome.exit_code
                )

            logger.info(
                "PHPUnit finished with code %s: %d passed, %d failed, %d skipped",
                outcome.exit_code,
                result.passed,
                result.failed,
                result.skipped,
            )
            return result
        except Exception:
            logger.exception("PHPUnit run failed in %s", root)
            return TestRunResult.empty()
        finally:
            _remove_report(report_path)


def _remove_report(path: Path) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError as e:
        logger.error("Failed to remove report %s: %s", path, e)
