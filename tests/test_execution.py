"""Tests for the execution orchestrator."""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Sequence
from pathlib import Path
from unittest.mock import AsyncMock, Mock, patch

import pytest
from conftest import STRINGS_TEST_JS, jest_json

from testr.adapters.base import TestFrameworkAdapter
from testr.adapters.jest import JestAdapter
from testr.adapters.process import CancellationSignal, ProcessOutcome
from testr.adapters.registry import AdapterRegistry
from testr.config import TestrConfig
from testr.discovery import DiscoveryOrchestrator
from testr.execution import (
    ExecutionOrchestrator,
    ExecutionPhase,
    RunRequest,
    collect_leaves,
    find_node,
    is_single_file_run,
)
from testr.identifiers import encode
from testr.models import TestExecutionResult, TestFramework, TestRunResult, TestStatus
from testr.parsers import jest as jest_parser
from testr.reporting import RunReporter
from testr.state import OrchestrationState
from testr.tree import NodeState, TestTree

pytestmark = pytest.mark.anyio


class ScriptedAdapter(TestFrameworkAdapter):
    """Jest-shaped adapter whose runs return scripted results."""

    framework = TestFramework.JEST
    dependency_dir = "node_modules"

    def __init__(
        self,
        respond: Callable[[Sequence[str]], TestRunResult] | None = None,
        error: Exception | None = None,
        block: bool = False,
    ) -> None:
        super().__init__()
        self.respond = respond
        self.error = error
        self.block = block
        self.calls: list[list[str]] = []

    @property
    def test_patterns(self) -> list[str]:
        return ["**/*.test.js"]

    def detect(self, project_root: Path) -> bool:
        return True

    def parse_one(self, file: str, content: str):
        return jest_parser.parse_test_file(file, content)

    async def run(
        self,
        project_root: Path,
        test_ids: Sequence[str],
        cancel: CancellationSignal | None = None,
    ) -> TestRunResult:
        self.calls.append(list(test_ids))
        if self.error is not None:
            raise self.error
        if self.block and cancel is not None:
            await cancel.wait()
            return TestRunResult.empty()
        return self.respond(test_ids) if self.respond else TestRunResult.empty()


def results(*entries: tuple[str, TestStatus]) -> TestRunResult:
    items = [
        TestExecutionResult(
            test_id=test_id,
            status=status,
            duration_ms=5,
            error_message="expected 3 received 4" if status == TestStatus.FAILED else None,
        )
        for test_id, status in entries
    ]
    return TestRunResult(
        passed=sum(1 for r in items if r.status == TestStatus.PASSED),
        failed=sum(1 for r in items if r.status == TestStatus.FAILED),
        skipped=sum(1 for r in items if r.status == TestStatus.SKIPPED),
        duration_ms=5 * len(items),
        results=items,
    )


async def make_session(
    root: Path,
    adapter: TestFrameworkAdapter,
    reporter: RunReporter | None = None,
    clear_delay_ms: int = 5000,
) -> tuple[OrchestrationState, ExecutionOrchestrator, TestTree]:
    state = OrchestrationState([root])
    state.activate()
    registry = AdapterRegistry()
    registry.register(adapter)
    tree = await DiscoveryOrchestrator(state, registry).discover_all()

    config = TestrConfig()
    config.execution.passed_clear_delay_ms = clear_delay_ms
    return state, ExecutionOrchestrator(state, registry, reporter, config), tree


def math_nodes(tree: TestTree):
    math_file = next(r for r in tree.roots if r.label == "math.test.js")
    suite = math_file.children[0]
    adds, subtracts = suite.children
    return math_file, suite, adds, subtracts


class TestFindNode:
    """Tests for reconciling result identifiers with tree nodes."""

    async def test_exact_and_case_insensitive(self, jest_project: Path) -> None:
        _, _, tree = await make_session(jest_project, ScriptedAdapter())
        math_file, suite, adds, _ = math_nodes(tree)

        assert find_node(tree, adds.id) is adds
        assert find_node(tree, adds.id.upper()) is adds
        assert find_node(tree, suite.id) is suite
        assert find_node(tree, math_file.id) is math_file

    async def test_partial_match_is_not_a_match(self, jest_project: Path) -> None:
        _, _, tree = await make_session(jest_project, ScriptedAdapter())
        math_file, _, _, _ = math_nodes(tree)

        assert find_node(tree, encode(["Math", "multiplies"], math_file.id)) is None
        assert find_node(tree, encode(["adds"], math_file.id)) is None
        assert find_node(tree, "elsewhere::Math::adds") is None


class TestCollectLeaves:
    """Tests for request flattening."""

    async def test_whole_tree(self, jest_project: Path) -> None:
        _, _, tree = await make_session(jest_project, ScriptedAdapter())
        _, _, adds, subtracts = math_nodes(tree)

        assert collect_leaves(tree, RunRequest()) == [adds, subtracts]

    async def test_duplicates_and_exclusion(self, jest_project: Path) -> None:
        _, _, tree = await make_session(jest_project, ScriptedAdapter())
        _, suite, adds, subtracts = math_nodes(tree)

        request = RunRequest(include=[suite, adds, subtracts])
        assert collect_leaves(tree, request) == [adds, subtracts]

        request = RunRequest(include=[suite], exclude=[adds])
        assert collect_leaves(tree, request) == [subtracts]

    async def test_single_file_detection(self, jest_project: Path) -> None:
        (jest_project / "src" / "strings.test.js").write_text(STRINGS_TEST_JS)
        _, _, tree = await make_session(jest_project, ScriptedAdapter())
        math_file, _, adds, _ = math_nodes(tree)
        strings_file = next(r for r in tree.roots if r.label == "strings.test.js")

        assert is_single_file_run(RunRequest(), list(tree.leaves())) is False
        single = RunRequest(include=[math_file])
        assert is_single_file_run(single, collect_leaves(tree, single)) is True
        both = RunRequest(include=[adds, strings_file])
        assert is_single_file_run(both, collect_leaves(tree, both)) is False


class TestRun:
    """Tests for ExecutionOrchestrator.run."""

    async def test_applies_results(self, jest_project: Path) -> None:
        adapter = ScriptedAdapter()
        state, execution, tree = await make_session(jest_project, adapter)
        _, _, adds, subtracts = math_nodes(tree)
        adapter.respond = lambda ids: results(
            (adds.id, TestStatus.PASSED), (subtracts.id, TestStatus.FAILED)
        )

        summary = await execution.run()

        assert adapter.calls == [[adds.id, subtracts.id]]
        assert (summary.passed, summary.failed, summary.skipped) == (1, 1, 0)
        assert adds.state == NodeState.PASSED
        assert adds.duration_ms == 5
        assert subtracts.state == NodeState.FAILED
        assert subtracts.message == "expected 3 received 4"
        assert execution.phase == ExecutionPhase.IDLE
        assert state.active_run is None

    async def test_results_match_ignoring_case(self, jest_project: Path) -> None:
        adapter = ScriptedAdapter()
        _, execution, tree = await make_session(jest_project, adapter)
        _, _, adds, _ = math_nodes(tree)
        adapter.respond = lambda ids: results((adds.id.upper(), TestStatus.PASSED))

        await execution.run()

        assert adds.state == NodeState.PASSED

    async def test_unreported_leaves_are_reset(self, jest_project: Path) -> None:
        adapter = ScriptedAdapter()
        _, execution, tree = await make_session(jest_project, adapter)
        _, _, adds, subtracts = math_nodes(tree)
        adapter.respond = lambda ids: results((adds.id, TestStatus.PASSED))

        await execution.run()

        assert adds.state == NodeState.PASSED
        assert subtracts.state is None

    async def test_unmatched_results(self, jest_project: Path) -> None:
        adapter = ScriptedAdapter()
        _, execution, tree = await make_session(jest_project, adapter)
        math_file, _, _, _ = math_nodes(tree)
        ghost = encode(["Math", "ghost"], math_file.id)
        adapter.respond = lambda ids: results((ghost, TestStatus.PASSED))

        summary = await execution.run()

        assert summary.unmatched == [ghost]

    async def test_results_outside_the_run_are_dropped(self, jest_project: Path) -> None:
        reporter = Mock(spec=RunReporter)
        adapter = ScriptedAdapter()
        _, execution, tree = await make_session(jest_project, adapter, reporter)
        _, _, adds, subtracts = math_nodes(tree)
        adapter.respond = lambda ids: results(
            (adds.id, TestStatus.PASSED), (subtracts.id, TestStatus.FAILED)
        )

        summary = await execution.run(RunRequest(include=[adds]))

        assert adds.state == NodeState.PASSED
        assert subtracts.state is None
        assert subtracts.message is None
        assert summary.unmatched == [subtracts.id]
        reporter.file_stats.assert_called_once()
        assert reporter.file_stats.call_args.args[1:] == (1, 1, 0, 0)

    async def test_jest_pending_sibling_is_left_untouched(self, jest_project: Path) -> None:
        """Jest reports tests filtered out by the name pattern as pending."""
        _, execution, tree = await make_session(jest_project, JestAdapter())
        _, _, adds, subtracts = math_nodes(tree)
        report = jest_json(
            jest_project / "src" / "math.test.js",
            (["Math"], "adds", "passed", 3),
            (["Math"], "subtracts", "pending", 0),
        )
        outcome = ProcessOutcome(stdout=report, exit_code=0)

        with patch("testr.adapters.jest.run_process", new=AsyncMock(return_value=outcome)):
            await execution.run(RunRequest(include=[adds]))

        assert adds.state == NodeState.PASSED
        assert subtracts.state is None

    async def test_exclude(self, jest_project: Path) -> None:
        adapter = ScriptedAdapter()
        _, execution, tree = await make_session(jest_project, adapter)
        _, _, adds, subtracts = math_nodes(tree)

        await execution.run(RunRequest(exclude=[adds]))

        assert adapter.calls == [[subtracts.id]]

    async def test_adapter_error_fails_leaves(self, jest_project: Path) -> None:
        reporter = Mock(spec=RunReporter)
        adapter = ScriptedAdapter(error=RuntimeError("jest crashed"))
        _, execution, tree = await make_session(jest_project, adapter, reporter)
        _, _, adds, subtracts = math_nodes(tree)

        summary = await execution.run()

        assert summary.failed == 2
        assert adds.state == NodeState.FAILED
        assert subtracts.message == "jest crashed"
        reporter.error.assert_called_once_with("jest crashed")

    async def test_cancel(self, jest_project: Path) -> None:
        adapter = ScriptedAdapter(block=True)
        state, execution, tree = await make_session(jest_project, adapter)
        _, _, adds, subtracts = math_nodes(tree)

        task = asyncio.ensure_future(execution.run())
        await asyncio.sleep(0.01)
        assert adds.state == NodeState.RUNNING
        assert execution.cancel() is True
        summary = await asyncio.wait_for(task, timeout=2)

        assert summary.cancelled
        assert adds.state is None
        assert subtracts.state is None
        assert execution.cancel() is False


class TestReporting:
    """Tests for per-file and overall reporting."""

    async def test_whole_run_reports_overall(self, jest_project: Path) -> None:
        (jest_project / "src" / "strings.test.js").write_text(STRINGS_TEST_JS)
        reporter = Mock(spec=RunReporter)
        adapter = ScriptedAdapter()
        _, execution, tree = await make_session(jest_project, adapter, reporter)
        adapter.respond = lambda ids: results(*((i, TestStatus.PASSED) for i in ids))

        summary = await execution.run()

        assert summary.single_file is False
        assert summary.passed == 3
        assert reporter.file_stats.call_count == 2
        reporter.overall_stats.assert_called_once()
        reporter.run_summary.assert_called_once_with(3, 0, 0)

    async def test_single_file_run(self, jest_project: Path) -> None:
        """Only the target file is reported and no overall block is printed."""
        (jest_project / "src" / "strings.test.js").write_text(STRINGS_TEST_JS)
        reporter = Mock(spec=RunReporter)
        adapter = ScriptedAdapter()
        _, execution, tree = await make_session(jest_project, adapter, reporter)
        math_file, _, adds, subtracts = math_nodes(tree)
        strings_file = next(r for r in tree.roots if r.label == "strings.test.js")
        upper = strings_file.children[0].children[0]
        # Name filters can match tests in other files too.
        adapter.respond = lambda ids: results(
            (adds.id, TestStatus.PASSED),
            (subtracts.id, TestStatus.PASSED),
            (upper.id, TestStatus.FAILED),
        )

        summary = await execution.run(RunRequest(include=[math_file]))

        assert summary.single_file is True
        assert upper.state is None
        reporter.test_file.assert_called_once()
        reporter.file_stats.assert_called_once()
        assert reporter.file_stats.call_args.args[1:] == (2, 2, 0, 0)
        reporter.overall_stats.assert_not_called()


class TestPassedClearing:
    """Tests for the delayed reset of passed results."""

    async def test_passed_results_clear(self, jest_project: Path) -> None:
        adapter = ScriptedAdapter()
        state, execution, tree = await make_session(jest_project, adapter, clear_delay_ms=50)
        _, _, adds, subtracts = math_nodes(tree)
        adapter.respond = lambda ids: results(
            (adds.id, TestStatus.PASSED), (subtracts.id, TestStatus.FAILED)
        )

        await execution.run()
        assert adds.state == NodeState.PASSED
        await asyncio.sleep(0.3)

        assert adds.state is None
        assert adds.duration_ms is None
        assert subtracts.state == NodeState.FAILED
        assert state.clear_handle is None

    async def test_new_run_cancels_pending_clear(self, jest_project: Path) -> None:
        adapter = ScriptedAdapter()
        state, execution, tree = await make_session(jest_project, adapter, clear_delay_ms=1000)
        _, _, adds, _ = math_nodes(tree)
        adapter.respond = lambda ids: results((adds.id, TestStatus.PASSED))

        await execution.run()
        pending = state.clear_handle
        assert pending is not None

        adapter.respond = lambda ids: results((adds.id, TestStatus.FAILED))
        await execution.run()

        assert pending.cancelled()
        assert state.clear_handle is None
        state.dispose()
