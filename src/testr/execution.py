"""Execution orchestrator.

A run goes ``Idle -> Collecting -> Dispatching -> Reconciling -> Idle``:

- Collecting flattens the request to leaves, drops excluded ones and marks
  the rest queued.
- Dispatching groups leaves by project root and hands each group to the
  root's adapter together with the run's cancellation signal.
- Reconciling maps every reported result back to a node by walking the tree
  level by level with case-insensitive identifier prefixes. Results for
  nodes the run did not request are dropped.

Passed nodes are reset after ``execution.passed_clear_delay_ms`` unless a
new run starts first. The run works on the tree that was current when it
started; a rediscovery during the run installs a new tree without touching
the nodes the run is updating.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from .adapters.process import CancellationSignal
from .adapters.registry import AdapterRegistry
from .config import TestrConfig
from .identifiers import (
    decode,
    display_name,
    file_path_of,
    id_matches_prefix,
    ids_equal,
    prefixes,
    same_file,
)
from .models import TestExecutionResult, TestFramework, TestRunResult, TestStatus
from .reporting import RunReporter
from .state import NodeInfo, OrchestrationState
from .tree import NodeState, TestNode, TestTree

logger = logging.getLogger(__name__)


class ExecutionPhase(str, Enum):
    IDLE = "idle"
    COLLECTING = "collecting"
    DISPATCHING = "dispatching"
    RECONCILING = "reconciling"


@dataclass
class RunRequest:
    """What to run.

    Attributes:
        include: Nodes to run (suites expand to their leaves). None runs
            the whole tree.
        exclude: Nodes whose leaves are left out.
    """

    include: list[TestNode] | None = None
    exclude: list[TestNode] = field(default_factory=list)


@dataclass
class RootRun:
    """Outcome of dispatching one project root."""

    project_root: Path
    framework: TestFramework | None
    test_ids: list[str]
    result: TestRunResult


@dataclass
class RunSummary:
    """What a run did, for the host."""

    passed: int = 0
    failed: int = 0
    skipped: int = 0
    duration_ms: float = 0.0
    roots: list[RootRun] = field(default_factory=list)
    unmatched: list[str] = field(default_factory=list)
    single_file: bool = False
    cancelled: bool = False

    @property
    def total(self) -> int:
        return self.passed + self.failed + self.skipped


def collect_leaves(tree: TestTree, request: RunRequest) -> list[TestNode]:
    """Flatten a request to leaves in tree order, without excluded leaves or duplicates."""
    sources: Iterable[TestNode] = tree.roots if request.include is None else request.include
    excluded = [node.id for node in request.exclude]

    leaves: list[TestNode] = []
    seen: set[str] = set()
    for node in sources:
        for leaf in node.leaves():
            if leaf.id in seen or any(id_matches_prefix(leaf.id, e) for e in excluded):
                continue
            seen.add(leaf.id)
            leaves.append(leaf)
    return leaves


def is_single_file_run(request: RunRequest, leaves: Sequence[TestNode]) -> bool:
    """True for an explicit selection whose leaves all live in one file."""
    if not request.include or not leaves:
        return False
    first = leaves[0].id
    return all(same_file(first, leaf.id) for leaf in leaves[1:])


def find_node(tree: TestTree, test_id: str) -> TestNode | None:
    """Resolve a reported identifier to a node.

    Walks from the roots, descending into the node matching each successive
    prefix of ``test_id``. All comparisons ignore case. Only a node whose
    identifier equals ``test_id`` is returned.
    """
    nodes = tree.roots
    for prefix in prefixes(test_id):
        match = None
        for node in nodes:
            if ids_equal(node.id, test_id):
                return node
            if ids_equal(node.id, prefix):
                match = node
        if match is not None:
            nodes = match.children
    return None


class ExecutionOrchestrator:
    """Runs selections of the tree through their adapters.

    Args:
        state: Owned orchestration state; provides the tree and side-table.
        registry: Adapters to resolve per project root.
        reporter: Output channel for results (optional).
        config: Settings; ``execution.passed_clear_delay_ms`` is used here.
    """

    def __init__(
        self,
        state: OrchestrationState,
        registry: AdapterRegistry,
        reporter: RunReporter | None = None,
        config: TestrConfig | None = None,
    ) -> None:
        self.state = state
        self.registry = registry
        self.reporter = reporter
        self.config = config or TestrConfig()
        self.phase = ExecutionPhase.IDLE

    def _enter(self, phase: ExecutionPhase) -> None:
        logger.debug("Execution %s -> %s", self.phase.value, phase.value)
        self.phase = phase

    def cancel(self) -> bool:
        """Cancel the run in flight, if any."""
        return self.state.cancel_active_run()

    async def run(self, request: RunRequest | None = None) -> RunSummary:
        """Execute a run request against the current tree."""
        request = request or RunRequest()
        cancel = self.state.begin_run()
        tree = self.state.tree
        node_info = self.state.node_info
        summary = RunSummary()
        passed_nodes: list[TestNode] = []

        try:
            self._enter(ExecutionPhase.COLLECTING)
            leaves = collect_leaves(tree, request)
            summary.single_file = is_single_file_run(request, leaves)
            logger.info(
                "Running %d tests (single file: %s)", len(leaves), summary.single_file
            )
            if self.reporter:
                self.reporter.execution_start(len(leaves))
            for leaf in leaves:
                leaf.reset()
                leaf.state = NodeState.QUEUED

            requested = {leaf.id for leaf in leaves}
            target = leaves[0].id if summary.single_file else None
            for root, root_leaves in _group_by_root(leaves, node_info).items():
                if cancel.is_cancelled:
                    break
                self._enter(ExecutionPhase.DISPATCHING)
                for leaf in root_leaves:
                    leaf.state = NodeState.RUNNING
                root_run = await self._dispatch(root, root_leaves, cancel)
                summary.roots.append(root_run)

                self._enter(ExecutionPhase.RECONCILING)
                self._reconcile(
                    tree, root_run.result, requested, target, summary, passed_nodes
                )

            summary.cancelled = cancel.is_cancelled
            for leaf in leaves:
                if leaf.state in (NodeState.QUEUED, NodeState.RUNNING):
                    leaf.state = None

            if self.reporter and summary.roots and not summary.cancelled:
                self.reporter.run_summary(summary.passed, summary.failed, summary.skipped)
        finally:
            self.state.end_run(cancel)
            self._enter(ExecutionPhase.IDLE)

        if passed_nodes and not self.state.is_disposed:
            self._schedule_clear(passed_nodes)
        return summary

    async def _dispatch(
        self, root: Path, leaves: list[TestNode], cancel: CancellationSignal
    ) -> RootRun:
        test_ids = [leaf.id for leaf in leaves]
        adapter = self.registry.detect(root)
        if adapter is None:
            logger.warning("No adapter for %s; %d tests not run", root, len(test_ids))
            return RootRun(root, None, test_ids, TestRunResult.empty())

        try:
            result = await adapter.run(root, test_ids, cancel)
        except Exception as e:
            logger.exception("%s run failed in %s", adapter.framework.value, root)
            if self.reporter:
                self.reporter.error(str(e))
            result = TestRunResult(
                failed=len(leaves),
                results=[
                    TestExecutionResult(
                        test_id=leaf.id,
                        status=TestStatus.FAILED,
                        error_message=str(e) or type(e).__name__,
                    )
                    for leaf in leaves
                ],
            )
        return RootRun(root, adapter.framework, test_ids, result)

    def _reconcile(
        self,
        tree: TestTree,
        result: TestRunResult,
        requested: set[str],
        target: str | None,
        summary: RunSummary,
        passed_nodes: list[TestNode],
    ) -> None:
        summary.passed += result.passed
        summary.failed += result.failed
        summary.skipped += result.skipped
        summary.duration_ms += result.duration_ms

        for file_token, file_results in _group_by_file(result.results).items():
            if target is not None and not same_file(target, file_token):
                logger.debug("Skipping results outside the target file: %s", file_token)
                continue

            file_path = file_path_of(file_token)
            if self.reporter:
                self.reporter.test_file(file_path)

            counts = {TestStatus.PASSED: 0, TestStatus.FAILED: 0, TestStatus.SKIPPED: 0}
            for test_result in file_results:
                node = find_node(tree, test_result.test_id)
                if node is None:
                    logger.info("No tree node for result %s", test_result.test_id)
                    summary.unmatched.append(test_result.test_id)
                    continue
                if node.id not in requested:
                    logger.info("Dropping result outside the run: %s", test_result.test_id)
                    summary.unmatched.append(test_result.test_id)
                    continue

                _apply(node, test_result)
                counts[test_result.status] += 1
                if test_result.status == TestStatus.PASSED:
                    passed_nodes.append(node)
                self._report_result(test_result)

            if self.reporter:
                self.reporter.file_stats(
                    file_path,
                    sum(counts.values()),
                    counts[TestStatus.PASSED],
                    counts[TestStatus.FAILED],
                    counts[TestStatus.SKIPPED],
                )

        if target is None and self.reporter:
            self.reporter.overall_stats(
                result.total, result.passed, result.failed, result.skipped, result.duration_ms
            )

    def _report_result(self, test_result: TestExecutionResult) -> None:
        if not self.reporter:
            return
        name = display_name(test_result.test_id)
        if test_result.status == TestStatus.SKIPPED:
            self.reporter.test_result(name, test_result.status)
            return
        self.reporter.test_result(name, test_result.status, test_result.duration_ms)
        if test_result.status == TestStatus.FAILED and test_result.error_message:
            self.reporter.test_error(name, test_result.error_message)

    def _schedule_clear(self, nodes: list[TestNode]) -> None:
        delay = self.config.execution.passed_clear_delay_ms / 1000
        loop = asyncio.get_running_loop()
        handle = loop.call_later(delay, self._clear_passed, nodes)
        self.state.set_pending_clear(handle)
        logger.debug("Clearing %d passed results in %.1fs", len(nodes), delay)

    def _clear_passed(self, nodes: list[TestNode]) -> None:
        self.state.clear_handle = None
        for node in nodes:
            if node.state == NodeState.PASSED:
                node.reset()


def _apply(node: TestNode, test_result: TestExecutionResult) -> None:
    node.state = NodeState.from_status(test_result.status)
    node.duration_ms = test_result.duration_ms
    if test_result.status == TestStatus.FAILED:
        node.message = test_result.error_message or "Test failed"
    else:
        node.message = None


def _group_by_root(
    leaves: list[TestNode], node_info: dict[str, NodeInfo]
) -> dict[Path, list[TestNode]]:
    groups: dict[Path, list[TestNode]] = {}
    for leaf in leaves:
        info = node_info.get(leaf.id)
        if info is None:
            logger.warning("No project root known for %s", leaf.id)
            continue
        groups.setdefault(info.project_root, []).append(leaf)
    return groups


def _group_by_file(results: list[TestExecutionResult]) -> dict[str, list[TestExecutionResult]]:
    groups: dict[str, list[TestExecutionResult]] = {}
    keys: dict[str, str] = {}
    for test_result in results:
        token = decode(test_result.test_id).file_token
        key = keys.setdefault(token.casefold(), token)
        groups.setdefault(key, []).append(test_result)
    return groups
