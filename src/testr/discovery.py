"""Discovery orchestrator.

A discovery pass walks every project root in order, asks the registry which
adapter owns it, lets that adapter discover its test files, and builds a
fresh tree plus side-table from the result. The new tree replaces the old
one as a whole; nothing is merged.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from pathlib import Path

from .adapters.base import TestFrameworkAdapter
from .adapters.registry import AdapterRegistry
from .models import TestFramework, TestItem, count_tests, is_test_suite
from .reporting import RunReporter
from .state import NodeInfo, NodeKind, OrchestrationState
from .tree import TestNode, TestTree, node_from_item

logger = logging.getLogger(__name__)


class DiscoveryPhase(str, Enum):
    IDLE = "idle"
    SCANNING = "scanning"
    PARSING = "parsing"
    BUILDING_TREE = "building_tree"


class DiscoveryOrchestrator:
    """Builds the test tree for the state's project roots.

    Args:
        state: Owned orchestration state; receives the new tree.
        registry: Adapters to detect and discover with.
        reporter: Output channel for discovery progress (optional).
    """

    def __init__(
        self,
        state: OrchestrationState,
        registry: AdapterRegistry,
        reporter: RunReporter | None = None,
    ) -> None:
        self.state = state
        self.registry = registry
        self.reporter = reporter
        self.phase = DiscoveryPhase.IDLE

    def _enter(self, phase: DiscoveryPhase, root: Path | None = None) -> None:
        logger.debug("Discovery %s -> %s%s", self.phase.value, phase.value, f" ({root})" if root else "")
        self.phase = phase

    async def discover_all(self) -> TestTree:
        """Rescan every project root and replace the tree.

        Roots are processed sequentially. A root without a matching adapter
        contributes nothing.

        Returns:
            The new tree (also installed on the state).
        """
        self.state.ensure_usable("discover tests")
        tree = TestTree()
        node_info: dict[str, NodeInfo] = {}

        try:
            for root in self.state.project_roots:
                await self._discover_root(Path(root), tree, node_info)
        finally:
            self._enter(DiscoveryPhase.IDLE)

        self.state.replace_tree(tree, node_info)
        logger.info("Discovered %d tests in %d files", tree.count_leaves(), len(tree))
        return tree

    async def _discover_root(
        self, root: Path, tree: TestTree, node_info: dict[str, NodeInfo]
    ) -> None:
        self._enter(DiscoveryPhase.SCANNING, root)
        adapter = self.registry.detect(root)
        if adapter is None:
            logger.info("No test framework detected in %s", root)
            return

        if self.reporter:
            self.reporter.discovery_start(root.name or str(root))

        self._enter(DiscoveryPhase.PARSING, root)
        # File walking and reading stay off the event loop.
        result = await asyncio.to_thread(adapter.discover, root)

        self._enter(DiscoveryPhase.BUILDING_TREE, root)
        for suite in result.suites:
            tree.add(node_from_item(suite))
            _record(suite, adapter.framework, root, node_info, top_level=True)
            if self.reporter:
                self.reporter.discovered_file(suite.location.file, count_tests(suite))

        if self.reporter:
            self.reporter.discovery_complete(len(result.suites), result.test_count)

    async def discover_children_of(self, node: TestNode) -> TestFrameworkAdapter | None:
        """Resolve the adapter owning ``node``.

        Children are populated during ``discover_all``; nothing is re-parsed.
        """
        self.state.ensure_usable("expand a node")
        info = self.state.info_for(node.id)
        if info is None:
            logger.debug("No discovery metadata for %s", node.id)
            return None
        return self.registry.get_by_framework(info.framework)


def _record(
    item: TestItem,
    framework: TestFramework,
    root: Path,
    node_info: dict[str, NodeInfo],
    top_level: bool = False,
) -> None:
    if is_test_suite(item):
        kind = NodeKind.FILE if top_level else NodeKind.SUITE
        for child in item.children:  # type: ignore[union-attr]
            _record(child, framework, root, node_info)
    else:
        kind = NodeKind.CASE
    node_info[item.id] = NodeInfo(kind=kind, framework=framework, project_root=root)
