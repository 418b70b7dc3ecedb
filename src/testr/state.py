"""Orchestration state shared by discovery and execution.

One OrchestrationState owns everything that outlives a single call: the
current tree, the node side-table, the pending passed-result clear, the
active run's cancellation signal and the file watcher. It is created by
the host, passed explicitly to both orchestrators, and disposed on
teardown.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING

from .adapters.process import CancellationSignal
from .models import TestFramework
from .tree import TestTree
from .utils.errors import StateDisposedError

if TYPE_CHECKING:
    from .watcher import TestFileWatcher

logger = logging.getLogger(__name__)


class Lifecycle(str, Enum):
    """Lifecycle phases of the orchestration state."""

    INIT = "init"
    ACTIVE = "active"
    DISPOSED = "disposed"


class NodeKind(str, Enum):
    FILE = "file"
    SUITE = "suite"
    CASE = "case"


@dataclass(frozen=True)
class NodeInfo:
    """Side-table entry for one node: what it is and who owns it."""

    kind: NodeKind
    framework: TestFramework
    project_root: Path


class OrchestrationState:
    """Owned state for one host session.

    Lifecycle is ``init -> active -> disposed``. Disposing cancels the
    pending clear and the active run and stops the watcher; any later use
    raises StateDisposedError.
    """

    def __init__(self, project_roots: list[Path] | None = None) -> None:
        self.project_roots: list[Path] = [Path(p) for p in project_roots or []]
        self.lifecycle = Lifecycle.INIT
        self.tree = TestTree()
        self.node_info: dict[str, NodeInfo] = {}
        self.clear_handle: asyncio.TimerHandle | None = None
        self.active_run: CancellationSignal | None = None
        self.watcher: TestFileWatcher | None = None

    @property
    def is_disposed(self) -> bool:
        return self.lifecycle == Lifecycle.DISPOSED

    def activate(self) -> None:
        self.ensure_usable("activate")
        self.lifecycle = Lifecycle.ACTIVE

    def ensure_usable(self, operation: str) -> None:
        if self.is_disposed:
            raise StateDisposedError(operation)

    def dispose(self) -> None:
        """Release timers, the active run and the watcher. Idempotent."""
        if self.is_disposed:
            return
        self.cancel_pending_clear()
        self.cancel_active_run()
        if self.watcher is not None:
            self.watcher.stop()
            self.watcher = None
        self.lifecycle = Lifecycle.DISPOSED
        logger.debug("Orchestration state disposed")

    # -------------------------------------------------------------------------
    # Tree and side-table
    # -------------------------------------------------------------------------

    def replace_tree(self, tree: TestTree, node_info: dict[str, NodeInfo]) -> None:
        """Swap in a newly built tree and its side-table together."""
        self.ensure_usable("replace the test tree")
        self.tree = tree
        self.node_info = node_info

    def info_for(self, node_id: str) -> NodeInfo | None:
        return self.node_info.get(node_id)

    # -------------------------------------------------------------------------
    # Runs and timers
    # -------------------------------------------------------------------------

    def begin_run(self) -> CancellationSignal:
        """Register a new run and return its cancellation signal.

        The pending clear of the previous run is cancelled first.
        """
        self.ensure_usable("start a run")
        self.cancel_pending_clear()
        signal = CancellationSignal()
        self.active_run = signal
        return signal

    def end_run(self, signal: CancellationSignal) -> None:
        if self.active_run is signal:
            self.active_run = None

    def cancel_active_run(self) -> bool:
        """Fire the active run's signal. Returns False if nothing was running."""
        if self.active_run is None:
            return False
        self.active_run.cancel()
        return True

    def set_pending_clear(self, handle: asyncio.TimerHandle) -> None:
        self.cancel_pending_clear()
        self.clear_handle = handle

    def cancel_pending_clear(self) -> None:
        if self.clear_handle is not None:
            self.clear_handle.cancel()
            self.clear_handle = None

    def attach_watcher(self, watcher: TestFileWatcher) -> None:
        self.ensure_usable("start the file watcher")
        if self.watcher is not None and self.watcher is not watcher:
            self.watcher.stop()
        self.watcher = watcher
