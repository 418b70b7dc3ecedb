"""Host-facing test tree.

The tree is what a host renders and what run requests point at. Nodes carry
structure plus transient run state; which framework and project root a node
belongs to is kept outside the node, in the state's side-table.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from enum import Enum

from .identifiers import ids_equal
from .models import TestItem, TestLocation, TestStatus, is_test_suite


class NodeState(str, Enum):
    """Displayed run state of a node. ``None`` on a node means unset."""

    QUEUED = "queued"
    RUNNING = "running"
    PASSED = "passed"
    FAILED = "failed"
    SKIPPED = "skipped"

    @classmethod
    def from_status(cls, status: TestStatus) -> NodeState:
        return cls(status.value)


@dataclass(eq=False)
class TestNode:
    """One node of the tree. Leaves (no children) are the unit of execution."""

    id: str
    label: str
    location: TestLocation | None = None
    children: list[TestNode] = field(default_factory=list)
    state: NodeState | None = None
    duration_ms: float | None = None
    message: str | None = None

    @property
    def is_leaf(self) -> bool:
        return not self.children

    def reset(self) -> None:
        """Clear the transient run state."""
        self.state = None
        self.duration_ms = None
        self.message = None

    def walk(self) -> Iterator[TestNode]:
        """This node and all descendants, depth-first in child order."""
        yield self
        for node in self.children:
            yield from node.walk()

    def leaves(self) -> Iterator[TestNode]:
        for node in self.walk():
            if node.is_leaf:
                yield node


def node_from_item(item: TestItem) -> TestNode:
    """Build a node (recursively, for suites) from a discovered item."""
    node = TestNode(id=item.id, label=item.name, location=item.location)
    if is_test_suite(item):
        node.children = [node_from_item(child) for child in item.children]  # type: ignore[union-attr]
    return node


class TestTree:
    """Ordered collection of root nodes, one per discovered file."""

    def __init__(self, roots: Iterable[TestNode] | None = None) -> None:
        self.roots: list[TestNode] = list(roots or [])

    def __len__(self) -> int:
        return len(self.roots)

    def add(self, node: TestNode) -> None:
        self.roots.append(node)

    def walk(self) -> Iterator[TestNode]:
        for root in self.roots:
            yield from root.walk()

    def leaves(self) -> Iterator[TestNode]:
        for root in self.roots:
            yield from root.leaves()

    def find(self, node_id: str) -> TestNode | None:
        """Linear case-insensitive lookup by identifier.

        Used for diagnostics and CLI selection. Result reconciliation walks
        the tree level by level instead.
        """
        for node in self.walk():
            if ids_equal(node.id, node_id):
                return node
        return None

    def clear_states(self) -> None:
        for node in self.walk():
            node.reset()

    def count_leaves(self) -> int:
        return sum(1 for _ in self.leaves())
