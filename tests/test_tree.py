"""Tests for the host-facing test tree and result models."""

from __future__ import annotations

from testr.models import TestCase, TestLocation, TestRunResult, TestStatus, TestSuite
from testr.tree import NodeState, TestNode, TestTree, node_from_item

LOCATION = TestLocation(file="/r/a.test.js", line=1, column=1)


def sample_suite() -> TestSuite:
    return TestSuite(
        id="f",
        name="a.test.js",
        location=LOCATION,
        children=[
            TestSuite(
                id="f::S",
                name="S",
                location=LOCATION,
                parent_id="f",
                children=[
                    TestCase(id="f::S::one", name="one", full_name="one", location=LOCATION),
                    TestCase(id="f::S::two", name="two", full_name="two", location=LOCATION),
                ],
            ),
            TestCase(id="f::top", name="top", full_name="top", location=LOCATION),
        ],
    )


class TestTestTree:
    """Tests for TestNode and TestTree."""

    def test_node_from_item(self) -> None:
        node = node_from_item(sample_suite())
        assert [n.id for n in node.walk()] == ["f", "f::S", "f::S::one", "f::S::two", "f::top"]
        assert [n.label for n in node.leaves()] == ["one", "two", "top"]

    def test_find_ignores_case(self) -> None:
        tree = TestTree([node_from_item(sample_suite())])
        assert tree.find("F::S::ONE").label == "one"
        assert tree.find("f::S::three") is None
        assert tree.count_leaves() == 3

    def test_clear_states(self) -> None:
        tree = TestTree([node_from_item(sample_suite())])
        for leaf in tree.leaves():
            leaf.state = NodeState.FAILED
            leaf.message = "nope"
        tree.clear_states()
        assert all(n.state is None and n.message is None for n in tree.walk())

    def test_node_state_from_status(self) -> None:
        assert NodeState.from_status(TestStatus.SKIPPED) == NodeState.SKIPPED

    def test_leaf_without_children(self) -> None:
        node = TestNode(id="x", label="x")
        assert node.is_leaf
        assert list(node.leaves()) == [node]


class TestRunResultSummary:
    """Tests for TestRunResult helpers."""

    def test_empty(self) -> None:
        result = TestRunResult.empty()
        assert result.is_empty
        assert result.summary() == "Tests: no tests run"

    def test_summary(self) -> None:
        result = TestRunResult(passed=2, failed=1, duration_ms=12)
        assert result.total == 3
        assert result.summary() == "Tests: 2 passed, 1 failed (12ms)"
