"""Parse Jest-style test files into a suite tree.

Recognizes ``describe``/``test``/``it`` blocks (including ``.only`` and
``.skip``) line by line. A ``describe`` stays open until the brace depth
drops back to where it was on the line the ``describe`` started.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field

from ..identifiers import child_id, file_token_for
from ..models import TestCase, TestLocation, TestSuite

DESCRIBE_PATTERN = re.compile(
    r"(?<![\w$])(?:describe|describe\.only|describe\.skip)\s*\(\s*(['\"`])(.+?)\1"
)
TEST_PATTERN = re.compile(
    r"(?<![\w$])(?:test|it|test\.only|test\.skip|it\.only|it\.skip)\s*\(\s*(['\"`])(.+?)\1"
)
STRING_LITERAL = re.compile(r"('|\"|`)(?:\\.|(?!\1).)*\1")


@dataclass
class _Block:
    kind: str  # "describe" or "test"
    name: str
    line: int
    column: int
    children: list[_Block] = field(default_factory=list)
    depth: int = 0


def parse_test_file(file_path: str, content: str) -> TestSuite | None:
    """Parse one Jest test file.

    Args:
        file_path: Absolute path of the file.
        content: File contents.

    Returns:
        A file-level TestSuite, or None if the file has no test blocks.
    """
    blocks = _parse_blocks(content.split("\n"))
    if not blocks:
        return None

    file_id = file_token_for(file_path)
    return TestSuite(
        id=file_id,
        name=os.path.basename(file_path),
        location=TestLocation(file=file_path, line=1, column=1),
        children=_to_items(blocks, file_path, file_id),
        parent_id=None,
    )


def _parse_blocks(lines: list[str]) -> list[_Block]:
    roots: list[_Block] = []
    stack: list[_Block] = []
    depth = 0

    for index, line in enumerate(lines):
        line_number = index + 1

        describe = DESCRIBE_PATTERN.search(line)
        if describe:
            block = _Block(
                "describe", describe.group(2), line_number, describe.start() + 1, depth=depth
            )
            _attach(block, roots, stack)
            stack.append(block)

        # One-liners such as describe("a", () => { it("b", ...) }) carry both.
        test = TEST_PATTERN.search(line, describe.end() if describe else 0)
        if test:
            _attach(_Block("test", test.group(2), line_number, test.start() + 1), roots, stack)

        code = STRING_LITERAL.sub("", line)
        depth = max(depth + code.count("{") - code.count("}"), 0)
        while stack and depth <= stack[-1].depth:
            stack.pop()

    return roots


def _attach(block: _Block, roots: list[_Block], stack: list[_Block]) -> None:
    if stack:
        stack[-1].children.append(block)
    else:
        roots.append(block)


def _to_items(blocks: list[_Block], file_path: str, parent_id: str) -> list[TestSuite | TestCase]:
    items: list[TestSuite | TestCase] = []
    for block in blocks:
        node_id = child_id(parent_id, block.name)
        location = TestLocation(file=file_path, line=block.line, column=block.column)
        if block.kind == "describe":
            items.append(
                TestSuite(
                    id=node_id,
                    name=block.name,
                    location=location,
                    children=_to_items(block.children, file_path, node_id),
                    parent_id=parent_id,
                )
            )
        else:
            items.append(
                TestCase(
                    id=node_id,
                    name=block.name,
                    full_name=block.name,
                    location=location,
                    parent_id=parent_id,
                )
            )
    return items
